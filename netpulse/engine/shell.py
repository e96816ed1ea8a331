#!/usr/bin/env python3
# NetPulse shell engine
# Bounded external command runner + streaming subprocess monitor

import shutil
import subprocess
import sys
import threading

from netpulse.logger import logger

IS_WINDOWS = sys.platform.startswith("win")

# Keep console windows from flashing up for every poll on Windows
_CREATE_NO_WINDOW = 0x08000000 if IS_WINDOWS else 0


def tool_available(name):
    """Return True if an executable called `name` is on PATH."""
    return shutil.which(name) is not None


def run_cmd(cmd, timeout=5):
    """
    Run a command and return (success, stdout).

    Never raises: a missing binary, a timeout or a non-zero exit all
    come back as success=False with the error text in place of stdout.
    """
    try:
        kwargs = dict(capture_output=True, text=True, timeout=timeout)
        if IS_WINDOWS:
            kwargs["creationflags"] = _CREATE_NO_WINDOW
        r = subprocess.run(cmd, **kwargs)
        if r.returncode != 0:
            return False, (r.stderr or r.stdout).strip()
        return True, r.stdout.strip()
    except FileNotFoundError:
        return False, f"{cmd[0]}: not found"
    except subprocess.TimeoutExpired:
        return False, f"{cmd[0]}: timed out after {timeout}s"
    except (OSError, subprocess.SubprocessError) as e:
        return False, str(e)


def _powershell_cmd(script):
    return ["powershell", "-NoProfile", "-NonInteractive",
            "-ExecutionPolicy", "Bypass", "-Command", script]


def run_powershell(script, timeout=10):
    return run_cmd(_powershell_cmd(script), timeout=timeout)


class StreamMonitor:
    """
    Long-running subprocess whose stdout lines are handed to a callback.

    Used for `route -n monitor`, `ip monitor`, `nmcli monitor` and the
    WMI event subscription. The reader runs on its own daemon thread so a
    quiet or stuck tool never blocks the caller.
    """

    def __init__(self, cmd, on_line, name=None, on_exit=None):
        self.cmd = cmd
        self.on_line = on_line
        self.on_exit = on_exit
        self.name = name or cmd[0]
        self.proc = None
        self.thread = None
        self._stopping = False

    # ------------------------------------------------------------
    def start(self):
        """Spawn the process. Returns False if it could not be started."""
        try:
            kwargs = dict(
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
                text=True,
                bufsize=1,
            )
            if IS_WINDOWS:
                kwargs["creationflags"] = _CREATE_NO_WINDOW
            self.proc = subprocess.Popen(self.cmd, **kwargs)
        except (OSError, ValueError) as e:
            logger.log("ERROR", f"{self.name} monitor failed to start: {e}")
            return False

        self.thread = threading.Thread(
            target=self._read, name=f"netpulse-{self.name}", daemon=True
        )
        self.thread.start()
        return True

    # ------------------------------------------------------------
    def _read(self):
        try:
            for line in self.proc.stdout:
                if self._stopping:
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    self.on_line(line)
                except Exception as e:
                    logger.log("ERROR", f"{self.name} monitor handler error: {e}")
        except (OSError, ValueError) as e:
            if not self._stopping:
                logger.log("WARN", f"{self.name} monitor read error: {e}")

        if not self._stopping:
            logger.log("WARN", f"{self.name} monitor exited")
            if self.on_exit:
                try:
                    self.on_exit()
                except Exception as e:
                    logger.log("ERROR", f"{self.name} monitor exit handler error: {e}")

    # ------------------------------------------------------------
    def running(self):
        return self.proc is not None and self.proc.poll() is None

    # ------------------------------------------------------------
    def stop(self):
        self._stopping = True
        if self.proc is None:
            return
        try:
            self.proc.terminate()
            self.proc.wait(timeout=2)
        except subprocess.TimeoutExpired:
            self.proc.kill()
        except OSError as e:
            logger.log("DEBUG", f"{self.name} monitor terminate: {e}")
        finally:
            if self.proc.stdout:
                try:
                    self.proc.stdout.close()
                except OSError as e:
                    logger.log("DEBUG", f"{self.name} monitor close: {e}")


def powershell_stream(script, on_line, name=None):
    return StreamMonitor(_powershell_cmd(script), on_line, name=name or "powershell")
