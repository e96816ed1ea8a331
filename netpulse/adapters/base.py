"""
adapters/base.py
Base class for platform-specific network change adapters, plus the
shared VPN heuristics the per-OS adapters reuse.

Every adapter emits two events through its own router:

    network_change  {"type": ..., **detail}
    vpn_state       {"active": bool, "interface_name": str|None, "name": ..., "method": ...}
"""

import os
import re
import threading

import psutil

from netpulse.engine.interfaces import InterfaceDiffer, has_routable
from netpulse.engine.shell import StreamMonitor, run_cmd
from netpulse.ipc.router import IPCRouter
from netpulse.logger import logger

# utunN: flags=... followed (within the same block) by an IPv4 inet line
_UTUN_WITH_INET = re.compile(r"^(utun\d+):[^\n]*\n(?:[ \t]+[^\n]*\n)*?[ \t]+inet\s+\d+\.\d+\.\d+\.\d+", re.M)
_TUNNEL_UP = re.compile(r"^((?:utun|tun|tap|ppp|ipsec)\d+):.*\bUP\b")


# ── Shared VPN heuristics ────────────────────────────────────────────────────

def detect_vpn_unix(timeout=5):
    """
    scutil/ifconfig based VPN detection (macOS, reused elsewhere).

    Returns {"active", "name", "interface_name", "method"} or None when
    scutil is not usable, so the caller can fall back to
    detect_vpn_ifconfig().
    """
    ok, out = run_cmd(["scutil", "--nc", "list"], timeout=timeout)
    if not ok:
        return None

    active = False
    name = None
    method = "scutil"
    for line in out.splitlines():
        if "(Connected)" in line:
            active = True
            m = re.search(r'"([^"]+)"', line)
            if m:
                name = m.group(1)
            break

    # third-party clients (WireGuard, NordVPN, ...) only show up as utun
    if not active:
        ok_if, ifconfig = run_cmd(["ifconfig"], timeout=timeout)
        if ok_if:
            m = _UTUN_WITH_INET.search(ifconfig + "\n")
            if m:
                active = True
                name = m.group(1)
                method = "utun-interface"

    ok_proxy, proxy = run_cmd(["scutil", "--proxy"], timeout=timeout)
    if ok_proxy and "ProxyAutoConfigEnable : 1" in proxy:
        active = True
        method = method if name else "proxy-autoconfig"

    return {"active": active, "name": name, "interface_name": name, "method": method}


def detect_vpn_ifconfig(timeout=5):
    """Weaker fallback: any tunnel-style interface flagged UP."""
    ok, out = run_cmd(["ifconfig"], timeout=timeout)
    if not ok:
        return None

    for section in re.split(r"\n(?=\S)", out):
        m = _TUNNEL_UP.match(section)
        if m:
            return {"active": True, "name": m.group(1), "interface_name": m.group(1),
                    "method": "interface-check"}
    return {"active": False, "name": None, "interface_name": None, "method": "interface-check"}


def detect_vpn_interfaces(differ=None):
    """
    Cross-platform check over psutil: VPN-named interface with routable
    IPv4. None when the interface table could not be read.
    """
    differ = differ or InterfaceDiffer()
    current = differ.snapshot()
    if current is None:
        return None
    for name, addresses in sorted(current.items()):
        if differ.is_vpn_interface(name) and has_routable(addresses, "IPv4"):
            return {"active": True, "name": name, "interface_name": name, "method": "psutil"}
    return {"active": False, "name": None, "interface_name": None, "method": "psutil"}


# ── Pollers ──────────────────────────────────────────────────────────────────

class Poller:
    """Call `fn` every `interval` seconds on a daemon thread until stopped."""

    def __init__(self, name, fn, interval, initial_delay=0.0):
        self.name = name
        self.fn = fn
        self.interval = interval
        self.initial_delay = initial_delay
        self._stop = threading.Event()
        self.thread = None

    def start(self):
        self.thread = threading.Thread(target=self._run, name=f"netpulse-{self.name}", daemon=True)
        self.thread.start()

    def _run(self):
        if self.initial_delay and self._stop.wait(self.initial_delay):
            return
        while not self._stop.is_set():
            try:
                self.fn()
            except Exception as e:
                logger.log("ERROR", f"{self.name} poll failed: {e}")
            if self._stop.wait(self.interval):
                break

    def stop(self):
        self._stop.set()


class PathWatcher:
    """
    mtime/listing based watch on a file or directory.

    Calls on_change(path, detail) when a file's mtime changes or when
    entries appear in / disappear from a directory.
    """

    def __init__(self, path, on_change, interval=1.0):
        self.path = path
        self.on_change = on_change
        self._last = self._sample()
        self.poller = Poller(f"watch:{os.path.basename(path) or path}", self._check, interval)

    def _sample(self):
        try:
            if os.path.isdir(self.path):
                return frozenset(os.listdir(self.path))
            return os.stat(self.path).st_mtime
        except OSError:
            return None

    def _check(self):
        current = self._sample()
        if current == self._last:
            return
        previous, self._last = self._last, current

        if isinstance(current, frozenset) and isinstance(previous, frozenset):
            for entry in sorted(current ^ previous):
                self.on_change(self.path, entry)
        else:
            self.on_change(self.path, None)

    def start(self):
        self.poller.start()

    def stop(self):
        self.poller.stop()


# ── Base adapter ─────────────────────────────────────────────────────────────

class PlatformAdapter:
    """
    Common capability for the per-OS adapters: start(), stop(),
    on(event, handler). Subclasses register their checks in start() via
    poll(), watch() and stream(); stop() tears all of them down.
    """

    name = "generic"

    def __init__(self, config=None):
        self.config = config or {}
        self.router = IPCRouter()
        self.pollers = []
        self.watchers = []
        self.processes = []
        self.running = False

    # ------------------------------------------------------------
    # EVENTS
    # ------------------------------------------------------------

    def on(self, event_name, handler):
        self.router.subscribe(event_name, handler)

    def remove_all_listeners(self):
        self.router.clear()

    def emit(self, event_name, data):
        if not self.running:
            return
        self.router.publish(event_name, data)

    def emit_network_change(self, change_type, **detail):
        data = {"type": change_type}
        data.update(detail)
        self.emit("network_change", data)

    def emit_vpn_state(self, active, interface_name=None, name=None, method=None):
        self.emit("vpn_state", {
            "active": active,
            "interface_name": interface_name,
            "name": name,
            "method": method,
        })

    # ------------------------------------------------------------
    # RESOURCES
    # ------------------------------------------------------------

    def interval(self, key, default):
        return float(self.config.get(key, default))

    def poll(self, name, fn, interval, initial_delay=0.0):
        poller = Poller(name, fn, interval, initial_delay)
        self.pollers.append(poller)
        poller.start()
        return poller

    def watch(self, path, on_change):
        if not os.path.exists(path):
            logger.log("DEBUG", f"[{self.name}] not watching missing path {path}")
            return None
        watcher = PathWatcher(path, on_change, self.interval("watch_poll_interval", 1.0))
        self.watchers.append(watcher)
        watcher.start()
        return watcher

    def stream(self, cmd, on_line, name=None, on_exit=None):
        monitor = StreamMonitor(cmd, on_line, name=name, on_exit=on_exit)
        if not monitor.start():
            return None
        self.processes.append(monitor)
        return monitor

    def command_timeout(self):
        return self.interval("command_timeout", 5.0)

    # ------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------

    def start(self):
        logger.log("INFO", f"[{self.name}] Starting platform-specific monitoring")
        self.running = True

    def stop(self):
        logger.log("INFO", f"[{self.name}] Stopping platform-specific monitoring")
        self.running = False

        for monitor in self.processes:
            monitor.stop()
        for watcher in self.watchers:
            watcher.stop()
        for poller in self.pollers:
            poller.stop()

        self.processes = []
        self.watchers = []
        self.pollers = []


def interface_table():
    """Interface name -> sorted address strings, for raw difference checks."""
    try:
        addrs = psutil.net_if_addrs()
    except (OSError, RuntimeError) as e:
        logger.log("WARN", f"Interface table read failed: {e}")
        return None
    return {name: sorted(a.address for a in entries) for name, entries in addrs.items()}
