#!/usr/bin/env python3
# NetPulse Engine
# Composition root: wires config, logger and NetworkMonitor, relays every
# event to stdout as JSON lines, and handles shutdown signals.

import argparse
import json
import signal
import sys
import threading

from netpulse.config_manager import load_config
from netpulse.logger import logger
from netpulse.monitor import NetworkMonitor


class ConsoleBridge:
    """
    Relays every monitor event verbatim, one JSON object per line.
    """

    def __init__(self, monitor, stream=None):
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()
        monitor.on("*", self.forward_any_event)

    # ------------------------------------------------------------
    def forward_any_event(self, event_name, data):
        line = json.dumps({"event": event_name, "data": data}, default=str, sort_keys=True)
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()


class NetPulseEngine:
    def __init__(self, config_path=None, log_level=None):
        logger.log("INFO", "Initializing NetPulse engine...")

        # --------------------------------------------------------
        # LOAD CONFIG
        # --------------------------------------------------------
        self.config = load_config(config_path)
        log_cfg = self.config.get("logging", {})
        logger.set_level(log_level or log_cfg.get("level", "INFO"))
        logger.max_entries = int(log_cfg.get("max_entries", logger.max_entries))

        # --------------------------------------------------------
        # INIT MONITOR
        # --------------------------------------------------------
        self.monitor = NetworkMonitor(self.config)
        self._shutdown_event = threading.Event()

    # ------------------------------------------------------------
    def check_once(self):
        """One comprehensive verdict, without starting any loops."""
        try:
            self.monitor.differ.check_interfaces()
            self.monitor.network.update({"interfaces": self.monitor.differ.previous or {}})
            return self.monitor.force_check()
        finally:
            self.monitor.destroy()

    # ------------------------------------------------------------
    def start(self):
        ConsoleBridge(self.monitor)

        signal.signal(signal.SIGINT, self._shutdown)
        signal.signal(signal.SIGTERM, self._shutdown)

        state = self.monitor.initialize()
        logger.log(
            "INFO",
            f"Baseline: online={state['is_online']} quality={state['network_quality']} "
            f"confidence={state['confidence']:.2f} vpn={state['vpn_active']}",
        )

        # Keep engine alive
        while not self._shutdown_event.wait(1):
            pass

        self.monitor.destroy()
        logger.log("INFO", "NetPulse stopped cleanly.")

    # ------------------------------------------------------------
    def _shutdown(self, signum, frame):
        logger.log("WARN", f"Shutting down NetPulse engine (signal={signum})")
        self._shutdown_event.set()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="netpulse",
        description="Network connectivity, quality and VPN state monitor",
    )
    parser.add_argument("--config", help="path to config.json (default: $NETPULSE_CONFIG)")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARN", "ERROR"],
                        help="override the configured log level")
    parser.add_argument("--once", action="store_true",
                        help="print one comprehensive verdict as JSON and exit")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    engine = NetPulseEngine(args.config, args.log_level)

    if args.once:
        state = engine.check_once()
        print(json.dumps(state, default=str, indent=2, sort_keys=True))
        return 0 if state["is_online"] else 1

    engine.start()
    return 0


# ------------------------------------------------------------
# ENTRY POINT
# ------------------------------------------------------------
if __name__ == "__main__":
    sys.exit(main())
