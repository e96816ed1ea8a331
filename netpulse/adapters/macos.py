"""
adapters/macos.py
macOS network change adapter.

Uses:
  - SystemConfiguration plists   config-change events
  - scutil / ifconfig            VPN services, utun tunnels, proxy autoconfig
  - airport -I                   Wi-Fi power + SSID
  - route -n monitor             streaming route table mutations
"""

import os
import re

from netpulse.adapters.base import PlatformAdapter, detect_vpn_ifconfig, detect_vpn_unix
from netpulse.engine.shell import run_cmd
from netpulse.logger import logger

CONFIG_PATHS = [
    "/Library/Preferences/SystemConfiguration/com.apple.airport.preferences.plist",
    "/Library/Preferences/SystemConfiguration/NetworkInterfaces.plist",
    "/Library/Preferences/SystemConfiguration/preferences.plist",
]

AIRPORT = (
    "/System/Library/PrivateFrameworks/Apple80211.framework/"
    "Versions/Current/Resources/airport"
)

ROUTE_EVENTS = ("RTM_IFINFO", "RTM_NEWADDR", "RTM_DELADDR")


class MacOSAdapter(PlatformAdapter):

    name = "MacOSAdapter"

    def __init__(self, config=None):
        super().__init__(config)
        self._vpn_initialized = False
        self._last_vpn = None
        self._last_wifi = None

    def start(self):
        super().start()
        self.watch_network_configuration()
        self.watch_vpn_state()
        self.watch_wifi_state()
        self.monitor_route_changes()

    # ── Configuration files ────────────────────────────────────────────────

    def watch_network_configuration(self):
        for path in CONFIG_PATHS:
            self.watch(path, self._on_config_change)

    def _on_config_change(self, path, _detail):
        filename = os.path.basename(path)
        logger.log("INFO", f"[{self.name}] Network configuration changed: {filename}")
        self.emit_network_change("config-change", file=filename)

    # ── VPN ────────────────────────────────────────────────────────────────

    def watch_vpn_state(self):
        # short delay so the engine has its baseline before the first report
        self.poll("vpn", self.check_vpn, self.interval("vpn_poll_interval", 1.0),
                  initial_delay=0.5)

    def check_vpn(self):
        timeout = self.command_timeout()
        vpn = detect_vpn_unix(timeout) or detect_vpn_ifconfig(timeout)
        if vpn is None:
            logger.log("DEBUG", f"[{self.name}] no VPN tooling available")
            return

        current = (vpn["active"], vpn["interface_name"])

        if not self._vpn_initialized:
            # first sample only reports a positive; a startup "disconnected"
            # would be indistinguishable from a real loss
            self._vpn_initialized = True
            self._last_vpn = current
            if vpn["active"]:
                logger.log("INFO", f"[{self.name}] Initial VPN state: connected ({vpn['name']})")
                self.emit_vpn_state(True, vpn["interface_name"], vpn["name"], vpn["method"])
            return

        if current != self._last_vpn:
            self._last_vpn = current
            logger.log(
                "INFO",
                f"[{self.name}] VPN state changed: "
                f"{'connected' if vpn['active'] else 'disconnected'} ({vpn['name'] or '-'})",
            )
            self.emit_vpn_state(vpn["active"], vpn["interface_name"], vpn["name"], vpn["method"])

    # ── Wi-Fi ──────────────────────────────────────────────────────────────

    def watch_wifi_state(self):
        self.poll("wifi", self.check_wifi, self.interval("wifi_poll_interval", 3.0))

    def check_wifi(self):
        ok, out = run_cmd([AIRPORT, "-I"], timeout=self.command_timeout())
        if not ok:
            return

        m = re.search(r"^\s+SSID: (.+)$", out, re.M)
        current = {
            "on": "AirPort: Off" not in out,
            "ssid": m.group(1).strip() if m else None,
        }
        if current != self._last_wifi:
            logger.log("INFO", f"[{self.name}] WiFi state changed: {current}")
            self._last_wifi = current
            self.emit_network_change("wifi-change", wifi=current)

    # ── Route monitor ──────────────────────────────────────────────────────

    def monitor_route_changes(self):
        self.stream(["route", "-n", "monitor"], self._on_route_line, name="route-monitor")

    def _on_route_line(self, line):
        if any(ev in line for ev in ROUTE_EVENTS):
            logger.log("INFO", f"[{self.name}] Route change detected")
            self.emit_network_change("route-change", event=line[:50])
