"""
adapters/windows.py
Windows network change adapter.

Uses:
  - PowerShell Get-NetAdapter   adapter status poll (~2s)
  - netsh wlan                  Wi-Fi state + SSID
  - WMI event subscription      Win32_NetworkAdapter modifications

VPN detection reuses the cross-platform interface heuristic and adds
adapter descriptions, since tunnel drivers (TAP, Wintun, WireGuard)
rarely have tunnel-style interface names on Windows.
"""

import json
import re
import threading

from netpulse.adapters.base import PlatformAdapter, detect_vpn_interfaces
from netpulse.engine.interfaces import InterfaceDiffer
from netpulse.engine.shell import powershell_stream, run_cmd, run_powershell
from netpulse.logger import logger

ADAPTER_SCRIPT = (
    "Get-NetAdapter | Select-Object Name, Status, InterfaceDescription "
    "| ConvertTo-Json -Compress"
)

WMI_SCRIPT = (
    "Register-WmiEvent -Query \"SELECT * FROM __InstanceModificationEvent WITHIN 2 "
    "WHERE TargetInstance ISA 'Win32_NetworkAdapter'\" -SourceIdentifier NetPulseAdapter; "
    "while ($true) { Wait-Event -SourceIdentifier NetPulseAdapter | Remove-Event; "
    "Write-Host 'NETWORK_CHANGE' }"
)

TUNNEL_DESCRIPTIONS = ("tap", "wireguard", "wintun", "vpn", "tunnel")


def parse_adapters(output):
    """Get-NetAdapter JSON -> sorted list of dicts; None on parse failure."""
    output = (output or "").strip()
    if not output.startswith(("[", "{")):
        return None
    try:
        data = json.loads(output)
    except ValueError:
        return None
    if isinstance(data, dict):
        data = [data]
    return sorted(
        ({"name": a.get("Name"), "status": a.get("Status"),
          "description": a.get("InterfaceDescription")} for a in data),
        key=lambda a: a["name"] or "",
    )


def parse_wlan(output):
    state = re.search(r"^\s*State\s*:\s*(.+)$", output, re.M)
    ssid = re.search(r"^\s*SSID\s*:\s*(.+)$", output, re.M)
    return {
        "connected": bool(state) and state.group(1).strip().lower() == "connected",
        "ssid": ssid.group(1).strip() if ssid else None,
    }


class WindowsAdapter(PlatformAdapter):

    name = "WindowsAdapter"

    def __init__(self, config=None, differ=None):
        super().__init__(config)
        self.differ = differ or InterfaceDiffer(platform="win32")
        self._lock = threading.Lock()
        self._adapters = None
        self._last_vpn = None
        self._last_wifi = None

    def start(self):
        super().start()
        self.watch_network_adapters()
        self.watch_vpn_state()
        self.watch_wifi_state()
        self.monitor_network_events()

    # ── Adapter status ─────────────────────────────────────────────────────

    def watch_network_adapters(self):
        self.poll("adapters", self.check_adapters, self.interval("adapter_poll_interval", 2.0))

    def check_adapters(self):
        ok, out = run_powershell(ADAPTER_SCRIPT, timeout=self.command_timeout() * 2)
        if not ok:
            logger.log("DEBUG", f"[{self.name}] Get-NetAdapter failed: {out}")
            return
        adapters = parse_adapters(out)
        if adapters is None:
            return

        with self._lock:
            previous, self._adapters = self._adapters, adapters

        if previous is not None and previous != adapters:
            logger.log("INFO", f"[{self.name}] Network adapter change detected")
            self.emit_network_change("adapter-change", adapters=adapters)

    # ── VPN ────────────────────────────────────────────────────────────────

    def watch_vpn_state(self):
        self.poll("vpn", self.check_vpn, self.interval("vpn_poll_interval", 1.0))

    def _vpn_from_adapters(self):
        with self._lock:
            adapters = list(self._adapters or [])
        for a in adapters:
            desc = (a["description"] or "").lower()
            if (a["status"] or "").lower() == "up" and any(k in desc for k in TUNNEL_DESCRIPTIONS):
                return {"active": True, "name": a["description"],
                        "interface_name": a["name"], "method": "adapter-description"}
        return None

    def check_vpn(self):
        vpn = self._vpn_from_adapters() or detect_vpn_interfaces(self.differ)
        if vpn is None:
            return
        current = (vpn["active"], vpn["interface_name"])
        if current == self._last_vpn:
            return

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
        ok, out = run_cmd(["netsh", "wlan", "show", "interfaces"], timeout=self.command_timeout())
        if not ok:
            return
        current = parse_wlan(out)
        if current != self._last_wifi:
            logger.log("INFO", f"[{self.name}] WiFi state changed: {current}")
            self._last_wifi = current
            self.emit_network_change("wifi-change", wifi=current)

    # ── WMI events ─────────────────────────────────────────────────────────

    def monitor_network_events(self):
        monitor = powershell_stream(WMI_SCRIPT, self._on_wmi_line, name="wmi-monitor")
        if monitor.start():
            self.processes.append(monitor)

    def _on_wmi_line(self, line):
        if "NETWORK_CHANGE" in line:
            logger.log("INFO", f"[{self.name}] WMI network event detected")
            self.emit_network_change("wmi-event")
