"""
adapters/linux.py
Linux network change adapter.

Event source preference:
  1. NetworkManager StateChanged signal over D-Bus (dbus-next)
  2. nmcli monitor
  3. ip monitor link address route

Plus a /sys/class/net watch, VPN polling (ip link + NetworkManager
active connections) and Wi-Fi polling (NetworkManager, nmcli, iwgetid).
"""

import re

from netpulse.adapters.base import PlatformAdapter
from netpulse.engine.networkmanager_dbus import NMEngine
from netpulse.engine.shell import run_cmd, tool_available
from netpulse.logger import logger

SYS_CLASS_NET = "/sys/class/net"

VPN_LINK_PATTERNS = ("tun", "tap", "vpn", "ppp", "ipsec", "wg")

NM_KEYWORDS = ("connected", "disconnected", "connecting", "deactivating")
IP_MONITOR_KEYWORDS = ("link/", "inet", "route")

# "3: wg0: <POINTOPOINT,NOARP,UP,LOWER_UP> mtu 1420 ..."
_IP_LINK_LINE = re.compile(r"^\d+:\s+([^:@\s]+)(?:@\S+)?:\s+<([^>]*)>")


def parse_ip_link(output, patterns=VPN_LINK_PATTERNS):
    """First VPN-looking link that is administratively UP, or None."""
    for line in output.splitlines():
        m = _IP_LINK_LINE.match(line)
        if not m:
            continue
        name, flags = m.group(1), m.group(2).split(",")
        if "UP" in flags and any(p in name.lower() for p in patterns):
            return name
    return None


def parse_nmcli_wifi(output):
    """`nmcli -t -f ACTIVE,SSID device wifi` -> connected SSID or None."""
    for line in output.splitlines():
        active, _, ssid = line.partition(":")
        if active == "yes" and ssid:
            return ssid.replace("\\:", ":")
    return None


class LinuxAdapter(PlatformAdapter):

    name = "LinuxAdapter"

    def __init__(self, config=None, nm_engine=None):
        super().__init__(config)
        self.nm = nm_engine if nm_engine is not None else NMEngine()
        self.event_source = None
        self._last_vpn = None
        self._last_wifi = None

    def start(self):
        super().start()
        self.watch_network_manager()
        self.watch_network_interfaces()
        self.watch_vpn_state()
        self.watch_wifi_state()

    def stop(self):
        super().stop()
        self.nm.close()

    # ── Event stream ───────────────────────────────────────────────────────

    def watch_network_manager(self):
        if self.nm.connect() and self.nm.watch_state(self._on_nm_state):
            self.event_source = "dbus"
            logger.log("INFO", f"[{self.name}] Watching NetworkManager over D-Bus")
            return

        if tool_available("nmcli") and self.stream(
            ["nmcli", "monitor"], self._on_nmcli_line, name="nmcli-monitor",
            on_exit=self.monitor_with_ip_command,
        ):
            self.event_source = "nmcli"
            return

        self.monitor_with_ip_command()

    def monitor_with_ip_command(self):
        if not self.running:
            return
        if self.stream(["ip", "monitor", "link", "address", "route"],
                       self._on_ip_line, name="ip-monitor"):
            self.event_source = "ip"
        else:
            self.event_source = None
            logger.log("WARN", f"[{self.name}] No network event source available, relying on polling")

    def _on_nm_state(self, state):
        logger.log("INFO", f"[{self.name}] NetworkManager state: {state}")
        self.emit_network_change("networkmanager-event", event=state)

    def _on_nmcli_line(self, line):
        lowered = line.lower()
        if any(k in lowered for k in NM_KEYWORDS):
            logger.log("INFO", f"[{self.name}] NetworkManager event: {line}")
            self.emit_network_change("networkmanager-event", event=line)

    def _on_ip_line(self, line):
        if any(k in line for k in IP_MONITOR_KEYWORDS):
            logger.log("INFO", f"[{self.name}] IP monitor event: {line[:100]}")
            self.emit_network_change("ip-monitor-event", event=line[:100])

    # ── /sys/class/net ─────────────────────────────────────────────────────

    def watch_network_interfaces(self):
        self.watch(SYS_CLASS_NET, self._on_sysfs_change)

    def _on_sysfs_change(self, _path, entry):
        logger.log("INFO", f"[{self.name}] Network interface change: {entry}")
        self.emit_network_change("interface-change", interface_name=entry)

    # ── VPN ────────────────────────────────────────────────────────────────

    def watch_vpn_state(self):
        self.poll("vpn", self.check_vpn, self.interval("vpn_poll_interval_linux", 2.0))

    def detect_vpn(self):
        active = False
        iface = None
        name = None
        method = None

        ok, out = run_cmd(["ip", "link", "show"], timeout=self.command_timeout())
        if ok:
            iface = parse_ip_link(out)
            if iface:
                active, name, method = True, iface, "ip-link"

        connections = self.nm.active_vpn_connections()
        if connections:
            conn = connections[0]
            active = True
            name = conn["id"] or name
            iface = iface or conn["interface_name"]
            method = "networkmanager"
        elif not self.nm.available() and tool_available("nmcli"):
            ok_nm, nm_out = run_cmd(["nmcli", "connection", "show", "--active"],
                                    timeout=self.command_timeout())
            if ok_nm and re.search(r"\b(vpn|wireguard)\b", nm_out.lower()):
                active = True
                method = method or "nmcli"

        if not ok and method is None:
            return None
        return {"active": active, "interface_name": iface, "name": name, "method": method}

    def check_vpn(self):
        vpn = self.detect_vpn()
        if vpn is None:
            logger.log("DEBUG", f"[{self.name}] VPN state unavailable")
            return
        if vpn["active"] == self._last_vpn:
            return

        self._last_vpn = vpn["active"]
        logger.log("INFO", f"[{self.name}] VPN state changed: "
                           f"{'connected' if vpn['active'] else 'disconnected'}")
        self.emit_vpn_state(vpn["active"], vpn["interface_name"], vpn["name"], vpn["method"])

    # ── Wi-Fi ──────────────────────────────────────────────────────────────

    def watch_wifi_state(self):
        self.poll("wifi", self.check_wifi, self.interval("wifi_poll_interval", 3.0))

    def read_wifi(self):
        status = self.nm.wifi_status()
        if status is not None:
            return status

        if tool_available("nmcli"):
            ok, out = run_cmd(["nmcli", "-t", "-f", "ACTIVE,SSID", "device", "wifi"],
                              timeout=self.command_timeout())
            if ok:
                ssid = parse_nmcli_wifi(out)
                return {"connected": ssid is not None, "ssid": ssid}

        if tool_available("iwgetid"):
            ok, out = run_cmd(["iwgetid", "-r"], timeout=self.command_timeout())
            return {"connected": ok and bool(out), "ssid": out if ok and out else None}

        if tool_available("iwconfig"):
            ok, out = run_cmd(["iwconfig"], timeout=self.command_timeout())
            m = re.search(r'ESSID:"([^"]+)"', out)
            return {"connected": bool(m), "ssid": m.group(1) if m else None}

        return None

    def check_wifi(self):
        current = self.read_wifi()
        if current is None:
            return
        if current != self._last_wifi:
            logger.log("INFO", f"[{self.name}] WiFi state changed: {current}")
            self._last_wifi = current
            self.emit_network_change("wifi-change", wifi=current)
