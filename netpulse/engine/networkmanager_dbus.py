#!/usr/bin/env python3
# NetworkManager engine using dbus-next
# Active VPN connections, Wi-Fi status and state-change signals

import asyncio
import threading

from dbus_next import BusType, Variant
from dbus_next.aio import MessageBus

from netpulse.logger import logger

NM_SERVICE = "org.freedesktop.NetworkManager"
NM_PATH = "/org/freedesktop/NetworkManager"
NM_IFACE = "org.freedesktop.NetworkManager"
NM_DEV_IFACE = "org.freedesktop.NetworkManager.Device"
NM_WIRELESS_IFACE = "org.freedesktop.NetworkManager.Device.Wireless"
NM_AP_IFACE = "org.freedesktop.NetworkManager.AccessPoint"
NM_ACTIVE_IFACE = "org.freedesktop.NetworkManager.Connection.Active"
DBUS_PROPS_IFACE = "org.freedesktop.DBus.Properties"

DEVICE_TYPE_WIFI = 2

VPN_CONNECTION_TYPES = ("vpn", "wireguard")

# NMState values, see NetworkManager D-Bus API docs
NM_STATES = {
    0: "unknown",
    10: "asleep",
    20: "disconnected",
    30: "disconnecting",
    40: "connecting",
    50: "connected-local",
    60: "connected-site",
    70: "connected-global",
}


class NMEngine:
    """
    Provides:
        - available()
        - active_vpn_connections()
        - wifi_status()
        - watch_state(callback)

    dbus-next is asyncio based; the engine runs its own event loop on a
    daemon thread and exposes sync wrappers so the threaded adapters can
    call it directly. Every call degrades to an empty/False result when
    the system bus or NetworkManager is not reachable.
    """

    CALL_TIMEOUT = 5

    def __init__(self):
        self.loop = None
        self.thread = None
        self.bus = None
        self.nm = None
        self._signal_handler = None

    # ------------------------------------------------------------
    # CONNECTION
    # ------------------------------------------------------------

    def connect(self):
        if self.bus is not None:
            return True

        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(
            target=self.loop.run_forever, name="netpulse-nm-dbus", daemon=True
        )
        self.thread.start()

        try:
            self._call(self._connect())
            return True
        except Exception as e:
            logger.log("WARN", f"[NMEngine] Failed to connect to NetworkManager: {e}")
            self.close()
            return False

    async def _connect(self):
        self.bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        obj = await self.bus.introspect(NM_SERVICE, NM_PATH)
        self.nm = self.bus.get_proxy_object(NM_SERVICE, NM_PATH, obj).get_interface(NM_IFACE)

    def available(self):
        return self.bus is not None and self.nm is not None

    def _call(self, coro):
        """Run a coroutine on the engine loop and wait for it."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout=self.CALL_TIMEOUT)

    # ------------------------------------------------------------
    # INTERNAL HELPERS
    # ------------------------------------------------------------

    async def _get_prop(self, path, iface, prop):
        try:
            obj = await self.bus.introspect(NM_SERVICE, path)
            proxy = self.bus.get_proxy_object(NM_SERVICE, path, obj)
            props = proxy.get_interface(DBUS_PROPS_IFACE)
            value = await props.call_get(iface, prop)
            return value.value if isinstance(value, Variant) else value
        except Exception as e:
            logger.log("DEBUG", f"[NMEngine] {iface}.{prop} on {path}: {e}")
            return None

    async def _get_devices(self):
        try:
            return await self.nm.call_get_devices()
        except Exception as e:
            logger.log("DEBUG", f"[NMEngine] GetDevices failed: {e}")
            return []

    # ------------------------------------------------------------
    # VPN
    # ------------------------------------------------------------

    def active_vpn_connections(self):
        """Return [{"id", "type", "interface_name"}] for active VPN links."""
        if not self.available():
            return []
        try:
            return self._call(self._active_vpn_connections())
        except Exception as e:
            logger.log("WARN", f"[NMEngine] Active connection query failed: {e}")
            return []

    async def _active_vpn_connections(self):
        paths = await self._get_prop(NM_PATH, NM_IFACE, "ActiveConnections") or []
        vpns = []
        for path in paths:
            conn_type = await self._get_prop(path, NM_ACTIVE_IFACE, "Type") or ""
            is_vpn = await self._get_prop(path, NM_ACTIVE_IFACE, "Vpn")
            if not is_vpn and conn_type not in VPN_CONNECTION_TYPES:
                continue

            iface_name = None
            devices = await self._get_prop(path, NM_ACTIVE_IFACE, "Devices") or []
            if devices:
                iface_name = await self._get_prop(devices[0], NM_DEV_IFACE, "Interface")

            vpns.append({
                "id": await self._get_prop(path, NM_ACTIVE_IFACE, "Id"),
                "type": conn_type,
                "interface_name": iface_name,
            })
        return vpns

    # ------------------------------------------------------------
    # WIFI STATUS
    # ------------------------------------------------------------

    def wifi_status(self):
        if not self.available():
            return None
        try:
            return self._call(self._wifi_status())
        except Exception as e:
            logger.log("WARN", f"[NMEngine] Wi-Fi status query failed: {e}")
            return None

    async def _wifi_status(self):
        wifi = {"connected": False, "ssid": None}

        dev = None
        for path in await self._get_devices():
            if await self._get_prop(path, NM_DEV_IFACE, "DeviceType") == DEVICE_TYPE_WIFI:
                dev = path
                break
        if not dev:
            return wifi

        ap_path = await self._get_prop(dev, NM_WIRELESS_IFACE, "ActiveAccessPoint")
        if ap_path and ap_path != "/":
            ssid_bytes = await self._get_prop(ap_path, NM_AP_IFACE, "Ssid")
            if ssid_bytes:
                wifi["connected"] = True
                wifi["ssid"] = bytes(ssid_bytes).decode("utf-8", errors="replace")

        return wifi

    # ------------------------------------------------------------
    # SIGNALS
    # ------------------------------------------------------------

    def watch_state(self, callback):
        """
        Call `callback(state_name)` whenever NetworkManager's global
        state changes. Returns False if the signal could not be attached.
        """
        if not self.available():
            return False

        def _on_state_changed(state):
            name = NM_STATES.get(state, str(state))
            try:
                callback(name)
            except Exception as e:
                logger.log("ERROR", f"[NMEngine] state callback error: {e}")

        try:
            self.nm.on_state_changed(_on_state_changed)
        except Exception as e:
            logger.log("WARN", f"[NMEngine] Could not subscribe to StateChanged: {e}")
            return False

        self._signal_handler = _on_state_changed
        return True

    # ------------------------------------------------------------
    def close(self):
        if self.nm is not None and self._signal_handler is not None:
            try:
                self.nm.off_state_changed(self._signal_handler)
            except Exception as e:
                logger.log("DEBUG", f"[NMEngine] off_state_changed: {e}")
        self._signal_handler = None

        if self.bus is not None and self.loop is not None:
            # the bus belongs to the engine loop
            self.loop.call_soon_threadsafe(self.bus.disconnect)
        self.bus = None
        self.nm = None

        if self.loop is not None:
            self.loop.call_soon_threadsafe(self.loop.stop)
            if self.thread is not None:
                self.thread.join(timeout=2)
            if not self.loop.is_running():
                self.loop.close()
            self.loop = None
            self.thread = None
