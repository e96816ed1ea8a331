"""
NetPulse Platform Adapters
==========================

One adapter per OS family plus a generic fallback. Each watches native
event sources (config files, route/NetworkManager monitors, WMI) and
emits `network_change` / `vpn_state` faster than periodic polling can.

create_adapter() is the only place the platform is switched on.
"""

import sys


def create_adapter(platform=None, config=None):
    platform = platform or sys.platform

    if platform == "darwin":
        from netpulse.adapters.macos import MacOSAdapter
        return MacOSAdapter(config)
    if platform.startswith("win"):
        from netpulse.adapters.windows import WindowsAdapter
        return WindowsAdapter(config)
    if platform.startswith("linux"):
        from netpulse.adapters.linux import LinuxAdapter
        return LinuxAdapter(config)

    from netpulse.adapters.generic import GenericAdapter
    return GenericAdapter(config)
