"""
NetPulse Engine Components
==========================

Low-level building blocks used by NetworkMonitor and the adapters:

- probes.py               -> basic / DNS / multi-endpoint connectivity checks
- interfaces.py           -> interface snapshot differencer
- shell.py                -> bounded command runner + streaming monitors
- networkmanager_dbus.py  -> NetworkManager queries and signals over dbus-next
"""
