"""
NetPulse Package
================

Network connectivity & quality detection engine: decides whether the
host is online, how good the link is and whether a VPN is active, and
publishes an event whenever one of those facts changes.

Folder structure:

netpulse/
    adapters/       - Per-OS native change sources (macOS, Windows, Linux, generic)
    engine/         - Probes, interface differencer, shell runner, NetworkManager D-Bus
    ipc/            - Publish/subscribe router
    modules/        - Network state container
    workers/        - Background polling loops
    monitor.py      - NetworkMonitor, the state aggregator
    main.py         - Composition root + CLI entrypoint

Import usage example:

    from netpulse.monitor import NetworkMonitor

    monitor = NetworkMonitor()
    monitor.on("status_change", handler)
    state = monitor.initialize()
"""

__version__ = "1.0.0"
