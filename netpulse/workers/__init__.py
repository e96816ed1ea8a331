"""
NetPulse Background Workers
===========================

Threaded polling loops driven by NetworkMonitor:

- InterfaceWorker      fast interface snapshot diff (~1s)
- ConnectivityWorker   slow multi-endpoint connectivity check (~30s)
"""
