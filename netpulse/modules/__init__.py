"""
NetPulse State Modules
======================

State containers written by NetworkMonitor:

- NetworkModule   canonical NetworkState + bounded change history

Everything read out of a module is a copy.
"""
