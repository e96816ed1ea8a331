"""
NetPulse IPC
============

Per-engine publish/subscribe router used to fan state events out to
consumers (proxy routing, update scheduler, UI bridge).
"""
