#!/usr/bin/env python3

import copy
import threading
import time
from collections import deque

from netpulse.engine.probes import QUALITY_OFFLINE


class NetworkModule:
    """
    Stores the canonical network state. Only NetworkMonitor writes it.

    Structure:
    {
        "is_online": bool,
        "network_quality": "offline" | "poor" | "fair" | "good" | "excellent",
        "confidence": 0.0 .. 1.0,
        "vpn_active": bool,
        "vpn_interface_name": str | None,
        "consecutive_failures": int,
        "last_check": <timestamp>,
        "last_change": <timestamp>,
        "interfaces": {name: [{"family", "address", "netmask", "internal"}, ...]},
    }
    """

    def __init__(self, max_history=10):
        now = time.time()
        self.state = {
            "is_online": False,
            "network_quality": QUALITY_OFFLINE,
            "confidence": 0.0,
            "vpn_active": False,
            "vpn_interface_name": None,
            "consecutive_failures": 0,
            "last_check": now,
            "last_change": now,
            "interfaces": {},
        }
        self.history = deque(maxlen=max_history)
        self.lock = threading.RLock()

    # ------------------------------------------------------------
    def update(self, new_data: dict):
        """
        Merge aggregator-computed fields into the state.
        """
        with self.lock:
            for key, value in new_data.items():
                if key not in self.state:
                    raise KeyError(f"unknown network state field: {key}")
                self.state[key] = copy.deepcopy(value)

            # offline quality and online status must agree
            if self.state["network_quality"] == QUALITY_OFFLINE:
                self.state["is_online"] = False

    # ------------------------------------------------------------
    def record_change(self, was_online, is_online):
        """Push a flip onto the bounded history and stamp last_change."""
        with self.lock:
            now = time.time()
            self.history.append({
                "timestamp": now,
                "was_online": was_online,
                "is_online": is_online,
                "duration_in_previous_state": now - self.state["last_change"],
            })
            self.state["last_change"] = now

    # ------------------------------------------------------------
    def read_history(self):
        with self.lock:
            return [dict(entry) for entry in self.history]

    # ------------------------------------------------------------
    def clear_history(self):
        with self.lock:
            self.history.clear()

    # ------------------------------------------------------------
    def read_status(self):
        """
        Returns a deep copy of the full network state; callers can never
        reach the live record through it.
        """
        with self.lock:
            return copy.deepcopy(self.state)
