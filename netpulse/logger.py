# NetPulse Module: Logger
# Simple centralized logger for the connectivity engine

import os
import sys
import threading
import time

LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}


class Logger:
    def __init__(self, level=None, max_entries=500):
        self.entries = []
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self.set_level(level or os.environ.get("NETPULSE_LOG_LEVEL", "INFO"))

    def set_level(self, level):
        level = str(level).upper()
        if level == "WARNING":
            level = "WARN"
        self.level = level if level in LEVELS else "INFO"

    def enabled(self, level):
        return LEVELS.get(level, 20) >= LEVELS[self.level]

    def log(self, level, message):
        if not self.enabled(level):
            return

        timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
        entry = f"[{timestamp}] [{level}] {message}"

        with self._lock:
            self.entries.append(entry)
            if len(self.entries) > self.max_entries:
                self.entries.pop(0)

        print(entry, file=sys.stderr, flush=True)

    def get_logs(self):
        with self._lock:
            return list(self.entries)

# Global shared logger instance
logger = Logger()
