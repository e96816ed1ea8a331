# NetPulse IPC Router
# Publish/subscribe hub between the engine and its consumers

import threading

from netpulse.logger import logger


class IPCRouter:
    """
    Delivery order: subscribers of the exact event first, in subscription
    order, then wildcard ("*") subscribers. Wildcard callbacks receive
    (event_name, data); exact subscribers receive data only.
    """

    def __init__(self):
        self.subscribers = {}
        self._lock = threading.Lock()

    def subscribe(self, event_name, callback):
        with self._lock:
            if event_name not in self.subscribers:
                self.subscribers[event_name] = []
            self.subscribers[event_name].append(callback)

    def unsubscribe(self, event_name, callback):
        with self._lock:
            callbacks = self.subscribers.get(event_name, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self.subscribers.pop(event_name, None)

    def clear(self):
        with self._lock:
            self.subscribers.clear()

    def listener_count(self, event_name):
        with self._lock:
            return len(self.subscribers.get(event_name, []))

    def publish(self, event_name, data=None):
        with self._lock:
            exact = list(self.subscribers.get(event_name, []))
            wildcard = list(self.subscribers.get("*", [])) if event_name != "*" else []

        # Publish to exact match subscribers
        for callback in exact:
            try:
                callback(data)
            except Exception as e:
                logger.log("ERROR", f"IPC callback error ({event_name}): {e}")

        # Publish to wildcard subscribers
        for callback in wildcard:
            try:
                callback(event_name, data)
            except Exception as e:
                logger.log("ERROR", f"IPC wildcard callback error ({event_name}): {e}")
