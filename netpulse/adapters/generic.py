"""
adapters/generic.py
Fallback adapter for platforms without a dedicated one: polls the
interface table and reports raw differences only.
"""

from netpulse.adapters.base import PlatformAdapter, interface_table
from netpulse.logger import logger


class GenericAdapter(PlatformAdapter):

    name = "GenericAdapter"

    def __init__(self, config=None):
        super().__init__(config)
        self._last = None

    def start(self):
        super().start()
        logger.log("INFO", f"[{self.name}] Using generic network monitoring")
        self._last = interface_table()
        self.poll("interfaces", self.check_interfaces, self.interval("adapter_poll_interval", 2.0))

    def check_interfaces(self):
        current = interface_table()
        if current is None:
            return
        if self._last is not None and current != self._last:
            logger.log("INFO", f"[{self.name}] Network interface change detected")
            self.emit_network_change("interface-change")
        self._last = current
