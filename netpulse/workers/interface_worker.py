import threading

from netpulse.logger import logger


class InterfaceWorker:
    """
    Fast loop: runs the interface snapshot differencer through the
    monitor every INTERVAL seconds.
    """

    INTERVAL = 1.0  # seconds

    def __init__(self, monitor, interval=None):
        self.monitor = monitor
        self.interval = interval or self.INTERVAL
        self.running = False
        self._stop = threading.Event()

    # ------------------------------------------------------------
    def start(self):
        logger.log("INFO", "InterfaceWorker started.")
        self.running = True

        while self.running and not self._stop.is_set():
            try:
                self.monitor.check_network_interfaces()
            except Exception as e:
                logger.log("ERROR", f"InterfaceWorker crash: {e}")

            if self._stop.wait(self.interval):
                break

        logger.log("INFO", "InterfaceWorker stopped.")

    # ------------------------------------------------------------
    def stop(self):
        self.running = False
        self._stop.set()
