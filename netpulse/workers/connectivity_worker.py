import threading

from netpulse.logger import logger


class ConnectivityWorker:
    """
    Slow loop: multi-endpoint connectivity check every INTERVAL seconds.
    The first run happens one interval after start, since the monitor
    has just taken its baseline.
    """

    INTERVAL = 30.0  # seconds

    def __init__(self, monitor, interval=None):
        self.monitor = monitor
        self.interval = interval or self.INTERVAL
        self.running = False
        self._stop = threading.Event()

    # ------------------------------------------------------------
    def start(self):
        logger.log("INFO", "ConnectivityWorker started.")
        self.running = True

        while self.running and not self._stop.wait(self.interval):
            try:
                self.monitor.perform_connectivity_check()
            except Exception as e:
                logger.log("ERROR", f"ConnectivityWorker crash: {e}")

        logger.log("INFO", "ConnectivityWorker stopped.")

    # ------------------------------------------------------------
    def stop(self):
        self.running = False
        self._stop.set()
