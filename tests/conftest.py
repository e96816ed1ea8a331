from __future__ import annotations

import copy
import threading
import time

import pytest

from netpulse.adapters.base import PlatformAdapter
from netpulse.config_manager import DEFAULT_CONFIG
from netpulse.engine.interfaces import InterfaceDiffer
from netpulse.logger import logger
from netpulse.monitor import NetworkMonitor


def ipv4(address, internal=False):
    return {"family": "IPv4", "address": address, "netmask": "255.255.255.0", "internal": internal}


def ipv6(address):
    return {"family": "IPv6", "address": address, "netmask": "ffff:ffff:ffff:ffff::", "internal": False}


def wait_for(predicate, timeout=3.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def endpoints_result(success=True, confidence=0.9, latency=50.0):
    return {
        "success": success,
        "confidence": confidence,
        "response_time_ms": latency if success else None,
        "avg_response_time": latency if success else None,
        "successful_endpoints": 5 if success else 0,
        "total_endpoints": 6,
        "responsive": [],
        "results": [],
    }


class FakeProbes:
    """Stands in for ConnectivityProbes; counts calls and tracks overlap."""

    def __init__(self, online=True, confidence=0.9, latency=50.0, delay=0.0):
        self.online = online
        self.confidence = confidence
        self.latency = latency
        self.delay = delay
        self.calls = 0
        self.connectivity_calls = 0
        self.active = 0
        self.max_active = 0
        self.closed = False
        self._lock = threading.Lock()

    def set(self, online, confidence=None, latency=None):
        self.online = online
        if confidence is not None:
            self.confidence = confidence
        if latency is not None:
            self.latency = latency

    def multi_endpoint_check(self):
        with self._lock:
            self.connectivity_calls += 1
        conf = self.confidence if self.online else 0.0
        return endpoints_result(self.online, conf, self.latency)

    def comprehensive_check(self):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            conf = self.confidence if self.online else 0.0
            return {
                "basic": {"success": self.online},
                "dns": {"success": self.online, "success_rate": 1.0 if self.online else 0.0},
                "endpoints": endpoints_result(self.online, conf, self.latency),
            }
        finally:
            with self._lock:
                self.active -= 1

    def close(self):
        self.closed = True


class ScriptedDiffer(InterfaceDiffer):
    """
    InterfaceDiffer whose snapshots come from a queue instead of psutil.
    Once the queue runs dry the last snapshot repeats.
    """

    def __init__(self, snapshots, **kwargs):
        super().__init__(**kwargs)
        self.snapshots = list(snapshots)
        self.last = {}

    def push(self, snapshot):
        self.snapshots.append(snapshot)

    def snapshot(self):
        if self.snapshots:
            self.last = self.snapshots.pop(0)
        return copy.deepcopy(self.last)


class FakeAdapter(PlatformAdapter):
    name = "FakeAdapter"

    def __init__(self, config=None):
        super().__init__(config)
        self.started = False
        self.stopped = False

    def start(self):
        super().start()
        self.started = True

    def stop(self):
        super().stop()
        self.stopped = True


@pytest.fixture(autouse=True)
def quiet_logger():
    previous = logger.level
    logger.set_level("WARN")
    yield
    logger.set_level(previous)


@pytest.fixture
def config():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["monitor"].update({
        "fast_check_interval": 60.0,
        "normal_check_interval": 60.0,
        "debounce_delay": 0.05,
        "vpn_grace_period": 5.0,
    })
    return cfg


@pytest.fixture
def probes():
    return FakeProbes()


@pytest.fixture
def differ():
    return ScriptedDiffer([{"en0": [ipv4("192.168.1.20")]}], platform="linux")


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def monitor(config, probes, differ, adapter):
    mon = NetworkMonitor(
        config,
        platform="linux",
        probes=probes,
        differ=differ,
        adapter_factory=lambda platform, cfg: adapter,
    )
    yield mon
    mon.destroy()


@pytest.fixture
def events(monitor):
    received = []
    lock = threading.Lock()

    def record(event_name, data):
        with lock:
            received.append((event_name, data))

    monitor.on("*", record)
    return received


def of_type(events, name):
    return [data for event, data in list(events) if event == name]
