from __future__ import annotations

from netpulse.ipc.router import IPCRouter


def test_exact_subscribers_before_wildcard() -> None:
    router = IPCRouter()
    calls = []
    router.subscribe("*", lambda name, data: calls.append(("wild", name, data)))
    router.subscribe("status_change", lambda data: calls.append(("first", data)))
    router.subscribe("status_change", lambda data: calls.append(("second", data)))

    router.publish("status_change", {"is_online": True})

    assert calls == [
        ("first", {"is_online": True}),
        ("second", {"is_online": True}),
        ("wild", "status_change", {"is_online": True}),
    ]


def test_failing_subscriber_does_not_stop_delivery() -> None:
    router = IPCRouter()
    seen = []

    def broken(data):
        raise ValueError("bad subscriber")

    router.subscribe("vpn_change", broken)
    router.subscribe("vpn_change", seen.append)
    router.subscribe("*", lambda name, data: seen.append(name))

    router.publish("vpn_change", 1)

    assert seen == [1, "vpn_change"]


def test_unsubscribe_and_clear() -> None:
    router = IPCRouter()
    seen = []
    router.subscribe("network_change", seen.append)
    assert router.listener_count("network_change") == 1

    router.unsubscribe("network_change", seen.append)
    router.publish("network_change", "x")

    assert seen == []
    assert router.listener_count("network_change") == 0

    router.subscribe("network_change", seen.append)
    router.clear()
    router.publish("network_change", "y")
    assert seen == []


def test_publish_without_subscribers() -> None:
    IPCRouter().publish("connectivity_change", None)
