from __future__ import annotations

import socket
from collections import namedtuple

import psutil

from conftest import ipv4, ipv6
from netpulse.engine.interfaces import InterfaceDiffer, has_routable, is_routable

Snic = namedtuple("Snic", "family address netmask broadcast ptp")
Stats = namedtuple("Stats", "isup")


def diff(platform="linux"):
    return InterfaceDiffer(platform=platform)


def test_routable_addresses() -> None:
    assert is_routable(ipv4("192.168.1.20"))
    assert is_routable(ipv6("2001:db8::1"))
    assert not is_routable(ipv4("127.0.0.1", internal=True))
    assert not is_routable(ipv4("169.254.10.1"))
    assert not is_routable(ipv6("fe80::1"))
    assert not is_routable({"family": "IPv4", "address": "garbage"})

    assert has_routable([ipv6("fe80::1"), ipv4("10.0.0.2")], "IPv4")
    assert not has_routable([ipv4("10.0.0.2")], "IPv6")
    assert not has_routable(None, "IPv4")


def test_vpn_interface_names() -> None:
    d = diff()
    for name in ("utun3", "tun0", "tap1", "ppp0", "wg0", "NordLynx", "My VPN Adapter", "ipsec0"):
        assert d.is_vpn_interface(name), name
    for name in ("en0", "eth0", "wlan0", "Wi-Fi"):
        assert not d.is_vpn_interface(name), name


def test_first_call_is_baseline_only() -> None:
    d = diff()

    assert d.check_interfaces({"en0": [ipv4("192.168.1.20")]}) == []
    assert d.previous == {"en0": [ipv4("192.168.1.20")]}
    assert d.last_analysis["likely_online"] is True
    assert d.last_analysis["significant_change"] is False


def test_unchanged_snapshot_reports_nothing() -> None:
    d = diff()
    snap = {"en0": [ipv4("192.168.1.20"), ipv6("2001:db8::1")]}
    d.check_interfaces(snap)

    reordered = {"en0": [ipv6("2001:db8::1"), ipv4("192.168.1.20")]}
    assert d.check_interfaces(reordered) == []


def test_added_interface_with_ipv4_is_significant() -> None:
    d = diff()
    d.check_interfaces({"en0": [ipv4("192.168.1.20")]})

    changes = d.check_interfaces({"en0": [ipv4("192.168.1.20")], "en5": [ipv4("10.0.0.7")]})

    assert changes == [{
        "type": "added",
        "interface_name": "en5",
        "addresses": [ipv4("10.0.0.7")],
        "has_routable_ipv4": True,
        "has_routable_ipv6": False,
    }]
    analysis = d.last_analysis
    assert analysis["significant_change"] is True
    assert analysis["active_interface_count"] == 2
    assert analysis["vpn_transitions"] == []


def test_added_interface_with_link_local_only_is_not_significant() -> None:
    d = diff()
    d.check_interfaces({"en0": [ipv4("192.168.1.20")]})

    changes = d.check_interfaces({"en0": [ipv4("192.168.1.20")], "awdl0": [ipv6("fe80::4")]})

    assert [c["type"] for c in changes] == ["added"]
    assert d.last_analysis["significant_change"] is False


def test_removed_interface() -> None:
    d = diff()
    d.check_interfaces({"en0": [ipv4("192.168.1.20")]})

    changes = d.check_interfaces({})

    assert changes[0]["type"] == "removed"
    assert changes[0]["previous_addresses"] == [ipv4("192.168.1.20")]
    analysis = d.last_analysis
    assert analysis["significant_change"] is True
    assert analysis["likely_online"] is False
    assert analysis["active_interface_count"] == 0


def test_ipv4_loss_is_significant_but_ipv6_churn_is_not() -> None:
    d = diff()
    d.check_interfaces({"en0": [ipv4("192.168.1.20"), ipv6("2001:db8::1")]})

    d.check_interfaces({"en0": [ipv4("192.168.1.20"), ipv6("2001:db8::2")]})
    assert d.last_analysis["significant_change"] is False

    changes = d.check_interfaces({"en0": [ipv6("2001:db8::2")]})
    assert changes[0]["type"] == "modified"
    assert changes[0]["has_routable_ipv4"] is False
    assert d.last_analysis["significant_change"] is True


def test_vpn_transitions() -> None:
    d = diff()
    d.check_interfaces({"en0": [ipv4("192.168.1.20")]})

    d.check_interfaces({"en0": [ipv4("192.168.1.20")], "utun4": [ipv4("10.8.0.2")]})
    analysis = d.last_analysis
    assert analysis["vpn_detected"] is True
    assert analysis["vpn_interface_name"] == "utun4"
    assert analysis["vpn_transitions"] == [{"active": True, "interface_name": "utun4"}]

    d.check_interfaces({"en0": [ipv4("192.168.1.20")]})
    analysis = d.last_analysis
    assert analysis["vpn_detected"] is False
    assert analysis["vpn_transitions"] == [{"active": False, "interface_name": "utun4"}]


def test_windows_critical_interface_removed_leaving_only_vpn() -> None:
    d = diff(platform="win32")
    d.check_interfaces({
        "Wi-Fi": [ipv4("192.168.1.20")],
        "NordLynx": [ipv4("10.5.0.2")],
    })

    d.check_interfaces({"NordLynx": [ipv4("10.5.0.2")]})

    analysis = d.last_analysis
    assert analysis["critical_interface_removed"] is True
    assert analysis["significant_change"] is True
    assert analysis["likely_online"] is False
    assert analysis["vpn_detected"] is True


def test_critical_interface_rule_is_windows_only() -> None:
    d = diff(platform="linux")
    d.check_interfaces({"Wi-Fi": [ipv6("fe80::1")], "tun0": [ipv4("10.5.0.2")]})

    d.check_interfaces({"tun0": [ipv4("10.5.0.2")]})

    analysis = d.last_analysis
    assert analysis["critical_interface_removed"] is False
    assert analysis["significant_change"] is False
    assert analysis["likely_online"] is True


def test_snapshot_uses_psutil(monkeypatch) -> None:
    addrs = {
        "lo": [Snic(socket.AF_INET, "127.0.0.1", "255.0.0.0", None, None)],
        "en0": [
            Snic(socket.AF_INET, "192.168.1.20", "255.255.255.0", None, None),
            Snic(socket.AF_INET6, "fe80::1%en0", "ffff:ffff:ffff:ffff::", None, None),
            Snic(psutil.AF_LINK, "aa:bb:cc:dd:ee:ff", None, None, None),
        ],
        "en1": [Snic(socket.AF_INET, "10.0.0.9", "255.0.0.0", None, None)],
    }
    stats = {"lo": Stats(True), "en0": Stats(True), "en1": Stats(False)}
    monkeypatch.setattr(psutil, "net_if_addrs", lambda: addrs)
    monkeypatch.setattr(psutil, "net_if_stats", lambda: stats)

    snap = diff().snapshot()

    assert set(snap) == {"lo", "en0"}
    assert snap["lo"][0]["internal"] is True
    assert [a["family"] for a in snap["en0"]] == ["IPv4", "IPv6"]
    assert snap["en0"][1]["address"] == "fe80::1"


def test_failed_read_keeps_previous_snapshot(monkeypatch) -> None:
    d = diff()
    baseline = {"en0": [ipv4("192.168.1.20")], "utun3": [ipv4("10.8.0.2")]}
    d.check_interfaces(baseline)

    def boom():
        raise OSError("no netlink")

    monkeypatch.setattr(psutil, "net_if_addrs", boom)

    assert d.snapshot() is None
    assert d.check_interfaces() == []
    assert d.previous == baseline
    assert d.last_analysis["vpn_transitions"] == []

    # the next good read diffs against the untouched baseline
    assert d.check_interfaces(baseline) == []
