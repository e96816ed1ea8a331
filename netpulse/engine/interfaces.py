#!/usr/bin/env python3
# NetPulse interface snapshot differencer
# Enumerates local interfaces with psutil and classifies changes

import ipaddress
import socket
import sys

import psutil

from netpulse.logger import logger

DEFAULT_VPN_PREFIXES = ("utun", "tun", "tap", "ppp", "wg")
DEFAULT_VPN_KEYWORDS = ("vpn", "ipsec", "nordlynx", "wireguard")
DEFAULT_CRITICAL_KEYWORDS = ("ethernet", "wi-fi", "wireless")

_FAMILIES = {socket.AF_INET: "IPv4", socket.AF_INET6: "IPv6"}


def _address_record(family, address, netmask):
    # fe80::1%en0 -> fe80::1
    address = address.split("%", 1)[0]
    try:
        internal = ipaddress.ip_address(address).is_loopback
    except ValueError:
        internal = False
    return {
        "family": family,
        "address": address,
        "netmask": netmask,
        "internal": internal,
    }


def is_routable(addr):
    """Non-loopback, non-internal, non-link-local address."""
    if addr.get("internal"):
        return False
    try:
        ip = ipaddress.ip_address(addr["address"])
    except (KeyError, ValueError):
        return False
    return not (ip.is_loopback or ip.is_link_local or ip.is_unspecified)


def has_routable(addresses, family):
    return any(a.get("family") == family and is_routable(a) for a in addresses or [])


def _sort_key(addr):
    return (addr.get("family") or "", addr.get("address") or "", addr.get("netmask") or "")


class InterfaceDiffer:
    """
    Keeps the previous interface snapshot and reports what changed.

    check_interfaces() is the only call the fast loop needs: it
    snapshots, diffs against the last call, analyses the diff and keeps
    the result on `last_analysis`.
    """

    def __init__(self, vpn_prefixes=None, vpn_keywords=None,
                 critical_keywords=None, platform=None):
        self.vpn_prefixes = tuple(p.lower() for p in (vpn_prefixes or DEFAULT_VPN_PREFIXES))
        self.vpn_keywords = tuple(k.lower() for k in (vpn_keywords or DEFAULT_VPN_KEYWORDS))
        self.critical_keywords = tuple(
            k.lower() for k in (critical_keywords or DEFAULT_CRITICAL_KEYWORDS)
        )
        self.platform = platform or sys.platform
        self.previous = None
        self.last_analysis = None

    # ------------------------------------------------------------
    # ENUMERATION
    # ------------------------------------------------------------

    def snapshot(self):
        """
        Return {name: [address, ...]} for every interface that is up, or
        None when the interface table could not be read at all.
        """
        try:
            addrs = psutil.net_if_addrs()
        except (OSError, RuntimeError) as e:
            logger.log("WARN", f"Interface enumeration failed: {e}")
            return None

        try:
            stats = psutil.net_if_stats()
        except (OSError, RuntimeError):
            stats = {}

        current = {}
        for name, entries in addrs.items():
            st = stats.get(name)
            if st is not None and not st.isup:
                continue
            records = [
                _address_record(_FAMILIES[e.family], e.address, e.netmask)
                for e in entries
                if e.family in _FAMILIES and e.address
            ]
            if records:
                current[name] = sorted(records, key=_sort_key)
        return current

    # ------------------------------------------------------------
    # CLASSIFICATION
    # ------------------------------------------------------------

    def is_vpn_interface(self, name):
        lowered = name.lower()
        if lowered.startswith(self.vpn_prefixes):
            return True
        return any(k in lowered for k in self.vpn_keywords)

    def is_critical_interface(self, name):
        lowered = name.lower()
        return any(k in lowered for k in self.critical_keywords)

    # ------------------------------------------------------------
    # DIFF
    # ------------------------------------------------------------

    def detect_changes(self, current):
        previous = self.previous or {}
        changes = []

        for name, addresses in current.items():
            last = previous.get(name)
            if last is None:
                changes.append({
                    "type": "added",
                    "interface_name": name,
                    "addresses": addresses,
                    "has_routable_ipv4": has_routable(addresses, "IPv4"),
                    "has_routable_ipv6": has_routable(addresses, "IPv6"),
                })
            elif sorted(last, key=_sort_key) != sorted(addresses, key=_sort_key):
                changes.append({
                    "type": "modified",
                    "interface_name": name,
                    "addresses": addresses,
                    "previous_addresses": last,
                    "has_routable_ipv4": has_routable(addresses, "IPv4"),
                    "has_routable_ipv6": has_routable(addresses, "IPv6"),
                })

        for name, last in previous.items():
            if name not in current:
                changes.append({
                    "type": "removed",
                    "interface_name": name,
                    "previous_addresses": last,
                    "has_routable_ipv4": False,
                    "has_routable_ipv6": False,
                })

        return changes

    # ------------------------------------------------------------
    # ANALYSIS
    # ------------------------------------------------------------

    def analyze(self, changes, current):
        significant = False
        vpn_detected = False
        vpn_name = None
        has_non_vpn = False
        critical_removed = False
        vpn_transitions = []

        active_count = 0
        for name, addresses in current.items():
            if not has_routable(addresses, "IPv4"):
                continue
            active_count += 1
            if self.is_vpn_interface(name):
                vpn_detected = True
                vpn_name = vpn_name or name
            else:
                has_non_vpn = True

        for change in changes:
            name = change["interface_name"]
            is_vpn = self.is_vpn_interface(name)
            had_ipv4 = has_routable(change.get("previous_addresses"), "IPv4")

            if change["type"] == "added" and change["has_routable_ipv4"]:
                significant = True
                logger.log("INFO", f"Significant: interface {name} added with IPv4")
                if is_vpn:
                    vpn_transitions.append({"active": True, "interface_name": name})

            elif change["type"] == "removed":
                if had_ipv4:
                    significant = True
                    logger.log("INFO", f"Significant: interface {name} with IPv4 removed")
                    if is_vpn:
                        vpn_transitions.append({"active": False, "interface_name": name})
                if self.platform.startswith("win") and self.is_critical_interface(name):
                    critical_removed = True
                    logger.log("INFO", f"Critical network interface removed: {name}")

            elif change["type"] == "modified" and had_ipv4 != change["has_routable_ipv4"]:
                significant = True
                logger.log("INFO", f"Significant: interface {name} IPv4 state changed")
                if is_vpn:
                    vpn_transitions.append({
                        "active": change["has_routable_ipv4"],
                        "interface_name": name,
                    })

        likely_online = active_count > 0
        if critical_removed:
            significant = True
            if not has_non_vpn:
                likely_online = False
                logger.log("INFO", "Critical interface removed and only VPN remains")

        return {
            "significant_change": significant,
            "likely_online": likely_online,
            "vpn_detected": vpn_detected,
            "vpn_interface_name": vpn_name,
            "active_interface_count": active_count,
            "critical_interface_removed": critical_removed,
            "vpn_transitions": vpn_transitions,
        }

    # ------------------------------------------------------------
    # ENTRY POINT
    # ------------------------------------------------------------

    def check_interfaces(self, current=None):
        """
        Snapshot, diff against the previous call and analyse.

        The first call only establishes the baseline and reports nothing.
        A failed read reports nothing and keeps the previous snapshot.
        """
        if current is None:
            current = self.snapshot()
        if current is None:
            return []

        if self.previous is None:
            self.previous = current
            self.last_analysis = self.analyze([], current)
            return []

        changes = self.detect_changes(current)
        self.last_analysis = self.analyze(changes, current)
        self.previous = current

        if changes:
            logger.log("DEBUG", f"Interface changes: {[(c['type'], c['interface_name']) for c in changes]}")
        return changes
