#!/usr/bin/env python3
# NetPulse Network Monitor
# Owns the canonical network state, schedules probes, debounces raw
# change signals and publishes state events.

import sys
import threading
import time

from netpulse.adapters import create_adapter
from netpulse.config_manager import load_config
from netpulse.engine.interfaces import InterfaceDiffer
from netpulse.engine.probes import (
    QUALITY_OFFLINE,
    QUALITY_POOR,
    ConnectivityProbes,
    calculate_quality,
)
from netpulse.ipc.router import IPCRouter
from netpulse.logger import logger
from netpulse.modules.network.module import NetworkModule
from netpulse.workers.connectivity_worker import ConnectivityWorker
from netpulse.workers.interface_worker import InterfaceWorker

EVENT_STATUS_CHANGE = "status_change"
EVENT_NETWORK_CHANGE = "network_change"
EVENT_VPN_CHANGE = "vpn_change"
EVENT_CONNECTIVITY_CHANGE = "connectivity_change"


def _clamp(value):
    try:
        value = float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0
    return min(1.0, max(0.0, value))


class NetworkMonitor:
    """
    The single writer of NetworkState.

    Inputs:
      - InterfaceWorker        -> check_network_interfaces()   (~1s)
      - ConnectivityWorker     -> perform_connectivity_check() (~30s)
      - platform adapter       -> handle_platform_network_change(), vpn_state
      - callers                -> force_check()

    Outputs (via self.router):
      - status_change          {was_online, is_online, state}
      - network_change         {type, changes, analysis, source, state, check_result}
      - vpn_change             {active, was_active, interface_name, name, state}
      - connectivity_change    {was_online, is_online, results, state}

    Every payload carries a deep-copied state snapshot. Comprehensive
    and connectivity checks are serialized, so state is only ever
    written by one check at a time; their events are published once the
    check lock is released.
    """

    def __init__(self, config=None, platform=None, probes=None, differ=None,
                 adapter_factory=None, router=None):
        cfg = config or load_config()
        mon = cfg["monitor"]
        ifaces = cfg.get("interfaces", {})

        self.config = cfg
        self.platform = platform or sys.platform
        self.fast_check_interval = float(mon["fast_check_interval"])
        self.normal_check_interval = float(mon["normal_check_interval"])
        self.debounce_delay = float(mon["debounce_delay"])
        self.vpn_grace_period = float(mon["vpn_grace_period"])

        self.router = router or IPCRouter()
        self.network = NetworkModule(max_history=int(mon["max_history"]))
        self.probes = probes or ConnectivityProbes(cfg["probes"], platform=self.platform)
        self.differ = differ or InterfaceDiffer(
            vpn_prefixes=ifaces.get("vpn_prefixes"),
            vpn_keywords=ifaces.get("vpn_keywords"),
            critical_keywords=ifaces.get("critical_keywords"),
            platform=self.platform,
        )
        self.adapter_factory = adapter_factory or create_adapter
        self.adapter = None

        self.workers = []
        self.threads = []

        self._check_lock = threading.Lock()
        self._timer_lock = threading.Lock()
        self._debounce_timer = None
        self._pending_change = None

        self.started_at = time.monotonic()
        self.initialized = False
        self.destroyed = False
        self.check_count = 0

    # ------------------------------------------------------------
    # SUBSCRIPTIONS
    # ------------------------------------------------------------

    def on(self, event_name, callback):
        self.router.subscribe(event_name, callback)

    def off(self, event_name, callback):
        self.router.unsubscribe(event_name, callback)

    def _publish(self, event_name, payload):
        if self.destroyed:
            return
        self.router.publish(event_name, payload)

    # ------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------

    def initialize(self):
        """
        Take a baseline (interfaces + one comprehensive check), then start
        the polling loops and the platform adapter. Returns the state.
        """
        if self.initialized:
            return self.get_state()

        logger.log("INFO", "Initializing comprehensive network monitoring...")
        self.started_at = time.monotonic()

        self.adapter = self._create_adapter()

        try:
            self.differ.check_interfaces()
            self.network.update({"interfaces": self.differ.previous or {}})
        except Exception as e:
            logger.log("ERROR", f"Initial interface snapshot failed: {e}")

        self.perform_comprehensive_check()
        self.start_monitoring()
        self.initialized = True

        return self.get_state()

    def _create_adapter(self):
        try:
            adapter = self.adapter_factory(self.platform, self.config.get("platform", {}))
            logger.log("INFO", f"Using platform adapter: {adapter.name}")
            return adapter
        except Exception as e:
            logger.log("ERROR", f"Failed to create platform adapter: {e}")
            return None

    def start_monitoring(self):
        if self.destroyed:
            return

        self.workers = [
            InterfaceWorker(self, self.fast_check_interval),
            ConnectivityWorker(self, self.normal_check_interval),
        ]
        for worker in self.workers:
            t = threading.Thread(target=worker.start, name=f"netpulse-{type(worker).__name__}",
                                 daemon=True)
            t.start()
            self.threads.append((worker, t))

        if self.adapter is not None:
            try:
                self.adapter.on("network_change", self.handle_platform_network_change)
                self.adapter.on("vpn_state", self._on_adapter_vpn_state)
                self.adapter.start()
            except Exception as e:
                logger.log("ERROR", f"Error setting up platform adapter: {e}")
                self._stop_adapter()

        logger.log("INFO", "Monitoring started")

    def _stop_adapter(self):
        if self.adapter is None:
            return
        try:
            self.adapter.stop()
            self.adapter.remove_all_listeners()
        except Exception as e:
            logger.log("ERROR", f"Error stopping platform adapter: {e}")
        self.adapter = None

    def destroy(self):
        if self.destroyed:
            return
        logger.log("INFO", "Shutting down network monitor")
        self.destroyed = True

        with self._timer_lock:
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
            self._debounce_timer = None
            self._pending_change = None

        for worker, _ in self.threads:
            worker.stop()
        current = threading.current_thread()
        for _, thread in self.threads:
            if thread is not current:
                thread.join(timeout=2)
        self.threads = []
        self.workers = []

        self._stop_adapter()
        self.probes.close()
        self.network.clear_history()
        self.router.clear()

    # ------------------------------------------------------------
    # STATE ACCESS
    # ------------------------------------------------------------

    def get_state(self):
        return self.network.read_status()

    def get_history(self):
        return self.network.read_history()

    # ------------------------------------------------------------
    # INTERFACE CHANGES
    # ------------------------------------------------------------

    def check_network_interfaces(self):
        if self.destroyed:
            return []

        changes = self.differ.check_interfaces()
        if not changes:
            return changes

        analysis = self.differ.last_analysis or {}
        self.network.update({"interfaces": self.differ.previous or {}})

        for transition in analysis.get("vpn_transitions", []):
            logger.log(
                "INFO",
                f"VPN interface {transition['interface_name']} "
                f"{'connected' if transition['active'] else 'disconnected'}",
            )
            self.handle_vpn_state_change(
                transition["active"], transition["interface_name"], source="interface"
            )

        if analysis.get("significant_change"):
            self.handle_network_change({
                "type": "interface",
                "changes": changes,
                "analysis": analysis,
            })
        return changes

    # ------------------------------------------------------------
    # DEBOUNCED RE-EVALUATION
    # ------------------------------------------------------------

    def handle_network_change(self, data):
        """
        Restart the single pending debounce timer; when it fires, one
        comprehensive check runs for the whole burst of signals.
        """
        if self.destroyed:
            return

        logger.log(
            "INFO",
            f"Handling network change: type={data.get('type')} "
            f"changes={len(data.get('changes') or [])}",
        )

        analysis = data.get("analysis") or {}
        if (self.platform.startswith("win") and analysis.get("critical_interface_removed")
                and not analysis.get("likely_online", True)):
            self._go_offline_now(data)

        with self._timer_lock:
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()

            pending = self._pending_change
            if pending is not None:
                merged = list(pending.get("changes") or []) + list(data.get("changes") or [])
                data = dict(data, changes=merged)
            self._pending_change = data

            timer = threading.Timer(self.debounce_delay, self._run_debounced_check)
            timer.daemon = True
            self._debounce_timer = timer
            timer.start()

    def _go_offline_now(self, data):
        """
        Windows: the last physical adapter went away and only tunnels are
        left. Report offline at once; the debounced check confirms later.
        """
        logger.log("INFO", "Critical interface removed with no other connectivity, going offline")

        with self.network.lock:
            was_online = self.network.state["is_online"]
            self.network.update({
                "is_online": False,
                "network_quality": QUALITY_OFFLINE,
                "confidence": 0.0,
            })
            if was_online:
                self.network.record_change(was_online, False)
            snapshot = self.network.read_status()

        if was_online:
            self._publish(EVENT_STATUS_CHANGE, {
                "was_online": was_online,
                "is_online": False,
                "state": snapshot,
            })

        payload = dict(data)
        payload.setdefault("changes", [])
        payload.setdefault("source", "interface")
        payload["state"] = snapshot
        self._publish(EVENT_NETWORK_CHANGE, payload)

    def _run_debounced_check(self):
        with self._timer_lock:
            if self.destroyed or self._debounce_timer is not threading.current_thread():
                return
            data = self._pending_change or {}
            self._debounce_timer = None
            self._pending_change = None

        logger.log("INFO", "Performing comprehensive check after network change...")
        state = self.perform_comprehensive_check()
        if self.destroyed:
            return

        payload = dict(data)
        payload.setdefault("changes", [])
        payload.setdefault("source", "interface")
        payload["state"] = state
        payload["check_result"] = {
            "is_online": state["is_online"],
            "confidence": state["confidence"],
            "network_quality": state["network_quality"],
        }
        self._publish(EVENT_NETWORK_CHANGE, payload)

    def handle_platform_network_change(self, data):
        logger.log("DEBUG", f"Platform network change: {data}")
        payload = dict(data or {})
        payload["source"] = "platform"
        self.handle_network_change(payload)

    # ------------------------------------------------------------
    # CHECKS
    # ------------------------------------------------------------

    def _publish_all(self, pending):
        for event_name, payload in pending:
            self._publish(event_name, payload)

    def perform_comprehensive_check(self):
        if self.destroyed:
            return self.get_state()

        # events go out after the lock is released; a subscriber may
        # call force_check() from its handler
        with self._check_lock:
            try:
                results = self.probes.comprehensive_check()
            except Exception as e:
                logger.log("ERROR", f"Comprehensive check failed: {e}")
                return self.get_state()

            if self.destroyed:
                logger.log("DEBUG", "Discarding check results, monitor destroyed")
                return self.get_state()

            self.check_count += 1
            snapshot, pending = self._merge_results(results)

        self._publish_all(pending)
        return snapshot

    def update_state_from_results(self, results):
        """
        Merge a comprehensive result set into the canonical state and
        emit status_change if, and only if, is_online flipped.
        """
        snapshot, pending = self._merge_results(results)
        self._publish_all(pending)
        return snapshot

    def _merge_results(self, results):
        """Apply results to the state; returns (snapshot, events to publish)."""
        try:
            basic = results.get("basic") or {}
            endpoints = results.get("endpoints") or {}

            is_online = bool(basic.get("success")) or bool(endpoints.get("success"))
            quality = calculate_quality(endpoints)
            if not is_online:
                quality = QUALITY_OFFLINE
            elif quality == QUALITY_OFFLINE:
                # basic check alone proved connectivity
                quality = QUALITY_POOR

            with self.network.lock:
                previous = self.network.state
                was_online = previous["is_online"]
                failures = 0 if is_online else previous["consecutive_failures"] + 1

                self.network.update({
                    "is_online": is_online,
                    "confidence": _clamp(endpoints.get("confidence")),
                    "network_quality": quality,
                    "consecutive_failures": failures,
                    "last_check": time.time(),
                })

                changed = was_online != is_online
                if changed:
                    self.network.record_change(was_online, is_online)
                snapshot = self.network.read_status()

            logger.log(
                "DEBUG",
                f"Network state determination: basic={basic.get('success')} "
                f"endpoints={endpoints.get('success')} online={is_online} "
                f"quality={quality} confidence={snapshot['confidence']:.2f}",
            )

            if not changed:
                return snapshot, []

            logger.log(
                "INFO",
                f"Network status change detected: "
                f"{'online' if was_online else 'offline'} -> "
                f"{'online' if is_online else 'offline'}",
            )
            return snapshot, [(EVENT_STATUS_CHANGE, {
                "was_online": was_online,
                "is_online": is_online,
                "state": snapshot,
            })]

        except Exception as e:
            logger.log("ERROR", f"State update failed, keeping last known state: {e}")
            return self.get_state(), []

    def perform_connectivity_check(self):
        """Periodic multi-endpoint check; lighter than the comprehensive one."""
        if self.destroyed:
            return None

        with self._check_lock:
            try:
                results = self.probes.multi_endpoint_check()
            except Exception as e:
                logger.log("ERROR", f"Connectivity check error: {e}")
                return None

            if self.destroyed:
                return None

            try:
                is_online = bool(results.get("success"))
                with self.network.lock:
                    was_online = self.network.state["is_online"]
                    changed = is_online != was_online
                    updates = {
                        "confidence": _clamp(results.get("confidence")),
                        "network_quality": calculate_quality(results),
                        "last_check": time.time(),
                    }
                    if changed:
                        updates["is_online"] = is_online
                        updates["consecutive_failures"] = (
                            0 if is_online else self.network.state["consecutive_failures"] + 1
                        )
                    self.network.update(updates)
                    if changed:
                        self.network.record_change(was_online, is_online)
                    snapshot = self.network.read_status()
            except Exception as e:
                logger.log("ERROR", f"Connectivity state update failed: {e}")
                return None

        if changed:
            logger.log(
                "INFO",
                f"Connectivity changed: {'online' if was_online else 'offline'} -> "
                f"{'online' if is_online else 'offline'}",
            )
            self._publish_all([
                (EVENT_STATUS_CHANGE, {
                    "was_online": was_online,
                    "is_online": is_online,
                    "state": snapshot,
                }),
                (EVENT_CONNECTIVITY_CHANGE, {
                    "was_online": was_online,
                    "is_online": is_online,
                    "results": results,
                    "state": snapshot,
                }),
            ])
        return snapshot

    def force_check(self):
        logger.log("INFO", "Force check requested")
        return self.perform_comprehensive_check()

    # ------------------------------------------------------------
    # VPN
    # ------------------------------------------------------------

    def _on_adapter_vpn_state(self, data):
        data = data or {}
        self.handle_vpn_state_change(
            bool(data.get("active")),
            data.get("interface_name"),
            name=data.get("name"),
            source="platform",
        )

    def handle_vpn_state_change(self, active, interface_name=None, name=None, source="platform"):
        """
        Report a VPN transition. A platform "disconnected" inside the
        startup grace window is ignored; adapters come up in arbitrary
        order and their first negative sample means nothing. A loss seen
        by the interface differencer is always honoured.
        """
        if self.destroyed:
            return

        in_grace = time.monotonic() - self.started_at < self.vpn_grace_period
        if not active and source != "interface" and in_grace:
            logger.log("DEBUG", "Ignoring VPN disconnect signal during initialization phase")
            return

        with self.network.lock:
            was_active = self.network.state["vpn_active"]
            self.network.update({
                "vpn_active": active,
                "vpn_interface_name": (interface_name or self.network.state["vpn_interface_name"])
                if active else None,
            })
            snapshot = self.network.read_status()

        if was_active == active:
            return

        logger.log(
            "INFO",
            f"VPN state changed: {'connected' if active else 'disconnected'}"
            f"{f' ({interface_name})' if interface_name else ''}",
        )
        self._publish(EVENT_VPN_CHANGE, {
            "active": active,
            "was_active": was_active,
            "interface_name": interface_name,
            "name": name,
            "state": snapshot,
        })

        # tunnels often change routing before the differencer sees new addresses
        t = threading.Thread(target=self.perform_comprehensive_check,
                             name="netpulse-vpn-recheck", daemon=True)
        t.start()
