#!/usr/bin/env python3
# NetPulse connectivity probes
# Basic HEAD check, multi-resolver DNS check and weighted multi-endpoint check

import sys
import time
from concurrent.futures import ThreadPoolExecutor, wait

import dns.exception
import dns.resolver
import requests

from netpulse.config_manager import DEFAULT_CONFIG
from netpulse.logger import logger

QUALITY_OFFLINE = "offline"
QUALITY_POOR = "poor"
QUALITY_FAIR = "fair"
QUALITY_GOOD = "good"
QUALITY_EXCELLENT = "excellent"

QUALITY_LEVELS = (QUALITY_OFFLINE, QUALITY_POOR, QUALITY_FAIR, QUALITY_GOOD, QUALITY_EXCELLENT)

# multi-endpoint success threshold; a weighted minority still counts as online
SUCCESS_THRESHOLD = 0.3


def calculate_quality(result):
    """Map a multi-endpoint result to one of QUALITY_LEVELS."""
    if not result or not result.get("success"):
        return QUALITY_OFFLINE

    confidence = result.get("confidence") or 0.0
    latency = result.get("avg_response_time")

    if latency is not None:
        if confidence > 0.8 and latency < 100:
            return QUALITY_EXCELLENT
        if confidence > 0.6 and latency < 300:
            return QUALITY_GOOD
        if confidence > 0.4 and latency < 1000:
            return QUALITY_FAIR
    return QUALITY_POOR


def failed(reason):
    return {"success": False, "confidence": 0.0, "response_time_ms": None, "error": reason}


class ConnectivityProbes:
    """
    Provides:
        - basic_check()
        - dns_check()
        - multi_endpoint_check()
        - comprehensive_check()

    Every check is bounded by its own timeout and returns a result dict;
    none of them raise. Requests run on a shared thread pool so the
    individual probes are truly concurrent.
    """

    def __init__(self, config=None, platform=None, session=None, max_workers=24):
        cfg = dict(DEFAULT_CONFIG["probes"])
        cfg.update(config or {})
        self.cfg = cfg
        self.platform = platform or sys.platform
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "netpulse/1.0")
        self.pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="netpulse-probe")
        # comprehensive_check submits its three checks to a separate pool
        # so they never wait behind their own sub-requests
        self.outer = ThreadPoolExecutor(max_workers=6, thread_name_prefix="netpulse-check")

    @property
    def is_windows(self):
        return self.platform.startswith("win")

    def _pick(self, key):
        if self.is_windows and f"{key}_windows" in self.cfg:
            return self.cfg[f"{key}_windows"]
        return self.cfg[key]

    # ------------------------------------------------------------
    # SINGLE REQUEST
    # ------------------------------------------------------------

    def _head(self, url, timeout):
        start = time.monotonic()
        try:
            resp = self.session.head(url, timeout=timeout, allow_redirects=False)
            elapsed = (time.monotonic() - start) * 1000.0
            resp.close()
            return {
                "url": url,
                "success": True,
                "status_code": resp.status_code,
                "response_time_ms": elapsed,
                "error": None,
            }
        except requests.RequestException as e:
            return {
                "url": url,
                "success": False,
                "status_code": None,
                "response_time_ms": (time.monotonic() - start) * 1000.0,
                "error": str(e),
            }

    # ------------------------------------------------------------
    # BASIC
    # ------------------------------------------------------------

    def basic_check(self):
        """One HEAD request to a low-latency endpoint; any response counts."""
        url = self.cfg["basic_url"]
        result = self._head(url, self._pick("basic_timeout"))
        if not result["success"]:
            logger.log("DEBUG", f"Basic connectivity check failed: {result['error']}")
        return {
            "success": result["success"],
            "confidence": 1.0 if result["success"] else 0.0,
            "response_time_ms": result["response_time_ms"] if result["success"] else None,
            "status_code": result["status_code"],
            "url": url,
            "error": result["error"],
        }

    # ------------------------------------------------------------
    # DNS
    # ------------------------------------------------------------

    def _resolve(self, server, domain, lifetime):
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [server]
        resolver.lifetime = lifetime
        resolver.timeout = lifetime
        start = time.monotonic()
        try:
            resolver.resolve(domain, "A")
            return {
                "success": True,
                "server": server,
                "domain": domain,
                "response_time_ms": (time.monotonic() - start) * 1000.0,
            }
        except (dns.exception.DNSException, OSError) as e:
            logger.log("DEBUG", f"DNS resolution failed for {domain} via {server}: {e}")
            return {"success": False, "server": server, "domain": domain, "error": str(e)}

    def dns_check(self):
        """Resolve every domain against every resolver, concurrently."""
        lifetime = self.cfg["dns_timeout"]
        combos = [(s, d) for s in self.cfg["dns_servers"] for d in self.cfg["dns_domains"]]
        if not combos:
            return failed("no resolvers configured")

        futures = [self.pool.submit(self._resolve, s, d, lifetime) for s, d in combos]
        done, _ = wait(futures, timeout=lifetime + 1)

        working = []
        times = []
        for fut in futures:
            if fut not in done:
                continue
            try:
                res = fut.result()
            except Exception as e:
                logger.log("DEBUG", f"DNS probe error: {e}")
                continue
            if res["success"]:
                working.append({"server": res["server"], "domain": res["domain"]})
                times.append(res["response_time_ms"])

        failures = len(combos) - len(working)
        if failures:
            logger.log("DEBUG", f"DNS check: {failures}/{len(combos)} checks failed")

        rate = len(working) / len(combos)
        return {
            "success": bool(working),
            "confidence": rate,
            "response_time_ms": sum(times) / len(times) if times else None,
            "success_rate": rate,
            "working_combinations": working,
            "total_combinations": len(combos),
        }

    # ------------------------------------------------------------
    # MULTI-ENDPOINT
    # ------------------------------------------------------------

    def multi_endpoint_check(self):
        """Weighted reachability across heterogeneous endpoints."""
        base = self._pick("endpoint_timeout")
        endpoints = [
            {
                "url": ep["url"],
                "weight": float(ep.get("weight", 1.0)),
                "timeout": float(ep.get("timeout", base * ep.get("timeout_factor", 1.0))),
            }
            for ep in self.cfg["endpoints"]
        ]
        if not endpoints:
            return failed("no endpoints configured")

        futures = [self.pool.submit(self._head, ep["url"], ep["timeout"]) for ep in endpoints]
        done, _ = wait(futures, timeout=max(ep["timeout"] for ep in endpoints) + 1)

        total_weight = 0.0
        success_weight = 0.0
        times = []
        results = []
        for ep, fut in zip(endpoints, futures):
            total_weight += ep["weight"]
            res = None
            if fut in done:
                try:
                    res = fut.result()
                except Exception as e:
                    res = {"url": ep["url"], "success": False, "status_code": None,
                           "response_time_ms": None, "error": str(e)}
            if res is None:
                res = {"url": ep["url"], "success": False, "status_code": None,
                       "response_time_ms": None, "error": "timeout"}
            results.append(res)

            if res["success"]:
                success_weight += ep["weight"]
                if res["response_time_ms"] is not None:
                    times.append(res["response_time_ms"])
            else:
                logger.log("DEBUG", f"Endpoint check failed for {ep['url']}: {res['error']}")

        confidence = success_weight / total_weight if total_weight > 0 else 0.0
        confidence = min(1.0, max(0.0, confidence))
        avg = sum(times) / len(times) if times else None
        ok = [r["url"] for r in results if r["success"]]

        if len(ok) < len(endpoints):
            logger.log("DEBUG", f"Endpoint checks: {len(ok)}/{len(endpoints)} successful")

        return {
            "success": confidence > SUCCESS_THRESHOLD,
            "confidence": confidence,
            "response_time_ms": avg,
            "avg_response_time": avg,
            "successful_endpoints": len(ok),
            "total_endpoints": len(endpoints),
            "responsive": ok,
            "results": results,
        }

    # ------------------------------------------------------------
    # COMPREHENSIVE
    # ------------------------------------------------------------

    def _guarded(self, fn):
        try:
            return fn()
        except Exception as e:
            logger.log("ERROR", f"Probe {fn.__name__} raised: {e}")
            return failed(str(e))

    def comprehensive_check(self):
        """
        Run basic, DNS and multi-endpoint checks concurrently.

        Each probe has its own ceiling and the whole run has an overall
        one; anything unfinished when its ceiling passes is reported as
        failed instead of blocking the caller.
        """
        plan = {
            "basic": (self.basic_check, self.cfg["basic_ceiling"]),
            "dns": (self.dns_check, self.cfg["dns_ceiling"]),
            "endpoints": (self.multi_endpoint_check, self.cfg["endpoints_ceiling"]),
        }
        overall = self._pick("overall_ceiling")
        started = time.monotonic()

        futures = {name: self.outer.submit(self._guarded, fn) for name, (fn, _) in plan.items()}

        results = {}
        for name, fut in futures.items():
            ceiling = min(plan[name][1], overall)
            remaining = max(0.0, ceiling - (time.monotonic() - started))
            done, _ = wait([fut], timeout=remaining)
            if fut in done:
                results[name] = fut.result()
            else:
                logger.log("WARN", f"{name} probe exceeded {ceiling}s, treating as failed")
                results[name] = failed("timeout")

        logger.log(
            "INFO",
            "Comprehensive network check complete: "
            f"basic={results['basic']['success']} "
            f"dns={results['dns']['success']} ({results['dns'].get('success_rate', 0) or 0:.2f}) "
            f"endpoints={results['endpoints']['success']} "
            f"(confidence={results['endpoints'].get('confidence') or 0:.2f}, "
            f"{results['endpoints'].get('successful_endpoints', 0)}/"
            f"{results['endpoints'].get('total_endpoints', 0)})",
        )
        return results

    # ------------------------------------------------------------
    def close(self):
        self.pool.shutdown(wait=False, cancel_futures=True)
        self.outer.shutdown(wait=False, cancel_futures=True)
        self.session.close()
