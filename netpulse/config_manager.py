# NetPulse Module: config_manager.py
# JSON configuration for the connectivity engine, merged over defaults

import copy
import json
import os

from netpulse.logger import logger

CONFIG_PATH = os.environ.get(
    "NETPULSE_CONFIG",
    os.path.join(os.path.expanduser("~"), ".config", "netpulse", "config.json"),
)

DEFAULT_CONFIG = {
    "monitor": {
        "fast_check_interval": 1.0,
        "normal_check_interval": 30.0,
        "debounce_delay": 0.5,
        "vpn_grace_period": 5.0,
        "max_history": 10,
    },
    "probes": {
        "basic_url": "https://www.google.com/generate_204",
        "basic_timeout": 3.0,
        "basic_timeout_windows": 2.0,
        "endpoint_timeout": 3.0,
        "endpoint_timeout_windows": 1.5,
        "endpoints": [
            {"url": "https://www.google.com/generate_204", "weight": 1.0},
            {"url": "https://connectivity-check.ubuntu.com", "weight": 0.8},
            {"url": "http://captive.apple.com/hotspot-detect.html", "weight": 0.8},
            {"url": "http://www.msftconnecttest.com/connecttest.txt", "weight": 0.8},
            {"url": "https://1.1.1.1", "weight": 0.6, "timeout_factor": 0.5},
            {"url": "https://8.8.8.8", "weight": 0.6, "timeout_factor": 0.5},
        ],
        "dns_servers": ["1.1.1.1", "8.8.8.8", "208.67.222.222"],
        "dns_domains": ["google.com", "cloudflare.com", "microsoft.com"],
        "dns_timeout": 5.0,
        "basic_ceiling": 5.0,
        "dns_ceiling": 8.0,
        "endpoints_ceiling": 10.0,
        "overall_ceiling": 10.0,
        "overall_ceiling_windows": 5.0,
    },
    "interfaces": {
        "vpn_prefixes": ["utun", "tun", "tap", "ppp", "wg"],
        "vpn_keywords": ["vpn", "ipsec", "nordlynx", "wireguard"],
        "critical_keywords": ["ethernet", "wi-fi", "wireless"],
    },
    "platform": {
        "vpn_poll_interval": 1.0,
        "vpn_poll_interval_linux": 2.0,
        "wifi_poll_interval": 3.0,
        "adapter_poll_interval": 2.0,
        "watch_poll_interval": 1.0,
        "command_timeout": 5.0,
    },
    "logging": {
        "level": "INFO",
        "max_entries": 500,
    },
}


def _merge(base, override):
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path=None):
    path = path or CONFIG_PATH
    if not os.path.exists(path):
        try:
            save_config(DEFAULT_CONFIG, path)
        except OSError as e:
            logger.log("WARN", f"Could not write default config to {path}: {e}")
        return copy.deepcopy(DEFAULT_CONFIG)
    try:
        with open(path, "r") as f:
            return _merge(DEFAULT_CONFIG, json.load(f))
    except (OSError, ValueError) as e:
        logger.log("ERROR", f"Invalid config {path}, using defaults: {e}")
        return copy.deepcopy(DEFAULT_CONFIG)


def save_config(cfg, path=None):
    path = path or CONFIG_PATH
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        json.dump(cfg, f, indent=4)


def get(section, key, default=None, path=None):
    cfg = load_config(path)
    return cfg.get(section, {}).get(key, default)
