from __future__ import annotations

import json

import pytest

from netpulse import config_manager
from netpulse.config_manager import DEFAULT_CONFIG, get, load_config, save_config
from netpulse.logger import Logger
from netpulse.modules.network.module import NetworkModule


def test_missing_config_writes_defaults(tmp_path) -> None:
    path = tmp_path / "netpulse" / "config.json"

    cfg = load_config(str(path))

    assert cfg == DEFAULT_CONFIG
    assert json.loads(path.read_text()) == DEFAULT_CONFIG


def test_partial_config_merges_over_defaults(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"monitor": {"debounce_delay": 2.0}, "extra": {"a": 1}}))

    cfg = load_config(str(path))

    assert cfg["monitor"]["debounce_delay"] == 2.0
    assert cfg["monitor"]["normal_check_interval"] == 30.0
    assert cfg["probes"]["dns_servers"] == ["1.1.1.1", "8.8.8.8", "208.67.222.222"]
    assert cfg["extra"] == {"a": 1}


def test_invalid_json_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")

    assert load_config(str(path)) == DEFAULT_CONFIG


def test_loaded_config_is_a_copy(tmp_path) -> None:
    cfg = load_config(str(tmp_path / "c.json"))
    cfg["monitor"]["debounce_delay"] = 99

    assert DEFAULT_CONFIG["monitor"]["debounce_delay"] == 0.5


def test_save_and_get(tmp_path, monkeypatch) -> None:
    path = str(tmp_path / "config.json")
    monkeypatch.setattr(config_manager, "CONFIG_PATH", path)
    cfg = load_config()
    cfg["platform"]["command_timeout"] = 9.0
    save_config(cfg)

    assert get("platform", "command_timeout") == 9.0
    assert get("platform", "missing", "fallback") == "fallback"


def test_network_module_offline_quality_forces_offline() -> None:
    module = NetworkModule()
    module.update({"is_online": True, "network_quality": "good"})
    assert module.read_status()["is_online"] is True

    module.update({"is_online": True, "network_quality": "offline"})
    assert module.read_status()["is_online"] is False


def test_network_module_rejects_unknown_fields() -> None:
    module = NetworkModule()
    with pytest.raises(KeyError):
        module.update({"latency": 5})


def test_network_module_history_is_bounded() -> None:
    module = NetworkModule(max_history=10)
    for i in range(25):
        module.record_change(i % 2 == 0, i % 2 == 1)

    history = module.read_history()
    assert len(history) == 10
    assert history[-1]["is_online"] is False
    assert all(h["duration_in_previous_state"] >= 0 for h in history)


def test_logger_levels_and_bounded_entries(capsys) -> None:
    log = Logger(level="warning", max_entries=3)
    log.log("INFO", "hidden")
    for i in range(5):
        log.log("ERROR", f"e{i}")

    assert log.level == "WARN"
    entries = log.get_logs()
    assert len(entries) == 3
    assert [e.rsplit(" ", 1)[-1] for e in entries] == ["e2", "e3", "e4"]
    assert all("[ERROR]" in e for e in entries)
    assert "hidden" not in capsys.readouterr().err
