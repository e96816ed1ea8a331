from __future__ import annotations

import io
import json

from netpulse import main as main_mod
from netpulse.main import ConsoleBridge, parse_args


def test_console_bridge_writes_json_lines(monitor) -> None:
    stream = io.StringIO()
    ConsoleBridge(monitor, stream)

    monitor.handle_vpn_state_change(True, "wg0")

    line = json.loads(stream.getvalue().splitlines()[0])
    assert line["event"] == "vpn_change"
    assert line["data"]["interface_name"] == "wg0"
    assert line["data"]["state"]["vpn_active"] is True


def test_parse_args() -> None:
    args = parse_args(["--once", "--log-level", "DEBUG", "--config", "/tmp/x.json"])
    assert args.once is True
    assert args.log_level == "DEBUG"
    assert args.config == "/tmp/x.json"


def test_once_exit_code_follows_verdict(monkeypatch, tmp_path, capsys) -> None:
    verdicts = iter([{"is_online": True, "network_quality": "good"},
                     {"is_online": False, "network_quality": "offline"}])
    monkeypatch.setattr(main_mod.NetPulseEngine, "check_once", lambda self: next(verdicts))
    config = str(tmp_path / "config.json")

    assert main_mod.main(["--once", "--config", config]) == 0
    assert json.loads(capsys.readouterr().out)["network_quality"] == "good"
    assert main_mod.main(["--once", "--config", config]) == 1
