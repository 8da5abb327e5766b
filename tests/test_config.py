from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

import pretense as mod


def _args(*argv: str):
    return mod.build_argparser().parse_args(list(argv))


def test_parse_ports_accepts_comma_separated_with_spaces():
    assert mod.parse_ports("8001, 8002,8003", "PRETENSE_PORTS") == (8001, 8002, 8003)


def test_parse_ports_accepts_list_from_config():
    assert mod.parse_ports([22, "23"], "listen.ports") == (22, 23)


@pytest.mark.parametrize("raw", ["", "80,,81", "80,", "abc", "70000", "-1", "1.5"])
def test_parse_ports_rejects_bad_input(raw):
    with pytest.raises(mod.ConfigError) as info:
        mod.parse_ports(raw, "PRETENSE_PORTS")
    assert "PRETENSE_PORTS" in str(info.value)


def test_parse_port_rejects_bool():
    with pytest.raises(mod.ConfigError):
        mod.parse_port(True, "metrics.port")


def test_validate_ports_rejects_empty_duplicates_and_overlap():
    with pytest.raises(mod.ConfigError):
        mod.validate_ports([], None)
    with pytest.raises(mod.ConfigError) as info:
        mod.validate_ports([8001, 8002, 8001], None)
    assert "8001" in str(info.value)
    with pytest.raises(mod.ConfigError) as info:
        mod.validate_ports([7000], 7000)
    assert "overlaps" in str(info.value)


def test_validate_ports_accepts_disjoint_metrics_port():
    mod.validate_ports([9000, 9001], 9100)


def test_load_settings_from_env():
    env = {"PRETENSE_PORTS": "9000,9001", "PRETENSE_METRICS_PORT": "9100", "PRETENSE_LOG": "debug"}
    s = mod.load_settings(_args(), env)
    assert s.ports == (9000, 9001)
    assert s.metrics_port == 9100
    assert s.log_level == logging.DEBUG
    assert s.log_format == "text"
    assert s.bind_ip == "0.0.0.0"


def test_load_settings_without_ports_mentions_env_var():
    with pytest.raises(mod.ConfigError) as info:
        mod.load_settings(_args(), {})
    assert "PRETENSE_PORTS" in str(info.value)


def test_load_settings_invalid_metrics_port_names_source():
    with pytest.raises(mod.ConfigError) as info:
        mod.load_settings(_args(), {"PRETENSE_PORTS": "9000", "PRETENSE_METRICS_PORT": "nope"})
    assert "PRETENSE_METRICS_PORT" in str(info.value)


def test_load_settings_overlap_is_config_error():
    with pytest.raises(mod.ConfigError):
        mod.load_settings(_args(), {"PRETENSE_PORTS": "7000", "PRETENSE_METRICS_PORT": "7000"})


def test_cli_wins_over_env_and_env_wins_over_file(tmp_path: Path):
    cfg = tmp_path / "pretense.json"
    cfg.write_text(
        """
        // comment line
        {
          listen: { ports: [1000, 1001], backlog: 16, },
          metrics: { port: 1100 },
          logging: { console: { verbosity: "warning", format: "json" } },
        }
        """,
        encoding="utf-8",
    )

    from_file = mod.load_settings(_args("--config", str(cfg)), {})
    assert from_file.ports == (1000, 1001)
    assert from_file.metrics_port == 1100
    assert from_file.backlog == 16
    assert from_file.log_level == logging.WARNING
    assert from_file.log_format == "json"

    env = {"PRETENSE_PORTS": "2000", "PRETENSE_LOG": "error"}
    from_env = mod.load_settings(_args("--config", str(cfg)), env)
    assert from_env.ports == (2000,)
    assert from_env.metrics_port == 1100
    assert from_env.log_level == logging.ERROR

    from_cli = mod.load_settings(
        _args("--config", str(cfg), "--ports", "3000,3001", "--metrics-port", "3100", "--log-format", "text"),
        env,
    )
    assert from_cli.ports == (3000, 3001)
    assert from_cli.metrics_port == 3100
    assert from_cli.log_format == "text"


def test_load_config_reports_missing_and_broken_files(tmp_path: Path):
    with pytest.raises(mod.ConfigError):
        mod.load_config(str(tmp_path / "missing.json"))

    broken = tmp_path / "broken.json"
    broken.write_text("{ listen: [1, 2 ", encoding="utf-8")
    with pytest.raises(mod.ConfigError):
        mod.load_config(str(broken))


def test_example_config_loads():
    path = Path(__file__).resolve().parents[1] / "pretense.example.json"
    s = mod.load_settings(_args("--config", str(path)), {})
    assert s.ports == (22, 23, 2323, 3389, 5900)
    assert s.metrics_port == 9100
    assert s.log_format == "json"


def test_invalid_log_format_from_env():
    with pytest.raises(mod.ConfigError):
        mod.load_settings(_args(), {"PRETENSE_PORTS": "9000", "PRETENSE_LOG_FORMAT": "xml"})


def test_json_formatter_flattens_event_payload():
    record = logging.LogRecord("pretense", logging.INFO, __file__, 1, "%s %s", ("connection.received", {}), None)
    record.event = "connection.received"
    record.payload = {"local_port": 9000, "remote_ip": "127.0.0.1", "remote_port": 50000}

    out = json.loads(mod.JsonFormatter().format(record))
    assert out["event"] == "connection.received"
    assert out["level"] == "info"
    assert out["local_port"] == 9000
    assert out["remote_ip"] == "127.0.0.1"


def test_setup_logging_uses_settings():
    s = mod.Settings(ports=(9000,), log_level=logging.WARNING, log_format="json")
    log = mod.setup_logging(s)
    assert log.propagate is False
    assert len(log.handlers) == 1
    assert log.handlers[0].level == logging.WARNING
    assert isinstance(log.handlers[0].formatter, mod.JsonFormatter)


def test_main_exits_with_config_status_on_overlap(monkeypatch):
    monkeypatch.delenv("PRETENSE_PORTS", raising=False)
    monkeypatch.delenv("PRETENSE_METRICS_PORT", raising=False)
    with pytest.raises(SystemExit) as info:
        mod.main(["--ports", "7000", "--metrics-port", "7000"])
    assert info.value.code == mod.EXIT_CONFIG
