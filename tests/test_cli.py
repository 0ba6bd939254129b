import json

import pytest
import uvicorn

from peerhello import cli


def _write_static_config(tmp_path) -> str:
    path = tmp_path / "peerhello.json"
    path.write_text(
        json.dumps(
            {
                "server": {"port": 9001},
                "whois": {
                    "backend": "static",
                    "peers": {"100.64.0.1": {"login_name": "bob", "display_name": ""}},
                },
            }
        ),
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    monkeypatch.delenv("PEERHELLO_CONFIG", raising=False)
    monkeypatch.delenv("PEERHELLO_PORT", raising=False)
    monkeypatch.delenv("PEERHELLO_WHOIS_BACKEND", raising=False)


def test_validate_ok(tmp_path, capsys):
    assert cli.main(["validate", _write_static_config(tmp_path)]) == 0
    assert "Config OK" in capsys.readouterr().out


def test_validate_reports_errors(tmp_path, capsys):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"server": {"port": "not-a-port"}}), encoding="utf-8")
    assert cli.main(["validate", str(path)]) == 1
    assert "Config validation failed" in capsys.readouterr().out


def test_whois_accepted(tmp_path, capsys):
    code = cli.main(["whois", "100.64.0.1:41641", "--config", _write_static_config(tmp_path)])
    result = json.loads(capsys.readouterr().out)
    assert code == 0
    assert result["outcome"] == "accepted"
    assert result["first_initial"] == "b"


def test_whois_rejected(tmp_path, capsys):
    code = cli.main(["whois", "10.9.9.9:1", "--config", _write_static_config(tmp_path)])
    result = json.loads(capsys.readouterr().out)
    assert code == 2
    assert result == {
        "outcome": "rejected",
        "reason": "host_unidentified",
        "message": "failed to identify remote host",
    }


def test_serve_passes_overrides_to_uvicorn(tmp_path, monkeypatch):
    calls = {}

    def _fake_run(app, **kwargs):
        calls["app"] = app
        calls.update(kwargs)

    monkeypatch.setattr(uvicorn, "run", _fake_run)
    code = cli.main(["serve", "--config", _write_static_config(tmp_path), "--port", "9100", "--dev"])

    assert code == 0
    assert calls["port"] == 9100
    assert calls["app"].state.config.server.dev is True
    assert calls["app"].state.config.whois.backend == "static"


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 2
    assert "usage" in capsys.readouterr().out


def test_schema_writes_config_json_schema(tmp_path, capsys):
    out_path = tmp_path / "schemas" / "peerhello.json"

    assert cli.main(["schema", "--output", str(out_path)]) == 0

    schema = json.loads(out_path.read_text(encoding="utf-8"))
    assert set(schema["properties"]) == {"server", "whois", "metrics"}
    assert "JSON Schema generated" in capsys.readouterr().out
