"""Tests for the CLI entry point."""

import json

import pytest
import responses
import yaml
from responses import matchers

from scaleway_sd.cli import main

SERVERS_URL = "http://scw.local/servers"


def _config(tmp_path, **overrides) -> str:
    data = {
        "scaleway": {"organization": "org-1", "token": "secret", "api_url": "http://scw.local"},
        "targets": {"port": 9100},
        "output": {"file": str(tmp_path / "scw.json")},
    }
    data.update(overrides)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(data))
    return str(path)


class TestCLI:
    def test_validate_valid_config(self, tmp_path):
        assert main(["--validate", "-c", _config(tmp_path)]) == 0

    def test_validate_invalid_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"scaleway": {}}))
        assert main(["--validate", "-c", str(path)]) == 1

    def test_missing_config_file(self):
        assert main(["-c", "/nonexistent/config.yaml", "--validate"]) == 1

    @responses.activate
    def test_once_writes_file_sd(self, tmp_path):
        responses.add(responses.GET, SERVERS_URL, json={"servers": [
            {"id": "s1", "private_ip": "10.0.0.1", "state": "running", "tags": ["a", "b"]},
        ]})
        assert main(["-c", _config(tmp_path), "--once"]) == 0
        written = json.loads((tmp_path / "scw.json").read_text())
        assert written[0]["targets"] == ["10.0.0.1:9100"]
        assert written[0]["labels"]["__meta_scaleway_tags"] == ",a,b,"

    @responses.activate
    def test_once_output_override(self, tmp_path):
        responses.add(responses.GET, SERVERS_URL, json={"servers": []})
        out = tmp_path / "other.json"
        assert main(["-c", _config(tmp_path), "--once", "--output-file", str(out)]) == 0
        assert json.loads(out.read_text()) == []

    @responses.activate
    def test_once_failed_poll_returns_error(self, tmp_path):
        responses.add(
            responses.GET, SERVERS_URL, json={"servers": []},
            match=[matchers.query_param_matcher({"per_page": "1", "organization": "org-1"})],
        )
        responses.add(
            responses.GET, SERVERS_URL, status=503,
            match=[matchers.query_param_matcher({"per_page": "100", "organization": "org-1"})],
        )
        assert main(["-c", _config(tmp_path), "--once"]) == 1
        assert not (tmp_path / "scw.json").exists()

    @responses.activate
    def test_rejected_credentials_exit_before_polling(self, tmp_path):
        responses.add(responses.GET, SERVERS_URL, json={"message": "invalid token"}, status=401)
        assert main(["-c", _config(tmp_path), "--once"]) == 1
        assert len(responses.calls) == 1
        assert responses.calls[0].request.params == {"per_page": "1", "organization": "org-1"}
        assert not (tmp_path / "scw.json").exists()

    @responses.activate
    def test_validate_skips_credential_check(self, tmp_path):
        assert main(["--validate", "-c", _config(tmp_path)]) == 0
        assert len(responses.calls) == 0

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "prometheus-scaleway-sd 0.1.0" in capsys.readouterr().out

    def test_validate_bad_interpolated_interval_returns_error(self, tmp_path, monkeypatch):
        monkeypatch.setenv("POLL", "often")
        assert main(["--validate", "-c", _config(tmp_path, polling={"interval_seconds": "${POLL}"})]) == 1
