"""
Tests for the command line entry point.
"""
import io

import pytest
from fastapi import FastAPI

from skproxy import cli
from skproxy.config import get_config


@pytest.fixture
def uvicorn_calls(monkeypatch):
    """Replace uvicorn.run so no socket is ever bound."""
    calls = []

    def fake_run(app, **kwargs):
        calls.append((app, kwargs))

    monkeypatch.setattr(cli.uvicorn, "run", fake_run)
    return calls


class TestMain:
    """Tests for cli.main."""

    def test_no_secret_exits_nonzero_without_serving(self, clean_env, uvicorn_calls):
        exit_code = cli.main(["--target", "https://api.example.com"])

        assert exit_code != 0
        assert uvicorn_calls == []

    def test_no_target_exits_nonzero_without_serving(self, clean_env, uvicorn_calls):
        exit_code = cli.main(["--sk", "abc"])

        assert exit_code == 1
        assert uvicorn_calls == []

    def test_invalid_target_exits_nonzero(self, clean_env, uvicorn_calls):
        assert cli.main(["--target", "not a url", "--sk", "abc"]) == 1
        assert uvicorn_calls == []

    def test_unreadable_secret_file_exits_nonzero(self, clean_env, uvicorn_calls):
        exit_code = cli.main(["--target", "https://api.example.com", "--sk-file", str(clean_env / "missing")])

        assert exit_code == 1
        assert uvicorn_calls == []

    def test_invalid_env_value_exits_nonzero(self, clean_env, uvicorn_calls, monkeypatch):
        monkeypatch.setenv("SKPROXY_PORT", "not-a-port")

        assert cli.main(["--target", "https://api.example.com", "--sk", "abc"]) == 1
        assert uvicorn_calls == []

    def test_serves_on_default_address(self, clean_env, uvicorn_calls):
        exit_code = cli.main(["--target", "https://api.example.com", "--sk", "abc"])

        assert exit_code == 0
        app, kwargs = uvicorn_calls[0]
        assert isinstance(app, FastAPI)
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 8080
        assert app.state.proxy.config.secret == "abc"

    def test_flags_override_environment(self, clean_env, uvicorn_calls, monkeypatch):
        monkeypatch.setenv("SKPROXY_PORT", "9000")
        monkeypatch.setenv("SKPROXY_TARGET", "https://env.example.com")
        monkeypatch.setenv("SKPROXY_SK", "from-env")

        cli.main(["--port", "9100", "--bind", "0.0.0.0", "--sk", "from-flag"])

        app, kwargs = uvicorn_calls[0]
        assert kwargs["port"] == 9100
        assert kwargs["host"] == "0.0.0.0"
        assert app.state.proxy.config.secret == "from-flag"
        assert app.state.proxy.config.target_url.host == "env.example.com"

    def test_secret_from_stdin(self, clean_env, uvicorn_calls):
        exit_code = cli.main(
            ["--target", "https://api.example.com", "--sk-stdin"],
            stdin=io.StringIO("sk-from-stdin\n"),
        )

        assert exit_code == 0
        app, _ = uvicorn_calls[0]
        assert app.state.proxy.config.secret == "sk-from-stdin"

    def test_secret_from_file(self, clean_env, uvicorn_calls):
        key_file = clean_env / "key.txt"
        key_file.write_text("sk-from-file\n")

        cli.main(["--target", "https://api.example.com", "--sk-file", str(key_file)])

        app, _ = uvicorn_calls[0]
        assert app.state.proxy.config.secret == "sk-from-file"

    def test_invalid_log_level_exits_nonzero(self, clean_env, uvicorn_calls):
        exit_code = cli.main(["--target", "https://api.example.com", "--sk", "abc", "--log-level", "LOUD"])

        assert exit_code == 1
        assert uvicorn_calls == []


class TestLoadSettings:
    """Tests for cli.load_settings."""

    def test_without_flags_uses_cached_environment_config(self, clean_env, monkeypatch):
        monkeypatch.setenv("SKPROXY_TARGET", "https://env.example.com")
        args = cli.build_parser().parse_args([])

        settings = cli.load_settings(args)

        assert settings is get_config()
        assert settings.target == "https://env.example.com"

    def test_flags_build_fresh_config(self, clean_env):
        args = cli.build_parser().parse_args(["--port", "9100"])

        settings = cli.load_settings(args)

        assert settings is not get_config()
        assert settings.port == 9100

    def test_env_only_startup_serves(self, clean_env, uvicorn_calls, monkeypatch):
        monkeypatch.setenv("SKPROXY_TARGET", "https://env.example.com")
        monkeypatch.setenv("SKPROXY_SK", "from-env")

        assert cli.main([]) == 0
        app, _ = uvicorn_calls[0]
        assert app.state.proxy.config.secret == "from-env"
