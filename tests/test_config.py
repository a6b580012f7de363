"""Tests for the configuration helpers."""

from __future__ import annotations

import importlib
import os
import sys
from pathlib import Path

import pytest

MODULE_NAME = "ledcontroller.unifi.config"

_MANAGED_VARIABLES = (
    "UNIFI_BASE_URL",
    "UNIFI_SITE",
    "UNIFI_USERNAME",
    "UNIFI_PASSWORD",
    "UNIFI_ACCEPT_INVALID_CERTS",
    "LEDCTL_DATA_DIR",
    "LEDCTL_TIMEZONE",
    "LEDCTL_REFRESH_DELAY",
    "LEDCTL_LOG_FILE",
    "LEDCTL_LOG_LEVEL",
)


def _reload_config(
    monkeypatch: pytest.MonkeyPatch, env_file: Path, *, preserve_env: bool = False
) -> object:
    monkeypatch.setenv("LEDCTL_ENV_FILE", str(env_file))
    for name in _MANAGED_VARIABLES:
        # Values loaded from the .env file must not leak into later tests.
        if preserve_env and name in os.environ:
            monkeypatch.setenv(name, os.environ[name])
        else:
            monkeypatch.setenv(name, "")
            monkeypatch.delenv(name)
    monkeypatch.delitem(sys.modules, MODULE_NAME, raising=False)
    return importlib.import_module(MODULE_NAME)


def test_settings_loaded_from_env_file(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "UNIFI_BASE_URL=https://10.0.0.1\n"
        "UNIFI_USERNAME=admin\n"
        'UNIFI_PASSWORD="s3cret"\n'
        "UNIFI_ACCEPT_INVALID_CERTS=true\n"
        f"LEDCTL_DATA_DIR={tmp_path / 'data'}\n",
        encoding="utf-8",
    )

    config = _reload_config(monkeypatch, env_file)

    assert config.settings.unifi_base_url == "https://10.0.0.1"
    assert config.settings.unifi_site == "default"
    assert config.settings.unifi_username == "admin"
    assert config.settings.unifi_password == "s3cret"
    assert config.settings.accept_invalid_certificates is True
    assert config.settings.data_dir == tmp_path / "data"


def test_environment_variable_overrides_env_file(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "UNIFI_SITE=file-site\nUNIFI_BASE_URL=https://controller\n",
        encoding="utf-8",
    )

    for name in _MANAGED_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("UNIFI_SITE", "env-site")
    config = _reload_config(monkeypatch, env_file, preserve_env=True)

    assert config.settings.unifi_site == "env-site"
    assert config.settings.unifi_base_url == "https://controller"
    assert config.settings.accept_invalid_certificates is False


def test_missing_base_url_leaves_controller_unconfigured(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("# empty on purpose\n", encoding="utf-8")

    config = _reload_config(monkeypatch, env_file)

    assert config.settings.unifi_base_url is None
    assert config.settings.timezone is None
    assert config.settings.refresh_delay == 1.0


def test_non_numeric_delay_falls_back_to_default(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("LEDCTL_REFRESH_DELAY=soon\n", encoding="utf-8")

    config = _reload_config(monkeypatch, env_file)

    assert config.settings.refresh_delay == 1.0


def test_parse_env_file_handles_export_quotes_and_comments(tmp_path):
    from ledcontroller.unifi.config import parse_env_file

    env_file = tmp_path / ".env"
    env_file.write_text(
        "# controller\n"
        "export UNIFI_BASE_URL=https://10.0.0.1\n"
        "UNIFI_SITE = lab  # office\n"
        "UNIFI_PASSWORD='p#ss word' # quoted\n"
        'UNIFI_USERNAME=""\n'
        "not an assignment\n"
        "=orphan\n"
        "UNIFI_SITE=hq\n",
        encoding="utf-8",
    )

    assert parse_env_file(env_file) == {
        "UNIFI_BASE_URL": "https://10.0.0.1",
        "UNIFI_SITE": "hq",
        "UNIFI_PASSWORD": "p#ss word",
        "UNIFI_USERNAME": "",
    }


@pytest.fixture
def restore_logging(monkeypatch):
    yield
    for name in ("LEDCTL_LOG_FILE", "LEDCTL_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    from ledcontroller.unifi.utils import configure_logging

    configure_logging(force=True)


def test_logging_variables_in_env_file_reconfigure_logging(
    tmp_path, monkeypatch, restore_logging
):
    log_path = tmp_path / "ledctl.log"
    env_file = tmp_path / ".env"
    env_file.write_text(
        f"LEDCTL_LOG_FILE={log_path}\nUNIFI_BASE_URL=https://controller\n",
        encoding="utf-8",
    )

    config = _reload_config(monkeypatch, env_file)
    config.logger.info("after reload")
    config.logger.remove()

    assert "after reload" in log_path.read_text(encoding="utf-8")
