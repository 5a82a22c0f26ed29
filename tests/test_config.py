"""Tests for config loading: YAML file, environment overrides and validation."""

import logging
import os

import pytest

from m365_exporter.config import CONFIG_NAME, load_config
from m365_exporter.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test without M365_* or AZURE_* variables."""
    for key in list(os.environ):
        if key.upper().startswith(("M365_", "AZURE_")):
            monkeypatch.delenv(key, raising=False)


def _write_config(directory, text: str):
    path = directory / CONFIG_NAME
    path.write_text(text)
    return path


def test_defaults_with_only_tenant_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("AZURE_TENANT_ID", "tenant-1")

    config = load_config(locations=[str(tmp_path)])

    assert config.azure.tenantid == "tenant-1"
    assert config.server.port == 8080
    assert config.server.host == ""
    assert config.logging_level == logging.INFO
    assert config.source is None
    assert config.intervals() == {
        "adsync": 3600.0,
        "exchange": 3600.0,
        "securescore": 3600.0,
        "license": 3600.0,
        "intune": 10800.0,
        "teams": 10800.0,
    }


def test_yaml_file_is_found_in_search_locations(tmp_path):
    _write_config(tmp_path, """
azure:
  tenantId: from-file
  clientId: app
  clientSecret: s3cret
server:
  host: 127.0.0.1
  port: 9101
settings:
  logLevel: warn
exchange:
  enabled: false
license:
  interval: 900
""")

    config = load_config(locations=["/nonexistent/", str(tmp_path)])

    assert config.source == tmp_path / CONFIG_NAME
    assert config.azure.tenantid == "from-file"
    assert config.azure.clientid == "app"
    assert config.azure.clientsecret == "s3cret"
    assert config.server.host == "127.0.0.1"
    assert config.server.port == 9101
    assert config.logging_level == logging.WARNING
    assert config.collector("exchange").enabled is False
    assert config.collector("license").interval == 900.0
    assert config.collector("adsync").enabled is True


def test_partial_section_keeps_its_default_interval(tmp_path):
    _write_config(tmp_path, "azure:\n  tenantId: t\nintune:\n  enabled: false\n")

    config = load_config(locations=[str(tmp_path)])

    assert config.collector("intune").enabled is False
    assert config.collector("intune").interval == 10800.0


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = _write_config(tmp_path, "azure:\n  tenantId: from-file\n  clientId: app\nserver:\n  port: 9101\n")
    monkeypatch.setenv("M365_SERVER_PORT", "9200")
    monkeypatch.setenv("M365_AZURE_TENANTID", "from-env")
    monkeypatch.setenv("M365_LICENSE_ENABLED", "false")

    config = load_config(str(path))

    assert config.azure.tenantid == "from-env"
    assert config.azure.clientid == "app"
    assert config.server.port == 9200
    assert config.collector("license").enabled is False
    assert config.collector("license").interval == 3600.0


def test_prefixed_variable_beats_azure_variable(tmp_path, monkeypatch):
    monkeypatch.setenv("AZURE_TENANT_ID", "from-azure")
    monkeypatch.setenv("AZURE_CLIENT_SECRET", "s3cret")
    monkeypatch.setenv("M365_AZURE_TENANTID", "from-m365")

    config = load_config(locations=[str(tmp_path)])

    assert config.azure.tenantid == "from-m365"
    assert config.azure.clientsecret == "s3cret"


def test_azure_variable_beats_file(tmp_path, monkeypatch):
    _write_config(tmp_path, "azure:\n  tenantId: from-file\n")
    monkeypatch.setenv("AZURE_TENANT_ID", "from-azure")

    config = load_config(locations=[str(tmp_path)])

    assert config.azure.tenantid == "from-azure"


def test_config_file_path_from_environment(tmp_path, monkeypatch):
    path = _write_config(tmp_path, "azure:\n  tenantId: t\n")
    monkeypatch.setenv("M365_CONFIGFILE", str(path))

    config = load_config(locations=[])

    assert config.source == path
    assert config.azure.tenantid == "t"


def test_missing_tenant_is_rejected(tmp_path):
    with pytest.raises(ConfigError, match="azure.tenantId"):
        load_config(locations=[str(tmp_path)])


def test_missing_tenant_allowed_when_not_required(tmp_path):
    config = load_config(locations=[str(tmp_path)], require_tenant=False)
    assert config.azure.tenantid == ""


def test_explicit_missing_file_is_an_error(tmp_path, monkeypatch):
    monkeypatch.setenv("AZURE_TENANT_ID", "t")

    with pytest.raises(ConfigError, match="does not exist"):
        load_config(str(tmp_path / "nope.yaml"))


def test_malformed_yaml_is_an_error(tmp_path):
    path = _write_config(tmp_path, "azure: [unclosed\n")

    with pytest.raises(ConfigError):
        load_config(str(path))


def test_non_mapping_yaml_is_an_error(tmp_path):
    path = _write_config(tmp_path, "- just\n- a list\n")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(str(path))


@pytest.mark.parametrize("port", ["0", "70000", "http"])
def test_bad_port_is_rejected(tmp_path, monkeypatch, port):
    monkeypatch.setenv("AZURE_TENANT_ID", "t")
    monkeypatch.setenv("M365_SERVER_PORT", port)

    with pytest.raises(ConfigError, match="server.port"):
        load_config(locations=[str(tmp_path)])


def test_bad_port_in_file_is_rejected(tmp_path):
    path = _write_config(tmp_path, "azure:\n  tenantId: t\nserver:\n  port: -1\n")

    with pytest.raises(ConfigError, match="server.port"):
        load_config(str(path))


def test_unknown_log_level_is_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("AZURE_TENANT_ID", "t")
    monkeypatch.setenv("M365_SETTINGS_LOGLEVEL", "chatty")

    with pytest.raises(ConfigError, match="loglevel"):
        load_config(locations=[str(tmp_path)])


def test_bad_enabled_flag_is_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("AZURE_TENANT_ID", "t")
    monkeypatch.setenv("M365_ADSYNC_ENABLED", "maybe")

    with pytest.raises(ConfigError, match="adsync.enabled"):
        load_config(locations=[str(tmp_path)])


def test_non_positive_interval_is_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("AZURE_TENANT_ID", "t")
    monkeypatch.setenv("M365_SECURESCORE_INTERVAL", "0")

    with pytest.raises(ConfigError, match="securescore.interval"):
        load_config(locations=[str(tmp_path)])


def test_unknown_collector_falls_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("AZURE_TENANT_ID", "t")

    config = load_config(locations=[str(tmp_path)])

    settings = config.collector("something-new")
    assert settings.enabled is True
    assert settings.interval == 3600.0
