"""
Exporter configuration.

Loaded once at startup from (lowest to highest priority) built-in defaults,
a YAML file, the plain AZURE_* variables and M365_* environment variables.
Everything downstream gets the resulting ExporterConfig passed in; nothing
reads the environment later.

YAML keys mirror the env names: `server.port` in the file is M365_SERVER_PORT
in the environment, `exchange.enabled` is M365_EXCHANGE_ENABLED, and so on.
Keys are case-insensitive, so `azure.tenantId` and M365_AZURE_TENANTID are
the same setting.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from m365_exporter.errors import ConfigError

log = logging.getLogger(__name__)

ENV_PREFIX = "M365_"
CONFIGFILE_ENV = "M365_CONFIGFILE"
CONFIG_NAME = "m365-exporter-config.yaml"
CONFIG_LOCATIONS = ("/etc/m365-exporter/", "./")

LOG_LEVELS = ("debug", "info", "warn", "warning", "error")

# Collector name -> default scrape interval in seconds
DEFAULT_INTERVALS: Dict[str, float] = {
    "adsync": 3600.0,
    "exchange": 3600.0,
    "securescore": 3600.0,
    "license": 3600.0,
    "intune": 10800.0,
    "teams": 10800.0,
}

# Variables the Azure SDKs read, accepted as a fallback for the azure section
AZURE_ENV = {
    "AZURE_TENANT_ID": "tenantid",
    "AZURE_CLIENT_ID": "clientid",
    "AZURE_CLIENT_SECRET": "clientsecret",
}


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ServerSettings(_Section):
    host: str = ""
    port: int = Field(default=8080, gt=0, lt=65536)


# Field names carry no underscores: "_" separates nesting levels in env names.
class AzureSettings(_Section):
    tenantid: str = ""
    clientid: Optional[str] = None
    clientsecret: Optional[str] = None


class GeneralSettings(_Section):
    loglevel: str = "info"

    @field_validator("loglevel", mode="before")
    @classmethod
    def _known_level(cls, value: Any) -> str:
        level = str(value).strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown level {value!r}, expected one of {', '.join(LOG_LEVELS)}")
        return level


class CollectorSettings(_Section):
    enabled: bool = True
    interval: float = Field(default=3600.0, gt=0)


def _collector_field(name: str):
    return Field(default_factory=lambda: CollectorSettings(interval=DEFAULT_INTERVALS[name]))


class _AzureEnvSource(PydanticBaseSettingsSource):
    """AZURE_TENANT_ID and friends, mapped onto the azure section."""

    def get_field_value(self, field, field_name: str) -> Tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> Dict[str, Any]:
        azure = {key: os.environ[name] for name, key in AZURE_ENV.items() if os.environ.get(name)}
        return {"azure": azure} if azure else {}


class ExporterConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="_",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )

    azure: AzureSettings = Field(default_factory=AzureSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    settings: GeneralSettings = Field(default_factory=GeneralSettings)

    adsync: CollectorSettings = _collector_field("adsync")
    exchange: CollectorSettings = _collector_field("exchange")
    securescore: CollectorSettings = _collector_field("securescore")
    license: CollectorSettings = _collector_field("license")
    intune: CollectorSettings = _collector_field("intune")
    teams: CollectorSettings = _collector_field("teams")

    _source: Optional[Path] = PrivateAttr(default=None)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # init kwargs carry the YAML file, which ranks below the environment
        return env_settings, _AzureEnvSource(settings_cls), init_settings

    @model_validator(mode="before")
    @classmethod
    def _default_intervals(cls, values: Any) -> Any:
        # a partial section (enabled only) still gets that collector's own interval
        if isinstance(values, dict):
            for name, interval in DEFAULT_INTERVALS.items():
                section = values.get(name)
                if isinstance(section, dict) and "interval" not in section:
                    values[name] = {**section, "interval": interval}
        return values

    @property
    def source(self) -> Optional[Path]:
        return self._source

    @property
    def logging_level(self) -> int:
        level = self.settings.loglevel
        return getattr(logging, "WARNING" if level == "warn" else level.upper())

    def collector(self, name: str) -> CollectorSettings:
        if name in DEFAULT_INTERVALS:
            return getattr(self, name)
        return CollectorSettings()

    def intervals(self) -> Dict[str, float]:
        return {name: self.collector(name).interval for name in DEFAULT_INTERVALS}


def find_config_file(locations: Sequence[str] = CONFIG_LOCATIONS) -> Optional[Path]:
    for location in locations:
        candidate = Path(location) / CONFIG_NAME
        if candidate.is_file():
            return candidate
    return None


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"could not read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"encountered a fatal error while reading the configuration in file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping at the top level")
    return data


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in error.errors()
    )


def load_config(
    path: Optional[str] = None,
    locations: Sequence[str] = CONFIG_LOCATIONS,
    require_tenant: bool = True,
) -> ExporterConfig:
    """Build the config from defaults, the YAML file and the environment.

    An explicit `path` (or M365_CONFIGFILE) must exist. Without one, the
    standard locations are searched and a missing file just means defaults
    plus environment.
    """
    if path is None:
        path = os.environ.get(CONFIGFILE_ENV) or None

    if path:
        source: Optional[Path] = Path(path)
        if not source.is_file():
            raise ConfigError(f"config file {path} does not exist")
    else:
        source = find_config_file(locations)
        if source is None:
            log.info("did not find a config file in any of %s, using defaults and environment", list(locations))

    raw = _lower_keys(_read_yaml(source)) if source else {}

    try:
        config = ExporterConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {_describe(e)}") from None

    config._source = source
    if require_tenant and not config.azure.tenantid:
        raise ConfigError("missing mandatory config parameter for azure.tenantId")
    return config
