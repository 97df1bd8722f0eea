import json
import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigError, InvalidPortRange

logger = logging.getLogger(__name__)

# Keys a config file may set
CONFIG_FILE_KEYS = {
    "concurrency", "timeout_ms", "rate", "banner",
    "output", "output_file", "start_port", "end_port", "ipv6",
}


class PortRange(BaseModel):
    """Inclusive, ascending port bounds."""
    model_config = ConfigDict(frozen=True)

    start_port: int = Field(1, ge=1, le=65535)
    end_port: int = Field(1024, ge=1, le=65535)

    @model_validator(mode='after')
    def check_order(self):
        if self.start_port > self.end_port:
            raise ValueError(f"start port {self.start_port} is above end port {self.end_port}")
        return self

    @classmethod
    def build(cls, start_port: int, end_port: int) -> "PortRange":
        try:
            return cls(start_port=start_port, end_port=end_port)
        except ValidationError as e:
            raise InvalidPortRange(_first_error(e)) from None

    def ports(self) -> range:
        """Every port in the range, ascending"""
        return range(self.start_port, self.end_port + 1)

    @property
    def count(self) -> int:
        return self.end_port - self.start_port + 1

    def __str__(self):
        if self.start_port == self.end_port:
            return str(self.start_port)
        return f"{self.start_port}-{self.end_port}"


class EngineConfig(BaseModel):
    """
    Scheduler knobs, validated once before the scan and frozen afterwards.
    """
    model_config = ConfigDict(frozen=True)

    concurrency: int = Field(64, ge=1, le=10000)
    timeout_ms: int = Field(200, gt=0, le=60000)
    rate: int = Field(0, ge=0)
    banner: bool = False

    @property
    def timeout(self) -> float:
        """Per-probe timeout in seconds"""
        return self.timeout_ms / 1000.0


class ScanConfig(BaseModel):
    """
    Validation model for a whole run.
    Enforces strict types and safe ranges before execution.
    """
    target: str = Field(..., min_length=1)
    ipv6: bool = False
    ports: PortRange = PortRange()
    engine: EngineConfig = EngineConfig()
    output: Literal["text", "json", "csv"] = "text"
    output_file: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "ScanConfig":
        """
        Builds a ScanConfig from a flat dict of CLI/config-file settings.
        Port problems raise InvalidPortRange, everything else ConfigError.
        """
        ports = PortRange.build(
            settings.get("start_port", 1),
            settings.get("end_port", 1024),
        )
        try:
            engine = EngineConfig(**{
                k: settings[k] for k in ("concurrency", "timeout_ms", "rate", "banner") if k in settings
            })
            return cls(
                target=settings.get("target") or "",
                ipv6=settings.get("ipv6", False),
                ports=ports,
                engine=engine,
                output=settings.get("output", "text"),
                output_file=settings.get("output_file"),
            )
        except ValidationError as e:
            raise ConfigError(_first_error(e)) from None


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    where = ".".join(str(p) for p in err.get("loc", ())) or "value"
    msg = err.get("msg", "invalid value")
    return f"{where}: {msg}" if err.get("loc") else msg


def load_config_file(path: str) -> Dict[str, Any]:
    """
    Reads a .json or .toml config file into a dict of known settings.
    Unknown keys are dropped with a warning.
    """
    filepath = Path(path)
    try:
        if filepath.suffix.lower() == ".toml":
            with open(filepath, 'rb') as f:
                data = tomllib.load(f)
        else:
            with open(filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e.strerror or e}") from None
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot parse config file {path}: {e}") from None

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must hold a table/object of settings")

    settings = {}
    for key, value in data.items():
        if key not in CONFIG_FILE_KEYS:
            logger.warning("Ignoring unknown config key '%s' in %s", key, path)
            continue
        settings[key] = value
    return settings


def merge_settings(defaults: Dict[str, Any], file_settings: Dict[str, Any], cli_settings: Dict[str, Any]) -> Dict[str, Any]:
    """CLI flags that were actually given beat the config file, which beats defaults."""
    merged = dict(defaults)
    merged.update(file_settings)
    merged.update({k: v for k, v in cli_settings.items() if v is not None})
    return merged
