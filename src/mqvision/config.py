"""YAML configuration for the mqvision service.

Example config.yaml:

    bus:
      address: tcp://localhost:5560
      topic: gauge
    concierge:
      addr: https://concierge.example
      token: secret
    gemini:
      api_key: ...
      model: gemini-2.5-flash-lite
      system_prompt: ...
      prompt: ...
    server:
      port: 8080
    pipeline:
      queue_size: 10
      max_inflight: 4
      shutdown_grace_sec: 5
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from mqvision.clients.concierge import DEFAULT_TTL_MINUTES
from mqvision.clients.gemini import DEFAULT_MODEL, DEFAULT_PROMPT, DEFAULT_SYSTEM_PROMPT
from mqvision.streaming.fanout import DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Configuration file missing or invalid."""


@dataclass
class BusConfig:
    address: str = "tcp://localhost:5560"
    topic: str = "gauge"


@dataclass
class ConciergeConfig:
    addr: str = ""
    token: str = ""
    ttl_minutes: int = DEFAULT_TTL_MINUTES


@dataclass
class GeminiConfig:
    api_key: str = ""
    model: str = DEFAULT_MODEL
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    prompt: str = DEFAULT_PROMPT
    max_dimension: int = 1600


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class PipelineConfig:
    queue_size: int = 10
    max_inflight: int = 4
    shutdown_grace_sec: float = 5.0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    mime_type: str = "image/jpeg"


@dataclass
class Config:
    """Top-level service configuration."""

    bus: BusConfig = field(default_factory=BusConfig)
    concierge: ConciergeConfig = field(default_factory=ConciergeConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a Config from a parsed YAML mapping.

        Unknown sections and keys are ignored with a warning.

        Raises:
            ConfigError: If a section is not a mapping or a value has the
                wrong type.
        """
        sections = {f.name: f.default_factory for f in fields(cls)}
        for name in data:
            if name not in sections:
                logger.warning(f"Ignoring unknown config section: {name}")

        kwargs = {}
        for name, factory in sections.items():
            raw = data.get(name) or {}
            if not isinstance(raw, dict):
                raise ConfigError(f"Config section '{name}' must be a mapping")
            kwargs[name] = _build_section(name, factory, raw)

        config = cls(**kwargs)
        config._apply_env()
        return config

    def _apply_env(self) -> None:
        if not self.gemini.api_key:
            self.gemini.api_key = os.environ.get("GEMINI_API_KEY", "")
        if not self.concierge.token:
            self.concierge.token = os.environ.get("CONCIERGE_TOKEN", "")


def _build_section(name: str, factory, raw: Dict[str, Any]):
    defaults = factory()
    values = {}
    for f in fields(defaults):
        value = raw.get(f.name)
        if value is None:
            continue
        expected = type(getattr(defaults, f.name))
        try:
            values[f.name] = expected(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {name}.{f.name}: {value!r}") from e

    known = {f.name for f in fields(defaults)}
    for key in raw:
        if key not in known:
            logger.warning(f"Ignoring unknown config key: {name}.{key}")

    return factory(**values)


def load_config(path: Union[str, Path], required: bool = True) -> Config:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML file.
        required: If False, a missing file yields the defaults.

    Returns:
        Parsed Config.

    Raises:
        ConfigError: If the file is missing (and required) or invalid.
    """
    path = Path(path)
    if not path.exists():
        if required:
            raise ConfigError(f"Config file not found: {path}")
        logger.info(f"Config file {path} not found, using defaults")
        return Config.from_dict({})

    try:
        with path.open("r", encoding="utf-8") as f:
            data: Optional[Dict[str, Any]] = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to decode config file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    return Config.from_dict(data)
