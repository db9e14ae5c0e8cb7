# s3ship/config.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from s3ship.errors import ConfigError
from s3ship.models.target import Target, parse_s3_uri
from s3ship.services.retry_policy import RetryPolicy
from s3ship.services.target_resolver import TargetResolver

logger = logging.getLogger(__name__)

TARGET_FIELDS = {"name", "destinationURI", "credentialRef", "dependsOn", "branchPattern", "environment"}

# settings key -> (attribute, type)
SETTINGS_FIELDS = {
    "maxWorkers": ("max_workers", int),
    "maxAttempts": ("max_attempts", int),
    "baseDelay": ("base_delay", float),
    "backoffMultiplier": ("backoff_multiplier", float),
    "maxDelay": ("max_delay", float),
    "strict": ("strict", bool),
    "region": ("region", str),
    "endpointURL": ("endpoint_url", str),
}


def _default_region() -> Optional[str]:
    return os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")


@dataclass(frozen=True)
class Settings:
    max_workers: int = 4
    max_attempts: int = 5
    base_delay: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0
    strict: bool = False          # treat "no targets matched" as a failure
    region: Optional[str] = field(default_factory=_default_region)
    endpoint_url: Optional[str] = field(default_factory=lambda: os.environ.get("AWS_ENDPOINT_URL_S3"))

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            multiplier=self.backoff_multiplier,
            max_delay=self.max_delay,
        )


@dataclass(frozen=True)
class DeployConfig:
    """Everything a run needs, passed explicitly into the Orchestrator."""
    targets: List[Target]
    settings: Settings = field(default_factory=Settings)

    def target(self, name: str) -> Target:
        for t in self.targets:
            if t.name == name:
                return t
        raise KeyError(name)


def _parse_target(raw: Any, index: int) -> Target:
    if not isinstance(raw, dict):
        raise ConfigError(f"targets[{index}] must be an object")
    unknown = set(raw) - TARGET_FIELDS
    if unknown:
        raise ConfigError(f"targets[{index}] has unknown fields: {sorted(unknown)}")
    for required in ("name", "destinationURI"):
        if not isinstance(raw.get(required), str) or not raw[required]:
            raise ConfigError(f"targets[{index}] needs a non-empty '{required}'")

    parse_s3_uri(raw["destinationURI"])

    depends_on = raw.get("dependsOn") or []
    if isinstance(depends_on, str):
        depends_on = [depends_on]
    if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
        raise ConfigError(f"target '{raw['name']}': dependsOn must be a list of target names")

    return Target(
        name=raw["name"],
        destination_uri=raw["destinationURI"],
        credential_ref=raw.get("credentialRef") or "default",
        depends_on=frozenset(depends_on),
        branch_pattern=raw.get("branchPattern") or "*",
        environment=raw.get("environment"),
    )


def _parse_settings(raw: Any) -> Settings:
    if raw is None:
        return Settings()
    if not isinstance(raw, dict):
        raise ConfigError("settings must be an object")
    unknown = set(raw) - set(SETTINGS_FIELDS)
    if unknown:
        raise ConfigError(f"settings has unknown fields: {sorted(unknown)}")

    kwargs = {}
    for key, value in raw.items():
        attr, kind = SETTINGS_FIELDS[key]
        if kind is bool:
            if not isinstance(value, bool):
                raise ConfigError(f"settings.{key} must be true or false")
        elif kind in (int, float):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"settings.{key} must be a number")
            if kind is int and isinstance(value, float) and not value.is_integer():
                raise ConfigError(f"settings.{key} must be a whole number")
            value = kind(value)
        elif not isinstance(value, str):
            raise ConfigError(f"settings.{key} must be a string")
        kwargs[attr] = value

    settings = Settings(**kwargs)
    if settings.max_workers < 1:
        raise ConfigError("settings.maxWorkers must be at least 1")
    try:
        settings.retry_policy()
    except ValueError as e:
        raise ConfigError(f"invalid retry settings: {e}") from e
    return settings


def parse_config(data: Dict[str, Any]) -> DeployConfig:
    """Validate a config document and build a DeployConfig (cycles included)."""
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a JSON object")
    raw_targets = data.get("targets")
    if not isinstance(raw_targets, list):
        raise ConfigError("configuration needs a 'targets' list")

    targets = [_parse_target(raw, i) for i, raw in enumerate(raw_targets)]

    seen = set()
    for t in targets:
        if t.name in seen:
            raise ConfigError(f"duplicate target name '{t.name}'")
        seen.add(t.name)
    for t in targets:
        missing = sorted(t.depends_on - seen)
        if missing:
            raise ConfigError(f"target '{t.name}' depends on undeclared targets {missing}")

    TargetResolver(targets).validate()
    settings = _parse_settings(data.get("settings"))
    logger.debug("Loaded %d targets", len(targets))
    return DeployConfig(targets=targets, settings=settings)


def load_config(path: Union[str, Path]) -> DeployConfig:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"config file {path} is not valid JSON: {e}") from e
    return parse_config(data)


__all__ = ["Settings", "DeployConfig", "parse_config", "load_config"]
