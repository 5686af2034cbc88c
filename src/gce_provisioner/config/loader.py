"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from gce_provisioner.config.schema import Config

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from gce_provisioner.engine.types import ResourceSpec


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


# Field name → environment variable.
_PROVIDER_ENV_MAP: dict[str, str] = {
    "project": "GCE_PROJECT",
    "zone": "GCE_ZONE",
    "credentials_file": "GCE_CREDENTIALS_FILE",
}


def _resolve_provider(raw_provider: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve provider fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = {}
    for field, env_key in _PROVIDER_ENV_MAP.items():
        val = raw_provider.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val

    creds = resolved.get("credentials_file")
    if creds is not None and not Path(creds).is_absolute():
        resolved["credentials_file"] = config_dir / creds

    return resolved


def _validate_unique_ids(instances: list[ResourceSpec]) -> list[str]:
    """Check that no two instances share the same id."""
    seen: set[str] = set()
    errors: list[str] = []
    for spec in instances:
        if not spec.id:
            errors.append("Instance id must not be empty")
        elif spec.id in seen:
            errors.append(f"Duplicate instance id '{spec.id}'")
        else:
            seen.add(spec.id)
    return errors


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Raises:
        ConfigError: On YAML parse errors, missing sections, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    try:
        raw["provider"] = _resolve_provider(raw.get("provider") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    if not config.state_path.is_absolute():
        config.state_path = config.config_dir / config.state_path

    errors = _validate_unique_ids(config.instances)
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info("Loaded config from %s (%d instances)", path, len(config.instances))
    return config
