"""Configuration models for YAML-based reconciliation."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gce_provisioner.engine.types import (  # noqa: TC001 (needed at runtime by pydantic)
    ResourceSpec,
    WaitSettings,
)


class ProviderConfig(BaseSettings):
    """Compute Engine provider settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``GCE_`` prefix.  Constructor kwargs take precedence.
    """

    model_config = SettingsConfigDict(env_prefix="GCE_")

    project: str
    zone: str
    credentials_file: Path | None = None


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


class Config(BaseModel):
    """Reconciliation configuration, validated straight from YAML."""

    provider: ProviderConfig
    state_path: Path = Path(".gce-state.json")
    wait: WaitSettings = WaitSettings()
    instances: Annotated[list[ResourceSpec], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()
