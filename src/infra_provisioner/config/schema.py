"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from infra_provisioner.resources.base import (
    ResourceSpec,  # noqa: TC001 (Pydantic needs this at runtime)
)


class Settings(BaseSettings):
    """Engine settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``INFRA_`` prefix. Constructor kwargs take precedence.
    """

    model_config = SettingsConfigDict(env_prefix="INFRA_", extra="forbid")

    state_path: Path = Path(".infra-state.json")
    concurrency: int = Field(default=4, ge=1)
    # Per provider call, in seconds; 0 or null disables the deadline.
    timeout: float | None = Field(default=300.0, ge=0)
    lock_timeout: float = Field(default=10.0, ge=0)

    @field_validator("timeout")
    @classmethod
    def _zero_disables(cls, v: float | None) -> float | None:
        return v or None


class ProviderBinding(BaseModel):
    """Binds resource kinds to a provider implementation.

    ``call`` is an entry point name (group ``infra_provisioner.providers``) or
    ``module.path:attribute``; the attribute is called with ``options``.
    """

    model_config = ConfigDict(extra="forbid")

    call: str
    kinds: list[str] = Field(min_length=1)
    options: dict[str, Any] = Field(default_factory=dict)


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


class Config(BaseModel):
    """Provisioning configuration, validated directly from the YAML structure."""

    model_config = ConfigDict(extra="forbid")

    settings: Settings = Field(default_factory=Settings)
    variables: Annotated[dict[str, Any], BeforeValidator(_none_to_dict)] = {}
    providers: Annotated[list[ProviderBinding], BeforeValidator(_none_to_list)] = []
    resources: Annotated[list[ResourceSpec], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()

    @property
    def state_path(self) -> Path:
        """State path, relative paths resolved against the config directory."""
        path = self.settings.state_path
        return path if path.is_absolute() else self.config_dir / path

    def bound_kinds(self) -> set[str]:
        return {kind for binding in self.providers for kind in binding.kinds}
