from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AzureConfig(BaseModel):
    subscription_id: str | None = Field(default=None, pattern="^[a-f0-9-]{36}$")
    auth_mode: Literal["azure_cli", "managed_identity", "default"] = "azure_cli"
    user_assigned_identity_client_id: str | None = None

    @field_validator("subscription_id", mode="before")
    @classmethod
    def _normalize_subscription(cls, v: Any) -> Any:
        if v is None:
            return None
        s = str(v).strip().lower()
        return s or None


class NodePoolDefaults(BaseModel):
    pool_name: str = "memnp"
    node_count: int = Field(default=2, ge=0, le=1000)
    min_count: int = Field(default=1, ge=0, le=1000)
    max_count: int = Field(default=5, ge=1, le=1000)
    mode: Literal["User", "System"] = "User"
    os_sku: str = "Ubuntu"

    @model_validator(mode="after")
    def _validate_bounds(self) -> NodePoolDefaults:
        if self.min_count > self.max_count:
            raise ValueError("min_count must not exceed max_count")
        return self


class ProvisioningConfig(BaseModel):
    backend: Literal["cli", "sdk"] = "cli"
    az_binary: str = "az"
    attempt_timeout_seconds: float | None = Field(default=None, gt=0)
    preflight: bool = True


class ObservabilityConfig(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: Path | None = None
    enable_metrics: bool = True
    otel_service_name: str = "nodepool-failover"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "nodepool-failover"
    app_version: str = "1.0.0"

    azure: AzureConfig = Field(default_factory=AzureConfig)
    nodepool: NodePoolDefaults = Field(default_factory=NodePoolDefaults)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    log_level: str | None = None

    @model_validator(mode="after")
    def apply_legacy_env(self) -> Settings:
        if self.log_level:
            self.observability.log_level = self.log_level.upper()  # type: ignore[assignment]
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
