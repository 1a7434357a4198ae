"""Operator settings.

Uses Pydantic Settings for type-safe configuration from environment
variables. Variable names are matched case-insensitively
(``WATCH_NAMESPACE``, ``FULL_RECONCILIATION_INTERVAL_S``, ...).
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from abstract_operator.models.crds import ALL_NAMESPACES, SAME_NAMESPACE


class OperatorSettings(BaseSettings):
    """Process-wide operator configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    watch_namespace: str = Field(
        default=SAME_NAMESPACE,
        description='Comma separated namespaces, "~" for the current one, "*" for all',
    )
    full_reconciliation_interval_s: int = Field(
        default=180,
        ge=1,
        description="Seconds between two full reconciliations of one operator",
    )
    reconciliation_base_delay_s: int = Field(
        default=2,
        ge=0,
        description="Offset added to the staggered first reconciliation",
    )
    crd: bool = Field(
        default=False,
        description="Watch custom resources instead of ConfigMaps for every operator",
    )
    metrics: bool = Field(default=True, description="Expose Prometheus metrics")
    metrics_port: int = Field(default=9090, ge=1, le=65535)
    worker_pool_size: int | None = Field(
        default=None,
        ge=1,
        description="Watch worker threads; one per operator instance when unset",
    )
    reconnect_max_delay_s: float = Field(
        default=30.0,
        ge=0.0,
        description="Ceiling of the back-off between failed resubscriptions",
    )
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if value.upper() not in valid:
            raise ValueError(f"Invalid log level: {value}. Must be one of {sorted(valid)}")
        return value.upper()

    @property
    def namespaces(self) -> list[str]:
        """The configured namespaces; a sentinel, if present first, wins."""
        names = [ns.strip() for ns in self.watch_namespace.split(",") if ns.strip()]
        if not names:
            return [SAME_NAMESPACE]
        if names[0] in (SAME_NAMESPACE, ALL_NAMESPACES):
            return [names[0]]
        return names
