"""Operator settings.

All knobs the controller reads at runtime live here, validated once at
startup and overridable through ``TESTFLOW_*`` environment variables or a
``.env`` file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-reconcile
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** Works out of the box against the in-memory cluster

Examples:
    >>> from testflow.core.settings import OperatorSettings
    >>> settings = OperatorSettings(default_images={"ansibletest": "quay.io/podified/ansible-tests:latest"})
    >>> settings.requeue_after_seconds
    60.0

    Environment::

        TESTFLOW_REQUEUE_AFTER_SECONDS=30
        TESTFLOW_DEFAULT_IMAGES='{"ansibletest": "quay.io/podified/ansible-tests:current"}'

Tags:
    settings, configuration, pydantic, environment, testflow
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OperatorSettings(BaseSettings):
    """Settings shared by every workflow controller.

    Fields
    ──────
    requeue_after_seconds : Fixed interval for every non-terminal requeue
    lock_name             : Name of the cluster-wide exclusive lock record
    lock_namespace        : Namespace of the lock record (None = instance namespace)
    operator_name         : Value of the operator identity label on workers
    service_name          : Service identity of the AnsibleTest workers
    default_images        : Service identity → platform default image
    ca_bundle_secret_name : Credential bundle whose presence adds CA mounts
    logs_volume_size      : Requested size of the per-instance logs claim
    backoff_*             : Platform backoff for unexpected reconcile errors
    log_level / log_json  : structlog configuration
    """

    model_config = SettingsConfigDict(
        env_prefix="TESTFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Reconciliation ───────────────────────────────────────────
    requeue_after_seconds: float = Field(default=60.0, gt=0)

    # ── Identity ─────────────────────────────────────────────────
    lock_name: str = "test-operator-lock"
    lock_namespace: str | None = None
    operator_name: str = "test-operator"
    service_name: str = "ansibletest"

    # ── Workers ──────────────────────────────────────────────────
    default_images: dict[str, str] = Field(
        default_factory=lambda: {
            "ansibletest": "quay.io/podified-antelope-centos9/openstack-ansible-tests:current-podified",
        }
    )
    ca_bundle_secret_name: str = "combined-ca-bundle"
    logs_volume_size: str = "1Gi"

    # ── Manager backoff ──────────────────────────────────────────
    backoff_base_seconds: float = Field(default=5.0, gt=0)
    backoff_max_seconds: float = Field(default=300.0, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None


@lru_cache(maxsize=1)
def get_settings() -> OperatorSettings:
    """Return the process-wide settings instance (cached)."""
    return OperatorSettings()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()


__all__ = ["OperatorSettings", "get_settings", "reset_settings"]
