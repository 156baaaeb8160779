"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup

Designed for Kubernetes deployment: the Deployment's env overrides everything,
and in-cluster defaults (API server URL, service account token and CA) need no
configuration at all.

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated via env_nested_delimiter="__", so CA__NAME maps to ca.name,
ISSUANCE__KEY_ALGORITHM to issuance.key_algorithm, etc.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from etcd_cert_signer.domain.models import KeyAlgorithm, KeySpec
from etcd_cert_signer.reconciler import FailurePolicy, ReconcilerConfig

_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

_SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class CASettings(BaseModel):
    """Where the cluster CA record lives."""

    name: str = Field(default="etcd-ca", description="CA secret name")
    namespace: str = Field(default="openshift-etcd", description="CA secret namespace")


class IssuanceSettings(BaseModel):
    """
    How member certificates are generated.

    The validity default is 3 x 365 x 24 hours. RSA keys must be at least
    2048 bits; ECDSA supports P-256 and P-384.
    """

    validity_hours: int = Field(default=3 * 365 * 24, ge=1, description="Certificate lifetime in hours")
    key_algorithm: KeyAlgorithm = Field(default=KeyAlgorithm.RSA)
    rsa_key_size: int = Field(default=2048, ge=2048, description="RSA modulus size in bits")
    ec_curve: str = Field(default="P-256")
    failure_policy: FailurePolicy = Field(default=FailurePolicy.ATTEMPT_ALL)

    @field_validator("ec_curve")
    @classmethod
    def validate_curve(cls, value: str) -> str:
        if value not in ("P-256", "P-384"):
            raise ValueError(f"ec_curve must be P-256 or P-384, got {value!r}")
        return value

    def validity(self) -> timedelta:
        return timedelta(hours=self.validity_hours)

    def key_spec(self) -> KeySpec:
        return KeySpec(
            algorithm=self.key_algorithm,
            rsa_key_size=self.rsa_key_size,
            ec_curve=self.ec_curve,
        )


class KubernetesSettings(BaseModel):
    """
    Kubernetes API access.

    Defaults target the in-cluster service account. An explicit `token` wins
    over `token_file`. `namespace` limits member discovery; unset means all
    namespaces.
    """

    api_url: str = Field(default="https://kubernetes.default.svc")
    token: SecretStr | None = Field(default=None, description="Bearer token")
    token_file: Path = Field(default=_SERVICE_ACCOUNT_DIR / "token")
    ca_cert_file: Path | None = Field(default=_SERVICE_ACCOUNT_DIR / "ca.crt")
    verify_tls: bool = Field(default=True)
    namespace: str | None = Field(default=None, description="Namespace to watch for members")

    def resolve_token(self) -> str | None:
        """The bearer token to send, or None when neither source is available."""
        if self.token is not None:
            return self.token.get_secret_value()
        if self.token_file.is_file():
            return self.token_file.read_text().strip()
        return None

    def resolve_verify(self) -> bool | str:
        """httpx `verify` argument: False, a CA bundle path, or True for system roots."""
        if not self.verify_tls:
            return False
        if self.ca_cert_file is not None and self.ca_cert_file.is_file():
            return str(self.ca_cert_file)
        return True


class SchedulerSettings(BaseModel):
    """
    Periodic resync using a standard 5-field cron expression.

    Format: minute hour day-of-month month day-of-week
    Examples:
      "*/5 * * * *"  — every 5 minutes (default)
      "0 * * * *"    — hourly
    """

    cron: str = Field(
        default="*/5 * * * *",
        description="Cron expression (5 fields: minute hour dom month dow)",
    )

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        """Reject expressions that don't have exactly 5 space-separated fields."""
        fields = value.strip().split()
        if len(fields) != 5:
            raise ValueError(
                f"Cron expression must have exactly 5 fields "
                f"(minute hour dom month dow), got {len(fields)}: {value!r}"
            )
        return value.strip()


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    ca: CASettings = Field(default_factory=lambda: CASettings())
    issuance: IssuanceSettings = Field(default_factory=lambda: IssuanceSettings())
    kubernetes: KubernetesSettings = Field(default_factory=lambda: KubernetesSettings())
    scheduler: SchedulerSettings = Field(default_factory=lambda: SchedulerSettings())

    http_timeout_seconds: int = Field(default=30, ge=1)
    run_on_startup: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    @model_validator(mode="after")
    def check_log_level(self) -> AppSettings:
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log_level {self.log_level!r}")
        return self

    def reconciler_config(self) -> ReconcilerConfig:
        """Translate settings into the reconciler's explicit configuration."""
        return ReconcilerConfig(
            ca_name=self.ca.name,
            ca_namespace=self.ca.namespace,
            failure_policy=self.issuance.failure_policy,
        )
