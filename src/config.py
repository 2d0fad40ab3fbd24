"""Gateway configuration read from environment variables."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


class ConfigurationError(Exception):
    """Raised when the gateway cannot start with the given environment."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("Invalid gateway configuration: " + "; ".join(errors))


class GatewaySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    upstream_url: str
    environment: Literal["development", "production", "test"] = "development"
    webhook_secret: str | None = None
    webhook_tolerance_seconds: int = Field(default=300, ge=1)
    webhook_skip_signature: bool = False
    jwt_key: str | None = None
    jwt_algorithm: str = "RS256"
    rate_policies_path: str = "config/rate-policies.json"
    sweep_interval: int = Field(default=1000, ge=1)
    use_connection_address: bool = False
    security_log_path: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GatewaySettings:
        """Build settings from the environment, failing fast on invalid values."""
        env = os.environ if environ is None else environ
        try:
            settings = cls(
                upstream_url=env.get("UPSTREAM_URL", ""),
                environment=env.get("NOTEGATE_ENV", "development"),  # type: ignore[arg-type]
                webhook_secret=_optional(env.get("CLERK_WEBHOOK_SECRET")),
                webhook_tolerance_seconds=int(env.get("WEBHOOK_TOLERANCE_SECONDS", "300")),
                webhook_skip_signature=(
                    env.get("WEBHOOK_SKIP_SIGNATURE", "").strip().lower() in _TRUTHY
                ),
                jwt_key=_optional(env.get("CLERK_JWT_KEY")),
                jwt_algorithm=env.get("CLERK_JWT_ALGORITHM", "RS256"),
                rate_policies_path=env.get(
                    "RATE_POLICIES_PATH", "config/rate-policies.json",
                ),
                sweep_interval=int(env.get("RATE_LIMIT_SWEEP_INTERVAL", "1000")),
                use_connection_address=(
                    env.get("RATE_LIMIT_USE_CONNECTION_ADDRESS", "").strip().lower()
                    in _TRUTHY
                ),
                security_log_path=_optional(env.get("SECURITY_LOG_PATH")),
                log_level=env.get("LOG_LEVEL", "INFO").upper(),
            )
        except (ValidationError, ValueError) as e:
            raise ConfigurationError([str(e)]) from e

        report = validate_settings(settings)
        for warning in report.warnings:
            logger.warning("Configuration warning: %s", warning)
        if not report.valid:
            raise ConfigurationError(report.errors)
        return settings


@dataclass
class ConfigReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def validate_settings(settings: GatewaySettings) -> ConfigReport:
    """Security checks on a settings object. Never raises."""
    report = ConfigReport()

    if not settings.upstream_url:
        report.errors.append("UPSTREAM_URL is required")
    elif not settings.upstream_url.startswith(("http://", "https://")):
        report.errors.append("UPSTREAM_URL must use http:// or https://")

    if settings.webhook_skip_signature and settings.environment == "production":
        report.errors.append("WEBHOOK_SKIP_SIGNATURE cannot be enabled in production")

    if not settings.webhook_secret:
        report.warnings.append(
            "CLERK_WEBHOOK_SECRET not set - webhooks will be rejected",
        )
    elif settings.webhook_skip_signature:
        report.warnings.append("Webhook signature verification is disabled")

    if not settings.jwt_key:
        report.warnings.append(
            "CLERK_JWT_KEY not set - rate limits will be applied per address only",
        )

    if settings.log_level not in logging.getLevelNamesMapping():
        report.warnings.append(f"Unknown LOG_LEVEL '{settings.log_level}', using INFO")

    return report


def configure_logging(level: str = "INFO") -> None:
    """Install the process-wide log format once."""
    resolved = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _optional(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()
