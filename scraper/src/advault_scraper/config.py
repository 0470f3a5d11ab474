"""Environment-driven settings.

All knobs are read once from the environment into a frozen :class:`Settings`.
Nothing is validated at load time; each command calls :meth:`Settings.validate`
with the capabilities it actually needs, so ``reset`` can run without provider
credentials and ``run`` fails fast before any remote work.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from .errors import ConfigurationError

DEFAULT_PROVIDER_BASE_URL = "https://data.oxylabs.io/v1"
DEFAULT_PROVIDER_REALTIME_URL = "https://realtime.oxylabs.io/v1"
DEFAULT_DB_NAME = "advault"
DEFAULT_GCS_BUCKET = "ad-renderings"
DEFAULT_OUTPUT_DIR = "scraper-results"

# Submission polling: a 120 x 2s..30s budget covers the tens of minutes a
# provider job can take.
DEFAULT_SUBMIT_MAX_ATTEMPTS = 120
DEFAULT_SUBMIT_INITIAL_DELAY_S = 2.0
DEFAULT_SUBMIT_MAX_DELAY_S = 30.0
DEFAULT_PER_ATTEMPT_TIMEOUT_S = 20.0
DEFAULT_PROCESSING_MAX_ATTEMPTS = 30
DEFAULT_PROCESSING_DELAY_S = 1.0
DEFAULT_PROCESSING_LAG_ATTEMPTS = 3
DEFAULT_RENDER_TIMEOUT_S = 300.0
DEFAULT_COURTESY_DELAY_S = 5.0
DEFAULT_INTER_ITEM_DELAY_S = 30.0
DEFAULT_MAX_ADS = 5


def _env_str(env: Mapping[str, str], key: str, default: str | None = None) -> str | None:
    value = env.get(key)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_number(env: Mapping[str, str], key: str, default: Any, cast: type) -> Any:
    raw = _env_str(env, key)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a {cast.__name__}, got {raw!r}") from exc


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = _env_str(env, key)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    provider_username: str | None
    provider_password: str | None
    provider_base_url: str
    provider_realtime_url: str
    db_host: str | None
    db_port: int | None
    db_sql_conn: str | None
    db_name: str
    db_user: str
    db_password: str | None
    db_write_user: str | None
    db_write_password: str | None
    db_sslmode: str
    gcs_project: str | None
    gcs_bucket: str
    output_dir: str
    submit_max_attempts: int
    submit_initial_delay_s: float
    submit_max_delay_s: float
    per_attempt_timeout_s: float
    processing_max_attempts: int
    processing_delay_s: float
    processing_lag_attempts: int
    render_timeout_s: float
    courtesy_delay_s: float
    inter_item_delay_s: float
    max_ads: int
    local_extraction: bool
    reprocess_on_error: bool

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """Read every setting from ``env`` (defaults to ``os.environ``)."""

        env = os.environ if env is None else env
        return cls(
            provider_username=_env_str(env, "OXYLABS_USERNAME"),
            provider_password=_env_str(env, "OXYLABS_PASSWORD"),
            provider_base_url=_env_str(env, "OXYLABS_BASE_URL", DEFAULT_PROVIDER_BASE_URL),
            provider_realtime_url=_env_str(env, "OXYLABS_REALTIME_URL", DEFAULT_PROVIDER_REALTIME_URL),
            db_host=_env_str(env, "DB_HOST"),
            db_port=_env_number(env, "DB_PORT", None, int),
            db_sql_conn=_env_str(env, "DB_SQL_CONN"),
            db_name=_env_str(env, "DB_NAME", DEFAULT_DB_NAME),
            db_user=_env_str(env, "DB_USER", "postgres"),
            db_password=_env_str(env, "DB_PASSWORD"),
            db_write_user=_env_str(env, "DB_WRITE_USER"),
            db_write_password=_env_str(env, "DB_WRITE_PASSWORD"),
            db_sslmode=_env_str(env, "DB_SSLMODE", "prefer"),
            gcs_project=_env_str(env, "GCS_PROJECT"),
            gcs_bucket=_env_str(env, "GCS_BUCKET", DEFAULT_GCS_BUCKET),
            output_dir=_env_str(env, "ADVAULT_OUTPUT_DIR", DEFAULT_OUTPUT_DIR),
            submit_max_attempts=_env_number(env, "ADVAULT_SUBMIT_MAX_ATTEMPTS", DEFAULT_SUBMIT_MAX_ATTEMPTS, int),
            submit_initial_delay_s=_env_number(env, "ADVAULT_SUBMIT_INITIAL_DELAY_S", DEFAULT_SUBMIT_INITIAL_DELAY_S, float),
            submit_max_delay_s=_env_number(env, "ADVAULT_SUBMIT_MAX_DELAY_S", DEFAULT_SUBMIT_MAX_DELAY_S, float),
            per_attempt_timeout_s=_env_number(env, "ADVAULT_PER_ATTEMPT_TIMEOUT_S", DEFAULT_PER_ATTEMPT_TIMEOUT_S, float),
            processing_max_attempts=_env_number(
                env, "ADVAULT_PROCESSING_MAX_ATTEMPTS", DEFAULT_PROCESSING_MAX_ATTEMPTS, int
            ),
            processing_delay_s=_env_number(env, "ADVAULT_PROCESSING_DELAY_S", DEFAULT_PROCESSING_DELAY_S, float),
            processing_lag_attempts=_env_number(
                env, "ADVAULT_PROCESSING_LAG_ATTEMPTS", DEFAULT_PROCESSING_LAG_ATTEMPTS, int
            ),
            render_timeout_s=_env_number(env, "ADVAULT_RENDER_TIMEOUT_S", DEFAULT_RENDER_TIMEOUT_S, float),
            courtesy_delay_s=_env_number(env, "ADVAULT_COURTESY_DELAY_S", DEFAULT_COURTESY_DELAY_S, float),
            inter_item_delay_s=_env_number(env, "ADVAULT_INTER_ITEM_DELAY_S", DEFAULT_INTER_ITEM_DELAY_S, float),
            max_ads=_env_number(env, "ADVAULT_MAX_ADS", DEFAULT_MAX_ADS, int),
            local_extraction=_env_bool(env, "ADVAULT_LOCAL_EXTRACTION", False),
            reprocess_on_error=_env_bool(env, "ADVAULT_REPROCESS_ON_ERROR", True),
        )

    def with_overrides(self, **changes: Any) -> "Settings":
        """Return a copy with the non-``None`` CLI overrides applied."""

        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def validate(self, *, provider: bool = False, database: bool = False, storage: bool = False) -> None:
        """Raise :class:`ConfigurationError` listing every missing requirement."""

        problems: list[str] = []
        if provider:
            if not self.provider_username:
                problems.append("OXYLABS_USERNAME is required")
            if not self.provider_password:
                problems.append("OXYLABS_PASSWORD is required")
        if database:
            if not self.db_password:
                problems.append("DB_PASSWORD is required")
            if not self.db_host and not self.db_sql_conn:
                problems.append("DB_HOST or DB_SQL_CONN is required")
        if storage and not self.gcs_bucket:
            problems.append("GCS_BUCKET is required")
        if self.submit_max_attempts < 1 or self.processing_max_attempts < 1:
            problems.append("polling attempt budgets must be >= 1")
        if self.submit_initial_delay_s <= 0 or self.submit_max_delay_s < self.submit_initial_delay_s:
            problems.append("submission delays must satisfy 0 < initial <= max")
        if self.max_ads < 0:
            problems.append("max ads must be >= 0")
        if problems:
            raise ConfigurationError("; ".join(problems))


__all__ = ["Settings"]
