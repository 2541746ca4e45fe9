"""
Configuration and startup security checks for the skole backend.

Why: A school platform must not be deployed with development shortcuts left
on. This module provides the settings object read by the web adapter and a
single guard that enforces minimal production safety constraints without
burdening local development.

Permissions: The caller needs no special privileges. The functions simply
read environment variables and raise `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _placeholder(value: str) -> bool:
    upper = (value or "").strip().upper()
    return not upper or upper.startswith("CHANGE_ME") or upper in {"DUMMY_DO_NOT_USE", "DEV", "SECRET"}


@dataclass
class AppSettings:
    """Process settings; tests may override the environment."""

    _env_override: Optional[str] = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return (os.getenv("SKOLE_ENV", "dev") or "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env

    @property
    def admin_token(self) -> Optional[str]:
        value = (os.getenv("ADMIN_TOKEN") or "").strip()
        return value or None

    @property
    def is_prod_like(self) -> bool:
        return _is_prod_like(self.environment)


SETTINGS = AppSettings()


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - Token verification must be configured: a JWKS URL (https), or a shared
      HS256 secret that is not a placeholder.
    - ADMIN_TOKEN must be set and not a placeholder.
    - The database DSN must not explicitly disable TLS.
    - The in-memory store must not be forced.
    """

    env = os.getenv("SKOLE_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Bearer token verification
    jwks_url = (os.getenv("SKOLE_JWKS_URL") or "").strip()
    secret = (os.getenv("SKOLE_JWT_SECRET") or "").strip()
    if jwks_url:
        if jwks_url.lower().startswith("http://"):
            raise SystemExit("Refusing to start: SKOLE_JWKS_URL must use https in production (got http).")
    elif _placeholder(secret) or len(secret) < 32:
        raise SystemExit(
            "Refusing to start: configure SKOLE_JWKS_URL or a strong SKOLE_JWT_SECRET in production."
        )

    # 2) Shared admin token for the read-only submissions query
    if _placeholder(os.getenv("ADMIN_TOKEN", "")):
        raise SystemExit("Refusing to start: ADMIN_TOKEN is unset or a placeholder in production.")

    # 3) Postgres TLS: basic guard to avoid explicit disable
    for key in ("SKOLE_DATABASE_URL", "DATABASE_URL"):
        if "sslmode=disable" in (os.getenv(key) or ""):
            raise SystemExit(
                f"Refusing to start: {key} contains sslmode=disable in production. Use sslmode=require or verify TLS."
            )

    # 4) No volatile storage in prod-like envs
    if (os.getenv("SKOLE_STORE") or "").strip().lower() == "memory":
        raise SystemExit("Refusing to start: SKOLE_STORE=memory is not allowed in production/staging.")


__all__ = ["AppSettings", "SETTINGS", "ensure_secure_config_on_startup"]
