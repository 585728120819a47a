"""Centralized configuration for the salon receptionist agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/salon-receptionist/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 — lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/salon-receptionist/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /salon-receptionist/{name} (AWS)."
    )


def _optional_secret(name: str, default: str = "") -> str:
    """Like ``_require_env`` but returns *default* instead of raising."""
    try:
        return _require_env(name)
    except OSError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid float for {name}: {raw!r}") from None


def _bool_env(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")

# Cheap model for the analysis, repair and review passes
ROUTER_MODEL_NAME: str = os.getenv("ROUTER_MODEL_NAME", "claude-haiku-4-5")

CONVERSATION_TEMPERATURE: float = _float_env("CONVERSATION_TEMPERATURE", 0.3)
MAX_OUTPUT_TOKENS: int = _int_env("MAX_OUTPUT_TOKENS", 1024)

# ── Orchestration limits ────────────────────────────────────────────
# The tool loop ceiling is clamped to [5, 10].
MAX_TOOL_ITERATIONS: int = min(10, max(5, _int_env("MAX_TOOL_ITERATIONS", 5)))
MAX_REGENERATIONS: int = max(0, _int_env("MAX_REGENERATIONS", 1))
PLAN_ANALYSIS_ENABLED: bool = _bool_env("PLAN_ANALYSIS_ENABLED", True)
REVIEW_ENABLED: bool = _bool_env("REVIEW_ENABLED", True)

# ── Session ─────────────────────────────────────────────────────────
PROMPT_HISTORY_LIMIT: int = _int_env("PROMPT_HISTORY_LIMIT", 10)
SESSION_HISTORY_LIMIT: int = _int_env("SESSION_HISTORY_LIMIT", 20)
SESSION_ACTION_LIMIT: int = _int_env("SESSION_ACTION_LIMIT", 10)
SESSION_TTL_SECONDS: int = _int_env("SESSION_TTL_SECONDS", 2 * 60 * 60)
REDIS_URL: str = os.getenv("REDIS_URL", "")

# ── Business ────────────────────────────────────────────────────────
BUSINESS_TIMEZONE: str = os.getenv("BUSINESS_TIMEZONE", "America/Sao_Paulo")

# ── Record store (PostgREST / Supabase REST) ────────────────────────
RECORD_STORE_URL: str = os.getenv("RECORD_STORE_URL", "http://localhost:54321")
RECORD_STORE_KEY: str = _optional_secret("RECORD_STORE_KEY")

# ── Messaging channel ───────────────────────────────────────────────
MESSAGING_BASE_URL: str = os.getenv("MESSAGING_BASE_URL", "http://localhost:8081")
MESSAGING_API_TOKEN: str = _optional_secret("MESSAGING_API_TOKEN")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _int_env("SERVER_PORT", 8000)
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
