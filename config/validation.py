# config/validation.py

"""
Environment variable validation for the exchange sync service.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Mapping, Optional, Tuple


def _flag(env: Mapping[str, str], name: str) -> bool:
    return str(env.get(name, "false")).strip().lower() in {"1", "true", "yes", "on"}


def validate_environment(flask_env: str = None, env: Optional[Mapping[str, str]] = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable
        env: Mapping to validate; defaults to os.environ

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    env = env if env is not None else os.environ
    if flask_env is None:
        flask_env = env.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = env.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not env.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    if _flag(env, "SYNC_ENABLED"):
        has_client_id = bool(env.get("PP_CLIENT_ID"))
        has_client_secret = bool(env.get("PP_CLIENT_SECRET"))
        if has_client_id != has_client_secret:
            errors.append("PP_CLIENT_ID and PP_CLIENT_SECRET must be set together to enable OAuth refresh.")
        elif not has_client_id and not env.get("PRACTICE_PANTHER_ACCESS_TOKEN"):
            errors.append(
                "SYNC_ENABLED=true requires PRACTICE_PANTHER_ACCESS_TOKEN or PP_CLIENT_ID/PP_CLIENT_SECRET."
            )

        if _flag(env, "SYNC_WORKER_ENABLED") and not env.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required in production when SYNC_WORKER_ENABLED=true.")

    is_valid = len(errors) == 0
    return is_valid, errors


def format_validation_errors(errors: List[str]) -> str:
    """Render validation errors as the banner printed at startup."""
    rule = "=" * 80
    lines = [rule, "ENVIRONMENT VALIDATION FAILED (exchange sync)", rule, ""]
    lines.extend(f"{i}. {error}" for i, error in enumerate(errors, 1))
    lines.extend(["", "Check your .env file or the process environment.", rule])
    return "\n".join(lines)


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup, before logging is configured.
    """
    is_valid, errors = validate_environment(flask_env)
    if not is_valid:
        print(format_validation_errors(errors), file=sys.stderr)
        sys.exit(1)
