from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


# Source-compatible digest mode; hmac_sha512 keeps the same hex wire format.
SESSION_HASH_MODES = ("salted_sha512", "hmac_sha512")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="SAFEHARBOR_")

    app_name: str = "safeharbor"
    log_level: str = "INFO"
    # Emit one JSON object per log line for log shippers.
    log_json: bool = False

    # Async SQLAlchemy URL used for object store snapshots.
    database_url: str = "sqlite+aiosqlite:///./safeharbor.db"

    # Server-wide secret mixed into session ids, email tokens and password hashes.
    secret_salt: str = "change-me"
    session_hash_mode: str = "salted_sha512"
    session_cookie_name: str = "SessionId"
    session_cookie_max_age_s: int = 86400
    session_cookie_secure: bool = False

    # Brute-force throttle: deny when all retained attempts fall inside the window.
    max_login_attempts_to_retain: int = 5
    login_throttle_window_s: int = 600

    # Account verification tokens expire this long after issuance.
    email_token_ttl_hours: int = 72
    perform_email_verification: bool = False
    public_base_url: str = "http://localhost:8000"

    # Bounded wait for per-object locks.
    lock_timeout_s: float = 5.0

    # Root under which realm and repo file directories are assigned.
    file_repo_root: str = "./repo"


@lru_cache
def get_settings() -> Settings:
    return Settings()
