from urllib.parse import urlparse, urlunparse

from pydantic import field_validator
from pydantic_settings import BaseSettings

from .identity import Role


class Settings(BaseSettings):
    # front-end origin allowed by CORS (the wallet UI)
    ORIGIN: str = "http://127.0.0.1:5173"

    # challenge lifetime; nonces older than this are treated as missing
    NONCE_TTL_SECONDS: int = 300
    NONCE_BYTES: int = 32

    SESSION_TTL_SECONDS: int = 86400

    # raw 32-byte Ed25519 seed (base64) used to sign session tokens.
    # Empty -> an ephemeral key is generated at startup.
    SERVER_ED25519_SK_B64: str = ""

    # JSON file holding identity records; empty keeps them in memory
    IDENTITY_STORE_PATH: str = ""

    DEFAULT_ROLE: Role = Role.STUDENT

    AUDIT_ENABLED: bool = True
    AUDIT_DIR: str = "audit"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

    @field_validator("ORIGIN")
    @classmethod
    def normalize_origin(cls, v: str) -> str:
        """
        ORIGIN must be an absolute http(s) origin.

        Normalization:
          - strip whitespace
          - strip trailing slash
          - require http/https
          - require hostname
          - lowercase hostname

        Note: we preserve an optional port if present.
        """
        v = (v or "").strip().rstrip("/")
        p = urlparse(v)

        if p.scheme not in ("http", "https"):
            raise ValueError("ORIGIN must start with http:// or https://")

        if not p.hostname:
            raise ValueError("ORIGIN must include a hostname")

        netloc = p.hostname.lower()
        if p.port:
            netloc = f"{netloc}:{p.port}"

        return urlunparse((p.scheme, netloc, "", "", "", ""))

    @field_validator("NONCE_TTL_SECONDS", "SESSION_TTL_SECONDS")
    @classmethod
    def positive_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("TTL must be a positive number of seconds")
        return v

    @field_validator("NONCE_BYTES")
    @classmethod
    def enough_entropy(cls, v: int) -> int:
        # 128 bits is the floor for unguessable challenges
        if v < 16:
            raise ValueError("NONCE_BYTES must be >= 16")
        return v

    @field_validator("AUDIT_ENABLED")
    @classmethod
    def normalize_bool(cls, v):
        # accept 0/1, "true"/"false" from env consistently
        if isinstance(v, bool):
            return v
        if isinstance(v, int):
            return bool(v)
        if isinstance(v, str):
            return v.strip().lower() not in ("0", "false", "no", "off", "")
        return True

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        v = (v or "").strip().upper() or "INFO"
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown LOG_LEVEL: {v}")
        return v


settings = Settings()
