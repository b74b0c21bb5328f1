"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    ACCESS_TOKEN_TTL_SECONDS: int
    REFRESH_TOKEN_TTL_SECONDS: int
    ALLOW_INSECURE_JWT: bool
    COOKIE_SECURE: bool
    COOKIE_DOMAIN: str | None
    CORS_ORIGINS: list[str]
    ALLOW_SIGNUP: bool
    MAX_UPLOAD_BYTES: int
    UPLOAD_DIR: Path
    FILE_BASE_URL: str
    ORPHAN_FILE_HOURS: int
    DELETED_POST_RETENTION_DAYS: int
    ENABLE_SCHEDULER: bool
    LOGIN_RATE_LIMIT_PER_MIN: int
    ADMIN_EMAIL: str | None
    ADMIN_PASSWORD: str | None
    ADMIN_NICKNAME: str
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'blog.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.ACCESS_TOKEN_TTL_SECONDS = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", str(30 * 60)))
        self.REFRESH_TOKEN_TTL_SECONDS = int(os.getenv("REFRESH_TOKEN_TTL_SECONDS", str(14 * 24 * 3600)))
        self.ALLOW_INSECURE_JWT = _flag("ALLOW_INSECURE_JWT", "false")
        self.COOKIE_SECURE = _flag("COOKIE_SECURE", "false")
        self.COOKIE_DOMAIN = os.getenv("COOKIE_DOMAIN") or None
        self.CORS_ORIGINS = [
            o.strip()
            for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
            if o.strip()
        ]
        self.ALLOW_SIGNUP = _flag("ALLOW_SIGNUP", "true")
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MB default
        self.UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE / "uploads"))).expanduser().resolve()
        self.FILE_BASE_URL = os.getenv("FILE_BASE_URL", "/files").rstrip("/")
        self.ORPHAN_FILE_HOURS = int(os.getenv("ORPHAN_FILE_HOURS", "24"))
        self.DELETED_POST_RETENTION_DAYS = int(os.getenv("DELETED_POST_RETENTION_DAYS", "7"))
        self.ENABLE_SCHEDULER = _flag("ENABLE_SCHEDULER", "true")
        self.LOGIN_RATE_LIMIT_PER_MIN = int(os.getenv("LOGIN_RATE_LIMIT_PER_MIN", "10"))
        self.ADMIN_EMAIL = os.getenv("ADMIN_EMAIL") or None
        self.ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD") or None
        self.ADMIN_NICKNAME = os.getenv("ADMIN_NICKNAME", "admin")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.ACCESS_TOKEN_TTL_SECONDS <= 0 or self.REFRESH_TOKEN_TTL_SECONDS <= 0:
            raise RuntimeError("token lifetimes must be positive")


settings = Settings()
