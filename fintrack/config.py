import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DB_FILENAME = "financeiro.db"
BACKUP_DIRNAME = "backups"
MIN_BCRYPT_ROUNDS = 10


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")


@dataclass
class Settings:
    data_dir: str = "data"
    host: str = "0.0.0.0"
    port: int = 3000
    jwt_secret: str = field(default_factory=lambda: secrets.token_hex(32))
    jwt_refresh_secret: str = field(default_factory=lambda: secrets.token_hex(32))
    access_token_minutes: int = 60
    refresh_token_days: int = 7
    min_password_length: int = 6
    bcrypt_rounds: int = 12
    backup_interval_hours: float = 6
    backup_retention: int = 10
    token_sweep_hours: float = 24
    timezone: str = "America/Sao_Paulo"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    static_dir: str = "public"
    log_level: str = "INFO"

    def __post_init__(self):
        if self.bcrypt_rounds < MIN_BCRYPT_ROUNDS:
            raise ValueError(f"BCRYPT_ROUNDS must be at least {MIN_BCRYPT_ROUNDS}")
        if self.min_password_length < 1:
            raise ValueError("MIN_PASSWORD_LENGTH must be positive")
        if self.backup_retention < 1:
            raise ValueError("BACKUP_RETENTION must be positive")
        if self.access_token_minutes <= 0 or self.refresh_token_days <= 0:
            raise ValueError("token lifetimes must be positive")
        if self.backup_interval_hours <= 0 or self.token_sweep_hours <= 0:
            raise ValueError("maintenance intervals must be positive")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown TIMEZONE {self.timezone!r}")

    @property
    def db_path(self) -> str:
        return os.path.join(self.data_dir, DB_FILENAME)

    @property
    def backup_dir(self) -> str:
        return os.path.join(self.data_dir, BACKUP_DIRNAME)

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.db_path}"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from the process environment (and a ``.env`` file if present).

        Secrets that are not configured are generated at random, which means
        issued tokens stop validating after a restart.
        """
        if env is None:
            load_dotenv()
            env = os.environ

        kwargs = {}
        for key, attr in (("JWT_SECRET", "jwt_secret"), ("JWT_REFRESH_SECRET", "jwt_refresh_secret")):
            if env.get(key):
                kwargs[attr] = env[key]
            else:
                logger.warning("%s not set, using a random secret; sessions will not survive a restart", key)

        origins = [o.strip() for o in env.get("CORS_ORIGINS", "*").split(",") if o.strip()]

        return cls(
            data_dir=env.get("DATA_DIR") or os.path.join(os.getcwd(), "data"),
            host=env.get("HOST") or "0.0.0.0",
            port=_int(env, "PORT", 3000),
            access_token_minutes=_int(env, "ACCESS_TOKEN_MINUTES", 60),
            refresh_token_days=_int(env, "REFRESH_TOKEN_DAYS", 7),
            min_password_length=_int(env, "MIN_PASSWORD_LENGTH", 6),
            bcrypt_rounds=_int(env, "BCRYPT_ROUNDS", 12),
            backup_interval_hours=_float(env, "BACKUP_INTERVAL_HOURS", 6),
            backup_retention=_int(env, "BACKUP_RETENTION", 10),
            token_sweep_hours=_float(env, "TOKEN_SWEEP_HOURS", 24),
            timezone=env.get("TIMEZONE") or "America/Sao_Paulo",
            cors_origins=origins or ["*"],
            static_dir=env.get("STATIC_DIR") or os.path.join(os.getcwd(), "public"),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            **kwargs,
        )
