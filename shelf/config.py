"""Config management for Shelfkeeper.

Reads `config.ini` from DATA_DIR (beside main.py unless the DATA_DIR
environment variable points elsewhere, e.g. a Docker volume).
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional

from .logging_config import get_logger

logger = get_logger(__name__)


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds all persistent state (config.ini, shelfkeeper.db, objects/).
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"
DEFAULT_DATABASE_URL = f"sqlite+aiosqlite:///{DATA_DIR / 'shelfkeeper.db'}"


@dataclasses.dataclass
class DatabaseConfig:
    url: str = DEFAULT_DATABASE_URL
    echo: bool = False


@dataclasses.dataclass
class AuthConfig:
    """Token signing and credential hashing settings."""

    secret_key: str = "change_this_secret"
    algorithm: str = "HS256"
    token_expire_minutes: int = 24 * 60
    bcrypt_rounds: int = 12


@dataclasses.dataclass
class StorageConfig:
    backend: str = "local"
    path: pathlib.Path = DATA_DIR / "objects"
    public_url: str = "http://localhost:8080/objects"
    supabase_url: str = ""
    supabase_key: str = ""
    bucket: str = "covers"

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key and self.bucket)


@dataclasses.dataclass
class UploadConfig:
    allowed_types: tuple[str, ...] = ("image/jpeg", "image/jpg", "image/png")
    max_size_mb: int = 3

    @property
    def max_size_bytes(self) -> int:
        return self.max_size_mb * 1024 * 1024


@dataclasses.dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclasses.dataclass
class ShelfConfig:
    database: DatabaseConfig = dataclasses.field(default_factory=DatabaseConfig)
    auth: AuthConfig = dataclasses.field(default_factory=AuthConfig)
    storage: StorageConfig = dataclasses.field(default_factory=StorageConfig)
    uploads: UploadConfig = dataclasses.field(default_factory=UploadConfig)
    logging: LoggingConfig = dataclasses.field(default_factory=LoggingConfig)

    @property
    def database_url(self) -> str:
        return self.database.url

    @property
    def database_path(self) -> Optional[pathlib.Path]:
        """Filesystem path of the SQLite database, None for other backends."""
        prefix = "sqlite+aiosqlite:///"
        if not self.database.url.startswith(prefix):
            return None
        rest = self.database.url[len(prefix):]
        if not rest or rest == ":memory:":
            return None
        return pathlib.Path(rest)


def _parse_bool(value: str, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_config(config_path: Optional[pathlib.Path] = None) -> ShelfConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    database = DatabaseConfig(
        url=parser.get("database", "url", fallback=DEFAULT_DATABASE_URL),
        echo=_parse_bool(parser.get("database", "echo", fallback="false"), False),
    )

    auth = AuthConfig(
        secret_key=parser.get("auth", "secret_key", fallback=AuthConfig.secret_key),
        algorithm=parser.get("auth", "algorithm", fallback="HS256"),
        token_expire_minutes=parser.getint(
            "auth", "token_expire_minutes", fallback=AuthConfig.token_expire_minutes
        ),
        bcrypt_rounds=parser.getint("auth", "bcrypt_rounds", fallback=12),
    )
    if auth.secret_key == AuthConfig.secret_key:
        logger.warning("auth.secret_key is the built-in default; set a real secret in config.ini")

    storage = StorageConfig(
        backend=parser.get("storage", "backend", fallback="local").strip().lower(),
        path=pathlib.Path(
            parser.get("storage", "path", fallback=str(DATA_DIR / "objects"))
        ).expanduser(),
        public_url=parser.get("storage", "public_url", fallback=StorageConfig.public_url),
        supabase_url=parser.get("storage", "supabase_url", fallback="").strip(),
        supabase_key=parser.get("storage", "supabase_key", fallback="").strip(),
        bucket=parser.get("storage", "bucket", fallback="covers").strip(),
    )

    uploads = UploadConfig(
        allowed_types=_split_csv(
            parser.get("uploads", "allowed_types", fallback="image/jpeg,image/jpg,image/png")
        ),
        max_size_mb=parser.getint("uploads", "max_size_mb", fallback=3),
    )

    return ShelfConfig(
        database=database,
        auth=auth,
        storage=storage,
        uploads=uploads,
        logging=LoggingConfig(level=parser.get("logging", "level", fallback="INFO")),
    )


def write_default_config(config_path: pathlib.Path, secret_key: str) -> pathlib.Path:
    """Write a config.ini with default settings and the given signing secret."""
    parser = configparser.ConfigParser()

    parser["database"] = {
        "url": DEFAULT_DATABASE_URL,
        "echo": "false",
    }
    parser["auth"] = {
        "secret_key": secret_key,
        "algorithm": "HS256",
        "token_expire_minutes": str(AuthConfig.token_expire_minutes),
        "bcrypt_rounds": "12",
    }
    parser["storage"] = {
        "backend": "local",
        "path": str(DATA_DIR / "objects"),
        "public_url": StorageConfig.public_url,
        "supabase_url": "",
        "supabase_key": "",
        "bucket": "covers",
    }
    parser["uploads"] = {
        "allowed_types": "image/jpeg,image/jpg,image/png",
        "max_size_mb": "3",
    }
    parser["logging"] = {
        "level": "INFO",
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as handle:
        parser.write(handle)
    return config_path


_cached_config: Optional[ShelfConfig] = None


def get_config() -> ShelfConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None
