import pathlib

import pytest

from shelf import config as config_module
from shelf.config import ShelfConfig, load_config, write_default_config


def test_missing_config_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "config.ini")


def test_load_config_reads_every_section(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text(
        """
[database]
url = sqlite+aiosqlite:///:memory:
echo = yes

[auth]
secret_key = s3cret
token_expire_minutes = 15
bcrypt_rounds = 10

[storage]
backend = Supabase
supabase_url = https://project.supabase.co
supabase_key = key
bucket = shelf

[uploads]
allowed_types = image/png, image/webp
max_size_mb = 5

[logging]
level = DEBUG
"""
    )

    config = load_config(path)

    assert config.database.echo is True
    assert config.database_path is None
    assert config.auth.secret_key == "s3cret"
    assert config.auth.algorithm == "HS256"
    assert config.auth.token_expire_minutes == 15
    assert config.auth.bcrypt_rounds == 10
    assert config.storage.backend == "supabase"
    assert config.storage.supabase_enabled is True
    assert config.uploads.allowed_types == ("image/png", "image/webp")
    assert config.uploads.max_size_bytes == 5 * 1024 * 1024
    assert config.logging.level == "DEBUG"


def test_written_defaults_load_back(tmp_path):
    path = write_default_config(tmp_path / "nested" / "config.ini", secret_key="generated")

    config = load_config(path)

    assert config.auth.secret_key == "generated"
    assert config.storage.backend == "local"
    assert config.uploads.allowed_types == ("image/jpeg", "image/jpg", "image/png")
    assert config.uploads.max_size_mb == 3
    assert config.database_path == config_module.DATA_DIR / "shelfkeeper.db"


def test_database_path_for_sqlite_files():
    config = ShelfConfig()
    config.database.url = "sqlite+aiosqlite:////var/lib/shelf/db.sqlite"

    assert config.database_path == pathlib.Path("/var/lib/shelf/db.sqlite")


def test_get_config_is_cached(tmp_path, monkeypatch):
    path = write_default_config(tmp_path / "config.ini", secret_key="cached")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", path)
    config_module.reset_config_cache()
    try:
        assert config_module.get_config() is config_module.get_config()
        assert config_module.get_config().auth.secret_key == "cached"
    finally:
        config_module.reset_config_cache()
