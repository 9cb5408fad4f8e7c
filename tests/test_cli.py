from typer.testing import CliRunner

import main
from shelf.config import load_config

runner = CliRunner()


def test_init_writes_config_with_random_secret(tmp_path, monkeypatch):
    path = tmp_path / "config.ini"
    monkeypatch.setattr(main, "DEFAULT_CONFIG_PATH", path)

    result = runner.invoke(main.app, ["init"])

    assert result.exit_code == 0
    assert load_config(path).auth.secret_key != "change_this_secret"


def test_init_refuses_to_overwrite(tmp_path, monkeypatch):
    path = tmp_path / "config.ini"
    path.write_text("[auth]\nsecret_key = keep-me\n")
    monkeypatch.setattr(main, "DEFAULT_CONFIG_PATH", path)

    result = runner.invoke(main.app, ["init"])

    assert result.exit_code == 1
    assert load_config(path).auth.secret_key == "keep-me"


def test_reset_requires_confirmation():
    result = runner.invoke(main.app, ["reset"])

    assert result.exit_code == 1
    assert "--confirm" in result.output
