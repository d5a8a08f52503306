"""Tests for settings loading."""

from pathlib import Path

from arch_setup.core.config import Settings
from arch_setup.dotfiles import Strategy


def test_defaults(monkeypatch) -> None:
    monkeypatch.delenv("ARCH_SETUP_USERNAME", raising=False)

    settings = Settings()

    assert settings.username == "normi"
    assert settings.strategy is Strategy.COPY
    assert settings.user_home == Path("/home/normi")
    assert settings.locales == ["en_US.UTF-8 UTF-8", "fr_FR.UTF-8 UTF-8"]


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ARCH_SETUP_USERNAME", "alice")
    monkeypatch.setenv("ARCH_SETUP_STRATEGY", "link")
    monkeypatch.setenv("ARCH_SETUP_ENABLE_DOCKER", "false")
    monkeypatch.setenv("ARCH_SETUP_LOCALES", '["de_DE.UTF-8 UTF-8"]')
    monkeypatch.setenv("ARCH_SETUP_DOTS_DIR", str(tmp_path / "dots"))

    settings = Settings()

    assert settings.username == "alice"
    assert settings.strategy is Strategy.LINK
    assert settings.enable_docker is False
    assert settings.locales == ["de_DE.UTF-8 UTF-8"]
    assert settings.dots_dir == tmp_path / "dots"


def test_unprefixed_shell_variables_are_ignored(monkeypatch) -> None:
    monkeypatch.setenv("USERNAME", "shell-user")
    monkeypatch.setenv("HOSTNAME", "shell-host")

    settings = Settings()

    assert settings.username == "normi"
    assert settings.hostname == "veronica"


def test_dotfiles_config_derived_from_settings(tmp_path: Path) -> None:
    settings = Settings(
        username="bob",
        home_root=tmp_path,
        dots_dir=tmp_path / "dots",
        strategy=Strategy.LINK,
    )

    config = settings.dotfiles_config()

    assert config.target_home == tmp_path / "bob"
    assert config.target_user == "bob"
    assert config.strategy is Strategy.LINK
    assert config.config_dir == tmp_path / "bob" / ".config"
    assert config.wallpapers_dir == tmp_path / "bob" / "Pictures" / "wallpapers"
