import os
import pwd
from pathlib import Path

import pytest

from arch_setup.dotfiles import DotfilesConfig, Strategy


@pytest.fixture
def current_user() -> str:
    return pwd.getpwuid(os.getuid()).pw_name


@pytest.fixture
def dots(tmp_path: Path) -> Path:
    """A dotfiles tree with every recognized category plus an unknown entry."""
    root = tmp_path / "dots"
    (root / "alacritty").mkdir(parents=True)
    (root / "alacritty" / "alacritty.toml").write_text("[font]\nsize = 11\n")
    (root / "gtklock").mkdir()
    (root / "gtklock" / "style.css").write_text("window { }\n")
    hypr = root / "hypr"
    (hypr / "conf.d").mkdir(parents=True)
    (hypr / "hyprland.conf").write_text("source = ~/.config/hypr/conf.d/binds.conf\n")
    (hypr / "conf.d" / "binds.conf").write_text("bind = SUPER, Return, exec, alacritty\n")
    (hypr / "conf.d" / "rules.conf").write_text("windowrule = float, pavucontrol\n")
    (hypr / "scripts").mkdir()
    (hypr / "scripts" / "lock.sh").write_text("#!/bin/sh\ngtklock\n")
    os.chmod(hypr / "scripts" / "lock.sh", 0o755)
    (root / "shaders").mkdir()
    (root / "shaders" / "blue.frag").write_text("void main() {}\n")
    (root / "wallpapers").mkdir()
    (root / "wallpapers" / "mountains.jpg").write_bytes(b"\xff\xd8jpeg")
    (root / "faces").mkdir()
    (root / "faces" / "b.jpg").write_bytes(b"b-image")
    (root / "faces" / "a.png").write_bytes(b"a-image")
    (root / "faces" / "notes.txt").write_text("not an image\n")
    (root / "unknown-app").mkdir()
    (root / "unknown-app" / "config").write_text("x = 1\n")
    return root


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home" / "normi"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def make_config(dots: Path, home: Path, current_user: str, tmp_path: Path):
    def factory(strategy: Strategy = Strategy.COPY, **kwargs) -> DotfilesConfig:
        values = dict(
            source_root=dots,
            target_home=home,
            target_user=current_user,
            strategy=strategy,
            accounts_service_dir=tmp_path / "AccountsService",
        )
        values.update(kwargs)
        return DotfilesConfig(**values)

    return factory
