"""Tests for the link strategy of the dotfiles materializer."""

import configparser
import os
from pathlib import Path

import pytest

from arch_setup.dotfiles import Strategy, materialize, pick_avatar, replace_symlink
from arch_setup.errors import FatalError
from arch_setup.report import StepStatus


def test_passthrough_directories_are_linked(make_config, dots: Path, home: Path) -> None:
    materialize(make_config(Strategy.LINK))

    for name in ("alacritty", "gtklock"):
        dest = home / ".config" / name
        assert dest.is_symlink()
        assert dest.resolve() == (dots / name).resolve()


def test_hypr_fragments_are_linked_individually(make_config, dots: Path, home: Path) -> None:
    materialize(make_config(Strategy.LINK))

    hypr = home / ".config" / "hypr"
    assert not hypr.is_symlink()
    assert (hypr / "hyprland.conf").resolve() == (dots / "hypr" / "hyprland.conf").resolve()
    conf_d = hypr / "conf.d"
    assert conf_d.is_dir() and not conf_d.is_symlink()
    assert sorted(p.name for p in conf_d.iterdir()) == ["binds.conf", "rules.conf"]
    for fragment in conf_d.iterdir():
        assert fragment.is_symlink()
        assert fragment.resolve() == (dots / "hypr" / "conf.d" / fragment.name).resolve()
    assert (hypr / "scripts").is_symlink()
    assert (hypr / "scripts").resolve() == (dots / "hypr" / "scripts").resolve()


def test_top_level_shaders_used_when_not_nested(make_config, dots: Path, home: Path) -> None:
    materialize(make_config(Strategy.LINK))

    shaders = home / ".config" / "hypr" / "shaders"
    assert shaders.is_symlink()
    assert shaders.resolve() == (dots / "shaders").resolve()


def test_nested_shaders_take_precedence(make_config, dots: Path, home: Path) -> None:
    (dots / "hypr" / "shaders").mkdir()

    materialize(make_config(Strategy.LINK))

    shaders = home / ".config" / "hypr" / "shaders"
    assert shaders.resolve() == (dots / "hypr" / "shaders").resolve()


def test_wallpapers_linked_into_pictures(make_config, dots: Path, home: Path) -> None:
    materialize(make_config(Strategy.LINK))

    dest = home / "Pictures" / "wallpapers"
    assert dest.is_symlink()
    assert dest.resolve() == (dots / "wallpapers").resolve()


def test_unknown_entries_are_ignored(make_config, home: Path) -> None:
    report = materialize(make_config(Strategy.LINK))

    assert not (home / ".config" / "unknown-app").exists()
    assert "unknown-app" not in report.by_name()


def test_missing_categories_produce_nothing(make_config, dots: Path, home: Path) -> None:
    for name in ("gtklock", "wallpapers"):
        for child in (dots / name).iterdir():
            child.unlink()
        (dots / name).rmdir()

    report = materialize(make_config(Strategy.LINK))

    assert not (home / ".config" / "gtklock").exists()
    assert not (home / "Pictures" / "wallpapers").exists()
    assert "gtklock" not in report.by_name()
    assert report.ok


def test_existing_links_and_files_are_replaced(make_config, dots: Path, home: Path, tmp_path: Path) -> None:
    config_dir = home / ".config"
    config_dir.mkdir()
    stale = tmp_path / "stale"
    stale.mkdir()
    (config_dir / "alacritty").symlink_to(stale)
    (config_dir / "gtklock").write_text("old file")

    materialize(make_config(Strategy.LINK))
    materialize(make_config(Strategy.LINK))

    assert (config_dir / "alacritty").resolve() == (dots / "alacritty").resolve()
    assert (config_dir / "gtklock").resolve() == (dots / "gtklock").resolve()
    assert not list(config_dir.glob(".*tmp-*"))


def test_real_directory_is_moved_aside(tmp_path: Path) -> None:
    src = tmp_path / "src"
    src.mkdir()
    dest = tmp_path / "dest"
    dest.mkdir()
    (dest / "keep.txt").write_text("user data")

    replace_symlink(src, dest)

    assert dest.is_symlink()
    backups = list(tmp_path.glob("dest.bak.*"))
    assert len(backups) == 1
    assert (backups[0] / "keep.txt").read_text() == "user data"


def test_source_tree_is_not_mutated(make_config, dots: Path) -> None:
    before = sorted(str(p.relative_to(dots)) for p in dots.rglob("*"))

    materialize(make_config(Strategy.LINK))

    after = sorted(str(p.relative_to(dots)) for p in dots.rglob("*"))
    assert before == after


def test_pick_avatar_is_deterministic(dots: Path) -> None:
    picks = {pick_avatar(dots / "faces") for _ in range(5)}

    assert picks == {dots / "faces" / "a.png"}


def test_pick_avatar_matches_suffix_case_insensitively(tmp_path: Path) -> None:
    faces = tmp_path / "faces"
    faces.mkdir()
    (faces / "readme.md").write_text("x")
    (faces / "Me.JPG").write_bytes(b"img")
    (faces / "nested").mkdir()
    (faces / "nested" / "0.png").write_bytes(b"img")

    assert pick_avatar(faces) == faces / "Me.JPG"


def test_pick_avatar_none_without_images(tmp_path: Path) -> None:
    faces = tmp_path / "faces"
    faces.mkdir()
    (faces / "notes.txt").write_text("x")

    assert pick_avatar(faces) is None


def test_avatar_copied_with_accounts_service_entry(make_config, current_user: str, tmp_path: Path) -> None:
    config = make_config(Strategy.LINK)

    report = materialize(config)

    icon = config.accounts_service_dir / "icons" / current_user
    assert icon.is_file() and not icon.is_symlink()
    assert icon.read_bytes() == b"a-image"
    parser = configparser.ConfigParser()
    parser.optionxform = str
    parser.read(config.accounts_service_dir / "users" / current_user)
    assert parser.get("User", "Icon") == str(icon)
    assert report.get("faces").status is StepStatus.SUCCESS


def test_avatar_entry_keeps_existing_keys(make_config, current_user: str) -> None:
    config = make_config(Strategy.LINK)
    users = config.accounts_service_dir / "users"
    users.mkdir(parents=True)
    (users / current_user).write_text("[User]\nSession=hyprland\nSystemAccount=false\n")

    materialize(config)

    text = (users / current_user).read_text()
    assert "Session=hyprland" in text
    assert "SystemAccount=false" in text
    assert "Icon=" in text


def test_missing_home_is_fatal_and_creates_nothing(make_config, tmp_path: Path) -> None:
    home = tmp_path / "nobody"
    config = make_config(Strategy.LINK, target_home=home)

    with pytest.raises(FatalError):
        materialize(config)

    assert not home.exists()
    assert not config.accounts_service_dir.exists()


def test_missing_source_is_skipped(make_config, home: Path, tmp_path: Path) -> None:
    report = materialize(make_config(Strategy.LINK, source_root=tmp_path / "absent"))

    assert [r.status for r in report] == [StepStatus.SKIPPED]
    assert list(home.iterdir()) == []


def test_category_failure_does_not_stop_others(make_config, dots: Path, home: Path) -> None:
    # A regular file where .config/hypr must be a directory breaks only hypr
    (home / ".config").mkdir()
    (home / ".config" / "hypr").write_text("in the way")

    report = materialize(make_config(Strategy.LINK))

    assert report.get("hypr").status is StepStatus.FAILED
    assert report.get("alacritty").status is StepStatus.SUCCESS
    assert (home / "Pictures" / "wallpapers").is_symlink()


def test_ownership_set_on_config_and_pictures(make_config, home: Path) -> None:
    materialize(make_config(Strategy.LINK))

    for top in (home / ".config", home / "Pictures"):
        for root, dirs, files in os.walk(top):
            for name in dirs + files:
                assert os.lstat(os.path.join(root, name)).st_uid == os.getuid()


def test_linked_fragment_directory_becomes_real(make_config, dots: Path, home: Path) -> None:
    source_fragments = dots / "hypr" / "conf.d"
    conf_d = home / ".config" / "hypr" / "conf.d"
    conf_d.parent.mkdir(parents=True)
    conf_d.symlink_to(source_fragments)
    before = {p.name: p.read_text() for p in source_fragments.iterdir()}

    report = materialize(make_config(Strategy.LINK))

    assert report.get("hypr").status is StepStatus.SUCCESS
    assert conf_d.is_dir() and not conf_d.is_symlink()
    assert (conf_d / "binds.conf").resolve() == (source_fragments / "binds.conf").resolve()
    assert all(not p.is_symlink() for p in source_fragments.iterdir())
    assert {p.name: p.read_text() for p in source_fragments.iterdir()} == before


def test_malformed_accounts_service_entry_fails_only_faces(make_config, current_user: str, home: Path) -> None:
    config = make_config(Strategy.LINK)
    users = config.accounts_service_dir / "users"
    users.mkdir(parents=True)
    (users / current_user).write_text("Icon=/old\n")

    report = materialize(config)

    assert report.get("faces").status is StepStatus.FAILED
    assert report.get("alacritty").status is StepStatus.SUCCESS
    assert report.get("ownership").status is StepStatus.SUCCESS
    assert (home / ".config" / "alacritty").is_symlink()


def test_duplicate_accounts_service_keys_are_tolerated(make_config, current_user: str) -> None:
    config = make_config(Strategy.LINK)
    users = config.accounts_service_dir / "users"
    users.mkdir(parents=True)
    (users / current_user).write_text("[User]\nIcon=/a\nIcon=/b\n")

    report = materialize(config)

    assert report.get("faces").status is StepStatus.SUCCESS
    icon = config.accounts_service_dir / "icons" / current_user
    assert f"Icon={icon}" in (users / current_user).read_text()
