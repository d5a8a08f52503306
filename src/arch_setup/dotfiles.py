"""
Dotfiles materialization.

Two strategies are supported:

* ``link``: a fixed table of known application directories is symlinked into
  ``~/.config`` and ``~/Pictures``; the avatar image is copied into the
  AccountsService directory. Unknown entries in the source are ignored.
* ``copy``: the whole source tree is mirrored into ``~/.config`` with
  deletion of stale files (``rsync -a --delete --chown`` semantics), and
  ``~/.config/wallpapers`` is mirrored into ``~/Pictures/wallpapers``.

Both finish by re-owning ``~/.config`` and ``~/Pictures`` to the target user.
The source tree is only ever read.
"""
import configparser
import datetime
import logging
import os
import shutil
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from arch_setup.errors import FatalError
from arch_setup.report import RunReport, StepResult
from arch_setup.system import get_user_credentials

logger = logging.getLogger("arch_setup")

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".webp")


class Strategy(str, Enum):
    LINK = "link"
    COPY = "copy"


@dataclass(frozen=True)
class DotfilesConfig:
    source_root: Path
    target_home: Path
    target_user: str
    strategy: Strategy = Strategy.COPY
    accounts_service_dir: Path = Path("/var/lib/AccountsService")

    @property
    def config_dir(self) -> Path:
        return self.target_home / ".config"

    @property
    def pictures_dir(self) -> Path:
        return self.target_home / "Pictures"

    @property
    def wallpapers_dir(self) -> Path:
        return self.pictures_dir / "wallpapers"


@dataclass(frozen=True)
class LinkRule:
    """
    One placement rule of the link strategy.

    ``sources`` are alternatives relative to the source root; the first that
    exists is used. ``destination`` is relative to the target home. With
    ``expand`` set, every regular file inside the source directory is linked
    individually into the destination directory.
    """

    sources: Tuple[str, ...]
    destination: str
    expand: bool = False

    def resolve(self, source_root: Path) -> Optional[Path]:
        for candidate in self.sources:
            path = source_root / candidate
            if path.exists():
                return path
        return None


@dataclass(frozen=True)
class Category:
    name: str
    rules: Tuple[LinkRule, ...]


LINK_CATEGORIES: Tuple[Category, ...] = (
    Category("alacritty", (LinkRule(("alacritty",), ".config/alacritty"),)),
    Category("gtklock", (LinkRule(("gtklock",), ".config/gtklock"),)),
    Category(
        "hypr",
        (
            LinkRule(("hypr/hyprland.conf",), ".config/hypr/hyprland.conf"),
            LinkRule(("hypr/conf.d",), ".config/hypr/conf.d", expand=True),
            LinkRule(("hypr/scripts",), ".config/hypr/scripts"),
            LinkRule(("hypr/shaders", "shaders"), ".config/hypr/shaders"),
        ),
    ),
    Category("wallpapers", (LinkRule(("wallpapers",), "Pictures/wallpapers"),)),
)

FACES_DIR = "faces"


@dataclass
class SyncStats:
    copied: int = 0
    deleted: int = 0
    skipped: int = 0

    def __str__(self) -> str:
        return f"{self.copied} copied, {self.deleted} deleted, {self.skipped} unchanged"


# ------------------------------
# Entry point
# ------------------------------
def materialize(config: DotfilesConfig) -> RunReport:
    """
    Produce the configuration tree for ``config.target_user``.

    Raises:
        FatalError: the target home does not exist or the target user is
            unknown; nothing has been written in that case.

    Returns:
        A report with one result per processed category.
    """
    report = RunReport()
    source = config.source_root
    if not source.is_dir():
        msg = f"Skip dotfiles: {source} missing"
        logger.warning(msg)
        report.add(StepResult.skipped("dotfiles", msg))
        return report

    if not config.target_home.is_dir():
        raise FatalError(f"Home directory {config.target_home} not found.")
    try:
        uid, gid = get_user_credentials(config.target_user)
    except KeyError:
        raise FatalError(f"User {config.target_user} does not exist.") from None

    logger.info(
        f"Materializing {source} into {config.target_home} ({config.strategy.value} strategy)"
    )
    if config.strategy is Strategy.LINK:
        _link_strategy(config, report)
    else:
        _copy_strategy(config, uid, gid, report)

    report.add(
        _run_category(
            "ownership",
            lambda: _fix_ownership([config.config_dir, config.pictures_dir], uid, gid),
        )
    )
    return report


def _run_category(name: str, action: Callable[[], Optional[str]]) -> Optional[StepResult]:
    try:
        message = action()
    except (OSError, configparser.Error, ValueError) as e:
        logger.warning(f"Dotfiles category '{name}' failed: {e}")
        return StepResult.failed(name, str(e))
    if message is None:
        return None
    logger.info(f"{name}: {message}")
    return StepResult.ok(name, message)


# ------------------------------
# Link strategy
# ------------------------------
def _link_strategy(config: DotfilesConfig, report: RunReport) -> None:
    for category in LINK_CATEGORIES:
        result = _run_category(category.name, lambda c=category: _link_category(config, c))
        if result is not None:
            report.add(result)

    result = _run_category(FACES_DIR, lambda: install_avatar(config))
    if result is not None:
        report.add(result)


def _link_category(config: DotfilesConfig, category: Category) -> Optional[str]:
    linked: List[str] = []
    for rule in category.rules:
        src = rule.resolve(config.source_root)
        if src is None:
            continue
        dest = config.target_home / rule.destination
        if rule.expand:
            if not src.is_dir():
                continue
            _real_dir(dest)
            for fragment in sorted(src.iterdir()):
                if fragment.is_file():
                    replace_symlink(fragment, dest / fragment.name)
                    linked.append(str(dest / fragment.name))
        else:
            replace_symlink(src, dest)
            linked.append(str(dest))
    if not linked:
        return None
    return f"linked {len(linked)} path(s)"


def replace_symlink(src: Path, dest: Path) -> None:
    """
    Point ``dest`` at ``src``, replacing whatever link or file is there.

    The new link is created under a temporary name and renamed into place so
    the destination never disappears. A real directory in the way is moved
    aside to ``<name>.bak.<timestamp>``.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    if dest.is_dir() and not dest.is_symlink():
        timestamp = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
        backup = dest.with_name(f"{dest.name}.bak.{timestamp}")
        logger.warning(f"Moving existing directory {dest} to {backup}")
        dest.rename(backup)

    tmp = dest.with_name(f".{dest.name}.tmp-{os.getpid()}")
    if tmp.is_symlink() or tmp.exists():
        tmp.unlink()
    os.symlink(os.path.abspath(src), tmp)
    try:
        os.replace(tmp, dest)
    except OSError:
        tmp.unlink()
        raise


def pick_avatar(faces_dir: Path) -> Optional[Path]:
    """First image in ``faces_dir`` by name, ignoring subdirectories."""
    if not faces_dir.is_dir():
        return None
    candidates = sorted(
        (
            p
            for p in faces_dir.iterdir()
            if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
        ),
        key=lambda p: p.name,
    )
    return candidates[0] if candidates else None


def install_avatar(config: DotfilesConfig) -> Optional[str]:
    """
    Copy the avatar into AccountsService and point the user entry at it.

    The icon stays owned by the invoking (root) account; it lives in a system
    directory, so it is copied rather than linked.
    """
    faces = config.source_root / FACES_DIR
    if not faces.is_dir():
        return None
    avatar = pick_avatar(faces)
    if avatar is None:
        logger.warning(f"No image found in {faces}; avatar left unchanged.")
        return None

    icons_dir = config.accounts_service_dir / "icons"
    users_dir = config.accounts_service_dir / "users"
    icons_dir.mkdir(parents=True, exist_ok=True)
    users_dir.mkdir(parents=True, exist_ok=True)

    icon = icons_dir / config.target_user
    shutil.copyfile(avatar, icon)
    os.chmod(icon, 0o644)

    user_file = users_dir / config.target_user
    parser = configparser.RawConfigParser(strict=False)
    parser.optionxform = str  # AccountsService keys are case-sensitive
    if user_file.is_file():
        parser.read(user_file, encoding="utf-8")
    if not parser.has_section("User"):
        parser.add_section("User")
    parser.set("User", "Icon", str(icon))
    with open(user_file, "w", encoding="utf-8") as f:
        parser.write(f, space_around_delimiters=False)
    os.chmod(user_file, 0o600)
    return f"installed {avatar.name} as {icon}"


# ------------------------------
# Copy strategy
# ------------------------------
def _copy_strategy(config: DotfilesConfig, uid: int, gid: int, report: RunReport) -> None:
    report.add(
        _run_category(
            "sync",
            lambda: str(sync_tree(config.source_root, config.config_dir, uid, gid)),
        )
    )

    synced_wallpapers = config.config_dir / "wallpapers"

    def mirror_wallpapers() -> Optional[str]:
        if not synced_wallpapers.is_dir():
            return None
        return str(sync_tree(synced_wallpapers, config.wallpapers_dir, uid, gid))

    result = _run_category("wallpapers", mirror_wallpapers)
    if result is not None:
        report.add(result)


def sync_tree(
    src: Path, dest: Path, uid: Optional[int] = None, gid: Optional[int] = None
) -> SyncStats:
    """
    Mirror ``src`` into ``dest`` and delete what the source no longer has.

    Regular files are copied with their mode and mtime; a file whose size
    and mtime already match is left alone. Symlinks are recreated as
    symlinks. A link sitting at ``dest`` is replaced by a real directory, so
    nothing is ever written through it. When ``uid``/``gid`` are given, every
    created or updated entry is chowned in the same pass.
    """
    stats = SyncStats()
    _real_dir(dest)
    _chown(dest, uid, gid)
    # Directory modes are applied last so read-only directories can be filled
    dir_modes: List[Tuple[Path, Path]] = [(src, dest)]

    for root, dirs, files in os.walk(src):
        root_path = Path(root)
        out_dir = dest / root_path.relative_to(src)

        wanted = set(dirs) | set(files)
        for existing in sorted(out_dir.iterdir()):
            if existing.name not in wanted:
                logger.debug(f"Deleting stale {existing}")
                _remove(existing)
                stats.deleted += 1

        for name in dirs:
            s = root_path / name
            o = out_dir / name
            if s.is_symlink():
                _copy_symlink(s, o, uid, gid, stats)
                continue
            if o.is_symlink() or (o.exists() and not o.is_dir()):
                _remove(o)
                stats.deleted += 1
            o.mkdir(exist_ok=True)
            _chown(o, uid, gid)
            dir_modes.append((s, o))

        for name in files:
            s = root_path / name
            o = out_dir / name
            if s.is_symlink():
                _copy_symlink(s, o, uid, gid, stats)
                continue
            if not s.is_file():
                logger.debug(f"Skipping special file {s}")
                continue
            if o.is_symlink() or o.is_dir():
                _remove(o)
                stats.deleted += 1
            elif _unchanged(s, o):
                stats.skipped += 1
                _chown(o, uid, gid)
                continue
            elif o.exists():
                o.unlink()
            shutil.copy2(s, o)
            _chown(o, uid, gid)
            stats.copied += 1

    for s, o in reversed(dir_modes):
        shutil.copymode(s, o)
    return stats


def _unchanged(src: Path, dest: Path) -> bool:
    if not dest.is_file():
        return False
    a, b = src.stat(), dest.stat()
    return (
        a.st_size == b.st_size
        and a.st_mtime_ns == b.st_mtime_ns
        and stat.S_IMODE(a.st_mode) == stat.S_IMODE(b.st_mode)
    )


def _copy_symlink(
    src: Path, dest: Path, uid: Optional[int], gid: Optional[int], stats: SyncStats
) -> None:
    target = os.readlink(src)
    if dest.is_symlink() and os.readlink(dest) == target:
        stats.skipped += 1
    else:
        if dest.is_symlink() or dest.exists():
            _remove(dest)
        os.symlink(target, dest)
        stats.copied += 1
    _chown(dest, uid, gid)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _real_dir(path: Path) -> None:
    """Create ``path`` as a directory, dropping a symlink left in its place."""
    if path.is_symlink():
        logger.debug(f"Replacing link {path} with a directory")
        path.unlink()
    path.mkdir(parents=True, exist_ok=True)


def _chown(path: Path, uid: Optional[int], gid: Optional[int]) -> None:
    if uid is None or gid is None:
        return
    os.chown(path, uid, gid, follow_symlinks=False)


def _fix_ownership(paths: List[Path], uid: int, gid: int) -> str:
    """Recursively chown ``paths`` without following symlinks."""
    count = 0
    for top in paths:
        if top.is_symlink() or not top.is_dir():
            continue
        _chown(top, uid, gid)
        count += 1
        for root, dirs, files in os.walk(top):
            for name in dirs + files:
                _chown(Path(root) / name, uid, gid)
                count += 1
    return f"{count} entries owned by {uid}:{gid}"
