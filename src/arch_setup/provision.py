"""
Arch Linux desktop provisioning.

The run is an explicit, ordered list of named steps. Each step declares the
preconditions it needs (root, an existing user account, the user's home,
the yay AUR helper) and optionally a settings toggle that disables it.
Unmet preconditions and disabled toggles skip the step; a failing step is
recorded and the run carries on, except for fatal steps which abort it.
"""
import logging
import os
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from arch_setup import system, ui
from arch_setup.core.config import Settings
from arch_setup.dotfiles import materialize
from arch_setup.errors import FatalError, StepError
from arch_setup.report import RunReport, StepResult, StepStatus
from arch_setup.system import run_command

logger = logging.getLogger("arch_setup")

# System files touched by the steps
PACMAN_CONF = Path("/etc/pacman.conf")
LOCALE_GEN = Path("/etc/locale.gen")
LOCALE_CONF = Path("/etc/locale.conf")
VCONSOLE_CONF = Path("/etc/vconsole.conf")
ZONEINFO_DIR = Path("/usr/share/zoneinfo")
LOCALTIME = Path("/etc/localtime")
HOSTNAME_FILE = Path("/etc/hostname")
HOSTS_FILE = Path("/etc/hosts")
SUDOERS_WHEEL = Path("/etc/sudoers.d/10-wheel")
KVM_MODPROBE = Path("/etc/modprobe.d/kvm-intel.conf")

BASE_PACKAGES = [
    "base-devel", "git", "curl", "wget", "rsync", "unzip", "zip",
    "bash-completion", "linux-headers", "networkmanager", "iwd", "openssh",
    "reflector", "dmidecode", "fish",
]
DESKTOP_PACKAGES = [
    "hyprland", "xorg-xwayland",
    "xdg-desktop-portal", "xdg-desktop-portal-gtk", "xdg-desktop-portal-hyprland",
    "alacritty", "fuzzel", "wl-clipboard", "grim", "slurp",
    "swayidle", "gtklock", "libnotify",
    "network-manager-applet", "blueman",
    "brightnessctl", "pamixer", "pavucontrol",
]
AUDIO_PACKAGES = ["pipewire", "wireplumber", "pipewire-alsa", "pipewire-pulse", "pipewire-jack"]
BLUETOOTH_PACKAGES = ["bluez", "bluez-utils"]
FIRMWARE_PACKAGES = ["fwupd", "upower", "mesa", "vulkan-icd-loader"]
FONT_PACKAGES = [
    "noto-fonts", "noto-fonts-cjk", "noto-fonts-emoji",
    "ttf-dejavu", "ttf-liberation", "ttf-font-awesome",
]
AUR_FONT_PACKAGES = ["ttf-jetbrains-mono-nerd", "nerd-fonts-symbols-only", "ttf-material-design-icons"]
DOCKER_PACKAGES = ["docker", "docker-compose"]
LIBVIRT_PACKAGES = [
    "libvirt", "qemu-full", "edk2-ovmf", "dnsmasq", "bridge-utils",
    "virt-manager", "spice-gtk", "virt-viewer",
]

KVM_OPTIONS = """options kvm_intel nested=1
options kvm_intel emulate_invalid_guest_state=0
options kvm ignore_msrs=1
"""
MULTILIB_BLOCK = "\n[multilib]\nInclude = /etc/pacman.d/mirrorlist\n"
NOCTALIA_EXEC = "exec-once = qs -c noctalia-shell"

YAY_BUILD_SCRIPT = """
set -e
cd ~
rm -rf yay
git clone https://aur.archlinux.org/yay.git
cd yay
makepkg -si --noconfirm
"""


# ------------------------------
# Pure file transformations
# ------------------------------
def tune_pacman_conf(text: str) -> str:
    """Enable colour, parallel downloads, ILoveCandy and the multilib repo."""
    text = re.sub(r"^#Color", "Color", text, flags=re.M)
    text = re.sub(r"^#ParallelDownloads.*$", "ParallelDownloads = 10", text, flags=re.M)
    if not re.search(r"^ILoveCandy", text, flags=re.M):
        text = re.sub(r"^(Color.*)$", r"\1\nILoveCandy", text, count=1, flags=re.M)
    if not re.search(r"^\[multilib\]", text, flags=re.M):
        if text and not text.endswith("\n"):
            text += "\n"
        text += MULTILIB_BLOCK
    return text


def enable_locales(text: str, locales: Sequence[str]) -> str:
    """Uncomment each locale in locale.gen, appending those not listed."""
    for locale in locales:
        text = re.sub(rf"^#\s*{re.escape(locale)}", locale, text, flags=re.M)
        if not re.search(rf"^{re.escape(locale)}$", text, flags=re.M):
            if text and not text.endswith("\n"):
                text += "\n"
            text += f"{locale}\n"
    return text


def add_host_entry(text: str, hostname: str) -> str:
    if hostname in text:
        return text
    return f"{text}\n127.0.1.1 {hostname}.localdomain {hostname}\n"


# ------------------------------
# Step table
# ------------------------------
@dataclass(frozen=True)
class Step:
    name: str
    description: str
    requires: Tuple[str, ...] = ()
    toggle: Optional[str] = None
    fatal: bool = False


STEPS: Tuple[Step, ...] = (
    Step("need_root", "Checking for root privileges", fatal=True),
    Step("tune_pacman", "Tuning pacman.conf", requires=("root",)),
    Step("set_locale", "Configuring locales and keymap", requires=("root",)),
    Step("set_time_host", "Setting timezone and hostname", requires=("root",)),
    Step("install_base", "Installing base packages", requires=("root",)),
    Step("sudo_wheel", "Granting sudo to wheel", requires=("root",)),
    Step("create_user", "Creating user account", requires=("root",), toggle="create_user"),
    Step("set_default_shell", "Setting default shell", requires=("root", "user")),
    Step("install_desktop", "Installing desktop environment", requires=("root",)),
    Step("install_yay", "Installing yay", requires=("root", "user")),
    Step("install_aur_goodies", "Installing AUR fonts", requires=("user", "yay")),
    Step("install_docker", "Installing Docker", requires=("root", "user"), toggle="enable_docker"),
    Step(
        "install_libvirt", "Installing libvirt", requires=("root", "user"), toggle="enable_libvirt"
    ),
    Step(
        "install_noctalia",
        "Installing noctalia-shell",
        requires=("user", "yay"),
        toggle="enable_noctalia",
    ),
    Step("apply_dotfiles", "Materializing dotfiles"),
    Step(
        "ensure_noctalia_autostart",
        "Enabling noctalia-shell autostart",
        requires=("home",),
        toggle="enable_noctalia",
    ),
)

PRECONDITIONS: Dict[str, Callable[["Provisioner"], bool]] = {
    "root": lambda p: os.geteuid() == 0,
    "user": lambda p: system.user_exists(p.settings.username),
    "home": lambda p: p.settings.user_home.is_dir(),
    "yay": lambda p: system.command_exists("yay"),
}

StepOutcome = Union[None, str, StepResult]


class Provisioner:
    """Runs the provisioning steps in order and collects a report."""

    def __init__(self, settings: Settings, steps: Sequence[Step] = STEPS) -> None:
        self.settings = settings
        self.steps = list(steps)
        self.report = RunReport()
        self.logger = logger

    def unmet(self, step: Step) -> List[str]:
        return [name for name in step.requires if not PRECONDITIONS[name](self)]

    def run(self) -> RunReport:
        """
        Execute every step.

        Raises:
            FatalError: a fatal step failed; the report already holds it.
        """
        total = len(self.steps)
        for idx, step in enumerate(self.steps, start=1):
            ui.print_section(f"[{idx}/{total}] {step.description}")
            self.report.add(self.run_step(step))
        return self.report

    def run_step(self, step: Step) -> StepResult:
        if step.toggle and not getattr(self.settings, step.toggle):
            self.logger.info(f"Skipping {step.name}: disabled by {step.toggle}.")
            return StepResult.skipped(step.name, "disabled")
        missing = self.unmet(step)
        if missing:
            msg = f"requires {', '.join(missing)}"
            self.logger.warning(f"Skipping {step.name}: {msg}.")
            return StepResult.skipped(step.name, msg)

        action: Callable[[], StepOutcome] = getattr(self, step.name)
        start = time.time()
        try:
            outcome = action()
        except FatalError as e:
            self.logger.error(f"✗ {step.description} aborted the run: {e}")
            self.report.add(StepResult.failed(step.name, str(e)))
            raise
        except (StepError, subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            elapsed = time.time() - start
            self.logger.error(f"✗ {step.description} failed in {elapsed:.2f}s: {e}")
            if step.fatal:
                self.report.add(StepResult.failed(step.name, str(e)))
                raise FatalError(str(e)) from e
            return StepResult.failed(step.name, str(e))

        elapsed = time.time() - start
        if isinstance(outcome, StepResult):
            result = outcome
        else:
            result = StepResult.ok(step.name, outcome or f"completed in {elapsed:.2f}s")
        if result.status is StepStatus.SUCCESS:
            self.logger.info(f"✓ {step.description} completed in {elapsed:.2f}s")
        else:
            self.logger.warning(f"⚠ {step.description}: {result.message}")
        return result

    # ------------------------------
    # Steps
    # ------------------------------
    def need_root(self) -> str:
        if os.geteuid() != 0:
            raise FatalError("Run as root.")
        return "Root privileges confirmed."

    def tune_pacman(self) -> str:
        PACMAN_CONF.write_text(tune_pacman_conf(PACMAN_CONF.read_text()))
        return f"Updated {PACMAN_CONF}"

    def set_locale(self) -> StepOutcome:
        s = self.settings
        current = LOCALE_GEN.read_text() if LOCALE_GEN.exists() else ""
        LOCALE_GEN.write_text(enable_locales(current, s.locales))
        run_command(["locale-gen"])
        LOCALE_CONF.write_text(f"LANG={s.lang_default}\n")
        VCONSOLE_CONF.write_text(f"KEYMAP={s.keymap}\n")
        result = run_command(["localectl", "set-x11-keymap", s.x11_keymap], check=False)
        if result.returncode != 0:
            return StepResult.warn("set_locale", "localectl set-x11-keymap failed")
        return f"LANG={s.lang_default}, KEYMAP={s.keymap}"

    def set_time_host(self) -> str:
        s = self.settings
        zone = ZONEINFO_DIR / s.timezone
        if not zone.is_file():
            raise StepError(f"Timezone file not found: {zone}")
        if LOCALTIME.exists() or LOCALTIME.is_symlink():
            LOCALTIME.unlink()
        LOCALTIME.symlink_to(zone)
        run_command(["hwclock", "--systohc"])
        HOSTNAME_FILE.write_text(f"{s.hostname}\n")
        hosts = HOSTS_FILE.read_text() if HOSTS_FILE.exists() else ""
        HOSTS_FILE.write_text(add_host_entry(hosts, s.hostname))
        return f"{s.timezone}, host {s.hostname}"

    def install_base(self) -> StepOutcome:
        run_command(["pacman", "-Syu", "--noconfirm"])
        system.pacman_install(BASE_PACKAGES)
        return self._enable_all("install_base", ["NetworkManager", "sshd"])

    def sudo_wheel(self) -> str:
        SUDOERS_WHEEL.parent.mkdir(parents=True, exist_ok=True)
        SUDOERS_WHEEL.write_text("%wheel ALL=(ALL:ALL) ALL\n")
        os.chmod(SUDOERS_WHEEL, 0o440)
        return f"Wrote {SUDOERS_WHEEL}"

    def create_user(self) -> str:
        s = self.settings
        if system.user_exists(s.username):
            return f"User {s.username} already exists."
        run_command(["useradd", "-m", "-G", ",".join(s.user_groups), s.username])
        ui.print_step(f"Set password for {s.username}:")
        run_command(["passwd", s.username], timeout=None)
        return f"Created {s.username}"

    def set_default_shell(self) -> StepOutcome:
        s = self.settings
        if not s.default_shell.exists():
            return StepResult.skipped("set_default_shell", f"{s.default_shell} not installed")
        result = run_command(["chsh", "-s", str(s.default_shell), s.username], check=False)
        if result.returncode != 0:
            return StepResult.warn("set_default_shell", "chsh failed")
        return f"{s.username} now uses {s.default_shell}"

    def install_desktop(self) -> StepOutcome:
        system.pacman_install(DESKTOP_PACKAGES)
        system.pacman_install(AUDIO_PACKAGES)
        system.pacman_install(BLUETOOTH_PACKAGES)
        system.pacman_install(FIRMWARE_PACKAGES)
        system.pacman_install(FONT_PACKAGES)
        return self._enable_all("install_desktop", ["bluetooth", "fwupd", "upower"])

    def install_yay(self) -> str:
        if system.command_exists("yay"):
            return "yay already installed."
        system.pacman_install(["base-devel", "git"])
        system.as_user(self.settings.username, YAY_BUILD_SCRIPT)
        return "yay built from the AUR"

    def install_aur_goodies(self) -> None:
        self._yay_install(AUR_FONT_PACKAGES)

    def install_docker(self) -> StepOutcome:
        system.pacman_install(DOCKER_PACKAGES)
        run_command(["groupadd", "-f", "docker"])
        warnings = self._add_to_groups(["docker"])
        if not system.enable_service("docker"):
            warnings.append("docker not started")
        return self._outcome("install_docker", warnings)

    def install_libvirt(self) -> StepOutcome:
        system.pacman_install(LIBVIRT_PACKAGES)
        warnings = []
        if not system.enable_service("libvirtd"):
            warnings.append("libvirtd not started")
        run_command(["groupadd", "-f", "libvirt"])
        run_command(["groupadd", "-f", "kvm"])
        warnings += self._add_to_groups(["libvirt", "kvm"])
        KVM_MODPROBE.parent.mkdir(parents=True, exist_ok=True)
        KVM_MODPROBE.write_text(KVM_OPTIONS)
        return self._outcome("install_libvirt", warnings)

    def install_noctalia(self) -> None:
        self._yay_install(["noctalia-shell"])

    def apply_dotfiles(self) -> StepResult:
        config = self.settings.dotfiles_config()
        sub_report = materialize(config)
        self.report.extend(sub_report, prefix="dotfiles:")
        failed = sub_report.failures
        if failed:
            names = ", ".join(r.name for r in failed)
            return StepResult.warn("apply_dotfiles", f"failed categories: {names}")
        return StepResult.ok(
            "apply_dotfiles", f"{config.source_root} -> {config.target_home} ({config.strategy.value})"
        )

    def ensure_noctalia_autostart(self) -> StepOutcome:
        conf = self.settings.user_home / ".config" / "hypr" / "hyprland.conf"
        if conf.is_symlink():
            return StepResult.warn(
                "ensure_noctalia_autostart", f"{conf} is linked to the dotfiles; add '{NOCTALIA_EXEC}' there"
            )
        if not conf.is_file():
            return StepResult.skipped("ensure_noctalia_autostart", f"{conf} not found")
        text = conf.read_text()
        if NOCTALIA_EXEC in text:
            return "already enabled"
        if text and not text.endswith("\n"):
            text += "\n"
        conf.write_text(f"{text}{NOCTALIA_EXEC}\n")
        return f"Added autostart to {conf}"

    # ------------------------------
    # Helpers
    # ------------------------------
    def _yay_install(self, packages: List[str]) -> None:
        system.as_user(
            self.settings.username, f"yay -S --noconfirm --needed {' '.join(packages)}"
        )

    def _add_to_groups(self, groups: List[str]) -> List[str]:
        result = run_command(
            ["usermod", "-aG", ",".join(groups), self.settings.username], check=False
        )
        if result.returncode != 0:
            return [f"usermod -aG {','.join(groups)} failed"]
        return []

    def _enable_all(self, name: str, services: List[str]) -> StepOutcome:
        warnings = [f"{svc} not started" for svc in services if not system.enable_service(svc)]
        return self._outcome(name, warnings)

    @staticmethod
    def _outcome(name: str, warnings: List[str]) -> StepOutcome:
        if warnings:
            return StepResult.warn(name, "; ".join(warnings))
        return None
