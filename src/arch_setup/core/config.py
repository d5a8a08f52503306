from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from arch_setup.dotfiles import DotfilesConfig, Strategy


class Settings(BaseSettings):
    """
    Provisioning settings.

    Every field can be overridden with an ``ARCH_SETUP_``-prefixed environment
    variable (``ARCH_SETUP_USERNAME=alice``) or a ``.env`` file. List fields
    take JSON. The instance is built once at startup and passed explicitly.
    """

    model_config = SettingsConfigDict(
        env_prefix="ARCH_SETUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    username: str = "normi"
    hostname: str = "veronica"
    timezone: str = "Europe/Paris"
    keymap: str = Field("us", description="Console keymap written to vconsole.conf.")
    x11_keymap: str = "us"
    locales: List[str] = Field(
        default_factory=lambda: ["en_US.UTF-8 UTF-8", "fr_FR.UTF-8 UTF-8"]
    )
    lang_default: str = "en_US.UTF-8"

    create_user: bool = True
    enable_docker: bool = True
    enable_libvirt: bool = True
    enable_noctalia: bool = Field(True, description="Install and autostart noctalia-shell.")

    user_groups: List[str] = Field(
        default_factory=lambda: ["wheel", "audio", "video", "storage", "input"]
    )
    default_shell: Path = Path("/usr/bin/fish")

    dots_dir: Path = Path("dots")
    home_root: Path = Path("/home")
    strategy: Strategy = Strategy.COPY
    accounts_service_dir: Path = Path("/var/lib/AccountsService")

    log_file: Path = Path("/var/log/arch_setup.log")
    log_level: str = Field("INFO", description="Console logging level.")

    @property
    def user_home(self) -> Path:
        return self.home_root / self.username

    def dotfiles_config(self) -> DotfilesConfig:
        return DotfilesConfig(
            source_root=self.dots_dir.absolute(),
            target_home=self.user_home,
            target_user=self.username,
            strategy=self.strategy,
            accounts_service_dir=self.accounts_service_dir,
        )
