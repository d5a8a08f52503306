import logging
import pwd
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

OPERATION_TIMEOUT = 1800  # pacman and makepkg can be slow

logger = logging.getLogger("arch_setup")


def run_command(
    cmd: Sequence[str],
    capture_output: bool = False,
    text: bool = True,
    check: bool = True,
    timeout: Optional[int] = OPERATION_TIMEOUT,
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
    input: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Runs a command synchronously using subprocess.run."""
    cmd = [str(c) for c in cmd]
    logger.debug(f"Running command: {' '.join(cmd)}")
    try:
        process = subprocess.run(
            cmd,
            capture_output=capture_output,
            text=text,
            check=check,
            timeout=timeout,
            cwd=cwd,
            env=env,
            input=input,
        )
        if process.stdout and capture_output:
            logger.debug(f"Command stdout: {process.stdout.strip()}")
        if process.stderr and capture_output:
            logger.debug(f"Command stderr: {process.stderr.strip()}")
        if process.returncode != 0:
            logger.warning(f"Command exited with {process.returncode}: {' '.join(cmd)}")
        return process
    except subprocess.CalledProcessError as e:
        logger.error(f"Command failed: {' '.join(cmd)}")
        if e.stdout:
            logger.error(f"Stdout: {e.stdout.strip()}")
        if e.stderr:
            logger.error(f"Stderr: {e.stderr.strip()}")
        raise
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout} seconds: {' '.join(cmd)}")
        raise
    except FileNotFoundError as e:
        logger.error(f"Command not found: {cmd[0]} - {e}")
        raise


def command_exists(cmd: str) -> bool:
    """Checks if a command exists using shutil.which."""
    return shutil.which(cmd) is not None


def user_exists(username: str) -> bool:
    try:
        pwd.getpwnam(username)
        return True
    except KeyError:
        return False


def get_user_credentials(username: str) -> Tuple[int, int]:
    """Returns (uid, gid) for ``username``; raises KeyError if unknown."""
    info = pwd.getpwnam(username)
    return info.pw_uid, info.pw_gid


def as_user(username: str, script: str, check: bool = True) -> subprocess.CompletedProcess:
    """Runs ``script`` in a login bash shell as ``username``."""
    return run_command(["sudo", "-u", username, "bash", "-lc", script], check=check)


def pacman_install(packages: List[str]) -> subprocess.CompletedProcess:
    return run_command(["pacman", "--noconfirm", "--needed", "-S", *packages])


def enable_service(name: str) -> bool:
    """
    Enable a systemd unit and try to start it.

    Enabling must succeed; starting is best effort since some units (e.g.
    inside a chroot) cannot start until the next boot.

    Returns:
        True if the unit also started.
    """
    run_command(["systemctl", "enable", name])
    result = run_command(["systemctl", "start", name], check=False)
    if result.returncode != 0:
        logger.warning(f"Service {name} enabled but could not be started now.")
        return False
    return True
