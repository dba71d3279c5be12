"""Utility functions for kvm-vm-create."""

from __future__ import annotations

import fcntl
import hashlib
import os
import shutil
import subprocess
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, List, Optional

from kvmcreate.constants import (
    _LOG_VERBOSE,
    DISK_SIZE_RE,
    LOCK_DIR,
    LOG_FILE,
    REQUIRED_TOOLS,
    TRUTHY,
    VM_NAME_RE,
)
from kvmcreate.exceptions import InvalidArgument

_COLOURS = {
    "INFO": "\033[0;32m",
    "WARN": "\033[1;33m",
    "ERROR": "\033[0;31m",
    "SUCCESS": "\033[0;32m",
    "DEBUG": "\033[0;90m",
}


def log(level: str, message: str) -> None:
    """Timestamped console logging, mirrored to the log file.

    ERROR lines go to stderr, everything else to stdout. A log file that
    cannot be written is ignored.
    """
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colour = _COLOURS.get(level, "")
    reset = "\033[0m" if colour else ""
    stamp = time.strftime("%Y-%m-%d %H:%M:%S")
    stream = sys.stderr if level == "ERROR" else sys.stdout
    print(f"{colour}[{stamp}]{reset} {level}: {message}", file=stream, flush=True)
    handle = open_log_file()
    if handle is not None:
        with handle:
            handle.write(f"[{stamp}] {level}: {message}\n")


def open_log_file() -> Optional[IO[str]]:
    """Open the shared log file for appending, or return None."""
    try:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        return open(LOG_FILE, "a", encoding="utf-8")
    except OSError:
        return None


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


def parse_int_value(name: str, raw: str, min_val: int = 1) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise InvalidArgument(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise InvalidArgument(f"{name} must be >= {min_val} (got {value})")
    return value


def validate_vm_name(name: str) -> str:
    if not VM_NAME_RE.fullmatch(name):
        raise InvalidArgument(
            f"Invalid VM name: {name} (must start with alphanumeric, contain only lowercase letters, "
            "numbers, dots, underscores, and hyphens)"
        )
    return name


def validate_disk_size(raw: str) -> str:
    if not DISK_SIZE_RE.fullmatch(raw):
        raise InvalidArgument(f"Invalid disk size: {raw} (use format like 20G, 50G, etc.)")
    return raw


def find_missing_tools(tools=REQUIRED_TOOLS) -> List[str]:
    return [tool for tool in tools if shutil.which(tool) is None]


def sudo_requires_password() -> bool:
    """Return True if ``sudo -n`` cannot run without prompting."""
    try:
        result = subprocess.run(["sudo", "-n", "true"], capture_output=True, check=False)
    except OSError:
        return True
    return result.returncode != 0


def get_available_memory_mb(meminfo: Path = Path("/proc/meminfo")) -> Optional[int]:
    """Read MemAvailable in MiB, or None when it cannot be determined."""
    try:
        with open(meminfo) as f:
            for line in f:
                if line.startswith("MemAvailable:"):
                    return int(line.split()[1]) // 1024
    except (OSError, ValueError, IndexError):
        return None
    return None


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def _ensure_lock_dir() -> None:
    LOCK_DIR.mkdir(parents=True, exist_ok=True)
    # Shared between users, like /tmp itself.
    if LOCK_DIR.stat().st_uid == os.getuid():
        LOCK_DIR.chmod(0o1777)


def _open_lock_file(lock_path: Path) -> int:
    fd = os.open(lock_path, os.O_RDONLY | os.O_CREAT, 0o666)
    try:
        if os.fstat(fd).st_uid == os.getuid():
            os.fchmod(fd, 0o666)
    except OSError:
        os.close(fd)
        raise
    return fd


@contextmanager
def base_image_lock(image: Path) -> Iterator[Optional[Path]]:
    """Hold an exclusive advisory lock keyed on the base image path.

    Yields None when the lock file cannot be opened, so the caller carries
    on unlocked rather than failing the run.
    """
    key = hashlib.sha256(str(image.expanduser().resolve()).encode("utf-8")).hexdigest()[:16]
    lock_path = LOCK_DIR / f"{key}.lock"
    try:
        _ensure_lock_dir()
        fd = _open_lock_file(lock_path)
    except OSError as exc:
        log("WARN", f"Cannot lock base image {image} ({exc}); continuing without lock")
        yield None
        return
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        yield lock_path
    finally:
        os.close(fd)


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result


def log_file_path() -> Path:
    return LOG_FILE
