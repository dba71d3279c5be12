"""Argument and environment resolution for kvm-vm-create."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from kvmcreate.constants import (
    DEFAULT_BASE_IMG,
    DEFAULT_DISK_SIZE,
    DEFAULT_IMG_URL,
    DEFAULT_NETWORK,
    DEFAULT_OS_VARIANT,
    DEFAULT_RAM_MB,
    DEFAULT_VCPUS,
    DEFAULT_VM_BASE_DIR,
)
from kvmcreate.exceptions import InvalidArgument
from kvmcreate.models import SshMode, VMConfig
from kvmcreate.utils import (
    get_env,
    get_env_bool,
    log,
    parse_int_value,
    validate_disk_size,
    validate_vm_name,
)


def _pick(flag_value: Optional[str], env_name: str, default: str) -> str:
    """Flag beats environment, environment beats the built-in default."""
    if flag_value is not None:
        return flag_value
    env_value = get_env(env_name)
    if env_value is not None and env_value.strip():
        return env_value.strip()
    return default


def resolve_config(
    names: Optional[List[str]] = None,
    ram: Optional[str] = None,
    cpu: Optional[str] = None,
    size: Optional[str] = None,
    network: Optional[str] = None,
    ssh_keys: bool = False,
    url: Optional[str] = None,
    base: Optional[str] = None,
    dry_run: bool = False,
) -> VMConfig:
    """Merge positional name, flags and environment into a validated VMConfig.

    Nothing on the host is touched here; every error raised is an
    ``InvalidArgument``.
    """
    names = [name for name in (names or []) if name]
    vm_name = names[0] if names else ""
    if len(names) > 1:
        log("WARN", f"Ignoring extra arguments: {' '.join(names[1:])}")
    if not vm_name:
        raise InvalidArgument("VM_NAME is required")
    validate_vm_name(vm_name)

    disk_size = validate_disk_size(_pick(size, "DISK_SIZE", DEFAULT_DISK_SIZE))
    memory_mb = parse_int_value("RAM", _pick(ram, "RAM", DEFAULT_RAM_MB))
    cpus = parse_int_value("VCPUS", _pick(cpu, "VCPUS", DEFAULT_VCPUS))

    network_name = _pick(network, "NETWORK", DEFAULT_NETWORK)
    image_url = _pick(url, "IMG_URL", DEFAULT_IMG_URL)
    base_image = Path(_pick(base, "BASE_IMG", str(DEFAULT_BASE_IMG))).expanduser()
    vm_base_dir = Path(_pick(None, "VM_BASE_DIR", str(DEFAULT_VM_BASE_DIR))).expanduser()
    os_variant = _pick(None, "OS_VARIANT", DEFAULT_OS_VARIANT)

    ssh_mode = SshMode.SSH_KEY if ssh_keys or get_env_bool("ENABLE_SSH_KEYS", False) else SshMode.PASSWORD
    dry_run = dry_run or get_env_bool("DRY_RUN", False)

    return VMConfig(
        vm_name=vm_name,
        memory_mb=memory_mb,
        cpus=cpus,
        disk_size=disk_size,
        network=network_name,
        image_url=image_url,
        base_image=base_image,
        vm_base_dir=vm_base_dir,
        ssh_mode=ssh_mode,
        dry_run=dry_run,
        os_variant=os_variant,
    )
