"""Data models for kvm-vm-create."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from kvmcreate.constants import DEFAULT_OS_VARIANT


class SshMode(str, Enum):
    PASSWORD = "password"
    SSH_KEY = "ssh-key"


class Stage(str, Enum):
    """Run state machine; DONE and FAILED are terminal."""

    INIT = "init"
    VALIDATING = "validating"
    PROVISIONING_IMAGE = "provisioning-image"
    BUILDING_DISK = "building-disk"
    BUILDING_SEED = "building-seed"
    CREATING_DOMAIN = "creating-domain"
    DONE = "done"
    FAILED = "failed"


@dataclass
class VMConfig:
    vm_name: str
    memory_mb: int
    cpus: int
    disk_size: str
    network: str
    image_url: str
    base_image: Path
    vm_base_dir: Path
    ssh_mode: SshMode = SshMode.PASSWORD
    dry_run: bool = False
    os_variant: str = DEFAULT_OS_VARIANT

    @property
    def vm_dir(self) -> Path:
        return self.vm_base_dir / self.vm_name

    @property
    def disk_path(self) -> Path:
        return self.vm_dir / f"{self.vm_name}.qcow2"

    @property
    def seed_iso_path(self) -> Path:
        return self.vm_dir / f"{self.vm_name}-seed.iso"

    @property
    def meta_data_path(self) -> Path:
        return self.vm_dir / "meta-data"

    @property
    def user_data_path(self) -> Path:
        return self.vm_dir / "user-data"
