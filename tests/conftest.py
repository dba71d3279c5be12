"""Shared test fixtures: isolated log/lock paths, clean env and a fake host."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set, Tuple

import pytest

from kvmcreate.models import SshMode, VMConfig

# All environment variables resolve_config() reads.
_CONFIG_ENV_VARS = [
    "VM_BASE_DIR",
    "IMG_URL",
    "BASE_IMG",
    "RAM",
    "VCPUS",
    "DISK_SIZE",
    "NETWORK",
    "ENABLE_SSH_KEYS",
    "DRY_RUN",
    "OS_VARIANT",
]


@pytest.fixture(autouse=True)
def isolated_paths(monkeypatch, tmp_path):
    """Keep the log file and lock directory inside tmp_path."""
    log_file = tmp_path / "kvm-vm-create.log"
    monkeypatch.setattr("kvmcreate.utils.LOG_FILE", log_file)
    monkeypatch.setattr("kvmcreate.utils.LOCK_DIR", tmp_path / "locks")
    return log_file


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear every variable resolve_config() reads and point HOME at tmp_path."""
    for key in _CONFIG_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def mock_env(monkeypatch):
    """Helper to set environment variables for tests."""

    def _set(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))

    return _set


@pytest.fixture
def default_vm_config(tmp_path) -> VMConfig:
    """Return a VMConfig whose paths all live under tmp_path."""
    return VMConfig(
        vm_name="test-vm",
        memory_mb=4096,
        cpus=4,
        disk_size="32G",
        network="default",
        image_url="https://example.com/noble.img",
        base_image=tmp_path / "images" / "base.img",
        vm_base_dir=tmp_path / "vms",
        ssh_mode=SshMode.PASSWORD,
        dry_run=False,
    )


class FakeHost:
    """Stand-in for ``kvmcreate.vm.run`` that models a libvirt host.

    Commands are recorded without their ``sudo`` prefix. ``fail_on`` is an
    argv prefix (e.g. ``("qemu-img", "resize")``) that makes the matching
    command exit non-zero. ``before`` is called with each argv ahead of
    its simulated effect.
    """

    def __init__(self) -> None:
        self.domains: Set[str] = set()
        self.calls: List[List[str]] = []
        self.fail_on: Optional[Tuple[str, ...]] = None
        self.undefine_returncode = 0
        self.before: Optional[Callable[[List[str]], None]] = None

    def __call__(self, cmd: Sequence[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
        args = list(cmd[1:]) if cmd[0] == "sudo" else list(cmd)
        self.calls.append(args)
        if self.before is not None:
            self.before(args)

        if args[:2] == ["virsh", "list"]:
            listing = "".join(f"{name}\n" for name in sorted(self.domains))
            return subprocess.CompletedProcess(cmd, 0, stdout=listing, stderr="")

        if self.fail_on is not None and tuple(args[: len(self.fail_on)]) == self.fail_on:
            if args[0] == "virt-install":
                # virt-install can leave a defined domain behind before failing.
                self.domains.add(args[args.index("--name") + 1])
            if args[0] == "wget":
                Path(args[args.index("-O") + 1]).write_bytes(b"partial")
            if check:
                raise subprocess.CalledProcessError(1, list(cmd))
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="failed")

        if args[0] == "wget":
            Path(args[args.index("-O") + 1]).write_bytes(b"cloud-image")
        elif args[:2] == ["qemu-img", "create"]:
            Path(args[-1]).write_bytes(b"qcow2-overlay")
        elif args[0] == "cloud-localds":
            Path(args[1]).write_bytes(b"seed")
        elif args[0] == "virt-install":
            self.domains.add(args[args.index("--name") + 1])
        elif args[:2] == ["virsh", "undefine"]:
            if self.undefine_returncode:
                return subprocess.CompletedProcess(cmd, self.undefine_returncode, stdout="", stderr="denied")
            self.domains.discard(args[2])
        elif args[:2] == ["rm", "-f"]:
            Path(args[2]).unlink(missing_ok=True)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    def tools(self) -> List[str]:
        return [" ".join(call[:2]) if call[0] in ("virsh", "qemu-img") else call[0] for call in self.calls]

    def mutating_calls(self) -> List[List[str]]:
        return [call for call in self.calls if call[:2] != ["virsh", "list"]]


@pytest.fixture
def fake_host(monkeypatch):
    """Patch every host touchpoint used by VMManager."""
    host = FakeHost()
    monkeypatch.setattr("kvmcreate.vm.run", host)
    monkeypatch.setattr("kvmcreate.vm.find_missing_tools", lambda: [])
    monkeypatch.setattr("kvmcreate.vm.sudo_requires_password", lambda: False)
    monkeypatch.setattr("kvmcreate.vm.get_available_memory_mb", lambda: 65536)
    return host
