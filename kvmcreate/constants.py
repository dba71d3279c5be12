"""Global constants and default configuration for kvm-vm-create."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_VM_BASE_DIR = Path("/mnt/saunafs/VM/kvm")
DEFAULT_IMG_URL = "https://cloud-images.ubuntu.com/noble/current/noble-server-cloudimg-amd64.img"
DEFAULT_BASE_IMG = Path("/var/lib/libvirt/images/ubuntu-24.04-base.img")
DEFAULT_RAM_MB = "4096"
DEFAULT_VCPUS = "4"
DEFAULT_DISK_SIZE = "32G"
DEFAULT_NETWORK = "default"
DEFAULT_OS_VARIANT = "ubuntu24.04"

LOG_FILE = Path(os.environ.get("KVM_VM_LOG_FILE", "/tmp/kvm-vm-create.log"))
_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in {"1", "true", "yes", "on"}

TRUTHY = {"1", "true", "yes", "on"}

VM_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
DISK_SIZE_RE = re.compile(r"^[0-9]+[KMGT]$")

# Order matters: reported in this order when missing.
REQUIRED_TOOLS = ("virsh", "qemu-img", "cloud-localds", "virt-install", "wget")
INSTALL_HINT = "sudo apt-get install -y qemu-kvm libvirt-daemon-system virtinst cloud-image-utils"

SSH_PUBKEY_RELPATH = Path(".ssh") / "id_rsa.pub"
GUEST_USER = "ubuntu"
GUEST_PASSWORD = "ubuntu"
GUEST_PACKAGES = ("qemu-guest-agent",)

WRITE_PROBE_NAME = ".test"
LOCK_DIR = Path(os.environ.get("KVM_VM_LOCK_DIR", "/tmp/kvm-vm-create-locks"))
