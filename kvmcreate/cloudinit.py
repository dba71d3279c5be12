"""cloud-init NoCloud document rendering for kvm-vm-create."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Dict, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from kvmcreate.constants import GUEST_PACKAGES, GUEST_PASSWORD, SSH_PUBKEY_RELPATH
from kvmcreate.exceptions import MissingPrerequisite
from kvmcreate.models import SshMode, VMConfig


def ssh_public_key_path() -> Path:
    return Path.home() / SSH_PUBKEY_RELPATH


def read_ssh_public_key(path: Optional[Path] = None) -> str:
    key_path = path or ssh_public_key_path()
    if not key_path.is_file():
        raise MissingPrerequisite(
            f"SSH public key not found: {key_path}\n  Generate one with: ssh-keygen -t rsa -b 4096"
        )
    try:
        content = key_path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise MissingPrerequisite(f"Cannot read SSH public key {key_path}: {exc}") from exc
    if not content:
        raise MissingPrerequisite(f"SSH public key is empty: {key_path}")
    return content


def render_meta_data(cfg: VMConfig) -> str:
    return (
        textwrap.dedent(
            f"""
        instance-id: {cfg.vm_name}
        local-hostname: {cfg.vm_name}
        """
        ).strip()
        + "\n"
    )


def render_user_data(cfg: VMConfig, ssh_key: Optional[str] = None) -> str:
    """Render the #cloud-config user-data for the selected SSH mode."""
    user_cfg: Dict[str, object]
    if cfg.ssh_mode is SshMode.SSH_KEY:
        if not ssh_key:
            raise MissingPrerequisite("SSH key mode selected but no public key was loaded")
        user_cfg = {
            "ssh_pwauth": False,
            "ssh_authorized_keys": [ssh_key],
        }
    else:
        user_cfg = {
            "ssh_pwauth": True,
            "password": GUEST_PASSWORD,
            "chpasswd": {"expire": False},
        }
    user_cfg["packages"] = list(GUEST_PACKAGES)
    # Keys are long single-line scalars; never fold them.
    body = yaml.safe_dump(user_cfg, sort_keys=False, default_flow_style=False, width=1 << 16)
    return "#cloud-config\n" + body
