"""CLI entry points for kvm-vm-create."""

from __future__ import annotations

import argparse
import dataclasses
import signal
import textwrap
import traceback
from typing import List, NoReturn, Optional

from kvmcreate.config import resolve_config
from kvmcreate.constants import DEFAULT_VM_BASE_DIR, GUEST_PASSWORD, GUEST_USER
from kvmcreate.exceptions import InvalidArgument, ManagerError
from kvmcreate.models import SshMode, VMConfig
from kvmcreate.utils import log
from kvmcreate.vm import VMManager

_EPILOG = textwrap.dedent(
    f"""
    environment variables:
      VM_BASE_DIR         Base directory for VMs (default: {DEFAULT_VM_BASE_DIR})
      IMG_URL             Ubuntu cloud image URL
      BASE_IMG            Path to base image
      RAM                 RAM in MB
      VCPUS               CPU cores
      DISK_SIZE           Disk size
      NETWORK             Network name
      ENABLE_SSH_KEYS     Enable SSH keys (true/false)
      DRY_RUN             Log commands instead of running them (true/false)
      OS_VARIANT          virt-install --os-variant value (default: ubuntu24.04)

    examples:
      %(prog)s my-vm
      %(prog)s my-vm -r 8192 -c 4 -s 50G
      %(prog)s my-vm --ssh-keys
    """
)


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise InvalidArgument(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="kvm-vm-create",
        description="Create a new KVM virtual machine using cloud-init.",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("vm_name", nargs="*", metavar="VM_NAME", help="Name of the VM to create")
    parser.add_argument("-r", "--ram", metavar="MB", help="RAM in MB (default: 4096)")
    parser.add_argument("-c", "--cpu", metavar="CORES", help="Number of CPU cores (default: 4)")
    parser.add_argument("-s", "--size", metavar="SIZE", help="Disk size (default: 32G)")
    parser.add_argument("-n", "--network", metavar="NET", help="Network name (default: default)")
    parser.add_argument(
        "-k", "--ssh-keys", action="store_true", help="Enable SSH key authentication instead of password"
    )
    parser.add_argument("-u", "--url", metavar="URL", help="Cloud image URL")
    parser.add_argument("-b", "--base", metavar="PATH", help="Base image path")
    parser.add_argument("-d", "--dry-run", action="store_true", help="Log actions without executing them")
    parser.add_argument("--show-config", action="store_true", help="Show resolved VM configuration and exit")
    return parser


def show_config(cfg: VMConfig) -> None:
    """Print the resolved VM configuration."""
    for field in dataclasses.fields(cfg):
        value = getattr(cfg, field.name)
        if isinstance(value, SshMode):
            value = value.value
        print(f"  {field.name}: {value}")
    for derived in ("vm_dir", "disk_path", "seed_iso_path"):
        print(f"  {derived}: {getattr(cfg, derived)}")


def print_next_steps(cfg: VMConfig) -> None:
    if cfg.dry_run:
        log("SUCCESS", f"Dry-run complete for VM '{cfg.vm_name}' (nothing was changed)")
        return
    log("SUCCESS", f"VM '{cfg.vm_name}' created successfully!")
    log("INFO", f"Configuration saved in: {cfg.vm_dir}")
    log("INFO", "")
    log("INFO", "Next steps:")
    log("INFO", "  - Check VM status:   virsh list --all")
    log("INFO", f"  - Connect to VM:     virsh console {cfg.vm_name}")
    log("INFO", f"  - Get VM info:       virsh dominfo {cfg.vm_name}")
    if cfg.ssh_mode is SshMode.SSH_KEY:
        log("INFO", f"  - SSH to VM:         ssh {GUEST_USER}@<vm-ip>")
    else:
        log("INFO", f"  - SSH to VM:         ssh {GUEST_USER}@<vm-ip> (password: {GUEST_PASSWORD})")
    log("INFO", "")


def _exit_on_signal(signum, frame) -> NoReturn:
    raise SystemExit(128 + signum)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_intermixed_args(argv)
        cfg = resolve_config(
            names=args.vm_name,
            ram=args.ram,
            cpu=args.cpu,
            size=args.size,
            network=args.network,
            ssh_keys=args.ssh_keys,
            url=args.url,
            base=args.base,
            dry_run=args.dry_run,
        )
    except InvalidArgument as exc:
        log("ERROR", str(exc))
        parser.print_help()
        return 1

    if args.show_config:
        show_config(cfg)
        return 0

    log("INFO", f"Starting VM creation: {cfg.vm_name}")
    log(
        "INFO",
        f"Configuration: RAM={cfg.memory_mb} MB, VCPUS={cfg.cpus}, DISK_SIZE={cfg.disk_size}, NETWORK={cfg.network}",
    )
    if cfg.dry_run:
        log("INFO", "Dry-run enabled: host commands are logged, not executed")

    vm_mgr = VMManager(cfg)
    succeeded = False
    prev_sigterm = signal.signal(signal.SIGTERM, _exit_on_signal)
    try:
        vm_mgr.validate()
        vm_mgr.provision()
        succeeded = True
        print_next_steps(cfg)
        return 0
    except ManagerError as exc:
        log("ERROR", str(exc))
        return 1
    except KeyboardInterrupt:
        log("ERROR", "Interrupted")
        return 130
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        traceback.print_exc()
        return 1
    finally:
        if not succeeded:
            vm_mgr.fail()
        vm_mgr.cleanup(succeeded)
        if prev_sigterm is not None:
            signal.signal(signal.SIGTERM, prev_sigterm)
