"""VM provisioning workflow for kvm-vm-create."""

from __future__ import annotations

import shlex
import subprocess
from typing import List, Optional

from kvmcreate.cloudinit import read_ssh_public_key, render_meta_data, render_user_data
from kvmcreate.constants import INSTALL_HINT, WRITE_PROBE_NAME
from kvmcreate.exceptions import (
    AlreadyExists,
    DomainCreationFailed,
    MissingDependency,
    PermissionDenied,
    ProvisioningFailed,
)
from kvmcreate.models import SshMode, Stage, VMConfig
from kvmcreate.utils import (
    base_image_lock,
    ensure_directory,
    find_missing_tools,
    get_available_memory_mb,
    log,
    log_file_path,
    open_log_file,
    run,
    sudo_requires_password,
)


class VMManager:
    """Drive one VM creation run from validation to a defined domain.

    Every mutating host command goes through ``_mutate`` so that dry-run
    only logs it. Read-only probes (tool lookup, domain listing, memory)
    run in both modes.
    """

    def __init__(self, vm_config: VMConfig) -> None:
        self.cfg = vm_config
        self.stage = Stage.INIT
        self.ssh_key: Optional[str] = None
        self._domain_attempted = False

    def _enter(self, stage: Stage) -> None:
        self.stage = stage
        log("DEBUG", f"Stage: {stage.value}")

    def _mutate(self, cmd: List[str], **kwargs) -> Optional[subprocess.CompletedProcess]:
        if self.cfg.dry_run:
            log("INFO", f"DRY-RUN: {shlex.join(cmd)}")
            return None
        return run(cmd, **kwargs)

    def validate(self) -> None:
        self._enter(Stage.VALIDATING)
        self.check_prerequisites()
        self.check_vm_exists()
        self.check_directories()
        self.check_resources()
        if self.cfg.ssh_mode is SshMode.SSH_KEY:
            log("INFO", "Configuring SSH key authentication...")
            self.ssh_key = read_ssh_public_key()

    def provision(self) -> None:
        self._enter(Stage.PROVISIONING_IMAGE)
        self.ensure_base_image()
        self._enter(Stage.BUILDING_DISK)
        self.create_disk()
        self._enter(Stage.BUILDING_SEED)
        self.write_cloud_init()
        self.create_seed()
        self._enter(Stage.CREATING_DOMAIN)
        self.create_domain()
        self._enter(Stage.DONE)

    def fail(self) -> None:
        if self.stage in (Stage.DONE, Stage.FAILED):
            return
        log("ERROR", f"VM creation failed during stage: {self.stage.value}")
        self.stage = Stage.FAILED

    # -- validation -------------------------------------------------------

    def check_prerequisites(self) -> None:
        log("INFO", "Checking prerequisites...")
        missing = find_missing_tools()
        if missing:
            log("INFO", f"Install them with: {INSTALL_HINT}")
            raise MissingDependency(missing)
        if sudo_requires_password():
            log("WARN", "You may be prompted for your password")

    def _domain_defined(self) -> bool:
        try:
            result = run(["sudo", "virsh", "list", "--all", "--name"], check=False, capture_output=True)
        except OSError as exc:
            log("DEBUG", f"Could not list domains: {exc}")
            return False
        if result.returncode != 0:
            log("DEBUG", f"virsh list failed: {(result.stderr or '').strip()}")
            return False
        return self.cfg.vm_name in {line.strip() for line in (result.stdout or "").splitlines()}

    def check_vm_exists(self) -> None:
        if self._domain_defined():
            log("INFO", f"To remove it, run: sudo virsh undefine {self.cfg.vm_name} --nvram")
            raise AlreadyExists(f"VM '{self.cfg.vm_name}' already exists")

    def check_directories(self) -> None:
        log("INFO", "Checking directories...")
        vm_dir = self.cfg.vm_dir
        if self.cfg.dry_run:
            log("INFO", f"DRY-RUN: mkdir -p {vm_dir}")
            log("INFO", f"DRY-RUN: Skipping write test in {vm_dir}")
            return
        try:
            ensure_directory(vm_dir)
        except OSError as exc:
            raise PermissionDenied(f"Cannot create directory: {vm_dir}") from exc
        probe = vm_dir / WRITE_PROBE_NAME
        try:
            probe.touch()
        except OSError as exc:
            raise PermissionDenied(f"Cannot write to directory: {vm_dir}") from exc
        probe.unlink(missing_ok=True)

    def check_resources(self) -> None:
        available = get_available_memory_mb()
        if available is None:
            log("DEBUG", "Could not determine available memory; skipping RAM check")
            return
        if available < self.cfg.memory_mb:
            log("WARN", f"Available RAM ({available} MB) is less than requested ({self.cfg.memory_mb} MB)")

    # -- base image -------------------------------------------------------

    def ensure_base_image(self) -> None:
        base = self.cfg.base_image
        if self.cfg.dry_run:
            if base.exists():
                log("INFO", f"Base image already exists: {base}")
                return
            self._download_base_image()
            return
        # wget writes straight to the final path, so existence only means
        # "ready" once any concurrent download has released the lock.
        with base_image_lock(base):
            if base.exists():
                log("INFO", f"Base image already exists: {base}")
                return
            self._download_base_image()

    def _download_base_image(self) -> None:
        base = self.cfg.base_image
        log("INFO", "Downloading base cloud image (this may take a few minutes)...")
        try:
            self._mutate(["sudo", "wget", "--progress=dot:mega", "-O", str(base), self.cfg.image_url])
        except (subprocess.CalledProcessError, OSError) as exc:
            self._remove_partial_download()
            raise ProvisioningFailed(f"Failed to download base image from {self.cfg.image_url}") from exc

        # The resize applies to the shared image, so it follows the first
        # downloader's disk size.
        log("INFO", f"Resizing base image to {self.cfg.disk_size}...")
        try:
            self._mutate(["sudo", "qemu-img", "resize", str(base), self.cfg.disk_size])
        except (subprocess.CalledProcessError, OSError) as exc:
            raise ProvisioningFailed(f"Failed to resize base image {base}") from exc

    def _remove_partial_download(self) -> None:
        try:
            self._mutate(["sudo", "rm", "-f", str(self.cfg.base_image)], check=False)
        except OSError as exc:
            log("DEBUG", f"Could not remove partial download {self.cfg.base_image}: {exc}")

    # -- disk and seed ----------------------------------------------------

    def create_disk(self) -> None:
        log("INFO", "Creating VM disk...")
        cmd = [
            "sudo",
            "qemu-img",
            "create",
            "-f",
            "qcow2",
            "-b",
            str(self.cfg.base_image),
            "-F",
            "qcow2",
            str(self.cfg.disk_path),
        ]
        if self.cfg.dry_run:
            self._mutate(cmd)
            return
        handle = open_log_file()
        try:
            run(cmd, stderr=handle)
        except (subprocess.CalledProcessError, OSError) as exc:
            self._dump_image_info()
            raise ProvisioningFailed(
                f"Failed to create VM disk (qemu-img failed). See {log_file_path()} for details."
            ) from exc
        finally:
            if handle is not None:
                handle.close()

    def _dump_image_info(self) -> None:
        log("INFO", "Gathering qemu-img info for debugging...")
        handle = open_log_file()
        if handle is None:
            return
        with handle:
            for image in (self.cfg.base_image, self.cfg.disk_path):
                try:
                    run(
                        ["sudo", "qemu-img", "info", str(image)],
                        check=False,
                        stdout=handle,
                        stderr=subprocess.STDOUT,
                    )
                except OSError as exc:
                    log("DEBUG", f"qemu-img info {image} failed: {exc}")
        log("ERROR", f"qemu-img info output written to {log_file_path()}")

    def write_cloud_init(self) -> None:
        log("INFO", "Generating cloud-init configuration...")
        if self.cfg.ssh_mode is SshMode.SSH_KEY and self.ssh_key is None:
            self.ssh_key = read_ssh_public_key()
        meta_data = render_meta_data(self.cfg)
        user_data = render_user_data(self.cfg, self.ssh_key)
        if self.cfg.dry_run:
            log("INFO", f"DRY-RUN: write {self.cfg.meta_data_path} and {self.cfg.user_data_path}")
            log("DEBUG", f"meta-data:\n{meta_data}")
            log("DEBUG", f"user-data:\n{user_data}")
            return
        try:
            self.cfg.meta_data_path.write_text(meta_data, encoding="utf-8")
            self.cfg.user_data_path.write_text(user_data, encoding="utf-8")
        except OSError as exc:
            raise ProvisioningFailed(f"Failed to write cloud-init files in {self.cfg.vm_dir}: {exc}") from exc

    def create_seed(self) -> None:
        log("INFO", "Creating cloud-init seed ISO...")
        cmd = [
            "sudo",
            "cloud-localds",
            str(self.cfg.seed_iso_path),
            str(self.cfg.user_data_path),
            str(self.cfg.meta_data_path),
        ]
        try:
            self._mutate(cmd)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise ProvisioningFailed("Failed to create seed ISO") from exc

    # -- domain -----------------------------------------------------------

    def virt_install_command(self) -> List[str]:
        return [
            "sudo",
            "virt-install",
            "--name",
            self.cfg.vm_name,
            "--memory",
            str(self.cfg.memory_mb),
            "--vcpus",
            str(self.cfg.cpus),
            "--disk",
            f"path={self.cfg.disk_path},format=qcow2",
            "--disk",
            f"path={self.cfg.seed_iso_path},device=cdrom",
            "--os-variant",
            self.cfg.os_variant,
            "--network",
            f"network={self.cfg.network}",
            "--graphics",
            "none",
            "--import",
            "--noautoconsole",
        ]

    def create_domain(self) -> None:
        log("INFO", "Creating VM with virt-install...")
        self._domain_attempted = True
        try:
            self._mutate(self.virt_install_command())
        except (subprocess.CalledProcessError, OSError) as exc:
            raise DomainCreationFailed(f"Failed to create VM '{self.cfg.vm_name}'") from exc

    def cleanup(self, succeeded: bool) -> None:
        """Best-effort undefine of a domain left behind by a failed run.

        Only the registration is rolled back; files under the VM directory
        stay. Errors from virsh are logged at debug level and dropped.
        """
        if succeeded or not self._domain_attempted:
            return
        name = self.cfg.vm_name
        log("INFO", "Cleaning up partial VM creation...")
        if not self._domain_defined():
            return
        if self.cfg.dry_run:
            self._mutate(["sudo", "virsh", "undefine", name, "--nvram"])
            return
        log("INFO", f"Removing partially created VM: {name}")
        try:
            result = run(["sudo", "virsh", "undefine", name, "--nvram"], check=False, capture_output=True)
        except OSError as exc:
            log("DEBUG", f"Could not undefine domain {name}: {exc}")
            return
        if result.returncode != 0:
            log("DEBUG", f"Could not undefine domain {name}: {(result.stderr or '').strip()}")
