"""Tests for kvmcreate.models module."""

from __future__ import annotations

from kvmcreate.models import SshMode, Stage


class TestVMConfigPaths:
    def test_derived_paths(self, default_vm_config, tmp_path):
        cfg = default_vm_config
        cfg.vm_name = "vm1"
        vm_dir = tmp_path / "vms" / "vm1"
        assert cfg.vm_dir == vm_dir
        assert cfg.disk_path == vm_dir / "vm1.qcow2"
        assert cfg.seed_iso_path == vm_dir / "vm1-seed.iso"
        assert cfg.meta_data_path == vm_dir / "meta-data"
        assert cfg.user_data_path == vm_dir / "user-data"


class TestEnums:
    def test_ssh_mode_values(self):
        assert SshMode("password") is SshMode.PASSWORD
        assert SshMode("ssh-key") is SshMode.SSH_KEY

    def test_stage_order(self):
        assert [s.value for s in Stage] == [
            "init",
            "validating",
            "provisioning-image",
            "building-disk",
            "building-seed",
            "creating-domain",
            "done",
            "failed",
        ]
