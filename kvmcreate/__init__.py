"""kvm-vm-create package."""

__all__ = [
    "cli",
    "cloudinit",
    "config",
    "constants",
    "exceptions",
    "models",
    "utils",
    "vm",
]
