"""Custom exceptions for kvm-vm-create."""

from __future__ import annotations

from typing import List


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class InvalidArgument(ManagerError):
    """Malformed VM name or disk size, or an unrecognised CLI option."""


class MissingDependency(ManagerError):
    """One or more required host tools are not on PATH."""

    def __init__(self, missing: List[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required tools: {' '.join(self.missing)}")


class AlreadyExists(ManagerError):
    """A domain with the requested name is already defined."""


class PermissionDenied(ManagerError):
    """The VM directory cannot be created or written to."""


class ProvisioningFailed(ManagerError):
    """Download, resize, disk creation or seed creation failed."""


class MissingPrerequisite(ManagerError):
    """A local input required by the selected mode is missing."""


class DomainCreationFailed(ManagerError):
    """virt-install could not define or start the domain."""
