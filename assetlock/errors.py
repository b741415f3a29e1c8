"""
Error definitions for asset allocation.

Contains custom exception classes for the asset manager and the remote
lock service client.
"""

from typing import List, Optional


class AssetAllocationError(Exception):
    """Base exception for asset allocation errors."""
    pass


class AlreadyAllocatedThisTaskError(AssetAllocationError):
    """Raised when the identifier is already held by this process."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Asset was previously RESERVED by this task: {identifier}")


class AlreadyFoundAndAllocatedError(AssetAllocationError):
    """Raised when the only matching candidates are already held by this process."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Asset Already Found and allocated by this task: {identifier}")


class FoundButReservedError(AssetAllocationError):
    """Raised when candidates exist but every claim lost to another holder."""

    def __init__(self, identifier: str, attempted: Optional[List[str]] = None):
        self.identifier = identifier
        self.attempted = list(attempted or [])
        msg = f'Asset: "{identifier}" was found but is RESERVED by another task'
        if self.attempted:
            msg += f" (tried: {', '.join(self.attempted)})"
        super().__init__(msg)


class AssetNotFoundError(AssetAllocationError):
    """Raised when no finder produced a candidate."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f'Asset: "{identifier}" was NOT found')


class LockServiceError(Exception):
    """Base exception for remote lock service errors."""
    pass


class WaitTimeoutExceededError(LockServiceError):
    """Raised when waiting for a resource to become free times out."""

    def __init__(self, name: str, timeout_ms: int):
        self.name = name
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Wait time for resource available has expired after {timeout_ms}ms: {name}"
        )


class ReservationRefusedError(LockServiceError):
    """Raised when the service answered but the reservation did not take."""

    def __init__(self, name: str, reason: str = "still reserved"):
        self.name = name
        self.reason = reason
        super().__init__(f"Unable to lock resource {name}: {reason}")


class RemoteServiceError(LockServiceError):
    """Raised when talking to the lock service fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(ValueError):
    """Raised when the lock service settings are missing or invalid."""
    pass
