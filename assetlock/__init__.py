"""
assetlock - asset allocation over a remote lock service

Finds test assets described by flat data files, claims them through a
lockable-resources HTTP service so that many concurrent test processes never
share one, and releases them when the workflow using them is done.
"""

from .asset import Asset
from .config import LockServiceConfig, ManagerSettings, SharedProperties
from .errors import (
    AssetAllocationError,
    AlreadyAllocatedThisTaskError,
    AlreadyFoundAndAllocatedError,
    FoundButReservedError,
    AssetNotFoundError,
    LockServiceError,
    WaitTimeoutExceededError,
    ReservationRefusedError,
    RemoteServiceError,
    ConfigurationError,
)
from .finders import (
    AssetFinder,
    FilenameAssetFinder,
    ContentAssetFinder,
    DatasetAssetFinder,
    InventoryAssetFinder,
)
from .lockservice import LockServiceClient, ResourceLock
from .manager import AssetManager, SimpleWaitWorkflow
from .store import DataFile
from .types import Candidate, ClaimOutcome, ClaimResult, LockableResource, LockSession, VerificationMode

__version__ = "0.1.0"

__all__ = [
    # Allocation
    "AssetManager",
    "Asset",
    "SimpleWaitWorkflow",
    # Finders
    "AssetFinder",
    "FilenameAssetFinder",
    "ContentAssetFinder",
    "DatasetAssetFinder",
    "InventoryAssetFinder",
    # Lock service
    "LockServiceClient",
    "ResourceLock",
    # Configuration
    "LockServiceConfig",
    "ManagerSettings",
    "SharedProperties",
    # Types
    "Candidate",
    "ClaimOutcome",
    "ClaimResult",
    "DataFile",
    "LockableResource",
    "LockSession",
    "VerificationMode",
    # Errors
    "AssetAllocationError",
    "AlreadyAllocatedThisTaskError",
    "AlreadyFoundAndAllocatedError",
    "FoundButReservedError",
    "AssetNotFoundError",
    "LockServiceError",
    "WaitTimeoutExceededError",
    "ReservationRefusedError",
    "RemoteServiceError",
    "ConfigurationError",
]
