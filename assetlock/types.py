"""
Type definitions for asset allocation.

Contains enums, dataclasses, and type definitions shared by the finders,
the lock service client and the asset manager.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from assetlock.asset import Asset


class VerificationMode(str, Enum):
    """How a reserve/unreserve response is verified."""
    STATUS = "status"    # HTTP status, then confirm through the status listing
    HTML = "html"        # legacy: look for the rendered reservation count
    PLAIN = "plain"      # any 2xx response is a success


class ClaimOutcome(str, Enum):
    """Result of a single claim attempt on one candidate."""
    CLAIMED = "claimed"
    CONTENDED = "contended"
    ALREADY_HELD = "already_held"


@dataclass(frozen=True)
class Candidate:
    """A finder match: where the asset data lives and which lock guards it."""
    data_file: Optional[str] = None
    lock_name: Optional[str] = None
    alternative_lock_name: Optional[str] = None


@dataclass
class ClaimResult:
    """Outcome of trying to claim one candidate."""
    outcome: ClaimOutcome
    candidate: Candidate
    lock_name: Optional[str] = None
    asset: Optional["Asset"] = None
    error: Optional[Exception] = None

    @property
    def claimed(self) -> bool:
        return self.outcome == ClaimOutcome.CLAIMED


@dataclass
class LockableResource:
    """One entry of the lock service's resource listing."""
    name: str
    reserved: bool = False
    reserved_by: Optional[str] = None
    description: Optional[str] = None
    labels: List[str] = field(default_factory=list)


class LockSession:
    """
    Process-local record of everything this allocator holds.

    Append-only for the life of the allocator. Membership checks and
    appends are guarded by a lock so the session can be shared across
    threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: List[str] = []
        self._assets: List["Asset"] = []

    def contains(self, identifier: Optional[str]) -> bool:
        """Check whether an identifier or lock name is held."""
        if identifier is None:
            return False
        identifier = identifier.strip()
        with self._lock:
            if identifier in self._ids:
                return True
            return any(
                asset.alternative_lock_name is not None
                and asset.alternative_lock_name.strip() == identifier
                for asset in self._assets
            )

    def holds_data_file(self, data_file: Optional[str]) -> bool:
        """Check whether an asset built from this data file is held."""
        if data_file is None:
            return False
        with self._lock:
            return any(asset.data_file == data_file for asset in self._assets)

    def add(self, asset: "Asset", *identifiers: Optional[str]) -> None:
        """Record a claimed asset under one or more identifiers."""
        with self._lock:
            for identifier in identifiers:
                if identifier is None:
                    continue
                identifier = identifier.strip()
                if identifier not in self._ids:
                    self._ids.append(identifier)
            self._assets.append(asset)

    @property
    def locked_asset_ids(self) -> List[str]:
        with self._lock:
            return list(self._ids)

    @property
    def locked_assets(self) -> List["Asset"]:
        with self._lock:
            return list(self._assets)

    def __len__(self) -> int:
        with self._lock:
            return len(self._assets)
