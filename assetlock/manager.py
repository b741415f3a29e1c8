"""
Asset Manager.

The allocator at the heart of the package: it asks its finders for
candidates in registration order, claims the first one it can reserve
through the lock service, and remembers every claimed asset in a
process-local session so the same task never claims the same asset twice.
"""

import asyncio
import inspect
import itertools
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Sequence

from loguru import logger

from assetlock.asset import Asset
from assetlock.config import ManagerSettings, SharedProperties
from assetlock.errors import (
    AlreadyAllocatedThisTaskError,
    AlreadyFoundAndAllocatedError,
    AssetAllocationError,
    AssetNotFoundError,
    FoundButReservedError,
    LockServiceError,
)
from assetlock.finders import AssetFinder, DatasetAssetFinder, FilenameAssetFinder
from assetlock.lockservice import LockServiceClient
from assetlock.store import PathLike
from assetlock.types import Candidate, ClaimOutcome, ClaimResult, LockSession

ANY_ASSET = "any"
ANY_ASSET_ID_PREFIX = "id_any."

Workflow = Callable[[Asset], Any]


def _is_async(workflow: Workflow) -> bool:
    if inspect.iscoroutinefunction(workflow):
        return True
    # callable objects with an async __call__
    return inspect.iscoroutinefunction(getattr(workflow, "__call__", None))


@dataclass
class _SearchTally:
    """What one acquisition request has seen so far across all finders."""
    found: bool = False
    contended: bool = False
    attempted: List[str] = field(default_factory=list)

    def record(self, result: ClaimResult) -> None:
        self.found = True
        if result.outcome == ClaimOutcome.CONTENDED:
            self.contended = True
            if result.lock_name and result.lock_name not in self.attempted:
                self.attempted.append(result.lock_name)

    def record_skipped(self, names: Iterable[str], session: LockSession) -> None:
        for name in names:
            self.found = True
            # the service reports our own reservations as locked too
            if session.contains(name):
                continue
            self.contended = True
            if name not in self.attempted:
                self.attempted.append(name)

    def error(self, identifier: str) -> AssetAllocationError:
        if not self.found:
            return AssetNotFoundError(identifier)
        if not self.contended:
            return AlreadyFoundAndAllocatedError(identifier)
        return FoundButReservedError(identifier, self.attempted)


class AssetManager:
    """
    Allocates assets to the running task.

    Example:
        async with LockServiceClient(config) as client:
            manager = AssetManager.from_settings(client, ManagerSettings.from_environment())
            asset = await manager.find_asset("deviceA")
            await manager.run_workflow(asset, my_workflow)
    """

    def __init__(
        self,
        client: LockServiceClient,
        finders: Optional[Sequence[AssetFinder]] = None,
        *,
        properties: Optional[SharedProperties] = None,
        directories: Optional[Sequence[PathLike]] = None,
        lock_name_prefix: str = "",
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            client: Lock service client shared with the finders.
            finders: Finders to consult, in order.
            properties: Shared property store claimed assets publish into.
            directories: Candidate store directories, used by
                ``add_dataset_finder``.
            lock_name_prefix: Prefix for derived lock names.
            rng: Random source handed to finders created by the manager.
        """
        self.client = client
        self.finders: List[AssetFinder] = list(finders or [])
        self.properties = properties if properties is not None else SharedProperties()
        self.directories = [str(d) for d in directories or []]
        self.lock_name_prefix = lock_name_prefix
        self._rng = rng
        self._session = LockSession()
        self._any_ids = itertools.count(1)
        self._acquire_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        client: LockServiceClient,
        settings: ManagerSettings,
        properties: Optional[SharedProperties] = None,
        rng: Optional[random.Random] = None,
    ) -> "AssetManager":
        """Create a manager over the settings directory with a filename finder."""
        manager = cls(
            client,
            properties=properties,
            directories=settings.directories,
            lock_name_prefix=settings.lock_name_prefix,
            rng=rng,
        )
        manager.add_finder(
            FilenameAssetFinder(
                client,
                settings.directories,
                lock_name_prefix=settings.lock_name_prefix,
                rng=rng,
            )
        )
        logger.debug(f"Asset manager using directory: {settings.directory}")
        return manager

    def add_finder(self, finder: AssetFinder) -> None:
        self.finders.append(finder)
        logger.debug(f"Registered asset finder: {finder.name}")

    def add_dataset_finder(self, key: str, retrieve_key: Optional[str] = None) -> DatasetAssetFinder:
        """Register a finder matching on the ``key`` dataset of the data files."""
        if not self.directories:
            raise ValueError("add_dataset_finder requires the manager's directories")
        finder = DatasetAssetFinder(
            self.client,
            self.directories,
            key,
            retrieve_dataset_id=retrieve_key,
            lock_name_prefix=self.lock_name_prefix,
            rng=self._rng,
        )
        self.add_finder(finder)
        return finder

    @property
    def locked_assets(self) -> List[Asset]:
        return self._session.locked_assets

    @property
    def locked_asset_ids(self) -> List[str]:
        return self._session.locked_asset_ids

    def contains_locked_asset(self, identifier: str) -> bool:
        return self._session.contains(identifier)

    async def find_asset(self, term: str, lock_name: Optional[str] = None) -> Asset:
        """
        Find and claim an asset.

        Args:
            term: What to search for. ``"any"`` claims any available asset.
            lock_name: Lock name to use when a finder does not derive one.

        Returns:
            The claimed, locked Asset.

        Raises:
            AlreadyAllocatedThisTaskError: If ``term`` is already held by this manager.
            AlreadyFoundAndAllocatedError: If every match is already held by this manager.
            FoundButReservedError: If matches exist but all are reserved elsewhere.
            AssetNotFoundError: If no finder matched.
        """
        term = term.strip()
        if self._session.contains(term):
            raise AlreadyAllocatedThisTaskError(term)
        if term.lower() == ANY_ASSET:
            return await self.find_any_available_asset()

        logger.info(f"Finding asset: {term}")
        async with self._acquire_lock:
            tally = _SearchTally()
            for finder in self.finders:
                found = await finder.find(term)
                tally.record_skipped(finder.contended, self._session)
                if not found:
                    continue
                logger.info(f"Asset found by {finder.name}: {term}")

                if finder.has_multiple_asset_choices:
                    result = await self._claim_first(finder, term, tally, default_name=lock_name or term)
                else:
                    candidate = Candidate(
                        finder.asset_data_file,
                        finder.lock_name,
                        finder.alternative_lock_name,
                    )
                    name = finder.lock_name or lock_name or term
                    result = await self._claim(candidate, name, term, finder.lock_name_prefix)
                    tally.record(result)
                if result is not None and result.claimed:
                    return result.asset

            if lock_name is not None:
                for finder in self.finders:
                    found = await finder.find_all(term)
                    tally.record_skipped(finder.contended, self._session)
                    if not found:
                        continue
                    result = await self._claim_first(finder, term, tally, default_name=lock_name)
                    if result is not None and result.claimed:
                        return result.asset

            raise self._exhausted(term, tally)

    async def find_all_available_assets(self, term: str) -> Asset:
        """Claim the first available asset among every match for ``term``."""
        term = term.strip()
        if self._session.contains(term):
            raise AlreadyAllocatedThisTaskError(term)

        async with self._acquire_lock:
            tally = _SearchTally()
            for finder in self.finders:
                found = await finder.find_all(term)
                tally.record_skipped(finder.contended, self._session)
                if not found:
                    continue
                result = await self._claim_first(finder, term, tally, default_name=term)
                if result is not None and result.claimed:
                    return result.asset
            raise self._exhausted(term, tally)

    async def find_any_available_asset(self) -> Asset:
        """Claim any available asset from any finder."""
        async with self._acquire_lock:
            identifier = f"{ANY_ASSET_ID_PREFIX}{next(self._any_ids)}"
            logger.info(f"Finding any available asset as {identifier}")
            tally = _SearchTally()
            for finder in self.finders:
                found = await finder.find_any()
                tally.record_skipped(finder.contended, self._session)
                if not found:
                    continue
                result = await self._claim_first(finder, identifier, tally, default_name=identifier)
                if result is not None and result.claimed:
                    return result.asset
            raise self._exhausted(ANY_ASSET, tally)

    async def _claim_first(
        self,
        finder: AssetFinder,
        identifier: str,
        tally: _SearchTally,
        default_name: str,
    ) -> Optional[ClaimResult]:
        """Try each candidate of a finder in order until one is claimed."""
        logger.debug(
            f"{finder.name} reported {finder.number_of_multiple_asset_choices} "
            f"candidates for {identifier}"
        )
        result = None
        for candidate in finder.candidates:
            name = candidate.lock_name or candidate.alternative_lock_name or default_name
            result = await self._claim(candidate, name, identifier, finder.lock_name_prefix)
            tally.record(result)
            if result.claimed:
                return result
        return result

    async def _claim(
        self,
        candidate: Candidate,
        name: str,
        identifier: str,
        lock_name_prefix: str = "",
    ) -> ClaimResult:
        if self._session.contains(name) or self._session.holds_data_file(candidate.data_file):
            logger.debug(f"Asset already held by this task: {name}")
            return ClaimResult(ClaimOutcome.ALREADY_HELD, candidate, name)

        lock = self.client.resource_lock(name)
        try:
            await lock.acquire()
        except LockServiceError as e:
            logger.info(f"Unable to claim {name}: {e}")
            return ClaimResult(ClaimOutcome.CONTENDED, candidate, name, error=e)

        asset = Asset(
            lock,
            data_file=candidate.data_file,
            lock_name=name,
            alternative_lock_name=candidate.alternative_lock_name,
            lock_name_prefix=lock_name_prefix or self.lock_name_prefix,
            locked=True,
        )
        self._session.add(asset, identifier, name)
        logger.info(f"Asset claimed: {identifier} as {name}")

        if candidate.data_file:
            try:
                self.properties.add_properties(candidate.data_file)
            except OSError as e:
                logger.warning(f"Unable to publish properties of {candidate.data_file}: {e}")
        return ClaimResult(ClaimOutcome.CLAIMED, candidate, name, asset)

    def _exhausted(self, identifier: str, tally: _SearchTally) -> AssetAllocationError:
        error = tally.error(identifier)
        logger.warning(f"Asset allocation failed: {error}")
        return error

    async def run_workflow(self, asset: Asset, workflow: Workflow) -> None:
        """
        Run a workflow against an asset, then release the asset.

        The release only happens if the asset is still locked, and a failed
        release is logged rather than raised so it never hides the workflow's
        own result.

        Args:
            asset: A claimed asset.
            workflow: Sync or async callable taking the asset.
        """
        try:
            if _is_async(workflow):
                await workflow(asset)
            else:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, workflow, asset)
            logger.info(f"Workflow completed for asset {asset.name}")
        except Exception as e:
            logger.error(f"Workflow failed for asset {asset.name}: {e}")
            raise
        finally:
            if asset.is_locked:
                try:
                    await asset.unlock()
                except Exception as e:
                    logger.warning(f"Failed to release asset {asset.name}: {e}")

    async def release_all(self) -> None:
        """Release every asset this manager still holds."""
        for asset in self._session.locked_assets:
            if not asset.is_locked:
                continue
            try:
                await asset.unlock()
            except LockServiceError as e:
                logger.warning(f"Failed to release asset {asset.name}: {e}")


class SimpleWaitWorkflow:
    """Workflow that holds the asset for a fixed time. Handy for smoke tests."""

    def __init__(self, seconds: float = 1.0) -> None:
        self.seconds = seconds

    async def __call__(self, asset: Asset) -> None:
        logger.info(f"Holding asset {asset.name} for {self.seconds}s")
        await asyncio.sleep(self.seconds)
