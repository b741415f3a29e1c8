"""
Asset handle.

An Asset is one claimed resource: the lock that guards it plus the data file
that describes it. Field lookups read the data file and never raise for a
missing key.
"""

from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from assetlock.errors import LockServiceError
from assetlock.lockservice import ResourceLock
from assetlock.store import DataFile, READ_ERRORS


class Asset:
    """
    A claimed asset.

    The asset manager usually reserves the lock before building the Asset
    and passes ``locked=True``. ``lock()`` is for assets built directly; it
    walks a chain of candidate lock names because different finders fill in
    different combinations of ``lock_name``, ``data_file`` and
    ``alternative_lock_name``.
    """

    def __init__(
        self,
        lock: ResourceLock,
        data_file: Optional[str] = None,
        lock_name: Optional[str] = None,
        alternative_lock_name: Optional[str] = None,
        lock_name_prefix: str = "",
        locked: bool = False,
    ) -> None:
        self._lock = lock
        self.data_file = data_file
        self.lock_name = lock_name
        self.alternative_lock_name = alternative_lock_name
        self.lock_name_prefix = lock_name_prefix or ""
        self._locked = locked
        self._data: Optional[DataFile] = None

        if data_file:
            try:
                self._data = DataFile.load(data_file)
            except READ_ERRORS as e:
                logger.warning(f"Unable to load asset data file {data_file}: {e}")

    @property
    def name(self) -> str:
        """The lock name this asset is held under."""
        return self._lock.name

    def _lock_names(self) -> List[str]:
        base = self.lock_name or self._lock.name
        names = [base]
        if self.lock_name_prefix:
            names.append(self.lock_name_prefix + base)
        if self.data_file:
            names.append(self.lock_name_prefix + Path(self.data_file).name.split(".")[0])
        if self.alternative_lock_name:
            names.append(self.alternative_lock_name)

        unique = []
        for name in names:
            if name and name not in unique:
                unique.append(name)
        return unique

    async def lock(self) -> None:
        """
        Reserve the asset, trying each candidate lock name in turn.

        Raises:
            LockServiceError: The last failure, if no name could be reserved.
        """
        if self._locked:
            return
        names = self._lock_names()
        last_error: Optional[LockServiceError] = None
        for name in names:
            try:
                await self._lock.acquire(name)
            except LockServiceError as e:
                logger.info(f"Unable to lock asset as {name}: {e}")
                last_error = e
                continue
            self._locked = True
            logger.info(f"Asset locked as: {name}")
            return
        raise last_error

    async def unlock(self) -> None:
        """Release the asset. A second call does nothing."""
        if not self._locked:
            return
        await self._lock.release()
        self._locked = False
        logger.info(f"Asset unlocked: {self.name}")

    @property
    def is_locked(self) -> bool:
        return self._locked

    def get_value(self, key: str) -> Optional[str]:
        if self._data is None:
            return None
        return self._data.value(key)

    def has_value(self, key: str) -> bool:
        return self._data is not None and self._data.has(key)

    def values(self) -> Dict[str, str]:
        if self._data is None:
            return {}
        return self._data.as_properties()

    def __repr__(self) -> str:
        return (
            f"Asset(name={self.name!r}, data_file={self.data_file!r}, "
            f"locked={self._locked})"
        )

    async def __aenter__(self) -> "Asset":
        await self.lock()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.unlock()
