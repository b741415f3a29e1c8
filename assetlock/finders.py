"""
Asset Finders.

Finders locate candidate assets for a search term. Each variant searches a
different way: by data file name, by data file content, by the value of a
dataset inside the data files, or by the lock service's own resource
listing. Directory and file order are shuffled on every call so that many
processes searching the same store do not all queue up on the same asset.
"""

import random
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from loguru import logger

from assetlock.errors import RemoteServiceError
from assetlock.lockservice import LockServiceClient
from assetlock.store import DataFile, PathLike, READ_ERRORS, contains_text, list_files, shuffled
from assetlock.types import Candidate

DEFAULT_EXTENSIONS = (".csv", ".txt")


class AssetFinder(ABC):
    """
    Base class for every finder.

    A call to ``find`` leaves a single result (``lock_name``,
    ``asset_data_file``, ``alternative_lock_name``); ``find_all`` and
    ``find_any`` leave an ordered list of candidates. Lock names skipped
    because the service reported them reserved are kept in ``contended``.
    All state is reset at the start of every call.
    """

    def __init__(
        self,
        client: Optional[LockServiceClient] = None,
        lock_name_prefix: str = "",
        rng: Optional[random.Random] = None,
    ) -> None:
        self._client = client
        self.lock_name_prefix = lock_name_prefix
        self._rng = rng or random.Random()
        self._reset()

    def _reset(self) -> None:
        self._lock_name: Optional[str] = None
        self._asset_data_file: Optional[str] = None
        self._alternative_lock_name: Optional[str] = None
        self._candidates: List[Candidate] = []
        self._contended: List[str] = []

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def lock_name(self) -> Optional[str]:
        return self._lock_name

    @property
    def asset_data_file(self) -> Optional[str]:
        return self._asset_data_file

    @property
    def alternative_lock_name(self) -> Optional[str]:
        return self._alternative_lock_name

    @property
    def candidates(self) -> List[Candidate]:
        return list(self._candidates)

    @property
    def contended(self) -> List[str]:
        return list(self._contended)

    @property
    def has_multiple_asset_choices(self) -> bool:
        return len(self._candidates) > 0

    @property
    def number_of_multiple_asset_choices(self) -> int:
        return len(self._candidates)

    @property
    def multiple_asset_data_files(self) -> Dict[str, Optional[str]]:
        """Data file -> lock name, in the order the candidates were found."""
        return {
            c.data_file: c.lock_name
            for c in self._candidates
            if c.data_file is not None
        }

    def _match(self, candidate: Candidate) -> None:
        self._asset_data_file = candidate.data_file
        self._lock_name = candidate.lock_name
        self._alternative_lock_name = candidate.alternative_lock_name

    def _add_candidate(self, candidate: Candidate) -> None:
        if candidate not in self._candidates:
            self._candidates.append(candidate)

    async def _available(self, lock_name: Optional[str]) -> bool:
        """Check the service; reserved names are remembered as contended."""
        if self._client is None or not lock_name:
            return True
        if await self._client.is_locked(lock_name):
            logger.info(f"Asset is currently locked by another task: {lock_name}")
            self._contended.append(lock_name)
            return False
        return True

    @abstractmethod
    async def find(self, term: str) -> bool:
        """Find the first available asset matching ``term``."""

    @abstractmethod
    async def find_all(self, term: str) -> bool:
        """Collect every available asset matching ``term``."""

    @abstractmethod
    async def find_any(self) -> bool:
        """Collect every available asset."""


class DirectoryAssetFinder(AssetFinder):
    """Base for finders that scan directories of data files."""

    def __init__(
        self,
        client: Optional[LockServiceClient],
        directories: Sequence[PathLike],
        lock_name_prefix: str = "",
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(client, lock_name_prefix=lock_name_prefix, rng=rng)
        self.directories = [str(d) for d in directories or []]

    def _shuffled_directories(self) -> List[str]:
        return shuffled(self.directories, self._rng)

    def _files(self) -> Iterator[Path]:
        for directory in self._shuffled_directories():
            try:
                files = list_files(directory, self._rng)
            except OSError as e:
                logger.debug(f"Skipping directory {directory}: {e}")
                continue
            logger.debug(f"Number of files found in {directory}: {len(files)}")
            yield from files

    @staticmethod
    def _load(path: PathLike) -> Optional[DataFile]:
        try:
            return DataFile.load(path)
        except READ_ERRORS as e:
            logger.debug(f"Skipping unreadable data file {path}: {e}")
            return None


class FilenameAssetFinder(DirectoryAssetFinder):
    """
    Finds an asset whose data file is named after the search term.

    ``term`` matches the file ``term`` exactly or ``term`` plus one of the
    recognized extensions. With a ``dataset_id`` the lock name is read from
    that dataset in the matched file; otherwise the term itself becomes the
    alternative lock name.
    """

    def __init__(
        self,
        client: Optional[LockServiceClient],
        directories: Sequence[PathLike],
        dataset_id: Optional[str] = None,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        lock_name_prefix: str = "",
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(client, directories, lock_name_prefix=lock_name_prefix, rng=rng)
        self.dataset_id = dataset_id
        self.extensions = tuple(extensions)

    def _filenames(self, term: str) -> List[str]:
        names = [term]
        names.extend(term + extension for extension in self.extensions)
        return names

    async def _unnamed_candidate(self, path: Path, term: Optional[str]) -> Optional[Candidate]:
        # the term itself becomes the lock name
        if not await self._available(term):
            return None
        return Candidate(str(path), None, term)

    async def _candidate_for(self, path: Path, term: Optional[str]) -> Optional[Candidate]:
        if self.dataset_id is None:
            return await self._unnamed_candidate(path, term)
        data = self._load(path)
        value = data.value(self.dataset_id) if data is not None else None
        if not value:
            return await self._unnamed_candidate(path, term)
        if not await self._available(value):
            return None
        return Candidate(str(path), value, value)

    def _matching_paths(self, term: str) -> List[Path]:
        paths = []
        for directory in self._shuffled_directories():
            logger.debug(f"Checking for asset filename {term} in {directory}")
            for filename in self._filenames(term):
                path = Path(directory) / filename
                if path.is_file():
                    paths.append(path)
        return paths

    async def find(self, term: str) -> bool:
        self._reset()
        term = term.strip()
        if not term:
            return False
        for path in self._matching_paths(term):
            candidate = await self._candidate_for(path, term)
            if candidate is None:
                continue
            self._match(candidate)
            logger.info(f"Asset data file found for {term}: {path}")
            return True
        return False

    async def find_all(self, term: str) -> bool:
        self._reset()
        term = term.strip()
        if not term:
            return False
        for path in self._matching_paths(term):
            candidate = await self._candidate_for(path, term)
            if candidate is not None:
                self._add_candidate(candidate)
        return self.has_multiple_asset_choices

    async def find_any(self) -> bool:
        self._reset()
        for path in self._files():
            if path.suffix.lower() not in self.extensions:
                continue
            candidate = await self._candidate_for(path, path.stem)
            if candidate is not None:
                self._add_candidate(candidate)
        return self.has_multiple_asset_choices


class ContentAssetFinder(DirectoryAssetFinder):
    """Finds an asset whose data file mentions the search term anywhere."""

    async def find(self, term: str) -> bool:
        self._reset()
        term = term.strip()
        if not term:
            return False
        logger.info(f"Finding object id: {term}")
        for path in self._files():
            if not contains_text(path, term):
                continue
            # every match shares the term as its lock name
            if not await self._available(term):
                return False
            self._match(Candidate(str(path), None, term))
            return True
        return False

    async def find_all(self, term: str) -> bool:
        self._reset()
        term = term.strip()
        if not term:
            return False
        matches = [path for path in self._files() if contains_text(path, term)]
        if not matches or not await self._available(term):
            return False
        for path in matches:
            self._add_candidate(Candidate(str(path), None, term))
        return self.has_multiple_asset_choices

    async def find_any(self) -> bool:
        self._reset()
        for path in self._files():
            if await self._available(path.stem):
                self._add_candidate(Candidate(str(path), None, path.stem))
        return self.has_multiple_asset_choices


class DatasetAssetFinder(DirectoryAssetFinder):
    """
    Finds assets by the value of a dataset inside the data files.

    A file matches when its ``dataset_id`` value contains the search term
    (case-insensitive). The lock name is the value of
    ``retrieve_dataset_id`` when given, else the matched value itself.
    """

    def __init__(
        self,
        client: Optional[LockServiceClient],
        directories: Sequence[PathLike],
        dataset_id: str,
        retrieve_dataset_id: Optional[str] = None,
        lock_name_prefix: str = "",
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(client, directories, lock_name_prefix=lock_name_prefix, rng=rng)
        self.dataset_id = dataset_id
        self.retrieve_dataset_id = retrieve_dataset_id

    async def _scan(self, term: Optional[str], first_only: bool) -> bool:
        needle = term.strip().lower() if term is not None else None
        logger.info(f"Finding object id by data set id: {self.dataset_id}|{term}")
        for path in self._files():
            data = self._load(path)
            if data is None or not data.has(self.dataset_id):
                continue
            value = data.value(self.dataset_id) or ""
            if needle is not None and needle not in value.lower():
                continue
            lock_name = value
            if self.retrieve_dataset_id is not None:
                lock_name = data.value(self.retrieve_dataset_id) or value
            if not await self._available(lock_name):
                continue
            logger.info(f"Data value found for data set id: {self.dataset_id}|{value}|{path}")
            candidate = Candidate(str(path), lock_name, lock_name)
            if first_only:
                self._match(candidate)
                return True
            self._add_candidate(candidate)
        return self.has_multiple_asset_choices

    async def find(self, term: str) -> bool:
        self._reset()
        return await self._scan(term, first_only=True)

    async def find_all(self, term: str) -> bool:
        self._reset()
        return await self._scan(term, first_only=False)

    async def find_any(self) -> bool:
        self._reset()
        return await self._scan(None, first_only=False)


class InventoryAssetFinder(AssetFinder):
    """
    Finds assets in the lock service's own resource listing.

    Never reports a data file, only the resource name to lock.
    """

    def __init__(
        self,
        client: LockServiceClient,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(client, rng=rng)

    async def _resources(self):
        try:
            return shuffled(await self._client.list_resources(), self._rng)
        except RemoteServiceError as e:
            logger.debug(f"Unable to list lockable resources: {e}")
            return []

    def _take(self, resource) -> Optional[Candidate]:
        if resource.reserved:
            self._contended.append(resource.name)
            return None
        return Candidate(None, resource.name, resource.name)

    async def find(self, term: str) -> bool:
        self._reset()
        term = term.strip()
        if not term:
            return False
        logger.info(f"Checking for resource in list of lockable resources: {term}")
        for resource in await self._resources():
            if resource.name != term:
                continue
            candidate = self._take(resource)
            if candidate is None:
                return False
            self._match(candidate)
            return True
        return False

    async def find_all(self, term: str) -> bool:
        self._reset()
        needle = term.strip().lower()
        for resource in await self._resources():
            if needle not in resource.name.lower():
                continue
            candidate = self._take(resource)
            if candidate is not None:
                self._add_candidate(candidate)
        return self.has_multiple_asset_choices

    async def find_any(self) -> bool:
        self._reset()
        for resource in await self._resources():
            candidate = self._take(resource)
            if candidate is not None:
                self._add_candidate(candidate)
        return self.has_multiple_asset_choices
