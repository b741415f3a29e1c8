"""
Remote Lock Service client.

Talks to a "lockable resources" service over HTTP: lists resources and
their reservation state, reserves and unreserves them by name, and waits for
a reserved resource to become free. One client is created per process and
shared by every finder and the asset manager.
"""

import asyncio
import itertools
import time
from typing import Dict, List, Optional, Set
from urllib.parse import quote

import httpx
from loguru import logger

from assetlock.config import LockServiceConfig
from assetlock.errors import (
    LockServiceError,
    RemoteServiceError,
    ReservationRefusedError,
    WaitTimeoutExceededError,
)
from assetlock.types import LockableResource, VerificationMode

# Status codes the service uses to say "someone else holds it".
CONTENTION_STATUS_CODES = (409, 423)


def _parse_labels(raw) -> List[str]:
    if isinstance(raw, str):
        return raw.split()
    if isinstance(raw, list):
        return [str(label) for label in raw]
    return []


class LockServiceClient:
    """
    Client for the remote lockable-resources service.

    Example:
        config = LockServiceConfig.from_data_file("./data/resourcelock.csv")
        async with LockServiceClient(config) as client:
            await client.reserve("device-17")
            ...
            await client.unreserve("device-17")
    """

    def __init__(
        self,
        config: LockServiceConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Lock service configuration.
            transport: Optional httpx transport, mainly for tests.
        """
        self.config = config
        auth = None
        if config.username and config.api_token:
            auth = httpx.BasicAuth(config.username, config.api_token)
        self.client = httpx.AsyncClient(
            auth=auth,
            timeout=config.request_timeout,
            transport=transport,
        )
        self._leases: Dict[str, int] = {}
        self._released: Set[str] = set()
        self._lease_ids = itertools.count(1)
        self._expiry_tasks: Set[asyncio.Task] = set()

    def _url(self, path: str, name: Optional[str] = None) -> str:
        url = f"{self.config.endpoint_url}{path}"
        if name is not None:
            url += quote(name, safe="")
        return url

    def _resolve(self, name: Optional[str]) -> str:
        return name.strip() if name else self.config.lock_name

    async def _get(self, url: str) -> httpx.Response:
        try:
            return await self.client.get(url)
        except httpx.RequestError as e:
            raise RemoteServiceError(f"Network error calling {url}: {e}")

    def _count_fragment(self, count: int) -> str:
        colour = "red" if count == 0 else "darkorange"
        return (
            f'{self.config.resource_name}</td><td class="pane" '
            f'style="color: {colour};">{count}</td></tr>'
        )

    async def list_resources(self) -> List[LockableResource]:
        """
        Get every resource known to the lock service.

        Returns:
            The resources in the order the service lists them.

        Raises:
            RemoteServiceError: If the listing cannot be fetched or parsed.
        """
        url = self._url(self.config.status_uri)
        response = await self._get(url)
        if response.status_code >= 400:
            raise RemoteServiceError(
                f"Status query failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteServiceError(f"Failed to parse status response: {e}")

        entries = data.get("resources") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise RemoteServiceError("Status response has no resources array")

        resources = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("name"):
                continue
            resources.append(
                LockableResource(
                    name=str(entry["name"]),
                    reserved=bool(entry.get("reserved", False)),
                    reserved_by=entry.get("reservedBy"),
                    description=entry.get("description"),
                    labels=_parse_labels(entry.get("labels")),
                )
            )
        logger.debug(f"Lock service has {len(resources)} lockable resources")
        return resources

    async def _find_resource(self, name: str) -> Optional[LockableResource]:
        for resource in await self.list_resources():
            if resource.name == name:
                return resource
        return None

    async def is_locked(self, name: Optional[str]) -> bool:
        """
        Check whether a resource is currently reserved.

        Unknown names and failed queries count as not locked, so a flaky
        service never blocks allocation.
        """
        if not name:
            return False
        name = name.strip()
        try:
            resource = await self._find_resource(name)
        except RemoteServiceError as e:
            logger.warning(f"Unable to query lock status of {name}, assuming free: {e}")
            return False
        if resource is None:
            return False
        return resource.reserved

    async def wait_for_free(
        self,
        name: Optional[str] = None,
        poll_interval_ms: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> None:
        """
        Poll until the resource is free.

        Args:
            name: Resource name. Defaults to the configured lock name.
            poll_interval_ms: Sleep between polls. Defaults to ``wait_time``.
            timeout_ms: Give up after this long; 0 waits forever. Defaults
                to ``wait_timeout``.

        Raises:
            WaitTimeoutExceededError: If the timeout elapses first.
        """
        name = self._resolve(name)
        poll_ms = self.config.wait_time if poll_interval_ms is None else poll_interval_ms
        limit_ms = self.config.wait_timeout if timeout_ms is None else timeout_ms
        started = time.monotonic()

        while await self.is_locked(name):
            logger.info(
                f"Resource {name} is currently locked by another asset, "
                f"retrying in {poll_ms}ms"
            )
            await asyncio.sleep(poll_ms / 1000.0)
            elapsed_ms = (time.monotonic() - started) * 1000
            if limit_ms and elapsed_ms >= limit_ms:
                raise WaitTimeoutExceededError(name, limit_ms)

    async def reserve(self, name: Optional[str] = None) -> str:
        """
        Reserve a resource, waiting for it to become free first.

        Args:
            name: Resource name. Defaults to the configured lock name.

        Returns:
            The name that was reserved.

        Raises:
            WaitTimeoutExceededError: If the resource stayed reserved too long.
            ReservationRefusedError: If another holder won the race.
            RemoteServiceError: If the service call failed.
        """
        name = self._resolve(name)
        await self.wait_for_free(name)

        url = self._url(self.config.lock_uri, name)
        logger.info(f"Attempting lock at: {url}")
        response = await self._get(url)

        if response.status_code == 404:
            logger.warning(f"Resource {name} is not tracked by the lock service")
        elif response.status_code in CONTENTION_STATUS_CODES:
            raise ReservationRefusedError(name)
        elif response.status_code >= 400:
            raise RemoteServiceError(
                f"Reserve failed for {name}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        else:
            await self._verify_reserved(name, response)

        lease = next(self._lease_ids)
        self._leases[name] = lease
        self._released.discard(name)
        logger.info(f"Resource is locked: {name}")

        if self.config.ttl:
            self._schedule_expiry(name, lease)
        return name

    async def _verify_reserved(self, name: str, response: httpx.Response) -> None:
        mode = self.config.verification
        if mode == VerificationMode.PLAIN:
            return
        if mode == VerificationMode.HTML:
            if self._count_fragment(0) not in response.text:
                raise ReservationRefusedError(name, "reservation count did not drop to 0")
            return

        try:
            resource = await self._find_resource(name)
        except RemoteServiceError as e:
            logger.warning(f"Unable to confirm reservation of {name}: {e}")
            return
        if resource is None:
            return
        if not resource.reserved:
            raise ReservationRefusedError(name, "service still reports the resource as free")
        user = self.config.username
        if user and resource.reserved_by and resource.reserved_by != user:
            raise ReservationRefusedError(name, f"reserved by {resource.reserved_by}")

    async def unreserve(self, name: Optional[str] = None) -> None:
        """
        Release a resource. Only the first successful call per name sends a request.

        Raises:
            RemoteServiceError: If the service call failed.
        """
        name = self._resolve(name)
        if name in self._released:
            logger.debug(f"Unlock already sent for {name}")
            return

        url = self._url(self.config.unlock_uri, name)
        logger.info(f"Attempting unlock at: {url}")
        response = await self._get(url)

        if response.status_code >= 400 and response.status_code != 404:
            raise RemoteServiceError(
                f"Unreserve failed for {name}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if (
            self.config.verification == VerificationMode.HTML
            and response.status_code < 400
            and self._count_fragment(1) not in response.text
        ):
            raise RemoteServiceError(f"Unreserve of {name} was not confirmed by the service")

        self._released.add(name)
        self._leases.pop(name, None)
        logger.info(f"Resource is unlocked: {name}")

    def _schedule_expiry(self, name: str, lease: int) -> None:
        task = asyncio.get_running_loop().create_task(self._expire(name, lease))
        self._expiry_tasks.add(task)
        task.add_done_callback(self._expiry_tasks.discard)
        logger.debug(f"Scheduled release of {name} in {self.config.ttl}ms")

    async def _expire(self, name: str, lease: int) -> None:
        await asyncio.sleep(self.config.ttl / 1000.0)
        # a later claim of the same name owns its own timer
        if self._leases.get(name) != lease:
            return
        logger.info(f"TTL of {self.config.ttl}ms expired for {name}, releasing")
        try:
            await self.unreserve(name)
        except LockServiceError as e:
            logger.warning(f"TTL release of {name} failed: {e}")

    def is_held(self, name: str) -> bool:
        """Check whether this client reserved the name and has not released it."""
        return name in self._leases

    def resource_lock(self, name: Optional[str] = None) -> "ResourceLock":
        """Create a lock handle bound to this client."""
        return ResourceLock(self, self._resolve(name))

    async def aclose(self) -> None:
        """Cancel pending TTL timers and close the HTTP client."""
        for task in list(self._expiry_tasks):
            task.cancel()
        await self.client.aclose()

    async def __aenter__(self) -> "LockServiceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class ResourceLock:
    """
    Handle on one named lock held through the lock service.

    Implements the async context manager protocol:
        async with client.resource_lock("device-17"):
            # exclusive access to the resource
    """

    def __init__(self, client: LockServiceClient, name: str) -> None:
        self._client = client
        self.name = name
        self._is_locked = False

    async def acquire(self, name: Optional[str] = None) -> None:
        """
        Reserve the lock, optionally under a different name.

        The handle only takes the new name once the reservation succeeds.

        Raises:
            LockServiceError: If the reservation fails.
        """
        target = name or self.name
        await self._client.reserve(target)
        self.name = target
        self._is_locked = True

    async def acquire_with_prefix(self, prefix: str) -> None:
        """Reserve ``prefix + name``."""
        await self.acquire(f"{prefix}{self.name}")

    async def release(self) -> None:
        """
        Release the lock.

        Raises:
            RuntimeError: If the lock is not currently held.
            RemoteServiceError: If the service call failed.
        """
        if not self._is_locked:
            raise RuntimeError("Cannot release a lock that is not held")
        await self._client.unreserve(self.name)
        self._is_locked = False

    @property
    def is_locked(self) -> bool:
        return self._is_locked

    async def __aenter__(self) -> "ResourceLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.release()
