"""
GroupService - read-only client for the Group collaborator.

The Group collaborator owns group CRUD and membership. The message core only
needs ``get_group(id)`` and reads ``member_ids`` and ``creator_id`` from it.

- HTTP over a persistent aiohttp session (service token in X-Service-Token)
- Redis caching of group details (``GROUP_CACHE_TTL``)
- Falls back to a cached copy when the collaborator is unreachable
"""

from dataclasses import dataclass, asdict, field
from typing import List, Optional
import asyncio
import aiohttp

from groupchat.core.logging_config import get_logger
from groupchat.core.cache import CacheBackend, cache, serialize_for_cache, deserialize_from_cache
from groupchat.config import settings

logger = get_logger(__name__)

STALE_TTL_FACTOR = 12


@dataclass
class GroupDetails:
    """Group as exposed by the Group collaborator."""
    id: str
    name: str
    creator_id: str
    member_ids: List[str] = field(default_factory=list)

    def is_member(self, user_id: str) -> bool:
        return user_id in self.member_ids

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "GroupDetails":
        return cls(**data)

    @classmethod
    def from_api(cls, data: dict) -> "GroupDetails":
        """Build from a collaborator payload (accepts both id/_id and creator spellings)."""
        members = data.get("members") or data.get("member_ids") or []
        return cls(
            id=str(data.get("id") or data.get("_id")),
            name=data.get("name", ""),
            creator_id=str(data.get("creator_id") or data.get("creatorId") or data.get("creator") or ""),
            member_ids=[str(m["id"]) if isinstance(m, dict) else str(m) for m in members],
        )


class GroupService:
    """
    Fetch groups from the Group collaborator with caching.

    Usage:
        group_service = GroupService()
        await group_service.start()
        group = await group_service.get_group(group_id)
        if group is None:
            raise NotFoundError("Group not found")
    """

    def __init__(
        self,
        base_url: str = None,
        service_token: str = None,
        cache_backend: CacheBackend = None,
        cache_ttl: int = None,
        timeout: float = None
    ):
        self.base_url = (base_url or settings.GROUPS_API_URL).rstrip('/')
        self.service_token = service_token if service_token is not None else settings.SERVICE_AUTH_TOKEN
        self.cache = cache_backend or cache
        self.cache_ttl = cache_ttl or settings.GROUP_CACHE_TTL
        self.timeout = timeout or settings.GROUPS_API_TIMEOUT
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """
        Create the aiohttp session.

        MUST be called from the running event loop (app lifespan).
        """
        if self._session is not None and not self._session.closed:
            logger.warning("group_service_already_started")
            return

        connector = aiohttp.TCPConnector(
            limit=100,
            ttl_dns_cache=300,
            enable_cleanup_closed=True
        )
        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            raise_for_status=False
        )
        logger.info("group_service_started", base_url=self.base_url, cache_ttl=self.cache_ttl)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("group_service_http_session_closed")

    async def get_group(self, group_id: str) -> Optional[GroupDetails]:
        """
        Return the group, or None if the collaborator does not know it.

        Raises:
            aiohttp.ClientError, asyncio.TimeoutError: collaborator unreachable and nothing cached
        """
        cache_key = self._cache_key(group_id)

        cached = await self._get_from_cache(cache_key)
        if cached:
            logger.debug("group_cache_hit", group_id=group_id)
            return cached

        try:
            group = await self._fetch(group_id)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("groups_api_fetch_failed", group_id=group_id, error=str(e))
            stale = await self._get_from_cache(self._stale_key(group_id))
            if stale:
                logger.warning("using_cached_group_due_to_groups_api_failure", group_id=group_id)
                return stale
            raise

        if group is None:
            logger.info("group_not_found", group_id=group_id)
            return None

        await self._save_to_cache(cache_key, group, self.cache_ttl)
        # Longer-lived copy served only while the collaborator is unreachable
        await self._save_to_cache(self._stale_key(group_id), group, self.cache_ttl * STALE_TTL_FACTOR)
        return group

    async def invalidate(self, group_id: str) -> None:
        """Drop the cached copy (call when membership changes)."""
        await self.cache.delete(self._cache_key(group_id))
        await self.cache.delete(self._stale_key(group_id))
        logger.info("group_cache_invalidated", group_id=group_id)

    async def _fetch(self, group_id: str) -> Optional[GroupDetails]:
        session = self._get_session()
        url = f"{self.base_url}/api/groups/{group_id}"

        logger.debug("fetching_group", group_id=group_id, endpoint=url)
        async with session.get(url, headers={"X-Service-Token": self.service_token}) as response:
            if response.status == 404:
                return None
            response.raise_for_status()
            data = await response.json()

        return GroupDetails.from_api(data)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            raise RuntimeError(
                "GroupService not started. "
                "Call await group_service.start() during app startup (lifespan)."
            )
        return self._session

    @staticmethod
    def _cache_key(group_id: str) -> str:
        return f"group:{group_id}:details"

    @staticmethod
    def _stale_key(group_id: str) -> str:
        return f"group:{group_id}:stale"

    async def _get_from_cache(self, key: str) -> Optional[GroupDetails]:
        cached_json = await self.cache.get(key)
        if not cached_json:
            return None

        try:
            return GroupDetails.from_dict(deserialize_from_cache(cached_json))
        except (ValueError, TypeError) as e:
            logger.error("cache_deserialization_error", key=key, error=str(e))
            return None

    async def _save_to_cache(self, key: str, group: GroupDetails, ttl: int) -> None:
        await self.cache.set(key, serialize_for_cache(group.to_dict()), ttl=ttl)
