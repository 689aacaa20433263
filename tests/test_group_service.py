"""
Tests for GroupService against a local aiohttp server standing in for the Group API.

Tests:
1. Fetch a group with the service token
2. Unknown groups map to None
3. Results are cached, stale copies serve outages
4. Collaborator payload variants (id/_id, member objects)
"""

from typing import Dict, Optional

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from groupchat.services.group_service import GroupDetails, GroupService
from groupchat.services.membership import MembershipOracle
from groupchat.core.exceptions import ForbiddenError, InternalError, NotFoundError

SERVICE_TOKEN = "test-service-token"


class DictCache:
    """CacheBackend stand-in that keeps values in a dict."""

    def __init__(self):
        self.values: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def set(self, key: str, value: str, ttl: int = 300) -> bool:
        self.values[key] = value
        return True

    async def delete(self, key: str) -> bool:
        self.values.pop(key, None)
        return True


@pytest.fixture
def requests() -> list:
    return []


@pytest.fixture
async def groups_api(requests):

    async def get_group(request: web.Request) -> web.Response:
        requests.append(request)
        if request.headers.get("X-Service-Token") != SERVICE_TOKEN:
            return web.json_response({"detail": "forbidden"}, status=403)

        group_id = request.match_info["group_id"]
        if group_id == "g1":
            return web.json_response({
                "id": "g1",
                "name": "Climbers",
                "creatorId": "alice",
                "members": ["alice", "bob"],
            })
        if group_id == "g2":
            return web.json_response({
                "_id": "g2",
                "name": "Runners",
                "creator": "carol",
                "members": [{"id": "carol"}, {"id": "dave"}],
            })
        return web.json_response({"detail": "not found"}, status=404)

    app = web.Application()
    app.router.add_get("/api/groups/{group_id}", get_group)
    server = TestServer(app)
    await server.start_server()

    yield server

    await server.close()


@pytest.fixture
async def group_service(groups_api):
    service = GroupService(
        base_url=str(groups_api.make_url("")),
        service_token=SERVICE_TOKEN,
        cache_backend=DictCache(),
        cache_ttl=60,
        timeout=2
    )
    await service.start()

    yield service

    await service.close()


async def test_fetch_group(group_service, requests):
    group = await group_service.get_group("g1")

    assert group == GroupDetails(id="g1", name="Climbers", creator_id="alice", member_ids=["alice", "bob"])
    assert requests[0].headers["X-Service-Token"] == SERVICE_TOKEN


async def test_member_objects_and_underscore_id(group_service):
    group = await group_service.get_group("g2")

    assert group.id == "g2"
    assert group.creator_id == "carol"
    assert group.member_ids == ["carol", "dave"]


async def test_unknown_group_is_none(group_service):
    assert await group_service.get_group("missing") is None


async def test_second_lookup_is_served_from_cache(group_service, requests):
    await group_service.get_group("g1")
    await group_service.get_group("g1")

    assert len(requests) == 1


async def test_invalidate_forces_refetch(group_service, requests):
    await group_service.get_group("g1")
    await group_service.invalidate("g1")
    await group_service.get_group("g1")

    assert len(requests) == 2


async def test_stale_copy_served_when_api_down(group_service, groups_api):
    await group_service.get_group("g1")
    group_service.cache.values.pop(group_service._cache_key("g1"))
    await groups_api.close()

    group = await group_service.get_group("g1")

    assert group.name == "Climbers"


async def test_api_down_without_cache_raises(group_service, groups_api):
    await groups_api.close()

    with pytest.raises(aiohttp.ClientError):
        await group_service.get_group("g1")


async def test_wrong_service_token_raises(groups_api):
    service = GroupService(
        base_url=str(groups_api.make_url("")),
        service_token="wrong",
        cache_backend=DictCache()
    )
    await service.start()
    try:
        with pytest.raises(aiohttp.ClientResponseError):
            await service.get_group("g1")
    finally:
        await service.close()


async def test_oracle_maps_collaborator_answers(group_service, groups_api):
    oracle = MembershipOracle(group_service)

    group = await oracle.require_member("g1", "bob")
    assert group.creator_id == "alice"

    with pytest.raises(ForbiddenError):
        await oracle.require_member("g1", "mallory")
    with pytest.raises(NotFoundError):
        await oracle.require_member("missing", "bob")
    assert await oracle.is_member("g1", "alice") is True
    assert await oracle.is_member("g1", "mallory") is False

    await groups_api.close()
    with pytest.raises(InternalError):
        await oracle.require_member("g2", "carol")
