"""
Group Membership Oracle - answers "is user U a member of group G".

Delegates to the Group collaborator (GroupService). Used before every HTTP
read or write and before real-time sends and read receipts.
"""

import asyncio

import aiohttp

from groupchat.core.exceptions import ForbiddenError, InternalError, NotFoundError
from groupchat.core.logging_config import get_logger
from groupchat.services.group_service import GroupDetails, GroupService

logger = get_logger(__name__)


class MembershipOracle:

    def __init__(self, group_service: GroupService):
        self.group_service = group_service

    async def require_member(self, group_id: str, user_id: str) -> GroupDetails:
        """
        Return the group if user_id belongs to it.

        Raises:
            NotFoundError: group does not exist
            ForbiddenError: user is not a member
            InternalError: Group collaborator unreachable
        """
        try:
            group = await self.group_service.get_group(group_id)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise InternalError("Group service unavailable") from e

        if group is None:
            logger.warning("group_access_denied", group_id=group_id, user_id=user_id, reason="group_not_found")
            raise NotFoundError("Group not found")

        if not group.is_member(user_id):
            logger.warning("user_not_member_of_group", group_id=group_id, user_id=user_id)
            raise ForbiddenError("You are not a member of this group")

        return group

    async def is_member(self, group_id: str, user_id: str) -> bool:
        try:
            await self.require_member(group_id, user_id)
        except (NotFoundError, ForbiddenError):
            return False
        return True
