"""
Role checks for group-scoped operations.

Owners and dungeon masters are privileged: they may mutate timers, manage
shares and webhooks, and see attributed chronicle detail and
acknowledgement counts. Players and observers see the public projection.
"""

import logging
from typing import TYPE_CHECKING

from .exceptions import Forbidden, NotFound
from .models import GroupRole, Membership

if TYPE_CHECKING:
    from .collaborators import MembershipDirectory

logger = logging.getLogger("condition-transparency")

PRIVILEGED_ROLES = frozenset({GroupRole.OWNER, GroupRole.DUNGEON_MASTER})
NOTIFIABLE_ROLES = frozenset({GroupRole.OWNER, GroupRole.DUNGEON_MASTER, GroupRole.PLAYER})


class GroupAccessResolver:
    """
    Resolves a caller's membership and enforces role requirements.

    Attributes:
        directory: Read-only membership collaborator
    """

    def __init__(self, directory: "MembershipDirectory") -> None:
        self.directory = directory

    def require_group(self, group_id: str) -> None:
        """Raise NotFound if the group does not exist."""
        if self.directory.group(group_id) is None:
            raise NotFound(f"Group not found: {group_id}", resource="group")

    def require_member(self, group_id: str, user_id: str) -> Membership:
        """
        Return the caller's membership in the group.

        Raises:
            NotFound: If the group does not exist
            Forbidden: If the caller is not a member
        """
        self.require_group(group_id)
        membership = self.directory.membership(group_id, user_id)
        if membership is None:
            logger.warning(f"Non-member {user_id} attempted access to group {group_id}")
            raise Forbidden(
                "You are not a member of this group",
                details={"group_id": group_id, "user_id": user_id},
            )
        return membership

    def require_privileged(self, group_id: str, user_id: str) -> Membership:
        """
        Return the caller's membership, requiring an owner or dungeon master.

        Raises:
            NotFound: If the group does not exist
            Forbidden: If the caller is not privileged
        """
        membership = self.require_member(group_id, user_id)
        if membership.role not in PRIVILEGED_ROLES:
            logger.warning(
                f"User {user_id} ({membership.role.value}) denied privileged "
                f"operation in group {group_id}"
            )
            raise Forbidden(
                "Only owners and dungeon masters may perform this operation",
                details={"group_id": group_id, "role": membership.role.value},
            )
        return membership


__all__ = [
    "PRIVILEGED_ROLES",
    "NOTIFIABLE_ROLES",
    "GroupAccessResolver",
]
