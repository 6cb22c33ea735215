"""
Read-only collaborators consumed by the transparency engine.

The engine never owns maps, memberships, notification preferences or
mentor briefings; it reads them through the protocols below. The one write
it performs on a collaborator is ``TokenRepository.update_durations``, used
by batch timer adjustments.

Key components:
- TokenRepository, MembershipDirectory, PreferenceStore, BriefingSource,
  NotificationSender: collaborator protocols
- InMemoryCampaignDirectory: a dict-backed implementation of all read
  protocols, loadable from a JSON file
- LoggingNotificationSender: a sender that writes notifications to the log
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional, Protocol

from .exceptions import NotFound
from .models import (
    GroupProfile,
    Membership,
    MentorBriefing,
    NotificationChannel,
    NotificationPreference,
    TokenConditionState,
)

logger = logging.getLogger("condition-transparency.collaborators")


class TokenRepository(Protocol):
    def tokens_for_group(self, group_id: str) -> list[TokenConditionState]: ...

    def get_token(self, group_id: str, token_id: str) -> Optional[TokenConditionState]: ...

    def update_durations(
        self,
        group_id: str,
        token_id: str,
        changes: dict[str, Optional[int]],
    ) -> TokenConditionState: ...


class MembershipDirectory(Protocol):
    def group(self, group_id: str) -> Optional[GroupProfile]: ...

    def groups(self) -> list[GroupProfile]: ...

    def members(self, group_id: str) -> list[Membership]: ...

    def membership(self, group_id: str, user_id: str) -> Optional[Membership]: ...


class PreferenceStore(Protocol):
    def preference_for(self, user_id: str) -> Optional[NotificationPreference]: ...


class BriefingSource(Protocol):
    def briefings_for(self, group_id: str) -> list[MentorBriefing]: ...


class NotificationSender(Protocol):
    def send(
        self,
        user_id: str,
        kind: str,
        payload: dict[str, Any],
        channels: list[NotificationChannel],
    ) -> None: ...


class InMemoryCampaignDirectory:
    """
    Dict-backed campaign data for tests, the CLI and local servers.

    Attributes:
        _groups: group_id -> GroupProfile
        _members: group_id -> {user_id -> Membership}
        _tokens: group_id -> {token_id -> TokenConditionState}
        _preferences: user_id -> NotificationPreference
        _briefings: group_id -> list of MentorBriefing
    """

    def __init__(self) -> None:
        self._groups: dict[str, GroupProfile] = {}
        self._members: dict[str, dict[str, Membership]] = {}
        self._tokens: dict[str, dict[str, TokenConditionState]] = {}
        self._preferences: dict[str, NotificationPreference] = {}
        self._briefings: dict[str, list[MentorBriefing]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_json(cls, path: Path) -> "InMemoryCampaignDirectory":
        """
        Load a directory from a JSON document.

        The document holds optional top-level lists ``groups``, ``members``,
        ``tokens``, ``preferences`` and ``briefings``, each item shaped like
        the matching model.

        Args:
            path: JSON file to read

        Returns:
            A populated directory
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        directory = cls()
        for item in data.get("groups", []):
            directory.add_group(GroupProfile.model_validate(item))
        for item in data.get("members", []):
            directory.add_member(Membership.model_validate(item))
        for item in data.get("tokens", []):
            directory.put_token(TokenConditionState.model_validate(item))
        for item in data.get("preferences", []):
            directory.set_preference(NotificationPreference.model_validate(item))
        for item in data.get("briefings", []):
            directory.add_briefing(MentorBriefing.model_validate(item))

        logger.info(
            f"Loaded campaign directory from {path}: {len(directory._groups)} groups"
        )
        return directory

    # -- population ---------------------------------------------------------

    def add_group(self, group: GroupProfile) -> None:
        self._groups[group.group_id] = group
        self._members.setdefault(group.group_id, {})
        self._tokens.setdefault(group.group_id, {})

    def add_member(self, membership: Membership) -> None:
        self._members.setdefault(membership.group_id, {})[membership.user_id] = membership

    def put_token(self, token: TokenConditionState) -> None:
        with self._lock:
            self._tokens.setdefault(token.group_id, {})[token.token_id] = token

    def set_preference(self, preference: NotificationPreference) -> None:
        self._preferences[preference.user_id] = preference

    def add_briefing(self, briefing: MentorBriefing) -> None:
        self._briefings.setdefault(briefing.group_id, []).append(briefing)

    # -- TokenRepository ----------------------------------------------------

    def tokens_for_group(self, group_id: str) -> list[TokenConditionState]:
        with self._lock:
            return list(self._tokens.get(group_id, {}).values())

    def get_token(self, group_id: str, token_id: str) -> Optional[TokenConditionState]:
        with self._lock:
            return self._tokens.get(group_id, {}).get(token_id)

    def update_durations(
        self,
        group_id: str,
        token_id: str,
        changes: dict[str, Optional[int]],
    ) -> TokenConditionState:
        """
        Apply timer changes to a token.

        A value of None removes the condition from the token entirely.

        Raises:
            NotFound: If the token does not belong to the group
        """
        with self._lock:
            token = self._tokens.get(group_id, {}).get(token_id)
            if token is None:
                raise NotFound(f"Token not found: {token_id}", resource="token")

            conditions = list(token.conditions)
            durations = dict(token.durations)
            for key, rounds in changes.items():
                if rounds is None:
                    conditions = [c for c in conditions if c != key]
                    durations.pop(key, None)
                    continue
                if key not in conditions:
                    conditions.append(key)
                durations[key] = rounds

            updated = token.model_copy(update={"conditions": conditions, "durations": durations})
            self._tokens[group_id][token_id] = updated
            return updated

    # -- MembershipDirectory ------------------------------------------------

    def group(self, group_id: str) -> Optional[GroupProfile]:
        return self._groups.get(group_id)

    def groups(self) -> list[GroupProfile]:
        return list(self._groups.values())

    def members(self, group_id: str) -> list[Membership]:
        return list(self._members.get(group_id, {}).values())

    def membership(self, group_id: str, user_id: str) -> Optional[Membership]:
        return self._members.get(group_id, {}).get(user_id)

    # -- PreferenceStore ----------------------------------------------------

    def preference_for(self, user_id: str) -> Optional[NotificationPreference]:
        return self._preferences.get(user_id)

    # -- BriefingSource -----------------------------------------------------

    def briefings_for(self, group_id: str) -> list[MentorBriefing]:
        return list(self._briefings.get(group_id, []))


class LoggingNotificationSender:
    """Notification sender that only writes to the log."""

    def send(
        self,
        user_id: str,
        kind: str,
        payload: dict[str, Any],
        channels: list[NotificationChannel],
    ) -> None:
        channel_names = ", ".join(c.value for c in channels)
        logger.info(f"Notify {user_id} [{channel_names}] {kind}: {payload.get('title', '')}")


__all__ = [
    "TokenRepository",
    "MembershipDirectory",
    "PreferenceStore",
    "BriefingSource",
    "NotificationSender",
    "InMemoryCampaignDirectory",
    "LoggingNotificationSender",
]
