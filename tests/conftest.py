"""
Pytest configuration and fixtures for condition-transparency tests.
"""

import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add src directory to Python path to allow importing condition_transparency
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from condition_transparency.collaborators import InMemoryCampaignDirectory
from condition_transparency.config import TransparencySettings
from condition_transparency.engine import TransparencyEngine
from condition_transparency.exports import LocalExportStorage
from condition_transparency.models import (
    Faction,
    GroupProfile,
    GroupRole,
    Membership,
    TokenConditionState,
)

GROUP_ID = "grp-lantern"
OWNER = "u-mira"
DM = "u-dorn"
PLAYER = "u-ana"
OTHER_PLAYER = "u-bram"
OBSERVER = "u-quill"


# Configure anyio to only use asyncio (not trio)
@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Settable clock; returns the same instant until advanced."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, moment: datetime) -> None:
        self.now = moment


class RecordingSender:
    """Notification sender that remembers every call."""

    def __init__(self) -> None:
        self.calls = []
        self._lock = threading.Lock()

    def send(self, user_id, kind, payload, channels) -> None:
        with self._lock:
            self.calls.append((user_id, kind, payload, list(channels)))

    def for_kind(self, kind: str) -> list:
        with self._lock:
            return [c for c in self.calls if c[1] == kind]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 4, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def directory() -> InMemoryCampaignDirectory:
    """A group with every role and a small battle map."""
    d = InMemoryCampaignDirectory()
    d.add_group(GroupProfile(group_id=GROUP_ID, name="The Lantern Company"))
    for user_id, name, role in [
        (OWNER, "Mira", GroupRole.OWNER),
        (DM, "Dorn", GroupRole.DUNGEON_MASTER),
        (PLAYER, "Ana", GroupRole.PLAYER),
        (OTHER_PLAYER, "Bram", GroupRole.PLAYER),
        (OBSERVER, "Quill", GroupRole.OBSERVER),
    ]:
        d.add_member(Membership(group_id=GROUP_ID, user_id=user_id, display_name=name, role=role))

    d.put_token(TokenConditionState(
        token_id="tok-ana", map_id="map-1", group_id=GROUP_ID, name="Ana the Bold",
        faction=Faction.ALLIED, owner_user_id=PLAYER,
        conditions=["poisoned"], durations={"poisoned": 6},
    ))
    d.put_token(TokenConditionState(
        token_id="tok-bram", map_id="map-1", group_id=GROUP_ID, name="Bram",
        faction=Faction.ALLIED, owner_user_id=OTHER_PLAYER,
        conditions=["blinded"], durations={"blinded": 3},
    ))
    d.put_token(TokenConditionState(
        token_id="tok-ogre", map_id="map-1", group_id=GROUP_ID, name="Ogre Brute",
        faction=Faction.HOSTILE, conditions=["frightened"], durations={"frightened": 8},
    ))
    d.put_token(TokenConditionState(
        token_id="tok-lurker", map_id="map-1", group_id=GROUP_ID, name="Cave Lurker",
        faction=Faction.HOSTILE, hidden=True,
        conditions=["restrained"], durations={"restrained": 2},
    ))
    return d


@pytest.fixture
def settings() -> TransparencySettings:
    return TransparencySettings(hash_salt="test-salt", escalation_debounce_seconds=0.0)


@pytest.fixture
def engine(settings, directory, sender, clock, tmp_path):
    """Fully wired engine over the test directory."""
    engine = TransparencyEngine(
        settings=settings,
        directory=directory,
        sender=sender,
        export_storage=LocalExportStorage(tmp_path / "exports"),
        clock=clock,
    )
    yield engine
    engine.close()


def set_rounds(directory: InMemoryCampaignDirectory, token_id: str, condition: str, rounds) -> None:
    """Simulate the map layer changing a timer."""
    directory.update_durations(GROUP_ID, token_id, {condition: rounds})
