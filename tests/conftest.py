import asyncio
from datetime import UTC, datetime

import pytest

from app.features.weekly_tracker.domain.models import CharacterRef, DataSource, UserAccount


class FakeUserRepository:
    def __init__(self, users: list[UserAccount] | None = None):
        self.users = users or []
        self.error: Exception | None = None

    async def fetch_users(self) -> list[UserAccount]:
        if self.error is not None:
            raise self.error
        return list(self.users)


class FakeActivityApi:
    """In-memory roster and per-source payloads keyed by character name."""

    def __init__(self):
        self.rosters: dict[str, list[CharacterRef]] = {}
        self.payloads: dict[tuple[str, DataSource], object] = {}
        self.roster_errors: dict[str, Exception] = {}
        self.source_errors: dict[tuple[str, DataSource], Exception] = {}
        self.delay_seconds = 0.0
        self.gate: asyncio.Event | None = None
        self.roster_calls: list[str] = []
        self.category_calls: list[tuple[str, DataSource]] = []

    def add_character(self, credential: str, character: CharacterRef) -> None:
        self.rosters.setdefault(credential, []).append(character)

    async def fetch_characters(self, access_credential: str) -> list[CharacterRef]:
        self.roster_calls.append(access_credential)
        if self.gate is not None:
            await self.gate.wait()
        if access_credential in self.roster_errors:
            raise self.roster_errors[access_credential]
        return list(self.rosters.get(access_credential, []))

    async def fetch_category_data(
        self, source: DataSource, realm_slug: str, character_name: str, access_credential: str
    ):
        self.category_calls.append((character_name, source))
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        key = (character_name, source)
        if key in self.source_errors:
            raise self.source_errors[key]
        return self.payloads.get(key)


class FakeProgressRepository:
    def __init__(self):
        self.stored: dict[int, dict] = {}
        self.fail_for: set[int] = set()

    async def persist_activity_results(self, character_id, character, results, timestamp):
        if character_id in self.fail_for:
            raise RuntimeError("write failed")
        self.stored[character_id] = {
            "name": character.name,
            "realm": character.realm_slug,
            "activities": [result.model_dump(mode="json") for result in results],
            "last_updated": timestamp.isoformat(),
        }

    async def get_character_progress(self, character_id: int):
        return self.stored.get(character_id)


@pytest.fixture
def reset_instant():
    """A Tuesday 10:00 UTC weekly reset."""
    return datetime(2024, 1, 16, 10, 0, tzinfo=UTC)


@pytest.fixture
def fake_users():
    return FakeUserRepository()


@pytest.fixture
def fake_api():
    return FakeActivityApi()


@pytest.fixture
def fake_progress():
    return FakeProgressRepository()


@pytest.fixture
def make_character():
    def _make(character_id: int, name: str | None = None, realm: str = "area-52"):
        return CharacterRef(
            character_id=character_id,
            name=name or f"char{character_id}",
            realm_slug=realm,
            class_name="Mage",
            level=80,
            faction="HORDE",
        )

    return _make
