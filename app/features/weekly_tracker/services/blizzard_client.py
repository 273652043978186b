"""
Battle.net profile API client.

Low-level async client for the character endpoints the tracker reads:
account roster, Mythic+ profile, raid encounters, quests, PvP summary and
achievements. Retries rate-limit and server errors with backoff.
"""

import asyncio
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from app.config import Settings
from app.features.weekly_tracker.domain.models import CharacterRef, DataSource
from app.features.weekly_tracker.domain.payloads import AccountProfile, ProfileCharacter
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CHARACTER_ENDPOINTS: dict[DataSource, str] = {
    DataSource.MYTHIC_PLUS: "mythic-keystone-profile",
    DataSource.RAIDS: "encounters/raids",
    DataSource.QUESTS: "quests",
    DataSource.PVP: "pvp-summary",
    DataSource.ACHIEVEMENTS: "achievements",
}

# Request retry configuration
MAX_RETRIES = 3
BACKOFF_FACTOR = 1.0
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class BlizzardApiError(Exception):
    """Custom exception for Battle.net API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        source: str | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.source = source
        self.recoverable = recoverable


class BlizzardApiClient:
    """
    Async client for the Battle.net World of Warcraft profile API.

    Handles auth headers, namespaces, retries and error mapping. One client
    is shared by every refresh; close() releases its connection pool.
    """

    def __init__(
        self,
        base_url: str,
        namespace: str,
        locale: str = "en_US",
        timeout: float = 15.0,
        backoff_factor: float = BACKOFF_FACTOR,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.namespace = namespace
        self.locale = locale
        self.backoff_factor = backoff_factor
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "BlizzardApiClient":
        return cls(
            base_url=settings.blizzard_api_base_url(),
            namespace=settings.blizzard_profile_namespace(),
            locale=settings.BLIZZARD_LOCALE,
            timeout=settings.BLIZZARD_REQUEST_TIMEOUT,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _get_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Battlenet-Namespace": self.namespace,
            "Accept": "application/json",
        }

    async def _request_with_retry(self, url: str, access_token: str) -> httpx.Response:
        """GET with retry and exponential backoff on 429/5xx and transport errors."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.get(
                    url, headers=self._get_headers(access_token), params={"locale": self.locale}
                )
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = self.backoff_factor * (2 ** (attempt - 1))
                    logger.debug(
                        "Blizzard API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise BlizzardApiError(f"API request failed: {e}") from e
                backoff = self.backoff_factor * (2 ** (attempt - 1))
                logger.debug(
                    "Blizzard API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("Blizzard API retry loop exhausted")

    def _handle_api_response(self, response: httpx.Response, operation: str) -> Any:
        """
        Parse a successful response or raise a mapped BlizzardApiError.

        Raises:
            BlizzardApiError: For non-2xx responses and non-JSON bodies
        """
        if response.is_success:
            try:
                return response.json()
            except ValueError as e:
                logger.error(
                    "Failed to parse Blizzard API response", operation=operation, error=str(e)
                )
                raise BlizzardApiError(
                    f"Invalid response format: {e}",
                    status_code=response.status_code,
                    source=operation,
                ) from e

        recoverable = response.status_code in RETRY_STATUS_CODES
        try:
            error_data = response.json()
        except ValueError:
            error_data = None

        if isinstance(error_data, dict) and (error_data.get("detail") or error_data.get("type")):
            message = f"Blizzard API Error: {error_data.get('detail') or error_data.get('type')}"
        else:
            message = f"HTTP {response.status_code}: {response.reason_phrase}"

        logger.warning(
            "Blizzard API request failed",
            operation=operation,
            status_code=response.status_code,
            recoverable=recoverable,
        )
        raise BlizzardApiError(
            message, status_code=response.status_code, source=operation, recoverable=recoverable
        )

    async def fetch_characters(self, access_credential: str) -> list[CharacterRef]:
        """
        Get the character roster for the account behind a credential.

        Raises:
            BlizzardApiError: If the roster cannot be fetched or decoded
        """
        url = f"{self.base_url}/profile/user/wow"
        response = await self._request_with_retry(url, access_credential)
        data = self._handle_api_response(response, "account_profile")

        try:
            profile = AccountProfile.model_validate(data)
        except ValidationError as e:
            raise BlizzardApiError(
                f"Unexpected account profile shape: {e}", source="account_profile"
            ) from e

        characters: dict[int, CharacterRef] = {}
        for account in profile.wow_accounts:
            for character in account.characters:
                characters.setdefault(character.id, self._to_character_ref(character))

        logger.info("Character roster fetched", character_count=len(characters))
        return list(characters.values())

    @staticmethod
    def _to_character_ref(character: ProfileCharacter) -> CharacterRef:
        race = character.playable_race.name if character.playable_race else None
        class_name = character.playable_class.name if character.playable_class else None
        faction = character.faction.type if character.faction else None
        return CharacterRef(
            character_id=character.id,
            name=character.name,
            realm_slug=character.realm.slug,
            race=race or "Unknown",
            class_name=class_name or "Unknown",
            level=character.level or 0,
            faction=faction or "Unknown",
        )

    async def fetch_category_data(
        self, source: DataSource, realm_slug: str, character_name: str, access_credential: str
    ) -> Any:
        """
        Get the raw payload of one character endpoint.

        Raises:
            BlizzardApiError: If the request fails
        """
        url = (
            f"{self.base_url}/profile/wow/character/{quote(realm_slug)}/"
            f"{quote(character_name.lower())}/{CHARACTER_ENDPOINTS[source]}"
        )
        response = await self._request_with_retry(url, access_credential)
        return self._handle_api_response(response, source.value)
