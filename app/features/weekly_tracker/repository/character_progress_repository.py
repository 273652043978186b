"""
Repository for per-character weekly progress snapshots.

Each character has exactly one row; every refresh replaces it in full.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_one, with_db_retry
from app.features.weekly_tracker.domain.models import ActivityCompletionResult, CharacterRef
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class CharacterProgressRepository:
    """Upserts and reads the character_progress table."""

    @staticmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def persist_activity_results(
        character_id: int,
        character: CharacterRef,
        results: list[ActivityCompletionResult],
        timestamp: datetime,
    ) -> None:
        """Replace the character's current-week snapshot."""
        activities = [result.model_dump(mode="json") for result in results]

        await execute_query(
            """
            INSERT INTO character_progress (
                character_id, character_name, realm, race, class_name,
                level, faction, activities, last_updated
            ) VALUES (
                %s, %s, %s, %s, %s, %s, %s, %s, %s
            )
            ON CONFLICT (character_id)
            DO UPDATE SET
                character_name = EXCLUDED.character_name,
                realm = EXCLUDED.realm,
                race = EXCLUDED.race,
                class_name = EXCLUDED.class_name,
                level = EXCLUDED.level,
                faction = EXCLUDED.faction,
                activities = EXCLUDED.activities,
                last_updated = EXCLUDED.last_updated
            """,
            (
                character_id,
                character.name,
                character.realm_slug,
                character.race,
                character.class_name,
                character.level,
                character.faction,
                Jsonb(activities),
                timestamp,
            ),
        )

        logger.debug(
            "Character progress stored",
            character_id=character_id,
            activity_count=len(activities),
        )

    @staticmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_character_progress(character_id: int) -> dict[str, Any] | None:
        row = await fetch_one(
            """
            SELECT character_id, character_name, realm, race, class_name,
                   level, faction, activities, last_updated
            FROM character_progress
            WHERE character_id = %s
            """,
            (character_id,),
        )
        if row is None:
            return None

        return {
            **row,
            "last_updated": row["last_updated"].isoformat() if row.get("last_updated") else None,
        }
