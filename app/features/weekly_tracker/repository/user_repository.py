"""
Repository for the users the refresh job iterates over.
"""

from datetime import UTC, datetime

from app.db.helpers import fetch_all, with_db_retry
from app.features.weekly_tracker.domain.models import UserAccount
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class UserRepository:
    """Read-only access to users and their stored API credentials."""

    @staticmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_users() -> list[UserAccount]:
        """
        Get every known user with their stored credential.

        Credentials past their expiry are returned as None so the refresh
        job skips those users instead of calling the API with a dead token.
        """
        rows = await fetch_all(
            """
            SELECT id, battle_tag, access_token, token_expires_at
            FROM users
            ORDER BY created_at, id
            """
        )

        now = datetime.now(UTC)
        users = []
        for row in rows:
            credential = row.get("access_token")
            expires_at = row.get("token_expires_at")
            if credential and expires_at is not None and expires_at <= now:
                credential = None
            users.append(
                UserAccount(
                    user_id=str(row["id"]),
                    battle_tag=row.get("battle_tag"),
                    access_credential=credential,
                )
            )

        logger.debug("Users loaded for refresh", user_count=len(users))
        return users
