"""
SettingsStore — read / upsert the single settings record of a user.

The integration layer only depends on the abstract interface; the SQL
implementation below is what the application wires in.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import User, UserSettings
from utils.schemas import IntegrationSettings

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = tuple(f for f in IntegrationSettings.model_fields if f != "user_id")


class SettingsStore(ABC):
    @abstractmethod
    async def get_settings(self, user_id: str) -> Optional[IntegrationSettings]:
        """Return the settings record, or ``None`` if the user has none."""
        ...

    @abstractmethod
    async def upsert_settings(self, user_id: str, partial: Dict[str, Any]) -> IntegrationSettings:
        """
        Write ``partial`` over the stored record, creating it if needed.

        Last writer wins; no version check is made.
        """
        ...


def _to_schema(row: UserSettings) -> IntegrationSettings:
    return IntegrationSettings(
        user_id=row.user_id,
        **{name: getattr(row, name) for name in SETTINGS_FIELDS if getattr(row, name) is not None},
    )


class SqlSettingsStore(SettingsStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_settings(self, user_id: str) -> Optional[IntegrationSettings]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserSettings).where(UserSettings.user_id == user_id)
            )
            row = result.scalar_one_or_none()
            return _to_schema(row) if row else None

    async def upsert_settings(self, user_id: str, partial: Dict[str, Any]) -> IntegrationSettings:
        unknown = set(partial) - set(SETTINGS_FIELDS)
        if unknown:
            raise ValueError(f"Unknown settings fields: {sorted(unknown)}")

        async with self._session_factory() as session:
            try:
                user = await session.get(User, user_id)
                if user is None:
                    session.add(
                        User(
                            user_id=user_id,
                            email=f"{user_id}@dailyflow.local",
                            display_name="Development User",
                        )
                    )
                    await session.flush()

                result = await session.execute(
                    select(UserSettings).where(UserSettings.user_id == user_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = UserSettings(user_id=user_id)
                    session.add(row)

                for name, value in partial.items():
                    setattr(row, name, value)

                await session.commit()
                logger.info("Updated settings for user %s (%s)", user_id, ", ".join(sorted(partial)))
                return _to_schema(row)
            except Exception:
                await session.rollback()
                raise
