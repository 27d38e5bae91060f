"""
Base repository with common lookups.

Repositories never commit; the calling service owns the transaction.
"""
from typing import TypeVar, Generic, Optional, Type
from abc import ABC

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(ABC, Generic[ModelType]):
    """
    Abstract base repository: plain and locking lookups by primary key.

    Usage:
        class AffiliateRepository(BaseRepository[Affiliate]):
            model_class = Affiliate
    """

    model_class: Type[ModelType]

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, entity_id: int) -> Optional[ModelType]:
        """Get entity by primary key, or None."""
        result = await self.session.execute(
            select(self.model_class).where(self.model_class.id == entity_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, entity_id: int) -> Optional[ModelType]:
        """
        Get entity by ID with `SELECT ... FOR NO KEY UPDATE`.

        The lock is held until the surrounding transaction ends. Lockers
        exclude each other, but inserts of rows referencing this one (visits)
        still pass their foreign-key check. The row is re-read even if the
        entity is already in the identity map, so callers always see the
        committed state of the locked row.

        Args:
            entity_id: Primary key ID

        Returns:
            Locked entity or None if not found
        """
        result = await self.session.execute(
            select(self.model_class)
            .where(self.model_class.id == entity_id)
            .with_for_update(key_share=True)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
