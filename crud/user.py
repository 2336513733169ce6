"""
UserRepository for database operations on the UserRecord model
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete
from database_models import UserRecord


class UserRepository:
    """
    Repository class for UserRecord database operations.
    Encapsulates all database logic for the users table.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        """
        Retrieve a user record by principal id.

        Args:
            user_id: Principal id the record is keyed by

        Returns:
            UserRecord if found, None otherwise
        """
        result = await self.db.execute(
            select(UserRecord).where(UserRecord.id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_user_by_billing_customer_id(self, customer_id: str) -> Optional[UserRecord]:
        """
        Retrieve the first user record linked to a billing customer.

        Args:
            customer_id: Billing provider customer id

        Returns:
            UserRecord if one is linked, None otherwise
        """
        if not customer_id:
            return None
        result = await self.db.execute(
            select(UserRecord)
            .where(UserRecord.billing_customer_id == customer_id)
            .order_by(UserRecord.created_at)
            .limit(1)
        )
        return result.scalars().first()

    async def create_user(self, user_id: str, stickers: Optional[List[str]] = None) -> UserRecord:
        """
        Create the record for a newly signed-in principal.

        Args:
            user_id: Principal id
            stickers: Initial sticker list (defaults to empty)

        Returns:
            Created UserRecord
        """
        user = UserRecord(
            id=user_id,
            subscription_status="none",
            has_written_first_entry=False,
            pro_override=False,
            billing_cancel_at_period_end=False,
            stickers=list(stickers or []),
            settings={},
        )
        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def update_user(self, user: UserRecord, updates: dict) -> UserRecord:
        """
        Update user fields.

        Args:
            user: UserRecord to update
            updates: Dictionary of fields to update (e.g., {"billing_cancel_at_period_end": True})

        Returns:
            Updated UserRecord
        """
        for key, value in updates.items():
            if hasattr(user, key):
                setattr(user, key, value)

        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def update_fields(self, user_id: str, updates: dict, **conditions) -> int:
        """
        Single-statement UPDATE of one record, optionally guarded by extra
        column conditions (``column=value``; a value of None means IS NULL).

        Loaded UserRecord instances are not synchronized; refresh them if
        they are read again in the same session.

        Returns:
            Number of rows changed (0 or 1)
        """
        stmt = update(UserRecord).where(UserRecord.id == user_id)
        for column, expected in conditions.items():
            attr = getattr(UserRecord, column)
            stmt = stmt.where(attr.is_(None) if expected is None else attr == expected)
        result = await self.db.execute(
            stmt.values(**updates).execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount

    async def list_scheduled_for_deletion_before(self, cutoff: datetime) -> List[str]:
        """
        Ids of accounts whose grace window started at or before ``cutoff``.
        """
        result = await self.db.execute(
            select(UserRecord.id)
            .where(UserRecord.scheduled_for_deletion_at.is_not(None))
            .where(UserRecord.scheduled_for_deletion_at <= cutoff)
            .order_by(UserRecord.scheduled_for_deletion_at)
        )
        return list(result.scalars().all())

    async def delete_user(self, user_id: str) -> bool:
        """
        Delete a user record.

        Returns:
            True if a record was removed, False if none existed
        """
        result = await self.db.execute(
            delete(UserRecord).where(UserRecord.id == user_id)
        )
        await self.db.flush()
        return result.rowcount > 0
