"""
Identity provider operations over the principals table
"""
import logging
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.utils.errors import ExternalServiceError
from crud.principal import PrincipalRepository
from database_models import Principal

logger = logging.getLogger(__name__)


class IdentityService:
    """
    Lookup and removal of login principals.
    """

    def __init__(self, db: AsyncSession, principal_repo: Optional[PrincipalRepository] = None):
        self.db = db
        self.principal_repo = principal_repo or PrincipalRepository(db)

    async def get_principal(self, principal_id: str) -> Optional[Principal]:
        """Returns the principal, or None if it does not exist."""
        return await self.principal_repo.get_by_id(principal_id)

    async def delete_principal(self, principal_id: str) -> bool:
        """
        Remove a principal so it can no longer log in.

        Returns:
            True if deleted, False if it was already absent (not an error)

        Raises:
            ExternalServiceError: the delete itself failed
        """
        try:
            deleted = await self.principal_repo.delete(principal_id)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to delete principal {principal_id}: {e}", exc_info=True)
            raise ExternalServiceError("Failed to delete login for this account.") from e

        if deleted:
            logger.info(f"Principal {principal_id} deleted")
        else:
            logger.info(f"Principal {principal_id} already absent")
        return deleted
