"""
PrincipalRepository for the identity-provider table
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from database_models import Principal


class PrincipalRepository:
    """
    Repository class for Principal database operations.
    """
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def get_by_email(self, email: str) -> Optional[Principal]:
        """
        Retrieve a principal by email address (case-insensitive).
        """
        result = await self.db.execute(
            select(Principal).where(Principal.email == email.lower())
        )
        return result.scalar_one_or_none()
    
    async def get_by_id(self, principal_id: str) -> Optional[Principal]:
        result = await self.db.execute(
            select(Principal).where(Principal.id == principal_id)
        )
        return result.scalar_one_or_none()
    
    async def create(self, email: str, hashed_password: str) -> Principal:
        """
        Create a new principal.
        
        Args:
            email: Login email (stored lowercased)
            hashed_password: argon2 hash from auth_utils.hash_password
            
        Returns:
            Created Principal
        """
        principal = Principal(
            email=email.lower(),
            hashed_password=hashed_password,
            is_active=True,
        )
        self.db.add(principal)
        await self.db.flush()  # Flush to get the ID without committing
        await self.db.refresh(principal)
        return principal
    
    async def delete(self, principal_id: str) -> bool:
        """
        Returns:
            True if a principal was removed, False if it was already absent
        """
        result = await self.db.execute(
            delete(Principal).where(Principal.id == principal_id)
        )
        await self.db.flush()
        return result.rowcount > 0
