"""User service, account lookups and registration.

Learn: Same split as PixelService. The auth and user routes call this
service; it owns the queries. The accrual job does not go through it,
it writes points through SqlUserRepository one user per transaction.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pixelmap.db.models import User


class EmailTakenError(Exception):
    """Raised when registering an email that already has an account."""


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: uuid.UUID) -> User | None:
        return await self.db.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()

    async def create(self, email: str, name: str, password_hash: str) -> User:
        """Insert a new user with zero points. Raises EmailTakenError."""
        if await self.get_by_email(email):
            raise EmailTakenError(email)

        user = User(email=email, name=name, password_hash=password_hash, point=0)
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user
