from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from disclosure.modules.users.models import User, CaregiverProfile

class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, user_id: str) -> bool:
        res = await self.session.execute(select(User.id).where(User.id == user_id))
        return res.scalar_one_or_none() is not None

    async def get(self, user_id: str) -> User | None:
        res = await self.session.execute(select(User).where(User.id == user_id))
        return res.scalar_one_or_none()

    async def get_profile(self, user_id: str) -> CaregiverProfile | None:
        res = await self.session.execute(select(CaregiverProfile).where(CaregiverProfile.user_id == user_id))
        return res.scalar_one_or_none()
