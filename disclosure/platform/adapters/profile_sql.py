from typing import Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from disclosure.platform.ports.profile_store import ProfileStorePort, ProfileSnapshot
from disclosure.modules.users.repository import UserRepository

# columns on app_user; everything else comes from caregiver_profile
USER_COLUMNS = {
    "phone": "phone",
    "email": "email",
    "address": "address",
    "profile_image": "profile_image",
}
PROFILE_COLUMNS = {
    "address": "address",
    "documents": "documents",
    "background_check": "background_check_status",
    "emergency_contacts": "emergency_contacts",
    "age_care_ranges": "age_care_ranges",
    "portfolio": "portfolio",
    "availability": "availability",
    "languages": "languages",
    "references": "references",
    "rate_history": "rate_history",
    "work_history": "work_history",
    "child_medical_info": "child_medical_info",
    "child_allergies": "child_allergies",
    "child_behavior_notes": "child_behavior_notes",
    "financial_info": "financial_info",
}

class SqlProfileStore(ProfileStorePort):
    """Reads only the columns backing the requested field keys."""

    def __init__(self, session: AsyncSession):
        self.users = UserRepository(session)

    async def fetch(self, target_id: str, fields: Iterable[str]) -> ProfileSnapshot | None:
        wanted = set(fields)
        user = await self.users.get(target_id)
        if user is None:
            return None

        snapshot = ProfileSnapshot()
        for key in wanted & USER_COLUMNS.keys():
            col = USER_COLUMNS[key]
            snapshot.user[col] = getattr(user, col)

        if wanted & PROFILE_COLUMNS.keys():
            profile = await self.users.get_profile(target_id)
            if profile is not None:
                for key in wanted & PROFILE_COLUMNS.keys():
                    col = PROFILE_COLUMNS[key]
                    snapshot.profile[col] = getattr(profile, col)
        return snapshot
