from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from aesthetech_api.db.session import get_session
from aesthetech_api.domain.settings import SettingsSnapshot
from aesthetech_api.services.settings_provider import SettingsProvider


async def get_settings_snapshot(db: AsyncSession = Depends(get_session)) -> SettingsSnapshot:
    """Salon settings as of this request; later writes do not affect it."""

    return await SettingsProvider(db).snapshot()
