import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.exceptions import NotFound
from app.core.identifiers import parse_uuid
from app.models import AvailabilityWindow, Practitioner
from app.services.storage_retry import retry_read


class AvailabilityStore:
    """
    Read-only access to practitioners and their recurring weekly availability.

    Handles:
    - Resolving a practitioner (unknown or inactive -> NotFound)
    - Listing active availability windows for a weekday
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_practitioner(self, practitioner_id: str | uuid.UUID) -> Practitioner:
        pid = parse_uuid(practitioner_id, "Practitioner")

        async def _load():
            result = await self.db.execute(
                select(Practitioner).where(Practitioner.id == pid)
            )
            return result.scalar_one_or_none()

        practitioner = await retry_read(self.db, _load, "Practitioner lookup")

        if not practitioner or not practitioner.is_active:
            raise NotFound(f"Practitioner not found: {practitioner_id}")

        return practitioner

    async def list_windows(
        self,
        practitioner_id: str | uuid.UUID,
        day_of_week: int
    ) -> list[AvailabilityWindow]:
        """
        Get active availability windows for one weekday, ordered by start time.

        Args:
            practitioner_id: UUID of the practitioner
            day_of_week: 0=Monday, 6=Sunday

        Returns:
            Windows as stored. They may overlap; callers merge them.
        """
        pid = parse_uuid(practitioner_id, "Practitioner")

        async def _load():
            result = await self.db.execute(
                select(AvailabilityWindow)
                .where(
                    AvailabilityWindow.practitioner_id == pid,
                    AvailabilityWindow.day_of_week == day_of_week,
                    AvailabilityWindow.is_active == True,
                )
                .order_by(AvailabilityWindow.start_time)
            )
            return list(result.scalars().all())

        return await retry_read(self.db, _load, "Availability lookup")
