"""Pixel service, business logic for reading and painting the grid.

Learn: Service layer separates business logic from HTTP routing.
API routes call services, services call the database. The watcher's
update re-fetch goes through the same service so both paths read
pixels the same way.

paint() is a single INSERT ... ON CONFLICT (row) DO UPDATE. A new row
fires the trigger as an insert (full document in the payload); an
existing row fires it as an update (key only, watcher re-reads).
"""

import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pixelmap.db.models import Pixel
from pixelmap.realtime.changes import MalformedNotification
from pixelmap.realtime.events import PixelEvent


class PixelService:
    """Business logic for the pixel grid."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_pixels(self) -> list[Pixel]:
        result = await self.db.execute(select(Pixel).order_by(Pixel.row))
        return list(result.scalars().all())

    async def get(self, pixel_id: uuid.UUID) -> Pixel | None:
        return await self.db.get(Pixel, pixel_id)

    async def get_by_row(self, row: int) -> Pixel | None:
        result = await self.db.execute(select(Pixel).where(Pixel.row == row))
        return result.scalars().first()

    async def paint(
        self,
        row: int,
        color: str,
        state: str = "claimed",
        owner_id: Optional[uuid.UUID] = None,
    ) -> Pixel:
        """Claim or recolor a pixel and commit. Returns the stored row."""
        stmt = (
            insert(Pixel)
            .values(id=uuid.uuid4(), row=row, color=color, state=state, owner_id=owner_id)
            .on_conflict_do_update(
                index_elements=[Pixel.row],
                set_={
                    "color": color,
                    "state": state,
                    "owner_id": owner_id,
                    "updated_at": func.now(),
                },
            )
            .returning(Pixel)
        )
        result = await self.db.execute(
            stmt, execution_options={"populate_existing": True}
        )
        pixel = result.scalars().one()
        await self.db.commit()
        return pixel


def make_pixel_lookup(session_factory: async_sessionmaker[AsyncSession]):
    """Build the watcher's re-fetch: document key → PixelEvent or None.

    Each lookup uses its own short-lived session so it sees the latest
    committed state, never a cached identity-map copy.
    """

    async def lookup(document_key: str) -> Optional[PixelEvent]:
        try:
            pixel_id = uuid.UUID(document_key)
        except ValueError as e:
            raise MalformedNotification(f"invalid pixel id {document_key!r}") from e

        async with session_factory() as db:
            pixel = await PixelService(db).get(pixel_id)
            if pixel is None:
                return None
            return PixelEvent.from_pixel(pixel)

    return lookup
