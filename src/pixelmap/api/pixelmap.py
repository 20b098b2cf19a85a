"""Pixel map API routes.

Learn: Routes only write to the database. They never talk to the
broadcast gate: viewers learn about a paint through the change feed,
after the transaction commits.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pixelmap.auth.dependencies import CurrentIdentity, get_current_user
from pixelmap.db.engine import get_db
from pixelmap.schemas.pixel import PixelPaint, PixelRead
from pixelmap.services.pixel_service import PixelService

router = APIRouter(prefix="/pixelmap")


def _svc(db: AsyncSession = Depends(get_db)) -> PixelService:
    return PixelService(db)


@router.get("", response_model=list[PixelRead])
async def list_pixels(svc: PixelService = Depends(_svc)):
    return await svc.list_pixels()


@router.get("/{row}", response_model=PixelRead)
async def get_pixel(row: int, svc: PixelService = Depends(_svc)):
    pixel = await svc.get_by_row(row)
    if not pixel:
        raise HTTPException(status_code=404, detail="Pixel not found")
    return pixel


@router.post("", response_model=PixelRead)
async def paint_pixel(
    body: PixelPaint,
    request: Request,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: PixelService = Depends(_svc),
):
    """Claim or recolor one pixel. The change is broadcast after commit."""
    canvas_size = request.app.state.canvas.settings.canvas_size
    if body.row >= canvas_size:
        raise HTTPException(
            status_code=422,
            detail=f"row must be below {canvas_size}",
        )
    return await svc.paint(
        row=body.row,
        color=body.color.lower(),
        state=body.state,
        owner_id=uuid.UUID(identity.user_id),
    )
