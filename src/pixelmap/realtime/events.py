"""Pixel events: the normalized projection broadcast to viewers."""

from dataclasses import asdict, dataclass
from typing import Any, Mapping

from pixelmap.realtime.changes import MalformedNotification

NEW_PIXEL = "newPixel"


@dataclass(frozen=True)
class PixelEvent:
    """What a viewer sees for one pixel change: {row, color, state}."""

    row: int
    color: str
    state: str

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "PixelEvent":
        """Project a stored pixel document, ignoring every other field.

        Raises MalformedNotification when a field is missing, null or of
        the wrong JSON type. Values are never coerced.
        """
        try:
            row, color, state = document["row"], document["color"], document["state"]
        except (KeyError, TypeError) as e:
            raise MalformedNotification(f"pixel document is incomplete: {e}") from e

        # bool is an int subclass, JSON true must not become row 1
        if isinstance(row, bool) or not isinstance(row, int):
            raise MalformedNotification(f"pixel row must be an integer, got {row!r}")
        for name, value in (("color", color), ("state", state)):
            if not isinstance(value, str):
                raise MalformedNotification(f"pixel {name} must be a string, got {value!r}")
        return cls(row=row, color=color, state=state)

    @classmethod
    def from_pixel(cls, pixel: Any) -> "PixelEvent":
        """Project an ORM Pixel (or anything with row/color/state attributes)."""
        return cls(row=pixel.row, color=pixel.color, state=pixel.state)

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    def to_message(self) -> dict[str, Any]:
        """Wire envelope sent over the socket."""
        return {"event": NEW_PIXEL, "data": self.to_payload()}
