"""Axis-aligned rectangles used as quadtree regions and viewport queries."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """
    Axis-aligned rectangle given by its top-left corner and its size.

    Containment is half-open: a point on the right or bottom edge belongs to
    the neighbouring box, so the four quadrants of a box never share a point.

    Attributes:
        left, top: Top-left corner (y grows downwards, as on screen)
        width, height: Extent along x and y
    """
    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def center(self) -> tuple[float, float]:
        return self.left + self.width * 0.5, self.top + self.height * 0.5

    def contains(self, x: float, y: float) -> bool:
        """Return True if (x, y) lies in [left, right) x [top, bottom)."""
        return self.left <= x < self.left + self.width and self.top <= y < self.top + self.height

    def intersects(self, other: "BoundingBox") -> bool:
        """Return True unless the boxes are separated on one axis. Touching edges intersect."""
        above = other.top + other.height < self.top
        below = other.top > self.top + self.height
        left_of = other.left + other.width < self.left
        right_of = other.left > self.left + self.width
        return not (above or below or left_of or right_of)

    def quadrants(self) -> tuple["BoundingBox", "BoundingBox", "BoundingBox", "BoundingBox"]:
        """Split at the midpoint: top-left, top-right, bottom-left, bottom-right."""
        hw = self.width * 0.5
        hh = self.height * 0.5
        return (
            BoundingBox(self.left, self.top, hw, hh),
            BoundingBox(self.left + hw, self.top, hw, hh),
            BoundingBox(self.left, self.top + hh, hw, hh),
            BoundingBox(self.left + hw, self.top + hh, hw, hh),
        )
