"""Brush edits -- external painting/erasing of a pheromone layer.

A brush is consumed once per tick and applied to the frozen snapshot
before diffusion, so this tick's diffusion sees it but agents' own
deposits do not interfere with it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np
from numpy.typing import NDArray


class BrushMode(Enum):
    """Whether the brush pulls values toward 1 or toward 0."""

    DEPOSIT = "deposit"
    ERASE = "erase"

    @property
    def target(self) -> float:
        """Value the brush blends toward."""
        return 1.0 if self is BrushMode.DEPOSIT else 0.0


@dataclass(frozen=True)
class BrushEdit:
    """One brush stroke for a single tick.

    Attributes:
        layer: Target layer index.
        center: Brush centre in grid coordinates, or ``None`` when the
            pointer is off the grid.
        radius: Brush radius in cells.
        mode: Deposit or erase.
    """

    layer: int
    center: tuple[float, float] | None
    radius: float
    mode: BrushMode = BrushMode.DEPOSIT


@dataclass(frozen=True)
class PointerState:
    """Raw pointer input handed over by the presentation layer.

    Attributes:
        position: Pointer in grid coordinates, ``None`` when off-grid.
        left_pressed: Left button held (paints).
        right_pressed: Right button held (erases).
        target_layer: Layer the brush addresses.
    """

    position: tuple[float, float] | None = None
    left_pressed: bool = False
    right_pressed: bool = False
    target_layer: int = 0

    def to_edits(self, radius: float) -> list[BrushEdit]:
        """Translate the pointer state into this tick's brush edits."""
        if self.position is None:
            return []
        edits = []
        if self.left_pressed:
            edits.append(
                BrushEdit(self.target_layer, self.position, radius, BrushMode.DEPOSIT),
            )
        if self.right_pressed:
            edits.append(
                BrushEdit(self.target_layer, self.position, radius, BrushMode.ERASE),
            )
        return edits


def apply_brush(layer: NDArray[np.float64], edit: BrushEdit) -> None:
    """Blend cells within ``edit.radius`` of the centre toward the target.

    Uses ``t = 1 - distance / radius`` and ``strength = t**2``, then
    ``value = lerp(value, target, strength)``.  Only cells whose centre is
    strictly inside the radius are touched.  Modifies ``layer`` in place.

    Args:
        layer: A single ``(H, W)`` layer.
        edit: The brush stroke.
    """
    if edit.center is None or edit.radius <= 0:
        return
    cx, cy = edit.center
    height, width = layer.shape
    r = edit.radius

    # Restrict work to the bounding box of the brush.
    x0 = max(0, int(np.floor(cx - r)))
    x1 = min(width, int(np.ceil(cx + r)) + 1)
    y0 = max(0, int(np.floor(cy - r)))
    y1 = min(height, int(np.ceil(cy + r)) + 1)
    if x0 >= x1 or y0 >= y1:
        return

    ys, xs = np.mgrid[y0:y1, x0:x1]
    distance = np.hypot(xs - cx, ys - cy)
    inside = distance < r
    strength = np.where(inside, (1.0 - distance / r) ** 2, 0.0)

    window = layer[y0:y1, x0:x1]
    window += (edit.mode.target - window) * strength
