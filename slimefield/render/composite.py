"""Composite pheromone layers into an RGB float image.

Each cell's colour is the intensity-weighted average of the layer
colours, scaled by the (clamped) total intensity.  Only the array is
produced here; getting it onto a screen is the presentation layer's job.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from numpy.typing import NDArray


def composite_layers(
    values: NDArray[np.float64],
    colors: Sequence[tuple[float, float, float]] | NDArray[np.float64],
    *,
    exposure: float = 1.0,
) -> NDArray[np.float64]:
    """Blend ``(L, H, W)`` layer values into an ``(H, W, 3)`` image.

    Cells whose summed intensity is exactly zero come out black instead
    of dividing by zero.

    Args:
        values: Layer concentrations (negative values are treated as 0).
        colors: One RGB triple per layer.
        exposure: Multiplier applied to total intensity before clamping
            brightness to ``[0, 1]``.

    Returns:
        RGB image with components in ``[0, 1]`` when colours are.
    """
    values = np.clip(np.asarray(values, dtype=np.float64), 0.0, None)
    palette = np.asarray(colors, dtype=np.float64).reshape(-1, 3)
    if palette.shape[0] != values.shape[0]:
        msg = f"{palette.shape[0]} colours given for {values.shape[0]} layers"
        raise ValueError(msg)

    total = values.sum(axis=0)
    mixed = np.tensordot(values, palette, axes=(0, 0))  # (H, W, 3)
    normalised = np.divide(
        mixed,
        total[..., np.newaxis],
        out=np.zeros_like(mixed),
        where=total[..., np.newaxis] > 0.0,
    )
    brightness = np.clip(total * exposure, 0.0, 1.0)
    return normalised * brightness[..., np.newaxis]
