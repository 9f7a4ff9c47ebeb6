"""Diffusion and decay kernels for pheromone layers.

Operates on raw 2D NumPy arrays.  Separated from ``fields.py`` so the
numerical update can be changed independently of buffer management.

Rates are *per second*.  ``per_frame_factor`` converts them into the
blend factor for a tick of length ``dt`` so that the field looks the
same regardless of frame rate.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray


def per_frame_factor(rate: float, dt: float) -> float:
    """Convert a per-second rate into a factor for a tick of ``dt`` seconds.

    Computes ``1 - (1 - rate) ** dt``.  It is 0 at ``dt = 0``, grows
    monotonically with ``dt`` and approaches 1 as ``dt`` grows without
    bound.  Compounding two ticks of ``dt / 2`` gives the same remainder
    as one tick of ``dt``.

    Args:
        rate: Per-second rate in ``[0, 1)``.
        dt: Tick length in seconds (``>= 0``).

    Returns:
        Blend factor in ``[0, 1)``.
    """
    return 1.0 - (1.0 - rate) ** dt


def blur(grid: NDArray[np.float64], out: NDArray[np.float64] | None = None) -> NDArray[np.float64]:
    """Apply the 5-point stencil ``(4c + l + r + u + d) / 8``.

    Neighbours beyond the edge clamp to the nearest interior cell, so the
    stencil never wraps and the total is preserved.

    Args:
        grid: Source layer, shape ``(H, W)``.
        out: Optional destination array of the same shape.

    Returns:
        The blurred layer.
    """
    padded = np.pad(grid, 1, mode="edge")
    if out is None:
        out = np.empty_like(grid)
    np.multiply(grid, 4.0, out=out)
    out += padded[1:-1, :-2]  # left
    out += padded[1:-1, 2:]  # right
    out += padded[:-2, 1:-1]  # up
    out += padded[2:, 1:-1]  # down
    out /= 8.0
    return out


def diffuse_decay(
    source: NDArray[np.float64],
    target: NDArray[np.float64],
    diffusion_rate: float,
    decay_rate: float,
    dt: float,
) -> None:
    """Write one layer's diffused and decayed values into ``target``.

    ``target = lerp(source, blur(source), d) * (1 - k)`` where ``d`` and
    ``k`` are the per-frame diffusion and decay factors.  ``source`` is
    only read and must not alias ``target``.

    Args:
        source: Frozen input layer.
        target: Output layer (overwritten).
        diffusion_rate: Per-second diffusion rate.
        decay_rate: Per-second decay rate.
        dt: Tick length in seconds.
    """
    diffusion = per_frame_factor(diffusion_rate, dt)
    keep = 1.0 - per_frame_factor(decay_rate, dt)

    if diffusion > 0.0:
        blur(source, out=target)
        # lerp(a, b, t) = a + (b - a) * t
        target -= source
        target *= diffusion
        target += source
    else:
        np.copyto(target, source)
    target *= keep
