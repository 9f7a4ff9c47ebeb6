"""Grid -- the fixed 2D domain agents move over.

The Grid owns the run-wide dimensions and boundary policy.  It resolves
continuous agent coordinates to integer cells and decides what happens to
agents that leave the domain.  Pheromone storage lives in
``PheromoneField``; the Grid itself holds no per-cell state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

import numpy as np
from numpy.typing import NDArray

from slimefield.simulation.errors import ConfigError

# Distance below the far edge that wrapped / clamped agents land on.
_EDGE_EPSILON = 1e-3


class BoundaryPolicy(Enum):
    """What happens to an agent that crosses the grid edge."""

    REFLECT = "reflect"
    WRAP = "wrap"

    @classmethod
    def parse(cls, value: str | BoundaryPolicy) -> BoundaryPolicy:
        """Return the policy named by ``value`` (case-insensitive).

        Raises:
            ConfigError: If the name is not a known policy.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            names = ", ".join(p.value for p in cls)
            msg = f"unknown boundary policy {value!r} (expected one of: {names})"
            raise ConfigError(msg) from None


@dataclass(frozen=True)
class Grid:
    """Immutable grid dimensions and boundary behaviour.

    Attributes:
        width: Number of columns.
        height: Number of rows.
        boundary: Run-wide boundary policy for agents.
    """

    width: int
    height: int
    boundary: BoundaryPolicy = BoundaryPolicy.REFLECT

    def __post_init__(self) -> None:
        """Reject empty or non-integer dimensions."""
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                msg = f"grid {name} must be a positive integer, got {value!r}"
                raise ConfigError(msg)

    @property
    def shape(self) -> tuple[int, int]:
        """Array shape ``(rows, cols)`` of a single layer."""
        return (self.height, self.width)

    @property
    def cell_count(self) -> int:
        """Total number of cells per layer."""
        return self.width * self.height

    def contains(self, x: float, y: float) -> bool:
        """Return True if the continuous point lies inside the grid."""
        return 0.0 <= x < self.width and 0.0 <= y < self.height

    def cell_indices(
        self,
        xs: NDArray[np.float64],
        ys: NDArray[np.float64],
    ) -> tuple[NDArray[np.intp], NDArray[np.intp]]:
        """Map continuous coordinates to integer ``(cols, rows)``.

        Points outside the grid are wrapped under ``WRAP`` and clamped to
        the nearest edge cell under ``REFLECT``, so every returned index
        is valid.

        Args:
            xs: Column coordinates.
            ys: Row coordinates.

        Returns:
            Tuple of integer column and row index arrays.
        """
        cols = np.floor(xs).astype(np.intp)
        rows = np.floor(ys).astype(np.intp)
        if self.boundary is BoundaryPolicy.WRAP:
            return np.mod(cols, self.width), np.mod(rows, self.height)
        return (
            np.clip(cols, 0, self.width - 1),
            np.clip(rows, 0, self.height - 1),
        )

    def resolve_boundary(
        self,
        positions: NDArray[np.float64],
        headings: NDArray[np.float64],
    ) -> None:
        """Bring off-grid agents back inside according to the policy.

        Modifies both arrays in place.

        - ``REFLECT``: crossing an x-bound sets ``heading = pi - heading``,
          crossing a y-bound sets ``heading = -heading``.  The position is
          clamped onto the crossed edge so it stays in
          ``[0, width) x [0, height)``.
        - ``WRAP``: coordinates ``>= size`` become ``0`` and coordinates
          ``< 0`` become ``size - epsilon``, independently per axis.

        Args:
            positions: ``(N, 2)`` agent positions.
            headings: ``(N,)`` agent headings in radians.
        """
        xs = positions[:, 0]
        ys = positions[:, 1]
        if self.boundary is BoundaryPolicy.WRAP:
            for axis, size in ((xs, self.width), (ys, self.height)):
                axis[axis >= size] = 0.0
                axis[axis < 0.0] = size - _EDGE_EPSILON
            return

        cross_x = (xs < 0.0) | (xs >= self.width)
        cross_y = (ys < 0.0) | (ys >= self.height)
        headings[cross_x] = math.pi - headings[cross_x]
        headings[cross_y] = -headings[cross_y]
        np.clip(xs, 0.0, self.width - _EDGE_EPSILON, out=xs)
        np.clip(ys, 0.0, self.height - _EDGE_EPSILON, out=ys)
