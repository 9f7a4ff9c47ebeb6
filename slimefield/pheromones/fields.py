"""PheromoneField -- multi-layer, double-buffered pheromone grid.

All layers live in one ``(2, L, H, W)`` NumPy array: two storage slots
whose *current* / *next* roles flip every tick through an index flag.
Alongside the slots the field keeps

- a **scratch** buffer: this tick's frozen snapshot of the current slot,
  with brush edits applied.  Diffusion and agent sensing read it.
- a **deposit accumulator**: zero-initialised each tick, summed into
  additively by agents, merged into the next slot once all agents are
  done.

The numerical kernels live in ``diffusion.py`` and the brush in
``brush.py``; this module only owns storage and buffer roles.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from slimefield.pheromones.brush import BrushEdit, apply_brush
from slimefield.pheromones.diffusion import diffuse_decay
from slimefield.simulation.errors import ConfigError, SimulationError, check_rate

if TYPE_CHECKING:
    from slimefield.world.grid import Grid

logger = logging.getLogger(__name__)


@dataclass
class PheromoneLayer:
    """Per-layer simulation and display parameters.

    Attributes:
        name: Label used in logs and config.
        diffusion_rate: Per-second blend toward the blurred neighbourhood,
            in ``[0, 1)``.
        decay_rate: Per-second fraction lost, in ``[0, 1)``.
        color: RGB display colour (floats, typically ``0..1``).
    """

    name: str
    diffusion_rate: float = 0.5
    decay_rate: float = 0.8
    color: tuple[float, float, float] = (0.6, 0.6, 0.6)

    def __post_init__(self) -> None:
        """Validate rates and colour eagerly."""
        self.diffusion_rate = check_rate(
            f"layer {self.name!r} diffusion_rate",
            self.diffusion_rate,
        )
        self.decay_rate = check_rate(f"layer {self.name!r} decay_rate", self.decay_rate)
        if len(self.color) != 3:
            msg = f"layer {self.name!r} color must have 3 components, got {self.color!r}"
            raise ConfigError(msg)
        r, g, b = self.color
        self.color = (float(r), float(g), float(b))


@dataclass
class PheromoneField:
    """All pheromone layers for a run, with ping-pong storage.

    Attributes:
        grid: The grid this field covers.
        layers: Ordered layer parameters; index = layer id.
        current_slot: Which of the two storage slots is *current* (0 or 1).
    """

    grid: Grid
    layers: list[PheromoneLayer]
    current_slot: int = 0
    _slots: NDArray[np.float64] = field(init=False, repr=False)
    _scratch: NDArray[np.float64] = field(init=False, repr=False)
    _deposits: NDArray[np.float64] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Allocate both slots, scratch and accumulator, all zeroed."""
        if not self.layers:
            msg = "a pheromone field needs at least one layer"
            raise ConfigError(msg)
        shape = (len(self.layers), *self.grid.shape)
        self._slots = np.zeros((2, *shape), dtype=np.float64)
        self._scratch = np.zeros(shape, dtype=np.float64)
        self._deposits = np.zeros(shape, dtype=np.float64)
        logger.debug(
            "allocated pheromone field: %d layers, %dx%d",
            len(self.layers),
            self.grid.width,
            self.grid.height,
        )

    # -- Buffer roles --------------------------------------------------------

    @property
    def layer_count(self) -> int:
        """Number of pheromone layers."""
        return len(self.layers)

    @property
    def next_slot(self) -> int:
        """Index of the slot being written this tick."""
        return 1 - self.current_slot

    @property
    def current(self) -> NDArray[np.float64]:
        """Read-only view of the current slot, shape ``(L, H, W)``."""
        view = self._slots[self.current_slot].view()
        view.flags.writeable = False
        return view

    @property
    def snapshot_view(self) -> NDArray[np.float64]:
        """Read-only view of this tick's frozen snapshot (after edits)."""
        view = self._scratch.view()
        view.flags.writeable = False
        return view

    @property
    def pending_deposits(self) -> NDArray[np.float64]:
        """Read-only view of the deposit accumulator."""
        view = self._deposits.view()
        view.flags.writeable = False
        return view

    def swap(self) -> None:
        """Flip the current/next roles of the two storage slots."""
        self.current_slot = self.next_slot

    # -- Reads ---------------------------------------------------------------

    def sample(self, layer: int, x: int, y: int) -> float:
        """Read a concentration from the current slot.

        Args:
            layer: Layer index.
            x: Column index.
            y: Row index.

        Returns:
            The value at ``(layer, y, x)`` of the current slot.
        """
        return float(self._slots[self.current_slot, layer, y, x])

    def total_intensity(self) -> float:
        """Sum of all values in the current slot across every layer."""
        return float(self._slots[self.current_slot].sum())

    # -- Writes --------------------------------------------------------------

    def load(self, values: NDArray[np.float64]) -> None:
        """Replace the current slot's contents (e.g. for initial state).

        Args:
            values: Array of shape ``(L, H, W)``.

        Raises:
            SimulationError: If the shape does not match the field.
        """
        values = np.asarray(values, dtype=np.float64)
        if values.shape != self._scratch.shape:
            msg = f"expected shape {self._scratch.shape}, got {values.shape}"
            raise SimulationError(msg)
        self._slots[self.current_slot] = values

    def snapshot(self) -> NDArray[np.float64]:
        """Copy the current slot into scratch and clear the accumulator.

        Returns:
            Read-only view of the scratch buffer.
        """
        np.copyto(self._scratch, self._slots[self.current_slot])
        self._deposits.fill(0.0)
        return self.snapshot_view

    def apply_edits(self, edits: Iterable[BrushEdit]) -> int:
        """Apply brush edits to the scratch buffer.

        Args:
            edits: Edits queued for this tick.

        Returns:
            Number of edits applied (no-op edits included).

        Raises:
            SimulationError: If an edit targets a layer that does not exist.
        """
        applied = 0
        for edit in edits:
            if not 0 <= edit.layer < self.layer_count:
                msg = f"brush layer {edit.layer} out of range 0..{self.layer_count - 1}"
                raise SimulationError(msg)
            apply_brush(self._scratch[edit.layer], edit)
            applied += 1
        return applied

    def diffuse_decay(self, dt: float, *, diffuse: bool = True) -> None:
        """Write the diffused and decayed scratch buffer into the next slot.

        Args:
            dt: Tick length in seconds.
            diffuse: When False the scratch buffer is copied through
                unchanged (used when the diffusion stage is disabled).
        """
        target = self._slots[self.next_slot]
        if not diffuse:
            np.copyto(target, self._scratch)
            return
        for index, layer in enumerate(self.layers):
            diffuse_decay(
                self._scratch[index],
                target[index],
                layer.diffusion_rate,
                layer.decay_rate,
                dt,
            )

    def seed_border(self, layer: int, value: float, thickness: int = 1) -> None:
        """Set a band along the grid border of the next slot to ``value``.

        Acts as a fixed, agent-independent hazard source.

        Args:
            layer: Layer index to seed.
            value: Concentration written into the band.
            thickness: Band width in cells.
        """
        target = self._slots[self.next_slot, layer]
        band = max(1, min(thickness, *self.grid.shape))
        target[:band, :] = value
        target[-band:, :] = value
        target[:, :band] = value
        target[:, -band:] = value

    def deposit(
        self,
        layer: int,
        cols: NDArray[np.intp],
        rows: NDArray[np.intp],
        amounts: NDArray[np.float64] | float,
    ) -> None:
        """Accumulate deposits for this tick.

        Uses ``numpy.add.at`` so repeated indices add up rather than
        overwrite each other; the result is independent of agent order.

        Args:
            layer: Layer index.
            cols: Column indices.
            rows: Row indices.
            amounts: Amount per index (or one amount for all).
        """
        np.add.at(self._deposits[layer], (rows, cols), amounts)

    def merge_deposits(self) -> float:
        """Add the accumulator onto the next slot and zero it.

        Returns:
            Total amount merged.
        """
        merged = float(self._deposits.sum())
        self._slots[self.next_slot] += self._deposits
        self._deposits.fill(0.0)
        return merged

    def step(self, dt: float, edits: Sequence[BrushEdit] = ()) -> None:
        """Run one field-only tick: snapshot, edits, diffuse/decay, swap.

        Any deposits accumulated between ``snapshot`` and this call are
        not involved; use ``StepPipeline`` for the full agent tick.

        Args:
            dt: Tick length in seconds.
            edits: Brush edits to apply this tick.
        """
        self.snapshot()
        self.apply_edits(edits)
        self.diffuse_decay(dt)
        self.merge_deposits()
        self.swap()

    # -- Live tuning ---------------------------------------------------------

    def tune_layer(
        self,
        layer: int,
        *,
        diffusion_rate: float | None = None,
        decay_rate: float | None = None,
    ) -> PheromoneLayer:
        """Change a layer's rates between ticks.

        Args:
            layer: Layer index.
            diffusion_rate: New diffusion rate, if given.
            decay_rate: New decay rate, if given.

        Returns:
            The updated layer.

        Raises:
            ConfigError: If a new rate is outside ``[0, 1)``.
        """
        params = self.layers[layer]
        if diffusion_rate is not None:
            params.diffusion_rate = check_rate(
                f"layer {params.name!r} diffusion_rate",
                diffusion_rate,
            )
        if decay_rate is not None:
            params.decay_rate = check_rate(f"layer {params.name!r} decay_rate", decay_rate)
        logger.info(
            "tuned layer %s: diffusion=%.3f decay=%.3f",
            params.name,
            params.diffusion_rate,
            params.decay_rate,
        )
        return params
