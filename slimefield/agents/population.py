"""AgentPopulation -- fixed-size swarm that senses, steers, moves, deposits.

Agents are stored as parallel NumPy arrays rather than one object per
agent so that every stage of the update is a whole-array pass with no
dependency between agents:

1. **Noise**: a stateless hash of each agent's position bits and the
   frame counter (see ``hashing.py``).
2. **Sense**: three sensors (forward, left, right) read a weighted sum of
   all layers from the frozen snapshot over a square window.
3. **Steer**: forward wins -> keep heading; forward loses to both ->
   random turn; otherwise veer toward the stronger side; ties -> no turn.
4. **Move** along the new heading and resolve the grid boundary.
5. **Deposit** into the field's accumulator, never into the snapshot.

``update`` does not modify the population; it returns the new positions
and headings and the caller commits them once the tick is complete.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from slimefield.agents.hashing import agent_random
from slimefield.simulation.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.random import Generator

    from slimefield.agents.species import SpeciesTable
    from slimefield.pheromones.fields import PheromoneField
    from slimefield.simulation.engine import TickContext
    from slimefield.world.grid import Grid

logger = logging.getLogger(__name__)

TAU = 2.0 * math.pi

# Spawn disc radius as a fraction of the shorter grid side.
_DISC_RADIUS_FRACTION = 0.4


class SpawnDistribution(Enum):
    """Initial placement of the population."""

    DISC = "disc"
    UNIFORM = "uniform"

    @classmethod
    def parse(cls, value: str | SpawnDistribution) -> SpawnDistribution:
        """Return the distribution named by ``value``.

        Raises:
            ConfigError: If the name is unknown.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            names = ", ".join(d.value for d in cls)
            msg = f"unknown initial distribution {value!r} (expected one of: {names})"
            raise ConfigError(msg) from None


@dataclass(frozen=True)
class Agent:
    """Read-only view of a single agent."""

    x: float
    y: float
    heading: float
    species: int


@dataclass(frozen=True)
class AgentSnapshot:
    """Read-only copy of the whole population for external consumers.

    Attributes:
        positions: ``(N, 2)`` positions.
        headings: ``(N,)`` headings in radians.
        species: ``(N,)`` species ids.
    """

    positions: NDArray[np.float64]
    headings: NDArray[np.float64]
    species: NDArray[np.int64]


@dataclass
class AgentPopulation:
    """All agents of a run as parallel arrays.

    Attributes:
        positions: ``(N, 2)`` continuous ``(x, y)`` positions.
        headings: ``(N,)`` headings in radians (0 = +x).
        species: ``(N,)`` species ids into the ``SpeciesTable``.
    """

    positions: NDArray[np.float64]
    headings: NDArray[np.float64]
    species: NDArray[np.int64]

    def __post_init__(self) -> None:
        """Coerce dtypes and check that the arrays line up."""
        self.positions = np.array(self.positions, dtype=np.float64).reshape(-1, 2)
        self.headings = np.array(self.headings, dtype=np.float64).reshape(-1)
        self.species = np.array(self.species, dtype=np.int64).reshape(-1)
        n = len(self.positions)
        if len(self.headings) != n or len(self.species) != n:
            msg = (
                f"agent arrays disagree in length: {n} positions, "
                f"{len(self.headings)} headings, {len(self.species)} species"
            )
            raise ConfigError(msg)

    def __len__(self) -> int:
        return len(self.positions)

    def __getitem__(self, index: int) -> Agent:
        x, y = self.positions[index]
        return Agent(
            x=float(x),
            y=float(y),
            heading=float(self.headings[index]),
            species=int(self.species[index]),
        )

    # -- Construction --------------------------------------------------------

    @classmethod
    def spawn(
        cls,
        grid: Grid,
        count: int,
        species_count: int,
        rng: Generator,
        *,
        distribution: SpawnDistribution = SpawnDistribution.DISC,
        species_ids: Sequence[int] | None = None,
    ) -> AgentPopulation:
        """Create the initial population.

        ``DISC`` places agents uniformly inside a disc centred on the grid
        (radius 40% of the shorter side), each facing the centre.
        ``UNIFORM`` scatters agents over the whole grid with random
        headings.  Species are assigned round-robin unless ``species_ids``
        gives an explicit per-agent assignment.

        Args:
            grid: The grid to populate.
            count: Number of agents.
            species_count: Number of species in the table.
            rng: Seeded random generator.
            distribution: Placement strategy.
            species_ids: Optional explicit species id per agent.

        Returns:
            A new population.

        Raises:
            ConfigError: If the assignment is the wrong length or refers
                to a species that does not exist.
        """
        if count < 0:
            msg = f"agent count must be >= 0, got {count}"
            raise ConfigError(msg)
        if count > 0 and species_count <= 0:
            msg = "cannot spawn agents without any species"
            raise ConfigError(msg)

        if species_ids is None:
            species = np.arange(count, dtype=np.int64) % max(species_count, 1)
        else:
            species = np.asarray(species_ids, dtype=np.int64).reshape(-1)
            if len(species) != count:
                msg = f"agent_species has {len(species)} entries for {count} agents"
                raise ConfigError(msg)
            bad = (species < 0) | (species >= species_count)
            if bad.any():
                index = int(np.argmax(bad))
                msg = (
                    f"agent {index} assigned species {int(species[index])}, "
                    f"but only {species_count} species exist"
                )
                raise ConfigError(msg)

        distribution = SpawnDistribution.parse(distribution)
        if distribution is SpawnDistribution.DISC:
            cx, cy = grid.width * 0.5, grid.height * 0.5
            radius = min(grid.width, grid.height) * _DISC_RADIUS_FRACTION
            angle = rng.uniform(0.0, TAU, count)
            r = radius * np.sqrt(rng.uniform(0.0, 1.0, count))
            positions = np.column_stack((cx + np.cos(angle) * r, cy + np.sin(angle) * r))
            headings = np.arctan2(cy - positions[:, 1], cx - positions[:, 0])
        else:
            positions = np.column_stack(
                (
                    rng.uniform(0.0, grid.width, count),
                    rng.uniform(0.0, grid.height, count),
                ),
            )
            headings = rng.uniform(0.0, TAU, count)

        logger.info(
            "spawned %d agents (%s) across %d species",
            count,
            distribution.value,
            species_count,
        )
        return cls(positions=positions, headings=headings, species=species)

    # -- Queries -------------------------------------------------------------

    def snapshot(self) -> AgentSnapshot:
        """Return read-only copies of the agent arrays."""
        arrays = [a.copy() for a in (self.positions, self.headings, self.species)]
        for arr in arrays:
            arr.flags.writeable = False
        return AgentSnapshot(*arrays)

    def validate_species(self, table: SpeciesTable) -> None:
        """Check every agent's species id against ``table``.

        Raises:
            InvariantViolation: If any id is out of range.
        """
        table.check_ids(self.species)

    # -- Per-tick update -----------------------------------------------------

    def sense(
        self,
        snapshot: NDArray[np.float64],
        table: SpeciesTable,
        grid: Grid,
    ) -> NDArray[np.float64]:
        """Read the forward, left and right sensors of every agent.

        Each sensor sums ``value * weight`` over all layers and over a
        ``(2r + 1) x (2r + 1)`` window centred on the sensor point.

        Args:
            snapshot: Frozen field, shape ``(L, H, W)``.
            table: Species table (weights, sensor geometry).
            grid: Grid used to resolve out-of-range window cells.

        Returns:
            ``(3, N)`` array: rows are forward, left, right.
        """
        n = len(self)
        signals = np.zeros((3, n), dtype=np.float64)
        if n == 0:
            return signals

        # One weighted scalar map per species: (S, H, W).
        weighted = np.tensordot(table.weight_matrix, snapshot, axes=(1, 0))

        for sid in np.unique(self.species):
            members = self.species == sid
            spec = table.lookup(int(sid))
            xs = self.positions[members, 0]
            ys = self.positions[members, 1]
            heading = self.headings[members]
            for row, side in enumerate((0.0, 1.0, -1.0)):
                angle = heading + side * spec.sensor_angle
                sx = xs + np.cos(angle) * spec.sensor_offset
                sy = ys + np.sin(angle) * spec.sensor_offset
                signals[row, members] = _window_sum(
                    weighted[sid],
                    sx,
                    sy,
                    spec.sensor_radius,
                    grid,
                )
        return signals

    def update(
        self,
        ctx: TickContext,
        snapshot: NDArray[np.float64],
        table: SpeciesTable,
        grid: Grid,
        field: PheromoneField,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Compute one tick for every agent.

        Deposits go into ``field``'s accumulator.  The population itself
        is left untouched; call ``commit`` with the returned arrays once
        the rest of the tick has succeeded.

        Args:
            ctx: Tick context (``delta_time``, ``frame_counter``).
            snapshot: Frozen field to sense, shape ``(L, H, W)``.
            table: Species table.
            grid: Grid (bounds and boundary policy).
            field: Field whose deposit accumulator receives emissions.

        Returns:
            New ``(positions, headings)`` arrays.

        Raises:
            InvariantViolation: If an agent references an unknown species.
        """
        self.validate_species(table)
        dt = ctx.delta_time
        n = len(self)
        if n == 0:
            return self.positions.copy(), self.headings.copy()

        move_speed = np.array([s.move_speed for s in table.species])[self.species]
        turn_speed = np.array([s.turn_speed for s in table.species])[self.species]

        rand = agent_random(self.positions, ctx.frame_counter)
        forward, left, right = self.sense(snapshot, table, grid)

        turn = turn_speed * dt
        keep = (forward > left) & (forward > right)
        lost = (forward < left) & (forward < right)
        delta = np.select(
            [keep, lost, right > left, left > right],
            [0.0, (rand - 0.5) * 2.0 * turn, -rand * turn, rand * turn],
            default=0.0,
        )
        headings = self.headings + delta

        step = move_speed * dt
        positions = self.positions + np.column_stack(
            (np.cos(headings) * step, np.sin(headings) * step),
        )
        grid.resolve_boundary(positions, headings)
        headings = np.mod(headings, TAU)

        self._deposit(positions, dt, table, grid, field)
        return positions, headings

    def commit(
        self,
        positions: NDArray[np.float64],
        headings: NDArray[np.float64],
    ) -> None:
        """Store the result of ``update`` as the population's new state."""
        self.positions = positions
        self.headings = headings

    def _deposit(
        self,
        positions: NDArray[np.float64],
        dt: float,
        table: SpeciesTable,
        grid: Grid,
        field: PheromoneField,
    ) -> None:
        """Add each agent's emission at its new cell to the accumulator."""
        cols, rows = grid.cell_indices(positions[:, 0], positions[:, 1])
        for sid in np.unique(self.species):
            amount = table.lookup(int(sid)).emit_amount * dt
            if amount <= 0.0:
                continue
            members = self.species == sid
            for layer in table.deposit_layers(int(sid)):
                field.deposit(layer, cols[members], rows[members], amount)


def _window_sum(
    layer: NDArray[np.float64],
    xs: NDArray[np.float64],
    ys: NDArray[np.float64],
    radius: int,
    grid: Grid,
) -> NDArray[np.float64]:
    """Sum ``layer`` over a square window around each ``(x, y)``."""
    total = np.zeros(len(xs), dtype=np.float64)
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            cols, rows = grid.cell_indices(xs + dx, ys + dy)
            total += layer[rows, cols]
    return total
