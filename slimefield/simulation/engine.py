"""StepPipeline -- the fixed per-tick pass order.

Owns all run state and advances it through the same stages every tick,
never reordered:

1. COPY            -- snapshot the current slot into scratch, zero the
                      deposit accumulator
2. APPLY_EDITS     -- apply queued brush edits to the snapshot
3. DIFFUSE_DECAY   -- snapshot -> next slot (plus the optional border
                      hazard source)
4. AGENT_UPDATE    -- agents sense the snapshot and deposit into the
                      accumulator
5. MERGE_DEPOSITS  -- accumulator is added onto the next slot
6. SWAP_BUFFERS    -- next becomes current; agent state is committed

Sensing therefore never sees this tick's deposits, while diffusion does
see this tick's brush edits.  Nothing observable changes before
SWAP_BUFFERS, so a tick that fails part-way is simply discarded.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum, auto

import numpy as np
from numpy.random import Generator
from numpy.typing import NDArray

from slimefield.agents.hashing import FRAME_MASK
from slimefield.agents.population import AgentPopulation, AgentSnapshot, SpawnDistribution
from slimefield.agents.species import SpeciesTable
from slimefield.pheromones.brush import BrushEdit, PointerState
from slimefield.pheromones.fields import PheromoneField
from slimefield.render.composite import composite_layers
from slimefield.simulation.config import SimulationConfig
from slimefield.simulation.errors import InvariantViolation, SimulationError
from slimefield.world.grid import Grid

logger = logging.getLogger(__name__)


class Stage(Enum):
    """Pipeline stages in execution order."""

    COPY = auto()
    APPLY_EDITS = auto()
    DIFFUSE_DECAY = auto()
    AGENT_UPDATE = auto()
    MERGE_DEPOSITS = auto()
    SWAP_BUFFERS = auto()


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


@dataclass(frozen=True)
class TickContext:
    """Per-tick values threaded explicitly into every component.

    Attributes:
        delta_time: Tick length in seconds (``>= 0``).
        frame_counter: Frame number, already reduced modulo 2**32.
    """

    delta_time: float
    frame_counter: int


@dataclass
class StepPipeline:
    """Drives the simulation forward tick by tick.

    Attributes:
        config: Validated run configuration.
        grid: The grid.
        pheromone_field: Multi-layer double-buffered field.
        species_table: Species profiles.
        agents: The agent population.
        rng: Seeded generator used for initial placement only.
        tick: Number of completed ticks.
        frame_counter: Frame number used for the next tick (wraps at 2**32).
        last_stage: Last stage that completed, ``None`` before the first tick.
    """

    config: SimulationConfig
    grid: Grid = field(init=False)
    pheromone_field: PheromoneField = field(init=False)
    species_table: SpeciesTable = field(init=False)
    agents: AgentPopulation = field(init=False)
    rng: Generator = field(init=False)
    tick: int = 0
    frame_counter: int = 0
    last_stage: Stage | None = field(init=False, default=None)
    _pending_edits: list[BrushEdit] = field(init=False, default_factory=list)

    def __post_init__(self) -> None:
        """Validate config, then build grid, field, species and agents."""
        self.config.validate()
        self.rng = np.random.default_rng(self.config.seed)
        self.grid = self.config.build_grid()
        self.pheromone_field = PheromoneField(
            grid=self.grid,
            layers=self.config.build_layers(),
        )
        self.species_table = self.config.build_species_table()
        self.agents = AgentPopulation.spawn(
            self.grid,
            self.config.agent_count,
            len(self.species_table),
            self.rng,
            distribution=SpawnDistribution.parse(self.config.initial_distribution),
            species_ids=self.config.agent_species,
        )
        self.agents.validate_species(self.species_table)
        logger.info(
            "pipeline ready: %dx%d %s grid, %d layers, %d agents",
            self.grid.width,
            self.grid.height,
            self.grid.boundary.value,
            self.pheromone_field.layer_count,
            len(self.agents),
        )

    # -- External input ------------------------------------------------------

    def queue_edit(self, edit: BrushEdit) -> None:
        """Queue a brush edit for the next tick."""
        self._pending_edits.append(edit)

    def queue_pointer(self, pointer: PointerState) -> None:
        """Queue the edits implied by the current pointer state."""
        self._pending_edits.extend(pointer.to_edits(self.config.brush_radius))

    # -- Tick ----------------------------------------------------------------

    def step(self, delta_time: float, frame_counter: int | None = None) -> TickContext:
        """Advance the simulation by one tick.

        Args:
            delta_time: Tick length in seconds; 0 is allowed.
            frame_counter: Frame number to use; defaults to the pipeline's
                own counter.  Reduced modulo 2**32.

        Returns:
            The context the tick ran with.

        Raises:
            SimulationError: If ``delta_time`` is negative or not finite.
            InvariantViolation: If an agent's species id is invalid.
        """
        if not math.isfinite(delta_time) or delta_time < 0:
            msg = f"delta_time must be finite and >= 0, got {delta_time}"
            raise SimulationError(msg)
        if frame_counter is not None:
            self.frame_counter = frame_counter & FRAME_MASK
        ctx = TickContext(delta_time=float(delta_time), frame_counter=self.frame_counter)

        if self.last_stage not in (None, Stage.SWAP_BUFFERS):
            logger.warning("discarding partial tick stopped after %s", self.last_stage.name)
        self.last_stage = None

        edits, self._pending_edits = self._pending_edits, []
        stages = self.config.stages
        phero = self.pheromone_field

        snapshot = phero.snapshot()
        self._complete(Stage.COPY)

        if stages.run_copy_and_input:
            phero.apply_edits(edits)
        self._complete(Stage.APPLY_EDITS)

        phero.diffuse_decay(ctx.delta_time, diffuse=stages.run_diffuse)
        hazard = self.config.hazard
        if hazard is not None:
            phero.seed_border(hazard.layer, hazard.value, hazard.thickness)
        self._complete(Stage.DIFFUSE_DECAY)

        moved = None
        if stages.run_agents:
            moved = self.agents.update(
                ctx,
                snapshot,
                self.species_table,
                self.grid,
                phero,
            )
        self._complete(Stage.AGENT_UPDATE)

        merged = phero.merge_deposits()
        self._complete(Stage.MERGE_DEPOSITS)

        phero.swap()
        if moved is not None:
            self.agents.commit(*moved)
        self._complete(Stage.SWAP_BUFFERS)

        self.tick += 1
        self.frame_counter = (self.frame_counter + 1) & FRAME_MASK
        logger.debug(
            "tick %d (frame %d, dt=%.4f): %d edits, deposited %.3f",
            self.tick,
            ctx.frame_counter,
            ctx.delta_time,
            len(edits),
            merged,
        )
        return ctx

    def run(self, ticks: int, delta_time: float) -> None:
        """Run a fixed number of ticks with a constant ``delta_time``.

        Args:
            ticks: Number of ticks to advance.
            delta_time: Tick length in seconds.
        """
        for _ in range(ticks):
            self.step(delta_time)

    # -- Outputs -------------------------------------------------------------

    def field_view(self) -> NDArray[np.float64]:
        """Read-only ``(L, H, W)`` copy of the committed field.

        The storage slots are reused every other tick, so the caller gets
        a copy that later steps do not touch.
        """
        values = self.pheromone_field.current.copy()
        values.flags.writeable = False
        return values

    def agents_view(self) -> AgentSnapshot:
        """Read-only copy of the committed agent state."""
        return self.agents.snapshot()

    def composite(self, exposure: float = 1.0) -> NDArray[np.float64]:
        """Blend the committed field into an ``(H, W, 3)`` RGB image."""
        colors = [layer.color for layer in self.pheromone_field.layers]
        return composite_layers(self.pheromone_field.current, colors, exposure=exposure)

    def _complete(self, stage: Stage) -> None:
        """Record that ``stage`` finished, enforcing the fixed order."""
        position = -1 if self.last_stage is None else STAGE_ORDER.index(self.last_stage)
        expected = STAGE_ORDER[position + 1] if position + 1 < len(STAGE_ORDER) else None
        if stage is not expected:
            msg = f"stage {stage.name} out of order after {self.last_stage}"
            raise InvariantViolation(msg)
        self.last_stage = stage
