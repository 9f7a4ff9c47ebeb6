"""Species -- static per-species behaviour parameters.

Agents carry only a species id; everything that shapes how they move,
what they smell and what they leave behind lives here.  The table is
validated once when it is built.  Values can be tuned between ticks but
species are never added or removed during a run.

Sensing weights are signed: positive weights make a layer attractive
(follow), negative weights make it repulsive (avoid).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np
from numpy.typing import NDArray

from slimefield.simulation.errors import ConfigError, InvariantViolation, check_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Species:
    """Behaviour profile shared by every agent of one species.

    Attributes:
        name: Label used in logs and config.
        move_speed: Cells per second.
        turn_speed: Radians per second at full steering strength.
        sensor_angle_degrees: Angle between the forward and side sensors.
        sensor_offset: Distance from the agent to each sensor, in cells.
        sensor_radius: Half-width of the square sensing window; 0 samples
            a single cell.
        weights: Signed per-layer sensing weights.
        emit_layers: Layers this species deposits into.
        emit_amount: Amount deposited per second into each emit layer.
        color: RGB display colour.
    """

    name: str
    move_speed: float = 30.0
    turn_speed: float = 6.0
    sensor_angle_degrees: float = 30.0
    sensor_offset: float = 35.0
    sensor_radius: int = 1
    weights: tuple[float, ...] = ()
    emit_layers: tuple[int, ...] = ()
    emit_amount: float = 0.0
    color: tuple[float, float, float] = (1.0, 1.0, 1.0)

    def __post_init__(self) -> None:
        """Check the values that do not depend on the layer count."""
        for attr in ("move_speed", "turn_speed", "sensor_offset", "emit_amount"):
            value = getattr(self, attr)
            if not math.isfinite(value) or value < 0:
                msg = f"species {self.name!r}: {attr} must be finite and >= 0, got {value}"
                raise ConfigError(msg)
        if not math.isfinite(self.sensor_angle_degrees):
            msg = f"species {self.name!r}: sensor_angle_degrees must be finite"
            raise ConfigError(msg)
        radius = self.sensor_radius
        if isinstance(radius, bool) or not isinstance(radius, int) or radius < 0:
            msg = (
                f"species {self.name!r}: sensor_radius must be a non-negative "
                f"integer, got {radius!r}"
            )
            raise ConfigError(msg)
        object.__setattr__(self, "weights", tuple(float(w) for w in self.weights))
        emit_layers = tuple(
            check_index(f"species {self.name!r} emit_layers entry", i) for i in self.emit_layers
        )
        object.__setattr__(self, "emit_layers", emit_layers)

    @property
    def sensor_angle(self) -> float:
        """Sensor angle in radians."""
        return math.radians(self.sensor_angle_degrees)


@dataclass
class SpeciesTable:
    """Indexed, validated collection of species.

    Attributes:
        species: Species in id order.
        layer_count: Number of pheromone layers weights refer to.
        universal_love_layers: Layers every species is attracted to
            (weight forced to +1).  Agents never deposit there.
        universal_hate_layers: Layers every species avoids (weight
            forced to -1).  Agents never deposit there.
        paint_only_layers: Further layers only the brush may write.
    """

    species: list[Species]
    layer_count: int
    universal_love_layers: tuple[int, ...] = ()
    universal_hate_layers: tuple[int, ...] = ()
    paint_only_layers: tuple[int, ...] = ()
    _weights: NDArray[np.float64] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate every species against the layer count."""
        if not self.species:
            msg = "the species table must contain at least one species"
            raise ConfigError(msg)
        if self.layer_count <= 0:
            msg = f"layer_count must be positive, got {self.layer_count}"
            raise ConfigError(msg)
        for name in ("universal_love_layers", "universal_hate_layers", "paint_only_layers"):
            layers = tuple(check_index(f"{name} entry", i) for i in getattr(self, name))
            self._check_layers(name, layers)
            setattr(self, name, layers)
        for item in self.species:
            self._check_species(item)
        self._rebuild_weights()
        logger.info(
            "species table: %s",
            ", ".join(s.name for s in self.species),
        )

    def __len__(self) -> int:
        return len(self.species)

    # -- Lookup --------------------------------------------------------------

    def lookup(self, species_id: int) -> Species:
        """Return the settings for ``species_id``.

        Raises:
            InvariantViolation: If the id is not a valid table index.
        """
        if not 0 <= species_id < len(self.species):
            msg = f"species id {species_id} out of range 0..{len(self.species) - 1}"
            raise InvariantViolation(msg)
        return self.species[species_id]

    @property
    def weight_matrix(self) -> NDArray[np.float64]:
        """Dense ``(S, L)`` sensing weights with universal overrides applied."""
        view = self._weights.view()
        view.flags.writeable = False
        return view

    @property
    def no_deposit_layers(self) -> frozenset[int]:
        """Layers agents must never deposit into."""
        return frozenset(
            self.universal_love_layers + self.universal_hate_layers + self.paint_only_layers,
        )

    def deposit_layers(self, species_id: int) -> tuple[int, ...]:
        """Emission layers of a species, minus the paint-only ones."""
        blocked = self.no_deposit_layers
        return tuple(i for i in self.lookup(species_id).emit_layers if i not in blocked)

    def check_ids(self, ids: NDArray[np.integer] | Iterable[int]) -> None:
        """Verify that every id in ``ids`` indexes this table.

        Raises:
            InvariantViolation: On the first out-of-range id.
        """
        arr = np.asarray(ids if isinstance(ids, np.ndarray) else list(ids))
        if arr.size == 0:
            return
        bad = (arr < 0) | (arr >= len(self.species))
        if bad.any():
            first = int(arr[np.argmax(bad)])
            msg = (
                f"agent species id {first} out of range 0..{len(self.species) - 1} "
                f"({int(bad.sum())} agents affected)"
            )
            raise InvariantViolation(msg)

    # -- Live tuning ---------------------------------------------------------

    def tune(self, species_id: int, **changes: Any) -> Species:
        """Replace some values of one species between ticks.

        Args:
            species_id: Species to change.
            **changes: Field values to replace (e.g. ``move_speed=20``).

        Returns:
            The new, validated species settings.

        Raises:
            ConfigError: If the new values are invalid.
        """
        if "name" in changes:
            msg = "species cannot be renamed during a run"
            raise ConfigError(msg)
        updated = replace(self.lookup(species_id), **changes)
        self._check_species(updated)
        self.species[species_id] = updated
        self._rebuild_weights()
        logger.info("tuned species %s: %s", updated.name, sorted(changes))
        return updated

    # -- Internals -----------------------------------------------------------

    def _check_layers(self, what: str, layers: Sequence[int]) -> None:
        for index in layers:
            if not 0 <= index < self.layer_count:
                msg = f"{what}: layer {index} out of range 0..{self.layer_count - 1}"
                raise ConfigError(msg)

    def _check_species(self, item: Species) -> None:
        if len(item.weights) > self.layer_count:
            msg = (
                f"species {item.name!r} has {len(item.weights)} weights "
                f"but only {self.layer_count} layers exist"
            )
            raise ConfigError(msg)
        self._check_layers(f"species {item.name!r} emit_layers", item.emit_layers)

    def _rebuild_weights(self) -> None:
        weights = np.zeros((len(self.species), self.layer_count), dtype=np.float64)
        for row, item in enumerate(self.species):
            weights[row, : len(item.weights)] = item.weights
        for index in self.universal_love_layers:
            weights[:, index] = 1.0
        for index in self.universal_hate_layers:
            weights[:, index] = -1.0
        self._weights = weights
