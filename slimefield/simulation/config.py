"""Config -- load and validate run parameters from YAML files.

Everything that is fixed for a run (grid size, boundary policy, layer
rates, species profiles, population size and placement) lives in YAML
and is parsed into typed dataclasses here.  ``validate`` is called
eagerly, both by ``from_yaml`` and when a pipeline is built, so a bad
configuration is reported before the first tick and never clamped.
"""

from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from slimefield.agents.population import SpawnDistribution
from slimefield.agents.species import Species, SpeciesTable
from slimefield.pheromones.fields import PheromoneLayer
from slimefield.simulation.errors import ConfigError, check_index
from slimefield.world.grid import BoundaryPolicy, Grid

logger = logging.getLogger(__name__)


def default_layers() -> list[PheromoneLayer]:
    """Five layers: hate, love, and one per default species."""
    return [
        PheromoneLayer("hate", 0.4, 0.7, (0.0, 0.0, 0.0)),
        PheromoneLayer("love", 0.4, 0.7, (0.2, 0.95, 0.2)),
        PheromoneLayer("purple", 0.5, 0.8, (0.8, 80 / 255, 120 / 255)),
        PheromoneLayer("yellow", 0.6, 0.85, (0.5, 0.9, 0.2)),
        PheromoneLayer("blue", 0.7, 0.9, (0.1, 0.2, 0.85)),
    ]


def default_species() -> list[Species]:
    """Three species that each follow their own trail and avoid the next."""
    return [
        Species(
            "red",
            weights=(0.0, 0.0, 1.0, -1.0, 0.0),
            emit_layers=(2,),
            emit_amount=1.0,
            color=(1.0, 0.0, 0.0),
        ),
        Species(
            "green",
            weights=(0.0, 0.0, 0.0, 1.0, -1.0),
            emit_layers=(3,),
            emit_amount=1.0,
            color=(0.0, 1.0, 0.0),
        ),
        Species(
            "blue",
            weights=(0.0, 0.0, -1.0, 0.0, 1.0),
            emit_layers=(4,),
            emit_amount=1.0,
            color=(0.0, 0.0, 1.0),
        ),
    ]


@dataclass(frozen=True)
class StageToggles:
    """Switches for skipping pipeline stages while debugging.

    Copy, merge and swap always run; these only disable work.

    Attributes:
        run_copy_and_input: Apply queued brush edits.
        run_diffuse: Diffuse and decay (otherwise the snapshot is copied
            through unchanged).
        run_agents: Update agents and collect their deposits.
    """

    run_copy_and_input: bool = True
    run_diffuse: bool = True
    run_agents: bool = True


@dataclass(frozen=True)
class HazardConfig:
    """A fixed source written along the grid border every tick.

    Attributes:
        layer: Layer that receives the signal.
        value: Concentration written into the border band.
        thickness: Band width in cells.
    """

    layer: int
    value: float = 1.0
    thickness: int = 1

    def __post_init__(self) -> None:
        """Reject non-integer ids and non-finite or negative values."""
        layer = check_index("hazard layer", self.layer)
        thickness = check_index("hazard thickness", self.thickness)
        value = self.value
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            msg = f"hazard value must be a number, got {value!r}"
            raise ConfigError(msg)
        if not math.isfinite(value) or value < 0:
            msg = f"hazard value must be finite and >= 0, got {value}"
            raise ConfigError(msg)
        if thickness < 1:
            msg = f"hazard thickness must be >= 1, got {thickness}"
            raise ConfigError(msg)
        object.__setattr__(self, "layer", layer)
        object.__setattr__(self, "thickness", thickness)
        object.__setattr__(self, "value", float(value))


@dataclass
class SimulationConfig:
    """Top-level run configuration.

    Attributes:
        seed: RNG seed for initial placement.
        world_width: Grid columns.
        world_height: Grid rows.
        boundary: ``"reflect"`` or ``"wrap"``.
        agent_count: Size of the population.
        initial_distribution: ``"disc"`` or ``"uniform"``.
        agent_species: Optional explicit species id per agent.
        brush_radius: Brush radius in cells.
        brush_target_layer: Default layer addressed by the pointer.
        layers: Pheromone layer parameters.
        species: Species profiles, in id order.
        universal_love_layers: Layers every species follows.
        universal_hate_layers: Layers every species avoids.
        paint_only_layers: Layers agents never deposit into.
        hazard: Optional border source.
        stages: Stage toggles.
    """

    seed: int = 42
    world_width: int = 320
    world_height: int = 180
    boundary: str = "reflect"
    agent_count: int = 4000
    initial_distribution: str = "disc"
    agent_species: list[int] | None = None
    brush_radius: float = 20.0
    brush_target_layer: int = 0
    layers: list[PheromoneLayer] = field(default_factory=default_layers)
    species: list[Species] = field(default_factory=default_species)
    universal_love_layers: list[int] = field(default_factory=lambda: [1])
    universal_hate_layers: list[int] = field(default_factory=lambda: [0])
    paint_only_layers: list[int] = field(default_factory=list)
    hazard: HazardConfig | None = None
    stages: StageToggles = field(default_factory=StageToggles)

    # -- Builders ------------------------------------------------------------

    def build_grid(self) -> Grid:
        """Return the run's Grid."""
        return Grid(
            width=self.world_width,
            height=self.world_height,
            boundary=BoundaryPolicy.parse(self.boundary),
        )

    def build_layers(self) -> list[PheromoneLayer]:
        """Return fresh copies of the layer parameters."""
        return [replace(layer) for layer in self.layers]

    def build_species_table(self) -> SpeciesTable:
        """Return a validated SpeciesTable."""
        return SpeciesTable(
            species=list(self.species),
            layer_count=len(self.layers),
            universal_love_layers=tuple(self.universal_love_layers),
            universal_hate_layers=tuple(self.universal_hate_layers),
            paint_only_layers=tuple(self.paint_only_layers),
        )

    # -- Validation ----------------------------------------------------------

    def validate(self) -> None:
        """Check the whole configuration.

        Raises:
            ConfigError: Describing the first problem found.
        """
        self.build_grid()
        if not self.layers:
            msg = "at least one pheromone layer is required"
            raise ConfigError(msg)
        table = self.build_species_table()
        layer_count = len(self.layers)

        if isinstance(self.agent_count, bool) or not isinstance(self.agent_count, int):
            msg = f"agent_count must be an integer, got {self.agent_count!r}"
            raise ConfigError(msg)
        if self.agent_count < 0:
            msg = f"agent_count must be >= 0, got {self.agent_count}"
            raise ConfigError(msg)
        SpawnDistribution.parse(self.initial_distribution)

        if self.agent_species is not None:
            if len(self.agent_species) != self.agent_count:
                msg = (
                    f"agent_species has {len(self.agent_species)} entries "
                    f"for {self.agent_count} agents"
                )
                raise ConfigError(msg)
            for index, sid in enumerate(self.agent_species):
                if not 0 <= sid < len(table):
                    msg = f"agent {index} assigned species {sid}, but only {len(table)} exist"
                    raise ConfigError(msg)

        if self.brush_radius < 0:
            msg = f"brush_radius must be >= 0, got {self.brush_radius}"
            raise ConfigError(msg)
        if not 0 <= self.brush_target_layer < layer_count:
            msg = f"brush_target_layer {self.brush_target_layer} out of range"
            raise ConfigError(msg)

        if self.hazard is not None:
            if not 0 <= self.hazard.layer < layer_count:
                msg = f"hazard layer {self.hazard.layer} out of range"
                raise ConfigError(msg)

    # -- Loading -------------------------------------------------------------

    @classmethod
    def from_yaml(cls, path: str | Path) -> SimulationConfig:
        """Load and validate configuration from a YAML file.

        Keys missing from the file keep their defaults.

        Args:
            path: Path to the YAML config file.

        Returns:
            A validated SimulationConfig instance.

        Raises:
            FileNotFoundError: If the config file does not exist.
            ConfigError: If the contents are malformed or invalid.
        """
        path = Path(path)
        with path.open("r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            msg = f"{path}: top level must be a mapping"
            raise ConfigError(msg)

        config = cls.from_dict(data)
        config.validate()
        logger.info(
            "loaded %s: %dx%d grid, %d layers, %d species, %d agents",
            path,
            config.world_width,
            config.world_height,
            len(config.layers),
            len(config.species),
            config.agent_count,
        )
        return config

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SimulationConfig:
        """Build a config from already-parsed YAML data (not validated).

        Raises:
            ConfigError: If a section has the wrong shape.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("ignoring unknown config keys: %s", ", ".join(unknown))

        defaults = cls()
        try:
            layers = (
                [_parse_layer(i, entry) for i, entry in enumerate(data["layers"])]
                if "layers" in data
                else defaults.layers
            )
            species = (
                [_parse_species(i, entry) for i, entry in enumerate(data["species"])]
                if "species" in data
                else defaults.species
            )
            hazard = data.get("hazard")
            stages = data.get("stages") or {}
            agent_species = data.get("agent_species")
            return cls(
                seed=int(data.get("seed", defaults.seed)),
                world_width=data.get("world_width", defaults.world_width),
                world_height=data.get("world_height", defaults.world_height),
                boundary=data.get("boundary", defaults.boundary),
                agent_count=data.get("agent_count", defaults.agent_count),
                initial_distribution=data.get(
                    "initial_distribution",
                    defaults.initial_distribution,
                ),
                agent_species=(
                    [int(s) for s in agent_species] if agent_species is not None else None
                ),
                brush_radius=float(data.get("brush_radius", defaults.brush_radius)),
                brush_target_layer=int(
                    data.get("brush_target_layer", defaults.brush_target_layer),
                ),
                layers=layers,
                species=species,
                universal_love_layers=list(
                    data.get("universal_love_layers", defaults.universal_love_layers),
                ),
                universal_hate_layers=list(
                    data.get("universal_hate_layers", defaults.universal_hate_layers),
                ),
                paint_only_layers=list(
                    data.get("paint_only_layers", defaults.paint_only_layers),
                ),
                hazard=HazardConfig(**hazard) if hazard else None,
                stages=StageToggles(**stages),
            )
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            if isinstance(exc, ConfigError):
                raise
            msg = f"malformed configuration: {exc}"
            raise ConfigError(msg) from exc


def _parse_layer(index: int, entry: dict[str, Any]) -> PheromoneLayer:
    """Build a PheromoneLayer from one YAML mapping."""
    return PheromoneLayer(
        name=str(entry.get("name", f"layer{index}")),
        diffusion_rate=entry["diffusion_rate"],
        decay_rate=entry["decay_rate"],
        color=tuple(entry.get("color", (0.6, 0.6, 0.6))),
    )


def _parse_species(index: int, entry: dict[str, Any]) -> Species:
    """Build a Species from one YAML mapping.

    ``emit_layer`` (single int) is accepted as a shorthand for
    ``emit_layers``.
    """
    entry = dict(entry)
    if "emit_layer" in entry:
        entry.setdefault("emit_layers", [entry.pop("emit_layer")])
    entry.setdefault("name", f"species{index}")
    for key in ("weights", "emit_layers", "color"):
        if key in entry:
            entry[key] = tuple(entry[key])
    for key in ("move_speed", "turn_speed", "sensor_angle_degrees", "sensor_offset", "emit_amount"):
        if key in entry:
            entry[key] = float(entry[key])
    return Species(**entry)
