"""Tests for slimefield.simulation -- config loading and the step pipeline."""

import logging
import math
from pathlib import Path

import numpy as np
import pytest

from slimefield.pheromones.brush import BrushEdit, BrushMode, PointerState
from slimefield.simulation.config import HazardConfig, SimulationConfig, StageToggles
from slimefield.simulation.engine import STAGE_ORDER, Stage, StepPipeline
from slimefield.simulation.errors import ConfigError, InvariantViolation, SimulationError
from slimefield.world.grid import BoundaryPolicy

_DEFAULT_YAML = Path(__file__).resolve().parent.parent / "config" / "default.yaml"


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "run.yaml"
    path.write_text(text)
    return path


class TestSimulationConfig:
    """Tests for config defaults, YAML loading and validation."""

    def test_defaults(self) -> None:
        config = SimulationConfig()
        config.validate()
        assert [layer.name for layer in config.layers] == [
            "hate",
            "love",
            "purple",
            "yellow",
            "blue",
        ]
        assert len(config.species) == 3
        assert config.universal_love_layers == [1]
        assert config.universal_hate_layers == [0]
        assert config.build_grid().boundary is BoundaryPolicy.REFLECT

    def test_default_weights_apply_universal_layers(self) -> None:
        table = SimulationConfig().build_species_table()
        assert table.weight_matrix[:, 0].tolist() == [-1.0, -1.0, -1.0]
        assert table.weight_matrix[:, 1].tolist() == [1.0, 1.0, 1.0]
        assert [table.deposit_layers(i) for i in range(3)] == [(2,), (3,), (4,)]

    def test_build_layers_returns_copies(self) -> None:
        config = SimulationConfig()
        layers = config.build_layers()
        layers[0].decay_rate = 0.1
        assert config.layers[0].decay_rate == 0.7

    def test_shipped_default_yaml_loads(self) -> None:
        config = SimulationConfig.from_yaml(_DEFAULT_YAML)
        assert config.world_width == 320
        assert config.agent_count == 4000
        assert len(config.layers) == 5
        assert [s.emit_layers for s in config.species] == [(2,), (3,), (4,)]
        assert config.hazard is None

    def test_partial_yaml_keeps_defaults(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "world_width: 64\n"
            "world_height: 48\n"
            "boundary: wrap\n"
            "agent_count: 10\n"
            "stages: {run_diffuse: false}\n"
            "hazard: {layer: 0, value: 0.5, thickness: 2}\n",
        )
        config = SimulationConfig.from_yaml(path)
        assert config.build_grid().shape == (48, 64)
        assert config.build_grid().boundary is BoundaryPolicy.WRAP
        assert config.stages == StageToggles(run_diffuse=False)
        assert config.hazard == HazardConfig(layer=0, value=0.5, thickness=2)
        assert len(config.species) == 3

    def test_species_shorthand(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "layers:\n"
            "  - {name: trail, diffusion_rate: 0.5, decay_rate: 0.5}\n"
            "universal_love_layers: []\n"
            "universal_hate_layers: []\n"
            "species:\n"
            "  - {name: solo, move_speed: 10, weights: [1], emit_layer: 0, emit_amount: 2}\n",
        )
        config = SimulationConfig.from_yaml(path)
        (solo,) = config.species
        assert solo.emit_layers == (0,)
        assert solo.move_speed == 10.0
        assert solo.weights == (1.0,)

    def test_unknown_keys_warn(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        path = _write(tmp_path, "agent_count: 5\nwindow_title: slime\n")
        with caplog.at_level(logging.WARNING):
            SimulationConfig.from_yaml(path)
        assert "window_title" in caplog.text

    @pytest.mark.parametrize(
        "text",
        [
            "- just\n- a list\n",
            "boundary: bounce\n",
            "initial_distribution: spiral\n",
            "world_width: 0\n",
            "agent_count: -3\n",
            "agent_count: 2\nagent_species: [0, 1, 2]\n",
            "agent_count: 2\nagent_species: [0, 7]\n",
            "layers: [{name: x, diffusion_rate: 1.2, decay_rate: 0.5}]\n",
            "layers: [{name: x, diffusion_rate: 0.2}]\n",
            "species: [{name: s, weights: [1, 1, 1, 1, 1, 1]}]\n",
            "species: [{name: s, emit_layers: [9]}]\n",
            "species: [{name: s, sensor_radius: 1.5}]\n",
            "species: [{name: s, wings: 2}]\n",
            "universal_love_layers: [8]\n",
            "brush_target_layer: 5\n",
            "hazard: {layer: 9}\n",
            "hazard: {layer: 0, thickness: 1.5}\n",
            "hazard: {layer: x}\n",
            "hazard: {layer: 0, value: .nan}\n",
            "hazard: {layer: 0, thickness: 0}\n",
            "universal_love_layers: [a]\n",
            "paint_only_layers: [2.5]\n",
            "species: [{name: s, emit_layers: [2.7]}]\n",
            "stages: {run_everything: true}\n",
        ],
    )
    def test_invalid_configs_rejected(self, tmp_path: Path, text: str) -> None:
        with pytest.raises(ConfigError):
            SimulationConfig.from_yaml(_write(tmp_path, text))

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            SimulationConfig.from_yaml(tmp_path / "absent.yaml")


class TestStepPipeline:
    """Tests for the fixed per-tick stage order and its guarantees."""

    def test_construction(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        assert pipeline.tick == 0
        assert pipeline.last_stage is None
        assert len(pipeline.agents) == 60
        assert pipeline.field_view().shape == (5, 24, 32)
        assert np.all(pipeline.field_view() == 0.0)

    def test_invalid_config_rejected_before_first_tick(self) -> None:
        with pytest.raises(ConfigError):
            StepPipeline(config=SimulationConfig(world_width=10, agent_count=-1))

    def test_stage_order(self) -> None:
        assert STAGE_ORDER == (
            Stage.COPY,
            Stage.APPLY_EDITS,
            Stage.DIFFUSE_DECAY,
            Stage.AGENT_UPDATE,
            Stage.MERGE_DEPOSITS,
            Stage.SWAP_BUFFERS,
        )

    def test_out_of_order_stage_rejected(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        with pytest.raises(InvariantViolation):
            pipeline._complete(Stage.MERGE_DEPOSITS)

    def test_step_advances(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        ctx = pipeline.step(1.0 / 60.0)
        assert ctx.frame_counter == 0
        assert pipeline.tick == 1
        assert pipeline.frame_counter == 1
        assert pipeline.last_stage is Stage.SWAP_BUFFERS
        assert pipeline.pheromone_field.total_intensity() > 0.0

    def test_run(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        pipeline.run(5, 0.02)
        assert pipeline.tick == 5

    @pytest.mark.parametrize("dt", [-0.01, math.nan, math.inf])
    def test_bad_delta_time(self, tiny_config: SimulationConfig, dt: float) -> None:
        pipeline = StepPipeline(config=tiny_config)
        with pytest.raises(SimulationError):
            pipeline.step(dt)
        assert pipeline.tick == 0

    def test_zero_delta_time_changes_nothing(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        pipeline.run(3, 0.05)
        field_before = pipeline.field_view().copy()
        agents_before = pipeline.agents_view()
        pipeline.step(0.0)
        assert np.array_equal(pipeline.field_view(), field_before)
        assert np.array_equal(pipeline.agents_view().positions, agents_before.positions)

    def test_frame_counter_wraps(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        pipeline.frame_counter = 2**32 - 1
        ctx = pipeline.step(0.01)
        assert ctx.frame_counter == 2**32 - 1
        assert pipeline.frame_counter == 0

    def test_external_frame_counter(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        ctx = pipeline.step(0.01, frame_counter=2**32 + 3)
        assert ctx.frame_counter == 3
        assert pipeline.frame_counter == 4

    def test_deterministic(self, tiny_config: SimulationConfig) -> None:
        a = StepPipeline(config=tiny_config)
        b = StepPipeline(config=SimulationConfig(world_width=32, world_height=24, agent_count=60))
        for dt in (0.016, 0.03, 0.0, 0.1, 0.016):
            a.step(dt)
            b.step(dt)
        assert np.array_equal(a.field_view(), b.field_view())
        assert np.array_equal(a.agents_view().positions, b.agents_view().positions)
        assert np.array_equal(a.agents_view().headings, b.agents_view().headings)

    def test_no_agents_no_pheromone(self) -> None:
        pipeline = StepPipeline(config=SimulationConfig(world_width=16, world_height=16, agent_count=0))
        pipeline.run(10, 0.1)
        assert np.all(pipeline.field_view() == 0.0)

    @pytest.mark.parametrize("boundary", ["reflect", "wrap"])
    def test_agents_stay_in_bounds(self, boundary: str) -> None:
        config = SimulationConfig(
            world_width=20,
            world_height=12,
            boundary=boundary,
            agent_count=100,
            initial_distribution="uniform",
        )
        pipeline = StepPipeline(config=config)
        for dt in (0.016, 0.5, 2.0):
            pipeline.step(dt)
            positions = pipeline.agents_view().positions
            assert np.all((positions[:, 0] >= 0.0) & (positions[:, 0] < 20.0))
            assert np.all((positions[:, 1] >= 0.0) & (positions[:, 1] < 12.0))

    def test_intensity_bounded_by_deposits(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        dt = 0.05
        for _ in range(10):
            before = pipeline.pheromone_field.total_intensity()
            pipeline.step(dt)
            after = pipeline.pheromone_field.total_intensity()
            # every default species emits 1.0 per second into one layer
            assert after <= before + len(pipeline.agents) * dt + 1e-9

    def test_edits_are_applied_once(self) -> None:
        config = SimulationConfig(world_width=32, world_height=24, agent_count=0, brush_radius=4.0)
        pipeline = StepPipeline(config=config)
        pipeline.queue_pointer(PointerState(position=(16.0, 12.0), left_pressed=True, target_layer=2))
        pipeline.step(0.0)
        assert pipeline.pheromone_field.sample(2, 16, 12) == pytest.approx(1.0)
        pipeline.queue_edit(BrushEdit(2, (16.0, 12.0), 4.0, BrushMode.ERASE))
        pipeline.step(0.0)
        assert pipeline.pheromone_field.sample(2, 16, 12) == pytest.approx(0.0)
        assert pipeline.field_view()[[0, 1, 3, 4]].sum() == 0.0

    def test_disabled_agents(self, tiny_config: SimulationConfig) -> None:
        tiny_config.stages = StageToggles(run_agents=False)
        pipeline = StepPipeline(config=tiny_config)
        before = pipeline.agents_view().positions
        pipeline.run(3, 0.1)
        assert np.array_equal(pipeline.agents_view().positions, before)
        assert np.all(pipeline.field_view() == 0.0)
        assert pipeline.last_stage is Stage.SWAP_BUFFERS

    def test_disabled_diffusion_holds_values(self) -> None:
        config = SimulationConfig(
            world_width=16,
            world_height=16,
            agent_count=0,
            stages=StageToggles(run_diffuse=False),
        )
        pipeline = StepPipeline(config=config)
        pipeline.queue_edit(BrushEdit(3, (8.0, 8.0), 3.0))
        pipeline.step(0.1)
        held = pipeline.field_view().copy()
        pipeline.run(5, 0.5)
        assert np.array_equal(pipeline.field_view(), held)

    def test_disabled_input_drops_edits(self) -> None:
        config = SimulationConfig(
            world_width=16,
            world_height=16,
            agent_count=0,
            stages=StageToggles(run_copy_and_input=False),
        )
        pipeline = StepPipeline(config=config)
        pipeline.queue_edit(BrushEdit(3, (8.0, 8.0), 3.0))
        pipeline.step(0.0)
        assert np.all(pipeline.field_view() == 0.0)

    def test_hazard_border(self) -> None:
        config = SimulationConfig(
            world_width=16,
            world_height=12,
            agent_count=20,
            hazard=HazardConfig(layer=0, value=1.0, thickness=2),
        )
        pipeline = StepPipeline(config=config)
        pipeline.run(3, 0.1)
        hate = pipeline.field_view()[0]
        assert np.all(hate[:2, :] == 1.0)
        assert np.all(hate[:, -2:] == 1.0)
        assert np.all(hate[2:-2, 2:-2] < 1.0)

    def test_failed_tick_is_discarded(
        self,
        tiny_config: SimulationConfig,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        pipeline = StepPipeline(config=tiny_config)
        pipeline.step(0.05)
        field_before = pipeline.field_view().copy()
        slot_before = pipeline.pheromone_field.current_slot

        pipeline.agents.species[0] = 99
        with pytest.raises(InvariantViolation):
            pipeline.step(0.05)
        assert pipeline.tick == 1
        assert pipeline.last_stage is Stage.DIFFUSE_DECAY
        assert pipeline.pheromone_field.current_slot == slot_before
        assert np.array_equal(pipeline.field_view(), field_before)

        pipeline.agents.species[0] = 0
        with caplog.at_level(logging.WARNING):
            pipeline.step(0.05)
        assert "discarding partial tick" in caplog.text
        assert pipeline.tick == 2
        assert pipeline.last_stage is Stage.SWAP_BUFFERS

    def test_outputs_are_read_only(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        pipeline.step(0.05)
        view = pipeline.agents_view()
        with pytest.raises(ValueError):
            view.positions[0, 0] = 1.0
        with pytest.raises(ValueError):
            pipeline.field_view()[0, 0, 0] = 1.0

    def test_field_view_survives_later_ticks(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        pipeline.step(0.05)
        held = pipeline.field_view()
        saved = held.copy()
        pipeline.run(2, 0.05)
        assert np.array_equal(held, saved)
        assert not np.array_equal(pipeline.field_view(), saved)

    @pytest.mark.parametrize(
        "hazard",
        [
            {"layer": 0, "thickness": 1.5},
            {"layer": "x"},
            {"layer": True},
            {"layer": 0, "value": math.inf},
            {"layer": 0, "value": "high"},
        ],
    )
    def test_bad_hazard_rejected(self, hazard: dict[str, object]) -> None:
        with pytest.raises(ConfigError):
            HazardConfig(**hazard)  # type: ignore[arg-type]

    def test_composite(self, tiny_config: SimulationConfig) -> None:
        pipeline = StepPipeline(config=tiny_config)
        pipeline.run(5, 0.05)
        image = pipeline.composite(exposure=2.0)
        assert image.shape == (24, 32, 3)
        assert np.all((image >= 0.0) & (image <= 1.0))
