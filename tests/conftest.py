"""Shared fixtures for the slimefield test suite."""

from __future__ import annotations

import numpy as np
import pytest
from numpy.random import Generator

from slimefield.agents.species import Species, SpeciesTable
from slimefield.pheromones.fields import PheromoneField, PheromoneLayer
from slimefield.simulation.config import SimulationConfig
from slimefield.world.grid import Grid


@pytest.fixture
def rng() -> Generator:
    """A deterministic random generator for reproducible tests."""
    return np.random.default_rng(seed=12345)


@pytest.fixture
def small_grid() -> Grid:
    """A small 8x8 reflecting grid for fast tests."""
    return Grid(width=8, height=8)


@pytest.fixture
def arena() -> Grid:
    """A 100x100 reflecting grid, large enough for sensor geometry."""
    return Grid(width=100, height=100)


@pytest.fixture
def small_field(small_grid: Grid) -> PheromoneField:
    """An 8x8 field with two layers."""
    return PheromoneField(
        grid=small_grid,
        layers=[
            PheromoneLayer("a", diffusion_rate=0.5, decay_rate=0.3),
            PheromoneLayer("b", diffusion_rate=0.0, decay_rate=0.0),
        ],
    )


@pytest.fixture
def tracker() -> Species:
    """A stationary single-layer follower with point sensors."""
    return Species(
        "tracker",
        move_speed=0.0,
        turn_speed=1.0,
        sensor_angle_degrees=45.0,
        sensor_offset=10.0,
        sensor_radius=0,
        weights=(1.0,),
    )


@pytest.fixture
def tracker_table(tracker: Species) -> SpeciesTable:
    """A one-species, one-layer table."""
    return SpeciesTable(species=[tracker], layer_count=1)


@pytest.fixture
def tiny_config() -> SimulationConfig:
    """A small, fast configuration using the default layers and species."""
    return SimulationConfig(world_width=32, world_height=24, agent_count=60)
