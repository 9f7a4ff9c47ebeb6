"""Entry point for ``python -m slimefield``.

Loads a YAML config, builds the step pipeline and runs it headless for a
fixed number of ticks, logging per-layer totals along the way.  The
final field, its RGB composite and the agent arrays can be saved to an
``.npz`` file for an external viewer.
"""

from __future__ import annotations

import argparse
import logging
import pathlib

import numpy as np

from slimefield.simulation.config import SimulationConfig
from slimefield.simulation.engine import StepPipeline
from slimefield.simulation.errors import SimulationError

_DEFAULT_CONFIG = (
    pathlib.Path(__file__).resolve().parent.parent / "config" / "default.yaml"
)

logger = logging.getLogger("slimefield")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="slimefield",
        description="slimefield - multi-species pheromone trail simulator",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=pathlib.Path,
        default=_DEFAULT_CONFIG,
        help="Path to YAML config file (default: config/default.yaml)",
    )
    parser.add_argument(
        "--ticks",
        type=int,
        default=600,
        help="Number of ticks to simulate (default: 600)",
    )
    parser.add_argument(
        "--dt",
        type=float,
        default=1.0 / 60.0,
        help="Seconds per tick (default: 1/60)",
    )
    parser.add_argument(
        "--log-every",
        type=int,
        default=60,
        help="Log field totals every N ticks (default: 60, 0 disables)",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=pathlib.Path,
        default=None,
        help="Write the final field, composite and agents to this .npz file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    return parser


def _log_totals(pipeline: StepPipeline) -> None:
    field = pipeline.field_view()
    totals = ", ".join(
        f"{layer.name}={field[i].sum():.2f}"
        for i, layer in enumerate(pipeline.pheromone_field.layers)
    )
    logger.info("tick %d: %s", pipeline.tick, totals)


def save_output(pipeline: StepPipeline, path: pathlib.Path) -> None:
    """Write the committed simulation state to a compressed ``.npz``."""
    agents = pipeline.agents_view()
    np.savez_compressed(
        path,
        field=pipeline.field_view(),
        composite=pipeline.composite(),
        positions=agents.positions,
        headings=agents.headings,
        species=agents.species,
    )
    logger.info("wrote %s", path)


def main(argv: list[str] | None = None) -> int:
    """Parse CLI args, build the pipeline and run it."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = SimulationConfig.from_yaml(args.config)
        pipeline = StepPipeline(config=config)
        for _ in range(args.ticks):
            pipeline.step(args.dt)
            if args.log_every and pipeline.tick % args.log_every == 0:
                _log_totals(pipeline)
    except SimulationError as exc:
        logger.error("%s", exc)
        return 1

    if args.output is not None:
        save_output(pipeline, args.output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
