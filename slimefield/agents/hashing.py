"""Stateless per-agent pseudorandom numbers.

Steering noise must be reproducible from the inputs of a tick alone, so
instead of drawing from a mutable RNG stream each agent hashes the bit
patterns of its own position together with the frame counter.  Two runs
fed identical states and ``(dt, frame)`` sequences therefore produce
identical trajectories, whatever order agents are processed in.

The mixer is a 32-bit xor/multiply/xorshift avalanche (the same family
as the "hash without sine" functions commonly used in shaders).
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

_SEED_XOR = np.uint32(2747636419)
_MIX_MUL = np.uint32(2654435769)
_SHIFT = np.uint32(16)
_Y_SALT = np.uint32(0x9E3779B9)

FRAME_MASK = 0xFFFFFFFF


def mix32(state: NDArray[np.uint32]) -> NDArray[np.uint32]:
    """Avalanche a uint32 array; every input bit affects every output bit.

    Arithmetic wraps modulo 2**32.

    Args:
        state: Array of uint32 values (at least 1-D).

    Returns:
        New array of mixed uint32 values.
    """
    state = np.atleast_1d(np.asarray(state, dtype=np.uint32))
    state = state ^ _SEED_XOR
    state = state * _MIX_MUL
    state = state ^ (state >> _SHIFT)
    state = state * _MIX_MUL
    state = state ^ (state >> _SHIFT)
    state = state * _MIX_MUL
    return state


def float_bits(values: NDArray[np.float64]) -> NDArray[np.uint32]:
    """Return the IEEE-754 single-precision bit patterns of ``values``."""
    return np.ascontiguousarray(values, dtype=np.float32).view(np.uint32)


def to_unit_float(state: NDArray[np.uint32]) -> NDArray[np.float64]:
    """Map uint32 hashes to floats in ``[0, 1)`` using their top 24 bits."""
    return (state >> np.uint32(8)).astype(np.float64) / float(1 << 24)


def agent_random(positions: NDArray[np.float64], frame_counter: int) -> NDArray[np.float64]:
    """Derive one pseudorandom scalar in ``[0, 1)`` per agent.

    The value is a pure function of ``(bits(x), bits(y), frame_counter)``.
    The frame counter is reduced modulo 2**32 first, so it may wrap
    freely.

    Args:
        positions: ``(N, 2)`` agent positions.
        frame_counter: Current frame number.

    Returns:
        ``(N,)`` array of floats in ``[0, 1)``.
    """
    xs = float_bits(positions[:, 0])
    ys = float_bits(positions[:, 1])
    frame = np.full(xs.shape, frame_counter & FRAME_MASK, dtype=np.uint32)
    state = mix32(xs ^ mix32((ys ^ _Y_SALT) ^ mix32(frame)))
    return to_unit_float(state)
