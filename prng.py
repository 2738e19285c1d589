"""Deterministic integer hashing for per-cell stochastic decisions.

Everything here is a pure function of its inputs (no key threading like
`jax.random`): the same (cell, tick, channel) always yields the same value,
which is what makes the stochastic rounding in particles.py replayable.
"""

from __future__ import annotations

import jax.numpy as jnp

Array = jnp.ndarray

_U32_MASK = 0xFFFFFFFF

_MUL1 = 0xED5AD4BB
_MUL2 = 0xAC4C1B51
_MUL3 = 0x31848BAB

# u32::MAX rounded to float32 (== 2**32).
_U32_MAX_F32 = jnp.float32(4294967295.0)


def hash_u32(x: Array) -> Array:
    """xorshift-multiply avalanche mixer on wrapping uint32."""
    x = jnp.asarray(x).astype(jnp.uint32)
    x = x ^ (x >> 17)
    x = x * jnp.uint32(_MUL1)
    x = x ^ (x >> 11)
    x = x * jnp.uint32(_MUL2)
    x = x ^ (x >> 15)
    x = x * jnp.uint32(_MUL3)
    x = x ^ (x >> 14)
    return x


def rand(x: Array, y: Array, tick, channel: int, grid_size: int) -> Array:
    """hash(tick + x*G + y*G^2 + channel*G^3), all wrapping mod 2**32."""
    g = int(grid_size)
    gx = jnp.uint32(g & _U32_MASK)
    gy = jnp.uint32((g * g) & _U32_MASK)
    gc = jnp.uint32((int(channel) * g * g * g) & _U32_MASK)
    t = jnp.asarray(tick).astype(jnp.uint32)
    xu = jnp.asarray(x).astype(jnp.uint32)
    yu = jnp.asarray(y).astype(jnp.uint32)
    return hash_u32(t + xu * gx + yu * gy + gc)


def rand_f32(x: Array, y: Array, tick, channel: int, grid_size: int) -> Array:
    return rand(x, y, tick, channel, grid_size).astype(jnp.float32) / _U32_MAX_F32
