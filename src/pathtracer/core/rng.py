"""Deterministic per-sample random numbers for Taichi kernels.

Every sample owns a private 32-bit generator state. The state is seeded by
hashing the pixel coordinates, the sample index, and a global seed, then
advanced with xorshift32. The state is threaded explicitly through every
sampling call:

    state = init_rng(i, j, sample_index, seed)
    state, u = next_float(state)

Because the seed depends only on (pixel, sample, seed), the output of a render
does not depend on how Taichi schedules pixels across its worker threads.

Right shifts are masked so that the result is the same whether the backend
lowers ``>>`` on unsigned values to a logical or an arithmetic shift.
"""

import taichi as ti
import taichi.math as tm

# 2^-24: converts the top 24 bits of a u32 into a float in [0, 1)
_INV_2_24 = 1.0 / 16777216.0


@ti.func
def wang_hash(seed: ti.u32) -> ti.u32:
    """Thomas Wang's 32-bit integer hash."""
    s = seed
    s = (s ^ ti.u32(61)) ^ ((s >> 16) & ti.u32(0xFFFF))
    s = s * ti.u32(9)
    s = s ^ ((s >> 4) & ti.u32(0x0FFFFFFF))
    s = s * ti.u32(0x27D4EB2D)
    s = s ^ ((s >> 15) & ti.u32(0x1FFFF))
    return s


@ti.func
def init_rng(pixel_x: ti.i32, pixel_y: ti.i32, sample_index: ti.i32, seed: ti.i32) -> ti.u32:
    """Seed a generator for one (pixel, sample) pair.

    Args:
        pixel_x: Pixel column.
        pixel_y: Pixel row.
        sample_index: Global index of the sample within the pixel.
        seed: Render-wide seed.

    Returns:
        A non-zero generator state.
    """
    s = wang_hash(ti.cast(seed, ti.u32))
    s = wang_hash(s ^ ti.cast(pixel_x, ti.u32))
    s = wang_hash(s ^ ti.cast(pixel_y, ti.u32))
    s = wang_hash(s ^ ti.cast(sample_index, ti.u32))
    if s == ti.u32(0):
        s = ti.u32(1)
    return s


@ti.func
def next_u32(state: ti.u32) -> ti.u32:
    """Advance an xorshift32 state by one step."""
    x = state
    x = x ^ (x << 13)
    x = x ^ ((x >> 17) & ti.u32(0x7FFF))
    x = x ^ (x << 5)
    return x


@ti.func
def next_float(state: ti.u32):
    """Draw a uniform float in [0, 1).

    Returns:
        Tuple of (new_state, value).
    """
    new_state = next_u32(state)
    value = ti.cast((new_state >> 8) & ti.u32(0xFFFFFF), ti.f32) * _INV_2_24
    return new_state, value


@ti.func
def next_vec2(state: ti.u32):
    """Draw two uniform floats in [0, 1).

    Returns:
        Tuple of (new_state, vec2).
    """
    s, u1 = next_float(state)
    s, u2 = next_float(s)
    return s, tm.vec2(u1, u2)
