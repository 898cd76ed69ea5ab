"""Fixed-point Mandelbrot engine.

All arithmetic is on integers. Plane coordinates and iterates are Q14
fixed-point values (1.0 == 1 << 14); squares and cross products carry
twice the fractional bits and are shifted back after each step.
"""
import logging

import numpy as np

logger = logging.getLogger(__name__)

# Shift for zr*zr - zi*zi (Q28 -> Q14)
FRACTION_BITS = 14
# Shift for zi*zr; one bit less folds in the factor 2 of 2*zr*zi
CROSS_TERM_BITS = 13
# |z|^2 > 4.0 in Q14
ESCAPE_LIMIT = 4 << 14
# Largest |cr| or |ci| the int64 grid path accepts; keeps zr*zr + zi*zi below 2**63
MAX_COORDINATE = 1 << 30

MAX_INTENSITY = 15


def plane_coordinate(scale, x, y, offset_r, offset_i):
    return scale * x + offset_r, scale * y + offset_i


def iterate(c_real, c_imag, max_iterations, detect_fixed_point=False):
    """
    Run z -> z^2 + c from z = 0 and return the iteration index at which
    the orbit escaped, stagnated, or ran out of budget.

    Escape is judged on the magnitude of the iterate *before* the update,
    so an escaping orbit stops one step earlier than the textbook loop.
    With detect_fixed_point, an update that leaves zr or zi unchanged ends
    the run at n + 1.
    """
    zr = 0
    zi = 0
    n = 0
    while n < max_iterations - 1:
        m1 = zr * zr
        m2 = zi * zi
        m3 = zi * zr

        t_zr = ((m1 - m2) >> FRACTION_BITS) + c_real
        t_zi = (m3 >> CROSS_TERM_BITS) + c_imag

        if (m1 + m2) >> FRACTION_BITS > ESCAPE_LIMIT:
            return n

        if detect_fixed_point and (t_zr == zr or t_zi == zi):
            return n + 1

        zr = t_zr
        zi = t_zi
        n += 1
    return n


def bit_length(n):
    """Number of significant bits in n; bit_length(0) == 0."""
    if n < 0:
        raise ValueError(f"bit_length is undefined for negative values: {n}")
    return int(n).bit_length()


def bit_lengths(values):
    """Element-wise bit_length of a non-negative int64 array."""
    lengths = np.zeros_like(values)
    rest = values.copy()
    while np.any(rest):
        lengths += rest > 0
        rest >>= 1
    return lengths


def map_intensity(n, divisor):
    """
    Map an iteration count to a 4-bit intensity.

    divisor == 0 selects the logarithmic policy (bit length of n),
    divisor > 0 the linear one (n // divisor). Both saturate at 15.
    """
    if divisor < 0:
        raise ValueError(f"divisor must be >= 0, got {divisor}")
    if n < 0:
        raise ValueError(f"iteration count must be >= 0, got {n}")
    if divisor == 0:
        value = bit_length(n)
    else:
        value = n // divisor
    if value > MAX_INTENSITY:
        value = MAX_INTENSITY
    return value


def compute_iterations(width, height, scale, offset_r, offset_i, max_iterations,
                       detect_fixed_point=False, progress=None):
    """
    Iteration counts for a height x width grid of pixels.

    Same recurrence as iterate(), applied to every pixel at once on int64
    arrays. Pixels that escape (or stagnate) drop out of the working set.
    progress, if given, is called with an integer percentage.

    Raises ValueError when a plane coordinate in the window lies outside
    +/- MAX_COORDINATE, where the int64 squares could wrap.
    """
    corners = (offset_r, offset_r + scale * (width - 1),
               offset_i, offset_i + scale * (height - 1))
    reach = max(abs(v) for v in corners)
    if reach > MAX_COORDINATE:
        raise ValueError(f"plane coordinates reach {reach}, beyond the "
                         f"fixed-point range of +/-{MAX_COORDINATE}")

    x = np.arange(width, dtype=np.int64) * scale + offset_r
    y = np.arange(height, dtype=np.int64) * scale + offset_i
    CR, CI = np.meshgrid(x, y)
    cr = CR.ravel()
    ci = CI.ravel()

    limit = max(max_iterations - 1, 0)
    counts = np.full(cr.size, limit, dtype=np.int64)
    active = np.arange(cr.size)
    zr = np.zeros(cr.size, dtype=np.int64)
    zi = np.zeros(cr.size, dtype=np.int64)

    last_percent = -1
    for n in range(limit):
        m1 = zr * zr
        m2 = zi * zi
        m3 = zi * zr

        t_zr = ((m1 - m2) >> FRACTION_BITS) + cr
        t_zi = (m3 >> CROSS_TERM_BITS) + ci

        done = ((m1 + m2) >> FRACTION_BITS) > ESCAPE_LIMIT
        counts[active[done]] = n
        if detect_fixed_point:
            stalled = ~done & ((t_zr == zr) | (t_zi == zi))
            counts[active[stalled]] = n + 1
            done |= stalled

        keep = ~done
        active = active[keep]
        zr = t_zr[keep]
        zi = t_zi[keep]
        cr = cr[keep]
        ci = ci[keep]

        if progress is not None:
            percent = (n + 1) * 100 // limit
            if percent != last_percent:
                progress(percent)
                last_percent = percent

        if active.size == 0:
            logger.debug("all pixels settled after %d iterations", n + 1)
            break

    if progress is not None and last_percent != 100:
        progress(100)

    return counts.reshape(height, width)


def map_intensities(counts, divisor):
    """Vectorized map_intensity; returns uint8 values in [0, 15]."""
    if divisor < 0:
        raise ValueError(f"divisor must be >= 0, got {divisor}")
    counts = np.asarray(counts, dtype=np.int64)
    if np.any(counts < 0):
        raise ValueError("iteration counts must be >= 0")

    if divisor == 0:
        values = bit_lengths(counts)
    else:
        values = counts // divisor

    return np.minimum(values, MAX_INTENSITY).astype(np.uint8)
