"""Numerical helpers for waveform analysis.

Index searches over sampled waveforms, Simpson integration with
non-uniform spacing, small least-squares polynomial fits and a
Whittaker-Shannon (sinc) interpolation.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

_PI = 3.14159265358


def _step(direction: int) -> int:
    if direction not in (1, -1):
        raise ValueError(f"direction must be +1 or -1, got {direction!r}")
    return direction


def _end_index(i_start: int, direction: int, n_samples: int) -> int:
    step = _step(direction)
    idx_end = n_samples - 1 if step > 0 else 0
    if (step > 0 and i_start > idx_end) or (step < 0 and i_start < 0):
        raise ValueError(
            f"start index {i_start} lies beyond the search end {idx_end}"
        )
    return idx_end


def _at(v: Sequence[float], i: int) -> float:
    if not 0 <= i < len(v):
        raise IndexError(f"index {i} out of range for length {len(v)}")
    return v[i]


def pulse_integral(
    a: Sequence[float], t: Sequence[float], i_start: int, i_stop: int
) -> float:
    """Negated Simpson integral of ``a`` over ``t`` from ``i_start`` towards ``i_stop``.

    Uses Simpson's rule with the Cartwright correction for unequal spacing,
    stepping two samples at a time while the index is below ``i_stop - 2``.
    """
    integral = 0.0
    for i in range(i_start, i_stop - 2, 2):
        t0, t1, t2 = _at(t, i), _at(t, i + 1), _at(t, i + 2)
        h0 = t1 - t0
        h1 = t2 - t1
        span = t2 - t0
        term = (2 - h1 / h0) * _at(a, i)
        term += span * span / (h1 * h0) * _at(a, i + 1)
        term += (2 - h0 / h1) * _at(a, i + 2)
        integral += (span / 6.0) * term
    return -integral


def idx_closest(
    value: float,
    v: Sequence[float],
    i_start: int,
    direction: int = 1,
    n_samples: int | None = None,
) -> int:
    """Index of the sample closest to ``value``, searching from ``i_start``.

    The search runs towards the last sample (``direction`` = +1) or the first
    one (``direction`` = -1). On ties the sample met first wins.
    """
    n = len(v) if n_samples is None else n_samples
    idx_end = _end_index(i_start, direction, n)
    i = i_start
    i_min = i_start
    min_distance = abs(value - _at(v, i))
    while i != idx_end:
        i += direction
        d = abs(value - _at(v, i))
        if d < min_distance:
            min_distance = d
            i_min = i
    return i_min


def idx_first_cross(
    value: float,
    v: Sequence[float],
    i_start: int,
    direction: int = 1,
    n_samples: int | None = None,
) -> int:
    """Index of the first sample that crosses ``value``, searching from ``i_start``.

    If ``value`` is above the start sample the first sample strictly above it
    is returned, otherwise the first sample strictly below it. When no sample
    crosses, the end of the search range is returned.
    """
    n = len(v) if n_samples is None else n_samples
    idx_end = _end_index(i_start, direction, n)
    rising = value > _at(v, i_start)
    i = i_start
    while i != idx_end:
        sample = _at(v, i)
        if rising and sample > value:
            break
        if not rising and sample < value:
            break
        i += direction
    return i


def polynomial_fit(x: Sequence[float], y: Sequence[float], deg: int) -> list[float]:
    """Least-squares polynomial coefficients, lowest order first.

    Solves the normal equations with a Cholesky decomposition. When the
    system is not positive definite all coefficients are zero.
    """
    if deg <= 0 or deg > 3:
        raise ValueError(f"polynomial degree must be 1, 2 or 3, got {deg}")
    if len(x) != len(y):
        raise ValueError("x and y must have the same length")
    if len(x) < deg + 1:
        raise ValueError("Not enough points for requested polynomial degree")

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    design = np.vander(xs, deg + 1, increasing=True)
    normal = design.T @ design
    rhs = design.T @ ys

    zeros = [0.0] * (deg + 1)
    if not np.all(np.isfinite(normal)) or not np.all(np.isfinite(rhs)):
        return zeros
    try:
        lower = np.linalg.cholesky(normal)
    except np.linalg.LinAlgError:
        return zeros
    pivots = np.diag(lower) ** 2
    scale = float(np.max(np.abs(np.diag(normal)))) or 1.0
    if np.any(pivots <= np.finfo(float).eps * scale):
        return zeros
    partial = np.linalg.solve(lower, rhs)
    coeffs = np.linalg.solve(lower.T, partial)
    return [float(c) for c in coeffs]


def poly_eval(x: float, coeff: Sequence[float], deg: int) -> float:
    """Evaluate the polynomial ``coeff`` (lowest order first) of degree ``deg`` at ``x``."""
    out = coeff[0] + x * coeff[1]
    for i in range(2, deg + 1):
        out += coeff[i] * x**i
    return out


def ws_interp(t: float, n: int, tn: Sequence[float], cn: Sequence[float]) -> float:
    """Whittaker-Shannon interpolation of the first ``n`` samples at time ``t``.

    The result is NaN when ``t`` coincides with one of the sample times.
    """
    if n <= 0:
        raise ValueError("at least one sample is needed")
    if len(tn) < n or len(cn) < n:
        raise IndexError(f"fewer than {n} samples given")
    dt = (tn[0] - tn[n - 1]) / n
    out = 0.0
    for tk, ck in zip(tn[:n], cn[:n]):
        x = (t - tk) / dt if dt else math.copysign(math.inf, t - tk) if t != tk else math.nan
        arg = _PI * x
        if arg == 0 or math.isnan(arg):
            out += math.nan
        elif math.isinf(arg):
            out += 0.0
        else:
            out += ck * math.sin(arg) / arg
    return out