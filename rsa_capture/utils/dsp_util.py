#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""!
@file dsp_util.py
@brief Numeric helpers for DPX traces: frequency axis, linear resampling and W to dBm.
"""
from __future__ import annotations

from typing import Union

import numpy as np

#: Level reported for non-positive powers (log10 is undefined there)
DBM_FLOOR = -300.0

ArrayLike = Union[np.ndarray, list, tuple]


def linspace_freqs(center_freq_hz: float, bandwidth_hz: float, num_points: int) -> np.ndarray:
    """Evenly spaced frequencies covering center +/- bandwidth/2.

    A single point returns the start frequency.
    """
    start = center_freq_hz - bandwidth_hz / 2.0
    stop = center_freq_hz + bandwidth_hz / 2.0
    if num_points <= 0:
        return np.zeros(0, dtype=np.float64)
    if num_points == 1:
        return np.array([start], dtype=np.float64)
    return np.linspace(start, stop, num_points)


def resample_linear(src: ArrayLike, target_len: int) -> np.ndarray:
    """
    Resample `src` to `target_len` points by linear interpolation.

    Target index i maps to pos = i * (N-1) / (M-1) in source-index space and
    takes the weighted mean of the two bracketing samples.

    - M == 1 returns the first sample.
    - M == N returns a copy.
    - An empty source yields M zeros.
    """
    data = np.asarray(src, dtype=np.float64).ravel()
    n = data.size

    if target_len <= 0:
        return np.zeros(0, dtype=np.float64)
    if n == 0:
        return np.zeros(target_len, dtype=np.float64)
    if n == target_len:
        return data.copy()
    if target_len == 1:
        return data[:1].copy()

    pos = np.arange(target_len, dtype=np.float64) * (n - 1) / (target_len - 1)
    i0 = np.floor(pos).astype(np.int64)
    i1 = np.minimum(i0 + 1, n - 1)
    frac = pos - i0
    return (1.0 - frac) * data[i0] + frac * data[i1]


def power_to_dbm(watts: Union[float, ArrayLike]) -> Union[float, np.ndarray]:
    """
    Linear power in watts to dBm: 10*log10(W * 1000).

    Non-positive (and NaN) inputs are clamped to DBM_FLOOR. Scalars in,
    scalar out; arrays in, float64 array out.
    """
    arr = np.asarray(watts, dtype=np.float64)
    out = np.full(arr.shape, DBM_FLOOR, dtype=np.float64)
    positive = arr > 0
    out[positive] = 10.0 * np.log10(arr[positive] * 1e3)

    if arr.ndim == 0:
        return float(out)
    return out
