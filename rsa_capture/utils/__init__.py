"""
@file utils/__init__.py
@brief Expose I/O and DSP utilities at package level.
"""

from .io_util import atomic_write_bytes, DpxCsvWriter, ElapsedTimer
from .dsp_util import linspace_freqs, resample_linear, power_to_dbm, DBM_FLOOR

__all__ = ["atomic_write_bytes", "DpxCsvWriter", "ElapsedTimer",
           "linspace_freqs", "resample_linear", "power_to_dbm", "DBM_FLOOR"]
