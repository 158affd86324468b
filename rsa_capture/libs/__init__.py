"""
@file libs/__init__.py
"""

from .rsa_handler import (
    RSAHandler, spectrum_trace,
    RSALibError, RSALibClosedError, RSALibValidationError,
    ReturnStatus, TraceType, VerticalUnitType, IQSOutDest, IQSOutDType,
    DpxSettings, DpxFrameBuffer, IQStreamFileInfo,
    IQSSDFN_SUFFIX_NONE, IQSSDFN_SUFFIX_TIMESTAMP,
)

__all__ = ["RSAHandler", "spectrum_trace",
           "RSALibError", "RSALibClosedError", "RSALibValidationError",
           "ReturnStatus", "TraceType", "VerticalUnitType", "IQSOutDest", "IQSOutDType",
           "DpxSettings", "DpxFrameBuffer", "IQStreamFileInfo",
           "IQSSDFN_SUFFIX_NONE", "IQSSDFN_SUFFIX_TIMESTAMP"]
