"""
@file rsa_capture/__init__.py
@brief Command-line capture tools for Tektronix RSA spectrum analyzers (DPX to CSV, IQ streaming to TIQ).
"""

__version__ = "0.1.0"
