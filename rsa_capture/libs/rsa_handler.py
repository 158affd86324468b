"""
@file libs/rsa_handler.py
@brief ctypes binding for the Tektronix RSA API shared library (libRSA_API.so).

Methods keep the vendor function names. Each one returns the vendor
ReturnStatus first, followed by any out-parameters, so callers decide
which statuses are fatal. Non-noError statuses are logged here.
"""

from __future__ import annotations
import ctypes
from ctypes import (
    POINTER, Structure, byref, c_bool, c_char, c_double, c_float, c_int,
    c_int16, c_int32, c_int64, c_uint8, c_uint32, c_uint64, c_wchar_p,
)
from enum import Enum, IntEnum
from pathlib import Path
from typing import List, Tuple, Union
import logging

import numpy as np

log = logging.getLogger(__name__)

RSA_LIB_NAME = "libRSA_API.so"
USB_LIB_NAME = "libcyusb_shared.so"

_RTLD_LAZY = 0x0001
_LAZY_LOAD = _RTLD_LAZY | ctypes.RTLD_GLOBAL

# DEVICE_Search array sizes, from RSA_API.h
DEVSRCH_MAX_NUM_DEVICES = 20
DEVSRCH_SERIAL_MAX_STRLEN = 100
DEVSRCH_TYPE_MAX_STRLEN = 20

# Filename suffix controls for IQSTREAM_SetDiskFilenameSuffix
IQSSDFN_SUFFIX_TIMESTAMP = -1
IQSSDFN_SUFFIX_NONE = -2


# ---- Exceptions ----
class RSALibError(Exception):
    """Base exception for RSA wrapper errors."""
    pass


class RSALibClosedError(RSALibError):
    """Raised when operations are attempted on a closed wrapper."""
    pass


class RSALibValidationError(RSALibError):
    """Raised for invalid arguments (type/range/etc)."""
    pass


# ---- Vendor enumerations ----
class ReturnStatus(Enum):
    noError = 0

    # Connection
    errorNotConnected = 101
    errorIncompatibleFirmware = 102
    errorBootLoaderNotRunning = 103
    errorTooManyBootLoadersConnected = 104
    errorRebootFailure = 105
    errorGNSSNotInstalled = 106
    errorGNSSNotEnabled = 107

    # POST
    errorPOSTFailureFPGALoad = 201
    errorPOSTFailureHiPower = 202
    errorPOSTFailureI2C = 203
    errorPOSTFailureGPIF = 204
    errorPOSTFailureUsbSpeed = 205
    errorPOSTDiagFailure = 206
    errorPOSTFailure3P3VSense = 207
    errorPOSTLinkFailure = 208

    # General Msmt
    errorBufferAllocFailed = 301
    errorParameter = 302
    errorDataNotReady = 303

    # Spectrum
    errorParameterTraceLength = 1101
    errorMeasurementNotEnabled = 1102
    errorSpanIsLessThanRBW = 1103
    errorFrequencyOutOfRange = 1104

    # IF streaming
    errorStreamADCToDiskFileOpen = 1201
    errorStreamADCToDiskAlreadyStreaming = 1202
    errorStreamADCToDiskBadPath = 1203
    errorStreamADCToDiskThreadFailure = 1204
    errorStreamedFileInvalidHeader = 1205
    errorStreamedFileOpenFailure = 1206
    errorStreamingOperationNotSupported = 1207
    errorStreamingFastForwardTimeInvalid = 1208
    errorStreamingInvalidParameters = 1209
    errorStreamingEOF = 1210
    errorStreamingIfReadTimeout = 1211
    errorStreamingIfNotEnabled = 1212

    # IQ streaming
    errorIQStreamInvalidFileDataType = 1301
    errorIQStreamFileOpenFailed = 1302
    errorIQStreamBandwidthOutOfRange = 1303
    errorIQStreamingNotEnabled = 1304

    # Internal
    errorTimeout = 3001
    errorTransfer = 3002
    errorFileOpen = 3003
    errorFailed = 3004
    errorCRC = 3005
    errorChangeToFlashMode = 3006
    errorChangeToRunMode = 3007
    errorDSPLError = 3008
    errorLOLockFailure = 3009
    errorExternalReferenceNotEnabled = 3010
    errorLogFailure = 3011
    errorRegisterIO = 3012
    errorFileRead = 3013
    errorConsumerNotActive = 3014
    errorOperationNotSupportedInSimMode = 3015
    errorDisconnectedIOFinishTransfer = 3016

    errorDisconnectedDeviceRemoved = 3101
    errorDisconnectedDeviceNodeChangedAndRemoved = 3102
    errorDisconnectedTimeoutWaitingForADcData = 3103
    errorDisconnectedIOBeginTransfer = 3104

    # Acq status
    errorADCOverrange = 9000
    errorOscUnlock = 9001

    errorNotSupported = 9901

    errorPlaceholder = 9999
    notImplemented = -1

    @classmethod
    def from_code(cls, code) -> "ReturnStatus":
        """Map a raw return code; codes missing from the table become errorPlaceholder."""
        try:
            return cls(int(code))
        except (TypeError, ValueError):
            log.warning(f"[RSA] Unknown return code: {code!r}")
            return cls.errorPlaceholder


class TraceType(IntEnum):
    TraceTypeAverage = 0
    TraceTypeMax = 1
    TraceTypeMaxHold = 2
    TraceTypeMin = 3
    TraceTypeMinHold = 4


class VerticalUnitType(IntEnum):
    VerticalUnit_dBm = 0
    VerticalUnit_Watt = 1
    VerticalUnit_Volt = 2
    VerticalUnit_Amp = 3
    VerticalUnit_dBmV = 4


class IQSOutDest(IntEnum):
    IQSOD_CLIENT = 0
    IQSOD_FILE_TIQ = 1
    IQSOD_FILE_SIQ = 2
    IQSOD_FILE_SIQ_SPLIT = 3


class IQSOutDType(IntEnum):
    IQSODT_SINGLE = 0
    IQSODT_INT32 = 1
    IQSODT_INT16 = 2
    IQSODT_SINGLE_SCALE_INT32 = 3


# ---- Vendor structures ----
class DpxSettings(Structure):  # "DPX_SettingsStruct" in RSA_API.h
    _fields_ = [
        ("enableSpectrum", c_bool),
        ("enableSpectrogram", c_bool),
        ("bitmapWidth", c_int32),
        ("bitmapHeight", c_int32),
        ("traceLength", c_int32),
        ("decayFactor", c_float),
        ("actualRBW", c_double),
    ]


class DpxFrameBuffer(Structure):  # "DPX_FrameBuffer" in RSA_API.h
    _fields_ = [
        ("fftPerSecond", c_int32),
        ("frameCount", c_int64),
        ("timestamp", c_uint64),
        ("acqDataStatus", c_uint32),
        ("minSigDuration", c_double),
        ("minSigDurOutOfRange", c_bool),
        ("spectrumBitmapWidth", c_int32),
        ("spectrumBitmapHeight", c_int32),
        ("spectrumBitmapSize", c_int32),
        ("spectrumTraceLength", c_int32),
        ("numSpectrumTraces", c_int32),
        ("spectrumEnabled", c_bool),
        ("spectrogramEnabled", c_bool),
        ("spectrumBitmap", POINTER(c_float)),
        ("spectrumTraces", POINTER(POINTER(c_float))),
        ("sogramBitmapWidth", c_int32),
        ("sogramBitmapHeight", c_int32),
        ("sogramBitmapSize", c_int32),
        ("sogramBitmapNumValidLines", c_int32),
        ("sogramBitmap", POINTER(c_uint8)),
        ("sogramBitmapTimestampArray", POINTER(c_double)),
        ("sogramBitmapContainTriggerArray", POINTER(c_int16)),
    ]


class IQStreamFileInfo(Structure):  # "IQSTRMFILEINFO" in RSA_API.h
    _fields_ = [
        ("numberSamples", c_uint64),
        ("sample0Timestamp", c_uint64),
        ("triggerSampleIndex", c_uint64),
        ("triggerTimestamp", c_uint64),
        ("acqStatus", c_uint32),
        ("filenames", POINTER(c_wchar_p)),
    ]


# Symbols resolved at load time; all of them return a ReturnStatus code
_REQUIRED_SYMBOLS = (
    "DEVICE_Search", "DEVICE_Reset", "DEVICE_Connect", "DEVICE_Disconnect",
    "DEVICE_Run", "DEVICE_Stop",
    "CONFIG_SetCenterFreq", "CONFIG_SetReferenceLevel",
    "CONFIG_SetAutoAttenuationEnable", "CONFIG_SetRFPreampEnable", "CONFIG_SetRFAttenuator",
    "DPX_GetRBWRange", "DPX_Reset", "DPX_SetParameters", "DPX_Configure",
    "DPX_SetSpectrumTraceType", "DPX_GetSettings", "DPX_SetEnable",
    "DPX_WaitForDataReady", "DPX_IsFrameBufferAvailable", "DPX_GetFrameBuffer",
    "DPX_GetFrameInfo", "DPX_FinishFrameBuffer",
    "IQSTREAM_SetAcqBandwidth", "IQSTREAM_GetAcqParameters",
    "IQSTREAM_SetOutputConfiguration", "IQSTREAM_SetDiskFileLength",
    "IQSTREAM_SetDiskFilenameBaseW", "IQSTREAM_SetDiskFilenameSuffix",
    "IQSTREAM_ClearAcqStatus", "IQSTREAM_Start", "IQSTREAM_Stop",
    "IQSTREAM_GetDiskFileWriteStatus", "IQSTREAM_GetDiskFileInfo",
)


def spectrum_trace(fb: DpxFrameBuffer, index: int) -> np.ndarray:
    """
    Copy spectrum trace `index` out of a frame buffer.

    spectrumTraces is a pointer to pointers, so each trace has to be
    dereferenced with its explicit length. The copy stays valid after
    DPX_FinishFrameBuffer releases the vendor memory.
    """
    length = int(fb.spectrumTraceLength)
    if not 0 <= index < int(fb.numSpectrumTraces):
        raise RSALibValidationError(f"trace index {index} outside 0..{fb.numSpectrumTraces - 1}")
    if length <= 0:
        return np.zeros(0, dtype=np.float32)
    return np.ctypeslib.as_array(fb.spectrumTraces[index], shape=(length,)).copy()


# ---- Main Wrapper ----
class RSAHandler:
    VALID_TRACE_RANGE = range(0, 3)

    def __init__(self, lib_dir: Union[str, Path], verbose: bool = False) -> None:
        if lib_dir is None or str(lib_dir).strip() == "":
            log.error("[RSA] lib_dir must be provided and non-empty.")
            raise RSALibValidationError("lib_dir must be provided and non-empty")

        self.verbose = verbose
        lib_dir = Path(lib_dir).resolve(strict=False)
        lib_path = lib_dir / RSA_LIB_NAME
        usb_path = lib_dir / USB_LIB_NAME

        if not lib_path.exists():
            log.error(f"[RSA] Shared library not found: {lib_path}")
            raise RSALibError(f"Shared library not found: {lib_path}")

        if not lib_path.is_file():
            log.error(f"[RSA] Path exists but is not a file: {lib_path}")
            raise RSALibError(f"Shared library path is not a file: {lib_path}")

        self._lib_path = lib_path
        self._closed = False
        if self.verbose:
            log.debug(f"[RSA] Loading RSA API shared library: {self._lib_path}")

        # --- Load libraries (USB driver first, the API resolves symbols from it) ---
        try:
            self._usb = ctypes.CDLL(str(usb_path), _LAZY_LOAD) if usb_path.is_file() else None
            self._lib = ctypes.CDLL(str(self._lib_path), _LAZY_LOAD)
        except OSError as e:
            log.error(f"[RSA] Failed to load shared library: {e}")
            raise RSALibError(f"Failed to load shared library: {e}") from e

        # --- Validate symbols ---
        missing = []
        for func in _REQUIRED_SYMBOLS:
            if not hasattr(self._lib, func):
                missing.append(func)
                continue
            getattr(self._lib, func).restype = c_int

        if missing:
            log.error(f"[RSA] Missing symbols: {', '.join(missing)}")
            raise RSALibError(f"Shared library missing symbols: {', '.join(missing)}")
        if self.verbose:
            log.debug(f"[RSA] Library loaded successfully from {self._lib_path}")

    # ---- Lifecycle ----
    def close(self) -> None:
        if self._closed:
            return
        del self._lib
        self._usb = None
        self._closed = True
        if self.verbose:
            log.debug("[RSA] Handler closed.")

    def _ensure_open(self) -> None:
        if self._closed:
            log.error("[RSA] Operation attempted on closed handler.")
            raise RSALibClosedError("RSAHandler is closed")

    def _call(self, func: str, *args) -> ReturnStatus:
        self._ensure_open()
        try:
            raw = getattr(self._lib, func)(*args)
        except Exception as e:
            log.error(f"[RSA] {func}() failed: {e}")
            raise RSALibError(f"{func} failed: {e}") from e

        rs = ReturnStatus.from_code(raw)
        if rs is not ReturnStatus.noError:
            log.warning(f"[RSA] {func} returned {rs.name}")
        elif self.verbose:
            log.debug(f"[RSA] {func} ok")
        return rs

    @staticmethod
    def _check_int(name: str, value) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise RSALibValidationError(f"{name} must be int, got {type(value).__name__}")
        return int(value)

    @staticmethod
    def _check_num(name: str, value) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
            raise RSALibValidationError(f"{name} must be a number, got {type(value).__name__}")
        return float(value)

    # ---- DEVICE ----
    def DEVICE_Search(self) -> Tuple[ReturnStatus, List[int], List[str], List[str]]:
        """Returns (status, device ids, serial numbers, device types)."""
        num_found = c_int(0)
        dev_ids = (c_int * DEVSRCH_MAX_NUM_DEVICES)()
        dev_serial = ((c_char * DEVSRCH_SERIAL_MAX_STRLEN) * DEVSRCH_MAX_NUM_DEVICES)()
        dev_type = ((c_char * DEVSRCH_TYPE_MAX_STRLEN) * DEVSRCH_MAX_NUM_DEVICES)()

        rs = self._call("DEVICE_Search", byref(num_found), dev_ids, dev_serial, dev_type)

        count = max(0, min(num_found.value, DEVSRCH_MAX_NUM_DEVICES))
        ids = [int(dev_ids[i]) for i in range(count)]
        serials = [dev_serial[i].value.decode("utf-8", errors="ignore") for i in range(count)]
        types = [dev_type[i].value.decode("utf-8", errors="ignore") for i in range(count)]
        return rs, ids, serials, types

    def DEVICE_Reset(self, device_id: int) -> ReturnStatus:
        return self._call("DEVICE_Reset", c_int(self._check_int("device_id", device_id)))

    def DEVICE_Connect(self, device_id: int) -> ReturnStatus:
        return self._call("DEVICE_Connect", c_int(self._check_int("device_id", device_id)))

    def DEVICE_Disconnect(self) -> ReturnStatus:
        return self._call("DEVICE_Disconnect")

    def DEVICE_Run(self) -> ReturnStatus:
        return self._call("DEVICE_Run")

    def DEVICE_Stop(self) -> ReturnStatus:
        return self._call("DEVICE_Stop")

    # ---- CONFIG ----
    def CONFIG_SetCenterFreq(self, cf: float) -> ReturnStatus:
        return self._call("CONFIG_SetCenterFreq", c_double(self._check_num("cf", cf)))

    def CONFIG_SetReferenceLevel(self, ref_level: float) -> ReturnStatus:
        return self._call("CONFIG_SetReferenceLevel", c_double(self._check_num("ref_level", ref_level)))

    def CONFIG_SetAutoAttenuationEnable(self, enable: bool) -> ReturnStatus:
        return self._call("CONFIG_SetAutoAttenuationEnable", c_bool(bool(enable)))

    def CONFIG_SetRFPreampEnable(self, enable: bool) -> ReturnStatus:
        return self._call("CONFIG_SetRFPreampEnable", c_bool(bool(enable)))

    def CONFIG_SetRFAttenuator(self, value: float) -> ReturnStatus:
        return self._call("CONFIG_SetRFAttenuator", c_double(self._check_num("value", value)))

    # ---- DPX ----
    def DPX_GetRBWRange(self, span: float) -> Tuple[ReturnStatus, float, float]:
        min_rbw = c_double(0)
        max_rbw = c_double(0)
        rs = self._call("DPX_GetRBWRange", c_double(self._check_num("span", span)),
                        byref(min_rbw), byref(max_rbw))
        return rs, min_rbw.value, max_rbw.value

    def DPX_Reset(self) -> ReturnStatus:
        return self._call("DPX_Reset")

    def DPX_SetParameters(self, span: float, rbw: float, bitmap_width: int, trace_pts_per_pixel: int,
                          vertical_unit: VerticalUnitType, y_top: float, y_bottom: float,
                          infinite_persistence: bool, persistence_time_sec: float,
                          show_only_trig_frame: bool) -> ReturnStatus:
        return self._call(
            "DPX_SetParameters",
            c_double(self._check_num("span", span)),
            c_double(self._check_num("rbw", rbw)),
            c_int32(self._check_int("bitmap_width", bitmap_width)),
            c_int32(self._check_int("trace_pts_per_pixel", trace_pts_per_pixel)),
            c_int(int(vertical_unit)),
            c_double(self._check_num("y_top", y_top)),
            c_double(self._check_num("y_bottom", y_bottom)),
            c_bool(bool(infinite_persistence)),
            c_double(self._check_num("persistence_time_sec", persistence_time_sec)),
            c_bool(bool(show_only_trig_frame)),
        )

    def DPX_Configure(self, enable_spectrum: bool, enable_spectrogram: bool) -> ReturnStatus:
        return self._call("DPX_Configure", c_bool(bool(enable_spectrum)), c_bool(bool(enable_spectrogram)))

    def DPX_SetSpectrumTraceType(self, trace_index: int, trace_type: TraceType) -> ReturnStatus:
        trace_index = self._check_int("trace_index", trace_index)
        if trace_index not in self.VALID_TRACE_RANGE:
            raise RSALibValidationError(f"trace_index must be in {list(self.VALID_TRACE_RANGE)}")
        return self._call("DPX_SetSpectrumTraceType", c_int32(trace_index), c_int(int(trace_type)))

    def DPX_GetSettings(self) -> Tuple[ReturnStatus, DpxSettings]:
        settings = DpxSettings()
        rs = self._call("DPX_GetSettings", byref(settings))
        return rs, settings

    def DPX_SetEnable(self, enable: bool) -> ReturnStatus:
        return self._call("DPX_SetEnable", c_bool(bool(enable)))

    def DPX_WaitForDataReady(self, timeout_msec: int) -> Tuple[ReturnStatus, bool]:
        ready = c_bool(False)
        rs = self._call("DPX_WaitForDataReady", c_int(self._check_int("timeout_msec", timeout_msec)), byref(ready))
        return rs, ready.value

    def DPX_IsFrameBufferAvailable(self) -> Tuple[ReturnStatus, bool]:
        available = c_bool(False)
        rs = self._call("DPX_IsFrameBufferAvailable", byref(available))
        return rs, available.value

    def DPX_GetFrameBuffer(self) -> Tuple[ReturnStatus, DpxFrameBuffer]:
        """The buffer points into vendor memory until DPX_FinishFrameBuffer()."""
        fb = DpxFrameBuffer()
        rs = self._call("DPX_GetFrameBuffer", byref(fb))
        return rs, fb

    def DPX_GetFrameInfo(self) -> Tuple[ReturnStatus, int, int]:
        frame_count = c_int64(0)
        fft_count = c_int64(0)
        rs = self._call("DPX_GetFrameInfo", byref(frame_count), byref(fft_count))
        return rs, frame_count.value, fft_count.value

    def DPX_FinishFrameBuffer(self) -> ReturnStatus:
        return self._call("DPX_FinishFrameBuffer")

    # ---- IQSTREAM ----
    def IQSTREAM_SetAcqBandwidth(self, bw_hz_req: float) -> ReturnStatus:
        return self._call("IQSTREAM_SetAcqBandwidth", c_double(self._check_num("bw_hz_req", bw_hz_req)))

    def IQSTREAM_GetAcqParameters(self) -> Tuple[ReturnStatus, float, float]:
        """Returns (status, actual bandwidth Hz, sample rate S/s)."""
        bw_hz_act = c_double(0)
        sr_sps = c_double(0)
        rs = self._call("IQSTREAM_GetAcqParameters", byref(bw_hz_act), byref(sr_sps))
        return rs, bw_hz_act.value, sr_sps.value

    def IQSTREAM_SetOutputConfiguration(self, dest: IQSOutDest, dtype: IQSOutDType) -> ReturnStatus:
        dest = IQSOutDest(dest)
        dtype = IQSOutDType(dtype)
        if dest is IQSOutDest.IQSOD_FILE_TIQ and "SINGLE" in dtype.name:
            raise RSALibValidationError("TIQ file output does not support single precision data")
        return self._call("IQSTREAM_SetOutputConfiguration", c_int(int(dest)), c_int(int(dtype)))

    def IQSTREAM_SetDiskFileLength(self, msec: int) -> ReturnStatus:
        msec = self._check_int("msec", msec)
        if msec < 0:
            raise RSALibValidationError("msec must be >= 0")
        return self._call("IQSTREAM_SetDiskFileLength", c_int(msec))

    def IQSTREAM_SetDiskFilenameBase(self, filename_base: str) -> ReturnStatus:
        if not isinstance(filename_base, str) or not filename_base:
            raise RSALibValidationError("filename_base must be a non-empty string")
        return self._call("IQSTREAM_SetDiskFilenameBaseW", c_wchar_p(filename_base))

    def IQSTREAM_SetDiskFilenameSuffix(self, suffix_ctl: int) -> ReturnStatus:
        suffix_ctl = self._check_int("suffix_ctl", suffix_ctl)
        if suffix_ctl < IQSSDFN_SUFFIX_NONE:
            raise RSALibValidationError(f"suffix_ctl must be >= {IQSSDFN_SUFFIX_NONE}")
        return self._call("IQSTREAM_SetDiskFilenameSuffix", c_int(suffix_ctl))

    def IQSTREAM_ClearAcqStatus(self) -> ReturnStatus:
        return self._call("IQSTREAM_ClearAcqStatus")

    def IQSTREAM_Start(self) -> ReturnStatus:
        return self._call("IQSTREAM_Start")

    def IQSTREAM_Stop(self) -> ReturnStatus:
        return self._call("IQSTREAM_Stop")

    def IQSTREAM_GetDiskFileWriteStatus(self) -> Tuple[ReturnStatus, bool, bool]:
        """Returns (status, is_complete, is_writing)."""
        is_complete = c_bool(False)
        is_writing = c_bool(False)
        rs = self._call("IQSTREAM_GetDiskFileWriteStatus", byref(is_complete), byref(is_writing))
        return rs, is_complete.value, is_writing.value

    def IQSTREAM_GetDiskFileInfo(self) -> Tuple[ReturnStatus, IQStreamFileInfo]:
        file_info = IQStreamFileInfo()
        rs = self._call("IQSTREAM_GetDiskFileInfo", byref(file_info))
        return rs, file_info

    # ---- Context manager support ----
    def __enter__(self) -> "RSAHandler":
        self._ensure_open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
