# test/conftest.py
import sys
from ctypes import POINTER, c_float, cast
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT_DIR)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from rsa_capture import cfg  # noqa: E402
from rsa_capture.libs import rsa_handler  # noqa: E402
from rsa_capture.libs.rsa_handler import RSAHandler  # noqa: E402


# --- Helpers: fake ctypes-like C functions and an RSA API library object ---
class FakeCFunc:
    def __init__(self, name, pyfunc, journal):
        self._name = name
        self._pyfunc = pyfunc
        self._journal = journal
        self.calls = []
        # ctypes function attributes that the wrapper sets
        self.restype = None
        self.argtypes = None

    def __call__(self, *args):
        self.calls.append(args)
        self._journal.append(self._name)
        rc = self._pyfunc(*args)
        return 0 if rc is None else rc


class FakeRSALib:
    """
    Simulated RSA API with one instrument.

    Out-parameters arrive as byref() objects; the fakes write through `._obj`.
    DPX frames carry `traces` (linear power, one list per spectrum trace).
    `ready` is a bool or a list of per-poll ready flags.
    The IQ stream reports `iq_samples[i]` on poll i and completes on poll
    `iq_complete_at` (None = never).
    """

    def __init__(self, devices=((0, b"B012345", b"RSA306B"),), settings_trace_len=801,
                 traces=None, ready=True, iq_samples=(0, 1000, 2000), iq_complete_at=2,
                 acq_status=0, sample_rate=56e6):
        self.devices = list(devices)
        self.settings_trace_len = settings_trace_len
        self.traces = traces if traces is not None else [[1e-3] * 801, [1e-6] * 801, [1e-4] * 801]
        self.ready = ready
        self.iq_samples = list(iq_samples)
        self.iq_complete_at = iq_complete_at
        self.acq_status = acq_status
        self.sample_rate = sample_rate

        self.search_rc = 0
        self.connect_rc = 0
        self.get_frame_rc = 0
        self.frame_counter = 0
        self.iq_poll = 0
        self.journal = []
        self._keep = None

        for name in rsa_handler._REQUIRED_SYMBOLS:
            impl = getattr(self, f"_{name}", lambda *args: 0)
            setattr(self, name, FakeCFunc(name, impl, self.journal))

    # DEVICE
    def _DEVICE_Search(self, num_found, dev_ids, dev_serial, dev_type):
        num_found._obj.value = len(self.devices)
        for i, (dev_id, serial, dev_kind) in enumerate(self.devices):
            dev_ids[i] = dev_id
            dev_serial[i].value = serial
            dev_type[i].value = dev_kind
        return self.search_rc

    def _DEVICE_Connect(self, device_id):
        return self.connect_rc

    # DPX
    def _DPX_GetRBWRange(self, span, min_rbw, max_rbw):
        min_rbw._obj.value = 1e3
        max_rbw._obj.value = 10e6

    def _DPX_GetSettings(self, ref):
        settings = ref._obj
        settings.bitmapWidth = 200
        settings.bitmapHeight = 201
        settings.traceLength = self.settings_trace_len
        settings.actualRBW = 5e6

    def _DPX_WaitForDataReady(self, timeout, ready):
        if isinstance(self.ready, list):
            # one entry per poll, not ready once exhausted
            ready._obj.value = self.ready.pop(0) if self.ready else False
        else:
            ready._obj.value = self.ready

    def _DPX_IsFrameBufferAvailable(self, available):
        available._obj.value = True

    def _DPX_GetFrameBuffer(self, ref):
        fb = ref._obj
        arrays = [(c_float * len(t))(*t) for t in self.traces]
        ptrs = (POINTER(c_float) * len(arrays))(*[cast(a, POINTER(c_float)) for a in arrays])
        self._keep = (arrays, ptrs)
        fb.spectrumTraces = cast(ptrs, POINTER(POINTER(c_float)))
        fb.spectrumTraceLength = len(self.traces[0]) if self.traces else 0
        fb.numSpectrumTraces = len(self.traces)
        self.frame_counter += 1
        return self.get_frame_rc

    def _DPX_GetFrameInfo(self, frame_count, fft_count):
        frame_count._obj.value = self.frame_counter
        fft_count._obj.value = self.frame_counter * 100

    # IQSTREAM
    def _IQSTREAM_GetAcqParameters(self, bw_act, sr_sps):
        bw_act._obj.value = 40e6
        sr_sps._obj.value = self.sample_rate

    def _IQSTREAM_GetDiskFileWriteStatus(self, is_complete, is_writing):
        is_complete._obj.value = self.iq_complete_at is not None and self.iq_poll >= self.iq_complete_at
        is_writing._obj.value = True

    def _IQSTREAM_GetDiskFileInfo(self, ref):
        info = ref._obj
        info.numberSamples = self.iq_samples[min(self.iq_poll, len(self.iq_samples) - 1)]
        info.acqStatus = self.acq_status
        self.iq_poll += 1


@pytest.fixture
def lib_dir(tmp_path: Path) -> Path:
    d = tmp_path / "rsa_api"
    d.mkdir()
    (d / rsa_handler.RSA_LIB_NAME).write_bytes(b"\x00")  # dummy file, CDLL is patched
    return d


@pytest.fixture
def fake_lib() -> FakeRSALib:
    return FakeRSALib()


@pytest.fixture
def rsa(lib_dir, fake_lib, monkeypatch):
    monkeypatch.setattr("rsa_capture.libs.rsa_handler.ctypes.CDLL", lambda _p, *_a, **_k: fake_lib)
    handler = RSAHandler(lib_dir, verbose=True)
    yield handler
    handler.close()


@pytest.fixture
def fast_polling(monkeypatch):
    """No sleeping and an immediate stagnation window."""
    monkeypatch.setattr(cfg, "IQ_POLL_INTERVAL_S", 0.0)
    monkeypatch.setattr(cfg, "STAGNATION_MIN_S", 0.0)
    monkeypatch.setattr(cfg, "DPX_WAIT_TIMEOUT_MS", 1)
