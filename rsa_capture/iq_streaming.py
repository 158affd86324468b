#!/usr/bin/env python3
"""
@file iq_streaming.py
@brief Stream IQ samples from a Tektronix RSA into a TIQ file written by the RSA API.

Arguments are key=value pairs (dev=, cf=, rl=, bw=, msec=, fn=); '?' prints usage.
The API writes the file itself; this tool configures the stream, polls the
write status and restarts the stream once if the sample count stops moving.
"""
import sys
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from rsa_capture import cfg
from rsa_capture.libs import (
    RSAHandler, RSALibError, ReturnStatus, IQSOutDest, IQSOutDType, IQSSDFN_SUFFIX_NONE,
)
from rsa_capture.utils import ElapsedTimer

log = cfg.set_logger()

USAGE = """--- IQStreaming Application ---
Usage: iq_streaming.py [options]
Options:
  dev=<devid>      Device ID of device to connect (default: 0)
  cf=<ctrFreqHz>   RF Center Frequency in Hz (default: 5220e6)
  rl=<refLeveldBm> RF Input Reference Level in dBm (default: -10)
  bw=<reqBW>       Requested IQ Bandwidth in Hz (default: 40e6)
  msec=<outlen>    Length of Output in milliseconds (default: 10000)
  fn=<filename>    Output Filename Base (default: 'iqstream')
Examples:
  iq_streaming.py dev=0 cf=2.4e9 rl=-20 bw=20e6 msec=5000 fn=mycapture"""

# Sticky (whole-run) bits of IQSTRMFILEINFO.acqStatus
ACQ_STATUS_FLAGS = (
    (0x10000, "Input overrange."),
    (0x20000, "USB data stream discontinuity."),
    (0x40000, "Input buffer > 75% full."),
    (0x80000, "Input buffer overflow. IQStream processing too slow, data loss has occurred."),
    (0x100000, "Output buffer > 75% full."),
    (0x200000, "Output buffer overflow. File writing too slow, data loss has occurred."),
)
ACQ_STATUS_INVALID_MASK = 0xFFC00000


@dataclass
class IQStreamConfig:
    device_index: int = 0
    center_freq_hz: float = 5220e6
    ref_level_dbm: float = -10.0
    bandwidth_hz: float = 40e6
    duration_msec: int = 10000
    filename_base: str = "iqstream"

    def __post_init__(self):
        if self.device_index < 0:
            raise ValueError(f"Device id {self.device_index} is invalid. Must be >= 0.")
        if self.bandwidth_hz <= 0:
            raise ValueError(f"Bandwidth {self.bandwidth_hz} Hz must be positive.")
        if self.duration_msec < 0:
            raise ValueError(f"Output length {self.duration_msec} ms must be >= 0.")
        if not self.filename_base:
            raise ValueError("Output filename base must not be empty.")

    @property
    def stagnation_window_s(self) -> float:
        return max(cfg.STAGNATION_MIN_S, 2 * self.duration_msec / 1000)


def parse_args(argv: List[str]) -> IQStreamConfig:
    """
    Parse key=value arguments. Unknown keys are ignored.

    Raises:
        ValueError: on a malformed number or an invalid value.
    """
    values = {}
    for arg in argv:
        key, sep, value = arg.partition("=")
        if not sep:
            continue
        if key == "dev":
            values["device_index"] = int(value)
        elif key == "cf":
            values["center_freq_hz"] = float(value)
        elif key == "rl":
            values["ref_level_dbm"] = float(value)
        elif key == "bw":
            values["bandwidth_hz"] = float(value)
        elif key == "msec":
            values["duration_msec"] = int(value)
        elif key == "fn":
            values["filename_base"] = value
    return IQStreamConfig(**values)


def parse_acq_status(acq_status: int) -> List[str]:
    """Messages for every sticky status bit set during the run."""
    messages = [msg for mask, msg in ACQ_STATUS_FLAGS if acq_status & mask]
    if acq_status & ACQ_STATUS_INVALID_MASK:
        messages.append("Invalid status code returned. Some always-zero bits are nonzero.")
    return messages


def connect_device(rsa: RSAHandler, device_index: int) -> bool:
    rs, dev_ids, _, dev_types = rsa.DEVICE_Search()
    if not dev_ids or device_index >= len(dev_ids):
        log.error("No devices found or invalid device ID!")
        return False

    if rs is ReturnStatus.noError:
        rsa.DEVICE_Reset(dev_ids[device_index])
        rs = rsa.DEVICE_Connect(dev_ids[device_index])

    if rs is not ReturnStatus.noError:
        log.error(f"ERROR: {rs.name}")
        return False

    log.info(f"CONNECTED TO: {dev_types[device_index]}")
    return True


def configure_stream(rsa: RSAHandler, config: IQStreamConfig) -> float:
    """Front end, bandwidth and TIQ file output. Returns the sample rate in S/s."""
    rsa.CONFIG_SetCenterFreq(config.center_freq_hz)
    rsa.CONFIG_SetReferenceLevel(config.ref_level_dbm)

    rsa.CONFIG_SetAutoAttenuationEnable(False)
    rsa.CONFIG_SetRFPreampEnable(True)
    rsa.CONFIG_SetRFAttenuator(0)

    # Bandwidth must be set before the device goes into Run mode
    rsa.IQSTREAM_SetAcqBandwidth(config.bandwidth_hz)
    _, bw_act, sr_sps = rsa.IQSTREAM_GetAcqParameters()
    log.info(f"Bandwidth Requested: {config.bandwidth_hz / 1e6:.3f} MHz, Actual: {bw_act / 1e6:.3f} MHz")
    log.info(f"Sample Rate: {sr_sps / 1e6:.2f} MS/s")

    rsa.IQSTREAM_SetOutputConfiguration(IQSOutDest.IQSOD_FILE_TIQ, IQSOutDType.IQSODT_INT16)
    rsa.IQSTREAM_SetDiskFileLength(config.duration_msec)
    rsa.IQSTREAM_SetDiskFilenameBase(config.filename_base)
    rsa.IQSTREAM_SetDiskFilenameSuffix(IQSSDFN_SUFFIX_NONE)
    return sr_sps


def _restart_stream(rsa: RSAHandler) -> None:
    rsa.IQSTREAM_Stop()
    rsa.IQSTREAM_ClearAcqStatus()
    rsa.IQSTREAM_Start()


def stream_to_file(rsa: RSAHandler, config: IQStreamConfig, sample_rate: float) -> Tuple[bool, int, int]:
    """
    Start the stream and poll until the API reports the file complete.

    The stream is restarted once when the sample count does not change for
    a whole stagnation window; a second stall abandons the capture.

    Returns:
        (complete, samples written, acqStatus of the last file info)
    """
    window_s = config.stagnation_window_s
    expected = int(sample_rate * config.duration_msec / 1000)
    timer = ElapsedTimer()
    retried = False
    complete = False
    last_samples: Optional[int] = None
    num_samples = 0
    acq_status = 0
    next_report = 10

    log.info("IQ Capture starting...")
    rsa.IQSTREAM_Start()
    timer.init_count(window_s)

    while True:
        _, complete, _ = rsa.IQSTREAM_GetDiskFileWriteStatus()
        _, file_info = rsa.IQSTREAM_GetDiskFileInfo()
        num_samples = int(file_info.numberSamples)
        acq_status = int(file_info.acqStatus)

        if complete:
            break

        if num_samples != last_samples:
            last_samples = num_samples
            timer.init_count(window_s)
            if expected > 0 and num_samples * 100 >= expected * next_report:
                log.info(f"Progress: {min(100, num_samples * 100 // expected)}% ({num_samples} samples)")
                next_report = (num_samples * 100 // expected) // 10 * 10 + 10
        elif timer.time_elapsed():
            if retried:
                log.error(f"Sample count stuck at {num_samples} after restart. Abandoning capture.")
                break
            log.warning(f"Sample count stuck at {num_samples} for {window_s:.1f} s. Restarting stream.")
            _restart_stream(rsa)
            retried = True
            last_samples = None
            timer.init_count(window_s)

        time.sleep(cfg.IQ_POLL_INTERVAL_S)

    return complete, num_samples, acq_status


def run_stream(rsa: RSAHandler, config: IQStreamConfig) -> int:
    if not connect_device(rsa, config.device_index):
        return 1

    try:
        sample_rate = configure_stream(rsa, config)
        # The device must be running before the IQ stream starts
        rsa.DEVICE_Run()
        complete, num_samples, acq_status = stream_to_file(rsa, config, sample_rate)
        log.info(f"{num_samples} Samples written to tiq file.")
        for msg in parse_acq_status(acq_status):
            log.warning(f"Acquisition status: {msg}")
    finally:
        rsa.IQSTREAM_Stop()
        rsa.DEVICE_Stop()
        rsa.DEVICE_Disconnect()

    if not complete:
        log.error("IQ streaming did not complete.")
        return 1

    log.info("IQ streaming routine complete.")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)
    if "?" in argv:
        print(USAGE)
        return 0

    try:
        config = parse_args(argv)
    except ValueError as e:
        log.error(f"Argument parse error: {e}")
        print(USAGE)
        return 2

    try:
        with RSAHandler(cfg.RSA_API_DIR, verbose=cfg.VERBOSE) as rsa:
            return run_stream(rsa, config)
    except RSALibError as e:
        log.error(f"RSA API error: {e}")
        return 1


def cli() -> None:
    sys.exit(cfg.run_and_capture(main))


if __name__ == "__main__":
    cli()
