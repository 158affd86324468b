#!/usr/bin/env python3
"""
@file dpx_csv_exporter.py
@brief Export DPX spectrum traces from a Tektronix RSA to CSV, one row per frame.

CLI:
  dpx_csv_exporter.py [--device ID] [--center HZ] [--bandwidth HZ] [--rbw HZ]
                      [--tracelength N] [--frames N] [--reflevel DBM] [--traceindex N]
                      [--outdir DIR] [--plot]

Behavior:
 - Connects to the requested device (first one found by default).
 - Configures DPX with traces 0=Max, 1=Min, 2=Average and exports the selected one.
 - Traces are converted from W to dBm and resampled when a trace length is requested.
 - Stops after the requested frames or after DPX_MAX_TIMEOUTS consecutive poll timeouts.
"""
from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402

from rsa_capture import cfg  # noqa: E402
from rsa_capture.libs import (  # noqa: E402
    RSAHandler, RSALibError, ReturnStatus, TraceType, VerticalUnitType, DpxSettings,
    spectrum_trace,
)
from rsa_capture.utils import DpxCsvWriter, linspace_freqs, resample_linear, power_to_dbm  # noqa: E402

log = cfg.set_logger()

DEFAULT_TRACE_LENGTH = 1024

# DPX display parameters (bitmap only, the exported traces do not depend on them)
DPX_BITMAP_WIDTH = 200
DPX_TRACE_PTS_PER_PIXEL = 1
DPX_Y_TOP = 0.0
DPX_Y_BOTTOM = -100.0
DPX_PERSIST_TIME_S = 1.0

# Trace slot -> detector
DPX_TRACE_TYPES = (TraceType.TraceTypeMax, TraceType.TraceTypeMin, TraceType.TraceTypeAverage)


@dataclass
class DpxExportConfig:
    device_id: Optional[int] = None
    center_freq_hz: float = 103.3e6
    bandwidth_hz: float = 40e6
    rbw_hz: float = 5e6
    trace_length: int = 0
    num_frames: int = 100
    ref_level_dbm: float = -10.0
    trace_index: int = 0
    output_dir: Path = field(default_factory=lambda: cfg.OUTPUT_DIR)
    plot: bool = False

    def __post_init__(self):
        if self.device_id is not None and self.device_id < 0:
            raise ValueError(f"Device id {self.device_id} is invalid. Must be >= 0.")
        if self.bandwidth_hz <= 0:
            raise ValueError(f"Bandwidth {self.bandwidth_hz} Hz must be positive.")
        if self.rbw_hz <= 0:
            raise ValueError(f"RBW {self.rbw_hz} Hz must be positive.")
        if self.trace_length < 0:
            raise ValueError(f"Trace length {self.trace_length} is invalid. Use 0 for the device length.")
        if self.num_frames < 1:
            raise ValueError(f"Frame count {self.num_frames} must be at least 1.")
        if self.trace_index < 0:
            raise ValueError(f"Trace index {self.trace_index} is invalid. Must be >= 0.")
        self.output_dir = Path(self.output_dir)

    @property
    def csv_path(self) -> Path:
        return self.output_dir / csv_filename(self.device_id, self.center_freq_hz, self.bandwidth_hz, self.num_frames)


def csv_filename(device_id: Optional[int], center_freq_hz: float, bandwidth_hz: float, num_frames: int) -> str:
    return f"DPX_{device_id}_{int(center_freq_hz)}Hz_{int(bandwidth_hz)}BW_{num_frames}frames.csv"


def plot_trace_png(freqs: np.ndarray, levels_dbm: np.ndarray, out_path: Path, title: str) -> None:
    fig, ax = plt.subplots(figsize=(12, 6))
    ax.plot(freqs / 1e6, levels_dbm)
    ax.set_title(title)
    ax.set_xlabel("Frequency [MHz]")
    ax.set_ylabel("Level [dBm]")
    ax.grid(True)
    fig.tight_layout()
    fig.savefig(out_path, format="png", dpi=150)
    plt.close(fig)


def connect_device(rsa: RSAHandler, requested_id: Optional[int]) -> Optional[int]:
    """Search, reset and connect. Returns the connected device id or None."""
    rs, dev_ids, dev_serials, dev_types = rsa.DEVICE_Search()
    if rs is not ReturnStatus.noError or not dev_ids:
        log.error(f"No devices found or DEVICE_Search failed: {rs.name}")
        return None

    use_id = dev_ids[0] if requested_id is None else requested_id
    if use_id not in dev_ids:
        log.error(f"Requested device id {use_id} not found. Available: {','.join(str(i) for i in dev_ids)}")
        return None

    rsa.DEVICE_Reset(use_id)
    rs = rsa.DEVICE_Connect(use_id)
    if rs is not ReturnStatus.noError:
        log.error(f"ERROR connecting to device {use_id}: {rs.name}")
        return None

    idx = dev_ids.index(use_id)
    log.info(f"Connected to device {use_id} ({dev_types[idx]} S/N {dev_serials[idx]})")
    return use_id


def configure_dpx(rsa: RSAHandler, config: DpxExportConfig) -> DpxSettings:
    rsa.CONFIG_SetCenterFreq(config.center_freq_hz)
    rsa.CONFIG_SetReferenceLevel(config.ref_level_dbm)

    _, min_rbw, max_rbw = rsa.DPX_GetRBWRange(config.bandwidth_hz)
    log.info(f"Bandwidth request: {config.bandwidth_hz} Hz, RBW range: min {min_rbw} Hz, max {max_rbw} Hz")

    rsa.DPX_Reset()
    rsa.DPX_SetParameters(
        config.bandwidth_hz, config.rbw_hz, DPX_BITMAP_WIDTH, DPX_TRACE_PTS_PER_PIXEL,
        VerticalUnitType.VerticalUnit_dBm, DPX_Y_TOP, DPX_Y_BOTTOM,
        False, DPX_PERSIST_TIME_S, False,
    )
    rsa.DPX_Configure(True, False)  # spectrum on, spectrogram off

    for slot, trace_type in enumerate(DPX_TRACE_TYPES):
        rsa.DPX_SetSpectrumTraceType(slot, trace_type)

    _, settings = rsa.DPX_GetSettings()
    log.info(
        f"DPX settings: bitmapWidth={settings.bitmapWidth}, bitmapHeight={settings.bitmapHeight}, "
        f"traceLength(device)={settings.traceLength}, actualRBW={settings.actualRBW / 1e6} MHz"
    )
    return settings


def _next_frame(rsa: RSAHandler, timeout_ms: int) -> Tuple[str, Optional[object]]:
    """
    One poll of the DPX engine.

    Returns ("timeout", None), ("idle", None), ("error", None) or ("frame", fb).
    """
    rs, ready = rsa.DPX_WaitForDataReady(timeout_ms)
    if rs is not ReturnStatus.noError or not ready:
        return "timeout", None

    rs, available = rsa.DPX_IsFrameBufferAvailable()
    if rs is not ReturnStatus.noError:
        return "timeout", None
    if not available:
        return "idle", None

    rs, fb = rsa.DPX_GetFrameBuffer()
    if rs is not ReturnStatus.noError:
        log.error(f"DPX_GetFrameBuffer returned {rs.name}")
        return "error", None
    return "frame", fb


def export_frames(rsa: RSAHandler, config: DpxExportConfig, settings: DpxSettings,
                  writer: DpxCsvWriter) -> Tuple[int, int, Optional[np.ndarray], Optional[np.ndarray]]:
    """
    Acquisition loop.

    Returns (frames written, trace index exported, frequency axis, last row in dBm).
    Only consecutive poll timeouts count against DPX_MAX_TIMEOUTS.

    The header is written with the first frame: without a requested trace
    length the axis follows the length the device actually delivers. Frames
    whose length differs from the header are resampled to it.
    """
    requested_len = config.trace_length
    if requested_len > 0:
        target_len = requested_len
    elif settings.traceLength > 0:
        target_len = int(settings.traceLength)
    else:
        target_len = DEFAULT_TRACE_LENGTH

    trace_index = config.trace_index
    timeout_count = 0
    freqs: Optional[np.ndarray] = None
    last_dbm: Optional[np.ndarray] = None

    while writer.rows_written < config.num_frames and timeout_count < cfg.DPX_MAX_TIMEOUTS:
        state, fb = _next_frame(rsa, cfg.DPX_WAIT_TIMEOUT_MS)
        if state == "timeout":
            timeout_count += 1
            log.warning(f"DPX poll timeout ({timeout_count}/{cfg.DPX_MAX_TIMEOUTS})")
            continue
        if state == "error":
            break
        if state == "idle":
            continue

        _, frame_count, fft_count = rsa.DPX_GetFrameInfo()
        log.debug(f"DPX frame {frame_count} (fft count {fft_count})")

        num_traces = int(fb.numSpectrumTraces)
        if trace_index >= num_traces:
            log.warning(f"Requested traceIndex {trace_index} >= numTraces {num_traces}. Using trace 0.")
            trace_index = 0

        device_len = int(fb.spectrumTraceLength)
        trace = spectrum_trace(fb, trace_index)

        if freqs is None:
            if requested_len == 0 and device_len > 0 and device_len != target_len:
                log.info(f"Device delivers {device_len} points; using it instead of {target_len}")
                target_len = device_len
            freqs = linspace_freqs(config.center_freq_hz, config.bandwidth_hz, target_len)
            writer.write_header(freqs)

        if device_len != target_len:
            trace = resample_linear(trace, target_len)

        last_dbm = power_to_dbm(trace)
        writer.write_frame(last_dbm)
        rsa.DPX_FinishFrameBuffer()
        timeout_count = 0

        if writer.rows_written % 10 == 0:
            log.info(f"Frames written: {writer.rows_written}/{config.num_frames}")

    if freqs is None:
        freqs = linspace_freqs(config.center_freq_hz, config.bandwidth_hz, target_len)
        writer.write_header(freqs)

    return writer.rows_written, trace_index, freqs, last_dbm


def run_export(rsa: RSAHandler, config: DpxExportConfig) -> int:
    device_id = connect_device(rsa, config.device_id)
    if device_id is None:
        return 1
    config.device_id = device_id

    try:
        settings = configure_dpx(rsa, config)
        rsa.DPX_SetEnable(True)
        rsa.DEVICE_Run()

        csv_path = config.csv_path
        log.info(f"CSV output: {csv_path}")
        with DpxCsvWriter(csv_path) as writer:
            frames, trace_index, freqs, last_dbm = export_frames(rsa, config, settings, writer)
        log.info(f"Frames written: {frames}")

        if config.plot and last_dbm is not None:
            png_path = csv_path.with_suffix(".png")
            title = (f"DPX trace {trace_index} (fc: {config.center_freq_hz / 1e6:.6f} MHz, "
                     f"bw: {config.bandwidth_hz / 1e6:.3f} MHz, frame {frames})")
            plot_trace_png(freqs, last_dbm, png_path, title)
            log.info(f"Last trace plotted: {png_path}")
    finally:
        rsa.DPX_SetEnable(False)
        rsa.DEVICE_Stop()
        rsa.DEVICE_Disconnect()

    log.info("Finished. CSV saved.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    epilog = (
        "Examples:\n"
        "  dpx_csv_exporter.py --device 0 --center 103300000 --bandwidth 40000000 --rbw 5000000 "
        "--tracelength 1024 --frames 100 --reflevel -10\n"
    )
    parser = argparse.ArgumentParser(
        prog="dpx_csv_exporter.py",
        description="Export DPX spectrum traces from a Tektronix RSA to CSV.",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument("--device", type=int, default=None, help="Device ID to connect (default: first found)")
    parser.add_argument("--center", type=float, default=103.3e6, help="Center frequency in Hz (default: 103.3e6)")
    parser.add_argument("--bandwidth", type=float, default=40e6, help="DPX span in Hz (default: 40e6)")
    parser.add_argument("--rbw", type=float, default=5e6, help="Resolution bandwidth in Hz (default: 5e6)")
    parser.add_argument("--tracelength", type=int, default=0, help="Output points per trace, 0 = device length (default: 0)")
    parser.add_argument("--frames", type=int, default=100, help="Frames to export (default: 100)")
    parser.add_argument("--reflevel", type=float, default=-10.0, help="Reference level in dBm (default: -10)")
    parser.add_argument("--traceindex", type=int, default=0, help="Trace to export: 0=max, 1=min, 2=average; others fall back to 0 (default: 0)")
    parser.add_argument("--outdir", type=Path, default=None, help="Output directory (default: OUTPUT_DIR)")
    parser.add_argument("--plot", action="store_true", help="Also save a PNG of the last exported trace")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> Tuple[argparse.ArgumentParser, DpxExportConfig]:
    parser = build_parser()
    raw = sys.argv[1:] if argv is None else list(argv)
    # Flag names are case-insensitive; unknown flags are ignored
    raw = [a.lower() if a.startswith("--") else a for a in raw]
    args, unknown = parser.parse_known_args(raw)
    if unknown:
        log.warning(f"Ignoring unknown arguments: {' '.join(unknown)}")

    try:
        config = DpxExportConfig(
            device_id=args.device,
            center_freq_hz=args.center,
            bandwidth_hz=args.bandwidth,
            rbw_hz=args.rbw,
            trace_length=args.tracelength,
            num_frames=args.frames,
            ref_level_dbm=args.reflevel,
            trace_index=args.traceindex,
            output_dir=args.outdir if args.outdir is not None else cfg.OUTPUT_DIR,
            plot=args.plot,
        )
    except ValueError as e:
        parser.error(str(e))
    return parser, config


def main(argv: Optional[List[str]] = None) -> int:
    _, config = parse_args(argv)

    try:
        with RSAHandler(cfg.RSA_API_DIR, verbose=cfg.VERBOSE) as rsa:
            return run_export(rsa, config)
    except RSALibError as e:
        log.error(f"RSA API error: {e}")
        return 1


def cli() -> None:
    sys.exit(cfg.run_and_capture(main))


if __name__ == "__main__":
    cli()
