#!/usr/bin/env python3
"""
Silentium analysis core - command line entry point.

  analyze WAV            run the noise monitor over a recording, print events
                         and masking suggestions as JSON
  render COLOR|mix       write a seamless masking-noise loop to a WAV file
  presets                list the built-in masking presets
"""

import argparse
import cProfile
import json
import sys
from typing import List, Optional

import numpy as np

from config import NOISE_COLORS, MASKING_PRESETS, Config, get_preset
from config_persistence import get_report_dir, load_config
from frame_source import ByteSpectrum, iter_frames, read_wav_mono, write_wav
from logging_utils import log_event, set_log_level
from monitor import NoiseMonitor
from noise_synth import NoiseSynthesizer
from session_reporter import SessionReporter


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Silentium noise analysis and masking core")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--defaults",
        action="store_true",
        help="Ignore the saved config and use built-in defaults",
    )
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    parser.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Detect disturbance events in a WAV file")
    analyze.add_argument("wav", help="Input WAV file")
    analyze.add_argument("--calibrate", action="store_true",
                         help="Calibrate thresholds on the first seconds of the file")
    analyze.add_argument("--learn", action="store_true",
                         help="Learn a masking profile from the whole file")
    analyze.add_argument("--no-report", action="store_true",
                         help="Do not write a session report")

    render = sub.add_parser("render", help="Render a loopable masking noise WAV")
    render.add_argument("color", choices=list(NOISE_COLORS) + ["mix"])
    render.add_argument("--out", required=True, help="Output WAV path")
    render.add_argument("--seconds", type=float, default=None,
                        help="Loop length (default: synth.buffer_seconds)")
    render.add_argument("--sample-rate", type=int, default=None)
    render.add_argument("--seed", type=int, default=None)
    render.add_argument("--preset", default=None, choices=sorted(MASKING_PRESETS),
                        help="Colour volumes for 'mix' (default: current masking config)")

    sub.add_parser("presets", help="List built-in masking presets")
    return parser


def cmd_analyze(args, config: Config) -> int:
    try:
        sample_rate, samples = read_wav_mono(args.wav)
    except (OSError, ValueError) as e:
        log_event("ERROR", "CLI", "Could not read WAV", path=args.wav, error=e)
        return 1

    config.analysis.sample_rate = sample_rate
    reporter = None
    if config.report_generation_enabled and not args.no_report:
        try:
            reporter = SessionReporter(get_report_dir())
        except OSError as e:
            log_event("WARN", "Report", "Report directory unavailable", error=e)

    monitor = NoiseMonitor(config, reporter=reporter)
    monitor.start()
    if args.calibrate:
        monitor.start_calibration()
    if args.learn:
        monitor.start_learning()

    spectrum = ByteSpectrum.from_config(config.analysis)
    emitted = []
    last_frame = None
    for timestamp, frame in iter_frames(samples, sample_rate, spectrum, config.analysis.frame_interval_ms):
        emitted.extend(monitor.process_frame(frame, timestamp))
        last_frame = frame

    result = {
        "file": str(args.wav),
        "sample_rate": sample_rate,
        "events": [event.to_dict() for event in emitted],
        "thresholds": {
            "footstep": config.detection.footstep_threshold,
            "friction": config.detection.friction_threshold,
            "generic": config.detection.generic_threshold,
        },
        "suggestions": {
            "events": monitor.suggest_from_events().to_dict(),
        },
    }
    if last_frame is not None:
        result["suggestions"]["instant"] = monitor.suggest_from_frame(last_frame).to_dict()
    if args.learn:
        result["suggestions"]["learned"] = monitor.stop_learning().to_dict()

    summary = monitor.stop()
    if summary is not None:
        result["dropped_conflicts"] = summary["dropped_conflicts"]

    print(json.dumps(result, indent=2))
    return 0


def cmd_render(args, config: Config) -> int:
    sample_rate = args.sample_rate or config.synth.sample_rate
    seconds = args.seconds if args.seconds is not None else config.synth.buffer_seconds
    seed = args.seed if args.seed is not None else config.synth.seed
    synth = NoiseSynthesizer(sample_rate, rng=np.random.default_rng(seed))

    if args.color == "mix":
        masking = get_preset(args.preset) if args.preset else config.masking
        loops = synth.synthesize_all(seconds)
        samples = NoiseSynthesizer.mix(loops, masking.noise_volumes) * masking.master_volume
    else:
        samples = synth.synthesize(args.color, seconds)

    try:
        out = write_wav(args.out, sample_rate, samples)
    except OSError as e:
        log_event("ERROR", "CLI", "Could not write WAV", path=args.out, error=e)
        return 1
    log_event("INFO", "Synth", "Loop written", color=args.color, path=out,
              seconds=seconds, sample_rate=sample_rate)
    return 0


def cmd_presets(args, config: Config) -> int:
    for name, preset in MASKING_PRESETS.items():
        volumes = " ".join(f"{color}={preset.noise_volumes.get(color, 0.0):.1f}" for color in NOISE_COLORS)
        print(f"{name:<16} {preset.category:<9} master={preset.master_volume:.1f} {volumes}")
    return 0


COMMANDS = {
    "analyze": cmd_analyze,
    "render": cmd_render,
    "presets": cmd_presets,
}


def execute(args) -> int:
    config = Config() if args.defaults else load_config()
    set_log_level(args.log_level or config.log_level)
    return COMMANDS[args.command](args, config)


def run(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        try:
            exit_code = execute(args)
        finally:
            profiler.disable()
            profiler.dump_stats(args.profile_out)
    else:
        exit_code = execute(args)
    return exit_code


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
