"""
Frame-driven noise monitor.

Owns one stream's analysis state and runs the per-frame pipeline:

    frame -> SpectralAnalyzer -> footstep + friction detectors
          -> conflict resolution -> (optional) generic detector
          -> arbitration -> event log

Also hosts ambient calibration, learned-history capture for adaptive
masking, and per-session level statistics.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from arbitration import EventLog, arbitrate, resolve_specific, should_run_generic
from config import SENSITIVITY_KINDS, Config, MaskingConfig
from detectors import EventType, FootstepDetector, FrictionDetector, GeneralDetector, NoiseEvent
from logging_utils import log_event
from masking import AdaptiveMaskingCalculator, LearningSession, MaskingDelta
from session_reporter import SessionReporter
from spectral_analyzer import SpectralAnalyzer

# Calibrated threshold = max(floor, observed max + margin)
CALIBRATION_FRICTION_FLOOR = 2000.0
CALIBRATION_FRICTION_MARGIN = 1000.0
CALIBRATION_FOOTSTEP_FLOOR = 3000.0
CALIBRATION_FOOTSTEP_MARGIN = 1500.0
CALIBRATION_GENERIC_FLOOR = 5000.0
CALIBRATION_GENERIC_MARGIN = 4000.0


class NoiseMonitor:
    """Per-stream pipeline. Single-threaded; call process_frame once per frame."""

    def __init__(self, config: Config, event_callback: Optional[Callable[[NoiseEvent], None]] = None,
                 reporter: Optional[SessionReporter] = None):
        self.config = config
        self.event_callback = event_callback
        self.reporter = reporter

        sample_rate = config.analysis.sample_rate
        self.analyzer = SpectralAnalyzer(sample_rate)
        self.footstep_detector = FootstepDetector()
        self.friction_detector = FrictionDetector()
        self.general_detector = GeneralDetector()
        self.event_log = EventLog(config.analysis.event_log_size)
        self.calculator = AdaptiveMaskingCalculator(sample_rate)
        self.learning = LearningSession(config.learning.interval_ms, config.learning.max_frames)

        self.running = False
        self._last_frame_ms: Optional[float] = None

        # Calibration state
        self._calibration_requested = False
        self._calibration_started_ms: Optional[float] = None
        self._calibration_max_energy = 0.0
        self._calibration_max_metric = 0.0
        self._calibration_max_flux = 0.0
        self._calibration_frames = 0

        self._reset_session_stats()

    # ----- lifecycle -----

    def start(self) -> None:
        self.reset()
        self._reset_session_stats()
        self.running = True
        log_event("INFO", "Monitor", "Started", sample_rate=self.config.analysis.sample_rate,
                  event_log=self.event_log.capacity)

    def stop(self) -> Optional[dict]:
        """Stop the session; logs and (optionally) persists its summary."""
        if not self.running:
            return None
        self.running = False
        summary = self.session_summary()
        self._log_session_summary(summary)
        if self.reporter is not None and self.config.report_generation_enabled and summary["frames"] > 0:
            try:
                self.reporter.save_session(summary)
            except OSError as e:
                log_event("ERROR", "Report", "Failed to write session report", error=e)
        log_event("INFO", "Monitor", "Stopped")
        return summary

    def reset(self) -> None:
        """Drop all per-stream state (flux history, detector state, events, learning, calibration)."""
        self.analyzer.reset()
        self.footstep_detector.reset()
        self.friction_detector.reset()
        self.general_detector.reset()
        self.event_log.clear()
        self.learning.reset()
        self._cancel_calibration()
        self._last_frame_ms = None

    # ----- per frame -----

    def process_frame(self, frame, timestamp: float) -> List[NoiseEvent]:
        """Analyze one magnitude frame and return the events it produced (0-2)."""
        if self._last_frame_ms is not None and timestamp - self._last_frame_ms > self.config.analysis.gap_reset_ms:
            log_event("DEBUG", "Analyzer", "Frame gap, flux history dropped",
                      gap_ms=f"{timestamp - self._last_frame_ms:.0f}")
            self.analyzer.reset()
        self._last_frame_ms = timestamp

        features = self.analyzer.analyze(frame)
        self._update_session_stats(features)
        self.learning.record(frame, timestamp)

        if self._calibration_requested:
            self._collect_calibration(features, timestamp)
            return []

        detection = self.config.detection
        footstep = self.footstep_detector.detect(features, timestamp, detection)
        friction = self.friction_detector.detect(features, timestamp, detection)
        footstep, friction, dropped = resolve_specific(footstep, friction)
        if dropped is not None:
            self._session_dropped += 1
            log_event("DEBUG", "Detector", "Conflict dropped", type=dropped.type.value,
                      confidence=f"{dropped.confidence:.2f}")

        sustaining = self.friction_detector.is_sustaining
        generic = None
        if should_run_generic(footstep, friction, sustaining):
            generic = self.general_detector.detect(features, timestamp, detection)

        events = arbitrate(footstep, friction, generic, sustaining)
        if events:
            self.event_log.extend(events)
            for event in events:
                self._session_event_counts[event.type.value] = self._session_event_counts.get(event.type.value, 0) + 1
                self._session_events.append(event.to_dict())
                if self.event_callback is not None:
                    self.event_callback(event)
        return events

    # ----- events -----

    @property
    def events(self) -> List[NoiseEvent]:
        return self.event_log.recent()

    def clear_events(self) -> None:
        self.event_log.clear()

    # ----- detection settings -----

    def update_sensitivity(self, kind: str, value: float) -> None:
        if kind not in SENSITIVITY_KINDS:
            raise ValueError(f"Unknown detector kind: {kind!r}")
        setattr(self.config.detection, f"{kind}_sensitivity", float(value))
        log_event("INFO", "Detector", "Sensitivity updated", kind=kind, value=value)

    # ----- calibration -----

    @property
    def is_calibrating(self) -> bool:
        return self._calibration_requested

    def start_calibration(self) -> None:
        """Measure ambient levels for calibration_seconds, classifying nothing meanwhile.
        The window starts at the next processed frame's timestamp."""
        self._cancel_calibration()
        self._calibration_requested = True
        log_event("INFO", "Calibration", "Started", seconds=self.config.analysis.calibration_seconds)

    def _cancel_calibration(self) -> None:
        self._calibration_requested = False
        self._calibration_started_ms = None
        self._calibration_max_energy = 0.0
        self._calibration_max_metric = 0.0
        self._calibration_max_flux = 0.0
        self._calibration_frames = 0

    def _collect_calibration(self, features, timestamp: float) -> None:
        if self._calibration_started_ms is None:
            self._calibration_started_ms = timestamp
        self._calibration_frames += 1
        self._calibration_max_energy = max(self._calibration_max_energy, features.energy)
        self._calibration_max_metric = max(self._calibration_max_metric, features.friction_metric)
        self._calibration_max_flux = max(self._calibration_max_flux, features.spectral_flux)

        if timestamp - self._calibration_started_ms >= self.config.analysis.calibration_seconds * 1000.0:
            self._finish_calibration()

    def _finish_calibration(self) -> None:
        detection = self.config.detection
        metric = self._calibration_max_metric
        detection.friction_threshold = max(CALIBRATION_FRICTION_FLOOR, metric + CALIBRATION_FRICTION_MARGIN)
        detection.footstep_threshold = max(CALIBRATION_FOOTSTEP_FLOOR, metric + CALIBRATION_FOOTSTEP_MARGIN)
        detection.generic_threshold = max(CALIBRATION_GENERIC_FLOOR,
                                          self._calibration_max_energy + CALIBRATION_GENERIC_MARGIN)
        log_event("INFO", "Calibration", "Complete",
                  frames=self._calibration_frames,
                  max_energy=f"{self._calibration_max_energy:.0f}",
                  max_metric=f"{metric:.0f}",
                  max_flux=f"{self._calibration_max_flux:.0f}",
                  footstep=f"{detection.footstep_threshold:.0f}",
                  friction=f"{detection.friction_threshold:.0f}",
                  generic=f"{detection.generic_threshold:.0f}")
        self._cancel_calibration()
        # Ambient frames must not count toward a friction run
        self.friction_detector.reset()

    # ----- adaptive masking -----

    def start_learning(self) -> None:
        self.learning.start()

    def stop_learning(self, current: Optional[MaskingConfig] = None) -> MaskingDelta:
        return self.learning.stop(self.calculator, current or self.config.masking)

    def suggest_from_frame(self, frame, current: Optional[MaskingConfig] = None) -> MaskingDelta:
        return self.calculator.from_frame(frame, current or self.config.masking)

    def suggest_from_events(self, current: Optional[MaskingConfig] = None) -> MaskingDelta:
        return self.calculator.from_events(self.event_log, current or self.config.masking)

    def suggest_for_event(self, event: NoiseEvent, current: Optional[MaskingConfig] = None) -> MaskingDelta:
        return self.calculator.for_event(event, current or self.config.masking)

    def apply_masking(self, delta: MaskingDelta) -> MaskingConfig:
        """Merge a suggestion into the monitor's masking configuration."""
        if not delta.is_empty:
            self.config.masking = delta.apply_to(self.config.masking)
            log_event("INFO", "Masking", "Applied", fields=",".join(delta.to_dict().keys()))
        return self.config.masking

    # ----- session statistics -----

    def _reset_session_stats(self) -> None:
        self._session_started_at = time.time()
        self._session_frame_count = 0
        self._session_energy_min: Optional[float] = None
        self._session_energy_max: Optional[float] = None
        self._session_energy_sum = 0.0
        self._session_flux_min: Optional[float] = None
        self._session_flux_max: Optional[float] = None
        self._session_flux_sum = 0.0
        self._session_dropped = 0
        self._session_event_counts: Dict[str, int] = {}
        self._session_events: Deque[dict] = deque(maxlen=self.config.analysis.session_event_limit)

    def _update_session_stats(self, features) -> None:
        energy = features.energy
        flux = features.spectral_flux
        self._session_frame_count += 1
        self._session_energy_sum += energy
        self._session_flux_sum += flux
        if self._session_energy_min is None or energy < self._session_energy_min:
            self._session_energy_min = energy
        if self._session_energy_max is None or energy > self._session_energy_max:
            self._session_energy_max = energy
        if self._session_flux_min is None or flux < self._session_flux_min:
            self._session_flux_min = flux
        if self._session_flux_max is None or flux > self._session_flux_max:
            self._session_flux_max = flux

    @property
    def dropped_conflicts(self) -> int:
        return self._session_dropped

    def session_summary(self) -> dict:
        frames = self._session_frame_count
        divisor = float(max(1, frames))
        detection = self.config.detection
        counts = self._session_event_counts
        return {
            "session_started_at": self._session_started_at,
            "session_ended_at": time.time(),
            "seconds": max(0.0, time.time() - self._session_started_at),
            "frames": frames,
            "events_total": sum(counts.values()),
            "events_footstep": counts.get(EventType.FOOTSTEP.value, 0),
            "events_friction": counts.get(EventType.FRICTION.value, 0),
            "events_generic": counts.get(EventType.GENERIC.value, 0),
            "dropped_conflicts": self._session_dropped,
            "energy_min": float(self._session_energy_min or 0.0),
            "energy_max": float(self._session_energy_max or 0.0),
            "energy_mean": self._session_energy_sum / divisor,
            "flux_min": float(self._session_flux_min or 0.0),
            "flux_max": float(self._session_flux_max or 0.0),
            "flux_mean": self._session_flux_sum / divisor,
            "footstep_threshold": detection.footstep_threshold,
            "friction_threshold": detection.friction_threshold,
            "generic_threshold": detection.generic_threshold,
            "events": list(self._session_events),
        }

    def _log_session_summary(self, summary: dict) -> None:
        if summary["frames"] <= 0:
            return
        log_event(
            "INFO",
            "Monitor",
            "Session summary",
            frames=summary["frames"],
            seconds=f"{summary['seconds']:.1f}",
            events=summary["events_total"],
            footstep=summary["events_footstep"],
            friction=summary["events_friction"],
            generic=summary["events_generic"],
            dropped=summary["dropped_conflicts"],
            energy_min=f"{summary['energy_min']:.1f}",
            energy_max=f"{summary['energy_max']:.1f}",
            energy_mean=f"{summary['energy_mean']:.1f}",
            flux_min=f"{summary['flux_min']:.1f}",
            flux_max=f"{summary['flux_max']:.1f}",
            flux_mean=f"{summary['flux_mean']:.1f}",
        )
