"""
Disturbance event detectors.

Three independent, per-stream state machines consume one SpectralFeatures
record per frame and emit at most one NoiseEvent each:

- FootstepDetector: sudden low-frequency impact (flux + low band), with cooldown
- FrictionDetector: sustained mid/low energy held for a run of frames
- GeneralDetector: fallback for loud, changing sounds, with cooldown
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional

from config import DetectionConfig
from logging_utils import log_event
from spectral_analyzer import SpectralFeatures

MIN_AUDIBLE_HZ = 20.0
MAX_AUDIBLE_HZ = 20000.0


class EventType(str, Enum):
    FOOTSTEP = "footstep"
    FRICTION = "friction"
    GENERIC = "generic"
    VOICE = "voice"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FrequencyRange:
    min: float
    max: float

    def __post_init__(self):
        if self.min > self.max:
            low, high = self.max, self.min
            object.__setattr__(self, "min", low)
            object.__setattr__(self, "max", high)

    @property
    def center(self) -> float:
        return (self.min + self.max) / 2.0


@dataclass(frozen=True)
class EventDetails:
    energy: float
    spectral_flux: Optional[float] = None


@dataclass(frozen=True)
class NoiseEvent:
    """A classified disturbance. Immutable once created."""
    type: EventType
    timestamp: float                  # ms, caller clock
    confidence: float                 # 0.0-1.0
    frequency_range: FrequencyRange   # Hz
    details: Optional[EventDetails] = None

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @property
    def center_frequency(self) -> float:
        return self.frequency_range.center

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def effective_threshold(base: float, sensitivity: float) -> float:
    """Higher sensitivity lowers the threshold. Sensitivity must be > 0."""
    return base / sensitivity


def _config(config: Optional[DetectionConfig]) -> DetectionConfig:
    # Bare detectors run at unit sensitivity; the tuned defaults belong to Config.detection
    if config is not None:
        return config
    return DetectionConfig(footstep_sensitivity=1.0, friction_sensitivity=1.0, generic_sensitivity=1.0)


def _resolve(override: Optional[float], default: float) -> float:
    return default if override is None else override


class FootstepDetector:
    """Impact detector: needs a flux spike and a loud low band in the same frame."""

    BASE_FLUX_THRESHOLD = 50.0
    BASE_LOW_ENERGY_THRESHOLD = 80.0

    def __init__(self, cooldown_ms: float = 300.0):
        self.cooldown_ms = cooldown_ms
        self._last_trigger_ms: Optional[float] = None

    def _cooling(self, timestamp: float) -> bool:
        return self._last_trigger_ms is not None and timestamp - self._last_trigger_ms < self.cooldown_ms

    def detect(self, features: SpectralFeatures, timestamp: float,
               config: Optional[DetectionConfig] = None) -> Optional[NoiseEvent]:
        if self._cooling(timestamp):
            return None

        cfg = _config(config)
        sensitivity = cfg.footstep_sensitivity
        flux_thresh = effective_threshold(self.BASE_FLUX_THRESHOLD, sensitivity)
        energy_thresh = effective_threshold(
            _resolve(cfg.footstep_threshold, self.BASE_LOW_ENERGY_THRESHOLD), sensitivity)

        is_transient = features.spectral_flux > flux_thresh
        is_low_impact = features.low_band_energy > energy_thresh
        if not (is_transient and is_low_impact):
            return None

        self._last_trigger_ms = timestamp
        confidence = min(1.0, (features.spectral_flux / flux_thresh) * 0.5)
        log_event("DEBUG", "Detector", "Footstep", t=f"{timestamp:.0f}",
                  flux=f"{features.spectral_flux:.1f}", low=f"{features.low_band_energy:.1f}")
        return NoiseEvent(
            type=EventType.FOOTSTEP,
            timestamp=timestamp,
            confidence=confidence,
            frequency_range=FrequencyRange(20.0, 300.0),
            details=EventDetails(energy=features.low_band_energy,
                                 spectral_flux=features.spectral_flux),
        )

    def reset(self) -> None:
        self._last_trigger_ms = None


class FrictionDetector:
    """
    Sustained drag/roll detector with frame-count hysteresis.

    idle -> accumulating while the metric stays above threshold; on the
    12th consecutive frame one event fires and the detector is sustaining.
    While sustaining no further events fire. A single frame below threshold
    returns to idle.
    """

    BASE_ENERGY_THRESHOLD = 40.0
    FRAMES_THRESHOLD = 12             # ~192 ms at 16 ms per frame

    def __init__(self, frames_threshold: int = FRAMES_THRESHOLD):
        self.frames_threshold = frames_threshold
        self._consecutive_frames = 0
        self._sustaining = False

    @property
    def is_sustaining(self) -> bool:
        return self._sustaining

    @property
    def consecutive_frames(self) -> int:
        return self._consecutive_frames

    def detect(self, features: SpectralFeatures, timestamp: float,
               config: Optional[DetectionConfig] = None) -> Optional[NoiseEvent]:
        cfg = _config(config)
        threshold = effective_threshold(
            _resolve(cfg.friction_threshold, self.BASE_ENERGY_THRESHOLD), cfg.friction_sensitivity)
        metric = features.friction_metric

        if metric <= threshold:
            if self._sustaining:
                log_event("INFO", "Detector", "Friction ended", t=f"{timestamp:.0f}",
                          frames=self._consecutive_frames)
            self._consecutive_frames = 0
            self._sustaining = False
            return None

        self._consecutive_frames += 1
        if self._consecutive_frames < self.frames_threshold or self._sustaining:
            return None

        self._sustaining = True
        log_event("INFO", "Detector", "Friction sustained", t=f"{timestamp:.0f}",
                  metric=f"{metric:.1f}", threshold=f"{threshold:.1f}")
        return NoiseEvent(
            type=EventType.FRICTION,
            timestamp=timestamp,
            confidence=min(1.0, (metric / threshold) * 0.6),
            frequency_range=FrequencyRange(100.0, 1000.0),
            details=EventDetails(energy=metric),
        )

    def reset(self) -> None:
        self._consecutive_frames = 0
        self._sustaining = False


class GeneralDetector:
    """Loud transient fallback. The flux requirement keeps out steady sources like fans."""

    BASE_ENERGY_THRESHOLD = 5000.0
    BASE_FLUX_THRESHOLD = 500.0
    BANDWIDTH_HZ = 200.0

    def __init__(self, cooldown_ms: float = 500.0):
        self.cooldown_ms = cooldown_ms
        self._last_trigger_ms: Optional[float] = None

    def _cooling(self, timestamp: float) -> bool:
        return self._last_trigger_ms is not None and timestamp - self._last_trigger_ms < self.cooldown_ms

    def detect(self, features: SpectralFeatures, timestamp: float,
               config: Optional[DetectionConfig] = None) -> Optional[NoiseEvent]:
        if self._cooling(timestamp):
            return None

        cfg = _config(config)
        sensitivity = cfg.generic_sensitivity
        flux_thresh = effective_threshold(self.BASE_FLUX_THRESHOLD, sensitivity)
        energy_thresh = effective_threshold(
            _resolve(cfg.generic_threshold, self.BASE_ENERGY_THRESHOLD), sensitivity)

        if not (features.energy > energy_thresh and features.spectral_flux > flux_thresh):
            return None

        self._last_trigger_ms = timestamp
        peak = features.peak_frequency
        freq_range = FrequencyRange(
            max(MIN_AUDIBLE_HZ, min(MAX_AUDIBLE_HZ, peak - self.BANDWIDTH_HZ)),
            max(MIN_AUDIBLE_HZ, min(MAX_AUDIBLE_HZ, peak + self.BANDWIDTH_HZ)),
        )
        log_event("DEBUG", "Detector", "Generic", t=f"{timestamp:.0f}",
                  energy=f"{features.energy:.0f}", peak_hz=f"{peak:.0f}")
        return NoiseEvent(
            type=EventType.GENERIC,
            timestamp=timestamp,
            confidence=min(1.0, (features.energy / energy_thresh) * 0.5),
            frequency_range=freq_range,
            details=EventDetails(energy=features.energy),
        )

    def reset(self) -> None:
        self._last_trigger_ms = None
