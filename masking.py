"""
Adaptive masking calculator.

Maps observed or classified noise onto masking-engine parameters. Every mode
returns a partial MaskingDelta that the caller merges onto its current
MaskingConfig; no mode resets fields it does not compute.

Modes:
- from_frame:   one magnitude frame (instantaneous)
- from_history: learned frames, aggregated per bin (70% max / 30% median)
- from_events:  the recent classified event log
- for_event:    one event picked by the user
"""

import copy
from collections import deque
from dataclasses import dataclass, fields
from typing import Deque, Dict, Iterable, List, Optional, Sequence

import numpy as np

from config import NOISE_COLORS, EQBand, MaskingConfig
from detectors import EventType, NoiseEvent
from frequency_utils import band_index, bin_frequencies
from logging_utils import log_event

# Five analysis bands: low, mid-low, mid, mid-high, high
FRAME_BAND_EDGES_HZ = (150.0, 400.0, 1000.0, 4000.0)
# EQ band frequency (upper bound, inclusive) -> analysis band
EQ_BAND_LIMITS_HZ = (100.0, 300.0, 1000.0, 4000.0)
# Event centre frequency bands: low, mid-low, mid-high, high
EVENT_BAND_EDGES_HZ = (300.0, 800.0, 2000.0)

NORMALIZE_THRESHOLD = 40.0
NORMALIZE_FLOOR = 0.1
EQ_BASE_LEVEL = 80.0
RUMBLE_LEVEL = 140.0
HISTORY_MAX_WEIGHT = 0.7
HISTORY_MEDIAN_WEIGHT = 0.3


@dataclass
class BandLevels:
    """Mean magnitude per analysis band"""
    low: float = 0.0
    mid_low: float = 0.0
    mid: float = 0.0
    mid_high: float = 0.0
    high: float = 0.0

    def as_tuple(self):
        return (self.low, self.mid_low, self.mid, self.mid_high, self.high)


@dataclass
class MaskingDelta:
    """Partial masking update. None means "leave the current value"."""
    noise_volumes: Optional[Dict[str, float]] = None
    eq_bands: Optional[List[EQBand]] = None
    rumble_intensity: Optional[float] = None
    rumble_crossover: Optional[float] = None
    hpf: Optional[float] = None
    lpf: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> dict:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name == "eq_bands":
                value = [
                    {"frequency": band.frequency, "gain": band.gain, "q": band.q, "kind": band.kind.value}
                    for band in value
                ]
            elif f.name == "noise_volumes":
                value = dict(value)
            data[f.name] = value
        return data

    def apply_to(self, config: MaskingConfig) -> MaskingConfig:
        """Return a merged copy; ``config`` itself is left untouched."""
        merged = copy.deepcopy(config)
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                setattr(merged, f.name, copy.deepcopy(value))
        return merged


def normalize_level(value: float) -> float:
    """Band level -> colour volume. Quiet bands get a low floor."""
    if value < NORMALIZE_THRESHOLD:
        return NORMALIZE_FLOOR
    return min(1.0, 0.2 + (value - NORMALIZE_THRESHOLD) / 120.0)


def eq_gain_for_level(level: float) -> float:
    """Boost loud bands up to +6 dB, cut quiet ones down to -3 dB."""
    if level > EQ_BASE_LEVEL:
        return min(6.0, (level - EQ_BASE_LEVEL) / 20.0)
    return max(-3.0, (level - EQ_BASE_LEVEL) / 30.0)


def aggregate_history(frames: Sequence) -> np.ndarray:
    """Collapse history into one frame: 70% per-bin max + 30% per-bin median.

    The median is the upper middle value of the sorted bin history. Results
    are floored to whole byte magnitudes. Frames of differing length are
    truncated to the shortest.
    """
    if len(frames) == 0:
        return np.zeros(0, dtype=np.float64)
    length = min(len(frame) for frame in frames)
    stack = np.stack([np.asarray(frame, dtype=np.float64)[:length] for frame in frames])
    peak = stack.max(axis=0)
    ordered = np.sort(stack, axis=0)
    median = ordered[len(frames) // 2]
    blended = peak * HISTORY_MAX_WEIGHT + median * HISTORY_MEDIAN_WEIGHT
    return np.floor(np.minimum(255.0, blended))


class AdaptiveMaskingCalculator:
    """Pure calculator; the sample rate is only needed for frame-based modes."""

    def __init__(self, sample_rate: int = 44100):
        self.sample_rate = sample_rate

    # ----- frame modes -----

    def band_levels(self, frame, sample_rate: Optional[float] = None) -> BandLevels:
        sr = self.sample_rate if sample_rate is None else sample_rate
        values = np.asarray(frame, dtype=np.float64).ravel()
        if values.size == 0:
            return BandLevels()
        bands = band_index(bin_frequencies(sr, values.size), FRAME_BAND_EDGES_HZ)
        sums = np.bincount(bands, weights=values, minlength=5)
        counts = np.bincount(bands, minlength=5)
        means = np.divide(sums, counts, out=np.zeros(5), where=counts > 0)
        return BandLevels(*(float(v) for v in means[:5]))

    def from_frame(self, frame, current: MaskingConfig,
                   sample_rate: Optional[float] = None) -> MaskingDelta:
        """Instantaneous mode."""
        values = np.asarray(frame, dtype=np.float64).ravel()
        if values.size == 0:
            return MaskingDelta()
        return self.from_levels(self.band_levels(values, sample_rate), current)

    def from_levels(self, levels: BandLevels, current: MaskingConfig) -> MaskingDelta:
        volumes = dict(current.noise_volumes)
        volumes["brown"] = normalize_level(levels.low * 0.8 + levels.mid_low * 0.4)
        volumes["pink"] = normalize_level(levels.mid_low * 0.6 + levels.mid * 0.6)
        volumes["white"] = normalize_level(levels.mid_high * 0.8 + levels.high * 0.2)
        volumes["blue"] = normalize_level(levels.high * 0.7)
        volumes["violet"] = normalize_level(levels.high * 0.5)

        band_values = levels.as_tuple()
        eq_bands = []
        for band in current.eq_bands:
            slot = int(np.searchsorted(EQ_BAND_LIMITS_HZ, band.frequency, side="left"))
            new_band = copy.copy(band)
            new_band.gain = eq_gain_for_level(band_values[slot])
            eq_bands.append(new_band)

        rumble_intensity = 0.0
        rumble_crossover = 80.0
        if levels.low > RUMBLE_LEVEL:
            rumble_intensity = min(0.8, (levels.low - RUMBLE_LEVEL) / 100.0)
            rumble_crossover = 80.0 + (levels.low - RUMBLE_LEVEL) * 0.5

        if levels.low < 60:
            hpf = 150.0
        elif levels.low < 100:
            hpf = 80.0
        else:
            hpf = 30.0

        lpf = current.lpf
        if levels.high < 60:
            lpf = 8000.0
        elif levels.high > 120:
            lpf = 16000.0

        log_event("DEBUG", "Masking", "Band levels",
                  **{name: f"{value:.1f}" for name, value in zip(
                      ("low", "mid_low", "mid", "mid_high", "high"), band_values)})
        return MaskingDelta(
            noise_volumes=volumes,
            eq_bands=eq_bands,
            rumble_intensity=rumble_intensity,
            rumble_crossover=min(150.0, rumble_crossover),
            hpf=hpf,
            lpf=lpf,
        )

    def from_history(self, frames: Sequence, current: MaskingConfig,
                     sample_rate: Optional[float] = None) -> MaskingDelta:
        """Learned mode: aggregate the history, then map like a single frame."""
        if len(frames) == 0:
            return MaskingDelta()
        aggregated = aggregate_history(frames)
        log_event("INFO", "Masking", "History aggregated", frames=len(frames), bins=aggregated.size)
        return self.from_frame(aggregated, current, sample_rate)

    # ----- event modes -----

    def from_events(self, events: Iterable[NoiseEvent], current: MaskingConfig) -> MaskingDelta:
        """Bias the colour mix toward the bands where events keep happening."""
        events = list(events)
        if not events:
            return MaskingDelta()

        centers = np.array([event.center_frequency for event in events], dtype=np.float64)
        counts = np.bincount(band_index(centers, EVENT_BAND_EDGES_HZ), minlength=4)
        low, mid_low, mid_high, high = (float(c) / len(events) for c in counts[:4])

        volumes = dict(current.noise_volumes)
        volumes["brown"] = 0.2 + low * 0.6
        volumes["pink"] = 0.2 + mid_low * 0.6
        volumes["white"] = 0.1 + (mid_high * 0.6 + high * 0.3)
        if low > 0.5:
            volumes["brown"] = max(volumes["brown"], 0.6)
        if mid_low > 0.5:
            volumes["pink"] = max(volumes["pink"], 0.6)

        rumble = current.rumble_intensity
        if low > 0.3:
            rumble = min(0.8, 0.3 + low * 0.5)

        log_event("INFO", "Masking", "Event mix", events=len(events),
                  low=f"{low:.2f}", mid_low=f"{mid_low:.2f}",
                  mid_high=f"{mid_high:.2f}", high=f"{high:.2f}")
        return MaskingDelta(noise_volumes=volumes, rumble_intensity=rumble)

    def for_event(self, event: NoiseEvent, current: MaskingConfig) -> MaskingDelta:
        """Mask one picked event: a dominant colour chosen by its centre frequency."""
        center = event.center_frequency
        volumes = {color: 0.1 for color in NOISE_COLORS}
        volumes["blue"] = 0.0
        volumes["violet"] = 0.0
        rumble = current.rumble_intensity

        if center < 300:
            volumes["brown"] = 0.7
            volumes["pink"] = 0.2
            rumble = 0.6
        elif center < 1000:
            volumes["brown"] = 0.3
            volumes["pink"] = 0.7
            volumes["white"] = 0.2
        else:
            volumes["pink"] = 0.3
            volumes["white"] = 0.6
            volumes["blue"] = 0.2

        if event.type == EventType.FRICTION:
            volumes["pink"] = max(volumes["pink"], 0.5)
        elif event.type == EventType.FOOTSTEP:
            volumes["brown"] = max(volumes["brown"], 0.6)

        return MaskingDelta(noise_volumes=volumes, rumble_intensity=rumble)


class LearningSession:
    """
    Records magnitude snapshots for learned-mode masking.

    At most one frame per ``interval_ms`` is kept and the oldest frame is
    evicted once ``max_frames`` is reached (one minute at the defaults).
    """

    def __init__(self, interval_ms: float = 100.0, max_frames: int = 600):
        self.interval_ms = interval_ms
        self.max_frames = max(1, int(max_frames))
        self._frames: Deque[np.ndarray] = deque(maxlen=self.max_frames)
        self._learning = False
        self._last_sample_ms: Optional[float] = None

    @property
    def is_learning(self) -> bool:
        return self._learning

    @property
    def frames(self) -> List[np.ndarray]:
        return list(self._frames)

    def start(self) -> None:
        if self._learning:
            return
        self._learning = True
        self._frames.clear()
        self._last_sample_ms = None
        log_event("INFO", "Learning", "Started", interval_ms=self.interval_ms, max_frames=self.max_frames)

    def record(self, frame, timestamp: float) -> bool:
        """Offer a frame; returns True when it was kept."""
        if not self._learning:
            return False
        if self._last_sample_ms is not None and timestamp - self._last_sample_ms < self.interval_ms:
            return False
        self._frames.append(np.array(frame, dtype=np.uint8))
        self._last_sample_ms = timestamp
        return True

    def stop(self, calculator: AdaptiveMaskingCalculator, current: MaskingConfig) -> MaskingDelta:
        """End learning and turn the recorded history into a delta."""
        if not self._learning:
            return MaskingDelta()
        self._learning = False
        frames = list(self._frames)
        self._frames.clear()
        log_event("INFO", "Learning", "Stopped", frames=len(frames))
        return calculator.from_history(frames, current)

    def reset(self) -> None:
        self._learning = False
        self._frames.clear()
        self._last_sample_ms = None
