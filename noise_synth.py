"""
Silentium - Masking Noise Synthesizer
Generates seamlessly loopable white/pink/brown/blue/violet noise buffers.

Every colour is a linear filter over one shared white source. To make the
loop point seamless without a crossfade, the filter runs over the same white
array twice with its state carried across the boundary; only the second pass
is kept. The state entering sample 0 of the kept pass is then the state the
filter has after the last sample, which is exactly what a looping player
feeds into sample 0 again.
"""

from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
from scipy.signal import lfilter

from config import NOISE_COLORS
from logging_utils import log_event

# Pink: six leaky accumulators (pole, input gain), Voss-McCartney style
PINK_POLES: Tuple[Tuple[float, float], ...] = (
    (0.99886, 0.0555179),
    (0.99332, 0.0750759),
    (0.96900, 0.1538520),
    (0.86650, 0.3104856),
    (0.55000, 0.5329522),
    (-0.7616, -0.0168980),
)
PINK_DIRECT_GAIN = 0.5362
PINK_DELAYED_GAIN = 0.115926
PINK_OUTPUT_GAIN = 0.11

BROWN_LEAK = 0.02
BROWN_OUTPUT_GAIN = 3.5

BLUE_OUTPUT_GAIN = 0.5
VIOLET_OUTPUT_GAIN = 0.35

Section = Tuple[np.ndarray, np.ndarray]


def _pink_sections() -> List[Section]:
    sections = []
    for pole, gain in PINK_POLES:
        sections.append((np.array([gain]), np.array([1.0, -pole])))
    # Direct term plus the one-sample-delayed term
    sections.append((np.array([PINK_DIRECT_GAIN, PINK_DELAYED_GAIN]), np.array([1.0])))
    return [(b * PINK_OUTPUT_GAIN, a) for b, a in sections]


def _brown_sections() -> List[Section]:
    # state = (state + k*x) / (1 + k)  ->  y[n] = y[n-1]/(1+k) + x[n]*k/(1+k)
    k = BROWN_LEAK
    b = np.array([k / (1.0 + k)]) * BROWN_OUTPUT_GAIN
    a = np.array([1.0, -1.0 / (1.0 + k)])
    return [(b, a)]


def _blue_sections() -> List[Section]:
    return [(np.array([1.0, -1.0]) * BLUE_OUTPUT_GAIN, np.array([1.0]))]


def _violet_sections() -> List[Section]:
    return [(np.array([1.0, -2.0, 1.0]) * VIOLET_OUTPUT_GAIN, np.array([1.0]))]


_SECTION_BUILDERS = {
    "pink": _pink_sections,
    "brown": _brown_sections,
    "blue": _blue_sections,
    "violet": _violet_sections,
}


def color_sections(color: str) -> List[Section]:
    """Filter sections (b, a) whose outputs sum to the given colour.

    White has no sections: it is the source itself.
    """
    if color not in NOISE_COLORS:
        raise ValueError(f"Unknown noise color: {color!r}")
    if color == "white":
        return []
    return _SECTION_BUILDERS[color]()


def _state_size(b: np.ndarray, a: np.ndarray) -> int:
    return max(len(a), len(b)) - 1


def filter_sections(sections: List[Section], white: np.ndarray,
                    states: Optional[List[np.ndarray]] = None) -> Tuple[np.ndarray, List[np.ndarray]]:
    """Run all sections over ``white`` from the given states (zeros if None).

    Returns the summed output and the final state of every section.
    """
    out = np.zeros(white.shape[0], dtype=np.float64)
    final_states = []
    for i, (b, a) in enumerate(sections):
        if states is None:
            zi = np.zeros(_state_size(b, a))
        else:
            zi = states[i]
        y, zf = lfilter(b, a, white, zi=zi)
        out += y
        final_states.append(zf)
    return out, final_states


def circular_filter(sections: List[Section], white: np.ndarray) -> np.ndarray:
    """Two-pass circular filtering over one white source.

    Pass 0 only settles the filter state; pass 1 starts from the state left
    at the end of pass 0 and is the returned loop.
    """
    if not sections:
        return white.astype(np.float64, copy=True)
    _, settled = filter_sections(sections, white)
    looped, _ = filter_sections(sections, white, settled)
    return looped


class NoiseSynthesizer:
    """
    Builds loop buffers for the five masking colours.

    The random source is injected so that independent synthesizers can share
    it (or tests can seed it).
    """

    def __init__(self, sample_rate: int = 44100, rng: Optional[np.random.Generator] = None):
        self.sample_rate = sample_rate
        self.rng = rng if rng is not None else np.random.default_rng()

    def buffer_length(self, duration: float, sample_rate: Optional[int] = None) -> int:
        sr = self.sample_rate if sample_rate is None else sample_rate
        return max(1, int(duration * sr))

    def white_source(self, n_samples: int) -> np.ndarray:
        """Independent uniform samples in [-1, 1)."""
        return self.rng.uniform(-1.0, 1.0, n_samples)

    def color_circular(self, color: str, white: np.ndarray) -> np.ndarray:
        """Colour a white source into a seamless loop (unclipped float64)."""
        return circular_filter(color_sections(color), np.asarray(white, dtype=np.float64))

    def synthesize(self, color: str, duration: float = 10.0,
                   sample_rate: Optional[int] = None) -> np.ndarray:
        """Return a loopable mono float32 buffer of ``duration * sample_rate`` samples."""
        n_samples = self.buffer_length(duration, sample_rate)
        white = self.white_source(n_samples)
        loop = np.clip(self.color_circular(color, white), -1.0, 1.0).astype(np.float32)
        log_event("DEBUG", "Synth", "Loop generated", color=color, samples=n_samples,
                  rms=f"{float(np.sqrt(np.mean(loop.astype(np.float64) ** 2))):.4f}")
        return loop

    def synthesize_all(self, duration: float = 10.0,
                       sample_rate: Optional[int] = None) -> Dict[str, np.ndarray]:
        """All five colours built from one shared white source."""
        n_samples = self.buffer_length(duration, sample_rate)
        white = self.white_source(n_samples)
        loops = {}
        for color in NOISE_COLORS:
            loops[color] = np.clip(self.color_circular(color, white), -1.0, 1.0).astype(np.float32)
        log_event("INFO", "Synth", "Loop set generated", samples=n_samples, colors=len(loops))
        return loops

    @staticmethod
    def mix(loops: Mapping[str, np.ndarray], volumes: Mapping[str, float]) -> np.ndarray:
        """Weighted sum of colour loops. Scaled down only if the sum would clip."""
        if not loops:
            return np.zeros(0, dtype=np.float32)
        length = min(len(buf) for buf in loops.values())
        total = np.zeros(length, dtype=np.float64)
        for color, buf in loops.items():
            gain = float(np.clip(volumes.get(color, 0.0), 0.0, 1.0))
            if gain > 0.0:
                total += gain * np.asarray(buf[:length], dtype=np.float64)
        peak = float(np.max(np.abs(total))) if length else 0.0
        if peak > 1.0:
            total /= peak
        return total.astype(np.float32)

