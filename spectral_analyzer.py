"""
Spectral feature extraction.

Turns one frame of byte magnitudes (0-255 per frequency bin, as supplied by
an analyser node) into the compact feature vector every detector consumes.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from frequency_utils import band_index, bin_frequencies, hz_per_bin

LOW_BAND_EDGE_HZ = 300.0
MID_BAND_EDGE_HZ = 2000.0


@dataclass(frozen=True)
class SpectralFeatures:
    """Per-frame spectral summary"""
    energy: float                 # Sum of all bin magnitudes
    low_band_energy: float        # Bins below 300 Hz
    mid_band_energy: float        # 300 Hz - 2000 Hz
    high_band_energy: float       # 2000 Hz and above
    spectral_flux: float          # L1 distance to previous frame
    spectral_centroid: float      # Energy-weighted mean frequency (Hz)
    peak_frequency: float         # Frequency of the loudest bin (Hz)

    @property
    def friction_metric(self) -> float:
        """Mid-heavy energy blend used for drag/roll sounds."""
        return self.low_band_energy * 0.5 + self.mid_band_energy


class SpectralAnalyzer:
    """Stateful feature extractor. Owns one frame of history for flux."""

    def __init__(self, sample_rate: int):
        self.sample_rate = sample_rate
        self._previous: Optional[np.ndarray] = None
        # Band layout is cached per (sample_rate, bin_count)
        self._layout_key: Optional[tuple] = None
        self._bands: Optional[np.ndarray] = None

    def _band_layout(self, sample_rate: float, bin_count: int) -> np.ndarray:
        key = (sample_rate, bin_count)
        if key != self._layout_key:
            freqs = bin_frequencies(sample_rate, bin_count)
            self._bands = band_index(freqs, (LOW_BAND_EDGE_HZ, MID_BAND_EDGE_HZ))
            self._layout_key = key
        return self._bands

    def analyze(self, frame, sample_rate: Optional[float] = None) -> SpectralFeatures:
        """Compute features for one frame and remember it for the next flux."""
        sr = self.sample_rate if sample_rate is None else sample_rate
        values = np.asarray(frame, dtype=np.float64).ravel()
        bin_count = values.size
        if bin_count == 0:
            self._previous = None
            return SpectralFeatures(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

        freq_step = hz_per_bin(sr, bin_count)
        bands = self._band_layout(sr, bin_count)

        energy = float(values.sum())
        band_sums = np.bincount(bands, weights=values, minlength=3)

        if energy > 0:
            centroid_bin = float(np.dot(values, np.arange(bin_count))) / energy
        else:
            centroid_bin = 0.0

        # argmax returns the first maximum, matching a strict running max
        peak_bin = int(np.argmax(values)) if energy > 0 else 0

        if self._previous is not None and self._previous.size == bin_count:
            flux = float(np.abs(values - self._previous).sum())
        else:
            flux = 0.0

        self._previous = values.copy()

        return SpectralFeatures(
            energy=energy,
            low_band_energy=float(band_sums[0]),
            mid_band_energy=float(band_sums[1]),
            high_band_energy=float(band_sums[2]),
            spectral_flux=flux,
            spectral_centroid=centroid_bin * freq_step,
            peak_frequency=peak_bin * freq_step,
        )

    @property
    def has_history(self) -> bool:
        return self._previous is not None

    def reset(self) -> None:
        """Drop the stored frame (silence gap or stream restart)."""
        self._previous = None
