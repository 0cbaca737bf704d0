"""
Byte-magnitude frame supply for offline analysis.

Reproduces what a browser analyser node hands the live pipeline: a
Blackman-windowed FFT of the most recent ``fft_size`` samples, smoothed over
time, converted to dB and scaled into 0-255 between ``min_db`` and
``max_db``. Feeding WAV files through this gives the detectors the same
kind of input they see live.
"""

from pathlib import Path
from typing import Iterator, Tuple

import numpy as np
from scipy.io import wavfile
from scipy.signal import get_window

from config import AnalysisConfig
from logging_utils import log_event


class ByteSpectrum:
    """Stateful time-domain -> byte-magnitude converter (one per stream)."""

    def __init__(self, fft_size: int = 2048, smoothing: float = 0.8,
                 min_db: float = -100.0, max_db: float = -30.0):
        self.fft_size = fft_size
        self.smoothing = float(np.clip(smoothing, 0.0, 1.0))
        self.min_db = min_db
        self.max_db = max_db
        self._window = get_window("blackman", fft_size, fftbins=False)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float64)

    @classmethod
    def from_config(cls, cfg: AnalysisConfig) -> "ByteSpectrum":
        return cls(cfg.fft_size, cfg.smoothing, cfg.min_db, cfg.max_db)

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def process(self, block: np.ndarray) -> np.ndarray:
        """Byte magnitudes for the latest ``fft_size`` samples of ``block``."""
        samples = np.asarray(block, dtype=np.float64)
        if samples.size < self.fft_size:
            samples = np.concatenate([np.zeros(self.fft_size - samples.size), samples])
        else:
            samples = samples[-self.fft_size:]

        spectrum = np.fft.rfft(samples * self._window)[:self.bin_count]
        magnitude = np.abs(spectrum) / self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude

        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(self._smoothed)
        scaled = (db - self.min_db) * (255.0 / (self.max_db - self.min_db))
        return np.clip(np.floor(np.nan_to_num(scaled, neginf=0.0)), 0, 255).astype(np.uint8)

    def reset(self) -> None:
        self._smoothed = np.zeros(self.bin_count, dtype=np.float64)


def read_wav_mono(path) -> Tuple[int, np.ndarray]:
    """Read a WAV file as mono float64 in [-1, 1]."""
    sample_rate, data = wavfile.read(str(path))
    if np.issubdtype(data.dtype, np.integer):
        info = np.iinfo(data.dtype)
        if info.min == 0:
            # Unsigned 8-bit PCM is offset binary
            data = (data.astype(np.float64) - (info.max + 1) / 2.0) / ((info.max + 1) / 2.0)
        else:
            data = data.astype(np.float64) / float(-info.min)
    else:
        data = data.astype(np.float64)
    if data.ndim > 1:
        data = data.mean(axis=1)
    log_event("INFO", "Analyzer", "WAV loaded", path=path, sample_rate=sample_rate,
              seconds=f"{len(data) / max(1, sample_rate):.1f}")
    return int(sample_rate), data


def write_wav(path, sample_rate: int, samples: np.ndarray) -> Path:
    """Write mono float samples as 16-bit PCM."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    pcm = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    wavfile.write(str(out), int(sample_rate), (pcm * 32767.0).astype(np.int16))
    return out


def iter_frames(samples: np.ndarray, sample_rate: int, spectrum: ByteSpectrum,
                frame_ms: float = 16.0, start_ms: float = 0.0) -> Iterator[Tuple[float, np.ndarray]]:
    """Yield (timestamp_ms, byte frame) every ``frame_ms`` of audio."""
    hop = max(1, int(round(sample_rate * frame_ms / 1000.0)))
    for end in range(hop, len(samples) + 1, hop):
        start = max(0, end - spectrum.fft_size)
        yield start_ms + end * 1000.0 / sample_rate, spectrum.process(samples[start:end])

