import numpy as np


def hz_per_bin(sample_rate: float, bin_count: int) -> float:
    """Width of one magnitude bin: Nyquist spread over ``bin_count`` bins."""
    if bin_count <= 0:
        return 0.0
    return (sample_rate / 2.0) / bin_count


def bin_frequencies(sample_rate: float, bin_count: int) -> np.ndarray:
    """Lower-edge frequency (Hz) of every bin: ``i * (sample_rate/2) / bin_count``."""
    return np.arange(bin_count, dtype=np.float64) * hz_per_bin(sample_rate, bin_count)


def band_index(freqs: np.ndarray, edges) -> np.ndarray:
    """Band number for each frequency given ascending upper edges.

    A frequency belongs to the first band whose edge it is strictly below;
    anything at or above the last edge lands in the final band.
    """
    return np.searchsorted(np.asarray(edges, dtype=np.float64), freqs, side="right")
