import unittest

import numpy as np

from spectral_analyzer import SpectralAnalyzer, SpectralFeatures

SR = 44100
BINS = 1024
HZ = SR / 2.0 / BINS


class TestSpectralAnalyzer(unittest.TestCase):
    def setUp(self):
        self.analyzer = SpectralAnalyzer(SR)

    def test_silent_frame_is_all_zero(self):
        features = self.analyzer.analyze(np.zeros(BINS))
        self.assertEqual(features, SpectralFeatures(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0))

    def test_single_bin_features(self):
        frame = np.zeros(BINS)
        frame[5] = 100
        features = self.analyzer.analyze(frame)

        self.assertEqual(features.energy, 100.0)
        self.assertEqual(features.low_band_energy, 100.0)
        self.assertEqual(features.mid_band_energy, 0.0)
        self.assertEqual(features.high_band_energy, 0.0)
        self.assertAlmostEqual(features.spectral_centroid, 5 * HZ, places=6)
        self.assertAlmostEqual(features.peak_frequency, 5 * HZ, places=6)

    def test_band_boundaries(self):
        # Bin 13 is ~280 Hz, bin 14 ~301 Hz; bin 92 ~1981 Hz, bin 93 ~2003 Hz
        frame = np.zeros(BINS)
        frame[13] = 1
        frame[14] = 2
        frame[92] = 4
        frame[93] = 8
        features = self.analyzer.analyze(frame)

        self.assertEqual(features.low_band_energy, 1.0)
        self.assertEqual(features.mid_band_energy, 6.0)
        self.assertEqual(features.high_band_energy, 8.0)

    def test_bands_partition_energy(self):
        rng = np.random.default_rng(1)
        frame = rng.integers(0, 256, BINS)
        features = self.analyzer.analyze(frame)
        self.assertAlmostEqual(
            features.low_band_energy + features.mid_band_energy + features.high_band_energy,
            features.energy,
            places=6,
        )

    def test_peak_uses_first_maximum(self):
        frame = np.zeros(BINS)
        frame[40] = 200
        frame[300] = 200
        features = self.analyzer.analyze(frame)
        self.assertAlmostEqual(features.peak_frequency, 40 * HZ, places=6)

    def test_flux_is_l1_distance_to_previous_frame(self):
        first = np.zeros(BINS)
        first[10] = 50
        second = np.zeros(BINS)
        second[10] = 20
        second[20] = 30

        self.assertEqual(self.analyzer.analyze(first).spectral_flux, 0.0)
        self.assertEqual(self.analyzer.analyze(second).spectral_flux, 60.0)

    def test_repeated_zero_frames_are_idempotent(self):
        first = self.analyzer.analyze(np.zeros(BINS))
        second = self.analyzer.analyze(np.zeros(BINS))
        self.assertEqual(first, second)

    def test_identical_frames_have_no_flux(self):
        frame = np.random.default_rng(3).integers(0, 256, BINS)
        self.analyzer.analyze(frame)
        self.assertEqual(self.analyzer.analyze(frame.copy()).spectral_flux, 0.0)

    def test_impulse_after_silence_flux_is_magnitude(self):
        impulse = np.zeros(BINS)
        impulse[77] = 173
        self.analyzer.analyze(np.zeros(BINS))
        self.assertEqual(self.analyzer.analyze(impulse).spectral_flux, 173.0)

    def test_flux_zero_when_bin_count_changes(self):
        self.analyzer.analyze(np.full(BINS, 10))
        features = self.analyzer.analyze(np.full(BINS // 2, 90))
        self.assertEqual(features.spectral_flux, 0.0)

    def test_stores_private_copy_of_frame(self):
        frame = np.zeros(64, dtype=np.float64)
        self.analyzer.analyze(frame)
        frame[3] = 50
        self.assertEqual(self.analyzer.analyze(frame).spectral_flux, 50.0)

    def test_reset_drops_history(self):
        self.analyzer.analyze(np.full(BINS, 10))
        self.assertTrue(self.analyzer.has_history)
        self.analyzer.reset()
        self.assertFalse(self.analyzer.has_history)
        self.assertEqual(self.analyzer.analyze(np.full(BINS, 90)).spectral_flux, 0.0)

    def test_sample_rate_override(self):
        frame = np.zeros(BINS)
        frame[100] = 10
        features = self.analyzer.analyze(frame, sample_rate=48000)
        self.assertAlmostEqual(features.peak_frequency, 100 * 24000.0 / BINS, places=6)

    def test_friction_metric(self):
        features = SpectralFeatures(0.0, 40.0, 10.0, 0.0, 0.0, 0.0, 0.0)
        self.assertEqual(features.friction_metric, 30.0)

    def test_empty_frame(self):
        features = self.analyzer.analyze([])
        self.assertEqual(features.energy, 0.0)
        self.assertFalse(self.analyzer.has_history)


if __name__ == "__main__":
    unittest.main()
