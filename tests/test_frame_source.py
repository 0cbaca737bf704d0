import tempfile
import unittest
from pathlib import Path

import numpy as np
from scipy.io import wavfile

from config import AnalysisConfig
from frame_source import ByteSpectrum, iter_frames, read_wav_mono, write_wav


class TestByteSpectrum(unittest.TestCase):
    def test_sine_peaks_at_its_bin(self):
        sr = 44100
        spectrum = ByteSpectrum(fft_size=2048, smoothing=0.0)
        t = np.arange(2048) / sr
        frame = spectrum.process(0.01 * np.sin(2 * np.pi * 1000.0 * t))

        self.assertEqual(frame.dtype, np.uint8)
        self.assertEqual(len(frame), 1024)
        expected_bin = 1000.0 / (sr / 2.0 / 1024)
        self.assertLessEqual(abs(int(np.argmax(frame)) - expected_bin), 1.0)
        self.assertGreater(int(frame.max()), 100)

    def test_silence_is_zero(self):
        spectrum = ByteSpectrum()
        self.assertEqual(int(spectrum.process(np.zeros(2048)).max()), 0)

    def test_short_block_is_zero_padded(self):
        spectrum = ByteSpectrum(fft_size=512)
        self.assertEqual(len(spectrum.process(np.ones(100))), 256)

    def test_smoothing_decays(self):
        spectrum = ByteSpectrum(fft_size=1024, smoothing=0.8)
        tone = 0.5 * np.sin(2 * np.pi * 2000.0 * np.arange(1024) / 44100)
        loud = spectrum.process(tone).astype(int)
        after = spectrum.process(np.zeros(1024)).astype(int)
        self.assertGreater(int(after.max()), 0)
        self.assertLess(int(after.max()), int(loud.max()) + 1)
        spectrum.reset()
        self.assertEqual(int(spectrum.process(np.zeros(1024)).max()), 0)

    def test_from_config(self):
        spectrum = ByteSpectrum.from_config(AnalysisConfig(fft_size=512, smoothing=0.5))
        self.assertEqual(spectrum.bin_count, 256)
        self.assertEqual(spectrum.smoothing, 0.5)


class TestWavIO(unittest.TestCase):
    def test_write_and_read_back(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "out" / "tone.wav"
            samples = 0.25 * np.sin(np.linspace(0, 40 * np.pi, 8000))
            write_wav(path, 8000, samples)

            sr, data = read_wav_mono(path)
            self.assertEqual(sr, 8000)
            self.assertEqual(len(data), 8000)
            np.testing.assert_allclose(data, samples, atol=2.0 / 32767)

    def test_stereo_is_downmixed(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "stereo.wav"
            stereo = np.zeros((100, 2), dtype=np.int16)
            stereo[:, 0] = 16384
            wavfile.write(str(path), 8000, stereo)

            _, data = read_wav_mono(path)
            np.testing.assert_allclose(data, np.full(100, 0.25))

    def test_unsigned_8bit(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "u8.wav"
            wavfile.write(str(path), 8000, np.full(10, 128, dtype=np.uint8))
            _, data = read_wav_mono(path)
            np.testing.assert_allclose(data, np.zeros(10))

    def test_missing_file_raises(self):
        with self.assertRaises(OSError):
            read_wav_mono("/nonexistent/file.wav")


class TestIterFrames(unittest.TestCase):
    def test_frame_timing(self):
        spectrum = ByteSpectrum(fft_size=256)
        frames = list(iter_frames(np.zeros(8000), 8000, spectrum, frame_ms=16.0))
        self.assertEqual(len(frames), 8000 // 128)
        self.assertAlmostEqual(frames[0][0], 16.0)
        self.assertAlmostEqual(frames[1][0] - frames[0][0], 16.0)
        self.assertEqual(len(frames[0][1]), 128)


if __name__ == "__main__":
    unittest.main()
