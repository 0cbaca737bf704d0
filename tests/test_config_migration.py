import json
import tempfile
from dataclasses import asdict
from pathlib import Path
import unittest
from unittest import mock

from config import (
    Config,
    CURRENT_CONFIG_VERSION,
    EQBandKind,
    MASKING_PRESETS,
    apply_dict_to_dataclass,
    get_preset,
    migrate_config,
)
import config_persistence as config_persistence_module


class TestConfigMigration(unittest.TestCase):
    def test_missing_version_sets_defaults_and_bumps(self):
        cfg = Config()
        data = {
            # version intentionally omitted to simulate legacy file
            "detection": {"footstep_sensitivity": 0, "friction_sensitivity": None},
            "masking": {},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
        self.assertEqual(cfg.detection.footstep_sensitivity, 3.5)
        self.assertEqual(cfg.detection.friction_sensitivity, 0.6)
        self.assertEqual(cfg.detection.generic_sensitivity, 1.0)

    def test_out_of_range_values_are_clamped(self):
        cfg = Config()
        data = {
            "version": 1,
            "detection": {"generic_sensitivity": -4.0, "footstep_sensitivity": 100.0},
            "masking": {"noise_volumes": {"brown": 2.0, "pink": "loud"}},
            "learning": {"max_frames": 0},
            "analysis": {"event_log_size": None},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.detection.generic_sensitivity, 0.05)
        self.assertEqual(cfg.detection.footstep_sensitivity, 20.0)
        self.assertEqual(cfg.masking.noise_volumes["brown"], 1.0)
        self.assertEqual(cfg.masking.noise_volumes["pink"], 0.3)
        self.assertEqual(cfg.learning.max_frames, 600)
        self.assertEqual(cfg.analysis.event_log_size, 50)

    def test_preserves_custom_values(self):
        cfg = Config()
        data = {
            "version": 1,
            "detection": {"friction_threshold": 2500.0, "friction_sensitivity": 1.2},
            "masking": {"name": "Night", "hpf": 45.0, "noise_volumes": {"violet": 0.2}},
            "log_level": "DEBUG",
            "report_generation_enabled": False,
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.detection.friction_threshold, 2500.0)
        self.assertEqual(cfg.detection.friction_sensitivity, 1.2)
        self.assertEqual(cfg.masking.name, "Night")
        self.assertEqual(cfg.masking.hpf, 45.0)
        self.assertEqual(cfg.masking.noise_volumes["violet"], 0.2)
        self.assertEqual(cfg.masking.noise_volumes["brown"], 0.5)
        self.assertEqual(cfg.log_level, "DEBUG")
        self.assertFalse(cfg.report_generation_enabled)

    def test_eq_bands_are_coerced(self):
        cfg = Config()
        data = {"masking": {"eq_bands": [
            {"frequency": 60.0, "gain": 4.0, "kind": "lowshelf"},
            {"frequency": 1000.0, "gain": -2.0, "q": 0.7},
        ]}}

        apply_dict_to_dataclass(cfg, data)

        bands = cfg.masking.eq_bands
        self.assertEqual(len(bands), 2)
        self.assertEqual(bands[0].kind, EQBandKind.LOWSHELF)
        self.assertEqual(bands[1].kind, EQBandKind.PEAKING)
        self.assertEqual(bands[1].q, 0.7)

    def test_bad_enum_and_malformed_bands_keep_defaults(self):
        cfg = Config()
        data = {"masking": {"eq_bands": [{"frequency": 100.0, "kind": "notch"}]}}
        apply_dict_to_dataclass(cfg, data)
        self.assertEqual(cfg.masking.eq_bands[0].kind, EQBandKind.PEAKING)

        cfg = Config()
        with mock.patch("config.log_event") as log_event_mock:
            apply_dict_to_dataclass(cfg, {"masking": {"eq_bands": [{"gain": 3.0}]}})
        self.assertEqual(len(cfg.masking.eq_bands), 10)
        self.assertEqual(log_event_mock.call_args.args[0], "WARN")

    def test_unknown_keys_ignored(self):
        cfg = Config()
        apply_dict_to_dataclass(cfg, {"stroke": {"mode": 2}, "detection": {"voice_sensitivity": 9}})
        self.assertFalse(hasattr(cfg, "stroke"))
        self.assertFalse(hasattr(cfg.detection, "voice_sensitivity"))

    def test_detection_accessors(self):
        cfg = Config()
        self.assertEqual(cfg.detection.sensitivity("friction"), 0.6)
        self.assertIsNone(cfg.detection.threshold("generic"))
        with self.assertRaises(ValueError):
            cfg.detection.sensitivity("voice")

    def test_presets_are_private_copies(self):
        preset = get_preset("Footstep Shield")
        preset.noise_volumes["brown"] = 0.0
        self.assertEqual(MASKING_PRESETS["Footstep Shield"].noise_volumes["brown"], 1.0)
        self.assertEqual(set(MASKING_PRESETS), {
            "Default", "Footstep Shield", "Voice Blocker", "Deep Sleep", "Focus Wall", "Heavy Shield",
        })
        with self.assertRaises(ValueError):
            get_preset("Nope")

    def test_load_config_auto_saves_bumped_version(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            legacy_cfg = Config()
            legacy_cfg.version = 0
            legacy_data = asdict(legacy_cfg)
            legacy_data["detection"]["footstep_sensitivity"] = None  # force migration path
            with open(cfg_file, "w", encoding="utf-8") as f:
                json.dump(legacy_data, f)

            with mock.patch.object(config_persistence_module, "get_config_file", return_value=cfg_file):
                cfg = config_persistence_module.load_config()

            self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
            self.assertEqual(cfg.detection.footstep_sensitivity, 3.5)
            with open(cfg_file, "r", encoding="utf-8") as f:
                persisted = json.load(f)
            self.assertEqual(persisted.get("version"), CURRENT_CONFIG_VERSION)
            self.assertEqual(persisted["detection"]["footstep_sensitivity"], 3.5)


if __name__ == "__main__":
    unittest.main()
