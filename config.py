# Silentium analysis core configuration
# All default values and constants

import copy
from dataclasses import dataclass, field, is_dataclass
from enum import Enum
from typing import Dict, List, Optional

from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

NOISE_COLORS = ("white", "pink", "brown", "blue", "violet")

SENSITIVITY_KINDS = ("footstep", "friction", "generic")


class EQBandKind(str, Enum):
    LOWSHELF = "lowshelf"
    PEAKING = "peaking"
    HIGHSHELF = "highshelf"


@dataclass
class EQBand:
    """One band of the masking equalizer"""
    frequency: float                  # Hz
    gain: float = 0.0                 # dB (-12 ~ +12)
    q: float = 1.41                   # Bandwidth (0.1 ~ 10)
    kind: EQBandKind = EQBandKind.PEAKING


# Ten-band graphic EQ: sub, bass, low, low-mid, mid, mid-high, high-mid,
# presence, brilliance, air
DEFAULT_EQ_FREQUENCIES = (31.5, 63.0, 125.0, 250.0, 500.0, 1000.0, 2000.0, 4000.0, 8000.0, 16000.0)


def default_eq_bands(gains: Optional[Dict[float, float]] = None) -> List[EQBand]:
    """Build the ten-band EQ, optionally with per-frequency gains."""
    gains = gains or {}
    bands = []
    last = len(DEFAULT_EQ_FREQUENCIES) - 1
    for i, freq in enumerate(DEFAULT_EQ_FREQUENCIES):
        if i == 0:
            kind = EQBandKind.LOWSHELF
        elif i == last:
            kind = EQBandKind.HIGHSHELF
        else:
            kind = EQBandKind.PEAKING
        bands.append(EQBand(frequency=freq, gain=float(gains.get(freq, 0.0)), kind=kind))
    return bands


def default_noise_volumes() -> Dict[str, float]:
    return {"white": 0.0, "pink": 0.3, "brown": 0.5, "blue": 0.0, "violet": 0.0}


@dataclass
class AnalysisConfig:
    """Frame analysis settings"""
    sample_rate: int = 44100
    fft_size: int = 2048              # Bin count = fft_size / 2
    smoothing: float = 0.8            # Analyser time smoothing (0.0-1.0)
    min_db: float = -100.0            # Byte 0 maps to this level
    max_db: float = -30.0             # Byte 255 maps to this level
    frame_interval_ms: float = 16.0   # One analysis frame per rendered frame
    gap_reset_ms: float = 1000.0      # Frame gap treated as a stream restart (flux history dropped)
    event_log_size: int = 50          # Recent events kept by the monitor
    session_event_limit: int = 500    # Events kept for the session report (counts stay exact)
    calibration_seconds: float = 3.0  # Ambient calibration window


@dataclass
class DetectionConfig:
    """Per-detector thresholds and sensitivities.
    Thresholds left at None fall back to each detector's built-in constant.
    Effective threshold = threshold / sensitivity, so sensitivity must be > 0."""
    footstep_threshold: Optional[float] = None   # Low-band energy (built-in 80.0)
    footstep_sensitivity: float = 3.5
    friction_threshold: Optional[float] = None   # 0.5*low + mid (built-in 40.0)
    friction_sensitivity: float = 0.6
    generic_threshold: Optional[float] = None    # Total energy (built-in 5000.0)
    generic_sensitivity: float = 1.0

    def sensitivity(self, kind: str) -> float:
        if kind not in SENSITIVITY_KINDS:
            raise ValueError(f"Unknown detector kind: {kind!r}")
        return getattr(self, f"{kind}_sensitivity")

    def threshold(self, kind: str) -> Optional[float]:
        if kind not in SENSITIVITY_KINDS:
            raise ValueError(f"Unknown detector kind: {kind!r}")
        return getattr(self, f"{kind}_threshold")


@dataclass
class LearningConfig:
    """Learned-history masking settings"""
    interval_ms: float = 100.0        # One snapshot every 100 ms
    max_frames: int = 600             # One minute of history


@dataclass
class SynthConfig:
    """Masking noise synthesis settings"""
    sample_rate: int = 44100
    buffer_seconds: float = 10.0      # Loop length
    seed: Optional[int] = None        # None = fresh entropy each run


@dataclass
class MaskingConfig:
    """Masking engine parameters (what the playback graph applies)"""
    name: str = "Default"
    category: str = "general"         # footstep / voice / sleep / general
    noise_volumes: Dict[str, float] = field(default_factory=default_noise_volumes)
    master_volume: float = 0.5
    eq_bands: List[EQBand] = field(default_factory=default_eq_bands)
    hpf: float = 20.0                 # High-pass cutoff (Hz)
    lpf: float = 20000.0              # Low-pass cutoff (Hz)
    rumble_intensity: float = 0.0     # 0.0 - 1.0
    rumble_crossover: float = 80.0    # Hz
    modulation: float = 0.0           # LFO depth
    neighbor_safe: bool = True        # Cut below neighbor_safe_freq
    neighbor_safe_freq: float = 40.0


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    synth: SynthConfig = field(default_factory=SynthConfig)
    masking: MaskingConfig = field(default_factory=MaskingConfig)

    # Global
    log_level: str = "INFO"                  # Logging level (DEBUG/INFO/WARNING/ERROR)
    report_generation_enabled: bool = True   # Write session reports on monitor stop


def _coerce_eq_bands(value) -> Optional[List[EQBand]]:
    if not isinstance(value, list):
        return None
    bands = []
    for item in value:
        if isinstance(item, EQBand):
            bands.append(item)
            continue
        if not isinstance(item, dict) or "frequency" not in item:
            return None
        try:
            band = EQBand(frequency=float(item["frequency"]))
        except (TypeError, ValueError):
            return None
        apply_dict_to_dataclass(band, item)
        bands.append(band)
    return bands


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; Enum fields are coerced when possible."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if isinstance(current, Enum):
            try:
                setattr(target, key, current.__class__(value))
            except ValueError:
                log_event("WARN", "Config", "Could not convert value, keeping default",
                          key=key, type=current.__class__.__name__)
            continue

        if key == "eq_bands":
            bands = _coerce_eq_bands(value)
            if bands is None:
                log_event("WARN", "Config", "Malformed eq_bands, keeping default")
            else:
                setattr(target, key, bands)
            continue

        if key == "noise_volumes":
            if not isinstance(value, dict):
                log_event("WARN", "Config", "Malformed noise_volumes, keeping default")
                continue
            volumes = dict(current)
            for color in NOISE_COLORS:
                if color in value:
                    volumes[color] = value[color]
            setattr(target, key, volumes)
            continue

        setattr(target, key, value)


def _clamped_float(value, default: float, low: float, high: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = default
    return max(low, min(high, number))


def _positive_int(value, default: int) -> int:
    try:
        number = int(value or default)
    except (TypeError, ValueError):
        number = default
    return max(1, number)


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Adds defaults for newly introduced fields and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    detection_defaults = DetectionConfig()
    if version < 1:
        # Pre-versioned files stored sensitivities that could be zero or null
        for kind in SENSITIVITY_KINDS:
            name = f"{kind}_sensitivity"
            if getattr(config.detection, name, None) in (None, 0):
                setattr(config.detection, name, getattr(detection_defaults, name))

    if getattr(config, 'report_generation_enabled', True) is None:
        config.report_generation_enabled = True
    if not getattr(config, 'log_level', None):
        config.log_level = "INFO"

    # Always keep sensitivities strictly positive
    for kind in SENSITIVITY_KINDS:
        name = f"{kind}_sensitivity"
        value = _clamped_float(getattr(config.detection, name, None),
                               getattr(detection_defaults, name), 0.05, 20.0)
        setattr(config.detection, name, value)

    volumes = default_noise_volumes()
    volumes.update({
        color: _clamped_float(config.masking.noise_volumes.get(color), volumes[color], 0.0, 1.0)
        for color in NOISE_COLORS
    })
    config.masking.noise_volumes = volumes

    config.learning.max_frames = _positive_int(config.learning.max_frames, LearningConfig.max_frames)
    config.analysis.event_log_size = _positive_int(config.analysis.event_log_size, AnalysisConfig.event_log_size)
    config.analysis.session_event_limit = _positive_int(config.analysis.session_event_limit,
                                                        AnalysisConfig.session_event_limit)

    config.version = CURRENT_CONFIG_VERSION


def _preset(name: str, category: str, volumes: Dict[str, float], master: float,
            eq_gains: Optional[Dict[float, float]], hpf: float, lpf: float,
            rumble: float, crossover: float, modulation: float,
            neighbor_safe: bool = True) -> MaskingConfig:
    return MaskingConfig(
        name=name,
        category=category,
        noise_volumes=dict(volumes),
        master_volume=master,
        eq_bands=default_eq_bands(eq_gains),
        hpf=hpf,
        lpf=lpf,
        rumble_intensity=rumble,
        rumble_crossover=crossover,
        modulation=modulation,
        neighbor_safe=neighbor_safe,
    )


# Built-in masking presets (read-only starting points)
MASKING_PRESETS: Dict[str, MaskingConfig] = {
    preset.name: preset for preset in (
        MaskingConfig(),
        _preset("Footstep Shield", "footstep",
                {"white": 0.0, "pink": 0.3, "brown": 1.0, "blue": 0.0, "violet": 0.0}, 0.6,
                {31.5: 4, 63.0: 6, 125.0: 4, 250.0: 3, 500.0: 1, 4000.0: -2, 8000.0: -4, 16000.0: -6},
                hpf=30.0, lpf=8000.0, rumble=0.8, crossover=100.0, modulation=0.005),
        _preset("Voice Blocker", "voice",
                {"white": 0.1, "pink": 0.7, "brown": 0.2, "blue": 0.4, "violet": 0.0}, 0.5,
                {31.5: -2, 63.0: -2, 500.0: 2, 1000.0: 4, 2000.0: 5, 4000.0: 3},
                hpf=100.0, lpf=16000.0, rumble=0.0, crossover=80.0, modulation=0.0),
        _preset("Deep Sleep", "sleep",
                {"white": 0.0, "pink": 0.2, "brown": 0.8, "blue": 0.0, "violet": 0.0}, 0.4,
                {31.5: 2, 63.0: 2, 1000.0: -2, 2000.0: -4, 4000.0: -6, 8000.0: -8, 16000.0: -10},
                hpf=20.0, lpf=800.0, rumble=0.4, crossover=60.0, modulation=0.01),
        _preset("Focus Wall", "general",
                {"white": 0.2, "pink": 0.5, "brown": 0.4, "blue": 0.1, "violet": 0.0}, 0.5,
                None, hpf=80.0, lpf=12000.0, rumble=0.3, crossover=80.0, modulation=0.0),
        _preset("Heavy Shield", "footstep",
                {"white": 0.3, "pink": 0.6, "brown": 1.0, "blue": 0.0, "violet": 0.0}, 0.7,
                {31.5: 6, 63.0: 8, 125.0: 6, 250.0: 4, 500.0: 2, 4000.0: -2, 8000.0: -4, 16000.0: -6},
                hpf=25.0, lpf=10000.0, rumble=1.0, crossover=120.0, modulation=0.005,
                neighbor_safe=False),
    )
}


def get_preset(name: str) -> MaskingConfig:
    """Return a private copy of a built-in preset."""
    try:
        return copy.deepcopy(MASKING_PRESETS[name])
    except KeyError:
        raise ValueError(f"Unknown masking preset: {name!r}") from None


# Default config instance
DEFAULT_CONFIG = Config()
