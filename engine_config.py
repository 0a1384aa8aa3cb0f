import json
import os
import re
from dataclasses import dataclass, field, fields, replace

# --- PROCESS CONSTANTS ---
CONFIG_PATH = os.getenv("ELIM_CONFIG_PATH", "").strip()
ENGINE_DEBUG = os.getenv("ELIM_ENGINE_DEBUG", "0") == "1"

COVERAGE_MODES = ("RATIO", "WORKS", "AUTO")
CONFIG_SECTIONS = ("confirm", "algo", "flow", "dataQuality", "data_quality", "popularity")

# Older config files used these names.
KEY_ALIASES = {
    "explore_tag_strength_scale": "explore_strength_scale",
    "consecutive_no_for_atari": "consecutive_no_for_high_p",
    "explore_p_value_min": "_explore_p_value_min",
    "explore_p_value_max": "_explore_p_value_max",
}
IGNORED_KEYS = {"effective_confirm_threshold_formula", "version"}


def _default_rank_scale():
    return {"A": 1.0, "B": 0.85, "C": 0.7}


@dataclass(frozen=True)
class EngineConfig:
    beta: float = 1.5
    alpha: float = 0.05
    derived_confidence_threshold: float = 0.5
    reveal_threshold: float = 0.7
    confidence_confirm_band: tuple = (0.4, 0.7)
    q_forced_indices: tuple = ()
    soft_confidence_min: float = 0.5
    hard_confidence_min: float = 0.8
    max_questions: int = 30
    max_reveal_misses: int = 3
    fail_list_n: int = 10
    effective_confirm_threshold_params: tuple = (3, 20, 50)
    min_coverage_mode: str = "AUTO"
    min_coverage_ratio: float = 0.02
    min_coverage_works: int = 1
    max_coverage_ratio: float = None
    play_bonus_on_success: float = 1.0
    reveal_penalty: float = 0.2
    explore_p_value_band: tuple = None
    explore_strength_scale: float = 1.0
    soft_confirm_strength_scale: float = 1.0
    consecutive_no_for_high_p: int = 0
    rank_strength_scale: dict = field(default_factory=_default_rank_scale)
    prune_epsilon: float = 1e-9
    effective_weight_floor: float = 0.01

    def __post_init__(self):
        # Normalise sequences coming from JSON/YAML lists.
        object.__setattr__(self, "confidence_confirm_band", tuple(float(v) for v in self.confidence_confirm_band))
        object.__setattr__(self, "q_forced_indices", tuple(int(v) for v in self.q_forced_indices))
        object.__setattr__(self, "effective_confirm_threshold_params", _as_threshold_params(self.effective_confirm_threshold_params))
        object.__setattr__(self, "min_coverage_mode", str(self.min_coverage_mode).upper())
        if self.explore_p_value_band is not None:
            object.__setattr__(self, "explore_p_value_band", tuple(float(v) for v in self.explore_p_value_band))
        object.__setattr__(self, "rank_strength_scale", {str(k).upper(): float(v) for k, v in self.rank_strength_scale.items()})
        self.validate()

    def validate(self):
        if self.beta <= 0:
            raise ValueError("beta must be positive")
        if not 0.0 <= self.alpha <= 1.0:
            raise ValueError("alpha must be in [0, 1]")
        for name in ("derived_confidence_threshold", "reveal_threshold", "soft_confidence_min",
                     "hard_confidence_min", "min_coverage_ratio", "effective_weight_floor"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if len(self.confidence_confirm_band) != 2 or self.confidence_confirm_band[0] > self.confidence_confirm_band[1]:
            raise ValueError("confidence_confirm_band must be (min, max) with min <= max")
        if any(index < 1 for index in self.q_forced_indices):
            raise ValueError("q_forced_indices must be positive question indices")
        if self.soft_confidence_min > self.hard_confidence_min:
            raise ValueError("soft_confidence_min must not exceed hard_confidence_min")
        for name in ("max_questions", "max_reveal_misses", "fail_list_n"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        low, high, divisor = self.effective_confirm_threshold_params
        if low < 1 or high < low or divisor < 1:
            raise ValueError("effective_confirm_threshold_params must satisfy 1 <= min <= max and divisor >= 1")
        if self.min_coverage_mode not in COVERAGE_MODES:
            raise ValueError(f"min_coverage_mode must be one of {COVERAGE_MODES}")
        if self.min_coverage_works < 0:
            raise ValueError("min_coverage_works must be >= 0")
        if self.max_coverage_ratio is not None and not 0.0 <= self.max_coverage_ratio <= 1.0:
            raise ValueError("max_coverage_ratio must be in [0, 1]")
        if self.play_bonus_on_success < 0:
            raise ValueError("play_bonus_on_success must be >= 0")
        if not 0.0 < self.reveal_penalty <= 1.0:
            raise ValueError("reveal_penalty must be in (0, 1]")
        if self.explore_p_value_band is not None:
            band = self.explore_p_value_band
            if len(band) != 2 or not 0.0 <= band[0] <= band[1] <= 1.0:
                raise ValueError("explore_p_value_band must be (min, max) inside [0, 1]")
        if self.explore_strength_scale <= 0 or self.soft_confirm_strength_scale <= 0:
            raise ValueError("strength scales must be positive")
        if self.consecutive_no_for_high_p < 0:
            raise ValueError("consecutive_no_for_high_p must be >= 0")
        if any(scale <= 0 for scale in self.rank_strength_scale.values()):
            raise ValueError("rank_strength_scale values must be positive")
        if not 0.0 < self.prune_epsilon < 1.0:
            raise ValueError("prune_epsilon must be in (0, 1)")

    def with_overrides(self, **overrides):
        return replace(self, **overrides)


def _as_threshold_params(value):
    if isinstance(value, dict):
        return (int(value["min"]), int(value["max"]), int(value["divisor"]))
    low, high, divisor = value
    return (int(low), int(high), int(divisor))


def _snake_case(key):
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def flatten_config_payload(payload):
    """
    Accepts the flat snake_case layout, camelCase keys, or the sectioned
    {confirm, algo, flow, dataQuality, popularity} layout and returns a flat
    dict of EngineConfig field names.
    """
    flat = {}
    for key, value in (payload or {}).items():
        if key in CONFIG_SECTIONS and isinstance(value, dict):
            flat.update(flatten_config_payload(value))
            continue
        name = _snake_case(key)
        name = KEY_ALIASES.get(name, name)
        if name in IGNORED_KEYS:
            continue
        flat[name] = value

    p_min = flat.pop("_explore_p_value_min", None)
    p_max = flat.pop("_explore_p_value_max", None)
    if p_min is not None or p_max is not None:
        flat["explore_p_value_band"] = (
            0.0 if p_min is None else float(p_min),
            1.0 if p_max is None else float(p_max),
        )
    return flat


def config_from_dict(payload):
    flat = flatten_config_payload(payload)
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(flat) - known)
    if unknown:
        raise ValueError(f"Unknown engine config keys: {', '.join(unknown)}")
    return EngineConfig(**flat)


def _read_config_file(path):
    ext = os.path.splitext(path)[1].lower()
    with open(path, "r", encoding="utf-8") as f:
        if ext in {".yaml", ".yml"}:
            import yaml

            data = yaml.safe_load(f) or {}
        else:
            data = json.load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Engine config at {path} must be a mapping")
    return data


def load_engine_config(path=None):
    """Load EngineConfig from JSON/YAML; falls back to ELIM_CONFIG_PATH, then to defaults."""
    path = CONFIG_PATH if path is None else path
    if not path:
        return EngineConfig()
    return config_from_dict(_read_config_file(path))
