"""
Capture profiles and readiness detection plans.

A profile selects how readiness is detected for one template and how long to
wait/record around the screenshot. Two on-disk detection shapes exist:

- structured: ``readiness_detection: {strategy, timeout, ...params}``
- legacy: ``detection: [{wait_ms: 300}, {wait_for_stability: {...}}, ...]``

Both are normalized into a DetectionPlan. The legacy list wins when both are set.
"""
import math

import yaml
from pathlib import Path
from typing import Optional, Union
from dataclasses import dataclass, field
from enum import Enum

from config.settings import DEFAULT_SCREENSHOT_DELAY_MS
from .errors import ProfileError
from .log import get_logger

log = get_logger("profiles")


class Strategy(str, Enum):
    """Readiness detection strategies."""
    WAIT_MS = "wait_ms"                     # Plain sleep
    ANIMATION = "animation"                 # N consecutive still frames
    PIXEL_COVERAGE = "pixel_coverage"       # Enough non-background pixels
    VISUAL_STABILITY = "visual_stability"   # No change for a duration
    TEXT_CONTENT = "text_content"           # Body text long enough
    MEDIA_LOADING = "media_loading"         # Images/videos loaded


DEFAULT_TIMEOUT_MS = 5000
DEFAULT_WAIT_MS = 2000

# Legacy step key -> (strategy, default timeout)
LEGACY_STEPS = {
    "wait_ms": (Strategy.WAIT_MS, 0),
    "wait_for_animation": (Strategy.ANIMATION, 5000),
    "wait_for_coverage": (Strategy.PIXEL_COVERAGE, 5000),
    "wait_for_stability": (Strategy.VISUAL_STABILITY, 5000),
    "wait_for_text": (Strategy.TEXT_CONTENT, 3000),
    "wait_for_media": (Strategy.MEDIA_LOADING, 10000),
}


def _num(cfg: dict, key: str, default):
    """Read a numeric option, falling back to default when absent or junk."""
    value = cfg.get(key)
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return int(number) if isinstance(default, int) else number


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass
class WaitParams:
    wait_ms: int = DEFAULT_WAIT_MS

    @classmethod
    def from_config(cls, cfg: dict) -> "WaitParams":
        return cls(wait_ms=_num(cfg, "wait_ms", DEFAULT_WAIT_MS))


@dataclass
class AnimationParams:
    animation_threshold: float = 0.05
    stable_frames: int = 3

    @classmethod
    def from_config(cls, cfg: dict) -> "AnimationParams":
        return cls(
            animation_threshold=_num(cfg, "animation_threshold", 0.05),
            stable_frames=max(1, _num(cfg, "stable_frames", 3)),
        )


@dataclass
class CoverageParams:
    min_coverage: float = 0.1

    @classmethod
    def from_config(cls, cfg: dict) -> "CoverageParams":
        return cls(min_coverage=_clamp(_num(cfg, "min_coverage", 0.1)))


@dataclass
class StabilityParams:
    stability_threshold: float = 0.01
    stable_duration: int = 1000

    @classmethod
    def from_config(cls, cfg: dict) -> "StabilityParams":
        return cls(
            stability_threshold=_clamp(_num(cfg, "stability_threshold", 0.01)),
            stable_duration=_num(cfg, "stable_duration", 1000),
        )


@dataclass
class TextParams:
    wait_for_text: bool = True
    min_content_length: int = 1
    require_digits: bool = False

    @classmethod
    def from_config(cls, cfg: dict) -> "TextParams":
        return cls(
            wait_for_text=cfg.get("wait_for_text", True) is not False,
            min_content_length=_num(cfg, "min_content_length", 1),
            require_digits=bool(cfg.get("require_digits", False)),
        )


@dataclass
class MediaParams:
    wait_for_images: bool = True
    wait_for_videos: bool = True

    @classmethod
    def from_config(cls, cfg: dict) -> "MediaParams":
        return cls(
            wait_for_images=cfg.get("wait_for_images", True) is not False,
            wait_for_videos=cfg.get("wait_for_videos", True) is not False,
        )


StrategyParams = Union[
    WaitParams, AnimationParams, CoverageParams, StabilityParams, TextParams, MediaParams
]

PARAMS_BY_STRATEGY = {
    Strategy.WAIT_MS: WaitParams,
    Strategy.ANIMATION: AnimationParams,
    Strategy.PIXEL_COVERAGE: CoverageParams,
    Strategy.VISUAL_STABILITY: StabilityParams,
    Strategy.TEXT_CONTENT: TextParams,
    Strategy.MEDIA_LOADING: MediaParams,
}


def map_legacy_config(key: str, raw) -> dict:
    """Translate legacy option names onto the structured parameter names."""
    if key == "wait_ms":
        try:
            ms = int(float(raw))
        except (TypeError, ValueError):
            ms = 0
        return {"wait_ms": ms or 200}

    cfg = dict(raw) if isinstance(raw, dict) else {}

    if key == "wait_for_stability":
        # Legacy threshold was a similarity (0.95); the new one is a diff ratio
        if cfg.get("threshold") is not None and cfg.get("stability_threshold") is None:
            cfg["stability_threshold"] = _clamp(1 - float(cfg["threshold"]))
        if (cfg.get("stable_frames") is not None and cfg.get("interval") is not None
                and cfg.get("stable_duration") is None):
            cfg["stable_duration"] = int(float(cfg["stable_frames"]) * float(cfg["interval"]))

    elif key == "wait_for_text":
        if cfg.get("min_chars") is not None and cfg.get("min_content_length") is None:
            cfg["min_content_length"] = int(float(cfg["min_chars"]))
        if cfg.get("contains_digits") and cfg.get("require_digits") is None:
            cfg["require_digits"] = True

    return cfg


def _legacy_key_set(raw: dict, key: str) -> bool:
    # An empty mapping still selects the step; a zero wait does not
    value = raw.get(key)
    if key == "wait_ms":
        return bool(value)
    return value is not None and value is not False


@dataclass
class DetectionStep:
    """One normalized detection step."""
    kind: Strategy
    params: StrategyParams
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    @classmethod
    def build(cls, kind: Strategy, cfg: dict, timeout_ms: int) -> "DetectionStep":
        return cls(kind=kind, params=PARAMS_BY_STRATEGY[kind].from_config(cfg), timeout_ms=timeout_ms)


@dataclass
class DetectionPlan:
    """
    Ordered detection steps for one capture.

    ``legacy`` plans propagate strategy errors; structured plans fall back to
    a short wait instead.
    """
    steps: list[DetectionStep] = field(default_factory=list)
    legacy: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.steps

    @classmethod
    def from_legacy(cls, raw_steps: list) -> "DetectionPlan":
        steps = []
        for raw in raw_steps:
            if not isinstance(raw, dict):
                log.debug(f"Legacy: ignoring non-mapping step {raw!r}")
                continue
            key = next((k for k in LEGACY_STEPS if _legacy_key_set(raw, k)), None)
            if key is None:
                log.debug(f"Legacy: unknown step {raw!r}, skipping")
                continue
            kind, default_timeout = LEGACY_STEPS[key]
            cfg = map_legacy_config(key, raw[key])
            timeout = _num(cfg, "timeout", default_timeout)
            steps.append(DetectionStep.build(kind, cfg, timeout))
        return cls(steps=steps, legacy=True)

    @classmethod
    def from_structured(cls, detection: dict) -> "DetectionPlan":
        cfg = dict(detection)
        params = detection.get("params")
        if isinstance(params, dict):
            cfg.update(params)
        elif params is not None:
            log.debug(f"Ignoring non-mapping params {params!r}")
        timeout = _num(cfg, "timeout", _num(cfg, "timeout_ms", DEFAULT_TIMEOUT_MS))
        if timeout <= 0:
            timeout = DEFAULT_TIMEOUT_MS
        try:
            kind = Strategy(cfg.get("strategy"))
        except ValueError:
            log.debug(f"Unknown strategy {cfg.get('strategy')!r}, falling back to simple wait")
            return cls(steps=[DetectionStep(Strategy.WAIT_MS, WaitParams(DEFAULT_WAIT_MS), timeout)])
        return cls(steps=[DetectionStep.build(kind, cfg, timeout)])

    @classmethod
    def from_profile(cls, profile: Optional["CaptureProfile"]) -> "DetectionPlan":
        if profile is None:
            return cls()
        if profile.detection:
            return cls.from_legacy(profile.detection)
        if profile.readiness_detection:
            return cls.from_structured(profile.readiness_detection)
        return cls()


@dataclass
class CaptureProfile:
    """Per-template capture configuration."""
    template_id: str
    detection: list[dict] = field(default_factory=list)     # Legacy step list
    readiness_detection: Optional[dict] = None               # Structured strategy
    screenshot_delay_ms: int = DEFAULT_SCREENSHOT_DELAY_MS
    video_duration_ms: int = 0
    sample_data: Optional[dict] = None

    @property
    def plan(self) -> DetectionPlan:
        return DetectionPlan.from_profile(self)

    @property
    def records_video(self) -> bool:
        return self.video_duration_ms > 0

    @classmethod
    def from_dict(cls, data: dict) -> "CaptureProfile":
        """Build a profile from the YAML file shape."""
        if not isinstance(data, dict) or not data.get("template"):
            raise ProfileError("Profile must be a mapping with a 'template' key")

        detection = data.get("detection") or []
        if not isinstance(detection, list):
            raise ProfileError(f"{data['template']}: 'detection' must be a list of steps")
        readiness = data.get("readiness_detection")
        if readiness is not None and not isinstance(readiness, dict):
            raise ProfileError(f"{data['template']}: 'readiness_detection' must be a mapping")

        screenshot = data.get("screenshot") or {}
        video = data.get("video") or {}
        for section, value in (("screenshot", screenshot), ("video", video)):
            if not isinstance(value, dict):
                raise ProfileError(f"{data['template']}: '{section}' must be a mapping")
        return cls(
            template_id=str(data["template"]),
            detection=detection,
            readiness_detection=readiness,
            screenshot_delay_ms=_num(screenshot, "after_detection", DEFAULT_SCREENSHOT_DELAY_MS),
            video_duration_ms=max(0, _num(video, "duration", 0)),
            sample_data=data.get("sample_data") or data.get("data"),
        )

    def to_dict(self) -> dict:
        """Convert back to the YAML file shape."""
        result = {"template": self.template_id}
        if self.detection:
            result["detection"] = self.detection
        if self.readiness_detection:
            result["readiness_detection"] = self.readiness_detection
        result["screenshot"] = {"after_detection": self.screenshot_delay_ms}
        result["video"] = {"duration": self.video_duration_ms}
        if self.sample_data is not None:
            result["sample_data"] = self.sample_data
        return result


def load_profile(path: Union[str, Path]) -> CaptureProfile:
    """Load a single capture profile from YAML."""
    path = Path(path)
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ProfileError(f"{path.name}: {e}") from e
    return CaptureProfile.from_dict(data)


def load_profiles(directory: Union[str, Path]) -> dict[str, CaptureProfile]:
    """Load every profile in a directory, keyed by template id."""
    directory = Path(directory)
    profiles = {}

    if not directory.is_dir():
        log.info(f"No capture-profiles directory at {directory}, using intelligent defaults")
        return profiles

    for path in sorted(directory.iterdir()):
        if path.suffix not in [".yaml", ".yml"]:
            continue
        try:
            profile = load_profile(path)
        except (ProfileError, OSError) as e:
            log.warning(f"Failed to load profile {path.name}: {e}")
            continue
        profiles[profile.template_id] = profile
        log.debug(f"Loaded profile for {profile.template_id}")

    log.info(f"Loaded {len(profiles)} capture profiles")
    return profiles


def describe_plan(plan: DetectionPlan) -> str:
    """Short human-readable plan summary."""
    if plan.is_empty:
        return "default wait"
    kinds = " -> ".join(step.kind.value for step in plan.steps)
    return f"legacy: {kinds}" if plan.legacy else kinds
