"""
Template heuristics for capture without explicit profiles.
Picks sample data and a detection profile from template id patterns.
"""
import copy
from typing import Optional

from playwright.async_api import Page, Error as PlaywrightError

from .log import get_logger
from .profiles import CaptureProfile

log = get_logger("heuristics")

SAMPLE_DATA = {
    "animated-text": {
        "text": "Welcome to hdisplay demos",
        "velocity": 100,
    },
    "carousel": {
        "items": [
            "https://picsum.photos/id/1015/1280/400",
            "https://picsum.photos/id/1022/1280/400",
            "https://picsum.photos/id/1035/1280/400",
        ],
        "duration": 3000,
        "zoomScale": 1.05,
    },
    "message-banner": {
        "title": "hdisplay",
        "subtitle": "Template Demo",
    },
    "webp-loop": {
        "url": "https://raw.githubusercontent.com/ewilderj/tidbyt/refs/heads/main/github/invert-mark-github-64x32.webp",
        "fit": "contain",
    },
    "timeleft": {
        "minutes": 15,
        "label": "Demo Time",
    },
    "snake": {
        "cellSize": 20,
        "tickMs": 50,
    },
    "simple-clock": {},
}

PAGE_ANALYSIS_JS = """
() => {
    const text = document.body ? (document.body.textContent || '') : '';
    return {
        hasImages: document.querySelectorAll('img').length > 0,
        hasVideo: document.querySelectorAll('video').length > 0,
        hasCanvas: document.querySelectorAll('canvas').length > 0,
        hasAnimations: Array.from(document.querySelectorAll('*')).some((el) => {
            const style = window.getComputedStyle(el);
            return style.animationName && style.animationName !== 'none';
        }),
        textLength: text.length,
        hasNumbers: /\\d/.test(text),
    };
}
"""


def _matches(template_id: str, *patterns: str) -> bool:
    return any(p in template_id for p in patterns)


class TemplateHeuristics:
    """Sample data and capture profiles derived from template ids."""

    def get_sample_data(self, template_id: str) -> dict:
        """Get sample data for a template based on its id."""
        if template_id in SAMPLE_DATA:
            return copy.deepcopy(SAMPLE_DATA[template_id])

        for key, data in SAMPLE_DATA.items():
            if key.split("-")[0] in template_id:
                return copy.deepcopy(data)

        return {}

    def generate_profile(self, template_id: str) -> CaptureProfile:
        """Generate a legacy-step capture profile from id patterns."""
        log.debug(f"Generating profile for {template_id}")

        # Always start with basic stabilization
        detection = [{"wait_ms": 300}]
        screenshot_delay = 500
        video_duration = 5000

        if _matches(template_id, "clock", "time"):
            detection = [
                {"wait_ms": 200},
                {"wait_for_text": {"contains_digits": True, "min_chars": 5}},
            ]
            screenshot_delay = 1100  # After clock tick
        elif _matches(template_id, "text", "marquee", "animated"):
            detection.append({"wait_for_animation": {"stable_frames": 3}})
            screenshot_delay = 1500  # Let text scroll into view
            video_duration = 8000
        elif _matches(template_id, "carousel", "slide"):
            detection += [
                {"wait_for_media": {"timeout": 8000}},
                {"wait_for_stability": {"stable_frames": 3, "interval": 300, "threshold": 0.95}},
            ]
            screenshot_delay = 1000
            video_duration = 12000  # Multiple transitions
        elif _matches(template_id, "webp", "video", "image"):
            detection.append({"wait_for_media": {"timeout": 10000}})
            screenshot_delay = 200
            video_duration = 6000
        elif _matches(template_id, "snake", "game"):
            detection += [
                {"wait_ms": 1000},  # Let game initialize
                {"wait_for_coverage": {}},
            ]
            video_duration = 15000  # Show gameplay
        elif _matches(template_id, "banner", "message"):
            detection.append({"wait_for_text": {"min_chars": 1}})
            screenshot_delay = 200
            video_duration = 3000
        else:
            detection.append(
                {"wait_for_stability": {"stable_frames": 3, "interval": 200, "threshold": 0.95}}
            )

        profile = CaptureProfile(
            template_id=template_id,
            detection=detection,
            screenshot_delay_ms=screenshot_delay,
            video_duration_ms=video_duration,
        )
        log.debug(f"Generated profile: {profile.to_dict()}")
        return profile

    async def analyze_page(self, page: Page) -> Optional[dict]:
        """Summarize what the rendered page contains (debug aid)."""
        try:
            analysis = await page.evaluate(PAGE_ANALYSIS_JS)
        except PlaywrightError as e:
            log.debug(f"Page analysis failed: {e}")
            return None
        log.debug(f"Page analysis: {analysis}")
        return analysis
