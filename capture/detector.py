"""
Readiness detection for rendered templates.

Decides when a page has settled enough to capture, purely by observing it:
screenshot diffs, pixel coverage, body text and media element state. Nothing
inside the template is instrumented.

All strategies are cooperative polling loops. A hung screenshot or evaluate
call is not cancelled; the timeout is only checked between polls.
"""
import math
import time
import asyncio
from typing import Optional

from playwright.async_api import Page, Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from .frames import frame_diff, coverage
from .log import get_logger
from .profiles import (
    CaptureProfile, DetectionPlan, DetectionStep, Strategy,
    AnimationParams, CoverageParams, StabilityParams, TextParams, MediaParams, WaitParams,
)

log = get_logger("detector")

TEXT_CONTENT_JS = "() => (document.body && document.body.innerText) || ''"

MEDIA_READY_JS = """
({ waitForImages, waitForVideos }) => {
    const images = Array.from(document.images);
    const videos = Array.from(document.querySelectorAll('video'));
    let allLoaded = true;
    if (waitForImages && images.length > 0) {
        allLoaded = allLoaded && images.every((img) => img.complete && img.naturalWidth > 0);
    }
    if (waitForVideos && videos.length > 0) {
        allLoaded = allLoaded && videos.every((video) => video.readyState >= 3);
    }
    return allLoaded;
}
"""


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


class ReadinessDetector:
    """Runs a profile's detection plan against a live page."""

    DEFAULT_WAIT_MS = 2000      # No detection configured
    FALLBACK_WAIT_MS = 1000     # Structured strategy failed or never converged

    ANIMATION_INTERVAL_MS = 100
    COVERAGE_INTERVAL_MS = 500
    STABILITY_INTERVAL_MS = 200
    TEXT_INTERVAL_MS = 200

    def __init__(self):
        self._dispatch = {
            Strategy.WAIT_MS: self.wait_fixed,
            Strategy.ANIMATION: self.detect_animation,
            Strategy.PIXEL_COVERAGE: self.detect_pixel_coverage,
            Strategy.VISUAL_STABILITY: self.detect_visual_stability,
            Strategy.TEXT_CONTENT: self.detect_text_content,
            Strategy.MEDIA_LOADING: self.detect_media_loaded,
        }

    @property
    def strategies(self) -> set[str]:
        """Names of supported strategies."""
        return {strategy.value for strategy in self._dispatch}

    async def detect_readiness(self, page: Page, profile: Optional[CaptureProfile]):
        """
        Block until the page looks ready or the plan gives up.

        Legacy step lists run in order and let errors escape. A structured
        strategy never raises: any error, or finishing without the condition
        being met, costs a fixed fallback wait instead.
        """
        if profile is not None and profile.detection:
            plan = DetectionPlan.from_legacy(profile.detection)
        else:
            try:
                plan = DetectionPlan.from_profile(profile)
            except Exception as e:
                log.warning(f"Invalid readiness_detection, waiting {self.FALLBACK_WAIT_MS}ms: {e}")
                await asyncio.sleep(self.FALLBACK_WAIT_MS / 1000)
                return

        if plan.legacy:
            log.debug(f"Starting detection with {len(plan.steps)} step(s)")
            for i, step in enumerate(plan.steps):
                log.debug(f"Step {i + 1}/{len(plan.steps)}: {step.kind.value}")
                await self.run_step(page, step)
            log.debug("All detection steps completed")
            return

        if plan.is_empty:
            log.debug("No detection configuration found, using default wait")
            await asyncio.sleep(self.DEFAULT_WAIT_MS / 1000)
            return

        step = plan.steps[0]
        log.debug(f"Starting detection with strategy: {step.kind.value}, timeout: {step.timeout_ms}ms")
        try:
            satisfied = await self.run_step(page, step)
        except Exception as e:
            log.warning(f"Detection strategy {step.kind.value} failed: {e}")
            satisfied = False

        if satisfied:
            log.debug("Detection strategy completed successfully")
            return

        log.debug(f"Strategy {step.kind.value} not satisfied, waiting {self.FALLBACK_WAIT_MS}ms")
        await asyncio.sleep(self.FALLBACK_WAIT_MS / 1000)

    async def run_step(self, page: Page, step: DetectionStep) -> bool:
        """Run one step; True when its readiness condition was met."""
        handler = self._dispatch[step.kind]
        return await handler(page, step.params, step.timeout_ms)

    async def wait_fixed(self, page: Page, params: WaitParams, timeout_ms: int) -> bool:
        log.debug(f"Simple wait for {params.wait_ms}ms")
        await asyncio.sleep(params.wait_ms / 1000)
        return True

    async def detect_animation(self, page: Page, params: AnimationParams, timeout_ms: int) -> bool:
        """Wait for N consecutive frames whose diff stays at/below the threshold."""
        log.debug(
            f"Detecting animation with threshold {params.animation_threshold}, "
            f"stable frames: {params.stable_frames}"
        )
        start = time.monotonic()
        stable_count = 0
        last_shot = None

        while _elapsed_ms(start) < timeout_ms:
            shot = await page.screenshot(type="png")

            if last_shot is not None:
                diff = frame_diff(last_shot, shot)
                if diff > params.animation_threshold:
                    stable_count = 0
                    log.debug(f"Animation detected (diff: {diff:.3f})")
                else:
                    stable_count += 1
                    if stable_count >= params.stable_frames:
                        log.debug("Animation stabilized")
                        return True

            last_shot = shot
            await asyncio.sleep(self.ANIMATION_INTERVAL_MS / 1000)

        log.debug("Animation detection timed out")
        return False

    async def detect_pixel_coverage(self, page: Page, params: CoverageParams, timeout_ms: int) -> bool:
        """Poll until enough of the frame is non-background."""
        max_retries = max(1, math.ceil(timeout_ms / self.COVERAGE_INTERVAL_MS))
        log.debug(f"Detecting pixel coverage, min coverage: {params.min_coverage}")

        for attempt in range(max_retries):
            shot = await page.screenshot(type="png")
            value = coverage(shot)
            log.debug(f"Attempt {attempt + 1}: coverage {value:.3f}")

            if value >= params.min_coverage:
                log.debug("Sufficient pixel coverage detected")
                return True

            await asyncio.sleep(self.COVERAGE_INTERVAL_MS / 1000)

        log.debug("Pixel coverage detection timed out")
        return False

    async def detect_visual_stability(self, page: Page, params: StabilityParams, timeout_ms: int) -> bool:
        """Wait until frames stop changing for ``stable_duration`` ms."""
        log.debug(
            f"Detecting visual stability, threshold: {params.stability_threshold}, "
            f"duration: {params.stable_duration}ms"
        )
        start = time.monotonic()
        last_shot = await page.screenshot(type="png")
        last_at = time.monotonic()
        stable_since = None

        while _elapsed_ms(start) < timeout_ms:
            await asyncio.sleep(self.STABILITY_INTERVAL_MS / 1000)

            shot = await page.screenshot(type="png")
            shot_at = time.monotonic()
            diff = frame_diff(last_shot, shot)

            if diff <= params.stability_threshold:
                if stable_since is None:
                    # The page has been still since the previous frame
                    stable_since = last_at
                    log.debug("Visual stability detected, monitoring...")
                if (shot_at - stable_since) * 1000 >= params.stable_duration:
                    log.debug("Visual stability confirmed")
                    return True
            else:
                stable_since = None
                log.debug(f"Visual change detected (diff: {diff:.3f})")

            last_shot = shot
            last_at = shot_at

        log.debug("Visual stability detection timed out")
        return False

    async def detect_text_content(self, page: Page, params: TextParams, timeout_ms: int) -> bool:
        """Poll the body text until it is long enough."""
        if not params.wait_for_text:
            log.debug("Text detection disabled, skipping")
            return True

        log.debug(f"Detecting text content, min length: {params.min_content_length}")
        start = time.monotonic()

        while _elapsed_ms(start) < timeout_ms:
            try:
                text = (await page.evaluate(TEXT_CONTENT_JS) or "").strip()
            except PlaywrightError as e:
                log.debug(f"Error checking text content: {e}")
            else:
                log.debug(f"Text content length: {len(text)}")
                has_digits = any(ch.isdigit() for ch in text)
                if len(text) >= params.min_content_length and (has_digits or not params.require_digits):
                    log.debug("Sufficient text content detected")
                    return True

            await asyncio.sleep(self.TEXT_INTERVAL_MS / 1000)

        log.debug("Text content detection timed out")
        return False

    async def detect_media_loaded(self, page: Page, params: MediaParams, timeout_ms: int) -> bool:
        """Single bounded wait for images and videos to report loaded."""
        log.debug(
            f"Detecting media loading - images: {params.wait_for_images}, "
            f"videos: {params.wait_for_videos}"
        )
        try:
            await page.wait_for_function(
                MEDIA_READY_JS,
                arg={"waitForImages": params.wait_for_images, "waitForVideos": params.wait_for_videos},
                timeout=timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            log.debug(f"Media loading detection timed out: {e}")
            return False

        log.debug("All media loaded successfully")
        return True
