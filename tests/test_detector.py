import time
import logging

import pytest
from playwright.async_api import Error as PlaywrightError

from capture.detector import ReadinessDetector, MEDIA_READY_JS
from capture.errors import DetectionFailure
from capture.profiles import (
    CaptureProfile, AnimationParams, CoverageParams, StabilityParams, TextParams, MediaParams,
)

from conftest import FakePage, BLACK, WHITE, png_bytes


@pytest.fixture
def detector():
    d = ReadinessDetector()
    d.FALLBACK_WAIT_MS = 10
    d.DEFAULT_WAIT_MS = 10
    return d


class BrokenPage(FakePage):
    async def screenshot(self, **kwargs):
        raise RuntimeError("screenshot crashed")


def test_all_strategies_registered(detector):
    assert detector.strategies == {
        "wait_ms", "animation", "pixel_coverage", "visual_stability", "text_content", "media_loading",
    }


async def test_animation_settles_on_identical_frames(detector):
    page = FakePage(frames=[WHITE])
    start = time.monotonic()
    assert await detector.detect_animation(page, AnimationParams(stable_frames=3), 5000)
    assert time.monotonic() - start < 1.0
    assert page.screenshot_calls == 4


async def test_animation_resets_on_motion(detector):
    page = FakePage(frames=[BLACK, WHITE, WHITE, WHITE, WHITE])
    assert await detector.detect_animation(page, AnimationParams(stable_frames=3), 5000)
    assert page.screenshot_calls == 5


async def test_animation_respects_timeout_with_constant_motion(detector):
    page = FakePage(frames=[BLACK, WHITE] * 50)
    start = time.monotonic()
    assert not await detector.detect_animation(page, AnimationParams(), 400)
    assert time.monotonic() - start < 1.5


async def test_pixel_coverage_bounded_retries(detector):
    page = FakePage(frames=[BLACK])
    assert not await detector.detect_pixel_coverage(page, CoverageParams(min_coverage=0.1), 1200)
    assert page.screenshot_calls == 3  # ceil(1200 / 500)


async def test_pixel_coverage_converges(detector):
    page = FakePage(frames=[BLACK, WHITE])
    assert await detector.detect_pixel_coverage(page, CoverageParams(min_coverage=0.5), 5000)
    assert page.screenshot_calls == 2


async def test_visual_stability_resolves_at_stable_duration(detector):
    page = FakePage(frames=[png_bytes(90)])
    start = time.monotonic()
    assert await detector.detect_visual_stability(
        page, StabilityParams(stability_threshold=0.01, stable_duration=300), 5000
    )
    elapsed = time.monotonic() - start
    assert 0.3 <= elapsed < 1.0


async def test_visual_stability_times_out_on_flicker(detector):
    page = FakePage(frames=[BLACK, WHITE] * 50)
    start = time.monotonic()
    assert not await detector.detect_visual_stability(page, StabilityParams(), 500)
    assert time.monotonic() - start < 1.5


async def test_text_content_waits_for_text(detector):
    page = FakePage(texts=["", "   ", "Hello display"])
    assert await detector.detect_text_content(page, TextParams(min_content_length=5), 3000)
    assert page.evaluate_calls == 3


async def test_text_content_tolerates_evaluate_errors(detector):
    page = FakePage(texts=[PlaywrightError("navigating"), "ready"])
    assert await detector.detect_text_content(page, TextParams(), 3000)


async def test_text_content_requires_digits(detector):
    page = FakePage(texts=["Loading clock", "12:30:45"])
    assert await detector.detect_text_content(
        page, TextParams(min_content_length=5, require_digits=True), 3000
    )
    assert page.evaluate_calls == 2


async def test_text_content_disabled_skips(detector):
    page = FakePage(texts=[""])
    assert await detector.detect_text_content(page, TextParams(wait_for_text=False), 3000)
    assert page.evaluate_calls == 0


async def test_text_content_times_out(detector):
    page = FakePage(texts=[""])
    assert not await detector.detect_text_content(page, TextParams(), 300)


async def test_media_loading_single_bounded_wait(detector):
    page = FakePage()
    assert await detector.detect_media_loaded(page, MediaParams(wait_for_videos=False), 8000)
    assert page.function_waits == [
        (MEDIA_READY_JS, {"waitForImages": True, "waitForVideos": False}, 8000)
    ]


async def test_media_loading_timeout_is_not_satisfied(detector):
    page = FakePage()
    page.media_ready = False
    assert not await detector.detect_media_loaded(page, MediaParams(), 100)


async def test_default_wait_without_detection(detector):
    page = FakePage()
    await detector.detect_readiness(page, CaptureProfile(template_id="x"))
    assert page.screenshot_calls == 0
    assert page.evaluate_calls == 0


async def test_structured_failure_falls_back(detector, caplog):
    caplog.set_level(logging.DEBUG, logger="capture")
    page = BrokenPage()
    profile = CaptureProfile(template_id="x", readiness_detection={"strategy": "animation"})
    await detector.detect_readiness(page, profile)
    assert "screenshot crashed" in caplog.text


async def test_structured_undecodable_frame_falls_back(detector):
    page = FakePage(frames=[b"garbage"])
    profile = CaptureProfile(template_id="x", readiness_detection={"strategy": "visual_stability"})
    await detector.detect_readiness(page, profile)


async def test_structured_bad_params_never_raise(detector):
    page = FakePage(frames=[WHITE])
    profiles = [
        CaptureProfile(template_id="x", readiness_detection={"strategy": "animation", "params": [1]}),
        CaptureProfile(template_id="x",
                       readiness_detection={"strategy": "visual_stability", "stable_duration": float("nan")}),
    ]
    for profile in profiles:
        await detector.detect_readiness(page, profile)


async def test_unbuildable_structured_plan_falls_back(detector, caplog):
    caplog.set_level(logging.WARNING, logger="capture")
    page = FakePage()
    profile = CaptureProfile(template_id="x", readiness_detection="animation")

    await detector.detect_readiness(page, profile)

    assert page.screenshot_calls == 0
    assert "Invalid readiness_detection" in caplog.text


async def test_structured_unsatisfied_falls_back(detector, caplog):
    caplog.set_level(logging.DEBUG, logger="capture")
    page = FakePage(frames=[BLACK])
    profile = CaptureProfile(
        template_id="x",
        readiness_detection={"strategy": "pixel_coverage", "timeout": 500},
    )
    await detector.detect_readiness(page, profile)
    assert "not satisfied" in caplog.text


async def test_legacy_errors_propagate(detector):
    page = BrokenPage()
    profile = CaptureProfile(template_id="x", detection=[{"wait_for_animation": {}}])
    with pytest.raises(RuntimeError, match="screenshot crashed"):
        await detector.detect_readiness(page, profile)


async def test_legacy_decode_failure_propagates(detector):
    page = FakePage(frames=[b"garbage"])
    profile = CaptureProfile(template_id="x", detection=[{"wait_for_coverage": {}}])
    with pytest.raises(DetectionFailure):
        await detector.detect_readiness(page, profile)


async def test_legacy_steps_run_in_order(detector):
    page = FakePage(frames=[WHITE], texts=["12:00:00"])
    profile = CaptureProfile(template_id="clock", detection=[
        {"wait_ms": 10},
        {"wait_for_text": {"min_chars": 5, "contains_digits": True}},
        {"wait_for_coverage": {"timeout": 500}},
    ])
    await detector.detect_readiness(page, profile)
    assert page.evaluate_calls == 1
    assert page.screenshot_calls == 1


async def test_legacy_timeout_does_not_raise(detector):
    page = FakePage(texts=[""])
    profile = CaptureProfile(template_id="x", detection=[{"wait_for_text": {"timeout": 200}}])
    await detector.detect_readiness(page, profile)
