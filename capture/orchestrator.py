"""
Black-box template capture.

Drives one template at a time through the display: apply the template,
confirm the page shows it, wait until it looks ready, screenshot it and
optionally keep recording. Templates are never instrumented.

Per template: launch -> navigate -> apply -> resolve profile -> detect ->
snapshot -> (record) -> teardown -> (post-process) -> reset. Teardown and
reset run no matter how the earlier stages ended.
"""
import asyncio
from pathlib import Path
from typing import Optional, Callable
from dataclasses import dataclass, field

from playwright.async_api import async_playwright, Playwright, Browser, BrowserContext, Page, Video

from config.settings import (
    SERVER_URL, OUTPUT_DIR, PROFILES_DIR, CAPTURE_DEBUG, CLEAR_COMMAND, CLEAR_GRACE_MS,
    VIEWPORT_WIDTH, VIEWPORT_HEIGHT, DEVICE_SCALE_FACTOR, BROWSER_ARGS, NAVIGATION_TIMEOUT_MS,
    RAW_VIDEOS_SUBDIR, get_output_paths,
)
from .applier import ContentApplier
from .control import ControlClient, reset_display, status_is_blank
from .detector import ReadinessDetector
from .heuristics import TemplateHeuristics
from .log import get_logger
from .postprocess import VideoPostProcessor
from .profiles import CaptureProfile, load_profiles

log = get_logger("orchestrator")


@dataclass
class CaptureResult:
    """Result of capturing a single template."""
    template_id: str
    success: bool
    screenshot_path: Optional[str] = None
    video_paths: list[str] = field(default_factory=list)


@dataclass
class BatchSummary:
    """Result of capturing every listed template."""
    successful: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)


@dataclass
class CaptureSession:
    """The single browser session owned by one in-flight capture."""
    browser: Optional[Browser] = None
    context: Optional[BrowserContext] = None
    page: Optional[Page] = None
    video: Optional[Video] = None


class CaptureOrchestrator:
    """Captures screenshots and videos of hdisplay templates."""

    def __init__(self,
                 server_url: str = SERVER_URL,
                 output_dir: Path = OUTPUT_DIR,
                 profiles: Optional[dict[str, CaptureProfile]] = None,
                 profiles_dir: Path = PROFILES_DIR,
                 detector: Optional[ReadinessDetector] = None,
                 heuristics: Optional[TemplateHeuristics] = None,
                 applier: Optional[ContentApplier] = None,
                 postprocessor: Optional[VideoPostProcessor] = None,
                 headless: Optional[bool] = None,
                 clear_command: str = CLEAR_COMMAND,
                 verify_reset: bool = False,
                 playwright_factory: Callable = async_playwright):
        self.server_url = server_url.rstrip("/")
        self.output_dir = Path(output_dir)
        self.profiles = profiles if profiles is not None else load_profiles(profiles_dir)
        self.detector = detector or ReadinessDetector()
        self.heuristics = heuristics or TemplateHeuristics()
        self.applier = applier or ContentApplier(self.server_url)
        self.postprocessor = postprocessor or VideoPostProcessor(self.output_dir)
        self.headless = (not CAPTURE_DEBUG) if headless is None else headless
        self.clear_command = clear_command
        self.clear_grace_ms = CLEAR_GRACE_MS
        self.verify_reset = verify_reset
        self.playwright_factory = playwright_factory

    def resolve_data(self, template_id: str, profile: Optional[CaptureProfile],
                     custom_data: Optional[dict] = None) -> dict:
        """Payload precedence: explicit input > profile sample data > heuristics."""
        if custom_data:
            log.debug(f"Using custom data for template: {template_id}")
            return custom_data
        if profile and profile.sample_data:
            log.debug(f"Using profile sample_data for template: {template_id}")
            return profile.sample_data
        log.debug(f"Using heuristics sample data for template: {template_id}")
        return self.heuristics.get_sample_data(template_id)

    def resolve_profile(self, template_id: str) -> CaptureProfile:
        profile = self.profiles.get(template_id)
        if profile is None:
            log.info(f"No profile found for {template_id}, generating intelligent defaults")
            profile = self.heuristics.generate_profile(template_id)
        return profile

    async def get_available_templates(self) -> list[dict]:
        async with self.playwright_factory() as p:
            request = await p.request.new_context()
            try:
                return await ControlClient(request, self.server_url).list_templates()
            finally:
                await request.dispose()

    async def capture_template(self, template_id: str, custom_data: Optional[dict] = None) -> CaptureResult:
        """
        Capture one template.

        Apply/confirm failures (and anything else before the screenshot is
        written) are logged and re-raised. The browser is always closed and
        the display always reset.
        """
        log.info(f"Starting capture of template: {template_id}")
        data = self.resolve_data(template_id, self.profiles.get(template_id), custom_data)
        log.debug(f"Template data payload: {data}")

        result = CaptureResult(template_id=template_id, success=False)
        session = CaptureSession()
        profile: Optional[CaptureProfile] = None

        async with self.playwright_factory() as p:
            try:
                await self._launch(p, session)

                log.info("Loading hdisplay page...")
                await session.page.goto(self.server_url, wait_until="networkidle",
                                        timeout=NAVIGATION_TIMEOUT_MS)

                log.info("Applying template...")
                await self.applier.apply_template_and_wait(session.page, template_id, data)

                profile = self.resolve_profile(template_id)
                if CAPTURE_DEBUG:
                    await self.heuristics.analyze_page(session.page)

                log.info("Waiting for content readiness...")
                await self.detector.detect_readiness(session.page, profile)

                result.screenshot_path = str(await self._snapshot(session.page, template_id, profile))

                if profile.records_video:
                    log.info(f"Recording video for {profile.video_duration_ms}ms...")
                    await asyncio.sleep(profile.video_duration_ms / 1000)

                result.success = True
                log.info(f"Successfully captured {template_id}")

            except Exception as e:
                log.error(f"Failed to capture {template_id}: {e}")
                raise

            finally:
                await self._teardown(session)

                try:
                    if profile is not None and profile.records_video:
                        outcome = await self.postprocessor.process(template_id, session.video)
                        result.video_paths = [str(path) for path in outcome.video_paths]
                    else:
                        self.postprocessor.purge_raw_dir()
                except Exception as e:
                    log.warning(f"Video post-processing failed for {template_id}: {e}")

                # Clear after capture so the next run starts blank without recording the clear
                await self._reset(p)

        return result

    async def capture_all(self) -> BatchSummary:
        """Capture every listed template, one at a time."""
        log.info("Fetching available templates...")
        templates = await self.get_available_templates()
        log.info(f"Found {len(templates)} templates to capture")

        summary = BatchSummary()
        # Strictly sequential: every capture drives the same physical display
        for template in templates:
            template_id = template.get("id")
            try:
                await self.capture_template(template_id)
                summary.successful.append(template_id)
            except Exception as e:
                summary.failed.append({"id": template_id, "error": str(e)})

        log.info(f"Capture summary: {len(summary.successful)} successful, {len(summary.failed)} failed")
        for failure in summary.failed:
            log.info(f"  - {failure['id']}: {failure['error']}")
        return summary

    async def _launch(self, p: Playwright, session: CaptureSession):
        """Open an isolated, recording browser session."""
        raw_dir = self.output_dir / RAW_VIDEOS_SUBDIR
        raw_dir.mkdir(parents=True, exist_ok=True)

        session.browser = await p.chromium.launch(headless=self.headless, args=BROWSER_ARGS)
        session.context = await session.browser.new_context(
            viewport={"width": VIEWPORT_WIDTH, "height": VIEWPORT_HEIGHT},
            device_scale_factor=DEVICE_SCALE_FACTOR,
            record_video_dir=str(raw_dir),
            record_video_size={"width": VIEWPORT_WIDTH, "height": VIEWPORT_HEIGHT},
        )
        session.page = await session.context.new_page()
        session.video = session.page.video

    async def _snapshot(self, page: Page, template_id: str, profile: CaptureProfile) -> Path:
        delay = profile.screenshot_delay_ms
        if delay > 0:
            log.debug(f"Waiting {delay}ms before screenshot")
            await asyncio.sleep(delay / 1000)

        screenshot_path = get_output_paths(self.output_dir, template_id)["screenshot"]
        screenshot_path.parent.mkdir(parents=True, exist_ok=True)
        await page.screenshot(path=str(screenshot_path), type="png", full_page=False)
        log.info(f"Screenshot saved: {screenshot_path}")
        return screenshot_path

    async def _teardown(self, session: CaptureSession):
        """Close page, context and browser; failures are only logged."""
        for name, closable in (("page", session.page), ("context", session.context),
                               ("browser", session.browser)):
            if closable is None:
                continue
            try:
                await closable.close()
            except Exception as e:
                log.warning(f"Closing {name} failed: {e}")

    async def _reset(self, p: Playwright):
        """Clear the display and wait out the fade; never raises."""
        try:
            outcome = await reset_display(p, self.server_url, self.clear_command)
            if not outcome.ok:
                log.warning(f"Post-capture clear failed ({outcome.method}): {outcome.message}")
        except Exception as e:
            log.warning(f"Post-capture clear failed: {e}")

        await asyncio.sleep(self.clear_grace_ms / 1000)

        if self.verify_reset:
            try:
                request = await p.request.new_context()
                try:
                    status = await ControlClient(request, self.server_url).get_status()
                finally:
                    await request.dispose()
                if not status_is_blank(status):
                    log.warning("Display still shows content after reset")
            except Exception as e:
                log.warning(f"Could not verify reset: {e}")
