"""
In-memory stand-ins for the Playwright surface and the hdisplay server.
"""
import io
from pathlib import Path
from typing import Optional

import pytest
from PIL import Image
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from capture.applier import TITLE_MATCHES_JS
from config.settings import title_for


def png_bytes(color=0, size=(40, 20)) -> bytes:
    """Solid luminance PNG."""
    buf = io.BytesIO()
    Image.new("L", size, color).save(buf, format="PNG")
    return buf.getvalue()


BLACK = png_bytes(0)
WHITE = png_bytes(255)


class FakeResponse:
    def __init__(self, status: int = 200, body=None):
        self.status = status
        self._body = body if body is not None else {"ok": True}

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def text(self) -> str:
        return self._body if isinstance(self._body, str) else str(self._body)

    async def json(self):
        return self._body


class FakeServer:
    """Minimal hdisplay server state."""

    def __init__(self, templates: Optional[list[str]] = None):
        self.templates = templates or []
        self.content = "<div class=\"center\">hdisplay ready</div>"
        self.notification = None
        self.current_template = None
        self.reject = set()             # template ids answered with HTTP 500
        self.stale = set()              # template ids whose title never updates
        self.apply_posts: list[tuple] = []
        self.clear_calls = 0
        self.pages: list["FakePage"] = []

    def handle(self, method: str, path: str, data=None) -> FakeResponse:
        if method == "GET" and path == "/api/templates":
            return FakeResponse(200, {"templates": [{"id": t} for t in self.templates]})
        if method == "GET" and path == "/api/status":
            return FakeResponse(200, {"content": self.content, "notification": self.notification})
        if method == "POST" and path == "/api/clear":
            self.clear_calls += 1
            self.content = ""
            self.notification = None
            self.current_template = None
            return FakeResponse(200)
        if method == "POST" and path.startswith("/api/template/"):
            template_id = path.rsplit("/", 1)[-1]
            self.apply_posts.append((template_id, data))
            if template_id in self.reject:
                return FakeResponse(500, "boom")
            self.content = f"<div>{template_id}</div>"
            if template_id not in self.stale:
                self.current_template = template_id
                for page in self.pages:
                    page.title = title_for(template_id)
            return FakeResponse(200)
        return FakeResponse(404, "not found")


class FakeRequest:
    def __init__(self, server: FakeServer, base: str = "http://display.test"):
        self.server = server
        self.base = base
        self.disposed = False

    def _path(self, url: str) -> str:
        return url[len(self.base):] if url.startswith(self.base) else url

    async def get(self, url: str):
        return self.server.handle("GET", self._path(url))

    async def post(self, url: str, data=None):
        return self.server.handle("POST", self._path(url), data)

    async def dispose(self):
        self.disposed = True


class FakeVideo:
    def __init__(self, path: Path):
        self._path = path

    async def path(self):
        return str(self._path)


class FakePage:
    """Page double: cycles through frames and body texts."""

    def __init__(self, server: Optional[FakeServer] = None, frames=None, texts=None,
                 video: Optional[FakeVideo] = None):
        self.server = server or FakeServer()
        self.server.pages.append(self)
        self.request = FakeRequest(self.server)
        self.frames = list(frames or [WHITE])
        self.texts = list(texts or ["hello"])
        self.title = "hdisplay"
        self.video = video
        self.screenshot_calls = 0
        self.evaluate_calls = 0
        self.function_waits: list[tuple] = []
        self.media_ready = True
        self.goto_calls: list[tuple] = []
        self.closed = False

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append((url, wait_until, timeout))

    async def screenshot(self, path=None, type="png", full_page=False):
        index = min(self.screenshot_calls, len(self.frames) - 1)
        self.screenshot_calls += 1
        data = self.frames[index]
        if path:
            Path(path).write_bytes(data)
        return data

    async def evaluate(self, expression, arg=None):
        index = min(self.evaluate_calls, len(self.texts) - 1)
        self.evaluate_calls += 1
        value = self.texts[index]
        if isinstance(value, Exception):
            raise value
        return value

    async def wait_for_function(self, expression, arg=None, timeout=None):
        self.function_waits.append((expression, arg, timeout))
        if expression == TITLE_MATCHES_JS:
            if self.title != arg:
                raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
            return True
        if not self.media_ready:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
        return True

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self, server: FakeServer, record_video_dir: Optional[str] = None, **kwargs):
        self.server = server
        self.options = kwargs
        self.record_video_dir = Path(record_video_dir) if record_video_dir else None
        self.page: Optional[FakePage] = None
        self.closed = False

    async def new_page(self):
        video = None
        if self.record_video_dir:
            video = FakeVideo(self.record_video_dir / f"raw-{len(self.server.pages)}.webm")
        self.page = FakePage(self.server, video=video)
        return self.page

    async def close(self):
        # Playwright finalizes the recording when the context closes
        if self.page and self.page.video:
            self.page.video._path.write_bytes(b"webm-bytes")
        self.closed = True


class FakeBrowser:
    def __init__(self, tracker: "SessionTracker", server: FakeServer):
        self.tracker = tracker
        self.server = server
        self.contexts: list[FakeContext] = []
        self.closed = False

    async def new_context(self, **kwargs):
        context = FakeContext(self.server, **kwargs)
        self.contexts.append(context)
        return context

    async def close(self):
        self.closed = True
        self.tracker.open_sessions -= 1


class SessionTracker:
    def __init__(self):
        self.open_sessions = 0
        self.max_open_sessions = 0
        self.browsers: list[FakeBrowser] = []
        self.launch_options: list[dict] = []


class FakeChromium:
    def __init__(self, tracker: SessionTracker, server: FakeServer):
        self.tracker = tracker
        self.server = server

    async def launch(self, **kwargs):
        self.tracker.launch_options.append(kwargs)
        self.tracker.open_sessions += 1
        self.tracker.max_open_sessions = max(self.tracker.max_open_sessions, self.tracker.open_sessions)
        browser = FakeBrowser(self.tracker, self.server)
        self.tracker.browsers.append(browser)
        return browser


class FakeRequestFactory:
    def __init__(self, server: FakeServer):
        self.server = server

    async def new_context(self, **kwargs):
        return FakeRequest(self.server)


class FakePlaywright:
    """Stands in for ``async_playwright()``."""

    def __init__(self, server: FakeServer, tracker: SessionTracker):
        self.chromium = FakeChromium(tracker, server)
        self.request = FakeRequestFactory(server)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


@pytest.fixture
def server():
    return FakeServer(templates=["message-banner", "simple-clock"])


@pytest.fixture
def tracker():
    return SessionTracker()


@pytest.fixture
def playwright_factory(server, tracker):
    return lambda: FakePlaywright(server, tracker)
