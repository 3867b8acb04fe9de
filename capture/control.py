"""
Display server control surface: template listing, status and reset.

Reset goes through the hdisplay CLI ``clear`` command (the known-good path)
as a bounded subprocess call, falling back to the HTTP endpoint when the CLI
is not installed.
"""
import shlex
import subprocess
from typing import Optional
from dataclasses import dataclass

from playwright.async_api import APIRequestContext, Playwright

from config.settings import SERVER_URL, CLEAR_COMMAND, CLEAR_TIMEOUT
from .errors import TransportError
from .log import get_logger

log = get_logger("control")


@dataclass
class ResetResult:
    """Outcome of a display reset."""
    ok: bool
    method: str                      # "cli" or "http"
    exit_code: Optional[int] = None
    timed_out: bool = False
    available: bool = True           # False when the CLI binary is missing
    message: str = ""


class ControlClient:
    """Thin wrapper over the server's JSON control API."""

    def __init__(self, request: APIRequestContext, server_url: str = SERVER_URL):
        self.request = request
        self.server_url = server_url.rstrip("/")

    async def _get_json(self, path: str) -> dict:
        url = f"{self.server_url}{path}"
        response = await self.request.get(url)
        if not response.ok:
            raise TransportError(response.status, await response.text(), url=url)
        return await response.json()

    async def list_templates(self) -> list[dict]:
        """GET /api/templates -> [{id, ...}]"""
        data = await self._get_json("/api/templates")
        return data.get("templates") or []

    async def get_status(self) -> dict:
        """GET /api/status -> {content, notification, updatedAt}"""
        return await self._get_json("/api/status")

    async def clear(self) -> ResetResult:
        """POST /api/clear"""
        url = f"{self.server_url}/api/clear"
        response = await self.request.post(url)
        if not response.ok:
            return ResetResult(ok=False, method="http", message=f"HTTP {response.status}")
        return ResetResult(ok=True, method="http")


def status_is_blank(status: dict) -> bool:
    """True when the display shows no content and no notification."""
    content = (status.get("content") or "").strip()
    return not content and not status.get("notification")


def run_clear_command(server_url: str = SERVER_URL,
                      command: str = CLEAR_COMMAND,
                      timeout: float = CLEAR_TIMEOUT) -> ResetResult:
    """Run the CLI clear command and wait (bounded) for it to exit."""
    args = shlex.split(command.format(server=server_url))

    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        return ResetResult(ok=False, method="cli", available=False,
                           message=f"{args[0]} not found on PATH")
    except subprocess.TimeoutExpired:
        return ResetResult(ok=False, method="cli", timed_out=True,
                           message=f"clear timed out after {timeout}s")

    if result.stdout.strip():
        log.debug(f"[clear stdout] {result.stdout.strip()}")
    if result.stderr.strip():
        log.debug(f"[clear stderr] {result.stderr.strip()}")

    if result.returncode != 0:
        return ResetResult(ok=False, method="cli", exit_code=result.returncode,
                           message=f"CLI clear exited with code {result.returncode}")
    return ResetResult(ok=True, method="cli", exit_code=0)


async def reset_display(playwright: Playwright, server_url: str = SERVER_URL,
                        command: str = CLEAR_COMMAND,
                        timeout: float = CLEAR_TIMEOUT) -> ResetResult:
    """Clear content and notification, preferring the CLI over HTTP."""
    log.info("Clearing display via CLI...")
    result = run_clear_command(server_url, command, timeout)
    if result.available:
        return result

    log.debug(f"{result.message}; clearing over HTTP instead")
    request = await playwright.request.new_context()
    try:
        return await ControlClient(request, server_url).clear()
    finally:
        await request.dispose()
