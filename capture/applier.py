"""
Pushes a template change to the display server and confirms the observed
page picked it up.
"""
import asyncio
from typing import Optional

from playwright.async_api import Page, Error as PlaywrightError

from config.settings import (
    SERVER_URL, APPLY_CONFIRM_TIMEOUT_MS, APPLY_MAX_ATTEMPTS, APPLY_RETRY_BACKOFF_MS,
    title_for,
)
from .errors import TransportError, ConfirmationTimeoutError
from .log import get_logger

log = get_logger("applier")

TITLE_MATCHES_JS = "(expected) => document.title === expected"


class ContentApplier:
    """Applies templates through the server API with confirm-and-retry."""

    def __init__(self, server_url: str = SERVER_URL,
                 max_attempts: int = APPLY_MAX_ATTEMPTS,
                 confirm_timeout_ms: int = APPLY_CONFIRM_TIMEOUT_MS,
                 backoff_ms: int = APPLY_RETRY_BACKOFF_MS):
        self.server_url = server_url.rstrip("/")
        self.max_attempts = max_attempts
        self.confirm_timeout_ms = confirm_timeout_ms
        self.backoff_ms = backoff_ms

    def template_url(self, template_id: str) -> str:
        return f"{self.server_url}/api/template/{template_id}"

    async def post_template(self, page: Page, template_id: str, data: Optional[dict]):
        """POST the template payload; raise TransportError on a non-2xx reply."""
        url = self.template_url(template_id)
        response = await page.request.post(url, data={"data": data or {}})
        if not response.ok:
            body = await response.text()
            raise TransportError(response.status, body, url=url)

    async def wait_for_title(self, page: Page, template_id: str):
        """Wait until the page title shows the template is live."""
        await page.wait_for_function(
            TITLE_MATCHES_JS,
            arg=title_for(template_id),
            timeout=self.confirm_timeout_ms,
        )

    async def apply_template_and_wait(self, page: Page, template_id: str, data: Optional[dict] = None):
        """
        Apply a template and block until the page reflects it.

        Each attempt posts the payload and waits for the title to change.
        Failed attempts back off briefly before retrying. When every attempt
        fails, the last TransportError is re-raised as-is; otherwise a
        ConfirmationTimeoutError carries the last underlying message.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.post_template(page, template_id, data)
                log.debug(f"Applied template (attempt {attempt}), waiting for page update...")
                await self.wait_for_title(page, template_id)
                log.debug("Page reflected template")
                return
            except (TransportError, PlaywrightError) as e:
                last_error = e
                log.info(f"Apply attempt {attempt} did not reflect on page yet: {e}")
                await asyncio.sleep(self.backoff_ms / 1000)

        if isinstance(last_error, TransportError):
            raise last_error
        raise ConfirmationTimeoutError(
            template_id, self.max_attempts, str(last_error) if last_error else ""
        ) from last_error
