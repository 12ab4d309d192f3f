"""Playwright-backed surface for chat UIs running in a browser tab.

Selectors come from a SurfaceProfile (surfaces.yaml), so each producer is a
profile rather than a separate implementation.
"""

from __future__ import annotations

import asyncio
import itertools
import re
from contextlib import asynccontextmanager

from playwright.async_api import Browser, ElementHandle, Page
from playwright.async_api import Error as PlaywrightError

from harvest.config import SurfaceProfile
from harvest.surfaces.base import MutationCallback, Surface, SurfaceError, Unsubscribe
from harvest.types import FailureReason, ImageAttachment, PromptRequest

_binding_ids = itertools.count()

_PASTE_IMAGES_JS = """
(el, images) => {
  const transfer = new DataTransfer();
  for (const img of images) {
    const bytes = Uint8Array.from(atob(img.base64), (c) => c.charCodeAt(0));
    transfer.items.add(new File([bytes], "image.png", { type: img.mime_type }));
  }
  el.focus();
  el.dispatchEvent(new ClipboardEvent("paste", { bubbles: true, cancelable: true, clipboardData: transfer }));
}
"""

_OBSERVE_JS = """
([binding, rootSelectors]) => {
  const root = rootSelectors.map((s) => document.querySelector(s)).find(Boolean) || document.body;
  let last = 0;
  let trailing = null;
  const fire = () => { last = Date.now(); trailing = null; window[binding](); };
  const observer = new MutationObserver(() => {
    const wait = 100 - (Date.now() - last);
    if (wait <= 0) {
      if (trailing) { clearTimeout(trailing); }
      fire();
    } else if (!trailing) {
      // Flush the tail of a burst so the last change is always reported
      trailing = setTimeout(fire, wait);
    }
  });
  observer.observe(root, { childList: true, subtree: true, characterData: true });
  window.__harvestObservers = window.__harvestObservers || {};
  window.__harvestObservers[binding] = observer;
}
"""

_DISCONNECT_JS = """
(binding) => {
  const observers = window.__harvestObservers || {};
  if (observers[binding]) { observers[binding].disconnect(); delete observers[binding]; }
}
"""

_FORM_SUBMIT_JS = """
() => {
  const form = document.querySelector("form");
  if (!form) return false;
  form.requestSubmit();
  return true;
}
"""


def find_page(browser: Browser, profile: SurfaceProfile) -> Page | None:
    """First open tab whose URL matches the profile's url_pattern."""
    pattern = re.compile(profile.url_pattern) if profile.url_pattern else None
    for context in browser.contexts:
        for page in context.pages:
            if pattern is None or pattern.search(page.url):
                return page
    return None


class BrowserSurface(Surface):
    """Drive a producer's tab through Playwright."""

    def __init__(self, page: Page, profile: SurfaceProfile) -> None:
        self.page = page
        self.profile = profile
        self.name = profile.name
        self._binding: str | None = None
        self._callback: MutationCallback | None = None

    @asynccontextmanager
    async def _reachable(self):
        if self.page.is_closed():
            raise SurfaceError(FailureReason.PRODUCER_UNREACHABLE, f"{self.name} tab is closed")
        try:
            yield
        except PlaywrightError as exc:
            raise SurfaceError(FailureReason.PRODUCER_UNREACHABLE, str(exc)) from exc

    async def _first_visible(self, selectors: list[str], enabled: bool = False) -> ElementHandle | None:
        for selector in selectors:
            handle = await self.page.query_selector(selector)
            if handle is None or not await handle.is_visible():
                continue
            if enabled and not await handle.is_enabled():
                continue
            return handle
        return None

    async def _find_submit(self) -> ElementHandle | None:
        handle = await self._first_visible(self.profile.selectors.submit, enabled=True)
        if handle is not None:
            return handle
        labels = {label.lower() for label in self.profile.selectors.submit_labels}
        for button in await self.page.query_selector_all("button:not([disabled])"):
            text = (await button.inner_text()).strip().lower()
            if text in labels and await button.is_visible():
                return button
        return None

    async def _paste_images(self, target: ElementHandle, images: list[ImageAttachment]) -> None:
        await target.evaluate(_PASTE_IMAGES_JS, [image.model_dump() for image in images])
        await asyncio.sleep(self.profile.image_delay)

    async def submit(self, request: PromptRequest) -> None:
        async with self._reachable():
            prompt_input = await self._first_visible(self.profile.selectors.prompt)
            if prompt_input is None:
                raise SurfaceError(
                    FailureReason.INPUT_NOT_FOUND,
                    f"Prompt input not found on {self.name}; update its selectors in surfaces.yaml",
                )
            if request.images:
                await self._paste_images(prompt_input, request.images)
            if request.prompt.strip():
                await prompt_input.fill(request.prompt)
            await asyncio.sleep(self.profile.input_delay)

            button = await self._find_submit()
            if button is not None:
                await button.click()
                return
            if not await self.page.evaluate(_FORM_SUBMIT_JS):
                raise SurfaceError(FailureReason.SUBMIT_NOT_FOUND, f"Submit control not found on {self.name}")

    async def is_busy(self) -> bool:
        async with self._reachable():
            return await self._first_visible(self.profile.selectors.busy) is not None

    async def is_done(self) -> bool:
        async with self._reachable():
            return await self._first_visible(self.profile.selectors.done) is not None

    async def snapshot(self) -> str:
        async with self._reachable():
            for selector in self.profile.selectors.root:
                handle = await self.page.query_selector(selector)
                if handle is not None:
                    return await handle.inner_html()
            return await self.page.content()

    def _on_mutation(self, *_args) -> None:
        if self._callback is not None:
            self._callback()

    async def watch(self, callback: MutationCallback) -> Unsubscribe:
        async with self._reachable():
            self._callback = callback
            if self._binding is None:
                self._binding = f"__harvestMutation{next(_binding_ids)}"
                await self.page.expose_function(self._binding, self._on_mutation)
            await self.page.evaluate(_OBSERVE_JS, [self._binding, self.profile.selectors.root])

        binding = self._binding

        async def unsubscribe() -> None:
            self._callback = None
            if self.page.is_closed():
                return
            try:
                await self.page.evaluate(_DISCONNECT_JS, binding)
            except PlaywrightError:
                # Tab navigated or closed while detaching; nothing left to disconnect
                pass

        return unsubscribe


__all__ = ["BrowserSurface", "find_page"]
