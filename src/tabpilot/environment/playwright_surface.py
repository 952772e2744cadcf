"""
Playwright implementation of the Automation Surface.

Interactive elements are discovered and marked by an injected script that
writes a ``data-agent-id`` attribute and draws a numbered overlay; clicks and
typing address elements through that attribute. The surface also reports
genuine (trusted) user input and tab switches so the watchdog can stop a turn.
"""

import asyncio
import base64
import logging
from typing import Callable, Optional

from playwright.async_api import BrowserContext, Page, async_playwright

from tabpilot.agents.exceptions import ToolExecutionError

from .automation import AutomationSurface, ClickOutcome, PageContext, PageSnapshot, SnapshotElement

logger = logging.getLogger(__name__)

OVERLAY_ID = "__tabpilot_overlay__"
MAX_ELEMENTS = 400
INTERACTION_BINDING = "__tabpilotUserInput"

DOM_SNAPSHOT_SCRIPT = """
([overlayId, maxElements]) => {
  try {
    const old = document.getElementById(overlayId);
    if (old) old.remove();
    document.querySelectorAll('[data-agent-id]').forEach(el => el.removeAttribute('data-agent-id'));
    if (!document.body) throw new Error('page body is not accessible');

    const vh = window.innerHeight, vw = window.innerWidth;
    const isVisible = (el, rect) => {
      const style = window.getComputedStyle(el);
      if (style.visibility === 'hidden' || style.display === 'none' || style.pointerEvents === 'none') return false;
      if (rect.width < 3 || rect.height < 3) return false;
      const buffer = vh * 0.5;
      if (rect.bottom < -buffer || rect.top > vh + buffer) return false;
      return !(rect.right < 0 || rect.left > vw);
    };
    const getLabel = (el) => {
      let label = el.getAttribute('aria-label') || el.getAttribute('placeholder') || el.title || el.value || '';
      if (!label && el.isContentEditable) label = '[input box]';
      if (!label) label = (el.innerText || '').replace(/\\s+/g, ' ').trim();
      return String(label).substring(0, 50);
    };

    const overlay = document.createElement('div');
    overlay.id = overlayId;
    Object.assign(overlay.style, {position: 'fixed', top: '0', left: '0', width: '100vw',
      height: '100vh', zIndex: '2147483647', pointerEvents: 'none'});
    document.body.appendChild(overlay);

    const selector = 'a, button, input, textarea, select, details, summary, [contenteditable="true"], ' +
      '[role="button"], [role="link"], [onclick], [tabindex], div, span';
    const entries = [];
    for (const el of document.querySelectorAll(selector)) {
      if (entries.length >= maxElements) break;
      try {
        const rect = el.getBoundingClientRect();
        if (!isVisible(el, rect)) continue;
        const tag = el.tagName.toLowerCase();
        if (tag === 'div' || tag === 'span') {
          const pointer = window.getComputedStyle(el).cursor === 'pointer';
          const clickable = el.getAttribute('onclick') || el.getAttribute('role') || el.getAttribute('tabindex');
          if (!pointer && !clickable && !el.isContentEditable && !getLabel(el)) continue;
        }
        let label = getLabel(el);
        const isInput = ['input', 'textarea', 'select'].includes(tag) || el.isContentEditable;
        if (!label && !isInput) {
          if (el.querySelector('img, svg')) label = '[icon]';
          else continue;
        }
        entries.push({el, rect, tag, label: label || (isInput ? '[input]' : '[click]')});
      } catch (e) { continue; }
    }

    const elements = entries.map((entry, index) => {
      const id = index + 1;
      const {el, rect} = entry;
      el.setAttribute('data-agent-id', id);
      const box = document.createElement('div');
      Object.assign(box.style, {position: 'absolute', top: rect.top + 'px', left: rect.left + 'px',
        width: rect.width + 'px', height: rect.height + 'px', border: '2px solid #ff4757',
        borderRadius: '4px', boxSizing: 'border-box'});
      overlay.appendChild(box);
      const badge = document.createElement('div');
      badge.innerText = id;
      Object.assign(badge.style, {position: 'absolute', top: rect.top + 'px', left: rect.left + 'px',
        transform: rect.top < 20 ? 'translateY(0)' : 'translateY(-100%)', backgroundColor: '#ff4757',
        color: 'white', fontSize: '11px', fontWeight: 'bold', padding: '1px 4px',
        borderRadius: '4px', whiteSpace: 'nowrap'});
      overlay.appendChild(badge);
      return {id, tag: entry.tag, label: entry.label};
    });
    return {title: document.title, url: location.href, elements};
  } catch (e) {
    return {error: String(e)};
  }
}
"""

CLEAR_OVERLAY_SCRIPT = """
(overlayId) => {
  const overlay = document.getElementById(overlayId);
  if (overlay) overlay.remove();
  document.querySelectorAll('[data-agent-id]').forEach(el => el.removeAttribute('data-agent-id'));
}
"""

CLICK_SCRIPT = """
(id) => {
  const el = document.querySelector(`[data-agent-id="${id}"]`);
  if (!el) return null;
  el.scrollIntoView({behavior: 'instant', block: 'center'});
  el.click();
  return el.tagName;
}
"""

TYPE_SCRIPT = """
([id, text, pressEnter]) => {
  const el = document.querySelector(`[data-agent-id="${id}"]`);
  if (!el) return null;
  el.focus();
  const plain = !['INPUT', 'TEXTAREA'].includes(el.tagName);
  if (plain && (el.isContentEditable || el.tagName === 'DIV' || el.tagName === 'SPAN')) {
    el.innerText = text;
  } else {
    const proto = el.tagName === 'TEXTAREA' ? HTMLTextAreaElement.prototype : HTMLInputElement.prototype;
    const setter = Object.getOwnPropertyDescriptor(proto, 'value')?.set;
    if (setter) setter.call(el, text); else el.value = text;
  }
  el.dispatchEvent(new Event('input', {bubbles: true}));
  el.dispatchEvent(new Event('change', {bubbles: true}));
  if (pressEnter) {
    const opts = {key: 'Enter', code: 'Enter', keyCode: 13, which: 13, bubbles: true};
    ['keydown', 'keypress', 'keyup'].forEach(type => el.dispatchEvent(new KeyboardEvent(type, opts)));
    const form = el.closest('form');
    const submit = (form && form.querySelector('button, [type="submit"]')) ||
      document.querySelector('[class*="send-btn"], [class*="SendBtn"]');
    if (submit) {
      setTimeout(() => submit.click(), 150);
      return 'Text entered; Enter pressed and the submit button clicked.';
    }
  }
  return 'Text entered.';
}
"""

READ_CONTENT_SCRIPT = """
(limit) => {
  const root = document.querySelector('article') || document.querySelector('main') || document.body;
  const text = (root ? root.innerText : '').substring(0, limit);
  return {title: document.title, text};
}
"""

PAGE_CONTEXT_SCRIPT = """
(limit) => {
  const clean = (t) => t.replace(/\\s+/g, ' ').trim();
  const selection = window.getSelection().toString();
  if (selection.trim().length > 0) {
    return {title: document.title, url: location.href,
            content: '[User-selected text]\\n' + clean(selection), isSelection: true};
  }
  const root = document.querySelector('article') || document.querySelector('main') ||
    document.querySelector('.main-content') || document.body;
  const clone = root.cloneNode(true);
  clone.querySelectorAll('script, style, noscript, iframe, nav, footer, .ad, .ads, .comment, .sidebar')
    .forEach(el => el.remove());
  return {title: document.title, url: location.href,
          content: clean(clone.innerText || '').substring(0, limit), isSelection: false};
}
"""

# Reports trusted (human) input back to Python; script-dispatched events are ignored
INTERACTION_LISTENER_SCRIPT = f"""
(() => {{
  if (window.__tabpilotListening) return;
  window.__tabpilotListening = true;
  const report = (event) => {{
    if (event.isTrusted && window.{INTERACTION_BINDING}) window.{INTERACTION_BINDING}(event.type);
  }};
  ['mousedown', 'keydown', 'wheel', 'touchstart'].forEach(type =>
    window.addEventListener(type, report, {{capture: true, passive: true}}));
}})();
"""


class PlaywrightSurface(AutomationSurface):
    """Automation surface backed by a Playwright browser context."""

    def __init__(
        self,
        context: BrowserContext,
        page: Page,
        max_context_chars: int = 50000,
        playwright=None,
        browser=None,
    ):
        self.context = context
        self.page = page
        self.max_context_chars = max_context_chars
        self._playwright = playwright
        self._browser = browser
        self._on_interaction: Optional[Callable[[bool], None]] = None
        self._on_tab_switch: Optional[Callable[[], None]] = None
        self.context.on("page", self._handle_new_page)

    @classmethod
    async def create(
        cls, headless: bool = True, max_context_chars: int = 50000, start_url: Optional[str] = None
    ) -> "PlaywrightSurface":
        playwright = await async_playwright().start()
        browser = await playwright.chromium.launch(headless=headless)
        context = await browser.new_context(
            viewport={"width": 1280, "height": 720}, accept_downloads=False
        )
        page = await context.new_page()
        surface = cls(context, page, max_context_chars, playwright=playwright, browser=browser)
        if start_url:
            await page.goto(start_url)
        return surface

    async def close(self) -> None:
        await self.context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()

    # --- Watchdog signals ---

    async def bind_signals(
        self,
        on_interaction: Callable[[bool], None],
        on_tab_switch: Callable[[], None],
    ) -> None:
        """Route trusted page input and tab switches to the given callbacks."""
        self._on_interaction = on_interaction
        self._on_tab_switch = on_tab_switch
        await self.context.expose_binding(INTERACTION_BINDING, self._handle_interaction)
        await self.context.add_init_script(INTERACTION_LISTENER_SCRIPT)
        for page in self.context.pages:
            await page.evaluate(INTERACTION_LISTENER_SCRIPT)

    def _handle_interaction(self, source, event_type: str) -> None:
        logger.debug(f"Trusted page input: {event_type}")
        if self._on_interaction is not None:
            self._on_interaction(True)

    def _handle_new_page(self, page: Page) -> None:
        self.page = page
        logger.debug(f"Active page switched to new tab: {page.url}")
        if self._on_tab_switch is not None:
            self._on_tab_switch()

    # --- Surface operations ---

    async def _wait_for_load(self, page: Optional[Page] = None) -> None:
        page = page or self.page
        try:
            await page.wait_for_load_state("load", timeout=8000)
        except Exception as e:
            logger.warning(f"Page load wait failed: {e}")
        await page.wait_for_timeout(1000)

    async def snapshot(self) -> PageSnapshot:
        await self._wait_for_load()
        result = await self.page.evaluate(DOM_SNAPSHOT_SCRIPT, [OVERLAY_ID, MAX_ELEMENTS])
        if not result or result.get("error"):
            raise ToolExecutionError(
                "Could not scan interactive elements on the page",
                tool_name="get_page_interactables",
                execution_error=(result or {}).get("error"),
            )
        elements = [
            SnapshotElement(id=int(e["id"]), tag=e["tag"], label=e["label"])
            for e in result["elements"]
        ]
        return PageSnapshot(elements=elements, title=result["title"], url=result["url"])

    async def click(self, element_id: int) -> ClickOutcome:
        old_url = self.page.url
        tag = await self.page.evaluate(CLICK_SCRIPT, element_id)
        if tag is None:
            return ClickOutcome(text=f"Error: no element with ID={element_id} found")
        text = f"Clicked element ID={element_id} ({tag})."

        await asyncio.sleep(2)
        new_url = self.page.url
        if new_url == old_url:
            return ClickOutcome(text=text, url=new_url)

        await self._wait_for_load()
        content = await self.read_content()
        return ClickOutcome(
            text=f"{text} Page navigated to: {new_url}.\n\n{content}",
            navigated=True,
            url=new_url,
        )

    async def type_text(self, element_id: int, text: str, press_enter: bool = False) -> str:
        result = await self.page.evaluate(TYPE_SCRIPT, [element_id, text, bool(press_enter)])
        await asyncio.sleep(0.8)
        if result is None:
            return f"Error: no input with ID={element_id} found"
        return result

    async def open_url(self, url: str) -> str:
        page = await self.context.new_page()
        await page.goto(url)
        await page.bring_to_front()
        self.page = page
        await self._wait_for_load(page)
        content = await self.read_content()
        return f"Opened URL: {url}. {content}"

    async def read_content(self) -> str:
        result = await self.page.evaluate(READ_CONTENT_SCRIPT, self.max_context_chars)
        return f'Title is "{result["title"]}". Page content summary:\n{result["text"]}'

    async def screenshot(self) -> str:
        image = await self.page.screenshot(type="jpeg", quality=60)
        return "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")

    async def clear_overlay(self) -> None:
        if self.page.url.startswith(("chrome:", "about:")):
            return
        await self.page.evaluate(CLEAR_OVERLAY_SCRIPT, OVERLAY_ID)

    async def page_context(self, limit: int) -> Optional[PageContext]:
        if self.page.url.startswith(("chrome:", "about:")):
            return None
        result = await self.page.evaluate(PAGE_CONTEXT_SCRIPT, limit)
        if not result or not result.get("content"):
            return None
        return PageContext(
            title=result["title"],
            url=result["url"],
            content=result["content"],
            is_selection=bool(result.get("isSelection")),
        )
