"""
DOM-level primitives the executor composes: find-and-click, type, submit.

Element lookup runs in the page; the click itself is a real mouse event at
the element's centre so the page sees the same input a user would produce.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

from .actions import Click, Submit, Type
from .base import ActionFailed

POLL_INTERVAL = 0.25


def _build_locate_js(text: str, selectors: tuple[str, ...], css: str) -> str:
    """Build JavaScript that locates (and scrolls to) the click target."""
    return f"""
    (() => {{
        const searchText = {json.dumps(text.strip().lower())};
        const selectors = {json.dumps(list(selectors))};
        const css = {json.dumps(css)};

        const isVisible = (el) => {{
            if (!el) return false;
            const style = getComputedStyle(el);
            return style.display !== 'none' && style.visibility !== 'hidden';
        }};
        const label = (el) => ((el.textContent || '') + ' ' + (el.value || '')).trim().toLowerCase();

        const lists = css ? [css] : selectors;
        let found = null;
        for (const sel of lists) {{
            let nodes = [];
            try {{
                nodes = Array.from(document.querySelectorAll(sel));
            }} catch (e) {{
                continue;
            }}
            for (const n of nodes) {{
                if (searchText && !label(n).includes(searchText)) continue;
                if (!isVisible(n)) continue;
                found = n;
                break;
            }}
            if (found) break;
        }}
        if (!found) return {{ found: false }};

        try {{
            found.scrollIntoView({{ block: 'center', inline: 'center' }});
        }} catch (e) {{
            // ignore
        }}
        const r = found.getBoundingClientRect();
        if (r.width > 0 && r.height > 0) {{
            return {{
                found: true,
                tag: found.tagName,
                bounds: {{ x: r.x, y: r.y, width: r.width, height: r.height }},
            }};
        }}
        // No box (e.g. display: contents); let the element click itself.
        found.click();
        return {{ found: true, tag: found.tagName, clicked: true }};
    }})()
    """


def _build_focus_js(selectors: tuple[str, ...]) -> str:
    return f"""
    (() => {{
        const selectors = {json.dumps(list(selectors))};
        for (const sel of selectors) {{
            let el = null;
            try {{
                el = document.querySelector(sel);
            }} catch (e) {{
                continue;
            }}
            if (!el) continue;
            try {{
                el.scrollIntoView({{ block: 'center' }});
            }} catch (e) {{
                // ignore
            }}
            el.focus();
            if ('value' in el) {{
                el.value = '';
                el.dispatchEvent(new Event('input', {{ bubbles: true }}));
            }}
            return {{ found: true, selector: sel, focused: document.activeElement === el }};
        }}
        return {{ found: false }};
    }})()
    """


def _build_submit_js(form_selector: str) -> str:
    return f"""
    (() => {{
        let form = null;
        try {{
            form = document.querySelector({json.dumps(form_selector)});
        }} catch (e) {{
            form = null;
        }}
        if (!form) form = document.querySelector('form');
        if (!form) return {{ found: false }};
        if (typeof form.requestSubmit === 'function') form.requestSubmit();
        else form.submit();
        return {{ found: true }};
    }})()
    """


async def _poll(page: Any, js: str, timeout: float) -> dict[str, Any] | None:
    """Evaluate `js` until it reports found=true or the timeout passes."""
    deadline = time.monotonic() + max(0.0, timeout)
    while True:
        result = await page.eval_js(js)
        if isinstance(result, dict) and result.get("found"):
            return result
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        await asyncio.sleep(min(POLL_INTERVAL, remaining))


async def click_element(page: Any, action: Click, timeout: float) -> dict[str, Any]:
    """Wait for the target, then click its centre."""
    result = await _poll(page, _build_locate_js(action.text, action.selectors, action.css), timeout)
    if result is None:
        raise ActionFailed(
            action=action.describe(),
            reason=f"No matching element within {timeout:g}s",
            suggestion="Check the link text or selector on the current page",
        )
    if result.get("clicked"):
        return result
    bounds = result.get("bounds")
    if not isinstance(bounds, dict):
        raise ActionFailed(action=action.describe(), reason="Missing element bounds")
    x = float(bounds.get("x", 0.0)) + float(bounds.get("width", 0.0)) / 2
    y = float(bounds.get("y", 0.0)) + float(bounds.get("height", 0.0)) / 2
    await page.click(x, y)
    return {**result, "clicked": {"x": x, "y": y}}


async def type_into(page: Any, action: Type, timeout: float) -> dict[str, Any]:
    result = await _poll(page, _build_focus_js(action.selectors), timeout)
    if result is None:
        raise ActionFailed(
            action=action.describe(),
            reason=f"No input field within {timeout:g}s",
            suggestion="Check the field selectors on the current page",
        )
    await page.type_text(action.value)
    return result


async def submit_form(page: Any, action: Submit, timeout: float) -> dict[str, Any]:
    result = await _poll(page, _build_submit_js(action.form_selector), timeout)
    if result is None:
        raise ActionFailed(action=action.describe(), reason="No form on the page")
    return result


__all__ = ["click_element", "submit_form", "type_into"]
