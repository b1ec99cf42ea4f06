"""
Element lookup inside the registered windows.

Two kinds of window trees are understood:
  - tkinter widgets (walked through winfo_children / cget("text"))
  - plain objects shaped like UiElement (children / element_id / text / bounds)

Lookups poll until the caller's timeout, since the element an automation
client asks for is usually still being laid out when the request arrives.
"""

import time
from collections import namedtuple
from dataclasses import dataclass, field

from .config import log
from .constants import FINDER_DEFAULT_TIMEOUT_MS, FINDER_POLL_SEC, TOAST_ELEMENT_ID


Point = namedtuple("Point", "x y")

# Normalized view of one element, whatever toolkit it came from.
ElementView = namedtuple("ElementView", "element_id text center")


@dataclass
class UiElement:
    """Element tree node for hosts that don't use tkinter."""

    element_id: str = ""
    text: str = ""
    bounds: tuple = (0, 0, 0, 0)     # x, y, width, height in screen pixels
    children: list = field(default_factory=list)
    visible: bool = True

    @property
    def center(self):
        x, y, w, h = self.bounds
        return Point(x + w // 2, y + h // 2)


# ─── Tree walking ────────────────────────────────────────────────

def iter_elements(window):
    """Yield an ElementView for every visible element under ``window``."""
    if hasattr(window, "winfo_children"):
        yield from _walk_tk(window)
    else:
        yield from _walk_generic(window)


def _walk_tk(widget):
    try:
        if not widget.winfo_ismapped():
            return
        try:
            text = widget.cget("text")
        except Exception:
            text = ""  # Frames, canvases etc. have no text option
        x, y = widget.winfo_rootx(), widget.winfo_rooty()
        center = Point(x + widget.winfo_width() // 2, y + widget.winfo_height() // 2)
        children = widget.winfo_children()
        name = widget.winfo_name()
    except Exception as e:
        # Widget destroyed while we were walking it
        log.debug("Skipping widget during walk: %s", e)
        return
    yield ElementView(name, str(text or ""), center)
    for child in children:
        yield from _walk_tk(child)


def _walk_generic(node):
    if not getattr(node, "visible", True):
        return
    element_id = getattr(node, "element_id", None)
    if element_id is not None:
        center = getattr(node, "center", None)
        if center is None:
            x, y, w, h = getattr(node, "bounds", (0, 0, 0, 0))
            center = Point(x + w // 2, y + h // 2)
        yield ElementView(element_id, str(getattr(node, "text", "") or ""), center)
    for child in list(getattr(node, "children", None) or ()):
        yield from _walk_generic(child)


# ─── Finder ──────────────────────────────────────────────────────

class Finder:
    """Blocking lookups against a WindowRegistry, bounded by ``timeout_ms``."""

    def __init__(self, registry, timeout_ms=FINDER_DEFAULT_TIMEOUT_MS):
        self._registry = registry
        self._timeout_ms = max(0, int(timeout_ms))

    def find_by_text(self, text, index=0):
        return self._poll(lambda e: e.text == text, index)

    def find_by_id(self, element_id, index=0):
        return self._poll(lambda e: e.element_id == element_id, index)

    def find_text_view(self, element_id, exclude_text=None, index=0, newest_first=False):
        """Element with ``element_id`` whose text isn't empty nor ``exclude_text``."""
        def match(e):
            return e.element_id == element_id and e.text and e.text != exclude_text
        return self._poll(match, index, newest_first)

    def last_toast(self, exclude_text=None):
        view = self.find_text_view(TOAST_ELEMENT_ID, exclude_text, newest_first=True)
        return view.text if view is not None else ""

    def _poll(self, predicate, index, newest_first=False):
        index = max(0, index)
        deadline = time.monotonic() + self._timeout_ms / 1000.0
        while True:
            seen = 0
            for element in self._elements(newest_first):
                if predicate(element):
                    if seen == index:
                        return element
                    seen += 1
            if time.monotonic() >= deadline:
                return None
            time.sleep(FINDER_POLL_SEC)

    def _elements(self, newest_first):
        windows = self._registry.snapshot()
        if newest_first:
            windows.reverse()
        focused = self._registry.get_focused_window()
        if focused is not None:
            windows = [focused] + [w for w in windows if w is not focused]
        for window in windows:
            yield from iter_elements(window)
