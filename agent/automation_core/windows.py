"""
WindowRegistry: the live set of host windows and which one has focus.

Written from host UI threads (window created / destroyed / focused) while
worker threads read it to answer automation clients. Every operation takes
one short lock; nothing under the lock does I/O or calls back into the host.

Membership and focus are tracked independently: a window may be focused
before it was ever added, and that dangling focus is reported as-is.
"""

import threading


class WindowRegistry:
    """Ordered, identity-keyed window list plus an optional focused window."""

    def __init__(self):
        self._lock = threading.Lock()
        self._windows = []
        self._focused = None

    # ── Host callbacks ───────────────────────────────────────

    def add_window(self, window):
        """Append ``window`` unless that exact object is already present."""
        with self._lock:
            if self._index_of(window) >= 0:
                return
            self._windows.append(window)

    def remove_window(self, window):
        with self._lock:
            idx = self._index_of(window)
            if idx >= 0:
                del self._windows[idx]
            if self._focused is window:
                self._focused = None

    def set_focused_window(self, window):
        with self._lock:
            self._focused = window

    # ── Shutdown ─────────────────────────────────────────────

    def clear_windows(self):
        with self._lock:
            self._windows.clear()

    def clear_focused_window(self):
        with self._lock:
            self._focused = None

    # ── Reads ────────────────────────────────────────────────

    def get_focused_window(self):
        with self._lock:
            return self._focused

    def snapshot(self):
        """Copy of the windows in the order they were added."""
        with self._lock:
            return list(self._windows)

    def __len__(self):
        with self._lock:
            return len(self._windows)

    def __contains__(self, window):
        with self._lock:
            return self._index_of(window) >= 0

    def _index_of(self, window):
        # Identity, not equality: two rebuilt windows with one title are distinct.
        for i, existing in enumerate(self._windows):
            if existing is window:
                return i
        return -1


# ─── Display helpers ─────────────────────────────────────────────

def window_id(window):
    """Hex identity token used for a window on the wire."""
    return format(id(window), "x")


def window_title(window):
    """Best-effort display title (Tk ``title()``, ``title``/``name`` attrs, class name)."""
    title = getattr(window, "title", None)
    if callable(title):
        try:
            title = title()
        except Exception:
            title = None
    if not title:
        title = getattr(window, "name", None)
    if not title or not isinstance(title, str):
        title = type(window).__name__
    return title


def describe_window(window):
    return f"{window_id(window)} {window_title(window)}"


# Process-wide registry. Exists from import so host callbacks that fire
# before the server is installed are not lost.
window_registry = WindowRegistry()
