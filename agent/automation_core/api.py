"""
Host-facing API: what the embedding application calls.

  - install()                   start the command server (safe to call repeatedly)
  - add/remove/set_focused_window  window lifecycle callbacks, any thread
  - view / toast / audio queries for in-process callers
  - duration reports

All functions are non-raising. Lookups block for at most their timeout.
"""

from .constants import FINDER_DEFAULT_TIMEOUT_MS
from .finder import Finder
from .server import AutomationServer
from .windows import window_registry
from . import device
from . import durations


def install(context=None):
    return AutomationServer.install(context)


def set_current_context(context):
    """Record the host context and return the window registry."""
    return AutomationServer.set_current_context(context)


# ─── Window callbacks ────────────────────────────────────────────

def add_window(window):
    window_registry.add_window(window)


def remove_window(window):
    window_registry.remove_window(window)


def set_focused_window(window):
    window_registry.set_focused_window(window)


def get_focused_window():
    return window_registry.get_focused_window()


def list_windows():
    return window_registry.snapshot()


# ─── Queries ─────────────────────────────────────────────────────

def get_view_center(text, index=0, timeout_ms=FINDER_DEFAULT_TIMEOUT_MS):
    """Screen center of the ``index``-th element showing ``text``, or None."""
    view = Finder(window_registry, timeout_ms).find_by_text(text, index)
    return view.center if view is not None else None


def get_view_center_by_id(element_id, timeout_ms=FINDER_DEFAULT_TIMEOUT_MS):
    view = Finder(window_registry, timeout_ms).find_by_id(element_id)
    return view.center if view is not None else None


def get_last_toast(timeout_ms, exclude_text=None):
    """Text of the newest toast, skipping one equal to ``exclude_text``. "" if none."""
    return Finder(window_registry, timeout_ms).last_toast(exclude_text)


def is_music_active():
    return device.is_audio_active()


# ─── Reports ─────────────────────────────────────────────────────

def report_all_window_durations():
    return durations.report_all_window_durations()


def send_window_duration(window_name, is_first):
    return durations.send_window_duration(window_name, is_first)
