"""
Window timing: how long each host window took to construct, to first
appear on screen, and to settle (first idle after mapping).

The hook records phases from the Tk thread; reports are formatted on the
caller's thread and delivered in the background by report.submit().
"""

import threading

from .config import log
from .constants import PHASES, SLOW_WINDOW_MS, REPORT_NEWLINE
from . import report


class DurationRecorder:
    """Per-window phase durations in milliseconds, plus the app launch time."""

    def __init__(self):
        self._lock = threading.Lock()
        self._app = {}
        self._windows = {}
        self._first_claimed = False

    def record_app_launch(self, app_name, create_ms):
        with self._lock:
            self._app = {"name": app_name, "create": int(create_ms)}

    def record_phase(self, window_name, phase, ms):
        if phase not in PHASES:
            raise ValueError(f"unknown phase {phase!r}")
        with self._lock:
            entry = self._windows.setdefault(window_name, dict.fromkeys(PHASES, 0))
            entry[phase] = int(ms)
            entry["total"] = sum(entry[p] for p in PHASES)

    def app_launch(self):
        with self._lock:
            return dict(self._app)

    def window_durations(self):
        with self._lock:
            return {name: dict(entry) for name, entry in self._windows.items()}

    def claim_first_launch(self):
        """True exactly once: for the first window report of the process."""
        with self._lock:
            if self._first_claimed:
                return False
            self._first_claimed = True
            return True

    def clear(self):
        with self._lock:
            self._app = {}
            self._windows = {}
            self._first_claimed = False


duration_recorder = DurationRecorder()


# ─── Report text ─────────────────────────────────────────────────

def _total_line(total, label=" Total Duration:"):
    if total > SLOW_WINDOW_MS:
        return f'{label}<font color="red">{total}</font>'
    return f"{label}{total}"


def _phase_lines(entry):
    return [
        f" Create Duration:{entry['create']}",
        f" Map Duration:{entry['map']}",
        f" Idle Duration:{entry['idle']}",
    ]


def _app_lines(app):
    return [f"App Name:{app.get('name', '')}", f" Create Duration:{app.get('create', '')}"]


def format_all_report(recorder):
    """(subject, html) listing every window, fastest first."""
    app = recorder.app_launch()
    windows = sorted(recorder.window_durations().items(), key=lambda item: item[1]["total"])

    lines = _app_lines(app)
    for name, entry in windows:
        lines.append(f"Window Name:{name}")
        lines.append(_total_line(entry["total"]))
        lines.extend(_phase_lines(entry))
        lines.extend(["", ""])
    return "Window Duration Report", REPORT_NEWLINE.join(lines)


def format_window_report(recorder, window_name, is_first):
    """(subject, html) for one window, or None when it has no timings."""
    entry = recorder.window_durations().get(window_name)
    if entry is None:
        return None

    if not is_first:
        lines = [f"Window Name:{window_name}", _total_line(entry["total"])]
        lines.extend(_phase_lines(entry))
        return "Window Duration Report", REPORT_NEWLINE.join(lines)

    app = recorder.app_launch()
    launch_total = entry["total"] + int(app.get("create", 0) or 0)
    lines = _app_lines(app)
    lines.append(f"Window Name:{window_name}")
    lines.append(f" Window Total Duration:{entry['total']}")
    lines.extend(_phase_lines(entry))
    lines.append(f' App Launch Total Duration:<font color="red">{launch_total}</font>')
    return "App First Launch Duration", REPORT_NEWLINE.join(lines)


# ─── Sending ─────────────────────────────────────────────────────

def report_all_window_durations(recorder=None):
    recorder = recorder or duration_recorder
    subject, html = format_all_report(recorder)
    return report.submit(subject, html)


def send_window_duration(window_name, is_first, recorder=None):
    recorder = recorder or duration_recorder
    formatted = format_window_report(recorder, window_name, is_first)
    if formatted is None:
        log.warning("No durations recorded for window %s", window_name)
        return None
    return report.submit(*formatted)
