"""
InstrumentationHook: wires tkinter window lifecycle into the registry.

start() swaps tkinter.Tk / tkinter.Toplevel __init__ and destroy once per
process, so every window the host builds (including subclasses) is:
  - added to the WindowRegistry when constructed
  - focused in the registry on <FocusIn>
  - removed from the registry on destroy()
  - timed: construction, time to first <Map>, time from <Map> to idle

Hook callbacks run on the Tk thread and never raise into host code.
"""

import functools
import threading
import time

from .config import log, load_settings
from .durations import duration_recorder, send_window_duration
from .windows import window_registry


class InstrumentationHook:
    _lock = threading.Lock()
    _saved = {}          # class -> {attr: original or None if inherited}
    _registry = None
    _recorder = None
    _report_each_window = False
    _root_class = None

    @classmethod
    def start(cls, registry=None, recorder=None, report_each_window=None):
        """Install the hook. Returns True if it was installed by this call."""
        with cls._lock:
            if cls._saved:
                return False
            try:
                import tkinter
            except ImportError as e:
                log.warning("tkinter unavailable, window hook not installed: %s", e)
                return False

            if report_each_window is None:
                report_each_window = bool(load_settings()["reportEachWindow"])
            cls._registry = registry if registry is not None else window_registry
            cls._recorder = recorder if recorder is not None else duration_recorder
            cls._report_each_window = report_each_window
            cls._root_class = tkinter.Tk

            for klass in (tkinter.Tk, tkinter.Toplevel):
                cls._saved[klass] = {
                    "__init__": klass.__dict__.get("__init__"),
                    "destroy": klass.__dict__.get("destroy"),
                }
                klass.__init__ = _wrap_init(klass.__init__)
                klass.destroy = _wrap_destroy(klass.destroy)
            log.info("Window hook installed on Tk/Toplevel")
            return True

    @classmethod
    def stop(cls):
        """Restore the original tkinter methods."""
        with cls._lock:
            for klass, attrs in cls._saved.items():
                for attr, original in attrs.items():
                    if original is None:
                        delattr(klass, attr)
                    else:
                        setattr(klass, attr, original)
            cls._saved = {}

    @classmethod
    def is_installed(cls):
        with cls._lock:
            return bool(cls._saved)

    # ─── Callbacks (Tk thread) ───────────────────────────────

    @classmethod
    def on_created(cls, window, started):
        registry, recorder = cls._registry, cls._recorder
        if registry is None:
            return
        name = window_name(window)
        created_at = time.perf_counter()
        recorder.record_phase(name, "create", (created_at - started) * 1000)
        if isinstance(window, cls._root_class):
            recorder.record_app_launch(name, (created_at - started) * 1000)
        registry.add_window(window)

        mapped = {}

        def on_focus(_event):
            registry.set_focused_window(window)

        def on_idle():
            try:
                recorder.record_phase(name, "idle", (time.perf_counter() - mapped["at"]) * 1000)
                if cls._report_each_window:
                    send_window_duration(name, recorder.claim_first_launch(), recorder)
            except Exception as e:
                log.warning("Window idle timing failed for %s: %s", name, e)

        def on_map(event):
            if event.widget is not window or mapped:
                return
            mapped["at"] = time.perf_counter()
            recorder.record_phase(name, "map", (mapped["at"] - created_at) * 1000)
            window.after_idle(on_idle)

        window.bind("<FocusIn>", on_focus, add="+")
        window.bind("<Map>", on_map, add="+")

    @classmethod
    def on_destroyed(cls, window):
        if cls._registry is not None:
            cls._registry.remove_window(window)


def window_name(window):
    """Class name for host subclasses, class + widget path for plain Tk windows."""
    klass = type(window)
    if klass.__module__ == "tkinter":
        return f"{klass.__name__}{window}"
    return klass.__name__


def _wrap_init(original):
    @functools.wraps(original)
    def __init__(self, *args, **kwargs):
        started = time.perf_counter()
        original(self, *args, **kwargs)
        try:
            InstrumentationHook.on_created(self, started)
        except Exception as e:
            log.warning("Window hook failed on create: %s", e)
    return __init__


def _wrap_destroy(original):
    @functools.wraps(original)
    def destroy(self):
        try:
            InstrumentationHook.on_destroyed(self)
        except Exception as e:
            log.warning("Window hook failed on destroy: %s", e)
        original(self)
    return destroy
