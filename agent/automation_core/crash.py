"""
Crash capture and strict mode.

CrashHandler hooks sys.excepthook and threading.excepthook: every uncaught
exception is logged and written to a crash file together with the device
and app description, then handed to the previous hook.
"""

import sys
import threading
import traceback
import faulthandler
import warnings
from datetime import datetime

from .config import log, CRASH_DIR
from . import device


class CrashHandler:
    _instance = None
    _instance_lock = threading.Lock()

    def __init__(self):
        self._context = None
        self._installed = False
        self._prev_excepthook = None
        self._prev_thread_excepthook = None

    @classmethod
    def instance(cls):
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def init(self, context=None):
        """Install the hooks once. Later calls only update the context."""
        self._context = context
        if self._installed:
            return
        self._installed = True
        self._prev_excepthook = sys.excepthook
        self._prev_thread_excepthook = threading.excepthook
        sys.excepthook = self._on_uncaught
        threading.excepthook = self._on_thread_uncaught
        log.info("Crash handler installed")

    def uninstall(self):
        if not self._installed:
            return
        sys.excepthook = self._prev_excepthook
        threading.excepthook = self._prev_thread_excepthook
        self._installed = False

    def _on_uncaught(self, exc_type, exc_value, exc_tb):
        self.handle(exc_type, exc_value, exc_tb, thread_name=threading.current_thread().name)
        self._prev_excepthook(exc_type, exc_value, exc_tb)

    def _on_thread_uncaught(self, args):
        name = args.thread.name if args.thread is not None else "?"
        self.handle(args.exc_type, args.exc_value, args.exc_traceback, thread_name=name)
        self._prev_thread_excepthook(args)

    def handle(self, exc_type, exc_value, exc_tb, thread_name="?"):
        """Log the crash and write it to disk. Returns the crash file path or None."""
        text = "".join(traceback.format_exception(exc_type, exc_value, exc_tb))
        log.error("Uncaught exception in thread %s:\n%s", thread_name, text)
        return self._write_crash_file(text, thread_name)

    def _write_crash_file(self, text, thread_name):
        if device.device_info() is None:
            device.init(self._context)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        path = CRASH_DIR / f"crash-{stamp}.log"
        header = [f"{key}: {value}" for key, value in device.describe().items()]
        header.append(f"thread: {thread_name}")
        try:
            CRASH_DIR.mkdir(parents=True, exist_ok=True)
            path.write_text("\n".join(header) + "\n\n" + text, encoding="utf-8")
            return path
        except OSError as e:
            log.warning("Could not write crash file %s: %s", path, e)
            return None


def enable_strict_mode():
    """Dump tracebacks on fatal signals and show every warning once per location."""
    if not faulthandler.is_enabled():
        try:
            faulthandler.enable()
        except (RuntimeError, ValueError) as e:
            # No usable stderr (windowed host)
            log.warning("faulthandler not enabled: %s", e)
    warnings.simplefilter("default")
    log.warning("Strict mode enabled")
