"""
automation_core: in-process automation command server
=====================================================
Architecture: one accept thread + fixed worker pool; host threads write the
window registry concurrently with workers reading it.

  constants.py    → Version, port, limits, protocol and report tuning
  config.py       → Paths, logging, config load/save
  windows.py      → WindowRegistry (thread-safe window list + focus)
  server.py       → AutomationServer (singleton lifecycle + accept loop)
  worker.py       → CommandWorker (one client session, line protocol)
  finder.py       → Finder (element lookup with timeout, Tk or plain trees)
  hook.py         → InstrumentationHook (tkinter window lifecycle → registry)
  durations.py    → DurationRecorder + report formatting
  report.py       → Background report delivery + offline buffer
  http_client.py  → HTTP session with retry/pooling
  device.py       → Device/app metadata, sound output probe
  crash.py        → CrashHandler, strict mode
  pointer.py      → Pointer clicks (pynput)
  api.py          → Host-facing functions
  runner.py       → main() for running the server standalone
"""

from .constants import LIBRARY_VERSION

__version__ = LIBRARY_VERSION
