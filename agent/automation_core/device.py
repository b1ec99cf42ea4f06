"""
Device and host-application metadata, plus OS-specific probes:
  - Device info (OS, machine, hostname, Python)
  - App info (name/version taken from the install context)
  - Sound output activity (pactl on Linux, pmset on macOS)
"""

import os
import sys
import socket
import platform
import subprocess
from dataclasses import dataclass, asdict

from .config import log
from .constants import LIBRARY_VERSION


@dataclass(frozen=True)
class DeviceInfo:
    os_name: str
    os_release: str
    machine: str
    hostname: str
    python: str


@dataclass(frozen=True)
class AppInfo:
    name: str
    version: str
    pid: int
    library_version: str = LIBRARY_VERSION


_device_info = None
_app_info = None


def init(context=None):
    """Collect device and app info once. Later calls are no-ops."""
    global _device_info, _app_info
    if _device_info is None:
        _device_info = DeviceInfo(
            os_name=platform.system(),
            os_release=platform.release(),
            machine=platform.machine(),
            hostname=socket.gethostname(),
            python=platform.python_version(),
        )
    if _app_info is None:
        _app_info = _app_info_from(context)
        log.info("Host app %s %s (pid %d) on %s %s",
                 _app_info.name, _app_info.version, _app_info.pid,
                 _device_info.os_name, _device_info.os_release)


def _app_info_from(context):
    name = getattr(context, "app_name", None) if context is not None else None
    if not name:
        argv0 = sys.argv[0] if sys.argv and sys.argv[0] else "python"
        name = os.path.splitext(os.path.basename(argv0))[0] or "python"
    version = getattr(context, "app_version", None) if context is not None else None
    return AppInfo(name=str(name), version=str(version or "unknown"), pid=os.getpid())


def device_info():
    return _device_info


def app_info():
    return _app_info


def describe():
    """Flat dict of everything known, for crash files and reports."""
    data = {}
    info, app = device_info(), app_info()
    if info is not None:
        data.update(asdict(info))
    if app is not None:
        data.update({f"app_{k}": v for k, v in asdict(app).items()})
    return data


# ─── Sound output probe ──────────────────────────────────────────

def is_audio_active():
    """True if some stream is currently playing through the sound server."""
    try:
        if sys.platform.startswith("linux"):
            return _pulse_has_running_sink()
        if sys.platform == "darwin":
            return _coreaudio_asserting()
    except (OSError, subprocess.SubprocessError) as e:
        log.warning("is_audio_active: probe failed: %s", e)
        return False
    log.warning("is_audio_active: no sound probe on %s", sys.platform)
    return False


def _pulse_has_running_sink():
    result = subprocess.run(
        ["pactl", "list", "short", "sinks"],
        capture_output=True, text=True, timeout=5,
    )
    if result.returncode != 0:
        log.warning("is_audio_active: pactl exited with %d", result.returncode)
        return False
    # Columns: index, name, driver, sample spec, state
    return any(line.split("\t")[-1].strip() == "RUNNING"
               for line in result.stdout.splitlines() if line.strip())


def _coreaudio_asserting():
    result = subprocess.run(
        ["pmset", "-g", "assertions"],
        capture_output=True, text=True, timeout=5,
    )
    if result.returncode != 0:
        return False
    return "coreaudiod" in result.stdout and "PreventUserIdleSystemSleep" in result.stdout
