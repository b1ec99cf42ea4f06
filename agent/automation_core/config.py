"""
Where the server keeps its files, how it logs, and the user settings file.

Settings live in ``config.json`` under the base dir. Every key is optional:
  reportUrl            endpoint that receives duration reports (POST, JSON)
  reportRecipients     list, or space separated string, forwarded with reports
  reportEachWindow     send a report after each window settles
  strictMode           faulthandler + all warnings shown
  maxPendingSessions   refuse connections past this many unfinished sessions
"""

import os
import json
import sys
import logging
from pathlib import Path


# ─── Paths ───────────────────────────────────────────────────────
# Shared by every host process of the same user. Tests point it elsewhere.

BASE_DIR = Path(os.environ.get("QA_AUTOMATION_HOME") or Path.home() / ".qa-automation")
BASE_DIR.mkdir(parents=True, exist_ok=True)

CONFIG_FILE = BASE_DIR / "config.json"
LOG_FILE = BASE_DIR / "automation.log"
OFFLINE_BUFFER_FILE = BASE_DIR / "pending-reports.jsonl"
CRASH_DIR = BASE_DIR / "crashes"

LOG_MAX_BYTES = 2_000_000
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s: %(message)s"

DEFAULT_SETTINGS = {
    "reportUrl": None,
    "reportRecipients": [],
    "reportEachWindow": False,
    "strictMode": False,
    "maxPendingSessions": None,
}


def safe_print(*args, **kwargs):
    """print() for hosts started without a console (pythonw, frozen GUI apps)."""
    try:
        print(*args, **kwargs)
    except Exception:
        pass


# ─── Logging ─────────────────────────────────────────────────────

def _truncate_oversized_log():
    try:
        if LOG_FILE.stat().st_size > LOG_MAX_BYTES:
            LOG_FILE.write_text("")
    except OSError:
        pass


def _setup_logging():
    _truncate_oversized_log()
    logging.basicConfig(
        filename=str(LOG_FILE),
        level=logging.INFO,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        encoding="utf-8",
    )
    logger = logging.getLogger("automation")
    if sys.stdout is not None:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(logging.INFO)
        console.setFormatter(logging.Formatter(LOG_FORMAT, "%H:%M:%S"))
        logger.addHandler(console)
    return logger


log = _setup_logging()


# ─── Settings file ───────────────────────────────────────────────

def load_config():
    """Raw settings dict from disk, or None when missing or unreadable."""
    if not CONFIG_FILE.exists():
        return None
    try:
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (ValueError, OSError) as e:  # JSONDecodeError and UnicodeDecodeError are ValueErrors
        log.warning("Ignoring unreadable %s: %s", CONFIG_FILE, e)
        return None
    if not isinstance(data, dict):
        log.warning("Ignoring %s: top level is not an object", CONFIG_FILE)
        return None
    return data


def load_settings():
    """DEFAULT_SETTINGS overlaid with whatever config.json provides."""
    settings = dict(DEFAULT_SETTINGS)
    settings.update(load_config() or {})
    return settings


def save_config(config):
    with open(CONFIG_FILE, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    log.info("Settings written to %s", CONFIG_FILE)
