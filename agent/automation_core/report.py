"""
Report delivery: duration reports are POSTed to the configured ``reportUrl``
from a dedicated background thread, never from the server's worker pool.

Offline buffer: JSON-lines file holding reports whose delivery hit a network
error. It is replayed the next time the server is installed.
"""

import json
import time
from concurrent.futures import ThreadPoolExecutor

import requests

from .config import log, load_settings, OFFLINE_BUFFER_FILE
from .constants import REPORT_TIMEOUT
from . import http_client

_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="automation-report")

_OK_STATUSES = (200, 201, 202, 204)


def submit(subject, html):
    """Log the report now and deliver it in the background. Returns the Future."""
    log.info("%s: %s", subject, html)
    return _executor.submit(_deliver_safely, subject, html)


def _deliver_safely(subject, html):
    try:
        return deliver(subject, html)
    except Exception as e:
        log.error("Report delivery crashed: %s", e, exc_info=True)
        return False


def deliver(subject, html, config=None):
    """Send one report. Returns True when the endpoint accepted it."""
    if config is None:
        config = load_settings()
    url = config.get("reportUrl")
    if not url:
        log.info("No reportUrl configured; '%s' kept in the log only", subject)
        return False

    payload = {
        "subject": subject,
        "html": html,
        "recipients": _recipients(config),
    }
    try:
        resp = http_client.http.post(url, json=payload, timeout=REPORT_TIMEOUT)
    except requests.RequestException as e:
        log.warning("Report delivery network error: %s", e)
        buffer_request(url, payload)
        http_client.http = http_client.reset_session(http_client.http)
        return False

    if resp.status_code in _OK_STATUSES:
        log.info("Report delivered: %s", subject)
        return True
    log.warning("Report delivery failed: HTTP %d, %s", resp.status_code, resp.text[:200])
    return False


def _recipients(config):
    raw = config.get("reportRecipients") or []
    if isinstance(raw, str):
        raw = raw.split()
    return [r for r in raw if r]


# ─── Offline buffer (local persistence) ──────────────────────────

def buffer_request(url, payload):
    """Save an undelivered report to disk for later replay."""
    entry = {"url": url, "payload": payload, "ts": time.time()}
    try:
        with open(OFFLINE_BUFFER_FILE, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry) + "\n")
        log.info("Buffered undelivered report: %s", payload.get("subject", "?"))
    except OSError as e:
        log.warning("Failed to buffer report: %s", e)


def has_buffered_requests():
    try:
        return OFFLINE_BUFFER_FILE.exists() and OFFLINE_BUFFER_FILE.stat().st_size > 0
    except OSError:
        return False


def flush_buffer():
    """
    Replay buffered reports in order. Returns (flushed, remaining).
    Reports that still fail stay in the buffer for the next attempt.
    """
    if not has_buffered_requests():
        return 0, 0

    try:
        lines = OFFLINE_BUFFER_FILE.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        log.warning("Could not read report buffer: %s", e)
        return 0, 0

    flushed = 0
    still_failed = []
    for line in (l for l in lines if l.strip()):
        try:
            entry = json.loads(line)
            resp = http_client.http.post(entry["url"], json=entry["payload"], timeout=REPORT_TIMEOUT)
            if resp.status_code in _OK_STATUSES:
                flushed += 1
            else:
                still_failed.append(line)
        except (ValueError, KeyError):
            log.warning("Dropping corrupt report buffer line")
        except requests.RequestException:
            still_failed.append(line)

    try:
        if still_failed:
            OFFLINE_BUFFER_FILE.write_text("\n".join(still_failed) + "\n", encoding="utf-8")
        else:
            OFFLINE_BUFFER_FILE.unlink(missing_ok=True)
    except OSError as e:
        log.warning("Could not rewrite report buffer: %s", e)

    if flushed:
        log.info("Flushed %d buffered reports (%d still pending)", flushed, len(still_failed))
    return flushed, len(still_failed)


def flush_buffer_async():
    if has_buffered_requests():
        _executor.submit(flush_buffer)
