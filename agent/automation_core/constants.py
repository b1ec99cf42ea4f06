"""
Constants: version, server limits, protocol tokens, finder and report tuning.
"""

LIBRARY_VERSION = "1.2.0"
PROTOCOL_VERSION = "1"

# ─── Server ──────────────────────────────────────────────────────
SERVER_HOST = "127.0.0.1"      # Loopback only, debug channel
SERVER_PORT = 4939
MAX_CONNECTIONS = 10           # Worker pool size and listen backlog
ACCEPT_POLL_SEC = 0.5          # Accept wakes this often to notice stop()
SESSION_IDLE_TIMEOUT_SEC = 30  # A silent client is dropped after this

# ─── Protocol ────────────────────────────────────────────────────
RESPONSE_TERMINATOR = "DONE."
MAX_COMMAND_BYTES = 8192

# ─── Finder ──────────────────────────────────────────────────────
FINDER_DEFAULT_TIMEOUT_MS = 2000
FINDER_POLL_SEC = 0.1
TOAST_ELEMENT_ID = "message"

# ─── Durations / reports ─────────────────────────────────────────
SLOW_WINDOW_MS = 800           # Totals above this are highlighted red
REPORT_NEWLINE = "\n<br>"
REPORT_TIMEOUT = 20            # Seconds per delivery attempt
PHASES = ("create", "map", "idle")
