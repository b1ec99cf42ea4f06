"""
Standalone entry point: run the command server without a host GUI.

Useful to poke at the protocol from a terminal:
    printf 'PING\nLIST\nQUIT\n' | nc 127.0.0.1 4939
"""

import time

from .constants import LIBRARY_VERSION
from .config import log, safe_print
from .server import AutomationServer


def main():
    safe_print("QA automation server v" + LIBRARY_VERSION)

    server = AutomationServer.install()
    time.sleep(0.5)  # Bind happens on the loop thread
    if not server.is_running():
        log.error("Automation server is not running (port %d busy?)", server.port)
        return 1

    safe_print(f"Listening on port {server.port}. Ctrl+C to stop.\n")
    try:
        while server.is_running():
            time.sleep(1)
    except KeyboardInterrupt:
        safe_print("\nStopped by user.")
    finally:
        AutomationServer.reset_instance()
    return 0
