"""
QA Automation Server: standalone launcher
=========================================
Runs the in-process command server on 127.0.0.1:4939 without a host UI.
Real hosts call automation_core.api.install() from their own startup code.

Usage:
    python automation_agent.py
"""

import sys

from automation_core.runner import main


if __name__ == "__main__":
    sys.exit(main())
