"""
Pointer control for CLICK commands.

pynput is imported on first use: on a headless machine its backend import
fails, and the server must still run there for read-only commands.
"""

from .config import log

_controller = None


def click_at(point):
    """Move the system pointer to ``point`` and left-click. Returns True on success."""
    global _controller
    try:
        from pynput import mouse

        if _controller is None:
            _controller = mouse.Controller()
        _controller.position = (int(point.x), int(point.y))
        _controller.click(mouse.Button.left, 1)
        return True
    except Exception as e:
        log.warning("Pointer click at %s failed: %s", tuple(point), e)
        return False
