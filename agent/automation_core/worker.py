"""
CommandWorker: runs one client session on a pool thread.

Wire format (UTF-8, line based):
  request   one command per line, arguments split like a shell (quotes allowed)
  response  zero or more lines, then a line containing only "DONE."

A session ends on EOF, QUIT, idle timeout or any socket error. The
connection is closed exactly once, on every path.
"""

import shlex
import socket

from .config import log
from .constants import (
    LIBRARY_VERSION, PROTOCOL_VERSION, RESPONSE_TERMINATOR,
    MAX_COMMAND_BYTES, SESSION_IDLE_TIMEOUT_SEC, FINDER_DEFAULT_TIMEOUT_MS,
)
from .finder import Finder
from .windows import describe_window
from . import device
from . import pointer


class CommandWorker:
    """One accepted connection and the commands it sends."""

    def __init__(self, conn, registry, finder_factory=Finder, clicker=None,
                 audio_probe=None, on_finished=None):
        self._conn = conn
        self._registry = registry
        self._finder_factory = finder_factory
        self._clicker = clicker or pointer.click_at
        self._audio_probe = audio_probe or device.is_audio_active
        self._on_finished = on_finished
        self._commands = {
            "PING": self._cmd_ping,
            "PROTOCOL": self._cmd_protocol,
            "SERVER": self._cmd_server,
            "LIST": self._cmd_list,
            "GET_FOCUS": self._cmd_get_focus,
            "VIEW_CENTER_TEXT": self._cmd_view_center_text,
            "VIEW_CENTER_ID": self._cmd_view_center_id,
            "LAST_TOAST": self._cmd_last_toast,
            "MUSIC_ACTIVE": self._cmd_music_active,
            "CLICK_TEXT": self._cmd_click_text,
        }

    def __call__(self):
        self.run()

    def run(self):
        peer = _peer_name(self._conn)
        try:
            self._conn.settimeout(SESSION_IDLE_TIMEOUT_SEC)
            with self._conn.makefile("rb") as reader:
                while True:
                    # Room for the command plus a CRLF terminator
                    raw = reader.readline(MAX_COMMAND_BYTES + 2)
                    if not raw:
                        break
                    if len(raw.rstrip(b"\r\n")) > MAX_COMMAND_BYTES:
                        self._send(["ERROR command too long"])
                        break
                    if not self._handle_line(raw.decode("utf-8", errors="replace").strip()):
                        break
        except socket.timeout:
            log.info("Session %s idle for %ds, closing", peer, SESSION_IDLE_TIMEOUT_SEC)
        except OSError as e:
            log.warning("Session %s connection error: %s", peer, e)
        except Exception as e:
            log.error("Session %s failed: %s", peer, e, exc_info=True)
        finally:
            try:
                self._conn.close()
            except OSError as e:
                log.warning("Session %s close error: %s", peer, e)
            if self._on_finished is not None:
                self._on_finished()

    # ─── Dispatch ────────────────────────────────────────────

    def _handle_line(self, line):
        """Answer one command. Returns False when the session should end."""
        if not line:
            return True
        try:
            tokens = shlex.split(line)
        except ValueError as e:
            self._send([f"ERROR malformed command: {e}"])
            return True

        name, args = tokens[0].upper(), tokens[1:]
        if name == "QUIT":
            self._send(["BYE"])
            return False

        handler = self._commands.get(name)
        if handler is None:
            self._send([f"ERROR unknown command: {tokens[0]}"])
            return True

        try:
            lines = handler(args)
        except (ValueError, IndexError) as e:
            lines = [f"ERROR bad arguments for {name}: {e}"]
        self._send(lines)
        return True

    def _send(self, lines):
        payload = "\n".join(list(lines) + [RESPONSE_TERMINATOR]) + "\n"
        self._conn.sendall(payload.encode("utf-8"))

    # ─── Commands ────────────────────────────────────────────

    def _cmd_ping(self, args):
        return ["OK"]

    def _cmd_protocol(self, args):
        return [PROTOCOL_VERSION]

    def _cmd_server(self, args):
        return [LIBRARY_VERSION]

    def _cmd_list(self, args):
        return [describe_window(w) for w in self._registry.snapshot()]

    def _cmd_get_focus(self, args):
        focused = self._registry.get_focused_window()
        return [describe_window(focused)] if focused is not None else []

    def _cmd_view_center_text(self, args):
        text = args[0]
        index = _int_arg(args, 1, 0)
        timeout_ms = _int_arg(args, 2, FINDER_DEFAULT_TIMEOUT_MS)
        view = self._finder_factory(self._registry, timeout_ms).find_by_text(text, index)
        return [_format_center(view)]

    def _cmd_view_center_id(self, args):
        element_id = args[0]
        timeout_ms = _int_arg(args, 1, FINDER_DEFAULT_TIMEOUT_MS)
        view = self._finder_factory(self._registry, timeout_ms).find_by_id(element_id)
        return [_format_center(view)]

    def _cmd_last_toast(self, args):
        timeout_ms = _int_arg(args, 0, FINDER_DEFAULT_TIMEOUT_MS)
        exclude = args[1] if len(args) > 1 else None
        return [self._finder_factory(self._registry, timeout_ms).last_toast(exclude)]

    def _cmd_music_active(self, args):
        return ["true" if self._audio_probe() else "false"]

    def _cmd_click_text(self, args):
        text = args[0]
        index = _int_arg(args, 1, 0)
        timeout_ms = _int_arg(args, 2, FINDER_DEFAULT_TIMEOUT_MS)
        view = self._finder_factory(self._registry, timeout_ms).find_by_text(text, index)
        if view is None:
            return ["NOT_FOUND"]
        return ["OK" if self._clicker(view.center) else "ERROR click failed"]


def _int_arg(args, pos, default):
    if len(args) <= pos:
        return default
    return int(args[pos])


def _format_center(view):
    if view is None:
        return "NOT_FOUND"
    return f"{view.center.x} {view.center.y}"


def _peer_name(conn):
    try:
        peer = conn.getpeername()
    except OSError:
        return "?"
    if isinstance(peer, tuple):
        return f"{peer[0]}:{peer[1]}"
    return str(peer) or "local"
