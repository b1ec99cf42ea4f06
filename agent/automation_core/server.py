"""
AutomationServer: the in-process command server.

Threads:
  - one accept loop per server ("Automation Server [port=N]")
  - a fixed pool of MAX_CONNECTIONS workers, one CommandWorker per connection
  - any number of host threads calling into the WindowRegistry

The pool's queue is unbounded by default: when all workers are busy, new
sessions wait instead of being refused. ``max_pending`` caps the number of
accepted-but-unfinished sessions; past it new connections are closed.

Nothing here raises into the host. Bind, accept and close failures are
logged and reported through return values and is_running().
"""

import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial

from .config import log, load_settings
from .constants import SERVER_HOST, SERVER_PORT, MAX_CONNECTIONS, ACCEPT_POLL_SEC
from .windows import window_registry
from .worker import CommandWorker


class AutomationServer:
    """Listens on loopback and hands each connection to the worker pool."""

    _instance = None
    _install_lock = threading.Lock()
    _initialized = False
    _current_context = None

    def __init__(self, port=SERVER_PORT, registry=None, max_pending=None,
                 worker_factory=CommandWorker):
        self._port = port
        self._registry = registry if registry is not None else window_registry
        self._max_pending = _pending_cap(max_pending)
        self._worker_factory = worker_factory
        self._lock = threading.Lock()
        self._server_socket = None
        self._bound_address = None
        self._thread = None
        self._pool = None
        self._pending = 0

    # ─── Process singleton ───────────────────────────────────

    @classmethod
    def install(cls, context=None):
        """
        Return the process-wide server, creating and starting it if needed.
        Never raises: a server that failed to bind is still returned and
        simply reports is_running() == False.
        """
        with cls._install_lock:
            if cls._instance is None:
                cls._instance = cls(SERVER_PORT, max_pending=_configured_pending_cap())
            server = cls._instance

            if not server.is_running():
                try:
                    server.start()
                except Exception as e:
                    log.warning("Automation server start error: %s", e, exc_info=True)

            cls._current_context = context
            cls._init_collaborators(context)
        return server

    @classmethod
    def instance(cls):
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Stop and forget the singleton (process shutdown hooks, tests)."""
        with cls._install_lock:
            server, cls._instance = cls._instance, None
        if server is not None:
            server.stop()

    @classmethod
    def current_context(cls):
        return cls._current_context

    @classmethod
    def set_current_context(cls, context):
        cls._current_context = context
        return window_registry

    @classmethod
    def _init_collaborators(cls, context):
        """One-shot startup of hook, strict mode, metadata and crash handler."""
        if cls._initialized:
            return
        cls._initialized = True

        from . import crash, device, report
        from .hook import InstrumentationHook

        try:
            settings = load_settings()
            InstrumentationHook.start()
            if settings["strictMode"]:
                crash.enable_strict_mode()
            device.init(context)
            crash.CrashHandler.instance().init(context)
            report.flush_buffer_async()
        except Exception as e:
            log.error("Automation collaborator init failed: %s", e, exc_info=True)

    # ─── Properties ──────────────────────────────────────────

    @property
    def port(self):
        return self._port

    @property
    def registry(self):
        return self._registry

    @property
    def bound_address(self):
        """(host, port) actually bound, or None before bind / after stop."""
        with self._lock:
            return self._bound_address

    @property
    def pending_sessions(self):
        with self._lock:
            return self._pending

    # ─── Lifecycle ───────────────────────────────────────────

    def start(self):
        """
        Launch the accept loop and worker pool.
        Returns False if already started. Binding happens later, on the loop thread.
        """
        with self._lock:
            if self._thread is not None:
                return False
            self._pool = ThreadPoolExecutor(
                max_workers=MAX_CONNECTIONS,
                thread_name_prefix=f"automation-worker-{self._port}",
            )
            self._thread = threading.Thread(
                target=self._run,
                name=f"Automation Server [port={self._port}]",
                daemon=True,
            )
            thread = self._thread
        thread.start()
        return True

    def stop(self):
        """
        Tear down loop, pool and socket, then always empty the window registry.
        Returns True only if a started server's socket was closed cleanly.
        """
        closed = False
        with self._lock:
            thread, pool, sock = self._thread, self._pool, self._server_socket
            self._thread = None
            self._pool = None
            self._server_socket = None
            self._bound_address = None

        if thread is not None:
            if pool is not None:
                try:
                    pool.shutdown(wait=False, cancel_futures=True)
                except Exception as e:
                    log.warning("Could not stop all automation server workers: %s", e)
            if sock is None:
                log.warning("Automation server on port %d was never bound", self._port)
            else:
                try:
                    _shutdown_listener(sock)
                    sock.close()
                    closed = True
                    log.info("Automation server on port %d stopped", self._port)
                except OSError as e:
                    log.warning("Could not close the automation server socket: %s", e)

        self._registry.clear_windows()
        self._registry.clear_focused_window()
        return closed

    def is_running(self):
        thread = self._thread
        return thread is not None and thread.is_alive()

    # ─── Accept loop (own thread) ────────────────────────────

    def _run(self):
        me = threading.current_thread()
        sock = self._bind()
        if sock is None:
            return

        with self._lock:
            if self._thread is not me:
                # stop() won the race while we were binding
                sock.close()
                return
            self._server_socket = sock
            self._bound_address = sock.getsockname()[:2]
            host, port = self._bound_address
        log.info("Automation server listening on %s:%d", host, port)

        while self._thread is me:
            try:
                client, _addr = sock.accept()
            except socket.timeout:
                continue
            except Exception as e:
                if self._thread is not me:
                    break  # socket closed by stop()
                log.warning("Connection error: %s", e)
                time.sleep(ACCEPT_POLL_SEC)
                continue

            try:
                self._dispatch(client)
            except Exception as e:
                log.warning("Connection dispatch error: %s", e, exc_info=True)
                _close_quietly(client)

        log.info("Automation server loop on port %d exited", self._port)

    def _bind(self):
        sock = None
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((SERVER_HOST, self._port))
            sock.listen(MAX_CONNECTIONS)
            sock.settimeout(ACCEPT_POLL_SEC)
            return sock
        except OSError as e:
            log.warning("Starting automation server socket on port %d failed: %s", self._port, e)
            if sock is not None:
                _close_quietly(sock)
            return None

    def _dispatch(self, client):
        with self._lock:
            pool = self._pool
            full = (pool is not None
                    and self._max_pending is not None
                    and self._pending >= self._max_pending)

        if pool is None:
            # Torn down between accept() and here
            _close_quietly(client)
            return
        if full:
            log.warning("Rejecting connection: %d sessions already pending", self._max_pending)
            _close_quietly(client)
            return

        worker = self._worker_factory(client, self._registry, on_finished=self._session_finished)
        with self._lock:
            self._pending += 1
        try:
            future = pool.submit(worker)
        except RuntimeError as e:
            log.info("Worker pool unavailable, dropping connection: %s", e)
            self._session_finished()
            _close_quietly(client)
            return
        future.add_done_callback(partial(self._abandon_if_cancelled, client))

    def _session_finished(self):
        with self._lock:
            self._pending = max(0, self._pending - 1)

    def _abandon_if_cancelled(self, client, future):
        # Queued sessions dropped by stop() never run, so their socket is closed here.
        if future.cancelled():
            self._session_finished()
            _close_quietly(client)


def _shutdown_listener(sock):
    # Wakes a blocked accept() on Linux; other platforms reject shutdown on a listener.
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


def _close_quietly(sock):
    try:
        sock.close()
    except OSError as e:
        log.warning("Socket close error: %s", e)


def _pending_cap(value):
    """maxPendingSessions as a positive int, or None (unbounded) when unset or invalid."""
    if value is None:
        return None
    if not isinstance(value, bool):
        try:
            cap = int(value)
        except (TypeError, ValueError):
            cap = 0
        if cap >= 1:
            return cap
    log.warning("Ignoring maxPendingSessions=%r, sessions are unbounded", value)
    return None


def _configured_pending_cap():
    try:
        return _pending_cap(load_settings()["maxPendingSessions"])
    except Exception as e:
        log.warning("Could not read maxPendingSessions: %s", e, exc_info=True)
        return None
