from __future__ import annotations

import socket
import struct
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest import mock

from automation_core import config as config_module
from automation_core import server as server_module
from automation_core.server import AutomationServer
from automation_core.windows import WindowRegistry
from automation_core.worker import CommandWorker


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def refuses(address) -> bool:
    try:
        socket.create_connection(address, timeout=1).close()
    except OSError:
        return True
    return False


class BlockingWorker:
    """Worker stand-in that holds its pool thread until released."""

    def __init__(self, tracker: "WorkerTracker", conn, registry, on_finished=None) -> None:
        self.tracker = tracker
        self.conn = conn
        self.on_finished = on_finished

    def __call__(self) -> None:
        with self.tracker.lock:
            self.tracker.started += 1
        self.tracker.release.wait(timeout=10)
        self.conn.close()
        with self.tracker.lock:
            self.tracker.finished += 1
        if self.on_finished is not None:
            self.on_finished()


class WorkerTracker:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.release = threading.Event()
        self.started = 0
        self.finished = 0

    def factory(self, conn, registry, on_finished=None) -> BlockingWorker:
        return BlockingWorker(self, conn, registry, on_finished)


class ServerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = WindowRegistry()
        self.servers: list[AutomationServer] = []
        self.clients: list[socket.socket] = []

    def tearDown(self) -> None:
        for client in self.clients:
            client.close()
        for server in self.servers:
            server.stop()

    def make_server(self, **kwargs) -> AutomationServer:
        server = AutomationServer(port=0, registry=self.registry, **kwargs)
        self.servers.append(server)
        return server

    def start_bound(self, server: AutomationServer) -> tuple[str, int]:
        self.assertTrue(server.start())
        self.assertTrue(wait_until(lambda: server.bound_address is not None), "server never bound")
        return server.bound_address

    def connect(self, address: tuple[str, int]) -> socket.socket:
        client = socket.create_connection(address, timeout=5)
        self.clients.append(client)
        return client

    @staticmethod
    def request(client: socket.socket, command: str) -> list[str]:
        client.sendall((command + "\n").encode("utf-8"))
        data = b""
        while not data.endswith(b"DONE.\n"):
            chunk = client.recv(4096)
            if not chunk:
                break
            data += chunk
        return data.decode("utf-8").splitlines()[:-1]


class LifecycleTests(ServerTestCase):
    def test_start_twice_returns_false_and_keeps_one_loop(self) -> None:
        server = self.make_server()
        self.start_bound(server)
        pool, loop = server._pool, server._thread
        self.assertFalse(server.start())
        self.assertIs(server._pool, pool)
        self.assertIs(server._thread, loop)

    def test_is_running_after_start(self) -> None:
        server = self.make_server()
        self.start_bound(server)
        self.assertTrue(server.is_running())

    def test_stop_without_start_clears_registry(self) -> None:
        window = object()
        self.registry.add_window(window)
        self.registry.set_focused_window(window)

        server = self.make_server()
        self.assertFalse(server.stop())
        self.assertEqual(self.registry.snapshot(), [])
        self.assertIsNone(self.registry.get_focused_window())

    def test_stop_tears_down_and_clears_registry(self) -> None:
        server = self.make_server()
        address = self.start_bound(server)
        window = object()
        self.registry.add_window(window)
        self.registry.set_focused_window(window)

        self.assertTrue(server.stop())
        self.assertFalse(server.is_running())
        self.assertIsNone(server.bound_address)
        self.assertEqual(self.registry.snapshot(), [])
        self.assertIsNone(self.registry.get_focused_window())
        self.assertTrue(wait_until(lambda: refuses(address)), "listener still accepting")

        self.assertFalse(server.stop())

    def test_restart_after_stop(self) -> None:
        server = self.make_server()
        self.start_bound(server)
        server.stop()
        address = self.start_bound(server)
        self.assertEqual(self.request(self.connect(address), "PING"), ["OK"])

    def test_bind_failure_leaves_server_not_running(self) -> None:
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        self.addCleanup(blocker.close)
        port = blocker.getsockname()[1]

        server = AutomationServer(port=port, registry=self.registry)
        self.servers.append(server)
        self.assertTrue(server.start())
        self.assertTrue(wait_until(lambda: not server.is_running()))
        self.assertIsNone(server.bound_address)
        self.assertFalse(server.start())
        self.assertFalse(server.stop())


class ConnectionTests(ServerTestCase):
    def test_silent_client_does_not_stop_server(self) -> None:
        server = self.make_server()
        address = self.start_bound(server)

        client = socket.create_connection(address, timeout=5)
        client.close()
        time.sleep(0.2)
        self.assertTrue(server.is_running())
        self.assertEqual(self.request(self.connect(address), "PING"), ["OK"])

    def test_abrupt_disconnect_mid_session(self) -> None:
        server = self.make_server()
        address = self.start_bound(server)

        client = socket.create_connection(address, timeout=5)
        client.sendall(b"LIST\nVIEW_CENTER_TEXT ")
        # RST instead of FIN
        client.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
        client.close()

        time.sleep(0.2)
        self.assertTrue(server.is_running())
        self.assertEqual(self.request(self.connect(address), "PING"), ["OK"])

    def test_sessions_beyond_pool_size_queue_and_complete(self) -> None:
        tracker = WorkerTracker()
        server = self.make_server(worker_factory=tracker.factory)
        address = self.start_bound(server)

        for _ in range(13):
            self.connect(address)

        self.assertTrue(wait_until(lambda: tracker.started == 10))
        self.assertTrue(wait_until(lambda: server.pending_sessions == 13))
        time.sleep(0.2)
        self.assertEqual(tracker.started, 10)
        self.assertTrue(server.is_running())

        # The accept loop is still free while every worker is busy
        extra = self.connect(address)
        self.assertTrue(wait_until(lambda: server.pending_sessions == 14))

        tracker.release.set()
        self.assertTrue(wait_until(lambda: tracker.finished == 14))
        self.assertTrue(wait_until(lambda: server.pending_sessions == 0))
        self.assertEqual(extra.recv(1), b"")

    def test_max_pending_rejects_extra_connections(self) -> None:
        tracker = WorkerTracker()
        server = self.make_server(worker_factory=tracker.factory, max_pending=2)
        address = self.start_bound(server)

        self.connect(address)
        self.connect(address)
        self.assertTrue(wait_until(lambda: tracker.started == 2))

        rejected = self.connect(address)
        try:
            self.assertEqual(rejected.recv(1), b"")
        except ConnectionResetError:
            pass
        self.assertEqual(tracker.started, 2)
        tracker.release.set()

    def test_max_pending_from_text_is_coerced(self) -> None:
        server = self.make_server(max_pending="5")
        self.assertEqual(server._max_pending, 5)
        address = self.start_bound(server)
        self.assertEqual(self.request(self.connect(address), "PING"), ["OK"])

    def test_invalid_max_pending_means_unbounded(self) -> None:
        for value in ("lots", 0, -3, True, [2]):
            with self.subTest(value=value):
                self.assertIsNone(self.make_server(max_pending=value)._max_pending)

        server = self.make_server(max_pending="lots")
        address = self.start_bound(server)
        self.assertEqual(self.request(self.connect(address), "PING"), ["OK"])

    def test_failing_worker_factory_does_not_count_a_session(self) -> None:
        calls = []

        def factory(conn, registry, on_finished=None):
            calls.append(conn)
            if len(calls) == 1:
                raise RuntimeError("no worker")
            return CommandWorker(conn, registry, on_finished=on_finished)

        server = self.make_server(worker_factory=factory, max_pending=1)
        address = self.start_bound(server)

        dropped = self.connect(address)
        try:
            self.assertEqual(dropped.recv(1), b"")
        except ConnectionResetError:
            pass
        self.assertEqual(server.pending_sessions, 0)
        self.assertEqual(self.request(self.connect(address), "PING"), ["OK"])
        self.assertTrue(wait_until(lambda: len(calls) == 2))

    def test_restart_keeps_counting_sessions_still_running(self) -> None:
        tracker = WorkerTracker()
        server = self.make_server(worker_factory=tracker.factory)
        address = self.start_bound(server)
        self.connect(address)
        self.assertTrue(wait_until(lambda: tracker.started == 1))

        server.stop()
        self.start_bound(server)
        self.assertEqual(server.pending_sessions, 1)

        tracker.release.set()
        self.assertTrue(wait_until(lambda: server.pending_sessions == 0))

    def test_stop_closes_queued_connections(self) -> None:
        tracker = WorkerTracker()
        server = self.make_server(worker_factory=tracker.factory)
        address = self.start_bound(server)

        clients = [self.connect(address) for _ in range(11)]
        self.assertTrue(wait_until(lambda: server.pending_sessions == 11))

        self.assertTrue(server.stop())
        queued = clients[-1]
        try:
            self.assertEqual(queued.recv(1), b"")
        except ConnectionResetError:
            pass
        self.assertEqual(tracker.started, 10)
        tracker.release.set()


class InstallTests(unittest.TestCase):
    def setUp(self) -> None:
        patches = [
            mock.patch.object(server_module, "SERVER_PORT", 0),
            mock.patch.object(AutomationServer, "_init_collaborators", classmethod(lambda cls, ctx: None)),
        ]
        for patch in patches:
            patch.start()
            self.addCleanup(patch.stop)
        AutomationServer.reset_instance()
        self.addCleanup(AutomationServer.reset_instance)

    def test_install_twice_returns_same_running_singleton(self) -> None:
        first = AutomationServer.install("ctx-1")
        loop = first._thread
        second = AutomationServer.install("ctx-2")

        self.assertIs(first, second)
        self.assertIs(AutomationServer.instance(), first)
        self.assertTrue(wait_until(lambda: first.bound_address is not None))
        self.assertTrue(first.is_running())
        self.assertEqual(AutomationServer.current_context(), "ctx-2")

        self.assertIs(first._thread, loop)

    def test_install_survives_undecodable_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config_file = Path(tmp) / "config.json"
            config_file.write_bytes(b'{"maxPendingSessions": 3, "strictMode": "\xff\xfe"}')
            with mock.patch.object(config_module, "CONFIG_FILE", config_file):
                server = AutomationServer.install()

        self.assertIsNone(server._max_pending)
        self.assertTrue(wait_until(lambda: server.bound_address is not None))

    def test_install_reads_pending_cap_from_settings(self) -> None:
        with mock.patch.object(server_module, "load_settings", return_value={"maxPendingSessions": "4"}):
            server = AutomationServer.install()
        self.assertEqual(server._max_pending, 4)

    def test_install_swallows_start_errors(self) -> None:
        with mock.patch.object(AutomationServer, "start", side_effect=RuntimeError("boom")):
            server = AutomationServer.install()
        self.assertFalse(server.is_running())

    def test_reset_instance_stops_server(self) -> None:
        server = AutomationServer.install()
        self.assertTrue(wait_until(lambda: server.bound_address is not None))
        AutomationServer.reset_instance()
        self.assertIsNone(AutomationServer.instance())
        self.assertFalse(server.is_running())


if __name__ == "__main__":
    unittest.main()
