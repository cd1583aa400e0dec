import contextlib
import socket
import struct
import threading

import pytest

from mcping import codec
from mcping.bedrock import RAKNET_MAGIC, UNCONNECTED_PONG
from mcping.errors import DecodeError

SERVER_ID = "MCPE;My Server;754;1.20;5;20;123456;Level;Survival;1;19132;19133"
STATUS_JSON = '{"version":{"name":"1.20","protocol":763},"players":{"online":5,"max":20}}'


def build_pong(ping_time: int, server_id: str = SERVER_ID, server_guid: int = 123456, magic: bytes = RAKNET_MAGIC) -> bytes:
    name = server_id.encode("utf8")
    return (
        bytes([UNCONNECTED_PONG])
        + struct.pack(">q", ping_time)
        + struct.pack(">q", server_guid)
        + magic
        + struct.pack(">H", len(name))
        + name
    )


def read_frame(stream) -> tuple[int, bytes]:
    length = codec.read_varint(stream)
    packet_id, body = codec.read_packet(codec.read_exact(stream, length))
    return packet_id, body.read()


class MockJavaServer:
    """Answers exactly one status exchange on 127.0.0.1."""

    def __init__(self, status: str = STATUS_JSON, status_id: int = 0, pong_offset: int = 0, stall: bool = False) -> None:
        self.status = status
        self.status_id = status_id
        self.pong_offset = pong_offset
        self.stall = stall
        self.handshake: tuple[int, bytes] | None = None
        self.released = threading.Event()

        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(1)
        self.port = self.sock.getsockname()[1]
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self) -> None:
        try:
            conn, _ = self.sock.accept()
        except OSError:
            return

        with conn, conn.makefile("rb") as stream:
            try:
                self.handshake = read_frame(stream)
                read_frame(stream)
                if self.stall:
                    self.released.wait(5)
                    return

                conn.sendall(codec.pack_packet(self.status_id, codec.pack_string(self.status)))

                _, body = read_frame(stream)
                payload = struct.unpack(">q", body)[0]
                conn.sendall(codec.pack_packet(1, codec.pack_long(payload + self.pong_offset)))
                self.released.wait(5)
            except (OSError, DecodeError):
                return

    def stop(self) -> None:
        self.released.set()
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        self.sock.close()
        self.thread.join(2)


class MockBedrockServer:
    """
    Answers unconnected pings on 127.0.0.1.

    :param drop: number of pings to ignore before answering
    :param garbage: send a malformed datagram before every pong
    :param silent: never answer
    """

    def __init__(self, server_id: str = SERVER_ID, drop: int = 0, garbage: bool = False, silent: bool = False) -> None:
        self.server_id = server_id
        self.drop = drop
        self.garbage = garbage
        self.silent = silent
        self.pings: list[bytes] = []
        self.stopped = threading.Event()

        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.05)
        self.port = self.sock.getsockname()[1]
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self) -> None:
        while not self.stopped.is_set():
            try:
                data, addr = self.sock.recvfrom(2048)
            except TimeoutError:
                continue
            except OSError:
                return

            self.pings.append(data)
            if self.silent or len(self.pings) <= self.drop:
                continue

            ping_time = struct.unpack(">q", data[1:9])[0]
            if self.garbage:
                self.sock.sendto(b"\x1c\x00\x01", addr)
            self.sock.sendto(build_pong(ping_time, self.server_id), addr)

    def stop(self) -> None:
        self.stopped.set()
        self.thread.join(2)
        self.sock.close()


@pytest.fixture
def java_server():
    servers = []

    def start(**kwargs) -> MockJavaServer:
        server = MockJavaServer(**kwargs)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.stop()


@pytest.fixture
def bedrock_server():
    servers = []

    def start(**kwargs) -> MockBedrockServer:
        server = MockBedrockServer(**kwargs)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.stop()


@pytest.fixture
def closed_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
