# mcping - A Minecraft server list ping client
# Copyright (C) 2016-2023 Lloyd Dilley, Felix Ern (MindSolve)
# http://www.dilley.me/
#
# Secondary optimization and customization are carried out by @molanp.
#
# This program is free software; you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation; either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License along
# with this program; if not, write to the Free Software Foundation, Inc.,
# 51 Franklin Street, Fifth Floor, Boston, MA 02110-1301 USA.
"""
Socket handling shared by both editions.

The exchanges in `mcping.java` and `mcping.bedrock` are generators that never touch
a socket. They yield one of the operations below and get the result sent back:

- `Send(data)`: write bytes, the generator receives None
- `Receive(size)`: read exactly `size` bytes from a stream
- `ReceiveDatagram(timeout)`: wait up to `timeout` seconds for one datagram,
  the generator receives the datagram or None if nothing arrived in time
- `Sleep(seconds)`: pause, the generator receives None

`drive()` runs an exchange on a blocking connection, `drive_async()` on an asyncio
one, so the wire logic exists only once.
"""
import asyncio
import contextlib
import logging
import socket
import time
from typing import Generator, Iterable, NamedTuple, TypeVar, Union

from .errors import ConnectFailed, Timeout, TruncatedInput
from .resolver import ResolvedTarget

log = logging.getLogger("mcping.transport")

MAX_DATAGRAM_SIZE = 2048
"""RakNet never sends offline messages bigger than the MTU"""

T = TypeVar("T")


class Send(NamedTuple):
    data: bytes


class Receive(NamedTuple):
    size: int


class ReceiveDatagram(NamedTuple):
    timeout: float | None


class Sleep(NamedTuple):
    seconds: float


Operation = Union[Send, Receive, ReceiveDatagram, Sleep]
Exchange = Generator[Operation, Union[bytes, None], T]


@contextlib.contextmanager
def _socket_errors(what: str):
    """Translate socket errors raised during `what` into ping errors."""
    try:
        yield
    except TimeoutError as e:
        raise Timeout(f"timed out while {what}") from e
    except OSError as e:
        raise ConnectFailed(f"connection lost while {what}: {e}") from e


def _connect_failure(target: ResolvedTarget, error: BaseException) -> Exception:
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return Timeout(f"timed out connecting to {target.ip}:{target.port}")
    return ConnectFailed(f"could not connect to {target.ip}:{target.port}: {error}")


class StreamConnection:
    """Blocking TCP connection. Every send and receive is bounded by `timeout` on its own."""

    def __init__(self, sock: socket.socket, timeout: float | None = None) -> None:
        self.sock = sock
        self.sock.settimeout(timeout)

    @classmethod
    def open(cls, targets: Iterable[ResolvedTarget], timeout: float | None = None) -> "StreamConnection":
        """Connect to the first target that accepts the connection."""
        error: Exception | None = None
        for target in targets:
            log.debug("connecting to %s:%d (%s)", target.ip, target.port, target.host)
            sock = socket.socket(target.family, socket.SOCK_STREAM)
            sock.settimeout(timeout)
            try:
                sock.connect(target.sockaddr)
            except OSError as e:
                sock.close()
                error = _connect_failure(target, e)
                log.debug("%s", error)
                continue
            return cls(sock, timeout)

        raise error or ConnectFailed("no address to connect to")

    def send(self, data: bytes) -> None:
        with _socket_errors("sending"):
            self.sock.sendall(data)

    def receive(self, size: int) -> bytes:
        """
        Receive exactly `size` bytes. Works around the problems of `socket.recv`.
        Raises TruncatedInput if the connection was closed while waiting for data.
        """
        data = bytearray()

        while len(data) < size:
            with _socket_errors("receiving"):
                chunk = self.sock.recv(size - len(data))
            if not chunk:
                raise TruncatedInput(f"connection closed after {len(data)} of {size} bytes")
            data += chunk

        return bytes(data)

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> "StreamConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class AsyncStreamConnection:
    """asyncio TCP connection, same contract as `StreamConnection`."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, timeout: float | None = None) -> None:
        self.reader = reader
        self.writer = writer
        self.timeout = timeout

    @classmethod
    async def open(cls, targets: Iterable[ResolvedTarget], timeout: float | None = None) -> "AsyncStreamConnection":
        error: Exception | None = None
        for target in targets:
            log.debug("connecting to %s:%d (%s)", target.ip, target.port, target.host)
            try:
                reader, writer = await asyncio.wait_for(
                    asyncio.open_connection(target.ip, target.port, family=target.family),
                    timeout,
                )
            except (OSError, asyncio.TimeoutError) as e:
                error = _connect_failure(target, e)
                log.debug("%s", error)
                continue
            return cls(reader, writer, timeout)

        raise error or ConnectFailed("no address to connect to")

    async def send(self, data: bytes) -> None:
        self.writer.write(data)
        try:
            await asyncio.wait_for(self.writer.drain(), self.timeout)
        except asyncio.TimeoutError as e:
            raise Timeout("timed out while sending") from e
        except OSError as e:
            raise ConnectFailed(f"connection lost while sending: {e}") from e

    async def receive(self, size: int) -> bytes:
        try:
            return await asyncio.wait_for(self.reader.readexactly(size), self.timeout)
        except asyncio.IncompleteReadError as e:
            raise TruncatedInput(f"connection closed after {len(e.partial)} of {size} bytes") from e
        except asyncio.TimeoutError as e:
            raise Timeout("timed out while receiving") from e
        except OSError as e:
            raise ConnectFailed(f"connection lost while receiving: {e}") from e

    async def close(self) -> None:
        self.writer.close()
        with contextlib.suppress(OSError):
            await self.writer.wait_closed()

    async def __aenter__(self) -> "AsyncStreamConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class DatagramConnection:
    """Blocking UDP socket connected to one target, so datagrams from other peers are dropped by the kernel."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock

    @classmethod
    def open(cls, target: ResolvedTarget) -> "DatagramConnection":
        sock = socket.socket(target.family, socket.SOCK_DGRAM)
        try:
            sock.connect(target.sockaddr)
        except OSError as e:
            sock.close()
            raise ConnectFailed(f"could not reach {target.ip}:{target.port}: {e}") from e
        return cls(sock)

    def send(self, data: bytes) -> None:
        with _socket_errors("sending"):
            try:
                self.sock.send(data)
            except ConnectionRefusedError:
                # error left over from an earlier datagram, the current one was not sent
                log.debug("ICMP port unreachable pending, sending again")
                with contextlib.suppress(ConnectionRefusedError):
                    self.sock.send(data)

    def receive_datagram(self, timeout: float | None) -> bytes | None:
        if timeout is not None and timeout <= 0:
            return None
        self.sock.settimeout(timeout)
        try:
            return self.sock.recv(MAX_DATAGRAM_SIZE)
        except TimeoutError:
            return None
        except OSError as e:
            # ICMP error (port or host unreachable) caused by an earlier datagram; keep waiting
            log.debug("datagram error received, ignoring: %s", e)
            return b""

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> "DatagramConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class _DatagramQueue(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.queue: asyncio.Queue[bytes] = asyncio.Queue()

    def datagram_received(self, data: bytes, addr) -> None:
        self.queue.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        log.debug("datagram error received, ignoring: %s", exc)
        self.queue.put_nowait(b"")


class AsyncDatagramConnection:
    """asyncio flavour of `DatagramConnection`."""

    def __init__(self, transport: asyncio.DatagramTransport, protocol: _DatagramQueue) -> None:
        self.transport = transport
        self.protocol = protocol

    @classmethod
    async def open(cls, target: ResolvedTarget) -> "AsyncDatagramConnection":
        loop = asyncio.get_running_loop()
        try:
            transport, protocol = await loop.create_datagram_endpoint(
                _DatagramQueue,
                remote_addr=(target.ip, target.port),
                family=target.family,
            )
        except OSError as e:
            raise ConnectFailed(f"could not reach {target.ip}:{target.port}: {e}") from e
        return cls(transport, protocol)

    async def send(self, data: bytes) -> None:
        self.transport.sendto(data)

    async def receive_datagram(self, timeout: float | None) -> bytes | None:
        if timeout is not None and timeout <= 0:
            return None
        try:
            return await asyncio.wait_for(self.protocol.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        self.transport.close()

    async def __aenter__(self) -> "AsyncDatagramConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def drive(exchange: Exchange[T], connection) -> T:
    """Run `exchange` to completion on a blocking connection and return its result."""
    reply: bytes | None = None
    try:
        while True:
            operation = exchange.send(reply)
            if isinstance(operation, Send):
                connection.send(operation.data)
                reply = None
            elif isinstance(operation, Receive):
                reply = connection.receive(operation.size)
            elif isinstance(operation, ReceiveDatagram):
                reply = connection.receive_datagram(operation.timeout)
            elif isinstance(operation, Sleep):
                time.sleep(operation.seconds)
                reply = None
            else:
                raise TypeError(f"unknown operation: {operation!r}")
    except StopIteration as stop:
        return stop.value
    finally:
        exchange.close()


async def drive_async(exchange: Exchange[T], connection) -> T:
    """Run `exchange` to completion on an asyncio connection and return its result."""
    reply: bytes | None = None
    try:
        while True:
            operation = exchange.send(reply)
            if isinstance(operation, Send):
                await connection.send(operation.data)
                reply = None
            elif isinstance(operation, Receive):
                reply = await connection.receive(operation.size)
            elif isinstance(operation, ReceiveDatagram):
                reply = await connection.receive_datagram(operation.timeout)
            elif isinstance(operation, Sleep):
                await asyncio.sleep(operation.seconds)
                reply = None
            else:
                raise TypeError(f"unknown operation: {operation!r}")
    except StopIteration as stop:
        return stop.value
    finally:
        exchange.close()


def elapsed_ms(start: float, end: float) -> int:
    """Milliseconds between two `perf_counter()` readings, never negative."""
    return max(0, round((end - start) * 1000))
