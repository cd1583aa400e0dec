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
Java edition Server List Ping.

See https://minecraft.wiki/w/Java_Edition_protocol/Server_List_Ping

The exchange is strictly sequential over one TCP connection:

1. Handshake (0x00) with next state = status
2. Status Request (0x00), empty
3. Status Response (0x00), a JSON string
4. Ping Request (0x01) with an 8 byte payload, answered by a Pong (0x01) echoing it

Nothing is retried; any failure ends the call.
"""
import io
import logging
from dataclasses import dataclass
from time import perf_counter, time

from . import codec
from .errors import MalformedVarint, UnexpectedPacket
from .resolver import resolve_java, resolve_java_async
from .response import JavaStatusResponse
from .transport import (
    AsyncStreamConnection,
    Exchange,
    Receive,
    Send,
    StreamConnection,
    drive,
    drive_async,
    elapsed_ms,
)

log = logging.getLogger("mcping.java")

HANDSHAKE = 0x00
STATUS_REQUEST = 0x00
STATUS_RESPONSE = 0x00
PING_REQUEST = 0x01
PONG_RESPONSE = 0x01

NEXT_STATE_STATUS = 1
ANY_PROTOCOL_VERSION = -1
"""protocol version sent when only pinging, servers answer status requests for any version"""


@dataclass(frozen=True)
class JavaConfig:
    """
    Configuration for pinging a Java edition server.

    :param server_address: Hostname or IP address, optionally followed by `:port`.
        Without a port, the `_minecraft._tcp` SRV record is honoured.
    :param timeout: Timeout in seconds applied to every network operation on its
        own (DNS, connect, each send and receive). None waits forever.
    :param protocol_version: Protocol version announced in the handshake.
    """

    server_address: str
    timeout: float | None = None
    protocol_version: int = ANY_PROTOCOL_VERSION

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout < 0:
            raise ValueError(f"timeout must not be negative, got {self.timeout}")


def handshake_packet(host: str, port: int, protocol_version: int = ANY_PROTOCOL_VERSION) -> bytes:
    body = codec.pack_varint(protocol_version)
    body += codec.pack_string(host)
    body += codec.pack_ushort(port)
    body += codec.pack_varint(NEXT_STATE_STATUS)
    return codec.pack_packet(HANDSHAKE, body)


def _receive_packet() -> Exchange[tuple[int, io.BytesIO]]:
    # the length prefix has to be read byte by byte, its size is not known up front
    prefix = b""
    while True:
        prefix += yield Receive(1)
        if not prefix[-1] & 0x80:
            break
        if len(prefix) >= codec.MAX_VARINT_SIZE:
            raise MalformedVarint(f"frame length longer than {codec.MAX_VARINT_SIZE} bytes")

    length = codec.read_length(io.BytesIO(prefix))
    data = yield Receive(length)
    return codec.read_packet(data)


def exchange(
    host: str,
    port: int,
    protocol_version: int = ANY_PROTOCOL_VERSION,
    payload: int | None = None,
) -> Exchange[tuple[int, JavaStatusResponse]]:
    """
    The status exchange as a generator of transport operations, see `mcping.transport`.

    :param host: Host name announced in the handshake
    :param port: Port announced in the handshake
    :param protocol_version: Protocol version announced in the handshake
    :param payload: Ping payload, defaults to the current unix time in milliseconds
    :return: (latency in ms, status)
    """
    yield Send(handshake_packet(host, port, protocol_version))
    yield Send(codec.pack_packet(STATUS_REQUEST))

    packet_id, body = yield from _receive_packet()
    if packet_id != STATUS_RESPONSE:
        raise UnexpectedPacket(f"expected status response (0x00), got packet 0x{packet_id:02x}")
    status = JavaStatusResponse.from_json(codec.read_string(body))

    if payload is None:
        payload = int(time() * 1000)

    sent = perf_counter()
    yield Send(codec.pack_packet(PING_REQUEST, codec.pack_long(payload)))

    packet_id, body = yield from _receive_packet()
    received = perf_counter()
    if packet_id != PONG_RESPONSE:
        raise UnexpectedPacket(f"expected pong (0x01), got packet 0x{packet_id:02x}")

    echoed = codec.read_long(body)
    if echoed != payload:
        raise UnexpectedPacket(f"pong payload {echoed} does not match ping payload {payload}")

    return elapsed_ms(sent, received), status


def ping_java(config: JavaConfig) -> tuple[int, JavaStatusResponse]:
    """
    Ping a Java edition server, blocking the calling thread.

    :return: (latency in ms, status)
    :raises PingError: one of its subclasses, depending on what failed
    """
    targets = resolve_java(config.server_address, config.timeout)
    target = targets[0]
    log.debug("pinging %s -> %s:%d (srv=%s)", config.server_address, target.host, target.port, target.srv)

    with StreamConnection.open(targets, config.timeout) as connection:
        return drive(exchange(target.host, target.port, config.protocol_version), connection)


async def async_ping_java(config: JavaConfig) -> tuple[int, JavaStatusResponse]:
    """asyncio flavour of `ping_java()`."""
    targets = await resolve_java_async(config.server_address, config.timeout)
    target = targets[0]
    log.debug("pinging %s -> %s:%d (srv=%s)", config.server_address, target.host, target.port, target.srv)

    async with await AsyncStreamConnection.open(targets, config.timeout) as connection:
        return await drive_async(exchange(target.host, target.port, config.protocol_version), connection)
