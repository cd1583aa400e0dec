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
Bedrock edition status over RakNet `Unconnected Ping` / `Unconnected Pong`.

See https://minecraft.wiki/w/RakNet#Unconnected_Ping

UDP may drop the ping or the pong, so the exchange is retried up to `tries` times.
Every try sends a fresh ping time, a pong echoing an older ping time is stale and
gets ignored like any other unrelated datagram.
"""
import io
import logging
import random
import struct
from dataclasses import dataclass
from time import perf_counter, time
from typing import NamedTuple

from . import codec
from .errors import DecodeError, InvalidUtf8, Timeout, UnexpectedPacket
from .resolver import resolve_bedrock, resolve_bedrock_async
from .response import BedrockStatusResponse
from .transport import (
    AsyncDatagramConnection,
    DatagramConnection,
    Exchange,
    ReceiveDatagram,
    Send,
    Sleep,
    drive,
    drive_async,
    elapsed_ms,
)

log = logging.getLogger("mcping.bedrock")

UNCONNECTED_PING = 0x01
UNCONNECTED_PONG = 0x1C

# RakNet "offline message data id"
RAKNET_MAGIC = bytes(
    [
        0x00,
        0xFF,
        0xFF,
        0x00,
        0xFE,
        0xFE,
        0xFE,
        0xFE,
        0xFD,
        0xFD,
        0xFD,
        0xFD,
        0x12,
        0x34,
        0x56,
        0x78,
    ]
)


@dataclass(frozen=True)
class BedrockConfig:
    """
    Configuration for pinging a Bedrock edition server.

    :param server_address: Hostname or IP address, optionally followed by `:port`.
    :param timeout: Seconds to wait for a pong on each try. None waits forever,
        which makes further tries unreachable.
    :param tries: How many pings to send, one after another, before giving up.
    :param wait_to_try: Seconds to pause after an unanswered try before sending the next ping.
    """

    server_address: str
    timeout: float | None = None
    tries: int = 1
    wait_to_try: float | None = None

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout < 0:
            raise ValueError(f"timeout must not be negative, got {self.timeout}")
        if self.tries < 1:
            raise ValueError(f"tries must be at least 1, got {self.tries}")
        if self.wait_to_try is not None and self.wait_to_try < 0:
            raise ValueError(f"wait_to_try must not be negative, got {self.wait_to_try}")


class UnconnectedPong(NamedTuple):
    ping_time: int
    server_guid: int
    server_id: str


def unconnected_ping(ping_time: int, client_guid: int) -> bytes:
    """
    Build an `Unconnected Ping`:

    - byte: 0x01
    - long: ping time
    - 16 bytes: RakNet magic
    - long: client GUID
    """
    return bytes([UNCONNECTED_PING]) + struct.pack(">q", ping_time) + RAKNET_MAGIC + struct.pack(">q", client_guid)


def parse_unconnected_pong(datagram: bytes) -> UnconnectedPong:
    """
    Parse an `Unconnected Pong`:

    - byte: 0x1C
    - long: ping time, echoed from the ping
    - long: server GUID
    - 16 bytes: RakNet magic
    - unsigned short: server id string length
    - string: server id string
    """
    stream = io.BytesIO(datagram)

    packet_id = codec.read_exact(stream, 1)[0]
    if packet_id != UNCONNECTED_PONG:
        raise UnexpectedPacket(f"expected unconnected pong (0x1c), got packet 0x{packet_id:02x}")

    ping_time = codec.read_long(stream)
    server_guid = codec.read_long(stream)

    if codec.read_exact(stream, len(RAKNET_MAGIC)) != RAKNET_MAGIC:
        raise UnexpectedPacket("RakNet magic mismatch")

    length = codec.read_ushort(stream)
    raw = codec.read_exact(stream, length)
    try:
        server_id = raw.decode("utf8")
    except UnicodeDecodeError as e:
        raise InvalidUtf8(str(e)) from e

    return UnconnectedPong(ping_time, server_guid, server_id)


def exchange(
    tries: int = 1,
    timeout: float | None = None,
    client_guid: int | None = None,
    wait_to_try: float | None = None,
) -> Exchange[tuple[int, BedrockStatusResponse]]:
    """
    The ping/pong exchange as a generator of transport operations, see `mcping.transport`.

    :param tries: Number of pings to send before giving up
    :param timeout: Seconds to wait for a valid pong after each ping
    :param client_guid: GUID to send, random by default
    :param wait_to_try: Pause between an unanswered try and the next one
    :return: (latency in ms, status)
    """
    if client_guid is None:
        client_guid = random.getrandbits(63)

    ping_time = 0
    for attempt in range(1, tries + 1):
        # strictly increasing, so a late pong of an earlier try never matches
        ping_time = max(int(time() * 1000), ping_time + 1)

        sent = perf_counter()
        yield Send(unconnected_ping(ping_time, client_guid))
        deadline = None if timeout is None else sent + timeout

        while True:
            remaining = None if deadline is None else deadline - perf_counter()
            datagram = yield ReceiveDatagram(remaining)
            if datagram is None:
                break

            received = perf_counter()
            try:
                pong = parse_unconnected_pong(datagram)
            except (DecodeError, UnexpectedPacket) as e:
                log.debug("discarding datagram: %s", e)
                continue

            if pong.ping_time != ping_time:
                log.debug("discarding stale pong for ping time %d (waiting for %d)", pong.ping_time, ping_time)
                continue

            return elapsed_ms(sent, received), BedrockStatusResponse.from_server_id(pong.server_id, pong.server_guid)

        log.debug("no pong within %ss (try %d of %d)", timeout, attempt, tries)
        if wait_to_try and attempt < tries:
            yield Sleep(wait_to_try)

    raise Timeout(f"no response after {tries} {'try' if tries == 1 else 'tries'}")


def ping_bedrock(config: BedrockConfig) -> tuple[int, BedrockStatusResponse]:
    """
    Ping a Bedrock edition server, blocking the calling thread.

    :return: (latency in ms, status)
    :raises PingError: one of its subclasses, depending on what failed
    """
    target = resolve_bedrock(config.server_address)[0]
    log.debug("pinging %s -> %s:%d", config.server_address, target.ip, target.port)

    with DatagramConnection.open(target) as connection:
        return drive(exchange(config.tries, config.timeout, wait_to_try=config.wait_to_try), connection)


async def async_ping_bedrock(config: BedrockConfig) -> tuple[int, BedrockStatusResponse]:
    """asyncio flavour of `ping_bedrock()`."""
    target = (await resolve_bedrock_async(config.server_address))[0]
    log.debug("pinging %s -> %s:%d", config.server_address, target.ip, target.port)

    async with await AsyncDatagramConnection.open(target) as connection:
        return await drive_async(exchange(config.tries, config.timeout, wait_to_try=config.wait_to_try), connection)
