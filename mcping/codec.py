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
Encoding and decoding of the primitive types used by the Java edition wire format.

See https://minecraft.wiki/w/Java_Edition_protocol/Data_types

Everything here works on in-memory buffers; reading from a socket is the job of
`mcping.transport`.
"""
import io
import struct

from .errors import InvalidUtf8, MalformedVarint, TruncatedInput

MAX_VARINT_SIZE = 5
"""a varint never takes more than 5 bytes on the wire"""
MAX_PACKET_SIZE = 2097152
"""largest frame length accepted from a server (2 MiB)"""

_INT_MIN = -(2**31)
_INT_MAX = 2**31 - 1


def pack_varint(value: int) -> bytes:
    """
    Pack a signed 32-bit int into a varint.

    Negative values are written as their unsigned two's complement, so `-1`
    takes the full 5 bytes (`ff ff ff ff 0f`).
    """
    if not _INT_MIN <= value <= _INT_MAX:
        raise ValueError(f"varint out of range: {value}")

    data = value & 0xFFFFFFFF
    ordinal = b""

    while True:
        byte = data & 0x7F
        data >>= 7
        ordinal += struct.pack("B", byte | (0x80 if data > 0 else 0))

        if data == 0:
            break

    return ordinal


def read_varint(stream: io.BytesIO) -> int:
    """Unpack a varint from `stream`, returning it as a signed 32-bit int."""
    data = 0
    for i in range(MAX_VARINT_SIZE):
        ordinal = stream.read(1)

        if len(ordinal) == 0:
            raise TruncatedInput("end of data while reading varint")

        byte = ordinal[0]
        data |= (byte & 0x7F) << 7 * i

        if not byte & 0x80:
            break
    else:
        raise MalformedVarint(f"varint longer than {MAX_VARINT_SIZE} bytes")

    if data & 0x80000000:
        data -= 1 << 32
    return data


def read_length(stream: io.BytesIO, limit: int = MAX_PACKET_SIZE) -> int:
    """Read a varint length prefix, rejecting negative or oversized values."""
    length = read_varint(stream)
    if length < 0 or length > limit:
        raise MalformedVarint(f"length prefix out of range: {length}")
    return length


def read_exact(stream: io.BytesIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) < size:
        raise TruncatedInput(f"expected {size} bytes, got {len(data)}")
    return data


def pack_string(value: str) -> bytes:
    """Pack a string as varint byte length + UTF-8 bytes."""
    encoded = value.encode("utf8")
    return pack_varint(len(encoded)) + encoded


def read_string(stream: io.BytesIO) -> str:
    length = read_length(stream)
    raw = read_exact(stream, length)
    try:
        return raw.decode("utf8")
    except UnicodeDecodeError as e:
        raise InvalidUtf8(str(e)) from e


def pack_ushort(value: int) -> bytes:
    return struct.pack(">H", value)


def read_ushort(stream: io.BytesIO) -> int:
    return struct.unpack(">H", read_exact(stream, 2))[0]


def pack_long(value: int) -> bytes:
    return struct.pack(">q", value)


def read_long(stream: io.BytesIO) -> int:
    return struct.unpack(">q", read_exact(stream, 8))[0]


def pack_packet(packet_id: int, body: bytes = b"") -> bytes:
    """
    Build a frame: varint length, varint packet id, body.

    The length counts the packet id and the body, not itself.
    """
    data = pack_varint(packet_id) + body
    return pack_varint(len(data)) + data


def read_packet(data: bytes) -> tuple[int, io.BytesIO]:
    """
    Split a frame's contents (everything after the length prefix) into the
    packet id and a stream positioned at the start of the body.
    """
    stream = io.BytesIO(data)
    packet_id = read_varint(stream)
    return packet_id, stream
