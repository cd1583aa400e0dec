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
from enum import Enum


class ConnStatus(Enum):
    """
    Contains possible connection states.

    - `SUCCESS`: The ping succeeded (request & response parsing OK)
    - `CONNFAIL`: The server could not be reached. Server offline, wrong hostname or port?
    - `TIMEOUT`: The connection timed out. (Server under too much load? Firewall rules OK?)
    - `UNKNOWN`: The connection was established, but the server answered with something unexpected.
    """

    def __str__(self) -> str:
        return str(self.name)

    SUCCESS = 0
    """The ping succeeded (request & response parsing OK). No `PingError` carries it, callers
    use it to report a ping that returned normally."""

    CONNFAIL = -1
    """The server could not be reached. (Server offline, wrong hostname or port?)"""

    TIMEOUT = -2
    """The connection timed out. (Server under too much load? Firewall rules OK?)"""

    UNKNOWN = -3
    """The connection was established, but the server answered with something unexpected."""


class PingError(Exception):
    """Base class of every failure a ping can end with."""

    connection_status: ConnStatus = ConnStatus.UNKNOWN
    """Coarse connection status matching this failure"""


class ResolutionFailed(PingError):
    """The address could not be parsed or the host does not resolve."""

    connection_status = ConnStatus.CONNFAIL


class ConnectFailed(PingError):
    """The TCP connection could not be established, or was lost."""

    connection_status = ConnStatus.CONNFAIL


class Timeout(PingError, TimeoutError):
    """No valid response arrived within the configured time (and retry) budget."""

    connection_status = ConnStatus.TIMEOUT


class DecodeError(PingError):
    """The peer sent bytes that violate the wire format."""


class MalformedVarint(DecodeError):
    """A varint ran past 5 bytes, or a length prefix is out of range."""


class InvalidUtf8(DecodeError):
    """A length-prefixed string is not valid UTF-8."""


class TruncatedInput(DecodeError):
    """Fewer bytes are available than the wire format declares."""


class UnexpectedPacket(PingError):
    """Wrong packet id, or a ping payload that was not echoed back verbatim."""


class InvalidResponse(PingError):
    """The status payload does not parse."""
