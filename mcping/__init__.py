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
mcping - Server List Ping for Minecraft Java edition and Bedrock/Education/PE servers.

    >>> from mcping import JavaConfig, BedrockConfig, ping_java, ping_bedrock
    >>> latency, status = ping_java(JavaConfig("mc.hypixel.net", timeout=5))
    >>> latency, status = ping_bedrock(BedrockConfig("play.nethergames.org", timeout=2, tries=3))

Every ping either returns `(latency_ms, status)` or raises a `PingError`.
The `async_*` functions do the same on an asyncio event loop.
"""
import logging

from .bedrock import BedrockConfig, async_ping_bedrock, ping_bedrock
from .errors import (
    ConnectFailed,
    ConnStatus,
    DecodeError,
    InvalidResponse,
    InvalidUtf8,
    MalformedVarint,
    PingError,
    ResolutionFailed,
    Timeout,
    TruncatedInput,
    UnexpectedPacket,
)
from .java import JavaConfig, async_ping_java, ping_java
from .response import (
    BedrockEdition,
    BedrockStatusResponse,
    ChatNode,
    ChatText,
    JavaStatusResponse,
    ModInfo,
    Player,
    Players,
    SlpProtocols,
    StatusResponse,
    Version,
)

__version__ = "1.0.0"

logging.getLogger("mcping").addHandler(logging.NullHandler())


def get_status(config: JavaConfig | BedrockConfig) -> tuple[int, StatusResponse]:
    """Ping the server described by `config`, choosing the edition from the config type."""
    if isinstance(config, JavaConfig):
        return ping_java(config)
    if isinstance(config, BedrockConfig):
        return ping_bedrock(config)
    raise TypeError(f"expected JavaConfig or BedrockConfig, got {type(config).__name__}")


async def async_get_status(config: JavaConfig | BedrockConfig) -> tuple[int, StatusResponse]:
    """asyncio flavour of `get_status()`."""
    if isinstance(config, JavaConfig):
        return await async_ping_java(config)
    if isinstance(config, BedrockConfig):
        return await async_ping_bedrock(config)
    raise TypeError(f"expected JavaConfig or BedrockConfig, got {type(config).__name__}")


__all__ = [
    "BedrockConfig",
    "BedrockEdition",
    "BedrockStatusResponse",
    "ChatNode",
    "ChatText",
    "ConnStatus",
    "ConnectFailed",
    "DecodeError",
    "InvalidResponse",
    "InvalidUtf8",
    "JavaConfig",
    "JavaStatusResponse",
    "MalformedVarint",
    "ModInfo",
    "PingError",
    "Player",
    "Players",
    "ResolutionFailed",
    "SlpProtocols",
    "StatusResponse",
    "Timeout",
    "TruncatedInput",
    "UnexpectedPacket",
    "Version",
    "async_get_status",
    "async_ping_bedrock",
    "async_ping_java",
    "get_status",
    "ping_bedrock",
    "ping_java",
]
