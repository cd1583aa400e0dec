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
Parsed server status, as returned by `ping_java()` and `ping_bedrock()`.

`JavaStatusResponse` and `BedrockStatusResponse` share no structure beyond the
`protocol` tag and the `motd` / `stripped_motd` accessors; check `protocol` (or use
`isinstance`) to tell them apart.
"""
import base64
import binascii
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from .errors import InvalidResponse


class SlpProtocols(Enum):
    """
    Contains the SLP (Server List Ping) protocols spoken by this library.

    - `BEDROCK_RAKNET`: The Minecraft Bedrock/Education edition protocol.

      *Available for all Minecraft Bedrock versions, not compatible with Java edition.*

    - `JSON`: The newest and currently supported Java edition SLP protocol.

      Uses (wrapped) JSON as payload, followed by a ping/pong exchange.

      *Available since Minecraft 1.7*
    """

    def __str__(self) -> str:
        return str(self.name)

    BEDROCK_RAKNET = 4
    """The Bedrock SLP-equivalent using the RakNet `Unconnected Ping` packet."""

    JSON = 3
    """The JSON based SLP protocol of Minecraft Java >= 1.7"""


_FORMATTING_CODE = re.compile(r"§.")


def strip_formatting(text: str) -> str:
    """Remove legacy `§x` formatting codes from a string."""
    return _FORMATTING_CODE.sub("", text)


@dataclass(frozen=True)
class ChatText:
    """A chat component given as a bare string."""

    text: str

    @property
    def plain_text(self) -> str:
        return self.text

    @property
    def stripped_text(self) -> str:
        return strip_formatting(self.text)


@dataclass(frozen=True)
class ChatNode:
    """A chat component object: some text, its formatting and child components."""

    text: str = ""
    color: str | None = None
    bold: bool | None = None
    italic: bool | None = None
    underlined: bool | None = None
    strikethrough: bool | None = None
    obfuscated: bool | None = None
    extra: tuple["ChatComponent", ...] = ()

    @property
    def plain_text(self) -> str:
        """The text of this component and all of its children, depth-first, without formatting."""
        parts = []
        stack: list[ChatComponent] = [self]
        while stack:
            component = stack.pop()
            parts.append(component.text)
            if isinstance(component, ChatNode):
                stack.extend(reversed(component.extra))
        return "".join(parts)

    @property
    def stripped_text(self) -> str:
        """`plain_text` without legacy `§x` formatting codes."""
        return strip_formatting(self.plain_text)


ChatComponent = Union[ChatText, ChatNode]

_STYLE_KEYS = ("bold", "italic", "underlined", "strikethrough", "obfuscated")

MAX_CHAT_DEPTH = 64
"""nesting limit for chat components, deeper trees are rejected"""


def parse_chat(value: Any, depth: int = 0) -> ChatComponent:
    """
    Build a chat component tree from decoded JSON.

    Accepts a plain string, a component object or a list of components (which is
    the same as an empty component holding them as children). Unknown keys are ignored.
    """
    if depth > MAX_CHAT_DEPTH:
        raise InvalidResponse(f"chat component nested deeper than {MAX_CHAT_DEPTH} levels")

    if isinstance(value, str):
        return ChatText(value)

    if isinstance(value, list):
        return ChatNode(extra=tuple(parse_chat(item, depth + 1) for item in value))

    if isinstance(value, dict):
        text = value.get("text", "")
        extra = value.get("extra", [])
        color = value.get("color")
        if not isinstance(text, str):
            text = str(text)
        if not isinstance(extra, list):
            raise InvalidResponse("chat component 'extra' is not a list")

        return ChatNode(
            text=text,
            color=color if isinstance(color, str) else None,
            extra=tuple(parse_chat(item, depth + 1) for item in extra),
            **{key: bool(value[key]) for key in _STYLE_KEYS if key in value},
        )

    raise InvalidResponse(f"invalid chat component: {value!r}")


def decode_favicon(data_uri: Any) -> bytes | None:
    """
    Decode a `data:image/png;base64,...` URI.

    Returns None for anything that is not a valid base64 data URI, a broken icon
    never fails the whole status.
    """
    if not isinstance(data_uri, str):
        return None

    header, separator, payload = data_uri.partition("base64,")
    if not separator or not header.startswith("data:"):
        return None

    try:
        # some servers wrap the base64 text
        return base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError):
        return None


@dataclass(frozen=True)
class Version:
    name: str
    """the version name, in practice this comes in a large variety of formats"""
    protocol: int
    """see https://minecraft.wiki/w/Protocol_version_numbers"""


@dataclass(frozen=True)
class Player:
    name: str
    id: str


@dataclass(frozen=True)
class Players:
    online: int
    max: int
    sample: tuple[Player, ...] = ()
    """a preview of online players, servers often leave this out or use it for advertising"""


@dataclass(frozen=True)
class Mod:
    id: str
    version: str


@dataclass(frozen=True)
class ModInfo:
    """Mod list of a Forge server, from `modinfo` (FML) or `forgeData` (FML2 and later)."""

    type: str
    mods: tuple[Mod, ...] = ()


def _parse_mod_info(data: dict) -> ModInfo | None:
    if isinstance(data.get("modinfo"), dict):
        modinfo = data["modinfo"]
        mods = tuple(
            Mod(str(mod.get("modid", "")), str(mod.get("version", "")))
            for mod in modinfo.get("modList") or []
            if isinstance(mod, dict)
        )
        return ModInfo(str(modinfo.get("type", "FML")), mods)

    if isinstance(data.get("forgeData"), dict):
        forge_data = data["forgeData"]
        mods = tuple(
            Mod(str(mod.get("modId", "")), str(mod.get("modmarker", "")))
            for mod in forge_data.get("mods") or []
            if isinstance(mod, dict)
        )
        return ModInfo(f"FML{forge_data.get('fmlNetworkVersion', 2)}", mods)

    return None


def _optional_bool(data: dict, key: str) -> bool | None:
    value = data.get(key)
    return value if isinstance(value, bool) else None


@dataclass(frozen=True)
class JavaStatusResponse:
    """
    Status of a Java edition server.

    See https://minecraft.wiki/w/Java_Edition_protocol/Server_List_Ping#Status_Response
    """

    protocol: ClassVar[SlpProtocols] = SlpProtocols.JSON

    version: Version
    players: Players
    description: ChatComponent = ChatText("")
    """message of the day as a chat component tree"""
    favicon_b64: str | None = None
    """the favicon data URI as sent by the server"""
    favicon: bytes | None = None
    """decoded favicon (PNG), None if absent or not decodable"""
    mod_info: ModInfo | None = None
    enforces_secure_chat: bool | None = None
    previews_chat: bool | None = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)
    """the decoded JSON document"""

    @property
    def motd(self) -> str:
        """message of the day as plain text (legacy formatting codes kept)"""
        return self.description.plain_text

    @property
    def stripped_motd(self) -> str:
        """message of the day, stripped of all formatting ("human-readable")"""
        return self.description.stripped_text

    @classmethod
    def from_json(cls, payload: str) -> "JavaStatusResponse":
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, RecursionError) as e:
            raise InvalidResponse(f"status is not valid JSON: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> "JavaStatusResponse":
        if not isinstance(data, dict):
            raise InvalidResponse("status is not a JSON object")

        try:
            version = Version(str(data["version"]["name"]), int(data["version"]["protocol"]))

            players_data = data["players"]
            sample = tuple(Player(str(player["name"]), str(player["id"])) for player in players_data.get("sample") or [])
            players = Players(int(players_data["online"]), int(players_data["max"]), sample)
        # int() of a huge JSON float such as 1e999 (inf) raises OverflowError
        except (KeyError, TypeError, ValueError, AttributeError, OverflowError) as e:
            raise InvalidResponse(f"malformed status: {e!r}") from e

        if players.online < 0 or players.max < 0:
            raise InvalidResponse(f"negative player count: {players.online}/{players.max}")

        favicon_b64 = data.get("favicon") if isinstance(data.get("favicon"), str) else None

        return cls(
            version=version,
            players=players,
            description=parse_chat(data.get("description", "")),
            favicon_b64=favicon_b64,
            favicon=decode_favicon(favicon_b64),
            mod_info=_parse_mod_info(data),
            enforces_secure_chat=_optional_bool(data, "enforcesSecureChat"),
            previews_chat=_optional_bool(data, "previewsChat"),
            raw=data,
        )


class BedrockEdition(Enum):
    """Edition tag leading a Bedrock server id string."""

    def __str__(self) -> str:
        return str(self.name)

    MCPE = "MCPE"
    """Bedrock / Pocket edition"""
    MCEE = "MCEE"
    """Education edition"""
    OTHER = "OTHER"
    """anything else, see `BedrockStatusResponse.edition` for the raw tag"""

    @classmethod
    def from_tag(cls, tag: str) -> "BedrockEdition":
        try:
            return cls(tag.upper())
        except ValueError:
            return cls.OTHER


def _optional_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class BedrockStatusResponse:
    """
    Status of a Bedrock edition server, taken from the server id string of an
    `Unconnected Pong`.

    See https://minecraft.wiki/w/RakNet#Unconnected_Pong
    """

    protocol: ClassVar[SlpProtocols] = SlpProtocols.BEDROCK_RAKNET

    edition: str
    """raw edition tag, usually "MCPE" or "MCEE" """
    motd_line1: str
    protocol_version: int | None
    version_name: str
    server_guid: int
    """GUID from the pong header"""
    players_online: int | None = None
    players_max: int | None = None
    server_unique_id: int | None = None
    """unique id repeated in the server id string"""
    motd_line2: str | None = None
    """second MOTD line, older server builds do not send it"""
    game_mode: str | None = None
    game_mode_id: int | None = None
    port_ipv4: int | None = None
    port_ipv6: int | None = None

    # field order of the server id string
    FIELDS: ClassVar[tuple[str, ...]] = (
        "edition",
        "motd_line1",
        "protocol_version",
        "version_name",
        "players_online",
        "players_max",
        "server_unique_id",
        "motd_line2",
        "game_mode",
        "game_mode_id",
        "port_ipv4",
        "port_ipv6",
    )
    REQUIRED_FIELDS: ClassVar[int] = 4

    @property
    def edition_type(self) -> BedrockEdition:
        return BedrockEdition.from_tag(self.edition)

    @property
    def motd(self) -> str:
        return self.motd_line1

    @property
    def stripped_motd(self) -> str:
        return strip_formatting(self.motd_line1)

    @classmethod
    def from_server_id(cls, server_id: str, server_guid: int) -> "BedrockStatusResponse":
        """
        Parse a `;` separated server id string such as
        `MCPE;My Server;754;1.20;5;20;123456;Level;Survival;1;19132;19133`.

        The first four fields are required; anything after them is optional and
        older server builds send fewer fields.
        """
        values = server_id.split(";")
        if len(values) < cls.REQUIRED_FIELDS:
            raise InvalidResponse(f"server id string has {len(values)} fields, expected at least {cls.REQUIRED_FIELDS}")

        payload = dict(zip(cls.FIELDS, values))

        return cls(
            edition=payload["edition"],
            motd_line1=payload["motd_line1"],
            protocol_version=_optional_int(payload["protocol_version"]),
            version_name=payload["version_name"],
            server_guid=server_guid,
            players_online=_optional_int(payload.get("players_online")),
            players_max=_optional_int(payload.get("players_max")),
            server_unique_id=_optional_int(payload.get("server_unique_id")),
            motd_line2=payload.get("motd_line2"),
            game_mode=payload.get("game_mode"),
            game_mode_id=_optional_int(payload.get("game_mode_id")),
            port_ipv4=_optional_int(payload.get("port_ipv4")),
            port_ipv6=_optional_int(payload.get("port_ipv6")),
        )


StatusResponse = Union[JavaStatusResponse, BedrockStatusResponse]
