import base64
import json

import pytest

from mcping.errors import InvalidResponse, PingError
from mcping.response import (
    BedrockEdition,
    BedrockStatusResponse,
    ChatNode,
    ChatText,
    MAX_CHAT_DEPTH,
    JavaStatusResponse,
    SlpProtocols,
    decode_favicon,
    parse_chat,
)

PNG = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"


def java_status(**extra) -> JavaStatusResponse:
    document = {"version": {"name": "1.20", "protocol": 763}, "players": {"online": 5, "max": 20}}
    document.update(extra)
    return JavaStatusResponse.from_json(json.dumps(document))


def test_minimal_status():
    status = java_status()

    assert status.protocol is SlpProtocols.JSON
    assert status.version.name == "1.20"
    assert status.version.protocol == 763
    assert status.players.online == 5
    assert status.players.max == 20
    assert status.players.sample == ()
    assert status.motd == ""
    assert status.favicon is None
    assert status.favicon_b64 is None
    assert status.mod_info is None


def test_player_sample():
    status = java_status(
        players={
            "online": 2,
            "max": 10,
            "sample": [
                {"name": "Notch", "id": "069a79f4-44e9-4726-a5be-fca90e38aaf5"},
                {"name": "jeb_", "id": "853c80ef-3c37-49fd-aa49-938b674adae6"},
            ],
        }
    )
    assert [player.name for player in status.players.sample] == ["Notch", "jeb_"]


def test_plain_string_description():
    status = java_status(description="§aA Minecraft Server")

    assert isinstance(status.description, ChatText)
    assert status.motd == "§aA Minecraft Server"
    assert status.stripped_motd == "A Minecraft Server"


def test_nested_description_is_flattened_depth_first():
    status = java_status(
        description={
            "text": "Hello ",
            "color": "gold",
            "bold": True,
            "hoverEvent": {"action": "show_text"},
            "extra": [
                {"text": "big ", "extra": [{"text": "wide "}, "round "]},
                {"text": "world", "italic": True},
            ],
        }
    )

    assert isinstance(status.description, ChatNode)
    assert status.description.color == "gold"
    assert status.description.bold is True
    assert status.description.italic is None
    assert status.motd == "Hello big wide round world"


def test_description_list():
    component = parse_chat(["a", {"text": "b"}, {"extra": ["c"]}])
    assert component.plain_text == "abc"


def test_description_of_wrong_type():
    with pytest.raises(InvalidResponse):
        java_status(description=42)
    with pytest.raises(InvalidResponse):
        java_status(description={"text": "x", "extra": "y"})


def test_favicon_is_decoded():
    uri = "data:image/png;base64," + base64.b64encode(PNG).decode()
    status = java_status(favicon=uri)

    assert status.favicon == PNG
    assert status.favicon_b64 == uri


@pytest.mark.parametrize("uri", ["data:image/png;base64,###", "not a data uri", "data:image/png;base64,abc", 5])
def test_broken_favicon_is_ignored(uri):
    status = java_status(favicon=uri)

    assert status.favicon is None
    assert status.players.online == 5


def test_favicon_with_line_breaks():
    encoded = base64.b64encode(PNG).decode()
    assert decode_favicon("data:image/png;base64," + encoded[:8] + "\n" + encoded[8:]) == PNG


def test_legacy_forge_mod_list():
    status = java_status(modinfo={"type": "FML", "modList": [{"modid": "minecraft", "version": "1.12.2"}, {"modid": "jei", "version": "4.16"}]})

    assert status.mod_info.type == "FML"
    assert [(mod.id, mod.version) for mod in status.mod_info.mods] == [("minecraft", "1.12.2"), ("jei", "4.16")]


def test_forge_data_mod_list():
    status = java_status(forgeData={"fmlNetworkVersion": 3, "mods": [{"modId": "forge", "modmarker": "ANY"}], "channels": []})

    assert status.mod_info.type == "FML3"
    assert status.mod_info.mods[0].id == "forge"


def test_chat_flags():
    status = java_status(enforcesSecureChat=True, previewsChat="yes")

    assert status.enforces_secure_chat is True
    assert status.previews_chat is None


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        "[]",
        '{"players":{"online":1,"max":2}}',
        '{"version":{"name":"1.20","protocol":763}}',
        '{"version":{"name":"1.20","protocol":"new"},"players":{"online":1,"max":2}}',
        '{"version":"1.20","players":{"online":1,"max":2}}',
        '{"version":{"name":"1.20","protocol":763},"players":{"online":-1,"max":20}}',
        '{"version":{"name":"1.20","protocol":763},"players":{"online":1,"max":20,"sample":[{"name":"x"}]}}',
        '{"version":{"name":"1.20","protocol":1e999},"players":{"online":5,"max":20}}',
        '{"version":{"name":"1.20","protocol":763},"players":{"online":1e999,"max":20}}',
    ],
)
def test_invalid_status(payload):
    with pytest.raises(InvalidResponse):
        JavaStatusResponse.from_json(payload)


def test_invalid_status_is_a_ping_error():
    with pytest.raises(PingError):
        JavaStatusResponse.from_json('{"version":{"name":"1.20","protocol":1e999},"players":{"online":5,"max":20}}')


def test_full_bedrock_server_id():
    status = BedrockStatusResponse.from_server_id("MCPE;My Server;754;1.20;5;20;123456;Level;Survival;1;19132;19133", 99)

    assert status.protocol is SlpProtocols.BEDROCK_RAKNET
    assert status.edition == "MCPE"
    assert status.edition_type is BedrockEdition.MCPE
    assert status.motd_line1 == "My Server"
    assert status.motd == "My Server"
    assert status.protocol_version == 754
    assert status.version_name == "1.20"
    assert status.players_online == 5
    assert status.players_max == 20
    assert status.server_unique_id == 123456
    assert status.server_guid == 99
    assert status.motd_line2 == "Level"
    assert status.game_mode == "Survival"
    assert status.game_mode_id == 1
    assert status.port_ipv4 == 19132
    assert status.port_ipv6 == 19133


def test_short_bedrock_server_id():
    status = BedrockStatusResponse.from_server_id("MCEE;§bOld Server;100;1.0", 1)

    assert status.edition_type is BedrockEdition.MCEE
    assert status.stripped_motd == "Old Server"
    assert status.players_online is None
    assert status.motd_line2 is None
    assert status.game_mode is None
    assert status.port_ipv6 is None


def test_bedrock_server_id_with_trailing_separator():
    status = BedrockStatusResponse.from_server_id("MCPE;Name;1;1.0;0;10;;;Creative;x;;", 1)

    assert status.players_max == 10
    assert status.server_unique_id is None
    assert status.motd_line2 == ""
    assert status.game_mode == "Creative"
    assert status.game_mode_id is None
    assert status.port_ipv4 is None


def test_unknown_bedrock_edition():
    status = BedrockStatusResponse.from_server_id("XYZ;Name;1;1.0", 1)
    assert status.edition_type is BedrockEdition.OTHER
    assert status.edition == "XYZ"


def test_bedrock_server_id_too_short():
    with pytest.raises(InvalidResponse):
        BedrockStatusResponse.from_server_id("MCPE;Name;1", 1)


def nested_description(depth: int) -> dict:
    description = {"text": "a"}
    for _ in range(depth):
        description = {"text": "a", "extra": [description]}
    return description


def test_deep_description_is_rejected():
    with pytest.raises(InvalidResponse):
        java_status(description=nested_description(400))


def test_description_within_depth_limit():
    status = java_status(description=nested_description(MAX_CHAT_DEPTH // 2))
    assert status.motd == "a" * (MAX_CHAT_DEPTH // 2 + 1)


def test_plain_text_of_deep_tree():
    component = ChatText("z")
    for _ in range(5000):
        component = ChatNode(text="a", extra=(component,))

    assert component.plain_text == "a" * 5000 + "z"


def test_stripped_text():
    assert ChatText("§lbold").stripped_text == "bold"

    component = parse_chat({"text": "§aHello ", "extra": ["§kworld"]})
    assert component.plain_text == "§aHello §kworld"
    assert component.stripped_text == "Hello world"
    assert java_status(description={"text": "§aHi", "extra": ["§r!"]}).stripped_motd == "Hi!"
