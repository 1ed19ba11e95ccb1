import pytest
from aiohttp import web

from uidriver.models import Coordinate, OmniParserResult
from uidriver.omniparser import OmniParserClient, normalize_response


def test_normalize_label_coordinates():
    result = normalize_response({
        "parsed_content": ["ID 0: Search"],
        "label_coordinates": {"0": [0.1, 0.2, 0.2, 0.1]},
    })
    assert result == OmniParserResult(["ID 0: Search"], {"0": [0.1, 0.2, 0.2, 0.1]})


def test_normalize_bbox_list():
    result = normalize_response({
        "parsed_content_list": [
            {"type": "text", "content": "Sign in", "bbox": [0.1, 0.2, 0.3, 0.25]},
            {"type": "icon", "content": None, "bbox": [0.5, 0.5, 0.6, 0.7]},
        ]
    })

    assert result.parsed_content == ["ID 0: Sign in", "ID 1: icon"]
    assert result.label_coordinates["1"] == pytest.approx([0.5, 0.5, 0.1, 0.2])


def test_normalize_unknown_shape():
    assert normalize_response({"status": "ok"}) is None


def test_center_converts_to_pixels():
    result = OmniParserResult(["ID 3: OK"], {"3": [0.5, 0.5, 0.1, 0.2]})
    assert result.center(3, 1000, 500) == Coordinate(550, 300)
    assert result.center(4, 1000, 500) is None


async def test_client_posts_screenshot(aiohttp_server_factory):
    received = []

    async def parse(request):
        received.append(await request.json())
        return web.json_response({"parsed_content": ["ID 0: A"], "label_coordinates": {"0": [0, 0, 1, 1]}})

    url = await aiohttp_server_factory(parse)
    result = await OmniParserClient(url).parse("QUJD")

    assert received == [{"base64_image": "QUJD"}]
    assert result.parsed_content == ["ID 0: A"]


async def test_client_swallows_server_errors(aiohttp_server_factory):
    async def parse(request):
        return web.Response(status=500, text="boom")

    url = await aiohttp_server_factory(parse)
    assert await OmniParserClient(url).parse("QUJD") is None


async def test_client_swallows_connection_errors():
    assert await OmniParserClient("http://127.0.0.1:9", timeout_s=2).parse("QUJD") is None
