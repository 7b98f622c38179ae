"""
Tests for ArenaClient.

HTTP is served by httpx.MockTransport; delays are zeroed so paging and
batching run instantly.
"""

import json

import httpx
import pytest

from app.services.arena_client import (
    ArenaClient,
    ArenaNotFoundError,
    ArenaProviderError,
    ArenaUnauthorizedError,
)


def make_client(handler, **kwargs) -> ArenaClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    options = dict(
        api_key="test-token",
        base_url="https://api.are.na/v2",
        http_client=http,
        page_delay=0,
        stagger_delay=0,
        batch_delay=0,
    )
    options.update(kwargs)
    return ArenaClient(**options)


def channel_payload(length: int) -> dict:
    return {
        "id": 77,
        "title": "Reading List",
        "slug": "reading-list",
        "length": length,
        "user": {"id": 1, "username": "someone"},
    }


class TestArenaClientConfig:
    """Configuration is validated when the client is built."""

    def test_rejects_zero_page_size(self):
        with pytest.raises(ValueError):
            ArenaClient(page_size=0, http_client=httpx.AsyncClient())

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError):
            ArenaClient(page_delay=-1, http_client=httpx.AsyncClient())


@pytest.mark.asyncio
class TestFetchCollection:
    """Channel metadata and error mapping."""

    async def test_returns_channel(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            assert request.url.path == "/v2/channels/reading-list"
            return httpx.Response(200, json=channel_payload(3))

        client = make_client(handler)
        channel = await client.fetch_collection("reading-list")

        assert channel.id == 77
        assert channel.length == 3
        assert channel.username == "someone"
        assert seen["auth"] == "Bearer test-token"

    async def test_no_auth_header_without_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json=channel_payload(0))

        client = make_client(handler, api_key="")
        await client.fetch_collection("reading-list")

        assert seen["auth"] is None

    @pytest.mark.parametrize(
        "status_code,error",
        [
            (404, ArenaNotFoundError),
            (401, ArenaUnauthorizedError),
            (403, ArenaUnauthorizedError),
            (500, ArenaProviderError),
            (429, ArenaProviderError),
        ],
    )
    async def test_status_mapping(self, status_code, error):
        client = make_client(lambda request: httpx.Response(status_code, json={"message": "nope"}))

        with pytest.raises(error):
            await client.fetch_collection("missing")

    async def test_transport_error_is_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = make_client(handler)

        with pytest.raises(ArenaProviderError):
            await client.fetch_collection("reading-list")


@pytest.mark.asyncio
class TestFetchAllItems:
    """Paging through channel contents."""

    async def test_pages_until_length_exhausted(self):
        pages = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/contents"):
                page = int(request.url.params["page"])
                pages.append(page)
                start = (page - 1) * 2
                count = min(2, 5 - start)
                return httpx.Response(200, json={
                    "contents": [
                        {"id": start + i + 1, "class": "Text", "content": "note"}
                        for i in range(count)
                    ]
                })
            return httpx.Response(200, json=channel_payload(5))

        client = make_client(handler, page_size=2)
        blocks = await client.fetch_all_items("reading-list")

        assert pages == [1, 2, 3]
        assert [block.id for block in blocks] == [1, 2, 3, 4, 5]

    async def test_stops_on_empty_page(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/contents"):
                page = int(request.url.params["page"])
                if page == 1:
                    return httpx.Response(200, json={"contents": [{"id": 1, "class": "Text"}]})
                return httpx.Response(200, json={"contents": []})
            return httpx.Response(200, json=channel_payload(300))

        client = make_client(handler, page_size=100)
        blocks = await client.fetch_all_items("reading-list")

        assert len(blocks) == 1

    async def test_empty_channel_makes_no_contents_request(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json=channel_payload(0))

        client = make_client(handler)
        assert await client.fetch_all_items("reading-list") == []
        assert paths == ["/v2/channels/reading-list"]


@pytest.mark.asyncio
class TestFetchDetails:
    """Detail batches, URL normalization and dropped blocks."""

    async def test_nested_source_url_is_lifted(self, make_block):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "id": 9,
                "class": "Link",
                "title": "Essay",
                "source": {"url": "https://example.com/essay", "provider": {"name": "Example"}},
            })

        client = make_client(handler)
        block = await client.fetch_block(9)

        assert block.source_url == "https://example.com/essay"
        assert block.provider_name == "Example"

    async def test_failed_detail_drops_only_that_block(self, make_block):
        def handler(request: httpx.Request) -> httpx.Response:
            block_id = int(request.url.path.rsplit("/", 1)[-1])
            if block_id == 2:
                return httpx.Response(500, text="boom")
            return httpx.Response(200, json={
                "id": block_id, "class": "Link", "source_url": f"https://example.com/{block_id}"
            })

        client = make_client(handler, batch_size=2)
        items = [make_block(i, "Link") for i in (1, 2, 3)]

        detailed = await client.fetch_item_details(items, ("Link",))

        assert [block.id for block in detailed] == [1, 3]

    async def test_url_class_without_url_is_dropped(self, make_block):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": 5, "class": "Link", "title": "No URL"})

        client = make_client(handler)
        detailed = await client.fetch_item_details([make_block(5, "Link")], ("Link",))

        assert detailed == []

    async def test_fetch_all_details_orders_by_class(self, make_block):
        def handler(request: httpx.Request) -> httpx.Response:
            block_id = int(request.url.path.rsplit("/", 1)[-1])
            classes = {1: "Image", 2: "Link", 3: "Attachment", 4: "Media"}
            payload = {"id": block_id, "class": classes[block_id]}
            if classes[block_id] == "Image":
                payload["image"] = {"original": {"url": "https://images.are.na/1.jpg"}}
            elif classes[block_id] == "Attachment":
                payload["attachment"] = {"url": "https://attachments.are.na/3.pdf"}
            else:
                payload["source_url"] = f"https://example.com/{block_id}"
            return httpx.Response(200, content=json.dumps(payload))

        client = make_client(handler)
        items = [
            make_block(1, "Image"),
            make_block(2, "Link"),
            make_block(3, "Attachment"),
            make_block(4, "Media"),
            make_block(6, "Text", content="  "),
            make_block(7, "Text", content="A note worth keeping"),
            make_block(8, "Channel"),
        ]

        detailed = await client.fetch_all_details(items)

        assert [block.id for block in detailed] == [2, 1, 4, 3, 7]
