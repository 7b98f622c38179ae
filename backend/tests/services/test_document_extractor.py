"""
Tests for DocumentExtractor's fallback chain.

Reader and page requests are answered by httpx.MockTransport.
"""

import httpx
import pytest

from app.services.extraction.document import DocumentExtractor

ARTICLE = "Long-form writing about tools for thought. " * 10
PAGE_URL = "https://example.com/essay"


def make_extractor(handler, **kwargs) -> DocumentExtractor:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    options = dict(jina_api_key="jina_test", reader_url="https://r.jina.ai", min_length=100)
    options.update(kwargs)
    return DocumentExtractor(http, **options)


class TestDocumentChainConfig:

    def test_chain_with_key_and_local_fallback(self):
        extractor = make_extractor(lambda r: httpx.Response(200), local_fallback=True)
        names = [strategy.__name__ for strategy in extractor.strategies]
        assert names == ["jina_authenticated", "jina_unauthenticated", "direct_html"]

    def test_chain_without_key(self):
        extractor = make_extractor(lambda r: httpx.Response(200), jina_api_key="", local_fallback=False)
        names = [strategy.__name__ for strategy in extractor.strategies]
        assert names == ["jina_unauthenticated"]

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            make_extractor(lambda r: httpx.Response(200), timeout=0)


@pytest.mark.asyncio
class TestDocumentExtraction:

    async def test_authenticated_reader_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["authorization"] == "Bearer jina_test"
            assert str(request.url) == f"https://r.jina.ai/{PAGE_URL}"
            return httpx.Response(200, json={"code": 200, "data": {"content": ARTICLE}})

        outcome = await make_extractor(handler).extract(PAGE_URL)

        assert outcome.ok
        assert outcome.strategy == "jina_authenticated"
        assert outcome.value.startswith("Long-form writing")

    async def test_falls_back_to_unauthenticated_reader(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if "authorization" in request.headers:
                return httpx.Response(402, json={"message": "quota"})
            return httpx.Response(200, text=ARTICLE)

        outcome = await make_extractor(handler).extract(PAGE_URL)

        assert outcome.strategy == "jina_unauthenticated"
        assert len(outcome.errors) == 1
        assert outcome.errors[0].startswith("jina_authenticated")

    async def test_short_reader_text_falls_through_to_page(self):
        html = f"<html><body><article><p>{ARTICLE}</p></article></body></html>"

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "r.jina.ai":
                return httpx.Response(200, text="too short")
            return httpx.Response(200, text=html, headers={"content-type": "text/html"})

        outcome = await make_extractor(handler).extract(PAGE_URL)

        assert outcome.strategy == "direct_html"
        assert "tools for thought" in outcome.value

    async def test_every_strategy_fails(self):
        outcome = await make_extractor(lambda r: httpx.Response(503)).extract(PAGE_URL)

        assert not outcome.ok
        assert len(outcome.errors) == 3

    async def test_non_web_url(self):
        outcome = await make_extractor(lambda r: httpx.Response(200)).extract("ftp://example.com/file")

        assert not outcome.ok
        assert "not a web URL" in outcome.errors[0]
