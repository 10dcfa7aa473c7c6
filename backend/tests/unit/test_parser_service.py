"""
Unit tests for the parsing microservice.
"""
import pytest
from httpx import ASGITransport, AsyncClient

from parser_service import app

from tests.fixtures.factories import m3u_text


@pytest.fixture
async def parser_client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://127.0.0.1:8083") as client:
        yield client


class TestParseEndpoint:
    """Tests for POST /parse."""

    @pytest.mark.asyncio
    async def test_missing_file_path(self, parser_client):
        response = await parser_client.post("/parse", json={})

        assert response.status_code == 400
        assert response.json() == {"message": "Missing required field: filePath"}

    @pytest.mark.asyncio
    async def test_unreadable_file(self, parser_client, tmp_path):
        response = await parser_client.post("/parse", json={"filePath": str(tmp_path / "missing.m3u")})

        assert response.status_code == 500
        assert "missing.m3u" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_returns_items(self, parser_client, tmp_path):
        path = tmp_path / "list.m3u"
        path.write_text(m3u_text([("One", "http://x/1", "Filmes"), ("Two", "http://x/2")]))

        response = await parser_client.post("/parse", json={"filePath": str(path)})

        assert response.status_code == 200
        items = response.json()["items"]
        assert [item["url"] for item in items] == ["http://x/1", "http://x/2"]
        assert items[0]["groupTitle"] == "Filmes"
        assert items[0]["raw"] == '#EXTINF:-1 tvg-name="One" group-title="Filmes",One'

    @pytest.mark.asyncio
    async def test_invalid_content_returns_no_items(self, parser_client, tmp_path):
        """Unparseable content is not a service error; the caller decides what empty means."""
        path = tmp_path / "junk.m3u"
        path.write_text("hello")

        response = await parser_client.post("/parse", json={"filePath": str(path)})

        assert response.status_code == 200
        assert response.json() == {"items": []}

    @pytest.mark.asyncio
    async def test_health(self, parser_client):
        response = await parser_client.get("/health")
        assert response.json()["status"] == "healthy"
