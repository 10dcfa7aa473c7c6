"""
Integration tests for the source playlist endpoints.
"""
from pathlib import Path

import pytest

from models import SourcePlaylist

from tests.fixtures.factories import create_source_playlist, m3u_text

VALID_M3U = m3u_text([("One", "http://src/1"), ("Two", "http://src/2")])


class TestCreateSourcePlaylist:
    """Tests for POST /api/source-playlists."""

    @pytest.mark.asyncio
    async def test_create_writes_file(self, async_client, admin_user, auth_headers, panel_dirs):
        response = await async_client.post(
            "/api/source-playlists",
            json={"name": "Sports PT", "type": "CHANNELS", "content": VALID_M3U},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Sports PT"
        assert data["streamCount"] == 2

        file_path = Path(data["filePath"])
        assert file_path.is_absolute()
        assert file_path.parent == panel_dirs.sources.resolve()
        assert file_path.name.endswith("-Sports_PT.m3u")
        assert file_path.read_text() == VALID_M3U

    @pytest.mark.asyncio
    async def test_reseller_may_create(self, async_client, reseller_user, auth_headers):
        response = await async_client.post(
            "/api/source-playlists",
            json={"name": "Mine", "type": "MOVIES", "content": VALID_M3U},
            headers=auth_headers(reseller_user),
        )
        assert response.status_code == 201

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["#EXTM3U\n", "just some text"])
    async def test_content_without_streams_rejected(self, async_client, admin_user, auth_headers, panel_dirs, content):
        response = await async_client.post(
            "/api/source-playlists",
            json={"name": "Empty", "type": "CHANNELS", "content": content},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == 400
        assert response.json() == {"message": "The provided M3U content is empty or invalid."}
        assert list(panel_dirs.sources.iterdir()) == []

    @pytest.mark.asyncio
    async def test_missing_fields(self, async_client, admin_user, auth_headers):
        response = await async_client.post(
            "/api/source-playlists", json={"name": "NoContent", "type": "CHANNELS"}, headers=auth_headers(admin_user)
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_duplicate_name(self, async_client, admin_user, auth_headers, test_session, panel_dirs):
        create_source_playlist(test_session, panel_dirs.sources, name="Taken")

        response = await async_client.post(
            "/api/source-playlists",
            json={"name": "Taken", "type": "CHANNELS", "content": VALID_M3U},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == 409
        assert [p.name for p in panel_dirs.sources.iterdir()] == ["Taken.m3u"]

    @pytest.mark.asyncio
    async def test_requires_token(self, async_client):
        response = await async_client.post("/api/source-playlists", json={})
        assert response.status_code == 401


class TestListSourcePlaylists:

    @pytest.mark.asyncio
    async def test_sorted_by_name(self, async_client, admin_user, auth_headers, test_session, panel_dirs):
        create_source_playlist(test_session, panel_dirs.sources, name="Zulu")
        create_source_playlist(test_session, panel_dirs.sources, name="Alpha")

        response = await async_client.get("/api/source-playlists", headers=auth_headers(admin_user))

        assert [p["name"] for p in response.json()] == ["Alpha", "Zulu"]


class TestSourcePlaylistContent:

    @pytest.mark.asyncio
    async def test_get_content(self, async_client, admin_user, auth_headers, test_session, panel_dirs):
        playlist = create_source_playlist(test_session, panel_dirs.sources, name="Read", content=VALID_M3U)

        response = await async_client.get(
            f"/api/source-playlists/{playlist.id}/content", headers=auth_headers(admin_user)
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == VALID_M3U

    @pytest.mark.asyncio
    async def test_get_content_missing_playlist(self, async_client, admin_user, auth_headers):
        response = await async_client.get("/api/source-playlists/99/content", headers=auth_headers(admin_user))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_get_content_missing_file(self, async_client, admin_user, auth_headers, test_session, panel_dirs):
        playlist = create_source_playlist(test_session, panel_dirs.sources, name="Gone")
        Path(playlist.file_path).unlink()

        response = await async_client.get(
            f"/api/source-playlists/{playlist.id}/content", headers=auth_headers(admin_user)
        )

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_update_content_recounts(self, async_client, admin_user, auth_headers, test_session, panel_dirs):
        playlist = create_source_playlist(test_session, panel_dirs.sources, name="Edit", entries=[("A", "http://a")])
        new_content = m3u_text([("A", "http://a"), ("B", "http://b"), ("C", "http://c")])

        response = await async_client.put(
            f"/api/source-playlists/{playlist.id}/content",
            json={"content": new_content},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == 200
        assert response.json()["streamCount"] == 3
        assert Path(playlist.file_path).read_text() == new_content

    @pytest.mark.asyncio
    async def test_update_content_requires_string(self, async_client, admin_user, auth_headers, test_session, panel_dirs):
        playlist = create_source_playlist(test_session, panel_dirs.sources, name="Edit2")

        response = await async_client.put(
            f"/api/source-playlists/{playlist.id}/content", json={}, headers=auth_headers(admin_user)
        )

        assert response.status_code == 400


class TestDeleteSourcePlaylist:

    @pytest.mark.asyncio
    async def test_delete_removes_row_and_file(self, async_client, admin_user, auth_headers, test_session, panel_dirs):
        playlist = create_source_playlist(test_session, panel_dirs.sources, name="Bye")
        file_path = Path(playlist.file_path)

        response = await async_client.delete(f"/api/source-playlists/{playlist.id}", headers=auth_headers(admin_user))

        assert response.status_code == 204
        assert not file_path.exists()
        assert test_session.query(SourcePlaylist).count() == 0

    @pytest.mark.asyncio
    async def test_delete_with_missing_file(self, async_client, admin_user, auth_headers, test_session, panel_dirs):
        playlist = create_source_playlist(test_session, panel_dirs.sources, name="NoFile")
        Path(playlist.file_path).unlink()

        response = await async_client.delete(f"/api/source-playlists/{playlist.id}", headers=auth_headers(admin_user))

        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_delete_missing(self, async_client, admin_user, auth_headers):
        response = await async_client.delete("/api/source-playlists/5", headers=auth_headers(admin_user))
        assert response.status_code == 404
