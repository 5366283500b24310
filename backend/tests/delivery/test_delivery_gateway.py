"""Tests for playlist rewriting and the delivery endpoints."""

from pathlib import Path
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from conftest import FakeLessonRepository, FakeSubscriptions, make_lesson, make_user, write_playlist
from securehls.main import app
from securehls.modules.auth.jwt import get_current_viewer
from securehls.modules.delivery.access import LessonAccessPolicy
from securehls.modules.delivery.errors import (
    AssetUnavailableError,
    AuthorizationDeniedError,
    TokenInvalidError,
)
from securehls.modules.delivery.gateway import DeliveryGateway, DeliveryUrlBuilder
from securehls.modules.delivery.router import get_delivery_gateway
from securehls.modules.delivery.tokens import CapabilityTokenService
from securehls.modules.lesson.models import VideoStatus
from securehls.modules.transcoding.manifest import write_master_manifest
from securehls.modules.transcoding.renditions import RENDITION_LADDER

KEY = bytes(range(16))


def token_of(url: str) -> str:
    return parse_qs(urlparse(url).query)["token"][0]


@pytest.fixture
def lesson():
    return make_lesson(video_status=VideoStatus.READY.value)


@pytest.fixture
def viewer():
    return make_user()


@pytest.fixture
def tokens(store, clock) -> CapabilityTokenService:
    return CapabilityTokenService(store, "test-secret-key-for-hls-tokens", clock=clock)


@pytest.fixture
def gateway(lesson, tokens, layout_factory) -> DeliveryGateway:
    return DeliveryGateway(
        lessons=FakeLessonRepository(lesson),
        access=LessonAccessPolicy(FakeSubscriptions((5, 7))),
        tokens=tokens,
        urls=DeliveryUrlBuilder("/api/v1"),
        layout_factory=layout_factory,
    )


@pytest.fixture
def encoded(lesson, layout_factory):
    """A three-tier encode of lesson 42 on disk."""
    layout = layout_factory(lesson.id)
    layout.output_dir.mkdir(parents=True)
    for rendition in RENDITION_LADDER:
        names = [f"{rendition.segment_prefix}{i:03d}.ts" for i in range(3)]
        for name in names:
            layout.segment(name).write_bytes(b"\x47" * 188)
        write_playlist(layout.variant_manifest(rendition.name), names, key_uri="/api/v1/lessons/42/key")
    write_master_manifest(layout, RENDITION_LADDER)
    layout.key_file.write_bytes(KEY)
    return layout


class TestPlaylistRewrite:
    """Per-viewer rewriting of playlists."""

    @pytest.mark.asyncio
    async def test_master_points_at_variant_endpoint(self, gateway, encoded, viewer) -> None:
        content = await gateway.get_playlist(42, viewer)

        uris = [line for line in content.splitlines() if line and not line.startswith("#")]
        assert uris == [
            "/api/v1/lessons/42/playlist/360p.m3u8",
            "/api/v1/lessons/42/playlist/720p.m3u8",
            "/api/v1/lessons/42/playlist/1080p.m3u8",
        ]

    @pytest.mark.asyncio
    async def test_variant_segments_and_key_carry_tokens(self, gateway, tokens, encoded, viewer) -> None:
        content = await gateway.get_variant_playlist(42, "720p", viewer)
        lines = content.splitlines()

        segment_urls = [line for line in lines if "/segments/" in line]
        assert len(segment_urls) == 3
        for index, url in enumerate(segment_urls):
            segment = f"720p_segment_{index:03d}.ts"
            assert urlparse(url).path == f"/api/v1/lessons/42/segments/{segment}"
            assert await tokens.validate_segment_token(token_of(url), 42, segment, viewer.id)

        key_lines = [line for line in lines if line.startswith("#EXT-X-KEY")]
        key_url = key_lines[0].split('URI="')[1].split('"')[0]
        assert urlparse(key_url).path == "/api/v1/lessons/42/key"
        assert tokens.validate_key_token(token_of(key_url), 42)
        assert "METHOD=AES-128" in key_lines[0]
        assert "IV=0x" in key_lines[0]

    @pytest.mark.asyncio
    async def test_every_fetch_mints_new_segment_tokens(self, gateway, encoded, viewer) -> None:
        first = await gateway.get_variant_playlist(42, "360p", viewer)
        second = await gateway.get_variant_playlist(42, "360p", viewer)

        assert first != second

    @pytest.mark.asyncio
    async def test_tags_are_preserved(self, gateway, encoded, viewer) -> None:
        content = await gateway.get_variant_playlist(42, "360p", viewer)

        assert content.startswith("#EXTM3U")
        assert "#EXT-X-ENDLIST" in content
        assert content.count("#EXTINF") == 3


class TestGatewayChecks:
    """Authorization, readiness and token checks."""

    @pytest.mark.asyncio
    async def test_lesson_not_ready(self, gateway, lesson, viewer) -> None:
        lesson.video_status = VideoStatus.PROCESSING.value

        with pytest.raises(AssetUnavailableError):
            await gateway.get_playlist(42, viewer)

    @pytest.mark.asyncio
    async def test_unsubscribed_viewer(self, gateway, encoded) -> None:
        with pytest.raises(AuthorizationDeniedError):
            await gateway.get_playlist(42, make_user(user_id=6))

    @pytest.mark.asyncio
    async def test_unknown_variant(self, gateway, encoded, viewer) -> None:
        with pytest.raises(AssetUnavailableError):
            await gateway.get_variant_playlist(42, "../enc", viewer)
        with pytest.raises(AssetUnavailableError):
            await gateway.get_variant_playlist(42, "4k", viewer)

    @pytest.mark.asyncio
    async def test_variant_not_listed_by_canonical_manifest(self, gateway, encoded, viewer) -> None:
        write_master_manifest(encoded, RENDITION_LADDER[:2])

        assert await gateway.get_variant_playlist(42, "720p", viewer)
        with pytest.raises(AssetUnavailableError):
            await gateway.get_variant_playlist(42, "1080p", viewer)

    @pytest.mark.asyncio
    async def test_no_variants_behind_single_rendition_manifest(self, gateway, encoded, viewer) -> None:
        write_playlist(encoded.canonical_manifest, ["segment_000.ts"])

        with pytest.raises(AssetUnavailableError):
            await gateway.get_variant_playlist(42, "720p", viewer)

    @pytest.mark.asyncio
    async def test_segment_token_of_other_viewer(self, gateway, tokens, encoded) -> None:
        other = make_user(user_id=6)
        token = await tokens.issue_segment_token(42, "720p_segment_000.ts", 5)
        gateway.access = LessonAccessPolicy(FakeSubscriptions((5, 7), (6, 7)))

        with pytest.raises(TokenInvalidError):
            await gateway.get_segment(42, "720p_segment_000.ts", token, other)

    @pytest.mark.asyncio
    async def test_segment_name_traversal(self, gateway, tokens, encoded, viewer) -> None:
        token = await tokens.issue_segment_token(42, "../enc.key", viewer.id)

        with pytest.raises(TokenInvalidError):
            await gateway.get_segment(42, "../enc.key", token, viewer)

    @pytest.mark.asyncio
    async def test_key_delivery(self, gateway, tokens, encoded, viewer) -> None:
        key = await gateway.get_key(42, tokens.issue_key_token(42), viewer)

        assert key == KEY

    @pytest.mark.asyncio
    async def test_key_token_for_other_lesson(self, gateway, tokens, encoded, viewer) -> None:
        with pytest.raises(TokenInvalidError):
            await gateway.get_key(42, tokens.issue_key_token(43), viewer)

    @pytest.mark.asyncio
    async def test_malformed_key_file(self, gateway, tokens, encoded, viewer) -> None:
        encoded.key_file.write_bytes(b"short")

        with pytest.raises(AssetUnavailableError):
            await gateway.get_key(42, tokens.issue_key_token(42), viewer)


class TestDeliveryEndpoints:
    """HTTP surface of the gateway."""

    @pytest.fixture
    def client(self, gateway, viewer):
        app.dependency_overrides[get_current_viewer] = lambda: viewer
        app.dependency_overrides[get_delivery_gateway] = lambda: gateway
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_playlist_response(self, client, encoded) -> None:
        response = client.get("/api/v1/lessons/42/playlist")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/vnd.apple.mpegurl")
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"

    def test_segment_fetch_with_token(self, client, encoded) -> None:
        playlist = client.get("/api/v1/lessons/42/playlist/1080p.m3u8").text
        segment_url = next(line for line in playlist.splitlines() if "/segments/" in line)

        response = client.get(segment_url)

        assert response.status_code == 200
        assert response.headers["content-type"] == "video/mp2t"
        assert response.headers["cache-control"] == "private, max-age=3600"
        assert response.content == b"\x47" * 188

    def test_segment_without_token(self, client, encoded) -> None:
        response = client.get("/api/v1/lessons/42/segments/720p_segment_000.ts")

        assert response.status_code == 403

    def test_key_fetch(self, client, encoded) -> None:
        playlist = client.get("/api/v1/lessons/42/playlist/360p.m3u8").text
        key_line = next(line for line in playlist.splitlines() if line.startswith("#EXT-X-KEY"))
        key_url = key_line.split('URI="')[1].split('"')[0]

        response = client.get(key_url)

        assert response.status_code == 200
        assert response.content == KEY
        assert response.headers["content-type"] == "application/octet-stream"
        assert response.headers["x-robots-tag"].startswith("noindex")

    def test_key_with_bad_token(self, client, encoded) -> None:
        response = client.get("/api/v1/lessons/42/key", params={"token": "forged"})

        assert response.status_code == 403

    def test_missing_lesson(self, client) -> None:
        response = client.get("/api/v1/lessons/99/playlist")

        assert response.status_code == 404
