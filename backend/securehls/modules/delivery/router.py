"""Delivery API router: playlists, segments and keys."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from securehls.core.config import settings
from securehls.core.database import get_db
from securehls.core.redis import KeyValueStore, get_kv_store
from securehls.modules.auth.jwt import get_current_viewer
from securehls.modules.delivery.access import LessonAccessPolicy
from securehls.modules.delivery.errors import (
    AssetUnavailableError,
    AuthorizationDeniedError,
    DeliveryError,
    TokenInvalidError,
)
from securehls.modules.delivery.gateway import (
    KEY_HEADERS,
    KEY_MEDIA_TYPE,
    PLAYLIST_HEADERS,
    PLAYLIST_MEDIA_TYPE,
    SEGMENT_HEADERS,
    SEGMENT_MEDIA_TYPE,
    DeliveryGateway,
    DeliveryUrlBuilder,
)
from securehls.modules.delivery.tokens import CapabilityTokenService
from securehls.modules.lesson.models import User
from securehls.modules.lesson.repository import LessonRepository, SubscriptionRepository
from securehls.modules.transcoding.storage import get_layout

router = APIRouter(prefix="/lessons", tags=["delivery"])


def get_url_builder() -> DeliveryUrlBuilder:
    return DeliveryUrlBuilder(settings.API_V1_PREFIX, settings.PUBLIC_BASE_URL)


async def get_token_service(
    store: KeyValueStore = Depends(get_kv_store),
) -> CapabilityTokenService:
    return CapabilityTokenService(
        store=store,
        secret_key=settings.SECRET_KEY,
        segment_ttl=settings.SEGMENT_TOKEN_TTL_SECONDS,
        key_ttl=settings.KEY_TOKEN_TTL_SECONDS,
    )


async def get_delivery_gateway(
    db: AsyncSession = Depends(get_db),
    tokens: CapabilityTokenService = Depends(get_token_service),
    urls: DeliveryUrlBuilder = Depends(get_url_builder),
) -> DeliveryGateway:
    return DeliveryGateway(
        lessons=LessonRepository(db),
        access=LessonAccessPolicy(SubscriptionRepository(db)),
        tokens=tokens,
        urls=urls,
        layout_factory=get_layout,
    )


def _to_http_error(error: DeliveryError) -> HTTPException:
    if isinstance(error, (TokenInvalidError, AuthorizationDeniedError)):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, AssetUnavailableError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


@router.get("/{lesson_id}/playlist")
async def get_playlist(
    lesson_id: int,
    viewer: User = Depends(get_current_viewer),
    gateway: DeliveryGateway = Depends(get_delivery_gateway),
) -> Response:
    """Canonical HLS playlist with per-viewer segment and key URLs."""
    try:
        content = await gateway.get_playlist(lesson_id, viewer)
    except DeliveryError as e:
        raise _to_http_error(e)

    return Response(content=content, media_type=PLAYLIST_MEDIA_TYPE, headers=PLAYLIST_HEADERS)


@router.get("/{lesson_id}/playlist/{variant}.m3u8")
async def get_variant_playlist(
    lesson_id: int,
    variant: str,
    viewer: User = Depends(get_current_viewer),
    gateway: DeliveryGateway = Depends(get_delivery_gateway),
) -> Response:
    """Playlist of one rendition, rewritten like the canonical playlist."""
    try:
        content = await gateway.get_variant_playlist(lesson_id, variant, viewer)
    except DeliveryError as e:
        raise _to_http_error(e)

    return Response(content=content, media_type=PLAYLIST_MEDIA_TYPE, headers=PLAYLIST_HEADERS)


@router.get("/{lesson_id}/segments/{segment}")
async def get_segment(
    lesson_id: int,
    segment: str,
    token: Optional[str] = Query(None),
    viewer: User = Depends(get_current_viewer),
    gateway: DeliveryGateway = Depends(get_delivery_gateway),
) -> FileResponse:
    """Encrypted MPEG-TS segment."""
    try:
        path = await gateway.get_segment(lesson_id, segment, token, viewer)
    except DeliveryError as e:
        raise _to_http_error(e)

    return FileResponse(path, media_type=SEGMENT_MEDIA_TYPE, headers=SEGMENT_HEADERS)


@router.get("/{lesson_id}/key")
async def get_key(
    lesson_id: int,
    token: Optional[str] = Query(None),
    viewer: User = Depends(get_current_viewer),
    gateway: DeliveryGateway = Depends(get_delivery_gateway),
) -> Response:
    """The lesson's AES-128 key."""
    try:
        key = await gateway.get_key(lesson_id, token, viewer)
    except DeliveryError as e:
        raise _to_http_error(e)

    return Response(content=key, media_type=KEY_MEDIA_TYPE, headers=KEY_HEADERS)
