"""
Generation API
- Single video / image generation, status check, regenerate
- Reference image upload
- SSE batch streams (video, image, storyboard)
"""

import base64
import binascii
import uuid
from typing import Dict, Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.api.auth import get_current_user
from src.core.enums import ToolName
from src.database import crud
from src.database.engine import get_session, get_session_factory
from src.database.limit_manager import ensure_tool_access, check_bulk_request
from src.database.models import User, VideoHistory, ImageHistory
from src.services import generation_service
from src.services.batch_stream import (
    BatchItem,
    BatchStreamer,
    make_video_worker,
    make_image_worker,
    make_storyboard_worker,
)
from src.services.storage_service import MediaStorage, get_storage
from src.services.veo_service import VeoClient, get_veo_client

router = APIRouter(tags=["generation"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_BATCH_ITEMS = 500

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


# ===========================
# REQUEST MODELS
# ===========================


class VideoRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=5000)
    aspect_ratio: str = Field("landscape", pattern="^(landscape|portrait)$")
    title: Optional[str] = Field(None, max_length=255)
    reference_image_url: Optional[str] = None
    end_image_url: Optional[str] = None


class HistoryIdRequest(BaseModel):
    history_id: int


class ImageRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=5000)
    aspect_ratio: str = Field("landscape", pattern="^(landscape|portrait)$")


class UploadImageRequest(BaseModel):
    image_base64: str


class BatchRequest(BaseModel):
    prompts: List[str] = Field(..., min_length=1, max_length=MAX_BATCH_ITEMS)
    aspect_ratio: str = Field("landscape", pattern="^(landscape|portrait)$")


class StoryboardScene(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=5000)
    image_url: Optional[str] = None


class StoryboardRequest(BaseModel):
    scenes: List[StoryboardScene] = Field(..., min_length=1, max_length=MAX_BATCH_ITEMS)
    aspect_ratio: str = Field("landscape", pattern="^(landscape|portrait)$")


# ===========================
# SERIALIZERS
# ===========================


def serialize_video(video: VideoHistory) -> Dict[str, Any]:
    return {
        "id": video.id,
        "prompt": video.prompt,
        "title": video.title,
        "aspect_ratio": video.aspect_ratio,
        "status": video.status,
        "video_url": video.video_url,
        "error_message": video.error_message,
        "batch_id": video.batch_id,
        "scene_number": video.scene_number,
        "retry_count": video.retry_count,
        "reference_image_url": video.reference_image_url,
        "end_image_url": video.end_image_url,
        "created_at": video.created_at.isoformat() if video.created_at else None,
        "updated_at": video.updated_at.isoformat() if video.updated_at else None,
    }


def serialize_image(image: ImageHistory) -> Dict[str, Any]:
    return {
        "id": image.id,
        "prompt": image.prompt,
        "aspect_ratio": image.aspect_ratio,
        "status": image.status,
        "image_url": image.image_url,
        "error_message": image.error_message,
        "batch_id": image.batch_id,
        "scene_number": image.scene_number,
        "created_at": image.created_at.isoformat() if image.created_at else None,
    }


def _clean_prompts(prompts: List[str]) -> List[str]:
    cleaned = [p.strip() for p in prompts if p and p.strip()]
    if not cleaned:
        raise HTTPException(status_code=400, detail="At least one non-empty prompt is required")
    return cleaned


def _require_own_media(storage: MediaStorage, *urls: Optional[str]) -> None:
    """Frames must be images this server stored (upload-image or a generated image)"""
    for url in urls:
        if url and not storage.is_own_url(url):
            raise HTTPException(status_code=400, detail="Image URL must come from /api/upload-image or a generated image")


# ===========================
# SINGLE GENERATION
# ===========================


@router.post("/start-video-generation")
async def start_video_generation(
    body: VideoRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    client: VeoClient = Depends(get_veo_client),
    storage: MediaStorage = Depends(get_storage),
) -> Dict[str, Any]:
    """
    Start one video generation

    Errors:
        400: validation, 403: tool not in plan, 429: daily quota,
        503: maintenance or no tokens
    """
    _require_own_media(storage, body.reference_image_url, body.end_image_url)
    tool = ToolName.IMAGE_TO_VIDEO if body.reference_image_url else ToolName.VEO
    try:
        video = await generation_service.start_video_generation(
            session,
            user,
            body.prompt,
            aspect_ratio=body.aspect_ratio,
            reference_image_url=body.reference_image_url,
            end_image_url=body.end_image_url,
            title=body.title,
            tool=tool,
            client=client,
            storage=storage,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": video.status != "failed",
        "historyId": video.id,
        "status": video.status,
        "error": video.error_message,
    }


@router.post("/check-video-status")
async def check_video_status(
    body: HistoryIdRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    client: VeoClient = Depends(get_veo_client),
    storage: MediaStorage = Depends(get_storage),
) -> Dict[str, Any]:
    """Poll upstream once for one of the user's videos"""
    video = await crud.get_user_video(session, user.id, body.history_id)
    if video is None:
        raise HTTPException(status_code=404, detail="Video not found")

    video = await generation_service.poll_video(session, video, client, storage)
    return {
        "historyId": video.id,
        "status": video.status,
        "videoUrl": video.video_url,
        "error": video.error_message,
    }


@router.post("/regenerate-video")
async def regenerate_video(
    body: HistoryIdRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    client: VeoClient = Depends(get_veo_client),
    storage: MediaStorage = Depends(get_storage),
) -> Dict[str, Any]:
    """New attempt for a finished video, same batch position"""
    video = await generation_service.regenerate_video(session, user, body.history_id, client, storage)
    if video is None:
        raise HTTPException(status_code=404, detail="Video not found")

    return {
        "success": video.status != "failed",
        "historyId": video.id,
        "status": video.status,
        "sceneNumber": video.scene_number,
        "error": video.error_message,
    }


@router.post("/generate-image")
async def generate_image(
    body: ImageRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    client: VeoClient = Depends(get_veo_client),
    storage: MediaStorage = Depends(get_storage),
) -> Dict[str, Any]:
    await ensure_tool_access(session, user, ToolName.TEXT_TO_IMAGE)
    image = await generation_service.generate_image(
        session, user, body.prompt, aspect_ratio=body.aspect_ratio, client=client, storage=storage
    )
    return {"success": image.status == "completed", "image": serialize_image(image)}


@router.post("/upload-image")
async def upload_image(
    body: UploadImageRequest,
    user: User = Depends(get_current_user),
    storage: MediaStorage = Depends(get_storage),
) -> Dict[str, Any]:
    """
    Store a reference frame (base64 PNG/JPEG/WebP, max 10MB)

    Returns:
        {"url": "/media/uploads/..."} usable as reference_image_url
    """
    image_data = body.image_base64
    if "," in image_data:
        # Strip data URL prefix (data:image/png;base64,...)
        image_data = image_data.split(",", 1)[1]

    try:
        image_bytes = base64.b64decode(image_data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Invalid base64 image")

    if not image_bytes:
        raise HTTPException(status_code=400, detail="Empty image")
    if len(image_bytes) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="Image too large (max 10MB)")

    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        extension = "png"
    elif image_bytes[:3] == b"\xff\xd8\xff":
        extension = "jpg"
    elif image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        extension = "webp"
    else:
        raise HTTPException(status_code=400, detail="Unsupported image type (PNG, JPEG or WebP only)")

    url = await storage.save_blob(image_bytes, extension, folder="uploads")
    logger.info(f"User {user.id} uploaded reference image ({len(image_bytes)} bytes)")
    return {"url": url}


# ===========================
# BATCH STREAMS (SSE)
# ===========================


def _stream(streamer: BatchStreamer) -> StreamingResponse:
    return StreamingResponse(
        streamer.stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/video/batch-stream")
async def video_batch_stream(
    body: BatchRequest,
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    client: VeoClient = Depends(get_veo_client),
    storage: MediaStorage = Depends(get_storage),
) -> StreamingResponse:
    """
    Generate a batch of videos, streaming progress as SSE

    Events: batch_started, progress, result (one per index), complete | error.
    If the stream drops, poll GET /api/video-history?batch_id=...
    """
    prompts = _clean_prompts(body.prompts)
    await ensure_tool_access(session, user, ToolName.BULK)
    try:
        limits = check_bulk_request(user, len(prompts))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    batch_id = str(uuid.uuid4())
    items = [BatchItem(index=i, prompt=p) for i, p in enumerate(prompts)]
    worker = make_video_worker(
        session_factory, user.id, batch_id, body.aspect_ratio, client=client, storage=storage
    )
    streamer = BatchStreamer(
        items,
        worker,
        result_event="result",
        is_disconnected=request.is_disconnected,
        batch_id=batch_id,
        batch_size=limits["max_batch"],
        batch_delay=limits["delay_seconds"],
    )

    logger.info(f"User {user.id} started video batch {batch_id} ({len(items)} prompts)")
    return _stream(streamer)


@router.post("/image/batch-stream")
async def image_batch_stream(
    body: BatchRequest,
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    client: VeoClient = Depends(get_veo_client),
    storage: MediaStorage = Depends(get_storage),
) -> StreamingResponse:
    """Generate a batch of images; emits one `image` event per index"""
    prompts = _clean_prompts(body.prompts)
    await ensure_tool_access(session, user, ToolName.TEXT_TO_IMAGE)

    batch_id = str(uuid.uuid4())
    items = [BatchItem(index=i, prompt=p) for i, p in enumerate(prompts)]
    worker = make_image_worker(
        session_factory, user.id, batch_id, body.aspect_ratio, client=client, storage=storage
    )
    streamer = BatchStreamer(
        items,
        worker,
        result_event="image",
        is_disconnected=request.is_disconnected,
        batch_id=batch_id,
    )

    logger.info(f"User {user.id} started image batch {batch_id} ({len(items)} prompts)")
    return _stream(streamer)


@router.post("/storyboard/batch-stream")
async def storyboard_batch_stream(
    body: StoryboardRequest,
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    client: VeoClient = Depends(get_veo_client),
    storage: MediaStorage = Depends(get_storage),
) -> StreamingResponse:
    """
    Storyboard: one frame per scene, videos chained frame-to-frame

    Scene i depends on scene i-1; a failed frame makes the next scene fall
    back to its own frame.
    """
    await ensure_tool_access(session, user, ToolName.SCRIPT_TO_FRAMES)
    _require_own_media(storage, *(scene.image_url for scene in body.scenes))

    batch_id = str(uuid.uuid4())
    items = [
        BatchItem(
            index=i,
            prompt=scene.prompt.strip(),
            depends_on=i - 1 if i > 0 else None,
            start_image_url=scene.image_url,
        )
        for i, scene in enumerate(body.scenes)
    ]
    worker = make_storyboard_worker(
        session_factory, user.id, batch_id, body.aspect_ratio, client=client, storage=storage
    )
    streamer = BatchStreamer(
        items,
        worker,
        result_event="result",
        is_disconnected=request.is_disconnected,
        batch_id=batch_id,
    )

    logger.info(f"User {user.id} started storyboard {batch_id} ({len(items)} scenes)")
    return _stream(streamer)
