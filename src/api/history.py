"""
History API
- Video / image history listing (by batch for stream recovery)
- Soft delete
- ZIP download of completed videos
"""

import io
import zipfile
from typing import Dict, Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user
from src.api.generation import serialize_video, serialize_image
from src.core.enums import GenerationStatus
from src.database import crud
from src.database.engine import get_session
from src.database.models import User
from src.services.storage_service import MediaStorage, StorageError, get_storage

router = APIRouter(tags=["history"])

MAX_ZIP_VIDEOS = 100


class DownloadZipRequest(BaseModel):
    history_ids: Optional[List[int]] = Field(None, max_length=MAX_ZIP_VIDEOS)
    batch_id: Optional[str] = None


@router.get("/video-history")
async def get_video_history(
    batch_id: Optional[str] = Query(None, max_length=64),
    status: Optional[GenerationStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    List the user's videos

    With `batch_id` the rows come back in scene order, which is how a
    client rebuilds a batch after losing its stream.
    """
    videos = await crud.list_video_history(
        session, user.id, batch_id=batch_id, status=status, limit=limit, offset=offset
    )
    return {"videos": [serialize_video(v) for v in videos], "count": len(videos)}


@router.delete("/video-history/{history_id}")
async def delete_video(
    history_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    video = await crud.get_user_video(session, user.id, history_id)
    if video is None or video.deleted_by_user:
        raise HTTPException(status_code=404, detail="Video not found")

    await crud.soft_delete_video(session, video)
    return {"success": True}


@router.get("/image-history")
async def get_image_history(
    batch_id: Optional[str] = Query(None, max_length=64),
    limit: int = Query(100, ge=1, le=500),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    images = await crud.list_image_history(session, user.id, batch_id=batch_id, limit=limit)
    return {"images": [serialize_image(i) for i in images], "count": len(images)}


@router.delete("/image-history/{image_id}")
async def delete_image(
    image_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    image = await crud.get_user_image(session, user.id, image_id)
    if image is None or image.deleted_by_user:
        raise HTTPException(status_code=404, detail="Image not found")

    await crud.soft_delete_image(session, image)
    return {"success": True}


@router.post("/video-history/download-zip")
async def download_zip(
    body: DownloadZipRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: MediaStorage = Depends(get_storage),
) -> StreamingResponse:
    """
    Bundle completed videos into one ZIP

    Body: either `history_ids` or `batch_id`. Videos that are not completed
    or cannot be fetched are skipped; 404 if nothing is left.
    """
    if body.batch_id:
        videos = await crud.list_video_history(
            session, user.id, batch_id=body.batch_id, status=GenerationStatus.COMPLETED, limit=MAX_ZIP_VIDEOS
        )
    elif body.history_ids:
        videos = []
        for history_id in body.history_ids:
            video = await crud.get_user_video(session, user.id, history_id)
            if video and not video.deleted_by_user and video.status == GenerationStatus.COMPLETED.value:
                videos.append(video)
    else:
        raise HTTPException(status_code=400, detail="Provide history_ids or batch_id")

    buffer = io.BytesIO()
    added = 0
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as archive:
        for video in videos:
            if not video.video_url:
                continue
            try:
                data = await storage.fetch_blob(video.video_url)
            except StorageError as e:
                logger.warning(f"ZIP: skipping video {video.id}: {e}")
                continue
            name = (
                f"scene_{video.scene_number:03d}_{video.id}.mp4"
                if video.scene_number is not None
                else f"video_{video.id}.mp4"
            )
            archive.writestr(name, data)
            added += 1

    if not added:
        raise HTTPException(status_code=404, detail="No completed videos to download")

    buffer.seek(0)
    logger.info(f"User {user.id} downloaded ZIP with {added} videos")
    return StreamingResponse(
        buffer,
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="videos.zip"'},
    )
