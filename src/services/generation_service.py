"""
Generation Orchestrator - drives history rows through their lifecycle

    pending ──start──▶ processing ──poll──▶ completed
       ▲                   │
       │                   └──────────────▶ failed
       └──── auto-retry / regenerate ◀──────┘

Only `transition()` writes `status`; it rejects every move not listed in
GenerationStatus.can_transition, so completed rows never change again and
failed rows only go back to pending through an explicit retry.
"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Union

import asyncio
from loguru import logger
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.config import MAX_POLL_ATTEMPTS, POLL_INTERVAL_SECONDS, BATCH_CONCURRENCY
from src.core.enums import GenerationStatus, TokenPoolType, QuotaKind, ToolName
from src.core.exceptions import InvalidTransitionError, NoCapacityError, UpstreamError
from src.database import crud
from src.database.limit_manager import check_and_consume_quota, ensure_tool_access
from src.database.models import User, VideoHistory, ImageHistory, ApiToken, AutoRetrySettings
from src.services.storage_service import MediaStorage, StorageError, get_storage
from src.services.token_pool import TokenLease, report_error, with_token_rotation
from src.services.veo_service import NETWORK_ERRORS, VeoClient, get_veo_client, network_failure
from src.utils.error_categories import categorize_error, POLICY_VIOLATION, TIMEOUT, TOKEN_EXPIRED
from src.utils.time_utils import utcnow

HistoryRow = Union[VideoHistory, ImageHistory]

# Unsafe-content responses tolerated before failing for good
MAX_POLICY_RETRIES = 5

# Failures that fail one row without stopping the caller
ROW_ERRORS = (UpstreamError, StorageError) + NETWORK_ERRORS


def _failure_text(error: BaseException) -> str:
    if isinstance(error, NETWORK_ERRORS):
        return str(network_failure(error))
    return str(error)


# ===========================
# STATUS MACHINE
# ===========================


def transition(
    row: HistoryRow,
    new_status: GenerationStatus,
    result_url: Optional[str] = None,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Move a history row to a new status (no commit)

    Args:
        row: VideoHistory or ImageHistory
        new_status: Target status
        result_url: Required for COMPLETED
        error: Raw error for FAILED (stored categorized)
        now: Override clock

    Raises:
        InvalidTransitionError: move not allowed from current status
    """
    current = GenerationStatus(row.status)
    if not GenerationStatus.can_transition(current, new_status):
        raise InvalidTransitionError(row.id, current.value, new_status.value)

    now = now or utcnow()
    url_attr = "video_url" if isinstance(row, VideoHistory) else "image_url"

    if new_status == GenerationStatus.COMPLETED:
        if not result_url:
            raise ValueError("Completed rows require a result URL")
        setattr(row, url_attr, result_url)
        row.error_message = None
    elif new_status == GenerationStatus.FAILED:
        setattr(row, url_attr, None)
        row.error_message = categorize_error(error)
        if error and row.error_message != error:
            logger.info(f"{type(row).__name__} {row.id} failed: {error[:200]}")
    elif new_status == GenerationStatus.PENDING:
        # Re-armed retry: drop previous attempt's handles
        row.error_message = None
        if isinstance(row, VideoHistory):
            row.retry_count += 1
            row.last_retry_at = now
            row.operation_name = None
            row.scene_id = None
            row.token_id = None
            row.poll_count = 0
            row.policy_error_count = 0

    row.status = new_status.value
    row.updated_at = now


# ===========================
# START
# ===========================


async def _frame_media_id(
    client: VeoClient,
    storage: MediaStorage,
    lease: TokenLease,
    url: Optional[str],
) -> Optional[str]:
    if not url:
        return None
    if not storage.is_own_url(url):
        raise StorageError(f"Frame is not stored media: {url[:80]}")
    data = await storage.fetch_blob(url)
    mime = "image/png" if url.lower().endswith(".png") else "image/jpeg"
    return await client.upload_image(lease.credential, data, mime)


async def _start_operation(
    session: AsyncSession,
    video: VideoHistory,
    client: VeoClient,
    storage: MediaStorage,
    exclude_token_ids: tuple = (),
) -> None:
    """Start an upstream operation for `video` and store its handles (no status change)"""
    scene_id = str(uuid.uuid4())

    async def call(lease: TokenLease) -> str:
        start_media = await _frame_media_id(client, storage, lease, video.reference_image_url)
        end_media = None
        if start_media:
            end_media = await _frame_media_id(client, storage, lease, video.end_image_url)
        return await client.start_video(
            lease.credential,
            video.prompt,
            video.aspect_ratio,
            scene_id,
            start_media_id=start_media,
            end_media_id=end_media,
        )

    operation_name, lease = await with_token_rotation(
        session, TokenPoolType.VIDEO, call, exclude_ids=exclude_token_ids
    )

    video.operation_name = operation_name
    video.scene_id = scene_id
    video.token_id = lease.token_id


async def launch_video(
    session: AsyncSession,
    video: VideoHistory,
    client: Optional[VeoClient] = None,
    storage: Optional[MediaStorage] = None,
) -> VideoHistory:
    """
    Start upstream work for a pending row: pending → processing, or → failed

    Raises:
        NoCapacityError: token pool exhausted (row is marked failed first)
    """
    client = client or get_veo_client()
    storage = storage or get_storage()

    try:
        await _start_operation(session, video, client, storage)
    except NoCapacityError as e:
        transition(video, GenerationStatus.FAILED, error=str(e))
        await session.commit()
        raise
    except ROW_ERRORS as e:
        transition(video, GenerationStatus.FAILED, error=_failure_text(e))
        await session.commit()
        logger.warning(f"Video {video.id} failed to start: {e}")
        return video

    transition(video, GenerationStatus.PROCESSING)
    await session.commit()
    logger.info(f"Video {video.id} processing (op={video.operation_name[:40]}, token=#{video.token_id})")
    return video


async def start_video_generation(
    session: AsyncSession,
    user: User,
    prompt: str,
    aspect_ratio: str = "landscape",
    batch_id: Optional[str] = None,
    scene_number: Optional[int] = None,
    reference_image_url: Optional[str] = None,
    end_image_url: Optional[str] = None,
    title: Optional[str] = None,
    tool: ToolName = ToolName.VEO,
    client: Optional[VeoClient] = None,
    storage: Optional[MediaStorage] = None,
) -> VideoHistory:
    """
    Accept a video request: access + quota checks, pending row, upstream start

    Raises:
        ValueError: empty prompt / bad aspect ratio
        ToolUnavailableError: plan or maintenance blocks the tool
        QuotaExceededError: daily quota denied
        NoCapacityError: no video tokens left
    """
    prompt = (prompt or "").strip()
    if not prompt:
        raise ValueError("Prompt is required")
    if aspect_ratio not in ("landscape", "portrait"):
        raise ValueError("Aspect ratio must be 'landscape' or 'portrait'")

    await ensure_tool_access(session, user, tool)

    decision = await check_and_consume_quota(session, user.id, QuotaKind.VIDEO)
    decision.raise_for_denial()

    video = await crud.create_video_history(
        session,
        user_id=user.id,
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        batch_id=batch_id,
        scene_number=scene_number,
        title=title,
        reference_image_url=reference_image_url,
        end_image_url=end_image_url,
    )
    return await launch_video(session, video, client, storage)


# ===========================
# POLL
# ===========================


async def _relaunch(
    session: AsyncSession,
    video: VideoHistory,
    client: VeoClient,
    storage: MediaStorage,
) -> None:
    """Restart a processing row's operation on a different token"""
    previous = video.token_id
    try:
        await _start_operation(
            session, video, client, storage,
            exclude_token_ids=(previous,) if previous else (),
        )
        video.poll_count = 0
        logger.info(f"Video {video.id} relaunched on token #{video.token_id} (was #{previous})")
    except (NoCapacityError,) + ROW_ERRORS as e:
        transition(video, GenerationStatus.FAILED, error=_failure_text(e))


async def poll_video(
    session: AsyncSession,
    video: VideoHistory,
    client: Optional[VeoClient] = None,
    storage: Optional[MediaStorage] = None,
) -> VideoHistory:
    """
    Query upstream once for a processing row

    Terminal and pending rows are returned untouched (no upstream call).
    """
    if video.status != GenerationStatus.PROCESSING.value or not video.operation_name:
        return video

    client = client or get_veo_client()
    storage = storage or get_storage()

    token = await session.get(ApiToken, video.token_id) if video.token_id else None
    if token is None:
        transition(video, GenerationStatus.FAILED, error=TOKEN_EXPIRED)
        await session.commit()
        return video

    video.poll_count += 1

    try:
        status = await client.check_video_status(token.token, video.operation_name, video.scene_id)
    except (UpstreamError,) + NETWORK_ERRORS as e:
        if isinstance(e, UpstreamError) and e.is_credential_error:
            await report_error(session, TokenPoolType.VIDEO, token.id, str(e))
            transition(video, GenerationStatus.FAILED, error=str(e))
        elif video.poll_count >= MAX_POLL_ATTEMPTS:
            transition(video, GenerationStatus.FAILED, error=TIMEOUT)
        else:
            logger.warning(f"Status check for video {video.id} failed: {_failure_text(e)}")
        await session.commit()
        return video

    if status.state == "completed":
        transition(video, GenerationStatus.COMPLETED, result_url=status.video_url)
        logger.info(f"Video {video.id} completed after {video.poll_count} polls")
    elif status.state == "failed" and status.error_code == "UNSAFE":
        video.policy_error_count += 1
        if video.policy_error_count >= MAX_POLICY_RETRIES:
            transition(video, GenerationStatus.FAILED, error=POLICY_VIOLATION)
        else:
            await _relaunch(session, video, client, storage)
    elif status.state == "failed":
        transition(video, GenerationStatus.FAILED, error=status.error)
    elif status.needs_token_retry:
        await _relaunch(session, video, client, storage)
    elif video.poll_count >= MAX_POLL_ATTEMPTS:
        transition(video, GenerationStatus.FAILED, error=TIMEOUT)
        logger.warning(f"Video {video.id} timed out after {video.poll_count} polls")

    await session.commit()
    return video


async def wait_for_completion(
    session: AsyncSession,
    video: VideoHistory,
    client: Optional[VeoClient] = None,
    interval: float = POLL_INTERVAL_SECONDS,
    storage: Optional[MediaStorage] = None,
) -> VideoHistory:
    """Poll until the row is terminal (bounded by MAX_POLL_ATTEMPTS)"""
    while video.status == GenerationStatus.PROCESSING.value:
        await asyncio.sleep(interval)
        await poll_video(session, video, client, storage)
    return video


async def poll_processing_videos(
    session_factory: async_sessionmaker,
    client: Optional[VeoClient] = None,
    min_age_seconds: int = POLL_INTERVAL_SECONDS,
    limit: int = 200,
) -> int:
    """
    Scheduler tick: poll processing rows not touched in the last interval

    Rows followed by a live batch stream are refreshed by it and skipped here.

    Returns:
        Number of rows polled
    """
    cutoff = utcnow() - timedelta(seconds=min_age_seconds)
    async with session_factory() as session:
        stmt = (
            select(VideoHistory.id)
            .where(
                VideoHistory.status == GenerationStatus.PROCESSING.value,
                VideoHistory.updated_at <= cutoff,
            )
            .order_by(VideoHistory.updated_at.asc())
            .limit(limit)
        )
        video_ids = list((await session.execute(stmt)).scalars().all())

    if not video_ids:
        return 0

    semaphore = asyncio.Semaphore(BATCH_CONCURRENCY)

    async def poll_one(video_id: int) -> None:
        async with semaphore:
            async with session_factory() as session:
                video = await session.get(VideoHistory, video_id)
                if video is not None:
                    await poll_video(session, video, client)

    results = await asyncio.gather(*(poll_one(v) for v in video_ids), return_exceptions=True)
    for video_id, result in zip(video_ids, results):
        if isinstance(result, Exception):
            logger.error(f"Polling video {video_id} failed: {result}")

    logger.debug(f"Polled {len(video_ids)} processing videos")
    return len(video_ids)


# ===========================
# RETRY / REGENERATE
# ===========================


async def regenerate_video(
    session: AsyncSession,
    user: User,
    video_id: int,
    client: Optional[VeoClient] = None,
    storage: Optional[MediaStorage] = None,
) -> Optional[VideoHistory]:
    """
    Start a fresh attempt for a finished row, keeping its batch position

    The old row is hidden from history. Consumes one video of quota.

    Returns:
        New VideoHistory, or None if video not found for user

    Raises:
        InvalidTransitionError: original still pending/processing
    """
    original = await crud.get_user_video(session, user.id, video_id)
    if original is None:
        return None
    if not GenerationStatus.is_terminal(GenerationStatus(original.status)):
        raise InvalidTransitionError(original.id, original.status, "regenerate")

    new_video = await start_video_generation(
        session,
        user,
        original.prompt,
        aspect_ratio=original.aspect_ratio,
        batch_id=original.batch_id,
        scene_number=original.scene_number,
        reference_image_url=original.reference_image_url,
        end_image_url=original.end_image_url,
        title=original.title,
        client=client,
        storage=storage,
    )

    original.deleted_by_user = True
    await session.commit()
    logger.info(f"Video {original.id} regenerated as {new_video.id} (scene {original.scene_number})")
    return new_video


async def find_retry_candidates(
    session: AsyncSession,
    settings: AutoRetrySettings,
    now: datetime,
    limit: int = 50,
) -> List[VideoHistory]:
    """Failed rows under the retry cap whose delay has elapsed"""
    cutoff = now - timedelta(minutes=settings.retry_delay_minutes)
    stmt = (
        select(VideoHistory)
        .where(
            VideoHistory.status == GenerationStatus.FAILED.value,
            VideoHistory.retry_count < settings.max_retry_attempts,
            VideoHistory.deleted_by_user.is_(False),
            VideoHistory.updated_at <= cutoff,
            or_(VideoHistory.last_retry_at.is_(None), VideoHistory.last_retry_at <= cutoff),
        )
        .order_by(VideoHistory.updated_at.asc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())


async def auto_retry_failed(
    session: AsyncSession,
    client: Optional[VeoClient] = None,
    storage: Optional[MediaStorage] = None,
    now: Optional[datetime] = None,
) -> List[int]:
    """
    Re-arm eligible failed rows (failed → pending, retry_count + 1) and restart them

    Returns:
        IDs of rows that were retried
    """
    now = now or utcnow()
    settings = await crud.get_settings(session, AutoRetrySettings)
    if not settings.enable_auto_retry:
        return []

    candidates = await find_retry_candidates(session, settings, now)
    retried = []

    for video in candidates:
        transition(video, GenerationStatus.PENDING, now=now)
        await session.commit()
        retried.append(video.id)

        try:
            await launch_video(session, video, client, storage)
        except NoCapacityError:
            logger.error("Auto-retry stopped: video token pool exhausted")
            break

        logger.info(
            f"Auto-retry video {video.id}: attempt {video.retry_count}/{settings.max_retry_attempts}"
            f" -> {video.status}"
        )

    return retried


# ===========================
# IMAGES
# ===========================


async def generate_image(
    session: AsyncSession,
    user: User,
    prompt: str,
    aspect_ratio: str = "landscape",
    batch_id: Optional[str] = None,
    scene_number: Optional[int] = None,
    client: Optional[VeoClient] = None,
    storage: Optional[MediaStorage] = None,
    on_phase: Optional[Callable[[str], None]] = None,
) -> ImageHistory:
    """
    Generate one image synchronously: pending → processing → completed | failed

    Raises:
        NoCapacityError: no video tokens left (row marked failed)
    """
    client = client or get_veo_client()
    storage = storage or get_storage()

    prompt = (prompt or "").strip()
    if not prompt:
        raise ValueError("Prompt is required")

    image = await crud.create_image_history(
        session, user.id, prompt, aspect_ratio, batch_id=batch_id, scene_number=scene_number
    )

    async def call(lease: TokenLease):
        return await client.generate_image(lease.credential, prompt, aspect_ratio)

    transition(image, GenerationStatus.PROCESSING)
    await session.commit()
    if on_phase:
        on_phase("generating")

    try:
        generated, _ = await with_token_rotation(session, TokenPoolType.VIDEO, call)
        url = await storage.save_blob(generated.to_bytes(), "png", folder="images")
    except NoCapacityError as e:
        transition(image, GenerationStatus.FAILED, error=str(e))
        await session.commit()
        raise
    except ROW_ERRORS as e:
        transition(image, GenerationStatus.FAILED, error=_failure_text(e))
        await session.commit()
        return image

    transition(image, GenerationStatus.COMPLETED, result_url=url)
    await session.commit()
    return image
