"""
Unit tests for generation lifecycle: status machine, start, poll, retry
"""

import asyncio
from datetime import datetime, timedelta, UTC

import aiohttp
import pytest

from src.core.enums import GenerationStatus, PlanType
from src.core.exceptions import (
    InvalidTransitionError,
    NoCapacityError,
    QuotaExceededError,
    UpstreamError,
)
from src.database import crud
from src.database.models import ApiToken, AutoRetrySettings, VideoHistory
from src.services import generation_service
from src.services.generation_service import transition
from src.services.veo_service import VeoClient, VideoStatus
from src.tasks.generation_scheduler import GenerationScheduler
from src.utils.error_categories import NETWORK_ERROR, POLICY_VIOLATION, TIMEOUT, TOKEN_EXPIRED


async def _start(db_session, user, fake_veo, storage, prompt="A cat surfing at sunset", **kwargs):
    return await generation_service.start_video_generation(
        db_session, user, prompt, client=fake_veo, storage=storage, **kwargs
    )


# ===========================
# STATUS MACHINE
# ===========================


def test_allowed_transitions():
    """Only the documented moves are legal"""
    assert GenerationStatus.can_transition(GenerationStatus.PENDING, GenerationStatus.PROCESSING)
    assert GenerationStatus.can_transition(GenerationStatus.PROCESSING, GenerationStatus.COMPLETED)
    assert GenerationStatus.can_transition(GenerationStatus.FAILED, GenerationStatus.PENDING)
    assert not GenerationStatus.can_transition(GenerationStatus.COMPLETED, GenerationStatus.PENDING)
    assert not GenerationStatus.can_transition(GenerationStatus.COMPLETED, GenerationStatus.FAILED)
    assert not GenerationStatus.can_transition(GenerationStatus.PENDING, GenerationStatus.COMPLETED)


def test_completed_row_is_final():
    video = VideoHistory(id=1, prompt="p", status=GenerationStatus.COMPLETED.value, video_url="u")

    with pytest.raises(InvalidTransitionError):
        transition(video, GenerationStatus.FAILED, error="late failure")

    assert video.video_url == "u"


def test_completed_requires_url():
    video = VideoHistory(id=1, prompt="p", status=GenerationStatus.PROCESSING.value)

    with pytest.raises(ValueError):
        transition(video, GenerationStatus.COMPLETED)


def test_failed_stores_category_and_clears_url():
    video = VideoHistory(id=1, prompt="p", status=GenerationStatus.PROCESSING.value, video_url="stale")

    transition(video, GenerationStatus.FAILED, error="Request blocked by SAFETY filter")

    assert video.status == "failed"
    assert video.video_url is None
    assert video.error_message == POLICY_VIOLATION


def test_retry_resets_attempt_handles():
    video = VideoHistory(
        id=1,
        prompt="p",
        status=GenerationStatus.FAILED.value,
        error_message="Server error",
        operation_name="operations/1",
        token_id=3,
        retry_count=1,
        poll_count=12,
        policy_error_count=2,
    )

    transition(video, GenerationStatus.PENDING)

    assert video.status == "pending"
    assert video.retry_count == 2
    assert video.operation_name is None
    assert video.token_id is None
    assert video.poll_count == 0
    assert video.error_message is None
    assert video.last_retry_at is not None


# ===========================
# START
# ===========================


@pytest.mark.asyncio
async def test_start_video_processing(db_session, scale_user, seed_tokens, fake_veo, storage):
    tokens = await seed_tokens(count=1)

    video = await _start(db_session, scale_user, fake_veo, storage, batch_id="b1", scene_number=3)

    assert video.status == "processing"
    assert video.operation_name == "operations/op-1"
    assert video.token_id == tokens[0].id
    assert video.batch_id == "b1"
    assert video.scene_number == 3
    assert fake_veo.start_calls[0]["api_key"] == "token-1"
    await db_session.refresh(scale_user)
    assert scale_user.daily_video_count == 1


@pytest.mark.asyncio
async def test_start_rejected_marks_failed(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    fake_veo.start_error = UpstreamError("400 - INVALID_ARGUMENT: prompt rejected", status=400)

    video = await _start(db_session, scale_user, fake_veo, storage)

    assert video.status == "failed"
    assert video.error_message == POLICY_VIOLATION


@pytest.mark.asyncio
async def test_start_network_error_marks_failed(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    fake_veo.start_error = aiohttp.ClientConnectionError("Cannot connect to host")

    video = await _start(db_session, scale_user, fake_veo, storage)

    assert video.status == "failed"
    assert video.error_message == NETWORK_ERROR


@pytest.mark.asyncio
async def test_start_upstream_timeout_marks_failed(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    fake_veo.start_error = asyncio.TimeoutError()

    video = await _start(db_session, scale_user, fake_veo, storage)

    assert video.status == "failed"
    assert video.error_message == TIMEOUT


@pytest.mark.asyncio
async def test_client_wraps_transport_failures(monkeypatch):
    """Exhausted transport retries reach callers as non-credential UpstreamError"""
    client = VeoClient(base_url="http://upstream.invalid")

    async def refuse(path, api_key, payload):
        raise aiohttp.ClientConnectionError("Cannot connect to host")

    monkeypatch.setattr(client, "_send", refuse)

    with pytest.raises(UpstreamError) as exc_info:
        await client.start_video("token-1", "prompt", "landscape", "scene-1")

    assert exc_info.value.status is None
    assert not exc_info.value.is_credential_error
    assert "Network" in str(exc_info.value)


@pytest.mark.asyncio
async def test_start_without_tokens(db_session, scale_user, fake_veo, storage):
    """Exhausted pool fails the row and surfaces NoCapacityError"""
    with pytest.raises(NoCapacityError):
        await _start(db_session, scale_user, fake_veo, storage)

    videos = await crud.list_video_history(db_session, scale_user.id)
    assert len(videos) == 1
    assert videos[0].status == "failed"


@pytest.mark.asyncio
async def test_start_denied_by_quota(db_session, free_user, seed_tokens, fake_veo, storage):
    """Denied requests create no history row"""
    await seed_tokens(count=1)

    with pytest.raises(QuotaExceededError):
        await _start(db_session, free_user, fake_veo, storage)

    assert await crud.list_video_history(db_session, free_user.id) == []
    assert fake_veo.start_calls == []


@pytest.mark.asyncio
async def test_start_rejects_empty_prompt(db_session, scale_user, fake_veo, storage):
    with pytest.raises(ValueError):
        await _start(db_session, scale_user, fake_veo, storage, prompt="   ")


@pytest.mark.asyncio
async def test_start_with_frames_uploads_media(db_session, empire_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    start_url = await storage.save_blob(b"\x89PNG start", "png", folder="uploads")
    end_url = await storage.save_blob(b"\x89PNG end", "png", folder="uploads")

    video = await _start(
        db_session, empire_user, fake_veo, storage,
        reference_image_url=start_url, end_image_url=end_url,
    )

    assert video.status == "processing"
    assert [mime for _, mime in fake_veo.uploads] == ["image/png", "image/png"]
    assert fake_veo.start_calls[0]["start_media_id"] == "media-1"
    assert fake_veo.start_calls[0]["end_media_id"] == "media-2"


# ===========================
# POLL
# ===========================


@pytest.mark.asyncio
async def test_poll_completes(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)
    fake_veo.status_queue = [VideoStatus(state="pending")]

    await generation_service.poll_video(db_session, video, fake_veo, storage)
    assert video.status == "processing"

    await generation_service.poll_video(db_session, video, fake_veo, storage)
    assert video.status == "completed"
    assert video.video_url == "https://cdn.example/video.mp4"
    assert video.poll_count == 2


@pytest.mark.asyncio
async def test_poll_terminal_row_is_untouched(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)
    await generation_service.poll_video(db_session, video, fake_veo, storage)

    await generation_service.poll_video(db_session, video, fake_veo, storage)

    assert len(fake_veo.status_calls) == 1


@pytest.mark.asyncio
async def test_poll_upstream_failure(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)
    fake_veo.status_queue = [VideoStatus(state="failed", error="Request timed out upstream")]

    await generation_service.poll_video(db_session, video, fake_veo, storage)

    assert video.status == "failed"
    assert video.error_message == TIMEOUT


@pytest.mark.asyncio
async def test_poll_times_out(db_session, scale_user, seed_tokens, fake_veo, storage, monkeypatch):
    monkeypatch.setattr(generation_service, "MAX_POLL_ATTEMPTS", 2)
    await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)
    fake_veo.status_queue = [VideoStatus(state="pending"), VideoStatus(state="pending")]

    await generation_service.poll_video(db_session, video, fake_veo, storage)
    await generation_service.poll_video(db_session, video, fake_veo, storage)

    assert video.status == "failed"
    assert video.error_message == TIMEOUT


@pytest.mark.asyncio
async def test_poll_network_errors_count_towards_cap(db_session, scale_user, seed_tokens, fake_veo, storage, monkeypatch):
    monkeypatch.setattr(generation_service, "MAX_POLL_ATTEMPTS", 3)
    await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)
    fake_veo.status_queue = [
        asyncio.TimeoutError(),
        aiohttp.ClientConnectionError("Connection reset by peer"),
        asyncio.TimeoutError(),
    ]

    await generation_service.poll_video(db_session, video, fake_veo, storage)
    await generation_service.poll_video(db_session, video, fake_veo, storage)

    await db_session.refresh(video)
    assert video.status == "processing"
    assert video.poll_count == 2

    await generation_service.poll_video(db_session, video, fake_veo, storage)

    assert video.status == "failed"
    assert video.error_message == TIMEOUT


@pytest.mark.asyncio
async def test_poll_deleted_token_fails(db_session, scale_user, seed_tokens, fake_veo, storage):
    tokens = await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)
    await db_session.delete(await db_session.get(ApiToken, tokens[0].id))
    await db_session.commit()

    await generation_service.poll_video(db_session, video, fake_veo, storage)

    assert video.status == "failed"
    assert video.error_message == TOKEN_EXPIRED


@pytest.mark.asyncio
async def test_poll_credential_error_reports_token(db_session, scale_user, seed_tokens, fake_veo, storage):
    tokens = await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)
    fake_veo.status_queue = [UpstreamError("401 - unauthorized", status=401)]

    await generation_service.poll_video(db_session, video, fake_veo, storage)

    assert video.status == "failed"
    token = await db_session.get(ApiToken, tokens[0].id)
    await db_session.refresh(token)
    assert token.error_count == 1


@pytest.mark.asyncio
async def test_poll_high_traffic_relaunches_on_other_token(db_session, scale_user, seed_tokens, fake_veo, storage):
    tokens = await seed_tokens(count=2)
    video = await _start(db_session, scale_user, fake_veo, storage)
    first_token = video.token_id
    fake_veo.status_queue = [
        VideoStatus(state="pending", error="PUBLIC_ERROR_HIGH_TRAFFIC", error_code="HIGH_TRAFFIC", needs_token_retry=True)
    ]

    await generation_service.poll_video(db_session, video, fake_veo, storage)

    assert video.status == "processing"
    assert video.token_id != first_token
    assert video.token_id in {t.id for t in tokens}
    assert video.poll_count == 0
    assert len(fake_veo.start_calls) == 2


@pytest.mark.asyncio
async def test_unsafe_content_fails_after_repeated_policy_errors(
    db_session, scale_user, seed_tokens, fake_veo, storage, monkeypatch
):
    monkeypatch.setattr(generation_service, "MAX_POLICY_RETRIES", 2)
    await seed_tokens(count=2)
    video = await _start(db_session, scale_user, fake_veo, storage)
    unsafe = VideoStatus(state="failed", error="PUBLIC_ERROR_UNSAFE_GENERATION", error_code="UNSAFE")
    fake_veo.status_queue = [unsafe, unsafe]

    await generation_service.poll_video(db_session, video, fake_veo, storage)
    assert video.status == "processing"

    await generation_service.poll_video(db_session, video, fake_veo, storage)
    assert video.status == "failed"
    assert video.policy_error_count == 2
    assert video.error_message == POLICY_VIOLATION


@pytest.mark.asyncio
async def test_poll_processing_videos_skips_fresh_rows(session_factory, db_session, scale_user, seed_tokens, fake_veo, storage):
    """Scheduler tick only polls rows idle longer than the interval"""
    await seed_tokens(count=1)
    stale = await _start(db_session, scale_user, fake_veo, storage, prompt="stale")
    fresh = await _start(db_session, scale_user, fake_veo, storage, prompt="fresh")
    stale.updated_at = datetime.now(UTC) - timedelta(minutes=5)
    await db_session.commit()

    polled = await generation_service.poll_processing_videos(session_factory, fake_veo, min_age_seconds=60)

    assert polled == 1
    await db_session.refresh(stale)
    await db_session.refresh(fresh)
    assert stale.status == "completed"
    assert fresh.status == "processing"


@pytest.mark.asyncio
async def test_wait_for_completion(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)
    fake_veo.status_queue = [VideoStatus(state="pending"), VideoStatus(state="pending")]

    await generation_service.wait_for_completion(db_session, video, fake_veo, interval=0, storage=storage)

    assert video.status == "completed"
    assert len(fake_veo.status_calls) == 3


# ===========================
# REGENERATE / AUTO-RETRY
# ===========================


@pytest.mark.asyncio
async def test_regenerate_keeps_position_and_hides_original(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    fake_veo.start_error = UpstreamError("500 - server error", status=500)
    original = await _start(db_session, scale_user, fake_veo, storage, batch_id="b9", scene_number=4)
    assert original.status == "failed"
    fake_veo.start_error = None

    new_video = await generation_service.regenerate_video(db_session, scale_user, original.id, fake_veo, storage)

    assert new_video.id != original.id
    assert new_video.status == "processing"
    assert new_video.batch_id == "b9"
    assert new_video.scene_number == 4
    await db_session.refresh(original)
    assert original.deleted_by_user
    visible = await crud.list_video_history(db_session, scale_user.id, batch_id="b9")
    assert [v.id for v in visible] == [new_video.id]


@pytest.mark.asyncio
async def test_regenerate_rejects_running_video(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)

    with pytest.raises(InvalidTransitionError):
        await generation_service.regenerate_video(db_session, scale_user, video.id, fake_veo, storage)


@pytest.mark.asyncio
async def test_regenerate_other_users_video(db_session, scale_user, make_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)
    intruder = await make_user("intruder", plan_type=PlanType.SCALE)

    assert await generation_service.regenerate_video(db_session, intruder, video.id, fake_veo, storage) is None


@pytest.mark.asyncio
async def test_auto_retry_respects_settings(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    fake_veo.start_error = UpstreamError("503 - server unavailable", status=503)
    video = await _start(db_session, scale_user, fake_veo, storage)
    assert video.status == "failed"
    fake_veo.start_error = None
    later = datetime.now(UTC) + timedelta(minutes=10)

    # Disabled by default
    assert await generation_service.auto_retry_failed(db_session, fake_veo, storage, now=later) == []

    await crud.update_settings(
        db_session, AutoRetrySettings, enable_auto_retry=True, max_retry_attempts=1, retry_delay_minutes=5
    )

    # Delay not yet elapsed
    assert await generation_service.auto_retry_failed(db_session, fake_veo, storage) == []

    retried = await generation_service.auto_retry_failed(db_session, fake_veo, storage, now=later)
    assert retried == [video.id]
    await db_session.refresh(video)
    assert video.status == "processing"
    assert video.retry_count == 1


@pytest.mark.asyncio
async def test_auto_retry_stops_at_cap(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    fake_veo.start_error = UpstreamError("503 - server unavailable", status=503)
    video = await _start(db_session, scale_user, fake_veo, storage)
    await crud.update_settings(
        db_session, AutoRetrySettings, enable_auto_retry=True, max_retry_attempts=1, retry_delay_minutes=1
    )

    first = await generation_service.auto_retry_failed(
        db_session, fake_veo, storage, now=datetime.now(UTC) + timedelta(minutes=2)
    )
    second = await generation_service.auto_retry_failed(
        db_session, fake_veo, storage, now=datetime.now(UTC) + timedelta(minutes=10)
    )

    assert first == [video.id]
    assert second == []
    await db_session.refresh(video)
    assert video.status == "failed"
    assert video.retry_count == 1


@pytest.mark.asyncio
async def test_auto_retry_network_error_leaves_row_failed(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    fake_veo.start_error = UpstreamError("503 - server unavailable", status=503)
    video = await _start(db_session, scale_user, fake_veo, storage)
    await crud.update_settings(
        db_session, AutoRetrySettings, enable_auto_retry=True, max_retry_attempts=3, retry_delay_minutes=1
    )
    fake_veo.start_error = aiohttp.ServerDisconnectedError()

    retried = await generation_service.auto_retry_failed(
        db_session, fake_veo, storage, now=datetime.now(UTC) + timedelta(minutes=2)
    )

    assert retried == [video.id]
    await db_session.refresh(video)
    assert video.status == "failed"
    assert video.error_message == NETWORK_ERROR


@pytest.mark.asyncio
async def test_scheduler_jobs_use_injected_factory(session_factory, db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    video = await _start(db_session, scale_user, fake_veo, storage)
    video.updated_at = datetime.now(UTC) - timedelta(minutes=5)
    await db_session.commit()

    scheduler = GenerationScheduler(session_factory=session_factory, client=fake_veo, storage=storage, poll_interval=15)

    assert await scheduler._job_poll() == 1
    assert await scheduler._job_auto_retry() == []
    assert await scheduler._job_expire_plans() == 0
    assert not scheduler.running


# ===========================
# IMAGES
# ===========================


@pytest.mark.asyncio
async def test_generate_image_stores_blob(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    phases = []

    image = await generation_service.generate_image(
        db_session, scale_user, "A red fox", client=fake_veo, storage=storage, on_phase=phases.append
    )

    assert image.status == "completed"
    assert image.image_url.startswith("/media/images/")
    assert phases == ["generating"]
    assert (await storage.fetch_blob(image.image_url)).startswith(b"\x89PNG")


@pytest.mark.asyncio
async def test_generate_image_failure_is_categorized(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    fake_veo.failing_image_prompts = {"bad"}

    image = await generation_service.generate_image(db_session, scale_user, "bad", client=fake_veo, storage=storage)

    assert image.status == "failed"
    assert image.image_url is None
    assert image.error_message == POLICY_VIOLATION


@pytest.mark.asyncio
async def test_generate_image_network_error_marks_failed(db_session, scale_user, seed_tokens, fake_veo, storage):
    await seed_tokens(count=1)
    fake_veo.image_error = aiohttp.ClientConnectionError("Cannot connect to host")

    image = await generation_service.generate_image(db_session, scale_user, "A red fox", client=fake_veo, storage=storage)

    assert image.status == "failed"
    assert image.error_message == NETWORK_ERROR
