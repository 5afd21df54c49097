"""
CRUD operations for VEO3 Studio backend

Async database operations using SQLAlchemy 2.0
"""

import secrets
import string
from datetime import timedelta
from typing import List, Optional, Type, TypeVar

from loguru import logger
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.affiliate_config import UID_PREFIX, UID_LENGTH
from config.limits import get_plan_config
from src.core.enums import PlanType, PlanStatus, GenerationStatus
from src.database.models import (
    Base,
    User,
    VideoHistory,
    ImageHistory,
    CommunityVoice,
    CommunityVoiceLike,
    TopVoice,
)
from src.utils.passwords import hash_password
from src.utils.time_utils import utcnow

ModelT = TypeVar("ModelT", bound=Base)


# ===========================
# USER OPERATIONS
# ===========================


async def generate_unique_uid(session: AsyncSession) -> str:
    """
    Generate unique referral code

    Returns:
        Code like VEO-7K2QXA
    """
    alphabet = string.ascii_uppercase + string.digits

    while True:
        uid = UID_PREFIX + "".join(secrets.choice(alphabet) for _ in range(UID_LENGTH))

        stmt = select(User.id).where(User.uid == uid)
        result = await session.execute(stmt)
        if result.scalar_one_or_none() is None:
            return uid


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[User]:
    return await session.get(User, user_id)


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    stmt = select(User).where(func.lower(User.username) == username.strip().lower())
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_by_uid(session: AsyncSession, uid: str) -> Optional[User]:
    stmt = select(User).where(User.uid == uid.strip().upper())
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    username: str,
    password: str,
    plan_type: PlanType = PlanType.FREE,
    is_admin: bool = False,
    referred_by: Optional[str] = None,
    plan_days: Optional[int] = None,
    daily_video_limit: Optional[int] = None,
    commit: bool = True,
) -> User:
    """
    Create new user

    Args:
        session: Database session
        username: Unique login name
        password: Plain password (hashed here)
        plan_type: Initial plan
        is_admin: Admin flag
        referred_by: Referrer uid (validated, unknown codes are dropped)
        plan_days: Plan duration (defaults to plan config)
        daily_video_limit: Per-user override
        commit: Commit immediately (False when caller owns the transaction)

    Returns:
        Created User

    Raises:
        ValueError: Username already exists
    """
    username = username.strip()
    if await get_user_by_username(session, username):
        raise ValueError("Username already exists")

    referrer_uid = None
    if referred_by:
        referrer = await get_user_by_uid(session, referred_by)
        if referrer:
            referrer_uid = referrer.uid
        else:
            logger.warning(f"Unknown referral code '{referred_by}' for new user {username}")

    user = User(
        username=username,
        password_hash=hash_password(password),
        is_admin=is_admin,
        uid=await generate_unique_uid(session),
        referred_by=referrer_uid,
        daily_video_limit=daily_video_limit,
    )
    apply_plan(user, PlanType(plan_type), plan_days)

    session.add(user)
    if commit:
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise ValueError("Username already exists")
        await session.refresh(user)
    else:
        await session.flush()

    logger.info(f"Created user {user.username} (id={user.id}, plan={user.plan_type}, uid={user.uid})")
    return user


def apply_plan(user: User, plan_type: PlanType, days: Optional[int] = None) -> None:
    """
    Set plan fields in place (no commit)

    Free plan never expires; paid plans run `days` (or the plan default) from now.
    """
    now = utcnow()
    user.plan_type = plan_type.value
    user.plan_status = PlanStatus.ACTIVE.value
    user.plan_start_date = now

    duration = days if days is not None else get_plan_config(plan_type)["duration_days"]
    if plan_type == PlanType.FREE or not duration:
        user.plan_expiry = None
    else:
        user.plan_expiry = now + timedelta(days=duration)


async def set_user_plan(
    session: AsyncSession,
    user: User,
    plan_type: PlanType,
    days: Optional[int] = None,
    daily_video_limit: Optional[int] = None,
) -> User:
    """
    Activate or change a user's plan

    Args:
        session: Database session
        user: User to update
        plan_type: New plan
        days: Duration override
        daily_video_limit: Per-user override (enterprise custom limit)

    Returns:
        Updated User
    """
    apply_plan(user, PlanType(plan_type), days)
    if daily_video_limit is not None:
        user.daily_video_limit = daily_video_limit or None

    await session.commit()
    await session.refresh(user)

    logger.info(f"User {user.id} plan set to {user.plan_type} (expiry={user.plan_expiry})")
    return user


async def set_user_active(session: AsyncSession, user: User, is_active: bool) -> User:
    user.is_account_active = is_active
    await session.commit()
    await session.refresh(user)
    return user


async def list_users(
    session: AsyncSession,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[User]:
    """List users, newest first, optional username/uid search"""
    stmt = select(User).order_by(User.created_at.desc()).limit(limit).offset(offset)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.username.ilike(pattern), User.uid.ilike(pattern)))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_users_by_plan(session: AsyncSession) -> dict:
    stmt = select(User.plan_type, func.count(User.id)).group_by(User.plan_type)
    result = await session.execute(stmt)
    return {plan: count for plan, count in result.all()}


# ===========================
# SETTINGS SINGLETONS
# ===========================


async def get_settings(session: AsyncSession, model: Type[ModelT]) -> ModelT:
    """
    Get singleton settings row (id=1), creating it with column defaults

    Args:
        session: Database session
        model: TokenSettings, AutoRetrySettings, ToolMaintenance or AffiliateSettings
    """
    row = await session.get(model, 1)
    if row is None:
        row = model(id=1)
        session.add(row)
        try:
            await session.commit()
        except IntegrityError:
            # Created concurrently
            await session.rollback()
        row = await session.get(model, 1)
    return row


async def update_settings(session: AsyncSession, model: Type[ModelT], **fields) -> ModelT:
    """Update singleton settings row; None values are ignored"""
    row = await get_settings(session, model)
    for key, value in fields.items():
        if value is None:
            continue
        if not hasattr(row, key):
            raise ValueError(f"Unknown setting: {key}")
        setattr(row, key, value)

    await session.commit()
    await session.refresh(row)
    logger.info(f"{model.__name__} updated: {', '.join(k for k, v in fields.items() if v is not None)}")
    return row


# ===========================
# VIDEO HISTORY
# ===========================


async def create_video_history(
    session: AsyncSession,
    user_id: int,
    prompt: str,
    aspect_ratio: str = "landscape",
    batch_id: Optional[str] = None,
    scene_number: Optional[int] = None,
    title: Optional[str] = None,
    reference_image_url: Optional[str] = None,
    end_image_url: Optional[str] = None,
) -> VideoHistory:
    """Create a pending history row"""
    video = VideoHistory(
        user_id=user_id,
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        status=GenerationStatus.PENDING.value,
        batch_id=batch_id,
        scene_number=scene_number,
        title=title,
        reference_image_url=reference_image_url,
        end_image_url=end_image_url,
    )
    session.add(video)
    await session.commit()
    await session.refresh(video)
    return video


async def get_video(session: AsyncSession, video_id: int) -> Optional[VideoHistory]:
    return await session.get(VideoHistory, video_id)


async def get_user_video(session: AsyncSession, user_id: int, video_id: int) -> Optional[VideoHistory]:
    """Get video owned by user (None for other users' rows)"""
    stmt = select(VideoHistory).where(
        VideoHistory.id == video_id,
        VideoHistory.user_id == user_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_video_history(
    session: AsyncSession,
    user_id: int,
    batch_id: Optional[str] = None,
    status: Optional[GenerationStatus] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[VideoHistory]:
    """
    List user's visible videos

    Batch listings are ordered by scene number, others newest first.
    """
    stmt = select(VideoHistory).where(
        VideoHistory.user_id == user_id,
        VideoHistory.deleted_by_user.is_(False),
    )
    if status is not None:
        stmt = stmt.where(VideoHistory.status == status.value)
    if batch_id:
        stmt = stmt.where(VideoHistory.batch_id == batch_id).order_by(
            VideoHistory.scene_number.asc(), VideoHistory.id.asc()
        )
    else:
        stmt = stmt.order_by(VideoHistory.created_at.desc(), VideoHistory.id.desc())

    result = await session.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())


async def soft_delete_video(session: AsyncSession, video: VideoHistory) -> None:
    video.deleted_by_user = True
    await session.commit()
    logger.info(f"Video {video.id} hidden by user {video.user_id}")


async def count_videos_by_status(session: AsyncSession) -> dict:
    stmt = select(VideoHistory.status, func.count(VideoHistory.id)).group_by(VideoHistory.status)
    result = await session.execute(stmt)
    return {status: count for status, count in result.all()}


# ===========================
# IMAGE HISTORY
# ===========================


async def create_image_history(
    session: AsyncSession,
    user_id: int,
    prompt: str,
    aspect_ratio: str = "landscape",
    batch_id: Optional[str] = None,
    scene_number: Optional[int] = None,
) -> ImageHistory:
    image = ImageHistory(
        user_id=user_id,
        prompt=prompt,
        aspect_ratio=aspect_ratio,
        status=GenerationStatus.PENDING.value,
        batch_id=batch_id,
        scene_number=scene_number,
    )
    session.add(image)
    await session.commit()
    await session.refresh(image)
    return image


async def list_image_history(
    session: AsyncSession,
    user_id: int,
    batch_id: Optional[str] = None,
    limit: int = 100,
) -> List[ImageHistory]:
    stmt = select(ImageHistory).where(
        ImageHistory.user_id == user_id,
        ImageHistory.deleted_by_user.is_(False),
    )
    if batch_id:
        stmt = stmt.where(ImageHistory.batch_id == batch_id).order_by(ImageHistory.scene_number.asc())
    else:
        stmt = stmt.order_by(ImageHistory.created_at.desc(), ImageHistory.id.desc())
    result = await session.execute(stmt.limit(limit))
    return list(result.scalars().all())


async def get_user_image(session: AsyncSession, user_id: int, image_id: int) -> Optional[ImageHistory]:
    stmt = select(ImageHistory).where(ImageHistory.id == image_id, ImageHistory.user_id == user_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def soft_delete_image(session: AsyncSession, image: ImageHistory) -> None:
    image.deleted_by_user = True
    await session.commit()


# ===========================
# VOICES
# ===========================


async def create_community_voice(
    session: AsyncSession,
    creator: User,
    name: str,
    voice_id: str,
    description: Optional[str] = None,
    provider: str = "cartesia",
    language: str = "en",
    demo_audio_url: Optional[str] = None,
) -> CommunityVoice:
    voice = CommunityVoice(
        name=name,
        voice_id=voice_id,
        description=description,
        provider=provider,
        language=language,
        demo_audio_url=demo_audio_url,
        creator_id=creator.id,
        creator_name=creator.username,
    )
    session.add(voice)
    await session.commit()
    await session.refresh(voice)
    logger.info(f"Community voice {voice.id} '{name}' shared by user {creator.id}")
    return voice


async def list_community_voices(session: AsyncSession, limit: int = 100) -> List[CommunityVoice]:
    stmt = (
        select(CommunityVoice)
        .order_by(CommunityVoice.likes_count.desc(), CommunityVoice.created_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_liked_voice_ids(session: AsyncSession, user_id: int) -> set:
    stmt = select(CommunityVoiceLike.voice_id).where(CommunityVoiceLike.user_id == user_id)
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def toggle_voice_like(session: AsyncSession, voice: CommunityVoice, user_id: int) -> bool:
    """
    Like or unlike a community voice

    Returns:
        True if liked after the call, False if unliked
    """
    stmt = select(CommunityVoiceLike).where(
        CommunityVoiceLike.voice_id == voice.id,
        CommunityVoiceLike.user_id == user_id,
    )
    existing = (await session.execute(stmt)).scalar_one_or_none()

    if existing:
        await session.delete(existing)
        voice.likes_count = max(0, voice.likes_count - 1)
        liked = False
    else:
        session.add(CommunityVoiceLike(voice_id=voice.id, user_id=user_id))
        voice.likes_count += 1
        liked = True

    await session.commit()
    return liked


async def delete_community_voice(session: AsyncSession, voice: CommunityVoice, user: User) -> None:
    """
    Delete community voice (creator or admin only)

    Raises:
        PermissionError: user is neither creator nor admin
    """
    if voice.creator_id != user.id and not user.is_admin:
        raise PermissionError("Only the creator or an admin can delete this voice")

    await session.delete(voice)
    await session.commit()
    logger.info(f"Community voice {voice.id} deleted by user {user.id}")


async def list_top_voices(session: AsyncSession) -> List[TopVoice]:
    stmt = select(TopVoice).order_by(TopVoice.sort_order.asc(), TopVoice.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())
