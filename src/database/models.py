"""
Database models for VEO3 Studio backend

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, date, UTC
from typing import Optional

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    Date,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.core.enums import (
    PlanType,
    PlanStatus,
    GenerationStatus,
    WithdrawalStatus,
    EarningStatus,
)


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


def utcnow() -> datetime:
    return datetime.now(UTC)


# ===========================
# USERS
# ===========================


class User(Base):
    """
    User model - login, plan, quotas and affiliate state

    Plan limits are resolved at request time (see limit_manager), the
    columns here only hold counters and per-user overrides.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    username: Mapped[str] = mapped_column(
        String(100), unique=True, index=True, nullable=False, comment="Login name"
    )
    password_hash: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="bcrypt hash"
    )
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_account_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False, comment="Disabled accounts cannot log in"
    )

    # Plan
    plan_type: Mapped[str] = mapped_column(
        String(20),
        default=PlanType.FREE.value,
        nullable=False,
        index=True,
        comment="Plan: free, scale, empire, enterprise",
    )
    plan_status: Mapped[str] = mapped_column(
        String(20),
        default=PlanStatus.ACTIVE.value,
        nullable=False,
        comment="Plan status: active, expired, cancelled",
    )
    plan_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    plan_expiry: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True, comment="Plan end (UTC)"
    )

    # Daily video quota
    daily_video_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_video_limit: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="Per-user override (null/0 = plan default)"
    )
    daily_reset_date: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True, comment="Date the daily counter belongs to"
    )

    # Voice quota (rolling window)
    voice_characters_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    voice_characters_reset_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="End of current voice window"
    )

    # Bulk overrides (null = plan default)
    bulk_max_batch: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bulk_delay_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bulk_max_prompts: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Affiliate
    uid: Mapped[str] = mapped_column(
        String(20), unique=True, index=True, nullable=False, comment="Referral code VEO-XXXXXX"
    )
    referred_by: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True, index=True, comment="Referrer uid"
    )
    affiliate_balance: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Affiliate balance (PKR)"
    )
    total_referrals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # 2FA
    two_factor_secret: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    videos = relationship("VideoHistory", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username}, plan={self.plan_type})>"


# ===========================
# TOKEN POOLS
# ===========================


class ApiToken(Base):
    """Video/image generation bearer token"""

    __tablename__ = "api_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    request_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ApiToken(id={self.id}, label={self.label}, active={self.is_active})>"


class CartesiaToken(Base):
    """Cartesia TTS key, metered in characters"""

    __tablename__ = "cartesia_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    api_key: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    characters_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    characters_limit: Mapped[int] = mapped_column(Integer, default=20000, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ZyphraToken(Base):
    """Zyphra TTS key, metered in characters and minutes"""

    __tablename__ = "zyphra_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    api_key: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    characters_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    characters_limit: Mapped[int] = mapped_column(Integer, default=20000, nullable=False)
    minutes_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    minutes_limit: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class FlowCookie(Base):
    """Flow session cookie used for image generation"""

    __tablename__ = "flow_cookies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cookie_data: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    request_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fail_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expired_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class TokenSettings(Base):
    """Singleton row (id=1) - rotation policy"""

    __tablename__ = "token_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rotation_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_requests_per_token: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    max_error_count: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    videos_per_batch: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    batch_delay_seconds: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    next_rotation_index: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Round-robin cursor over active video tokens"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ===========================
# HISTORY
# ===========================


class VideoHistory(Base):
    """
    One video generation attempt

    Status flow: pending → processing → completed | failed,
    failed → pending only through retry.
    """

    __tablename__ = "video_history"
    __table_args__ = (
        Index("ix_video_history_user_created", "user_id", "created_at"),
        Index("ix_video_history_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    aspect_ratio: Mapped[str] = mapped_column(String(20), default="landscape", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=GenerationStatus.PENDING.value,
        nullable=False,
        comment="pending, processing, completed, failed",
    )
    video_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Upstream correlation
    operation_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    scene_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    token_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("api_tokens.id", ondelete="SET NULL"), nullable=True
    )
    poll_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    policy_error_count: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Unsafe-content responses seen while polling"
    )

    # Retry
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Batch
    batch_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    scene_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Image-to-video / storyboard frames
    reference_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    end_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    deleted_by_user: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    user = relationship("User", back_populates="videos")

    def __repr__(self) -> str:
        return f"<VideoHistory(id={self.id}, user_id={self.user_id}, status={self.status})>"


class ImageHistory(Base):
    """One image generation attempt (synchronous upstream)"""

    __tablename__ = "image_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    aspect_ratio: Mapped[str] = mapped_column(String(20), default="landscape", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=GenerationStatus.PENDING.value, nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    batch_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    scene_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    deleted_by_user: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ===========================
# SETTINGS (singletons, id=1)
# ===========================


class AutoRetrySettings(Base):
    """Auto-retry policy for failed videos"""

    __tablename__ = "auto_retry_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    enable_auto_retry: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_retry_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False, comment="1-10")
    retry_delay_minutes: Mapped[int] = mapped_column(Integer, default=5, nullable=False, comment="1-60")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class ToolMaintenance(Base):
    """Per-tool availability switches (True = available)"""

    __tablename__ = "tool_maintenance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    veo_generator_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    bulk_generator_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    text_to_image_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    image_to_video_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    script_creator_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    character_consistency_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    text_to_voice_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    community_voices_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    script_to_frames_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class AffiliateSettings(Base):
    """Affiliate program amounts (PKR)"""

    __tablename__ = "affiliate_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    empire_earning: Mapped[int] = mapped_column(Integer, default=300, nullable=False)
    scale_earning: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    empire_renewal_earning: Mapped[int] = mapped_column(Integer, default=150, nullable=False)
    scale_renewal_earning: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    min_withdrawal: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ===========================
# AFFILIATE LEDGER
# ===========================


class AffiliateEarning(Base):
    """
    Immutable earning row - one per qualifying purchase/renewal

    (referred_user_id, transaction_id) is unique so a replayed purchase
    event cannot credit twice.
    """

    __tablename__ = "affiliate_earnings"
    __table_args__ = (
        UniqueConstraint("referred_user_id", "transaction_id", name="uq_affiliate_earning_event"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referrer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    referred_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, comment="PKR")
    is_first_time: Mapped[bool] = mapped_column(Boolean, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=EarningStatus.CREDITED.value, nullable=False)
    transaction_id: Mapped[str] = mapped_column(
        String(100), nullable=False, comment="Purchase/renewal event id (dedupe key)"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AffiliateEarning(id={self.id}, referrer={self.referrer_id}, "
            f"referred={self.referred_user_id}, amount={self.amount})>"
        )


class AffiliateWithdrawal(Base):
    """Withdrawal request: pending → approved | rejected (admin only)"""

    __tablename__ = "affiliate_withdrawals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    bank_name: Mapped[str] = mapped_column(String(100), nullable=False)
    account_number: Mapped[str] = mapped_column(String(64), nullable=False)
    account_holder_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=WithdrawalStatus.PENDING.value, nullable=False, index=True
    )
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ===========================
# RESELLERS
# ===========================


class Reseller(Base):
    """Reseller account with a prepaid credit balance"""

    __tablename__ = "resellers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    credit_balance: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Cached balance; ledger is authoritative"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    ledger = relationship(
        "ResellerCreditLedger",
        back_populates="reseller",
        cascade="all, delete-orphan",
        order_by="ResellerCreditLedger.id",
    )

    def __repr__(self) -> str:
        return f"<Reseller(id={self.id}, username={self.username}, credits={self.credit_balance})>"


class ResellerCreditLedger(Base):
    """Immutable credit movement with resulting balance"""

    __tablename__ = "reseller_credit_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reseller_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("resellers.id", ondelete="CASCADE"), index=True, nullable=False
    )
    credit_change: Mapped[int] = mapped_column(Integer, nullable=False, comment="Positive top-up, negative spend")
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    reseller = relationship("Reseller", back_populates="ledger")


class ResellerUser(Base):
    """User account provisioned by a reseller"""

    __tablename__ = "reseller_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reseller_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("resellers.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    credit_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ===========================
# VOICES
# ===========================


class CommunityVoice(Base):
    """User-shared voice preset"""

    __tablename__ = "community_voices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    voice_id: Mapped[str] = mapped_column(String(100), nullable=False, comment="Upstream voice id")
    provider: Mapped[str] = mapped_column(String(20), default="cartesia", nullable=False)
    language: Mapped[str] = mapped_column(String(10), default="en", nullable=False)
    demo_audio_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    creator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    creator_name: Mapped[str] = mapped_column(String(100), nullable=False)
    likes_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class CommunityVoiceLike(Base):
    """One like per (voice, user)"""

    __tablename__ = "community_voice_likes"
    __table_args__ = (UniqueConstraint("voice_id", "user_id", name="uq_voice_like"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    voice_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("community_voices.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class TopVoice(Base):
    """Admin-curated voice preset"""

    __tablename__ = "top_voices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    voice_id: Mapped[str] = mapped_column(String(100), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), default="cartesia", nullable=False)
    language: Mapped[str] = mapped_column(String(10), default="en", nullable=False)
    demo_audio_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    likes_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
