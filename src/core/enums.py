"""
Core Enums - shared types for the whole stack.

Defines:
- PlanType / PlanStatus: subscription tiers and their lifecycle
- GenerationStatus: history row lifecycle (pending → processing → completed/failed)
- TokenPoolType: upstream credential pools
- WithdrawalStatus: affiliate payout workflow
- ToolName: feature flags gated by plan and maintenance switches
"""

from enum import Enum


class PlanType(str, Enum):
    """Subscription tiers"""

    FREE = "free"
    SCALE = "scale"
    EMPIRE = "empire"
    ENTERPRISE = "enterprise"


class PlanStatus(str, Enum):
    """Plan lifecycle status"""

    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class GenerationStatus(str, Enum):
    """History row status.

    Allowed moves:
    - PENDING → PROCESSING (upstream operation started)
    - PENDING → FAILED (upstream rejected the start call)
    - PROCESSING → COMPLETED / FAILED
    - FAILED → PENDING (auto-retry / regenerate only)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def is_terminal(cls, status: "GenerationStatus") -> bool:
        """Completed or failed."""
        return status in (cls.COMPLETED, cls.FAILED)

    @classmethod
    def can_transition(cls, current: "GenerationStatus", new: "GenerationStatus") -> bool:
        """Check whether current → new is a legal move."""
        return new in _ALLOWED_TRANSITIONS.get(current, ())


_ALLOWED_TRANSITIONS = {
    GenerationStatus.PENDING: (GenerationStatus.PROCESSING, GenerationStatus.FAILED),
    GenerationStatus.PROCESSING: (GenerationStatus.COMPLETED, GenerationStatus.FAILED),
    GenerationStatus.FAILED: (GenerationStatus.PENDING,),
    GenerationStatus.COMPLETED: (),
}


class TokenPoolType(str, Enum):
    """Upstream credential pools"""

    VIDEO = "video"        # Video/image generation bearer tokens
    CARTESIA = "cartesia"  # Cartesia TTS API keys (character metered)
    ZYPHRA = "zyphra"      # Zyphra TTS API keys (character + minute metered)
    FLOW = "flow"          # Flow session cookies


class WithdrawalStatus(str, Enum):
    """Affiliate withdrawal workflow"""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EarningStatus(str, Enum):
    """Affiliate earning status"""

    CREDITED = "credited"


class QuotaKind(str, Enum):
    """Metered resources"""

    VIDEO = "video"
    VOICE = "voice"


class ToolName(str, Enum):
    """Tools gated by plan and maintenance flags"""

    VEO = "veo"
    BULK = "bulk"
    TEXT_TO_IMAGE = "textToImage"
    IMAGE_TO_VIDEO = "imageToVideo"
    SCRIPT = "script"
    CHARACTER_CONSISTENCY = "characterConsistency"
    VOICE = "voiceTools"
    COMMUNITY_VOICES = "communityVoices"
    SCRIPT_TO_FRAMES = "scriptToFrames"
