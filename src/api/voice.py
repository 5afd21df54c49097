"""
Voice API
- Text-to-speech (Cartesia / Zyphra)
- Community voices (shared presets with likes)
- Curated top voices
"""

from typing import Dict, Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user
from src.core.enums import ToolName
from src.core.exceptions import UpstreamError
from src.database import crud
from src.database.engine import get_session
from src.database.limit_manager import ensure_tool_access
from src.database.models import User, CommunityVoice, TopVoice
from src.services import voice_service
from src.services.storage_service import MediaStorage, get_storage
from src.services.voice_service import SpeechRequest, VoiceClient, get_voice_client
from src.utils.error_categories import categorize_error

router = APIRouter(prefix="/voice", tags=["voice"])


class TTSRequest(BaseModel):
    text: str = Field(..., min_length=1)
    provider: str = Field("cartesia", pattern="^(cartesia|zyphra)$")
    voice_id: Optional[str] = Field(None, max_length=100)
    language: str = Field("en", max_length=10)
    speed: str = Field("normal", max_length=20)
    speaking_rate: int = Field(15, ge=5, le=35)


class CommunityVoiceRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    voice_id: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    provider: str = Field("cartesia", pattern="^(cartesia|zyphra)$")
    language: str = Field("en", max_length=10)
    demo_audio_url: Optional[str] = None


def serialize_voice(voice, liked: Optional[bool] = None) -> Dict[str, Any]:
    data = {
        "id": voice.id,
        "name": voice.name,
        "description": voice.description,
        "voice_id": voice.voice_id,
        "provider": voice.provider,
        "language": voice.language,
        "demo_audio_url": voice.demo_audio_url,
        "likes_count": voice.likes_count,
    }
    if isinstance(voice, CommunityVoice):
        data["creator_id"] = voice.creator_id
        data["creator_name"] = voice.creator_name
    if isinstance(voice, TopVoice):
        data["sort_order"] = voice.sort_order
    if liked is not None:
        data["liked"] = liked
    return data


@router.post("/tts")
async def text_to_speech(
    body: TTSRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    client: VoiceClient = Depends(get_voice_client),
    storage: MediaStorage = Depends(get_storage),
) -> Dict[str, Any]:
    """
    Generate speech

    Errors:
        400: empty text / missing voice
        403: plan does not include voice tools
        429: per-request cap or voice quota exceeded
        502: provider rejected every attempt
        503: maintenance or no keys left
    """
    request = SpeechRequest(
        text=body.text,
        voice_id=body.voice_id,
        language=body.language,
        speed=body.speed,
        speaking_rate=body.speaking_rate,
    )
    try:
        result = await voice_service.generate_speech(
            session, user, request, provider=body.provider, client=client, storage=storage
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamError as e:
        logger.error(f"TTS failed for user {user.id} ({body.provider}): {e}")
        raise HTTPException(status_code=502, detail=categorize_error(str(e)))

    return {"success": True, **result}


@router.get("/community")
async def list_community_voices(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await ensure_tool_access(session, user, ToolName.COMMUNITY_VOICES)
    voices = await crud.list_community_voices(session)
    liked = await crud.get_liked_voice_ids(session, user.id)
    return {"voices": [serialize_voice(v, liked=v.id in liked) for v in voices]}


@router.post("/community")
async def create_community_voice(
    body: CommunityVoiceRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await ensure_tool_access(session, user, ToolName.COMMUNITY_VOICES)
    voice = await crud.create_community_voice(
        session,
        user,
        name=body.name.strip(),
        voice_id=body.voice_id.strip(),
        description=body.description,
        provider=body.provider,
        language=body.language,
        demo_audio_url=body.demo_audio_url,
    )
    return {"success": True, "voice": serialize_voice(voice)}


@router.post("/community/{voice_id}/like")
async def like_community_voice(
    voice_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Toggle like"""
    voice = await session.get(CommunityVoice, voice_id)
    if voice is None:
        raise HTTPException(status_code=404, detail="Voice not found")

    liked = await crud.toggle_voice_like(session, voice, user.id)
    return {"liked": liked, "likes_count": voice.likes_count}


@router.delete("/community/{voice_id}")
async def delete_community_voice(
    voice_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    voice = await session.get(CommunityVoice, voice_id)
    if voice is None:
        raise HTTPException(status_code=404, detail="Voice not found")

    try:
        await crud.delete_community_voice(session, voice, user)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"success": True}


@router.get("/top")
async def list_top_voices(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    voices = await crud.list_top_voices(session)
    return {"voices": [serialize_voice(v) for v in voices]}
