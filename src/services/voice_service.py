"""
Text-to-speech service (Cartesia and Zyphra)

Long scripts are split at sentence boundaries into chunks the provider
accepts in one call; each chunk draws a key from the provider's token pool
sized by its character count, and the MP3 parts are concatenated.
"""

import asyncio
import logging  # Needed for tenacity before_sleep_log level constants
import re
from dataclasses import dataclass
from typing import List, Optional, Dict, Any

import aiohttp
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from config.config import (
    CARTESIA_API_URL,
    CARTESIA_API_VERSION,
    ZYPHRA_API_URL,
    UPSTREAM_TIMEOUT_SECONDS,
)
from src.core.enums import QuotaKind, TokenPoolType, ToolName
from src.database.limit_manager import check_and_consume_quota, ensure_tool_access
from src.database.models import User
from src.services.storage_service import MediaStorage, get_storage
from src.services.token_pool import TokenLease, with_token_rotation
from src.core.exceptions import UpstreamError
from src.services.veo_service import NETWORK_ERRORS, network_failure

# Max characters per upstream call
CARTESIA_MAX_CHUNK = 20_000
ZYPHRA_MAX_CHUNK = 5_000

CARTESIA_MODEL = "sonic-2"
ZYPHRA_MODEL = "zonos-v0.1-transformer"

CARTESIA_SPEEDS = {
    "slowest": -1.0,
    "slow": -0.5,
    "normal": 0.0,
    "fast": 0.5,
    "fastest": 1.0,
}

PROVIDERS = {
    "cartesia": TokenPoolType.CARTESIA,
    "zyphra": TokenPoolType.ZYPHRA,
}

TRANSIENT_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)

_SENTENCE_END = re.compile(r"[.!?](?:\s+|$)")


def split_text_into_chunks(text: str, max_chunk: int) -> List[str]:
    """
    Split text into pieces of at most `max_chunk` characters

    Prefers the last sentence end in the final 20% of the window, then the
    last space in the final 30%, else a hard cut.
    """
    text = text.strip()
    if len(text) <= max_chunk:
        return [text] if text else []

    chunks = []
    remaining = text
    while remaining:
        if len(remaining) <= max_chunk:
            chunks.append(remaining)
            break

        split_at = max_chunk
        search_start = int(max_chunk * 0.8)
        window = remaining[search_start:max_chunk]
        ends = list(_SENTENCE_END.finditer(window))
        if ends:
            split_at = search_start + ends[-1].end()
        else:
            last_space = remaining.rfind(" ", 0, max_chunk)
            if last_space > max_chunk * 0.7:
                split_at = last_space + 1

        chunks.append(remaining[:split_at].strip())
        remaining = remaining[split_at:].strip()

    return [c for c in chunks if c]


@dataclass
class SpeechRequest:
    text: str
    voice_id: Optional[str] = None
    language: str = "en"
    speed: str = "normal"
    speaking_rate: int = 15  # zyphra only


class VoiceClient:
    """HTTP calls to TTS providers; the key is always passed in"""

    def __init__(self):
        self.timeout = aiohttp.ClientTimeout(total=UPSTREAM_TIMEOUT_SECONDS * 3)

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _send_audio(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> bytes:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status >= 400:
                    text = await response.text()
                    logger.warning(f"TTS {url} -> HTTP {response.status}: {text[:200]}")
                    raise UpstreamError(f"{response.status} - {text[:200]}", status=response.status)
                return await response.read()

    async def _post_audio(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> bytes:
        try:
            return await self._send_audio(url, headers, payload)
        except NETWORK_ERRORS as e:
            logger.warning(f"TTS {url} unreachable: {type(e).__name__} {e}")
            raise network_failure(e) from e

    async def cartesia_tts(self, api_key: str, request: SpeechRequest) -> bytes:
        if not request.voice_id:
            raise ValueError("voice_id is required for Cartesia")

        voice: Dict[str, Any] = {"mode": "id", "id": request.voice_id}
        speed = CARTESIA_SPEEDS.get(request.speed, 0.0)
        if speed:
            voice["__experimental_controls"] = {"speed": speed}

        return await self._post_audio(
            f"{CARTESIA_API_URL.rstrip('/')}/tts/bytes",
            {
                "X-API-Key": api_key,
                "Cartesia-Version": CARTESIA_API_VERSION,
                "Content-Type": "application/json",
            },
            {
                "model_id": CARTESIA_MODEL,
                "transcript": request.text,
                "voice": voice,
                "output_format": {"container": "mp3", "bit_rate": 128000, "sample_rate": 44100},
                "language": request.language or "en",
            },
        )

    async def zyphra_tts(self, api_key: str, request: SpeechRequest) -> bytes:
        payload: Dict[str, Any] = {
            "text": request.text,
            "speaking_rate": request.speaking_rate,
            "model": ZYPHRA_MODEL,
            "mime_type": "audio/mp3",
        }
        if request.language:
            payload["language_iso_code"] = request.language
        if request.voice_id:
            payload["default_voice_name"] = request.voice_id

        return await self._post_audio(
            f"{ZYPHRA_API_URL.rstrip('/')}/audio/text-to-speech",
            {"X-API-Key": api_key, "Content-Type": "application/json"},
            payload,
        )


async def generate_speech(
    session: AsyncSession,
    user: User,
    request: SpeechRequest,
    provider: str = "cartesia",
    client: Optional[VoiceClient] = None,
    storage: Optional[MediaStorage] = None,
) -> Dict[str, Any]:
    """
    Synthesize speech and store the MP3

    Quota is consumed for the whole text before any upstream call.

    Raises:
        ValueError: empty text / unknown provider
        ToolUnavailableError, QuotaExceededError, NoCapacityError, UpstreamError
    """
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown voice provider: {provider}")
    text = (request.text or "").strip()
    if not text:
        raise ValueError("Text is required")

    client = client or get_voice_client()
    storage = storage or get_storage()
    pool = PROVIDERS[provider]

    await ensure_tool_access(session, user, ToolName.VOICE)
    decision = await check_and_consume_quota(session, user.id, QuotaKind.VOICE, amount=len(text))
    decision.raise_for_denial()

    max_chunk = CARTESIA_MAX_CHUNK if pool == TokenPoolType.CARTESIA else ZYPHRA_MAX_CHUNK
    chunks = split_text_into_chunks(text, max_chunk)
    synthesize = client.cartesia_tts if pool == TokenPoolType.CARTESIA else client.zyphra_tts

    parts: List[bytes] = []
    for position, chunk in enumerate(chunks, start=1):
        chunk_request = SpeechRequest(
            text=chunk,
            voice_id=request.voice_id,
            language=request.language,
            speed=request.speed,
            speaking_rate=request.speaking_rate,
        )

        async def call(lease: TokenLease, chunk_request=chunk_request) -> bytes:
            return await synthesize(lease.credential, chunk_request)

        audio, lease = await with_token_rotation(session, pool, call, units=len(chunk))
        parts.append(audio)
        logger.debug(f"{provider} chunk {position}/{len(chunks)}: {len(chunk)} chars on token #{lease.token_id}")

    url = await storage.save_blob(b"".join(parts), "mp3", folder="audio")
    logger.info(f"User {user.id} generated {len(text)} chars of {provider} speech in {len(chunks)} chunk(s)")

    return {
        "audio_url": url,
        "provider": provider,
        "characters": len(text),
        "chunks": len(chunks),
        "characters_used": decision.used,
        "character_limit": decision.limit,
    }


# Singleton
_voice_client: Optional[VoiceClient] = None


def get_voice_client() -> VoiceClient:
    global _voice_client
    if _voice_client is None:
        _voice_client = VoiceClient()
    return _voice_client
