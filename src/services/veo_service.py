"""
Video/Image generation API client

Wraps the upstream media API:
- text-to-video, start-image and start/end-image video operations
- batch status check for running operations
- synchronous image generation and user image upload (returns media ids)

Every call takes the bearer token explicitly; token choice belongs to the
token pool. Transport failures are retried with tenacity, HTTP errors
are raised as UpstreamError so callers can rotate credentials.
"""

import asyncio
import base64
import html
import logging  # Needed for tenacity before_sleep_log level constants
import random
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Dict, Any

import aiohttp
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
from loguru import logger

from config.config import VEO_API_BASE_URL, VEO_PROJECT_ID, UPSTREAM_TIMEOUT_SECONDS
from src.core.exceptions import UpstreamError


# Upstream status values
STATUS_SUCCESSFUL = {
    "MEDIA_GENERATION_STATUS_SUCCESSFUL",
    "MEDIA_GENERATION_STATUS_COMPLETE",
    "MEDIA_GENERATION_STATUS_COMPLETED",
}
STATUS_FAILED = "MEDIA_GENERATION_STATUS_FAILED"
STATUS_PENDING = "MEDIA_GENERATION_STATUS_PENDING"

# Error markers
ERROR_HIGH_TRAFFIC = "PUBLIC_ERROR_HIGH_TRAFFIC"
ERROR_UNSAFE = "PUBLIC_ERROR_UNSAFE_GENERATION"
ERROR_MINOR = "PUBLIC_ERROR_MINOR"

MODEL_TEXT_LANDSCAPE = "veo_3_1_t2v_fast_ultra"
MODEL_TEXT_PORTRAIT = "veo_3_1_t2v_fast_portrait_ultra"
MODEL_START_IMAGE = "veo_3_1_i2v_s_fast_ultra"
MODEL_START_END_IMAGE = "veo_3_1_i2v_s_fast_ultra_fl"

TRANSIENT_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)

# Transport failures surfaced to callers as UpstreamError(status=None)
NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


@dataclass
class VideoStatus:
    """Parsed status of one upstream operation"""

    state: str  # "pending" | "completed" | "failed"
    video_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    needs_token_retry: bool = False


@dataclass
class GeneratedImage:
    """Synchronous image result"""

    encoded_image: str  # base64
    media_id: Optional[str] = None

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.encoded_image)


def video_aspect_ratio(aspect_ratio: str) -> str:
    return "VIDEO_ASPECT_RATIO_PORTRAIT" if aspect_ratio == "portrait" else "VIDEO_ASPECT_RATIO_LANDSCAPE"


def image_aspect_ratio(aspect_ratio: str) -> str:
    return "IMAGE_ASPECT_RATIO_PORTRAIT" if aspect_ratio == "portrait" else "IMAGE_ASPECT_RATIO_LANDSCAPE"


def parse_operation_status(operation: Dict[str, Any]) -> VideoStatus:
    """
    Map one entry of the batch status response onto VideoStatus

    High-traffic / internal (code 13) errors stay pending and ask for a
    different token; unsafe-content errors are reported with code UNSAFE so
    the caller can count them.
    """
    status = operation.get("status", STATUS_PENDING)

    if status in STATUS_SUCCESSFUL:
        metadata = operation.get("operation", {}).get("metadata", {})
        url = (
            metadata.get("video", {}).get("fifeUrl")
            or operation.get("videoUrl")
            or operation.get("fileUrl")
            or operation.get("downloadUrl")
        )
        if not url:
            return VideoStatus(state="failed", error="Video completed but no URL returned")
        return VideoStatus(state="completed", video_url=html.unescape(url))

    if status == STATUS_FAILED:
        error = operation.get("operation", {}).get("error", {}) or operation.get("error", {}) or {}
        message = str(error.get("message") or "Video generation failed")
        code = error.get("code")

        if ERROR_HIGH_TRAFFIC in message or code == 13 or "LMRoot" in message:
            return VideoStatus(state="pending", error=message, error_code="HIGH_TRAFFIC", needs_token_retry=True)
        if ERROR_UNSAFE in message:
            return VideoStatus(state="failed", error=message, error_code="UNSAFE")
        if ERROR_MINOR in message:
            return VideoStatus(state="pending", error=message, error_code="MINOR")
        return VideoStatus(state="failed", error=message, error_code=str(code) if code else None)

    return VideoStatus(state="pending")


def network_failure(error: BaseException) -> UpstreamError:
    """Wrap a transport failure (retries exhausted) as a non-credential UpstreamError"""
    if isinstance(error, asyncio.TimeoutError):
        return UpstreamError("Upstream request timed out")
    return UpstreamError(f"Network connection error: {error}")


class VeoClient:
    """Async client for the upstream media API"""

    def __init__(self, base_url: str = VEO_API_BASE_URL, project_id: str = VEO_PROJECT_ID):
        self.base_url = base_url.rstrip("/")
        self.project_id = project_id
        self.timeout = aiohttp.ClientTimeout(total=UPSTREAM_TIMEOUT_SECONDS)

    def _client_context(self) -> Dict[str, Any]:
        return {
            "projectId": self.project_id,
            "tool": "PINHOLE",
            "userPaygateTier": "PAYGATE_TIER_TWO",
        }

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _send(self, path: str, api_key: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status >= 400:
                    text = await response.text()
                    logger.warning(f"Media API {path} -> HTTP {response.status}: {text[:200]}")
                    raise UpstreamError(
                        f"{response.status} - {text[:200]}",
                        status=response.status,
                    )
                return await response.json(content_type=None)

    async def _post(self, path: str, api_key: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST JSON and return JSON; non-2xx and transport failures raise UpstreamError"""
        try:
            return await self._send(path, api_key, payload)
        except NETWORK_ERRORS as e:
            logger.warning(f"Media API {path} unreachable: {type(e).__name__} {e}")
            raise network_failure(e) from e

    # ===========================
    # VIDEO
    # ===========================

    async def start_video(
        self,
        api_key: str,
        prompt: str,
        aspect_ratio: str,
        scene_id: str,
        start_media_id: Optional[str] = None,
        end_media_id: Optional[str] = None,
    ) -> str:
        """
        Start a video operation

        Args:
            api_key: Bearer token from the pool
            prompt: Text prompt
            aspect_ratio: "landscape" or "portrait"
            scene_id: Our correlation id (echoed in status checks)
            start_media_id: Optional first frame (uploaded/generated image)
            end_media_id: Optional last frame, requires start_media_id

        Returns:
            Upstream operation name
        """
        request: Dict[str, Any] = {
            "aspectRatio": video_aspect_ratio(aspect_ratio),
            "seed": random.randint(0, 999_999),
            "textInput": {"prompt": prompt},
            "metadata": {"sceneId": scene_id},
        }

        if start_media_id and end_media_id:
            path = "/video:batchAsyncGenerateVideoStartAndEndImage"
            request["startImage"] = {"mediaId": start_media_id}
            request["endImage"] = {"mediaId": end_media_id}
            request["videoModelKey"] = MODEL_START_END_IMAGE
        elif start_media_id:
            path = "/video:batchAsyncGenerateVideoStartImage"
            request["startImage"] = {"mediaId": start_media_id}
            request["videoModelKey"] = MODEL_START_IMAGE
        else:
            path = "/video:batchAsyncGenerateVideoText"
            request["videoModelKey"] = (
                MODEL_TEXT_PORTRAIT if aspect_ratio == "portrait" else MODEL_TEXT_LANDSCAPE
            )

        data = await self._post(path, api_key, {
            "clientContext": self._client_context(),
            "requests": [request],
        })

        operations = data.get("operations") or []
        if not operations:
            message = (data.get("error") or {}).get("message") or "Failed to start video generation"
            raise UpstreamError(message, status=400)

        operation_name = operations[0].get("operation", {}).get("name")
        if not operation_name:
            raise UpstreamError("No operation name returned from video generation", status=502)

        logger.info(f"Video operation started: {operation_name[:40]} (scene {scene_id})")
        return operation_name

    async def check_video_status(self, api_key: str, operation_name: str, scene_id: str) -> VideoStatus:
        """Query one running operation"""
        data = await self._post("/video:batchCheckAsyncVideoGenerationStatus", api_key, {
            "operations": [{
                "operation": {"name": operation_name},
                "sceneId": scene_id,
                "status": STATUS_PENDING,
            }],
        })

        operations = data.get("operations") or []
        if not operations:
            return VideoStatus(state="pending")
        return parse_operation_status(operations[0])

    # ===========================
    # IMAGES
    # ===========================

    async def generate_image(self, api_key: str, prompt: str, aspect_ratio: str) -> GeneratedImage:
        """Generate one image synchronously"""
        data = await self._post("/whisk:generateImage", api_key, {
            "clientContext": {
                "workflowId": str(uuid.uuid4()),
                "tool": "BACKBONE",
                "sessionId": f";{int(time.time() * 1000)}",
            },
            "imageModelSettings": {
                "imageModel": "IMAGEN_3_5",
                "aspectRatio": image_aspect_ratio(aspect_ratio),
            },
            "seed": random.randint(0, 999_999),
            "prompt": prompt,
            "mediaCategory": "MEDIA_CATEGORY_BOARD",
        })

        panels = data.get("imagePanels") or []
        images = panels[0].get("generatedImages") if panels else None
        if not images:
            raise UpstreamError("Image generation failed: no image returned", status=400)

        image = images[0]
        return GeneratedImage(
            encoded_image=image["encodedImage"],
            media_id=image.get("mediaGenerationId"),
        )

    async def upload_image(self, api_key: str, image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
        """
        Upload a user image and get a media id usable as a video frame
        """
        data = await self._post(":uploadUserImage", api_key, {
            "imageInput": {
                "rawImageBytes": base64.b64encode(image_bytes).decode("ascii"),
                "mimeType": mime_type,
            },
        })
        media = data.get("mediaGenerationId")
        media_id = media.get("mediaGenerationId") if isinstance(media, dict) else media
        if not media_id:
            raise UpstreamError("No mediaId returned from image upload", status=502)
        return media_id


# Singleton
_veo_client: Optional[VeoClient] = None


def get_veo_client() -> VeoClient:
    global _veo_client
    if _veo_client is None:
        _veo_client = VeoClient()
    return _veo_client
