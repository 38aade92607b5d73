"""
Vision and embedding integration for SnapGallery.

Provides the model calls behind AI metadata: a description plus tags for
an image, and an embedding vector for the description text.
"""

import base64
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings
from .errors import InvalidAIResponse
from .models.schemas import VisionAnalysis

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = (
    "Analyze this image and provide a concise description and 5-10 relevant "
    "tags (objects, colors, concepts, mood). Return JSON: "
    '{"description": "...", "tags": ["tag1", "tag2", ...]}'
)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


class FailureReason(str, Enum):
    """Log-only classification of AI failures."""

    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMIT = "rate_limit"
    API_KEY_INVALID = "api_key_invalid"
    UNKNOWN = "unknown"


class VisionError(Exception):
    """Vision/embedding provider errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def classify_failure(error: BaseException) -> FailureReason:
    """
    Classify an AI failure for logging.

    Provider error codes are used when present; otherwise the message is
    matched against known substrings.
    """
    code = getattr(error, "code", None)
    status_code = getattr(error, "status_code", None)

    if code == "insufficient_quota":
        return FailureReason.QUOTA_EXCEEDED
    if code == "rate_limit_exceeded" or status_code == 429:
        return FailureReason.RATE_LIMIT
    if code == "invalid_api_key" or status_code == 401:
        return FailureReason.API_KEY_INVALID

    message = str(error)
    lowered = message.lower()
    if "quota" in lowered:
        return FailureReason.QUOTA_EXCEEDED
    if "rate limit" in lowered:
        return FailureReason.RATE_LIMIT
    if "API key" in message or "api_key" in lowered:
        return FailureReason.API_KEY_INVALID
    return FailureReason.UNKNOWN


def parse_model_json(text: Any) -> Dict[str, Any]:
    """
    Parse a JSON object out of model output.

    Tries, in order: the whole text, the body of a code fence, and the
    span between the first ``{`` and the last ``}``.

    Raises:
        InvalidAIResponse: If no attempt yields a JSON object
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidAIResponse("Empty response from AI")

    candidates = [text]
    fence = _FENCE_RE.search(text)
    if fence and fence.group(1):
        candidates.append(fence.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise InvalidAIResponse()


class BaseVisionProvider(ABC):
    """Abstract base class for vision providers."""

    @abstractmethod
    async def analyze(self, image_data: bytes) -> VisionAnalysis:
        """Describe and tag an image."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed text into a vector."""


class OpenAIVisionProvider(BaseVisionProvider):
    """OpenAI chat-completions vision and embeddings provider."""

    def __init__(
        self,
        api_key: Optional[str],
        vision_model: str = "gpt-4o",
        embedding_model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.vision_model = vision_model
        self.embedding_model = embedding_model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIVisionProvider":
        return cls(
            api_key=settings.openai_api_key,
            vision_model=settings.openai_vision_model,
            embedding_model=settings.openai_embedding_model,
            base_url=settings.openai_base_url,
            timeout=settings.ai_timeout_seconds,
        )

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        # Checked per call so a missing key fails the pipeline, not startup.
        if not self.api_key:
            raise VisionError("OPENAI_API_KEY not configured", code="invalid_api_key")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}{path}",
                    headers=headers,
                    json=payload,
                    timeout=self.timeout,
                )
        except httpx.RequestError as e:
            logger.error(f"OpenAI API request failed: {e}")
            raise VisionError(f"OpenAI API request failed: {e}") from e

        if response.status_code >= 400:
            message = f"OpenAI API error {response.status_code}"
            code = None
            try:
                error = response.json().get("error") or {}
                message = error.get("message") or message
                code = error.get("code") or error.get("type")
            except (ValueError, AttributeError):
                pass
            raise VisionError(message, status_code=response.status_code, code=code)

        return response.json()

    async def analyze(self, image_data: bytes) -> VisionAnalysis:
        """Describe and tag an image with the vision model."""
        start_time = time.time()
        encoded = base64.b64encode(image_data).decode("ascii")

        payload = {
            "model": self.vision_model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": ANALYSIS_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:image/jpeg;base64,{encoded}",
                                "detail": "low",
                            },
                        },
                    ],
                }
            ],
            "max_tokens": 300,
        }

        data = await self._post("/chat/completions", payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = ""

        analysis = VisionAnalysis(**parse_model_json(content))
        processing_time = int((time.time() - start_time) * 1000)
        logger.info(
            f"Vision analysis produced {len(analysis.tags)} tags in {processing_time}ms"
        )
        return analysis

    async def embed(self, text: str) -> List[float]:
        """Embed text with the embedding model."""
        data = await self._post(
            "/embeddings", {"model": self.embedding_model, "input": text}
        )
        try:
            return [float(x) for x in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise VisionError(f"Malformed embedding response: {e}") from e
