"""
Generative Transformer

Port for the external image-generation service plus the Gemini REST client
used in production. A transformer returns content parts; the executor
decides whether any of them carries a usable image.
"""

import base64
from abc import ABC, abstractmethod
from typing import List, Optional, Any, Dict

import httpx
from pydantic import BaseModel, Field

from effect_studio.core.exceptions import GenerationError, GenerationTimeout
from effect_studio.core.logging import get_logger

logger = get_logger(__name__)


class ContentPart(BaseModel):
    """One part of a generative response: inline binary data or text."""
    text: Optional[str] = None
    inline_data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @property
    def has_image(self) -> bool:
        return bool(self.inline_data) and (self.mime_type or "image/").startswith("image/")


class GenerationResponse(BaseModel):
    parts: List[ContentPart] = Field(default_factory=list)

    def first_image(self) -> Optional[ContentPart]:
        """First part carrying non-empty inline image bytes."""
        for part in self.parts:
            if part.has_image:
                return part
        return None

    @property
    def text(self) -> str:
        return " ".join(part.text for part in self.parts if part.text)


class GenerativeTransformer(ABC):
    """Produces a new image from (image, directive), or declines."""

    name = "generative"

    @abstractmethod
    async def generate(self, image_bytes: bytes, mime_type: str, directive: str) -> GenerationResponse:
        """
        Ask the service for a transformed image.

        Raises:
            GenerationTimeout: the transport timed out
            GenerationError: the service failed (HTTP error, malformed reply)
        """

    async def aclose(self):
        """Release network resources."""


class GeminiTransformer(GenerativeTransformer):
    """Gemini generateContent over REST."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash-image-preview",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        # Transport timeout a little above the executor's race timer
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds + 5.0)
        self._owns_client = client is None

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_payload(self, image_bytes: bytes, mime_type: str, directive: str) -> Dict[str, Any]:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            }
                        },
                        {"text": directive},
                    ],
                }
            ],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }

    @staticmethod
    def parse_response(body: Dict[str, Any]) -> GenerationResponse:
        """Flatten every candidate's parts into a GenerationResponse."""
        parts: List[ContentPart] = []
        for candidate in body.get("candidates") or []:
            content = candidate.get("content") or {}
            for raw in content.get("parts") or []:
                inline = raw.get("inlineData") or raw.get("inline_data")
                if inline and inline.get("data"):
                    try:
                        data = base64.b64decode(inline["data"], validate=True)
                    except ValueError:
                        logger.warning("generation_inline_data_undecodable")
                        continue
                    parts.append(ContentPart(
                        inline_data=data,
                        mime_type=inline.get("mimeType") or inline.get("mime_type"),
                    ))
                elif raw.get("text"):
                    parts.append(ContentPart(text=raw["text"]))
        return GenerationResponse(parts=parts)

    async def generate(self, image_bytes: bytes, mime_type: str, directive: str) -> GenerationResponse:
        logger.info(
            "gemini_request",
            model=self.model,
            input_size=len(image_bytes),
            mime_type=mime_type
        )

        try:
            response = await self._client.post(
                self.endpoint,
                json=self.build_payload(image_bytes, mime_type, directive),
                headers={
                    "Content-Type": "application/json",
                    "x-goog-api-key": self.api_key,
                },
            )
        except httpx.TimeoutException as e:
            raise GenerationTimeout(self.timeout_seconds) from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Gemini request failed: {e}") from e

        if response.status_code != 200:
            raise GenerationError(
                f"Gemini API error ({response.status_code}): {response.text[:200]}",
                http_status=response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            raise GenerationError("Gemini returned a non-JSON response") from e

        result = self.parse_response(body)
        logger.info(
            "gemini_response",
            parts=len(result.parts),
            has_image=result.first_image() is not None
        )
        return result

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()
