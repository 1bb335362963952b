"""Transport to the hosted vision model.

The session only depends on the ``ModelTransport`` protocol. ``GeminiTransport``
is the production implementation: one ``generateContent`` call per capture,
image sent inline as base64.
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from shelfcount.vision.preprocessing import probe_image

if TYPE_CHECKING:
    from shelfcount.config import Settings

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The model service could not produce a reply."""


class ModelTransport(Protocol):
    """Protocol for the request/response call to the vision model."""

    async def invoke_model(self, image_bytes: bytes, expected_label: str) -> str:
        """Send one image and return the model's raw text reply.

        Raises:
            TransportError: On network, service, or payload failures.
        """
        ...


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_RULES = """Task: Count objects in inventory image.
Context: Looking for {label}.
Rules:
1. If image shows a different item, respond 'WRONG_ITEM: [item name]'.
2. If image shows the correct item, respond with the number of objects found."""

NORMALIZED_PROMPT = (
    _RULES
    + """
3. For each object, provide normalized coordinates (0-1 range) for bounding boxes.
Format:
- The response should contain:
  1. Number of items found.
  2. A list of objects, each with normalized coordinates (0-1 range):
     - x1: Left position (0-1)
     - y1: Top position (0-1)
     - x2: Right position (0-1)
     - y2: Bottom position (0-1)
Example response:
  - For wrong item: 'WRONG_ITEM: keyboard'
  - For correct item: '1, [[x1: 0.2, y1: 0.3, x2: 0.8, y2: 0.7]]'
Note: All coordinates should be normalized to 0-1 range regardless of image dimensions."""
)

PIXELS_PROMPT = (
    _RULES
    + """
3. Start with the image dimensions in pixels, then the count, then one bounding box per object
   given as top, left, width and height in pixels of that image.
Example response:
  - For wrong item: 'WRONG_ITEM: keyboard'
  - For correct item: 'Image dimensions: width: 1280px, height: 720px. 2, [[top: 100, left: 40, width: 200, height: 150], [top: 90, left: 400, width: 210, height: 160]]'"""
)

COUNT_PROMPT = (
    _RULES
    + """
Respond with the number only.
Example response:
  - For wrong item: 'WRONG_ITEM: keyboard'
  - For correct item: '4'"""
)

PROMPTS: dict[str, str] = {
    "normalized": NORMALIZED_PROMPT,
    "pixels": PIXELS_PROMPT,
    "count": COUNT_PROMPT,
}


def build_prompt(reply_format: str, expected_label: str) -> str:
    """Render the prompt asking for ``reply_format`` replies about ``expected_label``."""
    try:
        template = PROMPTS[reply_format]
    except KeyError:
        raise KeyError(f"Unknown reply format: {reply_format}") from None
    return template.format(label=expected_label)


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


class GeminiTransport:
    """Calls the Gemini REST API with httpx."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)
        self._owns_client = client is None

    @property
    def endpoint(self) -> str:
        base = self._settings.gemini_base_url.rstrip("/")
        return f"{base}/models/{self._settings.gemini_model}:generateContent"

    async def invoke_model(self, image_bytes: bytes, expected_label: str) -> str:
        if not self._settings.gemini_api_key:
            raise TransportError("No Gemini API key configured (SHELFCOUNT_GEMINI_API_KEY)")

        payload = self._build_payload(image_bytes, expected_label)
        logger.info("Sending %d-byte image to %s for %r", len(image_bytes), self._settings.gemini_model, expected_label)
        try:
            response = await self._client.post(
                self.endpoint,
                json=payload,
                headers={"x-goog-api-key": self._settings.gemini_api_key},
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise TransportError(f"Gemini returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Gemini request failed: {exc!s}") from exc
        except ValueError as exc:
            raise TransportError("Gemini returned a non-JSON body") from exc

        return self._extract_text(body)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    # -- Internal -----------------------------------------------------------

    def _build_payload(self, image_bytes: bytes, expected_label: str) -> dict[str, Any]:
        mime_type = probe_image(image_bytes).mime_type
        return {
            "contents": [
                {
                    "parts": [
                        {"text": build_prompt(self._settings.reply_format, expected_label)},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            }
                        },
                    ]
                }
            ]
        }

    @staticmethod
    def _extract_text(body: Any) -> str:
        if not isinstance(body, dict):
            raise TransportError("Gemini returned an unexpected payload")

        block_reason = (body.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise TransportError(f"Gemini blocked the request ({block_reason})")

        candidates = body.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            raise TransportError("Gemini returned no candidates")

        first = candidates[0]
        parts = (first.get("content") or {}).get("parts") or []
        text = "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))
        if not text:
            finish_reason = first.get("finishReason", "unknown")
            raise TransportError(f"Gemini returned no text (finish reason: {finish_reason})")
        return text
