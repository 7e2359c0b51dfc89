"""HTTP client for the vision model's messages endpoint.

Sends one multi-part user message (inline base64 image plus instruction) and
returns the model's text reply. No retries: a 429 is reported as RateLimited
and left to the caller, every other non-2xx as VisionServiceError.
"""

import logging

import httpx

from config import settings
from errors import RateLimited, ServiceNotConfigured, UpstreamTimeout, VisionServiceError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You extract structured data from handwritten forms. Return only valid JSON."


class VisionClient:
    """HTTP client for the vision provider."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        model: str | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
        connect_timeout: float | None = None,
    ):
        self._api_key = api_key if api_key is not None else settings.ANTHROPIC_API_KEY
        self._api_url = api_url or settings.ANTHROPIC_API_URL
        self._model = model or settings.VISION_MODEL
        self._api_version = api_version or settings.ANTHROPIC_VERSION

        read_timeout = timeout if timeout is not None else settings.UPSTREAM_TIMEOUT_SECONDS
        conn_timeout = connect_timeout if connect_timeout is not None else settings.UPSTREAM_CONNECT_TIMEOUT

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout, connect=conn_timeout),
        )

    @property
    def model(self) -> str:
        return self._model

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete(self, image_b64: str, mime_type: str, prompt: str, max_tokens: int) -> str:
        """Send the image and instruction; return the first text block of the reply."""
        if not self._api_key:
            raise ServiceNotConfigured("ANTHROPIC_API_KEY is not set")

        payload = {
            "model": self._model,
            "max_tokens": max_tokens,
            "system": SYSTEM_PROMPT,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {"type": "base64", "media_type": mime_type, "data": image_b64},
                        },
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": self._api_version,
            "content-type": "application/json",
        }

        try:
            resp = await self._client.post(self._api_url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error("Vision service timed out: %s", e)
            raise UpstreamTimeout(f"Vision service timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Vision service HTTP error: %s", e)
            raise VisionServiceError(f"Vision service HTTP error: {e}") from e

        if resp.status_code == 429:
            logger.warning("Vision service rate limited the request")
            raise RateLimited(resp.text)

        if not resp.is_success:
            logger.error("Vision service error %d: %s", resp.status_code, resp.text[:500])
            raise VisionServiceError(resp.text, status_code=resp.status_code)

        try:
            content = resp.json().get("content") or []
        except ValueError as e:
            raise VisionServiceError(f"Vision service returned non-JSON body: {resp.text[:200]}") from e

        text = next(
            (block.get("text") or "" for block in content if isinstance(block, dict) and block.get("type") == "text"),
            "",
        )
        logger.info("Vision response received (%d chars)", len(text))
        return text
