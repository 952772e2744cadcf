"""
HTTP clients for the model endpoint and the vision fallback endpoint.

``ChatTransport`` is the seam the agent loop depends on: it turns a request
body into an async iterator of raw response chunks. The aiohttp transport is
the production implementation; tests inject a scripted one.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from tabpilot.agents.exceptions import ModelAPIError

logger = logging.getLogger(__name__)

VISION_SYSTEM_PROMPT = """You are a precise web page vision assistant. You extract element IDs from screenshots annotated with red ID markers.

# Task
Given the user's description, find the matching element in the image and return the number inside the red marker next to it.

# Marker appearance
- A small solid red rectangle.
- It contains a white number.
- It sits at the top-left corner of the red border around the element it labels.

# Rules
- Ignore every other number on the page, such as like counts, comment counts or prices. They are content, not IDs.
- Answer briefly and accurately with the ID number.

# Example
User: "Find the 'Log in' button at the top right" (image shows the button inside a red border labelled '42')
Answer: I found the log in button, its id is 42."""


class ChatTransport(ABC):
    """Sends a chat-completion request and yields the raw streamed body."""

    @abstractmethod
    def stream_chunks(self, payload: Dict[str, Any]) -> AsyncIterator[bytes]:
        """Return an async iterator over response body chunks.

        Raises:
            ModelAPIError: On non-2xx status or connection failure.
        """

    async def close(self) -> None:
        pass


class AiohttpChatTransport(ChatTransport):
    """Streams chat completions from an OpenAI-compatible endpoint."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        timeout: float = 360.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def stream_chunks(self, payload: Dict[str, Any]) -> AsyncIterator[bytes]:
        session = await self._ensure_session()
        try:
            async with session.post(
                self.api_url,
                headers=self.get_headers(),
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if not 200 <= response.status < 300:
                    body = await response.text()
                    logger.error(f"Model endpoint returned HTTP {response.status}")
                    raise ModelAPIError(
                        f"API Error: {response.status} {body}",
                        status_code=response.status,
                        response_text=body,
                        api_endpoint=self.api_url,
                    )
                async for chunk in response.content.iter_any():
                    yield chunk
        except asyncio.TimeoutError as e:
            logger.error(f"Model endpoint timed out after {self.timeout}s")
            raise ModelAPIError(
                f"Request timed out after {self.timeout}s", api_endpoint=self.api_url
            ) from e
        except aiohttp.ClientError as e:
            logger.error(f"Model endpoint connection failed: {e}")
            raise ModelAPIError(
                f"Connection error: {e}", api_endpoint=self.api_url
            ) from e

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()


class VisionClient:
    """Single-shot multimodal call used to resolve an element ID from a screenshot."""

    RESULT_PREFIX = "Vision model result: "

    def __init__(self, vision_config, session: Optional[aiohttp.ClientSession] = None):
        self.config = vision_config
        self._session = session

    def build_payload(self, image_data_url: str, target_description: str) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": VISION_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": (
                                f"Find this element: {target_description}. "
                                "What is its red ID number?"
                            ),
                        },
                        {
                            "type": "image_url",
                            "image_url": {"url": image_data_url, "detail": "high"},
                        },
                    ],
                },
            ],
            "max_tokens": self.config.max_tokens,
        }

    async def locate(self, image_data_url: str, target_description: str) -> str:
        """Ask the vision model for the element ID. Always returns text."""
        if not self.config.is_configured:
            return "Error: no vision model API key configured."

        payload = self.build_payload(image_data_url, target_description)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }
        try:
            data = await self._post(payload, headers)
        except (aiohttp.ClientError, asyncio.TimeoutError, ModelAPIError) as e:
            logger.error(f"Vision API error: {e}")
            return f"Vision model call failed: {e}"

        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or "No content returned"
        return f"{self.RESULT_PREFIX}{content}"

    async def _post(self, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        if self._session is not None:
            return await self._send(self._session, payload, headers)
        async with aiohttp.ClientSession() as session:
            return await self._send(session, payload, headers)

    async def _send(
        self, session: aiohttp.ClientSession, payload: Dict[str, Any], headers: Dict[str, str]
    ) -> Dict[str, Any]:
        async with session.post(
            self.config.api_url,
            headers=headers,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=60),
        ) as response:
            if response.status != 200:
                body = await response.text()
                raise ModelAPIError(
                    f"Vision API request failed: {response.status} - {body}",
                    status_code=response.status,
                    response_text=body,
                    api_endpoint=self.config.api_url,
                )
            return await response.json()
