"""
Provider adapter contract.

An adapter wraps one vendor's chat-completion API behind a uniform
interface: ``generate_response`` returns normalized content, token counts
and cost; ``stream_response`` returns a single-use ``ChatStream`` of text
deltas. Subclasses only describe the vendor's request and response shapes;
transport, timeouts and error translation live here.
"""
import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Optional

import httpx

from switchboard.config import settings
from switchboard.errors import ConfigurationError, ProviderTimeout, VendorError
from switchboard.providers.pricing import TokenCounts, calculate_cost
from switchboard.providers.streaming import ChatStream, iter_sse_events

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048


@dataclass
class Attachment:
    """A file sent along with a prompt. ``data`` is base64-encoded."""
    mime_type: str
    data: str
    name: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/") or self.mime_type in ("application/json", "application/xml")

    def decoded_text(self) -> Optional[str]:
        try:
            return base64.b64decode(self.data).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            return None


@dataclass
class GenerationOptions:
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None
    attachments: list[Attachment] = field(default_factory=list)
    session_id: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def effective_temperature(self) -> float:
        return DEFAULT_TEMPERATURE if self.temperature is None else self.temperature

    @property
    def effective_max_tokens(self) -> int:
        return self.max_tokens or DEFAULT_MAX_TOKENS


@dataclass
class AdapterResult:
    content: str
    tokens: TokenCounts
    cost: float


def extract_vendor_message(response: httpx.Response) -> Optional[str]:
    """Pull the human-readable error out of a vendor error body, if there is one."""
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict):
        return None

    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    if data.get("message"):
        return str(data["message"])
    if isinstance(data.get("detail"), str):
        return data["detail"]
    return None


class ProviderAdapter:
    """Base class for vendor adapters."""

    provider_id: str = ""
    name: str = ""
    supports_streaming: bool = True
    # None means the stream simply ends with the body
    stream_done_sentinel: Optional[str] = "[DONE]"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or settings.PROVIDER_URLS[self.provider_id]).rstrip("/")
        self.timeout = timeout or settings.provider_timeout(self.provider_id)
        self.api_key: Optional[str] = None

    def set_api_key(self, api_key: str):
        self.api_key = api_key

    # -- vendor-specific hooks ------------------------------------------------

    def build_request(
        self, message: str, model_id: str, options: GenerationOptions, stream: bool
    ) -> tuple[str, dict, dict]:
        """Return (url, headers, json body) for a completion call."""
        raise NotImplementedError

    def parse_response(self, data: dict) -> tuple[str, TokenCounts]:
        raise NotImplementedError

    def extract_stream_text(self, event: dict) -> Optional[str]:
        raise NotImplementedError

    def read_stream_usage(self, event: dict, tokens: TokenCounts):
        """Copy usage figures from a stream event into ``tokens`` when present."""

    def is_stream_end(self, event: dict) -> bool:
        return False

    async def probe(self, client: httpx.AsyncClient, api_key: str) -> bool:
        """Cheapest authenticated call that proves a key works."""
        raise NotImplementedError

    # -- shared behaviour -----------------------------------------------------

    async def test_connection(self, api_key: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=min(self.timeout, 30.0)) as client:
                return await self.probe(client, api_key)
        except httpx.HTTPError as e:
            logger.info(
                f"Connection test failed for {self.name}",
                extra={"provider": self.provider_id, "error": str(e)},
            )
            return False

    async def generate_response(
        self,
        message: str,
        model_id: str,
        options: Optional[GenerationOptions] = None,
    ) -> AdapterResult:
        self._require_key()
        options = options or GenerationOptions()
        try:
            return await asyncio.wait_for(
                self._generate(message, model_id, options), timeout=self.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise ProviderTimeout(
                f"{self.name} request timed out after {int(self.timeout)} seconds",
                provider=self.provider_id,
            )
        except httpx.HTTPError as e:
            raise VendorError(
                f"Cannot reach {self.name}: {e}", provider=self.provider_id
            ) from e

    def stream_response(
        self,
        message: str,
        model_id: str,
        options: Optional[GenerationOptions] = None,
    ) -> ChatStream:
        self._require_key()
        options = options or GenerationOptions()
        return ChatStream(lambda tokens: self._stream(message, model_id, options, tokens))

    async def iter_stream_text(
        self, chunks: AsyncIterable[bytes], tokens: TokenCounts
    ) -> AsyncIterator[str]:
        """Turn a raw SSE body into text deltas, collecting usage on the way."""
        async for event in iter_sse_events(chunks, self.stream_done_sentinel):
            self.read_stream_usage(event, tokens)
            if self.is_stream_end(event):
                break
            text = self.extract_stream_text(event)
            if text:
                yield text
        tokens.normalize()

    def vendor_error(self, response: httpx.Response) -> VendorError:
        vendor_message = extract_vendor_message(response)
        if vendor_message:
            message = f"{self.name} API error: {vendor_message}"
        else:
            message = f"{self.name} request failed (HTTP {response.status_code}, provider '{self.provider_id}')"
        return VendorError(message, provider=self.provider_id, upstream_status=response.status_code)

    def _require_key(self):
        if not self.api_key:
            raise ConfigurationError(f"{self.name} API key not configured")

    async def _generate(self, message: str, model_id: str, options: GenerationOptions) -> AdapterResult:
        url, headers, body = self.build_request(message, model_id, options, stream=False)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, headers=headers, json=body)

        if response.status_code >= 400:
            raise self.vendor_error(response)

        content, tokens = self.parse_response(response.json())
        tokens.normalize()
        cost = calculate_cost(self.provider_id, model_id, tokens.input, tokens.output)
        return AdapterResult(content=content, tokens=tokens, cost=cost)

    async def _stream(
        self, message: str, model_id: str, options: GenerationOptions, tokens: TokenCounts
    ) -> AsyncIterator[str]:
        url, headers, body = self.build_request(message, model_id, options, stream=True)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("POST", url, headers=headers, json=body) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise self.vendor_error(response)
                    async for text in self.iter_stream_text(response.aiter_bytes(), tokens):
                        yield text
        except httpx.TimeoutException:
            raise ProviderTimeout(
                f"{self.name} stream timed out after {int(self.timeout)} seconds",
                provider=self.provider_id,
            )
        except httpx.HTTPError as e:
            raise VendorError(f"{self.name} stream failed: {e}", provider=self.provider_id) from e

    @staticmethod
    def text_with_documents(message: str, attachments: list[Attachment]) -> str:
        """Inline text attachments into the prompt for vendors without file inputs."""
        parts = [message]
        for attachment in attachments:
            if attachment.is_text:
                text = attachment.decoded_text()
                if text is not None:
                    parts.append(f"--- {attachment.name or 'attachment'} ---\n{text}")
        return "\n\n".join(parts)
