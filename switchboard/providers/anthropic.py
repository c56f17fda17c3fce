"""Anthropic Messages API adapter."""
from typing import Optional

import httpx

from switchboard.errors import VendorError
from switchboard.providers.base import ProviderAdapter
from switchboard.providers.pricing import TokenCounts

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(ProviderAdapter):
    provider_id = "anthropic"
    name = "Anthropic"
    # The stream ends with a message_stop event rather than a sentinel string
    stream_done_sentinel = None

    def _headers(self, api_key: str) -> dict:
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def build_request(self, message, model_id, options, stream):
        text = self.text_with_documents(message, options.attachments)
        images = [a for a in options.attachments if a.is_image]
        if images:
            content = [
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": a.mime_type, "data": a.data},
                }
                for a in images
            ]
            content.append({"type": "text", "text": text})
        else:
            content = text

        body = {
            "model": model_id,
            "max_tokens": options.effective_max_tokens,
            "temperature": options.effective_temperature,
            "messages": [{"role": "user", "content": content}],
        }
        # System prompt is a top-level field, not a message role
        if options.system_prompt:
            body["system"] = options.system_prompt
        if stream:
            body["stream"] = True

        return f"{self.base_url}/messages", self._headers(self.api_key), body

    def parse_response(self, data):
        content = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        tokens = TokenCounts(
            input=usage.get("input_tokens", 0) or 0,
            output=usage.get("output_tokens", 0) or 0,
        )
        return content, tokens

    def extract_stream_text(self, event) -> Optional[str]:
        if event.get("type") != "content_block_delta":
            return None
        delta = event.get("delta") or {}
        if delta.get("type", "text_delta") != "text_delta":
            return None
        return delta.get("text")

    def read_stream_usage(self, event, tokens):
        event_type = event.get("type")
        if event_type == "message_start":
            usage = (event.get("message") or {}).get("usage") or {}
            tokens.input = usage.get("input_tokens", tokens.input) or 0
            tokens.output = usage.get("output_tokens", tokens.output) or 0
        elif event_type == "message_delta":
            usage = event.get("usage") or {}
            if "output_tokens" in usage:
                tokens.output = usage["output_tokens"] or 0
        elif event_type == "error":
            error = event.get("error") or {}
            raise VendorError(
                f"{self.name} API error: {error.get('message', 'stream error')}",
                provider=self.provider_id,
            )

    def is_stream_end(self, event) -> bool:
        return event.get("type") == "message_stop"

    async def probe(self, client: httpx.AsyncClient, api_key: str) -> bool:
        response = await client.get(f"{self.base_url}/models", headers=self._headers(api_key))
        return response.status_code == 200
