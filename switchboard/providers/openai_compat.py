"""
Adapter for vendors that speak the OpenAI chat-completions dialect.

OpenAI, DeepSeek, xAI Grok, Mistral and Perplexity differ only in base URL,
image support, whether streamed usage must be requested, and how a key is
probed. Those differences are data in ``CompatibleVendor``.
"""
from dataclasses import dataclass
from typing import Optional

import httpx

from switchboard.providers.base import GenerationOptions, ProviderAdapter
from switchboard.providers.pricing import TokenCounts


@dataclass(frozen=True)
class CompatibleVendor:
    provider_id: str
    name: str
    supports_images: bool = False
    # Ask for a trailing usage frame on streams (stream_options.include_usage)
    stream_usage: bool = False
    # Vendors without a /models listing are probed with a one-token completion
    probe_model: Optional[str] = None


VENDORS = {
    "openai": CompatibleVendor("openai", "OpenAI", supports_images=True, stream_usage=True),
    "deepseek": CompatibleVendor("deepseek", "DeepSeek", stream_usage=True),
    "grok": CompatibleVendor("grok", "Grok", supports_images=True),
    "mistral": CompatibleVendor("mistral", "Mistral"),
    "perplexity": CompatibleVendor(
        "perplexity", "Perplexity", probe_model="llama-3.1-sonar-small-128k-online"
    ),
}


def usage_to_tokens(usage: Optional[dict], tokens: Optional[TokenCounts] = None) -> TokenCounts:
    tokens = tokens or TokenCounts()
    if usage:
        tokens.input = usage.get("prompt_tokens", 0) or 0
        tokens.output = usage.get("completion_tokens", 0) or 0
        tokens.total = usage.get("total_tokens", 0) or 0
    return tokens


class OpenAICompatibleAdapter(ProviderAdapter):

    def __init__(self, vendor: CompatibleVendor, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.vendor = vendor
        self.provider_id = vendor.provider_id
        self.name = vendor.name
        super().__init__(base_url=base_url, timeout=timeout)

    def _headers(self, api_key: str) -> dict:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _user_content(self, message: str, options: GenerationOptions):
        text = self.text_with_documents(message, options.attachments)
        images = [a for a in options.attachments if a.is_image]
        if not (self.vendor.supports_images and images):
            return text

        content = [{"type": "text", "text": text}]
        for image in images:
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:{image.mime_type};base64,{image.data}"},
            })
        return content

    def build_request(self, message, model_id, options, stream):
        messages = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": self._user_content(message, options)})

        body = {
            "model": model_id,
            "messages": messages,
            "temperature": options.effective_temperature,
            "max_tokens": options.effective_max_tokens,
            "stream": stream,
        }
        if stream and self.vendor.stream_usage:
            body["stream_options"] = {"include_usage": True}

        return f"{self.base_url}/chat/completions", self._headers(self.api_key), body

    def parse_response(self, data):
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        return content, usage_to_tokens(data.get("usage"))

    def extract_stream_text(self, event):
        choices = event.get("choices") or []
        if not choices:
            return None
        return (choices[0].get("delta") or {}).get("content")

    def read_stream_usage(self, event, tokens):
        if event.get("usage"):
            usage_to_tokens(event["usage"], tokens)

    async def probe(self, client: httpx.AsyncClient, api_key: str) -> bool:
        if self.vendor.probe_model:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers=self._headers(api_key),
                json={
                    "model": self.vendor.probe_model,
                    "messages": [{"role": "user", "content": "ping"}],
                    "max_tokens": 1,
                },
            )
        else:
            response = await client.get(f"{self.base_url}/models", headers=self._headers(api_key))
        return response.status_code == 200
