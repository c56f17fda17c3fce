"""
Google Gemini adapter.

Gemini is the always-available provider: Free-plan users reach it through
the operator's key. Catalog ids are short aliases mapped to vendor model
names here.
"""
from typing import Optional

import httpx

from switchboard.errors import VendorError
from switchboard.providers.base import ProviderAdapter
from switchboard.providers.pricing import TokenCounts

MODEL_ALIASES = {
    "gemini-pro": "gemini-1.5-pro",
    "gemini-flash": "gemini-1.5-flash",
}


def usage_metadata_to_tokens(metadata: Optional[dict], tokens: Optional[TokenCounts] = None) -> TokenCounts:
    tokens = tokens or TokenCounts()
    if metadata:
        tokens.input = metadata.get("promptTokenCount", 0) or 0
        tokens.output = metadata.get("candidatesTokenCount", 0) or 0
        tokens.total = metadata.get("totalTokenCount", 0) or 0
    return tokens


class GoogleAdapter(ProviderAdapter):
    provider_id = "google"
    name = "Google Gemini"
    stream_done_sentinel = None

    @staticmethod
    def vendor_model(model_id: str) -> str:
        return MODEL_ALIASES.get(model_id, model_id)

    def _headers(self, api_key: str) -> dict:
        return {"x-goog-api-key": api_key, "Content-Type": "application/json"}

    def build_request(self, message, model_id, options, stream):
        parts = [{"text": self.text_with_documents(message, options.attachments)}]
        for attachment in options.attachments:
            if attachment.is_image:
                parts.append({"inline_data": {"mime_type": attachment.mime_type, "data": attachment.data}})

        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": options.effective_temperature,
                "maxOutputTokens": options.effective_max_tokens,
            },
        }
        if options.system_prompt:
            body["systemInstruction"] = {"parts": [{"text": options.system_prompt}]}

        model = self.vendor_model(model_id)
        if stream:
            url = f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse"
        else:
            url = f"{self.base_url}/models/{model}:generateContent"
        return url, self._headers(self.api_key), body

    @staticmethod
    def _candidate_text(data: dict) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def parse_response(self, data):
        if not data.get("candidates"):
            reason = (data.get("promptFeedback") or {}).get("blockReason")
            if reason:
                raise VendorError(f"{self.name} blocked the prompt: {reason}", provider=self.provider_id)
        return self._candidate_text(data), usage_metadata_to_tokens(data.get("usageMetadata"))

    def extract_stream_text(self, event):
        return self._candidate_text(event)

    def read_stream_usage(self, event, tokens):
        # usageMetadata is cumulative, the last frame wins
        if event.get("usageMetadata"):
            usage_metadata_to_tokens(event["usageMetadata"], tokens)

    async def probe(self, client: httpx.AsyncClient, api_key: str) -> bool:
        response = await client.get(f"{self.base_url}/models", headers=self._headers(api_key))
        return response.status_code == 200
