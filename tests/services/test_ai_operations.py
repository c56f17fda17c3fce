"""Tests for canned AI operations."""
from dataclasses import dataclass, field

from switchboard.providers.base import GenerationOptions
from switchboard.providers.pricing import TokenCounts
from switchboard.services.ai_operations import AI_OPERATIONS, AIOperationService
from switchboard.services.provider_router import STATUS_COMPLETED, STATUS_DENIED, AIResponse


@dataclass
class RecordingRouter:
    """Stands in for ProviderRouter.generate_global_response."""
    status: str = STATUS_COMPLETED
    calls: list = field(default_factory=list)

    async def generate_global_response(self, prompt: str, options: GenerationOptions) -> AIResponse:
        self.calls.append((prompt, options))
        return AIResponse(
            id="r-1",
            provider_id="google",
            model_id="gemini-flash",
            content="done" if self.status == STATUS_COMPLETED else "",
            tokens=TokenCounts(5, 7, 12),
            status=self.status,
            error=None if self.status == STATUS_COMPLETED else "Upgrade to Pro",
        )


class TestExecuteOperation:
    async def test_uses_operation_defaults(self):
        router = RecordingRouter()
        result = await AIOperationService(router).execute_operation("summarize", "Long text")

        prompt, options = router.calls[0]
        assert prompt == "Long text"
        assert options.system_prompt == AI_OPERATIONS["summarize"].system_prompt
        assert (options.temperature, options.max_tokens) == (0.3, 500)
        assert result.success is True
        assert result.result == "done"
        assert result.metadata["tokens"] == 12

    async def test_overrides(self):
        router = RecordingRouter()
        await AIOperationService(router).execute_operation(
            "rewrite", "Text", custom_prompt="Pirate voice", temperature=0.0, max_tokens=50
        )

        _, options = router.calls[0]
        assert options.system_prompt == "Pirate voice"
        assert (options.temperature, options.max_tokens) == (0.0, 50)

    async def test_translate_with_context(self):
        router = RecordingRouter()
        await AIOperationService(router).execute_operation(
            "translate", "Hello", context="A greeting", target_language="German"
        )

        prompt, _ = router.calls[0]
        assert prompt == "Context: A greeting\n\nTranslate the following into German:\n\nHello"

    async def test_failed_generation(self):
        router = RecordingRouter(status=STATUS_DENIED)
        result = await AIOperationService(router).execute_operation("explain", "Why?")

        assert result.success is False
        assert result.error == "Upgrade to Pro"
        assert result.metadata["provider"] == "google"

    async def test_unknown_operation(self):
        router = RecordingRouter()
        result = await AIOperationService(router).execute_operation("sing", "x")

        assert result.success is False
        assert router.calls == []
