"""
Canned AI operations (summarize, translate, ...) run through the user's
global provider.
"""
from dataclasses import dataclass, field
from typing import Optional

from switchboard.providers.base import GenerationOptions
from switchboard.services.provider_router import ProviderRouter


@dataclass(frozen=True)
class AIOperation:
    id: str
    name: str
    description: str
    system_prompt: str
    temperature: float
    max_tokens: int


AI_OPERATIONS: dict[str, AIOperation] = {
    op.id: op
    for op in (
        AIOperation(
            "summarize", "Summarize", "Create a concise summary of the content",
            "You are a professional summarizer. Create a clear, concise summary of the provided "
            "content. Focus on the main points and key information.",
            0.3, 500,
        ),
        AIOperation(
            "explain", "Explain", "Provide a detailed explanation",
            "You are an expert explainer. Break down complex topics into easy-to-understand "
            "explanations. Use clear language and provide context where needed.",
            0.5, 800,
        ),
        AIOperation(
            "rewrite", "Rewrite", "Rewrite content in a different style",
            "You are a skilled writer. Rewrite the provided content while maintaining its core "
            "meaning. Improve clarity, flow, and readability.",
            0.7, 1000,
        ),
        AIOperation(
            "translate", "Translate", "Translate content to another language",
            "You are a professional translator. Translate the provided content accurately while "
            "maintaining its tone and context.",
            0.2, 1000,
        ),
        AIOperation(
            "analyze", "Analyze", "Analyze and provide insights",
            "You are an analytical expert. Analyze the provided content and provide meaningful "
            "insights, patterns, and observations.",
            0.4, 1200,
        ),
        AIOperation(
            "improve_writing", "Improve Writing", "Enhance writing quality and style",
            "You are a writing coach. Improve the provided text by enhancing grammar, style, "
            "clarity, and flow. Maintain the original voice and intent.",
            0.6, 1000,
        ),
        AIOperation(
            "generate_ideas", "Generate Ideas", "Brainstorm creative ideas and suggestions",
            "You are a creative brainstorming assistant. Generate innovative, practical ideas "
            "related to the given topic.",
            0.8, 800,
        ),
        AIOperation(
            "fact_check", "Fact Check", "Verify facts and provide corrections",
            "You are a fact-checking expert. Analyze the provided content for factual accuracy "
            "and point out potential inaccuracies with corrections.",
            0.2, 1000,
        ),
    )
}


@dataclass
class OperationResult:
    success: bool
    result: Optional[str] = None
    error: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "result": self.result,
            "error": self.error,
            "metadata": self.metadata,
        }


class AIOperationService:
    def __init__(self, router: ProviderRouter):
        self.router = router

    @staticmethod
    def list_operations() -> list[AIOperation]:
        return list(AI_OPERATIONS.values())

    async def execute_operation(
        self,
        operation_id: str,
        content: str,
        context: Optional[str] = None,
        custom_prompt: Optional[str] = None,
        target_language: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> OperationResult:
        operation = AI_OPERATIONS.get(operation_id)
        if operation is None:
            return OperationResult(success=False, error=f"Unknown operation: {operation_id}")

        prompt = content
        if operation_id == "translate" and target_language:
            prompt = f"Translate the following into {target_language}:\n\n{content}"
        if context:
            prompt = f"Context: {context}\n\n{prompt}"

        options = GenerationOptions(
            system_prompt=custom_prompt or operation.system_prompt,
            temperature=operation.temperature if temperature is None else temperature,
            max_tokens=max_tokens or operation.max_tokens,
        )
        response = await self.router.generate_global_response(prompt, options)

        metadata = {
            "operation": operation_id,
            "provider": response.provider_id,
            "model": response.model_id,
            "tokens": response.tokens.total,
            "cost": response.cost,
            "latency": response.latency,
        }
        if not response.ok:
            return OperationResult(success=False, error=response.error, metadata=metadata)
        return OperationResult(success=True, result=response.content, metadata=metadata)
