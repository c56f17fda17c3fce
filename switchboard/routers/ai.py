"""
AI generation routes: provider catalog, generation, streaming and the
user's global provider.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from switchboard.auth import get_current_user_id
from switchboard.database import get_db
from switchboard.errors import SwitchboardError
from switchboard.providers.base import Attachment, GenerationOptions
from switchboard.services.ai_operations import AIOperationService
from switchboard.services.provider_router import ProviderRouter, ProviderTarget

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["AI"])


class AttachmentIn(BaseModel):
    mime_type: str
    data: str  # base64
    name: Optional[str] = None


class GenerationParams(BaseModel):
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    system_prompt: Optional[str] = None
    attachments: list[AttachmentIn] = []
    session_id: Optional[str] = None
    message_id: Optional[str] = None

    def to_options(self) -> GenerationOptions:
        return GenerationOptions(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            system_prompt=self.system_prompt,
            attachments=[Attachment(a.mime_type, a.data, a.name) for a in self.attachments],
            session_id=self.session_id,
            message_id=self.message_id,
        )


class GenerateRequest(GenerationParams):
    message: str
    provider_id: str
    model_id: str


class TargetIn(BaseModel):
    provider_id: str
    model_id: str


class MultiGenerateRequest(GenerationParams):
    message: str
    targets: list[TargetIn] = Field(min_length=1)


class StreamRequest(GenerationParams):
    message: str


class CanUseRequest(BaseModel):
    provider_id: str
    model_id: Optional[str] = None


class GlobalProviderRequest(BaseModel):
    provider_id: str
    model_id: str
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    system_prompt: Optional[str] = None


class OperationRequest(BaseModel):
    content: str
    context: Optional[str] = None
    custom_prompt: Optional[str] = None
    target_language: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)


async def get_provider_router(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> ProviderRouter:
    return await ProviderRouter.for_user(db, user_id)


@router.get("/providers")
async def list_providers(providers: ProviderRouter = Depends(get_provider_router)):
    return {"providers": await providers.get_available_providers()}


@router.get("/providers/{provider_id}/access")
async def provider_access(provider_id: str, providers: ProviderRouter = Depends(get_provider_router)):
    try:
        return await providers.get_provider_access_info(provider_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/ai/generate")
async def generate(body: GenerateRequest, providers: ProviderRouter = Depends(get_provider_router)):
    """
    Generate a single response.

    Always answers 200 with an AI response; ``status`` is one of
    completed, denied or failed and ``error``/``error_type`` explain the
    non-completed ones.
    """
    response = await providers.generate_response(
        body.message, body.provider_id, body.model_id, body.to_options()
    )
    return response.to_dict()


@router.post("/ai/generate/multi")
async def generate_multi(body: MultiGenerateRequest, providers: ProviderRouter = Depends(get_provider_router)):
    targets = [ProviderTarget(t.provider_id, t.model_id) for t in body.targets]
    responses = await providers.generate_multiple_responses(body.message, targets, body.to_options())
    return {"responses": [r.to_dict() for r in responses]}


@router.post("/ai/stream")
async def stream(body: StreamRequest, providers: ProviderRouter = Depends(get_provider_router)):
    """
    Stream the global provider's answer as server-sent events.

    Gate and configuration failures are answered as regular JSON errors.
    Once streaming has started, a vendor failure is sent as a final
    ``{"error": ...}`` frame.
    """
    chat_stream = await providers.open_global_stream(body.message, body.to_options())

    async def events():
        try:
            async for text in chat_stream:
                yield f"data: {json.dumps({'content': text})}\n\n"
        except SwitchboardError as e:
            logger.warning(
                "Stream failed",
                extra={"user_id": providers.user_id, "error_type": e.error_type, "error": e.message},
            )
            yield f"data: {json.dumps({'error': e.message, 'error_type': e.error_type})}\n\n"
            return
        finally:
            await chat_stream.aclose()
        yield f"data: {json.dumps({'done': True, 'tokens': chat_stream.tokens.to_dict()})}\n\n"
        yield "data: [DONE]\n\n"

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/ai/can-use")
async def can_use(body: CanUseRequest, providers: ProviderRouter = Depends(get_provider_router)):
    has_key = await providers.keys.has_key(providers.user_id, body.provider_id)
    check = providers.subscriptions.can_use_provider(body.provider_id, body.model_id, has_user_api_key=has_key)
    return check.to_dict()


@router.get("/ai/global-provider")
async def get_global_provider(providers: ProviderRouter = Depends(get_provider_router)):
    target = providers.get_global_provider()
    return {"provider_id": target.provider_id, "model_id": target.model_id}


@router.put("/ai/global-provider")
async def set_global_provider(body: GlobalProviderRequest, providers: ProviderRouter = Depends(get_provider_router)):
    try:
        target = await providers.set_global_provider(
            body.provider_id, body.model_id, body.temperature, body.max_tokens, body.system_prompt
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"provider_id": target.provider_id, "model_id": target.model_id}


@router.get("/ai/operations")
async def list_operations():
    return {
        "operations": [
            {"id": op.id, "name": op.name, "description": op.description}
            for op in AIOperationService.list_operations()
        ]
    }


@router.post("/ai/operations/{operation_id}")
async def run_operation(
    operation_id: str,
    body: OperationRequest,
    providers: ProviderRouter = Depends(get_provider_router),
):
    result = await AIOperationService(providers).execute_operation(
        operation_id,
        body.content,
        context=body.context,
        custom_prompt=body.custom_prompt,
        target_language=body.target_language,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
    )
    if not result.success and result.error and result.error.startswith("Unknown operation"):
        raise HTTPException(status_code=404, detail=result.error)
    return result.to_dict()
