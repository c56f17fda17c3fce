"""
Shared pieces of the JSON API: error bodies and the exception handler.
"""
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from switchboard.errors import SwitchboardError, VendorError

logger = logging.getLogger(__name__)

TRANSIENT = ("timeout", "stream_error", "encryption_unavailable")
PERMANENT = ("configuration_error", "invalid_parameters", "credential_error", "auth_flow_error")
POLICY = ("entitlement_denied",)
UPSTREAM = ("provider_error", "tool_execution_error")


def categorize(error_type: str) -> str:
    if error_type in TRANSIENT:
        return "transient"
    if error_type in PERMANENT:
        return "permanent"
    if error_type in POLICY:
        return "policy"
    if error_type in UPSTREAM:
        return "upstream"
    return "unknown"


def make_error_response(
    status_code: int,
    error_type: str,
    message: str,
    provider: Optional[str] = None,
    category: Optional[str] = None,
    recovery: Optional[dict] = None,
    context: Optional[dict] = None,
) -> JSONResponse:
    """
    Structured error body for API callers.

    Categories:
    - transient: Retry may succeed (timeouts, dropped streams)
    - permanent: Won't succeed without changes (bad input, missing key)
    - policy: Blocked by the subscription gate
    - upstream: Vendor-side issue
    """
    if category is None:
        category = categorize(error_type)

    if recovery is None:
        if category == "transient":
            recovery = {"action": "retry_with_backoff", "delay_ms": 1000, "max_retries": 3}
        elif error_type == "entitlement_denied":
            recovery = {"action": "upgrade_or_add_key"}
        elif error_type == "service_not_connected":
            recovery = {"action": "reconnect_service"}

    error_body = {
        "error": {
            "code": error_type.upper(),
            "message": message,
            "type": error_type,
            "category": category,
        }
    }
    if provider:
        error_body["error"]["provider"] = provider
    if recovery:
        error_body["error"]["recovery"] = recovery
    if context:
        error_body["error"]["context"] = context

    return JSONResponse(status_code=status_code, content=error_body)


async def switchboard_error_handler(request: Request, exc: SwitchboardError) -> JSONResponse:
    context = None
    if hasattr(exc, "requires_api_key"):
        context = {"requires_api_key": exc.requires_api_key, "requires_upgrade": exc.requires_upgrade}
    if exc.status_code >= 500:
        logger.warning(
            "Request failed",
            extra={"path": request.url.path, "error_type": exc.error_type, "error": exc.message},
        )
    return make_error_response(
        exc.status_code,
        exc.error_type,
        exc.message,
        provider=exc.provider if isinstance(exc, VendorError) else None,
        context=context,
    )
