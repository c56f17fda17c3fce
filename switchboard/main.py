import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from switchboard.config import settings
from switchboard.database import init_db
from switchboard.errors import SwitchboardError
from switchboard.routers import ai, health, mcp, provider_keys, subscriptions
from switchboard.routers.common import switchboard_error_handler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and verify stored credentials on startup."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await init_db()

    # Stored keys that no longer decrypt would otherwise fail silently at dispatch
    from switchboard.services.encryption_validator import validate_encryption_key
    encryption_status = await validate_encryption_key()
    app.state.encryption_status = encryption_status
    if encryption_status["status"] == "error":
        logger.error(
            "ENCRYPTION_KEY cannot decrypt stored credentials; restore the original key "
            "or delete and re-add the affected credentials",
            extra={"total": encryption_status.get("total"), "decryptable": encryption_status.get("decryptable")},
        )
    elif encryption_status["status"] == "warning":
        logger.warning(encryption_status["message"])

    yield


app = FastAPI(
    title="Switchboard",
    description="Multi-provider AI routing with subscription entitlements and tool integrations",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(SwitchboardError, switchboard_error_handler)

app.include_router(health.router)
app.include_router(ai.router)
app.include_router(subscriptions.router)
app.include_router(provider_keys.router)
app.include_router(mcp.router)
