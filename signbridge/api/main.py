"""
SignBridge - Pipefy -> D4Sign contract automation
=================================================
FastAPI service receiving Pipefy webhooks. When the trigger checkbox on a
card is marked, the card becomes a D4Sign contract, the contract link is
written back onto the card and the card moves to the "contract sent" phase.

Run:
  python -m signbridge.api.main
"""

from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()  # Load .env file from current directory or parent

import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

from signbridge import __version__
from signbridge.core.errors import ClientInputError
from signbridge.core.guard import InMemoryConcurrencyGuard
from signbridge.core.models import Outcome
from signbridge.core.orchestrator import Orchestrator, OrchestratorOptions
from signbridge.integrations.d4sign import D4SignClient
from signbridge.integrations.http import ResilientClient
from signbridge.integrations.pipefy import PipefyClient
from signbridge.shared.config import Settings, get_config
from signbridge.shared.security import verify_token

logger = structlog.get_logger()
settings = get_config()


def build_orchestrator(config: Settings, http: ResilientClient) -> Orchestrator:
    """Wire the service clients and the guard from configuration."""
    pipefy = PipefyClient(
        http,
        api_key=config.pipefy_api_key,
        endpoint=config.pipefy_graphql_endpoint,
    )
    d4sign = D4SignClient(
        http,
        token=config.d4sign_token,
        crypt_key=config.d4sign_crypt_key,
        base_url=config.d4sign_base_url,
        document_url=config.d4sign_document_url,
    )
    guard = InMemoryConcurrencyGuard(
        lock_timeout=config.lock_timeout_seconds,
        cooldown=config.cooldown_seconds,
    )
    return Orchestrator(pipefy, d4sign, guard, OrchestratorOptions.from_settings(config))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting SignBridge", env=settings.app_env, version=__version__)

    http = ResilientClient()
    app.state.orchestrator = build_orchestrator(settings, http)

    yield

    await http.aclose()
    logger.info("Shutting down SignBridge")


app = FastAPI(
    title="SignBridge",
    description="Pipefy card to D4Sign contract automation",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(ClientInputError)
async def client_input_error_handler(request: Request, exc: ClientInputError):
    logger.warning("Rejected webhook", error=exc.message, code=exc.error_code)
    return JSONResponse(status_code=400, content={"ok": False, "error": exc.message})


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_settings() -> Settings:
    return get_config()


@app.get("/health")
async def health_check():
    """Health check for load balancers / k8s probes."""
    return {"ok": True}


@app.get("/")
async def root():
    """Root endpoint."""
    return {"name": "SignBridge", "version": __version__, "webhook": "/webhook"}


async def _receive_webhook(
    request: Request,
    orchestrator: Orchestrator,
    config: Settings,
    token: str | None,
) -> JSONResponse:
    if config.webhook_secret and not verify_token(token, config.webhook_secret):
        logger.warning("Rejected webhook with invalid token")
        return JSONResponse(status_code=401, content={"ok": False, "error": "invalid webhook token"})

    try:
        payload = await request.json()
    except ValueError as exc:
        raise ClientInputError("invalid JSON body") from exc

    result = await orchestrator.handle(payload)
    logger.info(
        "Webhook processed",
        card_id=result.card_id,
        outcome=str(result.outcome),
        ok=result.ok,
    )

    # Only a missing card id is the sender's fault; everything else is a 200
    # so Pipefy does not keep redelivering failures it cannot fix.
    status_code = 400 if result.outcome is Outcome.NO_CARD_ID else 200
    return JSONResponse(status_code=status_code, content=result.body())


@app.post("/webhook")
async def webhook(
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    config: Settings = Depends(get_settings),
    x_webhook_token: str | None = Header(default=None),
    token: str | None = None,
):
    """Pipefy webhook: card field updated / card moved / card created."""
    return await _receive_webhook(request, orchestrator, config, x_webhook_token or token)


@app.post("/pipefy")
async def pipefy_webhook(
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    config: Settings = Depends(get_settings),
    x_webhook_token: str | None = Header(default=None),
    token: str | None = None,
):
    """Same as /webhook; kept for webhooks registered against the old path."""
    return await _receive_webhook(request, orchestrator, config, x_webhook_token or token)


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting SignBridge", port=settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
