"""
clawgate FastAPI application.

Design constraints:
  - Raw API keys and session tokens are never stored or logged
  - All config comes from env vars
  - Every endpoint except /health is rate limited per client IP
  - The credential store is injected via app.state, never a module global
"""
import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.auth import Identity, authenticate_any, generate_api_key, get_store
from app.config import settings
from app.rate_limit import RATE_LIMITS, check_rate_limit, client_ip, get_rate_limit_stats
from app.schemas import CreateKeyRequest, CreateKeyResponse, RateLimitReport
from app.store import CredentialStore, SqlCredentialStore

# ── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("clawgate")

RATE_LIMIT_NOTE = "Rate limits are per-IP and reset on a sliding window basis."
AGENT_ID_REQUIRED = "agent_id is required and must be a non-empty string"

_DIGIT = re.compile(r"\d")


def mask_ip(ip: str) -> str:
    """Replace every decimal digit with "*". Masking, not hashing."""
    return _DIGIT.sub("*", ip)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ── Lifespan: open the credential store ──────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may attach their own store before startup.
    store = getattr(app.state, "store", None)
    owned = store is None
    if owned:
        store = SqlCredentialStore.from_url(settings.database_url)
        await store.init()
        app.state.store = store
    logger.info("clawgate started.")
    yield
    if owned:
        await store.close()
        del app.state.store
    logger.info("clawgate stopped.")


# ── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="clawgate",
    description="API key authentication and rate-limit reporting for agents",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins_list,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


# ── Health check (no auth, used by platform health probes) ───────────────────
@app.get("/health")
async def health():
    return {"status": "ok"}


# ── Rate-limit reporting ─────────────────────────────────────────────────────
@app.get("/rate-limits", response_model=RateLimitReport, response_model_by_alias=True)
async def rate_limits(request: Request, store: CredentialStore = Depends(get_store)):
    """
    Report the caller's own rate-limit consumption.

    Authenticated by API key or session cookie. Usage is tracked per client
    IP, so the response describes the IP, not the agent.
    """
    read = RATE_LIMITS["READ"]
    limited = check_rate_limit(request, read.limit, read.window_ms, "rate-limits")
    if limited is not None:
        return limited

    identity = await authenticate_any(request, store)
    if not isinstance(identity, Identity):
        return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    ip = client_ip(request)
    return {
        "ip_hash": mask_ip(ip),
        "limits": get_rate_limit_stats(ip),
        "note": RATE_LIMIT_NOTE,
    }


# ── Key issuance ─────────────────────────────────────────────────────────────
@app.post("/keys", response_model=CreateKeyResponse)
async def create_key(request: Request, store: CredentialStore = Depends(get_store)):
    """
    Issue an API key for an agent.

    - **agent_id**: non-empty string
    - The raw key is returned once; only its SHA-256 digest is stored
    """
    key_gen = RATE_LIMITS["KEY_GEN"]
    limited = check_rate_limit(request, key_gen.limit, key_gen.window_ms, "key_gen")
    if limited is not None:
        return limited

    # Parsed by hand so the rate limit applies before body validation.
    try:
        body = CreateKeyRequest.model_validate_json(await request.body())
    except ValidationError as exc:
        if any(err["loc"] and err["loc"][0] == "agent_id" for err in exc.errors()):
            return _error(status.HTTP_400_BAD_REQUEST, AGENT_ID_REQUIRED)
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid request body")

    raw_key, key_hash = generate_api_key()
    record = await store.put_api_key(body.agent_id, key_hash)
    logger.info("Issued API key %s for agent %s", record.id, body.agent_id)
    return CreateKeyResponse(api_key=raw_key, agent_id=body.agent_id)
