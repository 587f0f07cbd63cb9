import hmac
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from lib.config import BridgeConfig, load_config
from lib.errors import (
    AuthorizationError,
    BridgeError,
    ConfigurationError,
    MalformedInputError,
    UpstreamError,
)
from lib.google_drive import DriveFolderProvisioner
from lib.lacrm_client import LacrmClient
from lib.supabase_client import create_supabase
from lib.webhook import WebhookHandler, parse_event, verify_signature
from syncs.booking_sync import build_reconciler

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@lru_cache
def get_config() -> BridgeConfig:
    return load_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail at startup, not on the first request
    get_config()
    yield


app = FastAPI(title="Booking Bridge", lifespan=lifespan)

# ============================================================================
# SYNC LOCKING - Prevent overlapping passes within this process
# ============================================================================
_sync_lock = asyncio.Lock()
_last_sync_start: Optional[datetime] = None
_last_sync_end: Optional[datetime] = None
_last_sync_results: Optional[dict] = None

_supabase = None
_drive: Optional[DriveFolderProvisioner] = None


def get_supabase(config: BridgeConfig = Depends(get_config)):
    global _supabase
    if _supabase is None:
        _supabase = create_supabase(config)
    return _supabase


def get_drive(config: BridgeConfig = Depends(get_config)) -> DriveFolderProvisioner:
    # Shared so the cached access token survives between webhook calls
    global _drive
    if _drive is None:
        _drive = DriveFolderProvisioner.from_config(config)
    return _drive


def get_reconciler(config: BridgeConfig = Depends(get_config), supabase=Depends(get_supabase)):
    reconciler = build_reconciler(config, supabase)
    try:
        yield reconciler
    finally:
        reconciler.booking_source.close()
        reconciler.crm.close()


def get_webhook_handler(
    config: BridgeConfig = Depends(get_config),
    drive: DriveFolderProvisioner = Depends(get_drive),
    supabase=Depends(get_supabase),
):
    crm = LacrmClient.from_config(config)
    try:
        yield WebhookHandler(crm, drive, config.lacrm_folder_field, supabase=supabase)
    finally:
        crm.close()


def verify_trigger_secret(
    authorization: Optional[str] = Header(None),
    config: BridgeConfig = Depends(get_config),
):
    expected = config.sync_trigger_secret
    if not expected:
        raise AuthorizationError("Sync trigger secret is not configured")
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip().encode(), expected.encode()):
        raise AuthorizationError("Bad or missing bearer token")


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error: {exc}")
    return JSONResponse(status_code=500, content={"status": "error", "error_type": "configuration", "error": "server misconfigured"})


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError):
    logger.warning(f"Rejected {request.url.path}: {exc}")
    return JSONResponse(status_code=401, content={"status": "error", "error": "unauthorized"})


@app.get("/")
async def root():
    return PlainTextResponse("alive")


@app.get("/health")
async def health_check():
    """
    Returns sync lock status and the last pass summary.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sync": {
            "sync_in_progress": _sync_lock.locked(),
            "last_sync_start": _last_sync_start.isoformat() if _last_sync_start else None,
            "last_sync_end": _last_sync_end.isoformat() if _last_sync_end else None,
            "last_sync_results": _last_sync_results,
        },
    }


@app.post("/sync/bookings", dependencies=[Depends(verify_trigger_secret)])
async def sync_bookings(reconciler=Depends(get_reconciler)):
    """
    Run one booking sync pass (TidyCal -> LACRM).

    Meant to be hit by a scheduler with concurrency 1; the lock only guards
    against overlap inside this process.
    """
    global _last_sync_start, _last_sync_end, _last_sync_results

    if _sync_lock.locked():
        logger.warning("Booking sync already in progress, skipping this request")
        return JSONResponse(status_code=409, content={
            "status": "skipped",
            "reason": "sync_already_in_progress",
            "last_sync_start": _last_sync_start.isoformat() if _last_sync_start else None,
        })

    async with _sync_lock:
        _last_sync_start = datetime.now(timezone.utc)
        try:
            outcome = await run_in_threadpool(reconciler.run_sync_pass)
        except (UpstreamError, MalformedInputError, ConfigurationError) as e:
            logger.error(f"Booking sync failed: {e}")
            _last_sync_results = {"status": "error", "error": str(e)}
            return JSONResponse(status_code=500, content={
                "status": "error",
                "error_type": type(e).__name__,
                "error": str(e),
            })
        except Exception as e:
            logger.error(f"Booking sync failed: {e}", exc_info=True)
            _last_sync_results = {"status": "error", "error": str(e)}
            return JSONResponse(status_code=500, content={
                "status": "error",
                "error_type": "InternalError",
                "error": str(e),
            })
        finally:
            _last_sync_end = datetime.now(timezone.utc)

        _last_sync_results = outcome.to_dict()
        # Lenient passes that hit per-booking failures report "partial"
        status = "partial" if outcome.failed else "success"
        return {"status": status, "outcome": _last_sync_results}


@app.post("/")
@app.post("/webhook/lacrm")
async def lacrm_webhook(
    request: Request,
    x_hook_secret: Optional[str] = Header(None),
    x_hook_signature: Optional[str] = Header(None),
    config: BridgeConfig = Depends(get_config),
    handler: WebhookHandler = Depends(get_webhook_handler),
):
    """
    LACRM webhook receiver. Responses carry no detail beyond the status.
    """
    # Handshake: echo X-Hook-Secret back
    if x_hook_secret:
        return PlainTextResponse("ok", headers={"X-Hook-Secret": x_hook_secret})

    raw_body = await request.body()
    try:
        verify_signature(config.lacrm_hook_secret, raw_body, x_hook_signature)
        payload = parse_event(raw_body)
    except ConfigurationError as e:
        logger.error(f"Webhook rejected: {e}")
        return Response(status_code=500)
    except AuthorizationError as e:
        logger.warning(f"Webhook rejected: {e}")
        return Response(status_code=401)
    except MalformedInputError as e:
        logger.warning(f"Webhook rejected: {e}")
        return Response(status_code=400)

    try:
        result = await run_in_threadpool(handler.handle, payload)
    except MalformedInputError as e:
        logger.warning(f"Webhook payload rejected: {e}")
        return Response(status_code=400)
    except BridgeError as e:
        logger.error(f"Webhook processing failed: {e}")
        return Response(status_code=500)

    logger.info(f"Webhook handled: {result}")
    return PlainTextResponse("ok")
