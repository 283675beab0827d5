import logging
from datetime import datetime

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from qrguard.core.config import settings
from qrguard.core.db import init_db
from qrguard.core.deps import get_now
from qrguard.domains.alerts.quota import default_policy
from qrguard.domains.alerts.router import router as alerts_router
from qrguard.domains.alerts.scheduler import build_scheduler
from qrguard.domains.alerts.schemas import HealthOut
from qrguard.domains.registry.router import router as registry_router
from qrguard.utils.telephony import dispatch_channels_available


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
scheduler = None


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    # Do not log full bodies outside dev.
    if settings.env == "dev":
        try:
            body = await request.body()
        except Exception:
            body = b""
        logger.info("[400] path=%s errors=%s body=%r", request.url.path, exc.errors(), body[:500])
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request",
                "errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()],
            }
        },
    )


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    detail = {"code": "INTERNAL_ERROR", "message": "Internal server error"}
    if settings.env == "dev":
        detail["error"] = str(exc)
    return JSONResponse(status_code=500, content={"detail": detail})


origins = [o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins if origins else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup() -> None:
    global scheduler
    init_db()
    if settings.quota_scheduler_enabled:
        policy = default_policy()
        scheduler = build_scheduler(policy)
        scheduler.start()
        logger.info("Quota reset scheduled daily at %02d:%02d %s", policy.hour, policy.minute, policy.tz)


@app.on_event("shutdown")
def _shutdown() -> None:
    global scheduler
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None


@app.get("/", response_model=HealthOut)
@app.get("/health", response_model=HealthOut)
def health(now: datetime = Depends(get_now)) -> HealthOut:
    return HealthOut(
        status="ok",
        service=settings.app_name,
        next_reset=default_policy().next_reset_time(now),
        dispatch_channels=dispatch_channels_available(),
    )


app.include_router(registry_router, tags=["registry"])
app.include_router(alerts_router, tags=["alerts"])
