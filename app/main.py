import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app import models
from app.config import settings
from app.database import SessionLocal, engine
from app.errors import AuthorizationServiceError
from app.schemas.responses import ErrorResponse

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables
    models.Base.metadata.create_all(bind=engine)
    # Seed demo users in development
    if settings.is_development:
        db = SessionLocal()
        try:
            count = db.query(models.User).count()
            if count == 0:
                import subprocess
                import sys
                subprocess.run([sys.executable, "scripts/seed_demo_users.py"], check=False)
        finally:
            db.close()
    yield


app = FastAPI(
    title="Dual-QR Transaction Authorization API",
    description="Authorizes person-to-person payments through QR1, QR2 and OTP proofs",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(AuthorizationServiceError)
async def service_error_handler(request: Request, exc: AuthorizationServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path,
                       exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.code, detail=exc.message).model_dump(),
    )


@app.get("/health")
def health_check():
    return {"status": "ok", "service": "qr-authorization-api"}


from app.routers import auth, transactions, webhooks  # noqa: E402
app.include_router(transactions.router, prefix="/api/v1/transactions", tags=["transactions"])
app.include_router(auth.router, prefix="/api/v1/auth/otp", tags=["auth"])
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["webhooks"])
