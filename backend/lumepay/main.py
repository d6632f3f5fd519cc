import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lumepay.core.errors import GatewayError, InvalidInput
from lumepay.core.logging_config import configure_logging
from lumepay.database import Base, engine
from lumepay.database_init import ensure_database
from lumepay.models import merchant, api_key, intent, payment, webhook, system_setting  # noqa: F401
from lumepay.routes import admin, auth, intents, keys, settings, webhooks
from lumepay.services.webhooks import WebhookDispatcher, get_dispatcher

configure_logging()
logger = logging.getLogger("lumepay")


def _dispatcher(app: FastAPI) -> WebhookDispatcher:
    # Honour dependency overrides so tests can swap the dispatcher
    provider = app.dependency_overrides.get(get_dispatcher, get_dispatcher)
    return provider()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- ensure database exists and create tables ---
    ensure_database()
    Base.metadata.create_all(bind=engine)

    dispatcher = _dispatcher(app)
    await dispatcher.start()
    logger.info("LumePay API started")
    try:
        yield
    finally:
        await dispatcher.stop()


app = FastAPI(title="LumePay API", lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Errors ---
@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    if exc.status_code >= 500:
        logger.warning(
            "Request failed",
            extra={"path": request.url.path, "kind": exc.kind, "detail": exc.message},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    error = InvalidInput("Request body is invalid", details={"errors": errors})
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=500, content={"error": "Internal", "message": "Something went wrong"})


# --- Routes ---
app.include_router(intents.router)
app.include_router(webhooks.router)
app.include_router(keys.router)
app.include_router(settings.router)
app.include_router(auth.router)
app.include_router(admin.router)


# --- Root route ---
@app.get("/")
def root():
    return {"message": "LumePay API is running"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
