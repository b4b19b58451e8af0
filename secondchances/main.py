import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from secondchances/.env (tests configure env themselves)
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from secondchances.core.config import settings, validate_config  # noqa: E402
from secondchances.core.database import create_all_tables  # noqa: E402
from secondchances.core.logging import configure_logging  # noqa: E402
from secondchances.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from secondchances.core.validation import validate_env  # noqa: E402
from secondchances.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from secondchances.api import auth, billing, health, posts  # noqa: E402

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("secondchances")
    logger.info("Starting Second Chances API...")
    app.state.startup_time = time.time()
    create_all_tables()
    try:
        yield
    finally:
        logging.getLogger("secondchances").info("Stopping Second Chances API...")


app = FastAPI(title="Second Chances API", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(posts.router, prefix="/api/posts", tags=["posts"])
app.include_router(billing.router, prefix="/api")
app.include_router(billing.webhook_router, prefix="/api")
app.include_router(health.root_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("secondchances.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
