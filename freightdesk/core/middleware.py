# freightdesk/core/middleware.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import time
import logging

from freightdesk.core.exceptions import DomainError, error_payload

logger = logging.getLogger(__name__)

def setup_middleware(app: FastAPI):
    """Configure middleware and domain error handlers"""

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        logger.info(f"⚠️ {request.method} {request.url.path} - {exc.error_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_payload(exc))

    @app.middleware("http")
    async def log_requests(request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - "
            f"Time: {process_time:.4f}s"
        )

        return response
