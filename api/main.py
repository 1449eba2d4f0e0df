import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taxdesk import __version__
from taxdesk.errors import (
    Conflict,
    FilingError,
    IllegalState,
    InvalidAssignee,
    InvalidTransition,
    NoAssignment,
    NotFound,
    Unavailable,
    ValidationError,
)
from taxdesk.settings import API_DEBUG, LOG_LEVEL, configure_logging, settings

from .filings import router as filings_router

configure_logging("DEBUG" if API_DEBUG else LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="taxdesk API",
    version=__version__,
    description="HTTP layer over the filing lifecycle & CA assignment engine.",
)

# --- CORS ----------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)

# --- Error mapping -------------------------------------------------
STATUS_CODES = {
    ValidationError: 400,
    NotFound: 404,
    Conflict: 409,
    InvalidTransition: 409,
    InvalidAssignee: 422,
    NoAssignment: 409,
    IllegalState: 409,
    Unavailable: 503,
}


@app.exception_handler(FilingError)
async def filing_error_handler(request: Request, exc: FilingError) -> JSONResponse:
    code = next((c for cls, c in STATUS_CODES.items() if isinstance(exc, cls)), 500)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")
    return JSONResponse(status_code=code, content=exc.to_dict())


# --- Include Routers ----------------------------------------------------------
app.include_router(filings_router)


# ---------- health-check ----------
@app.get("/")
def root():
    return {"status": "ok", "msg": "taxdesk API is alive"}


if __name__ == "__main__":
    import uvicorn

    from taxdesk.settings import API_HOST, API_PORT

    uvicorn.run("api.main:app", host=API_HOST, port=API_PORT, reload=API_DEBUG)
