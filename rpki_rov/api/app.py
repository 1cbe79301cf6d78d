import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from rpki_rov import __version__
from rpki_rov.tools.handlers import RPKITools
from rpki_rov.tools.schemas import (
    ParseROARequest, ParseROAResponse, ROAsResponse, ServerInfo, StatusResponse,
    ValidityResponse,
)
from rpki_rov.utils.error_handling import (
    ConfigurationError, FileNotFound, RelyingPartyUnavailable, RPKIError,
)

logger = logging.getLogger("rpki-rov.api")


def error_status(error: RPKIError) -> int:
    """HTTP status for a tool failure"""
    if isinstance(error, FileNotFound):
        return 404
    if isinstance(error, (RelyingPartyUnavailable, ConfigurationError)):
        return 503
    return 422


def create_app(tools: RPKITools) -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="RPKI ROV",
        description="ROA decoding and route origin validation tools",
        version=__version__,
        docs_url=None,
        redoc_url=None
    )
    app.state.tools = tools

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    @app.exception_handler(RPKIError)
    async def rpki_error_handler(request: Request, exc: RPKIError):
        status = error_status(exc)
        log = logger.warning if status < 500 else logger.error
        log(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse({"error": exc.to_dict()}, status_code=status)

    @app.get("/healthz")
    async def healthz():
        return JSONResponse({"status": "ok",
                             "timestamp": datetime.now(timezone.utc).isoformat()})

    @app.get("/tools", response_model=ServerInfo)
    def server_info():
        return tools.server_info()

    # Handlers block on I/O and CPU, so routes are sync and run in the threadpool
    @app.post("/tools/parse_roa_file", response_model=ParseROAResponse, response_model_by_alias=True)
    def parse_roa_file(request: ParseROARequest):
        return tools.parse_roa_file(request.path)

    @app.get("/tools/validity", response_model=ValidityResponse, response_model_by_alias=True)
    def validity(asn: str = Query(...), prefix: str = Query(...)):
        return tools.validity(asn, prefix)

    @app.get("/tools/roas", response_model=ROAsResponse, response_model_by_alias=True)
    def roas(asn: str = Query(...)):
        return tools.roas(asn)

    @app.get("/tools/status", response_model=StatusResponse, response_model_by_alias=True)
    def status():
        return tools.status()

    return app
