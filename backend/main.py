import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from settings import Settings, get_settings
from src.departures.models import AggregatedResult, ErrorResponse
from src.departures.service import aggregate
from src.digitransit.client import DigitransitClient
from src.digitransit.errors import MalformedResponseError, NotFoundError, UpstreamError
from src.middleware import RequestLoggingMiddleware
from src.monitoring import get_metrics, record_aggregation

settings = get_settings()

# Plain key=value telemetry lines; level and logger name prefix every record
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


def _build_client(cfg: Settings) -> DigitransitClient:
    return DigitransitClient(
        api_key=cfg.require_digitransit_key(),
        routing_url=cfg.routing_url,
        geocode_url=cfg.geocode_url,
        lang=cfg.geocode_lang,
        timeout=cfg.upstream_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing key: refuse to start (ConfigError) unless the deployment opts into per-request 500s
    if settings.digitransit_key.strip() or settings.require_key_at_startup:
        app.state.digitransit_client = _build_client(settings)
    else:
        logger.error("telemetry config_error missing DIGITRANSIT_KEY; /api/next will answer 500")
        app.state.digitransit_client = None
    yield
    client: DigitransitClient | None = app.state.digitransit_client
    app.state.digitransit_client = None
    if client is not None:
        await client.aclose()


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Query parameter errors use the same {"error": ...} envelope as everything else."""
    problems = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ())[1:]) or 'request'}: {e.get('msg', 'invalid')}"
        for e in exc.errors()
    )
    return _error(422, problems or "Invalid request")


@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    """Consistent JSON 500 for anything unexpected; the stack trace stays in the server log."""
    logger.exception("telemetry unhandled_exception path=%s", request.url.path)
    return _error(500, "An unexpected error occurred. Please try again later.")


# Order: last added = outermost. RequestLogging wraps CORS.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


@app.get("/favicon.ico", include_in_schema=False)
@limiter.exempt
def favicon(request: Request):
    """Return 204 so browser favicon requests don't log 404."""
    return Response(status_code=204)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}


@app.get("/metrics")
@limiter.exempt
def metrics(request: Request):
    """Request counts, aggregation outcomes and uptime."""
    return get_metrics()


@app.get(
    "/api/next",
    response_model=AggregatedResult,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def next_departures(
    request: Request,
    address: str = Query(default="", description="Free-text address; blank uses the default address"),
    radius: int | None = Query(default=None, ge=1, description="Search radius in meters"),
    n: int | None = Query(default=None, ge=1, description="Departures requested per stop"),
):
    """
    Upcoming departures of the allow-listed lines near an address, soonest first.
    Returns { addressUsed, radius, results: [{ stopName, distanceM, line, headsign, realtime, time }] }.
    """
    address = address.strip() or settings.default_address
    radius_m = radius if radius is not None else settings.default_radius_m
    per_stop = n if n is not None else settings.default_departures_per_stop

    client: DigitransitClient | None = getattr(app.state, "digitransit_client", None)
    if client is None:
        record_aggregation("config_error")
        return _error(500, "Missing DIGITRANSIT_KEY. Set it in the environment or .env file.")

    logger.info("telemetry route=next radius_m=%s n=%s", radius_m, per_stop)
    try:
        result = await aggregate(
            address,
            radius_m,
            per_stop,
            config=settings.pipeline_config(),
            resolve_address=client.resolve_address,
            find_nearby_stops=client.find_nearby_stops,
            fetch_departures=client.fetch_departures,
        )
    except NotFoundError:
        record_aggregation("not_found")
        return _error(404, "Address not found")
    except (UpstreamError, MalformedResponseError) as e:
        record_aggregation("upstream_error")
        logger.warning("telemetry next_upstream_error error=%s", str(e))
        return _error(500, str(e))
    except Exception:
        record_aggregation("error")
        logger.exception("telemetry next_error")
        return _error(500, "An unexpected error occurred. Please try again later.")
    record_aggregation("ok")
    return result


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.host, port=settings.port)
