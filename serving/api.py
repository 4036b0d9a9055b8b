"""
FastAPI REST API for the recommendation serving pipeline.

Endpoints:
    POST /rank - Rank caller-supplied candidates for a user and context
    POST /recommend - Run the full pipeline (expansion, retrieval, ranking, rerank)
    GET /health - Health check endpoint
    GET /ready - Readiness probe endpoint
    GET /info - Loaded versions and configuration
    GET /rerank/guardrails - Reranker guardrail state
    POST /rerank/lift - Record the latest online lift of the reranker

Architecture:
    HTTP Request → FastAPI → Pydantic Validation → RecommendationService → HTTP Response

Error mapping:
- Stage failures never surface as errors: the response carries the fallback
  mode and failure kind in its diagnostics.
- UnknownIndexVersion / ConfigurationError → 500 with the error type.
- ValueError from the service → 400.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from common.config import load_config
from common.errors import ConfigurationError, UnknownIndexVersion
from serving.recommendation_service import RecommendationService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"

ServiceProvider = Callable[[], RecommendationService]


# ============================================================================
# Pydantic Models (Request/Response Schemas)
# ============================================================================

class RequestContext(BaseModel):
    """Request context used for features and reranker gating."""
    surface: str = Field("", description="Product surface, e.g. 'search' or 'home'")
    locale: str = Field("", description="Request locale, e.g. 'en-US'")


class RankRequest(BaseModel):
    """
    Request schema for ranking externally supplied candidates.

    Attributes:
        user_id: The user to rank for
        candidates: Candidate item ids in retrieval order
        context: Surface and locale
        query: Optional query; when present the reranker may run
        k: Optional cap on the returned list
    """
    user_id: int = Field(..., description="User ID to rank for")
    candidates: List[int] = Field(..., description="Candidate item IDs", max_length=1000)
    context: RequestContext = Field(default_factory=RequestContext)
    query: Optional[str] = Field(None, description="Query text for the reranker")
    k: Optional[int] = Field(None, gt=0, le=1000)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_id": 123,
                "candidates": [712, 45, 98],
                "context": {"surface": "home", "locale": "en-US"},
            }
        }
    )


class RecommendRequest(BaseModel):
    """
    Request schema for the full pipeline.

    Attributes:
        query: Raw user query
        user_id: The user to recommend for
        context: Surface and locale
        k: Number of items to return (default: 10, max: 200)
    """
    query: str = Field(..., description="Raw user query")
    user_id: int = Field(..., description="User ID to recommend for")
    context: RequestContext = Field(default_factory=RequestContext)
    k: int = Field(10, description="Number of items to return", gt=0, le=200)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "query": "running shoes",
                "user_id": 123,
                "context": {"surface": "search", "locale": "en-US"},
                "k": 10,
            }
        }
    )


class RankedItemResponse(BaseModel):
    """Single ranked item."""
    item_id: int
    score: Optional[float]


class RankResponse(BaseModel):
    """
    Ranked list response.

    Attributes:
        ranked: Items in final order
        model_version: Scoring model (or "popularity") that produced the order
        diagnostics: Mode, batch health, failures and per-stage latency
    """
    ranked: List[RankedItemResponse]
    model_version: str
    diagnostics: Dict[str, Any]

    model_config = ConfigDict(
        protected_namespaces=(),
        json_schema_extra={
            "example": {
                "ranked": [{"item_id": 45, "score": 0.91}, {"item_id": 712, "score": 0.88}],
                "model_version": "xgboost_pairwise-20240101120000",
                "diagnostics": {"mode": "primary", "ranking": {"batch_health": 1.0}},
            }
        },
    )


class LiftRequest(BaseModel):
    """Online lift of the reranker versus the primary order."""
    lift: float = Field(..., description="Relative lift; <= 0 disables the reranker")


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    checks: dict

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "checks": {
                    "candidate_service": "healthy",
                    "ranking_service": "healthy",
                    "feature_stores": "degraded",
                },
            }
        }
    )


class ServiceInfoResponse(BaseModel):
    """Service information response schema."""
    service_name: str
    version: str
    candidate_generation: dict
    ranking: dict
    config: dict


class ErrorResponse(BaseModel):
    """Error response schema."""
    error: str
    detail: Optional[str] = None
    status_code: int


# ============================================================================
# Routes
# ============================================================================

router = APIRouter()


def _get_service(request: Request) -> RecommendationService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Recommendation service is not initialized"
        )
    return service


@router.post(
    "/rank",
    response_model=RankResponse,
    summary="Rank candidates",
    description="Ranks externally supplied candidates; always returns a valid ordered list",
    responses={
        400: {"description": "Invalid request parameters", "model": ErrorResponse},
        500: {"description": "Configuration error", "model": ErrorResponse},
        503: {"description": "Service unavailable", "model": ErrorResponse},
    },
)
def rank(payload: RankRequest, request: Request) -> Dict[str, Any]:
    service = _get_service(request)
    result = service.rank_candidates(
        payload.user_id,
        payload.candidates,
        payload.context.model_dump(),
        query=payload.query,
        k=payload.k,
    )
    return result.to_dict()


@router.post(
    "/recommend",
    response_model=RankResponse,
    summary="Run the full pipeline for a query",
    responses={
        400: {"description": "Invalid request parameters", "model": ErrorResponse},
        500: {"description": "Configuration error", "model": ErrorResponse},
        503: {"description": "Service unavailable", "model": ErrorResponse},
    },
)
def recommend(payload: RecommendRequest, request: Request) -> Dict[str, Any]:
    """
    Expand, retrieve, rank and optionally rerank.

    Degraded stages are reported in diagnostics, never as errors.
    """
    service = _get_service(request)
    result = service.recommend(
        payload.query,
        payload.user_id,
        locale=payload.context.locale,
        surface=payload.context.surface,
        k=payload.k,
    )
    if not result.items:
        logger.warning(f"Empty recommendation list for user {payload.user_id}")
    return result.to_dict()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    responses={503: {"description": "Service is unhealthy", "model": HealthResponse}},
)
def health_check(request: Request):
    """
    Health check endpoint.

    Status Codes:
        200: Service is healthy (feature stores may be degraded)
        503: Service is unhealthy (one or more core checks failed)
    """
    service = getattr(request.app.state, "service", None)
    if service is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "checks": {"recommendation_service": "not initialized"}}
        )

    health = service.health_check()
    if health["status"] != "healthy":
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=health)
    return HealthResponse(**health)


@router.get("/ready", summary="Readiness check")
def readiness_check(request: Request):
    """
    Readiness probe: 503 until the service and its artifacts are loaded.
    """
    if getattr(request.app.state, "service", None) is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready", "reason": "service not initialized"}
        )
    return {"status": "ready"}


@router.get("/info", response_model=ServiceInfoResponse, summary="Service information")
def service_info(request: Request) -> ServiceInfoResponse:
    info = _get_service(request).get_service_info()
    return ServiceInfoResponse(
        service_name="recommendation-service",
        version=SERVICE_VERSION,
        candidate_generation=info["candidate_generation"],
        ranking=info["ranking"],
        config=info["config"],
    )


@router.get("/rerank/guardrails", summary="Reranker guardrail state")
def rerank_guardrails(request: Request) -> Dict[str, Any]:
    return _get_service(request).rerank_guardrails()


@router.post("/rerank/lift", summary="Record reranker online lift")
def rerank_lift(payload: LiftRequest, request: Request) -> Dict[str, Any]:
    """Non-positive lift disables reranking until a positive value is recorded."""
    service = _get_service(request)
    try:
        return service.record_rerank_lift(payload.lift)
    except RuntimeError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/", summary="Root endpoint")
def root():
    return {
        "message": "Recommendation Service API",
        "version": SERVICE_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


# ============================================================================
# Application Factory
# ============================================================================

def _default_provider() -> RecommendationService:
    return RecommendationService.from_config(load_config())


def _error_response(exc: Exception, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc), "status_code": status_code},
    )


def create_app(service_provider: Optional[ServiceProvider] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service_provider: Callable returning the RecommendationService.
            Defaults to building one from load_config().
    """
    provider = service_provider or _default_provider

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting recommendation service...")
        try:
            app.state.service = provider()
            logger.info("Recommendation service started successfully")
        except Exception as e:
            logger.error(f"Failed to start recommendation service: {e}")
            raise

        yield

        logger.info("Shutting down recommendation service...")
        app.state.service.close()
        app.state.service = None

    app = FastAPI(
        title="Recommendation Service API",
        description="Candidate generation, ranking and bounded reranking with graceful degradation",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.service = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        logger.info(f"→ {request.method} {request.url.path}")

        response = await call_next(request)

        duration = (time.time() - start_time) * 1000
        logger.info(
            f"← {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.1f}ms"
        )
        return response

    @app.exception_handler(UnknownIndexVersion)
    async def unknown_index_handler(request: Request, exc: UnknownIndexVersion):
        logger.error(f"Unknown index version on {request.url.path}: {exc}")
        return _error_response(exc, status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error on {request.url.path}: {exc}")
        return _error_response(exc, status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error_response(exc, status.HTTP_400_BAD_REQUEST)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "serving.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
