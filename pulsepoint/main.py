"""FastAPI application entry point"""

from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pulsepoint.config.settings import settings
from pulsepoint.github.contracts import FetchResult
from pulsepoint.services.dashboard import DashboardService, InvalidRequestError
from pulsepoint.services.stale_fallback import ServedPayload

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _to_response(result: FetchResult[ServedPayload]) -> JSONResponse:
    """Map a served payload or a classified failure onto the HTTP status convention."""
    if result.is_failed:
        failure = result.failure
        return JSONResponse(status_code=failure.http_status, content=failure.to_payload())
    return JSONResponse(status_code=200, content=result.data.to_envelope())


def create_app(service: Optional[DashboardService] = None) -> FastAPI:
    dashboard = service or DashboardService.from_settings()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await dashboard.aclose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="GitHub organization activity dashboards",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.dashboard = dashboard

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(_: Request, exc: InvalidRequestError):
        return JSONResponse(status_code=400, content={"message": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(_: Request, exc: Exception):
        logger.error(f"Unhandled error: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"message": str(exc) or "Internal Server Error"})

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "pulsepoint",
            "version": settings.APP_VERSION,
        }

    @app.get("/api/org/dashboard")
    async def org_dashboard(since: Optional[str] = None, until: Optional[str] = None):
        """Org-wide activity summary, served from cache when fresh or when GitHub fails"""
        result = await dashboard.get_org_dashboard(since=since, until=until)
        return _to_response(result)

    @app.get("/api/user/{username}/details")
    async def user_details(username: str, since: Optional[str] = None, until: Optional[str] = None):
        """Activity detail for one org member"""
        result = await dashboard.get_user_details(username, since=since, until=until)
        return _to_response(result)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "pulsepoint.main:app",
        host="0.0.0.0",
        port=3001,
        reload=settings.DEBUG
    )
