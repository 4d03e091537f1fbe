from fastapi import FastAPI, Request

from app.api import api_router
from app.core.lifecycle import build_host
from app.core.security import is_request_authenticated
from config.settings import settings
from engine.dispatch.context import RequestContext
from engine.utils import get_logger, logger as root_logger

log = get_logger("app")
root_logger.setLevel(settings.LOG_LEVEL.upper())


def create_app() -> FastAPI:
    app = FastAPI(
        title="Deferred Postback Host",
        description="Runs expensive work after the response, via a signed self-postback.",
        version="1.0.0",
        debug=settings.DEBUG,
    )

    @app.middleware("http")
    async def postback_lifecycle(request: Request, call_next):
        """
        Build this request's postback host, run the request, then fire
        the end-of-lifecycle 'shutdown' action.

        Anything scheduled while handling the request is sent here, after
        the response has been produced.
        """
        context = RequestContext(
            cookies=dict(request.cookies),
            is_authenticated=is_request_authenticated(request),
        )
        host = build_host(context)
        request.state.postback_host = host

        response = await call_next(request)

        try:
            host.shutdown()
        except Exception:
            # The response is already built; a broken listener must not lose it.
            log.exception("Shutdown listeners failed")

        return response

    # Include the main API router
    # This results in routes like: /api/v1/admin-post
    app.include_router(api_router, prefix="/api")

    # --- Root Endpoint ---
    @app.get("/", tags=["Health Check"])
    async def root():
        """
        A simple health check endpoint to confirm the API is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
