from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from stockdata.api.routes import router
from stockdata.errors import TokenError
from stockdata.logging_config import get_logger

logger = get_logger(__name__)


async def token_error_handler(request: Request, exc: TokenError) -> JSONResponse:
    logger.error("Upstream token unavailable: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "message": "Market data is temporarily unavailable.",
            "error": type(exc).__name__,
        },
    )


def create_app() -> FastAPI:
    app = FastAPI(title="stockdata")
    app.include_router(router)
    app.add_exception_handler(TokenError, token_error_handler)
    return app


app = create_app()
