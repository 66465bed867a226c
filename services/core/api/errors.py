"""
Domain exception -> HTTP response mapping
"""
from fastapi import Request
from fastapi.responses import JSONResponse

from exceptions import EXCEPTION_TO_STATUS, BaseDecisionException
from logging_config import get_logger

logger = get_logger(__name__)


def status_for(exc: BaseDecisionException) -> int:
    for cls in type(exc).__mro__:
        if cls in EXCEPTION_TO_STATUS:
            return EXCEPTION_TO_STATUS[cls]
    return 400


async def decision_exception_handler(request: Request, exc: BaseDecisionException) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "request_rejected",
        path=request.url.path,
        method=request.method,
        code=type(exc).__name__,
        status_code=status_code,
        message=exc.message
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_exception_handlers(app) -> None:
    app.add_exception_handler(BaseDecisionException, decision_exception_handler)
