"""
Exception handlers para FastAPI.

Rotas e services levantam excecoes de dominio; aqui elas viram status HTTP
com corpo padrao `{"error", "message", "details"}`.
"""

import logging
from typing import List, Tuple, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.exceptions import (
    CampaignRunInProgressError,
    DatabaseError,
    ExternalAPIError,
    InvalidTransitionError,
    MarketingException,
    NotFoundError,
    SegmentCompileError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Ordem importa: subclasses antes das bases
_STATUS_BY_EXCEPTION: List[Tuple[Type[MarketingException], int]] = [
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (CampaignRunInProgressError, 409),
    (ValidationError, 400),
    (SegmentCompileError, 422),
    (ExternalAPIError, 502),
    (DatabaseError, 503),
]


def status_code_for(exc: MarketingException) -> int:
    for exc_type, status_code in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def marketing_exception_handler(request: Request, exc: MarketingException) -> JSONResponse:
    status_code = status_code_for(exc)
    error_type = exc.__class__.__name__

    log = logger.error if status_code >= 500 else logger.warning
    log(
        f"{error_type} em {request.method} {request.url.path}: {exc.message}",
        extra={"error_type": error_type, "details": exc.details, "status_code": status_code},
    )

    return JSONResponse(
        status_code=status_code,
        content={"error": error_type, "message": exc.message, "details": exc.details},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Excecao nao tratada: loga o traceback e nao vaza detalhes."""
    logger.exception(f"Erro nao tratado em {request.method} {request.url.path}: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "message": "Erro interno do servidor",
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    # O Starlette busca o handler pelo MRO, entao a base cobre as subclasses
    app.add_exception_handler(MarketingException, marketing_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
