"""
Error taxonomy for the photo journal.

Scoped lookups never raise for a missing or foreign row; they return None/False
and the route turns that into a 404. Everything here is for the remaining cases.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class JournalError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    code = 'JOURNAL_ERROR'

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        result = {'detail': self.message, 'code': self.code}
        if self.details:
            result['details'] = self.details
        return result


class ValidationError(JournalError):
    """Missing/empty required field, or an upload batch that breaks the limits."""

    status_code = 400
    code = 'VALIDATION_ERROR'


class ProcessingError(JournalError):
    """An uploaded image could not be decoded or transformed."""

    status_code = 422
    code = 'PROCESSING_ERROR'

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message, {'filename': filename} if filename else None)
        self.filename = filename


class InternalError(JournalError):
    """Storage or connectivity failure. Detail stays in the logs."""

    status_code = 500
    code = 'INTERNAL_ERROR'

    def to_dict(self) -> dict[str, Any]:
        return {'detail': 'Internal server error', 'code': self.code}


async def journal_error_handler(request: Request, exc: JournalError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error({'msg': 'internal_error', 'path': request.url.path, 'error': exc.message})
    else:
        logger.info({'msg': 'client_error', 'path': request.url.path, 'code': exc.code, 'error': exc.message})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(JournalError, journal_error_handler)
