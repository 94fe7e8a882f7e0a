"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bonfire.api.request_id import get_request_id
from bonfire.domain.rendezvous import clock
from bonfire.domain.rendezvous.errors import BonfirePolicyError, ErrorCode, Rejection

REJECTION_STATUS = {
	ErrorCode.INVALID_SECRET: status.HTTP_400_BAD_REQUEST,
	ErrorCode.INVALID_PIN: status.HTTP_401_UNAUTHORIZED,
	ErrorCode.PROXIMITY_DENIED: status.HTTP_403_FORBIDDEN,
	ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
	ErrorCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
	ErrorCode.NETWORK_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def retry_after_seconds(retry_after: datetime, now: Optional[datetime] = None) -> int:
	remaining = (clock.as_utc(retry_after) - clock.as_utc(now or clock.utcnow())).total_seconds()
	return max(1, math.ceil(remaining))


def rejection_response(rejection: Rejection, *, now: Optional[datetime] = None) -> JSONResponse:
	"""Render a typed rejection with its status, plus Retry-After when locked out."""
	payload = rejection.to_dict()
	payload["request_id"] = get_request_id()
	headers = {}
	if rejection.retry_after is not None and rejection.code is ErrorCode.RATE_LIMITED:
		headers["Retry-After"] = str(retry_after_seconds(rejection.retry_after, now))
	return JSONResponse(status_code=REJECTION_STATUS[rejection.code], content=payload, headers=headers)


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(StarletteHTTPException)
	async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
		payload = {"detail": exc.detail, "request_id": get_request_id()}
		return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

	@app.exception_handler(BonfirePolicyError)
	async def policy_exc_handler(request: Request, exc: BonfirePolicyError):  # type: ignore[override]
		payload = {"detail": exc.detail, "request_id": get_request_id()}
		return JSONResponse(status_code=exc.status_code, content=payload)

	@app.exception_handler(RequestValidationError)
	async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
		# ctx may hold the raw exception object, which is not JSON serialisable
		errors = [{key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()]
		payload = {"detail": "validation_error", "errors": errors, "request_id": get_request_id()}
		return JSONResponse(status_code=422, content=payload)
