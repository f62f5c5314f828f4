"""Exception handlers for the FastAPI app"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.errors import BlobNotFound, InvariantViolation, IOFailure
from core.validation import StoreValidationError


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreValidationError)
    async def validation_error_handler(
        request: Request, exc: StoreValidationError
    ) -> JSONResponse:
        return JSONResponse(status_code=400, content=exc.to_response_body())

    @app.exception_handler(BlobNotFound)
    async def not_found_handler(request: Request, exc: BlobNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvariantViolation)
    async def invariant_violation_handler(
        request: Request, exc: InvariantViolation
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={
                "detail": str(exc),
                "digest": exc.digest,
                "reference_count": exc.current,
            },
        )

    @app.exception_handler(IOFailure)
    async def io_failure_handler(request: Request, exc: IOFailure) -> JSONResponse:
        return JSONResponse(status_code=507, content={"detail": f"Storage failure: {exc}"})
