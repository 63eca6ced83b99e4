from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
import logging

from .exceptions import BookingError


def create_app() -> FastAPI:
    app = FastAPI(title="consult-booking")

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        logging.error(f"Storage error on {request.method} {request.url.path}: {str(exc)}")
        return JSONResponse(status_code=500, content={"error": "storage", "detail": "An error occurred, please try again."})

    from .routes import router as main_router
    app.include_router(main_router)

    return app
