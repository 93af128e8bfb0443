import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import LOG_LEVEL, SERVICE_NAME
from .errors import RentalError
from .middleware import RequestLoggingMiddleware
from .rabbitmq import publisher
from .redis_client import redis_client
from .routes import router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "System", "description": "Operational endpoints."},
    {"name": "Cars", "description": "Car listing with availability filtering."},
    {"name": "Bookings", "description": "Booking creation and status changes."},
    {"name": "Guarantors", "description": "Guarantor requests for the current user."},
    {"name": "Points", "description": "Guarantor points balances."},
    {"name": "Admin", "description": "Guarantor administration and ledger maintenance."},
]

app = FastAPI(title="Rental Service", openapi_tags=OPENAPI_TAGS)
app.add_middleware(RequestLoggingMiddleware)
app.include_router(router)


@app.exception_handler(RentalError)
async def rental_error_handler(request: Request, exc: RentalError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"[rental-service] unhandled store error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Store temporarily unavailable"})


@app.get("/health", tags=["System"])
async def health():
    return {"status": "ok", "service": SERVICE_NAME}


@app.on_event("startup")
async def startup():
    try:
        await publisher.connect()
    except Exception as e:
        logger.warning(f"[rental-service] starting without RabbitMQ: {e}")


@app.on_event("shutdown")
async def shutdown():
    await publisher.close()
    if redis_client is not None:
        await redis_client.aclose()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("rental_service.main:app", host="0.0.0.0", port=8000)
