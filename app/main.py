import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.core.config import LOG_LEVEL
from app.core.errors import BookingError
from app.database import create_db_and_tables
from app.routers import users
from app.routers import auth
from app.routers import services
from app.routers import appointments
from app.routers import business_hours, time_blocks
from app.routers import clients
from app.routers import dashboard
from app.routers import notifications, payments, reminders

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

logging.getLogger("httpx").setLevel(logging.WARNING)

app = FastAPI(title="sistema_agendamento")
app.include_router(users.router)
app.include_router(auth.router)
app.include_router(services.router)
app.include_router(appointments.router)
app.include_router(business_hours.router)
app.include_router(time_blocks.router)
app.include_router(clients.router)
app.include_router(payments.router)
app.include_router(dashboard.router)
app.include_router(notifications.router)
app.include_router(reminders.router)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error("%s em %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code, "context": jsonable_encoder(exc.context)},
    )


@app.on_event("startup")
def on_startup():
    create_db_and_tables()


@app.get("/")
def root():
    return {"message": "API de agendamentos e diretório de clientes funcionando 🚀"}
