from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import config
from app.features.admin.router import router as admin_router
from app.features.credits.router import router as credits_router
from app.features.library.router import router as library_router
from app.features.orders.router import router as orders_router
from app.features.payments.router import router as payments_router
from app.features.tasks.router import router as tasks_router
from app.lib.db import init_db
from app.logger import get_logger

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info("database ready")
    yield


app = FastAPI(title="Coloring Book API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins,
    allow_credentials="*" not in config.allowed_origins,  # browsers reject credentials with a wildcard origin
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

app.include_router(orders_router)
app.include_router(library_router)
app.include_router(credits_router)
app.include_router(payments_router)
app.include_router(tasks_router)
app.include_router(admin_router)


@app.get("/healthz")
def healthz() -> dict:
    return {"ok": True}
