import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from dagflow import config
from dagflow.api.routes import router
from dagflow.db.database import init_db
from dagflow.engine.supervisor import ExecutionSupervisor

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    app.state.supervisor = ExecutionSupervisor()
    yield
    await app.state.supervisor.shutdown()


app = FastAPI(title="dagflow", lifespan=lifespan)
app.include_router(router)
