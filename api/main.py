import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from core import bootstrap, db
from health import router as health_router

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One Database per process; the schema is bootstrapped before serving.
    # An unreachable database leaves the app up without persistence.
    database = db.init_db()
    bootstrapper = await bootstrap.initialize_database(database)
    app.state.bootstrapper = bootstrapper
    app.state.db_ready = bootstrapper.state is bootstrap.BootstrapState.READY
    app.state.auth_enabled = await bootstrap.auth_enabled(database, enable_auth=_env_bool("ENABLE_AUTH"))
    if not app.state.db_ready:
        logger.warning("db_not_ready state=%s error=%s", bootstrapper.state.value, bootstrapper.error)
    try:
        yield
    finally:
        await db.close_db()


app = FastAPI(lifespan=lifespan)

app.include_router(health_router.router, tags=["health"])


@app.get("/")
def root() -> dict:
    return {"message": "transculturalist api"}
