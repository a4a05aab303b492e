import logging

from fastapi import FastAPI

from psyscene import __version__
from psyscene.api.routes import router
from psyscene.config import get_settings

app = FastAPI(title="psyscene", version=__version__)
app.include_router(router)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "psyscene", "version": __version__}
