import logging
import os

from fastapi import FastAPI

from natsuki_quest.api.routes import router

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())

app = FastAPI(title="natsuki-quest", version="0.1.0")
app.include_router(router)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "natsuki-quest", "version": "0.1.0"}
