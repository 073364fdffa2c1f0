"""FastAPI application - serves the annotation session API."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from beatmark.api.sessions import router as sessions_router

app = FastAPI(title="Beatmark", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


def run():
    import uvicorn
    from beatmark.config import settings
    logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s: %(message)s")
    uvicorn.run(
        "beatmark.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )
