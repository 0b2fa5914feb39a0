"""
Recall Scheduler API

FastAPI application exposing the spaced-repetition scheduling core.

Run:
    uvicorn recall.main:app --reload
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recall.config import settings
from recall.middleware import setup_error_handling
from recall.routers import fsrs, health, jobs

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
setup_error_handling(app, debug=settings.DEBUG)

app.include_router(health.router)
app.include_router(fsrs.router)
app.include_router(jobs.router)


@app.get("/")
async def root():
    return {"message": settings.APP_NAME}
