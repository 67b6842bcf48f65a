"""
FastAPI application entry-point.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from insight_copilot.api.routers import admin, conversation, feedback
from insight_copilot.db.connection import dispose_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    dispose_engine()


app = FastAPI(
    title="Insight Copilot",
    version="0.1.0",
    description="Conversational analytics over the store's data warehouse",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversation.router, prefix="/conversation", tags=["Conversation"])
app.include_router(feedback.router, prefix="/feedback", tags=["Feedback"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


@app.get("/health")
def health():
    return {"status": "ok"}
