import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import events

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Eventify API",
    version="1.0.0",
    description="Create events, browse them and RSVP with capacity limits",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("FRONTEND_URL", "http://localhost:5173")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(events.router)


@app.get("/")
def read_root():
    return {
        "message": "Welcome to Eventify API",
        "version": "1.0.0",
        "endpoints": {"events": "/events", "health": "/health"},
    }


@app.get("/health")
def health():
    return {"status": "OK", "message": "Eventify API is running"}
