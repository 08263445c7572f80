"""Main FastAPI application."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sessionreel.api import renders
from sessionreel.config import settings

app = FastAPI(
    title="SessionReel API",
    description="Renders session recordings into videos",
    version="0.1.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(renders.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "SessionReel API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
