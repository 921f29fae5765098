from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .controllers.story_controller import router as story_router
from .controllers.wallet_controller import router as wallet_router
from .controllers.feedback_controller import router as feedback_router
from .controllers.admin_controller import router as admin_router
from ...core.config import settings
from ...core.errors import StoryRunnerError
from ...database.db_utils import init_db

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize the database
    init_db()
    yield


# Create FastAPI app
app = FastAPI(
    title="StoryRunner API",
    description="API for playing interactive, credit-metered stories generated by LLMs",
    version=VERSION,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoryRunnerError)
async def storyrunner_error_handler(request: Request, exc: StoryRunnerError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "SERVER_ERROR"})


# Include routers
app.include_router(story_router, prefix="/api", tags=["Stories"])
app.include_router(wallet_router, prefix="/api")
app.include_router(feedback_router, prefix="/api")
app.include_router(admin_router, prefix="/api", tags=["Admin"])


@app.get("/api/health")
async def health_check():
    """Simple health check endpoint"""
    return {"status": "healthy", "version": VERSION}


# Run the application with uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("storyrunner.app.api.main:app", host="0.0.0.0", port=8000, reload=True)
