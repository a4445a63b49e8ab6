import sys
import logging
from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from response_insights.core.config import settings

# Configure logging for the entire application at the very beginning
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

# Import database session management and register all models with the metadata
from response_insights.db.session import engine, Base
from response_insights import models  # noqa: F401

# Import the API routers for each resource
from response_insights.api.v1 import documents, insights, stats

# --- Database Table Creation ---
def create_tables():
    """
    Creates all database tables based on the SQLAlchemy Base metadata.
    """
    Base.metadata.create_all(bind=engine)

# Create the main FastAPI application instance
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

# --- Middleware ---
# Permissive CORS; restrict allowed origins to the frontend domain in production.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Event Handlers ---
@app.on_event("startup")
def on_startup():
    """
    Event handler that runs when the FastAPI application starts.
    """
    logger.info("Main: Startup event triggered. Creating database tables.")
    create_tables()

# --- API Routers ---
app.include_router(documents.router, prefix=f"{settings.API_V1_STR}/environments", tags=["Documents"])
app.include_router(insights.router, prefix=f"{settings.API_V1_STR}/environments", tags=["Insights"])
app.include_router(stats.router, prefix=f"{settings.API_V1_STR}/environments", tags=["Stats"])

# --- Root Endpoint ---
@app.get("/", tags=["Root"])
def read_root():
    """
    A simple root endpoint to welcome users.
    """
    return {"message": f"Welcome to the {settings.PROJECT_NAME}"}


@app.get("/health", tags=["Root"])
def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "response_insights.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.LOG_LEVEL.lower()
    )
