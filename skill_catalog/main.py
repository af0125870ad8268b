import logging
import os

from fastapi import Depends, FastAPI

from skill_catalog.api.skills import router as skills_router
from skill_catalog.core.dependencies import get_dataset_cache, reset_dependencies
from skill_catalog.services.caching import DatasetCache

# Configure logging
logging.basicConfig(
    level=os.environ.get("SKILL_CATALOG_LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Skill Catalog",
    version="0.1.0",
    description="Paginated, searchable access to a skill dataset shipped as a single SQLite file.",
)

app.include_router(skills_router, prefix="/api", tags=["skills"])


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """
    Release the cached dataset.
    """
    reset_dependencies()


@app.get("/health")
async def health(cache: DatasetCache = Depends(get_dataset_cache)) -> dict:
    """
    Lightweight health check endpoint, including the dataset cache state.
    """
    return {"status": "ok", "dataset": cache.status()}


if __name__ == "__main__":
    """
    Allow running `python -m skill_catalog.main` to start the Uvicorn
    development server.
    """
    import uvicorn

    uvicorn.run(
        "skill_catalog.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
