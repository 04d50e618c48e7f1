"""Analyzic API - multi-provider analysis service.

Runs analyses across several AI providers in parallel, synthesizes them
with a master provider, and lets callers retry failed providers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from analyzic import __version__
from analyzic.api.routes import analyses
from analyzic.config import load_api_keys
from analyzic.domains.registry import get_domain_registry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Loading domain definitions...")
    domain_registry = get_domain_registry()
    logger.info(f"Loaded {domain_registry.count()} domains: {domain_registry.list_keys()}")

    configured = sorted(load_api_keys())
    if configured:
        logger.info(f"Provider credentials found for: {', '.join(configured)}")
    else:
        logger.warning("No provider API keys set; every analysis will be rejected")

    logger.info("Analyzic API ready")
    yield
    logger.info("Shutting down Analyzic API")


app = FastAPI(
    title="Analyzic API",
    description="""
## Multi-Provider Analysis Orchestrator

Submit code or screenshots to several AI providers in parallel and get one
synthesized assessment back.

### Key Endpoints

- `POST /v1/analyses` - Run an analysis
- `POST /v1/analyses/{analysis_id}/retry` - Retry failed providers or synthesis
- `GET /v1/analyses/{analysis_id}` - Get a stored analysis
- `GET /v1/domains` - List analysis domains
""",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analyses.router, prefix="/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Analyzic API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "analyses": "/v1/analyses",
            "domains": "/v1/domains",
            "health": "/v1/health",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "analyzic.api.main:app",
        host="0.0.0.0",
        port=8001,
        reload=True,
    )
