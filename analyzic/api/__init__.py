"""FastAPI application for the analysis orchestrator."""
