"""Multi-provider analysis orchestration.

pipeline.AnalysisOrchestrator runs the parallel analyze -> synthesize
pipeline over a provider registry; retry.RetryCoordinator re-runs failed
phases against persisted state. Modules are imported directly, not
re-exported here, since providers depend on orchestrator.schemas.
"""
