"""Analyzic - Multi-Provider Analysis Orchestrator.

Submits content (source code or screenshots) to several AI providers in
parallel, then asks one master provider to synthesize their assessments:
- Provider capability layer (analyze, rethink, synthesize)
- Untrusted response parsing and JSON repair
- Two-phase pipeline with partial-failure aggregation
- Caller-initiated retry with provider substitution
"""

__version__ = "0.1.0"
