"""Pipeline orchestrator module.

Provides cache-first coordination of the generation pipeline with:
- Single-flight protection per descriptor fingerprint
- Ordered stage execution and stage constants
- Production wiring of the Vertex AI / ffmpeg collaborators
"""

from storygen.orchestrator.pipeline import PipelineOrchestrator, build_orchestrator

__all__ = ["PipelineOrchestrator", "build_orchestrator"]
