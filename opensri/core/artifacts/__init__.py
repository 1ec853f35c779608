"""Document artifacts (PDF)."""

from .pipeline import ArtifactPipeline, artifact_path_for
from .storage import ArtifactStorage

__all__ = ["ArtifactPipeline", "ArtifactStorage", "artifact_path_for"]
