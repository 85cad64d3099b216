"""Artifact publishing to the object store."""

from stackdeploy.publisher.probe import ReachabilityProbe
from stackdeploy.publisher.publisher import ArtifactPublisher

__all__ = ["ArtifactPublisher", "ReachabilityProbe"]
