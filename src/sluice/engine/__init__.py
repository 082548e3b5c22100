"""Run execution: per-node pipeline and multi-node orchestration."""

from sluice.engine.orchestrator import Orchestrator
from sluice.engine.pipeline import NodeBackupPipeline

__all__ = ["NodeBackupPipeline", "Orchestrator"]
