"""Connection orchestration and the application container."""

from .app import CharacterEngineApp
from .handler import Orchestrator, OrchestratorState

__all__ = ["CharacterEngineApp", "Orchestrator", "OrchestratorState"]
