from imagegen.orchestrator.models import InputImageSource, RunRequest, RunResult
from imagegen.orchestrator.orchestrator import GenerationOrchestrator, build_orchestrator

__all__ = ["GenerationOrchestrator", "InputImageSource", "RunRequest", "RunResult", "build_orchestrator"]
