from .backends import AIBackend, BackendResult, CloudModelBackend, LocalModelBackend
from .cache import SuggestionCache
from .generator import GeneratorConfig, SuggestionGenerator, build_suggestion

__all__ = [
    "AIBackend",
    "BackendResult",
    "CloudModelBackend",
    "GeneratorConfig",
    "LocalModelBackend",
    "SuggestionCache",
    "SuggestionGenerator",
    "build_suggestion",
]
