from .batch_repository import BatchRepository, batch_from_row
from .suggestion_repository import SuggestionRepository, suggestion_from_row, suggestion_to_row

__all__ = [
    "BatchRepository",
    "SuggestionRepository",
    "batch_from_row",
    "suggestion_from_row",
    "suggestion_to_row",
]
