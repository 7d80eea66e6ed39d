# Utils package
from .search import (
    search_multi_word,
    search_in_fields,
    search_across_fields,
)
from .serialization import to_json_safe

__all__ = [
    "search_multi_word",
    "search_in_fields",
    "search_across_fields",
    "to_json_safe",
]
