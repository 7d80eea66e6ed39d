# =============================================================================
# costa_core/data/__init__.py
# Remote data access
# =============================================================================

from .supabase_client import (
    RemoteClient,
    create_supabase_client,
    is_permanent_failure,
)

__all__ = [
    "RemoteClient",
    "create_supabase_client",
    "is_permanent_failure",
]
