# UI package
from .offline_indicator import (
    IndicatorView,
    build_indicator_view,
    format_last_sync,
    on_force_sync_requested,
    render_offline_indicator,
)

__all__ = [
    "IndicatorView",
    "build_indicator_view",
    "format_last_sync",
    "on_force_sync_requested",
    "render_offline_indicator",
]
