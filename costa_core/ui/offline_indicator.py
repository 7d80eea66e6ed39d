# =============================================================================
# costa_core/ui/offline_indicator.py - Connectivity & Sync Status Card
# =============================================================================
"""
Sidebar card showing whether the app is online, syncing or holding
unsent writes, with a manual sync button.

build_indicator_view() holds all the decisions and has no Streamlit
dependency; render_offline_indicator() only draws the result.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

import streamlit as st

from costa_core.errors import handle_error
from costa_core.offline import OfflineDataService, OfflineStatus, SyncResult

logger = logging.getLogger(__name__)

VARIANT_COLORS = {
    "syncing": ("#3b82f6", "rgba(59, 130, 246, 0.12)"),
    "pending": ("#f59e0b", "rgba(245, 158, 11, 0.12)"),
    "online": ("#22c55e", "rgba(34, 197, 94, 0.1)"),
    "offline": ("#ef4444", "rgba(239, 68, 68, 0.12)"),
}

VARIANT_ICONS = {
    "syncing": "🔄",
    "pending": "☁️",
    "online": "📶",
    "offline": "📴",
}


@dataclass(frozen=True)
class IndicatorView:
    """What the indicator should show."""
    variant: str                # hidden | syncing | pending | online | offline
    title: str = ""
    detail: str = ""
    show_sync_button: bool = False
    warning: Optional[str] = None

    @property
    def visible(self) -> bool:
        return self.variant != "hidden"


def format_last_sync(last_sync: Optional[datetime], now: Optional[datetime] = None) -> str:
    """
    Human-readable time since the last successful sync.

    Returns:
        "Never", "Just now" (under a minute), "N min ago" (under an hour)
        or the clock time HH:MM
    """
    if last_sync is None:
        return "Never"

    now = now or datetime.now()
    elapsed = (now - last_sync).total_seconds()
    if elapsed < 60:
        return "Just now"
    if elapsed < 3600:
        return f"{int(elapsed // 60)} min ago"
    return last_sync.strftime("%H:%M")


def build_indicator_view(
    status: OfflineStatus,
    show_always: bool = False,
    now: Optional[datetime] = None,
) -> IndicatorView:
    """
    Decide the indicator variant and texts.

    Hidden when online with nothing pending, unless show_always is set.
    """
    warning = None
    if not status.durable_storage:
        warning = "Local storage unavailable: unsent data is lost on restart"
    elif status.failed_count > 0:
        warning = f"{status.failed_count} rejected by the server, needs review"

    if not status.is_online:
        detail = f"{status.cached_items} cached items"
        if status.pending_count > 0:
            detail += f" • {status.pending_count} to sync"
        return IndicatorView("offline", "Offline mode", detail, warning=warning)

    if status.is_syncing:
        return IndicatorView(
            "syncing", "Syncing...", f"{status.cached_items} cached items", warning=warning
        )

    if status.pending_count > 0:
        return IndicatorView(
            "pending",
            f"{status.pending_count} pending",
            "Tap to sync",
            show_sync_button=True,
            warning=warning,
        )

    if show_always or warning:
        return IndicatorView(
            "online",
            "Online",
            f"{status.cached_items} items | Sync: {format_last_sync(status.last_sync_time, now)}",
            show_sync_button=True,
            warning=warning,
        )

    return IndicatorView("hidden")


def on_force_sync_requested(service: OfflineDataService) -> Optional[SyncResult]:
    """Run a manual sync and report the outcome as a toast."""
    try:
        result = service.force_sync()
    except Exception as e:
        handle_error(e, user_message="Sync failed")
        return None

    if result.skipped:
        if result.reason == "offline":
            st.toast("No connection. Data stays saved on this device.", icon="📴")
        else:
            st.toast("Sync already in progress", icon="🔄")
    elif result.error:
        st.toast(f"Sync stopped: {result.error}", icon="⚠️")
    elif result.replayed:
        st.toast(f"{result.replayed} operation(s) synced", icon="✅")
    else:
        st.toast("Data updated!", icon="✅")

    logger.info(f"Manual sync: replayed={result.replayed} skipped={result.skipped}")
    return result


def render_offline_indicator(service: OfflineDataService, show_always: bool = False) -> IndicatorView:
    """
    Renders the connectivity card in the sidebar.

    Args:
        service: Running offline service
        show_always: Show the card even when online with nothing pending
    """
    view = build_indicator_view(service.status(), show_always=show_always)
    if not view.visible:
        return view

    color, background = VARIANT_COLORS[view.variant]
    icon = VARIANT_ICONS[view.variant]

    st.sidebar.markdown(
        f"""
        <div style='
            margin: 0.5rem 0;
            padding: 0.75rem;
            border-radius: 10px;
            background: {background};
            border: 1px solid {color}33;
        '>
            <div style='display: flex; align-items: center; gap: 0.5rem;'>
                <span style='font-size: 1rem;'>{icon}</span>
                <span style='color: {color}; font-size: 0.85rem; font-weight: 600;'>{view.title}</span>
            </div>
            <div style='color: #94a3b8; font-size: 0.75rem; margin-top: 0.5rem;'>
                {view.detail}
            </div>
        </div>
        """,
        unsafe_allow_html=True
    )

    if view.warning:
        st.sidebar.warning(view.warning)

    if view.show_sync_button:
        if st.sidebar.button("🔄 Sync now", use_container_width=True, key="offline_sync_btn"):
            on_force_sync_requested(service)
            st.rerun()

    return view
