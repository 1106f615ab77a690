# =============================================================================
# homeroom_core/ui/__init__.py
# Streamlit components for the data engine
# =============================================================================

from .sync_panel import render_sync_status, render_connection_settings

__all__ = ["render_sync_status", "render_connection_settings"]
