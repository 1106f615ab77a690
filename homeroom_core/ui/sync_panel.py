"""
Sync Panel UI Components
Sync status indicator and development connection settings for Streamlit pages
"""
from typing import Optional

import streamlit as st

from homeroom_core.config import DevCredentialStore
from homeroom_core.errors import handle_error
from homeroom_core.offline.data_service import ClassroomDataService
from homeroom_core.offline.status import SyncStatus


STATUS_LABELS = {
    SyncStatus.IDLE: ("✅", "Up to date"),
    SyncStatus.SYNCING: ("🔄", "Syncing..."),
    SyncStatus.ERROR: ("⚠️", "Last sync failed - showing cached data"),
    SyncStatus.NOT_CONFIGURED: ("🔌", "Not connected - configure the endpoint"),
}


def render_sync_status(service: ClassroomDataService, key_prefix: str = "homeroom") -> SyncStatus:
    """
    Render the sync status line with a "Sync now" button.

    Returns:
        The sync status after any refresh triggered by the button
    """
    state = service.get_sync_state()
    icon, label = STATUS_LABELS[state.status]
    last_sync = state.last_sync.strftime("%Y-%m-%d %H:%M") if state.last_sync else "never"

    col_status, col_button = st.columns([3, 1])
    with col_status:
        st.markdown(f"{icon} **{label}**")
        st.caption(f"Last sync: {last_sync}")

    with col_button:
        sync_btn = st.button(
            "🔄 Sync now",
            key=f"{key_prefix}_sync_btn",
            disabled=state.status in (SyncStatus.SYNCING, SyncStatus.NOT_CONFIGURED),
            use_container_width=True,
        )

    if sync_btn:
        with st.spinner("Syncing with the spreadsheet..."):
            refreshed = service.refresh()
        if refreshed:
            st.success("Data refreshed")
        else:
            st.warning("Sync did not complete; cached data is still available")

    return service.get_sync_state().status


def render_connection_settings(
    service: ClassroomDataService,
    credentials: Optional[DevCredentialStore],
    key_prefix: str = "homeroom",
) -> Optional[bool]:
    """
    Render the admin connection panel.

    In direct mode the script URL and API key can be saved locally.
    Connection failures are shown with st.error, never raised.

    Returns:
        Result of the connection test, or None if no test was run
    """
    st.markdown("**Connection**")
    info = service.gateway.describe()
    st.caption(f"Mode: {info['mode']} | Endpoint: {info['endpoint'] or 'not set'}")

    if service.settings.is_direct and credentials is not None:
        api_url = st.text_input(
            "Script URL",
            value=credentials.get_api_url() or "",
            key=f"{key_prefix}_api_url",
        )
        api_key = st.text_input(
            "API key",
            value=credentials.get_api_key() or "",
            type="password",
            key=f"{key_prefix}_api_key",
        )
        if st.button("💾 Save", key=f"{key_prefix}_save_btn"):
            credentials.set_api_url(api_url)
            credentials.set_api_key(api_key)
            st.success("Connection settings saved")
    else:
        st.info("Relay mode: the endpoint and secret are managed by the server")

    if not st.button("🔌 Test connection", key=f"{key_prefix}_test_btn"):
        return None

    try:
        with st.spinner("Contacting the spreadsheet..."):
            ok = service.check_connection()
    except Exception as e:
        error = handle_error(e, user_message="Connection test failed")
        st.error(f"❌ {error['message']}: {e}")
        return False

    if ok:
        st.success("✅ Connected")
    else:
        st.error("❌ The endpoint answered but did not return 'pong'")
    return ok
