from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import streamlit as st

from location_tracker.config import POSITION_SOURCES, Services, ServicesHolder, TrackerConfig
from location_tracker.errors import PermissionDenied, PositionError, StorageError
from location_tracker.models import DEFAULT_INTERVAL_MS, HistoryEntry
from location_tracker.timeutils import local_midnight, local_tzinfo, parse_iso, utc_now


@st.cache_resource(show_spinner=False)
def _services_holder() -> ServicesHolder:
    # Shared by every session and rerun so only one tracking timer exists per process.
    return ServicesHolder()


def _local_time(ts: str, tz_name: str | None) -> str:
    try:
        return parse_iso(ts).astimezone(local_tzinfo(tz_name)).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return ts


def _rows(entries: list[HistoryEntry], tz_name: str | None) -> list[dict[str, object]]:
    return [
        {
            "time": _local_time(e.timestamp, tz_name),
            "location": e.location_name or "",
            "latitude": round(e.latitude, 6),
            "longitude": round(e.longitude, 6),
            "accuracy_m": None if e.accuracy is None else round(e.accuracy, 1),
        }
        for e in entries
    ]


def _login_form(svc: Services) -> None:
    st.subheader("Employee login")
    with st.form("login"):
        username = st.text_input("Mobile number / username")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Login", type="primary")
    if submitted:
        if not username or not password:
            st.error("Please enter both username and password.")
            return
        with st.spinner("Logging in ..."):
            result = svc.auth.login(username, password)
        if result.success:
            st.rerun()
        else:
            st.error(f"Login failed: {result.error}")


def _tracking_panel(svc: Services) -> None:
    controller = svc.controller
    st.subheader("Tracking")
    status = controller.status()
    c1, c2 = st.columns([1, 2])
    with c1:
        if status.active:
            st.success(f"Active (every {status.interval_ms // 1000}s)")
            if st.button("Stop tracking", use_container_width=True):
                controller.stop()
                st.rerun()
        else:
            st.info("Tracking is off")
            interval_s = st.number_input("Interval (seconds)", min_value=5, value=DEFAULT_INTERVAL_MS // 1000)
            if st.button("Start tracking", type="primary", use_container_width=True):
                try:
                    controller.start(int(interval_s) * 1000)
                except PermissionDenied as exc:
                    st.error(f"Location permission denied: {exc}")
                else:
                    st.rerun()
    with c2:
        if st.button("Refresh current location"):
            try:
                sample = controller.locate()
            except PositionError as exc:
                st.error(f"Failed to get current location: {exc}")
            else:
                st.write(f"**{sample.location_name or 'Unknown Location'}**")
                st.caption(f"{sample.latitude:.6f}, {sample.longitude:.6f} (+/-{sample.accuracy or 0:.0f} m)")
        last = status.last_outcome
        if last is not None:
            st.caption(
                f"Last tick: {last.status.value}"
                + ("" if last.sync_error is None else " (not synced)")
                + f" at {_local_time(last.finished_at, svc.config.tz_name)}"
            )


def main() -> None:
    st.set_page_config(page_title="Location Tracker", layout="wide")
    st.title("Employee Location Tracker")

    with st.sidebar:
        st.subheader("Settings")
        data_dir = st.text_input("Data directory", value=".location_tracker")
        tz_name = st.text_input("Timezone (IANA, empty = system)", value="").strip() or None
        source = st.selectbox("Position source", POSITION_SOURCES, index=0)
        replay_csv = ""
        static_lat, static_lon = 37.7749, -122.4194
        if source == "replay":
            replay_csv = st.text_input("Track CSV", value="sample_data/Path.csv")
        elif source == "static":
            static_lat = st.number_input("Latitude", value=static_lat, format="%.6f")
            static_lon = st.number_input("Longitude", value=static_lon, format="%.6f")
        geocode = st.checkbox("Resolve location names", value=True)

    cfg = TrackerConfig(
        data_dir=Path(data_dir),
        tz_name=tz_name,
        position_source=source,
        replay_csv=Path(replay_csv) if replay_csv else None,
        replay_loop=True,
        static_lat=float(static_lat),
        static_lon=float(static_lon),
        geocode=geocode,
    )
    try:
        local_tzinfo(tz_name)
        svc, applied = _services_holder().get(cfg)
    except (ValueError, OSError, KeyError) as exc:
        st.error(f"Invalid settings: {exc}")
        return
    if not applied:
        st.warning("Tracking is running with the previous settings. Stop tracking to apply the new ones.")
    tz_name = svc.config.tz_name

    user = svc.auth.get_current_user()
    if user is None:
        _login_form(svc)
        return

    with st.sidebar:
        st.subheader("Profile")
        st.write(f"**{user.full_name}**")
        st.caption(f"{user.usertype_name} · {user.email} · {user.mobile_phone}")
        if st.button("Logout"):
            svc.controller.stop()
            svc.auth.logout()
            st.rerun()

    _tracking_panel(svc)

    stats = svc.history.get_stats()
    st.subheader("Statistics")
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total", str(stats.total))
    c2.metric("Today", str(stats.today))
    c3.metric("This week", str(stats.this_week))
    c4.metric("Last update", _local_time(stats.last_update, tz_name) if stats.last_update else "-")

    st.subheader("History")
    period = st.radio("Period", ["Today", "This week", "All"], horizontal=True)
    now = utc_now()
    if period == "Today":
        entries = svc.history.get_by_date_range(local_midnight(now, tz_name), None)
    elif period == "This week":
        entries = svc.history.get_by_date_range(now - timedelta(days=7), None)
    else:
        entries = svc.history.get_all()
    if not entries:
        st.info("No location history found. Start tracking to see your location history here.")
    else:
        st.dataframe(_rows(entries, tz_name), use_container_width=True, height=420)

    c1, c2 = st.columns(2)
    with c1:
        st.download_button(
            "Export history (JSON)",
            data=svc.history.export(),
            file_name="location_history.json",
            mime="application/json",
        )
    with c2:
        confirm = st.checkbox("I understand clearing cannot be undone")
        if st.button("Clear history", disabled=not confirm):
            try:
                svc.history.clear()
            except StorageError as exc:
                st.error(f"Failed to clear history: {exc}")
            else:
                st.success("Location history cleared successfully")
                st.rerun()


if __name__ == "__main__":
    main()
