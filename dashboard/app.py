import json
from typing import Any, Optional

import pandas as pd
import requests
import streamlit as st
import streamlit.components.v1 as components
from streamlit_autorefresh import st_autorefresh

st.set_page_config(
    page_title="Flowmap Explorer",
    page_icon="🕸️",
    layout="wide",
)

st.title("🕸️ Flowmap — CKB Fund Flow Explorer")
st.caption("Seed an address, expand nodes page by page, and watch the flow graph settle.")
st.divider()

st.session_state.setdefault("selected_node", None)
st.session_state.setdefault("last_report", None)

DEFAULT_API = "http://api:8000"  # Docker Compose service name
TIMEOUT = 60


def _get(base: str, path: str, params: Optional[dict] = None) -> Any:
    r = requests.get(f"{base}{path}", params=params, timeout=TIMEOUT)
    r.raise_for_status()
    return r.json()


def _post(base: str, path: str, params: Optional[dict] = None) -> Any:
    r = requests.post(f"{base}{path}", params=params, timeout=TIMEOUT)
    r.raise_for_status()
    return r.json()


def _put(base: str, path: str, params: Optional[dict] = None) -> Any:
    r = requests.put(f"{base}{path}", params=params, timeout=TIMEOUT)
    r.raise_for_status()
    return r.json()


def _html(base: str, path: str, params: Optional[dict] = None) -> str:
    r = requests.get(f"{base}{path}", params=params, timeout=TIMEOUT)
    r.raise_for_status()
    return r.text


def pretty(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False)


def safe_call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs), None
    except requests.HTTPError as e:
        # surface the API's detail message rather than the bare status line
        try:
            detail = e.response.json().get("detail")
        except ValueError:
            detail = None
        return None, detail or str(e)
    except Exception as e:
        return None, str(e)


# Sidebar
st.sidebar.header("Connection")
api_base = st.sidebar.text_input("API Base URL", value=DEFAULT_API)
auto_refresh = st.sidebar.checkbox("Live view", value=True)
refresh_seconds = st.sidebar.slider("Refresh interval (seconds)", 1, 30, 2)

health, health_err = safe_call(_get, api_base, "/health")

st.sidebar.divider()
st.sidebar.header("Layout & paging")

with st.sidebar.form("settings_form"):
    current_distance = (health or {}).get("layout", {}) or {}
    distance = st.text_input("Link distance", value=str(current_distance.get("distance", 450)))
    page_limit = st.text_input("Page limit", value=str((health or {}).get("page_limit", 100)))
    apply_clicked = st.form_submit_button("Apply", use_container_width=True)

if apply_clicked:
    res, err = safe_call(_put, api_base, "/settings", {"distance": distance, "page_limit": page_limit})
    if err:
        st.sidebar.error(err)
    else:
        st.sidebar.success(f"distance={res['distance']:g} • page_limit={res['page_limit']}")

st.sidebar.divider()
st.sidebar.header("Add address")

with st.sidebar.form("address_form", clear_on_submit=True):
    new_address = st.text_input("Address", placeholder="ckb1...")
    add_clicked = st.form_submit_button("Add", use_container_width=True)

if add_clicked and new_address.strip():
    res, err = safe_call(_post, api_base, "/addresses", {"address": new_address.strip()})
    if err:
        st.sidebar.error(err)
    else:
        st.session_state["selected_node"] = res["id"]
        st.sidebar.success(f"Added {res['type']} node")


# ----------------------------
# Tabs
# ----------------------------
tab_graph, tab_tables, tab_status = st.tabs(["Flow Graph", "Tables", "Status"])

# ============================
# TAB 1: FLOW GRAPH
# ============================
with tab_graph:
    frames, frames_err = safe_call(_get, api_base, "/graph/frames")
    nodes_df = pd.DataFrame((frames or {}).get("nodes", []))
    edges_df = pd.DataFrame((frames or {}).get("edges", []))

    left, right = st.columns([3, 1], gap="large")

    with left:
        if frames_err:
            st.error(frames_err)
        elif nodes_df.empty:
            st.info("No nodes yet. Add an address from the sidebar.")
        else:
            html, err = safe_call(_html, api_base, "/graph/html", {"height": "650px"})
            if err:
                st.error(err)
            else:
                components.html(html, height=700, scrolling=True)

    with right:
        st.subheader("Node")
        if nodes_df.empty:
            st.caption("Nothing to inspect yet.")
        else:
            node_ids = list(nodes_df["id"])
            selected = st.session_state.get("selected_node")
            selected = st.selectbox(
                "Select a node:",
                node_ids,
                index=node_ids.index(selected) if selected in node_ids else 0,
                key="node_selector",
            )
            st.session_state["selected_node"] = selected
            row = nodes_df[nodes_df["id"] == selected].iloc[0]

            st.info(f"**Type:** {row['type']}")
            st.metric("Balance (CKB)", row["balance_ckb"])
            a, b = st.columns(2)
            a.metric("Loaded tx", int(row["loaded_count"]))
            b.metric("More", "yes" if row["has_more"] else "no")
            a, b = st.columns(2)
            a.metric("In edges", int(row["in_degree"]))
            b.metric("Out edges", int(row["out_degree"]))

            label = f"({int(row['loaded_count'])}) {'Load more' if row['has_more'] else 'Loaded'}"
            if st.button(label, disabled=not row["has_more"], use_container_width=True):
                with st.spinner("Loading page..."):
                    report, err = safe_call(_post, api_base, f"/nodes/{selected}/load-more", {"wait": "true"})
                if err:
                    st.error(err)
                else:
                    st.session_state["last_report"] = report
                    st.rerun()

            if st.button("Open in explorer", use_container_width=True):
                opened, err = safe_call(_post, api_base, f"/nodes/{selected}/open")
                if err:
                    st.error(err)
                else:
                    st.markdown(f"[{opened['url']}]({opened['url']})")

            report = st.session_state.get("last_report")
            if report and report.get("node_id") == selected:
                if report.get("complete"):
                    st.success(f"{report['status']}: {report['processed']} tx processed")
                else:
                    st.warning(f"{report['status']}: {len(report.get('failed', []))} tx failed")
                    if report.get("error"):
                        st.caption(report["error"])

# ============================
# TAB 2: TABLES
# ============================
with tab_tables:
    st.subheader("Nodes")
    if nodes_df.empty:
        st.caption("No nodes yet.")
    else:
        cols = [c for c in ["id", "type", "balance_ckb", "loaded_count", "has_more", "in_degree", "out_degree"] if c in nodes_df.columns]
        st.dataframe(nodes_df[cols], use_container_width=True, hide_index=True)

    st.subheader("Flows (largest first)")
    if edges_df.empty:
        st.caption("No flows yet. Load more on a node to discover its counterparties.")
    else:
        st.dataframe(edges_df[["source", "target", "value_ckb"]], use_container_width=True, hide_index=True)
        st.markdown("### Top flows (CKB)")
        chart_df = edges_df.head(15).copy()
        chart_df["flow"] = chart_df["source"].str[:8] + "→" + chart_df["target"].str[:8]
        chart_df["ckb"] = chart_df["value_ckb"].str.replace(",", "").astype(int)
        st.bar_chart(chart_df.set_index("flow")["ckb"])

# ============================
# TAB 3: STATUS
# ============================
with tab_status:
    if health_err:
        st.error(health_err)
    else:
        c1, c2, c3 = st.columns(3)
        graph = health.get("graph") or {}
        layout = health.get("layout") or {}
        c1.metric("Nodes", graph.get("nodes", "n/a"))
        c2.metric("Edges", graph.get("edges", "n/a"))
        c3.metric("Pending pages", health.get("pending_pages", 0))

        a, b, c = st.columns(3)
        a.metric("Ledger", health.get("ledger_source") or "n/a")
        b.metric("Layout alpha", layout.get("alpha", "n/a"))
        c.metric("Layout ticks", layout.get("ticks", "n/a"))

        if health.get("seed_error"):
            st.warning(f"Seed address: {health['seed_error']}")

        with st.expander("Raw response"):
            st.code(pretty(health), language="json")

# ----------------------------
# Auto refresh (keep LAST)
# ----------------------------
if auto_refresh:
    st_autorefresh(interval=refresh_seconds * 1000, key="auto_refresh")
