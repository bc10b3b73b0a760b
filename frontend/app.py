# Streamlit UI that talks to the QuickBid FastAPI backend
import os

import pandas as pd
import requests
import streamlit as st
from dotenv import load_dotenv

load_dotenv()

API = os.getenv("API_URL", "http://localhost:5000")
REFRESH_SECONDS = int(os.getenv("REFRESH_SECONDS", "5"))

ROLE_LABELS = {
    "system_admin": "System admin",
    "buyer": "Buyer (甲方)",
    "vendor": "Vendor (乙方)",
}

st.set_page_config(page_title="QuickBid", layout="wide")


def _detail(r: requests.Response) -> str:
    try:
        return r.json().get("detail", r.text)
    except ValueError:
        return r.text


def api(method: str, path: str, **kwargs) -> requests.Response:
    headers = kwargs.pop("headers", {})
    token = st.session_state.get("token")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return requests.request(method, f"{API}{path}", headers=headers, timeout=30, **kwargs)


def restore_session():
    # the token lives in the query string so a browser refresh keeps the login
    if "token" not in st.session_state and st.query_params.get("session"):
        st.session_state["token"] = st.query_params["session"]
    if st.session_state.get("token") and "user" not in st.session_state:
        r = api("GET", "/api/v1/auth/me")
        if r.ok:
            st.session_state["user"] = r.json()
        else:
            st.session_state.pop("token", None)
            st.query_params.clear()


def start_session(payload: dict):
    st.session_state["token"] = payload["token"]
    st.session_state["user"] = payload["user"]
    st.query_params["session"] = payload["token"]
    st.rerun()


def end_session():
    api("POST", "/api/v1/auth/logout")
    for k in ("token", "user", "revision"):
        st.session_state.pop(k, None)
    st.query_params.clear()
    st.rerun()


@st.fragment(run_every=REFRESH_SECONDS)
def watch_changes():
    """Rerun the whole page when the backend reports any write."""
    since = st.session_state.get("revision", 0)
    try:
        r = requests.get(f"{API}/api/v1/changes", params={"since": since, "timeout": 0}, timeout=10)
    except requests.RequestException:
        return
    if not r.ok:
        return
    revision = r.json()["revision"]
    if "revision" not in st.session_state:
        st.session_state["revision"] = revision
    elif revision != since:
        st.session_state["revision"] = revision
        st.rerun(scope="app")


def auth_page():
    st.title("QuickBid")
    st.caption("Professional RFQ system")
    login_tab, register_tab = st.tabs(["Log in", "Create account"])
    with login_tab:
        with st.form("login"):
            uid = st.text_input("Account ID")
            pwd = st.text_input("Password", type="password")
            if st.form_submit_button("Enter"):
                r = api("POST", "/api/v1/auth/login", json={"id": uid, "password": pwd})
                if r.ok:
                    start_session(r.json())
                else:
                    st.error(_detail(r))
    with register_tab:
        with st.form("register"):
            uid = st.text_input("Account ID", key="reg_id")
            name = st.text_input("Name / company contact")
            company = st.text_input("Company (optional)")
            role = st.selectbox("Role", ["vendor", "buyer"], format_func=ROLE_LABELS.get)
            pwd = st.text_input("Password", type="password", key="reg_pwd")
            if st.form_submit_button("Create account and enter"):
                body = {"id": uid, "password": pwd, "name": name, "company": company or None, "role": role}
                r = api("POST", "/api/v1/auth/register", json=body)
                if r.ok:
                    start_session(r.json())
                else:
                    st.error(_detail(r))


def cloud_panel(user: dict):
    r = api("GET", "/api/v1/cloud-config")
    cfg = r.json() if r.ok else {"url": "", "key_set": False, "mode": "local"}
    if cfg["mode"] == "cloud":
        st.success("Cloud collaboration mode: data is shared with every user")
    else:
        st.warning("Local mode: data is stored on this server only")
    if user["role"] != "system_admin":
        return
    with st.expander("Cloud settings"):
        with st.form("cloud"):
            url = st.text_input("Project URL", value=cfg["url"], placeholder="https://xyz.supabase.co")
            key = st.text_input("Anon public key", type="password",
                                placeholder="(unchanged)" if cfg["key_set"] else "eyJhbG...")
            st.caption("Clear the URL to go back to local mode.")
            if st.form_submit_button("Save and connect"):
                r = api("PUT", "/api/v1/cloud-config", json={"url": url, "key": key or None})
                if r.ok:
                    st.rerun()
                else:
                    st.error(_detail(r))


def rfq_list(user: dict):
    st.header("Projects")
    if user["role"] in ("buyer", "system_admin"):
        with st.expander("New request for quote"):
            with st.form("new_rfq", clear_on_submit=True):
                title = st.text_input("Project title")
                description = st.text_area("Requirements", placeholder="Describe the requirement in detail...")
                deadline = st.date_input("Deadline")
                budget = st.number_input("Budget (optional)", min_value=0.0, value=0.0)
                items = st.data_editor(
                    pd.DataFrame([{"name": "", "quantity": 1.0, "unit": "pcs"}]),
                    num_rows="dynamic",
                    key="new_items",
                )
                if st.form_submit_button("Create"):
                    rows = [
                        {"name": row["name"], "quantity": float(row["quantity"]), "unit": row["unit"] or "pcs"}
                        for row in items.to_dict("records")
                        if row.get("name") and row.get("quantity")
                    ]
                    body = {
                        "title": title,
                        "description": description,
                        "deadline": deadline.isoformat(),
                        "budget": budget or None,
                        "items": rows,
                    }
                    r = api("POST", "/api/v1/rfqs", json=body)
                    if r.ok:
                        st.success("RFQ created")
                    else:
                        st.error(_detail(r))

    r = api("GET", "/api/v1/rfqs")
    rfqs = r.json() if r.ok else []
    if not r.ok:
        st.error(_detail(r))
    if not rfqs:
        st.info("No requests for quote yet.")
        return rfqs

    for rfq in rfqs:
        with st.container(border=True):
            cols = st.columns([6, 2, 2])
            cols[0].subheader(rfq["title"])
            cols[0].caption(f"{rfq['status'].upper()} · deadline {rfq['deadline']} · {rfq['id']}")
            if cols[1].button("Open", key=f"open_{rfq['id']}"):
                st.session_state["rfq_id"] = rfq["id"]
            can_delete = user["role"] == "system_admin" or (
                user["role"] == "buyer" and rfq["creator_id"] == user["id"]
            )
            if can_delete:
                confirm_key = f"confirm_{rfq['id']}"
                if st.session_state.get(confirm_key):
                    if cols[2].button("Confirm delete", key=f"del_{rfq['id']}", type="primary"):
                        r = api("DELETE", f"/api/v1/rfqs/{rfq['id']}")
                        st.session_state.pop(confirm_key, None)
                        if r.ok:
                            if st.session_state.get("rfq_id") == rfq["id"]:
                                st.session_state.pop("rfq_id")
                            st.rerun()
                        else:
                            st.error(_detail(r))
                elif cols[2].button("Delete", key=f"ask_{rfq['id']}"):
                    st.session_state[confirm_key] = True
                    st.rerun()
    return rfqs


def bid_form(board: dict):
    rfq = board["rfq"]
    my_bid = board.get("my_bid")
    st.subheader("My bid")
    if rfq["status"] != "open":
        st.info("This RFQ is no longer accepting bids.")
        return
    with st.form(f"bid_{rfq['id']}"):
        quotes = []
        if rfq["items"]:
            st.caption("Unit prices per item (the total is computed from the quantities)")
            previous = {q["item_id"]: q["unit_price"] for q in (my_bid or {}).get("item_quotes", [])}
            for item in rfq["items"]:
                price = st.number_input(
                    f"{item['name']} ({item['quantity']:g} {item['unit']})",
                    min_value=0.0,
                    value=float(previous.get(item["id"], 0.0)),
                    key=f"q_{rfq['id']}_{item['id']}",
                )
                quotes.append({"item_id": item["id"], "unit_price": price})
            amount = None
        else:
            amount = st.number_input(
                "Total price incl. tax",
                min_value=0.0,
                value=float(my_bid["amount"]) if my_bid else 0.0,
            )
        delivery = st.text_input("Delivery date", value=(my_bid or {}).get("delivery_date") or "")
        notes = st.text_area("Notes", value=(my_bid or {}).get("notes", ""))
        label = "Update bid" if my_bid else "Submit bid"
        if st.form_submit_button(label):
            body = {"amount": amount, "item_quotes": quotes, "delivery_date": delivery or None, "notes": notes}
            r = api("POST", f"/api/v1/rfqs/{rfq['id']}/bids", json=body)
            if r.ok:
                st.success("Bid synced")
                st.rerun()
            else:
                st.warning(_detail(r))


def rfq_detail(user: dict, rfq_id: str):
    r = api("GET", f"/api/v1/rfqs/{rfq_id}/board")
    if not r.ok:
        st.error(_detail(r))
        return
    board = r.json()
    rfq = board["rfq"]
    st.header(rfq["title"])
    st.caption(f"{rfq['status'].upper()} · deadline {rfq['deadline']}")
    st.write(rfq["description"])
    if rfq["items"]:
        st.dataframe(pd.DataFrame(rfq["items"])[["name", "quantity", "unit"]], hide_index=True)

    st.subheader("My bid status" if user["role"] == "vendor" else "Bid board (all vendors)")
    bids = board["bids"]
    if bids:
        df = pd.DataFrame(bids)
        df["series"] = ["mine" if b["vendor_id"] == user["id"] else "others" for b in bids]
        chart = df.pivot_table(index="vendor_name", columns="series", values="amount", aggfunc="min")
        st.bar_chart(chart)
        lowest = board["lowest"]
        st.metric("Lowest bid", f"{lowest['amount']:.2f} {lowest['currency']}", help=lowest["vendor_name"])
        st.dataframe(
            df[["vendor_name", "amount", "currency", "delivery_date", "timestamp", "notes"]],
            hide_index=True,
        )
    else:
        st.info("Waiting for bids...")

    cols = st.columns(3)
    csv_r = api("GET", f"/api/v1/rfqs/{rfq_id}/export.csv")
    if csv_r.ok:
        cols[0].download_button("Export CSV", csv_r.content, f"{rfq_id}-bids.csv", "text/csv")
    json_r = api("GET", f"/api/v1/rfqs/{rfq_id}/export.json")
    if json_r.ok:
        cols[1].download_button("Export JSON", json_r.content, f"{rfq_id}-bids.json", "application/json")
    if user["role"] in ("buyer", "system_admin") and cols[2].button("AI analysis"):
        with st.spinner("Analysing bids..."):
            a = api("POST", f"/api/v1/rfqs/{rfq_id}/analysis")
        if a.ok:
            st.markdown(a.json()["summary"])
        else:
            st.error(_detail(a))

    if user["role"] == "vendor":
        bid_form(board)


def admin_page():
    st.header("Users")
    r = api("GET", "/api/v1/users")
    if not r.ok:
        st.error(_detail(r))
        return
    users = r.json()
    st.dataframe(pd.DataFrame(users), hide_index=True)

    ids = [u["id"] for u in users]
    cols = st.columns(2)
    with cols[0]:
        with st.form("reset_pwd", clear_on_submit=True):
            st.markdown("**Reset password**")
            target = st.selectbox("User", ids)
            pwd = st.text_input("New password", type="password")
            if st.form_submit_button("Reset"):
                r = api("PUT", f"/api/v1/users/{target}/password", json={"password": pwd})
                if r.ok:
                    st.success("Password updated")
                else:
                    st.error(_detail(r))
    with cols[1]:
        with st.form("delete_user"):
            st.markdown("**Delete user**")
            target = st.selectbox("User", [i for i in ids if i != "admin"], key="del_target")
            sure = st.checkbox("I understand this cannot be undone")
            if st.form_submit_button("Delete") and target:
                if not sure:
                    st.warning("Please confirm the deletion")
                else:
                    r = api("DELETE", f"/api/v1/users/{target}")
                    if r.ok:
                        st.rerun()
                    else:
                        st.error(_detail(r))

    with st.form("create_user", clear_on_submit=True):
        st.markdown("**Create user**")
        c = st.columns(4)
        uid = c[0].text_input("Account ID")
        name = c[1].text_input("Name")
        company = c[2].text_input("Company")
        role = c[3].selectbox("Role", list(ROLE_LABELS), format_func=ROLE_LABELS.get)
        pwd = st.text_input("Password", type="password")
        if st.form_submit_button("Create"):
            body = {"id": uid, "name": name, "company": company or None, "role": role, "password": pwd}
            r = api("POST", "/api/v1/users", json=body)
            if r.ok:
                st.rerun()
            else:
                st.error(_detail(r))


restore_session()
user = st.session_state.get("user")

if not user:
    auth_page()
    st.stop()

with st.sidebar:
    st.title("QuickBid")
    st.write(f"**{user['name']}**")
    st.caption(f"{user.get('company') or 'Individual'} · {ROLE_LABELS.get(user['role'], user['role'])}")
    if st.button("Log out"):
        end_session()
    watch_changes()

cloud_panel(user)

tab_names = ["Projects", "Users"] if user["role"] == "system_admin" else ["Projects"]
tabs = st.tabs(tab_names)

with tabs[0]:
    rfqs = rfq_list(user)
    selected = st.session_state.get("rfq_id")
    if selected and any(r["id"] == selected for r in rfqs):
        st.divider()
        rfq_detail(user, selected)

if len(tabs) > 1:
    with tabs[1]:
        admin_page()
