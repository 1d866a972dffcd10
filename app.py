from __future__ import annotations

import logging

import altair as alt
import pandas as pd
import streamlit as st

from core.clock import utcnow
from core.config import get_settings
from core.db import get_query_stats, session_scope
from core.errors import ServiceError
from core.logging_config import setup_logging
from core.observability import database_status
from core.permissions import Actor
from core.services import reports as report_service
from core.services.attention import get_attention_queue
from core.services.invoices import format_money
from core.services.users import authenticate

setup_logging(get_settings().log_level, component="dashboard")
logger = logging.getLogger(__name__)

st.set_page_config(page_title="Centurion Coaching", layout="wide")

PRIORITY_COLOURS = {"red": "#c0392b", "amber": "#f39c12", "green": "#27ae60"}


def current_actor() -> Actor:
    return Actor(id=st.session_state.user_id, role=st.session_state.role)


def auth_panel():
    st.title("Centurion Coaching")
    with st.form("login"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Login")
    if not submitted:
        return
    with session_scope() as s:
        outcome = authenticate(s, email, password)
        user = outcome.user
        if outcome.ok:
            st.session_state.user_id = user.id
            st.session_state.role = user.role
            st.session_state.name = user.name or user.email
    if outcome.locked:
        st.error("Account locked. Try again later.")
    elif not outcome.ok:
        st.error("Invalid credentials")
    elif st.session_state.role == "client":
        # the dashboard is staff only; clients use the API-backed app
        st.session_state.clear()
        st.error("This dashboard is for coaches.")
    else:
        logger.info("dashboard_login", extra={"user_id": st.session_state.user_id})
        st.rerun()


def dashboard_page():
    st.header("Dashboard")
    with session_scope() as s:
        overview = report_service.dashboard_overview(s, current_actor())
        members = report_service.member_engagement_report(s, current_actor())
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Members", overview["total_members"], f"{overview['member_growth']:.1f}%")
    c2.metric("Active cohorts", overview["active_cohorts"])
    c3.metric("Need attention", overview["attention_required"])
    c4.metric("Pending questionnaires", overview["pending_questionnaires"])
    if st.session_state.role == "admin":
        st.metric("Revenue this month", format_money(overview["monthly_revenue"]), f"{overview['revenue_growth']:.1f}%")

    st.subheader("Check-ins")
    trend = pd.DataFrame(members["check_in_trend"])
    if trend.empty:
        st.info("No check-ins in the last 30 days.")
        return
    st.altair_chart(
        alt.Chart(trend).mark_line(point=True).encode(x="date:T", y="count:Q", tooltip=["date", "count"]),
        use_container_width=True,
    )
    m1, m2, m3 = st.columns(3)
    m1.metric("Active (7 days)", members["active_members"])
    m2.metric("Inactive", members["inactive_members"])
    m3.metric("Check-ins per member", f"{members['avg_check_ins_per_member']:.1f}")


def attention_page():
    st.header("Attention Queue")
    refresh = st.button("Recalculate")
    with session_scope() as s:
        queue = get_attention_queue(s, force_refresh=refresh)
    if refresh:
        logger.info("dashboard_attention_recalculated", extra={"user_id": st.session_state.user_id})
    last = queue["last_calculated"]
    st.caption(f"{queue['total_clients']} clients | last calculated {last:%Y-%m-%d %H:%M}" if last else "Not yet calculated")

    counts = pd.DataFrame([{"priority": p, "items": len(queue[p])} for p in ("red", "amber", "green")])
    st.altair_chart(
        alt.Chart(counts)
        .mark_bar()
        .encode(
            x=alt.X("priority:N", sort=["red", "amber", "green"]),
            y="items:Q",
            color=alt.Color(
                "priority:N",
                scale=alt.Scale(domain=list(PRIORITY_COLOURS), range=list(PRIORITY_COLOURS.values())),
                legend=None,
            ),
        ),
        use_container_width=True,
    )

    for tab, priority in zip(st.tabs(["Red", "Amber", "Green"]), ("red", "amber", "green")):
        with tab:
            items = queue[priority]
            if not items:
                st.success("Nothing here.")
                continue
            rows = [
                {
                    "type": i.entity_type,
                    "name": i.entity_name,
                    "email": i.entity_email,
                    "score": i.score,
                    "reasons": "; ".join(i.reasons),
                    "suggested": "; ".join(i.suggested_actions),
                }
                for i in items
            ]
            st.dataframe(pd.DataFrame(rows), use_container_width=True)


def cohorts_page():
    st.header("Cohorts")
    with session_scope() as s:
        cohorts = report_service.cohort_report(s, current_actor())
        compliance = report_service.compliance_report(s, current_actor())
    c1, c2, c3 = st.columns(3)
    c1.metric("Cohorts", cohorts["total_cohorts"])
    c2.metric("Active", cohorts["active_cohorts"])
    c3.metric("Questionnaire completion", f"{compliance['completion_rate']:.0f}%")

    breakdown = pd.DataFrame(cohorts["cohort_breakdown"])
    if breakdown.empty:
        st.info("No cohorts yet.")
        return
    st.dataframe(breakdown, use_container_width=True)
    st.altair_chart(
        alt.Chart(breakdown)
        .mark_bar()
        .encode(x="name:N", y=alt.Y("avg_engagement:Q", title="engagement %"), tooltip=["name", "member_count", "avg_engagement"]),
        use_container_width=True,
    )

    weeks = pd.DataFrame(compliance["responses_by_week"])
    if not weeks.empty:
        st.subheader("Questionnaires by week")
        st.altair_chart(
            alt.Chart(weeks.melt(id_vars="week_number", value_vars=["completed", "pending"]))
            .mark_bar()
            .encode(x="week_number:O", y="value:Q", color="variable:N"),
            use_container_width=True,
        )


def sessions_page():
    st.header("Sessions")
    with session_scope() as s:
        report = report_service.session_attendance_report(s, current_actor())
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Upcoming", report["upcoming_sessions"])
    c2.metric("Attendance", f"{report['attendance_rate']:.0f}%")
    c3.metric("No-shows", f"{report['no_show_rate']:.0f}%")
    c4.metric("Occupancy", f"{report['average_occupancy']:.0f}%")

    trend = pd.DataFrame(report["attendance_trend"])
    if not trend.empty:
        st.altair_chart(
            alt.Chart(trend.melt(id_vars="date", value_vars=["attended", "no_show"]))
            .mark_line(point=True)
            .encode(x="date:T", y="value:Q", color="variable:N"),
            use_container_width=True,
        )
    popular = pd.DataFrame(report["popular_class_types"])
    if not popular.empty:
        st.subheader("Class types")
        st.dataframe(popular, use_container_width=True)


def revenue_page():
    st.header("Revenue")
    year = st.number_input("Year", min_value=2020, max_value=2100, value=utcnow().year)
    with session_scope() as s:
        report = report_service.revenue_report(s, current_actor(), year=int(year))
        memberships = report_service.membership_report(s, current_actor())
    c1, c2, c3 = st.columns(3)
    c1.metric("Total", format_money(report["total_revenue"]))
    c2.metric("This month", format_money(report["revenue_this_month"]), f"{report['month_over_month_growth']:.1f}%")
    c3.metric("Churn (30 days)", f"{memberships['churn_rate']:.1f}%")

    monthly = pd.DataFrame(report["monthly_revenue"])
    monthly["revenue_gbp"] = monthly["revenue"] / 100
    st.altair_chart(
        alt.Chart(monthly).mark_bar().encode(x="month:N", y=alt.Y("revenue_gbp:Q", title="revenue (£)"), tooltip=["month", "revenue_gbp", "invoice_count"]),
        use_container_width=True,
    )
    tabs = st.tabs(["Top clients", "Invoices", "Plans"])
    with tabs[0]:
        st.dataframe(pd.DataFrame(report["top_clients"]), use_container_width=True)
    with tabs[1]:
        st.dataframe(pd.DataFrame(report["invoices_by_status"]), use_container_width=True)
    with tabs[2]:
        st.dataframe(pd.DataFrame(memberships["plan_popularity"]), use_container_width=True)


def export_page():
    st.header("Export")
    options = [t for t in report_service.EXPORT_TYPES if t != "revenue" or st.session_state.role == "admin"]
    report_type = st.selectbox("Report", options)
    fmt = st.radio("Format", ["csv", "json"], horizontal=True)
    with session_scope() as s:
        exported = report_service.export_report(s, current_actor(), report_type, fmt)
    st.download_button("Download", exported["content"], file_name=exported["filename"], mime=exported["content_type"])


def main():
    if "user_id" not in st.session_state:
        auth_panel()
        return

    status = database_status(get_query_stats())
    st.sidebar.caption(f"{st.session_state.name} ({st.session_state.role})")
    st.sidebar.caption(f"Database {status.status}: {status.message}")
    if st.sidebar.button("Log out"):
        st.session_state.clear()
        st.rerun()

    pages = {
        "Dashboard": dashboard_page,
        "Attention Queue": attention_page,
        "Cohorts": cohorts_page,
        "Sessions": sessions_page,
        "Export": export_page,
    }
    if st.session_state.role == "admin":
        pages["Revenue"] = revenue_page
    page = st.sidebar.radio("Coach", list(pages))
    try:
        pages[page]()
    except ServiceError as e:
        st.error(e.message)
    except Exception:
        logger.exception("dashboard_page_failed", extra={"page": page})
        st.error("Something went wrong. The issue has been logged.")


if __name__ == "__main__":
    main()
