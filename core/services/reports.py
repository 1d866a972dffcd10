"""Report aggregation for the coach and admin dashboards.

Rows are fetched with SQLAlchemy and grouped with pandas. Every function
returns plain JSON-ready dicts: numbers are Python ints/floats and dates are
ISO strings. Coaches only see data for cohorts they are assigned to (or
sessions they run); admins see everything.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timedelta
from typing import Any, Optional

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.errors import ValidationError
from core.models import (
    ClassSession,
    ClassType,
    Cohort,
    CohortMembership,
    Entry,
    Invoice,
    MembershipPlan,
    QuestionnaireBundle,
    QuestionnaireResponse,
    SessionRegistration,
    User,
    UserMembership,
)
from core.permissions import ensure_admin, ensure_coach, is_admin
from core.services.cohorts import coach_cohort_ids
from core.services.invoices import format_money

logger = logging.getLogger(__name__)

ACTIVE_WINDOW_DAYS = 7
ENGAGEMENT_TREND_DAYS = 30
ATTENDANCE_TREND_WEEKS = 12
CHURN_WINDOW_DAYS = 30
TOP_CLIENTS = 10
EXPORT_TYPES = ("members", "cohorts", "revenue", "compliance")
EXPORT_FORMATS = ("csv", "json")


def growth_percent(current: float, previous: float) -> float:
    if previous > 0:
        return (current - previous) / previous * 100
    return 100.0 if current > 0 else 0.0


def _month_starts(today: date) -> tuple[date, date]:
    this_month = today.replace(day=1)
    last_month = (this_month - timedelta(days=1)).replace(day=1)
    return this_month, last_month


def _frame(rows, columns: list[str]) -> pd.DataFrame:
    return pd.DataFrame([tuple(r) for r in rows], columns=columns)


def _scope(s: Session, actor) -> Optional[list[int]]:
    """Cohort ids visible to ``actor``; None means unrestricted."""
    ensure_coach(actor)
    if is_admin(actor):
        return None
    return coach_cohort_ids(s, actor.id)


def _in_scope(q, column, cohort_ids: Optional[list[int]]):
    return q if cohort_ids is None else q.where(column.in_(cohort_ids))


def dashboard_overview(s: Session, actor, now: Optional[datetime] = None) -> dict[str, Any]:
    cohort_ids = _scope(s, actor)
    now = now or utcnow()
    today = now.date()
    this_month, last_month = _month_starts(today)
    active_since = today - timedelta(days=ACTIVE_WINDOW_DAYS)

    memberships = _frame(
        s.execute(
            _in_scope(
                select(CohortMembership.user_id, CohortMembership.status, CohortMembership.joined_at),
                CohortMembership.cohort_id,
                cohort_ids,
            )
        ).all(),
        ["user_id", "status", "joined_at"],
    )
    joined = pd.to_datetime(memberships["joined_at"])
    new_this_month = int((joined >= pd.Timestamp(this_month)).sum())
    new_last_month = int(((joined >= pd.Timestamp(last_month)) & (joined < pd.Timestamp(this_month))).sum())
    active = memberships[memberships["status"] == "active"]

    recent_users = set(
        s.execute(select(Entry.user_id).where(Entry.date > active_since).distinct()).scalars()
    )
    attention_required = int((~active["user_id"].isin(recent_users)).sum())

    active_cohorts = s.execute(
        _in_scope(select(func.count(Cohort.id)).where(Cohort.status == "active"), Cohort.id, cohort_ids)
    ).scalar_one()

    monthly_revenue = last_month_revenue = 0
    if is_admin(actor):
        paid = _frame(
            s.execute(
                select(Invoice.total_amount, Invoice.paid_at).where(
                    Invoice.payment_status == "paid", Invoice.paid_at >= datetime.combine(last_month, datetime.min.time())
                )
            ).all(),
            ["amount", "paid_at"],
        )
        paid_at = pd.to_datetime(paid["paid_at"])
        monthly_revenue = int(paid.loc[paid_at >= pd.Timestamp(this_month), "amount"].sum())
        last_month_revenue = int(paid.loc[paid_at < pd.Timestamp(this_month), "amount"].sum())

    pending = s.execute(
        _in_scope(
            select(func.count(QuestionnaireResponse.id))
            .join(QuestionnaireBundle, QuestionnaireBundle.id == QuestionnaireResponse.bundle_id)
            .where(QuestionnaireResponse.status == "in_progress"),
            QuestionnaireBundle.cohort_id,
            cohort_ids,
        )
    ).scalar_one()

    return {
        "total_members": len(active),
        "active_cohorts": active_cohorts,
        "monthly_revenue": monthly_revenue,
        "pending_questionnaires": pending,
        "member_growth": growth_percent(new_this_month, new_last_month),
        "revenue_growth": growth_percent(monthly_revenue, last_month_revenue),
        "attention_required": attention_required,
    }


def member_engagement_report(
    s: Session,
    actor,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    cohort_ids = _scope(s, actor)
    now = now or utcnow()
    today = now.date()
    date_to = date_to or today
    date_from = date_from or today - timedelta(days=ENGAGEMENT_TREND_DAYS)
    this_month, _ = _month_starts(today)

    memberships = _frame(
        s.execute(
            _in_scope(
                select(CohortMembership.user_id, CohortMembership.status, CohortMembership.joined_at),
                CohortMembership.cohort_id,
                cohort_ids,
            )
        ).all(),
        ["user_id", "status", "joined_at"],
    )
    member_ids = [int(x) for x in memberships["user_id"].unique()]
    total_members = len(member_ids)

    entries_q = select(Entry.user_id, Entry.date).where(Entry.date >= min(date_from, today - timedelta(days=ACTIVE_WINDOW_DAYS)))
    if cohort_ids is not None:
        entries_q = entries_q.where(Entry.user_id.in_(member_ids))
    entries = _frame(s.execute(entries_q).all(), ["user_id", "date"])

    active_members = int(entries.loc[entries["date"] > today - timedelta(days=ACTIVE_WINDOW_DAYS), "user_id"].nunique())
    in_range = entries[(entries["date"] >= date_from) & (entries["date"] <= date_to)]
    trend = in_range.groupby("date").size().sort_index()
    check_in_trend = [{"date": d.isoformat(), "count": int(c)} for d, c in trend.items()]
    total_check_ins = int(trend.sum())

    by_status = memberships.groupby("status").size()
    joined = pd.to_datetime(memberships["joined_at"])
    return {
        "total_members": total_members,
        "active_members": active_members,
        "inactive_members": max(0, total_members - active_members),
        "new_members_this_month": int((joined >= pd.Timestamp(this_month)).sum()),
        "members_by_status": [{"status": k, "count": int(v)} for k, v in by_status.items()],
        "check_in_trend": check_in_trend,
        "avg_check_ins_per_member": total_check_ins / total_members if total_members else 0.0,
    }


def cohort_report(s: Session, actor, now: Optional[datetime] = None) -> dict[str, Any]:
    cohort_ids = _scope(s, actor)
    today = (now or utcnow()).date()
    cohorts = list(
        s.execute(
            _in_scope(select(Cohort).order_by(Cohort.start_date.desc(), Cohort.id.desc()), Cohort.id, cohort_ids)
        ).scalars()
    )
    members = _frame(
        s.execute(
            select(CohortMembership.cohort_id, CohortMembership.user_id).where(
                CohortMembership.status == "active", CohortMembership.cohort_id.in_([c.id for c in cohorts])
            )
        ).all(),
        ["cohort_id", "user_id"],
    )
    recent = set(
        s.execute(
            select(Entry.user_id).where(Entry.date > today - timedelta(days=ACTIVE_WINDOW_DAYS)).distinct()
        ).scalars()
    )
    members["recent"] = members["user_id"].isin(recent)
    stats = members.groupby("cohort_id").agg(member_count=("user_id", "count"), active=("recent", "sum"))

    breakdown = []
    for cohort in cohorts:
        count = int(stats.at[cohort.id, "member_count"]) if cohort.id in stats.index else 0
        engaged = int(stats.at[cohort.id, "active"]) if cohort.id in stats.index else 0
        breakdown.append(
            {
                "id": cohort.id,
                "name": cohort.name,
                "status": cohort.status,
                "member_count": count,
                "avg_engagement": engaged / count * 100 if count else 0.0,
                "start_date": cohort.start_date.isoformat(),
                "end_date": cohort.end_date.isoformat() if cohort.end_date else None,
            }
        )
    return {
        "total_cohorts": len(cohorts),
        "active_cohorts": sum(1 for c in cohorts if c.status == "active"),
        "completed_cohorts": sum(1 for c in cohorts if c.status == "completed"),
        "cohort_breakdown": breakdown,
    }


def revenue_report(s: Session, actor, year: Optional[int] = None, now: Optional[datetime] = None) -> dict[str, Any]:
    ensure_admin(actor)
    now = now or utcnow()
    year = year or now.year
    this_month, last_month = _month_starts(now.date())

    invoices = _frame(
        s.execute(
            select(
                Invoice.user_id,
                User.name,
                User.email,
                Invoice.month,
                Invoice.total_amount,
                Invoice.payment_status,
                Invoice.paid_at,
            )
            .join(User, User.id == Invoice.user_id)
            .where(Invoice.month >= date(year, 1, 1), Invoice.month <= date(year, 12, 31))
        ).all(),
        ["user_id", "name", "email", "month", "amount", "status", "paid_at"],
    )
    paid = invoices[invoices["status"] == "paid"].copy()
    paid_at = pd.to_datetime(paid["paid_at"])
    this_month_revenue = int(paid.loc[paid_at >= pd.Timestamp(this_month), "amount"].sum())
    last_month_revenue = int(
        paid.loc[(paid_at >= pd.Timestamp(last_month)) & (paid_at < pd.Timestamp(this_month)), "amount"].sum()
    )

    by_status = invoices.groupby("status").agg(count=("amount", "size"), amount=("amount", "sum"))
    paid["month_key"] = pd.to_datetime(paid["month"]).dt.strftime("%Y-%m")
    monthly = paid.groupby("month_key").agg(revenue=("amount", "sum"), invoice_count=("amount", "size"))
    monthly_revenue = []
    for m in range(1, 13):
        key = f"{year}-{m:02d}"
        row = monthly.loc[key] if key in monthly.index else None
        monthly_revenue.append(
            {
                "month": key,
                "revenue": int(row["revenue"]) if row is not None else 0,
                "invoice_count": int(row["invoice_count"]) if row is not None else 0,
            }
        )

    clients = (
        paid.groupby(["user_id", "email"], dropna=False)
        .agg(name=("name", "first"), total_revenue=("amount", "sum"), invoice_count=("amount", "size"))
        .reset_index()
        .sort_values("total_revenue", ascending=False)
        .head(TOP_CLIENTS)
    )
    top_clients = [
        {
            "id": int(r.user_id),
            "name": r.name if isinstance(r.name, str) else None,
            "email": r.email,
            "total_revenue": int(r.total_revenue),
            "invoice_count": int(r.invoice_count),
        }
        for r in clients.itertuples()
    ]

    return {
        "year": year,
        "total_revenue": int(paid["amount"].sum()),
        "revenue_this_month": this_month_revenue,
        "revenue_last_month": last_month_revenue,
        "month_over_month_growth": growth_percent(this_month_revenue, last_month_revenue),
        "invoices_by_status": [
            {"status": k, "count": int(r["count"]), "amount": int(r["amount"])} for k, r in by_status.iterrows()
        ],
        "monthly_revenue": monthly_revenue,
        "top_clients": top_clients,
    }


def compliance_report(s: Session, actor) -> dict[str, Any]:
    cohort_ids = _scope(s, actor)
    bundles = _frame(
        s.execute(
            _in_scope(
                select(QuestionnaireBundle.id, QuestionnaireBundle.cohort_id, Cohort.name, QuestionnaireBundle.week_number)
                .join(Cohort, Cohort.id == QuestionnaireBundle.cohort_id)
                .where(QuestionnaireBundle.is_active.is_(True)),
                QuestionnaireBundle.cohort_id,
                cohort_ids,
            )
        ).all(),
        ["bundle_id", "cohort_id", "cohort_name", "week_number"],
    )
    members = dict(
        s.execute(
            select(CohortMembership.cohort_id, func.count(CohortMembership.id))
            .where(CohortMembership.status == "active")
            .group_by(CohortMembership.cohort_id)
        ).all()
    )
    responses = _frame(
        s.execute(
            select(QuestionnaireResponse.bundle_id, QuestionnaireResponse.status).where(
                QuestionnaireResponse.bundle_id.in_([int(b) for b in bundles["bundle_id"]])
            )
        ).all(),
        ["bundle_id", "status"],
    )
    counts = responses.assign(completed=responses["status"] == "completed").groupby("bundle_id").agg(
        responses=("status", "size"), completed=("completed", "sum")
    )

    bundles["expected"] = bundles["cohort_id"].map(lambda cid: members.get(cid, 0)).astype(int)
    bundles["responses"] = bundles["bundle_id"].map(counts["responses"]).fillna(0).astype(int)
    bundles["completed"] = bundles["bundle_id"].map(counts["completed"]).fillna(0).astype(int)
    # in-progress responses plus members who have not started
    bundles["pending"] = (bundles["responses"] - bundles["completed"]) + (
        bundles["expected"] - bundles["responses"]
    ).clip(lower=0)

    completed = int(bundles["completed"].sum())
    pending = int(bundles["pending"].sum())
    total = completed + pending

    by_week = bundles.groupby("week_number").agg(
        completed=("completed", "sum"), expected=("expected", "sum")
    ).sort_index()
    by_cohort = bundles.groupby(["cohort_id", "cohort_name"]).agg(
        completed=("completed", "sum"), expected=("expected", "sum")
    ).reset_index()

    return {
        "total_questionnaires": len(bundles),
        "completed_responses": completed,
        "pending_responses": pending,
        "completion_rate": completed / total * 100 if total else 0.0,
        "responses_by_week": [
            {
                "week_number": int(week),
                "completed": int(r["completed"]),
                "pending": max(0, int(r["expected"] - r["completed"])),
                "total": int(r["expected"]),
            }
            for week, r in by_week.iterrows()
        ],
        "cohort_compliance": [
            {
                "cohort_id": int(r.cohort_id),
                "cohort_name": r.cohort_name,
                "member_count": int(members.get(r.cohort_id, 0)),
                "avg_completion_rate": float(r.completed / r.expected * 100) if r.expected else 0.0,
            }
            for r in by_cohort.itertuples()
        ],
    }


def session_attendance_report(s: Session, actor, now: Optional[datetime] = None) -> dict[str, Any]:
    ensure_coach(actor)
    now = now or utcnow()
    session_q = select(
        ClassSession.id,
        ClassSession.status,
        ClassSession.start_time,
        ClassSession.max_occupancy,
        ClassType.name,
    ).outerjoin(ClassType, ClassType.id == ClassSession.class_type_id)
    if not is_admin(actor):
        session_q = session_q.where(ClassSession.coach_id == actor.id)
    sessions = _frame(s.execute(session_q).all(), ["session_id", "status", "start_time", "capacity", "class_type"])
    regs = _frame(
        s.execute(
            select(SessionRegistration.session_id, SessionRegistration.status).where(
                SessionRegistration.session_id.in_([int(x) for x in sessions["session_id"]])
            )
        ).all(),
        ["session_id", "reg_status"],
    )

    total_regs = len(regs)

    def rate(status: str) -> float:
        return int((regs["reg_status"] == status).sum()) / total_regs * 100 if total_regs else 0.0

    occupying = regs[regs["reg_status"].isin(["registered", "attended"])].groupby("session_id").size()
    with_capacity = sessions[sessions["capacity"] > 0]
    occupancy = with_capacity["session_id"].map(occupying).fillna(0) / with_capacity["capacity"] * 100
    start = pd.to_datetime(sessions["start_time"])

    completed = sessions[sessions["status"] == "completed"]
    merged = regs.merge(completed[["session_id", "start_time"]], on="session_id")
    merged = merged[pd.to_datetime(merged["start_time"]) >= pd.Timestamp(now - timedelta(weeks=ATTENDANCE_TREND_WEEKS))]
    merged = merged[pd.to_datetime(merged["start_time"]) <= pd.Timestamp(now)].copy()
    week_start = pd.to_datetime(merged["start_time"]).dt.normalize()
    merged["week"] = (week_start - pd.to_timedelta(week_start.dt.weekday, unit="D")).dt.strftime("%Y-%m-%d")
    trend = merged.assign(
        attended=merged["reg_status"] == "attended", no_show=merged["reg_status"] == "no_show"
    ).groupby("week").agg(attended=("attended", "sum"), no_show=("no_show", "sum"), total=("reg_status", "size"))

    attended_per_session = regs[regs["reg_status"] == "attended"].groupby("session_id").size()
    typed = completed.dropna(subset=["class_type"]).copy()
    typed["attended"] = typed["session_id"].map(attended_per_session).fillna(0)
    popular = (
        typed.groupby("class_type")
        .agg(session_count=("session_id", "size"), avg_attendance=("attended", "mean"))
        .reset_index()
        .sort_values("session_count", ascending=False)
    )

    return {
        "total_sessions": len(sessions),
        "completed_sessions": len(completed),
        "cancelled_sessions": int((sessions["status"] == "cancelled").sum()),
        "upcoming_sessions": int(((sessions["status"] == "scheduled") & (start > pd.Timestamp(now))).sum()),
        "total_registrations": total_regs,
        "attendance_rate": rate("attended"),
        "no_show_rate": rate("no_show"),
        "late_cancel_rate": rate("late_cancelled"),
        "average_occupancy": float(occupancy.mean()) if len(occupancy) else 0.0,
        "sessions_by_status": [
            {"status": k, "count": int(v)} for k, v in sessions.groupby("status").size().items()
        ],
        "attendance_trend": [
            {"date": week, "attended": int(r["attended"]), "no_show": int(r["no_show"]), "total": int(r["total"])}
            for week, r in trend.sort_index().iterrows()
        ],
        "popular_class_types": [
            {"name": r.class_type, "session_count": int(r.session_count), "avg_attendance": float(r.avg_attendance)}
            for r in popular.itertuples()
        ],
    }


def membership_report(s: Session, actor, now: Optional[datetime] = None) -> dict[str, Any]:
    ensure_admin(actor)
    now = now or utcnow()
    since = now - timedelta(days=CHURN_WINDOW_DAYS)
    memberships = _frame(
        s.execute(
            select(UserMembership.status, UserMembership.updated_at, MembershipPlan.type).join(
                MembershipPlan, MembershipPlan.id == UserMembership.plan_id
            )
        ).all(),
        ["status", "updated_at", "plan_type"],
    )
    by_status = memberships.groupby("status").size()
    active = int(by_status.get("active", 0))
    recent_cancelled = int(
        ((memberships["status"] == "cancelled") & (pd.to_datetime(memberships["updated_at"]) >= pd.Timestamp(since))).sum()
    )

    popularity = [
        {"plan_name": name, "type": plan_type, "active_count": int(count)}
        for name, plan_type, count in s.execute(
            select(MembershipPlan.name, MembershipPlan.type, func.count(UserMembership.id))
            .outerjoin(
                UserMembership,
                (UserMembership.plan_id == MembershipPlan.id) & (UserMembership.status == "active"),
            )
            .where(MembershipPlan.is_active.is_(True))
            .group_by(MembershipPlan.id, MembershipPlan.name, MembershipPlan.type)
        ).all()
    ]
    popularity.sort(key=lambda p: p["active_count"], reverse=True)

    recent_regs = s.execute(
        select(func.count(SessionRegistration.id)).where(
            SessionRegistration.registered_at >= since,
            SessionRegistration.status.in_(("registered", "attended")),
        )
    ).scalar_one()
    churn_base = active + recent_cancelled

    return {
        "total_active_memberships": active,
        "total_paused_memberships": int(by_status.get("paused", 0)),
        "total_cancelled_memberships": int(by_status.get("cancelled", 0)),
        "memberships_by_status": [{"status": k, "count": int(v)} for k, v in by_status.items()],
        "memberships_by_type": [
            {"type": k, "count": int(v)} for k, v in memberships.groupby("plan_type").size().items()
        ],
        "plan_popularity": popularity,
        "churn_rate": recent_cancelled / churn_base * 100 if churn_base else 0.0,
        "average_sessions_per_member": recent_regs / active if active else 0.0,
    }


# export


def _csv_block(title: str, frame: pd.DataFrame) -> list[str]:
    return [title, frame.to_csv(index=False, lineterminator="\n").rstrip("\n"), ""]


def _metrics(rows: list[tuple[str, Any]]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=["Metric", "Value"])


def report_to_csv(report: dict[str, Any], report_type: str) -> str:
    if report_type == "members":
        lines = _csv_block(
            "Member Engagement Report",
            _metrics(
                [
                    ("Total Members", report["total_members"]),
                    ("Active Members", report["active_members"]),
                    ("Inactive Members", report["inactive_members"]),
                    ("New This Month", report["new_members_this_month"]),
                    ("Avg Check-ins Per Member", f"{report['avg_check_ins_per_member']:.2f}"),
                ]
            ),
        )
        trend = pd.DataFrame(report["check_in_trend"], columns=["date", "count"])
        lines += _csv_block("Check-in Trend", trend.rename(columns={"date": "Date", "count": "Count"}))
    elif report_type == "cohorts":
        frame = pd.DataFrame(
            [
                (
                    c["id"],
                    c["name"],
                    c["status"],
                    c["member_count"],
                    f"{c['avg_engagement']:.1f}",
                    c["start_date"],
                    c["end_date"] or "",
                )
                for c in report["cohort_breakdown"]
            ],
            columns=["ID", "Name", "Status", "Members", "Engagement %", "Start Date", "End Date"],
        )
        lines = _csv_block("Cohort Report", frame)
    elif report_type == "revenue":
        lines = _csv_block(
            "Revenue Report",
            _metrics(
                [
                    ("Total Revenue", format_money(report["total_revenue"])),
                    ("This Month", format_money(report["revenue_this_month"])),
                    ("Last Month", format_money(report["revenue_last_month"])),
                    ("Growth", f"{report['month_over_month_growth']:.1f}%"),
                ]
            ),
        )
        monthly = pd.DataFrame(
            [(m["month"], format_money(m["revenue"]), m["invoice_count"]) for m in report["monthly_revenue"]],
            columns=["Month", "Revenue", "Invoices"],
        )
        lines += _csv_block("Monthly Revenue", monthly)
        clients = pd.DataFrame(
            [
                (c["id"], c["name"] or "", c["email"], format_money(c["total_revenue"]), c["invoice_count"])
                for c in report["top_clients"]
            ],
            columns=["ID", "Name", "Email", "Total Revenue", "Invoices"],
        )
        lines += _csv_block("Top Clients", clients)
    elif report_type == "compliance":
        lines = _csv_block(
            "Compliance Report",
            _metrics(
                [
                    ("Total Questionnaires", report["total_questionnaires"]),
                    ("Completed Responses", report["completed_responses"]),
                    ("Pending Responses", report["pending_responses"]),
                    ("Completion Rate", f"{report['completion_rate']:.1f}%"),
                ]
            ),
        )
        cohorts = pd.DataFrame(
            [
                (c["cohort_id"], c["cohort_name"], c["member_count"], f"{c['avg_completion_rate']:.1f}%")
                for c in report["cohort_compliance"]
            ],
            columns=["Cohort ID", "Name", "Members", "Completion Rate"],
        )
        lines += _csv_block("Cohort Compliance", cohorts)
    else:
        raise ValidationError("Invalid report type")
    return "\n".join(lines).rstrip("\n") + "\n"


def export_report(
    s: Session,
    actor,
    report_type: str,
    fmt: str = "csv",
    now: Optional[datetime] = None,
) -> dict[str, str]:
    if report_type not in EXPORT_TYPES:
        raise ValidationError("Invalid report type")
    if fmt not in EXPORT_FORMATS:
        raise ValidationError("Invalid export format")
    now = now or utcnow()
    if report_type == "members":
        report = member_engagement_report(s, actor, now=now)
    elif report_type == "cohorts":
        report = cohort_report(s, actor, now=now)
    elif report_type == "revenue":
        report = revenue_report(s, actor, now=now)
    else:
        report = compliance_report(s, actor)

    stamp = now.strftime("%Y-%m-%d")
    logger.info("report_exported", extra={"report_type": report_type, "format": fmt, "actor_id": actor.id})
    if fmt == "json":
        return {
            "content": json.dumps(report, indent=2, default=str),
            "content_type": "application/json",
            "filename": f"{report_type}-report-{stamp}.json",
        }
    return {
        "content": report_to_csv(report, report_type),
        "content_type": "text/csv",
        "filename": f"{report_type}-report-{stamp}.csv",
    }
