"""Attention scoring for clients, coaches and cohorts.

Scoring functions are pure and work on pre-fetched snapshots so they can be
tested without a database. The queue functions load those snapshots in
batches, score them, and keep the results in ``attention_scores`` for one hour.
The table is an advisory cache: concurrent refreshes may race on the
delete+insert and the last writer wins.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.config import get_settings
from core.models import AttentionScore, CoachCohortMembership, Cohort, CohortMembership, Entry, User
from core.permissions import ensure_admin
from core.services.audit import log_audit_event
from core.services.system_settings import get_system_settings, set_system_settings
from core.validators import AdherenceSettingsInput

logger = logging.getLogger(__name__)

ENGAGEMENT_WINDOW_DAYS = 14
FALLBACK_FREQUENCY_DAYS = 7
MISSED_CHECKIN_POLICIES = ("option_a", "option_b")


@dataclass
class ClientActivity:
    user_id: int
    name: str
    email: str
    frequency_days: int
    last_entry_date: Optional[date]
    entry_dates: list[date] = field(default_factory=list)
    cohort_count: int = 0


@dataclass
class CoachLoad:
    coach_id: int
    name: str
    email: str
    cohort_count: int
    client_count: int
    recent_entries: int


@dataclass
class CohortLoad:
    cohort_id: int
    name: str
    member_count: int
    coach_count: int
    recent_entries: int


@dataclass
class AttentionItem:
    entity_type: str
    entity_id: int
    priority: str
    score: int
    reasons: list[str] = field(default_factory=list)
    suggested_actions: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    entity_name: str = ""
    entity_email: Optional[str] = None
    calculated_at: Optional[datetime] = None


def priority_for(score: int) -> str:
    if score >= 60:
        return "red"
    if score >= 30:
        return "amber"
    return "green"


def effective_frequency(
    user_days: Optional[int],
    cohort_days: Optional[int],
    system_days: Optional[int],
) -> int:
    """User override, then cohort override, then the system default, then 7."""
    for value in (user_days, cohort_days, system_days):
        if value:
            return int(value)
    return FALLBACK_FREQUENCY_DAYS


def _plural(n: int, word: str) -> str:
    return word if n == 1 else f"{word}s"


def score_client(activity: ClientActivity, today: date, policy: str = "option_a") -> AttentionItem:
    score = 0
    reasons: list[str] = []
    actions: list[str] = []
    meta: dict[str, Any] = {"frequencyDays": activity.frequency_days}

    freq = max(1, activity.frequency_days)
    last = activity.last_entry_date
    days_since = (today - last).days if last else None
    window = max(7, freq)

    if days_since is None or days_since >= ENGAGEMENT_WINDOW_DAYS:
        days = days_since if days_since is not None else 999
        if days >= 30:
            score += 40
            reasons.append(f"No entries for {days} days")
            actions.append("Contact client to check engagement")
            meta["daysSinceLastEntry"] = days
        elif days >= ENGAGEMENT_WINDOW_DAYS:
            score += 25
            reasons.append(f"No entries for {days} days")
            actions.append("Send reminder to client")
            meta["daysSinceLastEntry"] = days

    if days_since is not None and freq <= days_since < ENGAGEMENT_WINDOW_DAYS:
        score = max(score, 30)
        reasons.append(f"No entry in the last {freq} {_plural(freq, 'day')}")
        actions.append("Check in with client")
        meta["daysSinceLastEntry"] = days_since

    start14 = today - timedelta(days=ENGAGEMENT_WINDOW_DAYS)
    start_window = today - timedelta(days=window)
    e14 = sum(1 for d in activity.entry_dates if start14 < d <= today)
    e_window = sum(1 for d in activity.entry_dates if start_window < d <= today)
    expected14 = max(1, math.ceil(ENGAGEMENT_WINDOW_DAYS / freq))
    expected_window = max(1, math.ceil(window / freq))

    if e14 == 0:
        score += 30
        reasons.append("No entries in last 14 days")
        actions.append("Send engagement reminder")
        meta["entriesLast14Days"] = 0
    elif e14 < expected14:
        score += 15
        reasons.append(f"Only {e14} entries in last 14 days (low engagement)")
        actions.append("Review client engagement")
        meta["entriesLast14Days"] = e14

    if last is not None and e_window < expected_window:
        missed = expected_window - e_window
        if policy == "option_b" or missed >= 2:
            score = max(score, 60)
        else:
            score = max(score, 30)
        reasons.append(f"Missed {missed} {_plural(missed, 'check-in')} in last {window} days")
        actions.append("Check in with client")
        meta["entriesLastWindow"] = e_window
        meta["expectedInWindow"] = expected_window

    if activity.cohort_count == 0:
        score += 20
        reasons.append("Not assigned to any cohort")
        actions.append("Assign client to a cohort")
        meta["cohortCount"] = 0

    return AttentionItem(
        entity_type="user",
        entity_id=activity.user_id,
        priority=priority_for(score),
        score=min(score, 100),
        reasons=reasons,
        suggested_actions=actions,
        metadata=meta,
        entity_name=activity.name,
        entity_email=activity.email,
    )


def _engagement_rate(recent_entries: int, people: int) -> float:
    expected = people * ENGAGEMENT_WINDOW_DAYS
    return recent_entries / expected if expected else 0.0


def score_coach(load: CoachLoad, max_clients: int = 50, min_clients: int = 10) -> AttentionItem:
    score = 0
    reasons: list[str] = []
    actions: list[str] = []
    meta: dict[str, Any] = {"clientCount": load.client_count, "cohortCount": load.cohort_count}
    clients = load.client_count

    if clients > max_clients:
        score += 50
        reasons.append(f"Overloaded: {clients} clients (recommended max: {max_clients})")
        actions.extend(["Reassign some clients to other coaches", "Consider adding another coach"])
        meta["recommendedMax"] = max_clients

    if load.cohort_count == 0:
        score += 30
        reasons.append("No cohorts assigned")
        actions.append("Assign coach to cohorts")
    elif clients == 0:
        score += 20
        reasons.append("No active clients in assigned cohorts")
        actions.append("Review cohort assignments")

    if 0 < clients < min_clients and load.cohort_count > 0:
        score += 10
        reasons.append(f"Underutilized: Only {clients} clients (could take more)")
        actions.append("Assign more clients to optimize capacity")
        meta["recommendedMin"] = min_clients

    if clients > 0:
        rate = _engagement_rate(load.recent_entries, clients)
        meta["engagementRate"] = round(rate, 4)
        if rate < 0.3:
            score += 25
            reasons.append(f"Low client engagement: {rate * 100:.0f}% entry completion")
            actions.append("Review client engagement strategies")
        elif rate < 0.5:
            score += 15
            reasons.append(f"Moderate client engagement: {rate * 100:.0f}% entry completion")
            actions.append("Monitor client engagement")

    return AttentionItem(
        entity_type="coach",
        entity_id=load.coach_id,
        priority=priority_for(score),
        score=min(score, 100),
        reasons=reasons,
        suggested_actions=actions,
        metadata=meta,
        entity_name=load.name,
        entity_email=load.email,
    )


def score_cohort(load: CohortLoad) -> AttentionItem:
    score = 0
    reasons: list[str] = []
    actions: list[str] = []
    meta: dict[str, Any] = {"clientCount": load.member_count, "cohortName": load.name}

    if load.member_count == 0:
        score += 40
        reasons.append("No active members")
        actions.extend(["Invite clients to join cohort", "Review cohort purpose and goals"])
    else:
        rate = _engagement_rate(load.recent_entries, load.member_count)
        meta["engagementRate"] = round(rate, 4)
        pct = f"{rate * 100:.0f}%"
        if rate < 0.3:
            score += 35
            reasons.append(f"Very low engagement: {pct} entry completion")
            actions.extend(["Review cohort engagement strategies", "Contact coach to discuss"])
        elif rate < 0.5:
            score += 20
            reasons.append(f"Low engagement: {pct} entry completion")
            actions.append("Monitor engagement closely")
        elif rate > 0.8:
            score -= 10
            reasons.append(f"High engagement: {pct} entry completion")

    if load.coach_count == 0:
        score += 30
        reasons.append("No coach assigned")
        actions.append("Assign coach to cohort")

    # Priority is taken from the unclamped score.
    priority = priority_for(score)
    return AttentionItem(
        entity_type="cohort",
        entity_id=load.cohort_id,
        priority=priority,
        score=min(max(score, 0), 100),
        reasons=reasons,
        suggested_actions=actions,
        metadata=meta,
        entity_name=load.name,
    )


def _chunks(items: list[int], size: int) -> Iterable[list[int]]:
    if size <= 0:
        yield items
        return
    for offset in range(0, len(items), size):
        yield items[offset : offset + size]


def load_client_activity(
    s: Session,
    user_ids: list[int],
    today: date,
    default_frequency: Optional[int] = None,
) -> list[ClientActivity]:
    """Fetch everything ``score_client`` needs for a batch of client ids."""
    if not user_ids:
        return []
    users = s.execute(
        select(User).where(User.id.in_(user_ids), User.role == "client").order_by(User.id)
    ).scalars().all()
    if not users:
        return []
    ids = [u.id for u in users]

    cohort_counts: dict[int, int] = defaultdict(int)
    cohort_frequency: dict[int, Optional[int]] = {}
    memberships = s.execute(
        select(CohortMembership.user_id, CohortMembership.status, Cohort.check_in_frequency_days)
        .join(Cohort, Cohort.id == CohortMembership.cohort_id)
        .where(CohortMembership.user_id.in_(ids))
        .order_by(CohortMembership.joined_at, CohortMembership.id)
    ).all()
    for user_id, status, cohort_days in memberships:
        if status == "inactive":
            continue
        cohort_counts[user_id] += 1
        if status == "active" and cohort_frequency.get(user_id) is None:
            cohort_frequency[user_id] = cohort_days

    last_entry = dict(
        s.execute(
            select(Entry.user_id, func.max(Entry.date))
            .where(Entry.user_id.in_(ids), Entry.date <= today)
            .group_by(Entry.user_id)
        ).all()
    )

    frequencies = {
        u.id: effective_frequency(u.check_in_frequency_days, cohort_frequency.get(u.id), default_frequency)
        for u in users
    }
    lookback = max([ENGAGEMENT_WINDOW_DAYS] + [max(7, f) for f in frequencies.values()])
    recent: dict[int, list[date]] = defaultdict(list)
    for user_id, day in s.execute(
        select(Entry.user_id, Entry.date).where(
            Entry.user_id.in_(ids),
            Entry.date > today - timedelta(days=lookback),
            Entry.date <= today,
        )
    ).all():
        recent[user_id].append(day)

    return [
        ClientActivity(
            user_id=u.id,
            name=u.display_name,
            email=u.email,
            frequency_days=frequencies[u.id],
            last_entry_date=last_entry.get(u.id),
            entry_dates=sorted(recent.get(u.id, [])),
            cohort_count=cohort_counts.get(u.id, 0),
        )
        for u in users
    ]


def _recent_entry_counts(s: Session, today: date) -> dict[int, int]:
    start = today - timedelta(days=ENGAGEMENT_WINDOW_DAYS)
    rows = s.execute(
        select(Entry.user_id, func.count(Entry.id))
        .where(Entry.date > start, Entry.date <= today)
        .group_by(Entry.user_id)
    ).all()
    return {user_id: count for user_id, count in rows}


def _active_members_by_cohort(s: Session) -> dict[int, list[int]]:
    members: dict[int, list[int]] = defaultdict(list)
    for cohort_id, user_id in s.execute(
        select(CohortMembership.cohort_id, CohortMembership.user_id).where(CohortMembership.status == "active")
    ).all():
        members[cohort_id].append(user_id)
    return members


def load_coach_loads(s: Session, today: date) -> list[CoachLoad]:
    coaches = s.execute(select(User).where(User.role == "coach").order_by(User.id)).scalars().all()
    if not coaches:
        return []
    cohorts_by_coach: dict[int, list[int]] = defaultdict(list)
    for coach_id, cohort_id in s.execute(select(CoachCohortMembership.coach_id, CoachCohortMembership.cohort_id)).all():
        cohorts_by_coach[coach_id].append(cohort_id)
    members = _active_members_by_cohort(s)
    entry_counts = _recent_entry_counts(s, today)

    loads: list[CoachLoad] = []
    for coach in coaches:
        client_ids = [uid for cid in cohorts_by_coach.get(coach.id, []) for uid in members.get(cid, [])]
        loads.append(
            CoachLoad(
                coach_id=coach.id,
                name=coach.display_name,
                email=coach.email,
                cohort_count=len(cohorts_by_coach.get(coach.id, [])),
                client_count=len(client_ids),
                recent_entries=sum(entry_counts.get(uid, 0) for uid in client_ids),
            )
        )
    return loads


def load_cohort_loads(s: Session, today: date) -> list[CohortLoad]:
    cohorts = s.execute(select(Cohort).where(Cohort.status == "active").order_by(Cohort.id)).scalars().all()
    if not cohorts:
        return []
    coach_counts = dict(
        s.execute(
            select(CoachCohortMembership.cohort_id, func.count(CoachCohortMembership.id)).group_by(
                CoachCohortMembership.cohort_id
            )
        ).all()
    )
    members = _active_members_by_cohort(s)
    entry_counts = _recent_entry_counts(s, today)
    return [
        CohortLoad(
            cohort_id=c.id,
            name=c.name,
            member_count=len(members.get(c.id, [])),
            coach_count=coach_counts.get(c.id, 0),
            recent_entries=sum(entry_counts.get(uid, 0) for uid in members.get(c.id, [])),
        )
        for c in cohorts
    ]


def store_attention_scores(s: Session, items: list[AttentionItem], now: Optional[datetime] = None) -> int:
    if not items:
        return 0
    now = now or utcnow()
    expires_at = now + timedelta(minutes=get_settings().attention_cache_ttl_minutes)

    keys = {(item.entity_type, item.entity_id) for item in items}
    s.execute(
        delete(AttentionScore).where(
            or_(*[and_(AttentionScore.entity_type == et, AttentionScore.entity_id == eid) for et, eid in keys])
        )
    )
    for item in items:
        s.add(
            AttentionScore(
                entity_type=item.entity_type,
                entity_id=item.entity_id,
                priority=item.priority,
                score=item.score,
                reasons=list(item.reasons),
                meta=dict(item.metadata),
                calculated_at=now,
                expires_at=expires_at,
            )
        )
        item.calculated_at = now
    s.flush()

    try:
        with s.begin_nested():
            s.execute(delete(AttentionScore).where(AttentionScore.expires_at <= now))
    except SQLAlchemyError as exc:
        logger.error("attention_expired_cleanup_failed", extra={"error": str(exc)})

    logger.info("attention_scores_stored", extra={"count": len(items)})
    return len(items)


def _resolve_names(s: Session, rows: list[AttentionScore]) -> dict[tuple[str, int], tuple[str, Optional[str]]]:
    user_ids = {r.entity_id for r in rows if r.entity_type in ("user", "coach")}
    cohort_ids = {r.entity_id for r in rows if r.entity_type == "cohort"}
    names: dict[tuple[str, int], tuple[str, Optional[str]]] = {}
    if user_ids:
        users = {u.id: u for u in s.execute(select(User).where(User.id.in_(user_ids))).scalars()}
        for r in rows:
            if r.entity_type in ("user", "coach") and r.entity_id in users:
                u = users[r.entity_id]
                names[(r.entity_type, r.entity_id)] = (u.display_name, u.email)
    if cohort_ids:
        cohorts = dict(s.execute(select(Cohort.id, Cohort.name).where(Cohort.id.in_(cohort_ids))).all())
        for r in rows:
            if r.entity_type == "cohort" and r.entity_id in cohorts:
                names[(r.entity_type, r.entity_id)] = (cohorts[r.entity_id], None)
    return names


def _item_from_row(row: AttentionScore, name: str, email: Optional[str]) -> AttentionItem:
    return AttentionItem(
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        priority=row.priority,
        score=row.score,
        reasons=list(row.reasons or []),
        suggested_actions=[],
        metadata=dict(row.meta or {}),
        entity_name=name,
        entity_email=email,
        calculated_at=row.calculated_at,
    )


def get_cached_scores(s: Session, now: Optional[datetime] = None, entity_type: Optional[str] = None) -> list[AttentionItem]:
    now = now or utcnow()
    q = (
        select(AttentionScore)
        .where(or_(AttentionScore.expires_at.is_(None), AttentionScore.expires_at > now))
        .order_by(AttentionScore.score.desc(), AttentionScore.id)
    )
    if entity_type:
        q = q.where(AttentionScore.entity_type == entity_type)
    rows = list(s.execute(q).scalars())
    names = _resolve_names(s, rows)
    items = []
    for row in rows:
        name, email = names.get((row.entity_type, row.entity_id), (str(row.entity_id), None))
        items.append(_item_from_row(row, name, email))
    return items


def _split(items: list[AttentionItem]) -> dict[str, list[AttentionItem]]:
    return {
        "red": [i for i in items if i.priority == "red"],
        "amber": [i for i in items if i.priority == "amber"],
        "green": [i for i in items if i.priority == "green"],
    }


def score_clients(
    s: Session, user_ids: list[int], today: date, system: Optional[dict[str, Any]] = None
) -> list[AttentionItem]:
    """Score every client in ``user_ids`` without touching the cache, zero scores included."""
    system = system if system is not None else get_system_settings(s)
    policy = system.get("attentionMissedCheckinsPolicy") or "option_a"
    activities = load_client_activity(s, user_ids, today, system.get("defaultCheckInFrequencyDays"))
    return [score_client(a, today, policy) for a in activities]


def _score_clients(s: Session, user_ids: list[int], today: date, system: dict[str, Any]) -> list[AttentionItem]:
    return [item for item in score_clients(s, user_ids, today, system) if item.score > 0]


def calculate_attention_queue(
    s: Session,
    force_refresh: bool = False,
    batch_size: Optional[int] = None,
    entity_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, list[AttentionItem]]:
    now = now or utcnow()
    today = now.date()
    batch_size = batch_size or get_settings().attention_batch_size

    if not force_refresh:
        cached = get_cached_scores(s, now=now, entity_type=entity_type)
        if cached:
            return _split(cached)

    system = get_system_settings(s)
    queue: list[AttentionItem] = []

    if entity_type in (None, "user"):
        client_ids = list(s.execute(select(User.id).where(User.role == "client").order_by(User.id)).scalars())
        for batch in _chunks(client_ids, batch_size):
            scored = _score_clients(s, batch, today, system)
            store_attention_scores(s, scored, now)
            queue.extend(scored)

    if entity_type in (None, "coach"):
        max_clients = int(system.get("maxClientsPerCoach") or 50)
        min_clients = int(system.get("minClientsPerCoach") or 10)
        coach_items = [
            item
            for item in (score_coach(load, max_clients, min_clients) for load in load_coach_loads(s, today))
            if item.score > 0
        ]
        store_attention_scores(s, coach_items, now)
        queue.extend(coach_items)

    if entity_type in (None, "cohort"):
        cohort_items = [item for item in (score_cohort(load) for load in load_cohort_loads(s, today)) if item.score > 0]
        store_attention_scores(s, cohort_items, now)
        queue.extend(cohort_items)

    queue.sort(key=lambda item: item.score, reverse=True)
    logger.info("attention_queue_calculated", extra={"items": len(queue), "entity_type": entity_type})
    return _split(queue)


def _last_calculated(s: Session) -> Optional[datetime]:
    return s.execute(select(func.max(AttentionScore.calculated_at))).scalar_one_or_none()


def get_attention_queue(
    s: Session,
    force_refresh: bool = False,
    entity_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    queue = calculate_attention_queue(s, force_refresh=force_refresh, entity_type=entity_type, now=now)
    total_clients = s.execute(select(func.count(User.id)).where(User.role == "client")).scalar_one()
    return {**queue, "total_clients": total_clients, "last_calculated": _last_calculated(s)}


def get_attention_queue_by_cohort(s: Session, cohort_id: int, now: Optional[datetime] = None) -> dict[str, Any]:
    member_ids = set(
        s.execute(
            select(CohortMembership.user_id).where(
                CohortMembership.cohort_id == cohort_id, CohortMembership.status == "active"
            )
        ).scalars()
    )
    queue = calculate_attention_queue(s, now=now)
    filtered = {
        bucket: [i for i in items if i.entity_type == "user" and i.entity_id in member_ids]
        for bucket, items in queue.items()
    }
    total = sum(len(items) for items in filtered.values())
    return {**filtered, "total_clients": total, "last_calculated": _last_calculated(s)}


def _clear_user_scores(s: Session, user_ids: list[int]) -> None:
    if user_ids:
        s.execute(
            delete(AttentionScore).where(AttentionScore.entity_type == "user", AttentionScore.entity_id.in_(user_ids))
        )
        s.flush()


def get_client_attention_score(s: Session, user_id: int, now: Optional[datetime] = None) -> Optional[AttentionItem]:
    now = now or utcnow()
    cached = s.execute(
        select(AttentionScore).where(AttentionScore.entity_type == "user", AttentionScore.entity_id == user_id)
    ).scalar_one_or_none()
    if cached is not None and cached.expires_at and cached.expires_at > now:
        user = s.get(User, user_id)
        name = user.display_name if user else str(user_id)
        return _item_from_row(cached, name, user.email if user else None)

    scored = _score_clients(s, [user_id], now.date(), get_system_settings(s))
    if not scored:
        _clear_user_scores(s, [user_id])
        return None
    store_attention_scores(s, scored, now)
    return scored[0]


def recalculate_client_attention(s: Session, user_ids: Iterable[int], now: Optional[datetime] = None) -> int:
    """Rescore ``user_ids``; clients who now score 0 lose their cached row."""
    unique_ids = sorted(set(user_ids))
    if not unique_ids:
        return 0
    now = now or utcnow()
    system = get_system_settings(s)
    stored = 0
    for batch in _chunks(unique_ids, get_settings().attention_batch_size):
        scored = _score_clients(s, batch, now.date(), system)
        flagged = {item.entity_id for item in scored}
        _clear_user_scores(s, [user_id for user_id in batch if user_id not in flagged])
        stored += store_attention_scores(s, scored, now)
    return stored


def expire_all_attention_scores(s: Session, now: Optional[datetime] = None) -> None:
    s.execute(update(AttentionScore).values(expires_at=now or utcnow()))
    s.flush()


def get_adherence_settings(s: Session) -> dict[str, Any]:
    system = get_system_settings(s)
    return {
        "adherence_green_minimum": system["adherenceGreenMinimum"],
        "adherence_amber_minimum": system["adherenceAmberMinimum"],
        "attention_missed_checkins_policy": system["attentionMissedCheckinsPolicy"],
        "default_check_in_frequency_days": system["defaultCheckInFrequencyDays"],
    }


def update_adherence_settings(s: Session, actor, data: AdherenceSettingsInput) -> dict[str, Any]:
    ensure_admin(actor, "Only admins can update adherence settings")
    set_system_settings(
        s,
        {
            "adherenceGreenMinimum": data.adherence_green_minimum,
            "adherenceAmberMinimum": data.adherence_amber_minimum,
            "attentionMissedCheckinsPolicy": data.attention_missed_checkins_policy,
        },
    )
    expire_all_attention_scores(s)
    log_audit_event(
        s,
        "UPDATE_ADHERENCE_SETTINGS",
        actor_id=actor.id,
        target_type="SystemSettings",
        details=data.model_dump(),
    )
    return get_adherence_settings(s)
