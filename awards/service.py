"""Trainer lookup, stamp awarding and the award audit log."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional

from flask import current_app
from sqlalchemy import func

from extensions import db
from models import Collection, Event, Profile, Stamp, UserStamp
from olivos.auth import PROFILE_COLUMNS
from olivos.backend import (
    commit_session,
    get_supabase_client,
    isoformat_or_none,
    rows,
    run_query,
)
from olivos.errors import ConflictError, InvalidCodeFormat, PokeOlivosError, ValidationError
from olivos.search import MIN_SEARCH_LENGTH, PAGE_SIZE, Page, coerce_page, page_bounds
from olivos.trainer_code import normalize_trainer_code

NAME_FILTER_LIMIT = 200

NO_TRAINER_MESSAGE = "No trainer found with that code."
TRAINER_DISABLED_MESSAGE = "That trainer's account is disabled."
INCOMPLETE_TARGET_MESSAGE = "Pick a stamp inside a collection and an event before awarding."
ENTER_CODE_MESSAGE = "Enter a trainer code."
CONFIRM_TRAINER_MESSAGE = "Confirm a valid trainer before awarding the stamp."


class AwardState(str, Enum):
    IDLE = "idle"
    CODE_ENTERED = "code_entered"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"
    AWARDING = "awarding"
    AWARDED = "awarded"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass(frozen=True)
class AwardTarget:
    stamp_id: Optional[str] = None
    collection_id: Optional[str] = None
    event_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.stamp_id and self.collection_id and self.event_id)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "AwardTarget":
        def _value(key: str) -> Optional[str]:
            raw = data.get(key)
            cleaned = str(raw).strip() if raw is not None else ""
            return cleaned or None

        return cls(
            stamp_id=_value("stamp_id"),
            collection_id=_value("collection_id"),
            event_id=_value("event_id"),
        )


@dataclass(frozen=True)
class TrainerLookup:
    status: str
    code: Optional[str] = None
    profile: Optional[dict] = None
    message: str = ""

    @property
    def found(self) -> bool:
        return self.status == "found" and self.profile is not None

    def to_dict(self) -> dict:
        profile = self.profile or {}
        return {
            "status": self.status,
            "code": self.code,
            "message": self.message,
            "user_id": profile.get("id"),
            "trainer_name": profile.get("trainer_name"),
        }


@dataclass(frozen=True)
class AwardResult:
    claim_code: Optional[str]
    user_id: str
    trainer_name: str
    stamp_id: str
    stamp_name: Optional[str] = None

    @property
    def message(self) -> str:
        return f"Stamp awarded to {self.trainer_name}. Claim code: {self.claim_code or 'none'}."


class AwardFlow:
    """
    One award attempt: type or scan a code, resolve it to a trainer, award.

    Lookups are tagged with a ticket; only the result for the latest ticket is
    applied, so a slow response for an older code never overwrites a newer one.
    `cancel()` bumps the ticket too, which turns any late result into a no-op.
    """

    def __init__(self, target: Optional[AwardTarget] = None):
        self.target = target or AwardTarget()
        self.state = AwardState.IDLE
        self.code = ""
        self.trainer: Optional[dict] = None
        self.message = ""
        self.claim_code: Optional[str] = None
        self._ticket = 0

    @property
    def ticket(self) -> int:
        return self._ticket

    @property
    def can_award(self) -> bool:
        return self.state == AwardState.RESOLVED and self.trainer is not None and self.target.is_complete

    def enter_code(self, text: Optional[str]) -> AwardState:
        self._ticket += 1
        self.trainer = None
        self.claim_code = None
        self.message = ""
        self.code = (text or "").strip()
        self.state = AwardState.CODE_ENTERED if self.code else AwardState.IDLE
        return self.state

    def begin_lookup(self) -> int:
        self._ticket += 1
        self.state = AwardState.RESOLVING
        return self._ticket

    def apply_lookup(self, ticket: int, lookup: TrainerLookup) -> bool:
        """Apply a lookup result; returns False when the result was stale."""
        if ticket != self._ticket or self.state != AwardState.RESOLVING:
            return False
        if lookup.found:
            self.trainer = lookup.profile
            self.state = AwardState.RESOLVED
            self.message = ""
        else:
            self.trainer = None
            self.state = AwardState.UNRESOLVED
            self.message = lookup.message
        return True

    def award(self, insert: Callable[[dict, AwardTarget], AwardResult]) -> AwardState:
        if not self.can_award:
            if not self.target.is_complete:
                self.message = INCOMPLETE_TARGET_MESSAGE
            elif self.state == AwardState.IDLE:
                self.message = ENTER_CODE_MESSAGE
            elif self.state != AwardState.UNRESOLVED:
                self.message = CONFIRM_TRAINER_MESSAGE
            return self.state

        ticket = self._ticket
        self.state = AwardState.AWARDING
        try:
            result = insert(self.trainer, self.target)
        except ConflictError as exc:
            outcome, message, claim_code = AwardState.CONFLICT, exc.message, None
        except PokeOlivosError as exc:
            outcome, message, claim_code = AwardState.FAILED, exc.message, None
        else:
            outcome, message, claim_code = AwardState.AWARDED, result.message, result.claim_code

        if ticket != self._ticket:
            # Cancelled while the write was in flight; the write still happened.
            return self.state
        self.state = outcome
        self.message = message
        self.claim_code = claim_code
        return self.state

    def cancel(self) -> None:
        self._ticket += 1
        self.state = AwardState.IDLE
        self.code = ""
        self.trainer = None
        self.message = ""
        self.claim_code = None


def lookup_trainer(raw_code: Optional[str]) -> TrainerLookup:
    try:
        code = normalize_trainer_code(raw_code)
    except InvalidCodeFormat as exc:
        return TrainerLookup(status="invalid", message=exc.message)

    client = get_supabase_client()
    if client:
        resp = run_query(
            client.table("profiles").select(PROFILE_COLUMNS).eq("trainer_code", code).limit(1),
            "looking up a trainer code",
        )
        data = rows(resp)
        profile = data[0] if data else None
    else:
        record = Profile.query.filter_by(trainer_code=code).first()
        profile = record.to_dict() if record else None

    if not profile:
        return TrainerLookup(status="not_found", code=code, message=NO_TRAINER_MESSAGE)
    if not profile.get("active"):
        return TrainerLookup(status="disabled", code=code, profile=profile, message=TRAINER_DISABLED_MESSAGE)
    return TrainerLookup(status="found", code=code, profile=profile)


def describe_target(target: AwardTarget) -> Dict[str, Optional[str]]:
    """Names of the stamp/collection/event an award points at (None when missing)."""
    names: Dict[str, Optional[str]] = {"stamp": None, "collection": None, "event": None}
    client = get_supabase_client()
    for kind, table, item_id in (
        ("stamp", "stamps", target.stamp_id),
        ("collection", "collections", target.collection_id),
        ("event", "events", target.event_id),
    ):
        if not item_id:
            continue
        if client:
            data = rows(run_query(client.table(table).select("name").eq("id", item_id).limit(1), f"loading {kind} name"))
            names[kind] = data[0].get("name") if data else None
        else:
            model = {"stamp": Stamp, "collection": Collection, "event": Event}[kind]
            record = db.session.get(model, item_id)
            names[kind] = record.name if record else None
    return names


def conflict_message(trainer_name: Optional[str], stamp_name: Optional[str]) -> str:
    return f"{trainer_name or 'This trainer'} already has {stamp_name or 'this stamp'}."


def award_stamp(
    trainer: Mapping[str, object],
    target: AwardTarget,
    awarded_by: Optional[str],
    stamp_name: Optional[str] = None,
) -> AwardResult:
    """Insert one user_stamps row; a second award of the same stamp raises ConflictError."""
    if not target.is_complete:
        raise ValidationError(INCOMPLETE_TARGET_MESSAGE)
    user_id = str(trainer.get("id") or "")
    if not user_id:
        raise ValidationError(CONFIRM_TRAINER_MESSAGE)
    trainer_name = str(trainer.get("trainer_name") or "")
    duplicate_message = conflict_message(trainer_name, stamp_name)

    client = get_supabase_client()
    if client:
        resp = run_query(
            client.table("user_stamps").insert(
                {
                    "user_id": user_id,
                    "stamp_id": target.stamp_id,
                    "collection_id": target.collection_id,
                    "event_id": target.event_id,
                    "awarded_by": awarded_by,
                }
            ),
            "awarding a stamp",
            conflict_message=duplicate_message,
        )
        data = rows(resp)
        claim_code = data[0].get("claim_code") if data else None
    else:
        award = UserStamp(
            user_id=user_id,
            stamp_id=target.stamp_id,
            collection_id=target.collection_id,
            event_id=target.event_id,
            awarded_by=awarded_by,
        )
        db.session.add(award)
        commit_session("awarding a stamp", conflict_message=duplicate_message)
        claim_code = award.claim_code

    current_app.logger.info(
        "Stamp %s awarded to %s by %s (claim %s)", target.stamp_id, user_id, awarded_by, claim_code
    )
    return AwardResult(
        claim_code=claim_code,
        user_id=user_id,
        trainer_name=trainer_name,
        stamp_id=str(target.stamp_id),
        stamp_name=stamp_name,
    )


# ---------------------------------------------------------------------------
# Award log
# ---------------------------------------------------------------------------

LOG_FILTER_FIELDS = (
    "awarded_at",
    "stamp_name",
    "collection_name",
    "event_name",
    "delivered_to",
    "delivered_by",
    "claim_code",
)


@dataclass(frozen=True)
class LogFilters:
    awarded_at: str = ""
    stamp_name: str = ""
    collection_name: str = ""
    event_name: str = ""
    delivered_to: str = ""
    delivered_by: str = ""
    claim_code: str = ""
    page: int = 1

    @classmethod
    def from_args(cls, args: Mapping[str, object]) -> "LogFilters":
        values = {name: str(args.get(name) or "").strip() for name in LOG_FILTER_FIELDS}
        if values["awarded_at"] and _parse_day(values["awarded_at"]) is None:
            values["awarded_at"] = ""
        return cls(page=coerce_page(args.get("page")), **values)

    def query_args(self, page: Optional[int] = None) -> dict:
        """Filters as URL parameters (blank ones dropped) for pagination links."""
        args = {name: getattr(self, name) for name in LOG_FILTER_FIELDS if getattr(self, name)}
        args["page"] = page if page is not None else self.page
        return args

    @property
    def is_filtered(self) -> bool:
        return any(getattr(self, name) for name in LOG_FILTER_FIELDS)


@dataclass(frozen=True)
class AwardLogEntry:
    id: str
    awarded_at: Optional[str]
    claim_code: Optional[str]
    event_name: str = ""
    collection_name: str = ""
    stamp_name: str = ""
    delivered_to: str = ""
    delivered_by: str = ""


@dataclass(frozen=True)
class _ResolvedIds:
    event_ids: Optional[List[str]] = None
    collection_ids: Optional[List[str]] = None
    stamp_ids: Optional[List[str]] = None
    delivered_to_ids: Optional[List[str]] = None
    delivered_by_ids: Optional[List[str]] = None

    @property
    def any_empty(self) -> bool:
        return any(
            ids is not None and not ids
            for ids in (
                self.event_ids,
                self.collection_ids,
                self.stamp_ids,
                self.delivered_to_ids,
                self.delivered_by_ids,
            )
        )


def list_award_logs(filters: LogFilters) -> Page:
    """
    One page of awards, newest first.

    Each name filter of at least three characters is resolved to ids first; if
    any of them matches nothing the main query is skipped and an empty page
    comes back.
    """
    client = get_supabase_client()
    if client:
        return _list_award_logs_supabase(client, filters)
    return _list_award_logs_sql(filters)


def _name_term(value: str) -> Optional[str]:
    term = (value or "").strip()
    return term if len(term) >= MIN_SEARCH_LENGTH else None


def _parse_day(value: str) -> Optional[date]:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


def _day_range(value: str):
    day = _parse_day(value)
    if day is None:
        return None
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def _list_award_logs_supabase(client, filters: LogFilters) -> Page:
    page = filters.page

    def _resolve(table: str, value: str) -> Optional[List[str]]:
        term = _name_term(value)
        if term is None:
            return None
        column = "trainer_name" if table == "profiles" else "name"
        resp = run_query(
            client.table(table).select("id").ilike(column, f"%{term}%").limit(NAME_FILTER_LIMIT),
            f"resolving the {table} log filter",
        )
        return [str(row["id"]) for row in rows(resp) if row.get("id") is not None]

    resolved = _ResolvedIds(
        event_ids=_resolve("events", filters.event_name),
        collection_ids=_resolve("collections", filters.collection_name),
        stamp_ids=_resolve("stamps", filters.stamp_name),
        delivered_to_ids=_resolve("profiles", filters.delivered_to),
        delivered_by_ids=_resolve("profiles", filters.delivered_by),
    )
    if resolved.any_empty:
        return Page(items=[], total=0, page=page, page_size=PAGE_SIZE)

    query = (
        client.table("user_stamps")
        .select(
            "id, awarded_at, claim_code, user_id, awarded_by, "
            "event:events(name), collection:collections(name), stamp:stamps(name)",
            count="exact",
        )
        .order("awarded_at", desc=True)
    )
    claim_term = _name_term(filters.claim_code)
    if claim_term:
        query = query.ilike("claim_code", f"%{claim_term}%")
    day_range = _day_range(filters.awarded_at)
    if day_range:
        start, end = day_range
        query = query.gte("awarded_at", start.strftime("%Y-%m-%dT%H:%M:%S")).lt(
            "awarded_at", end.strftime("%Y-%m-%dT%H:%M:%S")
        )
    for column, ids in (
        ("event_id", resolved.event_ids),
        ("collection_id", resolved.collection_ids),
        ("stamp_id", resolved.stamp_ids),
        ("user_id", resolved.delivered_to_ids),
        ("awarded_by", resolved.delivered_by_ids),
    ):
        if ids is not None:
            query = query.in_(column, ids)

    start_row, end_row = page_bounds(page)
    resp = run_query(query.range(start_row, end_row), "loading the award log")
    data = rows(resp)
    total = getattr(resp, "count", None)
    if total is None:
        total = len(data)

    profile_ids = sorted({str(value) for row in data for value in (row.get("user_id"), row.get("awarded_by")) if value})
    names: Dict[str, str] = {}
    if profile_ids:
        profile_resp = run_query(
            client.table("profiles").select("id, trainer_name").in_("id", profile_ids),
            "loading award log trainer names",
        )
        names = {str(row["id"]): row.get("trainer_name") or "" for row in rows(profile_resp)}

    entries = [
        AwardLogEntry(
            id=str(row.get("id")),
            awarded_at=row.get("awarded_at"),
            claim_code=row.get("claim_code"),
            event_name=_relation_name(row.get("event")),
            collection_name=_relation_name(row.get("collection")),
            stamp_name=_relation_name(row.get("stamp")),
            delivered_to=names.get(str(row.get("user_id")), ""),
            delivered_by=names.get(str(row.get("awarded_by")), ""),
        )
        for row in data
    ]
    return Page(items=entries, total=int(total), page=page, page_size=PAGE_SIZE)


def _relation_name(relation) -> str:
    # PostgREST returns embedded rows as an object or a one-item list.
    if isinstance(relation, list):
        relation = relation[0] if relation else None
    if isinstance(relation, dict):
        return relation.get("name") or ""
    return ""


def _list_award_logs_sql(filters: LogFilters) -> Page:
    page = filters.page

    def _resolve(column, value: str) -> Optional[List[str]]:
        term = _name_term(value)
        if term is None:
            return None
        model = column.class_
        matches = (
            db.session.query(model.id)
            .filter(func.lower(column).like(f"%{term.lower()}%"))
            .limit(NAME_FILTER_LIMIT)
            .all()
        )
        return [row[0] for row in matches]

    resolved = _ResolvedIds(
        event_ids=_resolve(Event.name, filters.event_name),
        collection_ids=_resolve(Collection.name, filters.collection_name),
        stamp_ids=_resolve(Stamp.name, filters.stamp_name),
        delivered_to_ids=_resolve(Profile.trainer_name, filters.delivered_to),
        delivered_by_ids=_resolve(Profile.trainer_name, filters.delivered_by),
    )
    if resolved.any_empty:
        return Page(items=[], total=0, page=page, page_size=PAGE_SIZE)

    query = UserStamp.query
    claim_term = _name_term(filters.claim_code)
    if claim_term:
        query = query.filter(func.lower(UserStamp.claim_code).like(f"%{claim_term.lower()}%"))
    day_range = _day_range(filters.awarded_at)
    if day_range:
        start, end = (moment.replace(tzinfo=timezone.utc) for moment in day_range)
        query = query.filter(UserStamp.awarded_at >= start, UserStamp.awarded_at < end)
    for column, ids in (
        (UserStamp.event_id, resolved.event_ids),
        (UserStamp.collection_id, resolved.collection_ids),
        (UserStamp.stamp_id, resolved.stamp_ids),
        (UserStamp.user_id, resolved.delivered_to_ids),
        (UserStamp.awarded_by, resolved.delivered_by_ids),
    ):
        if ids is not None:
            query = query.filter(column.in_(ids))

    total = query.count()
    start_row, _ = page_bounds(page)
    awards = (
        query.order_by(UserStamp.awarded_at.desc(), UserStamp.id.desc())
        .offset(start_row)
        .limit(PAGE_SIZE)
        .all()
    )

    def _names(model, ids) -> Dict[str, str]:
        ids = {value for value in ids if value}
        if not ids:
            return {}
        label = model.trainer_name if model is Profile else model.name
        return {row[0]: row[1] or "" for row in db.session.query(model.id, label).filter(model.id.in_(ids)).all()}

    events = _names(Event, (award.event_id for award in awards))
    collections = _names(Collection, (award.collection_id for award in awards))
    stamps = _names(Stamp, (award.stamp_id for award in awards))
    trainers = _names(Profile, [value for award in awards for value in (award.user_id, award.awarded_by)])

    entries = [
        AwardLogEntry(
            id=award.id,
            awarded_at=isoformat_or_none(award.awarded_at),
            claim_code=award.claim_code,
            event_name=events.get(award.event_id, ""),
            collection_name=collections.get(award.collection_id, ""),
            stamp_name=stamps.get(award.stamp_id, ""),
            delivered_to=trainers.get(award.user_id, ""),
            delivered_by=trainers.get(award.awarded_by, ""),
        )
        for award in awards
    ]
    return Page(items=entries, total=total, page=page, page_size=PAGE_SIZE)
