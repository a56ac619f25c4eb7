"""Staff blueprint: resolve trainer codes, award stamps and browse the award log."""

from __future__ import annotations

from typing import Callable

from flask import Blueprint, flash, jsonify, redirect, render_template, request, url_for

from olivos.access import Viewer, wants_json
from olivos.errors import PokeOlivosError
from olivos.search import PAGE_SIZE
from olivos.trainer_code import decode_scanned_code

from .service import (
    AwardFlow,
    AwardState,
    AwardTarget,
    LogFilters,
    award_stamp,
    describe_target,
    list_award_logs,
    lookup_trainer,
)

ViewerProvider = Callable[[], Viewer]
Guard = Callable[[Callable], Callable]

LOOKUP_DEBOUNCE_MS = 300

_STATUS_BY_STATE = {
    AwardState.AWARDED: 201,
    AwardState.CONFLICT: 409,
    AwardState.UNRESOLVED: 404,
    AwardState.FAILED: 502,
}


def create_awards_blueprint(staff_required: Guard, viewer_provider: ViewerProvider) -> Blueprint:
    """Factory so the app decides which guard protects the award tools."""

    bp = Blueprint("admin_awards", __name__, url_prefix="/admin/awards")

    @bp.get("/lookup")
    @staff_required
    def lookup():
        raw = request.args.get("code", "")
        try:
            code = decode_scanned_code(raw) if request.args.get("source") == "scan" else raw
            result = lookup_trainer(code)
        except PokeOlivosError as exc:
            return jsonify({"success": False, "query": raw, "error": exc.error_key, "message": exc.message}), exc.status_code
        payload = result.to_dict()
        payload.update({"success": result.found, "query": raw})
        return jsonify(payload)

    @bp.get("/new")
    @staff_required
    def new_award():
        target = AwardTarget.from_mapping(request.args)
        flow = AwardFlow(target)
        raw_code = (request.args.get("code") or "").strip()
        try:
            names = describe_target(target)
            if raw_code and flow.enter_code(raw_code) == AwardState.CODE_ENTERED:
                ticket = flow.begin_lookup()
                flow.apply_lookup(ticket, lookup_trainer(raw_code))
        except PokeOlivosError as exc:
            flash(exc.message, "error")
            names = {"stamp": None, "collection": None, "event": None}
        if not target.is_complete:
            flash("Pick a stamp inside a collection and an event before awarding.", "warning")
        return render_template(
            "awards/award_form.html",
            target=target,
            names=names,
            flow=flow,
            debounce_ms=LOOKUP_DEBOUNCE_MS,
        )

    @bp.post("", strict_slashes=False)
    @staff_required
    def create_award():
        json_mode = wants_json()
        data = request.get_json(silent=True) if request.is_json else request.form
        data = data or {}
        target = AwardTarget.from_mapping(data)
        raw_code = str(data.get("trainer_code") or "")
        viewer = viewer_provider()

        flow = AwardFlow(target)
        try:
            names = describe_target(target)
            if flow.enter_code(raw_code) == AwardState.CODE_ENTERED:
                ticket = flow.begin_lookup()
                flow.apply_lookup(ticket, lookup_trainer(raw_code))
        except PokeOlivosError as exc:
            if json_mode:
                return jsonify({"success": False, "message": exc.message}), exc.status_code
            flash(exc.message, "error")
            return redirect(url_for(".new_award", **_target_args(target)))

        def _insert(trainer, award_target):
            return award_stamp(trainer, award_target, viewer.user_id, names.get("stamp"))

        state = flow.award(_insert)

        if json_mode:
            body = {
                "success": state == AwardState.AWARDED,
                "state": state.value,
                "message": flow.message,
                "claim_code": flow.claim_code,
            }
            return jsonify(body), _STATUS_BY_STATE.get(state, 400)

        if state == AwardState.AWARDED:
            flash(flow.message, "success")
            return redirect(url_for("admin_catalog.dashboard", tab="albums", id=target.event_id))
        flash(flow.message, "warning" if state == AwardState.CONFLICT else "error")
        return redirect(url_for(".new_award", code=raw_code, **_target_args(target)))

    @bp.get("/logs")
    @staff_required
    def logs():
        filters = LogFilters.from_args(request.args)
        try:
            page = list_award_logs(filters)
        except PokeOlivosError as exc:
            flash(exc.message, "error")
            page = None
        return render_template(
            "awards/logs.html",
            filters=filters,
            page=page,
            page_size=PAGE_SIZE,
        )

    return bp


def _target_args(target: AwardTarget) -> dict:
    return {
        key: value
        for key, value in (
            ("stamp_id", target.stamp_id),
            ("collection_id", target.collection_id),
            ("event_id", target.event_id),
        )
        if value
    }
