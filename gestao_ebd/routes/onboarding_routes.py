from __future__ import annotations

from flask import Blueprint, jsonify, request

from gestao_ebd.application.services import services
from gestao_ebd.db import get_db
from gestao_ebd.domain.onboarding import OnboardingMode
from gestao_ebd.messages import success_message


onboarding_bp = Blueprint("onboarding", __name__)


@onboarding_bp.route("/api/igrejas/<int:church_id>/onboarding", methods=["GET"])
def onboarding_progress_api(church_id: int):
    db = get_db()
    registry = services()
    if request.args.get("detectar") == "1":
        registry.onboarding.auto_detect_phases(db, church_id)
    progress = registry.onboarding.compute_progress(db, church_id)
    return jsonify(progress.to_dict())


@onboarding_bp.route("/api/igrejas/<int:church_id>/onboarding/detectar", methods=["POST"])
def onboarding_detect_api(church_id: int):
    db = get_db()
    registry = services()
    detection = registry.onboarding.auto_detect_phases(db, church_id)
    progress = registry.onboarding.compute_progress(db, church_id)
    return jsonify({"detected": detection.completed, "mode": detection.mode, "progress": progress.to_dict()})


@onboarding_bp.route("/api/igrejas/<int:church_id>/onboarding/etapas/<int:phase_id>", methods=["POST"])
def onboarding_phase_api(church_id: int, phase_id: int):
    payload = request.get_json(silent=True) or {}
    progress = services().onboarding.mark_phase_complete(get_db(), church_id, phase_id, payload)
    key = "onboarding_phase_completed"
    if progress.concluded:
        key = "onboarding_cycle_completed" if progress.mode == OnboardingMode.SIMPLIFIED else "onboarding_concluded"
    return jsonify({"progress": progress.to_dict(), "message": success_message(key)}), 200


@onboarding_bp.route("/api/igrejas/<int:church_id>/cupom-aniversario", methods=["GET", "POST"])
def birthday_coupon_api(church_id: int):
    db = get_db()
    registry = services()
    if request.method == "POST":
        credit = registry.onboarding.redeem_birthday_coupon(db, church_id)
        return jsonify({"credit": credit, "message": success_message("birthday_coupon_redeemed")}), 201
    return jsonify(registry.onboarding.birthday_coupon(db, church_id).to_dict())
