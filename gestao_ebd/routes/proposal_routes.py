from __future__ import annotations

from dataclasses import asdict

from flask import Blueprint, jsonify, request

from gestao_ebd.application.services import services
from gestao_ebd.db import get_db
from gestao_ebd.domain.pricing import parse_items
from gestao_ebd.domain.proposal_status import parse_action
from gestao_ebd.errors import ValidationError
from gestao_ebd.messages import PROPOSAL_STATUS_ITEMS, success_message
from gestao_ebd.policies import current_role


proposal_bp = Blueprint("proposals", __name__)


def _ok(key: str, fallback: str | None = None) -> str:
    return success_message(key, fallback)


def _parse_optional_int(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(code="validation_error", message_key="validation_error", details=f"valor: {value}") from None


def _invoice_payload(outcome) -> dict:
    payload = {
        "proposal": outcome.proposal,
        "order": outcome.order,
        "parcelas": [asdict(parcela) for parcela in outcome.parcelas],
        "message": _ok("proposal_invoiced"),
    }
    if outcome.warning:
        payload["warning"] = outcome.warning
    return payload


@proposal_bp.route("/api/propostas", methods=["GET", "POST"])
def proposals_api():
    db = get_db()
    registry = services()
    if request.method == "POST":
        payload = request.get_json(silent=True) or {}
        proposal = registry.proposals.create(db, payload, role=current_role())
        return jsonify({"proposal": proposal, "message": _ok("proposal_created")}), 201

    items = registry.proposals.list(
        db,
        status=(request.args.get("status") or "").strip() or None,
        vendedor_id=_parse_optional_int(request.args.get("vendedor_id")),
    )
    return jsonify({"items": [registry.proposals.describe(item) for item in items], "statuses": PROPOSAL_STATUS_ITEMS})


@proposal_bp.route("/api/propostas/<int:proposal_id>", methods=["GET", "PATCH", "DELETE"])
def proposal_detail_api(proposal_id: int):
    db = get_db()
    registry = services()
    if request.method == "DELETE":
        registry.proposals.delete(db, proposal_id, role=current_role())
        return jsonify({"proposal_id": proposal_id, "message": _ok("proposal_deleted")}), 200

    if request.method == "PATCH":
        payload = request.get_json(silent=True) or {}
        proposal = registry.proposals.edit(db, proposal_id, payload, role=current_role())
        return jsonify({"proposal": proposal, "message": _ok("proposal_updated")}), 200

    return jsonify({"proposal": registry.proposals.describe(registry.proposals.get(db, proposal_id))})


@proposal_bp.route("/api/propostas/<int:proposal_id>/acoes/<action>", methods=["POST"])
def proposal_action_api(proposal_id: int, action: str):
    db = get_db()
    registry = services()
    payload = request.get_json(silent=True) or {}
    requested = parse_action(action).value
    role = current_role()

    if requested in {"generate_payment", "request_financial_approval"}:
        proposal = registry.proposals.generate_payment(db, proposal_id)
        key = "payment_link_created" if proposal.get("payment_url") else "proposal_sent_to_financial"
        return jsonify({"proposal": proposal, "message": _ok(key)}), 200
    if requested == "approve_invoicing":
        return jsonify(_invoice_payload(registry.proposals.approve_invoicing(db, proposal_id, role=role))), 200
    if requested == "invoice":
        return jsonify(_invoice_payload(registry.proposals.invoice(db, proposal_id, role=role))), 200
    if requested == "reject_invoicing":
        proposal = registry.proposals.reject_invoicing(db, proposal_id, role=role)
        return jsonify({"proposal": proposal, "message": _ok("proposal_rejected")}), 200
    if requested == "confirm_payment":
        proposal = registry.proposals.confirm_payment(
            db,
            proposal_id,
            status_pagamento=str(payload.get("status_pagamento") or "paid"),
        )
        return jsonify({"proposal": proposal, "message": _ok("proposal_paid")}), 200

    handlers = {
        "return_to_pending": (registry.proposals.return_to_pending, "proposal_returned_to_pending"),
        "expire": (registry.proposals.expire, "proposal_expired"),
        "cancel": (registry.proposals.cancel, "proposal_cancelled"),
    }
    if requested not in handlers:
        raise ValidationError(code="action_invalid", message_key="action_invalid", payload={"action": requested})
    handler, key = handlers[requested]
    return jsonify({"proposal": handler(db, proposal_id), "message": _ok(key)}), 200


@proposal_bp.route("/api/propostas/<int:proposal_id>/frete", methods=["GET"])
def proposal_shipping_api(proposal_id: int):
    quote = services().proposals.quote_shipping(get_db(), proposal_id)
    return jsonify(quote.to_dict())


@proposal_bp.route("/api/frete/cotacao", methods=["POST"])
def shipping_quote_api():
    payload = request.get_json(silent=True) or {}
    items = [item.to_dict() for item in parse_items(payload.get("itens"))]
    subtotal = sum(item["price"] * item["quantity"] for item in items)
    quote = services().shipping.resolve(payload.get("cep"), items, float(payload.get("subtotal") or subtotal))
    return jsonify(quote.to_dict())


# Public link: token possession is the only check.
@proposal_bp.route("/proposta/<token>", methods=["GET"])
def public_proposal(token: str):
    db = get_db()
    registry = services()
    proposal = registry.proposals.get_by_token(db, token)
    quote = None
    if proposal.get("frete_tipo") != "manual":
        quote = registry.proposals.quote_shipping(db, proposal["id"]).to_dict()
    return jsonify({"proposal": registry.proposals.describe(proposal), "shipping_quote": quote})


@proposal_bp.route("/proposta/<token>/aceitar", methods=["POST"])
def public_proposal_accept(token: str):
    payload = request.get_json(silent=True) or {}
    proposal = services().proposals.accept(
        get_db(),
        token,
        shipping_method=(payload.get("metodo_frete") or None),
        invoicing_term=(payload.get("prazo_faturamento") or None),
    )
    return jsonify({"proposal": proposal, "message": _ok("proposal_accepted")}), 200
