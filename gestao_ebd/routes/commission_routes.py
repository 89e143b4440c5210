from __future__ import annotations

from dataclasses import asdict

from flask import Blueprint, jsonify, request

from gestao_ebd.application.services import services
from gestao_ebd.db import get_db
from gestao_ebd.errors import ValidationError
from gestao_ebd.messages import success_message
from gestao_ebd.policies import require_capability


commission_bp = Blueprint("commissions", __name__)


def _parse_order_ids(raw) -> list[int]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError(code="validation_error", message_key="validation_error", details="order_ids vazio")
    order_ids = []
    for value in raw:
        try:
            order_ids.append(int(value))
        except (TypeError, ValueError):
            raise ValidationError(code="validation_error", message_key="validation_error", details=f"pedido: {value}") from None
    return order_ids


@commission_bp.route("/api/comissoes/pedidos-pendentes", methods=["GET"])
def pending_orders_api():
    vendedor_id = request.args.get("vendedor_id", type=int)
    orders = services().commissions.pending_orders(get_db(), vendedor_id=vendedor_id)
    return jsonify({"items": orders})


@commission_bp.route("/api/comissoes/pedidos/<int:order_id>/aprovar", methods=["POST"])
def approve_commission_api(order_id: int):
    require_capability("approve_commission")
    parcela = services().commissions.approve(get_db(), order_id)
    return jsonify({"parcela": asdict(parcela), "message": success_message("commission_approved")}), 201


@commission_bp.route("/api/comissoes/aprovar-lote", methods=["POST"])
def approve_commission_batch_api():
    require_capability("approve_commission")
    payload = request.get_json(silent=True) or {}
    result = services().commissions.approve_batch(get_db(), _parse_order_ids(payload.get("order_ids")))
    body = result.to_dict()
    body["message"] = success_message("commission_batch_processed")
    return jsonify(body), 200


@commission_bp.route("/api/comissoes/parcelas", methods=["GET"])
def parcelas_api():
    parcelas = services().commissions.list_parcelas(
        get_db(),
        vendedor_id=request.args.get("vendedor_id", type=int),
        comissao_status=(request.args.get("status") or "").strip() or None,
    )
    return jsonify({"items": [asdict(parcela) for parcela in parcelas]})
