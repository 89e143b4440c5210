from __future__ import annotations

import json
from typing import Any, Dict

from gestao_ebd.db import utc_now_text
from gestao_ebd.infrastructure.repositories.base import BaseRepository


_JSON_COLUMNS = ("itens", "cliente_endereco")
_BOOL_COLUMNS = ("pode_faturar",)

CONTENT_COLUMNS = (
    "cliente_id",
    "cliente_nome",
    "cliente_cnpj",
    "cliente_endereco",
    "itens",
    "valor_produtos",
    "desconto_percentual",
    "valor_frete",
    "metodo_frete",
    "frete_tipo",
    "frete_transportadora",
    "frete_prazo_estimado",
    "valor_total",
    "vendedor_id",
    "vendedor_nome",
    "pode_faturar",
    "prazo_faturamento_selecionado",
)

STATUS_SIDE_COLUMNS = (
    "prazo_faturamento_selecionado",
    "payment_url",
    "external_order_id",
    "external_order_number",
    "confirmado_em",
    "metodo_frete",
    "valor_frete",
    "valor_total",
    "frete_prazo_estimado",
)


def _encode(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS:
        return json.dumps(value if value is not None else ([] if column == "itens" else {}), ensure_ascii=False)
    if column in _BOOL_COLUMNS:
        return bool(value)
    return value


def _decode(row: Dict[str, Any] | None) -> Dict[str, Any] | None:
    if row is None:
        return None
    decoded = dict(row)
    for column in _JSON_COLUMNS:
        raw = decoded.get(column)
        if isinstance(raw, str):
            try:
                decoded[column] = json.loads(raw) if raw else None
            except ValueError:
                decoded[column] = None
    for column in _BOOL_COLUMNS:
        decoded[column] = bool(decoded.get(column))
    return decoded


class ProposalRepository(BaseRepository):
    table = "vendedor_propostas"

    def insert(self, db, *, token: str, status: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        columns = ["token", "status"] + [column for column in CONTENT_COLUMNS if column in fields]
        values = [token, status] + [_encode(column, fields[column]) for column in columns[2:]]
        now = utc_now_text()
        columns += ["created_at", "updated_at"]
        values += [now, now]
        placeholders = ", ".join("?" for _ in columns)
        cursor = db.execute(
            f"""
            INSERT INTO vendedor_propostas ({", ".join(columns)})
            VALUES ({placeholders})
            RETURNING id
            """,
            tuple(values),
        )
        proposal_id = self.returned_id(cursor.fetchone())
        record = self.get_by_id(db, proposal_id)
        self.publish(db, "insert", record)
        return record

    def get_by_id(self, db, proposal_id: int) -> Dict[str, Any] | None:
        row = db.execute(
            "SELECT * FROM vendedor_propostas WHERE id = ? LIMIT 1",
            (proposal_id,),
        ).fetchone()
        return _decode(self.row_to_dict(row))

    def get_by_token(self, db, token: str) -> Dict[str, Any] | None:
        row = db.execute(
            "SELECT * FROM vendedor_propostas WHERE token = ? LIMIT 1",
            (token,),
        ).fetchone()
        return _decode(self.row_to_dict(row))

    def list(
        self,
        db,
        *,
        status: str | None = None,
        vendedor_id: int | None = None,
        cliente_id: int | None = None,
    ) -> list[Dict[str, Any]]:
        clauses = []
        params: list[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if vendedor_id is not None:
            clauses.append("vendedor_id = ?")
            params.append(vendedor_id)
        if cliente_id is not None:
            clauses.append("cliente_id = ?")
            params.append(cliente_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = db.execute(
            f"""
            SELECT *
            FROM vendedor_propostas
            {where}
            ORDER BY created_at DESC, id DESC
            """,
            tuple(params),
        ).fetchall()
        return [_decode(row) for row in self.rows_to_dicts(rows)]

    def update_content(
        self,
        db,
        proposal_id: int,
        *,
        expected_status: str,
        token: str,
        fields: Dict[str, Any],
    ) -> bool:
        columns = [column for column in CONTENT_COLUMNS if column in fields]
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = [_encode(column, fields[column]) for column in columns]
        cursor = db.execute(
            f"""
            UPDATE vendedor_propostas
            SET {assignments}, token = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (*params, token, utc_now_text(), proposal_id, expected_status),
        )
        changed = cursor.rowcount == 1
        if changed:
            self.publish(db, "update", self.get_by_id(db, proposal_id))
        return changed

    def update_status(
        self,
        db,
        proposal_id: int,
        *,
        expected_status: str,
        new_status: str,
        fields: Dict[str, Any] | None = None,
    ) -> bool:
        """Compare-and-set on ``status``; returns False when another write won."""
        extra = {column: value for column, value in (fields or {}).items() if column in STATUS_SIDE_COLUMNS}
        assignments = "".join(f", {column} = ?" for column in extra)
        cursor = db.execute(
            f"""
            UPDATE vendedor_propostas
            SET status = ?, updated_at = ?{assignments}
            WHERE id = ? AND status = ?
            """,
            (new_status, utc_now_text(), *extra.values(), proposal_id, expected_status),
        )
        changed = cursor.rowcount == 1
        if changed:
            self.publish(db, "update", self.get_by_id(db, proposal_id))
        return changed

    def delete(self, db, proposal_id: int, *, protected_statuses: tuple[str, ...]) -> bool:
        record = self.get_by_id(db, proposal_id)
        placeholders = ", ".join("?" for _ in protected_statuses)
        cursor = db.execute(
            f"DELETE FROM vendedor_propostas WHERE id = ? AND status NOT IN ({placeholders})",
            (proposal_id, *protected_statuses),
        )
        deleted = cursor.rowcount == 1
        if deleted:
            self.publish(db, "delete", record)
        return deleted
