from __future__ import annotations

from typing import Any, Dict

from gestao_ebd.db import utc_now_text
from gestao_ebd.infrastructure.repositories.base import BaseRepository


_CHURCH_BOOL_COLUMNS = ("pode_faturar", "cupom_aniversario_usado", "onboarding_concluido")

CHURCH_COLUMNS = (
    "nome_igreja",
    "cnpj",
    "endereco_cep",
    "endereco_rua",
    "endereco_numero",
    "endereco_bairro",
    "endereco_cidade",
    "endereco_estado",
    "telefone",
    "vendedor_id",
    "pode_faturar",
    "data_aniversario_pastor",
    "data_aniversario_superintendente",
)


def _decode_church(row: Dict[str, Any] | None) -> Dict[str, Any] | None:
    if row is None:
        return None
    for column in _CHURCH_BOOL_COLUMNS:
        row[column] = bool(row.get(column))
    return row


class SellerRepository(BaseRepository):
    table = "vendedores"

    def insert(
        self,
        db,
        *,
        nome: str,
        email: str | None = None,
        tipo_vendedor: str = "vendedor",
        comissao_percentual: float | None = None,
    ) -> Dict[str, Any]:
        cursor = db.execute(
            """
            INSERT INTO vendedores (nome, email, tipo_vendedor, comissao_percentual)
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            (nome, email, tipo_vendedor, comissao_percentual),
        )
        record = self.get_by_id(db, self.returned_id(cursor.fetchone()))
        self.publish(db, "insert", record)
        return record

    def get_by_id(self, db, vendedor_id: int) -> Dict[str, Any] | None:
        row = db.execute("SELECT * FROM vendedores WHERE id = ? LIMIT 1", (vendedor_id,)).fetchone()
        return self.row_to_dict(row)


class ChurchRepository(BaseRepository):
    table = "ebd_clientes"

    def insert(self, db, fields: Dict[str, Any]) -> Dict[str, Any]:
        columns = [column for column in CHURCH_COLUMNS if column in fields]
        values = [bool(fields[c]) if c in _CHURCH_BOOL_COLUMNS else fields[c] for c in columns]
        cursor = db.execute(
            f"""
            INSERT INTO ebd_clientes ({", ".join(columns)})
            VALUES ({", ".join("?" for _ in columns)})
            RETURNING id
            """,
            tuple(values),
        )
        record = self.get_by_id(db, self.returned_id(cursor.fetchone()))
        self.publish(db, "insert", record)
        return record

    def get_by_id(self, db, church_id: int) -> Dict[str, Any] | None:
        row = db.execute("SELECT * FROM ebd_clientes WHERE id = ? LIMIT 1", (church_id,)).fetchone()
        return _decode_church(self.row_to_dict(row))

    def update_birthdays(
        self,
        db,
        church_id: int,
        *,
        pastor: str | None = None,
        superintendente: str | None = None,
    ) -> None:
        db.execute(
            """
            UPDATE ebd_clientes
            SET data_aniversario_pastor = COALESCE(?, data_aniversario_pastor),
                data_aniversario_superintendente = COALESCE(?, data_aniversario_superintendente),
                updated_at = ?
            WHERE id = ?
            """,
            (pastor, superintendente, utc_now_text(), church_id),
        )
        self.publish(db, "update", self.get_by_id(db, church_id))

    def mark_onboarding_concluded(self, db, church_id: int, *, discount_percent: float) -> bool:
        """Sets the conclusion once; later calls never overwrite the stored discount."""
        now = utc_now_text()
        cursor = db.execute(
            """
            UPDATE ebd_clientes
            SET onboarding_concluido = ?, onboarding_concluido_em = ?, desconto_onboarding = ?, updated_at = ?
            WHERE id = ? AND onboarding_concluido = ?
            """,
            (True, now, discount_percent, now, church_id, False),
        )
        changed = cursor.rowcount == 1
        if changed:
            self.publish(db, "update", self.get_by_id(db, church_id))
        return changed

    def set_cycle_start(self, db, church_id: int, started_at: str | None) -> None:
        db.execute(
            "UPDATE ebd_clientes SET onboarding_ciclo_iniciado_em = ?, updated_at = ? WHERE id = ?",
            (started_at, utc_now_text(), church_id),
        )
        self.publish(db, "update", self.get_by_id(db, church_id))

    def redeem_birthday_coupon(self, db, church_id: int, year: int) -> bool:
        cursor = db.execute(
            """
            UPDATE ebd_clientes
            SET cupom_aniversario_usado = ?, cupom_aniversario_ano = ?, updated_at = ?
            WHERE id = ? AND (cupom_aniversario_ano IS NULL OR cupom_aniversario_ano <> ?)
            """,
            (True, year, utc_now_text(), church_id, year),
        )
        changed = cursor.rowcount == 1
        if changed:
            self.publish(db, "update", self.get_by_id(db, church_id))
        return changed

    def insert_credit(
        self,
        db,
        *,
        cliente_id: int,
        tipo: str,
        valor: float,
        descricao: str,
        validade: str,
    ) -> Dict[str, Any]:
        cursor = db.execute(
            """
            INSERT INTO ebd_creditos (cliente_id, tipo, valor, descricao, validade)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (cliente_id, tipo, valor, descricao, validade),
        )
        credit_id = self.returned_id(cursor.fetchone())
        row = db.execute("SELECT * FROM ebd_creditos WHERE id = ?", (credit_id,)).fetchone()
        record = self.row_to_dict(row)
        self.publish(db, "insert", record, table="ebd_creditos")
        return record


class CategoryDiscountRepository(BaseRepository):
    table = "ebd_descontos_categoria_representante"

    def for_client(self, db, cliente_id: int) -> Dict[str, float]:
        rows = db.execute(
            """
            SELECT categoria, percentual_desconto
            FROM ebd_descontos_categoria_representante
            WHERE cliente_id = ?
            """,
            (cliente_id,),
        ).fetchall()
        return {str(row["categoria"]): float(row["percentual_desconto"] or 0) for row in rows}

    def upsert(self, db, *, cliente_id: int, categoria: str, percentual_desconto: float) -> None:
        row = db.execute(
            """
            INSERT INTO ebd_descontos_categoria_representante (cliente_id, categoria, percentual_desconto)
            VALUES (?, ?, ?)
            ON CONFLICT (cliente_id, categoria) DO UPDATE SET percentual_desconto = excluded.percentual_desconto
            RETURNING id
            """,
            (cliente_id, categoria, percentual_desconto),
        ).fetchone()
        self.publish(
            db,
            "upsert",
            {
                "id": self.returned_id(row),
                "cliente_id": cliente_id,
                "categoria": categoria,
                "percentual_desconto": percentual_desconto,
            },
        )
