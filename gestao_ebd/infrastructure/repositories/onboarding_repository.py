from __future__ import annotations

from typing import Any, Dict, Iterable

from gestao_ebd.db import timestamp_text, utc_now_text
from gestao_ebd.infrastructure.repositories.base import BaseRepository


BASE_CATEGORY = "BASE"


class OnboardingRepository(BaseRepository):
    table = "ebd_onboarding_progress"

    def list_phases(self, db, church_id: int) -> Dict[int, Dict[str, Any]]:
        rows = db.execute(
            """
            SELECT etapa_id, completada, completada_em, revista_identificada_id
            FROM ebd_onboarding_progress
            WHERE church_id = ?
            """,
            (church_id,),
        ).fetchall()
        phases: Dict[int, Dict[str, Any]] = {}
        for row in rows:
            phases[int(row["etapa_id"])] = {
                "completada": bool(row["completada"]),
                "completada_em": timestamp_text(row["completada_em"]),
                "revista_identificada_id": row["revista_identificada_id"],
            }
        return phases

    def upsert_phase(
        self,
        db,
        church_id: int,
        etapa_id: int,
        *,
        completada: bool = True,
        completada_em: str | None = None,
        revista_identificada_id: int | None = None,
    ) -> None:
        completed_at = (completada_em or utc_now_text()) if completada else None
        db.execute(
            """
            INSERT INTO ebd_onboarding_progress (church_id, etapa_id, completada, completada_em, revista_identificada_id)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (church_id, etapa_id) DO UPDATE SET
                completada = excluded.completada,
                completada_em = excluded.completada_em,
                revista_identificada_id = COALESCE(excluded.revista_identificada_id, ebd_onboarding_progress.revista_identificada_id)
            """,
            (church_id, etapa_id, bool(completada), completed_at, revista_identificada_id),
        )
        self.publish(
            db,
            "upsert",
            {
                "church_id": church_id,
                "etapa_id": etapa_id,
                "completada": bool(completada),
                "completada_em": completed_at,
            },
        )

    def reset_phases(self, db, church_id: int, etapa_ids: Iterable[int]) -> None:
        ids = tuple(etapa_ids)
        placeholders = ", ".join("?" for _ in ids)
        db.execute(
            f"""
            UPDATE ebd_onboarding_progress
            SET completada = ?, completada_em = NULL, revista_identificada_id = NULL
            WHERE church_id = ? AND etapa_id IN ({placeholders})
            """,
            (False, church_id, *ids),
        )
        for etapa_id in ids:
            self.publish(db, "update", {"church_id": church_id, "etapa_id": etapa_id, "completada": False})


class ChurchActivityRepository(BaseRepository):
    """Counts over the church records that complete onboarding phases."""

    def _count(self, db, sql: str, params: tuple, since: str | None) -> int:
        if since:
            sql += " AND created_at > ?"
            params = (*params, since)
        return self.count_of(db.execute(sql, params).fetchone())

    def count_active_classes(self, db, church_id: int, *, since: str | None = None) -> int:
        return self._count(
            db,
            "SELECT COUNT(*) AS total FROM ebd_turmas WHERE church_id = ? AND is_active = ?",
            (church_id, True),
            since,
        )

    def count_active_instructors(self, db, church_id: int, *, since: str | None = None) -> int:
        return self._count(
            db,
            "SELECT COUNT(*) AS total FROM ebd_professores WHERE church_id = ? AND is_active = ?",
            (church_id, True),
            since,
        )

    def count_planning(self, db, church_id: int, *, since: str | None = None) -> int:
        return self._count(
            db,
            "SELECT COUNT(*) AS total FROM ebd_planejamento WHERE church_id = ?",
            (church_id,),
            since,
        )

    def count_rosters(self, db, church_id: int, *, since: str | None = None) -> int:
        return self._count(
            db,
            "SELECT COUNT(*) AS total FROM ebd_escalas WHERE church_id = ?",
            (church_id,),
            since,
        )

    def count_applied_items(self, db, church_id: int, *, since: str | None = None) -> int:
        sql = "SELECT COUNT(*) AS total FROM ebd_revistas_cliente WHERE church_id = ? AND aplicada = ?"
        params: tuple = (church_id, True)
        if since:
            sql += " AND aplicada_em > ?"
            params = (*params, since)
        return self.count_of(db.execute(sql, params).fetchone())

    def count_unapplied_base_items(self, db, church_id: int) -> int:
        return self.count_of(
            db.execute(
                """
                SELECT COUNT(*) AS total
                FROM ebd_revistas_cliente
                WHERE church_id = ? AND categoria = ? AND aplicada = ?
                """,
                (church_id, BASE_CATEGORY, False),
            ).fetchone()
        )

    def latest_item(self, db, church_id: int, *, applied: bool | None = None) -> Dict[str, Any] | None:
        sql = "SELECT id, titulo, categoria, aplicada FROM ebd_revistas_cliente WHERE church_id = ?"
        params: tuple = (church_id,)
        if applied is not None:
            sql += " AND aplicada = ?"
            params = (*params, applied)
        row = db.execute(sql + " ORDER BY created_at DESC, id DESC LIMIT 1", params).fetchone()
        return self.row_to_dict(row)

    def get_item(self, db, church_id: int, item_id: int) -> Dict[str, Any] | None:
        row = db.execute(
            "SELECT id, titulo, categoria, aplicada FROM ebd_revistas_cliente WHERE id = ? AND church_id = ?",
            (item_id, church_id),
        ).fetchone()
        return self.row_to_dict(row)

    def add_item(
        self,
        db,
        church_id: int,
        *,
        titulo: str,
        categoria: str = BASE_CATEGORY,
        created_at: str | None = None,
    ) -> int:
        row = db.execute(
            """
            INSERT INTO ebd_revistas_cliente (church_id, titulo, categoria, aplicada, created_at)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (church_id, titulo, categoria, False, created_at or utc_now_text()),
        ).fetchone()
        item_id = self.returned_id(row)
        self.publish(db, "insert", {"id": item_id, "church_id": church_id, "titulo": titulo}, table="ebd_revistas_cliente")
        return item_id

    def apply_item(self, db, church_id: int, item_id: int, *, applied_at: str | None = None) -> bool:
        cursor = db.execute(
            """
            UPDATE ebd_revistas_cliente
            SET aplicada = ?, aplicada_em = ?
            WHERE id = ? AND church_id = ?
            """,
            (True, applied_at or utc_now_text(), item_id, church_id),
        )
        changed = cursor.rowcount == 1
        if changed:
            self.publish(db, "update", {"id": item_id, "church_id": church_id, "aplicada": True}, table="ebd_revistas_cliente")
        return changed

    def add_record(self, db, table: str, church_id: int, fields: Dict[str, Any], *, created_at: str | None = None) -> int:
        if table not in _ACTIVITY_TABLES:
            raise ValueError(f"tabela nao suportada: {table}")
        columns = ["church_id", *fields.keys(), "created_at"]
        values = [church_id, *fields.values(), created_at or utc_now_text()]
        row = db.execute(
            f"""
            INSERT INTO {table} ({", ".join(columns)})
            VALUES ({", ".join("?" for _ in columns)})
            RETURNING id
            """,
            tuple(values),
        ).fetchone()
        record_id = self.returned_id(row)
        self.publish(db, "insert", {"id": record_id, "church_id": church_id, **fields}, table=table)
        return record_id


_ACTIVITY_TABLES = ("ebd_turmas", "ebd_professores", "ebd_planejamento", "ebd_escalas")
