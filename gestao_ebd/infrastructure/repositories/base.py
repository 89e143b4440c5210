from __future__ import annotations

from typing import Any, Iterable

from gestao_ebd.changefeed import ChangeFeed, RecordChanged


class BaseRepository:
    table: str = ""

    def __init__(self, *, change_feed: ChangeFeed | None = None) -> None:
        self.change_feed = change_feed

    def publish(self, db, action: str, record: dict | None, table: str | None = None) -> None:
        """Announce a write to the change feed once ``db`` commits."""
        if self.change_feed is None or not record:
            return
        event = RecordChanged(table=table or self.table, action=action, record=dict(record))
        change_feed = self.change_feed
        db.after_commit(lambda: change_feed.publish(event))

    @staticmethod
    def row_to_dict(row: Any) -> dict | None:
        return dict(row) if row else None

    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def returned_id(row: Any) -> int:
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def count_of(row: Any) -> int:
        if not row:
            return 0
        value = row["total"] if isinstance(row, dict) else row[0]
        return int(value or 0)
