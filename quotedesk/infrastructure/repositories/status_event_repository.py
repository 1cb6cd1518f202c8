from __future__ import annotations

from quotedesk.infrastructure.repositories.base import BaseRepository, utc_now_iso


class StatusEventRepository(BaseRepository):
    def add_event(
        self,
        db,
        *,
        quote_id: int,
        action: str,
        from_status: str | None,
        to_status: str | None,
        actor_id: int | None,
        reason: str | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO status_events (quote_id, action, from_status, to_status, actor_id, reason, occurred_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (quote_id, action, from_status, to_status, actor_id, reason, utc_now_iso()),
        )
        return self.inserted_id(cursor)

    def list_for_quote(self, db, quote_id: int, limit: int = 120) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, quote_id, action, from_status, to_status, actor_id, reason, occurred_at
            FROM status_events
            WHERE quote_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (int(quote_id), int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)
