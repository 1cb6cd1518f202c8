from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict, List, Tuple

from quotedesk.domain.models import Actor, FileType, Quote, QuoteFile, QuoteStatus, Role
from quotedesk.infrastructure.repositories.base import BaseRepository, utc_now_iso


SORTABLE_COLUMNS = {"created_at", "updated_at", "quote_number", "status", "urgent", "title"}

_QUOTE_COLUMNS = (
    "id, quote_number, customer_id, quoter_id, supplier_id, title, description, customer_message, "
    "quoter_message, reject_reason, price, currency, valid_until, urgent, status, revision, created_at, updated_at"
)

_SUPPLIER_OPEN_STATUSES = (
    QuoteStatus.PENDING.value,
    QuoteStatus.REJECTED.value,
    QuoteStatus.IN_PROGRESS.value,
)


def quote_number_prefix(day: date) -> str:
    return f"Q-{day.strftime('%Y%m%d')}-"


def format_quote_number(day: date, sequence: int) -> str:
    return f"{quote_number_prefix(day)}{sequence:03d}"


def _str_id(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


def _row_to_quote(row: Dict[str, Any], files: Dict[str, List[QuoteFile]]) -> Quote:
    price = row.get("price")
    return Quote(
        id=int(row["id"]),
        quote_number=row["quote_number"],
        customer_id=str(row["customer_id"]),
        quoter_id=_str_id(row.get("quoter_id")),
        supplier_id=_str_id(row.get("supplier_id")),
        title=row.get("title") or "",
        description=row.get("description") or "",
        customer_message=row.get("customer_message") or "",
        quoter_message=row.get("quoter_message") or "",
        reject_reason=row.get("reject_reason"),
        price=float(price) if price is not None else None,
        currency=row.get("currency") or "CNY",
        valid_until=row.get("valid_until"),
        urgent=bool(row.get("urgent")),
        status=QuoteStatus(row["status"]),
        customer_files=tuple(files.get(FileType.CUSTOMER.value, [])),
        supplier_files=tuple(files.get(FileType.SUPPLIER.value, [])),
        quoter_files=tuple(files.get(FileType.QUOTER.value, [])),
        revision=int(row.get("revision") or 0),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class QuoteRepository(BaseRepository):
    def get_by_id(self, db, quote_id: int) -> Quote | None:
        row = db.execute(
            f"SELECT {_QUOTE_COLUMNS} FROM quotes WHERE id = ? LIMIT 1",
            (int(quote_id),),
        ).fetchone()
        if not row:
            return None
        files = self._load_files(db, [int(row["id"])])
        return _row_to_quote(dict(row), files.get(int(row["id"]), {}))

    def next_quote_number(self, db, day: date) -> str:
        """Reserve the next number of ``day``; runs inside the caller's insert transaction."""
        key = day.strftime("%Y%m%d")
        cursor = db.execute(
            "UPDATE quote_number_sequences SET last_value = last_value + 1 WHERE day = ?",
            (key,),
        )
        if cursor.rowcount != 1:
            db.execute(
                "INSERT INTO quote_number_sequences (day, last_value) VALUES (?, ?)",
                (key, self._highest_sequence(db, day) + 1),
            )
        row = db.execute("SELECT last_value FROM quote_number_sequences WHERE day = ?", (key,)).fetchone()
        return format_quote_number(day, int(row["last_value"]))

    def _highest_sequence(self, db, day: date) -> int:
        prefix = quote_number_prefix(day)
        rows = db.execute(
            "SELECT quote_number FROM quotes WHERE quote_number LIKE ?",
            (f"{prefix}%",),
        ).fetchall()
        pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
        highest = 0
        for row in rows:
            match = pattern.match(str(row["quote_number"]))
            if match:
                highest = max(highest, int(match.group(1)))
        return highest

    def insert(self, db, quote: Quote) -> int:
        now = utc_now_iso()
        cursor = db.execute(
            """
            INSERT INTO quotes (
                quote_number, customer_id, quoter_id, supplier_id, title, description, customer_message,
                quoter_message, reject_reason, price, currency, valid_until, urgent, status, revision,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
            RETURNING id
            """,
            (
                quote.quote_number,
                self.optional_id(quote.customer_id),
                self.optional_id(quote.quoter_id),
                self.optional_id(quote.supplier_id),
                quote.title,
                quote.description,
                quote.customer_message,
                quote.quoter_message,
                quote.reject_reason,
                quote.price,
                quote.currency,
                quote.valid_until,
                1 if quote.urgent else 0,
                quote.status.value,
                now,
                now,
            ),
        )
        quote_id = self.inserted_id(cursor)
        self._write_files(db, quote_id, quote)
        return quote_id

    def compare_and_swap(self, db, quote: Quote, expected_revision: int) -> bool:
        """Persist ``quote`` only if the stored row is still at ``expected_revision``."""
        cursor = db.execute(
            """
            UPDATE quotes
            SET quoter_id = ?, supplier_id = ?, title = ?, description = ?, customer_message = ?,
                quoter_message = ?, reject_reason = ?, price = ?, currency = ?, valid_until = ?,
                urgent = ?, status = ?, revision = revision + 1, updated_at = ?
            WHERE id = ? AND revision = ?
            """,
            (
                self.optional_id(quote.quoter_id),
                self.optional_id(quote.supplier_id),
                quote.title,
                quote.description,
                quote.customer_message,
                quote.quoter_message,
                quote.reject_reason,
                quote.price,
                quote.currency,
                quote.valid_until,
                1 if quote.urgent else 0,
                quote.status.value,
                utc_now_iso(),
                int(quote.id),
                int(expected_revision),
            ),
        )
        if cursor.rowcount != 1:
            return False
        db.execute("DELETE FROM quote_files WHERE quote_id = ?", (int(quote.id),))
        self._write_files(db, int(quote.id), quote)
        return True

    def delete(self, db, quote_id: int) -> None:
        db.execute("DELETE FROM status_events WHERE quote_id = ?", (int(quote_id),))
        db.execute("DELETE FROM quote_files WHERE quote_id = ?", (int(quote_id),))
        db.execute("DELETE FROM quotes WHERE id = ?", (int(quote_id),))

    def list_for_actor(
        self,
        db,
        actor: Actor,
        *,
        status: QuoteStatus | None = None,
        page: int = 1,
        page_size: int = 20,
        sort: str = "-created_at",
    ) -> Tuple[List[Quote], int]:
        clauses: List[str] = []
        params: List[Any] = []
        if actor.role == Role.CUSTOMER:
            clauses.append("customer_id = ?")
            params.append(int(actor.user_id))
        elif actor.role == Role.SUPPLIER:
            placeholders = ",".join("?" for _ in _SUPPLIER_OPEN_STATUSES)
            clauses.append(f"(supplier_id = ? OR status IN ({placeholders}))")
            params.append(int(actor.user_id))
            params.extend(_SUPPLIER_OPEN_STATUSES)
        elif actor.role not in (Role.QUOTER, Role.ADMIN):
            return [], 0
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total_row = db.execute(f"SELECT COUNT(*) AS total FROM quotes {where}", tuple(params)).fetchone()
        total = int(total_row["total"] if total_row else 0)

        column, direction = self._order_by(sort)
        offset = (max(1, int(page)) - 1) * int(page_size)
        rows = db.execute(
            f"""
            SELECT {_QUOTE_COLUMNS}
            FROM quotes
            {where}
            ORDER BY {column} {direction}, id {direction}
            LIMIT ? OFFSET ?
            """,
            (*params, int(page_size), int(offset)),
        ).fetchall()
        row_dicts = self.rows_to_dicts(rows)
        files = self._load_files(db, [int(row["id"]) for row in row_dicts])
        quotes = [_row_to_quote(row, files.get(int(row["id"]), {})) for row in row_dicts]
        return quotes, total

    @staticmethod
    def _order_by(sort: str) -> Tuple[str, str]:
        raw = str(sort or "-created_at").strip()
        direction = "DESC" if raw.startswith("-") else "ASC"
        column = raw.lstrip("-+")
        if column not in SORTABLE_COLUMNS:
            column = "created_at"
        return column, direction

    def _load_files(self, db, quote_ids: List[int]) -> Dict[int, Dict[str, List[QuoteFile]]]:
        grouped: Dict[int, Dict[str, List[QuoteFile]]] = {}
        if not quote_ids:
            return grouped
        placeholders = ",".join("?" for _ in quote_ids)
        rows = db.execute(
            f"""
            SELECT quote_id, file_type, position, stored_name, display_name, size, uploaded_at
            FROM quote_files
            WHERE quote_id IN ({placeholders})
            ORDER BY quote_id, file_type, position
            """,
            tuple(quote_ids),
        ).fetchall()
        for row in rows:
            bucket = grouped.setdefault(int(row["quote_id"]), {})
            bucket.setdefault(str(row["file_type"]), []).append(
                QuoteFile(
                    stored_name=row["stored_name"],
                    display_name=row["display_name"],
                    size=int(row["size"] or 0),
                    uploaded_at=row["uploaded_at"],
                )
            )
        return grouped

    def _write_files(self, db, quote_id: int, quote: Quote) -> None:
        for file_type in FileType:
            for position, item in enumerate(quote.files(file_type)):
                db.execute(
                    """
                    INSERT INTO quote_files (quote_id, file_type, position, stored_name, display_name, size, uploaded_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        quote_id,
                        file_type.value,
                        position,
                        item.stored_name,
                        item.display_name,
                        int(item.size),
                        item.uploaded_at or utc_now_iso(),
                    ),
                )
