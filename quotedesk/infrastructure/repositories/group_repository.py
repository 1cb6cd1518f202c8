from __future__ import annotations

from typing import Any, Dict, Iterable, List

from quotedesk.infrastructure.repositories.base import BaseRepository, utc_now_iso


class GroupRepository(BaseRepository):
    def get_by_id(self, db, group_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, name, description, color, is_active, created_by, created_at, updated_at
            FROM supplier_groups
            WHERE id = ?
            LIMIT 1
            """,
            (int(group_id),),
        ).fetchone()
        return dict(row) if row else None

    def name_taken(self, db, name: str, *, exclude_id: int | None = None) -> bool:
        if exclude_id is None:
            row = db.execute("SELECT 1 FROM supplier_groups WHERE name = ?", (name,)).fetchone()
        else:
            row = db.execute(
                "SELECT 1 FROM supplier_groups WHERE name = ? AND id <> ?",
                (name, int(exclude_id)),
            ).fetchone()
        return bool(row)

    def list_groups(self, db) -> List[dict]:
        rows = db.execute(
            """
            SELECT id, name, description, color, is_active, created_by, created_at, updated_at
            FROM supplier_groups
            ORDER BY created_at DESC, id DESC
            """
        ).fetchall()
        return self.rows_to_dicts(rows)

    def create_group(
        self,
        db,
        *,
        name: str,
        description: str | None,
        color: str,
        created_by: int | None,
    ) -> int:
        now = utc_now_iso()
        cursor = db.execute(
            """
            INSERT INTO supplier_groups (name, description, color, is_active, created_by, created_at, updated_at)
            VALUES (?, ?, ?, 1, ?, ?, ?)
            RETURNING id
            """,
            (name, description, color, created_by, now, now),
        )
        return self.inserted_id(cursor)

    def update_group(self, db, group_id: int, fields: Dict[str, Any]) -> None:
        allowed = {key: value for key, value in fields.items() if key in {"name", "description", "color", "is_active"}}
        if not allowed:
            return
        if "is_active" in allowed:
            allowed["is_active"] = 1 if allowed["is_active"] else 0
        assignments = ", ".join(f"{key} = ?" for key in allowed)
        db.execute(
            f"UPDATE supplier_groups SET {assignments}, updated_at = ? WHERE id = ?",
            (*allowed.values(), utc_now_iso(), int(group_id)),
        )

    def delete_group(self, db, group_id: int) -> None:
        db.execute("DELETE FROM supplier_group_members WHERE group_id = ?", (int(group_id),))
        db.execute("DELETE FROM supplier_groups WHERE id = ?", (int(group_id),))

    def member_count(self, db, group_id: int) -> int:
        row = db.execute(
            "SELECT COUNT(*) AS total FROM supplier_group_members WHERE group_id = ?",
            (int(group_id),),
        ).fetchone()
        return int(row["total"] if row else 0)

    def list_members(self, db, group_ids: Iterable[int]) -> Dict[int, List[dict]]:
        ids = sorted({int(item) for item in group_ids})
        members: Dict[int, List[dict]] = {group_id: [] for group_id in ids}
        if not ids:
            return members
        placeholders = ",".join("?" for _ in ids)
        rows = db.execute(
            f"""
            SELECT m.group_id, u.id, u.name, u.email, u.company
            FROM supplier_group_members m
            JOIN users u ON u.id = m.user_id
            WHERE m.group_id IN ({placeholders}) AND u.role = 'supplier' AND u.is_active = 1
            ORDER BY u.name, u.email
            """,
            tuple(ids),
        ).fetchall()
        for row in rows:
            item = dict(row)
            group_id = int(item.pop("group_id"))
            members.setdefault(group_id, []).append(item)
        return members

    def replace_members(self, db, group_id: int, user_ids: Iterable[int]) -> None:
        db.execute("DELETE FROM supplier_group_members WHERE group_id = ?", (int(group_id),))
        now = utc_now_iso()
        for user_id in sorted({int(item) for item in user_ids}):
            db.execute(
                "INSERT INTO supplier_group_members (group_id, user_id, created_at) VALUES (?, ?, ?)",
                (int(group_id), user_id, now),
            )

    def remove_member(self, db, group_id: int, user_id: int) -> None:
        db.execute(
            "DELETE FROM supplier_group_members WHERE group_id = ? AND user_id = ?",
            (int(group_id), int(user_id)),
        )
