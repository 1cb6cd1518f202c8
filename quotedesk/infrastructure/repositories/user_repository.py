from __future__ import annotations

from typing import Any, Dict, Iterable, List

from werkzeug.security import generate_password_hash

from quotedesk.infrastructure.repositories.base import BaseRepository, utc_now_iso


_PUBLIC_COLUMNS = "id, email, name, company, phone, role, is_active, token_version, created_at, updated_at"

PROFILE_FIELDS = ("name", "company", "phone")


class UserRepository(BaseRepository):
    def get_by_id(self, db, user_id: int) -> dict | None:
        row = db.execute(
            f"SELECT {_PUBLIC_COLUMNS} FROM users WHERE id = ? LIMIT 1",
            (int(user_id),),
        ).fetchone()
        return dict(row) if row else None

    def find_by_email_with_password(self, db, email: str) -> dict | None:
        row = db.execute(
            f"SELECT {_PUBLIC_COLUMNS}, password_hash FROM users WHERE email = ? LIMIT 1",
            (email,),
        ).fetchone()
        return dict(row) if row else None

    def email_exists(self, db, email: str) -> bool:
        row = db.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone()
        return bool(row)

    def create_user(
        self,
        db,
        *,
        email: str,
        password: str,
        role: str = "customer",
        name: str | None = None,
        company: str | None = None,
        phone: str | None = None,
        is_active: bool = True,
    ) -> int:
        now = utc_now_iso()
        cursor = db.execute(
            """
            INSERT INTO users (email, password_hash, name, company, phone, role, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                email,
                generate_password_hash(password),
                name,
                company,
                phone,
                role,
                1 if is_active else 0,
                now,
                now,
            ),
        )
        return self.inserted_id(cursor)

    def list_users(self, db, *, role: str | None = None, active_only: bool = False) -> List[dict]:
        clauses: List[str] = []
        params: List[Any] = []
        if role:
            clauses.append("role = ?")
            params.append(role)
        if active_only:
            clauses.append("is_active = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = db.execute(
            f"SELECT {_PUBLIC_COLUMNS} FROM users {where} ORDER BY name, email",
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_by_ids(self, db, user_ids: Iterable[int]) -> Dict[int, dict]:
        ids = sorted({int(item) for item in user_ids if item is not None})
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        rows = db.execute(
            f"SELECT {_PUBLIC_COLUMNS} FROM users WHERE id IN ({placeholders})",
            tuple(ids),
        ).fetchall()
        return {int(row["id"]): dict(row) for row in rows}

    def update_profile(self, db, user_id: int, fields: Dict[str, Any]) -> None:
        updates = {key: value for key, value in fields.items() if key in PROFILE_FIELDS}
        if not updates:
            return
        assignments = ", ".join(f"{key} = ?" for key in updates)
        db.execute(
            f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?",
            (*updates.values(), utc_now_iso(), int(user_id)),
        )

    def set_role(self, db, user_id: int, role: str) -> None:
        db.execute(
            "UPDATE users SET role = ?, token_version = token_version + 1, updated_at = ? WHERE id = ?",
            (role, utc_now_iso(), int(user_id)),
        )

    def set_active(self, db, user_id: int, is_active: bool) -> None:
        db.execute(
            "UPDATE users SET is_active = ?, token_version = token_version + 1, updated_at = ? WHERE id = ?",
            (1 if is_active else 0, utc_now_iso(), int(user_id)),
        )

    def bump_token_version(self, db, user_id: int) -> None:
        db.execute(
            "UPDATE users SET token_version = token_version + 1, updated_at = ? WHERE id = ?",
            (utc_now_iso(), int(user_id)),
        )

    def set_password(self, db, user_id: int, password: str) -> None:
        db.execute(
            "UPDATE users SET password_hash = ?, token_version = token_version + 1, updated_at = ? WHERE id = ?",
            (generate_password_hash(password), utc_now_iso(), int(user_id)),
        )
