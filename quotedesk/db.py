import contextlib
import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


QUOTE_STATUSES = ("pending", "in_progress", "supplier_quoted", "rejected", "quoted", "cancelled")
USER_ROLES = ("customer", "supplier", "quoter", "admin")
FILE_TYPES = ("customer", "supplier", "quoter")


def _sql_in(values: Iterable[str]) -> str:
    return ",".join(f"'{value}'" for value in values)


def integrity_errors() -> tuple:
    errors: tuple = (sqlite3.IntegrityError,)
    if psycopg2 is not None:
        errors = errors + (psycopg2.IntegrityError,)
    return errors


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    @contextlib.contextmanager
    def transaction(self):
        """Commit the enclosed statements together, or roll all of them back."""
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()

    def close(self):
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    in_double = False
    i = 0
    while i < len(sql):
        ch = sql[i]
        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
        elif ch == ";" and not in_single and not in_double:
            statements.append("".join(current))
            current = []
            i += 1
            continue
        current.append(ch)
        i += 1
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def _connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = False
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = _connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def ping(db: Database) -> bool:
    row = db.execute("SELECT 1 AS ok").fetchone()
    return bool(row)


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
    else:
        _init_db_sqlite(db)
    db.commit()


def _init_db_sqlite(db: Database):
    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            name TEXT,
            company TEXT,
            phone TEXT,
            role TEXT NOT NULL DEFAULT 'customer' CHECK (role IN ({_sql_in(USER_ROLES)})),
            is_active INTEGER NOT NULL DEFAULT 1,
            token_version INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS supplier_groups (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            description TEXT,
            color TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_by INTEGER REFERENCES users (id) ON DELETE SET NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS supplier_group_members (
            group_id INTEGER NOT NULL REFERENCES supplier_groups (id) ON DELETE CASCADE,
            user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (group_id, user_id)
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS quotes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            quote_number TEXT NOT NULL UNIQUE,
            customer_id INTEGER NOT NULL REFERENCES users (id),
            quoter_id INTEGER REFERENCES users (id),
            supplier_id INTEGER REFERENCES users (id),
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            customer_message TEXT NOT NULL DEFAULT '',
            quoter_message TEXT NOT NULL DEFAULT '',
            reject_reason TEXT,
            price REAL,
            currency TEXT NOT NULL DEFAULT 'CNY',
            valid_until TEXT,
            urgent INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ({_sql_in(QUOTE_STATUSES)})),
            revision INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS quote_files (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            quote_id INTEGER NOT NULL REFERENCES quotes (id) ON DELETE CASCADE,
            file_type TEXT NOT NULL CHECK (file_type IN ({_sql_in(FILE_TYPES)})),
            position INTEGER NOT NULL,
            stored_name TEXT NOT NULL,
            display_name TEXT NOT NULL,
            size INTEGER NOT NULL DEFAULT 0,
            uploaded_at TEXT NOT NULL
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS status_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            quote_id INTEGER NOT NULL REFERENCES quotes (id) ON DELETE CASCADE,
            action TEXT NOT NULL,
            from_status TEXT,
            to_status TEXT,
            actor_id INTEGER,
            reason TEXT,
            occurred_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    _create_sequence_table(db)
    _create_indexes(db)


def _init_db_postgres(db: Database) -> None:
    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS users (
            id SERIAL PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            name TEXT,
            company TEXT,
            phone TEXT,
            role TEXT NOT NULL DEFAULT 'customer' CHECK (role IN ({_sql_in(USER_ROLES)})),
            is_active INTEGER NOT NULL DEFAULT 1,
            token_version INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"Z"'),
            updated_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"Z"')
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS supplier_groups (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            description TEXT,
            color TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_by INTEGER REFERENCES users (id) ON DELETE SET NULL,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"Z"'),
            updated_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"Z"')
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS supplier_group_members (
            group_id INTEGER NOT NULL REFERENCES supplier_groups (id) ON DELETE CASCADE,
            user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"Z"'),
            PRIMARY KEY (group_id, user_id)
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS quotes (
            id SERIAL PRIMARY KEY,
            quote_number TEXT NOT NULL UNIQUE,
            customer_id INTEGER NOT NULL REFERENCES users (id),
            quoter_id INTEGER REFERENCES users (id),
            supplier_id INTEGER REFERENCES users (id),
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            customer_message TEXT NOT NULL DEFAULT '',
            quoter_message TEXT NOT NULL DEFAULT '',
            reject_reason TEXT,
            price DOUBLE PRECISION,
            currency TEXT NOT NULL DEFAULT 'CNY',
            valid_until TEXT,
            urgent INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ({_sql_in(QUOTE_STATUSES)})),
            revision INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"Z"'),
            updated_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"Z"')
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS quote_files (
            id SERIAL PRIMARY KEY,
            quote_id INTEGER NOT NULL REFERENCES quotes (id) ON DELETE CASCADE,
            file_type TEXT NOT NULL CHECK (file_type IN ({_sql_in(FILE_TYPES)})),
            position INTEGER NOT NULL,
            stored_name TEXT NOT NULL,
            display_name TEXT NOT NULL,
            size BIGINT NOT NULL DEFAULT 0,
            uploaded_at TEXT NOT NULL
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS status_events (
            id SERIAL PRIMARY KEY,
            quote_id INTEGER NOT NULL REFERENCES quotes (id) ON DELETE CASCADE,
            action TEXT NOT NULL,
            from_status TEXT,
            to_status TEXT,
            actor_id INTEGER,
            reason TEXT,
            occurred_at TEXT NOT NULL DEFAULT to_char(now() AT TIME ZONE 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"Z"')
        )
        """
    )

    _create_sequence_table(db)
    _create_indexes(db)


def _create_sequence_table(db: Database) -> None:
    # One row per day. last_value only grows, so a number is never issued twice.
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS quote_number_sequences (
            day TEXT PRIMARY KEY,
            last_value INTEGER NOT NULL
        )
        """
    )


def _create_indexes(db: Database) -> None:
    db.execute("CREATE INDEX IF NOT EXISTS idx_quotes_customer ON quotes (customer_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_quotes_supplier ON quotes (supplier_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_quotes_status ON quotes (status)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_quote_files_quote ON quote_files (quote_id, file_type, position)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_status_events_quote ON status_events (quote_id, id)")


def drop_schema(db: Database) -> None:
    for table in (
        "quote_number_sequences",
        "status_events",
        "quote_files",
        "quotes",
        "supplier_group_members",
        "supplier_groups",
        "users",
    ):
        db.execute(f"DROP TABLE IF EXISTS {table}")
