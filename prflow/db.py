import contextlib
import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g

from prflow.domain.statuses import (
    ApprovalDecision,
    ApprovalTier,
    AssignmentScope,
    BudgetExceptionAction,
    BudgetExceptionStatus,
    NotificationStatus,
    PurchaseRequestStatus,
    QuotationStatus,
    RfqStatus,
    Role,
    enum_values,
)


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._depth = 0
        self._savepoint_seq = 0

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

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def lock_clause(self) -> str:
        return " FOR UPDATE" if self.backend == "postgres" else ""

    @contextlib.contextmanager
    def transaction(self):
        """Single unit of work; nested calls join the outer transaction."""
        if self._depth > 0:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self.execute("BEGIN IMMEDIATE" if self.backend == "sqlite" else "BEGIN")
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._depth = 0
            self.execute("ROLLBACK")
            raise
        self._depth = 0
        try:
            self.execute("COMMIT")
        except Exception:
            self.execute("ROLLBACK")
            raise

    @contextlib.contextmanager
    def savepoint(self):
        self._savepoint_seq += 1
        label = f"sp_{self._savepoint_seq}"
        self.execute(f"SAVEPOINT {label}")
        try:
            yield self
        except BaseException:
            self.execute(f"ROLLBACK TO SAVEPOINT {label}")
            self.execute(f"RELEASE SAVEPOINT {label}")
            raise
        self.execute(f"RELEASE SAVEPOINT {label}")

    def commit(self):
        self._conn.commit()

    def close(self):
        self._conn.close()


def is_unique_violation(exc: BaseException) -> bool:
    if isinstance(exc, sqlite3.IntegrityError):
        return "unique" in str(exc).lower()
    if psycopg2 is not None and isinstance(exc, psycopg2.IntegrityError):
        return getattr(exc, "pgcode", None) == "23505"
    return False


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    in_double = False
    for ch in sql:
        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
        elif ch == ";" and not in_single and not in_double:
            statements.append("".join(current))
            current = []
            continue
        current.append(ch)
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str, *, timeout: float = 30.0) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit mode; transactions are opened explicitly by Database.transaction().
    conn = sqlite3.connect(db_path, timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        timeout = float(current_app.config.get("DB_BUSY_TIMEOUT_SECONDS", 30))
        g.db = connect_database(db_path, timeout=timeout)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db(db: Database | None = None):
    db = db or get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return

    _init_db_sqlite(db)


def _check(column: str, values: Iterable[str]) -> str:
    quoted = ",".join(f"'{value}'" for value in values)
    return f"CHECK ({column} IN ({quoted}))"


def _schema_statements(pk: str, ts: str, money: str) -> List[str]:
    return [
        f"""
        CREATE TABLE IF NOT EXISTS users (
            id {pk},
            email TEXT NOT NULL,
            name TEXT NOT NULL,
            role TEXT NOT NULL {_check("role", enum_values(Role))},
            department TEXT,
            branch_code TEXT,
            manager_id INTEGER REFERENCES users(id),
            active INTEGER NOT NULL DEFAULT 1,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (tenant_id, email)
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS branches (
            id {pk},
            code TEXT NOT NULL,
            name TEXT NOT NULL,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (tenant_id, code)
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS branch_approval_rules (
            id {pk},
            branch_code TEXT NOT NULL,
            needs_branch_manager_approval INTEGER NOT NULL DEFAULT 1,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (tenant_id, branch_code)
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS purchase_requests (
            id {pk},
            pr_number TEXT NOT NULL,
            requestor_id INTEGER NOT NULL REFERENCES users(id),
            department TEXT NOT NULL,
            branch_code TEXT,
            title TEXT,
            total_amount {money} NOT NULL DEFAULT 0,
            declared_amount {money},
            tax_percent {money},
            currency TEXT NOT NULL DEFAULT 'VND',
            status TEXT NOT NULL DEFAULT 'DRAFT' {_check("status", enum_values(PurchaseRequestStatus))},
            notes TEXT,
            required_date TEXT,
            deleted_at {ts},
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_purchase_requests_number
        ON purchase_requests (tenant_id, pr_number)
        WHERE deleted_at IS NULL
        """,
        f"""
        CREATE TABLE IF NOT EXISTS purchase_request_items (
            id {pk},
            purchase_request_id INTEGER NOT NULL REFERENCES purchase_requests(id),
            line_no INTEGER NOT NULL,
            description TEXT NOT NULL,
            part_no TEXT,
            spec TEXT,
            unit TEXT,
            quantity {money} NOT NULL CHECK (quantity > 0),
            unit_price {money} NOT NULL DEFAULT 0 CHECK (unit_price >= 0),
            amount {money} NOT NULL DEFAULT 0,
            deleted_at {ts},
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_purchase_request_items_line
        ON purchase_request_items (purchase_request_id, line_no)
        WHERE deleted_at IS NULL
        """,
        f"""
        CREATE TABLE IF NOT EXISTS pr_approvals (
            id {pk},
            purchase_request_id INTEGER NOT NULL REFERENCES purchase_requests(id),
            approver_id INTEGER NOT NULL REFERENCES users(id),
            tier TEXT NOT NULL {_check("tier", enum_values(ApprovalTier))},
            action TEXT NOT NULL {_check("action", enum_values(ApprovalDecision))},
            comment TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS pr_assignments (
            id {pk},
            purchase_request_id INTEGER NOT NULL REFERENCES purchase_requests(id),
            buyer_leader_id INTEGER NOT NULL REFERENCES users(id),
            buyer_id INTEGER NOT NULL REFERENCES users(id),
            scope TEXT NOT NULL {_check("scope", enum_values(AssignmentScope))},
            assigned_item_ids TEXT,
            note TEXT,
            deleted_at {ts},
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS rfqs (
            id {pk},
            rfq_number TEXT NOT NULL,
            purchase_request_id INTEGER NOT NULL REFERENCES purchase_requests(id),
            buyer_id INTEGER NOT NULL REFERENCES users(id),
            status TEXT NOT NULL DEFAULT 'DRAFT' {_check("status", enum_values(RfqStatus))},
            notes TEXT,
            sent_at {ts},
            deleted_at {ts},
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_rfqs_number
        ON rfqs (tenant_id, rfq_number)
        WHERE deleted_at IS NULL
        """,
        f"""
        CREATE TABLE IF NOT EXISTS suppliers (
            id {pk},
            code TEXT NOT NULL,
            name TEXT NOT NULL,
            email TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (tenant_id, code)
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS quotations (
            id {pk},
            rfq_id INTEGER NOT NULL REFERENCES rfqs(id),
            supplier_id INTEGER NOT NULL REFERENCES suppliers(id),
            total_amount {money} NOT NULL,
            currency TEXT NOT NULL DEFAULT 'VND',
            lead_time_days INTEGER,
            payment_terms TEXT,
            delivery_terms TEXT,
            warranty TEXT,
            valid_from TEXT,
            valid_until TEXT,
            status TEXT NOT NULL DEFAULT 'PENDING' {_check("status", enum_values(QuotationStatus))},
            recommendation_score {money},
            is_recommended INTEGER NOT NULL DEFAULT 0,
            notes TEXT,
            created_by INTEGER REFERENCES users(id),
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS quotation_items (
            id {pk},
            quotation_id INTEGER NOT NULL REFERENCES quotations(id),
            purchase_request_item_id INTEGER NOT NULL REFERENCES purchase_request_items(id),
            quantity {money} NOT NULL CHECK (quantity > 0),
            unit_price {money} NOT NULL CHECK (unit_price >= 0),
            amount {money} NOT NULL,
            notes TEXT,
            tenant_id TEXT NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS supplier_selections (
            id {pk},
            purchase_request_id INTEGER NOT NULL REFERENCES purchase_requests(id),
            quotation_id INTEGER NOT NULL UNIQUE REFERENCES quotations(id),
            buyer_leader_id INTEGER NOT NULL REFERENCES users(id),
            selection_reason TEXT NOT NULL,
            over_budget_reason TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS budget_exceptions (
            id {pk},
            purchase_request_id INTEGER NOT NULL REFERENCES purchase_requests(id),
            supplier_selection_id INTEGER NOT NULL REFERENCES supplier_selections(id),
            pr_amount {money} NOT NULL,
            purchase_amount {money} NOT NULL,
            over_percent {money} NOT NULL,
            status TEXT NOT NULL DEFAULT 'PENDING' {_check("status", enum_values(BudgetExceptionStatus))},
            action TEXT {_check("action", enum_values(BudgetExceptionAction))},
            reason TEXT NOT NULL,
            resolver_id INTEGER REFERENCES users(id),
            comment TEXT,
            resolved_at {ts},
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS notifications (
            id {pk},
            user_id INTEGER NOT NULL,
            role TEXT,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            related_id INTEGER,
            related_type TEXT,
            metadata_json TEXT,
            status TEXT NOT NULL DEFAULT 'UNREAD' {_check("status", enum_values(NotificationStatus))},
            read_at {ts},
            resolved_at {ts},
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS ix_notifications_related
        ON notifications (tenant_id, related_type, related_id, type, status)
        """,
        f"""
        CREATE TABLE IF NOT EXISTS audit_logs (
            id {pk},
            table_name TEXT NOT NULL,
            record_id INTEGER NOT NULL,
            action TEXT NOT NULL CHECK (action IN ('CREATE','UPDATE','DELETE')),
            user_id INTEGER,
            old_data TEXT,
            new_data TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS status_events (
            id {pk},
            entity TEXT NOT NULL,
            entity_id INTEGER NOT NULL,
            from_status TEXT,
            to_status TEXT,
            action TEXT,
            reason TEXT,
            actor_id INTEGER,
            tenant_id TEXT NOT NULL,
            occurred_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
    ]


SCHEMA_TABLES = [
    "status_events",
    "audit_logs",
    "notifications",
    "budget_exceptions",
    "supplier_selections",
    "quotation_items",
    "quotations",
    "suppliers",
    "rfqs",
    "pr_assignments",
    "pr_approvals",
    "purchase_request_items",
    "purchase_requests",
    "branch_approval_rules",
    "branches",
    "users",
]


def _init_db_sqlite(db):
    for statement in _schema_statements("INTEGER PRIMARY KEY AUTOINCREMENT", "TEXT", "REAL"):
        db.execute(statement)
    db.commit()


def _init_db_postgres(db) -> None:
    for statement in _schema_statements("SERIAL PRIMARY KEY", "TIMESTAMP", "DOUBLE PRECISION"):
        db.execute(statement)
    db.commit()
