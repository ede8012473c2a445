"""AccountService — DuckDB-backed accounts and approval workflow.

The first account to register becomes the approved admin; every later
account starts as a pending user until the admin approves it. Names are
unique case-insensitively.

The messaging core only consumes :meth:`AccountService.is_participant_authorized`.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from duochat.errors import NotAuthorized, NotFound
from duochat.rooms.identity import derive_room_id

from .schemas import Account, AccountRole, AccountStatus

logger = logging.getLogger(__name__)

_CREATE_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS accounts_seq START 1"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS accounts (
    seq        BIGINT DEFAULT nextval('accounts_seq'),
    id         VARCHAR PRIMARY KEY,
    name       VARCHAR NOT NULL,
    name_key   VARCHAR NOT NULL UNIQUE,
    role       VARCHAR NOT NULL DEFAULT 'user',
    status     VARCHAR NOT NULL DEFAULT 'pending',
    created_at TIMESTAMP NOT NULL
)
"""


class AccountService:
    """Singleton service for managing accounts in DuckDB.

    All calls are synchronous (DuckDB is embedded and very fast for this
    volume of data).
    """

    _instance: Optional["AccountService"] = None
    _default_db_path: str = "accounts.duckdb"

    _COLUMNS = "id, name, role, status, created_at"

    def __init__(self, db_path: Optional[str] = None) -> None:
        import duckdb
        self._db_path = db_path or self._default_db_path
        self._conn = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_SEQUENCE)
        self._conn.execute(_CREATE_TABLE)
        logger.info("[AccountService] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "AccountService":
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def close(self) -> None:
        self._conn.close()

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get(self, account_id: str) -> Optional[Account]:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM accounts WHERE id = ?", [account_id]
        ).fetchone()
        return self._row_to_account(row) if row else None

    def find_by_name(self, name: str) -> Optional[Account]:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM accounts WHERE name_key = ?", [name.strip().lower()]
        ).fetchone()
        return self._row_to_account(row) if row else None

    def list_accounts(self) -> List[Account]:
        rows = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM accounts ORDER BY seq ASC"
        ).fetchall()
        return [self._row_to_account(r) for r in rows]

    def get_admin(self) -> Optional[Account]:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM accounts WHERE role = 'admin' LIMIT 1"
        ).fetchone()
        return self._row_to_account(row) if row else None

    def is_participant_authorized(self, account_id: str) -> bool:
        """True if the account exists and has been approved."""
        account = self.get(account_id)
        return account is not None and account.status == AccountStatus.APPROVED

    # -----------------------------------------------------------------------
    # Workflow
    # -----------------------------------------------------------------------

    def register(self, account_id: str, name: str) -> Account:
        """Register an account, or return the existing one with that name or id."""
        existing = self.find_by_name(name) or self.get(account_id)
        if existing:
            return existing

        count = self._conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]
        if count == 0:
            role, status = AccountRole.ADMIN, AccountStatus.APPROVED
        else:
            role, status = AccountRole.USER, AccountStatus.PENDING

        # created_at holds naive UTC
        self._conn.execute(
            "INSERT INTO accounts (id, name, name_key, role, status, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [account_id, name.strip(), name.strip().lower(), role.value, status.value,
             datetime.now(timezone.utc).replace(tzinfo=None)],
        )
        logger.info("[AccountService] Registered %s (%s) as %s/%s", account_id, name, role.value, status.value)
        return self.get(account_id)

    def approve(self, account_id: str) -> Account:
        if self.get(account_id) is None:
            raise NotFound(f"Account {account_id} not found")
        self._conn.execute(
            "UPDATE accounts SET status = 'approved' WHERE id = ?", [account_id]
        )
        logger.info("[AccountService] Approved %s", account_id)
        return self.get(account_id)

    def reject(self, account_id: str) -> bool:
        """Delete an account. Returns False if it did not exist."""
        result = self._conn.execute(
            "DELETE FROM accounts WHERE id = ? RETURNING id", [account_id]
        ).fetchone()
        if result is not None:
            logger.info("[AccountService] Rejected and removed %s", account_id)
        return result is not None

    def transfer_admin(self, current_admin_id: str, new_admin_id: str) -> None:
        current = self.get(current_admin_id)
        if current is None or current.role != AccountRole.ADMIN:
            raise NotAuthorized("Current user is not admin")
        if self.get(new_admin_id) is None:
            raise NotFound("New admin user not found")

        self._conn.begin()
        try:
            self._conn.execute("UPDATE accounts SET role = 'user' WHERE id = ?", [current_admin_id])
            self._conn.execute(
                "UPDATE accounts SET role = 'admin', status = 'approved' WHERE id = ?",
                [new_admin_id],
            )
        except Exception:
            self._conn.rollback()
            raise
        self._conn.commit()
        logger.info("[AccountService] Admin transferred from %s to %s", current_admin_id, new_admin_id)

    def partner(self, account_id: str) -> Tuple[Optional[Account], Optional[str]]:
        """Return the chat partner of an account and their room id.

        The admin is paired with the first approved user; everyone else is
        paired with the admin.
        """
        admin = self.get_admin()
        if admin is None:
            return None, None

        if admin.id == account_id:
            row = self._conn.execute(
                f"SELECT {self._COLUMNS} FROM accounts "
                "WHERE status = 'approved' AND id != ? ORDER BY seq ASC LIMIT 1",
                [admin.id],
            ).fetchone()
            partner = self._row_to_account(row) if row else None
            return partner, derive_room_id(admin.id, partner.id) if partner else None

        return admin, derive_room_id(admin.id, account_id)

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_account(row) -> Account:
        account_id, name, role, status, created_at = row
        return Account(
            id=account_id,
            name=name,
            role=AccountRole(role),
            status=AccountStatus(status),
            createdAt=created_at,
        )
