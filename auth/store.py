"""
auth/store.py -- SQLAlchemy Core persistence layer for users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness: email and username each carry a UNIQUE constraint. Creating or
  renaming into an existing value raises sqlalchemy.exc.IntegrityError; the
  routes pre-check for a friendly message and still catch IntegrityError for
  the race where two requests claim the same value at once.

Emails are stored lower-cased so lookups are case-insensitive without a
functional index.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import Role, User, UserStatus, normalize_role, normalize_status

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(100), unique=True),  # NULL allowed, unique when set
    Column("hashed_password", Text, nullable=False),
    Column("full_name", String(255), nullable=False),
    Column("avatar", Text),
    Column("role", String(30), nullable=False, server_default=Role.USER.value),
    Column("status", String(20), nullable=False, server_default=UserStatus.ACTIVE.value),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("last_login_at", String(32)),
    Column("last_login_ip", String(64)),
    Column("login_count", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Fields an UPDATE may touch. Anything else passed to update_user() is a bug
# in the caller, not something to silently drop.
_MUTABLE_FIELDS = {
    "email",
    "username",
    "hashed_password",
    "full_name",
    "avatar",
    "role",
    "status",
    "email_verified",
}


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Build an Engine for db_url with the SQLite tweaks both stores need."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///barcomp.db")
        uid = store.create_user(User(email="a@b.c", full_name="A", hashed_password=hash_password("pw")))
        user = store.get_by_email("a@b.c")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. The argument is lower-cased before matching."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        role: Role | None = None,
        status: UserStatus | None = None,
        search: str | None = None,
    ) -> tuple[list[User], int]:
        """Return (users, total) newest first, filtered and paginated.

        search matches email, username, or full name, case-insensitively.
        total counts every matching row, not just the returned page.
        """
        conditions = []
        if role is not None:
            conditions.append(_users.c.role == normalize_role(role).value)
        if status is not None:
            conditions.append(_users.c.status == normalize_status(status).value)
        if search:
            pattern = f"%{search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(_users.c.email).like(pattern),
                    func.lower(_users.c.username).like(pattern),
                    func.lower(_users.c.full_name).like(pattern),
                )
            )

        query = _users.select()
        count_query = select(func.count()).select_from(_users)
        for cond in conditions:
            query = query.where(cond)
            count_query = count_query.where(cond)
        query = query.order_by(_users.c.created_at.desc(), _users.c.id.desc()).limit(limit).offset((page - 1) * limit)

        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            total = conn.execute(count_query).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email or username is taken.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    username=user.username,
                    hashed_password=user.hashed_password,
                    full_name=user.full_name,
                    avatar=user.avatar,
                    role=normalize_role(user.role).value,
                    status=normalize_status(user.status).value,
                    email_verified=1 if user.email_verified else 0,
                    login_count=0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Accepted fields: see _MUTABLE_FIELDS. Returns True if a row was
        updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if "email" in fields:
            fields["email"] = fields["email"].strip().lower()
        if "role" in fields:
            fields["role"] = normalize_role(fields["role"]).value
        if "status" in fields:
            fields["status"] = normalize_status(fields["status"]).value
        if "email_verified" in fields:
            fields["email_verified"] = 1 if fields["email_verified"] else 0
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def record_login(self, user_id: int, ip_address: str | None) -> None:
        """Login bookkeeping: last login time and origin, and the running count."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    last_login_at=_now_iso(),
                    last_login_ip=ip_address,
                    login_count=_users.c.login_count + 1,
                )
            )
            conn.commit()

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted.

        Callers enforce the self-deletion guard and revoke the user's
        sessions; the store does neither.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        full_name=row.full_name,
        avatar=row.avatar,
        # Rows written by older tooling may carry "SUPER_ADMIN"; normalize on read.
        role=normalize_role(row.role),
        status=normalize_status(row.status),
        email_verified=bool(row.email_verified),
        last_login_at=row.last_login_at,
        last_login_ip=row.last_login_ip,
        login_count=row.login_count or 0,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
