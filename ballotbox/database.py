"""Storage access over a DB-API connection, with schema migrations."""

from __future__ import annotations

import re
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, List, Sequence, Tuple

DATABASE_NAME = "voting"
ERR_ALREADY_EXISTS = "42P04"
MIGRATION_TABLE = "schema_migration"

_PLACEHOLDER = re.compile(r"\$(\d+)")
_PARAMSTYLES = ("qmark", "format", "pyformat")


class NoRows(LookupError):
    """A query that must return a row returned none."""

    def __init__(self, message: str = "no rows in result set") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class Migration:
    """A versioned schema change."""

    version: str
    up: str
    down: str


MIGRATIONS: Tuple[Migration, ...] = (
    Migration(
        version="20250105064358_CreateTableOrganization",
        up="""
        CREATE TABLE IF NOT EXISTS organization (
            id SERIAL PRIMARY KEY,
            created TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated TIMESTAMPTZ,
            name TEXT NOT NULL,
            external_id TEXT NOT NULL,
            max_concurrent_polls SMALLINT NOT NULL DEFAULT 1,
            UNIQUE (name, external_id)
        )""",
        down="DROP TABLE organization",
    ),
    Migration(
        version="20250105064406_CreateTableVoter",
        up="""
        CREATE TABLE IF NOT EXISTS voter (
            id SERIAL PRIMARY KEY,
            created TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated TIMESTAMPTZ,
            organization_id integer NOT NULL,
            external_id TEXT NOT NULL,
            name TEXT NOT NULL DEFAULT '',
            can_vote BOOL NOT NULL DEFAULT true,
            UNIQUE(organization_id, external_id),
            FOREIGN KEY (organization_id) REFERENCES organization (id)
        )""",
        down="DROP TABLE voter",
    ),
    Migration(
        version="20250105064411_CreateTablePoll",
        up="""
        CREATE TABLE IF NOT EXISTS poll (
            id SERIAL PRIMARY KEY NOT NULL,
            created TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated TIMESTAMPTZ,
            organization_id integer NOT NULL,
            creator_id integer NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            expiration TIMESTAMPTZ,
            FOREIGN KEY (organization_id) REFERENCES organization (id),
            FOREIGN KEY (creator_id) REFERENCES voter (id)
        )""",
        down="DROP TABLE poll",
    ),
    Migration(
        version="20250105064414_CreateTableOption",
        up="""
        CREATE TABLE IF NOT EXISTS candidate (
            id SERIAL PRIMARY KEY,
            created TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated TIMESTAMPTZ,
            poll_id integer NOT NULL,
            name TEXT NOT NULL DEFAULT '',
            url TEXT,
            FOREIGN KEY (poll_id) REFERENCES poll (id) ON DELETE CASCADE
        )""",
        down="DROP TABLE candidate",
    ),
    Migration(
        version="20250105064426_CreateTableVoterSession",
        up="""
        CREATE TABLE IF NOT EXISTS session (
            id SERIAL PRIMARY KEY,
            created TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            last_viewed TIMESTAMPTZ,
            voter_id integer NOT NULL,
            poll_id integer NOT NULL,
            salt UUID NOT NULL DEFAULT gen_random_uuid(),
            UNIQUE (voter_id, poll_id),
            FOREIGN KEY (voter_id) REFERENCES voter (id),
            FOREIGN KEY (poll_id) REFERENCES poll (id)
        )""",
        down="DROP TABLE session",
    ),
    Migration(
        version="20250106041949_CreateTableBallotOption",
        up="""
        CREATE TABLE IF NOT EXISTS ballot (
            id SERIAL PRIMARY KEY,
            created TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated TIMESTAMPTZ,
            voter_id integer NOT NULL,
            candidate_id integer NOT NULL,
            rank SMALLINT NOT NULL DEFAULT 1,
            void BOOL NOT NULL DEFAULT false,
            FOREIGN KEY (voter_id) REFERENCES voter (id),
            FOREIGN KEY (candidate_id) REFERENCES candidate (id)
        )""",
        down="DROP TABLE ballot",
    ),
)


class Database:
    """A DB-API connection that takes queries with $1, $2 ... placeholders.

    Every call runs in its own transaction, committed on success and rolled
    back on failure.
    """

    def __init__(self, connection: Any, paramstyle: str | None = None) -> None:
        if paramstyle is None:
            paramstyle = "qmark" if isinstance(connection, sqlite3.Connection) else "format"
        if paramstyle not in _PARAMSTYLES:
            raise ValueError(f"unsupported paramstyle {paramstyle!r}")
        self.connection = connection
        self.paramstyle = paramstyle
        self._lock = threading.RLock()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _bind(self, query: str, args: Sequence[Any]) -> Tuple[str, List[Any]]:
        if self.paramstyle == "qmark":
            text, marker = query, "?"
        else:
            text, marker = query.replace("%", "%%"), "%s"
        ordered: List[Any] = []

        def substitute(match: "re.Match[str]") -> str:
            position = int(match.group(1))
            if not 1 <= position <= len(args):
                raise ValueError(
                    f"query refers to ${position} but {len(args)} argument(s) were given"
                )
            ordered.append(args[position - 1])
            return marker

        return _PLACEHOLDER.sub(substitute, text), ordered

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        with self._lock:
            cursor = self.connection.cursor()
            try:
                yield cursor
                self.connection.commit()
            except Exception:
                self.connection.rollback()
                raise
            finally:
                cursor.close()

    def execute(self, query: str, *args: Any) -> int:
        """Run a statement; return the number of rows it affected."""
        statement, params = self._bind(query, args)
        with self._cursor() as cursor:
            cursor.execute(statement, params)
            return cursor.rowcount

    def query(self, query: str, *args: Any) -> List[tuple]:
        """Run a query and return all its rows."""
        statement, params = self._bind(query, args)
        with self._cursor() as cursor:
            cursor.execute(statement, params)
            return [tuple(row) for row in cursor.fetchall()]

    def query_row(self, query: str, *args: Any) -> tuple:
        """Run a query and return its first row; raise NoRows if it has none."""
        statement, params = self._bind(query, args)
        with self._cursor() as cursor:
            cursor.execute(statement, params)
            row = cursor.fetchone()
        if row is None:
            raise NoRows()
        return tuple(row)

    def execute_many(self, query: str, rows: Iterable[Sequence[Any]]) -> int:
        """Run a statement once per row, all in one transaction."""
        statement = ""
        batch: List[List[Any]] = []
        for row in rows:
            statement, params = self._bind(query, tuple(row))
            batch.append(params)
        if not batch:
            return 0
        with self._cursor() as cursor:
            cursor.executemany(statement, batch)
        return len(batch)

    def migrate(self, migrations: Iterable[Migration]) -> List[str]:
        """Apply the migrations not yet applied, oldest version first.

        Returns the versions applied by this call.
        """
        pending = list(migrations)
        versions = [migration.version for migration in pending]
        if len(set(versions)) != len(versions):
            raise ValueError("duplicate migration version")

        self.execute(
            f"CREATE TABLE IF NOT EXISTS {MIGRATION_TABLE} (version TEXT PRIMARY KEY NOT NULL)"
        )
        applied = {row[0] for row in self.query(f"SELECT version FROM {MIGRATION_TABLE}")}
        record, _ = self._bind(f"INSERT INTO {MIGRATION_TABLE} (version) VALUES ($1)", ("",))

        done: List[str] = []
        for migration in sorted(pending, key=lambda m: m.version):
            if migration.version in applied:
                continue
            with self._cursor() as cursor:
                cursor.execute(migration.up)
                cursor.execute(record, [migration.version])
            done.append(migration.version)
        return done

    def close(self) -> None:
        """Close the underlying connection."""
        self.connection.close()


def _sqlstate(error: BaseException) -> str | None:
    return getattr(error, "pgcode", None) or getattr(error, "sqlstate", None)


def create_database(url: str, connect: Callable[[str], Any]) -> bool:
    """Create the service's database through the server's default database.

    ``url`` holds ``%s`` where the database name goes. Returns False if the
    database already existed.
    """
    connection = connect(url.replace("%s", "postgres"))
    try:
        if hasattr(connection, "autocommit"):
            connection.autocommit = True
        cursor = connection.cursor()
        try:
            cursor.execute(f"CREATE DATABASE {DATABASE_NAME}")
        except Exception as error:
            if _sqlstate(error) == ERR_ALREADY_EXISTS:
                return False
            raise
        finally:
            cursor.close()
        return True
    finally:
        connection.close()


def open_database(url: str, connect: Callable[[str], Any], migrate: bool = False) -> Database:
    """Connect to the service's database, creating and migrating it if asked."""
    if migrate:
        create_database(url, connect)
    database = Database(connect(url.replace("%s", DATABASE_NAME)))
    if migrate:
        try:
            database.migrate(MIGRATIONS)
        except Exception:
            database.close()
            raise
    return database