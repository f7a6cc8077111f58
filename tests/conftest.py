"""Shared fixtures: an in-memory stand-in for the Supabase client."""

import copy
import uuid
from datetime import UTC, datetime, timedelta

import pytest
from postgrest.exceptions import APIError

from config import EditionWorkerConfig


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


def _matches(row: dict, column: str, predicate, negate: bool) -> bool:
    return predicate(row.get(column)) != negate


def _apply_filter(row: dict, column: str, predicate, negate: bool) -> dict | None:
    """Return the (possibly narrowed) row if it passes, else None.

    ``embedded.column`` filters narrow an embedded list and drop the parent
    when nothing is left, like an ``!inner`` join.
    """
    if "." not in column:
        return row if _matches(row, column, predicate, negate) else None

    embed, sub_column = column.split(".", 1)
    joined = row.get(embed)
    if isinstance(joined, list):
        kept = [item for item in joined if _matches(item, sub_column, predicate, negate)]
        if not kept:
            return None
        return {**row, embed: kept}
    if isinstance(joined, dict):
        return row if _matches(joined, sub_column, predicate, negate) else None
    return None


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.order_by = None
        self.limit_to = None
        self.want_single = False
        self.count_mode = None
        self._negate = False

    # --- operations ---

    def select(self, columns="*", count=None):
        self.op = "select"
        self.count_mode = count
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def upsert(self, rows, on_conflict=""):
        self.op = "upsert"
        self.payload = rows
        self.on_conflict = on_conflict
        return self

    def update(self, values):
        self.op = "update"
        self.payload = values
        return self

    def delete(self):
        self.op = "delete"
        return self

    # --- filters ---

    @property
    def not_(self):
        self._negate = True
        return self

    def _add(self, column, predicate):
        self.filters.append((column, predicate, self._negate))
        self._negate = False
        return self

    def eq(self, column, value):
        return self._add(column, lambda v: v == value)

    def in_(self, column, values):
        values = list(values)
        return self._add(column, lambda v: v in values)

    def is_(self, column, value):
        expected = None if value in (None, "null") else value
        return self._add(column, lambda v: v is expected)

    def gte(self, column, value):
        return self._add(column, lambda v: v is not None and v >= value)

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.limit_to = n
        return self

    def single(self):
        self.want_single = True
        return self

    # --- execution ---

    def _filtered(self) -> list[dict]:
        out = []
        for row in self.db.tables.setdefault(self.table_name, []):
            current = row
            for column, predicate, negate in self.filters:
                current = _apply_filter(current, column, predicate, negate)
                if current is None:
                    break
            if current is not None:
                out.append((row, current))
        return out

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table_name, self.op))
        failure = self.db.failures.get((self.table_name, self.op))
        if failure:
            raise APIError({"message": failure, "code": "XX000"})

        if self.op == "insert":
            return FakeResponse(self.db._insert(self.table_name, self.payload))
        if self.op == "upsert":
            return FakeResponse(self.db._upsert(self.table_name, self.payload, self.on_conflict))

        matched = self._filtered()
        if self.op == "update":
            for original, _ in matched:
                original.update(copy.deepcopy(self.payload))
            return FakeResponse([copy.deepcopy(o) for o, _ in matched])
        if self.op == "delete":
            table = self.db.tables[self.table_name]
            for original, _ in matched:
                table.remove(original)
            return FakeResponse([copy.deepcopy(o) for o, _ in matched])

        rows = [copy.deepcopy(view) for _, view in matched]
        count = len(rows) if self.count_mode else None
        if self.order_by:
            column, desc = self.order_by
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
        if self.limit_to is not None:
            rows = rows[: self.limit_to]
        if self.want_single:
            if len(rows) != 1:
                raise APIError({
                    "message": "JSON object requested, multiple (or no) rows returned",
                    "code": "PGRST116",
                })
            return FakeResponse(rows[0], count)
        return FakeResponse(rows, count)


class FakeSupabase:
    """Just enough of ``supabase.Client`` for the edition worker."""

    UNIQUE = {
        "newsletter_edition_episodes": ("newsletter_edition_id", "episode_id"),
    }

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], str] = {}
        self._clock = datetime(2026, 1, 1, tzinfo=UTC)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail(self, table: str, op: str, message: str = "connection refused") -> None:
        self.failures[(table, op)] = message

    def rows(self, table: str) -> list[dict]:
        return self.tables.get(table, [])

    def _tick(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def _check_unique(self, table: str, row: dict) -> None:
        columns = self.UNIQUE.get(table)
        if not columns:
            return
        for other in self.tables.get(table, []):
            if all(other.get(c) == row.get(c) for c in columns):
                raise APIError({
                    "message": f'duplicate key value violates unique constraint on {",".join(columns)}',
                    "code": "23505",
                })

    def _insert(self, table: str, payload) -> list[dict]:
        rows = payload if isinstance(payload, list) else [payload]
        inserted = []
        for row in rows:
            row = {"id": str(uuid.uuid4()), "created_at": self._tick(), **copy.deepcopy(row)}
            self._check_unique(table, row)
            self.tables.setdefault(table, []).append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    def _upsert(self, table: str, payload, on_conflict: str) -> list[dict]:
        rows = payload if isinstance(payload, list) else [payload]
        keys = [k.strip() for k in on_conflict.split(",") if k.strip()] or ["id"]
        out = []
        for row in rows:
            existing = next(
                (r for r in self.tables.get(table, []) if all(r.get(k) == row.get(k) for k in keys)),
                None,
            )
            if existing is not None:
                existing.update(copy.deepcopy(row))
                out.append(copy.deepcopy(existing))
            else:
                out.extend(self._insert(table, row))
        return out

    # --- seeding helpers ---

    def add_user(self, user_id: str, email: str, show_ids: list[str] = ()) -> None:
        subs = []
        for show_id in show_ids:
            sub = {
                "id": f"sub-{user_id}-{show_id}",
                "user_id": user_id,
                "show_id": show_id,
                "status": "active",
                "deleted_at": None,
            }
            self.tables.setdefault("user_podcast_subscriptions", []).append(dict(sub))
            subs.append({**sub, "podcast_shows": self._show(show_id)})
        self.tables.setdefault("users", []).append(
            {"id": user_id, "email": email, "user_podcast_subscriptions": subs}
        )

    def _show(self, show_id: str) -> dict:
        return {
            "id": show_id,
            "title": f"Show {show_id}",
            "rss_url": f"https://feeds.example.com/{show_id}",
            "spotify_url": f"https://open.spotify.com/show/{show_id}",
        }

    def add_note(
        self,
        episode_id: str,
        show_id: str,
        notes: str = "Hosts discuss the week in AI and climate tech.",
        created_at: str | None = None,
        status: str = "done",
    ) -> None:
        episode = {
            "id": episode_id,
            "show_id": show_id,
            "title": f"Episode {episode_id}",
            "description": "",
            "pub_date": None,
        }
        self.tables.setdefault("podcast_episodes", []).append(dict(episode))
        self.tables.setdefault("episode_transcript_notes", []).append({
            "id": f"note-{episode_id}",
            "episode_id": episode_id,
            "notes": notes,
            "status": status,
            "created_at": created_at or self._tick(),
            "deleted_at": None,
            "podcast_episodes": {**episode, "podcast_shows": self._show(show_id)},
        })

    def add_edition(self, edition_id: str, user_id: str, email: str, edition_date: str, **fields) -> dict:
        row = {
            "id": edition_id,
            "user_id": user_id,
            "user_email": email,
            "edition_date": edition_date,
            "status": "generated",
            "content": "<p>old</p>",
            "model": "gemini-2.5-flash",
            "error_message": None,
            "subject_line": None,
            "created_at": self._tick(),
            "deleted_at": None,
            **fields,
        }
        self.tables.setdefault("newsletter_editions", []).append(row)
        return row


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def worker_config():
    return EditionWorkerConfig(
        lookback_hours=24,
        last10_mode=False,
        prompt_path="prompts/newsletter-edition.md",
        environment="test",
    )
