"""
Path-addressed document store on top of SQLModel.

Documents live in one table keyed by a slash-separated path of alternating
collection / document segments, e.g. ``suuntoAppAccessTokens/u1/tokens/bob``.
Each row remembers its parent collection path (for collection queries) and
the last collection segment (for collection-group queries across parents,
e.g. every ``tokens`` collection regardless of user).

Row ids are autoincrement, so query results come back in creation order.

Single-document operations each run in their own transaction. WriteBatch
groups several set/update/delete operations into one transaction: either
all of them are applied or none.
"""
import json
import operator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlmodel import Field, Session, SQLModel, select

Filter = Tuple[str, str, Any]

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, options: value in options,
}


class Document(SQLModel, table=True):
    """One stored document."""

    id: Optional[int] = Field(default=None, primary_key=True)
    path: str = Field(unique=True, index=True)
    collection: str = Field(index=True)  # parent collection path
    collection_id: str = Field(index=True)  # last collection segment
    data: str = "{}"
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DocumentNotFoundError(KeyError):
    """Raised by update() when the target document does not exist."""


@dataclass
class Snapshot:
    """A document read back from a query."""

    path: str
    data: Dict[str, Any]

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def collection(self) -> str:
        return self.path.rsplit("/", 1)[0]

    @property
    def parent_id(self) -> Optional[str]:
        """Id of the document owning this document's collection, if nested."""
        segments = self.path.split("/")
        return segments[-3] if len(segments) >= 4 else None


def split_path(path: str) -> Tuple[str, str]:
    """Return (collection path, collection id) for a document path."""
    segments = [s for s in path.split("/") if s]
    if len(segments) < 2 or len(segments) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    collection = "/".join(segments[:-1])
    return collection, segments[-2]


def _matches(data: Dict[str, Any], filters: Sequence[Filter]) -> bool:
    for field, op, expected in filters:
        if field not in data:
            return False
        try:
            if not _OPERATORS[op](data[field], expected):
                return False
        except TypeError:
            return False
    return True


class WriteBatch:
    """Collects writes and applies them atomically on commit()."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: List[Tuple[str, str, Optional[Dict[str, Any]], bool]] = []

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> "WriteBatch":
        self._ops.append(("set", path, data, merge))
        return self

    def update(self, path: str, partial: Dict[str, Any]) -> "WriteBatch":
        self._ops.append(("update", path, partial, False))
        return self

    def delete(self, path: str) -> "WriteBatch":
        self._ops.append(("delete", path, None, False))
        return self

    def __len__(self) -> int:
        return len(self._ops)

    def commit(self) -> None:
        self._store._commit_batch(self._ops)
        self._ops = []

    def __enter__(self) -> "WriteBatch":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        # Commit only when the block completed; otherwise drop the writes.
        if exc_type is None:
            self.commit()
        else:
            self._ops = []


class DocumentStore:
    """
    Generic document store.

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """

    def __init__(self, engine):
        self.engine = engine

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        """Return the document's data, or None if it does not exist."""
        with Session(self.engine) as s:
            row = self._row(s, path)
            return json.loads(row.data) if row else None

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        limit: Optional[int] = None,
        group: bool = False,
    ) -> List[Snapshot]:
        """
        Return documents of a collection matching every filter, in creation order.

        Args:
            collection: Collection path, or a bare collection id when group=True.
            filters: (field, op, value) tuples; op is one of == != < <= > >= in.
                     Documents missing the field never match.
            limit: Maximum number of results.
            group: Query every collection with this id, whatever its parent.
        """
        filters = list(filters)
        for _, op, _ in filters:
            if op not in _OPERATORS:
                raise ValueError(f"Unsupported filter operator: {op}")

        column = Document.collection_id if group else Document.collection
        with Session(self.engine) as s:
            rows = s.exec(
                select(Document).where(column == collection.strip("/")).order_by(Document.id)
            ).all()

        results: List[Snapshot] = []
        for row in rows:
            data = json.loads(row.data)
            if _matches(data, filters):
                results.append(Snapshot(path=row.path, data=data))
                if limit is not None and len(results) >= limit:
                    break
        return results

    def count(self, collection: str, filters: Iterable[Filter] = (), group: bool = False) -> int:
        return len(self.query(collection, filters, group=group))

    # ── Writes ────────────────────────────────────────────────────────────────

    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        with Session(self.engine) as s:
            self._apply_set(s, path, data, merge)
            s.commit()

    def update(self, path: str, partial: Dict[str, Any]) -> None:
        """
        Merge `partial` into an existing document.

        Raises:
            DocumentNotFoundError: if the document does not exist.
        """
        with Session(self.engine) as s:
            self._apply_update(s, path, partial)
            s.commit()

    def delete(self, path: str) -> None:
        """Delete a document (no-op if already absent)."""
        with Session(self.engine) as s:
            self._apply_delete(s, path)
            s.commit()

    def delete_tree(self, path: str) -> int:
        """Delete a document and every document nested beneath it. Returns the count."""
        prefix = path.strip("/") + "/"
        with Session(self.engine) as s:
            rows = s.exec(
                select(Document).where(
                    (Document.path == path.strip("/")) | (Document.path.startswith(prefix, autoescape=True))
                )
            ).all()
            for row in rows:
                s.delete(row)
            s.commit()
        return len(rows)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _row(self, session: Session, path: str) -> Optional[Document]:
        return session.exec(select(Document).where(Document.path == path.strip("/"))).first()

    def _apply_set(self, session: Session, path: str, data: Dict[str, Any], merge: bool) -> None:
        collection, collection_id = split_path(path)
        row = self._row(session, path)
        if row is None:
            session.add(Document(
                path=path.strip("/"),
                collection=collection,
                collection_id=collection_id,
                data=json.dumps(data),
            ))
            session.flush()
            return
        merged = {**json.loads(row.data), **data} if merge else dict(data)
        row.data = json.dumps(merged)
        row.updated_at = datetime.now(timezone.utc)
        session.add(row)
        session.flush()

    def _apply_update(self, session: Session, path: str, partial: Dict[str, Any]) -> None:
        row = self._row(session, path)
        if row is None:
            raise DocumentNotFoundError(path)
        merged = {**json.loads(row.data), **partial}
        row.data = json.dumps(merged)
        row.updated_at = datetime.now(timezone.utc)
        session.add(row)
        session.flush()

    def _apply_delete(self, session: Session, path: str) -> None:
        row = self._row(session, path)
        if row is not None:
            session.delete(row)
            session.flush()

    def _commit_batch(self, ops) -> None:
        with Session(self.engine) as s:
            for kind, path, data, merge in ops:
                if kind == "set":
                    self._apply_set(s, path, data, merge)
                elif kind == "update":
                    self._apply_update(s, path, data)
                else:
                    self._apply_delete(s, path)
            s.commit()
