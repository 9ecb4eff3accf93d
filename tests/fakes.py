"""
In-memory fakes of the motor client surface used by the sync service.

Only what the store, scanner, listener and sink call is implemented:
ping, collection find/sort/skip/limit/to_list, distinct, bulk_write of
UpdateOne upserts, watch() change streams and session transactions.
"""

import asyncio
import copy
from typing import Any, Iterable, Optional

from pymongo.errors import ConnectionFailure


def _matches(document: dict[str, Any], query: dict[str, Any]) -> bool:
    for field, condition in query.items():
        value = document.get(field)
        if isinstance(condition, dict):
            if "$nin" in condition and value in condition["$nin"]:
                return False
            if "$in" in condition and value not in condition["$in"]:
                return False
            if "$gt" in condition and not value > condition["$gt"]:
                return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, documents: list[dict[str, Any]]):
        self._documents = documents
        self._skip = 0
        self._limit = 0

    def sort(self, key: str, direction: int = 1) -> "FakeCursor":
        self._documents = sorted(self._documents, key=lambda d: d[key], reverse=direction < 0)
        return self

    def skip(self, count: int) -> "FakeCursor":
        self._skip = count
        return self

    def limit(self, count: int) -> "FakeCursor":
        self._limit = count
        return self

    async def to_list(self, length: Optional[int] = None) -> list[dict[str, Any]]:
        documents = self._documents[self._skip:]
        if self._limit:
            documents = documents[: self._limit]
        if length is not None:
            documents = documents[:length]
        return [copy.deepcopy(d) for d in documents]


class FakeChangeStream:
    """
    Replays scripted events; Exception instances are raised when reached.

    With ``hold_open`` the stream waits for close() after the last event,
    like a live stream with no further changes.
    """

    def __init__(self, events: Iterable[Any], hold_open: bool = False):
        self._events = list(events)
        self.hold_open = hold_open
        self.closed = False
        self._closed_event = asyncio.Event()

    async def __aenter__(self) -> "FakeChangeStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def __aiter__(self) -> "FakeChangeStream":
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        if self._events:
            event = self._events.pop(0)
            if isinstance(event, Exception):
                raise event
            await asyncio.sleep(0)
            return event
        if self.hold_open:
            await self._closed_event.wait()
        raise StopAsyncIteration

    async def close(self) -> None:
        self.closed = True
        self._closed_event.set()


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.documents: dict[Any, dict[str, Any]] = {}
        self.write_failures: list[Exception] = []
        self.bulk_write_calls: list[dict[str, Any]] = []
        self.streams: list[FakeChangeStream] = []
        self.watch_calls: list[dict[str, Any]] = []

    def insert(self, *documents: dict[str, Any]) -> None:
        for document in documents:
            self.documents[document["_id"]] = copy.deepcopy(document)

    def find(self, query: Optional[dict[str, Any]] = None) -> FakeCursor:
        query = query or {}
        return FakeCursor([d for d in self.documents.values() if _matches(d, query)])

    async def distinct(self, field: str) -> list[Any]:
        values = []
        for document in self.documents.values():
            if field in document and document[field] not in values:
                values.append(document[field])
        return values

    async def bulk_write(self, operations, ordered: bool = True, session=None) -> None:
        self.bulk_write_calls.append({"count": len(operations), "ordered": ordered, "session": session})
        if self.write_failures:
            raise self.write_failures.pop(0)
        if session is not None:
            session.pending.append((self, operations))
        else:
            self.apply(operations)

    def apply(self, operations) -> None:
        for operation in operations:
            identity = operation._filter["_id"]
            existing = self.documents.get(identity)
            if existing is None:
                if not operation._upsert:
                    continue
                existing = {"_id": identity}
            existing.update(copy.deepcopy(operation._doc["$set"]))
            self.documents[identity] = existing

    def watch(self, pipeline=None, **options) -> FakeChangeStream:
        self.watch_calls.append({"pipeline": pipeline, **options})
        if not self.streams:
            raise AssertionError(f"No change stream scripted for '{self.name}'")
        return self.streams.pop(0)


class FakeDatabase:
    def __init__(self, name: str):
        self.name = name
        self.collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]


class FakeSession:
    def __init__(self, client: "FakeMongoClient"):
        self.client = client
        self.pending: list[tuple[FakeCollection, list]] = []
        self.ended = False

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.ended = True

    async def with_transaction(self, callback):
        self.pending = []
        try:
            result = await callback(self)
        except BaseException:
            self.pending = []
            self.client.aborted_transactions += 1
            raise

        for collection, operations in self.pending:
            collection.apply(operations)
        self.pending = []
        self.client.committed_transactions += 1
        return result


class FakeAdmin:
    def __init__(self, client: "FakeMongoClient"):
        self.client = client

    async def command(self, name: str) -> dict[str, Any]:
        self.client.commands.append(name)
        if self.client.ping_failures:
            raise self.client.ping_failures.pop(0)
        return {"ok": 1.0}


class FakeMongoClient:
    """Fake of AsyncIOMotorClient; also usable as its own client factory."""

    def __init__(self, ping_failures: Optional[list[Exception]] = None):
        self.databases: dict[str, FakeDatabase] = {}
        self.admin = FakeAdmin(self)
        self.commands: list[str] = []
        self.ping_failures = list(ping_failures or [])
        self.closed = False
        self.created_with: Optional[tuple[str, dict[str, Any]]] = None
        self.sessions: list[FakeSession] = []
        self.committed_transactions = 0
        self.aborted_transactions = 0

    def __call__(self, uri: str, **options: Any) -> "FakeMongoClient":
        self.created_with = (uri, options)
        self.closed = False
        return self

    def __getitem__(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    async def start_session(self) -> FakeSession:
        session = FakeSession(self)
        self.sessions.append(session)
        return session

    def close(self) -> None:
        self.closed = True


def unreachable(message: str = "connection refused") -> ConnectionFailure:
    return ConnectionFailure(message)


def make_customer(identity: int, **overrides) -> dict:
    """Customer document shaped like the production source collection."""
    customer = {
        "_id": identity,
        "firstName": f"First{identity}",
        "lastName": f"Last{identity}",
        "email": f"user{identity}@example.com",
        "address": {
            "line1": f"{identity} Main Street",
            "line2": f"Apt {identity}",
            "postcode": f"{10000 + identity}",
            "city": "Springfield",
            "state": "IL",
            "country": "US",
        },
        "createdAt": "2024-01-01T00:00:00Z",
    }
    customer.update(overrides)
    return customer
