"""
MongoDB Adapter Tests

🍃 The adapter and the model layer over an in-process stand-in for the
driver's database object: native `_id` keys, id normalization in filters
and uniqueness checks that exclude the record being updated.
"""

import copy

import pytest
import pytest_asyncio
from bson import ObjectId

from polydb.entities import ModelBuilder
from polydb.persistence.adapters.interface import match_where
from polydb.persistence.adapters.mongodb import MongoDBAdapter
from polydb.persistence.errors import AggregateValidationError

OID = "507f1f77bcf86cd799439011"


class FakeResult:

    def __init__(self, **fields):
        self.__dict__.update(fields)


class FakeCursor:

    def __init__(self, docs):
        self._docs = docs

    async def to_list(self, length=None):
        return self._docs


class FakeCollection:
    """Just enough of AsyncCollection for the adapter contract"""

    def __init__(self):
        self.docs = []
        self.filters = []

    async def insert_one(self, document, session=None):
        document.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(document))
        return FakeResult(inserted_id=document["_id"])

    def find(self, filter_doc, projection=None, sort=None, skip=0, limit=0, session=None):
        self.filters.append(filter_doc)
        rows = [copy.deepcopy(d) for d in self.docs if match_where(d, filter_doc)][skip:]
        return FakeCursor(rows[:limit] if limit else rows)

    async def update_many(self, filter_doc, update_doc, upsert=False, session=None):
        self.filters.append(filter_doc)
        matches = [d for d in self.docs if match_where(d, filter_doc)]
        for doc in matches:
            doc.update(update_doc["$set"])
        return FakeResult(matched_count=len(matches), upserted_id=None)

    async def delete_many(self, filter_doc, session=None):
        self.filters.append(filter_doc)
        matches = [d for d in self.docs if match_where(d, filter_doc)]
        self.docs = [d for d in self.docs if not any(d is m for m in matches)]
        return FakeResult(deleted_count=len(matches))


class FakeDatabase(dict):

    def __missing__(self, name):
        self[name] = FakeCollection()
        return self[name]


class InProcessMongoAdapter(MongoDBAdapter):
    """MongoDBAdapter whose database handle lives in process memory"""

    async def _open(self, config):
        self.db = FakeDatabase()

    async def _discard(self):
        self.db = None

    async def _ping(self):
        pass


@pytest_asyncio.fixture
async def mongo_adapter():
    adapter = InProcessMongoAdapter("mongo")
    await adapter.connect({
        "type": "mongodb",
        "connection": {"host": "localhost", "database": "app"},
        "mongoOptions": {"maxRetries": 0},
    })
    yield adapter
    await adapter.close()


def build_users(adapter):
    return (ModelBuilder("users")
            .schema({
                "email": {"type": "string", "validate": {"required": True, "unique": True}},
                "name": {"type": "string"},
            })
            .bind(adapter))


class TestNativePrimaryKey:

    @pytest.mark.asyncio
    async def test_model_uses_object_id_key(self, mongo_adapter):
        users = build_users(mongo_adapter)
        user = await users.create({"email": "a@b.com"})

        assert users.primary_key == "_id"
        assert isinstance(user["_id"], ObjectId)
        found = await users.find_by_id(str(user["_id"]))
        assert found["email"] == "a@b.com"

    @pytest.mark.asyncio
    async def test_update_keeping_own_unique_value(self, mongo_adapter):
        users = build_users(mongo_adapter)
        user = await users.create({"email": "a@b.com", "name": "Ann"})

        updated = await users.update(user["_id"], {"email": "a@b.com", "name": "Annie"})
        assert updated["name"] == "Annie"

    @pytest.mark.asyncio
    async def test_update_to_another_records_value(self, mongo_adapter):
        users = build_users(mongo_adapter)
        await users.create({"email": "a@b.com"})
        other = await users.create({"email": "c@d.com"})

        with pytest.raises(AggregateValidationError) as exc_info:
            await users.update(other["_id"], {"email": "a@b.com"})
        assert exc_info.value.violations[0].rule == "unique"

    @pytest.mark.asyncio
    async def test_delete_by_string_id(self, mongo_adapter):
        users = build_users(mongo_adapter)
        user = await users.create({"email": "a@b.com"})

        assert await users.delete(str(user["_id"]))
        assert await users.count() == 0

    @pytest.mark.asyncio
    async def test_explicit_primary_key_mirrors_object_id(self, mongo_adapter):
        result = await mongo_adapter.insert("things", {"name": "a"}, primary_key="id")
        stored = mongo_adapter.db["things"].docs[0]

        assert stored["id"] == stored["_id"] == result.inserted_id
        assert isinstance(result.inserted_id, ObjectId)


class TestFilterNormalization:

    @pytest.mark.asyncio
    async def test_only_id_strings_become_object_ids(self, mongo_adapter):
        await mongo_adapter.find("tokens", {"_id": OID, "token": OID})
        sent = mongo_adapter.db["tokens"].filters[-1]

        assert sent == {"_id": ObjectId(OID), "token": OID}

    @pytest.mark.asyncio
    async def test_write_filters_are_normalized(self, mongo_adapter):
        await mongo_adapter.delete("tokens", {"_id": {"$in": [OID]}, "sha": OID})
        sent = mongo_adapter.db["tokens"].filters[-1]

        assert sent == {"_id": {"$in": [ObjectId(OID)]}, "sha": OID}
