import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)

# Collection names
USERS = "users"
OTPS = "otps"
MARKETPLACE_ITEMS = "marketplaceitems"
JOBS = "jobs"
BILL_GROUPS = "billgroups"
BUDGET_TRACKERS = "budgettrackers"

NEWEST_FIRST = [("createdAt", DESCENDING), ("_id", DESCENDING)]

# Users are read without their password hash unless asked for it
USER_PUBLIC_PROJECTION = {"password": 0}

# Grace period before MongoDB drops an expired, unclaimed OTP record
OTP_RETENTION_SECONDS = 24 * 60 * 60


def utcnow() -> datetime:
    """Naive UTC timestamp at millisecond precision, the form BSON dates come back in"""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(value: Any) -> Any:
    """Turn a stored document into JSON-ready data.

    ObjectIds become strings, datetimes become ISO-8601 UTC strings and every
    (sub)document carrying an ``_id`` also gets a plain ``id``.
    """
    if isinstance(value, dict):
        data = {key: serialize(item) for key, item in value.items()}
        if "_id" in value:
            data["id"] = data["_id"]
        return data
    if isinstance(value, (list, tuple)):
        return [serialize(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat(timespec="milliseconds") + "Z"
    return value


class DocumentStore:
    """Thin adapter over a MongoDB database, one collection per record kind"""

    def __init__(self, db):
        self.db = db

    @classmethod
    def connect(cls, settings) -> "DocumentStore":
        client = MongoClient(settings.mongo_uri, serverSelectionTimeoutMS=5000)
        logger.info(f"MongoDB client created for database '{settings.mongo_db}'")
        return cls(client[settings.mongo_db])

    def ensure_indexes(self):
        self.db[USERS].create_index([("email", ASCENDING)], unique=True)
        # One pending code per email
        self.db[OTPS].create_index([("email", ASCENDING)], unique=True)
        # Abandoned codes are reaped a day after expiry; verify and resend handle expiry themselves
        self.db[OTPS].create_index([("expiresAt", ASCENDING)], expireAfterSeconds=OTP_RETENTION_SECONDS)

        for kind, field in ((MARKETPLACE_ITEMS, "category"), (JOBS, "jobType")):
            self.db[kind].create_index([("userId", ASCENDING)])
            self.db[kind].create_index([(field, ASCENDING)])
            self.db[kind].create_index([("createdAt", DESCENDING)])

        self.db[BILL_GROUPS].create_index([("userId", ASCENDING)], unique=True)
        self.db[BUDGET_TRACKERS].create_index([("userId", ASCENDING)], unique=True)
        logger.info("MongoDB indexes ensured")

    def create_document(self, kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
        now = utcnow()
        document = {**data, "createdAt": now, "updatedAt": now}
        result = self.db[kind].insert_one(document)
        document["_id"] = result.inserted_id
        return document

    def get_documents(
        self,
        kind: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        sort: Optional[List] = None,
        projection: Optional[Dict[str, int]] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[kind].find(filter_dict or {}, projection)
        return list(cursor.sort(sort or NEWEST_FIRST))

    def find_one(self, kind: str, filter_dict: Dict[str, Any], projection=None) -> Optional[Dict[str, Any]]:
        return self.db[kind].find_one(filter_dict, projection)

    def find_by_id(self, kind: str, doc_id: Any, projection=None) -> Optional[Dict[str, Any]]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        return self.db[kind].find_one({"_id": oid}, projection)

    def update_one(self, kind: str, filter_dict: Dict[str, Any], fields: Dict[str, Any], projection=None) -> Optional[Dict[str, Any]]:
        """Set ``fields`` on the first match and return the updated document"""
        return self.db[kind].find_one_and_update(
            filter_dict,
            {"$set": {**fields, "updatedAt": utcnow()}},
            projection=projection,
            return_document=ReturnDocument.AFTER,
        )

    def update_by_id(self, kind: str, doc_id: Any, fields: Dict[str, Any], projection=None) -> Optional[Dict[str, Any]]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        return self.update_one(kind, {"_id": oid}, fields, projection)

    def delete_by_id(self, kind: str, doc_id: Any) -> bool:
        oid = to_object_id(doc_id)
        if oid is None:
            return False
        return self.db[kind].delete_one({"_id": oid}).deleted_count == 1

    def delete_one(self, kind: str, filter_dict: Dict[str, Any]) -> bool:
        return self.db[kind].delete_one(filter_dict).deleted_count == 1

    def claim(self, kind: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Atomically remove and return one matching document.

        Only one of several concurrent callers gets the document back.
        """
        return self.db[kind].find_one_and_delete(filter_dict)

    def find_or_create(self, kind: str, filter_dict: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Return the document matching ``filter_dict``, creating it from ``defaults`` if absent.

        Relies on a unique index over the filter keys; a concurrent insert that
        wins the race surfaces as DuplicateKeyError and is read back instead.
        """
        now = utcnow()
        try:
            return self.db[kind].find_one_and_update(
                filter_dict,
                {"$setOnInsert": {**defaults, "createdAt": now, "updatedAt": now}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            logger.info(f"Concurrent create on {kind} for {filter_dict}, reading existing document")
            return self.db[kind].find_one(filter_dict)

    def replace_or_create(self, kind: str, filter_dict: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the document matching ``filter_dict`` with ``data`` in one write, inserting it if absent.

        With a unique index over the filter keys the kind holds at most one
        matching document; the loser of an insert race retries as a replace.
        """
        now = utcnow()
        document = {**data, "createdAt": now, "updatedAt": now}
        try:
            return self._replace(kind, filter_dict, document)
        except DuplicateKeyError:
            logger.info(f"Concurrent create on {kind} for {filter_dict}, replacing existing document")
            return self._replace(kind, filter_dict, document)

    def _replace(self, kind: str, filter_dict: Dict[str, Any], document: Dict[str, Any]) -> Dict[str, Any]:
        return self.db[kind].find_one_and_replace(
            filter_dict,
            document,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def push(self, kind: str, filter_dict: Dict[str, Any], field: str, value: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Append a sub-record to an array field; the sub-record gets its own ``_id``"""
        entry = {"_id": ObjectId(), **value}
        return self.db[kind].find_one_and_update(
            filter_dict,
            {"$push": {field: entry}, "$set": {"updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def pull(self, kind: str, filter_dict: Dict[str, Any], field: str, sub_id: Any) -> Optional[Dict[str, Any]]:
        """Remove the sub-record with ``sub_id`` from an array field. Unknown ids are a no-op."""
        oid = to_object_id(sub_id)
        if oid is not None:
            updated = self.db[kind].find_one_and_update(
                {**filter_dict, f"{field}._id": oid},
                {"$pull": {field: {"_id": oid}}, "$set": {"updatedAt": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                return updated
        return self.db[kind].find_one(filter_dict)
