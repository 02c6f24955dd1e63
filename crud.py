import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException, status

from database import JOBS, MARKETPLACE_ITEMS, serialize

logger = logging.getLogger(__name__)


class ListingService:
    """Owner-scoped CRUD over a public listing collection.

    ``owner_fields`` name the display fields copied from the poster's identity at
    creation. They are a snapshot and are never refreshed afterwards.
    ``fallback_fields`` keep their stored value on update when not supplied.
    """

    def __init__(
        self,
        store,
        kind: str,
        label: str,
        owner_fields: Tuple[str, str],
        defaults: Dict[str, Any],
        fallback_fields: Tuple[str, ...],
    ):
        self.store = store
        self.kind = kind
        self.label = label
        self.owner_fields = owner_fields
        self.defaults = defaults
        self.fallback_fields = fallback_fields

    def _annotate(self, document: dict, user: Optional[dict]) -> dict:
        data = serialize(document)
        data["isOwner"] = bool(user) and document.get("userId") == user["userId"]
        return data

    def _get_or_404(self, doc_id: str) -> dict:
        document = self.store.find_by_id(self.kind, doc_id)
        if not document:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.label} not found")
        return document

    def _get_owned(self, doc_id: str, user: dict, action: str) -> dict:
        document = self._get_or_404(doc_id)
        if document.get("userId") != user["userId"]:
            logger.warning(f"User {user['userId']} tried to {action} {self.label.lower()} {doc_id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"You are not authorized to {action} this {self.label.lower()}",
            )
        return document

    def list(self, user: Optional[dict]) -> List[dict]:
        return [self._annotate(doc, user) for doc in self.store.get_documents(self.kind)]

    def get(self, doc_id: str, user: Optional[dict]) -> dict:
        return self._annotate(self._get_or_404(doc_id), user)

    def mine(self, user: dict) -> List[dict]:
        documents = self.store.get_documents(self.kind, {"userId": user["userId"]})
        return [self._annotate(doc, user) for doc in documents]

    def create(self, fields: Dict[str, Any], user: dict) -> dict:
        data = dict(fields)
        for key, default in self.defaults.items():
            if data.get(key) is None:
                data[key] = default
        name_field, email_field = self.owner_fields
        data.update({
            "userId": user["userId"],
            name_field: user.get("name"),
            email_field: user["email"],
        })
        document = self.store.create_document(self.kind, data)
        logger.info(f"{self.label} {document['_id']} created by {user['userId']}")
        return self._annotate(document, user)

    def update(self, doc_id: str, fields: Dict[str, Any], user: dict) -> dict:
        """Full replace of the supplied fields, except ``fallback_fields`` keep their stored value when omitted"""
        document = self._get_owned(doc_id, user, "update")
        data = dict(fields)
        for key in self.fallback_fields:
            if data.get(key) is None:
                data[key] = document.get(key)
        updated = self.store.update_by_id(self.kind, document["_id"], data)
        if not updated:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.label} not found")
        return self._annotate(updated, user)

    def delete(self, doc_id: str, user: dict):
        document = self._get_owned(doc_id, user, "delete")
        self.store.delete_by_id(self.kind, document["_id"])
        logger.info(f"{self.label} {doc_id} deleted by {user['userId']}")


def marketplace_service(store) -> ListingService:
    return ListingService(
        store,
        MARKETPLACE_ITEMS,
        "Item",
        owner_fields=("sellerName", "sellerEmail"),
        defaults={"condition": "Good", "category": "other"},
        fallback_fields=("condition", "category"),
    )


def job_service(store) -> ListingService:
    return ListingService(
        store,
        JOBS,
        "Job",
        owner_fields=("posterName", "posterEmail"),
        defaults={"requirements": []},
        fallback_fields=("requirements",),
    )
