import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.models.base import parse_object_id, to_mongo
from app.models.client import Client, ClientStatus, ClientType
from app.schemas.client import ClientCreate, ClientUpdate
from app.utils.ledger_validation import ConflictError, LedgerValidationError, NotFoundError

logger = logging.getLogger(__name__)

NON_NULLABLE_FIELDS = ("name", "client_type", "status", "payment_terms_days", "credit_limit_cents")


class ClientRepository:
    """Client database operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["clients"]

    async def create_client(self, client_data: ClientCreate, created_by: Optional[str] = None) -> Client:
        """Create a new active client."""
        client = Client(**client_data.model_dump(), created_by=created_by)
        await self.collection.insert_one(client.to_document())
        logger.info("Created client %s (%s)", client.id, client.name)
        return client

    async def get_client(self, client_id: str) -> Client:
        """Get a client by id. Raises NotFoundError."""
        oid = parse_object_id(client_id, "Client")
        doc = await self.collection.find_one({"_id": oid})
        if not doc:
            raise NotFoundError("Client", str(client_id))
        return Client(**doc)

    async def list_clients(
        self,
        status: Optional[ClientStatus] = None,
        client_type: Optional[ClientType] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Client]:
        """List clients sorted by name, optionally filtered and paged."""
        cursor = self.collection.find(self._build_query(status, client_type, search)).sort("name", 1)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(None)
        return [Client(**doc) for doc in docs]

    async def count_clients(
        self,
        status: Optional[ClientStatus] = None,
        client_type: Optional[ClientType] = None,
        search: Optional[str] = None,
    ) -> int:
        return await self.collection.count_documents(self._build_query(status, client_type, search))

    async def update_client(self, client_id: str, changes: ClientUpdate) -> Client:
        """
        Apply a partial profile update to a non-archived client.

        Raises:
        - NotFoundError: unknown client
        - LedgerValidationError: client archived, or status set to archived
        """
        fields = changes.model_dump(exclude_unset=True)
        if fields.get("status") == ClientStatus.ARCHIVED:
            raise LedgerValidationError("Use the archive operation to archive a client")
        cleared = sorted(name for name in NON_NULLABLE_FIELDS if name in fields and fields[name] is None)
        if cleared:
            raise LedgerValidationError(f"Fields cannot be cleared: {', '.join(cleared)}")
        if not fields:
            return await self.get_client(client_id)

        oid = parse_object_id(client_id, "Client")
        fields["updated_at"] = datetime.now(timezone.utc)
        result = await self.collection.find_one_and_update(
            {"_id": oid, "status": {"$ne": ClientStatus.ARCHIVED.value}},
            {"$set": to_mongo(fields), "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER
        )
        if result:
            logger.info("Updated client %s: %s", client_id, sorted(fields))
            return Client(**result)

        existing = await self.get_client(client_id)
        raise LedgerValidationError(f"Client {existing.id} is archived and cannot be edited")

    async def claim_for_new_debt(self, client_id: str) -> Optional[Client]:
        """
        Bump the version of a non-archived client.

        Called once a new debt is stored, so an archive that scanned the
        client's debts before the insert fails its version check. Returns
        None when the client was archived in the meantime.
        """
        oid = parse_object_id(client_id, "Client")
        result = await self.collection.find_one_and_update(
            {"_id": oid, "status": {"$ne": ClientStatus.ARCHIVED.value}},
            {"$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER
        )
        if result:
            return Client(**result)
        return None

    async def mark_archived(self, client_id: str, expected_version: int) -> Client:
        """
        Flip a client to archived if its version is still `expected_version`.

        Callers are responsible for the outstanding-debt check; see
        LedgerService.archive_client.
        """
        oid = parse_object_id(client_id, "Client")
        now = datetime.now(timezone.utc)
        result = await self.collection.find_one_and_update(
            {
                "_id": oid,
                "version": expected_version,
                "status": {"$ne": ClientStatus.ARCHIVED.value}
            },
            {
                "$set": to_mongo({
                    "status": ClientStatus.ARCHIVED,
                    "archived_at": now,
                    "updated_at": now
                }),
                "$inc": {"version": 1}
            },
            return_document=ReturnDocument.AFTER
        )
        if result:
            return Client(**result)

        existing = await self.get_client(client_id)
        if existing.is_archived:
            raise LedgerValidationError(f"Client {existing.id} is already archived")
        raise ConflictError(str(existing.id), 1, entity="Client")

    # ===== PRIVATE HELPERS =====

    @staticmethod
    def _build_query(
        status: Optional[ClientStatus],
        client_type: Optional[ClientType],
        search: Optional[str],
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if status is not None:
            query["status"] = ClientStatus(status).value
        if client_type is not None:
            query["client_type"] = ClientType(client_type).value
        if search:
            pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
            query["$or"] = [{"name": pattern}, {"email": pattern}, {"tax_id": pattern}]
        return query
