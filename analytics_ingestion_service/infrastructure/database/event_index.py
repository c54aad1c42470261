# Bulk, idempotent storage of processed analytics events
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReplaceOne
from pymongo.errors import BulkWriteError, CollectionInvalid, ConnectionFailure, PyMongoError

from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.app.models import BulkWriteFailure, BulkWriteSummary, ProcessedEvent
from analytics_ingestion_service.app.service.exceptions import StoreSetupError, StoreWriteError
from analytics_ingestion_service.infrastructure.kafka.schemas import INT64_MAX, INT64_MIN
from .schemas import (
    DELETE_PHASE_AGE,
    EVENTS_INDEXES,
    EVENTS_VALIDATOR,
    RETENTION_POLICY_NAME,
    build_retention_policy,
)

logger = logging.getLogger(__name__)

DUPLICATE_KEY_ERROR_CODE = 11000
TTL_INDEX_NAME = "indexedAt_ttl"


def user_id_filter(user_id: str) -> Any:
    """Matches a user id given as text against both its string and 64-bit integer forms."""
    digits = user_id[1:] if user_id.startswith("-") else user_id
    if digits.isdecimal():
        number = int(user_id)
        if INT64_MIN <= number <= INT64_MAX:
            return {"$in": [number, user_id]}
    return user_id


class EventIndex:
    """
    Writes processed events to the events collection.

    Every document is addressed by its eventId and written as an upsert, so
    replaying a batch after redelivery overwrites instead of duplicating.
    Safe to share between pipelines: each write is an independent request.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        collection_name: str = settings.EVENTS_COLLECTION,
        policy_collection_name: str = settings.RETENTION_POLICY_COLLECTION,
        max_retries: int = settings.STORE_WRITE_MAX_RETRIES,
        retry_backoff_ms: int = settings.STORE_RETRY_BACKOFF_MS,
    ):
        self.db = db
        self.collection_name = collection_name
        self.policy_collection_name = policy_collection_name
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_ms / 1000.0

    @property
    def collection(self):
        return self.db[self.collection_name]

    async def initialize(self) -> None:
        """
        Provisions the collection, its retention policy and indexes.

        Safe to call on every startup: the collection is created only when
        missing, while the policy and every index are ensured each time.
        """
        try:
            existing = await self.db.list_collection_names(filter={"name": self.collection_name})
            if existing:
                logger.info(f"Collection '{self.collection_name}' already exists, ensuring indexes.")
            else:
                try:
                    await self.db.create_collection(
                        self.collection_name,
                        validator=EVENTS_VALIDATOR,
                        validationLevel="strict",
                        validationAction="error",
                    )
                except CollectionInvalid:
                    # Another instance created it between the check and here.
                    logger.info(f"Collection '{self.collection_name}' was created concurrently.")

            await self.db[self.policy_collection_name].replace_one(
                {"_id": RETENTION_POLICY_NAME}, build_retention_policy(), upsert=True
            )
            await self.collection.create_index(
                [("indexedAt", ASCENDING)],
                expireAfterSeconds=int(DELETE_PHASE_AGE.total_seconds()),
                name=TTL_INDEX_NAME,
            )
            for field, direction in EVENTS_INDEXES:
                await self.collection.create_index([(field, direction)])
            logger.info(
                f"Collection '{self.collection_name}' ready with retention policy '{RETENTION_POLICY_NAME}'."
            )
        except PyMongoError as e:
            logger.error(f"Failed to initialize collection '{self.collection_name}': {e}", exc_info=True)
            raise StoreSetupError(self.collection_name, e) from e

    async def write(self, events: Sequence[ProcessedEvent]) -> BulkWriteSummary:
        """
        Upserts `events` in one unordered bulk request.

        Documents rejected individually are reported in the summary. Losing the
        connection or an unconfirmed write concern is retried with exponential
        backoff; once retries are exhausted, or on any other store error, a
        StoreWriteError is raised.
        """
        if not events:
            return BulkWriteSummary()

        operations = [ReplaceOne({"_id": event.event_id}, event.to_document(), upsert=True) for event in events]
        start_time = time.monotonic()
        attempt = 0
        while True:
            attempt += 1
            try:
                await self.collection.bulk_write(operations, ordered=False)
                failures: List[BulkWriteFailure] = []
                break
            except BulkWriteError as e:
                details = e.details or {}
                if details.get("writeConcernErrors"):
                    last_error: Exception = e
                else:
                    failures = self._collect_failures(events, details.get("writeErrors", []))
                    break
            except ConnectionFailure as e:
                last_error = e
            except PyMongoError as e:
                logger.error(f"Bulk write of {len(events)} documents rejected: {e}", exc_info=True)
                raise StoreWriteError(len(events), attempt, e) from e

            if attempt > self.max_retries:
                logger.error(f"Bulk write of {len(events)} documents failed after {attempt} attempts: {last_error}")
                raise StoreWriteError(len(events), attempt, last_error) from last_error
            delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
            logger.warning(f"Bulk write attempt {attempt} failed ({last_error}). Retrying in {delay:.2f}s.")
            await asyncio.sleep(delay)

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        if failures:
            logger.warning(f"Bulk write completed with {len(failures)} rejected documents out of {len(events)}.")
        return BulkWriteSummary(
            successful=len(events) - len(failures),
            failed=len(failures),
            elapsed_ms=elapsed_ms,
            failures=failures,
        )

    @staticmethod
    def _collect_failures(events: Sequence[ProcessedEvent], write_errors: List[Dict[str, Any]]) -> List[BulkWriteFailure]:
        failures = []
        for error in write_errors:
            code = error.get("code", 0)
            if code == DUPLICATE_KEY_ERROR_CODE:
                # Concurrent upsert of the same _id; the document exists.
                continue
            failures.append(BulkWriteFailure(
                event_id=events[error["index"]].event_id,
                code=code,
                message=error.get("errmsg", ""),
            ))
        return failures

    async def count(self) -> int:
        return await self.collection.count_documents({})

    async def search(
        self,
        event_type: Optional[str] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        size: int = 100,
    ) -> List[ProcessedEvent]:
        query: Dict[str, Any] = {}
        if event_type:
            query["eventType"] = event_type
        if session_id:
            query["sessionId"] = session_id
        if user_id:
            # Query strings are always text; numeric ids may be stored as integers.
            query["userId"] = user_id_filter(user_id)

        cursor = self.collection.find(query).sort("timestamp", DESCENDING).limit(size)
        documents = await cursor.to_list(length=size)
        return [ProcessedEvent.model_validate(document) for document in documents]

    async def health_check(self) -> bool:
        try:
            await self.db.command('ping')
            return True
        except PyMongoError as e:
            logger.error(f"MongoDB health check ping failed: {e}")
            return False
