import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ReplaceOne
from pymongo.errors import PyMongoError

from thinkv.errors import StoreWriteError, TransientError
from thinkv.models import Channel, DataPoint
from thinkv.utils import utcnow

logger = logging.getLogger(__name__)


def channel_to_document(channel: Channel) -> Dict[str, Any]:
    doc = channel.model_dump(exclude={"id"})
    doc["_id"] = channel.id
    return doc


def document_to_channel(doc: Dict[str, Any]) -> Channel:
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return Channel.model_validate(data)


def point_to_document(point: DataPoint) -> Dict[str, Any]:
    doc = point.model_dump(exclude={"id"})
    doc["_id"] = point.id
    doc["origin"] = point.origin.value
    return doc


def document_to_record(doc: Dict[str, Any]) -> Dict[str, Any]:
    """
    Converts a stored data point into a plain record. Validation is left to
    the reconciler, which counts malformed records instead of failing on them.
    """
    record = dict(doc)
    record["id"] = str(record.pop("_id", ""))
    return record


class ChannelStore:
    """
    Persisted store for channels and their data points.

    Reads raise TransientError when MongoDB is unreachable; writes raise
    StoreWriteError. Both are ThinkVError subclasses.
    """

    def __init__(self, database):
        self.database = database

    @property
    def channels(self):
        return self.database.channels

    @property
    def datapoints(self):
        return self.database.datapoints

    # --- channels ---

    async def create_channel(self, channel: Channel) -> Channel:
        try:
            await self.channels.insert_one(channel_to_document(channel))
        except PyMongoError as e:
            raise StoreWriteError(f"Could not store channel '{channel.id}': {e}") from e
        return channel

    async def get_channel(self, channel_id: str) -> Optional[Channel]:
        try:
            doc = await self.channels.find_one({"_id": channel_id})
        except PyMongoError as e:
            raise TransientError(f"Could not load channel '{channel_id}': {e}") from e
        return document_to_channel(doc) if doc else None

    async def list_channels(self, user_id: str = None) -> List[Channel]:
        query = {"user_id": user_id} if user_id is not None else {}
        try:
            docs = await self.channels.find(query).sort("created_at", 1).to_list(length=None)
        except PyMongoError as e:
            raise TransientError(f"Could not list channels: {e}") from e
        return [document_to_channel(doc) for doc in docs]

    async def update_channel(self, channel_id: str, updates: Dict[str, Any]) -> Optional[Channel]:
        updates = dict(updates)
        updates["updated_at"] = utcnow()
        try:
            result = await self.channels.update_one({"_id": channel_id}, {"$set": updates})
        except PyMongoError as e:
            raise StoreWriteError(f"Could not update channel '{channel_id}': {e}") from e
        if result.matched_count == 0:
            return None
        return await self.get_channel(channel_id)

    async def delete_channel(self, channel_id: str) -> bool:
        """Deletes a channel and all of its data points."""
        try:
            result = await self.channels.delete_one({"_id": channel_id})
            await self.datapoints.delete_many({"channel_id": channel_id})
        except PyMongoError as e:
            raise StoreWriteError(f"Could not delete channel '{channel_id}': {e}") from e
        return result.deleted_count > 0

    # --- data points ---

    async def get_datapoints(self, channel_id: str, since: datetime = None) -> List[Dict[str, Any]]:
        """Raw data point records for a channel, oldest first."""
        query: Dict[str, Any] = {"channel_id": channel_id}
        if since is not None:
            query["timestamp"] = {"$gte": since}
        try:
            docs = await self.datapoints.find(query).sort("timestamp", 1).to_list(length=None)
        except PyMongoError as e:
            raise TransientError(f"Could not load data points for '{channel_id}': {e}") from e
        return [document_to_record(doc) for doc in docs]

    async def get_field_history(self, channel_id: str, field_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Latest records for one field, newest first."""
        query = {"channel_id": channel_id, "field_id": field_id}
        try:
            docs = await self.datapoints.find(query).sort("timestamp", -1).to_list(length=limit)
        except PyMongoError as e:
            raise TransientError(f"Could not load history for field '{field_id}': {e}") from e
        return [document_to_record(doc) for doc in docs]

    async def insert_datapoints(self, points: Iterable[DataPoint]) -> int:
        docs = [point_to_document(p) for p in points]
        if not docs:
            return 0
        try:
            result = await self.datapoints.insert_many(docs)
        except PyMongoError as e:
            raise StoreWriteError(f"Could not insert data points: {e}") from e
        return len(result.inserted_ids)

    async def upsert_datapoints(self, points: Iterable[DataPoint]) -> int:
        """Upserts data points by id; returns the number of documents written."""
        operations = [
            ReplaceOne({"_id": p.id}, point_to_document(p), upsert=True) for p in points
        ]
        if not operations:
            return 0
        try:
            result = await self.datapoints.bulk_write(operations, ordered=False)
        except PyMongoError as e:
            raise StoreWriteError(f"Could not upsert {len(operations)} data points: {e}") from e
        return result.upserted_count + result.modified_count
