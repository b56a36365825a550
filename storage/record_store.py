"""DynamoDB-backed stores for event and booking records."""
import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Type

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.booking_validator import BookingValidator
from processor.errors import DuplicateKeyError, NotFoundError
from processor.event_validator import EventValidator
from processor.models import Booking, Event, IndexSpec, Record
from storage.connection import Connection

logger = logging.getLogger(__name__)

MARKER_ENTITY = 'UNIQUE'
ID_INDEX = IndexSpec(('id',), unique=True)
TIMESTAMP_FIELDS = ('created_at', 'updated_at')


class RecordStore:
    """
    Create, read, update, delete and count records of one type.

    Records and their unique-index markers live in one table keyed by
    ``pk``. A record item is keyed ``<ENTITY>#<id>``; every unique index
    owns a marker item keyed by a digest of the indexed values, written in
    the same transaction as the record under ``attribute_not_exists(pk)``,
    so a second record with the same indexed values is rejected atomically.
    New record items carry the same condition on their own key.
    """

    model: Type[Record] = Record

    def __init__(self, connection: Connection):
        """
        Initialize store against an established connection.

        Args:
            connection: Connection from the ConnectionCache
        """
        self.connection = connection
        self.table = connection.table
        self.client = connection.client
        self.table_name = connection.table_name

    def prepare(self, record: Record) -> Record:
        """Normalize and validate a record before it is written."""
        return record

    def declared_indexes(self) -> Tuple[IndexSpec, ...]:
        return self.model.INDEXES

    def create(self, **values) -> Record:
        """Build a record from field values and save it."""
        return self.save(self.model(**values))

    def create_many(self, values_list: List[Dict[str, Any]]) -> List[Record]:
        """Create records in order; stops at the first failure."""
        return [self.create(**values) for values in values_list]

    def save(self, record: Record) -> Record:
        """
        Validate and persist a new or previously loaded record.

        Args:
            record: Record to save

        Returns:
            The saved record, with id and timestamps set

        Raises:
            ValidationError: If the record fails validation (nothing is written)
            DuplicateKeyError: If a unique index already holds the values
        """
        self.prepare(record)

        is_new = record.is_new
        previous = (record.id, record.created_at, record.updated_at)
        now = datetime.now(timezone.utc)
        if is_new:
            record.id = record.id or str(uuid.uuid4())
            record.created_at = now
        record.updated_at = now

        item = self._record_to_item(record)
        record_put = {'TableName': self.table_name, 'Item': item}
        marker_indexes = []
        if is_new:
            # A new record must not replace one that already has its id
            record_put['ConditionExpression'] = 'attribute_not_exists(pk)'
            marker_indexes.append((0, ID_INDEX))
        transact_items = [{'Put': record_put}]

        for index in self.model.INDEXES:
            if not index.unique:
                continue
            new_key = self._marker_key(index, item)
            old_key = None
            if not is_new:
                old_key = self._marker_key(index, record._snapshot)
                if old_key == new_key:
                    continue

            transact_items.append({
                'Put': {
                    'TableName': self.table_name,
                    'Item': {
                        'pk': new_key,
                        'entity': MARKER_ENTITY,
                        'index': index.name,
                        'values': [str(item.get(name, '')) for name in index.fields],
                        'record_id': record.id
                    },
                    'ConditionExpression': 'attribute_not_exists(pk)'
                }
            })
            marker_indexes.append((len(transact_items) - 1, index))

            if old_key:
                transact_items.append({
                    'Delete': {
                        'TableName': self.table_name,
                        'Key': {'pk': old_key}
                    }
                })

        try:
            self.client.transact_write_items(TransactItems=transact_items)
        except ClientError as e:
            record.id, record.created_at, record.updated_at = previous
            if e.response.get('Error', {}).get('Code') == 'TransactionCanceledException':
                index = self._conflicting_index(e, marker_indexes)
                if index is not None:
                    key = {name: item.get(name) for name in index.fields}
                    logger.warning(
                        f"Duplicate key on {self.model.ENTITY} index "
                        f"{index.name}: {key}"
                    )
                    raise DuplicateKeyError(index.name, key) from e
            logger.error(f"Error saving {self.model.ENTITY} record: {e}")
            raise

        record.mark_persisted()
        logger.info(
            f"{'Created' if is_new else 'Updated'} {self.model.ENTITY} "
            f"record: {record.id}"
        )
        return record

    def find_by_id(self, record_id: str) -> Optional[Record]:
        """
        Retrieve one record by id.

        Returns:
            The record, or None if it does not exist
        """
        if not record_id:
            return None
        try:
            response = self.table.get_item(Key={'pk': self._record_key(record_id)})
        except ClientError as e:
            logger.error(f"Error reading {self.model.ENTITY} {record_id}: {e}")
            raise

        item = response.get('Item')
        if not item:
            return None
        return self._item_to_record(item)

    def find(
        self,
        sort_by: Optional[str] = None,
        descending: bool = False,
        **filters
    ) -> List[Record]:
        """
        Retrieve records whose fields equal the given filter values.

        Args:
            sort_by: Optional field name to sort the results by
            descending: Sort in descending order
            **filters: Field name to value equality filters

        Returns:
            List of matching records
        """
        records = [
            self._item_to_record(item)
            for item in self._scan(self._filter_expression(filters))
        ]

        if sort_by:
            self._check_field_names([sort_by])
            records.sort(
                key=lambda record: _sort_key(getattr(record, sort_by)),
                reverse=descending
            )
        return records

    def find_one(self, **filters) -> Optional[Record]:
        """Return the first record matching the filters, or None."""
        records = self.find(**filters)
        return records[0] if records else None

    def count(self, **filters) -> int:
        """Count records matching the filters."""
        total = 0
        scan_kwargs = {
            'FilterExpression': self._filter_expression(filters),
            'Select': 'COUNT'
        }
        try:
            response = self.table.scan(**scan_kwargs)
            total += response.get('Count', 0)

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **scan_kwargs
                )
                total += response.get('Count', 0)
        except ClientError as e:
            logger.error(f"Error counting {self.model.ENTITY} records: {e}")
            raise
        return total

    def update(self, record_id: str, **changes) -> Record:
        """
        Load a record, assign new field values and save it.

        Raises:
            NotFoundError: If no record has the id
        """
        self._check_field_names(changes)
        record = self.find_by_id(record_id)
        if record is None:
            raise NotFoundError(f"{self.model.__name__} {record_id} not found")

        for name, value in changes.items():
            setattr(record, name, value)
        return self.save(record)

    def delete(self, record_id: str) -> Record:
        """
        Delete a record and release its unique-index markers.

        Returns:
            The deleted record

        Raises:
            NotFoundError: If no record has the id
        """
        record = self.find_by_id(record_id)
        if record is None:
            raise NotFoundError(f"{self.model.__name__} {record_id} not found")

        item = self._record_to_item(record)
        transact_items = [{
            'Delete': {
                'TableName': self.table_name,
                'Key': {'pk': item['pk']}
            }
        }]
        for index in self.model.INDEXES:
            if index.unique:
                transact_items.append({
                    'Delete': {
                        'TableName': self.table_name,
                        'Key': {'pk': self._marker_key(index, item)}
                    }
                })

        try:
            self.client.transact_write_items(TransactItems=transact_items)
        except ClientError as e:
            logger.error(f"Error deleting {self.model.ENTITY} {record_id}: {e}")
            raise

        logger.info(f"Deleted {self.model.ENTITY} record: {record_id}")
        return record

    def delete_one(self, **filters) -> int:
        """
        Delete the first record matching the filters.

        Returns:
            Number of records deleted (0 or 1)
        """
        record = self.find_one(**filters)
        if record is None:
            return 0
        self.delete(record.id)
        return 1

    def _scan(self, filter_expression) -> List[dict]:
        try:
            response = self.table.scan(FilterExpression=filter_expression)
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    FilterExpression=filter_expression,
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error scanning {self.model.ENTITY} records: {e}")
            raise

        return items

    def _filter_expression(self, filters: Dict[str, Any]):
        self._check_field_names(filters)
        expression = Attr('entity').eq(self.model.ENTITY)
        for name, value in filters.items():
            if name in TIMESTAMP_FIELDS and isinstance(value, datetime):
                value = value.isoformat()
            expression = expression & Attr(name).eq(value)
        return expression

    def _check_field_names(self, names) -> None:
        known = set(self.model.schema_fields()) | set(self.model.SYSTEM_FIELDS)
        unknown = [name for name in names if name not in known]
        if unknown:
            raise ValueError(
                f"Unknown {self.model.__name__} field(s): {', '.join(unknown)}"
            )

    def _record_key(self, record_id: str) -> str:
        return f"{self.model.ENTITY}#{record_id}"

    def _marker_key(self, index: IndexSpec, values: dict) -> str:
        # Digest keeps the key under the 2048-byte hash key limit
        parts = [str(values.get(name, '')) for name in index.fields]
        digest = hashlib.sha256('\x1f'.join(parts).encode('utf-8')).hexdigest()
        return f"{self.model.ENTITY}#{MARKER_ENTITY}#{index.name}#{digest}"

    def _conflicting_index(
        self, error: ClientError, marker_indexes: List[Tuple[int, IndexSpec]]
    ) -> Optional[IndexSpec]:
        reasons = error.response.get('CancellationReasons') or []
        if not reasons:
            # Without reasons, report a value index ahead of the id
            value_indexes = [index for _, index in marker_indexes if index is not ID_INDEX]
            if value_indexes:
                return value_indexes[0]
            return marker_indexes[0][1] if marker_indexes else None
        for position, index in marker_indexes:
            if position < len(reasons) and \
                    reasons[position].get('Code') == 'ConditionalCheckFailed':
                return index
        return None

    def _record_to_item(self, record: Record) -> dict:
        """
        Convert a record to a DynamoDB item.

        None values are left out; timestamps are stored as ISO 8601 strings.
        """
        item = {
            'pk': self._record_key(record.id),
            'entity': self.model.ENTITY,
            'id': record.id
        }
        for name in self.model.schema_fields():
            value = getattr(record, name)
            if value is not None:
                item[name] = list(value) if isinstance(value, list) else value
        for name in TIMESTAMP_FIELDS:
            value = getattr(record, name)
            if value is not None:
                item[name] = value.isoformat()
        return item

    def _item_to_record(self, item: dict) -> Record:
        """Convert a DynamoDB item to a persisted record."""
        values = {
            name: item[name]
            for name in self.model.schema_fields()
            if name in item
        }
        record = self.model(**values)
        record.id = item['id']
        for name in TIMESTAMP_FIELDS:
            if item.get(name):
                setattr(record, name, datetime.fromisoformat(item[name]))
        record.mark_persisted()
        return record


class EventStore(RecordStore):
    """Store for Event records."""

    model = Event

    def __init__(self, connection: Connection):
        super().__init__(connection)
        self.validator = EventValidator()

    def prepare(self, record: Event) -> Event:
        return self.validator.prepare(record)

    def find_by_slug(self, slug: str) -> Optional[Event]:
        return self.find_one(slug=slug)


class BookingStore(RecordStore):
    """Store for Booking records."""

    model = Booking

    def __init__(self, connection: Connection, event_store: Optional[EventStore] = None):
        """
        Initialize store.

        Args:
            connection: Connection from the ConnectionCache
            event_store: EventStore used to resolve booking references
        """
        super().__init__(connection)
        self.event_store = event_store or EventStore(connection)
        self.validator = BookingValidator(find_event=self.event_store.find_by_id)

    def prepare(self, record: Booking) -> Booking:
        return self.validator.prepare(record)

    def populate_event(self, booking: Booking) -> Optional[Event]:
        """Return the Event a booking refers to, or None if it was deleted."""
        return self.event_store.find_by_id(booking.event_id)


def _sort_key(value: Any) -> tuple:
    # None sorts first
    return (value is not None, value)
