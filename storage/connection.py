"""Cached DynamoDB connection shared across invocations in one process."""
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlparse

import boto3
from botocore.config import Config

from processor.errors import ConfigurationError
from settings import Settings, load_settings

logger = logging.getLogger(__name__)

URI_SCHEME = 'dynamodb'
DEFAULT_REGION = 'us-east-1'


@dataclass
class Connection:
    """Established handle to the record table."""
    uri: str
    table_name: str
    resource: Any
    table: Any
    client_config: Config

    @property
    def client(self):
        return self.resource.meta.client


@dataclass(frozen=True)
class DatabaseAddress:
    """Parsed form of a dynamodb:// connection URI."""
    table_name: str
    region: str
    endpoint_url: Optional[str]


def parse_database_uri(uri: str) -> DatabaseAddress:
    """
    Parse a connection URI of the form
    ``dynamodb://[host[:port]]/<table>[?region=<region>&tls=<true|false>]``.

    Without a host the default AWS endpoint for the region is used.

    Raises:
        ConfigurationError: If the scheme or table name is wrong
    """
    parsed = urlparse(uri)
    if parsed.scheme != URI_SCHEME:
        raise ConfigurationError(
            f"Unsupported database URI scheme '{parsed.scheme}', "
            f"expected '{URI_SCHEME}://'"
        )

    table_name = parsed.path.strip('/')
    if not table_name or '/' in table_name:
        raise ConfigurationError(
            f"Database URI must name exactly one table: {uri}"
        )

    params = parse_qs(parsed.query)
    region = params.get('region', [DEFAULT_REGION])[0]

    endpoint_url = None
    if parsed.netloc:
        tls = params.get('tls', ['false'])[0].lower() in ('1', 'true', 'yes')
        endpoint_url = f"{'https' if tls else 'http'}://{parsed.netloc}"

    return DatabaseAddress(
        table_name=table_name,
        region=region,
        endpoint_url=endpoint_url
    )


def build_client_config(settings: Settings) -> Config:
    """
    Botocore configuration for record store clients.

    A single total attempt means requests fail immediately while the store
    is unreachable instead of being retried in the background.
    """
    return Config(
        connect_timeout=settings.connect_timeout_seconds,
        retries={'total_max_attempts': 1, 'mode': 'standard'}
    )


def establish_connection(settings: Settings) -> Connection:
    """
    Open a DynamoDB resource for the configured table and verify the table.

    Args:
        settings: Settings carrying the database URI

    Returns:
        Connection for the table

    Raises:
        ConfigurationError: If the URI is malformed
        botocore.exceptions.ClientError: If the table cannot be described
    """
    address = parse_database_uri(settings.database_uri)
    client_config = build_client_config(settings)

    resource = boto3.resource(
        'dynamodb',
        region_name=address.region,
        endpoint_url=address.endpoint_url,
        config=client_config
    )
    table = resource.Table(address.table_name)
    # DescribeTable; fails fast when the endpoint or table is missing
    table.load()

    logger.info(
        f"Connected to DynamoDB table: {address.table_name}",
        extra={'region': address.region, 'endpoint_url': address.endpoint_url}
    )
    return Connection(
        uri=settings.database_uri,
        table_name=address.table_name,
        resource=resource,
        table=table,
        client_config=client_config
    )


class ConnectionCache:
    """
    Process-wide memo of one record store connection.

    The first caller to find no connection starts the establishment and
    publishes it as the pending attempt; callers arriving while it runs wait
    on the same attempt. A failed attempt is cleared so the next call starts
    over.
    """

    def __init__(
        self,
        connector: Callable[[Settings], Connection] = establish_connection,
        settings_loader: Callable[[], Settings] = load_settings
    ):
        self.connector = connector
        self.settings_loader = settings_loader
        self._lock = threading.Lock()
        self.connection: Optional[Connection] = None
        self.pending_attempt: Optional[Future] = None

    def acquire(self) -> Connection:
        """
        Return the cached connection, establishing it on first use.

        Raises:
            ConfigurationError: If DATABASE_URI is missing or empty
            Exception: Whatever the establishment attempt raised
        """
        with self._lock:
            if self.connection is not None:
                return self.connection

            attempt = self.pending_attempt
            owner = attempt is None
            if owner:
                settings = self.settings_loader()
                attempt = Future()
                self.pending_attempt = attempt

        if not owner:
            logger.debug("Waiting on pending connection attempt")
            return attempt.result()

        try:
            connection = self.connector(settings)
        except BaseException as e:
            # Waiters must never block on an attempt that will not finish
            logger.error(
                f"Failed to establish database connection: {e}",
                extra={'error_type': type(e).__name__}
            )
            with self._lock:
                self.pending_attempt = None
            attempt.set_exception(e)
            raise

        with self._lock:
            self.connection = connection
            self.pending_attempt = None
        attempt.set_result(connection)
        return connection

    def reset(self) -> None:
        """Forget the cached connection and any pending attempt."""
        with self._lock:
            self.connection = None
            self.pending_attempt = None


_default_cache: Optional[ConnectionCache] = None
_default_cache_lock = threading.Lock()


def get_connection_cache() -> ConnectionCache:
    """Return the process-wide ConnectionCache, creating it on first use."""
    global _default_cache
    with _default_cache_lock:
        if _default_cache is None:
            _default_cache = ConnectionCache()
        return _default_cache


def connect_db() -> Connection:
    """Acquire the process-wide record store connection."""
    return get_connection_cache().acquire()


def create_table(resource, table_name: str):
    """
    Create the single-table layout used by the record stores.

    Events, bookings and unique-index markers share one table keyed by the
    string attribute ``pk``.

    Args:
        resource: boto3 DynamoDB service resource (or a Connection)
        table_name: Name of the table to create

    Returns:
        boto3 Table resource, after the table exists
    """
    if isinstance(resource, Connection):
        resource = resource.resource

    table = resource.create_table(
        TableName=table_name,
        KeySchema=[
            {'AttributeName': 'pk', 'KeyType': 'HASH'}
        ],
        AttributeDefinitions=[
            {'AttributeName': 'pk', 'AttributeType': 'S'}
        ],
        BillingMode='PAY_PER_REQUEST'
    )
    table.wait_until_exists()
    logger.info(f"Created DynamoDB table: {table_name}")
    return table
