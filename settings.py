"""Environment configuration for the event booking data layer."""
import os
from dataclasses import dataclass

from processor.errors import ConfigurationError

DATABASE_URI_VAR = 'DATABASE_URI'


@dataclass
class Settings:
    """Settings read from environment variables."""
    database_uri: str
    log_level: str = 'INFO'
    connect_timeout_seconds: int = 5


def load_settings() -> Settings:
    """
    Read configuration from environment variables.

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If DATABASE_URI is missing or empty, or a
            numeric variable is not a number
    """
    database_uri = os.environ.get(DATABASE_URI_VAR, '').strip()
    if not database_uri:
        raise ConfigurationError(
            f"Please define the {DATABASE_URI_VAR} environment variable"
        )

    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    try:
        connect_timeout = int(os.environ.get('CONNECT_TIMEOUT_SECONDS', '5'))
    except ValueError:
        raise ConfigurationError(
            'CONNECT_TIMEOUT_SECONDS must be an integer'
        ) from None

    return Settings(
        database_uri=database_uri,
        log_level=log_level,
        connect_timeout_seconds=connect_timeout
    )
