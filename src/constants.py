"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    CONFIG_ERROR = 4


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    LOG_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
    LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    ENV_LOG_LEVEL = "UNIGATE_LOG_LEVEL"
    ENV_LOG_FORMAT = "UNIGATE_LOG_FORMAT"

    PROXY_HOST = "127.0.0.1"
    PROXY_PORT = 8080
    REQUEST_TIMEOUT = 30  # Timeout in seconds for upstream requests
    MAX_REDIRECTS = 5
    CLIENT_MAX_SIZE = 10 * 1024 * 1024
    CONNECTION_LIMIT = 100
    STREAM_CHUNK_SIZE = 64 * 1024

    USER_AGENT = "unigate/1.0"
    ADMIN_PREFIX = "/_unigate"
    HEALTH_PATH = ADMIN_PREFIX + "/health"
    PLATFORMS_PATH = ADMIN_PREFIX + "/platforms"
    CONFIG_SECTION = "unigate"
