"""Exception types for the inbox_events library."""

from __future__ import annotations


class PersistenceError(Exception):
    """Backend failure while appending, querying, snapshotting or computing stats."""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class PersistenceErrorCodes:
    """PersistenceError codes."""

    APPEND_FAILED: str = "APPEND_FAILED"
    VERSION_CONFLICT: str = "VERSION_CONFLICT"
    FETCH_FAILED: str = "FETCH_FAILED"
    SNAPSHOT_FAILED: str = "SNAPSHOT_FAILED"
    STATS_FAILED: str = "STATS_FAILED"


class HandlerError(Exception):
    """A subscriber failed (or timed out) while handling a published event.

    The bus builds these for logging only; they never reach the publisher.
    """

    def __init__(
        self,
        event_id: str | None,
        event_type: str,
        handler_name: str,
        cause: BaseException,
    ) -> None:
        self.event_id = event_id
        self.event_type = event_type
        self.handler_name = handler_name
        super().__init__(
            f"handler {handler_name} failed for {event_type} ({event_id}): {cause!r}"
        )
        self.__cause__ = cause


class WebhookDeliveryError(Exception):
    """A single webhook delivery attempt failed."""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class WebhookDeliveryErrorCodes:
    """WebhookDeliveryError codes."""

    HTTP_ERROR: str = "HTTP_ERROR"
    TRANSPORT_ERROR: str = "TRANSPORT_ERROR"


class ConfigError(Exception):
    """Configuration could not be read, parsed or validated."""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class ConfigErrorCodes:
    """ConfigError codes."""

    READ_FILE: str = "READ_FILE_ERROR"
    PARSE_YAML: str = "PARSE_YAML_ERROR"
    VALIDATION: str = "VALIDATION_ERROR"
