"""
Inbound frame validation.

Checks run cheapest first: size, JSON decoding, nesting depth and string
lengths, then the typed event schema. Every failure raises
EventValidationError with a specific ErrorType so the client can tell an
oversized frame from a malformed one.
"""

import json
from typing import Any

from pydantic import ValidationError

from ..error_types import ErrorType
from ..exceptions import EventValidationError
from ..structured_logging.enhanced_logging_config import get_logger
from .events import InboundEvent, inbound_event_adapter

logger = get_logger(__name__)


class WebSocketMessageValidator:
    """Validates raw event-channel frames and parses them into InboundEvent variants."""

    MAX_MESSAGE_SIZE = 10 * 1024
    MAX_JSON_DEPTH = 10
    MAX_JSON_STRING_LENGTH = 4000

    def __init__(
        self,
        max_message_size: int | None = None,
        max_json_depth: int | None = None,
        max_string_length: int | None = None,
    ):
        self.max_message_size = max_message_size or self.MAX_MESSAGE_SIZE
        self.max_json_depth = max_json_depth or self.MAX_JSON_DEPTH
        self.max_string_length = max_string_length or self.MAX_JSON_STRING_LENGTH

    def validate_size(self, data: str) -> None:
        size = len(data.encode("utf-8"))
        if size > self.max_message_size:
            raise EventValidationError(
                f"Message size {size} bytes exceeds maximum {self.max_message_size} bytes",
                error_type=ErrorType.MESSAGE_TOO_LARGE,
                details={"size": size, "max_size": self.max_message_size},
            )

    def validate_json_structure(self, message: Any) -> None:
        depth = self._calculate_depth(message)
        if depth > self.max_json_depth:
            raise EventValidationError(
                f"JSON depth {depth} exceeds maximum {self.max_json_depth}",
                error_type=ErrorType.INVALID_FORMAT,
            )
        self._validate_string_lengths(message)

    def _calculate_depth(self, obj: Any, current_depth: int = 0) -> int:
        if current_depth > self.max_json_depth:
            return current_depth
        if isinstance(obj, dict) and obj:
            return max(self._calculate_depth(v, current_depth + 1) for v in obj.values())
        if isinstance(obj, list) and obj:
            return max(self._calculate_depth(item, current_depth + 1) for item in obj)
        return current_depth

    def _validate_string_lengths(self, obj: Any) -> None:
        if isinstance(obj, dict):
            for key, value in obj.items():
                if isinstance(key, str) and len(key) > self.max_string_length:
                    raise EventValidationError(
                        f"String key length {len(key)} exceeds maximum {self.max_string_length}",
                        error_type=ErrorType.INVALID_FORMAT,
                    )
                self._validate_string_lengths(value)
        elif isinstance(obj, list):
            for item in obj:
                self._validate_string_lengths(item)
        elif isinstance(obj, str) and len(obj) > self.max_string_length:
            raise EventValidationError(
                f"String length {len(obj)} exceeds maximum {self.max_string_length}",
                error_type=ErrorType.INVALID_FORMAT,
            )

    def parse_event(self, message: Any) -> InboundEvent:
        """Validate a decoded frame against the inbound event union."""
        if not isinstance(message, dict):
            raise EventValidationError("Message must be a JSON object", error_type=ErrorType.INVALID_FORMAT)
        try:
            return inbound_event_adapter.validate_python(message)
        except ValidationError as e:
            errors = e.errors(include_url=False, include_input=False)
            logger.debug(
                "Event schema validation failed",
                event_kind=message.get("type"),
                error_count=len(errors),
            )
            first = errors[0] if errors else {}
            raise EventValidationError(
                f"Invalid {message.get('type', 'event')} payload",
                field=".".join(str(part) for part in first.get("loc", ())) or None,
                details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in errors]},
            ) from e

    def parse_and_validate(self, data: str) -> InboundEvent:
        """
        Run every check on a raw text frame and return the typed event.

        Raises:
            EventValidationError: On the first failing check
        """
        self.validate_size(data)
        try:
            message = json.loads(data)
        except json.JSONDecodeError as e:
            raise EventValidationError(f"Invalid JSON: {e.msg}", error_type=ErrorType.INVALID_FORMAT) from e
        self.validate_json_structure(message)
        return self.parse_event(message)
