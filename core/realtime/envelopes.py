"""
Parsing of aiCompletionResponse pushes.

The server wraps the completion payload in several envelope shapes. Each
shape has a matcher; the first matcher that finds the
`aiCompletionResponse` key wins.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from core.constants import COMPLETION_OPERATION_NAME, NULL_SENTINELS
from core.types import AiCompletionResponse

logger = logging.getLogger(__name__)

_MISSING = object()


class EnvelopeShape(str, Enum):
    MESSAGE_RESULT_DATA = "message.result.data"
    MESSAGE = "message"
    RESULT_DATA = "result.data"
    BARE = "bare"


@dataclass(frozen=True)
class CompletionEnvelope:
    """A matched envelope; `response` is None for placeholder pushes."""

    shape: EnvelopeShape
    response: Optional[AiCompletionResponse]

    @property
    def is_placeholder(self) -> bool:
        return self.response is None


def _dig(payload: Any, *path: str) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return _MISSING
        node = node[key]
    return node


def _matcher(*path: str) -> Callable[[Any], Any]:
    return lambda payload: _dig(payload, *path, COMPLETION_OPERATION_NAME)


_MATCHERS: list[tuple[EnvelopeShape, Callable[[Any], Any]]] = [
    (EnvelopeShape.MESSAGE_RESULT_DATA, _matcher("message", "result", "data")),
    (EnvelopeShape.MESSAGE, _matcher("message")),
    (EnvelopeShape.RESULT_DATA, _matcher("result", "data")),
    (EnvelopeShape.BARE, _matcher()),
]


def parse_completion_envelope(
    payload: Union[dict[str, Any], str, bytes],
) -> Optional[CompletionEnvelope]:
    """
    Match a realtime payload against the known envelope shapes.

    Returns:
        The matched envelope, or None when no shape matches or the payload
        cannot be decoded
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            logger.warning("Discarding undecodable realtime payload")
            return None

    for shape, match in _MATCHERS:
        value = match(payload)
        if value is _MISSING:
            continue

        if value is None or (isinstance(value, str) and value in NULL_SENTINELS):
            return CompletionEnvelope(shape=shape, response=None)

        if not isinstance(value, dict):
            logger.warning("Unexpected %s payload type: %s", shape.value, type(value).__name__)
            return None

        try:
            return CompletionEnvelope(
                shape=shape,
                response=AiCompletionResponse.model_validate(value),
            )
        except ValidationError as exc:
            logger.warning("Discarding malformed completion response: %s", exc)
            return None

    return None
