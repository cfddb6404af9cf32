# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from enum import Enum
from datetime import datetime
from dataclasses import field, dataclass


class EventType(Enum):
    # Task lifecycle
    TASK_STARTED = "task-started"
    TASK_COMPLETED = "task-completed"
    TASK_FAILED = "task-failed"

    # Round lifecycle
    ROUND_STARTED = "round:started"
    ROUND_COMPLETED = "round:completed"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"

    # Streaming, emitted by the reducer as chunks arrive
    CONTENT = "content"
    REASONING = "reasoning"
    TOOL_CALL_READY = "tool-call-ready"
    TOKEN_COUNT = "token-count"

    # Plans
    PHASE_STARTED = "phase:started"
    PHASE_COMPLETED = "phase:completed"
    PHASE_FAILED = "phase:failed"

    # Self-correction
    CORRECTION_ATTEMPT = "correction:attempt"
    CORRECTION_EXHAUSTED = "correction:exhausted"

    APPLICATION_ERROR = "application_error"
    APPLICATION_WARNING = "application_warning"


LIFECYCLE_EVENTS = frozenset(
    {
        EventType.TASK_STARTED,
        EventType.TASK_COMPLETED,
        EventType.TASK_FAILED,
        EventType.ROUND_STARTED,
        EventType.ROUND_COMPLETED,
        EventType.TOOL_CALL,
        EventType.TOOL_RESULT,
        EventType.PHASE_STARTED,
        EventType.PHASE_COMPLETED,
        EventType.PHASE_FAILED,
    }
)

STREAMING_EVENTS = frozenset(
    {
        EventType.CONTENT,
        EventType.REASONING,
        EventType.TOOL_CALL_READY,
        EventType.TOKEN_COUNT,
    }
)


@dataclass
class Event:
    """Base class for all events in the stream"""

    type: EventType
    content: str
    metadata: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
