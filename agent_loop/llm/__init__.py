# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""LLM integration: the client interface, the streaming delta reducer and the
OpenAI-compatible provider.
"""

import logging

from .base import LLMClient, ChatItem, Message
from .reducer import StreamReducer, merge_delta, reduce_chunks
from .providers import OpenAIProvider

# Quieten LLM API call logs to make stdout more useful
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)

__all__ = [
    "LLMClient",
    "ChatItem",
    "Message",
    "StreamReducer",
    "merge_delta",
    "reduce_chunks",
    "OpenAIProvider",
]
