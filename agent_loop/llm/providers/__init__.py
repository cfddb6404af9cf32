# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Model providers."""

from .openai_provider import OpenAIProvider, to_native_tool

__all__ = ["OpenAIProvider", "to_native_tool"]
