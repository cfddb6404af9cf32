# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Grouping of a round's tool calls into concurrent and sequential batches."""

import asyncio

from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class CallGroup:
    parallel: bool
    indices: list[int]


def group_calls(calls: Sequence[T], is_parallel: Callable[[T], bool]) -> list[CallGroup]:
    """
    Split calls into groups, preserving order. Consecutive parallel-safe calls
    share a group; every other call is a group of its own.
    """
    groups: list[CallGroup] = []
    for i, call in enumerate(calls):
        if is_parallel(call):
            if groups and groups[-1].parallel:
                groups[-1].indices.append(i)
            else:
                groups.append(CallGroup(parallel=True, indices=[i]))
        else:
            groups.append(CallGroup(parallel=False, indices=[i]))
    return groups


async def run_bounded(
    items: Sequence[T],
    runner: Callable[[T], Awaitable[R]],
    max_concurrency: int,
) -> list[R]:
    """Run ``runner`` over ``items`` with at most ``max_concurrency`` in flight.
    Results come back in the order of ``items``."""
    semaphore = asyncio.Semaphore(max_concurrency)

    async def _bounded(item: T) -> R:
        async with semaphore:
            return await runner(item)

    return list(await asyncio.gather(*(_bounded(item) for item in items)))
