# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Command line entrypoint: ``python -m agent_loop run ...`` or
``python -m agent_loop plan ...``.
"""

import sys
import signal
import asyncio
import logging
import argparse

from pathlib import Path

from .agent import Agent
from .config import LoopConfig, SelfCorrectionConfig, settings
from .planning import format_plan_result, format_plan_summary
from .types.agent_types import TaskInput
from .types.plan_types import TaskPlan

logging.captureWarnings(True)
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)


def setup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agent_loop")
    parser.add_argument(
        "--workdir", type=str, default=None, help="Directory the tools operate in"
    )
    parser.add_argument(
        "--max-rounds", type=int, default=None, help="Tool rounds allowed per task"
    )
    parser.add_argument(
        "--timeout", type=float, default=None, help="Seconds before a task is cancelled"
    )
    parser.add_argument(
        "--no-correction",
        action="store_true",
        help="Disable reflection-and-retry on failure",
    )
    parser.add_argument(
        "--quiet", action="store_true", help="Do not print lifecycle events"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a single task")
    prompt_group = run_parser.add_mutually_exclusive_group(required=True)
    prompt_group.add_argument("--prompt", type=str, help="The task prompt")
    prompt_group.add_argument(
        "--prompt-file", type=str, help="A file containing the task prompt"
    )
    run_parser.add_argument("--name", type=str, default="task", help="Name of the task")

    plan_parser = subparsers.add_parser("plan", help="Execute a JSON plan file")
    plan_parser.add_argument(
        "plan_file",
        type=str,
        help="JSON file with an 'original_prompt' and a list of 'phases'",
    )
    plan_parser.add_argument(
        "--report-dir",
        type=str,
        default=None,
        help="Where the markdown status report is written",
    )

    return parser


def build_agent(args: argparse.Namespace) -> Agent:
    overrides = {}
    if args.max_rounds is not None:
        overrides["max_rounds"] = args.max_rounds
    if args.timeout is not None:
        overrides["timeout"] = args.timeout

    return Agent(
        workdir=Path(args.workdir) if args.workdir else None,
        loop_config=LoopConfig(**overrides),
        correction_config=SelfCorrectionConfig(enabled=not args.no_correction),
        report_dir=Path(args.report_dir) if getattr(args, "report_dir", None) else None,
        log_events=not args.quiet,
    )


async def run_task(agent: Agent, args: argparse.Namespace) -> int:
    prompt = args.prompt if args.prompt else Path(args.prompt_file).read_text()
    result = await agent.execute_task(TaskInput(name=args.name, prompt=prompt))
    print(result)
    if result.correction and result.correction.exhaustion_message:
        print(result.correction.exhaustion_message)
    return 0 if result.success else 1


async def run_plan(agent: Agent, args: argparse.Namespace) -> int:
    plan = TaskPlan.model_validate_json(Path(args.plan_file).read_text())
    for i, phase in enumerate(plan.phases):
        if phase.index == 0 and i > 0:
            phase.index = i
    print(format_plan_summary(plan))
    result = await agent.execute_plan(plan)
    print(format_plan_result(result))
    if result.report_path:
        print(f"Status report: {result.report_path}")
    return 0 if result.success else 1


async def main() -> int:
    parser = setup_parser()
    args = parser.parse_args()
    agent = build_agent(args)

    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, agent.abort)
    except NotImplementedError:
        logger.debug("Signal handlers not supported on this platform")

    if args.command == "run":
        return await run_task(agent, args)
    elif args.command == "plan":
        return await run_plan(agent, args)
    return 2


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
