# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import pytest

from agent_loop.__main__ import build_agent, run_plan, run_task, setup_parser

from tests.helpers import ScriptedClient, text_response


class TestCommandLine:
    def test_run_arguments(self, tmp_path):
        args = setup_parser().parse_args(
            ["--workdir", str(tmp_path), "--max-rounds", "7", "--no-correction", "run", "--prompt", "hi"]
        )

        assert args.command == "run"
        assert args.prompt == "hi"

        agent = build_agent(args)
        assert agent.loop_config.max_rounds == 7
        assert not agent.correction.enabled
        assert agent.workdir == tmp_path

    def test_prompt_is_required(self):
        with pytest.raises(SystemExit):
            setup_parser().parse_args(["run"])

    @pytest.mark.asyncio
    async def test_run_task(self, tmp_path, capsys):
        prompt_file = tmp_path / "prompt.txt"
        prompt_file.write_text("Summarise the repo")
        args = setup_parser().parse_args(
            ["--workdir", str(tmp_path), "--quiet", "run", "--prompt-file", str(prompt_file)]
        )
        agent = build_agent(args)
        agent.client = ScriptedClient([text_response("A small repo.")])

        code = await run_task(agent, args)

        assert code == 0
        assert "A small repo." in capsys.readouterr().out
        assert agent.client.calls[0]["messages"][-1].content == "Summarise the repo"

    @pytest.mark.asyncio
    async def test_run_plan(self, tmp_path, capsys):
        plan_file = tmp_path / "plan.json"
        plan_file.write_text(
            json.dumps(
                {
                    "original_prompt": "Add a README",
                    "phases": [
                        {"id": "draft", "name": "Draft"},
                        {"id": "review", "name": "Review", "depends_on": ["draft"]},
                    ],
                }
            )
        )
        args = setup_parser().parse_args(
            [
                "--workdir",
                str(tmp_path),
                "--quiet",
                "plan",
                str(plan_file),
                "--report-dir",
                str(tmp_path / "reports"),
            ]
        )
        agent = build_agent(args)
        agent.client = ScriptedClient([text_response("drafted"), text_response("reviewed")])

        code = await run_plan(agent, args)

        out = capsys.readouterr().out
        assert code == 0
        assert "2. Review" in out
        assert "**Results:** 2/2 phases successful" in out
        assert "Status report:" in out
