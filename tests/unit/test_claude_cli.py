from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from skill_builder.orchestrator.agents.adapter import AgentFlags, AgentStartError, CompletionQueue
from skill_builder.orchestrator.agents.claude_cli import ClaudeCliAdapter


def _touch(path: Path, content: str = "x") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_build_command_resolves_model_shorthand() -> None:
    adapter = ClaudeCliAdapter(binary="claude")
    command = adapter.build_command("do it", "opus")
    assert command[:3] == ["claude", "-p", "do it"]
    assert command[-2:] == ["--model", "claude-opus-4-6"]
    assert "--model" not in adapter.build_command("do it", None)


def test_build_prompt_mentions_step_and_flags() -> None:
    adapter = ClaudeCliAdapter()
    prompt = adapter.build_prompt(
        "demo", 2, "sales", AgentFlags(resume=True, message="more tables")
    )
    assert "Skill: demo" in prompt
    assert "Domain: sales" in prompt
    assert "Step 3: Perform Research" in prompt
    assert "context/clarifications.md" in prompt
    assert "Partial output already exists" in prompt
    assert "User feedback: more tables" in prompt


def test_missing_binary_raises_start_error(tmp_path: Path) -> None:
    adapter = ClaudeCliAdapter(binary=str(tmp_path / "no-such-agent"))
    with pytest.raises(AgentStartError) as excinfo:
        adapter.start("demo", 0, "sales", tmp_path / "workspace", AgentFlags())
    assert excinfo.value.step_id == 0
    assert adapter.poll_completions() == []


def test_unusable_workspace_raises_start_error(tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"
    workspace.write_text("not a directory", encoding="utf-8")
    adapter = ClaudeCliAdapter(binary="claude")
    with pytest.raises(AgentStartError) as excinfo:
        adapter.start("demo", 1, "sales", workspace, AgentFlags())
    assert excinfo.value.step_id == 1
    assert adapter.poll_completions() == []


@pytest.mark.skipif(shutil.which("true") is None or shutil.which("false") is None, reason="needs coreutils")
def test_each_run_posts_exactly_one_completion(tmp_path: Path) -> None:
    completions = CompletionQueue()
    ok = ClaudeCliAdapter(binary=shutil.which("true") or "true", completions=completions)
    token = ok.start("demo", 0, "sales", tmp_path / "workspace", AgentFlags())

    completion = ok.wait_for_completion(timeout=10)
    assert completion is not None
    assert completion.token == token
    assert completion.success
    assert (tmp_path / "workspace" / "demo").is_dir()
    assert ok.poll_completions() == []

    failing = ClaudeCliAdapter(binary=shutil.which("false") or "false", completions=completions)
    token = failing.start("demo", 0, "sales", None, AgentFlags())
    completion = failing.wait_for_completion(timeout=10)
    assert completion is not None
    assert completion.token == token
    assert not completion.success


def test_cancel_without_a_process_is_a_noop() -> None:
    ClaudeCliAdapter().cancel("demo")


def test_preview_reset_lists_existing_outputs(tmp_path: Path) -> None:
    skills, workspace = tmp_path / "skills", tmp_path / "workspace"
    _touch(skills / "demo" / "context" / "clarifications-concepts.md")
    _touch(workspace / "demo" / "context" / "clarifications-concepts.md")
    _touch(workspace / "demo" / "context" / "decisions.md")
    _touch(workspace / "demo" / "skill" / "references" / "a.md")
    adapter = ClaudeCliAdapter(skills_path=skills, workspace_path=workspace)

    previews = adapter.preview_reset("demo", 0)

    assert [(p.step_id, p.files) for p in previews] == [
        (0, ("context/clarifications-concepts.md",)),
        (4, ("context/decisions.md",)),
        (5, ("skill/references/a.md",)),
    ]
    assert previews[1].step_name == "Reasoning"
    assert [p.step_id for p in adapter.preview_reset("demo", 4)] == [4, 5]


def test_discard_outputs_removes_files_of_later_steps(tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"
    concepts = workspace / "demo" / "context" / "clarifications-concepts.md"
    decisions = workspace / "demo" / "context" / "decisions.md"
    _touch(concepts)
    _touch(decisions)
    adapter = ClaudeCliAdapter(workspace_path=workspace)

    removed = adapter.discard_outputs("demo", 4)

    assert removed == ["context/decisions.md"]
    assert concepts.exists()
    assert not decisions.exists()
