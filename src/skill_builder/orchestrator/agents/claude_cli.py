"""Agent adapter that runs each step through the `claude` CLI.

Every invocation runs in a daemon thread that owns the subprocess and posts
exactly one `AgentCompletion` when the process exits, times out, or fails to
launch after the thread has started. The coordinator never blocks on these
threads; it drains completions on its own turn.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import uuid
from pathlib import Path

from skill_builder.orchestrator.workflow.catalog import (
    DEFAULT_CATALOG,
    StepCatalog,
    resolve_model_id,
)

from .adapter import (
    AgentCompletion,
    AgentFlags,
    AgentStartError,
    CompletionQueue,
    StepResetPreview,
)

logger = logging.getLogger(__name__)


class ClaudeCliAdapter:
    def __init__(
        self,
        *,
        binary: str = "claude",
        catalog: StepCatalog = DEFAULT_CATALOG,
        skills_path: Path | None = None,
        workspace_path: Path | None = None,
        timeout_seconds: float = 1800.0,
        completions: CompletionQueue | None = None,
    ) -> None:
        self.binary = binary
        self.catalog = catalog
        self.skills_path = skills_path
        self.workspace_path = workspace_path
        self.timeout_seconds = timeout_seconds
        self.completions = completions or CompletionQueue()
        self._lock = threading.Lock()
        self._processes: dict[str, subprocess.Popen[str]] = {}

    def build_command(self, prompt: str, model: str | None) -> list[str]:
        command = [self.binary, "-p", prompt, "--output-format", "stream-json", "--verbose"]
        if model:
            command.extend(["--model", resolve_model_id(model)])
        return command

    def build_prompt(self, artifact_name: str, step_id: int, domain: str, flags: AgentFlags) -> str:
        step = self.catalog[step_id]
        lines = [
            f"Skill: {artifact_name}",
            f"Domain: {domain}",
            f"Step {step.id + 1}: {step.name}. {step.description}.",
        ]
        if step.output_files:
            lines.append("Write: " + ", ".join(step.output_files))
        if flags.resume:
            lines.append("Partial output already exists. Continue from it instead of starting over.")
        if flags.rerun:
            lines.append("This step ran before. Keep the existing output and revise it.")
        if flags.message:
            lines.append(f"User feedback: {flags.message}")
        return "\n".join(lines)

    def start(
        self,
        artifact_name: str,
        step_id: int,
        domain: str,
        workspace_path: Path | None,
        flags: AgentFlags,
    ) -> str:
        cwd = workspace_path / artifact_name if workspace_path is not None else None
        model = flags.model or self.catalog[step_id].model
        command = self.build_command(
            self.build_prompt(artifact_name, step_id, domain, flags), model
        )
        try:
            if cwd is not None:
                cwd.mkdir(parents=True, exist_ok=True)
            process = subprocess.Popen(
                command,
                cwd=str(cwd) if cwd is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as exc:
            raise AgentStartError(
                f"Agent binary not found: {self.binary}", step_id=step_id
            ) from exc
        except OSError as exc:
            raise AgentStartError(f"Could not start agent: {exc}", step_id=step_id) from exc

        token = uuid.uuid4().hex
        with self._lock:
            self._processes[artifact_name] = process

        thread = threading.Thread(
            target=self._wait_for_exit,
            name=f"agent-{artifact_name}-{step_id}-{token[:8]}",
            daemon=True,
            kwargs={"artifact_name": artifact_name, "token": token, "process": process},
        )
        thread.start()
        logger.info(
            "Agent started",
            extra={"artifact": artifact_name, "step_id": step_id, "run_token": token, "model": model},
        )
        return token

    def _wait_for_exit(
        self, *, artifact_name: str, token: str, process: subprocess.Popen[str]
    ) -> None:
        timeout = self.timeout_seconds or None
        try:
            _stdout, stderr = process.communicate(timeout=timeout)
            success = process.returncode == 0
            detail = None if success else (stderr or "").strip()[-2000:] or None
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            success = False
            detail = f"Agent timed out after {self.timeout_seconds}s"
        except Exception as exc:
            logger.exception("Agent run crashed", extra={"run_token": token})
            success = False
            detail = str(exc)
        finally:
            with self._lock:
                if self._processes.get(artifact_name) is process:
                    del self._processes[artifact_name]

        logger.info(
            "Agent finished",
            extra={"artifact": artifact_name, "run_token": token, "success": success},
        )
        self.completions.post(AgentCompletion(token=token, success=success, detail=detail))

    def cancel(self, artifact_name: str) -> None:
        with self._lock:
            process = self._processes.pop(artifact_name, None)
        if process is None or process.poll() is not None:
            return
        logger.info("Cancelling agent", extra={"artifact": artifact_name, "pid": process.pid})
        try:
            process.terminate()
        except ProcessLookupError:
            pass

    def poll_completions(self) -> list[AgentCompletion]:
        return self.completions.drain()

    def wait_for_completion(self, timeout: float | None = None) -> AgentCompletion | None:
        return self.completions.wait(timeout)

    def _output_roots(self, artifact_name: str) -> list[Path]:
        return [
            base / artifact_name
            for base in (self.skills_path, self.workspace_path)
            if base is not None
        ]

    def _existing_outputs(self, root: Path, relative: str) -> list[str]:
        path = root / relative
        if relative.endswith("/"):
            if not path.is_dir():
                return []
            return [f"{relative}{child.name}" for child in sorted(path.iterdir()) if child.is_file()]
        return [relative] if path.exists() else []

    def preview_reset(self, artifact_name: str, from_step: int) -> list[StepResetPreview]:
        """List the output files on disk that a reset from `from_step` discards."""

        roots = self._output_roots(artifact_name)
        previews: list[StepResetPreview] = []
        for step in self.catalog:
            if step.id < from_step:
                continue
            found: list[str] = []
            for relative in step.output_files:
                for root in roots:
                    for name in self._existing_outputs(root, relative):
                        if name not in found:
                            found.append(name)
            if found:
                previews.append(
                    StepResetPreview(step_id=step.id, step_name=step.name, files=tuple(found))
                )
        return previews

    def discard_outputs(self, artifact_name: str, from_step: int) -> list[str]:
        """Delete on-disk outputs of steps >= from_step; returns what was removed."""

        removed: list[str] = []
        previews = self.preview_reset(artifact_name, from_step)
        for root in self._output_roots(artifact_name):
            for preview in previews:
                for relative in preview.files:
                    try:
                        (root / relative).unlink()
                    except FileNotFoundError:
                        continue
                    if relative not in removed:
                        removed.append(relative)
        if removed:
            logger.info(
                "Discarded step outputs",
                extra={"artifact": artifact_name, "step_id": from_step, "files": removed},
            )
        return removed
