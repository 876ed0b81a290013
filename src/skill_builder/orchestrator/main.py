"""CLI entrypoint for the skill builder.

Runs workflow steps against the local JSON state and the `claude` CLI, or
serves the REST API.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from skill_builder import __version__
from skill_builder.orchestrator.agents.claude_cli import ClaudeCliAdapter
from skill_builder.orchestrator.config import WorkflowSettings
from skill_builder.orchestrator.logging import configure_logging
from skill_builder.orchestrator.workflow.actions import NotificationLevel, Notify
from skill_builder.orchestrator.workflow.coordinator import WorkflowCoordinator
from skill_builder.orchestrator.workflow.state_machine import StepStatus

logger = logging.getLogger(__name__)

# Exit codes beyond 0/1/2.
EXIT_STEP_FAILED = 4
EXIT_CONFIRMATION_REQUIRED = 3
EXIT_NOTHING_TO_DO = 5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="skill-builder",
        description="Drive the skill builder step workflow from the command line",
    )
    parser.add_argument("--version", action="version", version=f"skill-builder {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_skill_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--skill", required=True, help="Skill (artifact) name")
        sub.add_argument(
            "--domain",
            default=None,
            help="Domain description (only needed the first time a skill is opened)",
        )

    status = subparsers.add_parser("status", help="Show the workflow state of a skill")
    add_skill_args(status)

    run_step = subparsers.add_parser(
        "run-step", help="Start the current agent step and wait for it to finish"
    )
    add_skill_args(run_step)
    run_step.add_argument(
        "--resume",
        action="store_true",
        help="Continue from partial output left by an earlier run",
    )
    run_step.add_argument(
        "--poll-seconds",
        type=float,
        default=1.0,
        help="How often to check for agent completion",
    )

    complete_review = subparsers.add_parser(
        "complete-review", help="Complete the current human review step"
    )
    add_skill_args(complete_review)
    complete_review.add_argument(
        "--file",
        default=None,
        help="Review document to save verbatim (defaults to the current document)",
    )

    complete_last = subparsers.add_parser(
        "complete-last-step", help="Mark the final refinement step complete"
    )
    add_skill_args(complete_last)
    complete_last.add_argument("--skip", action="store_true", help="Record it as skipped")

    reset = subparsers.add_parser("reset", help="Reset the workflow back to an earlier step")
    add_skill_args(reset)
    reset.add_argument("--step", type=int, required=True, help="Step id to reset to")
    reset.add_argument(
        "--yes",
        action="store_true",
        help="Confirm the reset; without it only the preview is printed",
    )

    serve = subparsers.add_parser("serve", help="Run the REST API server")
    serve.add_argument("--host", default=None, help="Bind address (default from settings)")
    serve.add_argument("--port", type=int, default=None, help="Port (default from settings)")

    return parser


def _print_notifications(coordinator: WorkflowCoordinator) -> list[Notify]:
    drained = coordinator.drain_notifications()
    for notification in drained:
        stream = sys.stderr if notification.level is NotificationLevel.ERROR else sys.stdout
        print(notification.message, file=stream)
    return drained


def _print_status(coordinator: WorkflowCoordinator) -> None:
    view = coordinator.view()
    print(f"{view.artifact_name} ({view.domain or 'no domain'})")
    for step in view.steps:
        marker = ">" if step.id == view.current_step else " "
        print(f"{marker} {step.id}. {step.name:<20} {step.status.value}")
    if view.can_resume and view.partial_output is not None:
        print(f"Partial output found: {view.partial_output.path}")
    if view.terminal:
        print("Workflow complete.")


def _wait_for_step(
    coordinator: WorkflowCoordinator, adapter: ClaudeCliAdapter, poll_seconds: float
) -> None:
    while coordinator.snapshot.is_running:
        completion = adapter.wait_for_completion(timeout=poll_seconds)
        if completion is not None:
            coordinator.handle_agent_completion(
                completion.token, completion.success, completion.detail
            )
        _print_notifications(coordinator)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = WorkflowSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "serve":
            import uvicorn

            from skill_builder.server.app import create_app
            from skill_builder.server.config import ServerSettings

            server_settings = ServerSettings()
            uvicorn.run(
                create_app(settings=server_settings),
                host=args.host or server_settings.host,
                port=args.port or server_settings.port,
                log_config=None,
            )
            return 0

        adapter = ClaudeCliAdapter(
            binary=settings.agent_binary,
            skills_path=settings.skills_path,
            workspace_path=settings.workspace_path,
            timeout_seconds=settings.agent_timeout_seconds,
        )
        coordinator = WorkflowCoordinator.from_settings(settings, adapter=adapter)
        coordinator.open_artifact(args.skill, domain=args.domain)
        _print_notifications(coordinator)
        if not coordinator.snapshot.hydrated:
            return 1

        if args.command == "status":
            _print_status(coordinator)
            return 0

        if args.command == "run-step":
            step_id = coordinator.snapshot.current_step
            started = (
                coordinator.resume_step() if args.resume else coordinator.start_step()
            )
            if not started:
                print(f"Step {step_id} cannot be started from its current state")
                return EXIT_NOTHING_TO_DO
            logger.info("Waiting for agent", extra={"artifact": args.skill, "step_id": step_id})
            try:
                _wait_for_step(coordinator, adapter, args.poll_seconds)
            except KeyboardInterrupt:
                coordinator.unmount()
                _print_notifications(coordinator)
                print("Interrupted; step reverted to pending", file=sys.stderr)
                return 130
            _print_notifications(coordinator)
            status = coordinator.snapshot.status_of(step_id)
            coordinator.unmount()
            return 0 if status is StepStatus.COMPLETED else EXIT_STEP_FAILED

        if args.command == "complete-review":
            content = None
            if args.file is not None:
                with Path(args.file).open(encoding="utf-8", newline="") as fh:
                    content = fh.read()
            done = coordinator.complete_review_step(content)
            notes = _print_notifications(coordinator)
            if done:
                return 0
            failed = any(n.level is NotificationLevel.ERROR for n in notes)
            return 1 if failed else EXIT_NOTHING_TO_DO

        if args.command == "complete-last-step":
            done = coordinator.complete_last_step(skipped=args.skip)
            _print_notifications(coordinator)
            return 0 if done else EXIT_NOTHING_TO_DO

        if args.command == "reset":
            preview = coordinator.request_reset(args.step)
            if preview is None:
                print(f"Can only reset to a step before step {coordinator.snapshot.current_step}")
                return EXIT_NOTHING_TO_DO
            print(
                json.dumps(
                    {
                        "step_id": preview.step_id,
                        "affected": [
                            {"step_id": a.step_id, "step_name": a.step_name, "files": list(a.files)}
                            for a in preview.affected
                        ],
                    },
                    indent=2,
                )
            )
            if not args.yes:
                coordinator.cancel_reset()
                print("Re-run with --yes to discard these steps", file=sys.stderr)
                return EXIT_CONFIRMATION_REQUIRED
            coordinator.confirm_reset()
            _print_notifications(coordinator)
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
