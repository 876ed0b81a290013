"""Console entrypoint shim; the CLI lives in `skill_builder.orchestrator.main`."""

from __future__ import annotations

from skill_builder.orchestrator.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
