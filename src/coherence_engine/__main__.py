"""Entry point for `python -m coherence_engine` and the `coherence` CLI script."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from dotenv import load_dotenv

from coherence_engine.discovery import load_discovery_file
from coherence_engine.engine import CoherenceEngine, CycleReport
from coherence_engine.errors import CoherenceError
from coherence_engine.settings import EngineSettings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Keep generated artifacts coherent with their source entities")
    parser.add_argument("command", choices=["check", "sync", "watch"], help="check: plan only, sync: plan and apply, watch: sync on every change")
    parser.add_argument("--discovery", type=Path, required=True, help="JSON document listing entities and their artifacts")
    parser.add_argument(
        "--project-root",
        type=Path,
        default=None,
        help="Root directory artifacts are written under (default: COHERENCE_PROJECT_ROOT or cwd)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser.parse_args(argv)


def _print_report(report: CycleReport) -> None:
    print(json.dumps({"status": report.status, "applied": report.applied, "summary": report.plan.summary.as_dict()}))


def _resolve_discovery(path: Path, project_root: Path) -> Path:
    return path if path.is_absolute() else project_root / path


async def _watch(engine: CoherenceEngine, settings: EngineSettings, discovery_path: Path) -> None:
    session = engine.watch(
        lambda _root: load_discovery_file(discovery_path),
        debounce_ms=settings.debounce_ms,
        ignore=settings.watch_ignore,
        on_cycle=lambda report, _paths: _print_report(report),
        force_polling=settings.force_polling or None,
    )
    try:
        await session.wait()
    finally:
        session.close()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        project_root = (args.project_root or Path.cwd()).resolve()
        load_dotenv(project_root / ".env")
        settings = EngineSettings.from_env()
        if args.project_root is None:
            project_root = settings.project_root_path.resolve()
        if not project_root.is_dir():
            raise FileNotFoundError(f"Project root does not exist: {project_root}")
        discovery_path = _resolve_discovery(args.discovery, project_root)
        inputs = load_discovery_file(discovery_path)
    except (OSError, ValueError) as exc:
        logging.error("Unable to load engine input: %s", exc)
        return 1

    engine = CoherenceEngine.from_settings(settings, project_root=project_root)
    try:
        if args.command == "check":
            report = engine.check(inputs)
            _print_report(report)
            return 1 if report.status == "pending" else 0

        report = engine.run_cycle(inputs)
        _print_report(report)
        if args.command == "watch":
            asyncio.run(_watch(engine, settings, discovery_path))
    except KeyboardInterrupt:
        return 0
    except (CoherenceError, ValueError, OSError) as exc:
        logging.error("Coherence cycle failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
