"""
CLI Module

Architectural Intent:
- Command-line interface for Shipyard
- Entry point for all user interactions
- Delegates to the coordinator and use cases via composition root
- Supports --verbose/--debug flags for log level control
"""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from typing import Optional

from shipyard.application.orchestration.pipeline_coordinator import (
    PipelineCoordinator,
    current_run_id,
)
from shipyard.composition_root import ShipyardContainer, create_container
from shipyard.domain.entities.pipeline_run import PipelineRun, RunStatus
from shipyard.domain.errors import PipelineError
from shipyard.domain.value_objects.image_reference import ImageReference
from shipyard.domain.value_objects.build_artifact import BuildArtifact
from shipyard.infrastructure.config import load_config
from shipyard.infrastructure.logging import configure_logging, parse_level
from shipyard.infrastructure.repositories.sqlite_run_store import SQLiteRunStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Shipyard: build-to-cluster deployment pipelines"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug output with tracebacks"
    )
    parser.add_argument(
        "--config", "-c", default=None, help="Path to config file (default: shipyard.json)"
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit structured JSON log lines"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser(
        "serve", help="Run the HTTP API that receives triggers and approvals"
    )
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Bind port")

    propagate_parser = subparsers.add_parser(
        "propagate", help="Commit an image reference to the configuration repository"
    )
    propagate_parser.add_argument("image", help="Image reference, e.g. org/app:42")

    deploy_parser = subparsers.add_parser(
        "deploy", help="Run CI then CD for an image and wait for the outcome"
    )
    deploy_parser.add_argument("image", help="Image reference, e.g. org/app:42")

    rollback_parser = subparsers.add_parser(
        "rollback", help="Replay the pipeline with a previously released tag"
    )
    rollback_parser.add_argument(
        "--image-repository", "-r", required=True, help="Image repository, e.g. org/app"
    )
    rollback_parser.add_argument("--tag", "-t", required=True, help="Prior image tag")

    status_parser = subparsers.add_parser("status", help="Show recorded runs")
    status_parser.add_argument("run_id", nargs="?", help="Run to show in detail")
    status_parser.add_argument(
        "--limit", "-n", type=int, default=20, help="Number of runs to list"
    )
    return parser


async def async_main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    # Configure logging based on flags
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    else:
        level = parse_level(config.log_level)
    configure_logging(level=level, json_format=args.json_logs, run_context=current_run_id)

    verbose = args.verbose or args.debug

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "status":
        return _show_status(config.store.path, args.run_id, args.limit)

    container = create_container(config)
    await container.start()
    try:
        if args.command == "serve":
            return await _serve(container, args.host, args.port)
        if args.command == "propagate":
            return await _propagate(container, args.image)
        if args.command == "deploy":
            image = ImageReference.parse(args.image)
            artifact = BuildArtifact(image.repository, image.tag, image.digest)
            print(f"[*] Deploying {image}...")
            run = await container.coordinator.start_ci(artifact)
            return await _follow(container.coordinator, run)
        if args.command == "rollback":
            print(f"[*] Rolling back to {args.image_repository}:{args.tag}...")
            run = await container.rollback.execute(args.image_repository, args.tag)
            return await _follow(container.coordinator, run)
    except PipelineError as e:
        print(f"[-] {e.reason}: {e.message}")
        if verbose:
            traceback.print_exc()
        return 1
    except ValueError as e:
        print(f"[-] Invalid input: {e}")
        return 2
    finally:
        await container.stop()

    parser.print_help()
    return 0


async def _serve(container: ShipyardContainer, host: Optional[str], port: Optional[int]) -> int:
    from shipyard.presentation.web.app import ShipyardWebApp

    app = ShipyardWebApp(
        container.coordinator,
        container.approval_gate,
        container.rollback,
        container.run_store,
    )
    await app.start(host or container.config.web.host, port or container.config.web.port)
    print(f"[*] Shipyard API listening on port {app.port}. Press Ctrl+C to stop.")
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        app.stop()
        print("\n[*] Shipyard API stopped.")
    return 0


async def _propagate(container: ShipyardContainer, image: str) -> int:
    config = container.config.configuration
    async with container.vcs.workspace_lock(config.workspace):
        await container.vcs.sync(config.url, config.workspace)
        result = await container.propagator.propagate(config.descriptor_path, image)
    if result.committed:
        print(f"[+] Committed {result.sha} after {result.attempts} attempt(s).")
    else:
        print(f"[=] {config.descriptor_path} already references {image}.")
    return 0


async def _follow(coordinator: PipelineCoordinator, run: PipelineRun) -> int:
    """Waits for a CI run and the CD run it triggers, printing each outcome."""
    while run is not None:
        print(f"[*] {run.kind.value} run {run.run_id} started")
        run = await coordinator.wait(run.run_id)
        _print_run(run)
        if run.status is not RunStatus.SUCCEEDED:
            return 1
        next_id = next(
            (
                e.detail.get("triggered_run_id")
                for e in run.stage_events
                if e.detail.get("triggered_run_id")
            ),
            None,
        )
        run = coordinator.get_status(next_id) if next_id else None
    return 0


def _print_run(run: PipelineRun) -> None:
    marker = "[+]" if run.status is RunStatus.SUCCEEDED else "[-]"
    print(f"{marker} {run.run_id} {run.status.name} ({run.duration_seconds:.1f}s)")
    for event in run.stage_events:
        print(f"    {event.stage:<24} {event.outcome.name}")
    if run.failure_reason:
        print(f"    reason: {run.failure_reason}: {run.failure_message}")
        if run.last_successful_stage:
            print(f"    last successful stage: {run.last_successful_stage}")


def _show_status(db_path: str, run_id: Optional[str], limit: int) -> int:
    store = SQLiteRunStore(db_path)
    store.connect()
    try:
        if run_id:
            run = store.get_run(run_id)
            if run is None:
                print(f"[-] Run {run_id} not found")
                return 1
            print(json.dumps(run, indent=2, default=str))
            return 0
        runs = store.list_runs(limit)
        if not runs:
            print("[*] No runs recorded.")
        for run in runs:
            print(
                f"{run['run_id']:<20} {run['kind']:<3} {run['status']:<18} "
                f"{run['image_ref'] or '-'}"
            )
        return 0
    finally:
        store.close()


def main():
    try:
        sys.exit(asyncio.run(async_main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
