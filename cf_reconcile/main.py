#!/usr/bin/env python

import argparse
import glob
import logging
import os
import sys
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import structlog
import yaml
from tqdm import tqdm

from cf_reconcile.component import StackComponent
from cf_reconcile.errors import ValidationError
from cf_reconcile.models import DeploymentInputs
from cf_reconcile.poller import POLL_INTERVAL, Cancellation
from cf_reconcile.state import DEFAULT_STATE_DIR, FileStateStore
from cf_reconcile.utils.logging import configure_structlog

# Configure logging
configure_structlog()
log = structlog.get_logger("cf-reconcile")


def loading_config(patterns: List[str], arguments) -> Iterable[Tuple[str, DeploymentInputs]]:
    """Yield ``(component_id, inputs)`` for every config file matching ``patterns``.

    Component ids key the persisted state, so two configs resolving to the same
    id are rejected instead of sharing (and replacing) each other's stack.
    """
    seen_files = set()
    seen_ids = {}
    for pattern in patterns:
        for file_location in sorted(glob.glob(pattern, recursive=True)):
            resolved = os.path.realpath(file_location)
            if resolved in seen_files:
                continue
            seen_files.add(resolved)

            with open(file_location, "r") as config_file:
                log.debug("Loading config", file_location=file_location)
                document = yaml.safe_load(config_file) or {}

            component_id = document.pop("id", None) or Path(file_location).stem
            if component_id in seen_ids:
                raise ValidationError(
                    f"Component id {component_id} is used by both {seen_ids[component_id]} and {file_location}; "
                    "set a unique 'id' in one of them"
                )
            seen_ids[component_id] = file_location
            inputs = DeploymentInputs.model_validate(document)

            if not inputs.region and arguments.region:
                inputs.region = arguments.region

            # Template paths are relative to the config file
            if isinstance(inputs.template, str) and not inputs.template.startswith("s3://"):
                candidate = Path(file_location).parent / inputs.template
                if candidate.exists():
                    inputs.template = str(candidate)

            yield component_id, inputs


def run_component(component: StackComponent, inputs: DeploymentInputs, command: str, cancellation: Cancellation):
    if command == "deploy":
        outputs = component.deploy(inputs, cancellation=cancellation)
        log.info("Stack outputs", component=component.component_id, outputs=outputs)
        return outputs
    if command == "plan":
        return component.plan(inputs)
    return component.destroy(cancellation=cancellation)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile CloudFormation stacks with their declared configuration")
    parser.add_argument("command", choices=["deploy", "plan", "remove"], help="Action to perform")
    parser.add_argument("-c", "--config", required=True, help="Config file or multiple files when using a pattern", nargs="+")
    parser.add_argument("--state-dir", help="Directory holding persisted component state", default=DEFAULT_STATE_DIR)
    parser.add_argument("--profile", help="AWS profile to use", default=os.environ.get("AWS_PROFILE"))
    parser.add_argument("--region", help="AWS region for configs that do not set one", default=os.environ.get("AWS_DEFAULT_REGION"))
    parser.add_argument("--debug", help="Enable debug logging", action="store_true")
    parser.add_argument("--no-color", help="Disable coloured log output", action="store_true")
    parser.add_argument("--parallel", help="Process components in parallel", action="store_true")
    parser.add_argument("--concurrency", help="Number of components to process in parallel", default=8, type=int)
    parser.add_argument("--timeout", help="Stop waiting for stacks once the run has taken this many seconds", type=float)
    parser.add_argument("--poll-interval", help="Seconds between stack status checks", default=POLL_INTERVAL, type=float)
    parser.add_argument("--no-events", help="Do not print stack events while waiting", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    configure_structlog(logging.DEBUG if args.debug else logging.INFO, colors=False if args.no_color else None)

    state_store = FileStateStore(args.state_dir)
    cancellation = Cancellation(timeout=args.timeout)

    try:
        components = [
            (
                StackComponent(
                    component_id,
                    state_store=state_store,
                    profile=args.profile,
                    interval=args.poll_interval,
                    track_events=not args.no_events and not args.parallel,
                ),
                inputs,
            )
            for component_id, inputs in loading_config(args.config, args)
        ]

        if args.parallel:
            log.info("Processing components in parallel", count=len(components))
            with ThreadPoolExecutor(max_workers=args.concurrency) as executor, \
                    tqdm(total=len(components), desc="Stacks", unit="stack") as progress_bar:
                futures: List[Future] = [
                    executor.submit(run_component, component, inputs, args.command, cancellation)
                    for component, inputs in components
                ]
                try:
                    for future in as_completed(futures):
                        progress_bar.update(1)
                        # Raises if the component failed
                        future.result()
                except BaseException:
                    cancellation.cancel()
                    # Queued components never start; running ones stop at their next check
                    executor.shutdown(wait=False, cancel_futures=True)
                    raise
        else:
            for component, inputs in components:
                run_component(component, inputs, args.command, cancellation)
    except KeyboardInterrupt:
        log.warning("Interrupted; remote stack operations keep running")
        return 130
    except Exception as e:
        log.exception(e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
