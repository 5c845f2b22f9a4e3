"""Waiting for a stack to reach a terminal status.

CloudFormation offers no push notification for stack operations, so the
status is polled on a fixed interval until it matches a success or failure
pattern. The wait has no deadline of its own; callers bound it with a
:class:`Cancellation`, which may carry a timeout. Cancelling only stops the
wait, the remote operation keeps running.
"""
import enum
import re
import threading
import time
from typing import Any, Callable, Dict, Optional, Pattern, Union

import structlog
from botocore.exceptions import ClientError

from cf_reconcile.cloud import is_stack_missing
from cf_reconcile.errors import ConvergenceFailedError, Found, NotFound, PollCancelledError, StackNotFoundError

log = structlog.get_logger("cf-reconcile")

POLL_INTERVAL = 5

CREATE_OR_UPDATE_COMPLETE = re.compile(r"^(CREATE|UPDATE)_COMPLETE$")
CREATE_OR_UPDATE_FAILED = re.compile(r"^(.+_FAILED|.*ROLLBACK_COMPLETE)$")
DELETE_COMPLETE = re.compile(r"^DELETE_COMPLETE$")
DELETE_FAILED = re.compile(r"^DELETE_FAILED$")


class PollState(enum.Enum):
    WAITING = "WAITING"
    QUERYING = "QUERYING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATES = (PollState.SUCCEEDED, PollState.FAILED, PollState.CANCELLED)


class Cancellation:
    """Cancellation token shared between a waiting poller and its caller.

    ``timeout`` turns the token into a deadline measured from construction.
    """

    def __init__(self, timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._event = threading.Event()
        self._clock = clock
        self.deadline = clock() + timeout if timeout is not None else None

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and self._clock() >= self.deadline

    def raise_if_cancelled(self, stack_name: str):
        """Checked before starting a remote operation."""
        if self.cancelled:
            log.info("Cancelled before starting stack operation", name=stack_name)
            raise PollCancelledError(stack_name)

    def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early on cancel. Returns whether cancelled."""
        if self.deadline is not None:
            seconds = max(0.0, min(seconds, self.deadline - self._clock()))
        self._event.wait(seconds)
        return self.cancelled


class StackEventTracker:
    """Logs stack events that happened after the tracker was created."""

    def __init__(self, api, stack_name: str, verbose: bool = True):
        self.api = api
        self.stack_name = stack_name
        self.verbose = verbose
        self.start = time.time()
        self.seen_event_ids = set()

    def poll(self):
        try:
            events = self.api.describe_stack_events(self.stack_name)
        except ClientError as e:
            # A stack that finished deleting has no events to show
            if is_stack_missing(e, self.stack_name):
                return
            raise

        for event in reversed(events):
            event_id = event["EventId"]
            if event_id in self.seen_event_ids or event["Timestamp"].timestamp() <= self.start:
                continue
            (log.info if self.verbose else log.debug)(
                "Stack event",
                timestamp=event["Timestamp"],
                resource_status=event["ResourceStatus"],
                resource_type=event["ResourceType"],
                logical_resource_id=event["LogicalResourceId"],
            )
            self.seen_event_ids.add(event_id)


class CompletionPoller:

    def __init__(
        self,
        query: Callable[[str], Union[Found, NotFound]],
        success: Pattern,
        failure: Pattern,
        stack_name: str,
        cancellation: Optional[Cancellation] = None,
        interval: float = POLL_INTERVAL,
        events: Optional[StackEventTracker] = None,
    ):
        self.query = query
        self.success = success
        self.failure = failure
        self.stack_name = stack_name
        self.cancellation = cancellation or Cancellation()
        self.interval = interval
        self.events = events
        self.state = PollState.WAITING
        self.status: Optional[str] = None
        self.stack: Optional[Dict[str, Any]] = None

    def step(self) -> PollState:
        if self.state is PollState.WAITING:
            cancelled = self.cancellation.sleep(self.interval)
            self.state = PollState.CANCELLED if cancelled else PollState.QUERYING

        elif self.state is PollState.QUERYING:
            outcome = self.query(self.stack_name)
            if isinstance(outcome, NotFound):
                raise StackNotFoundError(self.stack_name)

            if self.events is not None:
                self.events.poll()

            self.stack = outcome.value
            status = self.stack["StackStatus"]
            if status != self.status:
                log.debug("Stack status", name=self.stack_name, status=status)
            self.status = status

            if self.success.search(status):
                self.state = PollState.SUCCEEDED
            elif self.failure.search(status):
                self.state = PollState.FAILED
            else:
                self.state = PollState.WAITING

        return self.state

    def run(self) -> Dict[str, Any]:
        while self.state not in TERMINAL_STATES:
            self.step()

        if self.state is PollState.FAILED:
            raise ConvergenceFailedError(status=self.status, stack_name=self.stack_name)
        if self.state is PollState.CANCELLED:
            log.warning("Stopped waiting for stack", name=self.stack_name, status=self.status)
            raise PollCancelledError(stack_name=self.stack_name, last_status=self.status)
        return self.stack


def wait_for(
    query: Callable[[str], Union[Found, NotFound]],
    success: Pattern,
    failure: Pattern,
    stack_name: str,
    cancellation: Optional[Cancellation] = None,
    interval: float = POLL_INTERVAL,
    events: Optional[StackEventTracker] = None,
) -> Dict[str, Any]:
    """Poll ``query`` until the stack status matches ``success`` or ``failure``.

    Returns the stack description that matched ``success``. Raises
    ConvergenceFailedError on ``failure``, PollCancelledError when the
    cancellation fires, and StackNotFoundError if the stack is gone.
    """
    return CompletionPoller(
        query, success, failure, stack_name,
        cancellation=cancellation, interval=interval, events=events,
    ).run()
