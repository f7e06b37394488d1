"""
Progress Channel

One-way stream of progress events. The orchestrator publishes, callers
subscribe; subscribers cannot slow down or cancel a run.
"""

import sys
import json
import time
import logging
from typing import List, Dict, Any, Callable, Optional
from dataclasses import dataclass, field


logger = logging.getLogger(__name__)

STAGE_PROGRESS: Dict[str, int] = {
    'upload': 10,
    'extract': 50,
    'anchor': 60,
    'stitch': 70,
    'validate': 85,
    'output': 95,
    'complete': 100,
}


def get_stage_progress(stage: str) -> int:
    """Nominal percentage for a stage name (50 for unknown stages)."""
    return STAGE_PROGRESS.get(stage.lower(), 50)


@dataclass
class ProgressEvent:
    stage: str
    status: str  # 'in_progress', 'complete', 'error'
    progress: int
    message: str = ''
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stage': self.stage,
            'status': self.status,
            'progress': self.progress,
            'message': self.message
        }


ProgressSubscriber = Callable[[ProgressEvent], None]


class ProgressChannel:
    """
    Progress events of one run, kept in order.

    Reported progress never goes backwards: an event with a lower percentage
    than the previous one is published with the previous percentage.
    """

    def __init__(self, subscribers: Optional[List[ProgressSubscriber]] = None):
        self._subscribers: List[ProgressSubscriber] = list(subscribers or [])
        self.events: List[ProgressEvent] = []

    def subscribe(self, subscriber: ProgressSubscriber) -> None:
        self._subscribers.append(subscriber)

    @property
    def current_progress(self) -> int:
        return self.events[-1].progress if self.events else 0

    def publish(self, event: ProgressEvent) -> ProgressEvent:
        if event.progress < self.current_progress:
            event.progress = self.current_progress
        self.events.append(event)

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                # Observers must not break the run they observe
                logger.warning(f"Progress subscriber failed: {e}")
        return event

    def emit(self, stage: str, status: str = 'in_progress', progress: Optional[int] = None,
             message: str = '') -> ProgressEvent:
        if progress is None:
            progress = get_stage_progress(stage)
        return self.publish(ProgressEvent(stage=stage, status=status, progress=progress, message=message))


def print_progress(event: ProgressEvent) -> None:
    """Send progress update to stdout"""
    progress_msg = {**event.to_dict(), "status": "progress", "stage_status": event.status}
    print(json.dumps(progress_msg))
    sys.stdout.flush()
