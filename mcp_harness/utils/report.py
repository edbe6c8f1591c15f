# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Result records collected during a harness run."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class StepStatus(Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"
    WARN = "WARN"


@dataclass
class CallOutcome:
    name: str
    status: StepStatus
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    elapsed_time: float = 0.0


@dataclass
class HarnessReport:
    """Everything the final summary needs to know about a run."""

    target_kind: str
    target_identity: str
    server_url: str
    session_id: Optional[str] = None
    server_name: Optional[str] = None
    server_version: Optional[str] = None
    tool_count: Optional[int] = None
    outcomes: List[CallOutcome] = field(default_factory=list)
    target_logs: List[str] = field(default_factory=list)

    def add(self, outcome: CallOutcome) -> CallOutcome:
        self.outcomes.append(outcome)
        return outcome

    def count(self, status: StepStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def soft_failures(self) -> List[CallOutcome]:
        return [o for o in self.outcomes if o.status in (StepStatus.FAIL, StepStatus.WARN)]
