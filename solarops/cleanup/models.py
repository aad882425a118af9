"""
Data models for cleanup and verification.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

DONE = "done"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class FoundResource:
    """An AWS resource found during teardown."""
    service: str  # "cloudformation", "vpc", "sg", "eni", "nat", "eip", "igw", "subnet", "rtb", "iam", ...
    arn_or_id: str
    tags: Dict[str, str] = field(default_factory=dict)
    reason: Optional[str] = None  # Why it was picked up (status, owning VPC, name prefix)


@dataclass
class StepOutcome:
    """Result of one teardown step."""
    name: str
    status: str  # DONE, SKIPPED or FAILED
    detail: str = ""
    resources: List[FoundResource] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == FAILED


@dataclass
class CleanupReport:
    """Ordered outcomes of a teardown run."""
    outcomes: List[StepOutcome] = field(default_factory=list)

    def add(self, outcome: StepOutcome) -> StepOutcome:
        self.outcomes.append(outcome)
        return outcome

    @property
    def failures(self) -> List[StepOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "steps": [
                {"name": o.name, "status": o.status, "detail": o.detail,
                 "resources": [r.arn_or_id for r in o.resources]}
                for o in self.outcomes
            ],
        }


@dataclass
class VerificationResult:
    """What is still left after teardown."""
    cluster_exists: bool = False
    stacks: List[str] = field(default_factory=list)
    vpcs: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (self.cluster_exists or self.stacks or self.vpcs)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["clean"] = self.clean
        return data
