from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from gerrit_provisioning.schemas import AccountSpec


class StepStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of one provisioning step on one instance."""
    step: str
    status: StepStatus
    message: str
    changed: bool = False

    @property
    def ok(self) -> bool:
        return self.status != StepStatus.FAILED


@dataclass
class InstanceReport:
    """All step outcomes for a single Gerrit instance."""
    slug: str
    container_id: str
    steps: List[StepResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps)

    def step(self, name: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.step == name:
                return result
        return None

    @property
    def group_member(self) -> bool:
        result = self.step("group membership")
        return result is not None and result.status == StepStatus.SUCCESS

    @property
    def failures(self) -> List[StepResult]:
        return [step for step in self.steps if step.status == StepStatus.FAILED]


@dataclass
class ProvisioningReport:
    """Aggregated outcome of a provisioning run."""
    account: AccountSpec
    key_lines: List[str]
    custom_account: bool = False
    instances: List[InstanceReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(instance.ok for instance in self.instances)
