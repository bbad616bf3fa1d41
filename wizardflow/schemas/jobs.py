from datetime import datetime, timezone
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from wizardflow.core.workflow import (
    BlockStatus,
    CATEGORIES,
    CATEGORY_COUNT,
    CategoryStatus,
    WizardStage,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CategoryJob(BaseModel):
    name: str
    key: str
    index: int = Field(..., ge=0, lt=CATEGORY_COUNT)
    stage: WizardStage
    status: CategoryStatus = CategoryStatus.PENDING
    progress: float = Field(0, ge=0, le=100)
    check_scores: Dict[str, float] = {}
    error: Optional[str] = None

    @classmethod
    def initial(cls, index: int) -> "CategoryJob":
        definition = CATEGORIES[index]
        return cls(
            name=definition.name,
            key=definition.key,
            index=definition.index,
            stage=definition.stage,
        )


class BuildBlock(BaseModel):
    name: str
    status: BlockStatus = BlockStatus.PENDING


class PhaseRecord(BaseModel):
    name: str
    index: Optional[int] = None
    status: str = "running"
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def close(self, status: str) -> None:
        self.status = status
        self.ended_at = utcnow()


class ProgressSnapshot(BaseModel):
    """Persisted investigation progress, valid only for the topic it was taken for."""
    topic: str
    saved_at: datetime
    jobs: List[CategoryJob]

    @field_validator("jobs")
    @classmethod
    def _canonical_jobs(cls, jobs: List[CategoryJob]) -> List[CategoryJob]:
        if len(jobs) != CATEGORY_COUNT:
            raise ValueError(f"expected {CATEGORY_COUNT} category jobs, got {len(jobs)}")
        for position, job in enumerate(jobs):
            definition = CATEGORIES[position]
            if job.index != position or job.key != definition.key or job.stage != definition.stage:
                raise ValueError(f"category job {position} is out of canonical order")
        return jobs
