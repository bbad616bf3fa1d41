from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class StreamEvent(BaseModel):
    """One `data:` frame from a backend event stream."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    stage: Optional[str] = None
    progress: Optional[float] = None
    message: Optional[str] = None
    category_index: Optional[int] = Field(None, alias="categoryIndex")
    category_name: Optional[str] = Field(None, alias="categoryName")
    category_progress: Optional[float] = Field(None, alias="categoryProgress")
    check_scores: Optional[Dict[str, float]] = Field(None, alias="checkScores")
    status: Optional[str] = None
    error: Optional[str] = None
    data: Any = None
    encoded: Optional[bool] = None

    @property
    def is_error(self) -> bool:
        return bool(self.error) or self.status == "failed"

    @property
    def is_complete(self) -> bool:
        return self.stage == "complete"
