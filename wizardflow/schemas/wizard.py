from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from wizardflow.core.workflow import INITIAL_STAGE, WizardStage
from wizardflow.schemas.jobs import utcnow


class WizardState(BaseModel):
    stage: WizardStage = INITIAL_STAGE
    current_page: str = "project-overview"
    selected_package: Optional[str] = None
    requirements: Dict[str, Any] = {}
    messages: List[Dict[str, Any]] = []
    stage_history: List[WizardStage] = []
    selected_design_template: Optional[Dict[str, Any]] = None
    selected_content_template: Optional[Dict[str, Any]] = None
    image_source: str = "stock"
    redesign_count: int = 0
    generated_artifact: Optional[Dict[str, Any]] = None
    page_keywords: List[str] = []
    generated_images: List[Dict[str, Any]] = []
    seo_assessment: Optional[Dict[str, Any]] = None
    redo_requests: List[str] = []
    investigation_results: Optional[Dict[str, Any]] = None


class PersistedSnapshot(WizardState):
    saved_at: datetime = Field(default_factory=utcnow)

    def to_state(self) -> WizardState:
        fields = {name: getattr(self, name) for name in WizardState.model_fields}
        try:
            return WizardState.model_validate(fields)
        except ValidationError:
            # final snapshots are restored even when other fields are damaged
            return WizardState.model_construct(**fields)


class InvestigationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic: str = Field(..., examples=["Acme Corp"])
    business_type: Optional[str] = Field(None, alias="businessType")
    services: List[str] = []
    location: Optional[str] = None
    target_audience: Optional[str] = Field(None, alias="targetAudience")
    descriptors: Dict[str, Any] = {}
    resume_from_category: Optional[int] = Field(None, alias="resumeFromCategory", ge=0, le=12)


class GenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    requirements: Dict[str, Any] = {}
    investigation: Optional[Dict[str, Any]] = None
    selected_design_templates: List[Dict[str, Any]] = Field([], alias="selectedDesignTemplates")
    selected_content_templates: List[Dict[str, Any]] = Field([], alias="selectedContentTemplates")
