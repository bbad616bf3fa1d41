from dataclasses import dataclass
from enum import Enum

class WizardStage(str, Enum):
    PACKAGE_SELECT = "package-select"
    TEMPLATE_SELECT = "template-select"
    CONTENT_QUALITY = "content-quality"
    KEYWORDS_SEMANTIC_SEO = "keywords-semantic-seo"
    TECHNICAL_SEO = "technical-seo"
    CORE_WEB_VITALS = "core-web-vitals"
    STRUCTURE_NAVIGATION = "structure-navigation"
    MOBILE_OPTIMIZATION = "mobile-optimization"
    VISUAL_QUALITY = "visual-quality"
    IMAGE_MEDIA_QUALITY = "image-media-quality"
    LOCAL_SEO = "local-seo"
    TRUST_SIGNALS = "trust-signals"
    SCHEMA_STRUCTURED_DATA = "schema-structured-data"
    ON_PAGE_SEO_STRUCTURE = "on-page-seo-structure"
    SECURITY = "security"
    BUILD = "build"
    REVIEW = "review"
    FINAL = "final"
    COMPLETED = "completed"

    def __str__(self) -> str:
        return self.value


class CategoryStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"
    FAILED = "failed"


class BlockStatus(str, Enum):
    PENDING = "pending"
    BUILDING = "building"
    COMPLETE = "complete"


@dataclass(frozen=True)
class CategoryDefinition:
    index: int
    key: str
    name: str
    stage: WizardStage


# Canonical audit order. `key` is the identifier the backend puts in `stage`.
CATEGORIES: tuple[CategoryDefinition, ...] = (
    CategoryDefinition(0, "content_quality", "Content Quality & Relevance", WizardStage.CONTENT_QUALITY),
    CategoryDefinition(1, "keywords_semantic_seo", "Keywords & Semantic SEO", WizardStage.KEYWORDS_SEMANTIC_SEO),
    CategoryDefinition(2, "technical_seo", "Technical SEO", WizardStage.TECHNICAL_SEO),
    CategoryDefinition(3, "core_web_vitals", "Core Web Vitals", WizardStage.CORE_WEB_VITALS),
    CategoryDefinition(4, "structure_navigation", "Structure & Navigation", WizardStage.STRUCTURE_NAVIGATION),
    CategoryDefinition(5, "mobile_optimization", "Mobile Optimization", WizardStage.MOBILE_OPTIMIZATION),
    CategoryDefinition(6, "visual_quality", "Visual Quality & Engagement", WizardStage.VISUAL_QUALITY),
    CategoryDefinition(7, "image_media_quality", "Image & Media Quality", WizardStage.IMAGE_MEDIA_QUALITY),
    CategoryDefinition(8, "local_seo", "Local SEO", WizardStage.LOCAL_SEO),
    CategoryDefinition(9, "trust_signals", "Trust Signals", WizardStage.TRUST_SIGNALS),
    CategoryDefinition(10, "schema_structured_data", "Schema & Structured Data", WizardStage.SCHEMA_STRUCTURED_DATA),
    CategoryDefinition(11, "on_page_seo_structure", "On-Page SEO Structure", WizardStage.ON_PAGE_SEO_STRUCTURE),
    CategoryDefinition(12, "security", "Security", WizardStage.SECURITY),
)

CATEGORY_COUNT = len(CATEGORIES)
CATEGORY_BY_KEY = {c.key: c for c in CATEGORIES}
CATEGORY_BY_STAGE = {c.stage: c for c in CATEGORIES}
CATEGORY_STAGES = tuple(c.stage for c in CATEGORIES)

STAGE_ORDER: tuple[WizardStage, ...] = (
    WizardStage.PACKAGE_SELECT,
    WizardStage.TEMPLATE_SELECT,
    *CATEGORY_STAGES,
    WizardStage.BUILD,
    WizardStage.REVIEW,
    WizardStage.FINAL,
)

INITIAL_STAGE = WizardStage.PACKAGE_SELECT
FIRST_CATEGORY_STAGE = CATEGORIES[0].stage

# Stages a snapshot may legitimately hold before any package was chosen.
PRE_PACKAGE_STAGES = frozenset({WizardStage.PACKAGE_SELECT})

# Markers of a finished project; resuming one forces a fresh start.
COMPLETED_STAGES = frozenset({WizardStage.COMPLETED})

BUILD_BLOCK_NAMES: tuple[str, ...] = (
    "Layout Structure",
    "Design System",
    "Content Generation",
    "Image Selection",
    "SEO Optimization",
    "Final Assembly",
)


def is_category_stage(stage: WizardStage) -> bool:
    return stage in CATEGORY_BY_STAGE


def previous_stage(stage: WizardStage) -> WizardStage | None:
    """Previous stage in canonical order, or None at the start / off the order."""
    try:
        position = STAGE_ORDER.index(stage)
    except ValueError:
        return None
    if position == 0:
        return None
    return STAGE_ORDER[position - 1]


def next_category_stage(index: int) -> WizardStage | None:
    if index + 1 >= CATEGORY_COUNT:
        return None
    return CATEGORIES[index + 1].stage
