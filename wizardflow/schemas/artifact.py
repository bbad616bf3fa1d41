from typing import Any, Dict
from pydantic import BaseModel, ConfigDict, Field


class SharedAssets(BaseModel):
    styles: str = ""
    script: str = ""


class GeneratedArtifact(BaseModel):
    """Canonical multi-file site produced by the generation job."""
    model_config = ConfigDict(populate_by_name=True)

    manifest: Dict[str, Any] = {}
    files: Dict[str, str] = {}
    shared_assets: SharedAssets = Field(default_factory=SharedAssets, alias="sharedAssets")

    @property
    def primary_path(self) -> str | None:
        for candidate in ("index.html", "/index.html", "pages/home.html"):
            if candidate in self.files:
                return candidate
        return next(iter(self.files), None)
