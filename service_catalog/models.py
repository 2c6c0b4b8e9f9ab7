# service_catalog/models.py
"""
Shapes crossing the editor core's boundary.

Tree nodes and question configs stay plain dicts (they are the wire JSON);
the documents and results built around them are pydantic models. Field
aliases are the camelCase names used on the wire.
"""
import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Section = Literal["services", "questions", "branding", "metadata"]
SECTIONS = ("services", "questions", "branding", "metadata")


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class NormalizedDocument(WireModel):
    """
    Flat, id-keyed form of a booking form.

    nodes:     id -> {"id", "type", "label", "parentId", "childIds" | "questionIds", ...}
    questions: id -> {"id", "serviceId", "config", "order"}
    """
    id: Optional[str] = Field(None, description="Form id")
    name: str = Field("", description="Internal form name")
    slug: str = Field("", description="Public URL slug")
    theme: Optional[str] = Field(None, description="light | dark")
    primary_color: Optional[str] = Field(None, alias="primaryColor", description="#RRGGBB")
    nodes: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    questions: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    base_questions: List[Dict[str, Any]] = Field(default_factory=list, alias="baseQuestions")
    root_id: str = Field(..., alias="rootId")
    is_dirty: bool = Field(False, alias="isDirty")
    last_saved: Optional[datetime] = Field(None, alias="lastSaved")


WATCHED_FIELDS = ("internalName", "slug", "serviceTree", "baseQuestions", "theme", "primaryColor")


class AutosaveDocument(WireModel):
    """
    The nested wire document handed to the persistence collaborator. Only the
    WATCHED_FIELDS take part in change detection.
    """
    id: Optional[str] = None
    internal_name: str = Field("", alias="internalName")
    slug: str = ""
    service_tree: Optional[Dict[str, Any]] = Field(None, alias="serviceTree")
    base_questions: List[Dict[str, Any]] = Field(default_factory=list, alias="baseQuestions")
    theme: Optional[str] = None
    primary_color: Optional[str] = Field(None, alias="primaryColor")

    def content_hash(self) -> str:
        wire = self.to_wire()
        watched = {k: wire.get(k) for k in WATCHED_FIELDS}
        canonical = json.dumps(watched, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ValidationIssue(WireModel):
    id: str = Field(..., description="Stable per-issue id, e.g. service-no-employees-<nodeId>")
    type: Literal["error", "warning"] = "error"
    code: str
    message: str
    section: Section
    path: Optional[str] = Field(None, description="Breadcrumb of ancestor labels")
    node_id: Optional[str] = Field(None, alias="nodeId")
    field_name: Optional[str] = Field(None, alias="fieldName")


class SectionState(WireModel):
    has_errors: bool = Field(False, alias="hasErrors")
    error_count: int = Field(0, alias="errorCount")


class ValidationResult(WireModel):
    is_valid: bool = Field(..., alias="isValid")
    can_publish: bool = Field(..., alias="canPublish")
    issues: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    section_state: Dict[str, SectionState] = Field(default_factory=dict, alias="sectionState")

    def codes(self) -> List[str]:
        return [i.code for i in self.issues]


class NavigationTarget(WireModel):
    level: str
    node_id: Optional[str] = Field(None, alias="nodeId")


class PendingOperation(WireModel):
    id: str
    timestamp: float
    operation_kind: str = Field(..., alias="operationKind")
    prior_snapshot: NormalizedDocument = Field(..., alias="priorSnapshot")


class AutosaveState(WireModel):
    status: Literal["idle", "dirty", "saving", "error"] = "idle"
    is_saving: bool = Field(False, alias="isSaving")
    is_dirty: bool = Field(False, alias="isDirty")
    last_saved: Optional[datetime] = Field(None, alias="lastSaved")
    errors: List[str] = Field(default_factory=list)
    retry_count: int = Field(0, alias="retryCount")
