# service_catalog/validation.py
"""
Validation engine for a booking form configuration.

validate_form_configuration(config) never raises: every problem is returned
as a ValidationIssue tagged with a stable code and a section
(services | questions | branding | metadata). A form can be published (and a
live form can be saved) only when there are no issues. Warnings are reported
separately and never block.

`config` is the wire document:

    {"internalName", "slug", "serviceTree", "baseQuestions", "theme", "primaryColor"}
"""
import re
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from service_catalog.field_types import (
    ADDRESS_SUBFIELDS,
    CHOICE_TYPES,
    CONTACT_SUBFIELDS,
    KNOWN_TYPES,
    required_subfields,
)
from service_catalog.models import (
    SECTIONS,
    AutosaveDocument,
    SectionState,
    ValidationIssue,
    ValidationResult,
)
from service_catalog.node_ops import GROUP, ROOT, SERVICE, Node, node_type

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 50
THEMES = ("light", "dark")


class IssueCode(str, Enum):
    # metadata
    MISSING_INTERNAL_NAME = "MISSING_INTERNAL_NAME"
    MISSING_SLUG = "MISSING_SLUG"
    INVALID_SLUG_CHARS = "INVALID_SLUG_CHARS"
    INVALID_SLUG_EDGES = "INVALID_SLUG_EDGES"
    INVALID_SLUG_DOUBLE_HYPHEN = "INVALID_SLUG_DOUBLE_HYPHEN"
    SLUG_TOO_SHORT = "SLUG_TOO_SHORT"
    SLUG_TOO_LONG = "SLUG_TOO_LONG"
    # tree
    MISSING_SERVICE_TREE = "MISSING_SERVICE_TREE"
    EMPTY_SERVICE_TREE = "EMPTY_SERVICE_TREE"
    DUPLICATE_NODE_ID = "DUPLICATE_NODE_ID"
    # services / groups
    SERVICE_MISSING_NAME = "SERVICE_MISSING_NAME"
    SERVICE_NO_EMPLOYEES = "SERVICE_NO_EMPLOYEES"
    SERVICE_INVALID_DURATION = "SERVICE_INVALID_DURATION"
    SERVICE_INVALID_PRICE = "SERVICE_INVALID_PRICE"
    SERVICE_INVALID_INTERVAL = "SERVICE_INVALID_INTERVAL"
    GROUP_MISSING_NAME = "GROUP_MISSING_NAME"
    # questions
    QUESTION_MISSING_LABEL = "QUESTION_MISSING_LABEL"
    QUESTION_MISSING_NAME = "QUESTION_MISSING_NAME"
    QUESTION_MISSING_TYPE = "QUESTION_MISSING_TYPE"
    QUESTION_DUPLICATE_NAME = "QUESTION_DUPLICATE_NAME"
    QUESTION_DUPLICATE_ID = "QUESTION_DUPLICATE_ID"
    QUESTION_NO_OPTIONS = "QUESTION_NO_OPTIONS"
    QUESTION_EMPTY_OPTIONS = "QUESTION_EMPTY_OPTIONS"
    QUESTION_OPTION_MISSING_VALUE = "QUESTION_OPTION_MISSING_VALUE"
    QUESTION_OPTION_MISSING_LABEL = "QUESTION_OPTION_MISSING_LABEL"
    QUESTION_DUPLICATE_OPTION_VALUES = "QUESTION_DUPLICATE_OPTION_VALUES"
    INVALID_CONTACT_SUBFIELDS = "INVALID_CONTACT_SUBFIELDS"
    INVALID_ADDRESS_SUBFIELDS = "INVALID_ADDRESS_SUBFIELDS"
    # branding
    INVALID_THEME = "INVALID_THEME"
    INVALID_PRIMARY_COLOR = "INVALID_PRIMARY_COLOR"
    # warnings
    MISSING_DESCRIPTION = "MISSING_DESCRIPTION"
    MISSING_PRICE = "MISSING_PRICE"
    EMPTY_GROUP = "EMPTY_GROUP"
    UNKNOWN_QUESTION_TYPE = "UNKNOWN_QUESTION_TYPE"
    # submitted answers
    REQUIRED_FIELD_EMPTY = "REQUIRED_FIELD_EMPTY"
    REQUIRED_SUBFIELD_EMPTY = "REQUIRED_SUBFIELD_EMPTY"
    INVALID_NUMBER = "INVALID_NUMBER"
    INVALID_ARRAY_TYPE = "INVALID_ARRAY_TYPE"
    INVALID_BOOLEAN_TYPE = "INVALID_BOOLEAN_TYPE"
    INVALID_OBJECT_TYPE = "INVALID_OBJECT_TYPE"


class _Collector:
    """Accumulates issues and warnings in discovery order."""

    def __init__(self) -> None:
        self.errors: List[ValidationIssue] = []
        self.warnings: List[ValidationIssue] = []

    def error(self, issue_id: str, code: IssueCode, message: str, section: str, **extra) -> None:
        self.errors.append(ValidationIssue(id=issue_id, type="error", code=code.value,
                                           message=message, section=section, **extra))

    def warn(self, issue_id: str, code: IssueCode, message: str, section: str, **extra) -> None:
        self.warnings.append(ValidationIssue(id=issue_id, type="warning", code=code.value,
                                             message=message, section=section, **extra))


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    return str(value).strip() == ""


def _as_number(value: Any) -> Optional[float]:
    """Numbers pass through; "$1,200.50"-style strings are parsed; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace("$", "").replace(",", "").strip())
        except ValueError:
            return None
    return None


# -----------------------
# Metadata
# -----------------------

def _slug_issues(slug: str, out: _Collector) -> None:
    if not SLUG_PATTERN.match(slug):
        out.error("metadata-invalid-slug-chars", IssueCode.INVALID_SLUG_CHARS,
                  "Slug can only contain lowercase letters, numbers, and hyphens", "metadata")
    if slug.startswith("-") or slug.endswith("-"):
        out.error("metadata-invalid-slug-edges", IssueCode.INVALID_SLUG_EDGES,
                  "Slug cannot start or end with a hyphen", "metadata")
    if "--" in slug:
        out.error("metadata-invalid-slug-double", IssueCode.INVALID_SLUG_DOUBLE_HYPHEN,
                  "Slug cannot contain consecutive hyphens", "metadata")
    if len(slug) < SLUG_MIN_LENGTH:
        out.error("metadata-slug-too-short", IssueCode.SLUG_TOO_SHORT,
                  f"Slug must be at least {SLUG_MIN_LENGTH} characters long", "metadata")
    if len(slug) > SLUG_MAX_LENGTH:
        out.error("metadata-slug-too-long", IssueCode.SLUG_TOO_LONG,
                  f"Slug cannot be longer than {SLUG_MAX_LENGTH} characters", "metadata")


def _validate_metadata(internal_name: Any, slug: Any, out: _Collector) -> None:
    if _is_blank(internal_name):
        out.error("metadata-missing-name", IssueCode.MISSING_INTERNAL_NAME,
                  "Form must have an internal name", "metadata")
    if _is_blank(slug):
        out.error("metadata-missing-slug", IssueCode.MISSING_SLUG,
                  "Form must have a URL slug", "metadata")
    else:
        _slug_issues(str(slug), out)


def validate_slug(slug: Any) -> ValidationResult:
    out = _Collector()
    if _is_blank(slug):
        out.error("metadata-missing-slug", IssueCode.MISSING_SLUG, "Slug is required", "metadata")
    else:
        _slug_issues(str(slug), out)
    return _result(out)


# -----------------------
# Service tree
# -----------------------

def _display_name(node: Node) -> str:
    label = node.get("label")
    if not _is_blank(label):
        return str(label)
    kind = node_type(node)
    if kind == SERVICE:
        return "Unnamed Service"
    if kind == GROUP:
        return "Unnamed Group"
    if kind == ROOT:
        return "Start"
    return "Unnamed Item"


def has_any_services(node: Node) -> bool:
    if node_type(node) == SERVICE:
        return True
    return any(has_any_services(child) for child in node.get("children") or [])


def _validate_service_node(node: Node, path: str, out: _Collector) -> None:
    node_id = node.get("id")
    label = node.get("label")
    scope = {"path": path, "nodeId": node_id}

    if _is_blank(label):
        out.error(f"service-missing-name-{node_id}", IssueCode.SERVICE_MISSING_NAME,
                  "Service must have a name", "services", **scope)

    # a service nobody can deliver cannot take bookings
    if not node.get("assignedEmployeeIds"):
        out.error(f"service-no-employees-{node_id}", IssueCode.SERVICE_NO_EMPLOYEES,
                  f'Service "{label}" has no assigned employees', "services", **scope)

    duration = _as_number(node.get("duration"))
    if duration is None or duration <= 0:
        out.error(f"service-invalid-duration-{node_id}", IssueCode.SERVICE_INVALID_DURATION,
                  f'Service "{label}" must have a valid duration', "services", **scope)

    raw_price = node.get("price")
    if raw_price is not None and raw_price != "":
        price = _as_number(raw_price)
        if price is None or price < 0:
            out.error(f"service-invalid-price-{node_id}", IssueCode.SERVICE_INVALID_PRICE,
                      f'Service "{label}" price cannot be negative', "services", **scope)
    else:
        out.warn(f"service-missing-price-{node_id}", IssueCode.MISSING_PRICE,
                 "Service node should have pricing information", "services", **scope)

    interval = _as_number(node.get("interval"))
    if interval and duration and interval > duration:
        out.error(f"service-invalid-interval-{node_id}", IssueCode.SERVICE_INVALID_INTERVAL,
                  f'Service "{label}" booking interval cannot exceed service duration', "services", **scope)

    if _is_blank(node.get("description")):
        out.warn(f"service-missing-description-{node_id}", IssueCode.MISSING_DESCRIPTION,
                 "Service node should have a description for better user experience", "services", **scope)

    additional = node.get("additionalQuestions") or []
    if additional:
        _validate_question_list(additional, out, node_id=node_id, path=f"{path} Questions")


def _validate_group_node(node: Node, path: str, out: _Collector) -> None:
    node_id = node.get("id")
    if _is_blank(node.get("label")):
        out.error(f"group-missing-name-{node_id}", IssueCode.GROUP_MISSING_NAME,
                  "Group must have a name", "services", path=path, nodeId=node_id)
    if not node.get("children"):
        out.warn(f"group-empty-{node_id}", IssueCode.EMPTY_GROUP,
                 "Group node has no children - consider removing or adding services",
                 "services", path=path, nodeId=node_id)


def _validate_node(node: Node, path: str, seen_ids: Set[str], out: _Collector) -> None:
    node_path = f"{path} > {_display_name(node)}" if path else _display_name(node)
    node_id = node.get("id")

    # one id set for the whole walk: the second occurrence is reported
    if node_id:
        if node_id in seen_ids:
            out.error(f"node-duplicate-{node_id}", IssueCode.DUPLICATE_NODE_ID,
                      f"Duplicate node ID: {node_id}", "services", path=node_path, nodeId=node_id)
        seen_ids.add(node_id)

    kind = node_type(node)
    if kind == SERVICE:
        _validate_service_node(node, node_path, out)
    elif kind == GROUP:
        _validate_group_node(node, node_path, out)

    for child in node.get("children") or []:
        _validate_node(child, node_path, seen_ids, out)


def _validate_service_tree(tree: Optional[Node], out: _Collector) -> None:
    if not tree:
        out.error("services-missing-tree", IssueCode.MISSING_SERVICE_TREE,
                  "Service tree is required", "services")
        return
    if not has_any_services(tree):
        out.error("services-empty-tree", IssueCode.EMPTY_SERVICE_TREE,
                  "Form must have at least one service", "services")
    _validate_node(tree, "", set(), out)


# -----------------------
# Questions
# -----------------------

def _validate_options(question: Dict[str, Any], issue_prefix: str, scope: Dict[str, Any], out: _Collector) -> None:
    label = question.get("label")
    options = question.get("options")
    if not isinstance(options, list):
        out.error(f"{issue_prefix}-no-options", IssueCode.QUESTION_NO_OPTIONS,
                  f'Question "{label}" must have options', "questions", **scope)
        return
    if not options:
        out.error(f"{issue_prefix}-empty-options", IssueCode.QUESTION_EMPTY_OPTIONS,
                  f'Question "{label}" has no options to choose from', "questions", **scope)
        return

    seen_values: Set[str] = set()
    duplicates: List[str] = []
    for index, option in enumerate(options):
        option = option if isinstance(option, dict) else {}
        value = option.get("value")
        if _is_blank(value):
            out.error(f"{issue_prefix}-option-{index}-missing-value", IssueCode.QUESTION_OPTION_MISSING_VALUE,
                      f"Option {index + 1} is missing value", "questions", **scope)
        elif str(value) in seen_values:
            duplicates.append(str(value))
        else:
            seen_values.add(str(value))
        if _is_blank(option.get("label")):
            out.error(f"{issue_prefix}-option-{index}-missing-label", IssueCode.QUESTION_OPTION_MISSING_LABEL,
                      f"Option {index + 1} is missing label", "questions", **scope)
    if duplicates:
        out.error(f"{issue_prefix}-duplicate-option-values", IssueCode.QUESTION_DUPLICATE_OPTION_VALUES,
                  f"Duplicate option values found: {', '.join(duplicates)}", "questions", **scope)


def _validate_compound(question: Dict[str, Any], issue_prefix: str, scope: Dict[str, Any], out: _Collector) -> None:
    field_type = question.get("type")
    allowed = CONTACT_SUBFIELDS if field_type == "contact-info" else ADDRESS_SUBFIELDS
    invalid = [f for f in required_subfields(question) if f not in allowed]
    if not invalid:
        return
    if field_type == "contact-info":
        out.error(f"{issue_prefix}-invalid-contact-subfields", IssueCode.INVALID_CONTACT_SUBFIELDS,
                  f"Invalid contact info subfields: {', '.join(invalid)}", "questions", **scope)
    else:
        out.error(f"{issue_prefix}-invalid-address-subfields", IssueCode.INVALID_ADDRESS_SUBFIELDS,
                  f"Invalid address subfields: {', '.join(invalid)}", "questions", **scope)


def _validate_question_list(
    questions: Iterable[Dict[str, Any]],
    out: _Collector,
    node_id: Optional[str] = None,
    path: Optional[str] = None,
) -> None:
    seen_names: Set[str] = set()
    seen_ids: Set[str] = set()
    prefix_root = f"service-{node_id}-question" if node_id else "question"

    for index, question in enumerate(questions):
        question = question if isinstance(question, dict) else {}
        question_id = question.get("id") or f"#{index}"
        name = question.get("name")
        label = question.get("label")
        issue_prefix = f"{prefix_root}-{question_id}"
        scope: Dict[str, Any] = {"fieldName": name or None}
        if node_id:
            scope["nodeId"] = node_id
        if path:
            scope["path"] = path

        if _is_blank(label):
            out.error(f"{issue_prefix}-missing-label", IssueCode.QUESTION_MISSING_LABEL,
                      f"Question {index + 1} is missing a label", "questions", **scope)
        if _is_blank(name):
            out.error(f"{issue_prefix}-missing-name", IssueCode.QUESTION_MISSING_NAME,
                      f'Question "{label}" is missing a field name', "questions", **scope)
        if _is_blank(question.get("type")):
            out.error(f"{issue_prefix}-missing-type", IssueCode.QUESTION_MISSING_TYPE,
                      f'Question "{label}" is missing a type', "questions", **scope)

        if not _is_blank(name):
            if name in seen_names:
                out.error(f"{issue_prefix}-duplicate-name", IssueCode.QUESTION_DUPLICATE_NAME,
                          f"Duplicate field name: {name}", "questions", **scope)
            seen_names.add(name)

        if question.get("id"):
            if question["id"] in seen_ids:
                out.error(f"{issue_prefix}-duplicate-id", IssueCode.QUESTION_DUPLICATE_ID,
                          f"Duplicate question ID: {question['id']}", "questions", **scope)
            seen_ids.add(question["id"])

        field_type = question.get("type")
        if field_type in CHOICE_TYPES:
            _validate_options(question, issue_prefix, scope, out)
        elif field_type in ("contact-info", "address"):
            _validate_compound(question, issue_prefix, scope, out)
        elif field_type and field_type not in KNOWN_TYPES:
            out.warn(f"{issue_prefix}-unknown-type", IssueCode.UNKNOWN_QUESTION_TYPE,
                     f"Unknown question type: {field_type}", "questions", **scope)


def validate_questions(questions: Iterable[Dict[str, Any]]) -> ValidationResult:
    out = _Collector()
    _validate_question_list(questions or [], out)
    return _result(out)


# -----------------------
# Branding
# -----------------------

def _validate_branding(theme: Any, primary_color: Any, out: _Collector) -> None:
    if theme and theme not in THEMES:
        out.error("branding-invalid-theme", IssueCode.INVALID_THEME,
                  'Theme must be either "light" or "dark"', "branding")
    if primary_color and not HEX_COLOR_PATTERN.match(str(primary_color)):
        out.error("branding-invalid-color", IssueCode.INVALID_PRIMARY_COLOR,
                  "Primary color must be a valid hex color (e.g., #FF0000)", "branding")


# -----------------------
# Entry points
# -----------------------

def calculate_section_states(issues: Iterable[ValidationIssue]) -> Dict[str, SectionState]:
    sections = {name: SectionState() for name in SECTIONS}
    for issue in issues:
        state = sections[issue.section]
        state.has_errors = True
        state.error_count += 1
    return sections


def _result(out: _Collector) -> ValidationResult:
    ok = len(out.errors) == 0
    return ValidationResult(
        isValid=ok,
        canPublish=ok,
        issues=out.errors,
        warnings=out.warnings,
        sectionState=calculate_section_states(out.errors),
    )


def validate_form_configuration(config: Union[Dict[str, Any], AutosaveDocument]) -> ValidationResult:
    if isinstance(config, AutosaveDocument):
        config = config.to_wire()

    out = _Collector()
    _validate_metadata(config.get("internalName"), config.get("slug"), out)
    _validate_service_tree(config.get("serviceTree"), out)
    _validate_question_list(config.get("baseQuestions") or [], out)
    _validate_branding(config.get("theme"), config.get("primaryColor"), out)
    return _result(out)


validate = validate_form_configuration


def can_save_form(is_enabled: bool, result: ValidationResult) -> bool:
    """Drafts always save; a live form only saves while it is valid."""
    if not is_enabled:
        return True
    return result.is_valid


def get_save_blocked_message(result: ValidationResult) -> str:
    count = len(result.issues)
    if count == 0:
        return ""
    if count == 1:
        return "1 issue"
    return f"{count} issues found"


# -----------------------
# Submitted answers
# -----------------------

def _validate_answer_type(question: Dict[str, Any], value: Any, scope: Dict[str, Any], out: _Collector) -> None:
    field_type = question.get("type")
    name = question.get("name")
    label = question.get("label")
    if field_type == "number":
        if _as_number(value) is None:
            out.error(f"answer-{name}-invalid-number", IssueCode.INVALID_NUMBER,
                      f"{label} must be a valid number", "questions", **scope)
    elif field_type in ("multiple-choice", "checkbox-list"):
        if not isinstance(value, list):
            out.error(f"answer-{name}-invalid-array", IssueCode.INVALID_ARRAY_TYPE,
                      f"{label} must be an array", "questions", **scope)
    elif field_type == "yes-no":
        if not isinstance(value, bool):
            out.error(f"answer-{name}-invalid-boolean", IssueCode.INVALID_BOOLEAN_TYPE,
                      f"{label} must be true or false", "questions", **scope)
    elif field_type in ("contact-info", "address"):
        if not isinstance(value, dict):
            out.error(f"answer-{name}-invalid-object", IssueCode.INVALID_OBJECT_TYPE,
                      f"{label} must be an object", "questions", **scope)


def validate_form_data(answers: Dict[str, Any], questions: Iterable[Dict[str, Any]]) -> ValidationResult:
    """Check a booking submission (answers keyed by question name) against the question configs."""
    out = _Collector()
    for question in questions or []:
        name = question.get("name")
        label = question.get("label")
        value = answers.get(name)
        scope = {"fieldName": name, "path": f"Form Data - {label}"}
        empty = value is None or value == "" or (isinstance(value, list) and not value)

        if question.get("isRequired") and empty:
            out.error(f"answer-{name}-required", IssueCode.REQUIRED_FIELD_EMPTY,
                      f"{label} is required", "questions", **scope)
        if isinstance(value, dict):
            for sub in required_subfields(question):
                if _is_blank(value.get(sub)):
                    out.error(f"answer-{name}-{sub}-required", IssueCode.REQUIRED_SUBFIELD_EMPTY,
                              f"{label} - {sub} is required", "questions",
                              fieldName=f"{name}.{sub}", path=scope["path"])
        if not empty:
            _validate_answer_type(question, value, scope, out)
    return _result(out)
