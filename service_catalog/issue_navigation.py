# service_catalog/issue_navigation.py
"""
Where the editor UI should go to fix a validation issue.

The code -> level table is plain data and can be swapped per host; it holds
no validation logic. Levels that are scoped to a node carry issue.node_id.
"""
from typing import Dict, Optional

from service_catalog.models import NavigationTarget, ValidationIssue
from service_catalog.validation import IssueCode

# ---- levels ----
ROOT_LEVEL = "root"
SERVICE_EMPLOYEES = "service-employees"
SERVICE_DETAILS = "service-details"
SERVICE_DETAILS_FORM = "service-details-form"
SERVICE_QUESTIONS = "service-questions"
GROUP_DETAILS = "group-details"
QUESTIONS = "questions"
BRANDING = "branding"
SERVICES = "services"

NODE_SCOPED_LEVELS = {SERVICE_EMPLOYEES, SERVICE_DETAILS, SERVICE_DETAILS_FORM, SERVICE_QUESTIONS, GROUP_DETAILS}

DEFAULT_NAVIGATION_TABLE: Dict[str, str] = {
    IssueCode.SERVICE_NO_EMPLOYEES.value: SERVICE_EMPLOYEES,
    IssueCode.SERVICE_MISSING_NAME.value: SERVICE_DETAILS_FORM,
    IssueCode.SERVICE_INVALID_DURATION.value: SERVICE_DETAILS_FORM,
    IssueCode.SERVICE_INVALID_PRICE.value: SERVICE_DETAILS_FORM,
    IssueCode.SERVICE_INVALID_INTERVAL.value: SERVICE_DETAILS_FORM,
    IssueCode.GROUP_MISSING_NAME.value: GROUP_DETAILS,
    IssueCode.MISSING_INTERNAL_NAME.value: ROOT_LEVEL,
    IssueCode.MISSING_SLUG.value: ROOT_LEVEL,
    IssueCode.INVALID_SLUG_CHARS.value: ROOT_LEVEL,
    IssueCode.INVALID_SLUG_EDGES.value: ROOT_LEVEL,
    IssueCode.INVALID_SLUG_DOUBLE_HYPHEN.value: ROOT_LEVEL,
    IssueCode.SLUG_TOO_SHORT.value: ROOT_LEVEL,
    IssueCode.SLUG_TOO_LONG.value: ROOT_LEVEL,
    IssueCode.MISSING_SERVICE_TREE.value: SERVICES,
    IssueCode.EMPTY_SERVICE_TREE.value: SERVICES,
    IssueCode.DUPLICATE_NODE_ID.value: SERVICES,
    IssueCode.QUESTION_MISSING_LABEL.value: QUESTIONS,
    IssueCode.QUESTION_MISSING_NAME.value: QUESTIONS,
    IssueCode.QUESTION_MISSING_TYPE.value: QUESTIONS,
    IssueCode.QUESTION_DUPLICATE_NAME.value: QUESTIONS,
    IssueCode.QUESTION_DUPLICATE_ID.value: QUESTIONS,
    IssueCode.QUESTION_NO_OPTIONS.value: QUESTIONS,
    IssueCode.QUESTION_EMPTY_OPTIONS.value: QUESTIONS,
    IssueCode.QUESTION_OPTION_MISSING_VALUE.value: QUESTIONS,
    IssueCode.QUESTION_OPTION_MISSING_LABEL.value: QUESTIONS,
    IssueCode.QUESTION_DUPLICATE_OPTION_VALUES.value: QUESTIONS,
    IssueCode.INVALID_CONTACT_SUBFIELDS.value: QUESTIONS,
    IssueCode.INVALID_ADDRESS_SUBFIELDS.value: QUESTIONS,
    IssueCode.INVALID_THEME.value: BRANDING,
    IssueCode.INVALID_PRIMARY_COLOR.value: BRANDING,
}

SECTION_FALLBACK: Dict[str, str] = {
    "services": SERVICES,
    "questions": QUESTIONS,
    "branding": BRANDING,
    "metadata": ROOT_LEVEL,
}


class IssueNavigator:
    def __init__(self, table: Optional[Dict[str, str]] = None, section_fallback: Optional[Dict[str, str]] = None):
        self.table = dict(DEFAULT_NAVIGATION_TABLE if table is None else table)
        self.section_fallback = dict(SECTION_FALLBACK if section_fallback is None else section_fallback)

    def _target(self, level: str, node_id: Optional[str]) -> NavigationTarget:
        if level in NODE_SCOPED_LEVELS:
            return NavigationTarget(level=level, nodeId=node_id)
        return NavigationTarget(level=level)

    def target_for(self, issue: ValidationIssue) -> NavigationTarget:
        level = self.table.get(issue.code)
        if level is not None:
            # questions owned by a service are edited on that service
            if level == QUESTIONS and issue.node_id:
                return self._target(SERVICE_QUESTIONS, issue.node_id)
            return self._target(level, issue.node_id)

        if issue.section == "services" and issue.node_id:
            return self._target(SERVICE_DETAILS, issue.node_id)
        return self._target(self.section_fallback.get(issue.section, ROOT_LEVEL), None)


_default_navigator = IssueNavigator()


def get_issue_navigation_path(issue: ValidationIssue, navigator: Optional[IssueNavigator] = None) -> NavigationTarget:
    return (navigator or _default_navigator).target_for(issue)
