"""
Enabler document rendering.

New Enabler documents start from `enabler-template.md` in the configured
templates directory. When that file is missing or unreadable the built-in
template below is used instead. Both go through the same placeholder
replacement, so a custom template only needs to keep the placeholders it
wants filled in.
"""
from datetime import date
from pathlib import Path
from typing import Optional
import logging
import re

from core.schemas import EnablerRecord

logger = logging.getLogger(__name__)

TEMPLATE_FILENAME = "enabler-template.md"

PLACEHOLDER_NAME = "[Enabler Name]"
PLACEHOLDER_ID = "ENB-XXXXXX"
PLACEHOLDER_PARENT = "CAP-XXXXXX (Parent Capability)"
PLACEHOLDER_DATE = "YYYY-MM-DD"
PLACEHOLDER_VERSION = "X.Y"
PLACEHOLDER_PURPOSE = "[What is the purpose?]"

BUILTIN_TEMPLATE = """# [Enabler Name]

## Metadata
- **Name**: [Enabler Name]
- **Type**: Enabler
- **ID**: ENB-XXXXXX
- **Capability ID**: CAP-XXXXXX (Parent Capability)
- **Description**: [What is the purpose?]
- **Status**: In Draft
- **Approval**: Not Approved
- **Priority**: High
- **Owner**: Product Team
- **Analysis Review**: Required
- **Design Review**: Required
- **Code Review**: Not Required
- **Created Date**: YYYY-MM-DD
- **Last Updated**: YYYY-MM-DD
- **Version**: X.Y

## Technical Overview
### Purpose
[What is the purpose?]

## Functional Requirements

| ID | Requirement | Priority | Status | Notes |
|----|-------------|----------|--------|-------|

## Non-Functional Requirements

| Type | Requirement | Target | Measurement | Notes |
|------|-------------|--------|-------------|-------|

## Technical Specifications

### Enabler Dependency Flow Diagram
```mermaid
flowchart TD
    ENB_XXXXXX["ENB-XXXXXX<br/>[Enabler Name]"]
```

## Dependencies
### Internal Dependencies
- [Service/Component]: [Why needed]

### External Dependencies
- [Third-party service]: [Integration details]

## Implementation Plan

### Task 1 - Approval Check
Execute the implementation only if the Approval field is "Approved".

### Task 2 - Design
Document the design under Technical Specifications before writing code.

### Task 3 - Implementation
Implement the functional and non-functional requirements above.

## Notes
"""


def load_template(templates_dir: Optional[Path]) -> str:
    """Custom enabler template text, or the built-in one."""
    if templates_dir is not None:
        path = Path(templates_dir) / TEMPLATE_FILENAME
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                text = f.read()
            logger.debug("Enabler template loaded from %s (%d chars)", path, len(text))
            return text
        except FileNotFoundError:
            logger.debug("No enabler template at %s, using built-in", path)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Enabler template %s unreadable (%s), using built-in", path, e)
    return BUILTIN_TEMPLATE


def _field_line(label: str, old: str) -> re.Pattern:
    return re.compile(r"(- \*\*" + re.escape(label) + r"\*\*: )" + re.escape(old) + r"(?=[ \t]*\r?$)", re.M)


def render_enabler(
    template: str,
    enabler: EnablerRecord,
    capability_id: Optional[str],
    defaults=None,
    today: Optional[date] = None,
) -> str:
    """
    Fill an enabler template.

    Args:
        template: Template text (see load_template)
        enabler: Author-supplied fields; blank fields keep their placeholder
        capability_id: Parent capability (placeholder kept when None)
        defaults: DefaultsConfig supplying status/review/version defaults
        today: Date stamped into Created Date / Last Updated
    """
    stamp = (today or date.today()).isoformat()
    version = getattr(defaults, "version", "1.0")
    name = enabler.name or PLACEHOLDER_NAME
    identifier = enabler.id or PLACEHOLDER_ID

    # Field lines first: their placeholder text is shared with the free-text pass below.
    field_values = [
        ("Description", PLACEHOLDER_PURPOSE, enabler.description),
        ("Status", "In Draft", enabler.status or getattr(defaults, "enabler_status", "In Draft")),
        ("Approval", "Not Approved", enabler.approval or getattr(defaults, "enabler_approval", "Not Approved")),
        ("Priority", "High", enabler.priority or getattr(defaults, "enabler_priority", "High")),
        ("Owner", "Product Team", getattr(defaults, "owner", "Product Team")),
        ("Analysis Review", "Required", getattr(defaults, "analysis_review", "Required")),
        ("Design Review", "Required", getattr(defaults, "design_review", "Required")),
        ("Requirements Review", "Required", getattr(defaults, "requirements_review", "Required")),
        ("Code Review", "Not Required", getattr(defaults, "code_review", "Not Required")),
    ]
    text = template
    for label, old, new in field_values:
        text = _field_line(label, old).sub(lambda m: (m.group(1) + new).rstrip(), text)

    if enabler.id:
        text = text.replace(PLACEHOLDER_ID.replace("-", "_"), enabler.id.replace("-", "_"))
    replacements = [
        (PLACEHOLDER_NAME, name),
        (PLACEHOLDER_ID, identifier),
        (PLACEHOLDER_PARENT, capability_id or PLACEHOLDER_PARENT),
        (PLACEHOLDER_DATE, stamp),
        (PLACEHOLDER_VERSION, version),
        (PLACEHOLDER_PURPOSE, enabler.description or PLACEHOLDER_PURPOSE),
    ]
    for old, new in replacements:
        text = text.replace(old, new)

    if enabler.name and PLACEHOLDER_NAME in text:
        logger.warning("Some %s placeholders were not replaced", PLACEHOLDER_NAME)
    return text
