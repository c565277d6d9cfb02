"""
Parser for validation rule text files.

A rules file is a sequence of blocks separated by a line containing only
``---``. Each block holds ``KEY: value`` lines:

    FIELD: email
    RULE: format
    CONDITION: ^[^\\s@]+@[^\\s@]+\\.[^\\s@]+$
    ERROR: Invalid email format
    SEVERITY: error

SEVERITY is optional and defaults to error. Blocks missing FIELD, RULE,
CONDITION or ERROR, or naming an unknown rule type, are dropped silently.
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel

from errors import InputError
from models import RULE_TYPES, Severity, ValidationRule

logger = logging.getLogger(__name__)

BLOCK_SEPARATOR = "---"

_KEY_TO_ATTRIBUTE = {
    "FIELD": "field",
    "RULE": "rule_type",
    "CONDITION": "condition",
    "ERROR": "error_message",
    "SEVERITY": "severity",
}


class ParsedRule(BaseModel):
    """A rule read from text, before it is bound to a template"""
    rule_type: str
    field: str
    condition: str
    error_message: str
    severity: Severity = Severity.ERROR


def split_blocks(content: str) -> List[List[str]]:
    blocks: List[List[str]] = [[]]
    for line in content.splitlines():
        if line.strip() == BLOCK_SEPARATOR:
            blocks.append([])
        else:
            blocks[-1].append(line)
    return [block for block in blocks if any(line.strip() for line in block)]


def parse_rule_block(lines: List[str]) -> Optional[ParsedRule]:
    values: Dict[str, str] = {}
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, separator, value = stripped.partition(":")
        if not separator:
            continue
        attribute = _KEY_TO_ATTRIBUTE.get(key.strip().upper())
        if attribute is None:
            continue
        values[attribute] = value.strip()

    if values.get("rule_type") not in RULE_TYPES:
        values.pop("rule_type", None)
    if values.get("severity") not in (Severity.ERROR.value, Severity.WARNING.value):
        values["severity"] = Severity.ERROR.value

    required = ("field", "rule_type", "condition", "error_message")
    if not all(values.get(name) for name in required):
        return None
    return ParsedRule(**values)


def parse_rules_content(content: str) -> List[ParsedRule]:
    rules = []
    for block in split_blocks(content or ""):
        rule = parse_rule_block(block)
        if rule is not None:
            rules.append(rule)
    logger.info(f"Parsed {len(rules)} validation rule(s) from text")
    return rules


def bind_rules(parsed: List[ParsedRule], template_id: Optional[int] = None, sheet_id=None) -> List[ValidationRule]:
    return [
        ValidationRule(template_id=template_id, sheet_id=sheet_id, **rule.model_dump())
        for rule in parsed
    ]


def parse_rules_file(file_path: str, template_id: Optional[int] = None) -> List[ValidationRule]:
    """
    Read a rules text file and bind its rules to a template.

    Raises:
        InputError: the file cannot be read
    """
    try:
        with open(file_path, "r", encoding="utf-8") as handle:
            content = handle.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.error(
            "Failed to read validation rules file",
            extra={"file_path": file_path, "error": str(e), "error_type": type(e).__name__},
        )
        raise InputError(f"Failed to parse validation rules file: {str(e)}", file_path=file_path) from e
    return bind_rules(parse_rules_content(content), template_id=template_id)


def generate_example_rules() -> str:
    """Example rules text covering every rule type."""
    return """# Validation Rules Example
# Each rule block is separated by a line containing only three dashes

FIELD: company_name
RULE: required
CONDITION: not_empty
ERROR: Company name is required
SEVERITY: error
---
FIELD: email
RULE: format
CONDITION: ^[^\\s@]+@[^\\s@]+\\.[^\\s@]+$
ERROR: Invalid email format
SEVERITY: error
---
FIELD: revenue
RULE: range
CONDITION: min:0,max:1000000000
ERROR: Revenue must be between 0 and 1 billion
SEVERITY: error
---
FIELD: A1:A10
RULE: required
CONDITION: not_empty
ERROR: Cells A1 to A10 must not be empty
SEVERITY: error
---
FIELD: B5
RULE: custom
CONDITION: value > 100 AND value < 1000
ERROR: Value in B5 must be between 100 and 1000
SEVERITY: warning
"""
