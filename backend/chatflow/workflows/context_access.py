# /chatflow/workflows/context_access.py

"""
Read access to an ExecutionContext.

Dot paths (``user.age``, ``custom_attributes.tags.0``) and ``{{context.var}}``
template placeholders both resolve through ``resolve_path`` so that rules,
branch messages and delay schedules see the same values. Missing data always
resolves to ``None``; nothing here raises.
"""

import logging
import re
from typing import Any, Mapping

from chatflow.models.context import ExecutionContext

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")

_MISSING = object()


def _step(current: Any, part: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(part, _MISSING)
    if isinstance(current, (list, tuple)):
        try:
            return current[int(part)]
        except (ValueError, IndexError):
            return _MISSING
    if part.startswith("_") or isinstance(current, (str, bytes, int, float, bool)):
        return _MISSING
    value = getattr(current, part, _MISSING)
    # methods are not data
    return _MISSING if callable(value) else value


def resolve_path(source: Any, path: str | None) -> Any:
    """
    Walk ``path`` (dot notation) through nested mappings, sequences and plain
    attributes of ``source``. Returns None as soon as a segment is missing.
    """
    if source is None or not path:
        return None

    current = source
    for part in path.split("."):
        if part == "":
            return None
        current = _step(current, part)
        if current is _MISSING or current is None:
            return None
    return current


def resolve_reference(reference: str, context: ExecutionContext) -> Any:
    """
    Resolve a namespaced reference as used in templates:

    - ``context.<path>``      -> context variables
    - ``contact.<path>``      -> contact record
    - ``conversation.<path>`` -> conversation metadata
    - ``last_user_message``   -> latest inbound text
    - anything else           -> context variables
    """
    head, _, rest = reference.partition(".")
    if head == "context":
        return resolve_path(context.context_variables, rest)
    if head == "contact":
        return resolve_path(context.contact, rest)
    if head == "conversation":
        return resolve_path(context.conversation_meta, rest)
    if reference == "last_user_message":
        return context.last_user_message
    return resolve_path(context.context_variables, reference)


def is_single_placeholder(text: Any) -> bool:
    return isinstance(text, str) and PLACEHOLDER_RE.fullmatch(text.strip()) is not None


def resolve_single_placeholder(text: str, context: ExecutionContext) -> Any:
    """Return the raw value behind a string made of exactly one placeholder."""
    match = PLACEHOLDER_RE.fullmatch(text.strip())
    if match is None:
        return text
    return resolve_reference(match.group(1), context)


def render_template(template: Any, context: ExecutionContext) -> Any:
    """
    Replace every ``{{ path }}`` placeholder in ``template`` with its resolved
    value. Unresolved placeholders become empty strings. Dicts and lists are
    rendered recursively; other values are returned unchanged.
    """
    if isinstance(template, str):
        def _substitute(match: re.Match) -> str:
            value = resolve_reference(match.group(1), context)
            if value is None:
                logger.debug(f"Template placeholder '{match.group(1)}' resolved to nothing.")
                return ""
            return str(value)

        return PLACEHOLDER_RE.sub(_substitute, template)
    if isinstance(template, dict):
        return {k: render_template(v, context) for k, v in template.items()}
    if isinstance(template, list):
        return [render_template(item, context) for item in template]
    return template
