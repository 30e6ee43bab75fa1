"""Document selection: schema queries, the tag index and property filters.

Query syntax, conditions joined by `or` (case-insensitive):

    folder        documents directly inside folder ("/" is the vault root)
    folder/*      documents in folder and all subfolders
    #tag          documents tagged tag or a nested tag (#book matches #book/fiction)
    *             every document
"""

import logging
import re
import threading
from dataclasses import dataclass
from datetime import date, datetime

from services.errors import DocumentNotFound
from services.models import PropertyFilter
from services.vault import DocumentInfo, Vault

log = logging.getLogger(__name__)

_OR_SPLIT = re.compile(r"\s+or\s+", re.IGNORECASE)
_INLINE_TAG = re.compile(r"(?<![\w#/&])#([\w/-]*[A-Za-z_/-][\w/-]*)")
_FENCED_CODE = re.compile(r"^(```|~~~).*?^\1", re.MULTILINE | re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`\n]*`")
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")


@dataclass(frozen=True)
class QueryCondition:
    kind: str  # "all" | "folder" | "folder_recursive" | "tag"
    value: str


def parse_query(query: str) -> list[QueryCondition]:
    conditions = []
    for part in _OR_SPLIT.split(query or ""):
        part = part.strip()
        if not part:
            continue
        if part == "*":
            conditions.append(QueryCondition("all", ""))
        elif part.startswith("#"):
            conditions.append(QueryCondition("tag", part[1:].lower()))
        elif part.endswith("/*"):
            conditions.append(QueryCondition("folder_recursive", part[:-2].strip("/")))
        else:
            conditions.append(QueryCondition("folder", part.strip("/")))
    return conditions


def describe_query(query: str) -> str:
    parts = []
    for c in parse_query(query):
        if c.kind == "all":
            parts.append("all documents")
        elif c.kind == "tag":
            parts.append(f"tagged #{c.value}")
        elif c.kind == "folder_recursive":
            parts.append(f"in {c.value or '(root)'}/ and subfolders")
        else:
            parts.append(f"in {c.value or '(root)'}/")
    return " or ".join(parts) if parts else "No conditions"


def _folder_of(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def tag_matches(tag: str, wanted: str) -> bool:
    return tag == wanted or tag.startswith(wanted + "/")


def extract_tags(frontmatter: dict, body: str) -> frozenset[str]:
    """Lowercased tags from the `tags` property and inline #tags in the body."""
    tags: set[str] = set()
    raw = next((v for k, v in frontmatter.items() if k.lower() in ("tags", "tag")), None)
    if isinstance(raw, str):
        raw = re.split(r"[,\s]+", raw)
    if isinstance(raw, list):
        for t in raw:
            if t is not None and str(t).strip():
                tags.add(str(t).strip().lstrip("#").lower())
    text = _INLINE_CODE.sub("", _FENCED_CODE.sub("", body or ""))
    for match in _INLINE_TAG.finditer(text):
        tags.add(match.group(1).rstrip("/").lower())
    return frozenset(tags)


# ── Tag index ────────────────────────────────────────────────────────────────


class QueryIndex:
    """Known documents and their tags, queried by schema queries."""

    def __init__(self):
        self._tags: dict[str, frozenset[str]] = {}
        self._lock = threading.Lock()

    def rebuild(self, vault: Vault) -> int:
        """Re-read every document in the vault. Returns the number indexed."""
        tags: dict[str, frozenset[str]] = {}
        for path in vault.list_documents():
            try:
                fm, body, _err = vault.read_metadata(path)
            except DocumentNotFound:
                continue
            tags[path] = extract_tags(fm, body)
        with self._lock:
            self._tags = tags
        log.info("Indexed %d documents", len(tags))
        return len(tags)

    def update(self, path: str, frontmatter: dict, body: str) -> None:
        tags = extract_tags(frontmatter, body)
        with self._lock:
            self._tags[path] = tags

    def remove(self, path: str) -> None:
        with self._lock:
            self._tags.pop(path, None)

    def clear(self) -> None:
        with self._lock:
            self._tags = {}

    def rename(self, old_path: str, new_path: str) -> None:
        with self._lock:
            self._tags[new_path] = self._tags.pop(old_path, frozenset())

    def __contains__(self, path: str) -> bool:
        return path in self._tags

    def paths(self) -> list[str]:
        with self._lock:
            return sorted(self._tags)

    def tags_for(self, path: str) -> frozenset[str]:
        return self._tags.get(path, frozenset())

    def _matches(self, path: str, conditions: list[QueryCondition]) -> bool:
        for c in conditions:
            if c.kind == "all":
                return True
            if c.kind == "folder" and _folder_of(path) == c.value:
                return True
            if c.kind == "folder_recursive" and (
                not c.value or path.startswith(c.value + "/")
            ):
                return True
            if c.kind == "tag" and any(tag_matches(t, c.value) for t in self.tags_for(path)):
                return True
        return False

    def matches(self, path: str, query: str) -> bool:
        conditions = parse_query(query)
        return bool(conditions) and self._matches(path, conditions)

    def paths_for_query(self, query: str) -> list[str]:
        conditions = parse_query(query)
        if not conditions:
            return []
        return [p for p in self.paths() if self._matches(p, conditions)]


# ── Property filters ─────────────────────────────────────────────────────────


def to_millis(value) -> int | None:
    """Parse a date or ISO string to epoch milliseconds (local time if naive)."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip())
        except ValueError:
            return None
    return int(dt.timestamp() * 1000)


def compare(a, b, operator: str) -> bool:
    if operator == "equals":
        return a == b
    if operator == "not_equals":
        return a != b
    if operator == "greater_than":
        return a > b
    if operator == "less_than":
        return a < b
    if operator == "greater_or_equal":
        return a >= b
    if operator == "less_or_equal":
        return a <= b
    return False


def _stringify(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def evaluate_condition(value, operator: str, expected: str) -> bool:
    """Apply a property operator. Ordering compares numbers, then dates."""
    if operator in ("contains", "not_contains"):
        if isinstance(value, list):
            found = any(_stringify(v) == expected for v in value)
        else:
            found = expected in _stringify(value)
        return found if operator == "contains" else not found
    if operator == "equals":
        return _stringify(value) == expected
    if operator == "not_equals":
        return _stringify(value) != expected

    actual = value if isinstance(value, int | float) and not isinstance(value, bool) else None
    if actual is None and _NUMBER.match(_stringify(value).strip()):
        actual = float(_stringify(value))
    if actual is not None and _NUMBER.match(expected.strip()):
        return compare(actual, float(expected), operator)
    left, right = to_millis(value), to_millis(expected)
    if left is None or right is None:
        return False
    return compare(left, right, operator)


def _lookup(frontmatter: dict, name: str):
    lowered = name.lower()
    for key, value in frontmatter.items():
        if str(key).lower() == lowered:
            return True, value
    return False, None


def condition_holds(frontmatter: dict, name: str, operator: str, expected: str) -> bool:
    """Evaluate one operator against a top-level frontmatter value, matched case-insensitively."""
    present, value = _lookup(frontmatter, name)
    if not present or value is None:
        # Absent properties only satisfy the negative operators.
        return operator in ("not_equals", "not_contains")
    return evaluate_condition(value, operator, expected)


def matches_property_filter(
    pf: PropertyFilter | None, frontmatter: dict, info: DocumentInfo | None
) -> bool:
    """True when a document passes every clause of the filter."""
    if pf is None:
        return True
    if info is not None:
        bounds = (
            (pf.modified_after, info.mod_time, "greater_than"),
            (pf.modified_before, info.mod_time, "less_than"),
            (pf.created_after, info.created, "greater_than"),
            (pf.created_before, info.created, "less_than"),
        )
        for bound, actual, operator in bounds:
            if bound:
                limit = to_millis(bound)
                if limit is not None and not compare(actual, limit, operator):
                    return False
    if pf.has_property and not _lookup(frontmatter, pf.has_property)[0]:
        return False
    if pf.not_has_property and _lookup(frontmatter, pf.not_has_property)[0]:
        return False
    return all(
        condition_holds(frontmatter, c.property, c.operator, c.value) for c in pf.conditions
    )
