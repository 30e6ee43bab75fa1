"""Error taxonomy for the linting core.

Snapshot problems are recovered inside the cache and write failures are
logged by the debounced writer. Cycles are rejected by the settings API;
unknown schemas and missing documents become 404s.
"""


class LintError(Exception):
    """Base class for linter errors."""


class SnapshotUnreadable(LintError):
    """The durable snapshot is missing or cannot be parsed."""


class VersionMismatch(LintError):
    """The durable snapshot was written by an incompatible format version."""

    def __init__(self, found, expected: int):
        super().__init__(f"Snapshot version {found!r} != {expected}")
        self.found = found
        self.expected = expected


class CycleDetected(LintError):
    """A composite type references itself, directly or transitively."""

    def __init__(self, type_name: str):
        super().__init__(f'Type "{type_name}" contains a circular reference')
        self.type_name = type_name


class WriteFailure(LintError):
    """Persisting the durable snapshot failed."""


class UnknownSchema(LintError):
    """No schema mapping with the requested id is configured."""

    def __init__(self, schema_id: str):
        super().__init__(f"Unknown schema: {schema_id}")
        self.schema_id = schema_id


class DocumentNotFound(LintError):
    """The requested document does not exist in the vault."""

    def __init__(self, path: str):
        super().__init__(f"File not found: {path}")
        self.path = path
