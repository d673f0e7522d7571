"""
SynPat Errors
Exception hierarchy shared by the catalog, document and analysis modules.

Every error carries a stable ``code`` so callers (CLI, integrations) can
report a single terminal error code/message without inspecting types.
"""

from typing import Optional


class SynPatError(Exception):
    """Base class for all SynPat errors"""

    code = "synpat_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(SynPatError):
    """A subject id did not resolve to a stored row"""

    code = "not_found"

    def __init__(self, subject: str, subject_id):
        super().__init__(f"{subject.replace('_', ' ').capitalize()} not found: {subject_id}")
        self.subject = subject
        self.subject_id = subject_id


class InvalidInputError(SynPatError):
    code = "invalid_input"


class UnsupportedFormatError(SynPatError):
    code = "unsupported_format"


class ValidationError(SynPatError):
    """Input failed validation; raised immediately to the caller"""

    code = "validation_error"


class MissingFieldError(ValidationError):
    code = "missing_field"

    def __init__(self, field: str):
        super().__init__(f"Missing required field: {field}")
        self.field = field


class InvalidFormatError(ValidationError):
    code = "invalid_format"


class RenderFailedError(SynPatError):
    """Every rendering strategy was exhausted"""

    code = "render_failed"


class MergeUnavailableError(SynPatError):
    """No merge strategy succeeded"""

    code = "merge_unavailable"


class SourceNotFoundError(SynPatError):
    """A file referenced for merging does not exist"""

    code = "source_not_found"

    def __init__(self, path: str):
        super().__init__(f"File not found: {path}")
        self.path = path


class ExternalToolUnavailable(SynPatError):
    """
    Informational: an external binary or optional library is missing.

    Strategies raise this to hand control to the next strategy; the
    orchestrators never let it escape.
    """

    code = "external_tool_unavailable"
