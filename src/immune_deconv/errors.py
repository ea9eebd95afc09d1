# src/immune_deconv/errors.py
"""
Error taxonomy shared by all stages.

Parsing, join and model errors abort the run; MappingGapWarning is a warning
category and never raised as an exception by the pipeline itself.
"""
from __future__ import annotations

from typing import Iterable, Optional


class FormatError(ValueError):
    """Malformed input file (missing column, non-numeric values, ...)."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(f"{message} [{path}]" if path else message)


class MappingGapWarning(UserWarning):
    """Some transcripts could not be resolved to a gene symbol."""


class ExternalModelError(RuntimeError):
    """Deconvolution call failed, was given unusable input, or returned nothing."""


class ParseError(ValueError):
    """A sample id does not follow the expected naming convention."""

    def __init__(self, sample_id: str, message: str = "Sample id does not match naming pattern"):
        self.sample_id = sample_id
        super().__init__(f"{message}: {sample_id!r}")


class JoinError(KeyError):
    """Ids present in one table are missing from the table they are joined against."""

    def __init__(self, missing: Iterable[str], what: str = "sample_id"):
        self.missing = sorted(map(str, missing))
        self.what = what
        shown = ", ".join(self.missing[:10])
        more = f" (+{len(self.missing) - 10} more)" if len(self.missing) > 10 else ""
        super().__init__(f"{len(self.missing)} {what}(s) have no match: {shown}{more}")

    def __str__(self) -> str:
        return str(self.args[0])


class InsufficientDataError(ValueError):
    """A statistical test was requested on too few observations."""


__all__ = [
    "FormatError",
    "MappingGapWarning",
    "ExternalModelError",
    "ParseError",
    "JoinError",
    "InsufficientDataError",
]
