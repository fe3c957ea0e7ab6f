"""
Exception hierarchy for the density engine.

Parse and resolve errors abort the whole document. Evaluation errors abort
only the current sample point; grid evaluation decides whether a faulted
point becomes NaN or propagates.
"""

from typing import List, Optional


class DensityError(Exception):
    """Base class for every engine error."""

    kind = "DensityError"

    def __init__(self, message: str, path: Optional[str] = None):
        self.message = message
        self.path = path
        super().__init__(f"{message} (at {path})" if path else message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "path": self.path}


# Parse-time errors

class SchemaError(DensityError):
    kind = "SchemaError"


class UnknownTypeError(SchemaError):
    kind = "UnknownType"

    def __init__(self, type_name: str, path: Optional[str] = None):
        self.type_name = type_name
        super().__init__(f"Unknown density type '{type_name}'", path)


class TypeMismatchError(SchemaError):
    kind = "TypeMismatch"


class TooDeepError(SchemaError):
    kind = "TooDeep"

    def __init__(self, limit: int, path: Optional[str] = None):
        self.limit = limit
        super().__init__(f"Document nesting exceeds {limit} levels", path)


# Resolve-time errors

class ResolveError(DensityError):
    kind = "ResolveError"


class DuplicateExportError(ResolveError):
    kind = "DuplicateExport"

    def __init__(self, name: str, path: Optional[str] = None):
        self.name = name
        super().__init__(f"Export '{name}' is defined more than once", path)


class UnresolvedImportError(ResolveError):
    kind = "UnresolvedImport"

    def __init__(self, name: str, path: Optional[str] = None):
        self.name = name
        super().__init__(f"Imported name '{name}' has no matching export", path)


class CyclicImportError(ResolveError):
    kind = "CyclicImport"

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__("Cyclic import: " + " -> ".join(self.cycle))


# Evaluation-time errors

class EvalError(DensityError):
    kind = "EvalError"


class UnhandledSwitchCaseError(EvalError):
    kind = "UnhandledSwitchCase"

    def __init__(self, channel: str, state: Optional[str], path: Optional[str] = None):
        self.channel = channel
        self.state = state
        super().__init__(f"No case matches switch state {state!r} on channel '{channel}' and no default input", path)


class CacheScopeError(EvalError):
    kind = "CacheScope"


class MissingContextInputError(EvalError):
    kind = "MissingContextInput"

    def __init__(self, input_name: str, path: Optional[str] = None):
        self.input_name = input_name
        super().__init__(f"Context input '{input_name}' was not supplied", path)


class RecursionDepthError(EvalError):
    kind = "RecursionDepth"

    def __init__(self, limit: int, path: Optional[str] = None):
        self.limit = limit
        super().__init__(f"Evaluation recursion exceeds {limit} levels", path)
