"""Density graph parsing, resolution and evaluation."""

from .context import ContextInputs, EvaluationContext
from .errors import (
    CacheScopeError,
    CyclicImportError,
    DensityError,
    DuplicateExportError,
    EvalError,
    MissingContextInputError,
    RecursionDepthError,
    ResolveError,
    SchemaError,
    TooDeepError,
    TypeMismatchError,
    UnhandledSwitchCaseError,
    UnknownTypeError,
    UnresolvedImportError,
)
from .evaluator import Evaluator, Session, evaluate
from .grid import DensityGrid, SampleDomain, evaluate_grid
from .resolver import ExportRegistry, ResolvedGraph, resolve
from .schema import NODE_TYPES, DensityNode, dump, parse, parse_json

__all__ = ['ContextInputs', 'EvaluationContext', 'Evaluator', 'Session', 'evaluate',
           'DensityGrid', 'SampleDomain', 'evaluate_grid',
           'ExportRegistry', 'ResolvedGraph', 'resolve',
           'NODE_TYPES', 'DensityNode', 'dump', 'parse', 'parse_json',
           'DensityError', 'SchemaError', 'UnknownTypeError', 'TypeMismatchError', 'TooDeepError',
           'ResolveError', 'DuplicateExportError', 'UnresolvedImportError', 'CyclicImportError',
           'EvalError', 'UnhandledSwitchCaseError', 'CacheScopeError', 'MissingContextInputError',
           'RecursionDepthError']
