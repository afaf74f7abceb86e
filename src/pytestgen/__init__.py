"""pytestgen - Generate table-driven tests for Python source files."""

from pytestgen.analyzer import (
    AnalysisError,
    SourceAnalysis,
    analyze,
)
from pytestgen.config import (
    ConfigurationError,
    FilterConfig,
    InvalidPatternError,
    Options,
    load_template_params,
    resolve_filters,
)
from pytestgen.generate import (
    NoMatchError,
    OutputWriteError,
    TargetError,
    generate_tests,
    run,
)
from pytestgen.models import (
    FunctionDescriptor,
    GeneratedArtifact,
    Header,
    Parameter,
    PytestgenError,
    Receiver,
)
from pytestgen.normalize import NormalizationError, normalize
from pytestgen.render import RenderError, RenderOptions, compose
from pytestgen.templates import (
    SelectionKind,
    TemplateLoadError,
    TemplateSelection,
    TemplateSet,
    load_template_set,
    resolve_selection,
)

__all__ = [
    # Data model
    "PytestgenError",
    "FunctionDescriptor",
    "Parameter",
    "Receiver",
    "Header",
    "GeneratedArtifact",
    # Configuration
    "Options",
    "FilterConfig",
    "resolve_filters",
    "load_template_params",
    "ConfigurationError",
    "InvalidPatternError",
    # Templates
    "TemplateSelection",
    "SelectionKind",
    "TemplateSet",
    "resolve_selection",
    "load_template_set",
    "TemplateLoadError",
    # Rendering
    "compose",
    "RenderOptions",
    "RenderError",
    # Normalization
    "normalize",
    "NormalizationError",
    # Analysis
    "analyze",
    "SourceAnalysis",
    "AnalysisError",
    # Generation
    "run",
    "generate_tests",
    "NoMatchError",
    "OutputWriteError",
    "TargetError",
]
