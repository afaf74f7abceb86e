"""Data model shared by the analyzer, the composer and the generation loop.

Header and FunctionDescriptor are produced by the analyzer and are passed
through to the templates untouched.  Nothing in the render pipeline looks
inside them beyond ``FunctionDescriptor.test_name``.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# ── Exceptions ──


class PytestgenError(Exception):
    """Base exception for all pytestgen errors."""


# ── Constants ──

# inspect.Parameter kind names, kept as plain strings for templates
POSITIONAL_ONLY = "positional_only"
POSITIONAL_OR_KEYWORD = "positional_or_keyword"
VAR_POSITIONAL = "var_positional"
KEYWORD_ONLY = "keyword_only"
VAR_KEYWORD = "var_keyword"

# Function kinds
FUNCTION = "function"
METHOD = "method"
STATICMETHOD = "staticmethod"
CLASSMETHOD = "classmethod"

_WORD_SPLIT_RE = re.compile(r"_+")


# ── Data Classes ──


@dataclass
class Parameter:
    """One parameter of a discovered function."""

    name: str
    kind: str = POSITIONAL_OR_KEYWORD
    annotation: Optional[str] = None
    default: Optional[str] = None

    @property
    def is_variadic(self) -> bool:
        return self.kind in (VAR_POSITIONAL, VAR_KEYWORD)


@dataclass
class Receiver:
    """The class that owns a discovered method."""

    name: str
    init_parameters: list[Parameter] = field(default_factory=list)


@dataclass
class FunctionDescriptor:
    """A discovered function or method to generate a test for.

    Attributes:
        name: Function name as written in the source.
        receiver: Owning class for methods, None for module-level functions.
        parameters: Parameters in declaration order (``self``/``cls`` removed).
        is_async: Whether the function is a coroutine function.
        kind: One of function, method, staticmethod, classmethod.
        returns: Return annotation as source text, if any.
    """

    name: str
    receiver: Optional[Receiver] = None
    parameters: list[Parameter] = field(default_factory=list)
    is_async: bool = False
    kind: str = FUNCTION
    returns: Optional[str] = None

    @property
    def full_name(self) -> str:
        """Qualified name, e.g. ``Calculator.add``."""
        if self.receiver is not None:
            return f"{self.receiver.name}.{self.name}"
        return self.name

    @property
    def is_exported(self) -> bool:
        return not self.name.startswith("_")

    @property
    def has_return(self) -> bool:
        """False only for functions annotated to return None."""
        return self.returns != "None"

    @property
    def test_name(self) -> str:
        """Name of the generated test class, e.g. ``TestCalculatorAdd``."""
        prefix = "Test_" if self.name.startswith("_") else "Test"
        receiver = _camel(self.receiver.name) if self.receiver else ""
        return prefix + receiver + _camel(self.name)


@dataclass
class Header:
    """Everything needed to open a generated test module.

    Attributes:
        module: Dotted import path of the module under test.
        names: Top-level names the module defines, importable by the tests.
        imports: The module's own top-level imports, relative ones made
            absolute, so annotations and defaults used in tests resolve.
        code: Source of an existing test module that new tests extend.
    """

    module: str
    names: list[str] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)
    code: str = ""


@dataclass(frozen=True)
class GeneratedArtifact:
    """Final output for one analyzed source file."""

    source_path: Path
    path: Path
    output: bytes
    generated_names: tuple[str, ...] = ()


# ── Helpers ──


def _camel(name: str) -> str:
    """``parse_header`` -> ``ParseHeader``; leading underscores are dropped."""
    words = [w for w in _WORD_SPLIT_RE.split(name) if w]
    return "".join(w[0].upper() + w[1:] for w in words)
