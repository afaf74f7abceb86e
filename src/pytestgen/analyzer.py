"""Analyzer - discovers testable functions in Python source files.

Walks a module's AST for module-level functions and the methods of
module-level classes, builds a Header describing how a test module can
import them, and applies the run's FilterConfig.  Functions that already
have a test class in the derived test file are skipped, and that file's
source is carried into the header so new tests extend it.

Pure Python.  Only the standard library ``ast`` module is used.
"""

import ast
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from pytestgen.config import FilterConfig
from pytestgen.models import (
    CLASSMETHOD,
    FUNCTION,
    KEYWORD_ONLY,
    METHOD,
    POSITIONAL_ONLY,
    POSITIONAL_OR_KEYWORD,
    STATICMETHOD,
    VAR_KEYWORD,
    VAR_POSITIONAL,
    FunctionDescriptor,
    Header,
    Parameter,
    PytestgenError,
    Receiver,
)

logger = logging.getLogger(__name__)

# ── Constants ──

_PROPERTY_DECORATORS = frozenset({"property", "cached_property", "functools.cached_property"})


# ── Exceptions ──


class AnalysisError(PytestgenError):
    """A target could not be read or parsed."""


# ── Data Classes ──


@dataclass
class SourceAnalysis:
    """Discovery result for one source file."""

    source_path: Path
    test_path: Path
    header: Header
    functions: list[FunctionDescriptor] = field(default_factory=list)


Analyzer = Callable[[Path, FilterConfig], list[SourceAnalysis]]


# ── Paths ──


def is_test_file(path: Path) -> bool:
    name = path.name
    return (
        name.startswith("test_")
        or name.endswith("_test.py")
        or name == "conftest.py"
    )


def derive_test_path(source: Path) -> Path:
    """``pkg/models.py`` -> ``pkg/test_models.py``."""
    return source.with_name(f"test_{source.stem}.py")


def module_name_for(source: Path) -> str:
    """Dotted import path, walking up through package directories."""
    source = source.resolve()
    parts = [] if source.stem == "__init__" else [source.stem]
    directory = source.parent
    while (directory / "__init__.py").is_file():
        parts.insert(0, directory.name)
        if directory.parent == directory:
            break
        directory = directory.parent
    return ".".join(parts)


# ── Analyzer ──


def analyze(target: str | Path, filters: FilterConfig) -> list[SourceAnalysis]:
    """Discover the functions to test in *target*.

    A file yields one entry.  A directory yields one entry per non-test
    ``*.py`` file directly inside it that has at least one selected
    function.

    Raises:
        AnalysisError: If the target is missing, is not Python source, or
            does not parse.
    """
    target = Path(target)
    if target.is_dir():
        results = []
        for source in sorted(target.glob("*.py")):
            if is_test_file(source):
                continue
            analysis = analyze_file(source, filters)
            if analysis.functions:
                results.append(analysis)
        return results
    if not target.exists():
        raise AnalysisError(f"no such file or directory: {target}")
    if target.suffix != ".py":
        raise AnalysisError(f"not a Python source file: {target}")
    analysis = analyze_file(target, filters)
    return [analysis] if analysis.functions else []


def analyze_file(source: Path, filters: FilterConfig) -> SourceAnalysis:
    """Analyze a single source file."""
    tree = _parse(source)
    module = module_name_for(source)
    test_path = derive_test_path(source)

    existing_code = ""
    existing_tests: set[str] = set()
    if test_path.is_file():
        existing_code = _read(test_path)
        existing_tests = _defined_names(_parse(test_path, existing_code))
        logger.info("Extending existing test file %s", test_path)

    functions = []
    if not is_test_file(source):
        for fn in _discover(tree):
            if fn.test_name in existing_tests:
                logger.debug("Skipping %s: already tested", fn.full_name)
                continue
            if filters.allows(fn):
                functions.append(fn)

    header = Header(
        module=module,
        names=sorted(n for n in _defined_names(tree) if not n.startswith("__")),
        imports=_absolute_imports(tree, module, is_package=source.stem == "__init__"),
        code=existing_code,
    )
    logger.info("Analyzed %s: %d function(s) selected", source, len(functions))
    return SourceAnalysis(
        source_path=source,
        test_path=test_path,
        header=header,
        functions=functions,
    )


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise AnalysisError(f"could not read {path}: {exc}") from exc


def _parse(path: Path, source: Optional[str] = None) -> ast.Module:
    if source is None:
        source = _read(path)
    try:
        return ast.parse(source, filename=str(path))
    except SyntaxError as exc:
        raise AnalysisError(
            f"syntax error in {path} at line {exc.lineno}: {exc.msg}"
        ) from exc


def _defined_names(tree: ast.Module) -> set[str]:
    """Top-level function and class names."""
    return {
        node.name for node in tree.body
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
    }


# ── Discovery ──


def _discover(tree: ast.Module) -> list[FunctionDescriptor]:
    functions = []
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            if not _is_dunder(node.name):
                functions.append(_describe(node))
        elif isinstance(node, ast.ClassDef):
            receiver = Receiver(name=node.name, init_parameters=_init_parameters(node))
            for item in node.body:
                if not isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)):
                    continue
                if _is_dunder(item.name) or _is_property(item):
                    continue
                functions.append(_describe(item, receiver))
    return functions


def _describe(
    node: ast.FunctionDef | ast.AsyncFunctionDef,
    receiver: Optional[Receiver] = None,
) -> FunctionDescriptor:
    kind = FUNCTION
    if receiver is not None:
        decorators = {_decorator_name(d) for d in node.decorator_list}
        if "staticmethod" in decorators:
            kind = STATICMETHOD
        elif "classmethod" in decorators:
            kind = CLASSMETHOD
        else:
            kind = METHOD
    parameters = _parameters(node.args)
    if kind in (METHOD, CLASSMETHOD) and parameters and parameters[0].kind in (
        POSITIONAL_ONLY, POSITIONAL_OR_KEYWORD,
    ):
        parameters = parameters[1:]
    return FunctionDescriptor(
        name=node.name,
        receiver=receiver,
        parameters=parameters,
        is_async=isinstance(node, ast.AsyncFunctionDef),
        kind=kind,
        returns=ast.unparse(node.returns) if node.returns is not None else None,
    )


def _parameters(args: ast.arguments) -> list[Parameter]:
    params: list[Parameter] = []
    positional = list(args.posonlyargs) + list(args.args)
    # defaults align with the tail of the positional parameters
    defaults = [None] * (len(positional) - len(args.defaults)) + list(args.defaults)
    for index, arg in enumerate(positional):
        kind = POSITIONAL_ONLY if index < len(args.posonlyargs) else POSITIONAL_OR_KEYWORD
        params.append(_parameter(arg, kind, defaults[index]))
    if args.vararg is not None:
        params.append(_parameter(args.vararg, VAR_POSITIONAL))
    for arg, default in zip(args.kwonlyargs, args.kw_defaults):
        params.append(_parameter(arg, KEYWORD_ONLY, default))
    if args.kwarg is not None:
        params.append(_parameter(args.kwarg, VAR_KEYWORD))
    return params


def _parameter(arg: ast.arg, kind: str, default: Optional[ast.expr] = None) -> Parameter:
    return Parameter(
        name=arg.arg,
        kind=kind,
        annotation=ast.unparse(arg.annotation) if arg.annotation is not None else None,
        default=ast.unparse(default) if default is not None else None,
    )


def _init_parameters(cls: ast.ClassDef) -> list[Parameter]:
    for item in cls.body:
        if isinstance(item, ast.FunctionDef) and item.name == "__init__":
            return _parameters(item.args)[1:]
    return []


def _is_dunder(name: str) -> bool:
    return name.startswith("__") and name.endswith("__")


def _is_property(node: ast.FunctionDef | ast.AsyncFunctionDef) -> bool:
    for decorator in node.decorator_list:
        name = _decorator_name(decorator)
        if name in _PROPERTY_DECORATORS or name.endswith((".setter", ".deleter", ".getter")):
            return True
    return False


def _decorator_name(node: ast.expr) -> str:
    if isinstance(node, ast.Call):
        node = node.func
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = _decorator_name(node.value)
        return f"{base}.{node.attr}" if base else node.attr
    return ""


# ── Imports ──


def _absolute_imports(tree: ast.Module, module: str, is_package: bool) -> list[str]:
    """The module's top-level imports, relative ones rewritten as absolute."""
    package = module if is_package else module.rpartition(".")[0]
    imports = []
    for node in tree.body:
        if isinstance(node, ast.Import):
            imports.append(ast.unparse(node))
        elif isinstance(node, ast.ImportFrom):
            if any(alias.name == "*" for alias in node.names):
                continue
            if node.module == "__future__":
                continue
            if node.level:
                resolved = _resolve_relative(package, node.module, node.level)
                if resolved is None:
                    logger.debug("Cannot resolve relative import in %s", module)
                    continue
                node = ast.ImportFrom(module=resolved, names=node.names, level=0)
            imports.append(ast.unparse(node))
    return imports


def _resolve_relative(package: str, name: Optional[str], level: int) -> Optional[str]:
    parts = package.split(".") if package else []
    if level - 1 > len(parts) or (level - 1 == len(parts) and not name):
        return None
    base = parts[: len(parts) - (level - 1)]
    if name:
        base.append(name)
    return ".".join(base) or None
