"""Source Normalizer - turns composed test text into final source.

Three passes over the rough text:
  1. Import resolution: unused top-level imports are dropped, names that
     are used but never bound are imported from the standard library, a
     small table of well-known names, or sibling modules, and all
     top-level imports are gathered into one block.
  2. isort sorts and groups the import block.
  3. black formats the module.

A scratch file holding the rough text lives for the duration of one call
and is removed however the call ends.  It sits in the context directory
(the one whose modules count as first-party siblings) when that directory
is writable, and in the system temp directory otherwise.
"""

import ast
import builtins
import importlib.util
import logging
import sys
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional, TextIO

import black
import isort
from isort.exceptions import ISortError

from pytestgen.config import DEBUG_ENV_VAR
from pytestgen.models import PytestgenError

logger = logging.getLogger(__name__)

# ── Constants ──

SCRATCH_PREFIX = "pytestgen_"

DEBUG_HINT = (
    f"You can set {DEBUG_ENV_VAR}=1 to print the intermediate generated code "
    "before it is formatted."
)

# Non-module names that generated tests commonly use unqualified
WELL_KNOWN_IMPORTS = {
    "pytest": "import pytest",
    "mock": "from unittest import mock",
    "Mock": "from unittest.mock import Mock",
    "MagicMock": "from unittest.mock import MagicMock",
    "patch": "from unittest.mock import patch",
    "Path": "from pathlib import Path",
}

_IMPLICIT_NAMES = frozenset(dir(builtins)) | {
    "__file__",
    "__builtins__",
    "__path__",
    "__annotations__",
}


# ── Exceptions ──


class NormalizationError(PytestgenError):
    """The composed source could not be normalized."""

    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"normalizing generated source: {cause}\n{DEBUG_HINT}")


# ── Scratch File ──


@contextmanager
def scratch_file(text: str, directory: str | Path | None = None) -> Iterator[Path]:
    """Create a ``pytestgen_*.py`` file holding *text*; always removed on exit.

    Falls back to the system temp directory when *directory* is not writable.
    """
    try:
        fh = _named_scratch(directory)
    except OSError as exc:
        if directory is None:
            raise
        logger.debug("Cannot create scratch file in %s (%s); using temp dir", directory, exc)
        fh = _named_scratch(None)
    with fh:
        path = Path(fh.name)
    try:
        path.write_text(text, encoding="utf-8")
        yield path
    finally:
        path.unlink(missing_ok=True)


def _named_scratch(directory: str | Path | None):
    return tempfile.NamedTemporaryFile(
        mode="w",
        prefix=SCRATCH_PREFIX,
        suffix=".py",
        dir=directory,
        encoding="utf-8",
        delete=False,
    )


# ── Normalizer ──


def normalize(
    rough: bytes,
    *,
    context_dir: str | Path | None = None,
    keep: Iterable[str] = (),
    debug: bool = False,
    debug_stream: Optional[TextIO] = None,
) -> bytes:
    """Resolve imports and format *rough* into final test source.

    Args:
        rough: Composed, unformatted UTF-8 source.
        context_dir: Directory whose modules count as first-party siblings.
            The scratch file is created there when it is writable, otherwise
            in the system temp directory.
        keep: Bound names whose imports are never pruned, e.g. the imports
            of an existing test module that new tests extend.
        debug: On failure, also write *rough* to *debug_stream*.
        debug_stream: Diagnostic channel for *debug*; stdout by default.

    Raises:
        NormalizationError: If the source is not UTF-8, does not parse, or a
            formatter fails.
    """
    try:
        text = rough.decode("utf-8")
        with scratch_file(text, context_dir) as scratch:
            context = Path(context_dir) if context_dir else scratch.parent
            source = resolve_imports(text, context_dir=context, keep=keep)
            source = isort.code(
                source,
                file_path=scratch,
                disregard_skip=True,
                profile="black",
                src_paths=(str(context),),
            )
            source = black.format_str(source, mode=black.Mode())
    except (SyntaxError, ValueError, OSError, AssertionError, ISortError) as exc:
        if debug:
            _dump_intermediate(rough.decode("utf-8", errors="replace"), debug_stream)
        raise NormalizationError(exc) from exc
    return source.encode("utf-8")


def import_bindings(source: str) -> set[str]:
    """Names bound by the top-level imports of *source*."""
    if not source:
        return set()
    try:
        tree = ast.parse(source)
    except SyntaxError as exc:
        raise NormalizationError(exc) from exc
    return {
        _binding(alias, node)
        for node in tree.body
        if isinstance(node, (ast.Import, ast.ImportFrom))
        for alias in node.names
        if alias.name != "*"
    }


def _dump_intermediate(text: str, stream: Optional[TextIO]) -> None:
    stream = stream or sys.stdout
    stream.write(text)
    if not text.endswith("\n"):
        stream.write("\n")
    stream.flush()
    logger.warning("Normalization failed; intermediate source written out")


# ── Import Resolution ──


def resolve_imports(
    source: str,
    context_dir: Optional[Path] = None,
    keep: Iterable[str] = (),
) -> str:
    """Prune unused imports, add missing ones, and hoist them to the top.

    Imports binding a name in *keep* are never pruned.  Imports left whole
    keep their original text, comments included.  Source that needs no
    change is returned as is.

    Raises:
        SyntaxError: If *source* does not parse.
    """
    tree = ast.parse(source)
    lines = source.splitlines(keepends=True)
    hoisted = [node for node in tree.body if _is_hoistable(node, lines)]
    used = _used_names(tree) | set(keep)

    block: list[str] = []
    changed = False
    for node in hoisted:
        pruned = _prune(node, used)
        if pruned is None:
            logger.debug("Dropping unused import: %s", ast.unparse(node))
            changed = True
            continue
        if pruned is not node:
            changed = True
            block.append(ast.unparse(pruned))
        else:
            block.append(_source_of(node, lines))

    chains = _attribute_chains(tree)
    for name in sorted(used - _bound_names(tree) - _IMPLICIT_NAMES):
        line = _resolve_missing(name, chains.get(name, {name}), context_dir)
        if line is None:
            logger.debug("Could not resolve name: %s", name)
            continue
        logger.debug("Adding import: %s", line)
        block.append(line)
        changed = True

    unique = list(dict.fromkeys(block))
    if len(unique) != len(block):
        changed = True
    if not changed and _is_leading_block(tree, hoisted):
        return source

    removed: set[int] = set()
    for node in hoisted:
        removed.update(range(node.lineno - 1, node.end_lineno))
    insert_at = _insertion_index(tree)

    out: list[str] = []
    for index, line in enumerate(lines):
        if index == insert_at:
            out.extend(stmt + "\n" for stmt in unique)
        if index not in removed:
            out.append(line)
    if insert_at >= len(lines):
        if out and not out[-1].endswith("\n"):
            out[-1] += "\n"
        out.extend(stmt + "\n" for stmt in unique)
    return "".join(out)


def _source_of(node: ast.stmt, lines: list[str]) -> str:
    return "".join(lines[node.lineno - 1:node.end_lineno]).rstrip()


def _is_hoistable(node: ast.stmt, lines: list[str]) -> bool:
    """Top-level import that owns every line it spans."""
    if not isinstance(node, (ast.Import, ast.ImportFrom)):
        return False
    first = lines[node.lineno - 1].encode("utf-8")
    last = lines[node.end_lineno - 1].encode("utf-8")
    if first[:node.col_offset].strip():
        return False
    rest = last[node.end_col_offset:].strip()
    return not rest or rest.startswith(b"#")


def _binding(alias: ast.alias, node: ast.stmt) -> str:
    if alias.asname:
        return alias.asname
    if isinstance(node, ast.Import):
        return alias.name.split(".")[0]
    return alias.name


def _prune(node: ast.stmt, used: set[str]) -> Optional[ast.stmt]:
    """Drop aliases whose bound name is unused; None if nothing is left."""
    if isinstance(node, ast.ImportFrom):
        if node.module == "__future__" or any(a.name == "*" for a in node.names):
            return node
    keep = [alias for alias in node.names if _binding(alias, node) in used]
    if not keep:
        return None
    if len(keep) == len(node.names):
        return node
    if isinstance(node, ast.ImportFrom):
        return ast.ImportFrom(module=node.module, names=keep, level=node.level)
    return ast.Import(names=keep)


def _used_names(tree: ast.Module) -> set[str]:
    """Names read anywhere, plus pytest fixtures requested by name."""
    used: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Load):
            used.add(node.id)
        elif isinstance(node, ast.arg):
            # fixture parameters resolve against module-level imports
            used.add(node.arg)
        elif isinstance(node, ast.Call) and _dotted(node.func).endswith("usefixtures"):
            used.update(
                arg.value for arg in node.args
                if isinstance(arg, ast.Constant) and isinstance(arg.value, str)
            )
        annotation = _annotation_of(node)
        if isinstance(annotation, ast.Constant) and isinstance(annotation.value, str):
            used.update(_names_in_string_annotation(annotation.value))
    used.update(_dunder_all(tree))
    return used


def _annotation_of(node: ast.AST) -> Optional[ast.expr]:
    if isinstance(node, (ast.arg, ast.AnnAssign)):
        return node.annotation
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        return node.returns
    return None


def _names_in_string_annotation(text: str) -> set[str]:
    try:
        expr = ast.parse(text, mode="eval")
    except SyntaxError:
        return set()
    return {n.id for n in ast.walk(expr) if isinstance(n, ast.Name)}


def _dunder_all(tree: ast.Module) -> set[str]:
    names: set[str] = set()
    for node in tree.body:
        if not isinstance(node, ast.Assign):
            continue
        if not any(isinstance(t, ast.Name) and t.id == "__all__" for t in node.targets):
            continue
        if isinstance(node.value, (ast.List, ast.Tuple)):
            names.update(
                elt.value for elt in node.value.elts
                if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
            )
    return names


def _bound_names(tree: ast.Module) -> set[str]:
    """Every name bound anywhere in the module, in any scope."""
    bound: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and not isinstance(node.ctx, ast.Load):
            bound.add(node.id)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            bound.add(node.name)
        elif isinstance(node, ast.arg):
            bound.add(node.arg)
        elif isinstance(node, (ast.Import, ast.ImportFrom)):
            bound.update(_binding(a, node) for a in node.names if a.name != "*")
        elif isinstance(node, ast.ExceptHandler) and node.name:
            bound.add(node.name)
        elif isinstance(node, (ast.Global, ast.Nonlocal)):
            bound.update(node.names)
        elif isinstance(node, (ast.MatchAs, ast.MatchStar)) and node.name:
            bound.add(node.name)
        elif isinstance(node, ast.MatchMapping) and node.rest:
            bound.add(node.rest)
    return bound


def _attribute_chains(tree: ast.Module) -> dict[str, set[str]]:
    """Dotted names used in the module, keyed by their root name."""
    chains: dict[str, set[str]] = {}
    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute):
            dotted = _dotted(node)
            if dotted:
                chains.setdefault(dotted.split(".")[0], set()).add(dotted)
    return chains


def _dotted(node: ast.expr) -> str:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = _dotted(node.value)
        return f"{base}.{node.attr}" if base else ""
    return ""


def _resolve_missing(
    name: str, chains: set[str], context_dir: Optional[Path]
) -> Optional[str]:
    if name in WELL_KNOWN_IMPORTS:
        return WELL_KNOWN_IMPORTS[name]
    if name in sys.stdlib_module_names:
        modules = {_longest_module(chain) for chain in chains}
        # import the deepest module; "import a.b" also binds "a"
        return f"import {max(modules, key=lambda m: (m.count('.'), m))}"
    if context_dir is not None and _is_sibling_module(name, context_dir):
        return f"import {name}"
    return None


def _longest_module(chain: str) -> str:
    """Longest importable prefix of a stdlib dotted name."""
    parts = chain.split(".")
    module = parts[0]
    try:
        spec = importlib.util.find_spec(module)
    except (ImportError, ValueError):
        return module
    for part in parts[1:]:
        if spec is None or spec.submodule_search_locations is None:
            break
        candidate = f"{module}.{part}"
        try:
            spec = importlib.util.find_spec(candidate)
        except (ImportError, ValueError):
            break
        if spec is None:
            break
        module = candidate
    return module


def _is_sibling_module(name: str, directory: Path) -> bool:
    return (directory / f"{name}.py").is_file() or (
        directory / name / "__init__.py"
    ).is_file()


def _is_docstring(node: ast.stmt) -> bool:
    return (
        isinstance(node, ast.Expr)
        and isinstance(node.value, ast.Constant)
        and isinstance(node.value.value, str)
    )


def _is_leading_block(tree: ast.Module, hoisted: list[ast.stmt]) -> bool:
    """Imports already form one block right after the docstring."""
    start = 1 if tree.body and _is_docstring(tree.body[0]) else 0
    block = tree.body[start:start + len(hoisted)]
    if len(block) != len(hoisted) or any(a is not b for a, b in zip(block, hoisted)):
        return False
    rest = tree.body[start + len(hoisted):]
    return not any(isinstance(n, (ast.Import, ast.ImportFrom)) for n in rest)


def _insertion_index(tree: ast.Module) -> int:
    """0-based line index where the import block goes."""
    if not tree.body:
        return 0
    first = tree.body[0]
    if _is_docstring(first):
        return first.end_lineno
    decorators = getattr(first, "decorator_list", None) or [first]
    return min(first.lineno, *(d.lineno for d in decorators)) - 1

