"""Template Resolver - picks and loads the template set used for rendering.

A template set is a pair of jinja2 templates, ``header.py.j2`` and
``function.py.j2``, plus whatever they include.  It can come from a
directory on disk, a built-in named set, or in-memory template sources.
The loaded set is an explicit ``TemplateSet`` value handed to the render
composer; nothing is registered globally, so each run sees only the set it
loaded.

Template sources given as in-memory blobs name themselves with a leading
directive comment::

    {# define "header" #}
    import pytest
    ...
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence, TextIO

import jinja2

from pytestgen.models import (
    CLASSMETHOD,
    KEYWORD_ONLY,
    METHOD,
    STATICMETHOD,
    VAR_KEYWORD,
    VAR_POSITIONAL,
    FunctionDescriptor,
    Header,
    Parameter,
    PytestgenError,
)

logger = logging.getLogger(__name__)

# ── Constants ──

BUILTIN_TEMPLATES_ROOT = Path(__file__).resolve().parent / "templates"
DEFAULT_TEMPLATE_SET = "pytest"

TEMPLATE_SUFFIX = ".py.j2"
HEADER_TEMPLATE = "header" + TEMPLATE_SUFFIX
FUNCTION_TEMPLATE = "function" + TEMPLATE_SUFFIX

_DEFINE_RE = re.compile(r'\A\s*\{#-?\s*define\s+"([\w.\-/]+)"\s*-?#\}')


# ── Exceptions ──


class TemplateLoadError(PytestgenError):
    """The selected template set could not be loaded."""

    def __init__(self, selection: "TemplateSelection", cause: object):
        self.selection = selection
        self.cause = cause
        super().__init__(f"loading templates ({selection}): {cause}")


# ── Selection ──


class SelectionKind(str, Enum):
    """Where a template set comes from."""

    DEFAULT = "default"
    NAMED = "named"
    DIRECTORY = "directory"
    DATA = "data"


@dataclass(frozen=True)
class TemplateSelection:
    """Exactly one template source for a run."""

    kind: SelectionKind
    name: str = ""
    directory: Optional[Path] = None
    blobs: tuple[bytes, ...] = ()

    def __str__(self) -> str:
        if self.kind is SelectionKind.DIRECTORY:
            return f"directory {self.directory}"
        if self.kind is SelectionKind.NAMED:
            return f"template set {self.name!r}"
        if self.kind is SelectionKind.DATA:
            return f"{len(self.blobs)} in-memory template(s)"
        return f"default template set {DEFAULT_TEMPLATE_SET!r}"


def resolve_selection(
    template_dir: str | Path | None = None,
    template_name: Optional[str] = None,
    template_data: Optional[Sequence[bytes]] = None,
) -> TemplateSelection:
    """Pick one template source.  Directory > named set > data > default."""
    if template_dir:
        return TemplateSelection(SelectionKind.DIRECTORY, directory=Path(template_dir))
    if template_name:
        return TemplateSelection(SelectionKind.NAMED, name=template_name)
    if template_data:
        return TemplateSelection(SelectionKind.DATA, blobs=tuple(template_data))
    return TemplateSelection(SelectionKind.DEFAULT)


def available_template_sets() -> list[str]:
    """Names of the built-in template sets."""
    return sorted(
        p.name for p in BUILTIN_TEMPLATES_ROOT.iterdir()
        if p.is_dir() and (p / HEADER_TEMPLATE).is_file()
    )


# ── Template Set ──


class TemplateSet:
    """A loaded header template and function template.

    Usage::

        template_set = load_template_set(resolve_selection(template_name="unittest"))
        template_set.render_header(stream, header)
        template_set.render_function(stream, fn, False, True, False, {})
    """

    def __init__(self, selection: TemplateSelection, environment: jinja2.Environment):
        self.selection = selection
        self._env = environment
        self._header = environment.get_template(HEADER_TEMPLATE)
        self._function = environment.get_template(FUNCTION_TEMPLATE)

    def render_header(self, stream: TextIO, header: Header) -> None:
        stream.write(self._header.render(header=header))

    def render_function(
        self,
        stream: TextIO,
        fn: FunctionDescriptor,
        print_inputs: bool,
        subtests: bool,
        parallel: bool,
        params: dict[str, Any],
    ) -> None:
        stream.write(
            self._function.render(
                fn=fn,
                print_inputs=print_inputs,
                subtests=subtests,
                parallel=parallel,
                params=params,
            )
        )


def load_template_set(selection: TemplateSelection) -> TemplateSet:
    """Load the templates named by *selection*.

    Raises:
        TemplateLoadError: If the source is missing, a required template is
            absent, or a template does not compile.
    """
    try:
        loader = _build_loader(selection)
        template_set = TemplateSet(selection, _build_environment(loader))
    except TemplateLoadError:
        raise
    except (jinja2.TemplateError, OSError, UnicodeDecodeError) as exc:
        raise TemplateLoadError(selection, exc) from exc
    logger.info("Loaded %s", selection)
    return template_set


def _build_loader(selection: TemplateSelection) -> jinja2.BaseLoader:
    if selection.kind is SelectionKind.DIRECTORY:
        if not selection.directory.is_dir():
            raise TemplateLoadError(selection, "not a directory")
        return jinja2.FileSystemLoader(str(selection.directory))

    if selection.kind is SelectionKind.DATA:
        return jinja2.DictLoader(_parse_blobs(selection))

    name = selection.name or DEFAULT_TEMPLATE_SET
    directory = BUILTIN_TEMPLATES_ROOT / name
    if "/" in name or "\\" in name or not directory.is_dir():
        raise TemplateLoadError(
            selection,
            f"unknown template set {name!r}; available: "
            + ", ".join(available_template_sets()),
        )
    return jinja2.FileSystemLoader(str(directory))


def _parse_blobs(selection: TemplateSelection) -> dict[str, str]:
    templates: dict[str, str] = {}
    for index, blob in enumerate(selection.blobs):
        source = blob.decode("utf-8")
        match = _DEFINE_RE.match(source)
        if match is None:
            raise TemplateLoadError(
                selection, f'template #{index} has no {{# define "name" #}} directive'
            )
        name = match.group(1)
        if "." not in name:
            name += TEMPLATE_SUFFIX
        templates[name] = source[match.end():].lstrip("\n")
    return templates


def _build_environment(loader: jinja2.BaseLoader) -> jinja2.Environment:
    env = jinja2.Environment(
        loader=loader,
        autoescape=False,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=jinja2.StrictUndefined,
    )
    env.globals.update(
        call_expression=call_expression,
        case_skeleton=case_skeleton,
        failure_message=failure_message,
    )
    return env


# ── Template Helpers ──


def call_expression(fn: FunctionDescriptor, instance: str = "obj") -> str:
    """Source for calling *fn* with arguments taken from ``case["args"]``."""
    if fn.receiver is None:
        target = fn.name
    elif fn.kind in (STATICMETHOD, CLASSMETHOD):
        target = f"{fn.receiver.name}.{fn.name}"
    else:
        target = f"{instance}.{fn.name}"
    call = f"{target}({', '.join(_call_args(fn.parameters))})"
    if fn.is_async:
        call = f"asyncio.run({call})"
    return call


def case_skeleton(fn: FunctionDescriptor) -> str:
    """A one-line example test case for *fn*, shown as a comment."""
    parts = ['"name": ""']
    if fn.receiver is not None and fn.kind == METHOD:
        fields = [p for p in fn.receiver.init_parameters if not p.is_variadic]
        parts.append('"fields": ' + _dict_skeleton(fields))
    parts.append('"args": ' + _dict_skeleton(fn.parameters))
    if fn.has_return:
        parts.append('"want": None')
    parts.append('"raises": None')
    return "{" + ", ".join(parts) + "}"


def failure_message(fn: FunctionDescriptor, print_inputs: bool = False) -> str:
    """An f-string literal describing a failed comparison."""
    inputs = ", ".join(_input_fields(fn.parameters)) if print_inputs else ""
    head = "{case['name']}: " + fn.full_name + "(" + inputs + ")"
    return 'f"' + head + " = {got!r}, want {case['want']!r}" + '"'


def _arg_ref(param: Parameter) -> str:
    return f'case["args"]["{param.name}"]'


def _call_args(parameters: list[Parameter]) -> list[str]:
    args = []
    for param in parameters:
        if param.kind == VAR_POSITIONAL:
            args.append("*" + _arg_ref(param))
        elif param.kind == VAR_KEYWORD:
            args.append("**" + _arg_ref(param))
        elif param.kind == KEYWORD_ONLY:
            args.append(f"{param.name}={_arg_ref(param)}")
        else:
            args.append(_arg_ref(param))
    return args


def _input_fields(parameters: list[Parameter]) -> list[str]:
    fields = []
    for param in parameters:
        ref = "{case['args']['" + param.name + "']!r}"
        if param.kind == VAR_POSITIONAL:
            fields.append("*" + ref)
        elif param.kind == VAR_KEYWORD:
            fields.append("**" + ref)
        elif param.kind == KEYWORD_ONLY:
            fields.append(f"{param.name}={ref}")
        else:
            fields.append(ref)
    return fields


def _dict_skeleton(parameters: list[Parameter]) -> str:
    items = []
    for param in parameters:
        if param.kind == VAR_POSITIONAL:
            value = "()"
        elif param.kind == VAR_KEYWORD:
            value = "{}"
        else:
            value = "None"
        items.append(f'"{param.name}": {value}')
    return "{" + ", ".join(items) + "}"
