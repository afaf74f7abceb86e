"""Run configuration: raw options, function filters and template parameters.

Everything here is resolved once per run, before any target is analyzed.
A bad filter or an unreadable parameter file is a configuration error for
the whole run, never a per-file failure.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pytestgen.models import FunctionDescriptor, PytestgenError

# Try tomllib (Python 3.11+) then tomli for TOML parameter files
try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redefine]

logger = logging.getLogger(__name__)

# ── Constants ──

DEBUG_ENV_VAR = "DEBUG_GENERATED"

SPECIFY_FLAG_MESSAGE = (
    "Please specify either the --only, --excl, --exported, or --all flag"
)
SPECIFY_FILE_MESSAGE = "Please specify a file or directory containing the source"

# ── Exceptions ──


class ConfigurationError(PytestgenError):
    """Invalid run configuration; raised before any target is processed."""


class InvalidPatternError(ConfigurationError):
    """A filter pattern failed to compile."""

    def __init__(self, field_name: str, cause: re.error):
        self.field_name = field_name
        self.cause = cause
        super().__init__(f"Invalid {field_name} regex: {cause}")


# ── Data Classes ──


@dataclass
class Options:
    """Raw options for one generation run, as given on the command line.

    Attributes:
        only: Regex; only functions whose qualified name matches are used.
        exclude: Regex; functions whose qualified name matches are skipped.
        exported: Only include functions without a leading underscore.
        all_funcs: Include all functions that do not have a test yet.
        print_inputs: Print function arguments in assertion messages.
        subtests: Render each test case as its own subtest.
        parallel: Run the test cases of a function concurrently.
        write_output: Write generated tests to files instead of the stream.
        template: Name of a built-in template set.
        template_dir: Path to a custom template set.
        template_params_path: Path to a JSON or TOML parameter file.
        template_params: Inline JSON object with template parameters.
        template_data: In-memory template sources (``{# define "name" #}``).
        debug_generated: Surface the pre-normalization source on failure.
            Read from ``DEBUG_GENERATED`` when left as None.
    """

    only: str = ""
    exclude: str = ""
    exported: bool = False
    all_funcs: bool = False
    print_inputs: bool = False
    subtests: bool = True
    parallel: bool = False
    write_output: bool = False
    template: str = ""
    template_dir: str = ""
    template_params_path: str = ""
    template_params: str = ""
    template_data: list[bytes] = field(default_factory=list)
    debug_generated: Optional[bool] = None


@dataclass
class FilterConfig:
    """Compiled function filters.  A None pattern places no constraint."""

    include: Optional[re.Pattern] = None
    exclude: Optional[re.Pattern] = None
    exported_only: bool = False
    all: bool = False

    def allows(self, fn: FunctionDescriptor) -> bool:
        """Whether *fn* should get a generated test."""
        name = fn.full_name
        if self.include is not None and not self.include.search(name):
            return False
        if self.exclude is not None and self.exclude.search(name):
            return False
        if self.exported_only and not fn.is_exported:
            return False
        return True


# ── Filter Resolver ──


def resolve_filters(
    only: str = "",
    exclude: str = "",
    exported: bool = False,
    all_funcs: bool = False,
) -> FilterConfig:
    """Compile filter flags into a FilterConfig.

    Raises:
        ConfigurationError: If no selection mode was requested.
        InvalidPatternError: If a pattern does not compile; the error
            names the offending flag.
    """
    if not only and not exclude and not exported and not all_funcs:
        raise ConfigurationError(SPECIFY_FLAG_MESSAGE)
    return FilterConfig(
        include=_compile("--only", only),
        exclude=_compile("--excl", exclude),
        exported_only=exported,
        all=all_funcs,
    )


def _compile(field_name: str, pattern: str) -> Optional[re.Pattern]:
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise InvalidPatternError(field_name, exc) from exc


# ── Parameter Loader ──


def load_template_params(path: str | Path | None) -> dict[str, Any]:
    """Read a template parameter file into a mapping.

    ``.toml`` files are decoded as TOML, anything else as JSON.  An empty
    path yields an empty mapping.

    Raises:
        ConfigurationError: On any read or decode failure.
    """
    if not path:
        return {}
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ConfigurationError(
            f"Failed to read template params from {path}: {exc}"
        ) from exc

    try:
        if path.suffix.lower() == ".toml":
            data = tomllib.loads(raw.decode("utf-8"))
        else:
            data = json.loads(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"Failed to decode template params from {path}: {exc}"
        ) from exc

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Template params in {path} must be a mapping, "
            f"got {type(data).__name__}"
        )
    logger.info("Loaded %d template params from %s", len(data), path)
    return data


def parse_template_params(text: str) -> dict[str, Any]:
    """Decode an inline JSON object of template parameters."""
    if not text:
        return {}
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ConfigurationError(f"Failed to decode template params: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Template params must be a JSON object, got {type(data).__name__}"
        )
    return data


def resolve_template_params(options: Options) -> dict[str, Any]:
    """Parameter file wins over the inline string."""
    if options.template_params_path:
        return load_template_params(options.template_params_path)
    return parse_template_params(options.template_params)


# ── Diagnostic Switch ──


def debug_generated_enabled(environ: Optional[dict] = None) -> bool:
    """Whether ``DEBUG_GENERATED`` asks for the intermediate source.

    Any non-empty value enables the dump, including ``0``.
    """
    env = os.environ if environ is None else environ
    return bool(env.get(DEBUG_ENV_VAR, ""))
