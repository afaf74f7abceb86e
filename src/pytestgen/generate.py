"""Generation Loop - turns a list of targets into generated test modules.

Flow for one run:
  1. Resolve filters, template parameters and the template set.  These are
     run-wide; a failure here aborts before any target is touched.
  2. For each target in order: analyze, compose, normalize, then hand the
     artifact to the output sink.

Per-target failures are wrapped with the target path and stop the loop at
the first failing target.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence, TextIO

from pytestgen.analyzer import Analyzer, AnalysisError, analyze
from pytestgen.config import (
    SPECIFY_FILE_MESSAGE,
    ConfigurationError,
    FilterConfig,
    Options,
    debug_generated_enabled,
    resolve_filters,
    resolve_template_params,
)
from pytestgen.models import GeneratedArtifact, PytestgenError
from pytestgen.normalize import NormalizationError, import_bindings, normalize
from pytestgen.render import RenderError, RenderOptions, compose
from pytestgen.templates import TemplateSet, load_template_set, resolve_selection

logger = logging.getLogger(__name__)

# ── Constants ──

NEW_FILE_PERM = 0o644


# ── Exceptions ──


class NoMatchError(PytestgenError):
    """No function in the target survived the filters."""

    def __init__(self, target: str | Path):
        self.target = Path(target)
        super().__init__("no tests generated")


class OutputWriteError(PytestgenError):
    """A generated test file could not be written."""

    def __init__(self, path: Path, cause: OSError):
        self.path = path
        self.cause = cause
        super().__init__(f"{path} (--write): {cause}")


class TargetError(PytestgenError):
    """A per-target failure, tagged with the target that caused it."""

    def __init__(self, target: str | Path, cause: PytestgenError):
        self.target = Path(target)
        self.cause = cause
        super().__init__(f"{target}: {cause}")


_TARGET_ERRORS = (
    AnalysisError,
    NoMatchError,
    RenderError,
    NormalizationError,
    OutputWriteError,
)


# ── Loop ──


def run(
    targets: Sequence[str | Path],
    options: Optional[Options] = None,
    out: Optional[TextIO] = None,
    err: Optional[TextIO] = None,
    analyzer: Analyzer = analyze,
    debug_stream: Optional[TextIO] = None,
) -> list[GeneratedArtifact]:
    """Generate tests for every target, in order.

    Args:
        targets: Files or directories holding the source to test.
        options: Raw run options.
        out: Primary stream for generated source when not writing files.
            Defaults to stdout.
        err: Diagnostic stream for ``Generated <name>`` lines.  Defaults
            to stderr.
        analyzer: Discovery callable; the ``ast`` analyzer by default.
        debug_stream: Where the pre-normalization source goes when a
            target fails to normalize with debugging on.  Defaults to stdout.

    Returns:
        The artifacts produced, in target order.

    Raises:
        ConfigurationError: Bad filters, parameters, or no targets.
        TemplateLoadError: The template set could not be loaded.
        TargetError: A target failed; wraps the underlying error.
    """
    options = options or Options()
    out = sys.stdout if out is None else out
    err = sys.stderr if err is None else err

    filters = resolve_filters(
        only=options.only,
        exclude=options.exclude,
        exported=options.exported,
        all_funcs=options.all_funcs,
    )
    params = resolve_template_params(options)
    if not targets:
        raise ConfigurationError(SPECIFY_FILE_MESSAGE)

    template_set = load_template_set(
        resolve_selection(
            template_dir=options.template_dir,
            template_name=options.template,
            template_data=options.template_data,
        )
    )
    render_options = RenderOptions(
        print_inputs=options.print_inputs,
        subtests=options.subtests,
        parallel=options.parallel,
        template_params=params,
    )
    debug = (
        debug_generated_enabled()
        if options.debug_generated is None
        else options.debug_generated
    )

    artifacts: list[GeneratedArtifact] = []
    for target in targets:
        try:
            generated = generate_tests(
                target, filters, template_set, render_options, analyzer, debug,
                debug_stream,
            )
            for artifact in generated:
                output_artifact(artifact, options.write_output, out, err)
        except _TARGET_ERRORS as exc:
            raise TargetError(target, exc) from exc
        artifacts.extend(generated)
    return artifacts


def generate_tests(
    target: str | Path,
    filters: FilterConfig,
    template_set: TemplateSet,
    render_options: RenderOptions,
    analyzer: Analyzer = analyze,
    debug: bool = False,
    debug_stream: Optional[TextIO] = None,
) -> list[GeneratedArtifact]:
    """Analyze one target and build an artifact per analyzed source file.

    Raises:
        NoMatchError: If nothing in the target passed the filters.
    """
    analyses = [a for a in analyzer(Path(target), filters) if a.functions]
    if not analyses:
        raise NoMatchError(target)

    artifacts = []
    for analysis in analyses:
        rough = compose(template_set, analysis.header, analysis.functions, render_options)
        source_dir = analysis.source_path.parent
        output = normalize(
            rough,
            context_dir=source_dir if source_dir.is_dir() else None,
            keep=import_bindings(analysis.header.code),
            debug=debug,
            debug_stream=debug_stream,
        )
        artifacts.append(GeneratedArtifact(
            source_path=analysis.source_path,
            path=analysis.test_path,
            output=output,
            generated_names=tuple(fn.test_name for fn in analysis.functions),
        ))
        logger.info(
            "Generated %d test(s) for %s", len(analysis.functions), analysis.source_path,
        )
    return artifacts


# ── Output Sink ──


def output_artifact(
    artifact: GeneratedArtifact,
    write_output: bool,
    out: TextIO,
    err: TextIO,
) -> None:
    """Write *artifact* to its test file or to *out*, then report its tests.

    Raises:
        OutputWriteError: If the test file cannot be written.
    """
    if write_output:
        _write_file(artifact.path, artifact.output)
    for name in artifact.generated_names:
        print("Generated", name, file=err)
    if not write_output:
        out.write(artifact.output.decode("utf-8"))
        out.flush()


def _write_file(path: Path, data: bytes) -> None:
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, NEW_FILE_PERM)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
    except OSError as exc:
        raise OutputWriteError(path, exc) from exc
    logger.info("Wrote %s", path)
