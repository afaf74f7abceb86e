"""Render Composer - writes a header and one test block per function.

The composed text is deliberately rough: no formatting and no import
correction happen here.  That is the normalizer's job.
"""

import io
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from pytestgen.models import FunctionDescriptor, Header, PytestgenError
from pytestgen.templates import TemplateSet

logger = logging.getLogger(__name__)

# ── Constants ──

STAGE_HEADER = "header"
STAGE_FUNCTION = "function"


# ── Exceptions ──


class RenderError(PytestgenError):
    """A header or function template failed to render."""

    def __init__(self, stage: str, cause: Exception, function_name: Optional[str] = None):
        self.stage = stage
        self.cause = cause
        self.function_name = function_name
        if function_name:
            message = f"rendering {stage} for {function_name}: {cause}"
        else:
            message = f"rendering {stage}: {cause}"
        super().__init__(message)


# ── Data Classes ──


@dataclass
class RenderOptions:
    """Per-run switches handed to every function template."""

    print_inputs: bool = False
    subtests: bool = True
    parallel: bool = False
    template_params: dict[str, Any] = field(default_factory=dict)


# ── Composer ──


def compose(
    template_set: TemplateSet,
    header: Header,
    functions: Sequence[FunctionDescriptor],
    options: Optional[RenderOptions] = None,
) -> bytes:
    """Render *header* once, then each function in order.

    Raises:
        RenderError: On the first template failure.  Nothing is returned
            for a failed composition.
    """
    options = options or RenderOptions()
    buf = io.StringIO()

    try:
        template_set.render_header(buf, header)
    except Exception as exc:
        raise RenderError(STAGE_HEADER, exc) from exc

    for fn in functions:
        try:
            template_set.render_function(
                buf,
                fn,
                options.print_inputs,
                options.subtests,
                options.parallel,
                options.template_params,
            )
        except Exception as exc:
            raise RenderError(STAGE_FUNCTION, exc, function_name=fn.full_name) from exc

    logger.debug(
        "Composed %d test block(s) for %s", len(functions), header.module,
    )
    return buf.getvalue().encode("utf-8")
