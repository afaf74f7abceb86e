"""Tests for the Source Normalizer.

Tests cover:
  - Import resolution (pruning, adding, hoisting, deduplication, kept imports)
  - Full normalization through isort and black
  - Idempotency on already-normalized output
  - Failure wrapping and the debug channel
  - Scratch file lifetime and the temp-directory fallback
"""

import io
import tempfile
from pathlib import Path

import black
import pytest

from pytestgen.models import (
    CLASSMETHOD,
    METHOD,
    FunctionDescriptor,
    Header,
    Parameter,
    Receiver,
)
from pytestgen.normalize import (
    DEBUG_HINT,
    SCRATCH_PREFIX,
    NormalizationError,
    normalize,
    resolve_imports,
    scratch_file,
)
from pytestgen.render import RenderOptions, compose
from pytestgen.templates import load_template_set, resolve_selection


def _scratch_files(directory):
    return list(directory.glob(f"{SCRATCH_PREFIX}*"))


@pytest.fixture
def read_only_dir(tmp_path, monkeypatch):
    """A directory that refuses new files, even for root."""
    directory = tmp_path / "readonly"
    directory.mkdir()
    create = tempfile.NamedTemporaryFile

    def refuse_in_directory(*args, **kwargs):
        target = kwargs.get("dir")
        if target is not None and Path(target).resolve() == directory.resolve():
            raise PermissionError(13, "Permission denied", str(directory))
        return create(*args, **kwargs)

    monkeypatch.setattr(tempfile, "NamedTemporaryFile", refuse_in_directory)
    return directory


# ── Import Resolution ──


class TestResolveImports:
    """Tests for resolve_imports."""

    def test_drops_unused_import(self):
        source = "import os\nimport sys\n\nprint(sys.argv)\n"
        assert resolve_imports(source) == "import sys\n\nprint(sys.argv)\n"

    def test_drops_unused_names_from_import(self):
        source = "from os import path, sep\nprint(sep)\n"
        assert resolve_imports(source) == "from os import sep\nprint(sep)\n"

    def test_unchanged_source_returned_as_is(self):
        source = '"""Doc."""\nimport os\n\nos.getcwd()\n'
        assert resolve_imports(source) == source

    def test_adds_stdlib_module(self):
        source = "def test_f():\n    asyncio.run(main())\n"
        assert resolve_imports(source) == "import asyncio\n" + source

    def test_adds_deepest_stdlib_module(self):
        source = "with concurrent.futures.ThreadPoolExecutor() as ex:\n    pass\n"
        assert resolve_imports(source).startswith("import concurrent.futures\n")

    def test_adds_well_known_name(self):
        source = "def test_f():\n    with pytest.raises(ValueError):\n        Path('x')\n"
        result = resolve_imports(source)
        assert "import pytest\n" in result
        assert "from pathlib import Path\n" in result

    def test_adds_sibling_module(self, tmp_path):
        (tmp_path / "helpers.py").write_text("def run():\n    pass\n")
        source = "helpers.run()\n"
        assert resolve_imports(source, context_dir=tmp_path) == "import helpers\n" + source

    def test_unknown_names_left_alone(self, tmp_path):
        source = "frobnicate()\n"
        assert resolve_imports(source, context_dir=tmp_path) == source

    def test_builtins_not_imported(self):
        source = "print(len([]))\n"
        assert resolve_imports(source) == source

    def test_locally_bound_names_not_imported(self):
        source = "def f(json):\n    return json\n"
        assert resolve_imports(source) == source

    def test_hoists_imports_below_docstring(self):
        source = '"""Doc."""\nx = 1\nimport os\nos.getcwd()\n'
        assert resolve_imports(source) == '"""Doc."""\nimport os\nx = 1\nos.getcwd()\n'

    def test_hoists_above_decorated_definition(self):
        source = "@pytest.fixture\ndef value():\n    return 1\nimport pytest\n"
        assert resolve_imports(source) == (
            "import pytest\n@pytest.fixture\ndef value():\n    return 1\n"
        )

    def test_deduplicates_imports(self):
        source = "import os\nos.sep\nimport os\n"
        assert resolve_imports(source) == "import os\nos.sep\n"

    def test_string_annotation_counts_as_use(self):
        source = "from typing import List\n\ndef f(x: 'List[int]'):\n    return x\n"
        assert resolve_imports(source) == source

    def test_dunder_all_counts_as_use(self):
        source = "from os import sep\n__all__ = ['sep']\n"
        assert resolve_imports(source) == source

    def test_nested_imports_untouched(self):
        source = "def f():\n    import os\n    return os.sep\n"
        assert resolve_imports(source) == source

    def test_syntax_error_propagates(self):
        with pytest.raises(SyntaxError):
            resolve_imports("def (:\n")

    def test_kept_names_never_pruned(self):
        source = "from fixtures import clean_db\n\nx = 1\n"
        assert resolve_imports(source, keep={"clean_db"}) == source

    def test_fixture_parameter_counts_as_use(self):
        source = "from fixtures import clean_db\n\n\ndef test_add(clean_db):\n    pass\n"
        assert resolve_imports(source) == source

    def test_usefixtures_counts_as_use(self):
        source = (
            "import pytest\nfrom fixtures import clean_db\n\n\n"
            '@pytest.mark.usefixtures("clean_db")\ndef test_add():\n    pass\n'
        )
        assert resolve_imports(source) == source

    def test_kept_import_keeps_its_comment(self):
        source = "import os\nimport numpy as np  # type: ignore[import]\n\nprint(np)\n"
        assert resolve_imports(source) == (
            "import numpy as np  # type: ignore[import]\n\nprint(np)\n"
        )

    def test_hoisted_import_keeps_its_comment(self):
        source = "x = 1\nimport os  # noqa: E402\nos.sep\n"
        assert resolve_imports(source) == "import os  # noqa: E402\nx = 1\nos.sep\n"


# ── Normalizer ──


class TestNormalize:
    """Tests for normalize."""

    def test_formats_and_prunes(self):
        out = normalize(b"import os\nimport sys\nx=sys.argv\n")
        assert out.startswith(b"import sys\n")
        assert b"import os" not in out
        assert b"x = sys.argv\n" in out

    def test_adds_async_runner_import(self):
        out = normalize(b"def test_f():\n    asyncio.run(f())\n")
        assert b"import asyncio\n" in out

    def test_sorts_imports(self):
        out = normalize(b"import sys\nimport os\nprint(os.sep, sys.argv)\n")
        assert out.index(b"import os") < out.index(b"import sys")

    def test_empty_input(self):
        assert normalize(b"") == b""

    def test_idempotent(self):
        out = normalize(b'"""Doc."""\nimport sys\nimport os\nx=[os.sep,sys.argv]\n')
        assert normalize(out) == out

    def test_syntax_error_wrapped(self):
        with pytest.raises(NormalizationError) as exc_info:
            normalize(b"def (:\n")
        assert isinstance(exc_info.value.cause, SyntaxError)
        assert DEBUG_HINT in str(exc_info.value)
        assert "DEBUG_GENERATED=1" in str(exc_info.value)

    def test_debug_writes_rough_text_on_failure(self):
        stream = io.StringIO()
        with pytest.raises(NormalizationError):
            normalize(b"def (:\n", debug=True, debug_stream=stream)
        assert stream.getvalue() == "def (:\n"

    def test_no_debug_output_when_disabled(self):
        stream = io.StringIO()
        with pytest.raises(NormalizationError):
            normalize(b"def (:\n", debug=False, debug_stream=stream)
        assert stream.getvalue() == ""

    def test_no_debug_output_on_success(self):
        stream = io.StringIO()
        normalize(b"x = 1\n", debug=True, debug_stream=stream)
        assert stream.getvalue() == ""

    def test_scratch_removed_on_success(self, tmp_path):
        normalize(b"x = 1\n", context_dir=tmp_path)
        assert _scratch_files(tmp_path) == []

    def test_scratch_removed_on_failure(self, tmp_path):
        with pytest.raises(NormalizationError):
            normalize(b"def (:\n", context_dir=tmp_path)
        assert _scratch_files(tmp_path) == []

    def test_missing_context_dir_uses_temp_dir(self, tmp_path):
        assert normalize(b"x = 1\n", context_dir=tmp_path / "absent") == b"x = 1\n"

    def test_sibling_module_from_context_dir(self, tmp_path):
        (tmp_path / "helpers.py").write_text("VALUE = 1\n")
        out = normalize(b"print(helpers.VALUE)\n", context_dir=tmp_path)
        assert out.startswith(b"import helpers\n")

    def test_read_only_context_dir(self, read_only_dir):
        (read_only_dir / "helpers.py").write_text("VALUE = 1\n")
        out = normalize(b"print(helpers.VALUE)\n", context_dir=read_only_dir)
        assert out.startswith(b"import helpers\n")
        assert _scratch_files(read_only_dir) == []

    def test_keep_preserves_existing_imports(self):
        rough = b"from fixtures import clean_db\n\nx = 1\n"
        assert normalize(rough, keep={"clean_db"}) == rough

    def test_invalid_utf8_wrapped(self):
        with pytest.raises(NormalizationError) as exc_info:
            normalize(b"x = '\xff'\n")
        assert isinstance(exc_info.value.cause, UnicodeDecodeError)

    def test_formatter_internal_error_wrapped(self, monkeypatch):
        def broken_format(source, *, mode):
            raise AssertionError("INTERNAL ERROR: unstable formatting")

        monkeypatch.setattr(black, "format_str", broken_format)
        stream = io.StringIO()
        with pytest.raises(NormalizationError) as exc_info:
            normalize(b"x = 1\n", debug=True, debug_stream=stream)
        assert isinstance(exc_info.value.cause, AssertionError)
        assert stream.getvalue() == "x = 1\n"


class TestNormalizeComposedModules:
    """Normalizing the output of the built-in templates."""

    @pytest.mark.parametrize("template", ["pytest", "unittest"])
    @pytest.mark.parametrize(
        "options",
        [
            RenderOptions(),
            RenderOptions(subtests=False),
            RenderOptions(parallel=True),
            RenderOptions(print_inputs=True, parallel=True, subtests=False),
        ],
    )
    def test_output_compiles(self, template, options):
        receiver = Receiver("Stack", init_parameters=[Parameter("capacity")])
        functions = [
            FunctionDescriptor(name="add", parameters=[Parameter("a"), Parameter("b")]),
            FunctionDescriptor(name="fetch", parameters=[Parameter("url")], is_async=True),
            FunctionDescriptor(
                name="push", receiver=receiver, parameters=[Parameter("item")],
                kind=METHOD, returns="None",
            ),
            FunctionDescriptor(name="empty", receiver=receiver, kind=CLASSMETHOD),
        ]
        header = Header(module="pkg.stack", names=["Stack", "add", "fetch", "unused"])
        template_set = load_template_set(resolve_selection(template_name=template))

        out = normalize(compose(template_set, header, functions, options))
        text = out.decode()

        compile(text, "test_stack.py", "exec")
        assert "from pkg.stack import Stack, add, fetch\n" in text
        assert "unused" not in text
        assert "import asyncio\n" in text
        assert ("import concurrent.futures\n" in text) == options.parallel
        assert normalize(out) == out


# ── Scratch File ──


class TestScratchFile:
    """Tests for scratch_file."""

    def test_holds_text_then_removed(self, tmp_path):
        with scratch_file("x = 1\n", tmp_path) as path:
            assert path.parent == tmp_path
            assert path.name.startswith(SCRATCH_PREFIX)
            assert path.suffix == ".py"
            assert path.read_text() == "x = 1\n"
        assert not path.exists()

    def test_removed_when_body_raises(self, tmp_path):
        with pytest.raises(RuntimeError):
            with scratch_file("x = 1\n", tmp_path) as path:
                raise RuntimeError("boom")
        assert not path.exists()
        assert _scratch_files(tmp_path) == []

    def test_falls_back_when_directory_refuses(self, read_only_dir):
        with scratch_file("x = 1\n", read_only_dir) as path:
            assert path.parent != read_only_dir
            assert path.read_text() == "x = 1\n"
        assert not path.exists()
        assert _scratch_files(read_only_dir) == []

    def test_no_fallback_without_directory(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(tempfile, "NamedTemporaryFile", refuse)
        with pytest.raises(PermissionError):
            with scratch_file("x = 1\n"):
                pass
