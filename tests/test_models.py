"""Tests for the shared data model."""

import pytest

from pytestgen.models import (
    VAR_KEYWORD,
    VAR_POSITIONAL,
    FunctionDescriptor,
    Parameter,
    Receiver,
)


class TestFunctionDescriptor:
    """Tests for FunctionDescriptor naming."""

    @pytest.mark.parametrize(
        "name, receiver, expected",
        [
            ("add", None, "TestAdd"),
            ("Add", None, "TestAdd"),
            ("parse_header", None, "TestParseHeader"),
            ("_helper", None, "Test_Helper"),
            ("__mangled", None, "Test_Mangled"),
            ("push", "Stack", "TestStackPush"),
            ("_grow", "Stack", "Test_StackGrow"),
            ("flush", "http_client", "TestHttpClientFlush"),
            ("toJSON", None, "TestToJSON"),
        ],
    )
    def test_test_name(self, name, receiver, expected):
        fn = FunctionDescriptor(name=name, receiver=Receiver(receiver) if receiver else None)
        assert fn.test_name == expected

    def test_full_name(self):
        assert FunctionDescriptor(name="add").full_name == "add"
        assert FunctionDescriptor(name="push", receiver=Receiver("Stack")).full_name == "Stack.push"

    def test_is_exported(self):
        assert FunctionDescriptor(name="add").is_exported
        assert not FunctionDescriptor(name="_add").is_exported

    @pytest.mark.parametrize(
        "returns, expected",
        [(None, True), ("int", True), ("None", False), ("Optional[int]", True)],
    )
    def test_has_return(self, returns, expected):
        assert FunctionDescriptor(name="f", returns=returns).has_return is expected


class TestParameter:
    """Tests for Parameter."""

    def test_is_variadic(self):
        assert Parameter("args", VAR_POSITIONAL).is_variadic
        assert Parameter("kwargs", VAR_KEYWORD).is_variadic
        assert not Parameter("x").is_variadic
