"""Tests for remote evaluation"""

import pytest
from pytest import raises

from jdwpcalc.calc import Evaluator, ParseError, parse
from jdwpcalc.proto import RemoteInvocationError


def describe_calculate():
    def test_examples(expect, invoker):
        evaluator = Evaluator(invoker)
        expect(evaluator.calculate("1 + 1")) == "2"
        expect(evaluator.calculate("2 * 3 + 4")) == "10"
        expect(evaluator.calculate("(10 + 30) * 3 / 5")) == "24"
        expect(evaluator.calculate("10 + 30 * 3 / 5")) == "28"

    def test_negative_results(expect, invoker):
        evaluator = Evaluator(invoker)
        expect(evaluator.calculate("3 - 10")) == "-7"
        expect(evaluator.calculate("(0 - 7) / 2")) == "-3"

    def test_beyond_long_range(expect, invoker):
        evaluator = Evaluator(invoker)
        expect(evaluator.calculate("9223372036854775807 * 9223372036854775807")) == (
            "85070591730234615847396907784232501249"
        )

    @pytest.mark.parametrize("text", ["1 + ", "(1+1", "1 + * 2"])
    def test_malformed_input_sends_nothing(expect, vm, invoker, text):
        before = vm.total_requests
        with raises(ParseError):
            Evaluator(invoker).calculate(text)
        expect(vm.total_requests) == before

    def test_division_by_zero(expect, invoker):
        evaluator = Evaluator(invoker)
        with raises(RemoteInvocationError):
            evaluator.calculate("4 / (2 - 2)")
        expect(evaluator.calculate("4 / 2")) == "2"


def describe_evaluate():
    def test_literal_costs_one_invocation(expect, vm, invoker):
        before = vm.requests["ClassType.InvokeMethod"]
        Evaluator(invoker).evaluate(parse("7"))
        expect(vm.requests["ClassType.InvokeMethod"]) == before + 1

    def test_post_order(expect, vm, invoker):
        Evaluator(invoker).evaluate(parse("(1 + 2) * (3 - 4)"))
        expect(vm.requests["ClassType.InvokeMethod"]) == 4
        expect(vm.requests["ObjectReference.InvokeMethod"]) == 3

    def test_rejects_other_objects(invoker):
        with raises(TypeError):
            Evaluator(invoker).evaluate("1 + 1")
