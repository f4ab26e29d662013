"""Tests for the restricted expression evaluator used by ai-logic nodes."""

import pytest

from flowgraph.graph.safe_eval import SafeEvalError, safe_eval


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("input1.upper() + ' ' + input2", "HELLO world"),
        ("len(input1) + len(input2)", 10),
        ("'big' if float(input3) > 10 else 'small'", "big"),
        ("input2[::-1]", "dlrow"),
        ("', '.join(sorted(input1.split('l')))", ", he, o"),
        ("f'{input1}!'", "hello!"),
        ("input1 == 'hello' and not input4", True),
        ("min(3, 1, 2) ** 2", 1),
        ("{'a': 1}.get('a')", 1),
        ("sum([1, 2, 3], 0.5)", 6.5),
    ],
)
def test_allowed_expressions(expression, expected):
    variables = {"input1": "hello", "input2": "world", "input3": "12.5", "input4": ""}

    assert safe_eval(expression, variables) == expected


@pytest.mark.parametrize(
    "expression, message",
    [
        ("__import__('os')", "Function not allowed"),
        ("open('/etc/passwd')", "Function not allowed"),
        ("input1.__class__", "Construct not allowed"),
        ("input1.format_map({})", "Method not allowed"),
        ("[x for x in input1]", "Construct not allowed"),
        ("lambda: 1", "Construct not allowed"),
        ("secret", "Unknown name: secret"),
        ("2 ** 1000", "Exponent too large"),
        ("'a' * 10000000", "Result too large"),
        ("input1.zfill(500000)", "Method not allowed"),
        ("sum([[1] * 1000] * 1000, [])", "sum() only adds numbers"),
        ("('a' * 50000).join(['x', 'y', 'z'])", "Result too large"),
        ("('a' * 1000).replace('a', 'b' * 1000)", "Result too large"),
        ("f'{input1:>1000000}'", "Format width too large"),
        ("1 +", "Invalid expression"),
        ("(lambda: 1)()", "Only direct function and method calls"),
    ],
)
def test_rejected_expressions(expression, message):
    with pytest.raises(SafeEvalError) as exc_info:
        safe_eval(expression, {"input1": "x"})

    assert message in str(exc_info.value)


def test_runtime_errors_are_not_masked():
    with pytest.raises(ZeroDivisionError):
        safe_eval("1 / 0")


def test_safe_eval_error_is_value_error():
    assert issubclass(SafeEvalError, ValueError)
