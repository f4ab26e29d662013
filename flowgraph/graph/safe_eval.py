"""
Restricted expression evaluation.

Evaluates a single Python expression against a fixed set of variables using
an AST whitelist. There is no attribute access apart from a list of
harmless string/list/dict methods, no imports, no comprehensions, no
assignment and no access to builtins beyond ``SAFE_FUNCTIONS``. Strings and
lists built along the way are capped at ``MAX_SEQUENCE_LENGTH``.

Used by the ai-logic node to run model-generated transforms such as
``input1.upper() + " " + input2`` or ``"yes" if float(input1) > 10 else "no"``.
"""

import ast
import operator
import re
from typing import Any


class SafeEvalError(ValueError):
    """The expression is malformed or uses a construct that is not allowed."""


SAFE_FUNCTIONS: dict[str, Any] = {
    "abs": abs,
    "bool": bool,
    "float": float,
    "int": int,
    "len": len,
    "max": max,
    "min": min,
    "round": round,
    "sorted": sorted,
    "str": str,
    "sum": sum,
}

SAFE_METHODS = frozenset(
    {
        # str
        "capitalize",
        "count",
        "endswith",
        "find",
        "join",
        "lower",
        "lstrip",
        "replace",
        "rstrip",
        "split",
        "startswith",
        "strip",
        "title",
        "upper",
        # dict / list
        "get",
        "index",
        "items",
        "keys",
        "values",
    }
)

BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

MAX_EXPONENT = 100
MAX_SEQUENCE_LENGTH = 100_000


def _check_size(value: Any) -> Any:
    if isinstance(value, str | list | tuple | dict) and len(value) > MAX_SEQUENCE_LENGTH:
        raise SafeEvalError("Result too large")
    return value


def _expected_length(target: Any, method: str, args: list[Any]) -> int:
    """Length a growing str method would produce, computed before running it."""
    if not isinstance(target, str) or not args:
        return 0
    if method == "replace" and len(args) >= 2:
        old, new = args[0], args[1]
        if not isinstance(old, str) or not isinstance(new, str):
            return 0
        count = target.count(old)
        if len(args) > 2 and isinstance(args[2], int) and args[2] >= 0:
            count = min(count, args[2])
        return len(target) + count * (len(new) - len(old))
    if method == "join" and isinstance(args[0], list | tuple | dict | str):
        items = list(args[0])
        pieces = sum(len(item) for item in items if isinstance(item, str))
        return pieces + len(target) * max(len(items) - 1, 0)
    return 0


class _Evaluator:
    def __init__(self, variables: dict[str, Any]):
        self.variables = variables

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise SafeEvalError(f"Construct not allowed: {type(node).__name__}")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.variables:
            return self.variables[node.id]
        if node.id in SAFE_FUNCTIONS:
            return SAFE_FUNCTIONS[node.id]
        if node.id in ("True", "False", "None"):
            return {"True": True, "False": False, "None": None}[node.id]
        raise SafeEvalError(f"Unknown name: {node.id}")

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = BINARY_OPS.get(type(node.op))
        if op is None:
            raise SafeEvalError(f"Operator not allowed: {type(node.op).__name__}")
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Pow) and isinstance(right, int | float):
            if abs(right) > MAX_EXPONENT:
                raise SafeEvalError("Exponent too large")
        if isinstance(node.op, ast.Mult):
            for seq, count in ((left, right), (right, left)):
                if isinstance(seq, str | list | tuple) and isinstance(count, int):
                    if len(seq) * count > MAX_SEQUENCE_LENGTH:
                        raise SafeEvalError("Result too large")
        return _check_size(op(left, right))

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = UNARY_OPS.get(type(node.op))
        if op is None:
            raise SafeEvalError(f"Operator not allowed: {type(node.op).__name__}")
        return op(self.visit(node.operand))

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators, strict=True):
            op = COMPARE_OPS.get(type(op_node))
            if op is None:
                raise SafeEvalError(f"Comparison not allowed: {type(op_node).__name__}")
            right = self.visit(comparator)
            if not op(left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Call(self, node: ast.Call) -> Any:
        if node.keywords and any(k.arg is None for k in node.keywords):
            raise SafeEvalError("Keyword unpacking not allowed")
        target = None
        if isinstance(node.func, ast.Name):
            func = SAFE_FUNCTIONS.get(node.func.id)
            if func is None:
                raise SafeEvalError(f"Function not allowed: {node.func.id}")
        elif isinstance(node.func, ast.Attribute):
            if node.func.attr not in SAFE_METHODS:
                raise SafeEvalError(f"Method not allowed: {node.func.attr}")
            target = self.visit(node.func.value)
            func = getattr(target, node.func.attr)
        else:
            raise SafeEvalError("Only direct function and method calls are allowed")
        args = [self.visit(arg) for arg in node.args]
        kwargs = {k.arg: self.visit(k.value) for k in node.keywords}
        if func is sum:
            start = args[1] if len(args) > 1 else kwargs.get("start", 0)
            if not isinstance(start, int | float):
                raise SafeEvalError("sum() only adds numbers")
        if _expected_length(target, getattr(node.func, "attr", ""), args) > MAX_SEQUENCE_LENGTH:
            raise SafeEvalError("Result too large")
        return _check_size(func(*args, **kwargs))

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        return self.visit(node.value)[self.visit(node.slice)]

    def visit_Slice(self, node: ast.Slice) -> slice:
        return slice(
            self.visit(node.lower) if node.lower else None,
            self.visit(node.upper) if node.upper else None,
            self.visit(node.step) if node.step else None,
        )

    def visit_List(self, node: ast.List) -> list:
        return [self.visit(e) for e in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.visit(e) for e in node.elts)

    def visit_Dict(self, node: ast.Dict) -> dict:
        if any(k is None for k in node.keys):
            raise SafeEvalError("Dict unpacking not allowed")
        return {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values, strict=True)}

    def visit_JoinedStr(self, node: ast.JoinedStr) -> str:
        return _check_size("".join(str(self.visit(v)) for v in node.values))

    def visit_FormattedValue(self, node: ast.FormattedValue) -> str:
        value = self.visit(node.value)
        spec = self.visit(node.format_spec) if node.format_spec else ""
        if any(int(n) > MAX_SEQUENCE_LENGTH for n in re.findall(r"\d+", spec)):
            raise SafeEvalError("Format width too large")
        return format(value, spec)


def safe_eval(expression: str, variables: dict[str, Any] | None = None) -> Any:
    """
    Evaluate ``expression`` with only ``variables`` and ``SAFE_FUNCTIONS`` in scope.

    Raises:
        SafeEvalError: On syntax errors or disallowed constructs
    """
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise SafeEvalError(f"Invalid expression: {e.msg}") from e
    return _Evaluator(variables or {}).visit(tree)
