"""
Criteria evaluation.

Walks a parsed include expression against one instance snapshot. Evaluation
is pure: nothing in the snapshot is mutated and no state survives between
calls, so the same (expression, snapshot) pair always yields the same result.
"""

import math
import operator
import re
from collections.abc import Callable, Hashable, Mapping, Sequence
from functools import lru_cache
from typing import Any

from migration_manager.core.criteria.parser import (
    Binary,
    Call,
    Index,
    ListLiteral,
    Literal,
    Logical,
    Member,
    Name,
    Node,
    Unary,
    parse,
)
from migration_manager.core.exceptions import InvalidArgumentError


# ==========================================================================
# Functions
# ==========================================================================

def _single_string_argument(name: str, args: Sequence[Any]) -> str:
    if len(args) != 1:
        raise InvalidArgumentError(f"{name}: invalid number of arguments, expected 1, got: {len(args)}")
    if not isinstance(args[0], str):
        raise InvalidArgumentError(
            f"{name}: invalid argument type, expected string, got: {_type_name(args[0])}"
        )
    return args[0]


def path_base(*args: Any) -> str:
    """Final element of a slash separated path ("/a/b/c" -> "c")."""
    path = _single_string_argument("path_base", args)
    if path == "":
        return "."
    path = path.rstrip("/")
    if path == "":
        return "/"
    return path.rsplit("/", 1)[-1]


def path_dir(*args: Any) -> str:
    """Path with its final element removed ("/a/b/c" -> "/a/b")."""
    path = _single_string_argument("path_dir", args)
    head = path[: path.rfind("/") + 1]
    if head == "":
        return "."
    stripped = head.rstrip("/")
    return stripped if stripped else "/"


def _len(*args: Any) -> int:
    if len(args) != 1:
        raise InvalidArgumentError(f"len: invalid number of arguments, expected 1, got: {len(args)}")
    value = args[0]
    if not isinstance(value, (str, Sequence, Mapping)):
        raise InvalidArgumentError(f"len: invalid argument type {_type_name(value)}")
    return len(value)


def _lower(*args: Any) -> str:
    return _single_string_argument("lower", args).lower()


def _upper(*args: Any) -> str:
    return _single_string_argument("upper", args).upper()


def _trim(*args: Any) -> str:
    return _single_string_argument("trim", args).strip()


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "path_base": path_base,
    "path_dir": path_dir,
    "len": _len,
    "lower": _lower,
    "upper": _upper,
    "trim": _trim,
}


# ==========================================================================
# Operators
# ==========================================================================

_ORDERING = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

_ARITHMETIC = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "%": operator.mod,
    "**": math.pow,
}

_STRING_TESTS = {
    "contains": operator.contains,
    "startsWith": str.startswith,
    "endsWith": str.endswith,
}


def _type_name(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "map"
    if isinstance(value, Sequence):
        return "array"
    return type(value).__name__


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@lru_cache(maxsize=256)
def _compile_regex(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise InvalidArgumentError(f"Invalid regular expression {pattern!r}: {e}") from e


# ==========================================================================
# Evaluator
# ==========================================================================

class CompiledExpression:
    """An include expression parsed once and evaluated against many snapshots."""

    def __init__(self, text: str):
        self.text = text
        self.tree = parse(text)

    def __repr__(self) -> str:
        return f"<CompiledExpression {self.text!r}>"

    def evaluate(self, snapshot: Mapping[str, Any]) -> bool:
        result = self._eval(self.tree, snapshot)
        if not isinstance(result, bool):
            raise InvalidArgumentError(
                f"Include expression {self.text!r} does not evaluate to boolean result: {result!r}"
            )
        return result

    __call__ = evaluate

    def _eval(self, node: Node, env: Mapping[str, Any]) -> Any:
        if isinstance(node, Literal):
            return node.value

        if isinstance(node, ListLiteral):
            return [self._eval(item, env) for item in node.items]

        if isinstance(node, Name):
            if node.name not in env:
                raise InvalidArgumentError(f"unknown name {node.name}")
            return env[node.name]

        if isinstance(node, Member):
            obj = self._eval(node.obj, env)
            if not isinstance(obj, Mapping):
                raise InvalidArgumentError(f"cannot fetch {node.attr} from {_type_name(obj)}")
            if node.attr not in obj:
                raise InvalidArgumentError(f"unknown field {node.attr}")
            return obj[node.attr]

        if isinstance(node, Index):
            return self._index(self._eval(node.obj, env), self._eval(node.index, env))

        if isinstance(node, Call):
            func = FUNCTIONS.get(node.func)
            if func is None:
                raise InvalidArgumentError(f"unknown function {node.func}")
            return func(*(self._eval(arg, env) for arg in node.args))

        if isinstance(node, Unary):
            return self._unary(node.op, self._eval(node.operand, env))

        if isinstance(node, Logical):
            left = self._require_bool(node.op, self._eval(node.left, env))
            # Short-circuit
            if node.op == "and" and not left:
                return False
            if node.op == "or" and left:
                return True
            return self._require_bool(node.op, self._eval(node.right, env))

        if isinstance(node, Binary):
            return self._binary(node.op, self._eval(node.left, env), self._eval(node.right, env))

        raise InvalidArgumentError(f"Unsupported expression node: {type(node).__name__}")

    @staticmethod
    def _require_bool(op: str, value: Any) -> bool:
        if not isinstance(value, bool):
            raise InvalidArgumentError(f"invalid operation: {op} on {_type_name(value)}, expected bool")
        return value

    @staticmethod
    def _index(obj: Any, index: Any) -> Any:
        if isinstance(obj, Mapping):
            if not isinstance(index, Hashable):
                raise InvalidArgumentError(f"invalid key type {_type_name(index)} for map")
            if index not in obj:
                raise InvalidArgumentError(f"unknown key {index!r}")
            return obj[index]

        if isinstance(obj, (str, Sequence)):
            if not isinstance(index, int) or isinstance(index, bool):
                raise InvalidArgumentError(f"invalid index type {_type_name(index)} for {_type_name(obj)}")
            if not -len(obj) <= index < len(obj):
                raise InvalidArgumentError(f"index out of range: {index} (array length is {len(obj)})")
            return obj[index]

        raise InvalidArgumentError(f"cannot index {_type_name(obj)}")

    def _unary(self, op: str, value: Any) -> Any:
        if op == "not":
            return not self._require_bool("!", value)
        if not _is_number(value):
            raise InvalidArgumentError(f"invalid operation: {op} on {_type_name(value)}")
        return -value if op == "-" else +value

    def _binary(self, op: str, left: Any, right: Any) -> Any:
        if op == "==":
            return self._equal(left, right)
        if op == "!=":
            return not self._equal(left, right)

        if op in _ORDERING:
            if (_is_number(left) and _is_number(right)) or (isinstance(left, str) and isinstance(right, str)):
                return _ORDERING[op](left, right)
            raise self._mismatch(op, left, right)

        if op in ("in", "not in"):
            found = self._contains(right, left)
            return found if op == "in" else not found

        if op in _STRING_TESTS:
            if not (isinstance(left, str) and isinstance(right, str)):
                raise self._mismatch(op, left, right)
            return _STRING_TESTS[op](left, right)

        if op == "matches":
            if not (isinstance(left, str) and isinstance(right, str)):
                raise self._mismatch(op, left, right)
            return _compile_regex(right).search(left) is not None

        if op in _ARITHMETIC:
            return self._arithmetic(op, left, right)

        raise InvalidArgumentError(f"unknown operator {op}")

    @staticmethod
    def _equal(left: Any, right: Any) -> bool:
        # true == 1 must not hold
        if isinstance(left, bool) != isinstance(right, bool):
            return False
        return bool(left == right)

    def _contains(self, container: Any, item: Any) -> bool:
        if isinstance(container, str):
            if not isinstance(item, str):
                raise self._mismatch("in", item, container)
            return item in container
        if isinstance(container, Mapping):
            if not isinstance(item, Hashable):
                raise self._mismatch("in", item, container)
            return item in container
        if isinstance(container, Sequence):
            return any(self._equal(item, element) for element in container)
        raise self._mismatch("in", item, container)

    def _arithmetic(self, op: str, left: Any, right: Any) -> Any:
        if op == "+" and isinstance(left, str) and isinstance(right, str):
            return left + right
        if not (_is_number(left) and _is_number(right)):
            raise self._mismatch(op, left, right)
        if op in ("/", "%") and right == 0:
            raise InvalidArgumentError(f"division by zero in {self.text!r}")
        try:
            return _ARITHMETIC[op](left, right)
        except (OverflowError, ValueError) as e:
            raise InvalidArgumentError(f"invalid arithmetic in {self.text!r}: {e}") from e

    @staticmethod
    def _mismatch(op: str, left: Any, right: Any) -> InvalidArgumentError:
        return InvalidArgumentError(
            f"invalid operation: {_type_name(left)} {op} {_type_name(right)} (mismatched types)"
        )


@lru_cache(maxsize=256)
def compile_expression(text: str) -> CompiledExpression:
    """Parse an include expression, raising InvalidArgumentError if it is malformed."""
    if not isinstance(text, str):
        raise InvalidArgumentError(f"expression must be a string, got {_type_name(text)}")
    return CompiledExpression(text)


def evaluate(expression: str, snapshot: Mapping[str, Any]) -> bool:
    """Evaluate ``expression`` against one instance snapshot."""
    return compile_expression(expression).evaluate(snapshot)
