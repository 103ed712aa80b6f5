# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Safe Expression Evaluator

AST-based evaluation of workflow conditions against an execution context.
Only variable lookups, literals, comparisons, boolean and arithmetic operators
are allowed. No calls, no attribute access beyond mapping keys, no dunders.
JavaScript spellings from the visual builder (&&, ||, !, ===, !==) are
accepted and rewritten before parsing.
"""

import ast
import operator
from dataclasses import dataclass
from typing import Dict, Any, Optional


MAX_EXPRESSION_LENGTH = 2000
MAX_SEQUENCE_LENGTH = 10000


# Allowed operators for safe evaluation
SAFE_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Not: operator.not_,
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.In: lambda x, y: x in y,
    ast.NotIn: lambda x, y: x not in y,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


# Builder-style literal names, used only when the context does not define them
LITERAL_NAMES = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
}


@dataclass
class EvaluationResult:
    """Outcome of evaluating an expression; never raised across node boundaries"""
    ok: bool
    value: Any = None
    message: Optional[str] = None


def normalize_expression(expression: str) -> str:
    """Rewrite JavaScript operators to Python outside of string literals"""
    out = []
    quote = None
    i = 0
    n = len(expression)
    while i < n:
        ch = expression[i]
        if quote:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(expression[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
            i += 1
            continue
        three = expression[i:i + 3]
        two = expression[i:i + 2]
        if three == "!==":
            out.append("!=")
            i += 3
        elif three == "===":
            out.append("==")
            i += 3
        elif two in ("!=", "=="):
            out.append(two)
            i += 2
        elif two == "&&":
            out.append(" and ")
            i += 2
        elif two == "||":
            out.append(" or ")
            i += 2
        elif ch == "!":
            out.append(" not ")
            i += 1
        else:
            out.append(ch)
            i += 1
    return "".join(out).strip()


_SEQUENCE_TYPES = (str, list, tuple)


def _check_sequence_size(op_type, left, right) -> None:
    """Reject string and list results larger than MAX_SEQUENCE_LENGTH"""
    if op_type is ast.Mult:
        if isinstance(left, _SEQUENCE_TYPES) and isinstance(right, int):
            size = len(left) * right
        elif isinstance(right, _SEQUENCE_TYPES) and isinstance(left, int):
            size = len(right) * left
        else:
            return
    elif op_type is ast.Add:
        if not (isinstance(left, _SEQUENCE_TYPES) and isinstance(right, _SEQUENCE_TYPES)):
            return
        size = len(left) + len(right)
    elif op_type is ast.Mod and isinstance(left, str):
        raise ValueError("String formatting is not allowed")
    else:
        return
    if size > MAX_SEQUENCE_LENGTH:
        raise ValueError(f"Result exceeds {MAX_SEQUENCE_LENGTH} items")


class SafeEvaluator(ast.NodeVisitor):
    """
    AST-based safe evaluator for workflow expressions.

    Restricts evaluation to:
    - Variable references from the provided context (missing names are None)
    - Key/index access into mappings and sequences (item.email, tags[0])
    - Basic arithmetic, comparison and logical operators
    - Literals (strings, numbers, lists, tuples)
    """

    def __init__(self, variables: Dict[str, Any]):
        self.variables = variables

    def visit_Expression(self, node):
        return self.visit(node.body)

    def visit_Constant(self, node):
        return node.value

    def visit_Name(self, node):
        if node.id.startswith("__"):
            raise ValueError(f"Name not allowed: {node.id}")
        if node.id in self.variables:
            return self.variables[node.id]
        if node.id in LITERAL_NAMES:
            return LITERAL_NAMES[node.id]
        # Records have optional fields; an absent key reads as None
        return None

    def visit_Attribute(self, node):
        if node.attr.startswith("_"):
            raise ValueError(f"Attribute not allowed: {node.attr}")
        base = self.visit(node.value)
        if base is None:
            return None
        if isinstance(base, dict):
            return base.get(node.attr)
        if node.attr == "length" and isinstance(base, (str, list, tuple)):
            return len(base)
        raise ValueError(f"Attribute access not allowed on {type(base).__name__}: {node.attr}")

    def visit_Subscript(self, node):
        base = self.visit(node.value)
        key = self.visit(node.slice)
        if base is None:
            return None
        if isinstance(base, dict):
            return base.get(key)
        if isinstance(base, (list, tuple, str)):
            if not isinstance(key, int) or isinstance(key, bool):
                raise ValueError(f"Sequence index must be an integer, got {key!r}")
            if -len(base) <= key < len(base):
                return base[key]
            return None
        raise ValueError(f"Subscript not allowed on {type(base).__name__}")

    def visit_List(self, node):
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node):
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_BinOp(self, node):
        left = self.visit(node.left)
        right = self.visit(node.right)
        op_type = type(node.op)

        if op_type not in SAFE_OPERATORS:
            raise ValueError(f"Operator not allowed: {op_type.__name__}")

        _check_sequence_size(op_type, left, right)
        return SAFE_OPERATORS[op_type](left, right)

    def visit_UnaryOp(self, node):
        operand = self.visit(node.operand)
        op_type = type(node.op)

        if op_type not in SAFE_OPERATORS:
            raise ValueError(f"Operator not allowed: {op_type.__name__}")

        return SAFE_OPERATORS[op_type](operand)

    def visit_Compare(self, node):
        left = self.visit(node.left)

        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            op_type = type(op)

            if op_type not in SAFE_OPERATORS:
                raise ValueError(f"Operator not allowed: {op_type.__name__}")

            if not SAFE_OPERATORS[op_type](left, right):
                return False

            left = right

        return True

    def visit_BoolOp(self, node):
        # Short-circuit and return the deciding operand, like `a || b` in the builder
        if isinstance(node.op, ast.And):
            value = True
            for operand in node.values:
                value = self.visit(operand)
                if not value:
                    return value
            return value
        if isinstance(node.op, ast.Or):
            value = False
            for operand in node.values:
                value = self.visit(operand)
                if value:
                    return value
            return value
        raise ValueError(f"Boolean operator not allowed: {type(node.op).__name__}")

    def generic_visit(self, node):
        raise ValueError(f"AST node type not allowed: {type(node).__name__}")


def _evaluate(expression: str, variables: Dict[str, Any]) -> Any:
    if not isinstance(expression, str) or not expression.strip():
        raise ValueError("Expression is empty")
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ValueError(f"Expression exceeds {MAX_EXPRESSION_LENGTH} characters")
    try:
        tree = ast.parse(normalize_expression(expression), mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Invalid expression syntax: {e.msg}")
    return SafeEvaluator(variables).visit(tree)


def evaluate(expression: str, variables: Dict[str, Any]) -> EvaluationResult:
    """
    Evaluate an expression without raising.

    Returns:
        EvaluationResult with ok=True and the value, or ok=False and a message

    Examples:
        >>> evaluate("a > b", {"a": 5, "b": 3}).value
        True
        >>> evaluate("a >", {}).ok
        False
    """
    try:
        return EvaluationResult(ok=True, value=_evaluate(expression, variables))
    except (ValueError, TypeError, ArithmeticError, RecursionError) as e:
        return EvaluationResult(ok=False, message=str(e))


def evaluate_condition(condition: str, variables: Dict[str, Any]) -> bool:
    """
    Safely evaluate a boolean condition string.

    Raises:
        ValueError: If the condition is malformed or uses unsafe operations

    Examples:
        >>> evaluate_condition("hasWebsite && rating >= 4", {"hasWebsite": True, "rating": 4.5})
        True
    """
    result = evaluate(condition, variables)
    if not result.ok:
        raise ValueError(f"Condition evaluation failed: {result.message}")
    return bool(result.value)


# ============================================================================
# Structured rules ({field, operator, value} from the visual builder)
# ============================================================================

def resolve_path(variables: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted path (business.email, tags.0) against the context"""
    if path in variables:
        return variables[path]
    value: Any = variables
    for part in path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, (list, tuple)) and part.lstrip("-").isdigit():
            idx = int(part)
            value = value[idx] if -len(value) <= idx < len(value) else None
        else:
            return None
    return value


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Expected a number, got {value!r}")


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, tuple, dict)) and len(value) == 0)


def _contains(container: Any, item: Any) -> bool:
    if container is None:
        return False
    if isinstance(container, str):
        return str(item).lower() in container.lower()
    if isinstance(container, (list, tuple, set, dict)):
        return item in container
    return False


RULE_OPERATORS = {
    "equals": lambda a, b: a == b or (a is not None and b is not None and str(a) == str(b)),
    "not_equals": lambda a, b: not RULE_OPERATORS["equals"](a, b),
    "greater_than": lambda a, b: _as_number(a) > _as_number(b),
    "less_than": lambda a, b: _as_number(a) < _as_number(b),
    "gte": lambda a, b: _as_number(a) >= _as_number(b),
    "lte": lambda a, b: _as_number(a) <= _as_number(b),
    "contains": _contains,
    "not_contains": lambda a, b: not _contains(a, b),
    "exists": lambda a, b: a is not None,
    "not_exists": lambda a, b: a is None,
    "is_empty": lambda a, b: _is_empty(a),
    "is_not_empty": lambda a, b: not _is_empty(a),
    "starts_with": lambda a, b: isinstance(a, str) and a.startswith(str(b)),
    "ends_with": lambda a, b: isinstance(a, str) and a.endswith(str(b)),
    "in": lambda a, b: isinstance(b, (list, tuple, set)) and a in b,
    "not_in": lambda a, b: not (isinstance(b, (list, tuple, set)) and a in b),
}

RULE_OPERATOR_ALIASES = {
    "eq": "equals",
    "neq": "not_equals",
    "gt": "greater_than",
    "lt": "less_than",
}


def evaluate_rule(field: str, op: str, value: Any, variables: Dict[str, Any]) -> bool:
    """
    Evaluate a structured rule against the context.

    Raises:
        ValueError: Unknown operator or non-numeric operand for a numeric operator
    """
    name = RULE_OPERATOR_ALIASES.get(op, op)
    if name not in RULE_OPERATORS:
        raise ValueError(f"Unknown operator: {op}")
    return bool(RULE_OPERATORS[name](resolve_path(variables, field), value))
