from __future__ import annotations

import ast
import operator
from typing import Mapping, Sequence

import numpy as np

from ..errors import ExpressionError
from ..raster import BandStack

# name -> (expression, {variable: band})
NDVI = ("(NIR - Red) / (NIR + Red)", {"NIR": "B8", "Red": "B4"})
NDWI = ("(Green - NIR) / (Green + NIR)", {"NIR": "B8", "Green": "B3"})
SAVI = ("((NIR - Red) / (NIR + Red + 0.5)) * (1.5)", {"NIR": "B8", "Red": "B4"})

DEFAULT_INDICES = {"NDVI": NDVI, "NDWI": NDWI, "SAVI": SAVI}


def safe_divide(numerator, denominator):
    """Element-wise division that yields NaN where the denominator is zero."""
    num = np.asarray(numerator, dtype="float64")
    den = np.asarray(denominator, dtype="float64")
    num, den = np.broadcast_arrays(num, den)
    out = np.full(num.shape, np.nan)
    ok = np.isfinite(num) & np.isfinite(den) & (den != 0)
    np.divide(num, den, out=out, where=ok)
    return out if out.ndim else float(out)


_BINOPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: safe_divide,
    ast.Pow: operator.pow,
}
_UNARY = {ast.USub: operator.neg, ast.UAdd: operator.pos}


def _evaluate(node, bindings):
    if isinstance(node, ast.Expression):
        return _evaluate(node.body, bindings)
    if isinstance(node, ast.BinOp) and type(node.op) in _BINOPS:
        return _BINOPS[type(node.op)](
            _evaluate(node.left, bindings), _evaluate(node.right, bindings)
        )
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY:
        return _UNARY[type(node.op)](_evaluate(node.operand, bindings))
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return float(node.value)
    if isinstance(node, ast.Name):
        if node.id not in bindings:
            raise ExpressionError(f"Unbound name {node.id!r} in expression")
        return bindings[node.id]
    raise ExpressionError(f"Unsupported syntax in expression: {ast.dump(node)}")


def evaluate_expression(expression: str, bindings: Mapping[str, np.ndarray]) -> np.ndarray:
    """Evaluate band math such as ``"(NIR - Red) / (NIR + Red)"`` per pixel.

    Only arithmetic operators, numeric literals and the names in ``bindings``
    are accepted. Division by zero gives NaN instead of raising.
    """
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"Invalid expression {expression!r}: {exc.msg}") from exc
    arrays = {k: np.asarray(v, dtype="float64") for k, v in bindings.items()}
    with np.errstate(invalid="ignore", over="ignore"):
        result = _evaluate(tree, arrays)
    return np.asarray(result, dtype="float64")


def add_index(
    stack: BandStack, name: str, expression: str, bindings: Mapping[str, str]
) -> BandStack:
    """Compute an index from bands of ``stack`` and attach it as band ``name``."""
    arrays = {var: stack.band(band) for var, band in bindings.items()}
    values = evaluate_expression(expression, arrays)
    values = np.broadcast_to(values, stack.shape)
    return stack.add_bands(stack.with_data(values[np.newaxis, ...], [name]))


def compute_indices(
    stack: BandStack,
    indices: Mapping[str, tuple[str, Mapping[str, str]]] | None = None,
    names: Sequence[str] | None = None,
) -> BandStack:
    """Attach several indices (by default NDVI, NDWI and SAVI)."""
    indices = DEFAULT_INDICES if indices is None else indices
    for name in names or list(indices):
        expression, bindings = indices[name]
        stack = add_index(stack, name, expression, bindings)
    return stack
