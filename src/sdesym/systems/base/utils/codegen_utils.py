# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Backend-agnostic code generation utilities.

All backends (NumPy, PyTorch, JAX) have equal support for:
- Grouped arguments: f(u, p, t) unpacks state / parameter sequences
- Min/Max functions (variable argument handling)
- Consistent shape conventions: sequences give 1D arrays, matrices keep
  their 2D shape (an (n, 1) matrix stays (n, 1))

Backend-specific features (not technical debt):
- PyTorch: Gradient preservation via torch.as_tensor(), in-place via copy_
- JAX: JIT compilation support, no in-place variants (immutable arrays)
- NumPy: Simplest implementation (reference)
"""

import inspect
from typing import Any, Callable, Dict, List, Sequence, Tuple, Union

import numpy as np
import sympy as sp
import torch

from sdesym.types.backends import DEFAULT_DTYPE, IN_PLACE_BACKENDS, Backend, validate_backend

ArgGroup = Union[sp.Symbol, Sequence[sp.Symbol]]


# ============================================================================
# Min/Max Helpers
# ============================================================================


def _reduce_pairwise(op, args):
    if len(args) == 0:
        raise ValueError("Min/Max requires at least one argument")
    result = args[0]
    for arg in args[1:]:
        result = op(result, arg)
    return result


def _numpy_min(*args):
    """
    Handle SymPy Min for NumPy backend.

    SymPy's Min can take arbitrary number of arguments: Min(x, y, z)
    NumPy's np.minimum only takes 2 arguments.

    Examples:
        >>> _numpy_min(1, 2, 3)
        1
    """
    return _reduce_pairwise(np.minimum, args)


def _numpy_max(*args):
    return _reduce_pairwise(np.maximum, args)


def _as_tensor(value):
    return value if isinstance(value, torch.Tensor) else torch.as_tensor(value)


def _torch_min(*args):
    """
    Handle SymPy Min for PyTorch backend.

    Handles both scalars and tensors, preserving gradients.
    """
    return _reduce_pairwise(torch.minimum, [_as_tensor(a) for a in args])


def _torch_max(*args):
    return _reduce_pairwise(torch.maximum, [_as_tensor(a) for a in args])


def _jax_min(*args):
    import jax.numpy as jnp

    return _reduce_pairwise(jnp.minimum, args)


def _jax_max(*args):
    import jax.numpy as jnp

    return _reduce_pairwise(jnp.maximum, args)


# ============================================================================
# Lambdify Namespaces
# ============================================================================

SYMPY_TO_NUMPY_LAMBDIFY = {
    "Min": _numpy_min,
    "Max": _numpy_max,
}

# PyTorch mapping for lambdify!
SYMPY_TO_TORCH_LAMBDIFY = {
    # Trigonometric
    "sin": torch.sin,
    "cos": torch.cos,
    "tan": torch.tan,
    "asin": torch.asin,
    "acos": torch.acos,
    "atan": torch.atan,
    "atan2": torch.atan2,
    "sinh": torch.sinh,
    "cosh": torch.cosh,
    "tanh": torch.tanh,
    # Exponential/Logarithmic
    "exp": torch.exp,
    "log": torch.log,
    "sqrt": torch.sqrt,
    # Absolute value and sign
    "Abs": torch.abs,
    "abs": torch.abs,
    "sign": torch.sign,
    # Min/Max
    "Min": _torch_min,
    "Max": _torch_max,
    # Rounding
    "floor": torch.floor,
    "ceil": torch.ceil,
}

SYMPY_TO_JAX_LAMBDIFY = {
    "Min": _jax_min,
    "Max": _jax_max,
}


def _lambdify_modules(backend: Backend) -> List:
    if backend == "numpy":
        return [SYMPY_TO_NUMPY_LAMBDIFY, "numpy"]
    if backend == "torch":
        return [SYMPY_TO_TORCH_LAMBDIFY, "math"]
    return [SYMPY_TO_JAX_LAMBDIFY, "jax"]


# ============================================================================
# Backend Detection and Conversion
# ============================================================================


def detect_backend(array: Any) -> Backend:
    """
    Detect backend from array type.

    Raises:
        TypeError: If array type is not recognized

    Example:
        >>> detect_backend(np.array([1.0]))
        'numpy'
    """
    if isinstance(array, torch.Tensor):
        return "torch"
    if type(array).__module__.startswith(("jax", "jaxlib")):
        return "jax"
    if isinstance(array, (np.ndarray, np.generic, list, tuple, float, int)):
        return "numpy"
    raise TypeError(
        f"Unknown input type: {type(array)}. "
        f"Expected np.ndarray, torch.Tensor, or jax.numpy.ndarray"
    )


def convert_array(arr: np.ndarray, like: Any = None, backend: Backend = None):
    """
    Convert a NumPy array to the backend (and dtype/device) of ``like``.

    Example:
        >>> convert_array(np.eye(2), like=torch.zeros(2)).dtype
        torch.float32
    """
    if backend is None:
        backend = detect_backend(like) if like is not None else "numpy"

    if backend == "numpy":
        dtype = getattr(like, "dtype", None) if isinstance(like, np.ndarray) else None
        return np.asarray(arr, dtype=dtype or DEFAULT_DTYPE)
    if backend == "torch":
        if isinstance(like, torch.Tensor):
            return torch.as_tensor(arr, dtype=like.dtype, device=like.device)
        return torch.as_tensor(arr, dtype=torch.float64)

    import jax.numpy as jnp

    return jnp.asarray(arr, dtype=getattr(like, "dtype", None))


def _numpy_result(result, shape):
    arr = np.asarray(result)
    if arr.dtype.kind in "biu" or arr.dtype == object:
        arr = arr.astype(DEFAULT_DTYPE)
    return arr.reshape(shape)


def _torch_result(result, shape):
    flat = _flatten(result)
    ref = next((v for v in flat if isinstance(v, torch.Tensor)), None)
    dtype = ref.dtype if ref is not None else torch.float64
    device = ref.device if ref is not None else None
    tensors = [torch.as_tensor(v, dtype=dtype, device=device).reshape(()) for v in flat]
    return torch.stack(tensors).reshape(shape)


def _jax_result(result, shape):
    import jax.numpy as jnp

    flat = [jnp.asarray(v) for v in _flatten(result)]
    arr = jnp.stack(flat).reshape(shape)
    if not jnp.issubdtype(arr.dtype, jnp.inexact):
        arr = arr.astype(jnp.result_type(float))
    return arr


def _flatten(nested) -> List:
    if isinstance(nested, (list, tuple)):
        out = []
        for item in nested:
            out.extend(_flatten(item))
        return out
    return [nested]


_RESULT_CONVERTERS = {
    "numpy": _numpy_result,
    "torch": _torch_result,
    "jax": _jax_result,
}


def _zeros(shape, backend: Backend):
    if backend == "torch":
        return torch.zeros(shape, dtype=torch.float64)
    if backend == "jax":
        import jax.numpy as jnp

        return jnp.zeros(shape)
    return np.zeros(shape, dtype=DEFAULT_DTYPE)


# ============================================================================
# Function Generation
# ============================================================================


def expression_shape(expr) -> Tuple[int, ...]:
    """
    Output shape of a generated function.

    Sequences give (n,), matrices keep (rows, cols), scalars give (1,).
    """
    if isinstance(expr, sp.MatrixBase):
        return tuple(expr.shape)
    if isinstance(expr, (list, tuple)):
        return (len(expr),)
    return (1,)


def _as_nested_list(expr):
    if isinstance(expr, sp.MatrixBase):
        return expr.tolist()
    if isinstance(expr, (list, tuple)):
        return [sp.sympify(e) for e in expr]
    return [sp.sympify(expr)]


def generate_function(
    expr: Union[sp.Expr, Sequence[sp.Expr], sp.MatrixBase],
    args: Sequence[ArgGroup],
    backend: Backend = "numpy",
    jit: bool = True,
) -> Callable:
    """
    Generate an allocating function from SymPy expression(s).

    Args:
        expr: SymPy expression, sequence of expressions, or Matrix
        args: Argument groups in call order. A group is a single symbol or
            a sequence of symbols unpacked from one array argument, so
            ``[[x, y], [a, b], t]`` gives ``f(u, p, t)``.
        backend: 'numpy', 'torch', or 'jax'
        jit: JIT-compile the JAX function (ignored for other backends)

    Returns:
        Function returning a new backend array shaped per ``expression_shape``

    Examples:
        >>> x, y, a, t = sp.symbols('x y a t')
        >>> f = generate_function([a * x, y * t], [[x, y], [a], t])
        >>> f(np.array([1.0, 2.0]), [3.0], 0.5)
        array([3., 1.])
        >>> J = generate_function(sp.Matrix([[a * x], [y]]), [[x, y], [a], t])
        >>> J(np.array([1.0, 2.0]), [3.0], 0.0).shape
        (2, 1)
    """
    backend = validate_backend(backend)
    shape = expression_shape(expr)
    lambda_args = [list(g) if isinstance(g, (list, tuple)) else g for g in args]

    if 0 in shape:

        def empty_func(*call_args):
            return _zeros(shape, backend)

        return empty_func

    func = sp.lambdify(lambda_args, _as_nested_list(expr), modules=_lambdify_modules(backend))
    convert = _RESULT_CONVERTERS[backend]

    def wrapped_func(*call_args):
        return convert(func(*call_args), shape)

    if backend == "jax" and jit:
        import jax

        wrapped_func = jax.jit(wrapped_func)

    return wrapped_func


def make_inplace(allocating: Callable, backend: Backend) -> Callable:
    """
    In-place counterpart ``f(out, *args) -> None`` of an allocating function.

    JAX arrays are immutable: the returned function raises TypeError.
    """
    if backend not in IN_PLACE_BACKENDS:

        def unsupported(out, *args):
            raise TypeError(
                f"In-place functions are not supported for the {backend} backend "
                f"(arrays are immutable); use the allocating variant"
            )

        return unsupported

    if backend == "torch":

        def inplace_torch(out, *args):
            out.copy_(allocating(*args).reshape(out.shape))

        return inplace_torch

    def inplace_numpy(out, *args):
        out[...] = allocating(*args)

    return inplace_numpy


def generate_function_pair(
    expr: Union[sp.Expr, Sequence[sp.Expr], sp.MatrixBase],
    args: Sequence[ArgGroup],
    backend: Backend = "numpy",
    **kwargs,
) -> Tuple[Callable, Callable]:
    """
    (allocating, in-place) pair for one expression.

    Example:
        >>> f_oop, f_iip = generate_function_pair([x * a], [[x], [a], t])
        >>> du = np.zeros(1)
        >>> f_iip(du, np.array([2.0]), [3.0], 0.0)
        >>> du
        array([6.])
    """
    allocating = generate_function(expr, args, backend=backend, **kwargs)
    return allocating, make_inplace(allocating, backend)


# ============================================================================
# Source Generation
# ============================================================================


def lambdify_namespace(backend: Backend) -> Dict[str, Any]:
    """
    Globals that generated source for ``backend`` runs in.

    Example:
        >>> ns = lambdify_namespace('numpy')
        >>> exec(generate_source([a * x], [[x], [a], t], name='f'), ns)
        >>> ns['f'](np.array([2.0]), [3.0], 0.0)
        [6.0]
    """
    backend = validate_backend(backend)
    # The globals lambdify builds for this backend's modules
    template = sp.lambdify([], 0, modules=_lambdify_modules(backend))
    return dict(template.__globals__)


def generate_source(
    expr: Union[sp.Expr, Sequence[sp.Expr], sp.MatrixBase],
    args: Sequence[ArgGroup],
    backend: Backend = "numpy",
    name: str = "f",
) -> str:
    """
    Python source of the function ``generate_function`` would build.

    The emitted function takes the same grouped arguments and returns the
    raw nested-list result, without conversion to a backend array. Names
    in the body resolve in ``lambdify_namespace(backend)``.

    Raises:
        ValueError: If ``name`` is not a valid identifier

    Example:
        >>> print(generate_source([a * x], [[x], [a], t], name='drift'))
        def drift(_Dummy_38, _Dummy_39, t):
            [x] = _Dummy_38
            [a] = _Dummy_39
            return [a*x]
    """
    backend = validate_backend(backend)
    if not name.isidentifier():
        raise ValueError(f"Function name must be a valid identifier, got {name!r}")

    if 0 in expression_shape(expr):
        return f"def {name}(*args):\n    return {_as_nested_list(expr)!r}\n"

    lambda_args = [list(g) if isinstance(g, (list, tuple)) else g for g in args]
    func = sp.lambdify(lambda_args, _as_nested_list(expr), modules=_lambdify_modules(backend))
    source = inspect.getsource(func)
    return source.replace(f"def {func.__name__}(", f"def {name}(", 1)


__all__ = [
    "SYMPY_TO_NUMPY_LAMBDIFY",
    "SYMPY_TO_TORCH_LAMBDIFY",
    "SYMPY_TO_JAX_LAMBDIFY",
    "convert_array",
    "detect_backend",
    "expression_shape",
    "generate_function",
    "generate_function_pair",
    "generate_source",
    "lambdify_namespace",
    "make_inplace",
]
