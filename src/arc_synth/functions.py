"""
Tracked functions.

An F pairs a name with an expression tree. The tree can both be evaluated
against an image (plus an index vector for nested collections) and printed
as a path such as `@list[i0].image.area`. Because the tree only refers to
the image through `Root`, the same F can be re-targeted to any image of the
same shape, and prefixing is a substitution of `Root`.

Index vectors are tuples. Entry g selects the element of the generation-g
collection; their length is bounded by MAX_GENERATIONS.
"""

import math
import operator
from typing import Any, Callable, Sequence, Tuple, List, Optional, Union

from .config import MAX_GENERATIONS
from .errors import FunctionEvaluationError, SolverError, SolverTimeout
from .utils import normalize_value


Indices = Tuple[int, ...]


# ==============================================================================
# Index vectors
# ==============================================================================

def push_index(indices: Indices, index: int) -> Indices:
    """Append one generation to an index vector."""
    if len(indices) >= MAX_GENERATIONS:
        raise SolverError(f"Nesting deeper than {MAX_GENERATIONS} generations")
    return tuple(indices) + (index,)


def with_index(indices: Indices, generation: int, index: int) -> Indices:
    """Copy of `indices` with entry `generation` set, padding with zeros."""
    if generation >= MAX_GENERATIONS:
        raise SolverError(f"Nesting deeper than {MAX_GENERATIONS} generations")
    result = list(indices)
    while len(result) <= generation:
        result.append(0)
    result[generation] = index
    return tuple(result)


def _lookup(container, index):
    """container[index], None when absent (missing values propagate as None)."""
    if container is None or index is None:
        return None
    if isinstance(index, float):
        if not index.is_integer():
            return None
        index = int(index)
    try:
        if index < 0:
            return None
        return container[index]
    except (IndexError, KeyError, TypeError):
        return None


# ==============================================================================
# Operators over possibly-missing values
# ==============================================================================

def _js_mod(a, b):
    result = math.fmod(a, b)
    return int(result) if isinstance(a, int) and isinstance(b, int) else result


def _arith(fn):
    def apply(a, b):
        if a is None or b is None:
            return None
        return fn(a, b)
    return apply


def _compare(fn):
    def apply(a, b):
        if a is None or b is None:
            return False
        return fn(a, b)
    return apply


def _div(a, b):
    return a / b if b else None


OPERATORS = {
    '+': _arith(operator.add),
    '-': _arith(operator.sub),
    '*': _arith(operator.mul),
    '/': _arith(_div),
    '%': _arith(lambda a, b: _js_mod(a, b) if b else None),
    '==': lambda a, b: a == b,
    '!=': lambda a, b: a != b,
    '<': _compare(operator.lt),
    '>': _compare(operator.gt),
    '<=': _compare(operator.le),
    '>=': _compare(operator.ge),
    '&&': lambda a, b: a and b,
    '||': lambda a, b: a or b,
}


def _render_value(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, str):
        return repr(value)
    return str(normalize_value(value))


# ==============================================================================
# Expression IR
# ==============================================================================

class Expr:
    """
    Node of the path IR.

    evaluate(image, indices) computes the value; render(root) prints the
    expression with `root` standing for the image; substitute(root, drop)
    replaces Root by `root` and shifts generation references by `drop`.
    """

    __slots__ = ()

    def evaluate(self, image, indices: Indices):
        raise NotImplementedError

    def render(self, root: str) -> str:
        raise NotImplementedError

    def substitute(self, root: 'Expr', drop: int) -> 'Expr':
        return Composed(self, root, drop)

    def __str__(self) -> str:
        return self.render('@')


class Root(Expr):
    __slots__ = ()

    def evaluate(self, image, indices):
        return image

    def render(self, root):
        return root

    def substitute(self, root, drop):
        return root


ROOT = Root()


def _join(base: str, suffix: str) -> str:
    return base + suffix if base.endswith('@') else f"{base}.{suffix}"


class Const(Expr):
    __slots__ = ('value',)

    def __init__(self, value):
        self.value = value

    def evaluate(self, image, indices):
        return self.value

    def render(self, root):
        return _render_value(self.value)

    def substitute(self, root, drop):
        return self


class Attr(Expr):
    """base.name; missing attributes read as None."""
    __slots__ = ('base', 'name')

    def __init__(self, base: Expr, name: str):
        self.base = base
        self.name = name

    def evaluate(self, image, indices):
        value = self.base.evaluate(image, indices)
        if value is None:
            return None
        return getattr(value, self.name, None)

    def render(self, root):
        return _join(self.base.render(root), self.name)

    def substitute(self, root, drop):
        return Attr(self.base.substitute(root, drop), self.name)


class Item(Expr):
    """base[index] for a fixed index."""
    __slots__ = ('base', 'index')

    def __init__(self, base: Expr, index: int):
        self.base = base
        self.index = index

    def evaluate(self, image, indices):
        return _lookup(self.base.evaluate(image, indices), self.index)

    def render(self, root):
        return f"{self.base.render(root)}[{self.index}]"

    def substitute(self, root, drop):
        return Item(self.base.substitute(root, drop), self.index)


class Generation(Expr):
    """base[indices[generation]]: the current element of a nested collection."""
    __slots__ = ('base', 'generation')

    def __init__(self, base: Expr, generation: int):
        self.base = base
        self.generation = generation

    def evaluate(self, image, indices):
        if self.generation >= len(indices):
            return None
        return _lookup(self.base.evaluate(image, indices), indices[self.generation])

    def render(self, root):
        return f"{self.base.render(root)}[i{self.generation}]"

    def substitute(self, root, drop):
        return Generation(self.base.substitute(root, drop), self.generation + drop)


class IndexRef(Expr):
    """indices[generation]."""
    __slots__ = ('generation',)

    def __init__(self, generation: int):
        self.generation = generation

    def evaluate(self, image, indices):
        return indices[self.generation] if self.generation < len(indices) else None

    def render(self, root):
        return f"i{self.generation}"

    def substitute(self, root, drop):
        return IndexRef(self.generation + drop)


class Call(Expr):
    """base.method(*args)."""
    __slots__ = ('base', 'method', 'args')

    def __init__(self, base: Expr, method: str, args: tuple = ()):
        self.base = base
        self.method = method
        self.args = tuple(args)

    def evaluate(self, image, indices):
        value = self.base.evaluate(image, indices)
        method = getattr(value, self.method, None) if value is not None else None
        if method is None:
            return None
        return method(*self.args)

    def render(self, root):
        args = ', '.join(_render_value(a) for a in self.args)
        return _join(self.base.render(root), f"{self.method}({args})")

    def substitute(self, root, drop):
        return Call(self.base.substitute(root, drop), self.method, self.args)


class Length(Expr):
    __slots__ = ('operand',)

    def __init__(self, operand: Expr):
        self.operand = operand

    def evaluate(self, image, indices):
        value = self.operand.evaluate(image, indices)
        return None if value is None else len(value)

    def render(self, root):
        return f"{self.operand.render(root)}.length"

    def substitute(self, root, drop):
        return Length(self.operand.substitute(root, drop))


class BinOp(Expr):
    __slots__ = ('symbol', 'left', 'right')

    def __init__(self, symbol: str, left: Expr, right: Expr):
        self.symbol = symbol
        self.left = left
        self.right = right

    def evaluate(self, image, indices):
        a = self.left.evaluate(image, indices)
        if self.symbol == '&&' and not a:
            return a
        if self.symbol == '||' and a:
            return a
        return OPERATORS[self.symbol](a, self.right.evaluate(image, indices))

    def render(self, root):
        return f"({self.left.render(root)} {self.symbol} {self.right.render(root)})"

    def substitute(self, root, drop):
        return BinOp(self.symbol, self.left.substitute(root, drop), self.right.substitute(root, drop))


class Reduce(Expr):
    """Left fold of a binary operator over one or more operands."""
    __slots__ = ('symbol', 'operands')

    def __init__(self, symbol: str, operands: Sequence[Expr]):
        if len(operands) == 0:
            raise ValueError('Expecting at least 1 operand')
        self.symbol = symbol
        self.operands = tuple(operands)

    def evaluate(self, image, indices):
        oper = OPERATORS[self.symbol]
        result = self.operands[0].evaluate(image, indices)
        for e in self.operands[1:]:
            result = oper(result, e.evaluate(image, indices))
        return result

    def render(self, root):
        return '(' + f" {self.symbol} ".join(e.render(root) for e in self.operands) + ')'

    def substitute(self, root, drop):
        return Reduce(self.symbol, [e.substitute(root, drop) for e in self.operands])


class Not(Expr):
    __slots__ = ('operand',)

    def __init__(self, operand: Expr):
        self.operand = operand

    def evaluate(self, image, indices):
        return not self.operand.evaluate(image, indices)

    def render(self, root):
        return f"!{self.operand.render(root)}"

    def substitute(self, root, drop):
        return Not(self.operand.substitute(root, drop))


class IfThenElse(Expr):
    __slots__ = ('condition', 'then', 'otherwise')

    def __init__(self, condition: Expr, then: Expr, otherwise: Expr):
        self.condition = condition
        self.then = then
        self.otherwise = otherwise

    def evaluate(self, image, indices):
        if self.condition.evaluate(image, indices):
            return self.then.evaluate(image, indices)
        return self.otherwise.evaluate(image, indices)

    def render(self, root):
        return f"({self.condition.render(root)}? {self.then.render(root)} : {self.otherwise.render(root)})"

    def substitute(self, root, drop):
        return IfThenElse(
            self.condition.substitute(root, drop),
            self.then.substitute(root, drop),
            self.otherwise.substitute(root, drop),
        )


class Lookup(Expr):
    """Value-keyed mapping table applied to an operand."""
    __slots__ = ('table', 'operand')

    def __init__(self, table: dict, operand: Expr):
        self.table = dict(table)
        self.operand = operand

    def evaluate(self, image, indices):
        key = normalize_value(self.operand.evaluate(image, indices))
        try:
            return self.table.get(key)
        except TypeError:
            return None

    def render(self, root):
        entries = ', '.join(f"{_render_value(k)} => {_render_value(v)}" for k, v in self.table.items())
        return f"{{ {entries} }}.get({self.operand.render(root)})"

    def substitute(self, root, drop):
        return Lookup(self.table, self.operand.substitute(root, drop))


class GridIndex(Expr):
    """Interns the operand grid into a shared table and yields its index (-1 for None)."""
    __slots__ = ('operand', 'table')

    def __init__(self, operand: Expr, table):
        self.operand = operand
        self.table = table

    def evaluate(self, image, indices):
        grid = self.operand.evaluate(image, indices)
        return -1 if grid is None else self.table.intern(grid)

    def render(self, root):
        return self.operand.render(root)

    def substitute(self, root, drop):
        return GridIndex(self.operand.substitute(root, drop), self.table)


class GridAt(Expr):
    """Inverse of GridIndex: the interned grid at the operand's index."""
    __slots__ = ('operand', 'table')

    def __init__(self, operand: Expr, table):
        self.operand = operand
        self.table = table

    def evaluate(self, image, indices):
        return self.table.at(self.operand.evaluate(image, indices))

    def render(self, root):
        return f"grids[{self.operand.render(root)}]"

    def substitute(self, root, drop):
        return GridAt(self.operand.substitute(root, drop), self.table)


class Custom(Expr):
    """Opaque evaluator func(image, indices) with a display label."""
    __slots__ = ('label', 'func')

    def __init__(self, label: str, func: Callable[[Any, Indices], Any]):
        self.label = label
        self.func = func

    def evaluate(self, image, indices):
        return self.func(image, indices)

    def render(self, root):
        return _join(root, self.label) if root != '@' else f"@{self.label}"


class Composed(Expr):
    """inner evaluated on root(image), with the first `drop` indices consumed."""
    __slots__ = ('inner', 'root', 'drop')

    def __init__(self, inner: Expr, root: Expr, drop: int):
        self.inner = inner
        self.root = root
        self.drop = drop

    def evaluate(self, image, indices):
        return self.inner.evaluate(self.root.evaluate(image, indices), tuple(indices[self.drop:]))

    def render(self, root):
        return self.inner.render(self.root.render(root))

    def substitute(self, root, drop):
        return Composed(self.inner, self.root.substitute(root, drop), self.drop)


# ==============================================================================
# Tracked function
# ==============================================================================

def _as_expr(value) -> Tuple[str, Expr]:
    if isinstance(value, F):
        return value.name, value.expr
    return _render_value(value), Const(value)


class F:
    """
    Tracked function: name plus expression.

    Calling f(image, indices) evaluates the expression; unexpected errors are
    rewrapped as FunctionEvaluationError carrying the path.
    """

    __slots__ = ('name', 'expr')

    def __init__(self, name: str, expr: Expr):
        self.name = name
        self.expr = expr

    @property
    def path(self) -> str:
        return str(self.expr)

    def __repr__(self) -> str:
        return f"F({self.path})"

    def __call__(self, image, indices: Indices = ()):
        try:
            return self.expr.evaluate(image, indices)
        except (FunctionEvaluationError, SolverError, SolverTimeout):
            raise
        except Exception as e:
            raise FunctionEvaluationError(self.path, image, indices, e) from e

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @staticmethod
    def make(name: str, value=None, index: Optional[int] = None) -> 'F':
        """
        - make('area')             -> image.area
        - make('data', index=2)    -> image.data[2]
        - make('k', 3)             -> constant 3
        - make('fn', callable)     -> opaque callable(image, indices)
        """
        if value is None:
            expr = Attr(ROOT, name)
        elif callable(value):
            expr = Custom(name, value)
        else:
            expr = Const(value)
            if index is None:
                return F(_render_value(value), expr)
        if index is not None:
            return F(f"{name}[{index}]", Item(expr, index))
        return F(name, expr)

    @staticmethod
    def const(value) -> 'F':
        return F(_render_value(value), Const(value))

    @staticmethod
    def identity(name: str = 'input') -> 'F':
        return F(name, ROOT)

    @staticmethod
    def index(generation: int) -> 'F':
        return F(f"index{generation}", IndexRef(generation))

    @staticmethod
    def call(method: str, *args) -> 'F':
        return F(method, Call(ROOT, method, args))

    # ------------------------------------------------------------------
    # Prefixing (re-rooting)
    # ------------------------------------------------------------------

    def prefix(self, field: Union[str, 'F']) -> 'F':
        root = Attr(ROOT, field) if isinstance(field, str) else field.expr
        return F(self.name, self.expr.substitute(root, 0))

    def prefix_list(self, field: str, index: int) -> 'F':
        return F(self.name, self.expr.substitute(Item(Attr(ROOT, field), index), 0))

    def prefix_generation(self, sub_images: Union[str, 'F'], generation: int) -> 'F':
        base = Attr(ROOT, sub_images) if isinstance(sub_images, str) else sub_images.expr
        return F(self.name, self.expr.substitute(Generation(base, generation), generation + 1))

    def length(self) -> 'F':
        return F(f"{self.name}.length", Length(self.expr))

    def generation_item(self, generation: int) -> 'F':
        return F(f"{self.name}[i{generation}]", Generation(self.expr, generation))

    # ------------------------------------------------------------------
    # Combinators
    # ------------------------------------------------------------------

    @staticmethod
    def operator(symbol: str, a, b) -> 'F':
        name_a, expr_a = _as_expr(a)
        name_b, expr_b = _as_expr(b)
        return F(f"({name_a} {symbol} {name_b})", BinOp(symbol, expr_a, expr_b))

    @staticmethod
    def operator_v(symbol: str, fs: Sequence['F']) -> 'F':
        return F('(' + f" {symbol} ".join(f.name for f in fs) + ')', Reduce(symbol, [f.expr for f in fs]))

    @staticmethod
    def plus(a, b):
        return F.operator('+', a, b)

    @staticmethod
    def minus(a, b):
        return F.operator('-', a, b)

    @staticmethod
    def times(a, b):
        return F.operator('*', a, b)

    @staticmethod
    def mod(a, b):
        return F.operator('%', a, b)

    @staticmethod
    def equals(a, b):
        return F.operator('==', a, b)

    @staticmethod
    def not_equals(a, b):
        return F.operator('!=', a, b)

    @staticmethod
    def lower_than(a, b):
        return F.operator('<', a, b)

    @staticmethod
    def bigger_than(a, b):
        return F.operator('>', a, b)

    @staticmethod
    def lower_or_equal_to(a, b):
        return F.operator('<=', a, b)

    @staticmethod
    def bigger_or_equal_to(a, b):
        return F.operator('>=', a, b)

    @staticmethod
    def and_(a, b):
        return F.operator('&&', a, b)

    @staticmethod
    def or_(a, b):
        return F.operator('||', a, b)

    @staticmethod
    def plus_v(fs):
        return F.operator_v('+', fs)

    @staticmethod
    def times_v(fs):
        return F.operator_v('*', fs)

    @staticmethod
    def and_v(fs):
        return F.operator_v('&&', fs)

    @staticmethod
    def or_v(fs):
        return F.operator_v('||', fs)

    @staticmethod
    def not_(a: 'F') -> 'F':
        return F(f"!{a.name}", Not(a.expr))

    @staticmethod
    def ifthenelse(condition: 'F', a, b) -> 'F':
        name_a, expr_a = _as_expr(a)
        name_b, expr_b = _as_expr(b)
        return F(f"({condition.name}? {name_a} : {name_b})", IfThenElse(condition.expr, expr_a, expr_b))

    @staticmethod
    def lookup(table: dict, f: 'F') -> 'F':
        return F(f"mapping({f.name})", Lookup(table, f.expr))


# ==============================================================================
# Helpers for feature batches
# ==============================================================================

def prefix(field: Union[str, F]) -> Callable[[F], F]:
    return lambda f: f.prefix(field)


def prefix_list(field: str, index: int) -> Callable[[F], F]:
    return lambda f: f.prefix_list(field, index)


def prefix_generation(sub_images: Union[str, F], generation: int) -> Callable[[F], F]:
    return lambda f: f.prefix_generation(sub_images, generation)


def attributes(*names: str) -> List[F]:
    return [F.make(name) for name in names]
