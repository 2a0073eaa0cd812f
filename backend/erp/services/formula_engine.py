"""
Formula Engine — sandboxed evaluator for product and BOM formulas.

Formulas are short arithmetic expressions written by product technologists,
e.g. ``height * 1500 + width * 500`` or
``material === 'oak' ? area * 1.2 : area``.  They are tokenized and parsed
into a small AST by a recursive-descent parser and evaluated against a
named-parameter context.  Nothing is ever handed to the interpreter's own
code-evaluation facilities.

Grammar (lowest precedence first):

    ternary     := or ( '?' ternary ':' ternary )?
    or          := and ( '||' and )*
    and         := equality ( '&&' equality )*
    equality    := compare ( ('===' | '!==' | '==' | '!=') compare )*
    compare     := additive ( ('<' | '>' | '<=' | '>=') additive )*
    additive    := term ( ('+' | '-') term )*
    term        := unary ( ('*' | '/' | '%') unary )*
    unary       := ('-' | '+' | '!') unary | primary
    primary     := NUMBER | STRING | true | false | PI
                 | IDENT | IDENT '(' args ')' | '(' ternary ')'

Whitelisted functions: ceil floor round max min abs sqrt pow (also as
``Math.<name>``).
"""
import logging
import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from erp.config import FORMULA_CACHE_SIZE, MAX_FORMULA_LENGTH
from erp.services.errors import FormulaEvaluationError

logger = logging.getLogger("erp-formula")

Value = Union[float, str, bool]

_ALLOWED_CHARS = re.compile(r"^[\w\s.+\-*/%()<>=!?:,&|'\"]*$")

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<string>'[^']*'|"[^"]*")
  | (?P<ident>[^\W\d]\w*(?:\.[^\W\d]\w*)?)
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[-+*/%<>!?:(),])
    """,
    re.VERBOSE,
)


def _js_round(x: float) -> float:
    return float(math.floor(x + 0.5))


def _sqrt(x: float) -> float:
    if x < 0:
        raise FormulaEvaluationError("sqrt of a negative number", value=x)
    return math.sqrt(x)


# name -> (callable, min_args, max_args or None for variadic)
_FUNCTIONS: Dict[str, Tuple[Callable[..., float], int, Optional[int]]] = {
    "ceil": (lambda x: float(math.ceil(x)), 1, 1),
    "floor": (lambda x: float(math.floor(x)), 1, 1),
    "round": (_js_round, 1, 1),
    "abs": (lambda x: abs(x), 1, 1),
    "sqrt": (_sqrt, 1, 1),
    "pow": (lambda x, y: math.pow(x, y), 2, 2),
    "max": (lambda *xs: max(xs), 1, None),
    "min": (lambda *xs: min(xs), 1, None),
}

_CONSTANTS: Dict[str, Value] = {
    "PI": math.pi,
    "Math.PI": math.pi,
    "true": True,
    "false": False,
}


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Literal:
    value: Value


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Any


@dataclass(frozen=True)
class Binary:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class Conditional:
    test: Any
    then: Any
    otherwise: Any


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple[Any, ...]


# ---------------------------------------------------------------------------
# Tokenizer / parser
# ---------------------------------------------------------------------------

def _tokenize(expression: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise FormulaEvaluationError(
                f"Unexpected character {expression[pos]!r} at position {pos}",
                expression=expression,
            )
        kind = match.lastgroup
        if kind != "ws":
            tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, expression: str, tokens: List[Tuple[str, str]]) -> None:
        self.expression = expression
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _accept(self, *ops: str) -> Optional[str]:
        tok = self._peek()
        if tok is not None and tok[0] == "op" and tok[1] in ops:
            self.pos += 1
            return tok[1]
        return None

    def _expect(self, op: str) -> None:
        if self._accept(op) is None:
            found = self._peek()
            raise FormulaEvaluationError(
                f"Expected '{op}' but found {found[1] if found else 'end of formula'!r}",
                expression=self.expression,
            )

    def parse(self) -> Any:
        if not self.tokens:
            raise FormulaEvaluationError("Formula is empty", expression=self.expression)
        node = self._ternary()
        if self._peek() is not None:
            raise FormulaEvaluationError(
                f"Unexpected token {self._peek()[1]!r}", expression=self.expression
            )
        return node

    def _ternary(self) -> Any:
        test = self._binary_level(0)
        if self._accept("?"):
            then = self._ternary()
            self._expect(":")
            otherwise = self._ternary()
            return Conditional(test, then, otherwise)
        return test

    _LEVELS: Tuple[Tuple[str, ...], ...] = (
        ("||",),
        ("&&",),
        ("===", "!==", "==", "!="),
        ("<", ">", "<=", ">="),
        ("+", "-"),
        ("*", "/", "%"),
    )

    def _binary_level(self, level: int) -> Any:
        if level == len(self._LEVELS):
            return self._unary()
        node = self._binary_level(level + 1)
        while True:
            op = self._accept(*self._LEVELS[level])
            if op is None:
                return node
            node = Binary(op, node, self._binary_level(level + 1))

    def _unary(self) -> Any:
        op = self._accept("-", "+", "!")
        if op is not None:
            return Unary(op, self._unary())
        return self._primary()

    def _primary(self) -> Any:
        tok = self._peek()
        if tok is None:
            raise FormulaEvaluationError("Unexpected end of formula", expression=self.expression)
        kind, text = tok
        if kind == "number":
            self.pos += 1
            return Literal(float(text))
        if kind == "string":
            self.pos += 1
            return Literal(text[1:-1])
        if kind == "ident":
            self.pos += 1
            if self._accept("("):
                return self._call(text)
            if text in _CONSTANTS:
                return Literal(_CONSTANTS[text])
            if "." in text:
                raise FormulaEvaluationError(f"Unknown name {text!r}", expression=self.expression)
            return Variable(text)
        if self._accept("("):
            node = self._ternary()
            self._expect(")")
            return node
        raise FormulaEvaluationError(f"Unexpected token {text!r}", expression=self.expression)

    def _call(self, name: str) -> Call:
        fn_name = name[5:] if name.startswith("Math.") else name
        if fn_name not in _FUNCTIONS:
            raise FormulaEvaluationError(f"Unknown function {name!r}", expression=self.expression)
        args: List[Any] = []
        if not self._accept(")"):
            args.append(self._ternary())
            while self._accept(","):
                args.append(self._ternary())
            self._expect(")")
        _, min_args, max_args = _FUNCTIONS[fn_name]
        if len(args) < min_args or (max_args is not None and len(args) > max_args):
            raise FormulaEvaluationError(
                f"{fn_name}() takes {min_args if max_args == min_args else f'at least {min_args}'} "
                f"argument(s), got {len(args)}",
                expression=self.expression,
            )
        return Call(fn_name, tuple(args))


@lru_cache(maxsize=FORMULA_CACHE_SIZE)
def parse(expression: str) -> Any:
    """Parse ``expression`` into an AST (cached by text)."""
    if expression is None or not str(expression).strip():
        raise FormulaEvaluationError("Formula is empty", expression=expression)
    if len(expression) > MAX_FORMULA_LENGTH:
        raise FormulaEvaluationError("Formula is too long", length=len(expression))
    if not _ALLOWED_CHARS.match(expression):
        raise FormulaEvaluationError("Formula contains forbidden characters", expression=expression)
    try:
        return _Parser(expression, _tokenize(expression)).parse()
    except RecursionError:
        raise FormulaEvaluationError("Formula is nested too deeply", expression=expression)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _number(value: Value, expression: str) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    raise FormulaEvaluationError(
        f"Expected a number but got text {value!r}", expression=expression
    )


def _truthy(value: Value) -> bool:
    if isinstance(value, str):
        return value != ""
    return bool(value)


def _equal(a: Value, b: Value) -> bool:
    if isinstance(a, str) or isinstance(b, str):
        return isinstance(a, str) and isinstance(b, str) and a == b
    return float(a) == float(b)


def _eval(node: Any, context: Mapping[str, Value], expression: str) -> Value:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Variable):
        if node.name not in context or context[node.name] is None:
            raise FormulaEvaluationError(
                f"Unknown variable '{node.name}'", expression=expression, variable=node.name
            )
        value = context[node.name]
        if not isinstance(value, (int, float, str, bool)):
            raise FormulaEvaluationError(
                f"Variable '{node.name}' has unsupported type", expression=expression
            )
        return value
    if isinstance(node, Unary):
        operand = _eval(node.operand, context, expression)
        if node.op == "!":
            return not _truthy(operand)
        number = _number(operand, expression)
        return -number if node.op == "-" else number
    if isinstance(node, Conditional):
        if _truthy(_eval(node.test, context, expression)):
            return _eval(node.then, context, expression)
        return _eval(node.otherwise, context, expression)
    if isinstance(node, Call):
        fn, _, _ = _FUNCTIONS[node.name]
        args = [_number(_eval(a, context, expression), expression) for a in node.args]
        return float(fn(*args))
    if isinstance(node, Binary):
        op = node.op
        if op == "&&":
            left = _eval(node.left, context, expression)
            return _eval(node.right, context, expression) if _truthy(left) else left
        if op == "||":
            left = _eval(node.left, context, expression)
            return left if _truthy(left) else _eval(node.right, context, expression)
        left = _eval(node.left, context, expression)
        right = _eval(node.right, context, expression)
        if op in ("===", "=="):
            return _equal(left, right)
        if op in ("!==", "!="):
            return not _equal(left, right)
        a = _number(left, expression)
        b = _number(right, expression)
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op in ("/", "%"):
            if b == 0:
                raise FormulaEvaluationError("Division by zero", expression=expression)
            return a / b if op == "/" else math.fmod(a, b)
        if op == "<":
            return a < b
        if op == ">":
            return a > b
        if op == "<=":
            return a <= b
        if op == ">=":
            return a >= b
    raise FormulaEvaluationError("Unsupported expression", expression=expression)


def _evaluate_raw(expression: str, context: Optional[Mapping[str, Value]]) -> Value:
    tree = parse(expression)
    try:
        return _eval(tree, context or {}, expression)
    except (OverflowError, ValueError, RecursionError) as e:
        raise FormulaEvaluationError(f"Arithmetic error: {e}", expression=expression)


def evaluate(expression: str, context: Optional[Mapping[str, Value]] = None) -> float:
    """
    Evaluate ``expression`` against ``context`` and return a finite number.

    Booleans are returned as 1.0 / 0.0.  Raises FormulaEvaluationError on any
    parse error, unknown variable, text result or non-finite result.
    """
    result = _evaluate_raw(expression, context)
    number = _number(result, expression)
    if not math.isfinite(number):
        raise FormulaEvaluationError("Formula result is not finite", expression=expression)
    return number


def evaluate_condition(expression: str, context: Optional[Mapping[str, Value]] = None) -> bool:
    """Evaluate a boolean-valued formula (component include conditions)."""
    return _truthy(_evaluate_raw(expression, context))


def variables(expression: str) -> Set[str]:
    """Names referenced by ``expression`` (excluding functions and constants)."""
    found: Set[str] = set()

    def walk(node: Any) -> None:
        if isinstance(node, Variable):
            found.add(node.name)
        elif isinstance(node, Unary):
            walk(node.operand)
        elif isinstance(node, Binary):
            walk(node.left)
            walk(node.right)
        elif isinstance(node, Conditional):
            walk(node.test)
            walk(node.then)
            walk(node.otherwise)
        elif isinstance(node, Call):
            for arg in node.args:
                walk(arg)

    walk(parse(expression))
    return found


@dataclass
class FormulaCheck:
    valid: bool
    variables: List[str]
    unknown_variables: List[str]
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "variables": self.variables,
            "unknown_variables": self.unknown_variables,
            "error": self.error,
        }


def validate(expression: str, allowed_names: Optional[Iterable[str]] = None) -> FormulaCheck:
    """Check that a formula parses and only references ``allowed_names``."""
    try:
        names = sorted(variables(expression))
    except FormulaEvaluationError as e:
        return FormulaCheck(valid=False, variables=[], unknown_variables=[], error=e.message)
    if allowed_names is None:
        return FormulaCheck(valid=True, variables=names, unknown_variables=[])
    allowed = set(allowed_names)
    unknown = [n for n in names if n not in allowed]
    return FormulaCheck(
        valid=not unknown,
        variables=names,
        unknown_variables=unknown,
        error=f"Unknown variables: {', '.join(unknown)}" if unknown else None,
    )


def available_functions() -> List[str]:
    return sorted(_FUNCTIONS) + ["PI"]
