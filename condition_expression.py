"""
Boolean condition language for custom rules.

Conditions are small expressions over the single variable ``value``:

    expression  := or_expr
    or_expr     := and_expr ( "OR" and_expr )*
    and_expr    := not_expr ( "AND" not_expr )*
    not_expr    := ( "NOT" | "!" ) not_expr | primary
    primary     := "(" expression ")" | comparison
    comparison  := operand [ op operand ]      op: == = != < <= > >=
    operand     := "value" | NUMBER | STRING | "true" | "false" | "null"

Precedence from tightest to loosest: comparison, NOT, AND, OR. Keywords are
upper case. Parentheses and NOT nest at most MAX_NESTING levels. Input is
checked against a character whitelist before it is tokenised, then parsed
into a small tree and walked. Nothing is ever handed to eval or exec.
"""
import re
from functools import lru_cache
from typing import Any, List, NamedTuple, Tuple, Union

from utils.values import normalize_cell, stringify, to_number

ALLOWED_CHARACTERS = re.compile(r"^[A-Za-z0-9\s()<>=!.'\"_+\-]*$")

TOKEN_PATTERN = re.compile(
    r"""
    \s*(?:
        (?P<number>[+-]?(?:\d+\.\d*|\.\d+|\d+))
      | (?P<string>"[^"]*"|'[^']*')
      | (?P<op><=|>=|==|!=|<|>|=|!)
      | (?P<paren>[()])
      | (?P<word>[A-Za-z_][A-Za-z0-9_]*)
    )
    """,
    re.VERBOSE,
)

KEYWORDS = {"AND", "OR", "NOT"}

MAX_NESTING = 100

LITERALS = {"true": True, "false": False, "null": None}
COMPARISON_OPERATORS = {"==", "=", "!=", "<", "<=", ">", ">="}


class ConditionSyntaxError(ValueError):
    """Raised when a condition is outside the grammar"""


class Token(NamedTuple):
    kind: str
    text: str


class Variable(NamedTuple):
    name: str = "value"


class Literal(NamedTuple):
    value: Any


class Comparison(NamedTuple):
    operator: str
    left: Any
    right: Any


class Not(NamedTuple):
    operand: Any


class BoolOp(NamedTuple):
    operator: str
    operands: Tuple[Any, ...]


Node = Union[Variable, Literal, Comparison, Not, BoolOp]


def tokenize(condition: str) -> List[Token]:
    if not ALLOWED_CHARACTERS.match(condition):
        raise ConditionSyntaxError("Condition contains characters outside the allowed set")
    tokens = []
    position = 0
    text = condition.rstrip()
    while position < len(text):
        match = TOKEN_PATTERN.match(text, position)
        if not match or match.end() == position:
            raise ConditionSyntaxError(f"Unexpected input at position {position}")
        kind = match.lastgroup
        value = match.group(kind)
        if kind == "word":
            if value in KEYWORDS:
                kind = "keyword"
            elif value == "value":
                kind = "variable"
            elif value in LITERALS:
                kind = "literal"
            else:
                raise ConditionSyntaxError(f"Unknown identifier: {value}")
        tokens.append(Token(kind, value))
        position = match.end()
    return tokens


class _Parser:
    """Recursive-descent parser over a token list"""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.position = 0
        self.depth = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise ConditionSyntaxError("Condition is empty")
        node = self._or_expr()
        if self.position != len(self.tokens):
            raise ConditionSyntaxError(f"Unexpected token: {self.tokens[self.position].text}")
        return node

    def _peek(self):
        return self.tokens[self.position] if self.position < len(self.tokens) else None

    def _accept(self, kind: str, *texts: str):
        token = self._peek()
        if token is not None and token.kind == kind and (not texts or token.text in texts):
            self.position += 1
            return token
        return None

    def _descend(self):
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise ConditionSyntaxError(f"Condition is nested more than {MAX_NESTING} levels deep")

    def _or_expr(self) -> Node:
        operands = [self._and_expr()]
        while self._accept("keyword", "OR"):
            operands.append(self._and_expr())
        return operands[0] if len(operands) == 1 else BoolOp("OR", tuple(operands))

    def _and_expr(self) -> Node:
        operands = [self._not_expr()]
        while self._accept("keyword", "AND"):
            operands.append(self._not_expr())
        return operands[0] if len(operands) == 1 else BoolOp("AND", tuple(operands))

    def _not_expr(self) -> Node:
        if self._accept("keyword", "NOT") or self._accept("op", "!"):
            self._descend()
            node = Not(self._not_expr())
            self.depth -= 1
            return node
        return self._primary()

    def _primary(self) -> Node:
        if self._accept("paren", "("):
            self._descend()
            node = self._or_expr()
            if not self._accept("paren", ")"):
                raise ConditionSyntaxError("Missing closing parenthesis")
            self.depth -= 1
            return node
        left = self._operand()
        token = self._peek()
        if token is not None and token.kind == "op" and token.text in COMPARISON_OPERATORS:
            self.position += 1
            return Comparison(token.text, left, self._operand())
        return left

    def _operand(self) -> Node:
        token = self._peek()
        if token is None:
            raise ConditionSyntaxError("Unexpected end of condition")
        self.position += 1
        if token.kind == "variable":
            return Variable()
        if token.kind == "number":
            return Literal(float(token.text))
        if token.kind == "string":
            return Literal(token.text[1:-1])
        if token.kind == "literal":
            return Literal(LITERALS[token.text])
        raise ConditionSyntaxError(f"Expected an operand, got {token.text}")


@lru_cache(maxsize=256)
def parse_condition(condition: str) -> Node:
    """Parse a condition into an expression tree (cached per condition text)."""
    return _Parser(tokenize(condition)).parse()


def _resolve(node: Node, value: Any) -> Any:
    if isinstance(node, Variable):
        return normalize_cell(value)
    if isinstance(node, Literal):
        return node.value
    return _evaluate(node, value)


def _truthy(operand: Any) -> bool:
    if isinstance(operand, bool):
        return operand
    if operand is None:
        return False
    number = to_number(operand)
    if number is not None and not isinstance(operand, str):
        return number != 0
    return stringify(operand) != ""


def _compare(operator: str, left: Any, right: Any) -> bool:
    left_number, right_number = to_number(left), to_number(right)
    if left_number is not None and right_number is not None:
        if operator in ("==", "="):
            return left_number == right_number
        if operator == "!=":
            return left_number != right_number
        if operator == "<":
            return left_number < right_number
        if operator == "<=":
            return left_number <= right_number
        if operator == ">":
            return left_number > right_number
        return left_number >= right_number

    if operator in ("==", "="):
        return _same(left, right)
    if operator == "!=":
        return not _same(left, right)
    # Ordering needs two numbers
    return False


def _same(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return normalize_cell(left) is None and normalize_cell(right) is None
    return stringify(left) == stringify(right)


def _evaluate(node: Node, value: Any) -> bool:
    if isinstance(node, Comparison):
        return _compare(node.operator, _resolve(node.left, value), _resolve(node.right, value))
    if isinstance(node, Not):
        return not _evaluate(node.operand, value)
    if isinstance(node, BoolOp):
        if node.operator == "AND":
            return all(_evaluate(operand, value) for operand in node.operands)
        return any(_evaluate(operand, value) for operand in node.operands)
    return _truthy(_resolve(node, value))


def evaluate_condition(condition: str, value: Any) -> bool:
    """
    Evaluate a condition against one value.

    Raises:
        ConditionSyntaxError: the condition is not in the grammar
    """
    return _evaluate(parse_condition(condition), value)
