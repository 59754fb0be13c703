"""
Safe arithmetic for chat messages like "100+200*3" or "(5×3)÷2".

A small recursive-descent parser over numbers, + - * / × ÷ and
parentheses. Nothing is ever handed to eval(); any character outside
that grammar is a ValidationError.

Grammar:
    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := ('+' | '-') factor | NUMBER | '(' expr ')'
"""

import re
from decimal import Decimal, DivisionByZero, InvalidOperation, localcontext

from ledger_bot.errors import ValidationError

MAX_EXPRESSION_LENGTH = 200
MAX_DEPTH = 50
RESULT_PLACES = Decimal("0.000001")

TOKEN_RE = re.compile(r'\s*(?:(\d+(?:\.\d*)?|\.\d+)|(.))', re.ASCII)
OPERATOR_ALIASES = {"×": "*", "÷": "/"}


def tokenize(expression: str) -> list[str]:
    tokens = []
    for number, other in TOKEN_RE.findall(expression):
        if number:
            tokens.append(number)
            continue
        if not other or other.isspace():
            continue
        op = OPERATOR_ALIASES.get(other, other)
        if op not in "+-*/()":
            raise ValidationError(f"表达式包含非法字符: {other}")
        tokens.append(op)
    return tokens


class _Parser:
    def __init__(self, tokens: list[str]):
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    def peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> str:
        token = self.peek()
        if token is None:
            raise ValidationError("表达式不完整")
        self.pos += 1
        return token

    def expr(self) -> Decimal:
        value = self.term()
        while self.peek() in ("+", "-"):
            if self.take() == "+":
                value += self.term()
            else:
                value -= self.term()
        return value

    def term(self) -> Decimal:
        value = self.factor()
        while self.peek() in ("*", "/"):
            if self.take() == "*":
                value *= self.factor()
            else:
                divisor = self.factor()
                if divisor == 0:
                    raise ValidationError("除数不能为0")
                value /= divisor
        return value

    def factor(self) -> Decimal:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise ValidationError("表达式嵌套过深")
        try:
            token = self.take()
            if token == "+":
                return self.factor()
            if token == "-":
                return -self.factor()
            if token == "(":
                value = self.expr()
                if self.take() != ")":
                    raise ValidationError("括号不匹配")
                return value
            if token in "*/)":
                raise ValidationError(f"意外的符号: {token}")
            return Decimal(token)
        finally:
            self.depth -= 1


def evaluate(expression: str) -> Decimal:
    """
    Evaluate an arithmetic expression.

    Raises:
        ValidationError: for empty, oversized, malformed or
            divide-by-zero expressions.
    """
    if not expression or not expression.strip():
        raise ValidationError("表达式为空")
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ValidationError("表达式过长")

    tokens = tokenize(expression)
    if not tokens:
        raise ValidationError("表达式为空")

    parser = _Parser(tokens)
    with localcontext() as ctx:
        ctx.prec = 28
        try:
            value = parser.expr()
        except (InvalidOperation, DivisionByZero) as e:
            raise ValidationError(f"计算失败: {e}") from e

    if parser.peek() is not None:
        raise ValidationError(f"意外的符号: {parser.peek()}")
    return value


def format_result(value: Decimal) -> str:
    """Drop trailing zeros, keep at most 6 decimal places."""
    # Room for every integer digit plus the 6 decimals
    with localcontext() as ctx:
        ctx.prec = max(28, value.adjusted() + 8)
        if value == value.to_integral():
            quantized = value.to_integral()
        else:
            quantized = value.quantize(RESULT_PLACES)
        if quantized == 0:
            quantized = Decimal(0)
        return format(quantized.normalize(), "f")
