"""Expression parser using Lark."""

import os
from typing import Any

from lark import Lark, Token
from lark.exceptions import UnexpectedInput, VisitError
from lark.visitors import Transformer

from .types import MAX_LONG, BinaryOp, IntegerLiteral, Node, Operator

_g_parser: Lark | None = None


class ParseError(RuntimeError):
    """Raised when an expression is malformed; position is the 0-based column."""

    def __init__(self, message: str, position: int) -> None:
        self.position = position
        super().__init__(f"{message} at column {position + 1}")


class TreeTransformer(Transformer):
    """Transform parse tree into expression nodes."""

    def integer(self, args: list[Any]) -> IntegerLiteral:
        token: Token = args[0]
        value = int(token)
        if value > MAX_LONG:
            raise ParseError(f"integer {token} does not fit in a signed 64-bit long", token.start_pos or 0)
        return IntegerLiteral(value)

    def add(self, args: list[Any]) -> BinaryOp:
        return BinaryOp(Operator.ADD, args[0], args[1])

    def sub(self, args: list[Any]) -> BinaryOp:
        return BinaryOp(Operator.SUB, args[0], args[1])

    def mul(self, args: list[Any]) -> BinaryOp:
        return BinaryOp(Operator.MUL, args[0], args[1])

    def div(self, args: list[Any]) -> BinaryOp:
        return BinaryOp(Operator.DIV, args[0], args[1])


def _get_parser() -> Lark:
    global _g_parser

    if not _g_parser:
        with open(f"{os.path.dirname(__file__)}/grammar.lark", encoding="utf-8") as f:
            grammar = f.read()
        _g_parser = Lark(grammar, parser="lalr")
    return _g_parser


def _describe(exc: UnexpectedInput, text: str) -> tuple[str, int]:
    token = getattr(exc, "token", None)
    if isinstance(token, Token):
        if token.type == "$END":
            return "unexpected end of input", len(text.rstrip())
        return f"unexpected {str(token)!r}", token.start_pos or 0

    position = exc.pos_in_stream
    if position is None or position < 0:
        position = len(text)
    char = text[position : position + 1]
    if not char:
        return "unexpected end of input", position
    return f"unexpected {char!r}", position


def parse(text: str) -> Node:
    """Parse an arithmetic expression into a tree of nodes."""
    try:
        tree = _get_parser().parse(text)
    except UnexpectedInput as exc:
        message, position = _describe(exc, text)
        raise ParseError(message, position) from None

    try:
        return TreeTransformer().transform(tree)
    except VisitError as exc:
        if isinstance(exc.orig_exc, ParseError):
            raise exc.orig_exc from None
        raise
