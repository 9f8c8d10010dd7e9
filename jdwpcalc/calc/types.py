"""Expression tree produced by the parser."""

from dataclasses import dataclass
from enum import StrEnum

MAX_LONG = 2**63 - 1


class Operator(StrEnum):
    """Binary operators, valued by the BigInteger method that implements them."""

    ADD = "add"
    SUB = "subtract"
    MUL = "multiply"
    DIV = "divide"

    @property
    def symbol(self) -> str:
        return _SYMBOLS[self]


_SYMBOLS = {
    Operator.ADD: "+",
    Operator.SUB: "-",
    Operator.MUL: "*",
    Operator.DIV: "/",
}


@dataclass(frozen=True, slots=True)
class IntegerLiteral:
    value: int

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True, slots=True)
class BinaryOp:
    op: Operator
    left: "Node"
    right: "Node"

    def __str__(self) -> str:
        return f"({self.left} {self.op.symbol} {self.right})"


Node = IntegerLiteral | BinaryOp
