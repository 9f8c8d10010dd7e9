"""Compile expression trees into reflective BigInteger calls."""

import logging

from ..proto.invoker import ReflectiveInvoker
from ..proto.types import ObjectID
from .parser import parse
from .types import BinaryOp, IntegerLiteral, Node

logger = logging.getLogger(__name__)


class Evaluator:
    """Evaluates expressions inside the remote VM.

    The walk is post-order and strictly sequential: the left operand is
    fully evaluated before the right one, and each node issues its remote
    calls only after its children have produced their handles.
    """

    def __init__(self, invoker: ReflectiveInvoker) -> None:
        self.invoker = invoker

    def evaluate(self, node: Node) -> ObjectID:
        match node:
            case IntegerLiteral(value):
                return self.invoker.box_integer(value)
            case BinaryOp(op, left, right):
                left_id = self.evaluate(left)
                right_id = self.evaluate(right)
                return self.invoker.invoke_binary_op(op, left_id, right_id)
        raise TypeError(f"not an expression node: {node!r}")

    def render(self, result: ObjectID) -> str:
        """Turn the final remote handle into its decimal text."""
        return self.invoker.stringify(result)

    def calculate(self, text: str) -> str:
        """Parse, evaluate and render one expression.

        Parsing completes before any request is sent, so malformed input
        never reaches the remote VM.
        """
        node = parse(text)
        logger.info("Evaluating %s", node)
        return self.render(self.evaluate(node))
