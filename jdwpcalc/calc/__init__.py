"""Expression parsing and remote evaluation."""

from .evaluator import Evaluator as Evaluator
from .parser import ParseError as ParseError
from .parser import parse as parse
from .types import BinaryOp as BinaryOp
from .types import IntegerLiteral as IntegerLiteral
from .types import Operator as Operator
