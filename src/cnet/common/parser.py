"""Parse batch lines into CNET requests and evaluate requests safely."""
from collections.abc import Callable as ABCCallable
import operator
from typing import Callable, Dict, List

from cnet.common.errors import ValidationError
from cnet.common.messages import Operation, Request, is_number


# Type alias for operator functions (taking two floats, returning a float)
OperatorFn: ABCCallable[[float, float], float] = Callable[[float, float], float]

# Mapping of operation keywords to functions
OPERATIONS: Dict[str, OperatorFn] = {
    Operation.ADD.value: operator.add,
    Operation.SUB.value: operator.sub,
    Operation.MUL.value: operator.mul,
    Operation.DIV.value: operator.truediv,
}

# Mapping of infix symbols to operation keywords
SYMBOLS: Dict[str, str] = {
    "+": Operation.ADD.value,
    "-": Operation.SUB.value,
    "*": Operation.MUL.value,
    "/": Operation.DIV.value,
}


def format_number(value: float) -> str:
    """
    Render a computed value as a CNET numeric string.

    Integral values are written without a fractional part (``7`` rather than ``7.0``).

    :param float value: Computed value

    :return: Decimal string
    :rtype: str
    """
    if value.is_integer():
        return str(int(value))
    return repr(value)


def evaluate(request: Request) -> float:
    """
    Apply the request's operation to its operands.

    :param Request request: Validated request

    :return: Computed result
    :rtype: float
    :raises ZeroDivisionError: On DIV with a zero second operand
    """
    a, b = request.operands()
    return OPERATIONS[request.operation](a, b)


class RequestParser:
    """
    Turn a line of a batch file into a Request.

    Two forms are accepted, tokens separated by whitespace:
        - keyword form: ``ADD 3 4``
        - infix form with a single binary operator: ``3 + 4``
    """

    @staticmethod
    def tokenize(line: str) -> List[str]:
        """
        Split a batch line into tokens.

        :param str line: Batch line

        :return: List of tokens
        :rtype: List[str]
        """
        return line.split()

    @staticmethod
    def parse_line(line: str) -> Request:
        """
        Build a Request from a batch line.

        :param str line: Batch line

        :return: Validated request
        :rtype: Request
        :raises ValidationError: If the line is not a single binary operation
        """
        tokens: List[str] = RequestParser.tokenize(line)
        if len(tokens) != 3:
            raise ValidationError(f"Expected 3 tokens, got {len(tokens)}: {line!r}")

        first, second, third = tokens
        # Infix form: the operator sits between two numbers
        if second in SYMBOLS and is_number(first):
            return Request(SYMBOLS[second], first, third)
        return Request(first, second, third)
