from __future__ import annotations

import traceback
from enum import Enum


class ErrorCode(str, Enum):
    INVALID_GRAPH = "INVALID_GRAPH"
    UNSUPPORTED_NODE = "UNSUPPORTED_NODE"
    UNSUPPORTED_GRAPH = "UNSUPPORTED_GRAPH"
    INVALID_VALUE = "INVALID_VALUE"
    MODEL_DESERIALIZE_FAILED = "MODEL_DESERIALIZE_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ParserError(Exception):
    """Structured import failure.

    ``node`` is the index of the originating node, or -1 when the failure is
    not node-local. ``input_name`` is set when the failure is rooted at a
    declared graph input rather than at a node.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_GRAPH,
        node: int = -1,
        input_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.desc = message
        self.node = node
        self.input_name = input_name
        self.file = ""
        self.line = 0
        self.func = ""

    @property
    def is_input_error(self) -> bool:
        return self.input_name is not None

    def capture_provenance(self) -> ParserError:
        """Fill file/line/func from the innermost frame of the traceback."""
        if self.__traceback__ is not None and not self.func:
            frame = traceback.extract_tb(self.__traceback__)[-1]
            self.file = frame.filename
            self.line = frame.lineno or 0
            self.func = frame.name
        return self

    def __str__(self) -> str:
        where = f" (node {self.node})" if self.node >= 0 else ""
        if self.input_name is not None:
            where = f" (input '{self.input_name}')"
        return f"[{self.code.value}]{where} {self.desc}"


def input_error(message: str, code: ErrorCode, input_name: str) -> ParserError:
    return ParserError(message, code=code, input_name=input_name)
