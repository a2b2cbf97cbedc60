from hscript.hscript_datatypes import (
    ArgumentCountMismatch, CodecError, ErrorRecord, FunctionNotFound, HScriptError, HttpFailure,
    ImportFailure, LexError, LoopLimitExceeded, MissingAttribute, RecursionLimitExceeded,
    TypeMismatchError, UndefinedVariableError, UnknownOperation,
)
from hscript.hscript_interpreter import Interpreter
from hscript.hscript_runtime import ExecutionResult, ScriptRunner, tag_handler
from hscript.hscript_tree import Node, parse_markup

__all__ = [
    "ScriptRunner", "ExecutionResult", "Interpreter", "Node", "parse_markup", "tag_handler",
    "ErrorRecord", "HScriptError", "LexError", "UndefinedVariableError", "TypeMismatchError",
    "MissingAttribute", "ArgumentCountMismatch", "FunctionNotFound", "RecursionLimitExceeded",
    "LoopLimitExceeded", "UnknownOperation", "CodecError", "ImportFailure", "HttpFailure",
]
