"""Rule-based fixed-point state machines compiled to Python.

A machine is an ordered list of ``@state`` blocks holding guarded rules.
Each state re-evaluates its rules until none fire, then falls through to the
next state unless a rule transitioned with ``=> @state;``. See
``banish.parser`` for the grammar.
"""

from importlib.metadata import PackageNotFoundError, version

from banish.codegen import CodeGenerator
from banish.compiler import (
    CompiledMachine,
    banish,
    compile_machine,
    generate_source,
    parse,
    validate,
)
from banish.errors import (
    BanishCompileError,
    BanishError,
    BanishSyntaxError,
    BanishValidationError,
    StateOverrunError,
)
from banish.parser import MachineModel
from banish.runtime import ExecutionContext
from banish.validator import ResolvedMachine

try:
    __version__: str = version("banish")
except PackageNotFoundError:  # pragma: no cover - editable local fallback
    __version__ = "0.1.0"

__all__ = [
    "BanishCompileError",
    "BanishError",
    "BanishSyntaxError",
    "BanishValidationError",
    "CodeGenerator",
    "CompiledMachine",
    "ExecutionContext",
    "MachineModel",
    "ResolvedMachine",
    "StateOverrunError",
    "__version__",
    "banish",
    "compile_machine",
    "generate_source",
    "parse",
    "validate",
]
