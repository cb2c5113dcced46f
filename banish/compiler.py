"""
Compile pipeline: parse -> validate -> generate -> load

Every stage can be called on its own; compile_machine chains them and
loads the generated module, and banish() compiles and runs in one call.
"""

import functools
import logging
from typing import Any, Dict, Optional

from banish.codegen import CodeGenerator
from banish.errors import BanishCompileError
from banish.parser import MachineModel, MachineParser
from banish.validator import MachineValidator, ResolvedMachine

logger = logging.getLogger(__name__)


def parse(source: str, *, source_name: str = "<banish>") -> MachineModel:
    return MachineParser().parse(source, source_name=source_name)


def validate(model: MachineModel, *, check_reachability: bool = False) -> ResolvedMachine:
    return MachineValidator(check_reachability=check_reachability).validate(model)


def generate_source(
    resolved: ResolvedMachine,
    *,
    name: str = "machine",
    trace: bool = False,
    template_dir=None,
) -> str:
    return CodeGenerator(template_dir=template_dir).generate(resolved, name=name, trace=trace)


class CompiledMachine:
    """
    A generated machine loaded into its own module namespace

    Calling the machine runs it against a variable scope. Pass a dict as
    scope to observe the machine's assignments after it returns; keyword
    arguments are merged into the scope first.
    """

    def __init__(self, source: str, name: str = "machine", filename: str = "<banish-machine>"):
        self.source = source
        self.name = name

        try:
            code = compile(source, filename, 'exec')
        except SyntaxError as exc:
            raise BanishCompileError(
                f"Generated code for machine '{name}' is not valid Python: {exc.msg} "
                f"(generated line {exc.lineno})"
            ) from exc

        namespace: Dict[str, Any] = {'__name__': f"banish.machines.{name}"}
        exec(code, namespace)
        self._run = namespace['run']

    def run(self, scope: Optional[Dict[str, Any]] = None, **variables) -> Any:
        return self._run(scope, **variables)

    def __call__(self, scope: Optional[Dict[str, Any]] = None, **variables) -> Any:
        return self._run(scope, **variables)

    def __repr__(self):
        return f"<CompiledMachine {self.name}>"


def compile_machine(
    source: str,
    *,
    name: str = "machine",
    source_name: str = "<banish>",
    trace: bool = False,
    check_reachability: bool = False,
    template_dir=None,
) -> CompiledMachine:
    """
    Compile machine source into a runnable CompiledMachine

    Raises:
        BanishSyntaxError: source does not follow the grammar
        BanishValidationError: source violates a structural rule
        BanishCompileError: Python rejects the generated module
    """
    model = parse(source, source_name=source_name)
    resolved = validate(model, check_reachability=check_reachability)
    generated = generate_source(resolved, name=name, trace=trace, template_dir=template_dir)

    logger.info(f"Compiled machine '{name}' ({len(model.states)} states)")
    return CompiledMachine(generated, name=name, filename=f"<banish-machine {source_name}>")


@functools.lru_cache(maxsize=128)
def _cached_machine(source: str) -> CompiledMachine:
    return compile_machine(source)


def banish(source: str, scope: Optional[Dict[str, Any]] = None, /, **variables) -> Any:
    """
    Compile and run a machine in one call

    Compiled machines are cached by source text, so calling banish() in a
    loop only compiles once.

    Example:
        >>> scope = {'count': 0}
        >>> banish('@count bump ? count < 3 { count += 1 } @done exit ? { return count }', scope)
        3
    """
    return _cached_machine(source)(scope, **variables)
