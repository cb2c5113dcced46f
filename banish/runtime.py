"""
Runtime support for generated machines

Generated modules keep every piece of engine state in one
ExecutionContext owned by the running machine, and use bind_machine to
run the machine function against the caller's variable scope.
"""

import builtins
import logging
import types
from typing import Any, Callable, Dict, Optional, Sequence

from banish.errors import StateOverrunError

logger = logging.getLogger(__name__)


class ExecutionContext:
    """
    Engine state of one machine invocation

    Attributes:
        current: Index of the state being dispatched
        interacted: Whether a rule fired during the current pass
        first_iteration: Whether the current pass is the first since the
            state was entered; conditionless rules only fire then
        transitioned: Whether the current state was left by a transition
    """

    __slots__ = ('state_names', 'trace', 'current', 'interacted',
                 'first_iteration', 'transitioned')

    def __init__(self, state_names: Sequence[str], trace: bool = False):
        self.state_names = tuple(state_names)
        self.trace = trace
        self.current = 0
        self.interacted = False
        self.first_iteration = True
        self.transitioned = False

    @property
    def state_name(self) -> str:
        return self.state_names[self.current]

    def enter(self):
        self.first_iteration = True
        self.transitioned = False
        if self.trace:
            logger.debug(f"enter @{self.state_name} (state {self.current})")

    def begin_pass(self):
        self.interacted = False

    def end_pass(self) -> bool:
        """Close a pass over the state's rules; True means run another pass."""
        self.first_iteration = False
        if self.trace and not self.interacted:
            logger.debug(f"@{self.state_name} reached its fixed point")
        return self.interacted

    def transition(self, index: int):
        if self.trace:
            logger.debug(f"@{self.state_name} => @{self.state_names[index]}")
        self.current = index
        self.transitioned = True

    def leave(self):
        """Fall through to the next declared state unless a transition fired."""
        if self.transitioned:
            return
        self.current += 1
        if self.current >= len(self.state_names):
            raise StateOverrunError(
                f"Execution fell through the final state '{self.state_names[-1]}' "
                "without reaching a return or transition"
            )


def bind_machine(
    factory: Callable[[type], Callable[[], Any]],
    context_type: type,
    scope: Optional[Dict[str, Any]] = None,
    variables: Optional[Dict[str, Any]] = None,
) -> Any:
    """
    Run a generated machine against a variable scope

    The factory is rebound with scope as its globals, so every variable
    the machine reads or assigns lives in scope; the caller sees the
    machine's assignments once it returns.

    Args:
        factory: Generated factory taking the execution context type
        context_type: ExecutionContext (or a subclass) for engine state
        scope: Variables shared with the machine; a new dict when omitted
        variables: Extra variables merged into scope before running

    Returns:
        The value of the return statement that ended the machine
    """
    if scope is None:
        scope = {}
    if variables:
        scope.update(variables)
    scope.setdefault('__builtins__', builtins)

    bound_factory = types.FunctionType(factory.__code__, scope, factory.__name__)
    machine = bound_factory(context_type)
    return machine()
