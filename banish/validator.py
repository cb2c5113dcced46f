"""
Machine Validator

Structural checks over a parsed MachineModel. The model is never mutated;
a successful validation returns a ResolvedMachine that pairs the model
with its state index table, which is all the code generator needs.

Checks, in order:
1. State names are unique; rule names are unique within each state.
2. The final state declares an exit (a transition or a top-level return).
3. Every transition names a declared state.
4. (optional) Every reachable state has a path to a state that returns.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Set

from banish.errors import BanishValidationError, source_context
from banish.parser import HostStatement, MachineModel, Transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedMachine:
    """Validated model plus the state name -> declaration index table"""
    model: MachineModel
    state_indices: Dict[str, int]

    def index_of(self, state_name: str) -> int:
        return self.state_indices[state_name]


class MachineValidator:
    """
    Validates machine models and resolves transition targets

    Whole-graph exit reachability is an opt-in pass: earlier states may
    legitimately cycle forever, so only the final state's exit is required
    by default.
    """

    def __init__(self, check_reachability: bool = False):
        self.check_reachability = check_reachability

    def validate(self, model: MachineModel) -> ResolvedMachine:
        """
        Run every check against model

        Returns:
            ResolvedMachine for the code generator

        Raises:
            BanishValidationError: at the first violated rule
        """
        with source_context(model.source):
            self._check_unique_names(model)
            self._check_final_state_exit(model)
            state_indices = self._resolve_transitions(model)

            if self.check_reachability:
                self._check_exit_reachability(model, state_indices)

        logger.debug(f"Validated {model.source_name}: {len(model.states)} states")
        return ResolvedMachine(model=model, state_indices=state_indices)

    def _check_unique_names(self, model: MachineModel):
        state_names: Set[str] = set()
        for state in model.states:
            if state.name in state_names:
                raise BanishValidationError(
                    f"Duplicate state name '{state.name}'", state.location
                )
            state_names.add(state.name)

            # Rule names only need to be unique inside their own state
            rule_names: Set[str] = set()
            for rule in state.rules:
                if rule.name in rule_names:
                    raise BanishValidationError(
                        f"Duplicate rule '{rule.name}' in state '{state.name}'",
                        rule.location,
                    )
                rule_names.add(rule.name)

    def _check_final_state_exit(self, model: MachineModel):
        state = model.final_state
        for rule in state.rules:
            for stmt in rule.statements:
                if isinstance(stmt, Transition):
                    return
                if isinstance(stmt, HostStatement) and stmt.is_return:
                    return

        raise BanishValidationError(
            f"Final state '{state.name}' must have a return or state transition statement",
            state.location,
        )

    def _resolve_transitions(self, model: MachineModel) -> Dict[str, int]:
        state_indices = {state.name: index for index, state in enumerate(model.states)}

        for state in model.states:
            for rule in state.rules:
                for stmt in rule.statements:
                    if isinstance(stmt, Transition) and stmt.target not in state_indices:
                        raise BanishValidationError(
                            f"Unknown state '{stmt.target}' in transition "
                            f"(rule '{rule.name}' of state '{state.name}')",
                            stmt.location,
                        )

        return state_indices

    def _check_exit_reachability(self, model: MachineModel, state_indices: Dict[str, int]):
        """
        Require a path to a returning state from every reachable state

        Edges are the natural fall-through to the next declared state and
        every explicit transition. A state counts as an exit when any of
        its statements may return.
        """
        count = len(model.states)
        successors: List[Set[int]] = [set() for _ in range(count)]
        exits: Set[int] = set()

        for index, state in enumerate(model.states):
            if index + 1 < count:
                successors[index].add(index + 1)
            for rule in state.rules:
                for stmt in rule.statements:
                    if isinstance(stmt, Transition):
                        successors[index].add(state_indices[stmt.target])
                    elif stmt.may_return:
                        exits.add(index)

        reachable = self._walk({0}, successors)

        predecessors: List[Set[int]] = [set() for _ in range(count)]
        for index, targets in enumerate(successors):
            for target in targets:
                predecessors[target].add(index)
        can_exit = self._walk(exits, predecessors)

        stuck = sorted(reachable - can_exit)
        if stuck:
            state = model.states[stuck[0]]
            raise BanishValidationError(
                f"State '{state.name}' can never reach a return statement",
                state.location,
            )

    @staticmethod
    def _walk(start: Set[int], edges: List[Set[int]]) -> Set[int]:
        seen = set(start)
        queue = deque(start)
        while queue:
            for target in edges[queue.popleft()]:
                if target not in seen:
                    seen.add(target)
                    queue.append(target)
        return seen
