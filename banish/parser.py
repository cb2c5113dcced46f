"""
Machine Parser

Parses banish machine sources into an immutable MachineModel:
an ordered sequence of states, each holding an ordered sequence of rules.

Grammar:
    machine     := state+
    state       := '@' NAME rule*
    rule        := NAME '?' condition? block else_clause?
    condition   := <tokens up to the '{' that opens the rule block>
    block       := '{' stmt* '}'
    else_clause := '!' '?' block
    stmt        := '=>' '@' NAME ';' | <Python statement>

Conditions and statements are Python source. They are validated with the
ast module and carried through as opaque payloads; their meaning is never
interpreted here.
"""

import ast
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

from banish.errors import BanishSyntaxError, source_context
from banish.lexer import SourceLocation, Token, TokenKind, TokenStream, tokenize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Condition:
    """Python boolean expression guarding a rule"""
    source: str
    node: ast.expr
    location: SourceLocation


@dataclass(frozen=True)
class HostStatement:
    """Python statement embedded in a rule body, passed through unmodified"""
    source: str
    node: ast.stmt
    location: SourceLocation

    @property
    def is_return(self) -> bool:
        return isinstance(self.node, ast.Return)

    @property
    def may_return(self) -> bool:
        """True if a return statement appears anywhere outside nested scopes"""
        return _ReturnFinder.search(self.node)


@dataclass(frozen=True)
class Transition:
    """Explicit jump to the state named by target"""
    target: str
    location: SourceLocation


Stmt = Union[HostStatement, Transition]


@dataclass(frozen=True)
class Rule:
    name: str
    condition: Optional[Condition]
    body: Tuple[Stmt, ...]
    else_body: Optional[Tuple[Stmt, ...]]
    location: SourceLocation

    @property
    def statements(self) -> Tuple[Stmt, ...]:
        """Body and else body statements, in declaration order"""
        return self.body + (self.else_body or ())


@dataclass(frozen=True)
class State:
    name: str
    rules: Tuple[Rule, ...]
    location: SourceLocation


@dataclass(frozen=True)
class MachineModel:
    """Whole machine definition; state order is significant"""
    states: Tuple[State, ...]
    source_name: str = "<banish>"
    source: str = field(default="", repr=False, compare=False)

    @property
    def state_names(self) -> Tuple[str, ...]:
        return tuple(state.name for state in self.states)

    @property
    def final_state(self) -> State:
        return self.states[-1]


class _ReturnFinder(ast.NodeVisitor):
    def __init__(self):
        self.found = False

    @classmethod
    def search(cls, node: ast.AST) -> bool:
        finder = cls()
        finder.visit(node)
        return finder.found

    def visit_Return(self, node):
        self.found = True

    def _skip_scope(self, node):
        pass

    visit_FunctionDef = visit_AsyncFunctionDef = visit_ClassDef = visit_Lambda = _skip_scope


_ENGINE_CONTROL_KEYWORDS = {
    ast.Break: 'break',
    ast.Continue: 'continue',
    ast.Yield: 'yield',
    ast.YieldFrom: 'yield from',
    ast.Await: 'await',
    ast.Global: 'global',
    ast.Nonlocal: 'nonlocal',
}


class _EngineControlFinder(ast.NodeVisitor):
    """
    Find statements that would act on the generated engine itself

    Rule bodies run inside the engine's dispatch and fixed-point loops, so
    a break/continue outside a loop of the statement's own, or a yield/await,
    would silently change how the machine runs. Scope declarations would
    clash with the ones the generator emits for the machine function.
    """

    def __init__(self):
        self.found: Optional[ast.AST] = None

    def _record(self, node):
        if self.found is None:
            self.found = node

    visit_Break = visit_Continue = visit_Global = visit_Nonlocal = _record

    def visit_Yield(self, node):
        self._record(node)

    visit_YieldFrom = visit_Await = visit_Yield

    def _visit_loop(self, node):
        # The loop body owns its break/continue; an else clause does not.
        for stmt in node.orelse:
            self.visit(stmt)

    visit_For = visit_AsyncFor = visit_While = _visit_loop

    def _skip_scope(self, node):
        pass

    visit_FunctionDef = visit_AsyncFunctionDef = visit_ClassDef = visit_Lambda = _skip_scope


class MachineParser:
    """
    Recursive-descent parser for banish machines

    Single pass over the token stream with one-token lookahead and no
    backtracking. Raises BanishSyntaxError at the first grammar violation.
    """

    # Python statements that own an indented suite
    COMPOUND_KEYWORDS = frozenset(
        ['if', 'for', 'while', 'with', 'try', 'def', 'class', 'async', 'match']
    )
    # Clauses that continue a compound statement at its own indentation
    CLAUSE_KEYWORDS = frozenset(['elif', 'else', 'except', 'finally'])
    # Statements a decorator line may be followed by
    DEFINITION_KEYWORDS = frozenset(['def', 'class', 'async'])

    OPENING = frozenset(['(', '[', '{'])
    CLOSING = frozenset([')', ']', '}'])

    def __init__(self):
        self.source = ""
        self.tokens: Optional[TokenStream] = None

    def parse(self, source: str, source_name: str = "<banish>") -> MachineModel:
        """
        Parse a machine source and return its model

        Args:
            source: Machine source text
            source_name: Name used for the model and in generated headers

        Returns:
            MachineModel with states and rules in declaration order
        """
        self.source = source

        with source_context(source):
            self.tokens = TokenStream(tokenize(source))
            self._skip_newlines()
            if self.tokens.at_end():
                raise BanishSyntaxError(
                    "Source is empty: a machine needs at least one '@state'"
                )

            states: List[State] = []
            while not self.tokens.at_end():
                states.append(self._parse_state())
                self._skip_newlines()

        model = MachineModel(states=tuple(states), source_name=source_name, source=source)
        logger.debug(
            f"Parsed {source_name}: {len(model.states)} states, "
            f"{sum(len(s.rules) for s in model.states)} rules"
        )
        return model

    def parse_file(self, source_path) -> MachineModel:
        """Parse a machine source file; the file name becomes the source name"""
        source_path = Path(source_path)
        return self.parse(source_path.read_text(encoding='utf-8'), source_name=source_path.name)

    def _parse_state(self) -> State:
        marker = self.tokens.next()
        if not marker.is_op('@'):
            raise BanishSyntaxError(
                f"Expected '@' to start a state, found {marker.describe()}",
                marker.location,
            )
        name = self._expect_name("state name after '@'")

        rules: List[Rule] = []
        while True:
            self._skip_newlines()
            token = self.tokens.peek()
            # Rules run until the next state marker or end of input
            if token.kind is TokenKind.EOF or token.is_op('@'):
                break
            rules.append(self._parse_rule())

        return State(name=name.value, rules=tuple(rules), location=marker.location)

    def _parse_rule(self) -> Rule:
        name = self._expect_name("rule name")
        self._expect_op('?', f"after rule name '{name.value}'")

        condition = self._parse_condition()
        opening = self._expect_op('{', f"to open the body of rule '{name.value}'")
        body = self._parse_block(opening)
        else_body = self._parse_else_block()

        # A conditionless rule runs unconditionally and has no false branch
        if condition is None and else_body is not None:
            raise BanishSyntaxError(
                f"Rule '{name.value}' cannot have an '!?' clause without a condition.",
                name.location,
            )

        return Rule(
            name=name.value,
            condition=condition,
            body=body,
            else_body=else_body,
            location=name.location,
        )

    def _parse_condition(self) -> Optional[Condition]:
        """
        Scan a condition as a raw token span up to the rule's opening brace

        A brace immediately after '?' means the rule is conditionless.
        Brackets opened inside the condition nest, so only a '{' at depth
        zero ends it.
        """
        self._skip_newlines()
        if self.tokens.peek().is_op('{'):
            return None

        first = self.tokens.peek()
        last = first
        depth = 0
        while True:
            token = self.tokens.peek()
            if token.kind is TokenKind.EOF:
                raise BanishSyntaxError(
                    "Unexpected end of input, expected rule body '{'", token.location
                )
            if depth == 0 and token.is_op('{'):
                break
            if token.is_op(*self.OPENING):
                depth += 1
            elif token.is_op(*self.CLOSING):
                depth -= 1
                if depth < 0:
                    raise BanishSyntaxError(
                        f"Unbalanced {token.describe()} in rule condition", token.location
                    )
            if token.kind is not TokenKind.NEWLINE:
                last = token
            self.tokens.next()

        text = self.source[first.start:last.end]
        try:
            tree = ast.parse("(" + text + "\n)", mode="eval")
        except SyntaxError as exc:
            if (exc.lineno or 1) > text.count("\n") + 1:
                # Reported on the synthetic closing parenthesis
                location = last.location
            else:
                location = self._error_location(first, exc, shift=1)
            raise BanishSyntaxError(
                f"Invalid condition expression: {exc.msg}", location
            ) from exc

        self._reject_engine_control(tree.body, first.location, "rule conditions")
        return Condition(source=text, node=tree.body, location=first.location)

    def _parse_block(self, opening: Token) -> Tuple[Stmt, ...]:
        body: List[Stmt] = []
        while True:
            self._skip_separators()
            token = self.tokens.peek()
            if token.kind is TokenKind.EOF:
                raise BanishSyntaxError(
                    "Unexpected end of input, block opened here is never closed with '}'",
                    opening.location,
                )
            if token.is_op('}'):
                self.tokens.next()
                return tuple(body)
            if token.is_op('=>'):
                body.append(self._parse_transition())
            else:
                body.append(self._parse_host_statement())

    def _parse_else_block(self) -> Optional[Tuple[Stmt, ...]]:
        self._skip_newlines()
        if not (self.tokens.peek().is_op('!') and self.tokens.peek(1).is_op('?')):
            return None
        self.tokens.next()
        self.tokens.next()
        opening = self._expect_op('{', "after '!?'")
        return self._parse_block(opening)

    def _parse_transition(self) -> Transition:
        arrow = self.tokens.next()
        self._expect_op('@', "after '=>'")
        target = self._expect_name("target state name after '=> @'")
        self._expect_op(';', f"after transition to '@{target.value}'")
        return Transition(target=target.value, location=arrow.location)

    def _parse_host_statement(self) -> HostStatement:
        tokens = self._collect_statement_tokens()
        first, last = tokens[0], tokens[-1]
        text = self.source[first.start:last.end]

        # Re-create the statement's original indentation so that suites of
        # compound statements keep their relative layout. A statement that
        # does not start its line is parsed inside a synthetic 'if' block.
        line_begin = self.source.rfind("\n", 0, first.start) + 1
        prefix = re.sub(r"\S", " ", self.source[line_begin:first.start])
        wrapped = bool(prefix)
        fragment = ("if 1:\n" + prefix + text) if wrapped else text

        try:
            module = ast.parse(fragment + "\n")
        except SyntaxError as exc:
            raise BanishSyntaxError(
                f"Invalid Python statement: {exc.msg}",
                self._error_location(first, exc, line_shift=1 if wrapped else 0),
            ) from exc

        statements = module.body[0].body if wrapped else module.body
        if len(statements) != 1:
            raise BanishSyntaxError(
                "Expected a single Python statement", first.location
            )
        node = statements[0]

        self._reject_engine_control(node, first.location, "rule bodies")
        return HostStatement(source=text, node=node, location=first.location)

    @staticmethod
    def _reject_engine_control(node: ast.AST, location: SourceLocation, where: str):
        finder = _EngineControlFinder()
        finder.visit(node)
        if finder.found is None:
            return

        keyword = _ENGINE_CONTROL_KEYWORDS[type(finder.found)]
        if keyword in ('break', 'continue'):
            message = (
                f"'{keyword}' outside a loop is not supported in {where}; "
                "use a state transition '=> @state;' instead"
            )
        elif keyword in ('global', 'nonlocal'):
            message = (
                f"'{keyword}' is not allowed in {where}; "
                "names assigned by rules already live in the machine's scope"
            )
        else:
            message = f"'{keyword}' is not allowed in {where}"
        raise BanishSyntaxError(message, location)

    def _collect_statement_tokens(self) -> List[Token]:
        """
        Consume the tokens of one Python statement inside a rule block

        A simple statement ends at a newline or ';' outside brackets, or at
        the closing '}' of the block. A compound statement keeps its inline
        suite and also takes every following line indented deeper than its
        keyword, plus aligned elif/else/except/finally clauses. A decorator
        also takes the aligned decorators and the definition that follow it.
        """
        first = self.tokens.peek()
        decorating = first.is_op('@')
        compound = decorating or (
            first.kind is TokenKind.NAME and first.value in self.COMPOUND_KEYWORDS
        )
        collected: List[Token] = []
        depth = 0

        while True:
            token = self.tokens.peek()
            if token.kind is TokenKind.EOF:
                raise BanishSyntaxError(
                    "Unexpected end of input, expected '}' to close rule body",
                    token.location,
                )
            if token.is_op('=>'):
                raise BanishSyntaxError(
                    "State transitions are only allowed at the top level of a rule body",
                    token.location,
                )
            if depth == 0:
                # The definition line ends the decorator list
                if (
                    decorating
                    and token.column == first.column
                    and token.kind is TokenKind.NAME
                    and token.value in self.DEFINITION_KEYWORDS
                ):
                    decorating = False
                if token.is_op('}'):
                    break
                if token.is_op(';') and not compound:
                    self.tokens.next()
                    break
                if token.kind is TokenKind.NEWLINE:
                    self.tokens.next()
                    if compound and self._continues_suite(first.column, decorating):
                        continue
                    break

            if token.is_op(*self.OPENING):
                depth += 1
            elif token.is_op(*self.CLOSING):
                depth -= 1
                if depth < 0:
                    raise BanishSyntaxError(
                        f"Unbalanced {token.describe()} in statement", token.location
                    )
            if token.kind is not TokenKind.NEWLINE:
                collected.append(token)
            self.tokens.next()

        return collected

    def _continues_suite(self, header_column: int, decorating: bool = False) -> bool:
        offset = 0
        while self.tokens.peek(offset).kind is TokenKind.NEWLINE:
            offset += 1
        token = self.tokens.peek(offset)
        # An indented '=>' stays in the suite so it is reported as nested
        if token.kind is TokenKind.EOF or token.is_op('}'):
            return False
        if token.column > header_column:
            return True
        if decorating and token.column == header_column:
            return token.is_op('@') or (
                token.kind is TokenKind.NAME and token.value in self.DEFINITION_KEYWORDS
            )
        return (
            token.column == header_column
            and token.kind is TokenKind.NAME
            and token.value in self.CLAUSE_KEYWORDS
        )

    def _expect_name(self, what: str) -> Token:
        token = self.tokens.next()
        if token.kind is not TokenKind.NAME:
            raise BanishSyntaxError(
                f"Expected {what}, found {token.describe()}", token.location
            )
        return token

    def _expect_op(self, value: str, context: str) -> Token:
        token = self.tokens.next()
        if not token.is_op(value):
            raise BanishSyntaxError(
                f"Expected '{value}' {context}, found {token.describe()}", token.location
            )
        return token

    def _skip_newlines(self):
        while self.tokens.peek().kind is TokenKind.NEWLINE:
            self.tokens.next()

    def _skip_separators(self):
        while self.tokens.peek().kind is TokenKind.NEWLINE or self.tokens.peek().is_op(';'):
            self.tokens.next()

    @staticmethod
    def _error_location(
        first: Token, exc: SyntaxError, shift: int = 0, line_shift: int = 0
    ) -> SourceLocation:
        """
        Map a SyntaxError raised on a fragment back to the machine source

        shift is the number of synthetic characters placed before the
        fragment on its first line; line_shift the number of synthetic
        lines placed before it.
        """
        lineno = (exc.lineno or 1) - line_shift
        offset = exc.offset or 1
        if lineno <= 1:
            if shift:
                return SourceLocation(first.line, max(first.column, first.column + offset - 1 - shift))
            return SourceLocation(first.line, max(first.column, offset))
        return SourceLocation(first.line + lineno - 1, offset)
