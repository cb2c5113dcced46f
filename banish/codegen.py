"""
banish Code Generator (Python + Jinja2)

Generates a Python module from a validated machine. The module defines
the machine function through a factory so that it can be rebound to the
caller's variable scope at run time.
"""

import ast
import keyword
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from banish.config import (
    GENERATOR_CONFIG,
    get_entry_name,
    get_generated_header,
    get_output_filename,
    is_reserved_name,
)
from banish.errors import BanishValidationError, source_context
from banish.parser import HostStatement, MachineModel, MachineParser, Stmt, Transition
from banish.validator import MachineValidator, ResolvedMachine

logger = logging.getLogger(__name__)


class _BoundNameCollector(ast.NodeVisitor):
    """
    Collect the names a statement binds in its enclosing function scope

    Nested function, class and lambda bodies have scopes of their own and
    are not entered. Comprehension variables stay local to the
    comprehension, except for assignment expression targets.
    """

    def __init__(self):
        self.names: Set[str] = set()

    @classmethod
    def collect(cls, node: ast.AST) -> Set[str]:
        collector = cls()
        collector.visit(node)
        return collector.names

    def visit_Name(self, node):
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self.names.add(node.id)

    def _visit_definition(self, node):
        self.names.add(node.name)
        for decorator in node.decorator_list:
            self.visit(decorator)

    visit_FunctionDef = visit_AsyncFunctionDef = visit_ClassDef = _visit_definition

    def visit_Lambda(self, node):
        pass

    def visit_Import(self, node):
        for alias in node.names:
            if alias.name != '*':
                self.names.add(alias.asname or alias.name.split('.')[0])

    visit_ImportFrom = visit_Import

    def visit_ExceptHandler(self, node):
        if node.name:
            self.names.add(node.name)
        self.generic_visit(node)

    def _visit_capture(self, node):
        if node.name:
            self.names.add(node.name)
        self.generic_visit(node)

    visit_MatchAs = visit_MatchStar = _visit_capture

    def visit_MatchMapping(self, node):
        if node.rest:
            self.names.add(node.rest)
        self.generic_visit(node)

    def _visit_comprehension(self, node):
        for child in ast.walk(node):
            if isinstance(child, ast.NamedExpr) and isinstance(child.target, ast.Name):
                self.names.add(child.target.id)

    visit_ListComp = visit_SetComp = visit_DictComp = visit_GeneratorExp = _visit_comprehension


class CodeGenerator:
    """
    Python code generator for banish state machines

    Uses Jinja2 templates to render Python modules from validated machines.
    Generated modules depend only on banish.runtime.
    """

    def __init__(self, template_dir=None):
        if template_dir is None:
            template_dir = Path(__file__).parent / 'templates'

        # Setup Jinja2 environment
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(['html', 'xml']),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )

        # Add custom filters
        self.env.filters['pyrepr'] = repr

    def generate(
        self,
        resolved: ResolvedMachine,
        name: Optional[str] = None,
        trace: bool = False,
    ) -> str:
        """
        Render the Python module for a validated machine

        Args:
            resolved: Output of MachineValidator.validate
            name: Name of the generated machine function
            trace: Log state entries, transitions and fixed points at run time

        Returns:
            Python source of the generated module
        """
        model = resolved.model
        name = name or GENERATOR_CONFIG['output']['default_entry']
        if not name.isidentifier() or keyword.iskeyword(name) or is_reserved_name(name):
            raise ValueError(f"Invalid machine function name: {name!r}")

        with source_context(model.source):
            captured = self._collect_captured_names(model)

        template = self.env.get_template(GENERATOR_CONFIG['output']['template'])
        output = template.render(
            header=get_generated_header(model.source_name),
            name=name,
            captured=captured,
            state_names=list(model.state_names),
            trace=bool(trace),
            states=[self._state_view(resolved, index) for index in range(len(model.states))],
        )

        logger.debug(f"Generated machine '{name}' from {model.source_name}")
        return output

    def generate_file(
        self,
        source_path: str,
        output_dir: str,
        name: Optional[str] = None,
        trace: bool = False,
        check_reachability: bool = False,
    ) -> Path:
        """
        Generate a Python module from a machine source file

        Args:
            source_path: Path to the machine source
            output_dir: Directory for the generated module

        Returns:
            Path of the written module
        """
        source_path = Path(source_path)
        model = MachineParser().parse_file(source_path)
        resolved = MachineValidator(check_reachability=check_reachability).validate(model)

        print(f"Generating code for: {source_path.name}")
        print(f"  States: {len(model.states)}")
        print(f"  Rules: {sum(len(state.rules) for state in model.states)}")

        output = self.generate(
            resolved, name=name or get_entry_name(source_path.stem), trace=trace
        )

        # Write output file
        output_path = Path(output_dir) / get_output_filename(source_path.stem)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(output)

        print(f"  ✓ Generated: {output_path}")
        return output_path

    def _collect_captured_names(self, model: MachineModel) -> List[str]:
        """
        Names assigned by conditions or statements, declared global in the
        machine function so that assignments land in the caller's scope
        """
        names: Set[str] = set()
        for state in model.states:
            for rule in state.rules:
                fragments = [stmt for stmt in rule.statements if isinstance(stmt, HostStatement)]
                if rule.condition is not None:
                    fragments.insert(0, rule.condition)
                for fragment in fragments:
                    bound = _BoundNameCollector.collect(fragment.node)
                    self._check_reserved(fragment.node, bound, fragment.location)
                    names |= bound
        return sorted(names)

    @staticmethod
    def _check_reserved(node: ast.AST, bound: Set[str], location):
        used = {child.id for child in ast.walk(node) if isinstance(child, ast.Name)}
        for name in sorted(used | bound):
            if is_reserved_name(name):
                raise BanishValidationError(
                    f"Name '{name}' is reserved for generated code", location
                )

    def _state_view(self, resolved: ResolvedMachine, index: int) -> Dict:
        state = resolved.model.states[index]
        rules = []
        for rule in state.rules:
            rules.append({
                'name': rule.name,
                'condition': (
                    ast.unparse(rule.condition.node) if rule.condition is not None else None
                ),
                'body': self._render_block(resolved, rule.body),
                'else_body': (
                    self._render_block(resolved, rule.else_body)
                    if rule.else_body is not None else None
                ),
            })
        return {'index': index, 'name': state.name, 'rules': rules}

    def _render_block(self, resolved: ResolvedMachine, statements: Iterable[Stmt]) -> str:
        lines: List[str] = []
        for stmt in statements:
            if isinstance(stmt, Transition):
                lines.append(
                    f"__banish_fsm.transition({resolved.index_of(stmt.target)})"
                    f"  # => @{stmt.target}"
                )
                lines.append("break")
                # Nothing after a transition can run
                break
            lines.append(ast.unparse(stmt.node))
        return "\n".join(lines) if lines else "pass"
