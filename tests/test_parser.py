import ast
import textwrap

import pytest

from banish.errors import BanishSyntaxError
from banish.parser import HostStatement, MachineParser, Transition


def _parse(source: str):
    return MachineParser().parse(textwrap.dedent(source))


TRAFFIC_LIGHTS = """
    @red
        announce ? {
            ticks = 0
            log.append("red")
        }
        timer ? ticks < 3 {
            ticks += 1
        }

    @green
        timer ? ticks < 6 { ticks += 1 }

    @yellow
        timer ? ticks < 10 {
            ticks += 1
        } !? {
            loop_count += 1
            => @red;
        }

        end ? loop_count == 1 { return loop_count }
"""


def test_parse_states_and_rules_in_declaration_order():
    model = _parse(TRAFFIC_LIGHTS)

    assert model.state_names == ("red", "green", "yellow")
    assert [rule.name for rule in model.states[0].rules] == ["announce", "timer"]
    assert [rule.name for rule in model.states[2].rules] == ["timer", "end"]
    assert model.final_state.name == "yellow"


def test_parse_conditionless_rule_and_condition_text():
    model = _parse(TRAFFIC_LIGHTS)
    announce, timer = model.states[0].rules

    assert announce.condition is None
    assert announce.else_body is None
    assert [stmt.source for stmt in announce.body] == ["ticks = 0", 'log.append("red")']

    assert timer.condition.source == "ticks < 3"
    assert isinstance(timer.condition.node, ast.Compare)


def test_parse_else_body_with_transition():
    model = _parse(TRAFFIC_LIGHTS)
    timer = model.states[2].rules[0]

    assert timer.else_body is not None
    increment, transition = timer.else_body
    assert isinstance(increment, HostStatement)
    assert increment.source == "loop_count += 1"
    assert isinstance(transition, Transition)
    assert transition.target == "red"
    assert timer.statements == timer.body + timer.else_body


def test_parse_single_line_bodies_and_separators():
    model = _parse("@only r ? { a = 1; b = 2 } s ? { ; return a + b }")
    first, second = model.states[0].rules

    assert [stmt.source for stmt in first.body] == ["a = 1", "b = 2"]
    assert second.body[0].is_return


def test_parse_state_without_rules():
    model = _parse("""
        @empty
        @done
            exit ? { return }
    """)
    assert model.states[0].rules == ()
    assert model.states[1].rules[0].name == "exit"


def test_condition_may_span_lines_and_nest_brackets():
    model = _parse("""
        @a
            r ? (x > 1 and
                 y in ({1, 2})) {
                return
            }
    """)
    condition = model.states[0].rules[0].condition
    assert isinstance(condition.node, ast.BoolOp)
    assert "y in ({1, 2})" in condition.source


def test_brace_at_depth_zero_ends_the_condition():
    with pytest.raises(BanishSyntaxError, match="Invalid condition expression"):
        _parse("@a r ? x in {1, 2} { return }")


def test_compound_statement_is_one_host_statement():
    model = _parse("""
        @loops
            step ? x != 10 {
                x += 1
            } !? {
                x = 0
                if y == 10:
                    return (x, y)
                else:
                    y += 1
                => @loops;
            }
    """)
    rule = model.states[0].rules[0]
    assign, branch, transition = rule.else_body

    assert assign.source == "x = 0"
    assert isinstance(branch.node, ast.If)
    assert branch.node.orelse
    assert not branch.is_return
    assert branch.may_return
    assert transition.target == "loops"


def test_inline_compound_statement():
    model = _parse("@a r ? { if done: return total }")
    stmt = model.states[0].rules[0].body[0]
    assert isinstance(stmt.node, ast.If)
    assert stmt.may_return


def test_return_inside_nested_function_does_not_count():
    model = _parse("""
        @a
            r ? {
                def helper():
                    return 1
                value = helper()
            }
    """)
    helper = model.states[0].rules[0].body[0]
    assert not helper.may_return


def test_break_inside_host_loop_is_allowed():
    model = _parse("""
        @a
            r ? {
                for item in items:
                    if item:
                        break
                return item
            }
    """)
    assert isinstance(model.states[0].rules[0].body[0].node, ast.For)


def test_else_clause_requires_a_condition():
    with pytest.raises(BanishSyntaxError, match="cannot have an '!\\?' clause without a condition"):
        _parse("@a r ? { x = 1 } !? { return }")


def test_empty_source_is_rejected():
    with pytest.raises(BanishSyntaxError, match="Source is empty"):
        _parse("   \n  # only a comment\n")


def test_source_must_start_with_a_state():
    with pytest.raises(BanishSyntaxError, match="Expected '@' to start a state, found 'rule'") as error:
        _parse("rule ? { return }")
    assert error.value.location.line == 1
    assert error.value.location.column == 1


def test_rule_requires_question_mark():
    with pytest.raises(BanishSyntaxError, match="Expected '\\?' after rule name 'r'"):
        _parse("@a r { return }")


def test_transition_requires_semicolon():
    with pytest.raises(BanishSyntaxError, match="Expected ';' after transition to '@b'"):
        _parse("@a r ? { => @b }")


def test_transition_requires_state_marker():
    with pytest.raises(BanishSyntaxError, match="Expected '@' after '=>'"):
        _parse("@a r ? { => b; }")


def test_transition_is_only_allowed_at_top_level():
    with pytest.raises(BanishSyntaxError, match="only allowed at the top level") as error:
        _parse("""
            @a
                r ? {
                    if x:
                        => @a;
                }
        """)
    assert error.value.location.line == 5


def test_break_outside_host_loop_is_rejected():
    with pytest.raises(BanishSyntaxError, match="'break' outside a loop is not supported"):
        _parse("@a r ? x { break } s ? { return }")


def test_yield_is_rejected():
    with pytest.raises(BanishSyntaxError, match="'yield' is not allowed in rule bodies"):
        _parse("@a r ? { yield 1 }")


def test_yield_in_condition_is_rejected():
    with pytest.raises(BanishSyntaxError, match="'yield' is not allowed in rule conditions") as error:
        _parse("@a r ? (yield 1) { x = 1 } s ? { return 5 }")
    assert error.value.location.line == 1
    assert error.value.location.column == 8


def test_await_in_condition_is_rejected():
    with pytest.raises(BanishSyntaxError, match="'await' is not allowed in rule conditions"):
        _parse("@a r ? await fetch() { return 1 }")


def test_scope_declarations_are_rejected():
    with pytest.raises(BanishSyntaxError, match="'global' is not allowed in rule bodies") as error:
        _parse("""
            @a
                r ? {
                    x = 1
                    global x
                    return x
                }
        """)
    assert error.value.location.line == 5

    with pytest.raises(BanishSyntaxError, match="'nonlocal' is not allowed in rule bodies"):
        _parse("@a r ? { nonlocal x; return }")


def test_scope_declarations_inside_nested_functions_are_allowed():
    model = _parse("""
        @a
            r ? {
                def reset():
                    global total
                    total = 0
                return reset()
            }
    """)
    assert isinstance(model.states[0].rules[0].body[0].node, ast.FunctionDef)


def test_decorated_definition_is_one_host_statement():
    model = _parse("""
        @a
            r ? {
                @twice
                @functools.lru_cache
                def bump(n):
                    return n + 1
                return bump(1)
            }
    """)
    definition, result = model.states[0].rules[0].body

    assert isinstance(definition.node, ast.FunctionDef)
    assert [ast.unparse(d) for d in definition.node.decorator_list] == [
        "twice",
        "functools.lru_cache",
    ]
    assert result.is_return


def test_decorated_definition_ends_before_the_next_definition():
    model = _parse("""
        @a
            r ? {
                @register
                class Handler:
                    pass
                def helper():
                    return Handler
                return helper()
            }
    """)
    handler, helper, result = model.states[0].rules[0].body

    assert isinstance(handler.node, ast.ClassDef)
    assert isinstance(helper.node, ast.FunctionDef)
    assert result.is_return


def test_invalid_statement_reports_its_line():
    with pytest.raises(BanishSyntaxError, match="Invalid Python statement") as error:
        _parse("""
            @a
                r ? {
                    x = = 1
                }
        """)
    assert error.value.location.line == 4
    assert "Code: x = = 1" in str(error.value)


def test_unclosed_block_is_reported():
    with pytest.raises(BanishSyntaxError, match="Unexpected end of input"):
        _parse("@a r ? { x = 1\n")


def test_missing_rule_body_is_reported():
    with pytest.raises(BanishSyntaxError, match="expected rule body"):
        _parse("@a r ? x > 1")


def test_source_name_is_kept_on_the_model():
    model = MachineParser().parse("@a r ? { return }", source_name="door.banish")
    assert model.source_name == "door.banish"
