import pytest

from banish.errors import BanishSyntaxError
from banish.lexer import TokenKind, TokenStream, tokenize


def _values(source: str):
    return [(token.kind, token.value) for token in tokenize(source)]


def test_tokenize_rule_header_and_transition():
    assert _values("@red timer ? ticks < 3 { => @green; }") == [
        (TokenKind.OP, "@"),
        (TokenKind.NAME, "red"),
        (TokenKind.NAME, "timer"),
        (TokenKind.OP, "?"),
        (TokenKind.NAME, "ticks"),
        (TokenKind.OP, "<"),
        (TokenKind.NUMBER, "3"),
        (TokenKind.OP, "{"),
        (TokenKind.OP, "=>"),
        (TokenKind.OP, "@"),
        (TokenKind.NAME, "green"),
        (TokenKind.OP, ";"),
        (TokenKind.OP, "}"),
        (TokenKind.EOF, ""),
    ]


def test_else_marker_is_two_tokens_and_not_equal_stays_whole():
    values = [token.value for token in tokenize("} !? { x != 1 }")]
    assert values == ["}", "!", "?", "{", "x", "!=", "1", "}", ""]


def test_comments_and_continuations_are_dropped_but_newlines_kept():
    tokens = tokenize("a = 1  # note } {\nb = \\\n  2\n")
    kinds = [token.kind for token in tokens]
    assert kinds == [
        TokenKind.NAME, TokenKind.OP, TokenKind.NUMBER, TokenKind.NEWLINE,
        TokenKind.NAME, TokenKind.OP, TokenKind.NUMBER, TokenKind.NEWLINE,
        TokenKind.EOF,
    ]


def test_strings_keep_braces_and_track_lines():
    tokens = tokenize('print("}{")\nx = """a\nb"""\ny')
    strings = [token for token in tokens if token.kind is TokenKind.STRING]
    assert [token.value for token in strings] == ['"}{"', '"""a\nb"""']

    last_name = [token for token in tokens if token.kind is TokenKind.NAME][-1]
    assert last_name.value == "y"
    assert (last_name.line, last_name.column) == (4, 1)


def test_token_offsets_slice_source():
    source = "check ? items[0] == 'x' {"
    tokens = tokenize(source)
    first, last = tokens[2], tokens[7]
    assert source[first.start:last.end] == "items[0] == 'x'"


def test_locations_are_one_based():
    tokens = tokenize("@a\n  r ? {")
    rule = tokens[3]
    assert rule.value == "r"
    assert str(rule.location) == "2:3"


def test_unterminated_string_is_reported():
    with pytest.raises(BanishSyntaxError, match="Unterminated string literal") as error:
        tokenize("@a r ? { x = 'open\n }")
    assert error.value.location.line == 1
    assert error.value.location.column == 14


def test_unexpected_character_is_reported():
    with pytest.raises(BanishSyntaxError, match=r"Unexpected character '\$'"):
        tokenize("@a r ? { $x = 1 }")


def test_token_stream_peek_and_next_stop_at_eof():
    stream = TokenStream(tokenize("a b"))
    assert stream.peek(1).value == "b"
    assert stream.peek(10).kind is TokenKind.EOF
    assert stream.next().value == "a"
    assert stream.next().value == "b"
    assert stream.at_end()
    assert stream.next().kind is TokenKind.EOF


def test_token_stream_requires_eof():
    with pytest.raises(ValueError, match="EOF"):
        TokenStream([])
