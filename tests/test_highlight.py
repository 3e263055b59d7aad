import pytest
from pygments.token import Token

from config import ERROR, PINK, RESET
from hilite_errors import HighlighterFault
from hilite_highlight import (
    EnterCategory, ExitCategory, Highlighter, LanguageConfig, TextSpan,
    build_language, category_name, load_languages,
)
from hilite_lines import lines_to_text, segment_lines
from hilite_stack import resolve_events

SAMPLE = '''\
# résumé parser
def parse(text: str) -> None:
    """Docstring"""
    if text and True:
        return f"{text!r}" + 'x' * 42


'''


def test_category_names():
    assert category_name(Token.Name.Function) == "name.function"
    assert category_name(Token.Literal.String.Double) == "literal.string.double"
    assert category_name(Token) == ""


def test_load_languages_shares_lexers_between_aliases():
    languages = load_languages({'py': 'python', 'python': 'python', 'nope': 'no-such-lexer'})
    assert set(languages) == {'py', 'python'}
    assert languages['py'] is languages['python']


def test_text_is_preserved(languages):
    language = languages['py']
    events = Highlighter().highlight(language, SAMPLE)
    lines = segment_lines(resolve_events(events, SAMPLE, language.formats))
    assert lines_to_text(lines) == SAMPLE


def test_events_are_balanced_and_nested(languages):
    language = languages['rust']
    code = 'fn main() { let x = true; println!("{}", x); }\n'
    events = Highlighter().highlight(language, code)

    depth = 0
    max_depth = 0
    for event in events:
        if isinstance(event, EnterCategory):
            depth += 1
            max_depth = max(max_depth, depth)
        elif isinstance(event, ExitCategory):
            depth -= 1
        assert depth >= 0
    assert depth == 0
    # keyword.constant is entered inside keyword
    assert max_depth >= 2

    spans = [e for e in events if isinstance(e, TextSpan)]
    assert spans[0].start == 0
    assert spans[-1].end == len(code.encode('utf-8'))
    assert all(a.end == b.start for a, b in zip(spans, spans[1:]))


def test_keyword_gets_keyword_color(languages):
    language = languages['py']
    code = "def f(): pass"
    events = Highlighter().highlight(language, code)
    spans = resolve_events(events, code, language.formats)
    assert (PINK, "def") in [(s.color, s.text) for s in spans]


class _BrokenLexer:
    def get_tokens_unprocessed(self, text):
        yield 0, Token.Text, text[:1]
        raise RuntimeError("lexer exploded")


def test_lexer_failure_becomes_highlighter_fault():
    language = LanguageConfig('broken', _BrokenLexer(), ('error',), (ERROR,))
    highlighter = Highlighter()
    with pytest.raises(HighlighterFault):
        highlighter.highlight(language, "abc")
    assert highlighter.get_stats()['faults'] == 1


def test_custom_table():
    language = build_language('py', 'python', {'comment': RESET})
    assert language.categories == ('comment',)
    assert language.scopes(Token.Comment.Single) == (0,)
    assert language.scopes(Token.Keyword) == ()
