# jniguard — JNI Lifecycle Contract Analyzer
# Copyright (C) 2026 jniguard Project Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""C tokenizer.

Produces a flat token list with line/column positions. Comments and
preprocessor directives are dropped (macros are never expanded). `$` is
accepted inside identifiers so that rule patterns such as `$VAR` or
`Get$TYPEArrayElements` go through the same lexer as source code.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from jniguard.errors import ParseError

logger = logging.getLogger(__name__)


IDENT = "ident"
NUMBER = "number"
STRING = "string"
CHAR = "char"
PUNCT = "punct"
EOF = "eof"


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    line: int
    col: int

    def is_punct(self, *texts: str) -> bool:
        return self.kind == PUNCT and self.text in texts

    def is_ident(self, *texts: str) -> bool:
        return self.kind == IDENT and (not texts or self.text in texts)


_PUNCTUATORS = sorted(
    [
        "...", "<<=", ">>=", "->*", "->", "++", "--", "<<", ">>", "<=", ">=",
        "==", "!=", "&&", "||", "+=", "-=", "*=", "/=", "%=", "&=", "^=",
        "|=", "::", "##",
        "{", "}", "[", "]", "(", ")", ";", ",", ".", "<", ">", "+", "-",
        "*", "/", "%", "&", "|", "^", "!", "~", "?", ":", "=", "#",
    ],
    key=len,
    reverse=True,
)

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>[ \t\r\f\v]+)
  | (?P<newline>\n)
  | (?P<line_comment>//[^\n]*)
  | (?P<block_comment>/\*.*?\*/)
  | (?P<open_comment>/\*)
  | (?P<string>(?:u8|[LuU])?"(?:[^"\\\n]|\\.)*")
  | (?P<open_string>(?:u8|[LuU])?"[^\n]*)
  | (?P<char>(?:u8|[LuU])?'(?:[^'\\\n]|\\.)+')
  | (?P<number>(?:0[xX][0-9a-fA-F']+|[0-9][0-9']*\.?[0-9]*(?:[eE][+-]?[0-9]+)?|\.[0-9]+(?:[eE][+-]?[0-9]+)?)[uUlLfF]*)
  | (?P<ident>[^\W\d][\w$]*|\$[\w$]*)
  | (?P<punct>"""
    + "|".join(re.escape(p) for p in _PUNCTUATORS)
    + r""")
    """,
    re.VERBOSE | re.DOTALL,
)

# A directive starts with '#' as the first non-blank character of a line and
# runs to the first newline not preceded by a backslash.
_DIRECTIVE_RE = re.compile(r"[ \t]*#(?:[^\n\\]|\\.|\\\n)*", re.DOTALL)


def tokenize(source: str, file: str = "<source>") -> list[Token]:
    """Split C source into tokens. Raises ParseError on unlexable input."""
    tokens: list[Token] = []
    pos = 0
    line = 1
    line_start = 0
    at_line_start = True
    length = len(source)

    while pos < length:
        if at_line_start:
            directive = _DIRECTIVE_RE.match(source, pos)
            if directive:
                text = directive.group(0)
                newlines = text.count("\n")
                if newlines:
                    line += newlines
                    line_start = pos + text.rfind("\n") + 1
                pos = directive.end()
                continue

        m = _TOKEN_RE.match(source, pos)
        if m is None:
            raise ParseError(
                f"unexpected character {source[pos]!r}", file, line
            )

        group = m.lastgroup
        text = m.group(0)
        col = pos - line_start + 1

        if group == "newline":
            line += 1
            line_start = m.end()
            at_line_start = True
            pos = m.end()
            continue
        if group == "open_comment":
            raise ParseError("unterminated block comment", file, line)
        if group == "open_string":
            raise ParseError("unterminated string literal", file, line)

        if group == "block_comment":
            newlines = text.count("\n")
            if newlines:
                line += newlines
                line_start = pos + text.rfind("\n") + 1
        elif group == "ident":
            tokens.append(Token(IDENT, text, line, col))
            at_line_start = False
        elif group == "number":
            tokens.append(Token(NUMBER, text, line, col))
            at_line_start = False
        elif group == "string":
            tokens.append(Token(STRING, text, line, col))
            at_line_start = False
        elif group == "char":
            tokens.append(Token(CHAR, text, line, col))
            at_line_start = False
        elif group == "punct":
            tokens.append(Token(PUNCT, text, line, col))
            at_line_start = False
        # whitespace and line comments leave at_line_start untouched
        pos = m.end()

    tokens.append(Token(EOF, "", line, pos - line_start + 1))
    logger.debug("Tokenized %s: %d tokens", file, len(tokens))
    return tokens
