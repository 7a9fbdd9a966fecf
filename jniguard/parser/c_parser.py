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

"""C parser producing the simplified syntax tree.

The translation unit is scanned for function definitions only; everything
else at file scope is skimmed for declared names. Function bodies get a full
statement/expression parse. A body that fails to parse is recorded as an
error on the SourceFile and skipped, so one bad function never hides the
others.
"""

from __future__ import annotations

import logging
from typing import Optional

from jniguard.errors import ParseError
from jniguard.parser import c_ast as A
from jniguard.parser.lexer import CHAR, EOF, IDENT, NUMBER, PUNCT, STRING, Token, tokenize

logger = logging.getLogger(__name__)


DEFAULT_INTERFACE_TYPES = ("JNIEnv", "JavaVM")

_ASSIGN_OPS = frozenset({"=", "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=", "<<=", ">>="})

_BINARY_PRECEDENCE: dict[str, int] = {
    "||": 4, "&&": 5, "|": 6, "^": 7, "&": 8,
    "==": 9, "!=": 9,
    "<": 10, ">": 10, "<=": 10, ">=": 10,
    "<<": 11, ">>": 11,
    "+": 12, "-": 12,
    "*": 13, "/": 13, "%": 13,
}

_PREFIX_OPS = frozenset({"++", "--", "&", "*", "+", "-", "!", "~"})

_TYPE_KEYWORDS = frozenset({
    "void", "char", "short", "int", "long", "float", "double", "signed",
    "unsigned", "bool", "_Bool", "_Complex", "size_t", "ssize_t",
    "int8_t", "int16_t", "int32_t", "int64_t",
    "uint8_t", "uint16_t", "uint32_t", "uint64_t", "uintptr_t", "intptr_t",
    "auto",
})

_QUALIFIERS = frozenset({
    "const", "volatile", "static", "register", "extern", "inline",
    "__inline", "__inline__", "restrict", "__restrict", "_Thread_local",
    "thread_local", "constexpr", "mutable", "typename",
})

_POINTER_QUALIFIERS = frozenset({"const", "volatile", "restrict", "__restrict"})

_STATEMENT_KEYWORDS = frozenset({
    "if", "else", "while", "do", "for", "switch", "case", "default",
    "return", "break", "continue", "goto", "sizeof", "typedef",
    "delete", "new", "throw", "using",
})

_TAG_KEYWORDS = frozenset({"struct", "union", "enum", "class"})

_ACCESS_SPECIFIERS = ("public", "protected", "private")

_CAST_FOLLOWERS = frozenset({IDENT, NUMBER, STRING, CHAR})


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(
        self,
        tokens: list[Token],
        file: str,
        interface_types: tuple[str, ...] = DEFAULT_INTERFACE_TYPES,
    ) -> None:
        self.tokens = tokens
        self.file = file
        self.pos = 0
        self.interface_types = interface_types
        self.interface_names: set[str] = set()
        self.local_names: set[str] = set()
        self.match = self._match_brackets()

    # ── token helpers ──

    def _match_brackets(self) -> dict[int, int]:
        pairs = {"(": ")", "[": "]", "{": "}"}
        closers = {v: k for k, v in pairs.items()}
        stack: list[int] = []
        match: dict[int, int] = {}
        for i, tok in enumerate(self.tokens):
            if tok.kind != PUNCT:
                continue
            if tok.text in pairs:
                stack.append(i)
            elif tok.text in closers:
                if not stack or self.tokens[stack[-1]].text != closers[tok.text]:
                    raise ParseError(f"unbalanced '{tok.text}'", self.file, tok.line)
                open_idx = stack.pop()
                match[open_idx] = i
                match[i] = open_idx
        if stack:
            tok = self.tokens[stack[-1]]
            raise ParseError(f"unclosed '{tok.text}'", self.file, tok.line)
        return match

    def peek(self, offset: int = 0) -> Token:
        idx = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != EOF:
            self.pos += 1
        return tok

    def accept(self, *texts: str) -> Optional[Token]:
        tok = self.peek()
        if tok.kind == PUNCT and tok.text in texts:
            return self.advance()
        return None

    def expect(self, text: str) -> Token:
        tok = self.peek()
        if tok.kind == PUNCT and tok.text == text:
            return self.advance()
        raise self.error(f"expected '{text}' but found '{tok.text or 'end of input'}'", tok)

    def expect_ident(self) -> Token:
        tok = self.peek()
        if tok.kind == IDENT:
            return self.advance()
        raise self.error(f"expected identifier but found '{tok.text or 'end of input'}'", tok)

    def error(self, message: str, tok: Optional[Token] = None) -> ParseError:
        tok = tok or self.peek()
        return ParseError(message, self.file, tok.line)

    def text_between(self, start: int, end: int) -> str:
        """Source-like text for tokens[start:end]."""
        out: list[str] = []
        prev: Optional[Token] = None
        for tok in self.tokens[start:end]:
            if prev is not None and _needs_space(prev, tok):
                out.append(" ")
            out.append(tok.text)
            prev = tok
        return "".join(out)

    def is_interface_type(self, type_text: str) -> bool:
        words = set(type_text.replace("*", " ").replace("&", " ").split())
        return any(t in words for t in self.interface_types)

    # ── translation unit ──

    def parse_translation_unit(self) -> A.SourceFile:
        functions: list[A.FunctionDef] = []
        errors: list[ParseError] = []
        global_names: set[str] = set()
        interface_globals: set[str] = set()
        transparent_depth = 0
        stmt_start = 0

        while self.peek().kind != EOF:
            tok = self.peek()
            if tok.is_punct("{"):
                brace = self.pos
                header = self._function_header(stmt_start, brace)
                if header is not None:
                    name, params, line, col = header
                    close = self.match[brace]
                    try:
                        functions.append(
                            self._parse_function(name, params, brace, line, col, interface_globals)
                        )
                    except ParseError as e:
                        logger.debug("Skipping function %s: %s", name, e)
                        errors.append(e)
                    except RecursionError:
                        logger.debug("Skipping function %s: nesting too deep", name)
                        errors.append(ParseError("nesting too deep to analyze", self.file, line))
                    self.pos = close + 1
                    stmt_start = self.pos
                elif self._opens_transparent_scope(stmt_start, brace):
                    transparent_depth += 1
                    self.pos = brace + 1
                    stmt_start = self.pos
                else:
                    self.pos = self.match[brace] + 1
            elif tok.is_punct("}"):
                if transparent_depth == 0:
                    raise self.error("unexpected '}'", tok)
                transparent_depth -= 1
                self.advance()
                stmt_start = self.pos
            elif tok.is_punct(";"):
                names, iface = self._file_scope_names(stmt_start, self.pos)
                global_names.update(names)
                interface_globals.update(iface)
                self.advance()
                stmt_start = self.pos
            elif tok.is_punct("(", "["):
                self.pos = self.match[self.pos] + 1
            elif tok.is_ident(*_ACCESS_SPECIFIERS) and self.peek(1).is_punct(":"):
                self.pos += 2
                stmt_start = self.pos
            else:
                self.advance()

        return A.SourceFile(
            path=self.file,
            tokens=tuple(self.tokens),
            functions=tuple(functions),
            global_names=frozenset(global_names),
            interface_globals=frozenset(interface_globals),
            errors=tuple(errors),
        )

    def _opens_transparent_scope(self, start: int, brace: int) -> bool:
        """`extern "C" {`, `namespace x {` and class bodies hold definitions we want."""
        head = self.tokens[start:brace]
        if not head:
            return False
        if head[0].is_ident("extern") and len(head) == 2 and head[1].kind == STRING:
            return True
        if head[0].is_ident("namespace"):
            return True
        if head[0].is_ident("template"):
            head = _after_template_params(head)
        # `struct s x = {...}` and `struct s f(...)` stay skipped
        if not head or any(t.is_punct("=", "(") for t in head):
            return False
        return head[0].is_ident("class", "struct")

    def _function_header(
        self, start: int, brace: int
    ) -> Optional[tuple[str, tuple[A.Param, ...], int, int]]:
        """Return (name, params, line, col) if tokens[start:brace] declare a function."""
        if brace == start:
            return None
        j = brace - 1
        # constructor initializer list: `X(JNIEnv *e) : env_(e) {`
        i = start
        while i < brace:
            if self.tokens[i].is_punct("(", "["):
                i = self.match[i]
            elif self.tokens[i].is_punct(":") and i > start and self.tokens[i - 1].is_punct(")"):
                # `: env_{e} {` brace-initializes a member; not analyzed
                if not self.tokens[brace - 1].is_punct(")"):
                    return None
                j = i - 1
                break
            i += 1
        # trailing qualifiers: `) const {`, `) noexcept {`
        while j > start and self.tokens[j].kind == IDENT:
            j -= 1
        close = self.tokens[j]
        if not close.is_punct(")") or j <= start:
            return None
        open_idx = self.match[j]
        if open_idx <= start:
            return None
        head = self.tokens[start:open_idx]
        if any(t.is_punct("=") for t in head):
            return None
        if any(t.is_ident("struct", "union", "enum", "class") for t in head) and len(head) <= 2:
            return None
        before = self.tokens[open_idx - 1]
        if before.kind == IDENT:
            if before.text in _STATEMENT_KEYWORDS:
                return None
            k = open_idx - 1
            while k - 2 >= start and self.tokens[k - 1].is_punct("::") and self.tokens[k - 2].kind == IDENT:
                k -= 2
            name = self.text_between(k, open_idx)
            name_tok = self.tokens[k]
        elif before.is_punct(")"):
            # macro-generated names: JNI_METHOD(foo)(JNIEnv *env, ...)
            k = self.match[open_idx - 1]
            if k - 1 < start or self.tokens[k - 1].kind != IDENT:
                return None
            name = self.text_between(k - 1, open_idx)
            name_tok = self.tokens[k - 1]
        else:
            return None
        params = self._parse_params(open_idx + 1, j)
        return name, params, name_tok.line, name_tok.col

    def _parse_params(self, start: int, end: int) -> tuple[A.Param, ...]:
        params: list[A.Param] = []
        for seg_start, seg_end in self._split_commas(start, end):
            seg = self.tokens[seg_start:seg_end]
            if not seg:
                continue
            if len(seg) == 1 and (seg[0].is_ident("void") or seg[0].is_punct("...")):
                continue
            name = self._declarator_name(seg_start, seg_end)
            type_text = self.text_between(seg_start, seg_end)
            params.append(A.Param(name=name, type_text=type_text))
        return tuple(params)

    def _split_commas(self, start: int, end: int) -> list[tuple[int, int]]:
        parts: list[tuple[int, int]] = []
        i = start
        seg = start
        while i < end:
            tok = self.tokens[i]
            if tok.is_punct("(", "[", "{"):
                i = self.match[i] + 1
                continue
            if tok.is_punct(","):
                parts.append((seg, i))
                seg = i + 1
            i += 1
        parts.append((seg, end))
        return parts

    def _declarator_name(self, start: int, end: int, bare: bool = False) -> Optional[str]:
        """Name declared by a parameter or file-scope declarator."""
        # strip initializer
        i = start
        while i < end:
            tok = self.tokens[i]
            if tok.is_punct("(", "[", "{"):
                i = self.match[i] + 1
                continue
            if tok.is_punct("="):
                end = i
                break
            i += 1
        # strip array suffixes
        while end > start and self.tokens[end - 1].is_punct("]"):
            end = self.match[end - 1]
        if end > start and self.tokens[end - 1].kind == IDENT:
            # a lone identifier is a type unless it follows a comma
            if end - 1 > start or bare:
                return self.tokens[end - 1].text
            return None
        if end > start and self.tokens[end - 1].is_punct(")"):
            # function pointer: void (*cb)(int)
            open_idx = self.match[end - 1]
            if open_idx > start and self.tokens[open_idx - 1].is_punct(")"):
                inner_open = self.match[open_idx - 1]
                for tok in reversed(self.tokens[inner_open + 1:open_idx - 1]):
                    if tok.kind == IDENT:
                        return tok.text
        return None

    def _file_scope_names(self, start: int, end: int) -> tuple[set[str], set[str]]:
        seg = self.tokens[start:end]
        if not seg or seg[0].is_ident("typedef"):
            return set(), set()
        names: set[str] = set()
        iface: set[str] = set()
        type_text = self.text_between(start, end)
        is_iface = self.is_interface_type(type_text)
        for n, (part_start, part_end) in enumerate(self._split_commas(start, end)):
            # skip prototypes
            if any(
                t.is_punct("(") and not self.tokens[i + 1].is_punct("*")
                for i, t in enumerate(self.tokens[part_start:part_end], start=part_start)
            ):
                continue
            name = self._declarator_name(part_start, part_end, bare=n > 0)
            if name:
                names.add(name)
                if is_iface:
                    iface.add(name)
        return names, iface

    # ── functions ──

    def _parse_function(
        self,
        name: str,
        params: tuple[A.Param, ...],
        brace: int,
        line: int,
        col: int,
        interface_globals: set[str],
    ) -> A.FunctionDef:
        self.pos = brace
        self.interface_names = set(interface_globals)
        self.local_names = set()
        for p in params:
            if p.name:
                self.local_names.add(p.name)
                if self.is_interface_type(p.type_text):
                    self.interface_names.add(p.name)
        body = self.parse_block()
        return A.FunctionDef(
            name=name,
            params=params,
            body=body,
            local_names=frozenset(self.local_names),
            line=line,
            col=col,
        )

    # ── statements ──

    def parse_block(self) -> A.Block:
        open_tok = self.expect("{")
        stmts: list[A.Stmt] = []
        while not self.peek().is_punct("}"):
            if self.peek().kind == EOF:
                raise self.error("unexpected end of input in block")
            stmts.append(self.parse_statement())
        self.expect("}")
        return A.Block(tuple(stmts), open_tok.line, open_tok.col)

    def parse_statement(self) -> A.Stmt:
        tok = self.peek()
        line, col = tok.line, tok.col

        if tok.is_punct("{"):
            return self.parse_block()
        if tok.is_punct(";"):
            self.advance()
            return A.Empty(line, col)

        if tok.kind == IDENT:
            word = tok.text
            if word == "if":
                return self._parse_if()
            if word == "while":
                self.advance()
                cond = self._parse_paren_expr()
                body = self.parse_statement()
                return A.While(cond, body, line, col)
            if word == "do":
                self.advance()
                body = self.parse_statement()
                if not self.peek().is_ident("while"):
                    raise self.error("expected 'while' after do-body")
                self.advance()
                cond = self._parse_paren_expr()
                self.expect(";")
                return A.DoWhile(body, cond, line, col)
            if word == "for":
                return self._parse_for()
            if word == "switch":
                self.advance()
                cond = self._parse_paren_expr()
                body = self.parse_statement()
                return A.Switch(cond, body, line, col)
            if word == "case":
                self.advance()
                value = self.parse_conditional()
                if self.accept("..."):   # GNU case ranges
                    self.parse_conditional()
                self.expect(":")
                return A.Case(value, self._labelled_statement(), line, col)
            if word == "default" and self.peek(1).is_punct(":"):
                self.advance()
                self.advance()
                return A.Case(None, self._labelled_statement(), line, col)
            if word == "return":
                self.advance()
                value = None
                if not self.peek().is_punct(";"):
                    value = self.parse_expression()
                self.expect(";")
                return A.Return(value, line, col)
            if word == "break":
                self.advance()
                self.expect(";")
                return A.Break(line, col)
            if word == "continue":
                self.advance()
                self.expect(";")
                return A.Continue(line, col)
            if word == "goto":
                self.advance()
                label = self.expect_ident()
                self.expect(";")
                return A.Goto(label.text, line, col)
            if word == "try" and self.peek(1).is_punct("{"):
                return self._parse_try()
            if self.peek(1).is_punct(":") and word not in _STATEMENT_KEYWORDS:
                self.advance()
                self.advance()
                return A.Label(word, self._labelled_statement(), line, col)
            if word == "throw":
                # leaves the function like a return as far as lifecycles go
                self.advance()
                value = None if self.peek().is_punct(";") else self.parse_expression()
                self.expect(";")
                return A.Return(value, line, col)
            if word == "using":
                self._skip_to_semicolon()
                return A.Empty(line, col)
            if word == "typedef":
                self._skip_to_semicolon()
                return A.Empty(line, col)
            if self._looks_like_declaration():
                return self._parse_declaration()

        expr = self.parse_expression()
        self.expect(";")
        return A.ExprStmt(expr, line, col)

    def _labelled_statement(self) -> A.Stmt:
        tok = self.peek()
        if tok.is_punct("}"):
            return A.Empty(tok.line, tok.col)
        return self.parse_statement()

    def _parse_if(self) -> A.If:
        tok = self.advance()
        self.accept_ident("constexpr")
        cond = self._parse_paren_expr()
        then = self.parse_statement()
        other = None
        if self.peek().is_ident("else"):
            self.advance()
            other = self.parse_statement()
        return A.If(cond, then, other, tok.line, tok.col)

    def accept_ident(self, text: str) -> Optional[Token]:
        if self.peek().is_ident(text):
            return self.advance()
        return None

    def _parse_for(self) -> A.For:
        tok = self.advance()
        open_idx = self.pos
        self.expect("(")
        close = self.match[open_idx]
        has_semicolon = any(t.is_punct(";") for t in self.tokens[open_idx + 1:close])
        if not has_semicolon:
            # range-based for: the header is kept verbatim
            header = A.Opaque(self.text_between(open_idx + 1, close), tok.line, tok.col)
            self.pos = close + 1
            body = self.parse_statement()
            return A.For(None, header, None, body, tok.line, tok.col)

        init: Optional[A.Stmt] = None
        if not self.peek().is_punct(";"):
            init_tok = self.peek()
            if init_tok.kind == IDENT and self._looks_like_declaration():
                init = self._parse_declaration()
            else:
                init = A.ExprStmt(self.parse_expression(), init_tok.line, init_tok.col)
                self.expect(";")
        else:
            self.advance()
        cond = None if self.peek().is_punct(";") else self.parse_expression()
        self.expect(";")
        step = None if self.peek().is_punct(")") else self.parse_expression()
        self.expect(")")
        body = self.parse_statement()
        return A.For(init, cond, step, body, tok.line, tok.col)

    def _parse_try(self) -> A.Stmt:
        # C++ try/catch: handlers are not modelled, the protected body is.
        tok = self.advance()
        body = self.parse_block()
        while self.peek().is_ident("catch"):
            self.advance()
            self.pos = self.match[self.pos] + 1
            self.parse_block()
        return A.Block((body,), tok.line, tok.col)

    def _parse_paren_expr(self) -> A.Expr:
        self.expect("(")
        if self._looks_like_declaration():
            # C++ `if (T x = f())`
            decl = self._parse_declaration(terminator=")")
            return decl.inits[0] if decl.inits else A.Opaque(decl.type_text, decl.line, decl.col)
        expr = self.parse_expression()
        self.expect(")")
        return expr

    def _skip_to_semicolon(self) -> None:
        while not self.peek().is_punct(";"):
            if self.peek().kind == EOF:
                raise self.error("expected ';'")
            if self.peek().is_punct("(", "[", "{"):
                self.pos = self.match[self.pos]
            self.advance()
        self.advance()

    # ── declarations ──

    def _looks_like_declaration(self) -> bool:
        """Heuristic: a type followed by a declarator (`T x`, `T *x`, `T x[`)."""
        i = self.pos
        while self.tokens[i].kind == IDENT and self.tokens[i].text in _QUALIFIERS:
            i += 1
        tok = self.tokens[i]
        if tok.kind != IDENT or tok.text in _STATEMENT_KEYWORDS or tok.text.startswith("$"):
            return False
        if tok.text in self.local_names:
            # `a * b;` with a known variable is an expression
            return False
        if tok.text in _TAG_KEYWORDS:
            if self.tokens[i + 1].kind != IDENT:
                return False
            i += 1   # the tag name is the type
        # type name, possibly multi-word (`unsigned long`) or qualified (`std::string`)
        i += 1
        while True:
            tok = self.tokens[i]
            if tok.is_punct("::") and self.tokens[i + 1].kind == IDENT:
                i += 2
                continue
            if tok.is_punct("<"):
                # template arguments
                depth = 0
                while True:
                    t = self.tokens[i]
                    if t.kind == EOF or t.is_punct(";", "{", "}"):
                        return False
                    if t.is_punct("<"):
                        depth += 1
                    elif t.is_punct(">"):
                        depth -= 1
                    elif t.is_punct(">>"):
                        depth -= 2
                    i += 1
                    if depth <= 0:
                        break
                continue
            if tok.kind == IDENT and (
                tok.text in _TYPE_KEYWORDS or tok.text in _POINTER_QUALIFIERS
            ) and self.tokens[i - 1].kind == IDENT:
                i += 1
                continue
            break
        while self.tokens[i].is_punct("*", "&", "&&") or (
            self.tokens[i].kind == IDENT and self.tokens[i].text in _POINTER_QUALIFIERS
        ):
            i += 1
        if self.tokens[i].kind != IDENT:
            return False
        if self.tokens[i].text in _STATEMENT_KEYWORDS:
            return False
        follower = self.tokens[i + 1]
        return follower.is_punct("=", ";", ",", "[", ")", ":") or (
            follower.is_punct("(") and self.tokens[self.pos].text in _TYPE_KEYWORDS
        ) or follower.is_punct("{")

    def _parse_declaration(self, terminator: str = ";") -> A.DeclStmt:
        start_tok = self.peek()
        start = self.pos
        # the type is everything up to the first declarator name
        while True:
            tok = self.peek()
            nxt = self.peek(1)
            if tok.kind == IDENT and tok.text not in _QUALIFIERS and tok.text not in _TYPE_KEYWORDS and (
                nxt.is_punct("=", ";", ",", "[", ")", ":", "(", "{")
            ) and self.pos > start:
                break
            if tok.kind == EOF:
                raise self.error("unterminated declaration")
            if tok.is_punct("<"):
                while not self.peek().is_punct(">", ">>"):
                    self.advance()
            self.advance()
        type_end = self.pos
        base_type = self.text_between(start, type_end).rstrip("*& ")
        is_interface = self.is_interface_type(base_type)

        names: list[str] = []
        inits: list[A.Assign] = []
        while True:
            while self.peek().is_punct("*", "&", "&&") or (
                self.peek().kind == IDENT and self.peek().text in _POINTER_QUALIFIERS
            ):
                self.advance()
            name_tok = self.expect_ident()
            names.append(name_tok.text)
            self.local_names.add(name_tok.text)
            if is_interface:
                self.interface_names.add(name_tok.text)
            while self.peek().is_punct("["):
                self.pos = self.match[self.pos] + 1
            if self.peek().is_punct("("):
                # prototype or C++ constructor arguments: keep calls visible
                open_tok = self.peek()
                self.advance()
                args = self._parse_args()
                inits.append(A.Assign(
                    "=", A.Name(name_tok.text, name_tok.line, name_tok.col),
                    A.InitList(args, open_tok.line, open_tok.col),
                    name_tok.line, name_tok.col,
                ))
            elif self.peek().is_punct(":"):
                # bit-field or range-for separator
                self.advance()
                self.parse_conditional()
            if self.accept("="):
                value = self.parse_assignment()
                inits.append(A.Assign(
                    "=", A.Name(name_tok.text, name_tok.line, name_tok.col),
                    value, name_tok.line, name_tok.col,
                ))
            elif self.peek().is_punct("{"):
                value = self.parse_primary()
                inits.append(A.Assign(
                    "=", A.Name(name_tok.text, name_tok.line, name_tok.col),
                    value, name_tok.line, name_tok.col,
                ))
            if not self.accept(","):
                break
        self.expect(terminator)
        return A.DeclStmt(base_type, tuple(names), tuple(inits), start_tok.line, start_tok.col)

    # ── expressions ──

    def parse_expression(self) -> A.Expr:
        expr = self.parse_assignment()
        while self.peek().is_punct(","):
            tok = self.advance()
            right = self.parse_assignment()
            expr = A.Binary(",", expr, right, tok.line, tok.col)
        return expr

    def parse_assignment(self) -> A.Expr:
        left = self.parse_conditional()
        tok = self.peek()
        if tok.kind == PUNCT and tok.text in _ASSIGN_OPS:
            self.advance()
            value = self.parse_assignment()
            return A.Assign(tok.text, left, value, _line(left), _col(left))
        return left

    def parse_conditional(self) -> A.Expr:
        cond = self.parse_binary(4)
        if self.peek().is_punct("?"):
            self.advance()
            then = self.parse_expression()
            self.expect(":")
            other = self.parse_assignment()
            return A.Conditional(cond, then, other, _line(cond), _col(cond))
        return cond

    def parse_binary(self, min_prec: int) -> A.Expr:
        left = self.parse_unary()
        while True:
            tok = self.peek()
            prec = _BINARY_PRECEDENCE.get(tok.text) if tok.kind == PUNCT else None
            if prec is None or prec < min_prec:
                return left
            self.advance()
            right = self.parse_binary(prec + 1)
            left = A.Binary(tok.text, left, right, _line(left), _col(left))

    def parse_unary(self) -> A.Expr:
        tok = self.peek()
        if tok.kind == PUNCT and tok.text in _PREFIX_OPS:
            self.advance()
            operand = self.parse_unary()
            return A.Unary(tok.text, operand, False, tok.line, tok.col)
        if tok.is_ident("delete", "new"):
            self.advance()
            if tok.text == "delete" and self.accept("["):
                self.expect("]")
            return A.Unary(tok.text, self.parse_unary(), False, tok.line, tok.col)
        if tok.is_ident("sizeof", "alignof", "_Alignof", "__alignof__"):
            self.advance()
            if self.peek().is_punct("("):
                open_idx = self.pos
                close = self.match[open_idx]
                self.pos = close + 1
                return A.Opaque(
                    f"{tok.text}({self.text_between(open_idx + 1, close)})", tok.line, tok.col
                )
            return A.Unary(tok.text, self.parse_unary(), False, tok.line, tok.col)
        if tok.is_punct("(") and self._looks_like_cast():
            open_idx = self.pos
            close = self.match[open_idx]
            type_text = self.text_between(open_idx + 1, close)
            self.pos = close + 1
            operand = self.parse_unary()
            return A.Cast(type_text, operand, tok.line, tok.col)
        return self.parse_postfix(self.parse_primary())

    def _looks_like_cast(self) -> bool:
        open_idx = self.pos
        close = self.match[open_idx]
        inner = self.tokens[open_idx + 1:close]
        if not inner or inner[0].kind != IDENT or inner[0].text.startswith("$"):
            return False
        i = 0
        idents = 0
        while i < len(inner) and (inner[i].kind == IDENT or inner[i].is_punct("::")):
            if inner[i].kind == IDENT:
                if inner[i].text in _STATEMENT_KEYWORDS:
                    return False
                idents += 1
            i += 1
        stars = 0
        while i < len(inner) and (
            inner[i].is_punct("*", "&") or (inner[i].kind == IDENT and inner[i].text in _POINTER_QUALIFIERS)
        ):
            stars += 1
            i += 1
        if i != len(inner):
            return False
        if idents == 1 and not stars and inner[0].text in self.local_names:
            return False
        follower = self.tokens[close + 1]
        builtin = any(t.text in _TYPE_KEYWORDS for t in inner)
        if stars or builtin or idents > 1:
            return follower.kind in _CAST_FOLLOWERS or follower.is_punct(
                "(", "!", "~", "&", "*", "-", "+", "++", "--", "{"
            )
        return follower.kind in _CAST_FOLLOWERS or follower.is_punct("(", "!", "~")

    def parse_primary(self) -> A.Expr:
        tok = self.peek()
        if tok.kind == IDENT:
            self.advance()
            name = tok.text
            while self.peek().is_punct("::") and self.peek(1).kind == IDENT:
                self.advance()
                name += "::" + self.advance().text
            return A.Name(name, tok.line, tok.col)
        if tok.kind in (NUMBER, CHAR):
            self.advance()
            return A.Literal(tok.text, tok.kind, tok.line, tok.col)
        if tok.kind == STRING:
            self.advance()
            text = tok.text
            while self.peek().kind == STRING:
                text = text[:-1] + self.advance().text.split('"', 1)[1]
            return A.Literal(text, STRING, tok.line, tok.col)
        if tok.is_punct("("):
            self.advance()
            expr = self.parse_expression()
            self.expect(")")
            return expr
        if tok.is_punct("{"):
            self.advance()
            items: list[A.Expr] = []
            while not self.peek().is_punct("}"):
                if self.peek().is_punct("."):
                    # designated initializer: .field = value
                    self.advance()
                    self.expect_ident()
                    self.expect("=")
                elif self.peek().is_punct("["):
                    self.pos = self.match[self.pos] + 1
                    self.expect("=")
                items.append(self.parse_assignment())
                if not self.accept(","):
                    break
            self.expect("}")
            return A.InitList(tuple(items), tok.line, tok.col)
        if tok.is_punct("..."):
            self.advance()
            return A.EllipsisArg(tok.line, tok.col)
        raise self.error(f"unexpected '{tok.text or 'end of input'}' in expression", tok)

    def parse_postfix(self, expr: A.Expr) -> A.Expr:
        while True:
            tok = self.peek()
            if tok.is_punct("("):
                self.advance()
                args = self._parse_args()
                expr = self._make_call(expr, args)
            elif tok.is_punct("["):
                self.advance()
                index = self.parse_expression()
                self.expect("]")
                expr = A.Index(expr, index, _line(expr), _col(expr))
            elif tok.is_punct(".", "->"):
                self.advance()
                attr = self.expect_ident()
                expr = A.Member(expr, attr.text, tok.text == "->", _line(expr), _col(expr))
            elif tok.is_punct("++", "--"):
                self.advance()
                expr = A.Unary(tok.text, expr, True, _line(expr), _col(expr))
            else:
                return expr

    def _parse_args(self) -> tuple[A.Expr, ...]:
        """Arguments after an already-consumed '('."""
        args: list[A.Expr] = []
        if self.accept(")"):
            return ()
        while True:
            args.append(self.parse_assignment())
            if self.accept(")"):
                return tuple(args)
            self.expect(",")

    def _make_call(self, func: A.Expr, args: tuple[A.Expr, ...]) -> A.Call:
        callee: Optional[str] = None
        receiver: Optional[str] = None
        interface = False
        iargs = args
        if isinstance(func, A.Name):
            callee = func.name
        elif isinstance(func, A.Member):
            callee = func.attr
            obj = A.strip(func.obj)
            if func.arrow and isinstance(obj, A.Unary) and obj.op == "*" and isinstance(obj.operand, A.Name):
                # C calling form: (*env)->F(env, ...)
                receiver = obj.operand.name
                first = A.strip(args[0]) if args else None
                if isinstance(first, A.Name) and first.name == receiver:
                    interface = True
                    iargs = args[1:]
            elif isinstance(obj, A.Name):
                # C++ calling form: env->F(...)
                receiver = obj.name
                interface = func.arrow and (
                    receiver in self.interface_names or receiver.startswith("$")
                )
        return A.Call(
            func=func,
            args=args,
            callee=callee,
            receiver=receiver,
            interface=interface,
            iargs=iargs,
            line=_line(func),
            col=_col(func),
        )


def _line(expr: A.Expr) -> int:
    return getattr(expr, "line", 0)


def _col(expr: A.Expr) -> int:
    return getattr(expr, "col", 0)


def _needs_space(prev: Token, tok: Token) -> bool:
    word_kinds = (IDENT, NUMBER, STRING, CHAR)
    if prev.kind in word_kinds and tok.kind in word_kinds:
        return True
    if prev.is_punct(",") or (tok.is_punct("*", "&") and prev.kind == IDENT):
        return True
    return False


def _after_template_params(head: list[Token]) -> list[Token]:
    """Tokens after `template <...>`, or [] if the list is not closed."""
    depth = 0
    for i, tok in enumerate(head[1:], start=1):
        if tok.is_punct("<"):
            depth += 1
        elif tok.is_punct(">", ">>"):
            depth -= len(tok.text)
            if depth <= 0:
                return head[i + 1:]
        elif depth == 0:
            break
    return []


def parse_source(
    source: str,
    path: str = "<source>",
    interface_types: tuple[str, ...] = DEFAULT_INTERFACE_TYPES,
) -> A.SourceFile:
    """Parse a whole translation unit. Raises ParseError if it cannot be tokenized
    or its brackets do not balance; per-function errors land in `.errors`."""
    tokens = tokenize(source, path)
    parser = _Parser(tokens, path, tuple(interface_types))
    unit = parser.parse_translation_unit()
    logger.debug(
        "Parsed %s: %d functions, %d function errors",
        path, len(unit.functions), len(unit.errors),
    )
    return unit


def parse_expression(text: str, interface_names: frozenset[str] = frozenset()) -> A.Expr:
    """Parse a standalone expression (used for rule patterns)."""
    tokens = tokenize(text, "<pattern>")
    parser = _Parser(tokens, "<pattern>")
    parser.interface_names = set(interface_names)
    expr = parser.parse_expression()
    parser.accept(";")
    if parser.peek().kind != EOF:
        raise parser.error(f"trailing input '{parser.peek().text}' in pattern")
    return expr
