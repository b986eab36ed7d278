"""Recursive descent parser for protobuf (.proto) files.

Consumes a token stream from proto_tokenizer and produces proto AST nodes.
Services, extend blocks, reserved ranges and extension ranges are read past
without building nodes.
"""

from __future__ import annotations

from typing import Any, Dict, List

from .proto_ast import ProtoEnum, ProtoField, ProtoFile, ProtoMessage, ProtoOption
from .proto_tokenizer import ProtoToken, ProtoTokenType, tokenize_proto

_LABELS = (ProtoTokenType.REPEATED, ProtoTokenType.OPTIONAL, ProtoTokenType.REQUIRED)

_WORD_CONSTANTS: Dict[str, Any] = {
    "true": True,
    "false": False,
    "inf": float("inf"),
    "nan": float("nan"),
}


class ProtoParseError(Exception):
    """Raised when the parser encounters unexpected input."""

    def __init__(self, message: str, token: ProtoToken | None = None):
        if token:
            super().__init__(f"Line {token.line}:{token.col}: {message}")
        else:
            super().__init__(message)


def _is_word(tok: ProtoToken) -> bool:
    # Keywords are tokenized separately but are legal names in most positions.
    if tok.type in (ProtoTokenType.STRING_LIT, ProtoTokenType.NUMBER, ProtoTokenType.EOF):
        return False
    return tok.value[:1].isalpha() or tok.value[:1] in ("_", ".")


def parse_int(text: str) -> int:
    """Parse a proto integer literal (decimal, 0x hex or 0 octal)."""
    sign = -1 if text.startswith("-") else 1
    body = text.lstrip("+-")
    if body.lower().startswith("0x"):
        value = int(body[2:], 16)
    elif len(body) > 1 and body.startswith("0") and body.isdigit():
        value = int(body, 8)
    else:
        value = int(body)
    return sign * value


class ProtoParser:
    """Recursive descent parser for .proto files."""

    def __init__(self, tokens: List[ProtoToken]):
        self._tokens = tokens
        self._pos = 0

    # -- public API --

    def parse(self) -> ProtoFile:
        """Parse the full token stream into a ProtoFile AST."""
        proto = ProtoFile()

        while not self._at_end():
            tok = self._peek()
            tt = tok.type

            if tt == ProtoTokenType.SYNTAX:
                self._advance()
                self._expect(ProtoTokenType.EQUALS)
                proto.syntax = self._expect(ProtoTokenType.STRING_LIT).value
                self._expect(ProtoTokenType.SEMICOLON)
            elif tt == ProtoTokenType.EDITION:
                proto.syntax = "editions"
                self._skip_statement()
            elif tt == ProtoTokenType.PACKAGE:
                self._advance()
                proto.package = self._expect_word().value
                self._expect(ProtoTokenType.SEMICOLON)
            elif tt == ProtoTokenType.IMPORT:
                self._advance()
                if self._peek().type == ProtoTokenType.IDENT and self._peek().value in ("public", "weak"):
                    self._advance()
                proto.imports.append(self._expect(ProtoTokenType.STRING_LIT).value)
                self._expect(ProtoTokenType.SEMICOLON)
            elif tt == ProtoTokenType.OPTION:
                proto.options.append(self._parse_option_statement())
            elif tt == ProtoTokenType.MESSAGE:
                proto.messages.append(self._parse_message())
            elif tt == ProtoTokenType.ENUM:
                proto.enums.append(self._parse_enum())
            elif tt in (ProtoTokenType.SERVICE, ProtoTokenType.EXTEND):
                self._skip_block()
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            else:
                raise ProtoParseError(f"Unexpected {tt.name} ({tok.value!r}) at top level", tok)

        return proto

    # -- message parsing --

    def _parse_message(self) -> ProtoMessage:
        """Parse: MESSAGE IDENT LBRACE body RBRACE"""
        start = self._expect(ProtoTokenType.MESSAGE)
        name_tok = self._expect_word()
        msg = ProtoMessage(name=name_tok.value, comments=start.comments, line=start.line)
        self._expect(ProtoTokenType.LBRACE)
        self._parse_message_body(msg)
        self._expect(ProtoTokenType.RBRACE)
        return msg

    def _parse_message_body(self, msg: ProtoMessage) -> None:
        """Parse the contents between { and } of a message into ``msg``."""
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tok = self._peek()
            tt = tok.type

            if tt == ProtoTokenType.MESSAGE:
                msg.nested_messages.append(self._parse_message())
            elif tt == ProtoTokenType.ENUM:
                msg.enums.append(self._parse_enum())
            elif tt == ProtoTokenType.ONEOF:
                self._parse_oneof(msg)
            elif tt == ProtoTokenType.OPTION:
                msg.options.append(self._parse_option_statement())
            elif tt in (ProtoTokenType.RESERVED, ProtoTokenType.EXTENSIONS):
                self._skip_statement()
            elif tt == ProtoTokenType.EXTEND:
                self._skip_block()
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            elif tt == ProtoTokenType.MAP and self._peek(1).type == ProtoTokenType.LANGLE:
                msg.fields.append(self._parse_map_field())
            elif tt in _LABELS or _is_word(tok):
                msg.fields.append(self._parse_field(msg))
            else:
                raise ProtoParseError(f"Unexpected {tt.name} ({tok.value!r}) in message {msg.name}", tok)

    def _parse_field(self, msg: ProtoMessage, oneof_name: str = "") -> ProtoField:
        """Parse: [LABEL] TYPE IDENT EQUALS NUMBER [options] SEMICOLON

        A ``group`` type starts a proto2 group instead; its body becomes a
        nested message of ``msg``.
        """
        start = self._peek()
        label = ""
        if start.type in _LABELS:
            label = self._advance().value

        if self._peek().type == ProtoTokenType.GROUP and self._peek(2).type == ProtoTokenType.EQUALS:
            return self._parse_group(msg, label, oneof_name, start)

        type_tok = self._expect_word()
        name_tok = self._expect_word()
        self._expect(ProtoTokenType.EQUALS)
        number = self._parse_field_number()
        options = self._parse_field_options()
        self._expect(ProtoTokenType.SEMICOLON)

        return ProtoField(
            type_name=type_tok.value,
            field_name=name_tok.value,
            field_number=number,
            label=label,
            options=options,
            oneof_name=oneof_name,
            comments=start.comments,
            line=start.line,
        )

    def _parse_map_field(self) -> ProtoField:
        """Parse: MAP LANGLE TYPE COMMA TYPE RANGLE IDENT EQUALS NUMBER [options] SEMICOLON"""
        start = self._expect(ProtoTokenType.MAP)
        self._expect(ProtoTokenType.LANGLE)
        key_tok = self._expect_word()
        self._expect(ProtoTokenType.COMMA)
        value_tok = self._expect_word()
        self._expect(ProtoTokenType.RANGLE)
        name_tok = self._expect_word()
        self._expect(ProtoTokenType.EQUALS)
        number = self._parse_field_number()
        options = self._parse_field_options()
        self._expect(ProtoTokenType.SEMICOLON)

        return ProtoField(
            type_name="map",
            field_name=name_tok.value,
            field_number=number,
            label="repeated",
            key_type=key_tok.value,
            value_type=value_tok.value,
            options=options,
            comments=start.comments,
            line=start.line,
        )

    def _parse_group(self, msg: ProtoMessage, label: str, oneof_name: str, start: ProtoToken) -> ProtoField:
        """Parse: GROUP IDENT EQUALS NUMBER [options] LBRACE body RBRACE"""
        self._expect(ProtoTokenType.GROUP)
        name_tok = self._expect_word()
        self._expect(ProtoTokenType.EQUALS)
        number = self._parse_field_number()
        options = self._parse_field_options()

        group = ProtoMessage(name=name_tok.value, comments=start.comments, line=start.line)
        self._expect(ProtoTokenType.LBRACE)
        self._parse_message_body(group)
        self._expect(ProtoTokenType.RBRACE)
        msg.nested_messages.append(group)

        return ProtoField(
            type_name=name_tok.value,
            field_name=name_tok.value.lower(),
            field_number=number,
            label=label,
            options=options,
            oneof_name=oneof_name,
            group=group,
            comments=start.comments,
            line=start.line,
        )

    def _parse_oneof(self, msg: ProtoMessage) -> None:
        """Parse: ONEOF IDENT LBRACE (field | option)* RBRACE"""
        self._expect(ProtoTokenType.ONEOF)
        name = self._expect_word().value
        msg.oneofs.append(name)
        self._expect(ProtoTokenType.LBRACE)
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tok = self._peek()
            if tok.type == ProtoTokenType.OPTION:
                self._parse_option_statement()
            elif tok.type == ProtoTokenType.SEMICOLON:
                self._advance()
            elif _is_word(tok):
                msg.fields.append(self._parse_field(msg, oneof_name=name))
            else:
                raise ProtoParseError(f"Unexpected {tok.type.name} ({tok.value!r}) in oneof {name}", tok)
        self._expect(ProtoTokenType.RBRACE)

    # -- enum parsing --

    def _parse_enum(self) -> ProtoEnum:
        """Parse: ENUM IDENT LBRACE (IDENT EQUALS NUMBER [options] SEMICOLON)* RBRACE"""
        start = self._expect(ProtoTokenType.ENUM)
        enum = ProtoEnum(name=self._expect_word().value, comments=start.comments)
        self._expect(ProtoTokenType.LBRACE)
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tok = self._peek()
            if tok.type in (ProtoTokenType.OPTION, ProtoTokenType.RESERVED):
                self._skip_statement()
            elif tok.type == ProtoTokenType.SEMICOLON:
                self._advance()
            else:
                name_tok = self._expect_word()
                self._expect(ProtoTokenType.EQUALS)
                enum.values[name_tok.value] = self._parse_field_number()
                self._parse_field_options()
                self._expect(ProtoTokenType.SEMICOLON)
        self._expect(ProtoTokenType.RBRACE)
        return enum

    # -- options --

    def _parse_option_statement(self) -> ProtoOption:
        """Parse: OPTION name EQUALS constant SEMICOLON"""
        self._expect(ProtoTokenType.OPTION)
        option = self._parse_option_assignment()
        self._expect(ProtoTokenType.SEMICOLON)
        return option

    def _parse_field_options(self) -> List[ProtoOption]:
        """Parse an optional ``[name = value, ...]`` list."""
        options: List[ProtoOption] = []
        if self._peek().type != ProtoTokenType.LBRACKET:
            return options
        self._advance()
        options.append(self._parse_option_assignment())
        while self._peek().type == ProtoTokenType.COMMA:
            self._advance()
            options.append(self._parse_option_assignment())
        self._expect(ProtoTokenType.RBRACKET)
        return options

    def _parse_option_assignment(self) -> ProtoOption:
        """Parse: (IDENT | LPAREN IDENT RPAREN) [.sub.path] EQUALS constant"""
        start = self._peek()
        is_extension = False
        if start.type == ProtoTokenType.LPAREN:
            self._advance()
            name = self._expect_word().value.lstrip(".")
            self._expect(ProtoTokenType.RPAREN)
            is_extension = True
        else:
            name = self._expect_word().value

        path: List[str] = []
        if is_extension:
            while self._peek().type == ProtoTokenType.IDENT and self._peek().value.startswith("."):
                path.extend(self._advance().value[1:].split("."))
        elif "." in name:
            name, *path = name.split(".")

        self._expect(ProtoTokenType.EQUALS)
        value = self._parse_constant()
        for segment in reversed(path):
            value = {segment: value}
        return ProtoOption(name=name, value=value, is_extension=is_extension, line=start.line)

    def _parse_constant(self) -> Any:
        tok = self._peek()
        if tok.type == ProtoTokenType.LBRACE:
            return self._parse_aggregate()
        if tok.type == ProtoTokenType.STRING_LIT:
            parts = [self._advance().value]
            # Adjacent literals concatenate.
            while self._peek().type == ProtoTokenType.STRING_LIT:
                parts.append(self._advance().value)
            return "".join(parts)
        if tok.type == ProtoTokenType.NUMBER:
            self._advance()
            try:
                return parse_int(tok.value)
            except ValueError:
                pass
            try:
                return float(tok.value)
            except ValueError:
                raise ProtoParseError(f"Invalid number {tok.value!r}", tok) from None
        if _is_word(tok):
            self._advance()
            # Anything else is an enum value name.
            return _WORD_CONSTANTS.get(tok.value, tok.value)
        raise ProtoParseError(f"Expected a constant, got {tok.type.name} ({tok.value!r})", tok)

    def _parse_aggregate(self) -> Dict[str, Any]:
        """Parse a text-format message literal: ``{ key: value, nested { ... } }``.

        A key given more than once collects its values into a list.
        """
        self._expect(ProtoTokenType.LBRACE)
        values: Dict[str, Any] = {}
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tok = self._peek()
            if tok.type in (ProtoTokenType.COMMA, ProtoTokenType.SEMICOLON):
                self._advance()
                continue
            if tok.type == ProtoTokenType.LBRACKET:
                self._advance()
                key = self._expect_word().value
                self._expect(ProtoTokenType.RBRACKET)
            else:
                key = self._expect_word().value

            if self._peek().type == ProtoTokenType.COLON:
                self._advance()
                value = self._parse_list() if self._peek().type == ProtoTokenType.LBRACKET else self._parse_constant()
            elif self._peek().type == ProtoTokenType.LBRACE:
                value = self._parse_aggregate()
            else:
                bad = self._peek()
                raise ProtoParseError(f"Expected ':' or '{{' after {key!r}, got {bad.value!r}", bad)

            if key in values:
                previous = values[key]
                values[key] = (previous if isinstance(previous, list) else [previous]) + (
                    value if isinstance(value, list) else [value]
                )
            else:
                values[key] = value
        self._expect(ProtoTokenType.RBRACE)
        return values

    def _parse_list(self) -> List[Any]:
        self._expect(ProtoTokenType.LBRACKET)
        items: List[Any] = []
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACKET:
            items.append(self._parse_constant())
            if self._peek().type == ProtoTokenType.COMMA:
                self._advance()
        self._expect(ProtoTokenType.RBRACKET)
        return items

    def _parse_field_number(self) -> int:
        tok = self._expect(ProtoTokenType.NUMBER)
        try:
            return parse_int(tok.value)
        except ValueError:
            raise ProtoParseError(f"Invalid integer {tok.value!r}", tok) from None

    # -- skip helpers --

    def _skip_statement(self) -> None:
        """Skip tokens until (and including) the next semicolon."""
        while not self._at_end():
            tok = self._advance()
            if tok.type == ProtoTokenType.SEMICOLON:
                return

    def _skip_block(self) -> None:
        """Skip a keyword + IDENT + braced block (e.g. service, extend)."""
        self._advance()  # keyword
        # Skip until opening brace
        while not self._at_end() and self._peek().type != ProtoTokenType.LBRACE:
            self._advance()
        if not self._at_end():
            self._advance()  # consume LBRACE
        depth = 1
        while not self._at_end() and depth > 0:
            tok = self._advance()
            if tok.type == ProtoTokenType.LBRACE:
                depth += 1
            elif tok.type == ProtoTokenType.RBRACE:
                depth -= 1

    # -- token helpers --

    def _peek(self, offset: int = 0) -> ProtoToken:
        index = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[index]

    def _advance(self) -> ProtoToken:
        tok = self._tokens[self._pos]
        if tok.type != ProtoTokenType.EOF:
            self._pos += 1
        return tok

    def _expect(self, expected: ProtoTokenType) -> ProtoToken:
        tok = self._peek()
        if tok.type != expected:
            raise ProtoParseError(
                f"Expected {expected.name}, got {tok.type.name} ({tok.value!r})",
                tok,
            )
        return self._advance()

    def _expect_word(self) -> ProtoToken:
        tok = self._peek()
        if not _is_word(tok):
            raise ProtoParseError(f"Expected IDENT, got {tok.type.name} ({tok.value!r})", tok)
        return self._advance()

    def _at_end(self) -> bool:
        return self._tokens[self._pos].type == ProtoTokenType.EOF


def parse_proto_text(text: str) -> ProtoFile:
    """Tokenize and parse proto source text into an AST."""
    return ProtoParser(tokenize_proto(text)).parse()
