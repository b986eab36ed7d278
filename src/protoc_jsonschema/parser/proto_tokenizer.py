"""Tokenizer for protobuf (.proto) files."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import List


class ProtoTokenType(Enum):
    # Keywords
    SYNTAX = auto()
    EDITION = auto()
    PACKAGE = auto()
    IMPORT = auto()
    OPTION = auto()
    MESSAGE = auto()
    ENUM = auto()
    ONEOF = auto()
    MAP = auto()
    REPEATED = auto()
    OPTIONAL = auto()
    REQUIRED = auto()
    GROUP = auto()
    RESERVED = auto()
    EXTENSIONS = auto()
    EXTEND = auto()
    SERVICE = auto()

    # Delimiters
    LBRACE = auto()
    RBRACE = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    LPAREN = auto()
    RPAREN = auto()
    LANGLE = auto()
    RANGLE = auto()
    SEMICOLON = auto()
    EQUALS = auto()
    COMMA = auto()
    COLON = auto()

    # Literals
    IDENT = auto()
    NUMBER = auto()
    STRING_LIT = auto()

    # Special
    EOF = auto()


_KEYWORDS = {
    "syntax": ProtoTokenType.SYNTAX,
    "edition": ProtoTokenType.EDITION,
    "package": ProtoTokenType.PACKAGE,
    "import": ProtoTokenType.IMPORT,
    "option": ProtoTokenType.OPTION,
    "message": ProtoTokenType.MESSAGE,
    "enum": ProtoTokenType.ENUM,
    "oneof": ProtoTokenType.ONEOF,
    "map": ProtoTokenType.MAP,
    "repeated": ProtoTokenType.REPEATED,
    "optional": ProtoTokenType.OPTIONAL,
    "required": ProtoTokenType.REQUIRED,
    "group": ProtoTokenType.GROUP,
    "reserved": ProtoTokenType.RESERVED,
    "extensions": ProtoTokenType.EXTENSIONS,
    "extend": ProtoTokenType.EXTEND,
    "service": ProtoTokenType.SERVICE,
}

_PUNCTUATION = {
    "{": ProtoTokenType.LBRACE,
    "}": ProtoTokenType.RBRACE,
    "[": ProtoTokenType.LBRACKET,
    "]": ProtoTokenType.RBRACKET,
    "(": ProtoTokenType.LPAREN,
    ")": ProtoTokenType.RPAREN,
    "<": ProtoTokenType.LANGLE,
    ">": ProtoTokenType.RANGLE,
    ";": ProtoTokenType.SEMICOLON,
    "=": ProtoTokenType.EQUALS,
    ",": ProtoTokenType.COMMA,
    ":": ProtoTokenType.COLON,
}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "'": "'", "\\": "\\"}


@dataclass
class ProtoToken:
    type: ProtoTokenType
    value: str
    line: int
    col: int
    # Comment block directly above the token (protoc "leading comments").
    comments: str = ""


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def tokenize_proto(text: str) -> List[ProtoToken]:
    """Tokenize a protobuf source string into a list of tokens.

    Keywords are only keywords by position in proto, so the parser also
    accepts keyword tokens where an identifier is expected. Dotted names
    (``foo.Bar``, ``.pkg.Msg``) are a single IDENT token; so is the
    sub-field part of an option name, ``(ext).field`` giving ``.field``.
    """
    tokens: List[ProtoToken] = []
    pending_comments: List[str] = []
    i = 0
    line = 1
    col = 1
    n = len(text)
    # Line of the last emitted token, to tell trailing comments apart.
    last_token_line = 0
    # Newlines seen since the last comment; two in a row detach it.
    newlines_since_comment = 0

    def emit(tok_type: ProtoTokenType, value: str, tok_line: int, tok_col: int) -> None:
        nonlocal last_token_line, newlines_since_comment
        comments = "\n".join(pending_comments)
        pending_comments.clear()
        tokens.append(ProtoToken(tok_type, value, tok_line, tok_col, comments))
        last_token_line = tok_line
        newlines_since_comment = 0

    while i < n:
        ch = text[i]

        # Whitespace
        if ch in (" ", "\t", "\r", "\f", "\v"):
            i += 1
            col += 1
            continue

        if ch == "\n":
            i += 1
            line += 1
            col = 1
            newlines_since_comment += 1
            if newlines_since_comment >= 2:
                pending_comments.clear()
            continue

        # Single-line comment
        if ch == "/" and i + 1 < n and text[i + 1] == "/":
            start = i + 2
            while i < n and text[i] != "\n":
                i += 1
            if line != last_token_line:
                if newlines_since_comment >= 2:
                    pending_comments.clear()
                pending_comments.append(text[start:i])
                newlines_since_comment = 0
            continue

        # Multi-line comment
        if ch == "/" and i + 1 < n and text[i + 1] == "*":
            start_line = line
            i += 2
            col += 2
            start = i
            end = n
            while i < n:
                if text[i] == "\n":
                    line += 1
                    col = 1
                elif text[i] == "*" and i + 1 < n and text[i + 1] == "/":
                    end = i
                    i += 2
                    col += 2
                    break
                else:
                    col += 1
                i += 1
            if start_line != last_token_line:
                if newlines_since_comment >= 2:
                    pending_comments.clear()
                for body_line in text[start:end].split("\n"):
                    stripped = body_line.strip()
                    if stripped.startswith("*"):
                        stripped = stripped[1:]
                    pending_comments.append(stripped)
                newlines_since_comment = 0
            continue

        # Single-character tokens
        if ch in _PUNCTUATION:
            emit(_PUNCTUATION[ch], ch, line, col)
            i += 1
            col += 1
            continue

        # String literal
        if ch in ('"', "'"):
            quote = ch
            start_col = col
            i += 1
            col += 1
            chars: List[str] = []
            while i < n and text[i] != quote:
                if text[i] == "\\" and i + 1 < n:
                    chars.append(_ESCAPES.get(text[i + 1], text[i + 1]))
                    i += 2
                    col += 2
                    continue
                if text[i] == "\n":
                    line += 1
                    col = 0
                chars.append(text[i])
                i += 1
                col += 1
            if i < n:
                i += 1  # consume closing quote
                col += 1
            emit(ProtoTokenType.STRING_LIT, "".join(chars), line, start_col)
            continue

        # Number: decimal, hex, octal, float, with an optional sign
        if ch.isdigit() or (
            ch in "-+." and i + 1 < n and (text[i + 1].isdigit() or text[i + 1] == ".")
            and not (ch == "." and i > 0 and _is_ident_char(text[i - 1]))
        ):
            start = i
            start_col = col
            if ch in "-+":
                i += 1
                col += 1
            while i < n and (_is_ident_char(text[i]) or text[i] == "." or (
                text[i] in "+-" and text[i - 1] in "eE" and not text[start:i].lower().startswith(("0x", "-0x", "+0x"))
            )):
                i += 1
                col += 1
            emit(ProtoTokenType.NUMBER, text[start:i], line, start_col)
            continue

        # Identifier / keyword, including dotted and fully qualified names
        if ch.isalpha() or ch == "_" or (ch == "." and i + 1 < n and (text[i + 1].isalpha() or text[i + 1] == "_")):
            start = i
            start_col = col
            i += 1
            col += 1
            while i < n and (_is_ident_char(text[i]) or (
                text[i] == "." and i + 1 < n and (text[i + 1].isalpha() or text[i + 1] == "_")
            )):
                i += 1
                col += 1
            word = text[start:i]
            emit(_KEYWORDS.get(word, ProtoTokenType.IDENT), word, line, start_col)
            continue

        # Skip any other character
        i += 1
        col += 1

    emit(ProtoTokenType.EOF, "", line, col)
    return tokens
