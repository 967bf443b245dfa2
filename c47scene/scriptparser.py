"""Reader of the native-import declarations in scene scripts stored in a ZIP archive."""

from __future__ import annotations

import io
import re
import string
import zipfile
from dataclasses import dataclass, field
from enum import IntEnum

_SPACES = " \t\r\n"
_LETTERS = string.ascii_letters + "_"
_DIGITS = string.digits
_ALPHANUMERIC = _LETTERS + _DIGITS
_NUMERIC = _DIGITS + "."
_PARENTHESES = "([{}])"
_SEPARATORS = ";,."
_SIGNS = "-+*/.=!&|^<>:"

_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)
_MULTI_SLASHES = re.compile(r"//+")
_DOT_DOT = re.compile(r"[^./]+/\.\./")


def _ascii_lower(text: str) -> str:
    return text.translate(_LOWER)


class ScriptParserError(Exception):
    """Raised when a script cannot be found or does not follow the expected syntax."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TokenType(IntEnum):
    UNKNOWN = 0
    IDENTIFIER = 1
    NUMBER_LITERAL = 2
    STRING_LITERAL = 3
    PARENTHESIS = 4
    SEPARATOR = 5
    OPERATOR = 6
    PREPROCESSOR = 7


class Tokenizer:
    """Splits script text into tokens, skipping whitespace and comments."""

    def __init__(self, text: str | bytes):
        if isinstance(text, (bytes, bytearray, memoryview)):
            text = bytes(text).decode("latin-1")
        self.text = text
        self.pos = 0

    def more(self) -> bool:
        """Return True while characters remain."""
        return self.pos < len(self.text)

    def _advance_while(self, chars: str) -> None:
        while self.more() and self.text[self.pos] in chars:
            self.pos += 1

    def next_token(self) -> tuple[str, TokenType]:
        """Return the next token and its type; an empty token marks the end."""
        text = self.text
        while True:
            self._advance_while(_SPACES)
            if not self.more():
                return "", TokenType.UNKNOWN
            begin = self.pos
            char = text[begin]
            if char in _LETTERS:
                self.pos += 1
                self._advance_while(_ALPHANUMERIC)
                return text[begin:self.pos], TokenType.IDENTIFIER
            if char in _DIGITS:
                self.pos += 1
                self._advance_while(_NUMERIC)
                return text[begin:self.pos], TokenType.NUMBER_LITERAL
            if char == '"':
                end = text.find('"', begin + 1)
                if end < 0:
                    self.pos = len(text)
                    raise ScriptParserError("end of file reached but string is not terminated")
                self.pos = end + 1
                return text[begin:self.pos], TokenType.STRING_LITERAL
            if char in _PARENTHESES or char in _SEPARATORS:
                self.pos += 1
                kind = TokenType.PARENTHESIS if char in _PARENTHESES else TokenType.SEPARATOR
                return char, kind
            if char == "/":
                self.pos += 1
                if self.more() and text[self.pos] == "/":
                    while self.more() and text[self.pos] != "\n":
                        self.pos += 1
                    continue
                if self.more() and text[self.pos] == "*":
                    self.pos += 1
                    previous = ""
                    while self.more() and not (previous == "*" and text[self.pos] == "/"):
                        previous = text[self.pos]
                        self.pos += 1
                    if self.more():
                        self.pos += 1
                    continue
                return "/", TokenType.OPERATOR
            if char in _SIGNS:
                self.pos += 1
                self._advance_while(_SIGNS)
                return text[begin:self.pos], TokenType.OPERATOR
            if char == "#":
                self.pos += 1
                self._advance_while(_LETTERS)
                return text[begin:self.pos], TokenType.PREPROCESSOR
            raise ScriptParserError(f"unknown character '{char}'")

    @staticmethod
    def token_type(token: str) -> TokenType:
        """Classify a token by its first character."""
        if not token:
            return TokenType.UNKNOWN
        first = token[0]
        if first in _LETTERS:
            return TokenType.IDENTIFIER
        if first in _DIGITS:
            return TokenType.NUMBER_LITERAL
        if first == '"':
            return TokenType.STRING_LITERAL
        if first in _PARENTHESES:
            return TokenType.PARENTHESIS
        if first in _SEPARATORS:
            return TokenType.SEPARATOR
        if first in _SIGNS:
            return TokenType.OPERATOR
        if first == "#":
            return TokenType.PREPROCESSOR
        return TokenType.UNKNOWN


@dataclass
class ImportedProperty:
    type: str = ""
    name: str = ""
    default_value: str = ""


@dataclass
class Script:
    super_script: str = ""
    imported_properties: list[ImportedProperty] = field(default_factory=list)


def _next_as(tok: Tokenizer, expected: TokenType) -> str:
    token, kind = tok.next_token()
    if kind != expected:
        raise ScriptParserError("unexpected token type")
    if kind == TokenType.STRING_LITERAL:
        token = token[1:-1]
    return token


def _expect(tok: Tokenizer, expected: str) -> None:
    token, _ = tok.next_token()
    if token != expected:
        raise ScriptParserError(f"unexpected token {token}, expected {expected}")


class ScriptParser:
    """Collects script classes, their native imports and type aliases from archived script files."""

    def __init__(self, archive: bytes | bytearray | zipfile.ZipFile):
        if isinstance(archive, zipfile.ZipFile):
            self._zip = archive
        else:
            self._zip = zipfile.ZipFile(io.BytesIO(bytes(archive)))
        self._names: dict[str, str] = {}
        for info in self._zip.infolist():
            self._names.setdefault(info.filename.lower(), info.filename)
        self.scripts: dict[str, Script] = {}
        self.type_alias_map: dict[str, str] = {}
        self.last_script = ""

    def _read(self, path: str) -> bytes:
        name = self._names.get(path.lower())
        if name is None:
            raise ScriptParserError(f"Could not find file {path}")
        return self._zip.read(name)

    def parse_file(self, script_file_path: str) -> None:
        """Parse a script file from the archive, following its includes."""
        path = script_file_path.replace("\\", "/")
        path = _MULTI_SLASHES.sub("/", path)
        path = _DOT_DOT.sub("", path)

        tok = Tokenizer(self._read(path))
        separator = path.rfind("/")
        folder = path[:separator + 1] if separator >= 0 else ""

        while True:
            token, _ = tok.next_token()
            if not token:
                break
            keyword = _ascii_lower(token)
            if keyword == "#include":
                self.parse_file(folder + _next_as(tok, TokenType.STRING_LITERAL))
            elif keyword == "script":
                self._parse_script(tok)
            elif keyword == "nativetypealias":
                self._parse_aliases(tok)

    def _parse_script(self, tok: Tokenizer) -> None:
        name, kind = tok.next_token()
        if kind != TokenType.IDENTIFIER:
            raise ScriptParserError("identifier expected to name script")
        script = self.scripts.setdefault(name, Script())
        self.last_script = name

        token, _ = tok.next_token()
        if token == "extends":
            script.super_script = _next_as(tok, TokenType.IDENTIFIER)
            token, _ = tok.next_token()
        if token != "{":
            raise ScriptParserError("{ expected to define script")

        token, _ = tok.next_token()
        if token != "NativeImport":
            return
        _expect(tok, "{")
        token, _ = tok.next_token()
        while token and token != "}":
            prop = ImportedProperty(type=token)
            script.imported_properties.append(prop)
            prop.name = _next_as(tok, TokenType.IDENTIFIER)
            token, _ = tok.next_token()
            if token == "=":
                prop.default_value, _ = tok.next_token()
                _expect(tok, ";")
            elif token != ";":
                raise ScriptParserError("; expected to finish variable definiton")
            token, _ = tok.next_token()

    def _parse_aliases(self, tok: Tokenizer) -> None:
        _expect(tok, "{")
        token, kind = tok.next_token()
        while token and token != "}":
            if kind != TokenType.IDENTIFIER:
                raise ScriptParserError("identifier expected in type alias list")
            type_name = _ascii_lower(token)
            native_type = _next_as(tok, TokenType.IDENTIFIER)
            if native_type == "NativeType":
                _expect(tok, "(")
                _next_as(tok, TokenType.IDENTIFIER)
                _expect(tok, ",")
                zname = _next_as(tok, TokenType.STRING_LITERAL)
                _expect(tok, ")")
                _expect(tok, ";")
                self.type_alias_map[type_name] = zname
            elif native_type == "NativeObject":
                _expect(tok, "(")
                _next_as(tok, TokenType.STRING_LITERAL)
                _expect(tok, ",")
                ref_name = _next_as(tok, TokenType.STRING_LITERAL)
                _expect(tok, ",")
                _next_as(tok, TokenType.STRING_LITERAL)
                _expect(tok, ")")
                _expect(tok, ";")
                self.type_alias_map[type_name] = ref_name
            token, kind = tok.next_token()

    def get_native_import_property_list(self, script_name: str) -> str:
        """Return the member list string of a script, inherited properties first."""
        return self._property_list(script_name, set())

    def _property_list(self, script_name: str, seen: set[str]) -> str:
        script = self.scripts.get(script_name)
        if script is None:
            raise ScriptParserError(f"Could not find script class {script_name}")
        if script_name in seen:
            raise ScriptParserError(f"script class {script_name} extends itself")
        seen.add(script_name)
        parts = []
        if script.super_script:
            parts.append(self._property_list(script.super_script, seen))
        for prop in script.imported_properties:
            type_name = self.type_alias_map.get(_ascii_lower(prop.type), prop.type)
            text = f"{type_name} {prop.name}"
            if prop.default_value:
                text += f"={prop.default_value}"
            parts.append(text + ";")
        return "".join(parts)