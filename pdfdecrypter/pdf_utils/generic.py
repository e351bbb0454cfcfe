"""
Implementation of the PDF object model needed to locate and decrypt values:
string wrappers, scalar tokens and dictionaries/arrays.

Parsing is done by a small tokenizer feeding a recursive-descent parser,
serialisation is its structural inverse.
"""

import binascii
import copy
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Iterator, List, NamedTuple, Optional, Tuple, Union

from .misc import PDF_DELIMITERS, PDF_WHITESPACE, MalformedInputError

__all__ = [
    'StringObject', 'LiteralString', 'HexadecimalString',
    'NameObject', 'NumberObject', 'FloatObject', 'BooleanObject',
    'NullObject', 'Reference', 'Dictionary', 'PdfValue',
    'read_object', 'serialise_value', 'MAX_NESTING_DEPTH',
    'HEX_DECODED_KEYS',
]

logger = logging.getLogger(__name__)

MAX_NESTING_DEPTH = 64
"""
Maximal nesting depth of dictionaries and arrays accepted by the parser.
"""

HEX_DECODED_KEYS = frozenset(['O', 'U', 'OE', 'UE'])
"""
Keys whose hexadecimal string values are turned into raw byte strings
while parsing.
"""


class StringObject:
    """
    Base representation of textual PDF values.

    :param content:
        Initial content. If provided, it must not be empty.
    """

    allow_empty = False

    def __init__(self, content: Optional[bytes] = None):
        self._content = b''
        if content is not None:
            self.set(content)

    @property
    def content(self) -> bytes:
        return self._content

    def set(self, content: bytes):
        if not isinstance(content, (bytes, bytearray)):
            raise TypeError(
                f"String content must be bytes, not {type(content)}"
            )
        if not content and not self.allow_empty:
            raise MalformedInputError(
                "Unable to set content. Given content is empty"
            )
        self._content = bytes(content)

    def as_pdf_bytes(self) -> bytes:
        return self.content

    def __bytes__(self):
        return self.content

    def __len__(self):
        return len(self.content)

    def __eq__(self, other):
        return (
            isinstance(other, StringObject)
            and type(self) is type(other)
            and self.content == other.content
        )

    def __hash__(self):
        return hash((type(self), self.content))

    def __repr__(self):
        return f"{type(self).__name__}({self.content!r})"


_ESCAPES = {
    ord('n'): b'\n',
    ord('r'): b'\r',
    ord('t'): b'\t',
    ord('b'): b'\b',
    ord('f'): b'\f',
    ord('('): b'(',
    ord(')'): b')',
    ord('\\'): b'\\',
}

_ESCAPE_ON_WRITE = {
    ord('\\'): b'\\\\',
    ord('('): b'\\(',
    ord(')'): b'\\)',
    ord('\n'): b'\\n',
    ord('\r'): b'\\r',
    ord('\t'): b'\\t',
    ord('\b'): b'\\b',
    ord('\f'): b'\\f',
}

_OCTAL_DIGITS = b'01234567'


class LiteralString(StringObject):
    """
    String written in literal notation, i.e. ``(...)``.
    The content is kept unescaped.
    """

    allow_empty = True

    @staticmethod
    def unescape(data: bytes) -> bytes:
        """
        Resolve backslash escapes (including octal escapes and line
        continuations) in the body of a literal string, and normalise
        unescaped end-of-line markers to ``\\n``.
        """
        result = bytearray()
        i = 0
        length = len(data)
        while i < length:
            c = data[i]
            if c == 0x5c:  # backslash
                i += 1
                if i >= length:
                    break
                c = data[i]
                if c in _ESCAPES:
                    result += _ESCAPES[c]
                    i += 1
                elif c in _OCTAL_DIGITS:
                    j = i
                    while j < length and j < i + 3 \
                            and data[j] in _OCTAL_DIGITS:
                        j += 1
                    result.append(int(data[i:j], 8) % 256)
                    i = j
                elif c == 0x0d:
                    # line continuation
                    i += 2 if data[i + 1:i + 2] == b'\n' else 1
                elif c == 0x0a:
                    i += 1
                else:
                    # unknown escapes are ignored
                    result.append(c)
                    i += 1
            elif c == 0x0d:
                result += b'\n'
                i += 2 if data[i + 1:i + 2] == b'\n' else 1
            else:
                result.append(c)
                i += 1
        return bytes(result)

    @staticmethod
    def escape(data: bytes) -> bytes:
        return b''.join(
            _ESCAPE_ON_WRITE.get(c, bytes((c,))) for c in data
        )

    def as_pdf_bytes(self) -> bytes:
        return b'(' + self.escape(self.content) + b')'


class HexadecimalString(StringObject):
    """
    String written in hexadecimal notation, i.e. ``<...>``.

    The content is the raw binary value; :meth:`hex` and :meth:`bin`
    provide both views.
    """

    allow_empty = True

    @classmethod
    def from_hex(cls, hex_data: bytes) -> 'HexadecimalString':
        digits = bytes(c for c in hex_data if c not in PDF_WHITESPACE)
        if len(digits) % 2:
            # a missing final digit is assumed to be zero
            digits += b'0'
        try:
            return cls(binascii.unhexlify(digits))
        except (binascii.Error, ValueError) as e:
            raise MalformedInputError(
                f"Invalid hexadecimal string <{hex_data!r}>"
            ) from e

    def hex(self) -> bytes:
        return binascii.hexlify(self.content).upper()

    def bin(self) -> bytes:
        return self.content

    def as_pdf_bytes(self) -> bytes:
        return b'<' + self.hex() + b'>'


class NameObject(str):
    """
    PDF name. The leading slash is not part of the value.
    """

    def as_pdf_bytes(self) -> bytes:
        return b'/' + self.encode('latin-1')


class NumberObject(int):

    def as_pdf_bytes(self) -> bytes:
        return str(int(self)).encode('ascii')


class FloatObject(Decimal):

    def as_pdf_bytes(self) -> bytes:
        return str(self).encode('ascii')


class BooleanObject:

    def __init__(self, value: bool):
        self.value = bool(value)

    def __bool__(self):
        return self.value

    def __eq__(self, other):
        if isinstance(other, BooleanObject):
            return self.value == other.value
        if isinstance(other, bool):
            return self.value == other
        return NotImplemented

    def __hash__(self):
        return hash(self.value)

    def __repr__(self):
        return f"BooleanObject({self.value})"

    def as_pdf_bytes(self) -> bytes:
        return b'true' if self.value else b'false'


class NullObject:

    def __eq__(self, other):
        return other is None or isinstance(other, NullObject)

    def __hash__(self):
        return hash(None)

    def __repr__(self):
        return "NullObject()"

    def as_pdf_bytes(self) -> bytes:
        return b'null'


class Reference(NamedTuple):
    """
    Indirect reference ``N G R``.
    """

    idnum: int
    generation: int = 0

    def as_pdf_bytes(self) -> bytes:
        return b'%d %d R' % (self.idnum, self.generation)


PdfValue = Union[
    'Dictionary', LiteralString, HexadecimalString, NameObject,
    NumberObject, FloatObject, BooleanObject, NullObject, Reference
]

_REFERENCE_REGEX = re.compile(r'^\s*(\d+)\s+(\d+)\s+R\s*$')
_NUMBER_REGEX = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)$')


def _coerce_token(token: str) -> PdfValue:
    # bare tokens are names unless they look like something else
    m = _REFERENCE_REGEX.match(token)
    if m is not None:
        return Reference(int(m.group(1)), int(m.group(2)))
    if _NUMBER_REGEX.match(token):
        return _parse_number(token.encode('ascii'))
    if token in ('true', 'false'):
        return BooleanObject(token == 'true')
    if token == 'null':
        return NullObject()
    return NameObject(token.lstrip('/'))


def _coerce_value(value) -> PdfValue:
    if isinstance(value, (
        Dictionary, StringObject, NameObject, NumberObject, FloatObject,
        BooleanObject, NullObject, Reference
    )):
        return value
    if value is None:
        return NullObject()
    if isinstance(value, bool):
        return BooleanObject(value)
    if isinstance(value, int):
        return NumberObject(value)
    if isinstance(value, (float, Decimal)):
        return FloatObject(str(value))
    if isinstance(value, (bytes, bytearray)):
        return LiteralString(bytes(value))
    if isinstance(value, str):
        return _coerce_token(value)
    if isinstance(value, dict):
        return Dictionary.from_mapping(value)
    if isinstance(value, (list, tuple)):
        return Dictionary.from_sequence(value)
    raise TypeError(f"Cannot convert {type(value)} to a PDF value")


def serialise_value(value: PdfValue) -> bytes:
    return _coerce_value(value).as_pdf_bytes()


def _normalise_key(key) -> str:
    if isinstance(key, bytes):
        key = key.decode('latin-1')
    return str(key).lstrip('/')


class Dictionary(StringObject):
    """
    A PDF dictionary (``<< >>``) or array (``[ ]``).

    The kind is fixed at construction: a mapping is keyed by name (without
    the leading slash), a sequence is indexed by position. The textual form
    is regenerated from the value tree whenever it is requested, so
    mutations are always reflected.

    :param content:
        Textual form to parse, if any. Without content, an empty mapping
        is created.
    """

    def __init__(self, content: Optional[bytes] = None):
        self._is_array = False
        self._data: Union[dict, list] = {}
        super().__init__(content)

    @classmethod
    def from_mapping(cls, mapping: Optional[dict] = None) -> 'Dictionary':
        result = cls()
        for k, v in (mapping or {}).items():
            result[k] = v
        return result

    @classmethod
    def from_sequence(cls, values=()) -> 'Dictionary':
        result = cls()
        result._is_array = True
        result._data = [_coerce_value(v) for v in values]
        return result

    @property
    def is_array(self) -> bool:
        return self._is_array

    @property
    def content(self) -> bytes:
        return self.as_pdf_bytes()

    def set(self, content: bytes):
        super().set(content)
        parsed, end = read_object(content)
        if not isinstance(parsed, Dictionary) \
                or content[end:].strip(PDF_WHITESPACE):
            raise MalformedInputError(
                "Content is not a single dictionary or array"
            )
        self._is_array = parsed._is_array
        self._data = parsed._data

    def _check_key(self, key):
        if self._is_array:
            if not isinstance(key, int):
                raise TypeError("Array indices must be integers")
            return key
        return _normalise_key(key)

    def __getitem__(self, key):
        return self._data[self._check_key(key)]

    def __setitem__(self, key, value):
        self._data[self._check_key(key)] = _coerce_value(value)

    def __delitem__(self, key):
        del self._data[self._check_key(key)]

    def __contains__(self, key):
        if self._is_array:
            # membership tests indices, like keys()
            return isinstance(key, int) and key in self.keys()
        return _normalise_key(key) in self._data

    def __iter__(self) -> Iterator:
        return iter(self._data)

    def __len__(self):
        return len(self._data)

    def __eq__(self, other):
        return (
            isinstance(other, Dictionary)
            and self._is_array == other._is_array
            and self._data == other._data
        )

    __hash__ = None

    def get(self, key, default=None):
        try:
            return self[key]
        except (KeyError, IndexError):
            return default

    def keys(self):
        if self._is_array:
            return range(len(self._data))
        return self._data.keys()

    def values(self):
        if self._is_array:
            return list(self._data)
        return self._data.values()

    def items(self):
        if self._is_array:
            return list(enumerate(self._data))
        return self._data.items()

    def append(self, value):
        if not self._is_array:
            raise TypeError("Only arrays support append()")
        self._data.append(_coerce_value(value))

    def copy(self) -> 'Dictionary':
        return copy.deepcopy(self)

    def as_pdf_bytes(self) -> bytes:
        if self._is_array:
            return b'[' + b' '.join(
                serialise_value(v) for v in self._data
            ) + b']'
        entries = b''.join(
            b' /' + k.encode('latin-1') + b' ' + serialise_value(v)
            for k, v in self._data.items()
        )
        return b'<<' + entries + b' >>'

    def __repr__(self):
        return f"Dictionary({self.as_pdf_bytes()!r})"


# Tokenizer

_TOKEN_DICT_START = 'dict_start'
_TOKEN_DICT_END = 'dict_end'
_TOKEN_ARRAY_START = 'array_start'
_TOKEN_ARRAY_END = 'array_end'
_TOKEN_NAME = 'name'
_TOKEN_LITERAL = 'literal'
_TOKEN_HEX = 'hex'
_TOKEN_REGULAR = 'regular'


class _Token(NamedTuple):
    kind: str
    value: bytes
    start: int
    end: int


def _is_regular(c: int) -> bool:
    return c not in PDF_WHITESPACE and c not in PDF_DELIMITERS


class _Tokenizer:

    def __init__(self, data: bytes, pos: int = 0):
        self.data = data
        self.pos = pos

    def _skip_whitespace_and_comments(self):
        data = self.data
        while self.pos < len(data):
            c = data[self.pos]
            if c in PDF_WHITESPACE:
                self.pos += 1
            elif c == 0x25:  # %
                while self.pos < len(data) and data[self.pos] not in b'\r\n':
                    self.pos += 1
            else:
                break

    def _read_literal(self, start: int) -> _Token:
        data = self.data
        depth = 1
        i = start + 1
        while i < len(data):
            c = data[i]
            if c == 0x5c:
                i += 2
                continue
            if c == 0x28:
                depth += 1
            elif c == 0x29:
                depth -= 1
                if not depth:
                    return _Token(_TOKEN_LITERAL, data[start + 1:i], start, i + 1)
            i += 1
        raise MalformedInputError(
            f"Unbalanced literal string starting at {start}"
        )

    def next_token(self) -> Optional[_Token]:
        self._skip_whitespace_and_comments()
        data = self.data
        start = self.pos
        if start >= len(data):
            return None
        c = data[start]
        two = data[start:start + 2]
        if two == b'<<':
            token = _Token(_TOKEN_DICT_START, two, start, start + 2)
        elif two == b'>>':
            token = _Token(_TOKEN_DICT_END, two, start, start + 2)
        elif c == 0x3c:  # <
            end = data.find(b'>', start)
            if end == -1:
                raise MalformedInputError(
                    f"Unterminated hexadecimal string at {start}"
                )
            token = _Token(_TOKEN_HEX, data[start + 1:end], start, end + 1)
        elif c == 0x28:
            token = self._read_literal(start)
        elif c == 0x5b:
            token = _Token(_TOKEN_ARRAY_START, b'[', start, start + 1)
        elif c == 0x5d:
            token = _Token(_TOKEN_ARRAY_END, b']', start, start + 1)
        elif c == 0x2f:  # /
            end = start + 1
            while end < len(data) and _is_regular(data[end]):
                end += 1
            token = _Token(_TOKEN_NAME, data[start + 1:end], start, end)
        elif _is_regular(c):
            end = start + 1
            while end < len(data) and _is_regular(data[end]):
                end += 1
            token = _Token(_TOKEN_REGULAR, data[start:end], start, end)
        else:
            raise MalformedInputError(
                f"Unexpected delimiter {bytes((c,))!r} at {start}"
            )
        self.pos = token.end
        return token

    def peek_tokens(self, count: int) -> List[_Token]:
        saved = self.pos
        try:
            result = []
            for _ in range(count):
                token = self.next_token()
                if token is None:
                    break
                result.append(token)
            return result
        finally:
            self.pos = saved


def _parse_number(value: bytes) -> Union[NumberObject, FloatObject]:
    try:
        if b'.' in value:
            return FloatObject(value.decode('ascii'))
        return NumberObject(int(value))
    except (ValueError, InvalidOperation) as e:
        raise MalformedInputError(f"Invalid number {value!r}") from e


class _Parser:

    def __init__(self, data: bytes, pos: int = 0):
        self.tokenizer = _Tokenizer(data, pos)

    def _expect_token(self) -> _Token:
        token = self.tokenizer.next_token()
        if token is None:
            raise MalformedInputError("Unexpected end of data")
        return token

    def parse_value(self, depth: int = 0):
        token = self._expect_token()
        kind = token.kind
        if kind in (_TOKEN_DICT_START, _TOKEN_ARRAY_START) \
                and depth >= MAX_NESTING_DEPTH:
            raise MalformedInputError(
                f"Nesting depth exceeds {MAX_NESTING_DEPTH}"
            )
        if kind == _TOKEN_DICT_START:
            return self._parse_dictionary(depth)
        elif kind == _TOKEN_ARRAY_START:
            return self._parse_array(depth)
        elif kind == _TOKEN_LITERAL:
            return LiteralString(LiteralString.unescape(token.value))
        elif kind == _TOKEN_HEX:
            return HexadecimalString.from_hex(token.value)
        elif kind == _TOKEN_NAME:
            return NameObject(token.value.decode('latin-1'))
        elif kind == _TOKEN_REGULAR:
            return self._parse_regular(token)
        raise MalformedInputError(
            f"Unbalanced {token.value!r} at offset {token.start}"
        )

    def _parse_regular(self, token: _Token):
        value = token.value
        if value == b'true':
            return BooleanObject(True)
        elif value == b'false':
            return BooleanObject(False)
        elif value == b'null':
            return NullObject()
        number = _parse_number(value)
        if isinstance(number, NumberObject) and value.isdigit():
            # could be the start of an indirect reference
            lookahead = self.tokenizer.peek_tokens(2)
            if len(lookahead) == 2 \
                    and lookahead[0].kind == _TOKEN_REGULAR \
                    and lookahead[0].value.isdigit() \
                    and lookahead[1].value == b'R':
                self.tokenizer.pos = lookahead[1].end
                return Reference(int(number), int(lookahead[0].value))
        return number

    def _parse_dictionary(self, depth: int) -> Dictionary:
        result = Dictionary()
        data = result._data
        while True:
            token = self._expect_token()
            if token.kind == _TOKEN_DICT_END:
                return result
            if token.kind != _TOKEN_NAME:
                raise MalformedInputError(
                    f"Dictionary key expected at offset {token.start}, "
                    f"got {token.value!r}"
                )
            key = token.value.decode('latin-1')
            value = self.parse_value(depth + 1)
            if key in HEX_DECODED_KEYS \
                    and isinstance(value, HexadecimalString):
                value = LiteralString(value.bin())
            data[key] = value

    def _parse_array(self, depth: int) -> Dictionary:
        result = Dictionary.from_sequence()
        data = result._data
        while True:
            lookahead = self.tokenizer.peek_tokens(1)
            if not lookahead:
                raise MalformedInputError("Unbalanced array")
            if lookahead[0].kind == _TOKEN_ARRAY_END:
                self.tokenizer.pos = lookahead[0].end
                return result
            data.append(self.parse_value(depth + 1))


def read_object(data: bytes, pos: int = 0) -> Tuple[PdfValue, int]:
    """
    Parse a single PDF value from ``data``, starting at ``pos``.

    :param data:
        The data to read from.
    :param pos:
        The offset to start reading at. Leading whitespace is skipped.
    :return:
        The parsed value, and the offset right after it.
    :raises MalformedInputError:
        If the data is not a well-formed PDF value.
    """
    parser = _Parser(data, pos)
    value = parser.parse_value()
    return value, parser.tokenizer.pos
