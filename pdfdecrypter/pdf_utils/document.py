"""
Document model: discovery of the objects in a PDF byte stream, resolution
of the cross-reference chain, and reserialisation.

Objects are located by scanning for ``N G obj`` headers and the structural
``xref``/``trailer``/``startxref`` keywords, not by following the xref data.
This keeps documents with damaged cross-reference data readable, and is
sufficient for in-place decryption.
"""

import bisect
import copy
import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from .generic import (
    Dictionary,
    HexadecimalString,
    PdfValue,
    Reference,
    StringObject,
    read_object,
)
from .misc import (
    PDF_WHITESPACE,
    MalformedInputError,
    ObjectNotFoundError,
    PdfWriteError,
    normalise_object_address,
)
from .xref import (
    MAX_XREF_REBUILD_ROUNDS,
    XRefInfo,
    XRefKind,
    create_xref_stream,
    rebuild_xref_streams,
    rebuild_xref_tables,
)

__all__ = [
    'ObjectAddress', 'DocumentObject', 'Document', 'MARKERS',
    'LINEARIZED_OBJECT_PADDING_LENGTH', 'SUPERSEDED_KEY_SEPARATOR',
]

logger = logging.getLogger(__name__)

MARKERS = ('xref', 'trailer', 'startxref')

LINEARIZED_OBJECT_PADDING_LENGTH = 10
"""
Room (in bytes) reserved after the linearization dictionary, so that the
final document length can be patched in without moving other objects.
"""

SUPERSEDED_KEY_SEPARATOR = '~'
"""
Separator between an object key and the sequence number used to keep
earlier occurrences of a repeated address addressable.
"""

OBJECT_REGEX = re.compile(
    rb'\b\d+\s+\d+\s+obj\b|\b(?<!/)xref\b|\btrailer\b|\bstartxref\b',
    re.IGNORECASE
)
STREAM_START_REGEX = re.compile(rb'>>\s*stream(?:\r\n|\n|\r)')
STREAM_KEYWORD_REGEX = re.compile(rb'\s*stream(?:\r\n|\n|\r)')
END_STREAM_REGEX = re.compile(rb'(?:\r\n|\n|\r)?endstream')
EOF_MARKER = b'%%EOF'


@dataclass(frozen=True)
class ObjectAddress:
    """
    Address of a top-level construct: either an object number and generation,
    or one of the structural markers in :const:`MARKERS`.
    """

    idnum: Optional[int] = None
    generation: int = 0
    marker: Optional[str] = None

    @classmethod
    def parse(cls, address: Union[str, bytes]) -> 'ObjectAddress':
        if isinstance(address, bytes):
            address = address.decode('latin-1')
        marker = address.strip().lower()
        if marker in MARKERS:
            return cls(marker=marker)
        idnum, generation = normalise_object_address(address)
        return cls(idnum=idnum, generation=generation)

    @property
    def is_marker(self) -> bool:
        return self.marker is not None

    @property
    def key(self) -> str:
        return self.marker if self.is_marker else str(self.idnum)

    def as_pdf_bytes(self) -> bytes:
        if self.is_marker:
            return self.marker.encode('ascii')
        return b'%d %d obj' % (self.idnum, self.generation)

    def __str__(self):
        return self.as_pdf_bytes().decode('ascii')


class DocumentObject:
    """
    A top-level construct of a PDF body.

    An object carries either a dictionary (possibly with stream data), or a
    value, never both.

    :param address:
        The object's address.
    :param offset:
        Byte offset of the address in the document.
    :param dictionary:
        The object's dictionary or array.
    :param stream:
        Stream data, only allowed together with a dictionary.
    :param value:
        Any other value: raw bytes, or a string object.
    :param padding_length:
        Number of spaces to emit after the object.
    """

    def __init__(self, address: ObjectAddress, offset: Optional[int] = None,
                 dictionary: Optional[Dictionary] = None,
                 stream: Optional[bytes] = None,
                 value: Union[bytes, StringObject, None] = None,
                 padding_length: int = 0):
        self.address = address
        self.offset = offset
        self.dictionary: Optional[Dictionary] = None
        self.stream: Optional[bytes] = None
        self.value: Union[bytes, StringObject, None] = None
        self.padding_length = padding_length
        if dictionary is not None:
            self.set_dictionary(dictionary)
        if stream is not None:
            self.set_stream(stream)
        if value is not None:
            self.set_value(value)

    def set_dictionary(self, dictionary: Dictionary):
        if self.value is not None:
            raise ValueError("Object already has a value")
        self.dictionary = dictionary

    def set_stream(self, stream: bytes):
        if self.dictionary is None:
            raise ValueError("Stream data requires a dictionary")
        self.stream = stream

    def set_value(self, value: Union[bytes, StringObject]):
        if self.dictionary is not None:
            raise ValueError("Object already has a dictionary")
        self.value = value

    @classmethod
    def read(cls, address: ObjectAddress, body: bytes,
             offset: Optional[int] = None) -> 'DocumentObject':
        """
        Interpret the body of a top-level construct, i.e. everything after
        its address up to the next construct.
        """
        body = body.strip(PDF_WHITESPACE)
        if address.marker == 'startxref':
            if body.endswith(EOF_MARKER):
                body = body[:-len(EOF_MARKER)].rstrip(PDF_WHITESPACE)
            return cls(address, offset=offset, value=body)
        if not address.is_marker and body[-6:].lower() == b'endobj':
            body = body[:-6].rstrip(PDF_WHITESPACE)
        if address.marker == 'xref' or not body \
                or body[:1] not in (b'<', b'[', b'('):
            return cls(address, offset=offset, value=body)

        parsed, end = read_object(body)
        if isinstance(parsed, StringObject) \
                and not isinstance(parsed, Dictionary):
            return cls(address, offset=offset, value=parsed)
        result = cls(address, offset=offset, dictionary=parsed)
        if not parsed.is_array:
            m = STREAM_KEYWORD_REGEX.match(body, end)
            if m is not None:
                result.set_stream(_read_stream_data(parsed, body, m.end()))
        return result

    def copy(self) -> 'DocumentObject':
        return DocumentObject(
            self.address, offset=self.offset,
            dictionary=copy.deepcopy(self.dictionary),
            stream=self.stream, value=copy.deepcopy(self.value),
            padding_length=self.padding_length
        )

    def as_pdf_bytes(self) -> bytes:
        parts = [b'\n', self.address.as_pdf_bytes(), b'\n']
        if self.dictionary is not None:
            if self.stream is not None and not self.dictionary.is_array:
                self.dictionary['Length'] = len(self.stream)
            parts.append(self.dictionary.as_pdf_bytes())
            if self.stream is not None:
                parts += [b'\nstream\n', self.stream, b'\nendstream']
        elif isinstance(self.value, StringObject):
            parts.append(self.value.as_pdf_bytes())
        elif self.value is not None:
            parts.append(self.value)
        if not self.address.is_marker:
            parts.append(b'\nendobj')
        elif self.address.marker == 'startxref':
            parts.append(b'\n' + EOF_MARKER)
        parts.append(b' ' * self.padding_length)
        return b''.join(parts)

    def length(self) -> int:
        return len(self.as_pdf_bytes())

    def __repr__(self):
        return f"DocumentObject({self.address}, offset={self.offset})"


def _read_stream_data(dictionary: Dictionary, body: bytes, start: int) \
        -> bytes:
    length = dictionary.get('Length')
    if isinstance(length, int) and not isinstance(length, bool):
        end = start + length
        if body[end:].lstrip(PDF_WHITESPACE).startswith(b'endstream'):
            return body[start:end]
    # indirect or bogus /Length: rely on the endstream keyword
    matches = list(END_STREAM_REGEX.finditer(body, start))
    if not matches:
        raise MalformedInputError("Stream without endstream keyword")
    return body[start:matches[-1].start()]


def _startxref_offset(obj: DocumentObject) -> int:
    try:
        return int(bytes(obj.value))
    except (TypeError, ValueError):
        raise MalformedInputError(f"Invalid startxref value {obj.value!r}")


def _find_stream_ranges(content: bytes) -> List[Tuple[int, int]]:
    ranges = []
    pos = 0
    while True:
        m = STREAM_START_REGEX.search(content, pos)
        if m is None:
            return ranges
        end = content.find(b'endstream', m.end())
        if end == -1:
            return ranges
        ranges.append((m.end(), end))
        pos = end + len(b'endstream')


class Document:
    """
    A PDF document, as an ordered collection of top-level constructs.

    :param content:
        Raw PDF bytes to parse. If omitted, an empty document is created,
        to be populated with :meth:`add_header`, :meth:`add_object` and
        :meth:`add_xref_objects`.
    """

    def __init__(self, content: Optional[bytes] = None):
        self.header = b''
        self.objects: Dict[str, DocumentObject] = {}
        self.xref: Optional[XRefInfo] = None
        self.encrypt_object: Optional[str] = None
        self.metadata_object: Optional[str] = None
        self._direct_encrypt_dictionary: Optional[Dictionary] = None
        if content is not None:
            self.set(content)

    def set(self, content: bytes):
        content = content.rstrip(PDF_WHITESPACE)
        self._find_objects(content)
        self._set_properties()

    def _find_object_offsets(self, content: bytes) -> List[Tuple[int, bytes]]:
        stream_ranges = _find_stream_ranges(content)
        range_starts = [start for start, _ in stream_ranges]
        result = []
        for m in OBJECT_REGEX.finditer(content):
            ix = bisect.bisect_right(range_starts, m.start()) - 1
            if ix >= 0 and m.start() < stream_ranges[ix][1]:
                # false positive in stream data
                continue
            result.append((m.start(), m.group(0)))
        return result

    def _find_objects(self, content: bytes):
        offsets = self._find_object_offsets(content)
        if not offsets:
            raise MalformedInputError("No objects found in document")
        self.header = content[:offsets[0][0]].strip(PDF_WHITESPACE)

        found: List[Tuple[str, DocumentObject]] = []
        for ix, (offset, address_text) in enumerate(offsets):
            if ix + 1 < len(offsets):
                end = offsets[ix + 1][0]
            else:
                eof = content.find(EOF_MARKER, offset)
                end = len(content) if eof == -1 else eof + len(EOF_MARKER)
            address = ObjectAddress.parse(address_text)
            body = content[offset + len(address_text):end]
            obj = DocumentObject.read(address, body, offset=offset)
            found.append((address.key, obj))

        # the latest occurrence of an address wins, earlier ones are kept
        # under a numbered key
        occurrences = defaultdict(int)
        for key, _ in found:
            occurrences[key] += 1
        seen = defaultdict(int)
        self.objects = {}
        for key, obj in found:
            seen[key] += 1
            if seen[key] < occurrences[key]:
                key = f"{key}{SUPERSEDED_KEY_SEPARATOR}{seen[key]}"
            self.objects[key] = obj
        logger.debug(f"Found {len(self.objects)} objects.")

    def _trailer_dictionaries(self) -> List[Dictionary]:
        if self.xref is None:
            return []
        if self.xref.kind == XRefKind.TABLE:
            keys = [
                key for key, obj in reversed(self.objects.items())
                if obj.address.marker == 'trailer'
            ]
        else:
            keys = self.xref.keys
        return [
            self.objects[key].dictionary for key in keys
            if self.objects[key].dictionary is not None
        ]

    def _trailer_value(self, key: str) -> Optional[PdfValue]:
        for dictionary in self._trailer_dictionaries():
            if not dictionary.is_array and key in dictionary:
                return dictionary[key]
        return None

    def _set_properties(self):
        xref_tables = [
            key for key, obj in reversed(self.objects.items())
            if obj.address.marker == 'xref'
        ]
        if xref_tables:
            self.xref = XRefInfo(kind=XRefKind.TABLE, keys=xref_tables)
        else:
            try:
                startxref = self.objects['startxref']
            except KeyError:
                raise ObjectNotFoundError(
                    "Document has neither an xref table nor startxref"
                )
            self.xref = XRefInfo(
                kind=XRefKind.STREAM,
                keys=self.find_xref_objects(_startxref_offset(startxref))
            )
        self.xref.startxref_targets = self._find_startxref_targets()
        if self.xref.kind == XRefKind.TABLE:
            self.xref.prev_targets = self._find_trailer_targets('Prev')
            self.xref.xref_stm_targets = self._find_trailer_targets('XRefStm')
        logger.debug(
            f"Xref kind: {self.xref.kind.value}, chain: {self.xref.keys}"
        )

        encrypt = self._trailer_value('Encrypt')
        if isinstance(encrypt, Reference):
            self.encrypt_object = str(encrypt.idnum)
        elif isinstance(encrypt, Dictionary):
            self._direct_encrypt_dictionary = encrypt

        root = self._trailer_value('Root')
        if isinstance(root, Reference):
            root_object = self.objects.get(str(root.idnum))
            root_dict = root_object.dictionary if root_object else None
            if root_dict is not None and not root_dict.is_array:
                metadata = root_dict.get('Metadata')
                if isinstance(metadata, Reference):
                    self.metadata_object = str(metadata.idnum)

    def _find_startxref_targets(self) -> Dict[str, str]:
        targets = {}
        for key, obj in self.objects.items():
            if obj.address.marker != 'startxref':
                continue
            try:
                targets[key] = self.find_object_at(_startxref_offset(obj))
            except (MalformedInputError, ObjectNotFoundError):
                logger.debug(f"Marker {key} does not point to an object.")
        if self.xref.kind == XRefKind.TABLE and self.xref.keys \
                and 'startxref' in self.objects:
            targets.setdefault('startxref', self.xref.keys[0])
        return targets

    def _find_trailer_targets(self, entry: str) -> Dict[str, str]:
        targets = {}
        for key, obj in self.objects.items():
            dictionary = obj.dictionary
            if obj.address.marker != 'trailer' or dictionary is None \
                    or dictionary.is_array or entry not in dictionary:
                continue
            try:
                targets[key] = self.find_object_at(int(dictionary[entry]))
            except (TypeError, ValueError, ObjectNotFoundError):
                logger.warning(
                    f"/{entry} of {key} does not point to an object, "
                    f"it will not be updated."
                )
        return targets

    def find_xref_objects(self, offset: int) -> List[str]:
        """
        Follow a chain of xref stream objects through their ``Prev``
        entries.

        :param offset:
            Offset of the newest xref stream object.
        :return:
            The keys of the xref stream objects, newest first.
        """
        keys: List[str] = []
        while offset is not None:
            key = self.find_object_at(offset)
            if key in keys:
                raise MalformedInputError(
                    f"Cycle in xref chain at offset {offset}"
                )
            dictionary = self.objects[key].dictionary
            if dictionary is None or dictionary.is_array:
                raise MalformedInputError(
                    f"Object at offset {offset} is not an xref stream"
                )
            keys.append(key)
            prev = dictionary.get('Prev')
            offset = None if prev is None else int(prev)
        return keys

    def find_object_at(self, offset: int) -> str:
        for key, obj in self.objects.items():
            if obj.offset == offset:
                return key
        raise ObjectNotFoundError(f"No object found at offset {offset}")

    def get_object(self, reference: Union[Reference, ObjectAddress, int, str]) \
            -> DocumentObject:
        """
        Look up the latest occurrence of an object.

        :param reference:
            An indirect reference, an address, an object number, or an
            object key.
        :raises ObjectNotFoundError:
            If there is no such object.
        """
        if isinstance(reference, Reference):
            key = str(reference.idnum)
        elif isinstance(reference, ObjectAddress):
            key = reference.key
        elif isinstance(reference, int):
            key = str(reference)
        elif reference in self.objects or reference.isdigit():
            key = reference
        else:
            key = ObjectAddress.parse(reference).key
        try:
            return self.objects[key]
        except KeyError:
            raise ObjectNotFoundError(f"Object {reference} not found")

    def find_encrypt_dictionary(self) -> Optional[Dictionary]:
        """
        Retrieve (a copy of) the encryption dictionary, with the first
        element of the document ID stored under ``ID``.

        :return:
            The dictionary, or ``None`` if the document is not encrypted.
        """
        if self.encrypt_object is not None:
            dictionary = self.get_object(self.encrypt_object).dictionary
            if dictionary is None or dictionary.is_array:
                raise MalformedInputError(
                    "Encryption object is not a dictionary"
                )
        elif self._direct_encrypt_dictionary is not None:
            dictionary = self._direct_encrypt_dictionary
        else:
            return None
        result = dictionary.copy()
        id_array = self._trailer_value('ID')
        if isinstance(id_array, Dictionary) and id_array.is_array \
                and isinstance(id_array.get(0), StringObject):
            result['ID'] = HexadecimalString(id_array[0].content)
        else:
            logger.warning("Document has no usable ID entry.")
            result['ID'] = HexadecimalString(b'')
        return result

    def add_header(self, header: bytes):
        self.header = header

    def add_xref_objects(self, xref: XRefInfo):
        self.xref = XRefInfo(
            kind=xref.kind, keys=list(xref.keys),
            startxref_targets=dict(xref.startxref_targets),
            prev_targets=dict(xref.prev_targets),
            xref_stm_targets=dict(xref.xref_stm_targets),
        )

    def add_object(self, obj: DocumentObject, key: Optional[str] = None):
        """
        Append an object to the document, placing it right after the
        current last object.
        """
        if self.objects:
            last = self.objects[next(reversed(self.objects.keys()))]
            obj.offset = last.offset + last.length()
        else:
            obj.offset = len(self.header) + 1
        self.objects[key or obj.address.key] = obj

    def override_object(self, key: str, obj: DocumentObject):
        """
        Replace an object, and lay out the document again so that the
        offsets of the objects following it reflect its new length.
        """
        if key not in self.objects:
            raise ObjectNotFoundError(f"Object {key} not found")
        self.objects[key] = obj
        self._update_offsets()

    def _update_offsets(self):
        offset = len(self.header) + 1
        for obj in self.objects.values():
            obj.offset = offset
            offset += obj.length()

    def create_xref_stream(self, key: str,
                           offsets: Optional[Dict[str, int]] = None) -> bytes:
        return create_xref_stream(self, key, offsets)

    def _is_linearized(self) -> bool:
        if not self.objects:
            return False
        first = next(iter(self.objects.values()))
        return (
            first.dictionary is not None
            and not first.dictionary.is_array
            and 'Linearized' in first.dictionary
        )

    def create(self) -> bytes:
        """
        Bring cross-reference data, ``startxref`` and (for linearized
        documents) the declared length up to date, and serialise the
        document.
        """
        if not self.objects:
            raise MalformedInputError("Document has no objects")
        linearized = self._is_linearized()
        first_key = next(iter(self.objects))
        if linearized:
            reissued = self.objects[first_key].copy()
            reissued.padding_length = LINEARIZED_OBJECT_PADDING_LENGTH
            self.override_object(first_key, reissued)

        if self.xref is not None and self.xref.keys:
            for _ in range(MAX_XREF_REBUILD_ROUNDS):
                if self.xref.kind == XRefKind.STREAM:
                    rebuild_xref_streams(self)
                else:
                    rebuild_xref_tables(self)
                if not self._update_startxref():
                    break
            else:
                raise PdfWriteError("Updating startxref did not converge")

        if linearized:
            current = self.objects[first_key]
            patched = current.copy()
            patched.padding_length = 0
            patched.dictionary['L'] = self.length()
            patched.padding_length = max(
                current.length() - patched.length(), 0
            )
            self.override_object(first_key, patched)
        return self.as_pdf_bytes()

    def _update_startxref(self) -> bool:
        changed = False
        for key, target_key in self.xref.startxref_targets.items():
            marker = self.objects.get(key)
            target = self.objects.get(target_key)
            if marker is None or target is None:
                continue
            value = str(target.offset).encode('ascii')
            if marker.value != value:
                reissued = marker.copy()
                reissued.value = value
                self.override_object(key, reissued)
                changed = True
        return changed

    def as_pdf_bytes(self) -> bytes:
        return b''.join(
            [self.header] + [obj.as_pdf_bytes() for obj in self.objects.values()]
            + [b'\n']
        )

    def length(self) -> int:
        return len(self.as_pdf_bytes())
