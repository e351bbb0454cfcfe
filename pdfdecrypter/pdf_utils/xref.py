"""
Cross-reference data handling: descriptors for the xref mechanism used by
a document, and the routines that rewrite xref tables and xref streams
after objects have moved.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Tuple

from .filters import FilterChain
from .generic import Dictionary
from .misc import MalformedInputError, PdfWriteError
from .predictors import Predictor, get_predictor

if TYPE_CHECKING:
    from .document import Document, DocumentObject

__all__ = [
    'XRefKind', 'XRefInfo', 'XRefStreamLayout',
    'XREF_OBJECT_PADDING_LENGTH', 'MAX_XREF_REBUILD_ROUNDS',
    'plan_offsets', 'create_xref_stream', 'rebuild_xref_streams',
    'create_xref_table', 'rebuild_xref_tables',
]

logger = logging.getLogger(__name__)

XREF_OBJECT_PADDING_LENGTH = 50
"""
Room (in bytes) reserved after a rebuilt xref stream object, so that it can
absorb growth of its payload without moving the objects that follow it.
"""

MAX_XREF_REBUILD_ROUNDS = 16


@enum.unique
class XRefKind(enum.Enum):
    TABLE = 'table'
    STREAM = 'stream'


@dataclass
class XRefInfo:
    kind: XRefKind
    keys: List[str] = field(default_factory=list)
    """
    Keys of the objects forming the xref chain, newest first.
    """

    startxref_targets: Dict[str, str] = field(default_factory=dict)
    """
    Keys of the xref sections that the ``startxref`` markers point to,
    indexed by the key of the marker.
    """

    prev_targets: Dict[str, str] = field(default_factory=dict)
    """
    Keys of the xref tables that trailer ``Prev`` entries point to,
    indexed by the key of the trailer.
    """

    xref_stm_targets: Dict[str, str] = field(default_factory=dict)
    """
    Keys of the xref streams that trailer ``XRefStm`` entries point to in
    hybrid-reference files, indexed by the key of the trailer.
    """


@dataclass(frozen=True)
class XRefStreamLayout:
    """
    Record layout of a cross-reference stream, as declared in its
    dictionary.
    """

    widths: Tuple[int, ...]
    sections: Tuple[Tuple[int, int], ...]
    columns: int
    predictor: Predictor
    filters: FilterChain

    @property
    def record_width(self) -> int:
        return sum(self.widths)

    @property
    def row_width(self) -> int:
        return self.predictor.row_width(self.columns)

    @property
    def tag_length(self) -> int:
        return 1 if self.predictor.has_tag_byte else 0

    def object_numbers(self) -> Iterator[int]:
        for start, count in self.sections:
            yield from range(start, start + count)

    @classmethod
    def from_dictionary(cls, dictionary: Dictionary) -> 'XRefStreamLayout':
        try:
            widths = tuple(int(w) for w in dictionary['W'])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedInputError(
                "Xref stream does not declare valid field widths"
            ) from e
        if len(widths) != 3:
            raise MalformedInputError("Xref stream /W must have 3 entries")

        index = dictionary.get('Index')
        if index is None:
            sections = ((0, int(dictionary.get('Size', 0))),)
        else:
            values = [int(x) for x in index]
            if len(values) % 2:
                raise MalformedInputError(
                    "Xref stream /Index must have an even number of entries"
                )
            sections = tuple(zip(values[::2], values[1::2]))

        params = dictionary.get('DecodeParms')
        if isinstance(params, Dictionary) and params.is_array:
            params = params.get(0)
        if not isinstance(params, Dictionary):
            params = Dictionary()
        predictor = get_predictor(params.get('Predictor', 1))
        columns = int(params.get('Columns', sum(widths)))
        if columns != sum(widths):
            raise MalformedInputError(
                f"Xref stream predictor columns ({columns}) do not match "
                f"the record width ({sum(widths)})"
            )
        return cls(
            widths=widths, sections=sections, columns=columns,
            predictor=predictor,
            filters=FilterChain(dictionary.get('Filter')),
        )


def plan_offsets(document: 'Document',
                 lengths: Optional[Dict[str, int]] = None) -> Dict[str, int]:
    """
    Compute the offset every object would have if the document were
    serialised with the given object lengths.

    :param document:
        The document to lay out.
    :param lengths:
        Object lengths overriding the current serialised lengths.
    :return:
        A dictionary mapping object keys to offsets.
    """
    lengths = lengths or {}
    offset = len(document.header) + 1
    result = {}
    for key, obj in document.objects.items():
        result[key] = offset
        try:
            offset += lengths[key]
        except KeyError:
            offset += obj.length()
    return result


def _current_offsets(document: 'Document') -> Dict[str, int]:
    return {key: obj.offset for key, obj in document.objects.items()}


def create_xref_stream(document: 'Document', xref_key: str,
                       offsets: Optional[Dict[str, int]] = None) -> bytes:
    """
    Rebuild the payload of a cross-reference stream so that its direct
    entries point to the (planned) offsets of the objects they describe.

    Free and compressed entries are passed through unchanged; direct
    entries for objects that are no longer present are zero-filled.

    :param document:
        The document containing the xref stream.
    :param xref_key:
        Key of the xref stream object.
    :param offsets:
        Offsets to use. Defaults to the offsets currently recorded in the
        document.
    :return:
        The encoded stream data.
    """
    if offsets is None:
        offsets = _current_offsets(document)
    xref_object = document.objects[xref_key]
    if xref_object.dictionary is None or xref_object.stream is None:
        raise MalformedInputError(f"Object {xref_key} is not an xref stream")
    layout = XRefStreamLayout.from_dictionary(xref_object.dictionary)
    row_width = layout.row_width
    tag_length = layout.tag_length
    type_width, offset_width, _ = layout.widths

    data = layout.predictor.decode(
        row_width, layout.filters.decode(xref_object.stream)
    )
    if len(data) % row_width:
        raise MalformedInputError(
            f"Xref stream data length {len(data)} is not a multiple of "
            f"the row width {row_width}"
        )
    rows = [data[i:i + row_width] for i in range(0, len(data), row_width)]
    numbers = list(layout.object_numbers())
    if len(numbers) != len(rows):
        logger.warning(
            f"Xref stream {xref_key} declares {len(numbers)} entries, "
            f"but contains {len(rows)}."
        )

    new_rows = []
    for ix, row in enumerate(rows):
        prefix, record = row[:tag_length], row[tag_length:]
        entry_type = (
            int.from_bytes(record[:type_width], 'big') if type_width else 1
        )
        if ix >= len(numbers) or entry_type != 1:
            new_rows.append(row)
            continue
        key = str(numbers[ix])
        if key not in document.objects:
            new_rows.append(prefix + bytes(layout.record_width))
            continue
        try:
            offset_field = offsets[key].to_bytes(offset_width, 'big')
        except OverflowError:
            raise PdfWriteError(
                f"Offset {offsets[key]} of object {key} does not fit "
                f"in {offset_width} bytes"
            )
        new_rows.append(
            prefix + record[:type_width] + offset_field
            + record[type_width + offset_width:]
        )
    encoded = layout.predictor.encode(row_width, b''.join(new_rows))
    return layout.filters.encode(encoded)


def _numbered_keys(document: 'Document') -> List[str]:
    return [
        key for key, obj in document.objects.items()
        if not obj.address.is_marker
    ]


def _reissue_xref_object(document: 'Document', keys: List[str], key: str,
                         offsets: Dict[str, int]) -> 'DocumentObject':
    source = document.objects[key]
    stream = create_xref_stream(document, key, offsets)
    reissued = source.copy()
    reissued.padding_length = 0
    reissued.set_stream(stream)
    reissued.dictionary['Length'] = len(stream)
    position = keys.index(key)
    if 'Prev' in reissued.dictionary and position + 1 < len(keys):
        reissued.dictionary['Prev'] = offsets[keys[position + 1]]
    return reissued


def rebuild_xref_streams(document: 'Document'):
    """
    Rewrite every xref stream in the document's xref chain.

    Each xref stream that is followed by other numbered objects is given a
    fixed allotment of its previous length plus
    :const:`XREF_OBJECT_PADDING_LENGTH`, and the entries are computed
    against the layout in which every xref object occupies its allotment.
    If a rebuilt stream overflows its allotment, the allotment grows and
    the whole chain is rebuilt again, until the layout is stable.
    """
    keys = document.xref.keys
    numbered = _numbered_keys(document)
    last_numbered = numbered[-1] if numbered else None
    allotments = {
        key: (
            document.objects[key].length()
            - document.objects[key].padding_length
            + XREF_OBJECT_PADDING_LENGTH
        )
        for key in keys if key != last_numbered
    }

    rebuilt: Dict[str, 'DocumentObject'] = {}
    for _ in range(MAX_XREF_REBUILD_ROUNDS):
        offsets = plan_offsets(document, allotments)
        rebuilt = {
            key: _reissue_xref_object(document, keys, key, offsets)
            for key in keys
        }
        overflow = [
            key for key, allotment in allotments.items()
            if rebuilt[key].length() > allotment
        ]
        if not overflow:
            break
        logger.debug(f"Xref objects {overflow} outgrew their allotment.")
        for key in overflow:
            allotments[key] = (
                rebuilt[key].length() + XREF_OBJECT_PADDING_LENGTH
            )
    else:
        raise PdfWriteError("Rebuilding xref streams did not converge")

    for key in keys:
        reissued = rebuilt[key]
        if key in allotments:
            reissued.padding_length = allotments[key] - reissued.length()
        document.override_object(key, reissued)


def create_xref_table(document: 'Document', xref_key: str,
                      offsets: Optional[Dict[str, int]] = None) -> bytes:
    """
    Rebuild the body of an xref table (everything after the ``xref``
    keyword) with the current offsets of the objects it lists.

    In-use entries for objects that are no longer present are turned into
    free entries.
    """
    if offsets is None:
        offsets = _current_offsets(document)
    value = document.objects[xref_key].value
    if not isinstance(value, bytes):
        raise MalformedInputError(f"Object {xref_key} is not an xref table")
    tokens = value.split()
    lines = []
    i = 0
    try:
        while i < len(tokens):
            start, count = int(tokens[i]), int(tokens[i + 1])
            i += 2
            lines.append(b'%d %d' % (start, count))
            for idnum in range(start, start + count):
                offset = int(tokens[i])
                generation = int(tokens[i + 1])
                kind = tokens[i + 2]
                i += 3
                if kind == b'n':
                    key = str(idnum)
                    if key in document.objects:
                        offset = offsets[key]
                    else:
                        offset, generation, kind = 0, 0, b'f'
                lines.append(b'%010d %05d %s ' % (offset, generation, kind))
    except (IndexError, ValueError) as e:
        raise MalformedInputError(f"Malformed xref table {xref_key}") from e
    return b'\n'.join(lines)


def _relink_trailer(document: 'Document', trailer_key: str, entry: str,
                    target_key: str) -> bool:
    trailer = document.objects.get(trailer_key)
    target = document.objects.get(target_key)
    if trailer is None or target is None or trailer.dictionary is None:
        return False
    if trailer.dictionary.get(entry) == target.offset:
        return False
    reissued = trailer.copy()
    reissued.dictionary[entry] = target.offset
    document.override_object(trailer_key, reissued)
    return True


def _rebuild_hybrid_stream(document: 'Document', key: str) -> bool:
    source = document.objects.get(key)
    if source is None:
        return False
    stream = create_xref_stream(document, key)
    if stream == source.stream:
        return False
    reissued = source.copy()
    reissued.padding_length = 0
    reissued.set_stream(stream)
    reissued.dictionary['Length'] = len(stream)
    # hybrid streams never shrink
    reissued.padding_length = max(source.length() - reissued.length(), 0)
    document.override_object(key, reissued)
    return True


def rebuild_xref_tables(document: 'Document'):
    """
    Rewrite every xref table in the document until offsets are stable.

    The ``Prev`` and ``XRefStm`` entries of the trailers are pointed back
    at the sections they referred to when the document was read, so the
    first-page trailer of a linearized file (whose ``Prev`` points forward)
    is relinked like any other. Xref streams referenced through ``XRefStm``
    in hybrid-reference files are rebuilt along with the tables.
    """
    tables = [
        key for key, obj in document.objects.items()
        if obj.address.marker == 'xref'
    ]
    xref = document.xref
    links = [
        (trailer_key, 'Prev', target_key)
        for trailer_key, target_key in xref.prev_targets.items()
    ] + [
        (trailer_key, 'XRefStm', target_key)
        for trailer_key, target_key in xref.xref_stm_targets.items()
    ]
    hybrid_streams = sorted(set(xref.xref_stm_targets.values()))

    for _ in range(MAX_XREF_REBUILD_ROUNDS):
        changed = False
        for key in tables:
            source = document.objects[key]
            new_value = create_xref_table(document, key)
            if new_value != source.value:
                reissued = source.copy()
                reissued.set_value(new_value)
                document.override_object(key, reissued)
                changed = True
        for key in hybrid_streams:
            changed |= _rebuild_hybrid_stream(document, key)
        for trailer_key, entry, target_key in links:
            changed |= _relink_trailer(
                document, trailer_key, entry, target_key
            )
        if not changed:
            return
    raise PdfWriteError("Rebuilding xref tables did not converge")
