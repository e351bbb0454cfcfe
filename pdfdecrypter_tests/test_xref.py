import pytest

from pdfdecrypter.pdf_utils.document import Document
from pdfdecrypter.pdf_utils.generic import Dictionary
from pdfdecrypter.pdf_utils.misc import MalformedInputError, PdfWriteError
from pdfdecrypter.pdf_utils.predictors import NoPrediction, PNGUpPredictor
from pdfdecrypter.pdf_utils.xref import (
    XREF_OBJECT_PADDING_LENGTH,
    XRefStreamLayout,
    create_xref_stream,
    plan_offsets,
)
from pdfdecrypter_tests import samples


def xref_stream_entries(doc: Document, key: str):
    obj = doc.objects[key]
    layout = XRefStreamLayout.from_dictionary(obj.dictionary)
    data = layout.predictor.decode(
        layout.row_width, layout.filters.decode(obj.stream)
    )
    rows = [
        data[i:i + layout.row_width]
        for i in range(0, len(data), layout.row_width)
    ]
    type_width, offset_width, _ = layout.widths
    entries = {}
    for idnum, row in zip(layout.object_numbers(), rows):
        record = row[layout.tag_length:]
        entries[idnum] = (
            int.from_bytes(record[:type_width], 'big'),
            int.from_bytes(record[type_width:type_width + offset_width], 'big'),
        )
    return entries


def assert_xref_stream_consistent(data: bytes):
    doc = Document(data)
    for key in doc.xref.keys:
        for idnum, (entry_type, offset) in \
                xref_stream_entries(doc, key).items():
            if entry_type == 1:
                assert data[offset:].startswith(b'%d 0 obj' % idnum)
    return doc


def test_layout_from_dictionary():
    layout = XRefStreamLayout.from_dictionary(Dictionary(
        b'<< /Type /XRef /W [1 4 2] /Index [0 3 10 2] /Filter /FlateDecode '
        b'/DecodeParms << /Columns 7 /Predictor 12 >> >>'
    ))
    assert layout.widths == (1, 4, 2)
    assert layout.sections == ((0, 3), (10, 2))
    assert list(layout.object_numbers()) == [0, 1, 2, 10, 11]
    assert layout.record_width == 7
    assert layout.row_width == 8
    assert layout.tag_length == 1
    assert isinstance(layout.predictor, PNGUpPredictor)
    assert len(layout.filters) == 1


def test_layout_defaults():
    layout = XRefStreamLayout.from_dictionary(
        Dictionary(b'<< /W [0 2 1] /Size 4 >>')
    )
    assert layout.sections == ((0, 4),)
    assert isinstance(layout.predictor, NoPrediction)
    assert layout.row_width == 3
    assert layout.tag_length == 0
    assert len(layout.filters) == 0


def test_layout_decode_parms_array():
    layout = XRefStreamLayout.from_dictionary(Dictionary(
        b'<< /W [1 2 1] /Size 2 /Filter [/FlateDecode] '
        b'/DecodeParms [<< /Columns 4 /Predictor 12 >>] >>'
    ))
    assert layout.row_width == 5


@pytest.mark.parametrize('dictionary', [
    b'<< /Size 3 >>',
    b'<< /W [1 2] /Size 3 >>',
    b'<< /W [1 2 1] /Index [0 3 5] >>',
    b'<< /W [1 2 1] /Size 3 /DecodeParms << /Columns 5 /Predictor 12 >> >>',
])
def test_layout_malformed(dictionary):
    with pytest.raises(MalformedInputError):
        XRefStreamLayout.from_dictionary(Dictionary(dictionary))


def test_plan_offsets():
    doc = Document(samples.RC4_128)
    current = plan_offsets(doc)
    assert current['1'] == doc.objects['1'].offset
    planned = plan_offsets(doc, {'1': doc.objects['1'].length() + 100})
    assert planned['1'] == current['1']
    assert planned['2'] == current['2'] + 100
    assert planned['startxref'] == current['startxref'] + 100


def test_rebuild_xref_stream_document():
    doc = Document(samples.AES_256_XREF)
    result = doc.create()
    reparsed = assert_xref_stream_consistent(result)
    assert reparsed.xref.keys == ['8']
    assert reparsed.objects['8'].dictionary['Length'] \
        == len(reparsed.objects['8'].stream)


def test_removed_object_is_zero_filled():
    doc = Document(samples.RC4_128_XREF)
    del doc.objects['6']
    result = doc.create()
    reparsed = assert_xref_stream_consistent(result)
    entries = xref_stream_entries(reparsed, '8')
    assert entries[6] == (0, 0)
    assert entries[0][0] == 0


def test_xref_stream_padding_when_followed_by_objects():
    data = samples.RC4_128_XREF + b'9 0 obj\n(late)\nendobj\n'
    doc = Document(data)
    assert list(doc.objects)[-1] == '9'
    result = doc.create()
    reparsed = assert_xref_stream_consistent(result)
    xref_offset = reparsed.objects['8'].offset
    after_xref = result[xref_offset:].split(b'endobj', 1)[1]
    padding = len(after_xref) - len(after_xref.lstrip(b' '))
    assert 0 < padding < 2 * XREF_OBJECT_PADDING_LENGTH
    assert result[reparsed.objects['9'].offset:].startswith(b'9 0 obj')


def test_offset_overflow():
    doc = Document(samples.RC4_128_XREF)
    offsets = {key: obj.offset for key, obj in doc.objects.items()}
    offsets['1'] = 2 ** 32
    with pytest.raises(PdfWriteError, match='does not fit'):
        create_xref_stream(doc, '8', offsets)


def test_not_an_xref_stream():
    doc = Document(samples.RC4_128)
    with pytest.raises(MalformedInputError):
        create_xref_stream(doc, '1')


def test_removed_object_becomes_free_in_table():
    doc = Document(samples.RC4_128)
    del doc.objects['6']
    result = doc.create()
    reparsed = Document(result)
    lines = reparsed.objects['xref'].value.split(b'\n')
    assert lines[7].split() == [b'0000000000', b'00000', b'f']
    assert result[int(lines[5].split()[0]):].startswith(b'4 0 obj')


def test_incremental_tables_are_relinked():
    doc = Document(samples.AES_128_INCREMENTAL)
    result = doc.create()
    reparsed = Document(result)
    old_table = reparsed.objects['xref~1'].offset
    new_table = reparsed.objects['xref'].offset
    assert reparsed.objects['trailer'].dictionary['Prev'] == old_table
    assert 'Prev' not in reparsed.objects['trailer~1'].dictionary
    assert int(bytes(reparsed.objects['startxref~1'].value)) == old_table
    assert int(bytes(reparsed.objects['startxref'].value)) == new_table
    new_lines = reparsed.objects['xref'].value.split(b'\n')
    assert new_lines[2] == b'5 1'
    assert result[int(new_lines[3].split()[0]):].startswith(b'5 0 obj')
