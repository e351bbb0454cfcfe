import zlib

import pytest

from pdfdecrypter.pdf_utils import filters, predictors
from pdfdecrypter.pdf_utils.misc import (
    PdfReadError,
    UnsupportedFilterError,
    UnsupportedPredictorError,
)


def test_flate_decode():
    data = b'0 1 obj\n' * 20
    assert filters.FlateDecode().decode(zlib.compress(data)) == data


def test_flate_singleton():
    assert filters.FlateDecode() is filters.FlateDecode()


def test_flate_garbage():
    with pytest.raises(PdfReadError, match='inflate'):
        filters.FlateDecode().decode(b'not deflated at all')


@pytest.mark.parametrize('name', ['FlateDecode', '/FlateDecode', 'Fl'])
def test_get_generic_decoder(name):
    assert isinstance(filters.get_generic_decoder(name), filters.FlateDecode)


def test_unsupported_filter():
    with pytest.raises(UnsupportedFilterError, match='LZWDecode'):
        filters.get_generic_decoder('LZWDecode')


def test_filter_chain_order():
    data = b'abcdefgh' * 10
    chain = filters.FilterChain(['FlateDecode', 'FlateDecode'])
    assert len(chain) == 2
    encoded = chain.encode(data)
    assert zlib.decompress(zlib.decompress(encoded)) == data
    assert chain.decode(encoded) == data


@pytest.mark.parametrize('names', [None, []])
def test_empty_filter_chain(names):
    chain = filters.FilterChain(names)
    assert len(chain) == 0
    assert chain.decode(b'xyz') == b'xyz'


def test_single_name_chain():
    chain = filters.FilterChain('FlateDecode')
    assert len(chain) == 1


def test_png_up_decode():
    # two rows of width 3 (tag + 2 columns)
    encoded = bytes([2, 1, 2, 2, 1, 1])
    decoded = predictors.PNGUpPredictor().decode(3, encoded)
    assert decoded == bytes([2, 1, 2, 2, 2, 3])


def test_png_up_encode():
    rows = bytes([0, 1, 200, 0, 3, 100])
    encoded = predictors.PNGUpPredictor().encode(3, rows)
    assert encoded == bytes([0, 1, 200, 2, 2, 156])
    assert predictors.PNGUpPredictor().decode(3, encoded)[3:] \
        == bytes([2, 3, 100])


@pytest.mark.parametrize('columns', [1, 3, 7, 20])
@pytest.mark.parametrize('row_count', [1, 2, 5, 40])
def test_png_up_round_trip(columns, row_count):
    predictor = predictors.PNGUpPredictor()
    row_width = predictor.row_width(columns)
    rows = b''.join(
        bytes([predictors.PNG_UP_TAG])
        + bytes((31 * row + 17 * col + row * col) % 256
                for col in range(columns))
        for row in range(row_count)
    )
    encoded = predictor.encode(row_width, rows)
    assert len(encoded) == len(rows)
    assert predictor.decode(row_width, encoded) == rows
    assert predictor.encode(row_width, predictor.decode(row_width, encoded)) \
        == encoded


def test_row_width():
    assert predictors.PNGUpPredictor().row_width(7) == 8
    assert predictors.NoPrediction().row_width(7) == 7


def test_get_predictor():
    assert isinstance(predictors.get_predictor(12), predictors.PNGUpPredictor)
    assert isinstance(predictors.get_predictor(1), predictors.NoPrediction)


@pytest.mark.parametrize('code', [2, 10, 15, 'bogus'])
def test_unsupported_predictor(code):
    with pytest.raises(UnsupportedPredictorError):
        predictors.get_predictor(code)
