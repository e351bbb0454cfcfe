"""
Row predictors, as used with ``/DecodeParms`` on cross-reference streams.

Rows are handled with their PNG tag byte in place: for PNG predictors,
the row width is the declared number of columns plus one.
"""

from .misc import Singleton, UnsupportedPredictorError

__all__ = [
    'Predictor', 'NoPrediction', 'PNGUpPredictor', 'PREDICTORS',
    'get_predictor', 'PNG_UP_TAG',
]

PNG_UP_TAG = 2


class Predictor:
    """
    General row predictor interface.
    """

    has_tag_byte = False
    """
    Whether each row starts with a tag byte describing its filter type.
    """

    def row_width(self, columns: int) -> int:
        return columns + 1 if self.has_tag_byte else columns

    def decode(self, row_width: int, data: bytes) -> bytes:
        raise NotImplementedError

    def encode(self, row_width: int, data: bytes) -> bytes:
        raise NotImplementedError


class NoPrediction(Predictor, metaclass=Singleton):

    def decode(self, row_width: int, data: bytes) -> bytes:
        return data

    def encode(self, row_width: int, data: bytes) -> bytes:
        return data


class PNGUpPredictor(Predictor, metaclass=Singleton):
    """
    PNG "Up" prediction: every byte is stored as the difference with the
    byte in the same column one row above.
    """

    has_tag_byte = True

    def decode(self, row_width: int, data: bytes) -> bytes:
        result = bytearray(data)
        for i in range(row_width, len(result)):
            if i % row_width:
                result[i] = (result[i] + result[i - row_width]) % 256
        return bytes(result)

    def encode(self, row_width: int, data: bytes) -> bytes:
        result = bytearray(data[:row_width])
        for i in range(row_width, len(data)):
            if i % row_width:
                result.append((data[i] - data[i - row_width]) % 256)
            else:
                result.append(PNG_UP_TAG)
        return bytes(result)


PREDICTORS = {
    1: NoPrediction,
    12: PNGUpPredictor,
}


def get_predictor(code) -> Predictor:
    """
    Look up a predictor by its numeric ``/Predictor`` code.

    :raises UnsupportedPredictorError:
        If the code is not in the registry.
    """
    try:
        cls = PREDICTORS[int(code)]
    except (KeyError, TypeError, ValueError):
        raise UnsupportedPredictorError(
            f"Predictor '{code}' is not supported."
        )
    return cls()
