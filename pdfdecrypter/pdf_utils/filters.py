"""
Implementation of stream filters for PDF.

Only ``/FlateDecode`` is supported. Additional filters can be plugged in
by registering a :class:`Decoder` in :const:`DECODERS`.
"""
import logging
import zlib
from typing import Iterable, List, Union

from .misc import PdfReadError, Singleton, UnsupportedFilterError

__all__ = [
    'Decoder',
    'FlateDecode',
    'FilterChain',
    'DECODERS',
    'get_generic_decoder',
]

logger = logging.getLogger(__name__)

decompress = zlib.decompress
compress = zlib.compress


class Decoder:
    """
    General filter/decoder interface.
    """

    def decode(self, data: bytes) -> bytes:
        """
        Decode a stream.

        :param data:
            Data to decode.
        :return:
            Decoded data.
        """
        raise NotImplementedError

    def encode(self, data: bytes) -> bytes:
        """
        Encode a stream.

        :param data:
            Data to encode.
        :return:
            Encoded data.
        """
        raise NotImplementedError


class FlateDecode(Decoder, metaclass=Singleton):
    """
    Implementation of the ``/FlateDecode`` filter (zlib-wrapped deflate).

    Predictors are handled separately, see
    :mod:`~pdfdecrypter.pdf_utils.predictors`.
    """

    def decode(self, data: bytes) -> bytes:
        try:
            return decompress(data)
        except zlib.error as e:
            raise PdfReadError(f"Failed to inflate stream data: {e}") from e

    def encode(self, data: bytes) -> bytes:
        return compress(data)


DECODERS = {
    'FlateDecode': FlateDecode,
    'Fl': FlateDecode,
}


def get_generic_decoder(name: str) -> Decoder:
    """
    Instantiate a specific stream filter decoder type by (PDF) name.

    :param name:
        Name of the filter, with or without the leading slash.
    :return:
        A :class:`Decoder` instance.
    :raises UnsupportedFilterError:
        If the filter is not in the registry.
    """
    name = str(name).lstrip('/')
    try:
        cls = DECODERS[name]
    except KeyError:
        raise UnsupportedFilterError(f"Filter '{name}' is not supported.")
    return cls()


class FilterChain(Decoder):
    """
    Composition of several filters, as declared in a stream's ``/Filter``
    entry. Decoding applies the filters in the declared order, encoding
    applies them in reverse.

    :param names:
        A single filter name, or an iterable of filter names.
    """

    def __init__(self, names: Union[str, Iterable[str], None]):
        if names is None:
            names = []
        elif isinstance(names, str):
            names = [names]
        self.decoders: List[Decoder] = [
            get_generic_decoder(name) for name in names
        ]

    def decode(self, data: bytes) -> bytes:
        for decoder in self.decoders:
            data = decoder.decode(data)
        return data

    def encode(self, data: bytes) -> bytes:
        for decoder in reversed(self.decoders):
            data = decoder.encode(data)
        return data

    def __len__(self):
        return len(self.decoders)
