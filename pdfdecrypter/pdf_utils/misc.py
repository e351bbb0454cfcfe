"""
Utility functions for the PDF decryption library.

Generally, all of these constitute internal API, except for the exception
classes.
"""

import re
from typing import Callable, Optional, Tuple, Union

__all__ = [
    'PdfError', 'PdfReadError', 'PdfWriteError', 'MalformedInputError',
    'ObjectNotFoundError', 'UnsupportedFeatureError',
    'UnsupportedFilterError', 'UnsupportedPredictorError',
    'AuthenticationError', 'AuthenticationRequiredError',
    'AuthenticationFailedError', 'DecryptionUnavailableError',
    'NoDocumentError', 'Singleton', 'get_and_apply',
    'normalise_object_address', 'PDF_WHITESPACE', 'PDF_DELIMITERS',
]

PDF_WHITESPACE = b' \n\r\t\f\x00'
PDF_DELIMITERS = b'()<>[]{}/%'


class PdfError(Exception):

    def __init__(self, msg: str, *args):
        self.msg = msg
        super().__init__(msg, *args)


class PdfReadError(PdfError):
    pass


class MalformedInputError(PdfReadError):
    """
    Raised when PDF syntax does not meet the (minimal) structural requirements
    needed to locate and decrypt objects.
    """
    pass


class ObjectNotFoundError(PdfReadError):
    pass


class PdfWriteError(PdfError):
    pass


class UnsupportedFeatureError(PdfError):
    pass


class UnsupportedFilterError(UnsupportedFeatureError):
    pass


class UnsupportedPredictorError(UnsupportedFeatureError):
    pass


class AuthenticationError(PdfError):
    pass


class AuthenticationRequiredError(AuthenticationError):
    def __init__(self, msg: Optional[str] = None):
        super().__init__(
            msg=msg or "Password has not been set or verified"
        )


class AuthenticationFailedError(AuthenticationError):
    def __init__(self, msg: Optional[str] = None):
        super().__init__(msg=msg or "Given password is invalid")


class DecryptionUnavailableError(PdfError):
    pass


class NoDocumentError(PdfError):
    def __init__(self, msg: Optional[str] = None):
        super().__init__(msg=msg or "Document has not been set")


def get_and_apply(dictionary, key, function: Callable, *, default=None):
    try:
        value = dictionary[key]
    except KeyError:
        return default
    return function(value)


class Singleton(type):

    def __new__(mcs, name, bases, dct):
        cls = type.__new__(mcs, name, bases, dct)
        instance = type.__call__(cls)
        cls.__new__ = lambda _: instance
        return cls


ADDRESS_REGEX = re.compile(
    rb'^\s*(\d+)\s+(\d+)\s*(?:obj|R)?\s*$', re.IGNORECASE
)


def normalise_object_address(address: Union[str, bytes]) -> Tuple[int, int]:
    """
    Turn a textual object address into an (object number, generation) pair.

    Accepted forms are ``N G``, ``N G obj`` and ``N G R``, with arbitrary
    whitespace between the tokens.

    :param address:
        The address to normalise.
    :return:
        A tuple of ints.
    :raises MalformedInputError:
        If the address cannot be interpreted as an object reference.
    """
    if isinstance(address, str):
        address = address.encode('ascii', errors='replace')
    m = ADDRESS_REGEX.match(address)
    if m is None:
        raise MalformedInputError(
            f"Unable to normalise object address {address!r}"
        )
    return int(m.group(1)), int(m.group(2))
