"""
End-to-end decryption of password-protected PDF documents.

Typical usage::

    from pdfdecrypter import decrypt

    with open('secret.pdf', 'rb') as inf:
        plain = decrypt(inf.read(), b'password')

The :class:`PdfDecrypter` class offers finer control, e.g. to check a
password without decrypting the document.
"""

import logging
import os
from typing import Optional, Union

from .pdf_utils.crypt import (
    AuthStatus,
    Decrypter,
    EncryptData,
    Password,
    PasswordType,
)
from .pdf_utils.document import (
    SUPERSEDED_KEY_SEPARATOR,
    Document,
    DocumentObject,
)
from .pdf_utils.generic import Dictionary, HexadecimalString, LiteralString
from .pdf_utils.misc import (
    AuthenticationFailedError,
    AuthenticationRequiredError,
    DecryptionUnavailableError,
    NoDocumentError,
)

__all__ = ['PdfDecrypter', 'decrypt', 'verify', 'DEFAULT_FILENAME']

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = 'document.pdf'

PasswordInput = Union[bytes, str]


def _password_bytes(password: PasswordInput, revision: int) -> bytes:
    if isinstance(password, bytes):
        return password
    if revision >= 5:
        return password.encode('utf-8')
    try:
        return password.encode('latin-1')
    except UnicodeEncodeError:
        return password.encode('utf-8')


def _base_key(key: str) -> str:
    return key.split(SUPERSEDED_KEY_SEPARATOR, 1)[0]


class PdfDecrypter:
    """
    Decrypt a single password-protected document.

    :param document:
        Raw PDF bytes.
    :param password:
        Candidate password. Strings are encoded as the document's security
        handler revision requires.
    :param filename:
        Display name of the document.
    """

    def __init__(self, document: Optional[bytes] = None,
                 password: Optional[PasswordInput] = None,
                 filename: str = DEFAULT_FILENAME):
        self._document: Optional[bytes] = None
        self._password: Optional[PasswordInput] = None
        self._source: Optional[Document] = None
        self._decrypted: Optional[bytes] = None
        self.filename = filename
        self.auth_status = AuthStatus.UNAUTHENTICATED
        if document is not None:
            self.set_document(document)
        if password is not None:
            self.set_password(password)

    def open_file(self, filename: str):
        """
        Read the document from a file. Errors opening the file are raised
        as the usual :class:`OSError` subclasses.
        """
        if not filename:
            raise ValueError("Given filename is empty")
        with open(filename, 'rb') as inf:
            self.set_document(inf.read())
        self.filename = os.path.basename(filename)

    def set_document(self, document: bytes):
        if not document:
            raise NoDocumentError("Given document is empty")
        self._document = document
        self._source = None
        self._decrypted = None

    def set_password(self, password: PasswordInput):
        self._password = password
        self.auth_status = AuthStatus.UNAUTHENTICATED
        self._decrypted = None

    @property
    def source(self) -> Document:
        if self._document is None:
            raise NoDocumentError()
        if self._source is None:
            self._source = Document(self._document)
        return self._source

    def _encrypt_data(self) -> EncryptData:
        encrypt_dictionary = self.source.find_encrypt_dictionary()
        if encrypt_dictionary is None:
            raise DecryptionUnavailableError("Document is not encrypted")
        filter_name = encrypt_dictionary.get('Filter', 'Standard')
        if filter_name != 'Standard':
            raise DecryptionUnavailableError(
                f"Document is encrypted with the {filter_name} security "
                f"handler, only the standard one is supported"
            )
        return EncryptData.from_dictionary(encrypt_dictionary)

    def _authenticate(self) -> Decrypter:
        if self._password is None:
            raise AuthenticationRequiredError("Password has not been set")
        encrypt_data = self._encrypt_data()
        password = Password(
            _password_bytes(self._password, encrypt_data.revision)
        )
        decrypter = Decrypter(encrypt_data, password)
        decrypter.verify_password()
        self.auth_status = decrypter.status
        return decrypter

    def verify_password(self, password: Optional[PasswordInput] = None) \
            -> bool:
        """
        Check the password without decrypting the document.

        :param password:
            Password to check. Defaults to the password set earlier.
        :return:
            ``True`` if the password is either the owner or the user password.
        """
        if password is not None:
            self.set_password(password)
        return self._authenticate().status != AuthStatus.FAILED

    @property
    def password_type(self) -> PasswordType:
        if self.auth_status == AuthStatus.OWNER:
            return PasswordType.OWNER
        elif self.auth_status == AuthStatus.USER:
            return PasswordType.USER
        return PasswordType.UNKNOWN

    def decrypt(self) -> bytes:
        """
        Decrypt the document.

        :return:
            The serialised, unencrypted document.
        :raises NoDocumentError:
            If no document was set.
        :raises AuthenticationRequiredError:
            If no password was set.
        :raises AuthenticationFailedError:
            If the password is incorrect.
        :raises DecryptionUnavailableError:
            If no usable key could be derived.
        """
        if self._decrypted is None:
            self._decrypted = self._decrypt_document()
        return self._decrypted

    def _decrypt_document(self) -> bytes:
        if self._document is None:
            raise NoDocumentError()
        decrypter = self._authenticate()
        if decrypter.status == AuthStatus.FAILED:
            raise AuthenticationFailedError()
        decrypter.password.verify()
        decrypter.prepare()

        source = self.source
        result = Document()
        result.add_header(source.header)
        result.add_xref_objects(source.xref)
        for key, obj in source.objects.items():
            if source.encrypt_object is not None \
                    and _base_key(key) == source.encrypt_object:
                continue
            result.add_object(
                self._decrypt_object(decrypter, source, key, obj), key
            )
        return result.create()

    def _decrypt_object(self, decrypter: Decrypter, source: Document,
                        key: str, obj: DocumentObject) -> DocumentObject:
        result = obj.copy()
        dictionary = result.dictionary
        if obj.address.is_marker or _is_xref_stream(dictionary):
            # structural data is never encrypted
            if dictionary is not None and not dictionary.is_array \
                    and 'Encrypt' in dictionary:
                del dictionary['Encrypt']
            return result
        if _base_key(key) == source.metadata_object \
                and not decrypter.encrypt_data.encrypt_metadata:
            return result

        address = (obj.address.idnum, obj.address.generation)
        if dictionary is not None:
            self._decrypt_dictionary(decrypter, dictionary, address)
            if result.stream is not None:
                plaintext = decrypter.decrypt(result.stream, address)
                if plaintext is None:
                    logger.warning(
                        f"Failed to decrypt stream of object {key}, "
                        f"keeping the original data."
                    )
                else:
                    result.set_stream(plaintext)
        elif isinstance(result.value, (LiteralString, HexadecimalString)):
            self._decrypt_string(decrypter, result.value, address)
        return result

    def _decrypt_dictionary(self, decrypter: Decrypter,
                            dictionary: Dictionary, address):
        for key, value in dictionary.items():
            if key == 'ID' and not dictionary.is_array:
                continue
            if isinstance(value, Dictionary):
                self._decrypt_dictionary(decrypter, value, address)
            elif isinstance(value, (LiteralString, HexadecimalString)):
                self._decrypt_string(decrypter, value, address)

    def _decrypt_string(self, decrypter: Decrypter,
                        value: Union[LiteralString, HexadecimalString],
                        address):
        plaintext = decrypter.decrypt(value.content, address)
        if plaintext is None:
            logger.warning(
                f"Failed to decrypt string in object {address[0]}, "
                f"keeping the original value."
            )
        else:
            value.set(plaintext)


def _is_xref_stream(dictionary: Optional[Dictionary]) -> bool:
    return (
        dictionary is not None
        and not dictionary.is_array
        and dictionary.get('Type') == 'XRef'
    )


def decrypt(document: bytes, password: PasswordInput) -> bytes:
    """
    Decrypt a password-protected document.

    :param document:
        Raw PDF bytes.
    :param password:
        The owner or user password.
    :return:
        The unencrypted document.
    """
    return PdfDecrypter(document, password).decrypt()


def verify(document: bytes, password: PasswordInput) -> bool:
    """
    Check whether a password opens a document.
    """
    return PdfDecrypter(document, password).verify_password()
