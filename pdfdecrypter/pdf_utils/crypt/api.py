import enum
import logging
import struct
from typing import Optional, Union

from ..generic import BooleanObject, Dictionary, StringObject
from ..misc import MalformedInputError

__all__ = [
    'AuthStatus', 'PasswordType', 'Password', 'CryptFilterMethod',
    'EncryptData',
]

logger = logging.getLogger(__name__)


@enum.unique
class AuthStatus(enum.Enum):
    UNAUTHENTICATED = enum.auto()
    OWNER = enum.auto()
    USER = enum.auto()
    FAILED = enum.auto()


@enum.unique
class PasswordType(enum.IntEnum):
    UNKNOWN = 0
    OWNER = 1
    USER = 2


class Password(StringObject):
    """
    Candidate password for a document.

    The password starts out unverified and unclassified. The decrypter
    classifies it as an owner or user password when authentication
    succeeds, after which the caller marks it as verified.

    Empty passwords are allowed: documents that only restrict permissions
    typically have an empty user password.
    """

    allow_empty = True

    def __init__(self, content: Optional[bytes] = None):
        super().__init__(content)
        self.verified = False
        self.type = PasswordType.UNKNOWN

    def verify(self):
        self.verified = True

    def set_type(self, password_type: Union[PasswordType, int, str]):
        if isinstance(password_type, str):
            try:
                password_type = PasswordType[password_type.upper()]
            except KeyError:
                raise ValueError(
                    f"Unrecognised password type {password_type!r}"
                )
        else:
            password_type = PasswordType(password_type)
        if password_type == PasswordType.UNKNOWN:
            raise ValueError("Password type must be owner or user")
        self.type = password_type


@enum.unique
class CryptFilterMethod(enum.Enum):
    V2 = 'V2'
    AESV2 = 'AESV2'
    AESV3 = 'AESV3'

    @property
    def uses_aes(self) -> bool:
        return self != CryptFilterMethod.V2


def _string_bytes(value) -> Optional[bytes]:
    return value.content if isinstance(value, StringObject) else None


class EncryptData(Dictionary):
    """
    Encryption dictionary of a document, together with the first element
    of the document ID (stored under ``ID``).
    """

    def __init__(self, content: Optional[bytes] = None):
        super().__init__(content)
        self.crypt_filter_method: Optional[CryptFilterMethod] = None

    @classmethod
    def from_dictionary(cls, dictionary: Dictionary) -> 'EncryptData':
        if dictionary.is_array:
            raise MalformedInputError("Encryption dictionary expected")
        result = cls()
        result._data = dict(dictionary.copy().items())
        if 'O' not in result or 'U' not in result:
            raise MalformedInputError("/O and /U entries must be present")
        result['EncryptMetadata'] = BooleanObject(
            bool(result.get('EncryptMetadata', True))
        )
        return result

    @property
    def version(self) -> int:
        return int(self.get('V', 0))

    @property
    def revision(self) -> int:
        return int(self.get('R', 0))

    @property
    def key_length(self) -> int:
        """
        Key length in bits.
        """
        if self.version >= 5:
            return 256
        length = self.get('Length')
        if length is None:
            return 128 if self.version == 4 else 40
        return int(length)

    @property
    def key_length_bytes(self) -> int:
        return self.key_length // 8

    @property
    def owner_value(self) -> bytes:
        return _string_bytes(self['O'])

    @property
    def user_value(self) -> bytes:
        return _string_bytes(self['U'])

    @property
    def owner_encryption_value(self) -> Optional[bytes]:
        return _string_bytes(self.get('OE'))

    @property
    def user_encryption_value(self) -> Optional[bytes]:
        return _string_bytes(self.get('UE'))

    @property
    def encrypted_perms(self) -> Optional[bytes]:
        return _string_bytes(self.get('Perms'))

    @property
    def permissions(self) -> int:
        return int(self.get('P', -4))

    @property
    def permissions_bytes(self) -> bytes:
        return struct.pack('<I', self.permissions & 0xffffffff)

    @property
    def document_id(self) -> bytes:
        return _string_bytes(self.get('ID')) or b''

    @property
    def encrypt_metadata(self) -> bool:
        return bool(self.get('EncryptMetadata', True))

    def _declared_crypt_filter_method(self) -> Optional[str]:
        filters = self.get('CF')
        if not isinstance(filters, Dictionary) or filters.is_array:
            return None
        crypt_filter = filters.get(self.get('StmF', 'StdCF'))
        if not isinstance(crypt_filter, Dictionary) or crypt_filter.is_array:
            return None
        return crypt_filter.get('CFM')

    def normalise_crypt_filter_method(self) -> Optional[CryptFilterMethod]:
        """
        Determine the crypt filter method from the ``CF`` dictionary, or
        infer it when it is missing or invalid.

        :return:
            The method, or ``None`` if it has to be detected from the data.
        """
        if self.version < 4:
            # crypt filters were introduced with V4
            self.crypt_filter_method = CryptFilterMethod.V2
            return self.crypt_filter_method
        declared = self._declared_crypt_filter_method()
        if self.version >= 5:
            # the 32-byte file key is only ever used with AES-256
            if str(declared) != CryptFilterMethod.AESV3.value:
                logger.debug(
                    f"Ignoring crypt filter method {declared!r} for V5 "
                    f"encryption, using AES-256."
                )
            self.crypt_filter_method = CryptFilterMethod.AESV3
            return self.crypt_filter_method
        try:
            method = CryptFilterMethod(str(declared))
        except ValueError:
            if self.key_length == 40:
                method = CryptFilterMethod.V2
            elif self.version == 5 or self.key_length == 256:
                method = CryptFilterMethod.AESV3
            else:
                method = None
            logger.debug(
                f"No usable crypt filter method declared ({declared!r}), "
                f"using {method}."
            )
        self.crypt_filter_method = method
        return method
