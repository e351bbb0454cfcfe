"""
Password authentication and decryption for the standard security handler,
revisions 2 through 6.
"""

import logging
import struct
from hashlib import md5, sha256, sha384, sha512
from typing import Optional, Tuple

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..misc import (
    AuthenticationRequiredError,
    DecryptionUnavailableError,
    UnsupportedFeatureError,
)
from ._util import (
    aes_cbc_decrypt,
    aes_cbc_encrypt,
    aes_decrypt_iv_prefixed,
    rc4_encrypt,
)
from .api import (
    AuthStatus,
    CryptFilterMethod,
    EncryptData,
    Password,
    PasswordType,
)

__all__ = [
    'PASSWORD_PADDING', 'pad_password', 'truncate_password', 'compute_hash',
    'Decrypter',
]

logger = logging.getLogger(__name__)

PASSWORD_PADDING = bytes.fromhex(
    '28BF4E5E4E758A4164004E56FFFA01082E2E00B6D0683E802F0CA9FE6453697A'
)

_EXPECTED_PERMS_8 = {
    0x54: True,  # 'T'
    0x46: False  # 'F'
}


def pad_password(password: bytes) -> bytes:
    return (password + PASSWORD_PADDING)[:32]


def truncate_password(padded: bytes) -> bytes:
    """
    Strip the standard padding from a padded password.
    """
    for i in range(len(padded) + 1):
        suffix = padded[i:]
        if suffix == PASSWORD_PADDING[:len(suffix)]:
            return padded[:i]
    return padded  # pragma: nocover


def _bytes_mod_3(input_bytes: bytes):
    # 256 is 1 mod 3, so we can just sum 'em
    return sum(b % 3 for b in input_bytes) % 3


def compute_hash(pw_bytes: bytes, salt: bytes,
                 u_entry: Optional[bytes] = None) -> bytes:
    """
    Algorithm 2.B in ISO 32000-2 § 7.6.4.3.4

    :param pw_bytes:
        The password.
    :param salt:
        The 8-byte validation or key salt.
    :param u_entry:
        The first 48 bytes of the ``U`` entry (owner password checks only).
    :return:
        The 32-byte hash.
    """
    initial_hash = sha256(pw_bytes)
    initial_hash.update(salt)
    if u_entry:
        initial_hash.update(u_entry)
    k = initial_hash.digest()
    hashes = (sha256, sha384, sha512)
    round_no = last_byte_val = 0
    while round_no < 64 or last_byte_val > round_no - 32:
        k1 = (pw_bytes + k + (u_entry or b'')) * 64
        e = aes_cbc_encrypt(key=k[:16], data=k1, iv=k[16:32])[1]
        # the first 16 bytes of e, interpreted as an unsigned integer mod 3
        next_hash = hashes[_bytes_mod_3(e[:16])]
        k = next_hash(e).digest()
        last_byte_val = e[len(e) - 1]
        round_no += 1
    return k[:32]


def _xor_key(key: bytes, value: int) -> bytes:
    return bytes(b ^ value for b in key)


class Decrypter:
    """
    Authentication and decryption state for one document.

    :param encrypt_data:
        The document's encryption dictionary.
    :param password:
        The candidate password.
    """

    def __init__(self, encrypt_data: EncryptData, password: Password):
        self.encrypt_data = encrypt_data
        self.password = password
        self.status = AuthStatus.UNAUTHENTICATED
        self.key: Optional[bytes] = None

    @property
    def crypt_filter_method(self) -> Optional[CryptFilterMethod]:
        return self.encrypt_data.crypt_filter_method

    @crypt_filter_method.setter
    def crypt_filter_method(self, method: CryptFilterMethod):
        self.encrypt_data.crypt_filter_method = method

    def verify_password(self) -> bool:
        """
        Check the password against the owner and user entries of the
        encryption dictionary, and classify it.

        The owner check takes precedence. On success, the password's type
        is set, and for revisions up to 4 the file key is retained.

        :return:
            ``True`` if the password matched either entry.
        :raises UnsupportedFeatureError:
            If the revision is not supported.
        """
        revision = self.encrypt_data.revision
        pw_bytes = self.password.content
        if 2 <= revision <= 4:
            status, key = self._authenticate_legacy(pw_bytes)
        elif revision >= 5:
            status, key = self._authenticate_aes256(pw_bytes), None
        else:
            raise UnsupportedFeatureError(
                f"Security handler revision {revision} is not supported."
            )
        self.status = status
        self.key = key
        if status == AuthStatus.FAILED:
            logger.debug("Password did not match the owner or user entry.")
            return False
        self.password.set_type(
            PasswordType.OWNER if status == AuthStatus.OWNER
            else PasswordType.USER
        )
        logger.debug(f"Password authenticated as {self.password.type.name}.")
        return True

    def compute_decryption_key(self, password: bytes,
                               is_owner: bool = False) -> bytes:
        """
        Algorithm 2 in ISO 32000-2 § 7.6.4.3.2 (file key from a user
        password), or steps (a) to (d) of algorithm 3 (RC4 key used to
        protect the ``O`` entry) if ``is_owner`` is set.
        """
        data = self.encrypt_data
        revision = data.revision
        md5_hash = md5(pad_password(password))
        if not is_owner:
            md5_hash.update(data.owner_value[:32])
            md5_hash.update(data.permissions_bytes)
            md5_hash.update(data.document_id)
            if revision >= 4 and not data.encrypt_metadata:
                md5_hash.update(b'\xff\xff\xff\xff')
        digest = md5_hash.digest()
        keylen = 5 if revision == 2 else data.key_length_bytes
        if revision >= 3:
            for _ in range(50):
                digest = md5(digest if is_owner else digest[:keylen]).digest()
        return digest[:keylen]

    def authenticate_owner_password(self, password: bytes) -> bool:
        """
        Algorithm 6 in ISO 32000-2 § 7.6.4.4.3, for revisions 3 and 4:
        check a password (supplied, or recovered from the ``O`` entry)
        against the first 16 bytes of the ``U`` entry.
        """
        data = self.encrypt_data
        key = self.compute_decryption_key(password)
        value = rc4_encrypt(
            key, md5(PASSWORD_PADDING + data.document_id).digest()
        )
        for i in range(1, 20):
            value = rc4_encrypt(_xor_key(key, i), value)
        return value[:16] == data.user_value[:16]

    def _check_user_password(self, password: bytes) -> Optional[bytes]:
        data = self.encrypt_data
        if data.revision == 2:
            key = self.compute_decryption_key(password)
            if rc4_encrypt(key, PASSWORD_PADDING) == data.user_value[:32]:
                return key
        elif self.authenticate_owner_password(password):
            return self.compute_decryption_key(password)
        return None

    def _authenticate_legacy(self, pw_bytes: bytes) \
            -> Tuple[AuthStatus, Optional[bytes]]:
        # check the owner password first
        owner_key = self.compute_decryption_key(pw_bytes, is_owner=True)
        value = self.encrypt_data.owner_value[:32]
        if self.encrypt_data.revision == 2:
            value = rc4_encrypt(owner_key, value)
        else:
            for i in range(19, -1, -1):
                value = rc4_encrypt(_xor_key(owner_key, i), value)
        key = self._check_user_password(truncate_password(value))
        if key is not None:
            return AuthStatus.OWNER, key

        # next, check the user password
        key = self._check_user_password(pw_bytes)
        if key is not None:
            return AuthStatus.USER, key
        return AuthStatus.FAILED, None

    def _hash_aes256(self, pw_bytes: bytes, salt: bytes,
                     u_entry: Optional[bytes] = None) -> bytes:
        if self.encrypt_data.revision == 5:
            return sha256(pw_bytes + salt + (u_entry or b'')).digest()
        return compute_hash(pw_bytes, salt, u_entry)

    def _authenticate_aes256(self, pw_bytes: bytes) -> AuthStatus:
        pw_bytes = pw_bytes[:127]
        o_entry = self.encrypt_data.owner_value[:48]
        u_entry = self.encrypt_data.user_value[:48]
        if self._hash_aes256(pw_bytes, o_entry[32:40], u_entry) \
                == o_entry[:32]:
            return AuthStatus.OWNER
        if self._hash_aes256(pw_bytes, u_entry[32:40]) == u_entry[:32]:
            return AuthStatus.USER
        return AuthStatus.FAILED

    def complete_encryption_key(self):
        """
        Recover the file key of a V5 handler by decrypting ``OE`` or ``UE``
        with a key derived from the (classified) password.
        """
        data = self.encrypt_data
        pw_bytes = self.password.content[:127]
        o_entry = data.owner_value[:48]
        u_entry = data.user_value[:48]
        if self.password.type == PasswordType.OWNER:
            interm_key = self._hash_aes256(pw_bytes, o_entry[40:48], u_entry)
            e_entry = data.owner_encryption_value
        else:
            interm_key = self._hash_aes256(pw_bytes, u_entry[40:48])
            e_entry = data.user_encryption_value
        if e_entry is None or len(e_entry) != 32:
            raise DecryptionUnavailableError(
                "/OE and /UE must be present and be 32 bytes long"
            )
        self.key = aes_cbc_decrypt(
            key=interm_key, data=e_entry, iv=bytes(16), use_padding=False
        )
        self._check_perms()

    def _check_perms(self):
        encrypted_perms = self.encrypt_data.encrypted_perms
        if encrypted_perms is None or len(encrypted_perms) != 16:
            return
        # one 16-byte block in ECB mode
        cipher = Cipher(algorithms.AES(self.key), modes.ECB())
        decryptor = cipher.decryptor()
        decrypted = decryptor.update(encrypted_perms) + decryptor.finalize()

        perms_ok = decrypted[9:12] == b'adb'
        perms_ok &= decrypted[:4] == self.encrypt_data.permissions_bytes
        try:
            perms_ok &= (
                _EXPECTED_PERMS_8[decrypted[8]]
                == self.encrypt_data.encrypt_metadata
            )
        except KeyError:
            perms_ok = False
        if not perms_ok:
            raise DecryptionUnavailableError(
                "File decryption key didn't decrypt permission flags "
                "correctly -- file permissions may have been tampered with."
            )

    def prepare(self):
        """
        Set up the decrypter for content decryption. Must be called after
        successful authentication, once the password has been verified.

        :raises AuthenticationRequiredError:
            If the password has not been verified and classified.
        :raises DecryptionUnavailableError:
            If no key could be established.
        """
        if self.status not in (AuthStatus.OWNER, AuthStatus.USER) \
                or not self.password.verified \
                or self.password.type == PasswordType.UNKNOWN:
            raise AuthenticationRequiredError()
        method = self.encrypt_data.normalise_crypt_filter_method()
        logger.debug(f"Crypt filter method: {method}")
        if self.encrypt_data.version == 5 and self.key is None:
            self.complete_encryption_key()
        if not self.key:
            raise DecryptionUnavailableError(
                "Unable to establish the file decryption key"
            )

    def compute_object_key(self, idnum: int, generation: int,
                           use_aes: bool) -> bytes:
        """
        Algorithm 1 in ISO 32000-2 § 7.6.3.3
        """
        md5_hash = md5(self.key)
        md5_hash.update(struct.pack('<I', idnum)[:3])
        md5_hash.update(struct.pack('<I', generation)[:2])
        if use_aes:
            md5_hash.update(b'sAlT')
        return md5_hash.digest()[:len(self.key) + 5][:16]

    def decrypt(self, ciphertext: bytes, address: Tuple[int, int]) \
            -> Optional[bytes]:
        """
        Decrypt a string or stream belonging to the object at ``address``.

        :param ciphertext:
            The encrypted data. AES-encrypted data starts with the IV.
        :param address:
            Object number and generation of the containing object.
        :return:
            The plaintext, or ``None`` if decryption failed.
        """
        if not self.key:
            raise DecryptionUnavailableError("Decrypter has not been prepared")
        key = self.key
        if self.encrypt_data.version <= 4:
            idnum, generation = address
            if self.crypt_filter_method is None:
                aes_key = self.compute_object_key(idnum, generation, True)
                plaintext = aes_decrypt_iv_prefixed(
                    aes_key, ciphertext, strict=True
                )
                if plaintext is not None:
                    logger.debug("Detected AESV2 encryption.")
                    self.crypt_filter_method = CryptFilterMethod.AESV2
                    return plaintext
                logger.debug("Detected RC4 encryption.")
                self.crypt_filter_method = CryptFilterMethod.V2
            key = self.compute_object_key(
                idnum, generation, self.crypt_filter_method.uses_aes
            )
        if self.crypt_filter_method == CryptFilterMethod.V2:
            return rc4_encrypt(key, ciphertext)
        return aes_decrypt_iv_prefixed(key, ciphertext)
