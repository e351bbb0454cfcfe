"""
Utilities for PDF decryption with the standard (password-based) security
handler. This module covers all revisions outlined in the standard:

* Legacy RC4-based encryption (revisions 2 and 3).
* AES-128 encryption with legacy key derivation (revision 4).
* AES-256 encryption, both the Adobe extension (revision 5) and the
  PDF 2.0 scheme (revision 6).

.. danger::
    The legacy encryption schemes are (very) weak, and they are only
    supported here to recover the contents of existing files.
"""

from .api import (
    AuthStatus,
    CryptFilterMethod,
    EncryptData,
    Password,
    PasswordType,
)
from .standard import PASSWORD_PADDING, Decrypter, compute_hash

__all__ = [
    'AuthStatus',
    'CryptFilterMethod',
    'EncryptData',
    'Password',
    'PasswordType',
    'Decrypter',
    'PASSWORD_PADDING',
    'compute_hash',
]
