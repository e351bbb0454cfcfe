from typing import Optional

from Crypto.Cipher import ARC4
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

AES_BLOCK_SIZE = 16


def aes_cbc_decrypt(key, data, iv, use_padding=True):
    cipher = Cipher(algorithms.AES(key), modes.CBC(iv))
    decryptor = cipher.decryptor()
    plaintext = decryptor.update(data) + decryptor.finalize()

    # we tolerate empty messages that don't have padding
    if use_padding and len(plaintext) > 0:
        unpadder = padding.PKCS7(128).unpadder()
        return unpadder.update(plaintext) + unpadder.finalize()
    else:
        return plaintext


def aes_cbc_encrypt(key, data, iv, use_padding=False):
    """
    Encrypt data with AES in CBC mode. Without PKCS#7 padding, data that
    is not block-aligned is padded with null bytes.
    """
    cipher = Cipher(algorithms.AES(key), modes.CBC(iv))
    encryptor = cipher.encryptor()
    if use_padding:
        padder = padding.PKCS7(128).padder()
        data = padder.update(data) + padder.finalize()
    elif len(data) % AES_BLOCK_SIZE:
        data += bytes(AES_BLOCK_SIZE - len(data) % AES_BLOCK_SIZE)
    return iv, encryptor.update(data) + encryptor.finalize()


def aes_decrypt_iv_prefixed(key, data, strict=False) -> Optional[bytes]:
    """
    Decrypt an AES-encrypted PDF value, stored as IV followed by the
    ciphertext.

    PKCS#7 padding is tried first. Unless ``strict`` is set, the raw
    plaintext is returned when the padding is invalid, since not all
    producers pad their data properly.

    :return:
        The plaintext, or ``None`` if the data cannot be decrypted.
    """
    iv, ciphertext = data[:AES_BLOCK_SIZE], data[AES_BLOCK_SIZE:]
    if not ciphertext or len(ciphertext) % AES_BLOCK_SIZE:
        return None
    try:
        return aes_cbc_decrypt(key, ciphertext, iv)
    except ValueError:
        if strict:
            return None
    return aes_cbc_decrypt(key, ciphertext, iv, use_padding=False)


def rc4_encrypt(key, data):
    """
    Apply RC4 to the data. Keys of 1 to 256 bytes are accepted; the
    operation is its own inverse.
    """
    return ARC4.new(key).encrypt(data)
