__version__ = '0.1.0'

from .decrypter import PdfDecrypter, decrypt, verify

__all__ = ['PdfDecrypter', 'decrypt', 'verify', '__version__']
