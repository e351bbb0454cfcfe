"""
The PDF core of the decrypter: object model, document structure, stream
filters and the standard security handler.
"""
