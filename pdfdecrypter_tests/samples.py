"""
Encrypted sample documents, generated on the fly.

The security handlers in this module are deliberately written from scratch
(following ISO 32000-2 § 7.6.4), so that the decrypter is tested against an
independent implementation of the key derivation algorithms.
"""

import struct
import zlib
from hashlib import md5, sha256, sha384, sha512

from Crypto.Cipher import ARC4
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

USER_PASSWORD = 'user'
OWNER_PASSWORD = 'owner'
WRONG_PASSWORD = 'wrong'

PERMISSIONS = -3904
DOCUMENT_ID = bytes.fromhex('6b2d8f0e4c1a9b7d3e5f60718293a4b5')

CONTENT = b'BT /F1 24 Tf 72 712 Td (Hello, decrypted world) Tj ET'
TITLE = b'Encrypted sample'
PRODUCER = b'pdfdecrypter (test suite)'
SECRET = b'A top-level secret'
UPDATED_TITLE = b'Updated sample'
METADATA = b'<?xpacket begin="" id="W5M0MpCehiHzreSzNTczkc9d"?><x:xmpmeta/>'

PASSWORD_PADDING = bytes.fromhex(
    '28BF4E5E4E758A4164004E56FFFA01082E2E00B6D0683E802F0CA9FE6453697A'
)

HEADER = b'%PDF-1.7\n%\xe2\xe3\xcf\xd3\n'


def rc4(key: bytes, data: bytes) -> bytes:
    return ARC4.new(key).encrypt(data)


def aes_cbc(key: bytes, iv: bytes, data: bytes, pad=True) -> bytes:
    if pad:
        padder = padding.PKCS7(128).padder()
        data = padder.update(data) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def aes_ecb(key: bytes, data: bytes) -> bytes:
    encryptor = Cipher(algorithms.AES(key), modes.ECB()).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def _pad(password: str) -> bytes:
    return (password.encode('latin-1') + PASSWORD_PADDING)[:32]


def _xor(key: bytes, value: int) -> bytes:
    return bytes(b ^ value for b in key)


def _iv_for(idnum: int, data: bytes) -> bytes:
    # deterministic IVs keep the samples reproducible
    return md5(b'iv %d ' % idnum + data).digest()


def _hex(data: bytes) -> bytes:
    return b'<' + data.hex().upper().encode('ascii') + b'>'


class LegacyHandler:
    """
    Standard security handler, revisions 2 to 4.
    """

    def __init__(self, revision: int, key_length: int = 128,
                 use_aes: bool = False, encrypt_metadata: bool = True,
                 declare_crypt_filter: bool = True):
        self.revision = revision
        self.key_length = 40 if revision == 2 else key_length
        self.use_aes = use_aes
        self.encrypt_metadata = encrypt_metadata
        self.declare_crypt_filter = declare_crypt_filter
        n = self.key_length // 8
        user = _pad(USER_PASSWORD)

        digest = md5(_pad(OWNER_PASSWORD)).digest()
        if revision >= 3:
            for _ in range(50):
                digest = md5(digest).digest()
        owner_key = digest[:n]
        o_entry = rc4(owner_key, user)
        if revision >= 3:
            for i in range(1, 20):
                o_entry = rc4(_xor(owner_key, i), o_entry)
        self.o_entry = o_entry

        key_hash = md5(
            user + o_entry + struct.pack('<i', PERMISSIONS) + DOCUMENT_ID
        )
        if revision >= 4 and not encrypt_metadata:
            key_hash.update(b'\xff\xff\xff\xff')
        digest = key_hash.digest()
        if revision >= 3:
            for _ in range(50):
                digest = md5(digest[:n]).digest()
        self.key = digest[:n]

        if revision == 2:
            self.u_entry = rc4(self.key, PASSWORD_PADDING)
        else:
            u_entry = rc4(self.key, md5(PASSWORD_PADDING + DOCUMENT_ID).digest())
            for i in range(1, 20):
                u_entry = rc4(_xor(self.key, i), u_entry)
            self.u_entry = u_entry + bytes(16)

    def encrypt_dictionary(self) -> bytes:
        version = {2: 1, 3: 2, 4: 4}[self.revision]
        entries = [
            b'/Filter /Standard /V %d /R %d /P %d' % (
                version, self.revision, PERMISSIONS
            )
        ]
        if self.revision >= 3:
            entries.append(b'/Length %d' % self.key_length)
        if self.revision >= 4 and self.declare_crypt_filter:
            method = b'/AESV2' if self.use_aes else b'/V2'
            entries.append(
                b'/CF << /StdCF << /AuthEvent /DocOpen /CFM ' + method
                + b' /Length 16 >> >> /StmF /StdCF /StrF /StdCF'
            )
        if not self.encrypt_metadata:
            entries.append(b'/EncryptMetadata false')
        entries.append(b'/O ' + _hex(self.o_entry))
        entries.append(b'/U ' + _hex(self.u_entry))
        return b'<< ' + b' '.join(entries) + b' >>'

    def object_key(self, idnum: int, generation: int = 0) -> bytes:
        key_hash = md5(self.key)
        key_hash.update(struct.pack('<I', idnum)[:3])
        key_hash.update(struct.pack('<I', generation)[:2])
        if self.use_aes:
            key_hash.update(b'sAlT')
        return key_hash.digest()[:min(len(self.key) + 5, 16)]

    def encrypt(self, idnum: int, data: bytes) -> bytes:
        key = self.object_key(idnum)
        if self.use_aes:
            iv = _iv_for(idnum, data)
            return iv + aes_cbc(key, iv, data)
        return rc4(key, data)


def r6_hash(password: bytes, salt: bytes, u_entry: bytes = b'') -> bytes:
    """
    Algorithm 2.B of ISO 32000-2.
    """
    k = sha256(password + salt + u_entry).digest()
    rounds = 0
    while True:
        k1 = (password + k + u_entry) * 64
        e = aes_cbc(k[:16], k[16:32], k1, pad=False)
        hash_fn = (sha256, sha384, sha512)[int.from_bytes(e[:16], 'big') % 3]
        k = hash_fn(e).digest()
        rounds += 1
        if rounds >= 64 and e[-1] <= rounds - 32:
            return k[:32]


class AES256Handler:
    """
    Standard security handler, revision 6 (AES-256).
    """

    revision = 6
    use_aes = True

    def __init__(self, encrypt_metadata: bool = True,
                 perms_permissions: int = PERMISSIONS):
        self.encrypt_metadata = encrypt_metadata
        self.key = sha256(b'pdfdecrypter file key').digest()
        user = USER_PASSWORD.encode('utf-8')
        owner = OWNER_PASSWORD.encode('utf-8')
        u_validation_salt, u_key_salt = b'uvsalt01', b'uksalt01'
        o_validation_salt, o_key_salt = b'ovsalt01', b'oksalt01'

        self.u_entry = (
            r6_hash(user, u_validation_salt) + u_validation_salt + u_key_salt
        )
        self.ue_entry = aes_cbc(
            r6_hash(user, u_key_salt), bytes(16), self.key, pad=False
        )
        self.o_entry = (
            r6_hash(owner, o_validation_salt, self.u_entry)
            + o_validation_salt + o_key_salt
        )
        self.oe_entry = aes_cbc(
            r6_hash(owner, o_key_salt, self.u_entry), bytes(16), self.key,
            pad=False
        )
        perms = (
            struct.pack('<i', perms_permissions) + b'\xff\xff\xff\xff'
            + (b'T' if encrypt_metadata else b'F') + b'adb' + b'\x00' * 4
        )
        self.perms = aes_ecb(self.key, perms)

    def encrypt_dictionary(self) -> bytes:
        entries = [
            b'/Filter /Standard /V 5 /R 6 /Length 256 /P %d' % PERMISSIONS,
            b'/CF << /StdCF << /AuthEvent /DocOpen /CFM /AESV3 /Length 32 >> '
            b'>> /StmF /StdCF /StrF /StdCF',
            b'/O ' + _hex(self.o_entry),
            b'/U ' + _hex(self.u_entry),
            b'/OE ' + _hex(self.oe_entry),
            b'/UE ' + _hex(self.ue_entry),
            b'/Perms ' + _hex(self.perms),
        ]
        if not self.encrypt_metadata:
            entries.append(b'/EncryptMetadata false')
        return b'<< ' + b' '.join(entries) + b' >>'

    def encrypt(self, idnum: int, data: bytes) -> bytes:
        iv = _iv_for(idnum, data)
        return iv + aes_cbc(self.key, iv, data)


class _Writer:

    def __init__(self):
        self.buffer = bytearray(HEADER)
        self.offsets = {}

    def write_object(self, idnum: int, body: bytes):
        self.offsets[idnum] = len(self.buffer)
        self.buffer += b'%d 0 obj\n' % idnum + body + b'\nendobj\n'

    def write_startxref(self, offset: int):
        self.buffer += b'startxref\n%d\n' % offset
        self.buffer += b'%%EOF\n'

    def write_xref_table(self, numbers, trailer: bytes, startxref=None) -> int:
        xref_offset = len(self.buffer)
        lines = [b'xref']
        runs = []
        for idnum in sorted(numbers):
            if runs and runs[-1][-1] == idnum - 1:
                runs[-1].append(idnum)
            else:
                runs.append([idnum])
        for run in runs:
            lines.append(b'%d %d' % (run[0], len(run)))
            for idnum in run:
                if idnum == 0:
                    lines.append(b'0000000000 65535 f ')
                else:
                    lines.append(b'%010d 00000 n ' % self.offsets[idnum])
        self.buffer += b'\n'.join(lines) + b'\ntrailer\n' + trailer + b'\n'
        self.write_startxref(xref_offset if startxref is None else startxref)
        return xref_offset

    def write_first_page_xref(self, idnum: int, trailer: bytes):
        """
        Write the first-page xref section of a linearized file. The trailer
        gets a fixed-width /Prev entry, to be filled in with
        :meth:`patch_number` once the main xref table is written.
        """
        xref_offset = len(self.buffer)
        self.buffer += b'xref\n%d 1\n%010d 00000 n \ntrailer\n' % (
            idnum, self.offsets[idnum]
        )
        self.buffer += trailer + b' /Prev '
        prev_slot = len(self.buffer)
        self.buffer += b'0000000000 >>\n'
        self.write_startxref(0)
        return xref_offset, prev_slot

    def patch_number(self, slot: int, value: int):
        self.buffer[slot:slot + 10] = b'%010d' % value

    def write_xref_stream(self, idnum: int, size: int, entries: bytes,
                          startxref=True) -> int:
        xref_offset = len(self.buffer)
        self.offsets[idnum] = xref_offset
        rows = []
        for number in range(size):
            if number in self.offsets:
                rows.append(
                    b'\x01' + self.offsets[number].to_bytes(4, 'big')
                    + b'\x00\x00'
                )
            else:
                rows.append(b'\x00\x00\x00\x00\x00\xff\xff')
        data = zlib.compress(png_up_encode(rows))
        self.write_object(
            idnum,
            b'<< /Type /XRef /Size %d /W [1 4 2] /Filter /FlateDecode '
            b'/DecodeParms << /Columns 7 /Predictor 12 >> /Length %d '
            % (size, len(data))
            + entries + b' >>\nstream\n' + data + b'\nendstream'
        )
        if startxref:
            self.write_startxref(xref_offset)
        return xref_offset


def png_up_encode(rows) -> bytes:
    previous = bytes(len(rows[0]))
    result = bytearray()
    for row in rows:
        result.append(2)
        result += bytes((c - p) % 256 for c, p in zip(row, previous))
        previous = row
    return bytes(result)


def _stream(entries: bytes, data: bytes) -> bytes:
    return (
        b'<< ' + entries + (b' /Length %d >>\nstream\n' % len(data))
        + data + b'\nendstream'
    )


def build_document(handler, xref_stream=False, linearized=False,
                   incremental=False, metadata=False, first_page_xref=False,
                   hybrid=False) -> bytes:
    """
    Produce an encrypted single-page document.

    Object 4 is the page content stream (:const:`CONTENT`), object 5 the
    document information dictionary, object 6 the encryption dictionary and
    object 7 a top-level string (:const:`SECRET`). With ``metadata``, the
    catalog refers to an XMP stream in object 8.

    With ``first_page_xref``, a linearized file gets a first-page xref
    section whose trailer points forward to the main xref table, and the
    final ``startxref`` points to the first-page section. With ``hybrid``,
    the main trailer refers to an xref stream through ``/XRefStm``.
    """
    writer = _Writer()
    objects = {
        1: b'<< /Type /Catalog /Pages 2 0 R'
           + (b' /Metadata 8 0 R' if metadata else b'') + b' >>',
        2: b'<< /Type /Pages /Kids [3 0 R] /Count 1 >>',
        3: b'<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] '
           b'/Contents 4 0 R >>',
        4: _stream(b'', handler.encrypt(4, CONTENT)),
        5: b'<< /Title ' + _hex(handler.encrypt(5, TITLE))
           + b' /Producer ' + _hex(handler.encrypt(5, PRODUCER)) + b' >>',
        6: handler.encrypt_dictionary(),
        7: _hex(handler.encrypt(7, SECRET)),
    }
    if metadata:
        xmp = METADATA
        if handler.encrypt_metadata:
            xmp = handler.encrypt(8, METADATA)
        objects[8] = _stream(b'/Type /Metadata /Subtype /XML', xmp)
    size = max(objects) + 1
    trailer_entries = (
        b'/Root 1 0 R /Info 5 0 R /Encrypt 6 0 R /ID ['
        + _hex(DOCUMENT_ID) + b' ' + _hex(DOCUMENT_ID) + b']'
    )
    first_page = None
    if linearized:
        writer.write_object(
            size, b'<< /Linearized 1 /L 1000 /H [0 0] /O 3 /E 0 /N 1 /T 0 >>'
        )
        size += 1
        if first_page_xref:
            first_page = writer.write_first_page_xref(
                size - 1, b'<< /Size %d ' % size + trailer_entries
            )
    for idnum, body in objects.items():
        writer.write_object(idnum, body)

    if xref_stream:
        writer.write_xref_stream(size, size + 1, trailer_entries)
        return bytes(writer.buffer)
    if hybrid:
        xref_stm = writer.write_xref_stream(
            size, size + 1, b'', startxref=False
        )
        size += 1
        trailer_entries += b' /XRefStm %d' % xref_stm

    first_xref = writer.write_xref_table(
        range(size), b'<< /Size %d ' % size + trailer_entries + b' >>',
        startxref=None if first_page is None else first_page[0]
    )
    if first_page is not None:
        writer.patch_number(first_page[1], first_xref)
    if incremental:
        writer.write_object(
            5, b'<< /Title ' + _hex(handler.encrypt(5, UPDATED_TITLE)) + b' >>'
        )
        writer.write_xref_table(
            [0, 5],
            b'<< /Size %d ' % size + trailer_entries
            + b' /Prev %d >>' % first_xref
        )
    return bytes(writer.buffer)


def handler_for(name: str):
    if name == 'rc4-40':
        return LegacyHandler(2)
    elif name == 'rc4-128':
        return LegacyHandler(3)
    elif name == 'aes-128':
        return LegacyHandler(4, use_aes=True)
    elif name == 'aes-256':
        return AES256Handler()
    raise ValueError(name)


HANDLER_NAMES = ('rc4-40', 'rc4-128', 'aes-128', 'aes-256')

RC4_40 = build_document(handler_for('rc4-40'))
RC4_128 = build_document(handler_for('rc4-128'))
AES_128 = build_document(handler_for('aes-128'))
AES_256 = build_document(handler_for('aes-256'))
AES_256_XREF = build_document(handler_for('aes-256'), xref_stream=True)
RC4_128_XREF = build_document(handler_for('rc4-128'), xref_stream=True)
RC4_128_LINEARIZED = build_document(handler_for('rc4-128'), linearized=True)
RC4_128_FIRST_PAGE_XREF = build_document(
    handler_for('rc4-128'), linearized=True, first_page_xref=True
)
AES_128_HYBRID = build_document(handler_for('aes-128'), hybrid=True)
AES_128_INCREMENTAL = build_document(handler_for('aes-128'), incremental=True)

PLAIN = (
    HEADER
    + b'1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n'
    + b'2 0 obj\n<< /Type /Pages /Kids [] /Count 0 >>\nendobj\n'
    + b'xref\n0 3\n0000000000 65535 f \n0000000015 00000 n \n'
    + b'0000000064 00000 n \ntrailer\n<< /Size 3 /Root 1 0 R >>\n'
    + b'startxref\n116\n%%EOF\n'
)
