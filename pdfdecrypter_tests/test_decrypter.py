import logging

import pytest

import pdfdecrypter
from pdfdecrypter.decrypter import DEFAULT_FILENAME, PdfDecrypter
from pdfdecrypter.pdf_utils.crypt import AuthStatus, PasswordType
from pdfdecrypter.pdf_utils.document import Document
from pdfdecrypter.pdf_utils.misc import (
    AuthenticationFailedError,
    AuthenticationRequiredError,
    DecryptionUnavailableError,
    NoDocumentError,
)
from pdfdecrypter_tests import samples
from pdfdecrypter_tests.test_xref import (
    assert_xref_stream_consistent,
    xref_stream_entries,
)


def assert_table_consistent(data: bytes):
    doc = Document(data)
    for key in doc.xref.keys:
        lines = doc.objects[key].value.split(b'\n')
        i = 0
        while i < len(lines):
            start, count = (int(x) for x in lines[i].split())
            for idnum, line in zip(range(start, start + count),
                                   lines[i + 1:i + 1 + count]):
                offset, _, kind = line.split()
                if kind == b'n':
                    assert data[int(offset):].startswith(b'%d 0 obj' % idnum)
            i += count + 1
    return doc


def assert_decrypted(data: bytes, xref_stream=False):
    assert b'/Encrypt' not in data
    if xref_stream:
        doc = assert_xref_stream_consistent(data)
    else:
        doc = assert_table_consistent(data)
    assert doc.find_encrypt_dictionary() is None
    assert '6' not in doc.objects
    assert doc.get_object(4).stream == samples.CONTENT
    info = doc.get_object(5).dictionary
    assert info['Title'].content in (samples.TITLE, samples.UPDATED_TITLE)
    assert doc.get_object(7).value.content == samples.SECRET
    return doc


@pytest.mark.parametrize('name', samples.HANDLER_NAMES)
@pytest.mark.parametrize('password', [
    samples.OWNER_PASSWORD, samples.USER_PASSWORD
])
def test_decrypt(name, password):
    data = samples.build_document(samples.handler_for(name))
    result = pdfdecrypter.decrypt(data, password)
    doc = assert_decrypted(result)
    info = doc.get_object(5).dictionary
    assert info['Title'].content == samples.TITLE
    assert info['Producer'].content == samples.PRODUCER


@pytest.mark.parametrize('name', samples.HANDLER_NAMES)
def test_decrypt_xref_stream(name):
    data = samples.build_document(samples.handler_for(name), xref_stream=True)
    result = pdfdecrypter.decrypt(data, samples.OWNER_PASSWORD)
    doc = assert_decrypted(result, xref_stream=True)
    xref_dict = doc.objects['8'].dictionary
    assert xref_dict['Type'] == 'XRef'
    assert 'Encrypt' not in xref_dict
    assert xref_dict['ID'][0].content == samples.DOCUMENT_ID


def test_decrypt_bytes_password():
    result = pdfdecrypter.decrypt(samples.RC4_40, b'user')
    assert_decrypted(result)


def test_decrypt_linearized():
    result = pdfdecrypter.decrypt(
        samples.RC4_128_LINEARIZED, samples.USER_PASSWORD
    )
    doc = assert_decrypted(result)
    first_key = next(iter(doc.objects))
    assert doc.objects[first_key].dictionary['L'] == len(result)


def test_decrypt_incremental():
    result = pdfdecrypter.decrypt(
        samples.AES_128_INCREMENTAL, samples.OWNER_PASSWORD
    )
    doc = assert_decrypted(result)
    assert doc.get_object(5).dictionary['Title'].content \
        == samples.UPDATED_TITLE
    assert doc.objects['5~1'].dictionary['Title'].content == samples.TITLE
    assert 'Encrypt' not in doc.objects['trailer~1'].dictionary
    assert doc.objects['trailer'].dictionary['Prev'] \
        == doc.objects['xref~1'].offset


@pytest.mark.parametrize('password', [
    samples.OWNER_PASSWORD, samples.USER_PASSWORD
])
def test_decrypt_linearized_first_page_xref(password):
    result = pdfdecrypter.decrypt(samples.RC4_128_FIRST_PAGE_XREF, password)
    doc = assert_decrypted(result)
    main_xref = doc.objects['xref'].offset
    first_page_xref = doc.objects['xref~1'].offset
    assert first_page_xref < main_xref
    prev = doc.objects['trailer~1'].dictionary['Prev']
    assert prev == main_xref
    assert result[prev:].startswith(b'xref')
    assert 'Prev' not in doc.objects['trailer'].dictionary
    assert int(bytes(doc.objects['startxref'].value)) == first_page_xref
    assert bytes(doc.objects['startxref~1'].value) == b'0'
    first_key = next(iter(doc.objects))
    assert doc.objects[first_key].dictionary['L'] == len(result)


def test_decrypt_hybrid_reference():
    result = pdfdecrypter.decrypt(
        samples.AES_128_HYBRID, samples.OWNER_PASSWORD
    )
    doc = assert_decrypted(result)
    xref_stm = doc.objects['trailer'].dictionary['XRefStm']
    assert xref_stm == doc.objects['8'].offset
    assert result[xref_stm:].startswith(b'8 0 obj')
    entries = xref_stream_entries(doc, '8')
    assert entries[6] == (0, 0)
    for idnum, (entry_type, offset) in entries.items():
        if entry_type == 1:
            assert result[offset:].startswith(b'%d 0 obj' % idnum)


@pytest.mark.parametrize('key_length', [48, 64, 72, 88, 104])
@pytest.mark.parametrize('password', [
    samples.OWNER_PASSWORD, samples.USER_PASSWORD
])
def test_decrypt_uncommon_rc4_key_length(key_length, password):
    data = samples.build_document(
        samples.LegacyHandler(3, key_length=key_length)
    )
    assert_decrypted(pdfdecrypter.decrypt(data, password))


@pytest.mark.parametrize('handler', [
    samples.LegacyHandler(4, use_aes=True, encrypt_metadata=False),
    samples.AES256Handler(encrypt_metadata=False),
])
def test_unencrypted_metadata(handler):
    data = samples.build_document(handler, metadata=True)
    result = pdfdecrypter.decrypt(data, samples.USER_PASSWORD)
    doc = assert_decrypted(result)
    assert doc.get_object(8).stream == samples.METADATA


def test_encrypted_metadata():
    data = samples.build_document(
        samples.handler_for('aes-128'), metadata=True
    )
    doc = assert_decrypted(pdfdecrypter.decrypt(data, samples.USER_PASSWORD))
    assert doc.get_object(8).stream == samples.METADATA


@pytest.mark.parametrize('use_aes', [True, False])
def test_decrypt_without_crypt_filter(use_aes):
    handler = samples.LegacyHandler(
        4, use_aes=use_aes, declare_crypt_filter=False
    )
    data = samples.build_document(handler)
    assert_decrypted(pdfdecrypter.decrypt(data, samples.OWNER_PASSWORD))


def test_verify():
    assert pdfdecrypter.verify(samples.AES_256, samples.USER_PASSWORD)
    assert pdfdecrypter.verify(samples.AES_256, samples.OWNER_PASSWORD)
    assert not pdfdecrypter.verify(samples.AES_256, samples.WRONG_PASSWORD)


def test_password_classification():
    decrypter = PdfDecrypter(samples.RC4_128)
    assert decrypter.filename == DEFAULT_FILENAME
    assert decrypter.password_type == PasswordType.UNKNOWN
    assert decrypter.verify_password(samples.OWNER_PASSWORD)
    assert decrypter.auth_status == AuthStatus.OWNER
    assert decrypter.password_type == PasswordType.OWNER
    assert decrypter.verify_password(samples.USER_PASSWORD)
    assert decrypter.password_type == PasswordType.USER
    assert not decrypter.verify_password(samples.WRONG_PASSWORD)
    assert decrypter.auth_status == AuthStatus.FAILED


def test_wrong_password():
    with pytest.raises(AuthenticationFailedError):
        pdfdecrypter.decrypt(samples.AES_128, samples.WRONG_PASSWORD)


def test_no_password():
    with pytest.raises(AuthenticationRequiredError):
        PdfDecrypter(samples.AES_128).decrypt()


def test_no_document():
    with pytest.raises(NoDocumentError):
        PdfDecrypter(password='x').decrypt()
    with pytest.raises(NoDocumentError):
        PdfDecrypter(b'')


def test_not_encrypted():
    with pytest.raises(DecryptionUnavailableError, match='not encrypted'):
        pdfdecrypter.decrypt(samples.PLAIN, 'x')


def test_other_security_handler():
    data = samples.RC4_128.replace(b'/Filter /Standard', b'/Filter /Adobe.PubSec')
    with pytest.raises(DecryptionUnavailableError, match='Adobe.PubSec'):
        pdfdecrypter.decrypt(data, samples.OWNER_PASSWORD)


def test_result_is_cached():
    decrypter = PdfDecrypter(samples.RC4_128, samples.USER_PASSWORD)
    first = decrypter.decrypt()
    assert decrypter.decrypt() is first
    decrypter.set_password(samples.OWNER_PASSWORD)
    assert decrypter.decrypt() is not first
    assert decrypter.decrypt() == first


def test_source_is_not_modified():
    decrypter = PdfDecrypter(samples.AES_128, samples.USER_PASSWORD)
    decrypter.decrypt()
    source = decrypter.source
    assert source.get_object(4).stream != samples.CONTENT
    assert 'Encrypt' in source.objects['trailer'].dictionary


def test_open_file(tmp_path):
    path = tmp_path / 'secret.pdf'
    path.write_bytes(samples.AES_256)
    decrypter = PdfDecrypter()
    decrypter.open_file(str(path))
    assert decrypter.filename == 'secret.pdf'
    decrypter.set_password(samples.USER_PASSWORD)
    assert_decrypted(decrypter.decrypt())


def test_open_file_errors(tmp_path):
    decrypter = PdfDecrypter()
    with pytest.raises(ValueError):
        decrypter.open_file('')
    with pytest.raises(FileNotFoundError):
        decrypter.open_file(str(tmp_path / 'missing.pdf'))
    with pytest.raises(IsADirectoryError):
        decrypter.open_file(str(tmp_path))


def test_undecryptable_string_is_kept(caplog):
    handler = samples.handler_for('aes-128')
    data = samples.build_document(handler)
    garbage = b'<' + b'AB' * 20 + b'>'
    encrypted_secret = b'<' + handler.encrypt(7, samples.SECRET).hex().upper() \
        .encode('ascii') + b'>'
    data = data.replace(encrypted_secret, garbage)
    with caplog.at_level(logging.WARNING):
        result = pdfdecrypter.decrypt(data, samples.USER_PASSWORD)
    doc = Document(result)
    assert doc.get_object(7).value.content == b'\xab' * 20
    assert 'Failed to decrypt string' in caplog.text


@pytest.mark.parametrize('data', [
    samples.RC4_128, samples.AES_256_XREF, samples.AES_128_INCREMENTAL
])
def test_decrypted_document_reparses(data):
    source = Document(data)
    result = Document(pdfdecrypter.decrypt(data, samples.OWNER_PASSWORD))
    expected = [
        (key, obj.address) for key, obj in source.objects.items()
        if key.split('~')[0] != source.encrypt_object
    ]
    assert [
        (key, obj.address) for key, obj in result.objects.items()
    ] == expected
