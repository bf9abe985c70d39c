import hashlib
import io
import tarfile
import zipfile

import pytest

from rindlib import logger
from rindlib.catalog import Catalog, Source, SourceStatus
from rindlib.errors import TransportError


@pytest.fixture(autouse=True)
def reset_logger(monkeypatch):
    # Logger state is class-wide; keep tests from leaking into each other
    monkeypatch.setattr(logger.Logger, '_level', logger.DEFAULT_LEVEL)
    monkeypatch.setattr(logger.Logger, '_hidden_strings', [])
    monkeypatch.delenv('SOURCE_INDEX_URL', raising=False)


class FakeTransport(object):
    '''
    Serves bytes from a dict; exceptions in the dict are raised instead
    '''

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.requests = []

    def fetch(self, url, headers=None):
        self.requests.append((url, headers))
        if url not in self.responses:
            raise TransportError(url, 'HTTP 404')
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response


def rule(sid, msg='test', gid=None, rev=1, action='alert', disabled=False):
    gid_opt = f' gid:{gid};' if gid is not None else ''
    text = f'{action} tcp any any -> any any (msg:"{msg}";{gid_opt} sid:{sid}; rev:{rev};)'
    return f'# {text}' if disabled else text


def make_tar(files, compression='gz'):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=f'w:{compression}') as tar:
        for name, content in files.items():
            data = content.encode('utf-8') if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def make_zip(files):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, 'w') as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


def make_unsupported_zip(files):
    '''
    A zip whose members claim a compression method zipfile can't handle
    '''
    data = bytearray(make_zip(files))
    method = (99).to_bytes(2, 'little')
    offset = data.find(b'PK\x03\x04')
    while offset != -1:
        data[offset + 8:offset + 10] = method
        offset = data.find(b'PK\x03\x04', offset + 4)
    offset = data.find(b'PK\x01\x02')
    while offset != -1:
        data[offset + 10:offset + 12] = method
        offset = data.find(b'PK\x01\x02', offset + 4)
    return bytes(data)


def md5(data):
    return hashlib.md5(data).hexdigest()


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def rule_text():
    return rule


@pytest.fixture
def tar_bytes():
    return make_tar


@pytest.fixture
def zip_bytes():
    return make_zip


@pytest.fixture
def unsupported_zip_bytes():
    return make_unsupported_zip


@pytest.fixture
def md5_hex():
    return md5


@pytest.fixture
def abc_catalog():
    '''
    a: active, b: deprecated, c: obsolete
    '''
    return Catalog([
        Source('a', vendor='A', summary='Source A', download_url='https://rules.test/a.tar.gz',
               checksum_url='https://rules.test/a.tar.gz.md5'),
        Source('b', vendor='B', summary='Source B', status=SourceStatus.DEPRECATED,
               status_message='use a instead', download_url='https://rules.test/b.tar.gz',
               checksum_url='https://rules.test/b.tar.gz.md5'),
        Source('c', vendor='C', summary='Source C', status=SourceStatus.OBSOLETE,
               status_message='gone', download_url='https://rules.test/c.tar.gz'),
    ])
