import concurrent.futures
import hashlib
import os
import os.path
import re
import time
from enum import Enum
from urllib.parse import unquote, urlparse

import requests

from . import helpers, logger
from .errors import ChecksumMismatch, ExtractError, TransportError
from .reconcile import Action


################################################################################
# Logging
################################################################################

log = logger.Logger()


################################################################################
# Constants
################################################################################

URL_PARAM_REGEX = re.compile(r'%\(([^)]+)\)s')
VERSION_PARAM = '__version__'

# Hex digest length to algorithm, for digests given without a prefix
DIGEST_LENGTHS = {
    32: 'md5',
    40: 'sha1',
    64: 'sha256',
    128: 'sha512',
}

# Param names that look like credentials get masked in the output
SECRET_PARAM_REGEX = re.compile(r'secret|code|key|token|pass', re.IGNORECASE)


################################################################################
# Enums
################################################################################

class FetchResult(Enum):
    OK = 'ok'
    CHECKSUM_MISMATCH = 'checksum mismatch'
    TRANSPORT_ERROR = 'transport error'
    EXTRACT_ERROR = 'extract error'


################################################################################
# Transport - Getting bytes from a URL
################################################################################

class Transport(object):

    def __init__(self, timeout=60, session=None):
        '''
        Setup the HTTP session used for the index and every archive
        '''
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers['User-Agent'] = helpers.user_agent()

    def __repr__(self):
        return f'Transport(timeout:{self.timeout})'

    def fetch(self, url, headers=None):
        '''
        Download the URL (or read the local file) and return the bytes
        Every failure is raised as a TransportError
        '''

        # Local archives, handy for offline use and mirrors on disk
        parsed = urlparse(url)
        if parsed.scheme == 'file' or (not parsed.scheme and os.path.exists(url)):
            path = unquote(parsed.path) if parsed.scheme == 'file' else url
            try:
                with open(path, 'rb') as fh:
                    return fh.read()
            except OSError as e:
                raise TransportError(url, e.strerror or str(e))

        log.debug(f'Fetching {url}')
        try:
            resp = self.session.get(url, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise TransportError(url, f'HTTP {e.response.status_code}')
        except requests.RequestException as e:
            raise TransportError(url, str(e))

        return resp.content


def resolve_url(url_template, engine_version, params=None):
    '''
    Fill in the %(name)s parameters of a source URL

    Example:
    >>> resolve_url('https://rules.example.org/open/suricata-%(__version__)s/emerging.rules.tar.gz', '7.0.3')
    'https://rules.example.org/open/suricata-7.0.3/emerging.rules.tar.gz'
    >>> resolve_url('https://rules.example.org/%(secret-code)s/etpro.tar.gz', '7.0.3', {'secret-code': 'abc'})
    'https://rules.example.org/abc/etpro.tar.gz'
    '''
    values = {VERSION_PARAM: engine_version}
    values.update({k: str(v) for k, v in (params or {}).items()})

    def _sub(match):
        return values.get(match[1], match[0])

    return URL_PARAM_REGEX.sub(_sub, url_template)


def parse_http_header(header):
    '''
    Turn a pinned "Name: value" header into a requests headers dict
    '''
    if not header:
        return None
    name, sep, value = header.partition(':')
    if not sep or not name.strip():
        raise ValueError(f'HTTP header must look like "Name: value": {header!r}')
    return {name.strip(): value.strip()}


################################################################################
# Checksums
################################################################################

def parse_digest(text):
    '''
    Return (algorithm, hexdigest) from "sha256:ab12..." or a bare hex digest,
    the first token of a .md5 style file is enough

    Example:
    >>> parse_digest('d41d8cd98f00b204e9800998ecf8427e  emerging.rules.tar.gz')
    ('md5', 'd41d8cd98f00b204e9800998ecf8427e')
    '''
    if isinstance(text, bytes):
        text = text.decode('utf-8', errors='replace')

    tokens = text.strip().split()
    if not tokens:
        raise ValueError('Checksum is empty')
    token = tokens[0]

    if ':' in token:
        algo, digest = token.split(':', 1)
        algo = algo.lower()
    else:
        digest = token
        algo = DIGEST_LENGTHS.get(len(digest))
        if algo is None:
            raise ValueError(f'Unrecognized checksum: {token}')

    if algo not in hashlib.algorithms_available:
        raise ValueError(f'Unsupported checksum algorithm: {algo}')

    return algo, digest.lower()


def verify_checksum(data, expected):
    '''
    Compare the data against an expected digest, raising ChecksumMismatch
    '''
    algo, digest = parse_digest(expected)
    actual = hashlib.new(algo, data).hexdigest()
    if actual != digest:
        raise ChecksumMismatch(f'{algo}:{digest}', f'{algo}:{actual}')
    return f'{algo}:{actual}'


################################################################################
# ArchiveCache - Recently downloaded archives on disk
################################################################################

class ArchiveCache(object):

    def __init__(self, cache_path, max_age=900):
        self.cache_path = cache_path
        self.max_age = max_age

    def __repr__(self):
        return f'ArchiveCache(path:{self.cache_path}, max_age:{self.max_age})'

    def path_for(self, url):
        url_hash = hashlib.md5(url.encode('utf-8')).hexdigest()
        return os.path.join(self.cache_path, f'{url_hash}-{helpers.url_basename(url)}')

    def get(self, url):
        '''
        Return the cached bytes if they are recent enough, otherwise None
        '''
        path = self.path_for(url)
        try:
            age = time.time() - os.stat(path).st_mtime
            if age >= self.max_age:
                return None
            with open(path, 'rb') as fh:
                data = fh.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            log.warning(f'Unable to read the archive cache, downloading instead: {e}')
            return None

        log.verbose(f' - Last download less than {self.max_age} seconds ago, using cached file')
        return data

    def put(self, url, data):
        '''
        Cache the data; a cache we can't write to only costs a download later
        '''
        try:
            helpers.atomic_write(self.path_for(url), data)
        except OSError as e:
            log.warning(f'Unable to write to the archive cache: {e}')

    def discard(self, url):
        try:
            os.unlink(self.path_for(url))
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning(f'Unable to remove from the archive cache: {e}')


################################################################################
# FetchOutcome - What happened to one planned source
################################################################################

class FetchOutcome(object):

    def __init__(self, source_id, result, rules=None, error=None, checksum=None):
        self.source_id = source_id
        self.result = result
        self.rules = list(rules or [])
        self.error = error
        self.checksum = checksum

    def __repr__(self):
        if self.ok:
            return f'FetchOutcome(source_id:{self.source_id}, result:{self.result.name}, rules:{self.rule_count})'
        return f'FetchOutcome(source_id:{self.source_id}, result:{self.result.name})'

    @property
    def ok(self):
        return self.result is FetchResult.OK

    @property
    def rule_count(self):
        return len(self.rules)

    @property
    def describe(self):
        if self.error:
            return f'{self.result.value}: {self.error}'
        return self.result.value


################################################################################
# SourceFetcher - Fetch, verify, then extract one planned source
################################################################################

class SourceFetcher(object):

    def __init__(self, transport, extractor, engine_version, cache=None, force=False, mask_secrets=True):
        self.transport = transport
        self.extractor = extractor
        self.engine_version = engine_version
        self.cache = cache
        self.force = force
        self.mask_secrets = mask_secrets

    def __repr__(self):
        return f'SourceFetcher(engine_version:{self.engine_version}, cache:{self.cache}, force:{self.force})'

    def __call__(self, entry):
        source = entry.source
        selection = entry.selection
        params = selection.params if selection is not None else {}

        # Keep credentials out of the output
        for name, value in params.items():
            if self.mask_secrets and SECRET_PARAM_REGEX.search(name):
                log.add_hidden_string(str(value))

        url_template = (selection.url if selection is not None and selection.url else source.download_url)
        url = resolve_url(url_template, self.engine_version, params)

        try:
            headers = parse_http_header(selection.http_header if selection is not None else None)
        except ValueError as e:
            return FetchOutcome(entry.source_id, FetchResult.TRANSPORT_ERROR, error=str(e))

        try:
            data, checksum = self._fetch_verified(source, url, params, headers)
        except TransportError as e:
            log.warning(f'Failed to fetch {entry.source_id}: {e}')
            return FetchOutcome(entry.source_id, FetchResult.TRANSPORT_ERROR, error=str(e))
        except ChecksumMismatch as e:
            log.warning(f'Checksum mismatch for {entry.source_id}: {e}')
            return FetchOutcome(entry.source_id, FetchResult.CHECKSUM_MISMATCH, error=str(e))

        # Only verified bytes reach the extractor
        try:
            rules = self.extractor(data, helpers.url_basename(url))
        except ExtractError as e:
            log.warning(f'Failed to extract {entry.source_id}: {e}')
            return FetchOutcome(entry.source_id, FetchResult.EXTRACT_ERROR, error=str(e), checksum=checksum)

        log.info(f' - Loaded {len(rules)} rules from {entry.source_id}')
        return FetchOutcome(entry.source_id, FetchResult.OK, rules=rules, checksum=checksum)

    def _download(self, url, headers):
        log.info(f'Fetching {url}')
        data = self.transport.fetch(url, headers=headers)
        log.verbose(f' - Downloaded {len(data)} bytes')
        return data

    def _expected_checksum(self, source, params, headers):
        if source.checksum:
            return source.checksum
        checksum_url = resolve_url(source.checksum_url, self.engine_version, params)
        log.verbose(f' - Checking {checksum_url}')
        return self.transport.fetch(checksum_url, headers=headers)

    def _fetch_verified(self, source, url, params, headers):
        '''
        Return (data, checksum) for a source, verified when the catalog
        declares a checksum
        '''

        data = None
        from_cache = False
        if self.cache is not None and not self.force:
            data = self.cache.get(url)
            from_cache = data is not None
        if data is None:
            data = self._download(url, headers)

        if not source.verify:
            log.verbose(f' - {source.id} does not publish a checksum, not verifying')
            if self.cache is not None and not from_cache:
                self.cache.put(url, data)
            return data, None

        try:
            expected = self._expected_checksum(source, params, headers)
            algo_digest = parse_digest(expected)
        except ValueError as e:
            raise ChecksumMismatch('a valid checksum', str(e))

        try:
            checksum = verify_checksum(data, f'{algo_digest[0]}:{algo_digest[1]}')
        except ChecksumMismatch:

            # A stale cached copy gets one fresh download before we give up
            if not from_cache:
                raise
            log.verbose(' - Cached file does not match the checksum, downloading again')
            self.cache.discard(url)
            data = self._download(url, headers)
            checksum = verify_checksum(data, f'{algo_digest[0]}:{algo_digest[1]}')
            from_cache = False

        if self.cache is not None and not from_cache:
            self.cache.put(url, data)

        return data, checksum


################################################################################
# fetch_all - Run the planned fetches on a bounded pool
################################################################################

def fetch_all(plan, fetch_one, max_workers=4, timeout=None):
    '''
    Run fetch_one for every FETCH entry of the plan, at most max_workers at a
    time, and return the outcomes in plan order whatever order they finish in

    On timeout the unfinished sources are reported as timed out and this
    returns right away. Their worker threads are not killed: each finishes
    its current request (bounded by the transport timeout) and the
    interpreter waits for them before exiting.

    Example:
    >>> fetch_all(plan, SourceFetcher(Transport(), ArchiveExtractor(), '7.0.3'))
    [FetchOutcome(source_id:et/open, result:OK, rules:48210)]
    '''

    entries = [entry for entry in plan if entry.action is Action.FETCH]
    if not entries:
        return []

    # One slot per entry, filled in as workers finish
    slots = [None] * len(entries)

    executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='fetch')
    finished = False
    try:
        futures = {executor.submit(fetch_one, entry): idx for idx, entry in enumerate(entries)}
        done, not_done = concurrent.futures.wait(futures, timeout=timeout or None)

        for future in done:
            idx = futures[future]
            try:
                slots[idx] = future.result()
            except Exception as e:
                # A worker exception fails only its own source
                log.warning(f'Unexpected error fetching {entries[idx].source_id}: {e!r}')
                slots[idx] = FetchOutcome(entries[idx].source_id, FetchResult.TRANSPORT_ERROR, error=repr(e))

        for future in not_done:
            future.cancel()
            idx = futures[future]
            log.warning(f'Gave up on {entries[idx].source_id} after {timeout} seconds')
            slots[idx] = FetchOutcome(entries[idx].source_id, FetchResult.TRANSPORT_ERROR, error='timed out')

        finished = not not_done

    finally:
        # On timeout or interrupt, don't wait on the stragglers
        executor.shutdown(wait=finished, cancel_futures=True)

    return slots
