import os
import os.path
import time
from enum import Enum

import yaml

from . import helpers, logger
from .errors import MalformedCatalog


################################################################################
# Logging
################################################################################

log = logger.Logger()


################################################################################
# Constants
################################################################################

INDEX_FILENAME = 'index.yaml'

# Default checksum location is the archive URL plus this suffix
CHECKSUM_SUFFIX = '.md5'


################################################################################
# Enums
################################################################################

class SourceStatus(Enum):
    ACTIVE = 'active'
    DEPRECATED = 'deprecated'
    OBSOLETE = 'obsolete'

    @classmethod
    def parse(cls, value):
        '''
        Map an index status value to a SourceStatus
        Anything we don't recognize is treated as obsolete, never active

        Example:
        >>> SourceStatus.parse('Deprecated')
        <SourceStatus.DEPRECATED: 'deprecated'>
        >>> SourceStatus.parse('retired')
        <SourceStatus.OBSOLETE: 'obsolete'>
        '''
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.OBSOLETE

    @property
    def offerable(self):
        '''
        Whether an operator may pick this source from a menu
        '''
        return self is not SourceStatus.OBSOLETE


################################################################################
# Source - One rule provider from the index
################################################################################

class Source(object):

    FIELDS = ('id', 'vendor', 'summary', 'status', 'status_message', 'download_url',
              'checksum_url', 'checksum', 'verify', 'description', 'license',
              'homepage', 'min_version', 'parameters', 'replaces')

    def __init__(self, id, vendor='', summary='', status=SourceStatus.ACTIVE, status_message=None,
                 download_url=None, checksum_url=None, checksum=None, verify=True, description=None,
                 license=None, homepage=None, min_version=None, parameters=None, replaces=None):
        self.id = id
        self.vendor = vendor
        self.summary = summary
        self.status = status
        self.status_message = status_message
        self.download_url = download_url
        self.checksum_url = checksum_url
        self.checksum = checksum
        self.verify = verify
        self.description = description
        self.license = license
        self.homepage = homepage
        self.min_version = min_version
        self.parameters = dict(parameters or {})
        self.replaces = tuple(replaces or ())

    def __repr__(self):
        return f'Source(id:{self.id}, status:{self.status.name})'

    def __eq__(self, other):
        if not isinstance(other, Source):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self.id)

    def _key(self):
        return tuple(
            tuple(sorted(getattr(self, name).items())) if name == 'parameters' else getattr(self, name)
            for name in self.FIELDS
        )

    @classmethod
    def from_entry(cls, source_id, entry):
        '''
        Build a Source from one entry of the index `sources` mapping,
        checking its structure on the way

        Example:
        >>> Source.from_entry('et/open', {'vendor': 'Proofpoint', 'summary': 'ET Open',
        ...                               'url': 'https://rules.example.org/open.tar.gz'})
        Source(id:et/open, status:ACTIVE)
        '''

        if not isinstance(source_id, str) or not source_id.strip():
            raise MalformedCatalog(f'Source entry has an empty id: {source_id!r}')
        if not isinstance(entry, dict):
            raise MalformedCatalog(f'Source {source_id} is not a mapping')

        # An explicit status wins, otherwise the deprecated/obsolete notes decide
        status_message = None
        if 'status' in entry:
            status = SourceStatus.parse(entry['status'])
            status_message = entry.get('obsolete') or entry.get('deprecated')
        elif entry.get('obsolete'):
            status = SourceStatus.OBSOLETE
            status_message = entry['obsolete']
        elif entry.get('deprecated'):
            status = SourceStatus.DEPRECATED
            status_message = entry['deprecated']
        else:
            status = SourceStatus.ACTIVE

        download_url = entry.get('url')
        if status is not SourceStatus.OBSOLETE and not download_url:
            raise MalformedCatalog(f'Source {source_id} is missing a download url')

        # checksum: <digest> | false | true/absent (fetch url + .md5)
        checksum = entry.get('checksum', True)
        checksum_url = None
        inline = None
        verify = True
        if checksum is False:
            verify = False
        elif isinstance(checksum, str):
            inline = checksum.strip()
        elif checksum is True or checksum is None:
            checksum_url = entry.get('checksum-url')
            if not checksum_url and download_url:
                checksum_url = f'{download_url}{CHECKSUM_SUFFIX}'
        else:
            raise MalformedCatalog(f'Source {source_id} has an unexpected checksum: {checksum!r}')

        parameters = entry.get('parameters') or {}
        if not isinstance(parameters, dict):
            raise MalformedCatalog(f'Source {source_id} has parameters that are not a mapping')

        replaces = entry.get('replaces') or []
        if isinstance(replaces, str):
            replaces = [replaces]

        return cls(
            source_id,
            vendor=entry.get('vendor', ''),
            summary=entry.get('summary', ''),
            status=status,
            status_message=status_message,
            download_url=download_url,
            checksum_url=checksum_url,
            checksum=inline,
            verify=verify,
            description=entry.get('description'),
            license=entry.get('license'),
            homepage=entry.get('homepage'),
            min_version=entry.get('min-version'),
            parameters=parameters,
            replaces=replaces,
        )


################################################################################
# Catalog - Read-only set of Sources from one fetch of the index
################################################################################

def parse_catalog(data):
    '''
    Parse the raw index text into plain python structures
    '''
    try:
        return yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise MalformedCatalog(f'Unable to parse source index: {e}')


class Catalog(object):

    def __init__(self, sources=(), version=1):
        '''
        Setup a catalog from an iterable of Source objects

        Example:
        >>> cat = Catalog([Source('a', download_url='https://x/a.tar.gz')])
        >>> cat
        Catalog(version:1, sources:1)
        '''
        self.version = version
        self._sources = {}
        for source in sources:
            if source.id in self._sources:
                raise MalformedCatalog(f'Duplicate source id in index: {source.id}')
            self._sources[source.id] = source

    def __repr__(self):
        return f'Catalog(version:{self.version}, sources:{len(self)})'

    def __len__(self):
        return len(self._sources)

    def __contains__(self, source_id):
        if isinstance(source_id, Source):
            source_id = source_id.id
        return source_id in self._sources

    def __iter__(self):
        return iter(self._sources.values())

    def __getitem__(self, source_id):
        return self._sources[source_id]

    def __eq__(self, other):
        if not isinstance(other, Catalog):
            return NotImplemented
        return self.version == other.version and self._sources == other._sources

    def get(self, source_id, default=None):
        return self._sources.get(source_id, default)

    def ids(self):
        return list(self._sources.keys())

    @classmethod
    def from_index(cls, index):
        '''
        Validate a parsed index and turn it into a Catalog
        '''

        if not isinstance(index, dict):
            raise MalformedCatalog('Source index is not a mapping')

        sources = index.get('sources')
        if not isinstance(sources, dict):
            raise MalformedCatalog('Source index has no `sources` mapping')

        version = index.get('version', 1)

        return cls((Source.from_entry(source_id, entry) for source_id, entry in sources.items()), version=version)

    @classmethod
    def from_bytes(cls, data):
        return cls.from_index(parse_catalog(data))

    def diff(self, old):
        '''
        Compare this catalog with a previous one
        Returns (added, removed, changed) lists of source ids

        Example:
        >>> new.diff(old)
        (['oisf/trafficid'], [], ['et/open'])
        '''
        if old is None:
            return self.ids(), [], []

        added = [sid for sid in self._sources if sid not in old]
        removed = [sid for sid in old.ids() if sid not in self]
        changed = [sid for sid, source in self._sources.items() if sid in old and old[sid] != source]
        return added, removed, changed


################################################################################
# CatalogManager - Cached copy of the remote index
################################################################################

class CatalogManager(object):

    def __init__(self, cache_path, index_url, transport, max_age=900):
        self.cache_path = cache_path
        self.index_url = index_url
        self.transport = transport
        self.max_age = max_age

    def __repr__(self):
        return f'CatalogManager(index_path:{self.index_path})'

    @property
    def index_path(self):
        return os.path.join(self.cache_path, INDEX_FILENAME)

    def cache_age(self):
        '''
        Seconds since the cached index was written, None if there is none
        '''
        try:
            return time.time() - os.stat(self.index_path).st_mtime
        except FileNotFoundError:
            return None

    def load_local(self):
        '''
        Load the cached index, returning None if it has never been downloaded
        '''
        if not os.path.exists(self.index_path):
            return None

        with open(self.index_path, 'rb') as fh:
            return Catalog.from_bytes(fh.read())

    def download(self):
        '''
        Download and validate the remote index
        Returns the Catalog and the raw bytes it was built from
        '''
        log.info(f'Downloading {self.index_url}')
        data = self.transport.fetch(self.index_url)
        return Catalog.from_bytes(data), data

    def refresh(self, force=False):
        '''
        Refresh the cached index unless it is recent enough
        The cached copy is only replaced by a new index that validated
        '''

        age = self.cache_age()
        if not force and age is not None and age < self.max_age:
            log.verbose(f' - Using cached sources index (age: {int(age)} seconds)')
            return self.load_local()

        # A broken cached copy should not stop us getting a fresh one
        try:
            previous = self.load_local()
        except MalformedCatalog as e:
            log.warning(f'Ignoring unreadable cached index: {e}')
            previous = None

        catalog, data = self.download()
        helpers.atomic_write(self.index_path, data)
        log.verbose(f'Saved {self.index_path}')

        self.report_changes(previous, catalog)
        return catalog

    def get_or_download(self):
        '''
        Return the cached catalog, downloading it first if we have none
        '''
        catalog = self.load_local()
        if catalog is None:
            log.info('No sources index found, downloading...')
            catalog = self.refresh(force=True)
        return catalog

    def report_changes(self, previous, catalog):
        if previous is None:
            log.info('Adding all sources')
            return

        added, removed, changed = catalog.diff(previous)
        if not any((added, removed, changed)):
            log.info('No change in sources')
            return

        for source_id in added:
            log.info(f'Source {source_id} was added')
        for source_id in removed:
            log.info(f'Source {source_id} was removed')
        for source_id in changed:
            log.info(f'Source {source_id} was changed')
