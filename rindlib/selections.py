import os.path

import yaml

from . import helpers, logger
from .catalog import SourceStatus
from .errors import CannotEnableObsolete, MalformedStore, MissingParameters, UnknownSource


################################################################################
# Logging
################################################################################

log = logger.Logger()


################################################################################
# Constants
################################################################################

STORE_VERSION = 1


################################################################################
# Selection - One operator decision about one source
################################################################################

class Selection(object):

    __slots__ = ('source_id', 'enabled', 'params', 'url', 'http_header')

    def __init__(self, source_id, enabled=True, params=None, url=None, http_header=None):
        object.__setattr__(self, 'source_id', source_id)
        object.__setattr__(self, 'enabled', enabled)
        object.__setattr__(self, 'params', dict(params or {}))
        object.__setattr__(self, 'url', url)
        object.__setattr__(self, 'http_header', http_header)

    def __setattr__(self, key, value):
        raise AttributeError('Selection is read-only; use replace()')

    def __repr__(self):
        return f'Selection(source_id:{self.source_id}, enabled:{self.enabled})'

    def __eq__(self, other):
        if not isinstance(other, Selection):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.source_id, self.enabled))

    def replace(self, **changes):
        '''
        Return a copy with some of the fields changed
        '''
        fields = {name: getattr(self, name) for name in self.__slots__}
        fields.update(changes)
        return Selection(**fields)

    def to_dict(self):
        '''
        The on-disk form, optional fields left out when unset
        '''
        out = {'source': self.source_id, 'enabled': self.enabled}
        if self.params:
            out['params'] = dict(self.params)
        if self.url:
            out['url'] = self.url
        if self.http_header:
            out['http-header'] = self.http_header
        return out

    @classmethod
    def from_dict(cls, entry):
        if not isinstance(entry, dict):
            raise MalformedStore(f'Selection entry is not a mapping: {entry!r}')

        source_id = entry.get('source')
        if not isinstance(source_id, str) or not source_id.strip():
            raise MalformedStore(f'Selection entry has no source id: {entry!r}')

        enabled = entry.get('enabled', True)
        if not isinstance(enabled, bool):
            raise MalformedStore(f'Selection {source_id} has a non-boolean `enabled`: {enabled!r}')

        params = entry.get('params') or {}
        if not isinstance(params, dict):
            raise MalformedStore(f'Selection {source_id} has params that are not a mapping')

        return cls(source_id, enabled=enabled, params=params,
                   url=entry.get('url'), http_header=entry.get('http-header'))


################################################################################
# SelectionStore - Ordered, persisted set of Selections
################################################################################

def parse_selection_store(data):
    '''
    Parse the raw store text into plain python structures
    '''
    try:
        return yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise MalformedStore(f'Unable to parse selection store: {e}')


class SelectionStore(object):

    def __init__(self, selections=()):
        '''
        Setup the store, keeping selections in first-enabled order

        Example:
        >>> store = SelectionStore([Selection('et/open')])
        >>> store
        SelectionStore(enabled:1, disabled:0)
        '''
        self._selections = []
        for selection in selections:
            if self._find(selection.source_id) is not None:
                raise MalformedStore(f'Duplicate selection for source: {selection.source_id}')
            self._selections.append(selection)

    def __repr__(self):
        enabled = len(self.list())
        return f'SelectionStore(enabled:{enabled}, disabled:{len(self._selections) - enabled})'

    def __len__(self):
        return len(self._selections)

    def __contains__(self, source_id):
        return self._find(source_id) is not None

    def _find(self, source_id):
        for idx, selection in enumerate(self._selections):
            if selection.source_id == source_id:
                return idx
        return None

    def get(self, source_id, default=None):
        idx = self._find(source_id)
        return default if idx is None else self._selections[idx]

    def is_enabled(self, source_id):
        selection = self.get(source_id)
        return selection is not None and selection.enabled

    def list(self):
        '''
        Return the enabled selections in first-enabled order
        '''
        return tuple(s for s in self._selections if s.enabled)

    def all(self):
        return tuple(self._selections)

    def enable(self, source_id, catalog, params=None, url=None, http_header=None):
        '''
        Enable a source, checking it against the current catalog
        Enabling an enabled source keeps its place in the order

        Example:
        >>> store.enable('et/open', catalog)
        Selection(source_id:et/open, enabled:True)
        >>> store.enable('et/open', catalog)
        Selection(source_id:et/open, enabled:True)
        >>> store
        SelectionStore(enabled:1, disabled:0)
        '''

        source = catalog.get(source_id)
        if source is None:
            raise UnknownSource(source_id)
        if source.status is SourceStatus.OBSOLETE:
            raise CannotEnableObsolete(source_id, source.status_message)

        idx = self._find(source_id)
        current = None if idx is None else self._selections[idx]

        # Pinned values from before survive unless new ones are given
        merged_params = dict(current.params) if current is not None else {}
        merged_params.update(params or {})

        missing = [name for name in source.parameters if name not in merged_params]
        if missing:
            raise MissingParameters(source_id, missing)

        if current is None:
            selection = Selection(source_id, params=merged_params, url=url, http_header=http_header)
            self._selections.append(selection)
            return selection

        selection = current.replace(
            enabled=True,
            params=merged_params,
            url=url if url is not None else current.url,
            http_header=http_header if http_header is not None else current.http_header,
        )

        if current.enabled:
            self._selections[idx] = selection
        else:
            # Re-enabled: counts as a new first-enabled time
            del self._selections[idx]
            self._selections.append(selection)

        return selection

    def disable(self, source_id):
        '''
        Disable a source, always allowed whatever the catalog says
        Returns True if something changed
        '''
        idx = self._find(source_id)
        if idx is None or not self._selections[idx].enabled:
            return False

        self._selections[idx] = self._selections[idx].replace(enabled=False)
        return True

    # Persistence

    def dumps(self):
        '''
        Return the canonical YAML form of the store
        '''
        data = {
            'version': STORE_VERSION,
            'sources': [s.to_dict() for s in self._selections],
        }
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)

    @classmethod
    def loads(cls, data):
        store = parse_selection_store(data)

        # Empty file, empty store
        if store is None:
            return cls()

        if not isinstance(store, dict):
            raise MalformedStore('Selection store is not a mapping')

        version = store.get('version', STORE_VERSION)
        if version != STORE_VERSION:
            raise MalformedStore(f'Unsupported selection store version: {version}')

        entries = store.get('sources') or []
        if not isinstance(entries, list):
            raise MalformedStore('Selection store `sources` is not a list')

        return cls(Selection.from_dict(entry) for entry in entries)

    @classmethod
    def load(cls, store_path):
        '''
        Load the store from disk, a missing file is an empty store
        '''
        if not os.path.exists(store_path):
            log.debug(f'No selection store at {store_path}, starting empty')
            return cls()

        with open(store_path, 'rb') as fh:
            return cls.loads(fh.read())

    def save(self, store_path):
        helpers.atomic_write(store_path, self.dumps())
        log.debug(f'Saved selection store: {store_path}')
