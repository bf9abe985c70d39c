'''
Turn the operator's selections and the current catalog into a plan

Nothing here touches the network or the disk, so every problem with a run's
selections can be reported before the first download starts.
'''
from enum import Enum

from .catalog import SourceStatus


################################################################################
# Enums
################################################################################

class Action(Enum):
    FETCH = 'fetch'
    SKIP = 'skip'
    REJECT = 'reject'


class Reason(Enum):
    MISSING_FROM_CATALOG = 'source is not in the catalog'
    SOURCE_DEPRECATED = 'source is deprecated'
    SOURCE_OBSOLETE = 'source is obsolete'
    MISSING_PARAMETERS = 'source parameters are missing'


################################################################################
# PlanEntry - What to do with one enabled selection
################################################################################

class PlanEntry(object):

    def __init__(self, source_id, action, reason=None, message=None, source=None, selection=None):
        self.source_id = source_id
        self.action = action
        self.reason = reason
        self.message = message
        self.source = source
        self.selection = selection

    def __repr__(self):
        if self.reason is None:
            return f'PlanEntry(source_id:{self.source_id}, action:{self.action.name})'
        return f'PlanEntry(source_id:{self.source_id}, action:{self.action.name}, reason:{self.reason.name})'

    def __eq__(self, other):
        if not isinstance(other, PlanEntry):
            return NotImplemented
        return ((self.source_id, self.action, self.reason, self.message) ==
                (other.source_id, other.action, other.reason, other.message))

    def __hash__(self):
        return hash((self.source_id, self.action, self.reason))

    @property
    def warning(self):
        '''
        True when the operator should hear about this entry even though
        it does not stop the run
        '''
        return self.action is Action.SKIP or self.reason is Reason.SOURCE_DEPRECATED

    @property
    def describe(self):
        '''
        Human readable reason, including the catalog note when there is one
        '''
        if self.reason is None:
            return ''
        if self.message:
            return f'{self.reason.value} ({self.message})'
        return self.reason.value


################################################################################
# Reconciler
################################################################################

def plan_entry(source, selection):
    '''
    Work out the plan entry for one enabled selection
    `source` is None when the catalog no longer has it
    '''
    source_id = selection.source_id

    if source is None:
        return PlanEntry(source_id, Action.SKIP, Reason.MISSING_FROM_CATALOG, selection=selection)

    if source.status is SourceStatus.OBSOLETE:
        return PlanEntry(source_id, Action.REJECT, Reason.SOURCE_OBSOLETE,
                         source.status_message, source, selection)

    missing = [name for name in source.parameters if name not in selection.params]
    if missing:
        return PlanEntry(source_id, Action.REJECT, Reason.MISSING_PARAMETERS,
                         ', '.join(missing), source, selection)

    # Deprecation warns, it does not block
    if source.status is SourceStatus.DEPRECATED:
        return PlanEntry(source_id, Action.FETCH, Reason.SOURCE_DEPRECATED,
                         source.status_message, source, selection)

    return PlanEntry(source_id, Action.FETCH, source=source, selection=selection)


def reconcile(catalog, selections):
    '''
    Build the plan for a run, one entry per enabled selection, in selection
    order (which fixes the merge order later on)

    Example:
    >>> reconcile(catalog, store.list())
    [PlanEntry(source_id:a, action:FETCH), PlanEntry(source_id:b, action:FETCH, reason:SOURCE_DEPRECATED)]
    '''
    return [plan_entry(catalog.get(s.source_id), s) for s in selections if s.enabled]


def offerable_sources(catalog):
    '''
    Sources an interactive menu may offer: active and deprecated, never obsolete
    '''
    return [source for source in catalog if source.status.offerable]
