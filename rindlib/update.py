from . import logger
from .fetch import fetch_all
from .merge import merge
from .reconcile import Action, reconcile


################################################################################
# Logging
################################################################################

log = logger.Logger()


################################################################################
# UpdateReport - Everything a run decided and did
################################################################################

class UpdateReport(object):

    def __init__(self, plan, outcomes, local_outcomes, merged):
        self.plan = plan
        self.outcomes = outcomes
        self.local_outcomes = local_outcomes
        self.merged = merged

    def __repr__(self):
        return f'UpdateReport(planned:{len(self.plan)}, merged:{len(self.merged_sources)}, failed:{len(self.failed_sources)})'

    @property
    def outcome_map(self):
        return {outcome.source_id: outcome for outcome in self.outcomes}

    @property
    def merged_sources(self):
        return [o.source_id for o in self.outcomes if o.ok]

    @property
    def failed_sources(self):
        return [o.source_id for o in self.outcomes if not o.ok]

    @property
    def rejected_sources(self):
        return [e.source_id for e in self.plan if e.action is Action.REJECT]

    @property
    def skipped_sources(self):
        return [e.source_id for e in self.plan if e.action is Action.SKIP]

    @property
    def contributed(self):
        '''
        Whether anything at all ended up in the merged ruleset inputs
        '''
        return bool(self.merged_sources) or any(o.ok for o in self.local_outcomes)

    @property
    def should_write(self):
        '''
        Whether the merged ruleset should replace the previous one: some
        enabled source was merged, or nothing is enabled and local rules
        are all there is
        '''
        if self.merged_sources:
            return True
        return not self.plan and self.contributed

    @property
    def exit_status(self):
        '''
        0 when at least one enabled source was merged, or nothing was
        enabled at all; 1 when every enabled source failed or was rejected
        '''
        if not self.plan:
            return 0
        return 0 if self.merged_sources else 1

    def summary_lines(self):
        '''
        One line per enabled source, then the totals
        '''
        outcomes = self.outcome_map
        lines = []

        for entry in self.plan:
            if entry.action is Action.SKIP:
                status = f'skipped: {entry.describe}'
            elif entry.action is Action.REJECT:
                status = f'rejected: {entry.describe}'
            else:
                outcome = outcomes[entry.source_id]
                if outcome.ok:
                    status = f'merged {self.merged.per_source.get(entry.source_id, 0)} rules'
                    if entry.reason is not None:
                        status += f' (warning: {entry.describe})'
                else:
                    status = f'failed: {outcome.describe}'
            lines.append(f'  {entry.source_id}: {status}')

        for outcome in self.local_outcomes:
            lines.append(f'  {outcome.source_id}: merged {self.merged.per_source.get(outcome.source_id, 0)} rules')

        lines.append(
            f'Total: {len(self.merged)} rules; '
            f'sources merged: {len(self.merged_sources)}, skipped: {len(self.skipped_sources)}, '
            f'rejected: {len(self.rejected_sources)}, failed: {len(self.failed_sources)}; '
            f'shadowed: {len(self.merged.shadowed)}, excluded: {len(self.merged.excluded)}, '
            f'overridden: {len(self.merged.overridden)}'
        )
        return lines

    def header(self, created_by, start_time):
        '''
        Provenance header for the merged rules file
        '''
        lines = [
            '#-------------------------------------------------------------------',
            f'#  Rules file created by {created_by} at {start_time}',
            '#',
            '#  Sources, in merge order (first source wins on duplicate ids):',
        ]
        for source_id, count in self.merged.per_source.items():
            lines.append(f'#    {source_id}: {count} rules')
        lines += [
            '#',
            f'#  Shadowed duplicates: {len(self.merged.shadowed)}',
            f'#  Excluded: {len(self.merged.excluded)}',
            f'#  Overridden: {len(self.merged.overridden)}',
            '#-------------------------------------------------------------------',
        ]
        return '\n'.join(lines)


################################################################################
# run_update - The reconcile / fetch / merge pipeline
################################################################################

def run_update(catalog, selections, fetch_one, overrides=None, local_outcomes=(), max_workers=4, timeout=None):
    '''
    Plan, fetch and merge
    Nothing is written here; the caller decides what to do with the report
    '''

    plan = reconcile(catalog, selections)

    # Report every plan problem before any network activity
    for entry in plan:
        if entry.action is Action.REJECT:
            log.warning(f'Rejecting {entry.source_id}: {entry.describe}')
        elif entry.action is Action.SKIP:
            log.warning(f'Skipping {entry.source_id}: {entry.describe}')
        elif entry.warning:
            log.warning(f'Source {entry.source_id}: {entry.describe}; fetching anyway')

    if not plan:
        log.warning('No sources are enabled')

    outcomes = fetch_all(plan, fetch_one, max_workers=max_workers, timeout=timeout)

    local_outcomes = list(local_outcomes)
    merged = merge(list(outcomes) + local_outcomes, overrides)

    if not len(merged):
        log.warning('The merged ruleset is empty')

    log.verbose(f' - Merged: {merged}')
    return UpdateReport(plan, outcomes, local_outcomes, merged)
