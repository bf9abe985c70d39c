import os
import os.path

from . import helpers, logger
from .fetch import FetchOutcome, FetchResult
from .rules import RULES_EXTENSION, Rule, is_enabled, parse_rule_id, parse_rules


################################################################################
# Logging
################################################################################

log = logger.Logger()


################################################################################
# Constants
################################################################################

LOCAL_SOURCE_PREFIX = 'local:'


################################################################################
# Overrides - Local exclude/override directives
################################################################################

class Overrides(object):

    def __init__(self, excludes=(), overrides=None):
        '''
        Setup the directives

        Example:
        >>> ov = Overrides.from_lines(['exclude 2019401', 'override alert ip any any -> any any (sid:5; rev:2;)'])
        >>> ov
        Overrides(excludes:1, overrides:1)
        '''
        self.excludes = set(excludes)
        self.overrides = dict(overrides or {})

    def __repr__(self):
        return f'Overrides(excludes:{len(self.excludes)}, overrides:{len(self.overrides)})'

    def __bool__(self):
        return bool(self.excludes or self.overrides)

    @classmethod
    def from_lines(cls, lines, filename='<overrides>'):
        '''
        Parse directives, one per line:
            exclude <gid:sid|sid>
            override <complete rule text>
        '''
        excludes = set()
        overrides = {}

        for line_num, line in enumerate(lines, 1):

            # Strip the line, skip empty lines and comments
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            directive, _, arg = line.partition(' ')
            directive = directive.lower()
            arg = arg.strip()

            try:
                if directive == 'exclude':
                    excludes.add(parse_rule_id(arg))
                elif directive == 'override':
                    rule = Rule(arg)
                    overrides[rule.rule_id] = rule.raw
                else:
                    raise ValueError(f'Unknown directive: {directive}')
            except ValueError as e:
                raise ValueError(f'{filename}:{line_num} - {e}')

        return cls(excludes, overrides)

    @classmethod
    def load(cls, overrides_file):
        with open(overrides_file, 'r') as fh:
            return cls.from_lines(fh.readlines(), overrides_file)


################################################################################
# MergedRule / MergedRuleset - The consolidated output
################################################################################

class MergedRule(object):

    __slots__ = ('signature_id', 'body', 'source_id')

    def __init__(self, signature_id, body, source_id):
        self.signature_id = signature_id
        self.body = body
        self.source_id = source_id

    def __repr__(self):
        return f'MergedRule(signature_id:{self.signature_id}, source_id:{self.source_id})'

    def __eq__(self, other):
        if not isinstance(other, MergedRule):
            return NotImplemented
        return (self.signature_id, self.body, self.source_id) == (other.signature_id, other.body, other.source_id)

    @property
    def enabled(self):
        return is_enabled(self.body)


class MergedRuleset(object):

    def __init__(self):
        self.rules = []
        self.per_source = {}
        self.shadowed = []
        self.excluded = []
        self.overridden = []

    def __repr__(self):
        return f'MergedRuleset(rules:{len(self)}, sources:{len(self.per_source)}, shadowed:{len(self.shadowed)})'

    def __len__(self):
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def __contains__(self, signature_id):
        return any(rule.signature_id == signature_id for rule in self.rules)

    def get(self, signature_id, default=None):
        for rule in self.rules:
            if rule.signature_id == signature_id:
                return rule
        return default

    @property
    def dropped(self):
        '''
        Total rules that did not make it out: shadowed plus excluded
        '''
        return len(self.shadowed) + len(self.excluded)

    def render(self, include_disabled=False, header=None):
        '''
        Return the ruleset file contents; each source's rules are preceded
        by a comment naming the source
        '''
        lines = []
        if header is not None:
            lines.append(header.rstrip('\n'))
            lines.append('')

        current_source = None
        for rule in self.rules:
            if not rule.enabled and not include_disabled:
                continue
            if rule.source_id != current_source:
                current_source = rule.source_id
                lines.append(f'# Source: {current_source}')
            lines.append(rule.body)

        return '\n'.join(lines) + '\n'

    def write_file(self, rules_file, include_disabled=False, header=None):
        '''
        Write the rules to a file, atomically
        Optionally includes the disabled rules (commented out) and a header
        '''
        helpers.atomic_write(rules_file, self.render(include_disabled, header))


################################################################################
# Merge
################################################################################

def merge(outcomes, overrides=None):
    '''
    Merge the successful outcomes in the order given; the first source to
    supply a signature id wins and later copies are recorded as shadowed.
    Excludes and overrides are applied afterwards.

    Example:
    >>> merged = merge([outcome_a, outcome_b])
    >>> merged
    MergedRuleset(rules:2, sources:2, shadowed:1)
    >>> merged.shadowed
    [('1:1', 'a', 'b')]
    '''

    merged = MergedRuleset()
    winners = {}

    for outcome in outcomes:
        if not outcome.ok:
            continue

        merged.per_source.setdefault(outcome.source_id, 0)

        for signature_id, body in outcome.rules:
            if signature_id in winners:
                winner = winners[signature_id]
                merged.shadowed.append((signature_id, winner, outcome.source_id))
                log.debug(f' - {signature_id} from {outcome.source_id} shadowed by {winner}')
                continue

            winners[signature_id] = outcome.source_id
            merged.rules.append(MergedRule(signature_id, body, outcome.source_id))

    if overrides:

        # Excludes
        kept = []
        for rule in merged.rules:
            if rule.signature_id in overrides.excludes:
                merged.excluded.append(rule.signature_id)
                continue
            kept.append(rule)
        merged.rules = kept

        # Overrides keep the original position and provenance
        for rule in merged.rules:
            if rule.signature_id in overrides.overrides:
                rule.body = overrides.overrides[rule.signature_id]
                merged.overridden.append(rule.signature_id)

        for signature_id in overrides.overrides:
            if signature_id not in merged.overridden:
                log.verbose(f' - Override for {signature_id} did not match any rule')

    for rule in merged.rules:
        merged.per_source[rule.source_id] += 1

    return merged


################################################################################
# Local rules
################################################################################

def load_local_rules(paths):
    '''
    Load local rules files (or directories of them) as outcomes that can be
    merged after the remote sources
    '''
    outcomes = []

    for path in paths:
        if os.path.isdir(path):
            files = sorted(
                entry.path for entry in os.scandir(path)
                if entry.is_file() and entry.name.endswith(RULES_EXTENSION)
            )
        else:
            files = [path]

        for rules_file in files:
            try:
                with open(rules_file, 'rb') as fh:
                    rules = parse_rules(fh.read(), rules_file)
            except OSError as e:
                log.warning(f'Unable to load local rules file {rules_file}: {e}')
                continue

            source_id = f'{LOCAL_SOURCE_PREFIX}{os.path.basename(rules_file)}'
            log.info(f'Loaded local rules file: {len(rules)} rules from {rules_file}')
            outcomes.append(FetchOutcome(source_id, FetchResult.OK,
                                         rules=[(rule.rule_id, rule.raw) for rule in rules]))

    return outcomes
