import gzip
import io
import lzma
import os.path
import re
import tarfile
import zipfile
import zlib

from . import logger
from .errors import ExtractError


################################################################################
# Logging
################################################################################

log = logger.Logger()


################################################################################
# Constants
################################################################################

# Rule regex patterns
RULE_REGEX = re.compile(r'^(#+\s*)?(\w+)\s+(.*\(.*\bsid\s*:\s*(\d+)\s*;.*\))\s*$')
RULE_GID_REGEX = re.compile(r'\bgid\s*:\s*(\d+)\s*;')
RULE_REV_REGEX = re.compile(r'\brev\s*:\s*(\d+)\s*;')
RULE_MSG_REGEX = re.compile(r'\bmsg\s*:\s*"([^"]*)"')

RULES_EXTENSION = '.rules'


################################################################################
# Rule - Represents an individual rule, state, and metadata
################################################################################

class Rule(object):

    def __init__(self, rule):
        '''
        Parse the provided rule string into a Rule object

        Example:
        >>> r = Rule('alert tcp $EXTERNAL_NET any -> $HOME_NET 1234 (msg:"This is a test"; content:"test"; sid:1000000001; rev:1;)')
        >>> r
        Rule(rule_id:1:1000000001, action:alert, state:ENABLED)
        >>>
        >>> r = Rule('# alert tcp $EXTERNAL_NET any -> $HOME_NET 1234 (msg:"This is a test"; content:"test"; sid:1000000001; rev:1;)')
        >>> r
        Rule(rule_id:1:1000000001, action:alert, state:DISABLED)
        '''

        # Use regex to parse the rule bits
        rule_parts = RULE_REGEX.match(rule.strip())

        # If not a rule, move on
        if rule_parts is None:
            raise ValueError('Rule text was not able to be parsed')

        # Save the easy bits
        self.raw = rule.strip()
        self._body = rule_parts[3]
        self.sid = int(rule_parts[4])
        self.action = rule_parts[2]
        self.enabled = rule_parts[1] is None

        # Parse harder rule bits
        gid = RULE_GID_REGEX.search(self._body)
        self.gid = int(gid[1]) if gid is not None else 1
        rev = RULE_REV_REGEX.search(self._body)
        self.rev = int(rev[1]) if rev is not None else 0
        msg = RULE_MSG_REGEX.search(self._body)
        self.msg = msg[1] if msg is not None else ''

    def __repr__(self):
        return f'Rule(rule_id:{self.rule_id}, action:{self.action}, state:{"ENABLED" if self.enabled else "DISABLED"})'

    @property
    def rule_id(self):
        '''
        Return the signature identifier: GID:SID

        Example:
        >>> Rule('alert ip any any -> any any (msg:"x"; gid:3; sid:42; rev:2;)').rule_id
        '3:42'
        '''
        return f'{self.gid}:{self.sid}'

    @property
    def text(self):
        '''
        Return the rule text with the current action, ignoring state
        '''
        return f'{self.action} {self._body}'


def parse_rule_id(text):
    '''
    Normalize a user supplied signature identifier to GID:SID
    A bare SID means GID 1

    Example:
    >>> parse_rule_id('2019401')
    '1:2019401'
    >>> parse_rule_id(' 3:15 ')
    '3:15'
    '''
    parts = text.strip().split(':')
    if len(parts) == 1 and parts[0].isdigit():
        return f'1:{int(parts[0])}'
    if len(parts) == 2 and all(p.strip().isdigit() for p in parts):
        return f'{int(parts[0])}:{int(parts[1])}'
    raise ValueError(f'Not a signature identifier: {text!r}')


def is_enabled(body):
    '''
    Whether raw rule text is an active (not commented out) rule
    '''
    return not body.lstrip().startswith('#')


def parse_rules(content, filename='<text>'):
    '''
    Parse rule text and return the rules in the order they appear
    '''

    # Lossy decode; one bad byte should not throw away a whole file
    if isinstance(content, bytes):
        content = content.decode('utf-8', errors='replace')

    rules = []
    for line_num, line in enumerate(content.splitlines(), 1):

        # Strip the line
        line = line.strip()

        # Skip when we hit obvious non-rules
        if not line:
            continue
        elif 'sid' not in line:
            continue
        elif '(' not in line or ')' not in line:
            continue

        # Attempt to parse the line as a rule
        try:
            rules.append(Rule(line))
        except ValueError as e:
            log.debug(f'{filename}:{line_num} - {e}')

    return rules


################################################################################
# ArchiveExtractor - Pulls rule bodies out of a downloaded archive
################################################################################

class ArchiveExtractor(object):

    def __init__(self, ignored_files=()):
        '''
        Setup the extractor, skipping rule files named in ignored_files

        Example:
        >>> extract = ArchiveExtractor(ignored_files=['deleted.rules'])
        >>> extract(open('emerging.rules.tar.gz', 'rb').read())[:1]
        [('1:2000005', 'alert tcp $EXTERNAL_NET any -> $HOME_NET any (msg:"..."; sid:2000005; rev:9;)')]
        '''
        self.ignored_files = set(ignored_files)

    def __repr__(self):
        return f'ArchiveExtractor(ignored_files:{len(self.ignored_files)})'

    def __call__(self, data, filename=None):
        '''
        Return [(signature_id, rule_body)] for every rule in the archive,
        in archive member order and then line order
        '''
        rules = []
        for member_name, content in self.members(data, filename):
            for rule in parse_rules(content, member_name):
                rules.append((rule.rule_id, rule.raw))
        return rules

    def wanted(self, member_name):
        base_name = os.path.basename(member_name)
        if not base_name.endswith(RULES_EXTENSION):
            return False
        if base_name in self.ignored_files:
            log.verbose(f' - Ignoring rules file: {member_name}')
            return False
        return True

    def members(self, data, filename=None):
        '''
        Return [(member_name, bytes)] for the rule files in the archive
        '''
        filename = filename or '<download>'

        try:
            if zipfile.is_zipfile(io.BytesIO(data)):
                return self._zip_members(data)

            tar_members = self._tar_members(data)
            if tar_members is not None:
                return tar_members

            # A single gzipped rules file
            if data[:2] == b'\x1f\x8b':
                data = gzip.decompress(data)
                if filename.endswith('.gz'):
                    filename = filename[:-3]

        except (tarfile.TarError, zipfile.BadZipFile, zlib.error, lzma.LZMAError, EOFError, OSError,
                NotImplementedError, RuntimeError) as e:
            # NotImplementedError: unsupported zip compression, RuntimeError: encrypted zip member
            raise ExtractError(f'Unable to extract {filename}: {e}')

        # Plain text rules, but only if it really is text
        try:
            data.decode('utf-8')
        except UnicodeDecodeError:
            raise ExtractError(f'{filename} is not a recognized archive or rules file')

        return [(filename, data)]

    def _zip_members(self, data):
        members = []
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            for info in zf.infolist():
                if info.is_dir() or not self.wanted(info.filename):
                    continue
                members.append((info.filename, zf.read(info)))
        return members

    def _tar_members(self, data):
        try:
            tar = tarfile.open(fileobj=io.BytesIO(data), mode='r:*')
        except tarfile.ReadError:
            return None

        members = []
        with tar:
            for member in tar:
                if not member.isfile() or not self.wanted(member.name):
                    continue
                members.append((member.name, tar.extractfile(member).read()))
        return members
