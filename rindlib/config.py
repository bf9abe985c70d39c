import os
from time import strftime, localtime

from . import logger


################################################################################
# Logging
################################################################################

log = logger.Logger()


################################################################################
# Constants
################################################################################

DEFAULT_INDEX_URL = 'https://www.openinfosecfoundation.org/rules/index.yaml'

# Environment variable that takes precedence over `index_url`
INDEX_URL_ENV = 'SOURCE_INDEX_URL'

STORE_FILENAME = 'enabled-sources.yaml'
RULES_FILENAME = 'suricata.rules'

# Courtesy limits for the remote servers
MIN_WORKERS = 1
MAX_WORKERS = 8

SYSTEM_PATHS = {
    'data_path': '/var/lib/suricata/update',
    'cache_path': '/var/lib/suricata/update/cache',
    'rule_path': os.path.join('/var/lib/suricata/rules', RULES_FILENAME),
}


def user_paths():
    '''
    Per-user locations, matching what suricata-update uses
    '''
    home = os.path.expanduser('~')
    data_home = os.environ.get('XDG_DATA_HOME') or os.path.join(home, '.local', 'share')
    cache_home = os.environ.get('XDG_CACHE_HOME') or os.path.join(home, '.cache')
    return {
        'data_path': os.path.join(data_home, 'suricata', 'update'),
        'cache_path': os.path.join(cache_home, 'suricata', 'update'),
        'rule_path': os.path.join(data_home, 'suricata', 'rules', RULES_FILENAME),
    }


################################################################################
# Config
################################################################################

class Config(object):

    # Defined values are defaults, copied into each instance
    DEFAULTS = {
        'index_url': DEFAULT_INDEX_URL,
        'engine_version': '7.0.0',
        'local_overrides': None,
        'local_rules': None,
        'ignored_files': None,
        'max_workers': 4,
        'fetch_timeout': 60,
        'run_timeout': 0,
        'index_max_age': 900,
        'archive_max_age': 900,
        'include_disabled_rules': False,
    }

    def __init__(self, user_mode=False):

        # Save the start time for the run
        start_time = strftime('%Y.%m.%d-%H.%M.%S', localtime())

        config = dict(self.DEFAULTS)
        config.update(user_paths() if user_mode else SYSTEM_PATHS)
        config['user_mode'] = user_mode
        config['start_time'] = start_time

        object.__setattr__(self, '_config', config)

    # Supporting functions

    def __contains__(self, key):
        return key in self._config

    def __iter__(self):
        return iter(self._config)

    def __getitem__(self, key):
        return self._config[key]

    def get(self, key, default=None):
        return self._config.get(key, default)

    def items(self):
        return self._config.items()

    def keys(self):
        return self._config.keys()

    def __getattr__(self, key):
        '''
        Provide direct access to the dict via .key
        '''
        config = self.__dict__.get('_config', {})
        if key in config:
            return config[key]
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{key}'")

    def __setattr__(self, key, value):
        '''
        Update the _config dict when setting attributes to this config
        '''
        self._config[key] = value

    def defined(self, key):
        '''
        Return True or False whether a config key is defined
        '''
        res = self.get(key, None)
        if isinstance(res, bool):
            return True
        return bool(res)

    def load(self, config_file):
        '''
        Parse the config file line-by-line and populate _config
        '''

        log.debug(f'Entering: Config.load({config_file})')

        # Open the config and work through it line-by-line
        with open(config_file, 'r') as fh:
            for line in fh.readlines():

                # Comment or no variable being set? Move on
                if line.lstrip().startswith('#') or '=' not in line:
                    continue

                # Collect and strip the config bits
                key, val = line.split('=', 1)
                key = key.strip().lower()
                val = val.strip(' "\'\t\r\n')

                # Convert some things as needed booleans and ints
                if val.lower() == 'true':
                    val = True
                elif val.lower() == 'false':
                    val = False
                else:
                    try:
                        val = int(val)
                    except ValueError:
                        pass

                self._config[key] = val

        log.debug(f'Exiting: Config.load({config_file})')

    def log_config(self):
        '''
        Log the current config
        '''
        log.debug('Current configuration:')
        for key, val in self.items():
            log.debug(f'  Key: {key}\tValue: {val}')

    def validate(self):
        '''
        Attempt to validate the config, filling in the derived settings
        Raises ValueError for anything we can't run with
        '''

        log.debug('Entering: Config.validate()')

        # Helper to cleanup and de-dupe list settings
        def list_from_str(some_str):
            out_list = []
            for thing in str(some_str).split(','):
                thing = thing.strip()
                if thing and thing not in out_list:
                    out_list.append(thing)
            return out_list

        # Non-critical checks

        if isinstance(self.local_rules, list):
            pass
        elif self.defined('local_rules'):
            self.local_rules = list_from_str(self.local_rules)
        else:
            self.local_rules = []

        for local_rule in self.local_rules:
            if not os.path.exists(local_rule):
                log.warning(f'`local_rules` is configured, but at least one entry does not exist: {local_rule}')

        # NOTE: "ignore" is the suricata-update / PulledPork name for the same list
        ignored_files = []
        if self.defined('ignore'):
            ignored_files += list_from_str(self.ignore)
            _ = self._config.pop('ignore')
        if isinstance(self.ignored_files, list):
            ignored_files += self.ignored_files
        elif self.defined('ignored_files'):
            ignored_files += list_from_str(self.ignored_files)
        self.ignored_files = sorted(set(ignored_files))

        if self.defined('local_overrides') and not os.path.isfile(self.local_overrides):
            log.warning(f'`local_overrides` is configured but is not a file: {self.local_overrides}')

        # The environment wins over the config file for the index location
        if os.environ.get(INDEX_URL_ENV):
            self.index_url = os.environ[INDEX_URL_ENV]

        # Clamp the worker pool
        try:
            workers = int(self.max_workers)
        except (TypeError, ValueError):
            raise ValueError(f'`max_workers` must be an integer: {self.max_workers}')
        if not MIN_WORKERS <= workers <= MAX_WORKERS:
            log.warning(f'`max_workers` of {workers} is out of range, using {min(max(workers, MIN_WORKERS), MAX_WORKERS)}')
        self.max_workers = min(max(workers, MIN_WORKERS), MAX_WORKERS)

        # Critical checks below

        for key in ('fetch_timeout', 'index_max_age', 'archive_max_age', 'run_timeout'):
            val = self.get(key)
            if not isinstance(val, int) or isinstance(val, bool) or val < 0:
                raise ValueError(f'`{key}` must be a non-negative integer: {val}')
        if self.fetch_timeout == 0:
            raise ValueError('`fetch_timeout` must be greater than zero')

        for key in ('index_url', 'data_path', 'cache_path', 'rule_path'):
            if not self.defined(key):
                raise ValueError(f'Required `{key}` is missing in configuration')

        if not isinstance(self.include_disabled_rules, bool):
            raise ValueError(f'`include_disabled_rules` must be true or false: {self.include_disabled_rules}')

        self.engine_version = str(self.engine_version)
        self.store_path = os.path.join(self.data_path, STORE_FILENAME)

        log.debug('Exiting: Config.validate()')
