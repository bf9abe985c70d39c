'''
Console logger shared by the porkrind script and library.

All instances share their level and the list of hidden strings, so setting
the level once in main() applies everywhere a module grabbed a Logger().
'''
import sys
import threading
from enum import IntEnum


class Levels(IntEnum):
    ERROR = -1
    WARNING = 0
    INFO = 1
    VERBOSE = 2
    DEBUG = 3


class Colors:
    HEADER = '\033[95m'
    OKBLUE = '\033[94m'
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'  # a nice yellowish warning
    FAIL = '\033[91m'       # RED
    ENDC = '\033[0m'    # end the color (end of line)
    BOLD = '\033[1m'
    UNDERLINE = '\033[4m'


# Global Logger defaults
DEFAULT_LEVEL = Levels.INFO

# Fetch workers log from several threads at once
_print_lock = threading.Lock()


class Logger(object):

    # Set global defaults
    _level = DEFAULT_LEVEL
    _hidden_strings = []

    def __init__(self, level=None):

        # Allow overrides to global defaults during instantiation
        if level is not None:
            self.level = level

    # Ensure the properties changes affect the values globally

    @classmethod
    def _set_level(cls, level):
        cls._level = level

    # Properties

    @property
    def level(self):
        return self._level

    @level.setter
    def level(self, level):
        self._set_level(level)

    # RO property, use .add_hidden_string() to add to the global list

    @property
    def hidden_strings(self):
        return self._hidden_strings

    @classmethod
    def add_hidden_string(cls, some_str):
        if some_str and some_str not in cls._hidden_strings:
            cls._hidden_strings.append(some_str)

    @classmethod
    def clear_hidden_strings(cls):
        cls._hidden_strings.clear()

    def _sanitize(self, msg):
        '''
        Hide the strings present in the hidden_strings list
        '''

        # Work through the list, replacing each
        for some_str in self.hidden_strings:
            msg = msg.replace(some_str, '<hidden>')

        return msg

    # Logging methods

    def _log(self, level, msg):
        '''
        Print the message as long we have a sufficient log level, and sanitize
        if required
        '''

        # Check the level
        if self.level < level:
            return

        # Sanitize the output unless we're at DEBUG
        if self.level < Levels.DEBUG:
            msg = self._sanitize(msg)

        with _print_lock:
            print(msg)

    def error(self, msg):
        '''
        Print the message and exit, this was fatal for the run
        '''
        self._log(Levels.ERROR, f'{Colors.FAIL}ERROR: {msg}{Colors.ENDC}')
        sys.exit(-2)

    def warning(self, msg):
        self._log(Levels.WARNING, f'{Colors.WARNING}WARNING: {msg}{Colors.ENDC}')

    def info(self, msg):
        self._log(Levels.INFO, msg)

    def verbose(self, msg):
        self._log(Levels.VERBOSE, msg)

    def debug(self, msg):
        self._log(Levels.DEBUG, msg)
