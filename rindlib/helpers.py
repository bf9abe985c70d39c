import os
import os.path
import platform
import tempfile

from . import __version__
from . import logger


################################################################################
# Logging
################################################################################

log = logger.Logger()


################################################################################
# Files and directories
################################################################################

def ensure_dir(path):
    '''
    Create a directory (and parents) if it is not there yet
    '''
    if path and not os.path.isdir(path):
        log.debug(f'Creating directory: {path}')
        os.makedirs(path, exist_ok=True)


def atomic_write(target_file, data):
    '''
    Write data (str or bytes) to target_file through a temp file in the same
    directory followed by a rename, so readers only ever see the old file or
    the complete new one

    Example:
    >>> atomic_write('/tmp/porkrind.rules', 'alert ip any any -> any any (sid:1;)\\n')
    '''

    if isinstance(data, str):
        data = data.encode('utf-8')

    target_dir = os.path.dirname(os.path.abspath(target_file))
    ensure_dir(target_dir)

    # Temp file must live on the same filesystem for the rename to be atomic
    fd, temp_file = tempfile.mkstemp(prefix='.porkrind-', suffix='.tmp', dir=target_dir)
    try:
        with os.fdopen(fd, 'wb') as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(temp_file, target_file)
    except BaseException:
        # Leave nothing half-written behind, then let the caller decide
        if os.path.exists(temp_file):
            os.unlink(temp_file)
        raise


################################################################################
# URLs
################################################################################

def url_basename(url):
    '''
    Return the base filename of the URL, minus any query string

    Example:
    >>> url_basename('https://rules.example.org/open/emerging.rules.tar.gz?x=1')
    'emerging.rules.tar.gz'
    '''
    return os.path.basename(url).split('?', 1)[0]


################################################################################
# User-Agent
################################################################################

def _os_release_field(content, field):
    for line in content.splitlines():
        if line.startswith(f'{field}='):
            return line.split('=', 1)[1].strip('"\'')
    return None


def get_dist():
    '''
    Best-effort distribution name, empty string when unknown
    '''

    # Try to read distribution info from /etc/os-release
    try:
        with open('/etc/os-release', 'r') as fh:
            content = fh.read()
    except OSError:
        content = None

    if content:
        name = _os_release_field(content, 'NAME')
        if name:
            version = _os_release_field(content, 'VERSION_ID') or _os_release_field(content, 'BUILD_ID')
            return f'{name}/{version}' if version else name

    # Fallback: try other common files
    for release_file, prefix in (('/etc/redhat-release', ''), ('/etc/debian_version', 'Debian/')):
        try:
            with open(release_file, 'r') as fh:
                return f'{prefix}{fh.read().strip()}'
        except OSError:
            continue

    return ''


def user_agent():
    '''
    Return the User-Agent used for every HTTP request

    Example:
    >>> user_agent()
    'porkrind/1.0.0 (OS: Linux; CPU: x86_64; Dist: Debian GNU/Linux/12)'
    '''
    return f'porkrind/{__version__} (OS: {platform.system()}; CPU: {platform.machine()}; Dist: {get_dist()})'
