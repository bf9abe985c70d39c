#!/usr/bin/env python3
'''
porkrind v(whatever it says below!)

Copyright (C) 2021 Noah Dietrich, Colin Grady, Michael Shirk and the PulledPork Team!

This program is free software; you can redistribute it and/or
modify it under the terms of the GNU General Public License
as published by the Free Software Foundation; either version 2
of the License, or (at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program; if not, write to the Free Software
Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston, MA  02110-1301, USA.
'''

from argparse import ArgumentParser         # command line parameters parser
from os import environ
from os.path import abspath, isfile, sep
from platform import platform, version, uname, system, python_version, architecture
from sys import exit, argv

# Our porkrind internal libraries
from rindlib import __version__, config, logger
from rindlib.catalog import CatalogManager, SourceStatus
from rindlib.errors import MalformedCatalog, MalformedStore, SelectionError, TransportError
from rindlib.fetch import ArchiveCache, SourceFetcher, Transport
from rindlib.merge import Overrides, load_local_rules
from rindlib.reconcile import offerable_sources
from rindlib.rules import ArchiveExtractor
from rindlib.selections import SelectionStore
from rindlib.update import run_update


# -----------------------------------------------------------------------------
#   GLOBAL CONSTANTS
# -----------------------------------------------------------------------------

SCRIPT_NAME = 'porkrind'
TAGLINE = 'Every source reconciled, every checksum checked, every sid accounted for.'
VERSION_STR = f'{SCRIPT_NAME} v{__version__}'


# -----------------------------------------------------------------------------
#   Prepare the logging
# -----------------------------------------------------------------------------

log = logger.Logger()


# -----------------------------------------------------------------------------
#   MAIN FUNCTION - program execution starts here.
# -----------------------------------------------------------------------------

def main(args=None):

    # parse our command-line args with ArgParse
    args = parse_argv(args)

    # Setup logging as requested
    #   Priority order: DEFAULT (info) < quiet < verbose < debug
    log.level = logger.DEFAULT_LEVEL
    if args.quiet:
        log.level = logger.Levels.WARNING
    if args.verbose:
        log.level = logger.Levels.VERBOSE
    if args.debug:
        log.level = logger.Levels.DEBUG

    # if the -V flag (version) was passed: Print the script Version and Exit
    if args.version:
        print(VERSION_STR)
        return 0

    if not args.command:
        log.error('A command is required; see --help')

    # Always show the banner as the preamble, unless running in quiet mode
    if not args.quiet:
        banner()

    # Print the env (will only print if verbose or debug)
    print_environment(args)

    conf = load_config(args)

    # Dispatch the command
    return COMMANDS[args.command](conf, args)


# -----------------------------------------------------------------------------
#   COMMANDS
# -----------------------------------------------------------------------------

def cmd_update_sources(conf, args):
    '''
    Download the source index and report what changed
    '''
    manager = catalog_manager(conf)
    try:
        catalog = manager.refresh(force=True)
    except (TransportError, MalformedCatalog) as e:
        log.error(f'Unable to update the source index: {e}')

    log.info(f'Source index has {len(catalog)} sources')
    return 0


def cmd_list_sources(conf, args):
    '''
    List the sources in the index with their status and whether enabled
    '''
    catalog = get_catalog(conf)
    store = load_store(conf)

    if args.enabled:
        for selection in store.list():
            source = catalog.get(selection.source_id)
            status = source.status.value if source is not None else 'missing from catalog'
            print(f'{selection.source_id:<32} {status}')
        return 0

    for source in catalog:
        enabled = '*' if store.is_enabled(source.id) else ' '
        print(f'{enabled} {source.id:<32} {source.status.value:<11} {source.vendor} - {source.summary}')
        if source.status_message:
            print(f'    {source.status_message}')
        if source.parameters:
            print(f'    parameters: {", ".join(source.parameters)}')
    return 0


def cmd_enable_source(conf, args):
    '''
    Enable a source, picking one interactively if no name was given
    '''
    catalog = get_catalog(conf)
    store = load_store(conf)

    source_id = args.name
    if source_id is None:
        try:
            given = parse_params(args.param)
        except ValueError as e:
            log.error(str(e))

        # Sources that need parameters are only offered when -p supplied them
        candidates = [
            s for s in offerable_sources(catalog)
            if not store.is_enabled(s.id) and all(name in given for name in s.parameters)
        ]
        source_id = choose('Select a source to enable', [(s.id, f'{s.id} - {s.summary}') for s in candidates])
        if source_id is None:
            return 0

    if store.is_enabled(source_id) and not (args.param or args.url or args.http_header):
        log.info(f'Source {source_id} is already enabled')
        return 0

    try:
        params = parse_params(args.param)
        store.enable(source_id, catalog, params=params, url=args.url, http_header=args.http_header)
    except (SelectionError, ValueError) as e:
        log.error(str(e))

    source = catalog[source_id]
    if source.status is SourceStatus.DEPRECATED:
        log.warning(f'Source {source_id} is deprecated: {source.status_message or "no reason given"}')

    save_store(conf, store)
    log.info(f'Enabled source: {source_id}')
    log.info(f'  Vendor: {source.vendor}')
    log.info(f'  Summary: {source.summary}')
    return 0


def cmd_disable_source(conf, args):
    '''
    Disable a source, picking one interactively if no name was given
    '''
    store = load_store(conf)

    source_id = args.name
    if source_id is None:
        enabled = sorted(s.source_id for s in store.list())
        source_id = choose('Select a source to disable', [(s, s) for s in enabled])
        if source_id is None:
            return 0

    if not store.disable(source_id):
        log.info(f'Source {source_id} is not enabled')
        return 0

    save_store(conf, store)
    log.info(f'Disabled source: {source_id}')
    return 0


def cmd_update(conf, args):
    '''
    Run the whole pipeline: refresh the index, plan, fetch, merge, write
    '''
    rule_path = args.output or conf.rule_path

    # Everything fatal to the run happens before anything is written
    store = load_store(conf)
    overrides = load_overrides(conf)
    local_outcomes = load_local_rules(conf.local_rules)

    # The cached index is only replaced once the new one validated
    manager = catalog_manager(conf)
    try:
        catalog = manager.refresh(force=args.force)
    except (TransportError, MalformedCatalog) as e:
        log.error(f'Unable to load the source index: {e}')

    print_operational_settings(conf, store, rule_path)

    fetcher = SourceFetcher(
        Transport(timeout=conf.fetch_timeout),
        ArchiveExtractor(conf.ignored_files),
        conf.engine_version,
        cache=ArchiveCache(conf.cache_path, conf.archive_max_age),
        force=args.force,
        mask_secrets=not args.print_secrets,
    )

    report = run_update(catalog, store.list(), fetcher, overrides, local_outcomes,
                        max_workers=conf.max_workers, timeout=conf.run_timeout or None)

    log.info('Summary:')
    for line in report.summary_lines():
        log.info(line)

    # Keep the previous ruleset unless a remote source made it through
    if not report.should_write:
        log.warning(f'No enabled source was merged; not writing {rule_path}')
        return report.exit_status

    log.info(f'Writing rules to:  {rule_path}')
    report.merged.write_file(rule_path, conf.include_disabled_rules,
                             report.header(VERSION_STR, conf.start_time))

    log.info('Program execution complete.')
    return report.exit_status


COMMANDS = {
    'update-sources': cmd_update_sources,
    'list-sources': cmd_list_sources,
    'enable-source': cmd_enable_source,
    'disable-source': cmd_disable_source,
    'update': cmd_update,
}


# -----------------------------------------------------------------------------
#   HELPERS
# -----------------------------------------------------------------------------

def load_config(args):
    '''
    Load and validate the configuration, any problem here is fatal
    '''
    conf = config.Config(user_mode=args.user)

    if args.configuration:
        log.info(f'Loading configuration file: {args.configuration}')
        try:
            conf.load(args.configuration)
        except OSError as e:
            log.error(f'Unable to load configuration file: {e}')

    try:
        conf.validate()
    except ValueError as e:
        log.error(f'Invalid configuration: {e}')

    conf.log_config()
    return conf


def catalog_manager(conf):
    return CatalogManager(conf.cache_path, conf.index_url, Transport(timeout=conf.fetch_timeout),
                          max_age=conf.index_max_age)


def get_catalog(conf):
    try:
        return catalog_manager(conf).get_or_download()
    except (TransportError, MalformedCatalog) as e:
        log.error(f'Unable to load the source index: {e}')


def load_store(conf):
    try:
        return SelectionStore.load(conf.store_path)
    except (MalformedStore, OSError) as e:
        log.error(f'Unable to load the selection store {conf.store_path}: {e}')


def save_store(conf, store):
    try:
        store.save(conf.store_path)
    except OSError as e:
        log.error(f'Unable to save the selection store {conf.store_path}: {e}')


def load_overrides(conf):
    '''
    Load the local overrides, empty when none are configured or the file is
    missing; a file that is there but unreadable is fatal
    '''
    if not conf.defined('local_overrides'):
        return Overrides()
    if not isfile(conf.local_overrides):
        log.warning(f'Local overrides file not found, no overrides applied: {conf.local_overrides}')
        return Overrides()
    try:
        overrides = Overrides.load(conf.local_overrides)
    except (OSError, ValueError) as e:
        log.error(f'Unable to load local overrides: {e}')
    else:
        log.verbose(f'Loaded local overrides: {overrides}')
        return overrides


def parse_params(params):
    '''
    Turn ["key=value", ...] into a dict
    '''
    out = {}
    for param in params or []:
        key, sep_, value = param.partition('=')
        if not sep_ or not key.strip():
            raise ValueError(f'Parameters must look like KEY=VALUE: {param}')
        out[key.strip()] = value.strip()
    return out


def choose(prompt, options):
    '''
    Minimal numbered menu; returns the chosen key or None
    '''
    if not options:
        log.info('Nothing to choose from')
        return None

    print(f'{prompt}:')
    for num, (_, label) in enumerate(options, 1):
        print(f'  {num:>3}) {label}')

    try:
        answer = input('Number (blank to cancel): ').strip()
    except EOFError:
        return None

    if not answer:
        return None
    if not answer.isdigit() or not 1 <= int(answer) <= len(options):
        log.warning(f'Not a valid choice: {answer}')
        return None
    return options[int(answer) - 1][0]


def banner():
    '''
    The community demands flying pigs.
    '''

    # Pig art by JJ Cummings
    print(f"""
      _____ ____
     `----,\\    )   {VERSION_STR}
      `--==\\\\  /    {TAGLINE}
       `--==\\\\/
     .-~~~~-.Y|\\\\_
  @_/        /  66\\_
    |    \\   \\   _(\")
     \\   /-| ||'--'   Rules give me wings!
      \\_\\  \\_\\\\
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~""")


def parse_argv(args=None):
    '''
    Get command line arguments
    '''

    arg_parser = ArgumentParser(prog=SCRIPT_NAME, description=f'{VERSION_STR} - {TAGLINE}')

    # we want Quiet or Verbose (v, vv), can't have more than one (but we can have none)
    group_verbosity = arg_parser.add_mutually_exclusive_group()
    group_verbosity.add_argument("-v", "--verbose", help="Increase output verbosity", action="store_true")
    group_verbosity.add_argument("-vv", "--debug", help="Really increase output verbosity", action="store_true")
    group_verbosity.add_argument("-q", "--quiet", help='Only display warnings and errors', action="store_true")

    # standard arguments
    arg_parser.add_argument("-c", "--configuration", help="path to the configuration file", type=abspath)
    arg_parser.add_argument("-V", "--version", help='Print version number and exit', action="store_true")
    arg_parser.add_argument("--user", help='Use per-user directories instead of system directories', action="store_true")
    arg_parser.add_argument("-po", "--print-secrets", help='Do not obfuscate source parameters like access codes in output', action="store_true")

    commands = arg_parser.add_subparsers(dest='command', metavar='COMMAND')

    commands.add_parser('update-sources', help='Download the source index and report changes')

    cmd = commands.add_parser('list-sources', help='List sources with their status')
    cmd.add_argument("--enabled", help='Only list enabled sources', action="store_true")

    cmd = commands.add_parser('enable-source', help='Enable a source')
    cmd.add_argument("name", nargs='?', help='Source to enable (pick from a menu when omitted)')
    cmd.add_argument("-p", "--param", action='append', metavar='KEY=VALUE', help='Source parameter, may be repeated')
    cmd.add_argument("--url", help='Download from this URL instead of the one in the index')
    cmd.add_argument("--http-header", help='Extra "Name: value" header for downloads')

    cmd = commands.add_parser('disable-source', help='Disable a source')
    cmd.add_argument("name", nargs='?', help='Source to disable (pick from a menu when omitted)')

    cmd = commands.add_parser('update', help='Fetch the enabled sources and write the merged ruleset')
    cmd.add_argument("-f", "--force", help='Download even if the cached copies are recent', action="store_true")
    cmd.add_argument("-o", "--output", help='Write the merged ruleset here instead of rule_path', type=abspath)

    return arg_parser.parse_args(args)


def print_operational_settings(conf, store, rule_path):
    '''
    Print all the operational settings after parsing (what we will do)
    '''

    log.verbose('------------------------------------------------------------')
    log.verbose("After parsing the command line and configuration file, this is what I know:")

    log.verbose(f'Source index: {conf.index_url}')
    log.verbose(f'Selection store: {conf.store_path}')
    log.verbose(f'Cache directory: {conf.cache_path}')
    log.verbose(f'Engine version used in source URLs: {conf.engine_version}')
    log.verbose(f'At most {conf.max_workers} sources will be fetched at once')

    if store.list():
        log.verbose('Enabled sources, in merge order:')
        for selection in store.list():
            log.verbose(f'\t{selection.source_id}')
    else:
        log.verbose('No sources are enabled')

    if conf.ignored_files:
        log.verbose(f'The following rules files will not be included: {", ".join(conf.ignored_files)}')
    for local_rule in conf.local_rules:
        log.verbose(f'Rules from local rules file will be included: {local_rule}')
    if conf.defined('local_overrides'):
        log.verbose(f'Local overrides: {conf.local_overrides}')

    log.verbose(f"All rules will be written to a single file: {rule_path}")
    if conf.include_disabled_rules:
        log.verbose("Disabled rules will be written to the rules file")
    else:
        log.verbose("Disabled rules will not be written to the rules file")

    log.verbose('------------------------------------------------------------')


def print_environment(args):
    '''
    Print environment Information
    '''

    log.verbose(f'Running {VERSION_STR}')
    log.verbose("Verbosity (-v or -vv) flag enabled. Verbosity level is: " + log.level.name)
    log.debug('Command-line arguments (argv) are:' + str(argv))
    log.debug("Parsed command-line arguments are (including defaults):")
    for k, v in sorted(vars(args).items()):
        log.debug("\t" + str(k) + ' = ' + str(v))
    log.debug('Platform is:' + platform() + '; ' + version())
    log.debug('uname is: ' + str(uname()))
    log.debug('System is: ' + str(system()))
    log.debug('Python: ' + str(python_version()))
    log.debug("architecture is: " + str(architecture()[0]))
    log.debug("PWD is: " + str(environ.get('PWD')))
    log.debug("SHELL is: " + str(environ.get('SHELL')))
    log.debug('OS Path Separator is: ' + sep)


if __name__ == "__main__":
    exit(main())
