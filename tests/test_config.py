import pytest

from rindlib import config


def write_conf(tmp_path, text):
    conf_file = tmp_path / 'porkrind.conf'
    conf_file.write_text(text)
    return str(conf_file)


def test_defaults_system_paths():
    conf = config.Config()
    conf.validate()

    assert conf.data_path == '/var/lib/suricata/update'
    assert conf.store_path == '/var/lib/suricata/update/enabled-sources.yaml'
    assert conf.index_url == config.DEFAULT_INDEX_URL
    assert conf.max_workers == 4
    assert conf.local_rules == []
    assert conf.ignored_files == []


def test_user_paths(monkeypatch, tmp_path):
    monkeypatch.setenv('XDG_DATA_HOME', str(tmp_path / 'data'))
    monkeypatch.setenv('XDG_CACHE_HOME', str(tmp_path / 'cache'))

    conf = config.Config(user_mode=True)

    assert conf.data_path == str(tmp_path / 'data' / 'suricata' / 'update')
    assert conf.cache_path == str(tmp_path / 'cache' / 'suricata' / 'update')
    assert conf.user_mode


def test_load_coerces_values(tmp_path):
    conf = config.Config()
    conf.load(write_conf(tmp_path, '\n'.join([
        '# comment = ignored',
        'engine_version = 6.0.13',
        'max_workers = 2',
        'include_disabled_rules = True',
        "index_url = 'https://mirror.test/index.yaml'",
        'ignore = deleted.rules, dos.rules',
        'ignored_files = deleted.rules,scan.rules',
        'not a setting',
    ])))
    conf.validate()

    assert conf.engine_version == '6.0.13'
    assert conf.max_workers == 2
    assert conf.include_disabled_rules is True
    assert conf.index_url == 'https://mirror.test/index.yaml'
    assert conf.ignored_files == ['deleted.rules', 'dos.rules', 'scan.rules']
    assert 'ignore' not in conf


def test_env_overrides_index_url(tmp_path, monkeypatch):
    monkeypatch.setenv(config.INDEX_URL_ENV, 'file:///srv/index.yaml')
    conf = config.Config()
    conf.load(write_conf(tmp_path, 'index_url = https://mirror.test/index.yaml\n'))
    conf.validate()

    assert conf.index_url == 'file:///srv/index.yaml'


@pytest.mark.parametrize('workers, expected', [(0, 1), (-3, 1), (20, 8), (8, 8)])
def test_max_workers_clamped(workers, expected):
    conf = config.Config()
    conf.max_workers = workers
    conf.validate()
    assert conf.max_workers == expected


@pytest.mark.parametrize('key, value', [
    ('fetch_timeout', 0),
    ('fetch_timeout', -1),
    ('run_timeout', 'soon'),
    ('index_max_age', True),
    ('max_workers', 'many'),
    ('include_disabled_rules', 'yes'),
    ('data_path', ''),
])
def test_invalid_values(key, value):
    conf = config.Config()
    setattr(conf, key, value)
    with pytest.raises(ValueError):
        conf.validate()


def test_missing_local_paths_only_warn(tmp_path, capsys):
    conf = config.Config()
    conf.local_rules = f'{tmp_path}/missing.rules'
    conf.local_overrides = f'{tmp_path}/missing.conf'
    conf.validate()

    out = capsys.readouterr().out
    assert 'missing.rules' in out
    assert 'missing.conf' in out
    assert conf.local_rules == [f'{tmp_path}/missing.rules']


def test_defined():
    conf = config.Config()
    assert conf.defined('include_disabled_rules')
    assert not conf.defined('local_overrides')
    assert not conf.defined('nonexistent')
