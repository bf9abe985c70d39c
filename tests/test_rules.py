import gzip

import pytest

from rindlib.errors import ExtractError
from rindlib.rules import ArchiveExtractor, Rule, is_enabled, parse_rule_id, parse_rules


def test_rule_parse(rule_text):
    rule = Rule(rule_text(2019401, msg='ET POLICY test', rev=3))

    assert rule.rule_id == '1:2019401'
    assert rule.sid == 2019401
    assert rule.gid == 1
    assert rule.rev == 3
    assert rule.msg == 'ET POLICY test'
    assert rule.action == 'alert'
    assert rule.enabled


def test_rule_parse_disabled_with_gid(rule_text):
    rule = Rule(rule_text(42, gid=3, disabled=True))

    assert rule.rule_id == '3:42'
    assert not rule.enabled
    assert rule.raw.startswith('# alert')
    assert rule.text.startswith('alert tcp')


@pytest.mark.parametrize('text', [
    '',
    '# just a comment',
    'alert tcp any any -> any any (msg:"no sid"; rev:1;)',
    'var HOME_NET any',
])
def test_rule_parse_rejects_non_rules(text):
    with pytest.raises(ValueError):
        Rule(text)


def test_parse_rule_id():
    assert parse_rule_id('2019401') == '1:2019401'
    assert parse_rule_id(' 3:15 ') == '3:15'
    assert parse_rule_id('1:007') == '1:7'
    for bad in ('', 'abc', '1:2:3', '1:x'):
        with pytest.raises(ValueError):
            parse_rule_id(bad)


def test_is_enabled():
    assert is_enabled('alert ip any any -> any any (sid:1;)')
    assert not is_enabled('  # alert ip any any -> any any (sid:1;)')


def test_parse_rules_skips_noise(rule_text):
    content = '\n'.join([
        '# Emerging Threats',
        '',
        rule_text(1),
        'this line mentions sid but (is not a rule)',
        rule_text(2, disabled=True),
    ])
    rules = parse_rules(content.encode('utf-8') + b'\n# \xff\xfe garbage\n')

    assert [r.rule_id for r in rules] == ['1:1', '1:2']


def test_extract_tar(tar_bytes, rule_text):
    data = tar_bytes({
        'rules/emerging-scan.rules': rule_text(1) + '\n' + rule_text(2) + '\n',
        'rules/deleted.rules': rule_text(3) + '\n',
        'rules/classification.config': 'config classification: foo,bar,1\n',
        'rules/emerging-dos.rules': rule_text(4) + '\n',
    })

    rules = ArchiveExtractor(ignored_files=['deleted.rules'])(data, 'emerging.rules.tar.gz')

    assert [rule_id for rule_id, _ in rules] == ['1:1', '1:2', '1:4']
    assert rules[0][1] == rule_text(1)


def test_extract_zip(zip_bytes, rule_text):
    data = zip_bytes({
        'a.rules': rule_text(10) + '\n',
        'README.txt': 'sid: not a rule (really)\n',
    })
    assert ArchiveExtractor()(data, 'rules.zip') == [('1:10', rule_text(10))]


def test_extract_gzipped_rules_file(rule_text):
    data = gzip.compress((rule_text(5) + '\n').encode('utf-8'))
    assert ArchiveExtractor()(data, 'trafficid.rules.gz') == [('1:5', rule_text(5))]


def test_extract_plain_rules_file(rule_text):
    data = (rule_text(6) + '\n' + rule_text(7, disabled=True) + '\n').encode('utf-8')
    rules = ArchiveExtractor()(data, 'trafficid.rules')
    assert [rule_id for rule_id, _ in rules] == ['1:6', '1:7']


def test_extract_garbage():
    with pytest.raises(ExtractError):
        ArchiveExtractor()(b'\x00\xff\xfe\x80 not an archive', 'broken.tar.gz')


def test_extract_truncated_gzip(rule_text):
    data = gzip.compress((rule_text(5) + '\n').encode('utf-8'))
    with pytest.raises(ExtractError):
        ArchiveExtractor()(data[:12], 'broken.rules.gz')


def test_extract_unsupported_zip_compression(unsupported_zip_bytes, rule_text):
    data = unsupported_zip_bytes({'a.rules': rule_text(1) + '\n'})
    with pytest.raises(ExtractError):
        ArchiveExtractor()(data, 'rules.zip')


def test_extract_corrupt_xz_tar(tar_bytes, rule_text):
    data = tar_bytes({'a.rules': rule_text(1) * 50 + '\n'}, compression='xz')
    corrupt = data[:40] + bytes(b ^ 0xff for b in data[40:80]) + data[80:]
    with pytest.raises(ExtractError):
        ArchiveExtractor()(corrupt, 'rules.tar.xz')
