from rindlib.fetch import FetchOutcome, FetchResult, SourceFetcher
from rindlib.merge import Overrides
from rindlib.reconcile import Action
from rindlib.rules import ArchiveExtractor
from rindlib.selections import Selection
from rindlib.update import run_update


def fake_fetcher(rules_by_source, failures=()):
    calls = []

    def fetch_one(entry):
        calls.append(entry.source_id)
        if entry.source_id in failures:
            return FetchOutcome(entry.source_id, FetchResult.CHECKSUM_MISMATCH, error='expected md5:0, got md5:1')
        return FetchOutcome(entry.source_id, FetchResult.OK, rules=rules_by_source.get(entry.source_id, []))

    fetch_one.calls = calls
    return fetch_one


def test_active_deprecated_obsolete(abc_catalog, capsys):
    fetch_one = fake_fetcher({
        'a': [('1:1', 'rule a1'), ('1:2', 'rule a2')],
        'b': [('1:2', 'rule b2'), ('1:3', 'rule b3')],
    })

    report = run_update(abc_catalog, [Selection('a'), Selection('b'), Selection('c')], fetch_one)

    assert sorted(fetch_one.calls) == ['a', 'b']
    assert report.merged_sources == ['a', 'b']
    assert report.rejected_sources == ['c']
    assert report.merged.per_source == {'a': 2, 'b': 1}
    assert report.merged.shadowed == [('1:2', 'a', 'b')]
    assert report.exit_status == 0
    assert report.contributed

    out = capsys.readouterr().out
    assert 'Rejecting c: source is obsolete (gone)' in out
    assert 'Source b: source is deprecated (use a instead); fetching anyway' in out

    lines = report.summary_lines()
    assert '  a: merged 2 rules' in lines
    assert '  b: merged 1 rules (warning: source is deprecated (use a instead))' in lines
    assert '  c: rejected: source is obsolete (gone)' in lines
    assert lines[-1].startswith('Total: 3 rules;')


def test_missing_source_is_skipped(abc_catalog):
    fetch_one = fake_fetcher({'a': [('1:1', 'rule a1')]})

    report = run_update(abc_catalog, [Selection('d'), Selection('a')], fetch_one)

    assert fetch_one.calls == ['a']
    assert report.skipped_sources == ['d']
    assert report.plan[0].action is Action.SKIP
    assert '  d: skipped: source is not in the catalog' in report.summary_lines()
    assert report.exit_status == 0


def test_one_failure_does_not_stop_the_others(abc_catalog):
    fetch_one = fake_fetcher({'b': [('1:3', 'rule b3')]}, failures={'a'})

    report = run_update(abc_catalog, [Selection('a'), Selection('b')], fetch_one)

    assert report.failed_sources == ['a']
    assert report.merged_sources == ['b']
    assert [r.signature_id for r in report.merged] == ['1:3']
    assert report.exit_status == 0
    assert any(line.startswith('  a: failed: checksum mismatch') for line in report.summary_lines())


def test_all_failed(abc_catalog):
    report = run_update(abc_catalog, [Selection('a')], fake_fetcher({}, failures={'a'}))

    assert report.exit_status == 1
    assert not report.contributed


def test_nothing_enabled(abc_catalog, capsys):
    report = run_update(abc_catalog, [], fake_fetcher({}))

    assert report.exit_status == 0
    assert not report.contributed
    assert 'No sources are enabled' in capsys.readouterr().out


def test_local_rules_merge_last(abc_catalog):
    local = [FetchOutcome('local:local.rules', FetchResult.OK, rules=[('1:1', 'local 1'), ('1:9', 'local 9')])]

    report = run_update(abc_catalog, [Selection('a')], fake_fetcher({'a': [('1:1', 'rule a1')]}),
                        local_outcomes=local)

    assert report.merged.get('1:1').source_id == 'a'
    assert report.merged.get('1:9').source_id == 'local:local.rules'
    assert '  local:local.rules: merged 1 rules' in report.summary_lines()


def test_overrides_applied(abc_catalog, rule_text):
    overrides = Overrides.from_lines(['exclude 1', 'override ' + rule_text(2, msg='mine')])
    fetch_one = fake_fetcher({'a': [('1:1', rule_text(1)), ('1:2', rule_text(2))]})

    report = run_update(abc_catalog, [Selection('a')], fetch_one, overrides)

    assert [r.body for r in report.merged] == [rule_text(2, msg='mine')]


def test_header_lists_sources(abc_catalog):
    report = run_update(abc_catalog, [Selection('a'), Selection('b')],
                        fake_fetcher({'a': [('1:1', 'x')], 'b': [('1:1', 'y')]}))

    header = report.header('porkrind v1.0.0', '2024.01.01-00.00.00')

    assert 'Rules file created by porkrind v1.0.0 at 2024.01.01-00.00.00' in header
    assert '#    a: 1 rules' in header
    assert '#    b: 0 rules' in header
    assert '#  Shadowed duplicates: 1' in header


def test_checksum_mismatch_end_to_end(abc_catalog, fake_transport, tar_bytes, rule_text, md5_hex):
    a_data = tar_bytes({'a.rules': rule_text(1) + '\n'})
    b_data = tar_bytes({'b.rules': rule_text(2) + '\n'})
    transport = fake_transport({
        'https://rules.test/a.tar.gz': a_data,
        'https://rules.test/a.tar.gz.md5': md5_hex(b'tampered').encode(),
        'https://rules.test/b.tar.gz': b_data,
        'https://rules.test/b.tar.gz.md5': md5_hex(b_data).encode(),
    })
    fetcher = SourceFetcher(transport, ArchiveExtractor(), '7.0.3')

    report = run_update(abc_catalog, [Selection('a'), Selection('b')], fetcher, max_workers=2)

    assert report.outcome_map['a'].result is FetchResult.CHECKSUM_MISMATCH
    assert report.merged_sources == ['b']
    assert [r.signature_id for r in report.merged] == ['1:2']


def test_should_write_needs_a_remote_source(abc_catalog):
    local = [FetchOutcome('local:local.rules', FetchResult.OK, rules=[('1:9', 'local 9')])]

    failed = run_update(abc_catalog, [Selection('a')], fake_fetcher({}, failures={'a'}), local_outcomes=local)
    assert failed.contributed
    assert not failed.should_write
    assert failed.exit_status == 1

    only_local = run_update(abc_catalog, [], fake_fetcher({}), local_outcomes=local)
    assert only_local.should_write

    merged = run_update(abc_catalog, [Selection('a')], fake_fetcher({'a': [('1:1', 'rule a1')]}))
    assert merged.should_write


def test_bad_archive_fails_only_its_source(abc_catalog, fake_transport, tar_bytes, unsupported_zip_bytes,
                                           rule_text, md5_hex):
    a_data = unsupported_zip_bytes({'a.rules': rule_text(1) + '\n'})
    b_data = tar_bytes({'b.rules': rule_text(2) + '\n'})
    transport = fake_transport({
        'https://rules.test/a.tar.gz': a_data,
        'https://rules.test/a.tar.gz.md5': md5_hex(a_data).encode(),
        'https://rules.test/b.tar.gz': b_data,
        'https://rules.test/b.tar.gz.md5': md5_hex(b_data).encode(),
    })
    fetcher = SourceFetcher(transport, ArchiveExtractor(), '7.0.3')

    report = run_update(abc_catalog, [Selection('a'), Selection('b')], fetcher, max_workers=2)

    assert report.outcome_map['a'].result is FetchResult.EXTRACT_ERROR
    assert report.merged_sources == ['b']
