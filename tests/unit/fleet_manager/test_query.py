"""Unit tests for the instance query language, sort and cursors."""

import pytest

from fleet_manager.app.instances.errors import InvalidInputError
from fleet_manager.app.instances.query import (
    decode_cursor,
    encode_cursor,
    matches,
    parse_query,
    sort_documents,
)


def _doc(player_count=0, status='READY', seats=2, mode='casual', create_time='2026-01-01T00:00:00+00:00'):
    return {
        'id': f'{status}-{player_count}-{create_time}',
        'status': status,
        'player_count': player_count,
        'create_time': create_time,
        'metadata': {'mode': mode},
        'reservation': {'available_seats': seats, 'reservations': ['u1']},
    }


def test_empty_query_has_no_terms():
    assert parse_query(None) == []
    assert parse_query('   ') == []


def test_parse_equality_range_and_negation():
    terms = parse_query('+status:READY reservation.available_seats:>0 -metadata.mode:ranked')

    assert [(t.path, t.op, t.value, t.negate) for t in terms] == [
        ('status', 'eq', 'READY', False),
        ('reservation.available_seats', '>', 0.0, False),
        ('metadata.mode', 'eq', 'ranked', True),
    ]


def test_parse_quoted_value():
    (term,) = parse_query('metadata.map:"de dust"')
    assert term.value == 'de dust'


@pytest.mark.parametrize('query', ['status', 'status:', ':READY', 'seats:>many', 'metadata.map:"open'])
def test_parse_rejects_malformed_terms(query):
    with pytest.raises(InvalidInputError):
        parse_query(query)


def test_matches_applies_all_terms():
    terms = parse_query('status:READY reservation.available_seats:>0 -metadata.mode:ranked')

    assert matches(terms, _doc())
    assert not matches(terms, _doc(status='RUNNING'))
    assert not matches(terms, _doc(seats=0))
    assert not matches(terms, _doc(mode='ranked'))


def test_missing_path_fails_positive_term_and_passes_negated():
    doc = _doc()
    assert not matches(parse_query('metadata.region:eu'), doc)
    assert matches(parse_query('-metadata.region:eu'), doc)


def test_list_membership():
    assert matches(parse_query('reservation.reservations:u1'), _doc())
    assert not matches(parse_query('reservation.reservations:u2'), _doc())


def test_numeric_equality():
    assert matches(parse_query('player_count:3'), _doc(player_count=3))
    assert not matches(parse_query('player_count:3'), _doc(player_count=2))


def test_equality_compares_json_text():
    doc = _doc()
    doc['metadata']['region'] = '123'
    doc['metadata']['shard'] = 123
    doc['metadata']['ratio'] = 2.0
    doc['metadata']['note'] = None

    assert matches(parse_query('metadata.region:123'), doc)
    assert matches(parse_query('metadata.shard:123'), doc)
    assert matches(parse_query('metadata.ratio:2.0'), doc)
    assert not matches(parse_query('metadata.ratio:2'), doc)
    assert not matches(parse_query('metadata.note:None'), doc)


def test_boolean_equality_is_typed():
    doc = _doc()
    doc['metadata']['ranked'] = True
    doc['metadata']['label'] = 'true'

    (term,) = parse_query('metadata.ranked:TRUE')
    assert term.value is True
    assert matches([term], doc)
    assert not matches(parse_query('metadata.label:true'), doc)


def test_default_style_sort_player_count_then_newest():
    docs = [
        _doc(player_count=2, create_time='2026-01-01T00:00:01+00:00'),
        _doc(player_count=0, create_time='2026-01-01T00:00:00+00:00'),
        _doc(player_count=0, create_time='2026-01-01T00:00:05.500000+00:00'),
    ]

    ordered = sort_documents(docs, ['player_count', '-create_time'])

    assert [(d['player_count'], d['create_time']) for d in ordered] == [
        (0, '2026-01-01T00:00:05.500000+00:00'),
        (0, '2026-01-01T00:00:00+00:00'),
        (2, '2026-01-01T00:00:01+00:00'),
    ]


def test_sort_puts_missing_values_last():
    docs = [{'id': 'a'}, {'id': 'b', 'player_count': 1}]
    assert [d['id'] for d in sort_documents(docs, ['-player_count'])] == ['b', 'a']


def test_cursor_round_trip():
    assert decode_cursor(encode_cursor(20)) == 20
    assert decode_cursor(None) == 0
    assert decode_cursor('') == 0


def test_garbage_cursor_rejected():
    with pytest.raises(InvalidInputError):
        decode_cursor('aGVsbG8')
