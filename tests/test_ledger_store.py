"""Tests for the append-only ledger and trade-log files."""
import pytest

from portfolio_engine import ledger_store as ledger_store_module
from portfolio_engine.ledger_store import LEDGER_COLUMNS, NO_DATA, TOTAL_TICKER


def cycle(date, rows, cash, action=''):
    total_value = sum(r['total_value'] for r in rows if isinstance(r['total_value'], float))
    batch = [dict(r, date=date) for r in rows]
    batch.append({
        'date': date, 'ticker': TOTAL_TICKER, 'total_value': total_value, 'pnl': 0.0,
        'action': action, 'cash_balance': cash, 'total_equity': round(cash + total_value, 2)
    })
    return batch


def position_row(ticker, stop, value):
    return {
        'ticker': ticker, 'shares': 10, 'cost_basis': 50.0, 'stop_loss': stop,
        'current_price': value / 10, 'total_value': value, 'pnl': value - 50.0, 'action': 'HOLD'
    }


def test_header_written_once(ledger_store):
    ledger_store.append_ledger_batch(cycle('2024-01-02', [position_row('ABCD', 4.0, 60.0)], 100.0))
    ledger_store.append_ledger_batch(cycle('2024-01-03', [position_row('ABCD', 4.0, 65.0)], 100.0))

    lines = open(ledger_store.ledger_file).read().splitlines()
    assert lines[0] == ','.join(LEDGER_COLUMNS)
    assert sum(1 for line in lines if line.startswith('Date,')) == 1
    assert len(lines) == 5


def test_total_row_matches_cash_plus_position_values(ledger_store):
    rows = [position_row('ABCD', 4.0, 60.0), position_row('WXYZ', 0.0, 42.5)]
    ledger_store.append_ledger_batch(cycle('2024-01-02', rows, 250.0))

    frame = ledger_store.load_ledger()
    total = frame[frame['Ticker'] == TOTAL_TICKER].iloc[0]
    positions = frame[frame['Ticker'] != TOTAL_TICKER]

    expected = float(total['Cash Balance']) + positions['Total Value'].astype(float).sum()
    assert float(total['Total Equity']) == pytest.approx(expected)


def test_unknown_field_leaves_file_untouched(ledger_store):
    ledger_store.append_ledger_batch(cycle('2024-01-02', [position_row('ABCD', 4.0, 60.0)], 100.0))
    before = open(ledger_store.ledger_file, 'rb').read()

    bad = cycle('2024-01-03', [position_row('ABCD', 4.0, 61.0)], 100.0)
    bad[0]['surprise'] = 1
    with pytest.raises(KeyError):
        ledger_store.append_ledger_batch(bad)

    assert open(ledger_store.ledger_file, 'rb').read() == before


def test_batch_is_written_in_a_single_append(ledger_store, monkeypatch):
    writes = []
    real_append = ledger_store_module.append_text_atomic

    def recording_append(path, text, header=None):
        writes.append(text)
        real_append(path, text, header=header)

    monkeypatch.setattr(ledger_store_module, 'append_text_atomic', recording_append)

    rows = [position_row('ABCD', 4.0, 60.0), position_row('WXYZ', 3.0, 40.0)]
    ledger_store.append_ledger_batch(cycle('2024-01-02', rows, 100.0))

    assert len(writes) == 1
    assert writes[0].count('\n') == 3


def test_tracked_stops_use_most_recent_row(ledger_store):
    ledger_store.append_ledger_batch(cycle('2024-01-02', [
        position_row('ABCD', 4.0, 60.0), position_row('WXYZ', 2.0, 30.0)
    ], 100.0))
    ledger_store.append_ledger_batch(cycle('2024-01-03', [
        position_row('ABCD', 4.5, 62.0)
    ], 100.0))

    assert ledger_store.load_tracked_stops() == {'ABCD': 4.5, 'WXYZ': 2.0}


def test_tracked_stops_survive_no_data_rows(ledger_store):
    row = position_row('ABCD', 4.0, 60.0)
    row.update(current_price=NO_DATA, total_value=NO_DATA, pnl=NO_DATA, action='ERROR')
    ledger_store.append_ledger_batch([row])

    assert ledger_store.load_tracked_stops() == {'ABCD': 4.0}


def test_equity_history_skips_incomplete_cycles(ledger_store):
    ledger_store.append_ledger_batch(cycle('2024-01-02', [position_row('ABCD', 4.0, 60.0)], 100.0))
    ledger_store.append_ledger_batch(
        cycle('2024-01-03', [], 100.0, action='INCOMPLETE - no data for ABCD')
    )
    ledger_store.append_ledger_batch(cycle('2024-01-04', [position_row('ABCD', 4.0, 70.0)], 100.0))

    assert ledger_store.load_equity_history() == [('2024-01-02', 160.0), ('2024-01-04', 170.0)]


def test_missing_files_read_as_empty(ledger_store):
    assert ledger_store.load_tracked_stops() == {}
    assert ledger_store.load_equity_history() == []
    assert ledger_store.load_trade_log().empty


def test_whole_shares_stay_integers_next_to_total_row(ledger_store):
    ledger_store.append_ledger_batch(cycle('2024-01-02', [position_row('ABCD', 4.0, 60.0)], 100.0))

    lines = open(ledger_store.ledger_file).read().splitlines()
    assert lines[1].startswith('2024-01-02,ABCD,10,50.0,4.0,')
    assert lines[2].startswith('2024-01-02,TOTAL,,')
