from __future__ import annotations

from unittest.mock import patch

import pytest

from _helpers import assert_chained, make_engine, settle
from cwsim.callsign_pool import PoolEntry
from cwsim.engine import ContactState, FieldVerdict

POOL = (
    PoolEntry("K1ABC", "ANN", "CT", 1090),
    PoolEntry("W2XYZ", "BOB", "NY", 77),
)


def _upper_bound(a, b):
    return b


@pytest.fixture
def contest():
    engine, cfg = make_engine("contest", pool=POOL, max_stations=2)
    with patch("cwsim.engine.random.randint", side_effect=_upper_bound):
        engine.call()
    settle(engine)
    return engine, cfg


def _station(engine, call):
    return next(st for st in engine.session.registry if st.callsign == call)


def test_call_fills_registry_and_chains_replies():
    engine, _ = make_engine("contest", pool=POOL, max_stations=2)
    with patch("cwsim.engine.random.randint", side_effect=_upper_bound):
        res = engine.call()

    assert res.accepted
    assert res.state == ContactState.AWAITING_RESPONSE
    assert sorted(engine.session.registry.callsigns()) == ["K1ABC", "W2XYZ"]
    texts = [t.text for t in res.transmissions]
    assert texts[0] == "CQ TEST EA3IPX"
    assert sorted(texts[1:]) == ["K1ABC", "W2XYZ"]
    assert_chained(res.transmissions)
    assert res.transmissions[1].start >= res.transmissions[0].end + 0.25
    assert engine.audio.lock.value == pytest.approx(max(t.end for t in res.transmissions))
    assert engine.session.start_time == 0.0


def test_registry_never_exceeds_max_stations(contest):
    engine, _ = contest
    with patch("cwsim.engine.random.randint", side_effect=_upper_bound):
        res = engine.call()
    assert res.accepted
    assert engine.stations_on_frequency == 2


def test_agn_repeats_every_station(contest):
    engine, _ = contest
    res = engine.send("AGN")

    assert res.outcome == "repeat"
    assert sorted(t.text for t in res.transmissions[1:]) == ["K1ABC", "W2XYZ"]
    assert engine.session.attempts == 1
    assert engine.stations_on_frequency == 2


def test_exact_call_starts_exchange_then_tu_logs_perfect_contact(contest):
    engine, _ = contest
    engine.send("AGN")
    settle(engine)

    res = engine.send("K1ABC")

    assert res.outcome == "exchange"
    assert res.state == ContactState.EXCHANGING
    assert engine.session.ready_for_tu
    assert engine.session.active_station.callsign == "K1ABC"
    assert [t.text for t in res.transmissions] == ["K1ABC", "5NN", "5NN 999"]

    settle(engine)
    with patch("cwsim.engine.random.random", return_value=0.9):
        done = engine.tu("999")

    assert done.accepted
    assert done.clear_response
    assert [t.text for t in done.transmissions] == ["TU EA3IPX", "W2XYZ"]
    record = done.record
    assert record.callsign == "K1ABC"
    assert record.attempts == 2
    assert record.annotation == "perfect"
    assert record.exchange_info == "999"
    assert engine.session.registry.callsigns() == ["W2XYZ"]
    assert engine.session.attempts == 0
    assert engine.session.active_station_index is None
    assert engine.state == ContactState.AWAITING_RESPONSE


@pytest.mark.parametrize(
    "entered, verdict, shown",
    [
        ("123", FieldVerdict.WRONG, "!123 (999)"),
        ("abc", FieldVerdict.INCOMPLETE, "!ABC (999)"),
    ],
)
def test_tu_grades_serial(contest, entered, verdict, shown):
    engine, _ = contest
    engine.send("W2XYZ")
    settle(engine)
    with patch("cwsim.engine.random.random", return_value=0.9):
        res = engine.tu(entered)
    assert res.record.checks[0].verdict == verdict
    assert res.record.exchange_info == shown
    assert res.record.annotation == "imperfect"


def test_last_contact_leaves_frequency_idle():
    engine, _ = make_engine("contest", pool=POOL, max_stations=1)
    engine.call()
    settle(engine)
    call = engine.session.registry[0].callsign
    engine.send(call)
    settle(engine)
    with patch("cwsim.engine.random.random", return_value=0.9):
        res = engine.tu("1")
    assert res.state == ContactState.IDLE
    assert engine.stations_on_frequency == 0


def test_continuous_mode_admits_new_station_after_tu():
    engine, cfg = make_engine("contest", pool=POOL, max_stations=2)
    cfg.session.enable_continuous = True
    with patch("cwsim.engine.random.randint", side_effect=lambda a, b: a):
        engine.call()
    settle(engine)
    first = engine.session.registry[0].callsign
    engine.send(first)
    settle(engine)
    with patch("cwsim.engine.random.randint", side_effect=lambda a, b: a):
        res = engine.tu("1")
    assert engine.stations_on_frequency == 1
    assert res.transmissions[-1].text == engine.session.registry[0].callsign


def test_tu_without_exchange_is_declined(contest):
    engine, _ = contest
    res = engine.tu("1")
    assert not res.accepted
    assert len(engine.contact_log) == 0


def test_call_during_exchange_is_declined(contest):
    engine, _ = contest
    engine.send("K1ABC")
    settle(engine)
    res = engine.call()
    assert not res.accepted
    assert engine.state == ContactState.EXCHANGING


def test_partial_copy_narrows_and_qrs_targets_only_those(contest):
    engine, _ = contest
    res = engine.send("K1AB")

    assert res.outcome == "partial"
    assert [t.text for t in res.transmissions] == ["K1AB", "K1ABC"]
    assert [st.callsign for st in engine.session.last_responding] == ["K1ABC"]

    settle(engine)
    qrs = engine.send("QRS")
    assert [t.text for t in qrs.transmissions] == ["QRS", "K1ABC"]
    assert _station(engine, "K1ABC").enable_farnsworth
    assert not _station(engine, "W2XYZ").enable_farnsworth
    assert engine.session.attempts == 2


def test_exact_call_with_question_mark_gets_rr_and_keeps_state(contest):
    engine, _ = contest
    res = engine.send("W2XYZ?")

    assert res.outcome == "confirm"
    assert [t.text for t in res.transmissions] == ["W2XYZ?", "RR"]
    assert res.transmissions[1].sender == "W2XYZ"
    assert res.state == ContactState.AWAITING_RESPONSE
    assert not engine.session.ready_for_tu
    assert engine.session.attempts == 1


def test_no_match_keeps_everyone_waiting(contest):
    engine, _ = contest
    res = engine.send("ZZZZ")
    assert res.outcome == "none"
    assert [t.text for t in res.transmissions] == ["ZZZZ"]
    assert engine.session.attempts == 1
    assert engine.stations_on_frequency == 2


def test_stop_keeps_stations_in_multi_mode(contest):
    engine, _ = contest
    engine.send("AGN")
    assert engine.get_audio_lock()

    res = engine.stop()

    assert res.accepted
    assert not engine.get_audio_lock()
    assert engine.stations_on_frequency == 2
    assert engine.send("K1ABC").accepted


def test_reset_clears_session_and_log(contest):
    engine, _ = contest
    engine.send("K1ABC")
    settle(engine)
    with patch("cwsim.engine.random.random", return_value=0.9):
        engine.tu("999")

    res = engine.reset()

    assert res.clear_response
    assert engine.state == ContactState.IDLE
    assert engine.stations_on_frequency == 0
    assert engine.session.total_contacts == 0
    assert engine.session.start_time is None
    assert len(engine.contact_log) == 0
    assert not engine.get_audio_lock()


def test_lock_is_monotonic_across_actions(contest):
    engine, _ = contest
    before = engine.audio.lock.value
    engine.send("AGN")
    after = engine.audio.lock.value
    assert after > before
    engine.update_audio_lock(before)
    assert engine.audio.lock.value == after


def test_change_mode_resets_and_rejects_unknown(contest):
    engine, _ = contest
    res = engine.change_mode("CWT")
    assert res.accepted
    assert res.outcome == "mode"
    assert engine.session.mode == "cwt"
    assert engine.stations_on_frequency == 0

    bad = engine.change_mode("ragchew")
    assert not bad.accepted
    assert engine.session.mode == "cwt"


def test_cwt_exchange_uses_cut_numbers_and_grades_both_fields():
    engine, cfg = make_engine("cwt", pool=POOL[:1], max_stations=1)
    cfg.session.enable_cut_numbers = True
    engine.call()
    settle(engine)

    res = engine.send("K1ABC")
    assert [t.text for t in res.transmissions] == ["K1ABC", "JOE CA", "ANN 1TNT"]

    settle(engine)
    with patch("cwsim.engine.random.random", return_value=0.9):
        done = engine.tu("ann", "1090")
    assert done.record.annotation == "perfect"
    assert done.record.exchange_info == "ANN / 1090"


def test_sst_signoff_carries_entered_name_and_their_reply():
    engine, _ = make_engine("sst", pool=POOL[:1], max_stations=1)
    engine.call()
    settle(engine)
    engine.send("K1ABC")
    settle(engine)

    with patch("cwsim.engine.random.random", return_value=0.9):
        res = engine.tu("ann", "ny")

    assert [t.text for t in res.transmissions] == ["TU ANN 73 EA3IPX", "TU JOE 73"]
    assert res.record.checks[1].verdict == FieldVerdict.WRONG
    assert res.record.exchange_info == "ANN / !NY (CT)"


def test_export_session_snapshot(contest):
    engine, _ = contest
    data = engine.export_session()
    assert data["mode"] == "contest"
    assert len(data["stations"]) == 2
    assert data["contacts"] == []
    assert data["logs"]


@pytest.mark.parametrize("miss", ["ZZZZ", "W2XY"])
def test_miss_after_exchange_keeps_tu_pending(contest, miss):
    engine, _ = contest
    engine.send("K1ABC")
    settle(engine)

    res = engine.send(miss)

    assert res.state == ContactState.EXCHANGING
    assert engine.session.ready_for_tu
    assert engine.session.active_station.callsign == "K1ABC"
    settle(engine)
    with patch("cwsim.engine.random.random", return_value=0.9):
        done = engine.tu("999")
    assert done.accepted
    assert done.record.callsign == "K1ABC"
    assert done.record.attempts == 2


def test_tu_on_dx_station_marks_missing_state_not_applicable():
    engine, _ = make_engine("pota", pool=(PoolEntry("G4ABC", "ANN", ""),), max_stations=1)
    engine.call()
    settle(engine)
    assert engine.session.registry[0].state == ""
    engine.send("G4ABC")
    settle(engine)

    with patch("cwsim.engine.random.random", return_value=0.9):
        res = engine.tu("ny")

    check = res.record.checks[0]
    assert check.verdict == FieldVerdict.NOT_APPLICABLE
    assert "N/A" in res.record.exchange_info
    assert res.record.annotation == "perfect"
    assert res.transmissions[0].text == "BK TU NY 73 EE"


def test_tu_serial_ignores_surrounding_whitespace(contest):
    engine, _ = contest
    engine.send("K1ABC")
    settle(engine)
    with patch("cwsim.engine.random.random", return_value=0.9):
        res = engine.tu("  999 ")
    assert res.record.checks[0].verdict == FieldVerdict.CORRECT
    assert res.record.exchange_info == "999"
