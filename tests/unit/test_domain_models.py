import pytest
from pydantic import ValidationError
from ffwatch.domain.models import (
    AttemptOutcome,
    ConditionFlags,
    RetryState,
    Sample,
    format_timestamp,
    parse_timestamp,
)

def test_parse_timestamp():
    assert parse_timestamp("01:02:03.50") == pytest.approx(3723.5)
    assert parse_timestamp("00:00:10.00") == pytest.approx(10.0)

def test_parse_timestamp_invalid_is_zero():
    assert parse_timestamp("N/A") == 0.0
    assert parse_timestamp("") == 0.0

def test_parse_timestamp_negative_hours():
    # ffmpeg prints a bogus negative time before the first packet
    assert parse_timestamp("-577014:32:22.77") < 0

def test_timestamp_round_trip():
    assert format_timestamp(3723.5) == "01:02:03.50"
    assert parse_timestamp(format_timestamp(3723.5)) == pytest.approx(3723.5)
    assert parse_timestamp("01:02:03.50") == pytest.approx(3723.5)

def test_sample_defaults_and_runtime():
    s = Sample()
    assert s.frame == 0
    assert s.time == ""
    assert s.runtime == 0.0
    assert Sample(time="00:01:30.25").runtime == pytest.approx(90.25)

def test_sample_is_frozen():
    s = Sample(frame=1)
    with pytest.raises(ValidationError):
        s.frame = 2

def test_progress_by_duration():
    s = Sample(frame=100, time="00:00:10.00", size=500)
    assert s.progress(target_duration=20.0) == pytest.approx(0.5)

def test_progress_by_frames():
    s = Sample(frame=50)
    assert s.progress(target_frames=100) == pytest.approx(0.5)

def test_progress_duration_wins_over_frames():
    s = Sample(frame=10, time="00:00:05.00")
    assert s.progress(target_duration=10.0, target_frames=1000) == pytest.approx(0.5)

def test_progress_without_targets():
    assert Sample(frame=50).progress() == 0.0

def test_sample_fields_units():
    s = Sample(frame=120, fps=30, q=28.0, time="00:00:04.00", size=1024, bitrate=2097.2, dup=1, drop=2, speed=1.5)
    fields = s.fields()
    assert fields["frame"] == 120
    assert fields["runtime"] == pytest.approx(4.0)
    assert fields["size"] == 1024 * 1024
    assert fields["bps"] == 2097200
    assert fields["speed"] == "1.50"
    assert fields["dup"] == 1
    assert fields["drop"] == 2
    assert fields["q"] == 28.0

def test_sample_advanced_from():
    prior = Sample(frame=10, size=100)
    assert Sample(frame=11, size=100).advanced_from(prior)
    assert Sample(frame=10, size=101).advanced_from(prior)
    assert not Sample(frame=10, size=100).advanced_from(prior)
    assert not Sample(frame=9, size=50).advanced_from(prior)

def test_condition_flags_mark_once():
    flags = ConditionFlags()
    assert not flags.any_set
    assert flags.mark("vram_overflow") is True
    assert flags.mark("vram_overflow") is False
    assert flags.vram_overflow
    assert flags.any_set
    assert flags.names() == ["vram_overflow"]

def test_retry_state_defaults():
    state = RetryState()
    assert state.retry == 0
    assert state.extra_hw_frames is None

def test_attempt_outcome_exited_cleanly():
    assert AttemptOutcome(returncode=0).exited_cleanly
    assert not AttemptOutcome(returncode=1).exited_cleanly
    assert not AttemptOutcome(returncode=0, aborted="stalled").exited_cleanly
    assert not AttemptOutcome(returncode=None, spawn_error="No such file").exited_cleanly
