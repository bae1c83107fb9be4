"""
Settings, Clock and Coercion Tests
==================================

Verifies:
1. Environment settings and per-type overrides
2. Live, replay and frozen clocks
3. Setter value coercion
4. Subclasses inherit states without changing their parent
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from hypothesis import given, strategies as st

from conftest import FROZEN_NOW, make_model
from timestamp_states import (
    ClockExhausted,
    ConfigurationError,
    LogicalClock,
    Record,
    TimestampStates,
    TimestampStateSettings,
)
from timestamp_states.coercion import coerce_negated, coerce_timestamp, is_present
from timestamp_states.errors import ErrorCode, ValueCoercionError


class TestSettings:

    def test_defaults(self):
        settings = TimestampStateSettings.from_env({})

        assert settings.default_timezone == "EDT"
        assert settings.define_scopes is True

    def test_from_env(self):
        settings = TimestampStateSettings.from_env({
            "TIMESTAMP_STATES_DEFAULT_TIMEZONE": " UTC ",
            "TIMESTAMP_STATES_DEFINE_SCOPES": "false",
        })

        assert settings.default_timezone == "UTC"
        assert settings.define_scopes is False

    def test_reads_process_environment(self):
        with patch.dict("os.environ", {"TIMESTAMP_STATES_DEFAULT_TIMEZONE": "PST"}):
            assert TimestampStateSettings.from_env().default_timezone == "PST"

    def test_env_disables_scopes_for_new_states(self, store):
        model = make_model(store)

        with patch.dict("os.environ", {"TIMESTAMP_STATES_DEFINE_SCOPES": "0"}):
            model.timestamp_state("installed_at")

        assert "installed" not in model.scopes()

    def test_per_type_settings(self, store):
        model = make_model(store)
        model.__timestamp_settings__ = TimestampStateSettings(define_scopes=False)

        model.timestamp_state("installed_at")

        assert "installed" not in model.scopes()
        assert model.timestamp_settings().default_timezone == "EDT"


class TestClock:

    def test_live_clock_is_utc(self):
        clock = LogicalClock.live()

        now = clock.now()

        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)
        assert clock.ticks == [now]
        assert clock.is_live()

    def test_replay_returns_ticks_in_order(self):
        ticks = [FROZEN_NOW, FROZEN_NOW + timedelta(seconds=1)]
        clock = LogicalClock.replay(ticks)

        assert [clock.now(), clock.now()] == ticks
        with pytest.raises(ClockExhausted):
            clock.now()

    def test_replay_of_a_live_recording(self):
        live = LogicalClock.live()
        recorded = [live.now(), live.now()]

        replay = LogicalClock.replay(live.ticks)

        assert [replay.now(), replay.now()] == recorded

    def test_frozen_clock(self):
        clock = LogicalClock.frozen(datetime(2026, 1, 1, 12))

        assert clock.now() == clock.now() == FROZEN_NOW
        assert clock.tick_count() == 2
        assert not clock.is_live()

    def test_touch_reads_the_model_clock(self, store):
        later = FROZEN_NOW + timedelta(hours=1)
        model = make_model(store, clock=LogicalClock.replay([FROZEN_NOW, later]))
        model.timestamp_state("installed_at")
        device = model.create(name="sensor-1")

        device.install()
        device.uninstall()
        device.install()

        assert device.installed_at == later


class TestCoercion:

    @pytest.fixture
    def clock(self):
        return LogicalClock.frozen(FROZEN_NOW)

    def test_date_becomes_utc_midnight(self, clock):
        assert coerce_timestamp(date(2023, 11, 1), clock) == datetime(2023, 11, 1, tzinfo=timezone.utc)

    def test_aware_datetime_is_converted(self, clock):
        local = datetime(2023, 11, 1, 8, tzinfo=timezone(timedelta(hours=-4)))

        coerced = coerce_timestamp(local, clock)

        assert coerced == datetime(2023, 11, 1, 12, tzinfo=timezone.utc)
        assert coerced.tzinfo == timezone.utc

    @pytest.mark.parametrize("text", ["2023-11-01T10:30:00Z", "2023-11-01T10:30:00z", " 2023-11-01T06:30:00-04:00 "])
    def test_iso_text_with_designators(self, clock, text):
        assert coerce_timestamp(text, clock) == datetime(2023, 11, 1, 10, 30, tzinfo=timezone.utc)

    def test_float_is_not_truthy(self, clock):
        with pytest.raises(ValueCoercionError) as excinfo:
            coerce_timestamp(1.0, clock)
        assert excinfo.value.code == ErrorCode.UNPARSABLE_VALUE

    def test_negated_inverts_presence(self, clock):
        assert coerce_negated(True, clock) is None
        assert coerce_negated("0", clock) == FROZEN_NOW
        assert coerce_negated("2023-11-01", clock) is None

    def test_blank_strings_are_not_present(self):
        assert not is_present("   ")
        assert not is_present(None)
        assert is_present(FROZEN_NOW)

    @given(st.datetimes(timezones=st.just(timezone.utc)))
    def test_iso_text_round_trips(self, moment):
        clock = LogicalClock.frozen(FROZEN_NOW)
        assert coerce_timestamp(moment.isoformat(), clock) == moment


class TestInheritance:

    def test_subclass_extends_without_touching_parent(self, store):
        parent = make_model(store, columns=("installed_at", "archived_at"))
        parent.timestamp_state("installed_at")
        child = type("SpecialDevice", (parent,), {})

        child.timestamp_state("archived_at")

        assert [f for f, _ in child.timestamp_state_vocabularies()] == ["installed_at", "archived_at"]
        assert [f for f, _ in parent.timestamp_state_vocabularies()] == ["installed_at"]
        assert "archive" not in dir(parent(name="x"))
        assert "archive" in dir(child(name="x"))

    def test_parent_hooks_run_for_subclass(self, store):
        parent = make_model(store)
        parent.timestamp_state("installed_at")
        child = type("SpecialDevice", (parent,), {})
        seen = []
        parent.timestamp_hooks().after("install", seen.append)

        device = child.create(name="x")
        device.install(save=True)

        assert seen == [device]

    def test_frozen_type_rejects_new_states(self, store):
        model = make_model(store, columns=("installed_at", "archived_at"))
        model.timestamp_state("installed_at")
        model.freeze_timestamp_states()

        with pytest.raises(ConfigurationError) as excinfo:
            model.timestamp_state("archived_at")
        assert excinfo.value.code == ErrorCode.REGISTRY_FROZEN

    def test_scopes_need_a_query_host(self):
        class Plain(TimestampStates):
            pass

        with pytest.raises(ConfigurationError) as excinfo:
            Plain.timestamp_state("installed_at")
        assert excinfo.value.code == ErrorCode.SCOPES_UNSUPPORTED
        assert "installed_at" not in Plain.timestamp_state_registry()

        Plain.timestamp_state("installed_at", define_scopes=False)
        assert Plain.timestamp_state_registry().get("installed_at") is not None

    def test_unknown_state_lookup(self, store):
        model = make_model(store)
        model.timestamp_state("installed_at")

        with pytest.raises(ConfigurationError) as excinfo:
            model(name="x").timestamp_state_entered_at("archived_at")
        assert excinfo.value.code == ErrorCode.UNKNOWN_FIELD

    def test_record_without_mixin_has_no_states(self):
        assert not hasattr(Record, "timestamp_state")
