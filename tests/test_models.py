"""Tests for alarm record models and filter vocabularies."""

from datetime import datetime
from uuid import UUID, uuid4

import pytest
from pydantic import ValidationError

from alarm_engine.exceptions import AlarmValidationError
from alarm_engine.models import (
    AckFilter,
    AlarmCounts,
    AlarmFilter,
    AlarmRecord,
    AlarmRecordBuilder,
    AlarmState,
    OpenFilter,
    SortField,
    parse_uuids,
)

NOW = datetime(2024, 3, 1, 12, 0, 0)


def _record(**overrides) -> AlarmRecord:
    fields = dict(uuid=uuid4(), alarm_class=1, created_time=NOW)
    fields.update(overrides)
    return AlarmRecord(**fields)


class TestAlarmRecord:
    def test_new_record_is_open_and_unacked(self):
        record = _record()
        assert record.is_open
        assert not record.is_normal
        assert not record.is_acknowledged
        assert record.state is AlarmState.ALARM

    def test_normal_record_without_pending_ack_is_closed(self):
        record = _record(normal_time=NOW, ack_time=NOW)
        assert record.is_normal
        assert not record.is_open
        assert record.state is AlarmState.NORMAL

    def test_normal_record_awaiting_ack_stays_open(self):
        record = _record(normal_time=NOW)
        assert record.is_normal
        assert record.is_open
        assert OpenFilter.OPEN.matches(record)
        assert not AlarmFilter.ALARM.matches(record)

    def test_normal_record_without_ack_required_is_closed(self):
        assert not _record(normal_time=NOW, ack_required=False).is_open

    def test_frozen(self):
        record = _record()
        with pytest.raises(ValidationError):
            record.message = "changed"

    def test_model_copy_keeps_identity(self):
        record = _record()
        acked = record.model_copy(update={"ack_time": NOW, "ack_user": "ops"})
        assert acked.uuid == record.uuid
        assert acked.is_acknowledged
        assert not record.is_acknowledged


class TestVocabularies:
    def test_parse_case_insensitive(self):
        assert AckFilter.parse("acked") is AckFilter.ACKED
        assert OpenFilter.parse(" Closed ") is OpenFilter.CLOSED
        assert SortField.parse("created time") is SortField.CREATED_TIME
        assert SortField.parse("source-path") is SortField.SOURCE_PATH

    def test_parse_default(self):
        assert AlarmFilter.parse(None, AlarmFilter.ANY) is AlarmFilter.ANY
        assert AlarmFilter.parse("", AlarmFilter.ANY) is AlarmFilter.ANY

    def test_parse_missing_without_default(self):
        with pytest.raises(AlarmValidationError, match="Missing"):
            AlarmState.parse(None)

    def test_parse_invalid(self):
        with pytest.raises(AlarmValidationError, match="Expected one of"):
            AckFilter.parse("sometimes")

    def test_alarm_filter_matches_every_non_normal_state(self):
        for state in (AlarmState.ALERT, AlarmState.ALARM, AlarmState.FAULT):
            assert AlarmFilter.ALARM.matches(_record(alarm_type=state))
        assert not AlarmFilter.ALARM.matches(_record(normal_time=NOW))
        assert AlarmFilter.NORMAL.matches(_record(normal_time=NOW))

    def test_sort_key_puts_none_first(self):
        unacked = _record()
        acked = _record(ack_time=NOW)
        ordered = sorted([acked, unacked], key=SortField.ACK_TIME.key)
        assert ordered == [unacked, acked]

    def test_choices(self):
        assert OpenFilter.choices() == ["ANY", "OPEN", "CLOSED"]


class TestAlarmCounts:
    def test_tally(self):
        counts = AlarmCounts()
        counts.tally(_record())
        counts.tally(_record(ack_time=NOW))
        counts.tally(_record(normal_time=NOW, ack_required=False))
        assert counts.total == 3
        assert counts.open == 2
        assert counts.in_alarm == 2
        assert counts.unacked == 1

    def test_open_and_in_alarm_differ(self):
        counts = AlarmCounts()
        counts.tally(_record(normal_time=NOW))
        assert (counts.open, counts.in_alarm, counts.unacked) == (1, 0, 1)


class TestBuilder:
    def test_build(self):
        uuid = uuid4()
        record = (
            AlarmRecordBuilder()
            .set_uuid(uuid)
            .set_alarm_class(2)
            .set_alarm_type(AlarmState.FAULT)
            .set_created_time(NOW)
            .build()
        )
        assert record.uuid == uuid
        assert record.alarm_type is AlarmState.FAULT

    def test_missing_fields(self):
        with pytest.raises(AlarmValidationError):
            AlarmRecordBuilder().set_uuid(uuid4()).build()


class TestParseUuids:
    def test_comma_separated(self):
        a, b = uuid4(), uuid4()
        assert parse_uuids(f"{a}, {b},") == [a, b]

    def test_single_uuid(self):
        a = uuid4()
        assert parse_uuids(a) == [a]
        assert parse_uuids([str(a)]) == [a]

    def test_invalid(self):
        with pytest.raises(AlarmValidationError, match="Invalid alarm uuid"):
            parse_uuids("not-a-uuid")

    def test_empty(self):
        with pytest.raises(AlarmValidationError, match="Missing"):
            parse_uuids(" , ")

    def test_returns_uuid_objects(self):
        assert all(isinstance(u, UUID) for u in parse_uuids(str(uuid4())))
