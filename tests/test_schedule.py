import pytest

from cmtoolkit.errors import AdminServiceError, CmToolkitError, ScheduleError
from cmtoolkit.schedule import (
    fresh_token,
    reencode_schedule,
    to_dmtf,
    unwrap_schedule,
    wrap_schedule,
)
from conftest import FakeAdminService

TOKEN = {
    "@odata.type": "#AdminService.SMS_ST_RecurWeekly",
    "DayDuration": 0,
    "Day": 3,
    "ForNumberOfWeeks": 1,
    "HourDuration": 0,
    "IsGMT": False,
    "MinuteDuration": 0,
    "StartTime": "2026-10-14T22:00:00Z",
}

WRAPPED = (
    '<?xml version="1.0" encoding="utf-16"?>'
    "<ScheduleXML><ScheduleToken>00A1E1C000192000</ScheduleToken></ScheduleXML>"
)


@pytest.mark.parametrize("value, expected", [
    ("2026-10-14T22:00:00Z", "20261014220000.000000+***"),
    ("2026-10-14T22:00:00.1234567Z", "20261014220000.000000+***"),
    ("2026-10-14T22:00:00+02:00", "20261014220000.000000+***"),
    ("20261014220000.000000+***", "20261014220000.000000+***"),
    (None, None),
])
def test_to_dmtf(value, expected):
    assert to_dmtf(value) == expected


@pytest.mark.parametrize("value, expected", [
    ("2026-10-14T22:00:00+02:00", "20261014200000.000000+***"),
    ("2026-10-14T22:00:00-05:00", "20261015030000.000000+***"),
    ("2026-10-14T22:00:00Z", "20261014220000.000000+***"),
    ("2026-10-14T22:00:00", "20261014220000.000000+***"),
])
def test_to_dmtf_moves_gmt_times_to_utc(value, expected):
    assert to_dmtf(value, is_gmt=True) == expected


def test_to_dmtf_rejects_garbage():
    with pytest.raises(ScheduleError):
        to_dmtf("next tuesday")


def test_fresh_token_honours_is_gmt():
    token = dict(TOKEN, IsGMT=True, StartTime="2026-10-14T22:00:00+02:00")
    assert fresh_token(token)["StartTime"] == "20261014200000.000000+***"


def test_fresh_token_copies_everything_and_only_reformats_start_time():
    fresh = fresh_token(TOKEN)
    assert fresh is not TOKEN
    assert set(fresh) == set(TOKEN)
    assert fresh["StartTime"] == "20261014220000.000000+***"
    for name in set(TOKEN) - {"StartTime"}:
        assert fresh[name] == TOKEN[name]
    assert TOKEN["StartTime"] == "2026-10-14T22:00:00Z"


def test_unwrap_and_wrap_plain_token():
    assert unwrap_schedule("00A1E1C000192000") == "00A1E1C000192000"
    assert wrap_schedule("00A1E1C000192000", "00C1E1C000100008") == "00C1E1C000100008"


def test_unwrap_and_wrap_keep_xml_wrapper():
    assert unwrap_schedule(WRAPPED) == "00A1E1C000192000"
    rewrapped = wrap_schedule(WRAPPED, "00C1E1C000100008")
    assert rewrapped == WRAPPED.replace("00A1E1C000192000", "00C1E1C000100008")


def test_unwrap_rejects_values_without_a_token():
    with pytest.raises(ScheduleError):
        unwrap_schedule("<ScheduleXML/>")
    with pytest.raises(CmToolkitError):
        unwrap_schedule("<ScheduleXML><ScheduleToken></ScheduleToken></ScheduleXML>")


def test_reencode_round_trips_through_provider():
    cm = FakeAdminService(tokens=[TOKEN])
    assert reencode_schedule(cm, WRAPPED) == WRAPPED.replace("00A1E1C000192000", "00C1E1C000100008")
    assert cm.written_tokens == [fresh_token(TOKEN)]


def test_reencode_empty_schedule_is_left_alone():
    cm = FakeAdminService()
    assert reencode_schedule(cm, "") == ""
    assert cm.written_tokens is None


def test_provider_failure_is_an_error():
    class Failing(FakeAdminService):
        def invoke(self, class_name, method, parameters=None):
            return {"ReturnValue": 2}

    with pytest.raises(AdminServiceError):
        reencode_schedule(Failing(), "00A1E1C000192000")
