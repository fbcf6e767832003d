from datetime import datetime, time

from ventushub.core.timeutil import (
    get_zone,
    in_quiet_hours,
    local_midnight_utc,
    next_digest_boundary,
    parse_hhmm,
    quiet_hours_end,
    to_local,
)

SAO_PAULO = get_zone("America/Sao_Paulo")


class TestQuietHours:
    def test_same_day_window(self):
        start, end = time(13, 0), time(14, 0)
        assert in_quiet_hours(datetime(2026, 3, 10, 13, 30), start, end)
        assert not in_quiet_hours(datetime(2026, 3, 10, 14, 0), start, end)

    def test_window_wrapping_midnight(self):
        start, end = time(22, 0), time(7, 0)
        assert in_quiet_hours(datetime(2026, 3, 10, 23, 0), start, end)
        assert in_quiet_hours(datetime(2026, 3, 11, 6, 59), start, end)
        assert not in_quiet_hours(datetime(2026, 3, 11, 7, 0), start, end)
        assert not in_quiet_hours(datetime(2026, 3, 10, 12, 0), start, end)

    def test_empty_window(self):
        assert not in_quiet_hours(datetime(2026, 3, 10, 12, 0), time(12, 0), time(12, 0))

    def test_end_of_window_in_user_zone(self):
        # 23:00 in São Paulo (UTC-3) is 02:00 UTC the next day; the window closes at 07:00 local
        now = datetime(2026, 3, 11, 2, 0)
        assert quiet_hours_end(now, time(22, 0), time(7, 0), SAO_PAULO) == datetime(2026, 3, 11, 10, 0)

    def test_after_midnight_closes_same_local_day(self):
        now = datetime(2026, 3, 11, 6, 30)  # 03:30 local
        assert quiet_hours_end(now, time(22, 0), time(7, 0), SAO_PAULO) == datetime(2026, 3, 11, 10, 0)

    def test_outside_window(self):
        assert quiet_hours_end(datetime(2026, 3, 10, 15, 0), time(22, 0), time(7, 0), SAO_PAULO) is None

    def test_no_window_configured(self):
        assert quiet_hours_end(datetime(2026, 3, 10, 15, 0), None, None, SAO_PAULO) is None


class TestZones:
    def test_unknown_zone_falls_back(self):
        assert get_zone("Mars/Olympus_Mons").key == "UTC"
        assert get_zone(None, "America/Sao_Paulo").key == "America/Sao_Paulo"

    def test_to_local(self):
        assert to_local(datetime(2026, 3, 10, 15, 0), SAO_PAULO).hour == 12

    def test_local_midnight(self):
        assert local_midnight_utc(datetime(2026, 3, 10, 15, 0), SAO_PAULO) == datetime(2026, 3, 10, 3, 0)
        # 01:00 UTC is still the previous local day
        assert local_midnight_utc(datetime(2026, 3, 11, 1, 0), SAO_PAULO) == datetime(2026, 3, 10, 3, 0)

    def test_parse_hhmm(self):
        assert parse_hhmm("07:30") == time(7, 30)
        assert parse_hhmm(None) is None
        assert parse_hhmm(time(8, 0)) == time(8, 0)


class TestDigestBoundary:
    def test_hourly(self):
        assert next_digest_boundary(datetime(2026, 3, 10, 15, 20), "hourly", SAO_PAULO) == datetime(2026, 3, 10, 16, 0)

    def test_daily(self):
        assert next_digest_boundary(datetime(2026, 3, 10, 15, 0), "daily", SAO_PAULO) == datetime(2026, 3, 11, 3, 0)

    def test_weekly(self):
        # 2026-03-10 is a Tuesday; next local Monday is 2026-03-16
        assert next_digest_boundary(datetime(2026, 3, 10, 15, 0), "weekly", SAO_PAULO) == datetime(2026, 3, 16, 3, 0)

    def test_instant(self):
        now = datetime(2026, 3, 10, 15, 0)
        assert next_digest_boundary(now, "instant", SAO_PAULO) == now
