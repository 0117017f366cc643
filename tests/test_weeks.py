from datetime import date

import pytest

from crewhub.services.weeks import (
    format_week_id,
    parse_week_id,
    previous_week_id,
    week_bounds,
    week_day_offset,
    week_id_for,
    working_days,
)


def test_week_id_for_uses_iso_year():
    assert week_id_for(date(2025, 3, 3)) == "2025-S10"
    assert week_id_for(date(2025, 3, 9)) == "2025-S10"
    assert week_id_for(date(2024, 12, 30)) == "2025-S01"
    assert week_id_for(date(2021, 1, 3)) == "2020-S53"


def test_previous_week_crosses_years():
    assert previous_week_id("2025-S10") == "2025-S09"
    assert previous_week_id("2021-S01") == "2020-S53"
    assert previous_week_id("2026-S01") == "2025-S52"


@pytest.mark.parametrize("week_id", ["2025-10", "2025-W10", "25-S10", "2025-S00", "2025-S53", ""])
def test_parse_rejects_malformed(week_id):
    with pytest.raises(ValueError):
        parse_week_id(week_id)


def test_parse_and_format():
    assert parse_week_id("2020-S53") == (2020, 53)
    assert format_week_id(2025, 1) == "2025-S01"


def test_working_days_and_bounds():
    days = working_days("2025-S10")
    assert days[0] == date(2025, 3, 3)
    assert days[-1] == date(2025, 3, 7)
    assert len(days) == 5
    assert week_bounds("2025-S10") == (date(2025, 3, 3), date(2025, 3, 7))


def test_week_day_offset():
    assert week_day_offset("2025-S09", "2025-S10") == 7
    assert week_day_offset("2020-S53", "2021-S01") == 7
