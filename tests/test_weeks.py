from datetime import date

import pytest

from branchportal import weeks


class TestWeekLabels:
    @pytest.mark.parametrize(
        "monday,label",
        [
            (date(2024, 3, 4), "2024 3월 첫째주"),
            (date(2024, 3, 11), "2024 3월 둘째주"),
            (date(2024, 3, 25), "2024 3월 넷째주"),
            (date(2024, 4, 29), "2024 4월 다섯째주"),
            (date(2024, 1, 1), "2024 1월 첫째주"),
        ],
    )
    def test_label(self, monday, label):
        assert weeks.week_label(monday) == label

    def test_ordinal_past_five(self):
        assert weeks.korean_ordinal(6) == "6째"


class TestWindow:
    def test_recent_weeks_newest_first(self):
        window = weeks.recent_weeks(reference=date(2024, 3, 6))
        assert len(window) == 12
        assert window[0].id == "2024-03-04"
        assert window[1].id == "2024-02-26"
        assert window[-1].id == "2023-12-18"
        assert all(week.start.weekday() == 0 for week in window)
        assert window[0].end == date(2024, 3, 10)

    def test_sunday_belongs_to_previous_monday(self):
        assert weeks.recent_weeks(1, reference=date(2024, 3, 10))[0].id == "2024-03-04"

    def test_to_dict(self):
        data = weeks.week_for(date(2024, 3, 4)).to_dict()
        assert data == {"id": "2024-03-04", "label": "2024 3월 첫째주", "start": "2024-03-04", "end": "2024-03-10"}


class TestParseWeekId:
    def test_accepts_monday(self):
        assert weeks.parse_week_id("2024-03-04") == date(2024, 3, 4)

    @pytest.mark.parametrize("value", ["2024-03-05", "2024-3-4", "20240304", "not-a-date", ""])
    def test_rejects(self, value):
        with pytest.raises(ValueError):
            weeks.parse_week_id(value)
