import pytest

from branchportal.field_reports import (
    CATEGORIES,
    FieldReportError,
    MemoryFieldReportStore,
    SqlFieldReportStore,
    find_item,
    validate_report,
)


def _valid(**overrides):
    data = {
        "category": "toilet",
        "item_id": "space",
        "latitude": 36.019,
        "longitude": 129.343,
        "measurements": {"폭": "140", "깊이": "150"},
    }
    data.update(overrides)
    return data


class TestCatalogue:
    def test_six_categories(self):
        assert [category["id"] for category in CATEGORIES] == [
            "parking", "curb", "ramp", "elevator", "toilet", "entrance",
        ]

    def test_find_item(self):
        assert find_item("parking", "sign")["unit"] == "개소"
        assert find_item("parking", "nope") is None
        assert find_item("nope", "sign") is None


class TestValidation:
    def test_valid_report(self):
        report = validate_report(**_valid())
        assert report["item_name"] == "활동 공간"
        assert report["measurements"] == {"폭": "140", "깊이": "150"}

    @pytest.mark.parametrize(
        "overrides",
        [
            {"category": "garden"},
            {"item_id": "mirror"},
            {"latitude": 91},
            {"longitude": -181},
            {"latitude": "north"},
            {"measurements": {"폭": "140"}},
            {"measurements": {"폭": "140", "깊이": "  "}},
        ],
    )
    def test_invalid_reports(self, overrides):
        with pytest.raises(FieldReportError):
            validate_report(**_valid(**overrides))

    def test_error_is_a_value_error(self):
        assert issubclass(FieldReportError, ValueError)


@pytest.fixture(params=["memory", "sqlite"])
def report_store(request, tmp_path):
    if request.param == "memory":
        return MemoryFieldReportStore()
    return SqlFieldReportStore(tmp_path / "field_reports.db", use_postgres=False)


class TestStores:
    def test_create_and_list_newest_first(self, report_store):
        report = validate_report(**_valid())
        first = report_store.create_report(user_id="gb001", branch_id=1, report=report, address="포항시", memo="a")
        second = report_store.create_report(user_id="gb002", branch_id=2, report=report, memo="b")
        third = report_store.create_report(user_id="gb001", branch_id=1, report=report, memo="c")

        assert first["measurements"] == {"폭": "140", "깊이": "150"}
        assert first["address"] == "포항시"
        assert second["address"] == ""

        everything = report_store.list_reports()
        assert [row["id"] for row in everything] == [third["id"], second["id"], first["id"]]
        own = report_store.list_reports(branch_id=1)
        assert [row["memo"] for row in own] == ["c", "a"]
