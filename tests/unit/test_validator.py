"""
Unit tests for DataValidator.
"""
import pytest
from datetime import datetime, timedelta

from bess_converter.conversion.models import (
    BankData,
    BankTimeSeries,
    CellData,
    ErrorSeverity,
    ProjectType,
    StandardBatteryData,
    TimeRange,
    TimeSeriesPoint
)
from bess_converter.conversion.validator import AnomalyType, DataValidator, ValidationIssueType

T0 = datetime(2024, 1, 5, 8, 0)


def make_point(timestamp, voltages=(3.3, 3.4), temperatures=(25.0, 26.0),
               voltage=700.0, current=10.0, soc=55.0, soh=98.0):
    present = [t for t in temperatures if t is not None]
    return TimeSeriesPoint(
        timestamp=timestamp,
        bank_data=BankData(
            voltage=voltage,
            current=current,
            soc=soc,
            soh=soh,
            power=voltage * current / 1000,
            temperature=sum(present) / len(present) if present else 0.0
        ),
        cell_data=CellData(voltages=list(voltages), temperatures=list(temperatures))
    )


def minutes(count, **overrides):
    return [make_point(T0 + timedelta(minutes=i), **overrides) for i in range(count)]


def make_data(*banks, project_id="project1-2#"):
    return StandardBatteryData(
        project_id=project_id,
        project_type=ProjectType.PROJECT1,
        time_range=TimeRange(start=T0, end=T0),
        banks=[BankTimeSeries(bank_id=f"Bank{i:02d}", data_points=points) for i, points in enumerate(banks, 1)],
        system_id="2#"
    )


@pytest.fixture
def validator():
    return DataValidator()


class TestValidateData:
    """Test structural, range and continuity validation."""

    def test_clean_data_is_valid(self, validator):
        result = validator.validate_data(make_data(minutes(3)))

        assert result.is_valid is True
        assert result.errors == []
        assert result.warnings == []
        assert result.total_records == 3
        assert result.valid_records == 3
        assert result.error_rate == 0.0

    def test_missing_structure(self, validator):
        result = validator.validate_data(make_data(project_id=""))

        assert result.is_valid is False
        assert [issue.field_name for issue in result.errors] == ["project_id", "banks"]
        assert all(issue.type == ValidationIssueType.MISSING_FIELD for issue in result.errors)

    def test_bank_without_points(self, validator):
        result = validator.validate_data(make_data(minutes(2), []))

        assert result.is_valid is False
        assert result.errors[0].bank_id == "Bank02"
        assert result.total_records == 2

    def test_out_of_range_values_are_warnings(self, validator):
        points = minutes(3)
        points[1] = make_point(points[1].timestamp, voltages=(3.3, 5.0), soc=120.0)

        result = validator.validate_data(make_data(points))

        assert [(w.field_name, w.row_index) for w in result.warnings] == [("voltages", 1), ("soc", 1)]
        assert result.warnings[0].value == 5.0
        assert result.valid_records == 2
        assert result.error_rate == 0.3333
        assert result.is_valid is False

    def test_time_gap_warning(self, validator):
        points = minutes(2) + [make_point(T0 + timedelta(hours=3))]

        result = validator.validate_data(make_data(points))

        [warning] = result.warnings
        assert warning.type == ValidationIssueType.TIME_GAP
        assert warning.row_index == 2
        assert warning.value == 3 * 3600 - 60
        assert result.is_valid is True
        assert result.to_dict()["statistics"]["valid_records"] == 3


class TestDetectAnomalies:
    """Test per-bank anomaly detection."""

    def test_clean_series(self, validator):
        report = validator.detect_anomalies(minutes(5), "Bank01")

        assert report.total_anomalies == 0
        assert report.severity_distribution() == {"low": 0, "medium": 0, "high": 0, "critical": 0}

    @pytest.mark.parametrize("cell_voltage,severity", [
        (5.2, ErrorSeverity.LOW),
        (0.0, ErrorSeverity.MEDIUM),
        (9.0, ErrorSeverity.HIGH),
        (10.0, ErrorSeverity.CRITICAL),
    ])
    def test_voltage_outlier_severity(self, validator, cell_voltage, severity):
        report = validator.detect_anomalies([make_point(T0, voltages=(3.3, cell_voltage))], "Bank01")

        [anomaly] = report.anomalies
        assert anomaly.type == AnomalyType.VOLTAGE_OUTLIER
        assert anomaly.severity == severity
        assert anomaly.cell_id == 2
        assert anomaly.value == cell_voltage
        assert anomaly.expected_range == (2.5, 4.2)

    def test_voltage_within_margin_is_not_anomalous(self, validator):
        report = validator.detect_anomalies([make_point(T0, voltages=(4.5, 2.0))])

        assert report.total_anomalies == 0

    def test_worst_cell_is_reported(self, validator):
        report = validator.detect_anomalies([make_point(T0, voltages=(5.2, 3.3, 9.0, None))])

        [anomaly] = report.anomalies
        assert anomaly.cell_id == 3
        assert "2 outlier cell(s)" in anomaly.message

    def test_temperature_outlier(self, validator):
        points = minutes(9, temperatures=(25.0, 25.0))
        hot = make_point(T0 + timedelta(minutes=9), temperatures=(60.0, 60.0))

        report = validator.detect_anomalies(points + [hot], "Bank01")

        [anomaly] = report.anomalies
        assert anomaly.type == AnomalyType.TEMPERATURE_OUTLIER
        assert anomaly.timestamp == hot.timestamp
        assert anomaly.value == 60.0

    def test_state_outliers(self, validator):
        report = validator.detect_anomalies([make_point(T0, soc=120.0, soh=-5.0)])

        assert [a.type for a in report.anomalies] == [AnomalyType.SOC_OUTLIER, AnomalyType.SOH_OUTLIER]
        assert all(a.severity == ErrorSeverity.HIGH for a in report.anomalies)

    @pytest.mark.parametrize("fields,severity", [
        ({"soc": 0.0}, ErrorSeverity.MEDIUM),
        ({"soc": 0.0, "soh": 0.0}, ErrorSeverity.MEDIUM),
        ({"voltage": 0.0, "soc": 0.0, "soh": 0.0}, ErrorSeverity.HIGH),
    ])
    def test_missing_data(self, validator, fields, severity):
        report = validator.detect_anomalies([make_point(T0, **fields)])

        [anomaly] = report.anomalies
        assert anomaly.type == AnomalyType.MISSING_DATA
        assert anomaly.severity == severity
        for name in fields:
            assert name in anomaly.message

    def test_idle_current_is_not_missing(self, validator):
        assert validator.detect_anomalies([make_point(T0, current=0.0)]).total_anomalies == 0

    def test_time_gaps(self, validator):
        points = [
            make_point(T0),
            make_point(T0 + timedelta(hours=1)),
            make_point(T0 + timedelta(hours=4)),
            make_point(T0 + timedelta(hours=30)),
        ]

        report = validator.detect_anomalies(points, "Bank01")

        assert [(a.type, a.severity, a.timestamp) for a in report.anomalies] == [
            (AnomalyType.TIME_GAP, ErrorSeverity.MEDIUM, points[2].timestamp),
            (AnomalyType.TIME_GAP, ErrorSeverity.HIGH, points[3].timestamp),
        ]
        assert report.anomalies[0].value == 3 * 3600
        assert report.to_dict()["summary"]["severity_distribution"]["high"] == 1


class TestQualityReport:
    """Test dataset quality scoring."""

    def test_clean_dataset(self, validator):
        report = validator.generate_quality_report(make_data(minutes(3), minutes(2)))

        assert report.overall_score == 1.0
        assert report.completeness == 1.0
        assert report.accuracy == 1.0
        assert report.consistency == 1.0
        assert report.timeliness == 1.0
        assert report.anomaly_count == 0
        assert report.recommendations[0].startswith("Data quality is good")

    def test_gap_lowers_accuracy_and_timeliness(self, validator):
        points = [make_point(T0), make_point(T0 + timedelta(hours=3))]

        report = validator.generate_quality_report(make_data(points))

        assert report.accuracy == 0.5
        assert report.timeliness == 0.0
        assert report.overall_score == 0.625
        assert any("Time gaps" in text for text in report.recommendations)
        assert report.to_dict()["severity_distribution"]["medium"] == 1

    def test_critical_anomaly_recommendation(self, validator):
        report = validator.generate_quality_report(make_data([make_point(T0, voltages=(10.0, 3.3))]))

        assert report.anomaly_report.severity_distribution()["critical"] == 1
        assert any("Critical anomalies" in text for text in report.recommendations)

    def test_dataset_without_banks(self, validator):
        report = validator.generate_quality_report(make_data())

        assert report.completeness == 0.0
        assert report.consistency == 0.0
        assert report.accuracy == 1.0
        assert report.overall_score == 0.5

    def test_completeness_counts_missing_values(self, validator):
        data = make_data([make_point(T0, voltages=(3.3, None), temperatures=(25.0, None), soc=0.0)])

        assert validator.check_data_completeness(data) == pytest.approx(6 / 9)

    def test_consistency_counts_out_of_range_points(self, validator):
        points = minutes(2)
        points[1] = make_point(points[1].timestamp, soh=105.0)

        # 1 ordering check + 4 range checks per point, one failed
        assert validator.check_data_consistency(make_data(points)) == pytest.approx(8 / 9)
