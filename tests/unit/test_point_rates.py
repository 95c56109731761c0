"""Tests for point rate resolution and conversion."""

from datetime import date, datetime, timezone
from decimal import Decimal

from structlog.testing import capture_logs

from src.pricing.point_rates import convert_points, effective_point_price, resolve_point_rate
from tests.factories import make_point_rate

ON = date(2025, 6, 1)


def test_resolves_active_rate_for_degree():
    rates = [
        make_point_rate(1, insurance_degree_id=1),
        make_point_rate(2, insurance_degree_id=2),
    ]
    assert resolve_point_rate(rates, 2, ON).id == 2


def test_no_degree_no_rate():
    assert resolve_point_rate([make_point_rate(1)], None, ON) is None


def test_window_is_half_open():
    rate = make_point_rate(1, valid_from=date(2025, 1, 1), valid_to=ON)
    assert resolve_point_rate([rate], 2, date(2025, 5, 31)) is not None
    assert resolve_point_rate([rate], 2, ON) is None


def test_overlap_picks_most_recent_and_logs():
    older = make_point_rate(
        1, point_price=4, created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)
    )
    newer = make_point_rate(
        2,
        point_price=6,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        updated_at=datetime(2025, 2, 1, tzinfo=timezone.utc),
    )

    with capture_logs() as logs:
        chosen = resolve_point_rate([older, newer], 2, ON)

    assert chosen.id == 2
    overlap = [entry for entry in logs if entry["event"] == "point_rate_overlap"]
    assert overlap and overlap[0]["selected"] == 2


def test_overlap_without_timestamps_picks_highest_id():
    rates = [make_point_rate(3), make_point_rate(8), make_point_rate(5)]
    assert resolve_point_rate(rates, 2, ON).id == 8


def test_point_price_clamps():
    assert effective_point_price(make_point_rate(point_price=5, max_point_price=4)) == Decimal("4")
    assert effective_point_price(make_point_rate(point_price=5, min_point_price=7)) == Decimal("7")


def test_convert_points_with_result_bounds():
    rate = make_point_rate(point_price=2.5, result_min=30, result_max=100)
    assert convert_points(Decimal("10"), rate) == Decimal("30")
    assert convert_points(Decimal("20"), rate) == Decimal("50.0")
    assert convert_points(Decimal("100"), rate) == Decimal("100")
