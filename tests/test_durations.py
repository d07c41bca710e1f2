"""Pruebas de la normalización y el formato de duraciones."""

import pytest

from courseplayer.schemas.course import Video
from courseplayer.utils.durations import (
    format_duration,
    format_total_duration,
    parse_duration,
    total_seconds,
)


class TestParseDuration:
    """Las dos formas de entrada se normalizan a segundos."""

    @pytest.mark.parametrize("value,expected", [
        (65, 65.0),
        (65.5, 65.5),
        ("65", 65.0),
        ("1:05", 65.0),
        ("01:05", 65.0),
        ("1:00:00", 3600.0),
        ("2:02:05", 7325.0),
    ])
    def test_accepts_numbers_and_clock_strings(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", [None, -1, -0.5, "", "   ", "abc", "1:75", float("nan"), float("inf"), True])
    def test_invalid_values_are_zero(self, value):
        assert parse_duration(value) == 0.0


class TestTotalSeconds:
    def test_mixed_representations_are_normalized_before_summing(self):
        """Una cadena formateada y un número crudo nunca se concatenan ni se omiten."""
        assert total_seconds(["1:05", 65]) == 130.0

    def test_empty_collection_is_zero(self):
        assert total_seconds([]) == 0.0
        assert format_total_duration([]) == "0:00"

    def test_accepts_video_models_and_dicts(self):
        videos = [
            Video.model_validate({"_id": "a", "duration": "1:05"}),
            {"duration": 65},
            Video.model_validate({"_id": "b", "duration": None}),
        ]
        assert total_seconds(videos) == 130.0

    def test_two_sixty_five_second_videos(self):
        assert format_total_duration([65, 65]) == "2:10"
        assert format_total_duration(["1:05", 65]) == "2:10"


class TestFormatDuration:
    @pytest.mark.parametrize("seconds,expected", [
        (0, "0:00"),
        (59, "0:59"),
        (60, "1:00"),
        (3599, "59:59"),
        (3600, "1:00:00"),
        (7325, "2:02:05"),
    ])
    def test_round_trip(self, seconds, expected):
        formatted = format_duration(seconds)
        assert formatted == expected
        assert parse_duration(formatted) == seconds

    def test_hours_component_only_from_one_hour(self):
        assert format_duration(3599).count(":") == 1
        assert format_duration(3600).count(":") == 2

    def test_fractional_seconds_are_floored(self):
        assert format_duration(59.9) == "0:59"

    def test_negative_or_missing_is_zero(self):
        assert format_duration(-10) == "0:00"
        assert format_duration(None) == "0:00"
