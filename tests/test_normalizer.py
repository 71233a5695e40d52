"""
==============================================================================
Barcode Normalizer Tests
==============================================================================
"""

import pytest

from checkout_scanner.scanner.normalizer import (
    digit_run,
    fast_path,
    normalize,
    normalize_with_strategy,
    relaxed_length,
    standard_length,
    strip_non_digits,
)


class TestStrategies:
    """Each strategy on literal inputs."""

    def test_fast_path_accepts_clean_codes(self):
        assert fast_path("8901030875071") == "8901030875071"
        assert fast_path("123456") == "123456"

    def test_fast_path_rejects_noise_and_length(self):
        assert fast_path("12345") is None
        assert fast_path("123456789012345") is None
        assert fast_path("8901030875071x") is None

    def test_standard_length_inside_noise(self):
        assert standard_length("EAN:8901030875071;") == "8901030875071"
        assert standard_length("upc 036000291452 end") == "036000291452"
        assert standard_length("code=96385074") == "96385074"

    def test_standard_length_collapses_group_separators(self):
        assert standard_length("89-0103-087507") == "890103087507"
        assert standard_length("8 901030 875071") == "8901030875071"

    def test_standard_length_never_cuts_longer_runs(self):
        assert standard_length("x12345678901234567x") is None

    def test_relaxed_length(self):
        assert relaxed_length("ab89010308750cd") == "89010308750"
        assert relaxed_length("lbl1234567end") == "1234567"
        assert relaxed_length("no digits") is None

    def test_digit_run(self):
        assert digit_run("ab123456cd") == "123456"
        assert digit_run("ab12345cd") is None

    def test_strip_non_digits(self):
        assert strip_non_digits("1a2b3c4d5e6f") == "123456"
        assert strip_non_digits("1a2b3c") is None


class TestNormalize:
    """The ordered cascade."""

    def test_clean_ean13_unchanged(self):
        assert normalize_with_strategy("8901030875071") == ("8901030875071", "fast_path")

    def test_grouped_upc_a(self):
        assert normalize_with_strategy("89-0103-087507") == ("890103087507", "standard_length")

    def test_label_noise_extracts_digit_run(self):
        assert normalize("lbl1234567end") == "1234567"

    def test_surrounding_whitespace_is_ignored(self):
        assert normalize("  8901030875071\n") == "8901030875071"

    def test_scattered_digits(self):
        assert normalize_with_strategy("1-a-2-b-3-c-4-d-5-e-6") == ("123456", "strip_non_digits")

    @pytest.mark.parametrize("raw", [None, "", "   ", "hello", "12-34", "abc12345"])
    def test_extraction_failure(self, raw):
        assert normalize(raw) is None

    @pytest.mark.parametrize("raw", [
        "8901030875071",
        "89-0103-087507",
        "lbl1234567end",
        "code: 4006381333931 / lot 77",
        "1234567890123456789",
    ])
    def test_output_is_digits_and_idempotent(self, raw):
        code = normalize(raw)
        assert code is not None
        assert code.isdigit()
        assert len(code) >= 6
        assert normalize(code) == code
