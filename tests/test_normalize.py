"""Tests for scanned-code normalization."""

import pytest

from gearout.normalize import normalize, variants


SAMPLES = [
    "", " ", "sn-100", " sn-100 \n", "\tART_2024.07\r\n", "a b c", "ÄÖü-12",
    "x'12", "!!!", "ser.no:55/a", "ß-straße", "MiXeD_case-01.b",
]


class TestNormalize:

    def test_strips_whitespace_and_uppercases(self):
        assert normalize(" sn-100 \n") == "SN-100"

    def test_keeps_only_letters_digits_and_separators(self):
        assert normalize("ser.no:55/a") == "SER.NO55A"
        assert normalize("ART_2024.07") == "ART_2024.07"

    def test_pure_noise_becomes_empty(self):
        assert normalize("  !!! \t") == ""
        assert normalize(None) == ""

    @pytest.mark.parametrize("raw", SAMPLES)
    def test_idempotent(self, raw):
        once = normalize(raw)
        assert normalize(once) == once


class TestVariants:

    def test_separator_substitutions(self):
        vs = variants("art_2024.07")
        assert {"ART_2024.07", "ART-2024-07", "ART_2024_07", "ART.2024.07", "ART202407"} <= vs

    def test_raw_uppercase_fallback_is_included(self):
        assert "SN 100" in variants("  sn 100 ")

    def test_apostrophe_forms(self):
        vs = variants("SN'100")
        assert "SN-100" in vs
        assert "SN4100" in vs
        assert "SN100" in vs

    @pytest.mark.parametrize("raw", SAMPLES)
    def test_small_and_always_contains_canonical(self, raw):
        vs = variants(raw)
        assert normalize(raw) in vs
        assert 1 <= len(vs) <= 8

    def test_noise_only_input_gives_empty_canonical(self):
        assert variants("   ") == {""}
