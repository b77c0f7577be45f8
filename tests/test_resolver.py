"""Tests for the tiered code resolver (no storage involved)."""

import pytest

from gearout.catalog import provision_instances
from gearout.models import CatalogSnapshot, EquipmentRecord
from gearout.resolver import Match, MatchMethod, NoMatch, ordered_variants, resolve


def rec(id, serial, name="", article=None, **kw):
    return EquipmentRecord(id=id, name=name or f"Item {id}", serial_number=serial,
                           article_number=article, **kw)


# =============================================================================
# Exact tier
# =============================================================================

class TestExact:

    def test_noisy_scan_hits_serial(self):
        x1 = rec("X1", "SN-100", name="Cordless drill", total_quantity=2)
        hit = resolve(" sn-100 \n", CatalogSnapshot.of([x1]))
        assert isinstance(hit, Match)
        assert hit.found
        assert hit.record is x1
        assert hit.method == MatchMethod.EXACT
        assert hit.field == "serial_number"
        assert hit.describe() == "Exact/Serial Number"

    def test_id_is_checked(self):
        x1 = rec("X1", "SN-100")
        hit = resolve("x1", [x1])
        assert hit.field == "id"
        assert hit.describe() == "Exact/ID"

    def test_exact_beats_earlier_partial(self):
        kit = rec("A", "KIT-1", name="Kit one")
        other = rec("B", "ZZ-9", article="KIT-10")
        hit = resolve("kit-10", [kit, other])
        assert hit.record is other
        assert hit.method == MatchMethod.EXACT
        assert hit.field == "article_number"

    def test_exact_serial_beats_earlier_partial_name(self):
        kit = rec("K1", "KIT-7", name="Drill SN-100 kit")
        drill = rec("X1", "SN-100", name="Cordless drill")
        hit = resolve("SN-100", [kit, drill])
        assert hit.record is drill
        assert hit.describe() == "Exact/Serial Number"
        # without the exact candidate the name would have matched
        assert resolve("SN-100", [kit]).describe() == "Partial/Name"

    def test_apostrophe_scanned_for_hyphen(self):
        x1 = rec("X1", "SN-100")
        hit = resolve("SN'100", [x1])
        assert hit.record is x1
        assert hit.method == MatchMethod.EXACT

    def test_instance_qr_code(self):
        cam = rec("CAM", "CAM-77", name="Camera", total_quantity=3)
        instances = provision_instances(cam)
        hit = resolve("cam-77-002", CatalogSnapshot.of([cam], instances))
        assert hit.record is cam
        assert hit.field == "qr_code"
        assert hit.instance.instance_number == 2
        assert hit.describe() == "Exact/QR Code"


# =============================================================================
# Partial tier
# =============================================================================

class TestPartial:

    def test_substring_of_article(self):
        tripod = rec("T1", "TRP-1", name="Tripod", article="ART-2024-07-15")
        hit = resolve("2024-07", [tripod])
        assert hit.record is tripod
        assert hit.method == MatchMethod.PARTIAL
        assert hit.field == "article_number"

    def test_field_contained_in_scan(self):
        cable = rec("C1", "XLR-5", name="Cable")
        hit = resolve("LOT-XLR-5-B", [cable])
        assert hit.record is cable
        assert hit.method == MatchMethod.PARTIAL
        assert hit.field == "serial_number"

    def test_ties_go_to_catalog_order(self):
        first = rec("P1", "AAA-1", article="ART-2024-07-A")
        second = rec("P2", "AAA-2", article="ART-2024-07-B")
        assert resolve("2024-07", [first, second]).record is first
        assert resolve("2024-07", [second, first]).record is second


# =============================================================================
# Similarity tier
# =============================================================================

class TestSimilarity:

    def test_one_typo(self):
        cam = rec("K1", "CAM-4521", name="Camera")
        hit = resolve("CAM-4512", [cam])
        assert hit.record is cam
        assert hit.method == MatchMethod.SIMILARITY
        assert hit.describe() == "Similarity/Serial Number"

    def test_first_qualifying_record_wins_not_best(self):
        close = rec("D1", "DRL-20012", name="Hammer drill")      # 0.78
        closer = rec("D2", "DRL-10012", name="Impact drill")     # 0.89
        hit = resolve("DRL-10002", [close, closer])
        assert hit.record is close
        assert hit.method == MatchMethod.SIMILARITY

    def test_short_scan_never_fuzzy_matches(self):
        drill = rec("R1", "AC", name="Drill")
        hit = resolve("AB", [drill])
        assert isinstance(hit, NoMatch)
        assert not hit.found
        assert hit.variants[0] == "AB"

    def test_threshold_is_configurable(self):
        cam = rec("K1", "CAM-4521", name="Camera")
        assert not resolve("CAM-4512", [cam], threshold=0.9).found


# =============================================================================
# No match
# =============================================================================

class TestNoMatch:

    def test_unknown_code(self):
        hit = resolve("QQQQ-9999", [rec("X1", "SN-100", name="Drill")])
        assert not hit.found
        assert "QQQQ-9999" in hit.describe()

    @pytest.mark.parametrize("raw", ["", "   ", "\r\n", "!!"])
    def test_noise_only(self, raw):
        hit = resolve(raw, [rec("X1", "SN-100")])
        assert not hit.found

    def test_empty_catalog(self):
        assert not resolve("SN-100", CatalogSnapshot()).found


def test_ordered_variants_start_with_canonical():
    vs = ordered_variants(" art_2024.07 ")
    assert vs[0] == "ART_2024.07"
    assert vs[1:] == sorted(vs[1:])
    assert ordered_variants(" art_2024.07 ") == vs
