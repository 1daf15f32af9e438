import pytest

from mutsift.call.refconf import ReferenceConfidenceModel, append_non_ref, band_index
from mutsift.constants import FORMAT, INFO, NON_REF_ALLELE
from mutsift.interval import Interval
from mutsift.variant import AlleleCall

from ..mock import CONTIG, alt_base, random_sequence, simulate_reads

REFERENCE = random_sequence(100, seed=31)
BANDS = [-2.5, -2.0, -1.5, -1.0, -0.5, 0.0, 0.5, 1.0]


def variant_call(pos=50):
    return AlleleCall(
        CONTIG,
        pos,
        REFERENCE[pos - 1],
        [alt_base(REFERENCE[pos - 1])],
        info={INFO.TLOD: [10.0], INFO.MBQ: [30, 30], INFO.ECNT: 1},
        samples={'tumor': {FORMAT.GT: '0/1', FORMAT.AD: [5, 5], FORMAT.AF: [0.5], FORMAT.DP: 10}},
    )


def assert_tiled(records, interval):
    assert records[0].pos == interval.start
    assert records[-1].stop == interval.end
    for previous, current in zip(records, records[1:]):
        assert previous.stop + 1 == current.pos


class TestBandIndex:
    @pytest.mark.parametrize('lod,expected', [[-3.0, 0], [-2.5, 1], [-1.2, 3], [0.0, 6], [2.0, 8]])
    def test_band_index(self, lod, expected):
        assert band_index(lod, BANDS) == expected


class TestAppendNonRef:
    def test_every_allele_annotation_extended(self):
        call = append_non_ref(variant_call(), -1.5)
        assert call.alts[-1] == NON_REF_ALLELE
        assert call.info[INFO.TLOD] == [10.0, -1.5]
        assert call.info[INFO.MBQ] == [30, 30, 0]
        assert call.info[INFO.ECNT] == 1
        assert call.samples['tumor'][FORMAT.AD] == [5, 5, 0]
        assert call.samples['tumor'][FORMAT.AF] == [0.5, 0.0]


class TestReferenceConfidenceModel:
    def test_blocks_around_variant(self):
        model = ReferenceConfidenceModel(['tumor'], lod_bands=BANDS)
        reads = simulate_reads(REFERENCE, read_length=20, step=1)
        records = model.region_records(CONTIG, Interval(1, 100), reads, [variant_call()], REFERENCE, 1)
        assert len(records) == 3
        first, variant, last = records
        assert first.is_reference_block
        assert (first.pos, first.stop) == (1, 49)
        assert first.ref == REFERENCE[0]
        assert first.samples['tumor'][FORMAT.GT] == '0/0'
        assert first.samples['tumor'][FORMAT.DP] == 1
        assert variant.alts[-1] == NON_REF_ALLELE
        assert variant.info[INFO.TLOD][-1] == 0
        assert last.is_reference_block
        assert_tiled(records, Interval(1, 100))

    def test_no_call_block(self):
        model = ReferenceConfidenceModel(['tumor'], ['normal'], lod_bands=BANDS)
        reads = simulate_reads(REFERENCE, end=50, read_length=20, step=1)
        records = model.region_records(CONTIG, Interval(1, 100), reads, [], REFERENCE, 1)
        assert len(records) == 2
        covered, uncovered = records
        assert covered.samples['tumor'][FORMAT.GT] == '0/0'
        assert covered.samples['normal'][FORMAT.DP] == 0
        assert (uncovered.pos, uncovered.stop) == (51, 100)
        assert uncovered.samples['tumor'][FORMAT.GT] == './.'
        assert FORMAT.TLOD not in uncovered.samples['normal']

    def test_min_allele_fraction_changes_non_ref_lod(self):
        reads = simulate_reads(REFERENCE, read_length=20, step=1)
        default = ReferenceConfidenceModel(['tumor'], lod_bands=BANDS)
        fixed = ReferenceConfidenceModel(['tumor'], lod_bands=BANDS, min_allele_fraction=0.1)
        default_lod = default.region_records(CONTIG, Interval(1, 100), reads, [variant_call()], REFERENCE, 1)[1].info[INFO.TLOD][-1]
        fixed_records = fixed.region_records(CONTIG, Interval(1, 100), reads, [variant_call()], REFERENCE, 1)
        variant = [r for r in fixed_records if not r.is_reference_block][0]
        assert variant.pos == 50
        assert variant.info[INFO.TLOD][-1] < default_lod
        assert fixed_records[0].samples['tumor'][FORMAT.TLOD] < 0
        assert_tiled(fixed_records, Interval(1, 100))

    def test_first_record_is_block_when_region_starts_with_reference(self):
        model = ReferenceConfidenceModel(['tumor'], lod_bands=BANDS)
        reads = simulate_reads(REFERENCE, read_length=20, step=1)
        records = model.region_records(CONTIG, Interval(40, 60), reads, [variant_call()], REFERENCE, 1)
        assert records[0].is_reference_block
        assert records[0].pos == 40
        assert_tiled(records, Interval(40, 60))

    def test_call_at_region_start(self):
        model = ReferenceConfidenceModel(['tumor'], lod_bands=BANDS)
        reads = simulate_reads(REFERENCE, read_length=20, step=1)
        records = model.region_records(CONTIG, Interval(50, 60), reads, [variant_call(50)], REFERENCE, 1)
        assert not records[0].is_reference_block
        assert records[0].pos == 50
        assert records[0].alts[-1] == NON_REF_ALLELE
        assert records[1].is_reference_block
        assert_tiled(records, Interval(50, 60))
