import numpy as np
import pytest

from mutsift.call.active_region import ActiveRegion
from mutsift.call.align import VariantEvent
from mutsift.call.assemble import Haplotype
from mutsift.call.likelihood import LikelihoodEngine, LikelihoodMatrix
from mutsift.call.somatic import (
    NO_ALLELE,
    SomaticGenotyper,
    allele_fractions_posterior,
    build_sites,
    collect_f1r2_counts,
    haplotype_allele,
    normal_log_odds,
    tumor_log_odds,
)
from mutsift.constants import FORMAT, INFO
from mutsift.interval import Interval

from ..mock import CONTIG, alt_base, random_sequence, simulate_reads, substitute

REFERENCE = random_sequence(120, seed=21)
VARIANT_POS = 60
ALT = alt_base(REFERENCE[VARIANT_POS - 1])
PADDED = Interval(1, len(REFERENCE))


def reads_for(rows, alleles=2):
    return np.array([[0.0 if col == allele else -5.0 for col in range(alleles)] for allele in rows])


def make_region(reads=None):
    return ActiveRegion(CONTIG, Interval(40, 80), PADDED, reads=reads or [], reference=REFERENCE)


def make_haplotypes(*events, forced=False):
    haplotypes = [Haplotype(REFERENCE, PADDED, is_reference=True)]
    for event in events:
        hap = REFERENCE[: event.pos - 1] + event.alt + REFERENCE[event.end :]
        haplotypes.append(Haplotype(hap, PADDED, is_forced=forced, events=(event,)))
    return haplotypes


class TestLogOdds:
    def test_no_reads(self):
        assert tumor_log_odds(np.zeros((0, 3))) == [0.0, 0.0]
        assert normal_log_odds(np.zeros((0, 2))) == [0.0]

    def test_tumor_alt_support(self):
        assert tumor_log_odds(reads_for([0] * 10 + [1] * 10))[0] > 3

    def test_tumor_reference_only(self):
        assert tumor_log_odds(reads_for([0] * 20))[0] < 0

    def test_more_support_more_confidence(self):
        assert tumor_log_odds(reads_for([0] * 10 + [1] * 2))[0] < tumor_log_odds(reads_for([0] * 10 + [1] * 6))[0]

    def test_normal(self):
        assert normal_log_odds(reads_for([0] * 20))[0] > 0
        assert normal_log_odds(reads_for([0] * 10 + [1] * 10))[0] < 0

    def test_allele_fractions_posterior(self):
        alpha = allele_fractions_posterior(reads_for([0] * 7 + [1] * 3), [1, 1])
        assert alpha == pytest.approx([8, 4], abs=0.01)


class TestBuildSites:
    def test_shared_start_extended_to_longest_reference(self):
        deletion = VariantEvent(VARIANT_POS, REFERENCE[VARIANT_POS - 1 : VARIANT_POS + 2], REFERENCE[VARIANT_POS - 1])
        snv = VariantEvent(VARIANT_POS, REFERENCE[VARIANT_POS - 1], ALT)
        sites = build_sites(make_region(), make_haplotypes(deletion, snv))
        assert len(sites) == 1
        site = sites[0]
        assert site.ref == deletion.ref
        assert site.alts == [deletion.alt, ALT + deletion.ref[1:]]
        assert site.haplotype_alleles == [0, 1, 2]

    def test_padding_events_ignored(self):
        event = VariantEvent(10, REFERENCE[9], alt_base(REFERENCE[9]))
        assert build_sites(make_region(), make_haplotypes(event)) == []

    def test_overlapping_event_has_no_allele(self):
        snv = VariantEvent(VARIANT_POS, REFERENCE[VARIANT_POS - 1], ALT)
        deletion = VariantEvent(VARIANT_POS - 1, REFERENCE[VARIANT_POS - 2 : VARIANT_POS], REFERENCE[VARIANT_POS - 2])
        sites = build_sites(make_region(), make_haplotypes(snv, deletion))
        site = [s for s in sites if s.pos == VARIANT_POS][0]
        assert haplotype_allele(site, make_haplotypes(deletion)[1]) == NO_ALLELE


class TestSomaticGenotyper:
    @pytest.fixture(scope='class')
    def variant_call(self):
        haplotype = substitute(REFERENCE, {VARIANT_POS: ALT})
        reads = simulate_reads(REFERENCE, haplotype, read_length=40) + simulate_reads(
            REFERENCE, read_length=40, sample='normal'
        )
        region = make_region(reads)
        haplotypes = make_haplotypes(VariantEvent(VARIANT_POS, REFERENCE[VARIANT_POS - 1], ALT))
        matrices = LikelihoodEngine().compute(reads, haplotypes, ['tumor', 'normal'])
        genotyper = SomaticGenotyper(
            ['tumor'],
            ['normal'],
            germline_resource={(CONTIG, VARIANT_POS, REFERENCE[VARIANT_POS - 1], ALT): 0.01},
            panel_of_normals={(CONTIG, VARIANT_POS, REFERENCE[VARIANT_POS - 1], ALT)},
        )
        calls = genotyper.genotype(region, haplotypes, matrices)
        assert len(calls) == 1
        return calls[0]

    def test_site(self, variant_call):
        assert (variant_call.pos, variant_call.ref, variant_call.alts) == (VARIANT_POS, REFERENCE[VARIANT_POS - 1], [ALT])

    def test_site_annotations(self, variant_call):
        assert variant_call.info[INFO.TLOD][0] > 3
        assert variant_call.info[INFO.NLOD][0] > 0
        assert variant_call.info[INFO.ECNT] == 1
        assert variant_call.info[INFO.POPAF] == pytest.approx([2.0])
        assert variant_call.info[INFO.MBQ] == [30, 30]
        assert variant_call.info[INFO.MMQ] == [60, 60]
        assert variant_call.info[INFO.OCM] == 0
        assert variant_call.info[INFO.PON]

    def test_tumor_annotations(self, variant_call):
        tumor = variant_call.samples['tumor']
        assert tumor[FORMAT.GT] == '0/1'
        assert tumor[FORMAT.AD][0] > 0
        assert tumor[FORMAT.AD][1] > 0
        assert 0.2 < tumor[FORMAT.AF][0] < 0.8
        for allele in range(2):
            assert tumor[FORMAT.F1R2][allele] + tumor[FORMAT.F2R1][allele] == tumor[FORMAT.AD][allele]
        assert sum(tumor[FORMAT.SB]) == sum(tumor[FORMAT.AD])
        assert tumor[FORMAT.DP] >= sum(tumor[FORMAT.AD])

    def test_normal_annotations(self, variant_call):
        normal = variant_call.samples['normal']
        assert normal[FORMAT.GT] == '0/0'
        assert normal[FORMAT.AD][1] == 0
        assert normal[FORMAT.AD][0] > 0

    def test_forced_allele_without_coverage(self):
        event = VariantEvent(VARIANT_POS, REFERENCE[VARIANT_POS - 1], ALT)
        haplotypes = make_haplotypes(event, forced=True)
        matrices = {'tumor': LikelihoodMatrix('tumor', [], haplotypes, np.zeros((0, 2)))}
        calls = SomaticGenotyper(['tumor']).genotype(make_region(), haplotypes, matrices)
        assert len(calls) == 1
        call = calls[0]
        assert call.info[INFO.TLOD] == [0.0]
        assert call.samples['tumor'][FORMAT.AD] == [0, 0]
        assert call.samples['tumor'][FORMAT.DP] == 0
        assert call.samples['tumor'][FORMAT.AF] == [0.0]

    def test_unforced_allele_without_coverage(self):
        haplotypes = make_haplotypes(VariantEvent(VARIANT_POS, REFERENCE[VARIANT_POS - 1], ALT))
        matrices = {'tumor': LikelihoodMatrix('tumor', [], haplotypes, np.zeros((0, 2)))}
        assert SomaticGenotyper(['tumor']).genotype(make_region(), haplotypes, matrices) == []


class TestCollectF1r2Counts:
    def test_counts(self):
        haplotype = substitute(REFERENCE, {VARIANT_POS: ALT})
        region = make_region(simulate_reads(REFERENCE, haplotype, read_length=40))
        counts = collect_f1r2_counts(region, REFERENCE, 1)
        assert sum(counts.values()) == len(region.interval)
        alt_sites = [key for key in counts if key[2] != '.']
        assert len(alt_sites) == 1
        sample, context, alt, depth, alt_depth, alt_f1r2 = alt_sites[0]
        assert sample == 'tumor'
        assert context == REFERENCE[VARIANT_POS - 2 : VARIANT_POS + 1]
        assert alt == ALT
        assert 0 < alt_depth < depth
        assert 0 <= alt_f1r2 <= alt_depth
