import numpy as np

from mutsift.call.assemble import Haplotype
from mutsift.call.likelihood import LikelihoodEngine, LikelihoodMatrix, PairHMM, downsample_reads
from mutsift.interval import Interval

from ..mock import alt_base, make_read, random_sequence, substitute

HAPLOTYPE = random_sequence(60, seed=5)
QUALS = (30,) * 20


class TestPairHMM:
    def test_exact_match_is_best(self):
        hmm = PairHMM()
        read = HAPLOTYPE[20:40]
        exact = hmm.log10_likelihood(read, QUALS, HAPLOTYPE)
        one = hmm.log10_likelihood(substitute(read, {10: alt_base(read[9])}), QUALS, HAPLOTYPE)
        two = hmm.log10_likelihood(substitute(read, {5: alt_base(read[4]), 10: alt_base(read[9])}), QUALS, HAPLOTYPE)
        assert exact > one > two

    def test_quality_scales_mismatch_cost(self):
        hmm = PairHMM()
        read = substitute(HAPLOTYPE[20:40], {10: alt_base(HAPLOTYPE[29])})
        low = hmm.log10_likelihood(read, (30,) * 9 + (5,) + (30,) * 10, HAPLOTYPE)
        high = hmm.log10_likelihood(read, QUALS, HAPLOTYPE)
        assert low > high

    def test_n_matches_anything(self):
        hmm = PairHMM()
        read = HAPLOTYPE[20:40]
        masked = read[:10] + 'N' + read[11:]
        mismatch = substitute(read, {11: alt_base(read[10])})
        assert hmm.log10_likelihood(masked, QUALS, HAPLOTYPE) > hmm.log10_likelihood(mismatch, QUALS, HAPLOTYPE)

    def test_indel_prefers_gapped_haplotype(self):
        hmm = PairHMM()
        deleted = HAPLOTYPE[:30] + HAPLOTYPE[33:]
        read = deleted[15:45]
        quals = (30,) * len(read)
        assert hmm.log10_likelihood(read, quals, deleted) > hmm.log10_likelihood(read, quals, HAPLOTYPE)

    def test_empty(self):
        hmm = PairHMM()
        assert hmm.log10_likelihood('', (), HAPLOTYPE) == 0
        assert hmm.log10_likelihood('ACGT', QUALS[:4], '') == float('-inf')


class TestLikelihoodMatrix:
    def test_normalized_rows(self):
        matrix = LikelihoodMatrix('tumor', [], [], np.array([[-1.0, -1.0], [-2.0, -5.0]]))
        normalized = np.power(10.0, matrix.normalized())
        assert np.allclose(normalized.sum(axis=1), [1, 1])
        assert np.allclose(normalized[0], [0.5, 0.5])

    def test_no_reads(self):
        matrix = LikelihoodMatrix('tumor', [], [], np.zeros((0, 2)))
        assert matrix.num_reads == 0
        assert matrix.normalized().shape == (0, 2)


class TestDownsampleReads:
    def reads(self):
        return [make_read(10 + i // 5, 'ACGT', name=f'read{i}') for i in range(20)]

    def test_caps_reads_per_start(self):
        kept = downsample_reads(self.reads(), 2, 1, 'chrM', 1, 100)
        assert len(kept) == 8
        starts = [r.start for r in kept]
        assert all([starts.count(start) == 2 for start in set(starts)])

    def test_deterministic(self):
        first = downsample_reads(self.reads(), 2, 1, 'chrM', 1, 100)
        second = downsample_reads(self.reads(), 2, 1, 'chrM', 1, 100)
        assert [r.name for r in first] == [r.name for r in second]

    def test_disabled(self):
        assert len(downsample_reads(self.reads(), 0, 1)) == 20

    def test_samples_are_separate(self):
        reads = [make_read(10, 'ACGT', sample=sample, name=sample) for sample in ['tumor', 'normal']]
        assert len(downsample_reads(reads, 1, 1)) == 2


class TestLikelihoodEngine:
    def test_zero_row_matrix_for_sample_without_reads(self):
        haplotypes = [Haplotype(HAPLOTYPE, Interval(1, 60), is_reference=True)]
        reads = [make_read(21, HAPLOTYPE[20:40], sample='tumor')]
        matrices = LikelihoodEngine().compute(reads, haplotypes, ['tumor', 'normal'])
        assert matrices['tumor'].values.shape == (1, 1)
        assert matrices['normal'].values.shape == (0, 1)
        assert matrices['normal'].sample == 'normal'

    def test_read_prefers_its_haplotype(self):
        alt = substitute(HAPLOTYPE, {30: alt_base(HAPLOTYPE[29])})
        haplotypes = [Haplotype(HAPLOTYPE, Interval(1, 60), is_reference=True), Haplotype(alt, Interval(1, 60))]
        reads = [make_read(21, HAPLOTYPE[20:40], name='ref'), make_read(21, alt[20:40], name='alt')]
        values = LikelihoodEngine().compute(reads, haplotypes, ['tumor'])['tumor'].values
        assert values[0, 0] > values[0, 1]
        assert values[1, 1] > values[1, 0]
