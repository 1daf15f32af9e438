"""
read by haplotype likelihoods for an active region
"""
import math
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from ..bam.read import AlignedRead
from ..constants import NULL_BASE
from ..util import derive_seed, logger
from .active_region import phred_to_error
from .assemble import Haplotype

LN10 = math.log(10)
_NULL_CODE = ord(NULL_BASE)


class PairHMM:
    """
    pair hidden markov model with match, insertion and deletion states. The read must be fully
    consumed but may start and end anywhere along the haplotype

    Example:
        >>> hmm = PairHMM()
        >>> hmm.log10_likelihood('ACGT', (30, 30, 30, 30), 'ACGT') > hmm.log10_likelihood('ACGT', (30, 30, 30, 30), 'ACCT')
        True
    """

    def __init__(self, gap_open_penalty: float = 45, gap_continuation_penalty: float = 10):
        """
        Args:
            gap_open_penalty: phred scaled probability of opening an indel
            gap_continuation_penalty: phred scaled probability of extending an indel
        """
        gap_open = 10 ** (-gap_open_penalty / 10)
        gap_continue = 10 ** (-gap_continuation_penalty / 10)
        self.log_match_to_match = math.log(1 - 2 * gap_open)
        self.log_match_to_gap = math.log(gap_open)
        self.log_gap_to_gap = math.log(gap_continue)
        self.log_gap_to_match = math.log(1 - gap_continue)

    def log10_likelihood(self, read: str, qualities: Sequence[int], haplotype: str) -> float:
        """
        Args:
            read: the read bases
            qualities: the phred base qualities of the read
            haplotype: the haplotype bases

        Returns:
            log10 probability of the read given the haplotype
        """
        n, m = len(read), len(haplotype)
        if n == 0:
            return 0.0
        if m == 0:
            return float('-inf')
        read_codes = np.frombuffer(read.encode('ascii'), dtype=np.uint8)
        hap_codes = np.frombuffer(haplotype.encode('ascii'), dtype=np.uint8)
        error = np.clip(phred_to_error(qualities), 1e-10, 0.75)
        matches = (
            (read_codes[:, None] == hap_codes[None, :])
            | (read_codes[:, None] == _NULL_CODE)
            | (hap_codes[None, :] == _NULL_CODE)
        )
        log_prior = np.where(matches, np.log1p(-error)[:, None], np.log(error / 3)[:, None])

        columns = np.arange(m + 1)
        match_prev = np.full(m + 1, -np.inf)
        insert_prev = np.full(m + 1, -np.inf)
        delete_prev = np.full(m + 1, math.log(1 / m))
        with np.errstate(invalid='ignore', divide='ignore', over='ignore'):
            for i in range(1, n + 1):
                match = np.full(m + 1, -np.inf)
                match[1:] = log_prior[i - 1] + np.logaddexp(
                    match_prev[:-1] + self.log_match_to_match,
                    np.logaddexp(insert_prev[:-1], delete_prev[:-1]) + self.log_gap_to_match,
                )
                insert = np.full(m + 1, -np.inf)
                insert[1:] = np.logaddexp(
                    match_prev[1:] + self.log_match_to_gap, insert_prev[1:] + self.log_gap_to_gap
                )
                # deletions chain along the row: closed form of D[j] = M[j-1]*t_md + D[j-1]*t_dd
                shifted = np.logaddexp.accumulate(match - columns * self.log_gap_to_gap)
                delete = np.full(m + 1, -np.inf)
                delete[1:] = self.log_match_to_gap + (columns[1:] - 1) * self.log_gap_to_gap + shifted[:-1]
                match_prev, insert_prev, delete_prev = match, insert, delete
            total = np.logaddexp.reduce(np.concatenate([match_prev[1:], insert_prev[1:]]))
        return float(total / LN10)


@dataclass
class LikelihoodMatrix:
    """
    log10 likelihoods of each read given each haplotype for a single sample

    Attributes:
        sample: the sample the reads belong to
        reads: the reads (rows)
        haplotypes: the haplotypes (columns)
        values: R x H array of log10 likelihoods. R may be zero
    """

    sample: str
    reads: List[AlignedRead]
    haplotypes: List[Haplotype]
    values: np.ndarray

    @property
    def num_reads(self) -> int:
        return len(self.reads)

    def normalized(self) -> np.ndarray:
        """
        the likelihoods scaled so that each row sums to one (in linear space)
        """
        if self.values.shape[0] == 0:
            return self.values.copy()
        row_max = self.values.max(axis=1, keepdims=True)
        linear = np.power(10.0, self.values - row_max)
        return np.log10(linear / linear.sum(axis=1, keepdims=True))


def downsample_reads(
    reads: Sequence[AlignedRead], max_reads_per_start: int, seed: int, *region_keys
) -> List[AlignedRead]:
    """
    cap the number of reads of each sample starting at the same position. The generator is seeded from the
    global seed and the region so that each region gives the same result no matter which worker processes it

    Args:
        reads: the reads to sample from
        max_reads_per_start: maximum reads per (sample, start). Values below 1 disable downsampling
        seed: the global random seed
        region_keys: values identifying the region (ex. contig, start, end)

    Returns:
        the kept reads in their original order
    """
    if max_reads_per_start < 1:
        return list(reads)
    groups: Dict[tuple, List[int]] = {}
    for index, read in enumerate(reads):
        groups.setdefault((read.sample, read.start), []).append(index)
    if all([len(indices) <= max_reads_per_start for indices in groups.values()]):
        return list(reads)
    rng = np.random.default_rng(derive_seed(seed, *region_keys))
    keep = set()
    for key in sorted(groups):
        indices = groups[key]
        if len(indices) > max_reads_per_start:
            indices = rng.choice(indices, size=max_reads_per_start, replace=False).tolist()
        keep.update(indices)
    logger.debug(f'downsampled {len(reads)} reads to {len(keep)}')
    return [read for index, read in enumerate(reads) if index in keep]


class LikelihoodEngine:
    """
    computes the per-sample likelihood matrices for the reads and haplotypes of an active region
    """

    def __init__(
        self,
        gap_open_penalty: float = 45,
        gap_continuation_penalty: float = 10,
        max_reads_per_alignment_start: int = 50,
        random_seed: int = 47382911,
    ):
        self.hmm = PairHMM(gap_open_penalty, gap_continuation_penalty)
        self.max_reads_per_alignment_start = max_reads_per_alignment_start
        self.random_seed = random_seed

    def compute(
        self,
        reads: Sequence[AlignedRead],
        haplotypes: Sequence[Haplotype],
        samples: Sequence[str],
        region_keys: Sequence = (),
    ) -> Dict[str, LikelihoodMatrix]:
        """
        Args:
            reads: the reads of the region (already clipped to the haplotype span)
            haplotypes: the candidate haplotypes
            samples: every sample. Samples without reads get a matrix with zero rows
            region_keys: identifies the region for downsampling

        Returns:
            the likelihood matrix for each sample
        """
        reads = downsample_reads(reads, self.max_reads_per_alignment_start, self.random_seed, *region_keys)
        result = {}
        for sample in samples:
            sample_reads = [read for read in reads if read.sample == sample]
            values = np.zeros((len(sample_reads), len(haplotypes)), dtype=float)
            for row, read in enumerate(sample_reads):
                for col, haplotype in enumerate(haplotypes):
                    values[row, col] = self.hmm.log10_likelihood(read.sequence, read.qualities, haplotype.sequence)
            result[sample] = LikelihoodMatrix(sample, sample_reads, list(haplotypes), values)
        return result
