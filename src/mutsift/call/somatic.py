"""
converts read by haplotype likelihoods into annotated somatic allele calls
"""
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np
from scipy.special import digamma, gammaln, logsumexp

from ..bam.read import AlignedRead
from ..constants import BASES, FORMAT, INFO, READ_ORIENTATION
from ..types import AlleleKey
from ..util import logger
from ..variant import AlleleCall, normalize_allele
from .active_region import ActiveRegion
from .assemble import Haplotype
from .likelihood import LikelihoodMatrix

LN10 = math.log(10)
NO_ALLELE = -1


def log10_sum_exp(values: np.ndarray, axis=None, keepdims=False):
    """
    Example:
        >>> round(float(log10_sum_exp(np.array([0.0, 0.0]))), 4)
        0.301
    """
    return logsumexp(np.asarray(values, dtype=float) * LN10, axis=axis, keepdims=keepdims) / LN10


def log10_dirichlet_normalization(alpha: np.ndarray) -> float:
    """
    log10 of the normalizing constant of a dirichlet distribution
    """
    alpha = np.asarray(alpha, dtype=float)
    return float((gammaln(alpha.sum()) - gammaln(alpha).sum()) / LN10)


def _log10_responsibilities(log10_likelihoods: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    weighted = log10_likelihoods + digamma(alpha) / LN10
    return weighted - log10_sum_exp(weighted, axis=1, keepdims=True)


def allele_fractions_posterior(
    log10_likelihoods: np.ndarray, prior: Sequence[float], tolerance: float = 1e-3, max_iterations: int = 100
) -> np.ndarray:
    """
    the dirichlet posterior of the allele fractions under a mean field approximation

    Args:
        log10_likelihoods: R x A read by allele log10 likelihoods
        prior: the dirichlet prior pseudocounts for each allele

    Returns:
        the posterior pseudocounts for each allele
    """
    prior = np.asarray(prior, dtype=float)
    if log10_likelihoods.shape[0] == 0:
        return prior.copy()
    alpha = prior.copy()
    for _ in range(max_iterations):
        responsibilities = np.power(10.0, _log10_responsibilities(log10_likelihoods, alpha))
        updated = prior + responsibilities.sum(axis=0)
        change = np.abs(updated - alpha).max()
        alpha = updated
        if change < tolerance:
            break
    return alpha


def log10_evidence(log10_likelihoods: np.ndarray, prior: Sequence[float]) -> float:
    """
    variational lower bound on the log10 probability of the reads given the alleles, marginalizing over the allele fractions
    """
    if log10_likelihoods.shape[0] == 0:
        return 0.0
    prior = np.asarray(prior, dtype=float)
    posterior = allele_fractions_posterior(log10_likelihoods, prior)
    log10_resp = _log10_responsibilities(log10_likelihoods, posterior)
    resp = np.power(10.0, log10_resp)
    with np.errstate(invalid='ignore'):
        contributions = np.where(resp > 0, resp * (log10_likelihoods - log10_resp), 0)
    return (
        log10_dirichlet_normalization(prior)
        - log10_dirichlet_normalization(posterior)
        + float(contributions.sum())
    )


def tumor_log_odds(log10_likelihoods: np.ndarray) -> List[float]:
    """
    for each alternate allele (columns 1 and up) the log10 odds that the allele is present in the tumor

    Returns:
        one score per alternate allele. Every score is 0 when there are no reads
    """
    num_alleles = log10_likelihoods.shape[1]
    if log10_likelihoods.shape[0] == 0:
        return [0.0] * (num_alleles - 1)
    full = log10_evidence(log10_likelihoods, np.ones(num_alleles))
    result = []
    for allele in range(1, num_alleles):
        subset = np.delete(log10_likelihoods, allele, axis=1)
        result.append(full - log10_evidence(subset, np.ones(num_alleles - 1)))
    return result


def normal_log_odds(log10_likelihoods: np.ndarray) -> List[float]:
    """
    for each alternate allele the log10 odds that the normal is homozygous reference rather than heterozygous
    """
    num_alleles = log10_likelihoods.shape[1]
    result = []
    for allele in range(1, num_alleles):
        if log10_likelihoods.shape[0] == 0:
            result.append(0.0)
            continue
        ref = log10_likelihoods[:, 0]
        het = log10_sum_exp(np.stack([ref, log10_likelihoods[:, allele]]), axis=0) + math.log10(0.5)
        result.append(float((ref - het).sum()))
    return result


@dataclass
class Site:
    """
    the alleles starting at a single reference position

    Attributes:
        pos: the reference position
        ref: the (longest) reference allele
        alts: the alternate alleles, extended to the reference allele
        forced: the alternate alleles which must be reported
        haplotype_alleles: the index of the allele each haplotype carries (NO_ALLELE if it carries an
            overlapping event that is not one of the alleles)
    """

    pos: int
    ref: str
    alts: List[str]
    forced: Set[str] = field(default_factory=set)
    haplotype_alleles: List[int] = field(default_factory=list)

    @property
    def end(self) -> int:
        return self.pos + len(self.ref) - 1

    @property
    def alleles(self) -> List[str]:
        return [self.ref] + self.alts


def build_sites(region: ActiveRegion, haplotypes: Sequence[Haplotype]) -> List[Site]:
    """
    group the events of the haplotypes by start position. Only events starting within the region
    (not its padding) are considered
    """
    events_by_pos: Dict[int, Dict[Tuple[str, str], bool]] = {}
    for haplotype in haplotypes:
        for event in haplotype.events:
            if region.interval.start <= event.pos <= region.interval.end:
                key = (event.ref, event.alt)
                forced = events_by_pos.setdefault(event.pos, {}).get(key, False)
                events_by_pos[event.pos][key] = forced or haplotype.is_forced
    sites = []
    for pos in sorted(events_by_pos):
        events = events_by_pos[pos]
        ref = max([r for r, _ in events], key=lambda r: (len(r), r))
        alts = {}
        for (event_ref, event_alt), forced in events.items():
            alt = event_alt + ref[len(event_ref):]
            alts[alt] = alts.get(alt, False) or forced
        ordered = sorted([alt for alt in alts if alt != ref], key=lambda a: (len(a), a))
        site = Site(pos, ref, ordered, {alt for alt in ordered if alts[alt]})
        for haplotype in haplotypes:
            site.haplotype_alleles.append(haplotype_allele(site, haplotype))
        sites.append(site)
    return sites


def haplotype_allele(site: Site, haplotype: Haplotype) -> int:
    """
    the index of the site allele carried by a haplotype
    """
    overlapping = [e for e in haplotype.events if e.pos <= site.end and e.end >= site.pos]
    if not overlapping:
        return 0
    if len(overlapping) > 1:
        return NO_ALLELE
    event = overlapping[0]
    if event.pos != site.pos or not site.ref.startswith(event.ref):
        return NO_ALLELE
    alt = event.alt + site.ref[len(event.ref):]
    if alt in site.alts:
        return site.alts.index(alt) + 1
    return NO_ALLELE


def read_overlaps(read: AlignedRead, start: int, end: int) -> bool:
    return read.start <= end and read.end >= start


def allele_likelihoods(
    matrix: LikelihoodMatrix, site: Site, likelihood_cap: float
) -> Tuple[List[AlignedRead], np.ndarray]:
    """
    the read by allele likelihoods for a site. Each allele takes the best haplotype carrying it and
    each read only considers the reads overlapping the site

    Returns:
        the overlapping reads and their R x A likelihoods
    """
    rows = [i for i, read in enumerate(matrix.reads) if read_overlaps(read, site.pos, site.end)]
    num_alleles = len(site.alleles)
    values = np.full((len(rows), num_alleles), -np.inf)
    for col, allele in enumerate(site.haplotype_alleles):
        if allele == NO_ALLELE or not rows:
            continue
        values[:, allele] = np.maximum(values[:, allele], matrix.values[rows, col])
    if rows:
        row_max = values.max(axis=1, keepdims=True)
        values = np.maximum(values, row_max - likelihood_cap)
    return [matrix.reads[i] for i in rows], values


def best_alleles(values: np.ndarray, threshold: float) -> List[int]:
    """
    the most likely allele for each read or NO_ALLELE when the best allele is not better than the next
    best by the threshold

    Example:
        >>> best_alleles(np.array([[-1.0, -5.0], [-2.0, -2.1]]), 0.2)
        [0, -1]
    """
    result = []
    for row in values:
        order = np.argsort(-row, kind='stable')
        if len(row) < 2 or row[order[0]] - row[order[1]] >= threshold:
            result.append(int(order[0]))
        else:
            result.append(NO_ALLELE)
    return result


def _median(values) -> int:
    if not values:
        return 0
    return int(round(float(np.median(values))))


class SomaticGenotyper:
    """
    turns the likelihoods of an active region into allele calls
    """

    def __init__(
        self,
        tumor_samples: Sequence[str],
        normal_samples: Sequence[str] = (),
        emission_lod: float = 3.0,
        informative_read_threshold: float = 0.2,
        likelihood_cap: float = 4.5,
        default_af: float = 1e-6,
        germline_resource: Optional[Dict[AlleleKey, Optional[float]]] = None,
        panel_of_normals: Optional[Set[AlleleKey]] = None,
    ):
        self.tumor_samples = list(tumor_samples)
        self.normal_samples = list(normal_samples)
        self.emission_lod = emission_lod
        self.informative_read_threshold = informative_read_threshold
        self.likelihood_cap = likelihood_cap
        self.default_af = default_af
        self.germline_resource = germline_resource or {}
        self.panel_of_normals = panel_of_normals or set()

    @property
    def samples(self) -> List[str]:
        return self.tumor_samples + self.normal_samples

    def population_af(self, contig: str, pos: int, ref: str, alt: str) -> float:
        af = self.germline_resource.get(normalize_allele(contig, pos, ref, alt), self.default_af)
        if af is None or af <= 0:
            return self.default_af
        return af

    def sample_annotations(self, reads: List[AlignedRead], values: np.ndarray, genotype: str) -> Dict:
        num_alleles = values.shape[1]
        best = best_alleles(values, self.informative_read_threshold)
        depth = [0] * num_alleles
        f1r2 = [0] * num_alleles
        f2r1 = [0] * num_alleles
        strand = [0, 0, 0, 0]
        for read, allele in zip(reads, best):
            if allele == NO_ALLELE:
                continue
            depth[allele] += 1
            if read.orientation == READ_ORIENTATION.F1R2:
                f1r2[allele] += 1
            else:
                f2r1[allele] += 1
            strand[(0 if allele == 0 else 2) + (1 if read.is_reverse else 0)] += 1
        if values.shape[0]:
            posterior = allele_fractions_posterior(values, np.ones(num_alleles))
            fractions = [float(f) for f in posterior[1:] / posterior.sum()]
        else:
            fractions = [0.0] * (num_alleles - 1)
        return {
            FORMAT.GT: genotype,
            FORMAT.AD: depth,
            FORMAT.AF: fractions,
            FORMAT.DP: len(reads),
            FORMAT.F1R2: f1r2,
            FORMAT.F2R1: f2r1,
            FORMAT.SB: strand,
        }

    def site_annotations(self, region: ActiveRegion, site: Site, tumor_reads, tumor_values) -> Dict:
        num_alleles = len(site.alleles)
        best = best_alleles(tumor_values, self.informative_read_threshold)
        base_quals: List[List[int]] = [[] for _ in range(num_alleles)]
        map_quals: List[List[int]] = [[] for _ in range(num_alleles)]
        positions: List[List[int]] = [[] for _ in range(num_alleles)]
        chimeric = 0
        for read, allele in zip(tumor_reads, best):
            if allele == NO_ALLELE:
                continue
            qpos = read.query_position(site.pos)
            if qpos is not None:
                base_quals[allele].append(read.qualities[qpos])
                distance = read.distance_from_end(site.pos)
                if distance is not None:
                    positions[allele].append(distance)
            map_quals[allele].append(read.mapping_quality)
            if allele > 0 and read.original_contig and read.original_contig != read.contig:
                chimeric += 1
        keys = [normalize_allele(region.contig, site.pos, site.ref, alt) for alt in site.alts]
        info = {
            INFO.POPAF: [-math.log10(self.population_af(region.contig, site.pos, site.ref, alt)) for alt in site.alts],
            INFO.MBQ: [_median(q) for q in base_quals],
            INFO.MMQ: [_median(q) for q in map_quals],
            INFO.MPOS: [_median(p) for p in positions[1:]],
            INFO.OCM: chimeric,
        }
        if any([key in self.panel_of_normals for key in keys]):
            info[INFO.PON] = True
        return info

    def genotype_site(self, region: ActiveRegion, site: Site, matrices: Dict[str, LikelihoodMatrix]) -> Optional[AlleleCall]:
        per_sample = {}
        for sample in self.samples:
            per_sample[sample] = allele_likelihoods(matrices[sample], site, self.likelihood_cap)
        num_alleles = len(site.alleles)
        tumor_reads: List[AlignedRead] = []
        tumor_values = np.zeros((0, num_alleles))
        for sample in self.tumor_samples:
            reads, values = per_sample[sample]
            tumor_reads.extend(reads)
            tumor_values = np.concatenate([tumor_values, values])
        tlod = tumor_log_odds(tumor_values)
        normal_values = np.zeros((0, num_alleles))
        for sample in self.normal_samples:
            normal_values = np.concatenate([normal_values, per_sample[sample][1]])

        keep = [alt for alt, lod in zip(site.alts, tlod) if lod >= self.emission_lod or alt in site.forced]
        if not keep:
            return None

        info = {INFO.TLOD: tlod}
        if self.normal_samples:
            info[INFO.NLOD] = normal_log_odds(normal_values)
        info.update(self.site_annotations(region, site, tumor_reads, tumor_values))
        tumor_genotype = '/'.join([str(i) for i in range(num_alleles)])
        samples = {}
        for sample in self.samples:
            reads, values = per_sample[sample]
            genotype = tumor_genotype if sample in self.tumor_samples else '0/0'
            samples[sample] = self.sample_annotations(reads, values, genotype)
        call = AlleleCall(region.contig, site.pos, site.ref, list(site.alts), info=info, samples=samples)
        if len(keep) < len(site.alts):
            call = call.subset_alleles(keep)
        else:
            call = call.trim_alleles()
        return call

    def genotype(
        self, region: ActiveRegion, haplotypes: Sequence[Haplotype], matrices: Dict[str, LikelihoodMatrix]
    ) -> List[AlleleCall]:
        """
        Args:
            region: the active region
            haplotypes: the candidate haplotypes (columns of the matrices)
            matrices: the likelihood matrix of every sample

        Returns:
            the calls of the region in coordinate order
        """
        calls = []
        for site in build_sites(region, haplotypes):
            call = self.genotype_site(region, site, matrices)
            if call is not None:
                calls.append(call)
        for call in calls:
            call.info[INFO.ECNT] = len(calls)
        calls.sort(key=lambda c: (c.pos, c.ref, c.alts))
        logger.debug(f'{len(calls)} calls in {region}')
        return calls


def collect_f1r2_counts(
    region: ActiveRegion, reference: str, reference_start: int, min_base_quality: int = 10
) -> Dict[Tuple[str, str, str, int, int, int], int]:
    """
    per-position pair orientation counts for the orientation bias model. Positions without alt reads
    are tallied as reference sites

    Args:
        region: the region (only positions within its interval are counted)
        reference: reference bases starting at reference_start (must include one base either side of the interval where available)
        reference_start: the position of the first base of reference
        min_base_quality: bases below this quality are ignored

    Returns:
        counts keyed by (sample, context, alt base, depth, alt depth, alt F1R2 depth). The alt base is '.' for reference sites
    """
    start, end = region.interval.start, region.interval.end
    length = end - start + 1
    counts: Dict[Tuple[str, str, str, int, int, int], int] = {}
    samples = sorted(set([read.sample for read in region.reads]))
    for sample in samples:
        bases = np.zeros((length, len(BASES)), dtype=int)
        f1r2 = np.zeros((length, len(BASES)), dtype=int)
        for read in region.reads:
            if read.sample != sample:
                continue
            is_f1r2 = read.orientation == READ_ORIENTATION.F1R2
            for qpos, rpos in read.aligned_pairs():
                if qpos is None or rpos is None or rpos < start or rpos > end:
                    continue
                base = read.sequence[qpos]
                if base not in BASES or read.qualities[qpos] < min_base_quality:
                    continue
                bases[rpos - start, BASES.index(base)] += 1
                if is_f1r2:
                    f1r2[rpos - start, BASES.index(base)] += 1
        for offset in range(length):
            pos = start + offset
            if pos - 1 - reference_start < 0 or pos + 1 - reference_start >= len(reference):
                continue
            context = reference[pos - 1 - reference_start : pos + 2 - reference_start]
            if any([base not in BASES for base in context]):
                continue
            depth = int(bases[offset].sum())
            if depth == 0:
                continue
            ref_index = BASES.index(context[1])
            alt_counts = bases[offset].copy()
            alt_counts[ref_index] = 0
            if alt_counts.max() == 0:
                key = (sample, context, '.', depth, 0, 0)
            else:
                alt_index = int(np.argmax(alt_counts))
                key = (sample, context, BASES[alt_index], depth, int(alt_counts[alt_index]), int(f1r2[offset, alt_index]))
            counts[key] = counts.get(key, 0) + 1
    return counts
