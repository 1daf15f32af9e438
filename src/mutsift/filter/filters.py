"""
the filter battery. Each filter is a pure function of the shared evaluation context and a single call
which returns True when the call fails the filter. Filters are registered, in evaluation order, in
FILTER_FUNCTIONS together with the resources they require
"""
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Set, Tuple

from scipy.stats import binom, poisson

from ..constants import FILTER, FORMAT, INFO
from ..error import FilterConfigurationError
from ..orientation.model import OrientationBiasModel, context_of
from ..types import AlleleKey
from ..util import logger
from ..variant import AlleleCall, normalize_allele
from .tables import SegmentationTable

STRAND_ARTIFACT_FRACTION = 0.01
"""expected fraction of the alt reads of a strand artifact found on the other strand"""
HOM_VAR_FRACTION = 0.99
MIN_NORMAL_ARTIFACT_READS = 2


@dataclass
class FilterContext:
    """
    everything the filter functions may read. Nothing here is modified while filtering
    """

    config: Dict
    tumor_samples: List[str]
    normal_samples: List[str] = field(default_factory=list)
    contamination: Optional[Dict[str, float]] = None
    segments: SegmentationTable = field(default_factory=SegmentationTable)
    panel_of_normals: Optional[Set[AlleleKey]] = None
    orientation_model: Optional[OrientationBiasModel] = None
    sequences: Optional[Dict[str, str]] = None
    mitochondria_mode: bool = False

    def threshold(self, key: str):
        return self.config[f'filter.{key}']


def _alt_indices(call: AlleleCall) -> List[int]:
    """allele indices (1-based) of the non-symbolic alternate alleles"""
    return call.allele_indices(call.called_alts)


def _per_alt(values, index: int, default=None):
    if not isinstance(values, list):
        values = [values]
    if index - 1 < len(values) and values[index - 1] is not None:
        return values[index - 1]
    return default


def _per_allele(values, index: int, default=None):
    if not isinstance(values, list):
        return default
    if index < len(values) and values[index] is not None:
        return values[index]
    return default


def _allele_depths(call: AlleleCall, samples: Sequence[str]) -> List[int]:
    """allele depths summed over a group of samples"""
    total = [0] * len(call.alleles)
    for sample in samples:
        depths = call.samples.get(sample, {}).get(FORMAT.AD) or []
        if not isinstance(depths, list):
            depths = [depths]
        for i, depth in enumerate(depths[: len(total)]):
            total[i] += int(depth or 0)
    return total


def _tumor_alt_depth(ctx: FilterContext, call: AlleleCall) -> int:
    depths = _allele_depths(call, ctx.tumor_samples)
    return sum([depths[i] for i in _alt_indices(call)])


def contamination_probability(
    alt_count: int, depth: int, contamination: float, population_af: float, allele_fraction: float
) -> float:
    """
    posterior probability that the alt reads of a call come from a contaminating individual rather
    than the tumor

    The contaminant allele fraction is the contamination times the population allele frequency, capped at
    the observed alt fraction so that a larger contamination never lowers the posterior

    Example:
        >>> contamination_probability(2, 100, 0.2, 0.5, 0.02) > contamination_probability(2, 100, 0.01, 0.5, 0.02)
        True
    """
    if depth <= 0 or alt_count <= 0 or contamination <= 0:
        return 0.0
    contaminant_af = min(contamination * population_af, alt_count / depth)
    somatic_af = max(allele_fraction, alt_count / depth)
    prior = 2 * population_af * (1 - population_af) + population_af ** 2
    contaminant = prior * binom.pmf(alt_count, depth, contaminant_af)
    somatic = (1 - prior) * binom.pmf(alt_count, depth, somatic_af)
    if contaminant + somatic <= 0:
        return 0.0
    return float(contaminant / (contaminant + somatic))


def filter_contamination(ctx: FilterContext, call: AlleleCall) -> bool:
    depths = _allele_depths(call, ctx.tumor_samples)
    depth = sum(depths)
    fraction = max([ctx.contamination.get(sample, 0.0) for sample in ctx.tumor_samples] + [0.0])
    for index in _alt_indices(call):
        popaf = _per_alt(call.info.get(INFO.POPAF), index)
        population_af = 10 ** -popaf if popaf is not None else ctx.threshold('default_af')
        allele_fraction = max(
            [_per_alt(call.samples.get(s, {}).get(FORMAT.AF), index, 0.0) for s in ctx.tumor_samples] + [0.0]
        )
        posterior = contamination_probability(depths[index], depth, fraction, population_af, allele_fraction)
        if posterior > ctx.threshold('contamination_threshold'):
            return True
    return False


def filter_orientation(ctx: FilterContext, call: AlleleCall) -> bool:
    if len(call.ref) != 1 or call.contig not in ctx.sequences:
        return False
    context = context_of(ctx.sequences[call.contig], call.pos)
    if context is None:
        return False
    for index in _alt_indices(call):
        alt = call.alleles[index]
        if len(alt) != 1:
            continue
        for sample in ctx.tumor_samples:
            data = call.samples.get(sample, {})
            f1r2 = _per_allele(data.get(FORMAT.F1R2), index, 0)
            f2r1 = _per_allele(data.get(FORMAT.F2R1), index, 0)
            probability = ctx.orientation_model.artifact_probability(
                sample, context.upper(), alt.upper(), f1r2 + f2r1, f1r2
            )
            if probability > ctx.threshold('orientation_threshold'):
                return True
    return False


def filter_chimeric_original_alignment(ctx: FilterContext, call: AlleleCall) -> bool:
    alt_depth = _tumor_alt_depth(ctx, call)
    if alt_depth <= 0:
        return False
    return int(call.info.get(INFO.OCM) or 0) / alt_depth > ctx.threshold('max_chimeric_fraction')


def filter_low_allele_frac(ctx: FilterContext, call: AlleleCall) -> bool:
    min_fraction = ctx.threshold('min_allele_fraction')
    if min_fraction <= 0:
        return False
    fractions = []
    for index in _alt_indices(call):
        for sample in ctx.tumor_samples:
            fractions.append(_per_alt(call.samples.get(sample, {}).get(FORMAT.AF), index, 0.0))
    return max(fractions + [0.0]) < min_fraction


def _max_alt_annotation(call: AlleleCall, key: str, per_allele: bool) -> Optional[float]:
    values = call.info.get(key)
    if values is None:
        return None
    result = []
    for index in _alt_indices(call):
        value = _per_allele(values, index) if per_allele else _per_alt(values, index)
        if value is not None:
            result.append(value)
    return max(result) if result else None


def filter_base_qual(ctx: FilterContext, call: AlleleCall) -> bool:
    value = _max_alt_annotation(call, INFO.MBQ, per_allele=True)
    return value is not None and value < ctx.threshold('min_median_base_quality')


def filter_map_qual(ctx: FilterContext, call: AlleleCall) -> bool:
    value = _max_alt_annotation(call, INFO.MMQ, per_allele=True)
    return value is not None and value < ctx.threshold('min_median_mapping_quality')


def filter_position(ctx: FilterContext, call: AlleleCall) -> bool:
    value = _max_alt_annotation(call, INFO.MPOS, per_allele=False)
    return value is not None and value < ctx.threshold('min_median_read_position')


def germline_log10_odds(
    alt_count: int,
    depth: int,
    population_af: float,
    minor_allele_fraction: float,
    log10_somatic_prior: float,
    normal_lod: float = 0,
) -> float:
    """
    log10 odds that an allele is germline rather than somatic. The tumor alt count is compared
    between a heterozygous (at the minor allele fraction of the segment) or homozygous germline
    variant and a somatic variant at an unknown fraction. Normal evidence of the reference
    allele (NLOD) counts against the germline hypothesis

    Example:
        >>> germline_log10_odds(50, 100, 0.3, 0.5, -6) > 0
        True
        >>> germline_log10_odds(5, 100, 1e-6, 0.5, -6) < 0
        True
    """
    het_prior = 2 * population_af * (1 - population_af)
    hom_prior = population_af ** 2
    germline = het_prior * binom.pmf(alt_count, depth, minor_allele_fraction)
    germline += het_prior * binom.pmf(alt_count, depth, 1 - minor_allele_fraction)
    germline = germline / 2 + hom_prior * binom.pmf(alt_count, depth, HOM_VAR_FRACTION)
    somatic = 10 ** log10_somatic_prior / (depth + 1)
    if germline <= 0:
        return -math.inf
    return math.log10(germline) - math.log10(somatic) - normal_lod


def filter_germline(ctx: FilterContext, call: AlleleCall) -> bool:
    depths = _allele_depths(call, ctx.tumor_samples)
    depth = sum(depths)
    threshold = ctx.threshold('germline_threshold')
    for index in _alt_indices(call):
        popaf = _per_alt(call.info.get(INFO.POPAF), index)
        population_af = 10 ** -popaf if popaf is not None else ctx.threshold('default_af')
        normal_lod = _per_alt(call.info.get(INFO.NLOD), index, 0.0)
        maf = min([ctx.segments.minor_allele_fraction(s, call.contig, call.pos) for s in ctx.tumor_samples] + [0.5])
        odds = germline_log10_odds(
            depths[index], depth, population_af, maf, ctx.threshold('log_somatic_prior'), normal_lod
        )
        # posterior probability from the log odds
        if odds == -math.inf:
            continue
        probability = 1 / (1 + 10 ** -odds) if odds > -300 else 0.0
        if probability > threshold:
            return True
    return False


def numt_alt_threshold(autosomal_coverage: float, numt_probability: float) -> int:
    """
    the number of alt reads a nuclear copy of the mitochondrial sequence could plausibly produce. NuMT
    reads are expected at half the autosomal coverage
    """
    return int(poisson.ppf(1 - numt_probability, autosomal_coverage / 2))


def filter_possible_numt(ctx: FilterContext, call: AlleleCall) -> bool:
    depths = _allele_depths(call, ctx.tumor_samples)
    max_alt = max([depths[i] for i in _alt_indices(call)] + [0])
    return max_alt < numt_alt_threshold(ctx.threshold('autosomal_coverage'), ctx.threshold('numt_probability'))


def filter_clustered_events(ctx: FilterContext, call: AlleleCall) -> bool:
    return int(call.info.get(INFO.ECNT) or 0) > ctx.threshold('max_events_in_region')


def strand_artifact_probability(
    ref_forward: int, ref_reverse: int, alt_forward: int, alt_reverse: int, prior: float
) -> float:
    """
    posterior probability that the alt reads are confined to one strand by an artifact. Without an
    artifact the alt reads follow the strand balance of the ref reads

    Example:
        >>> strand_artifact_probability(10, 10, 20, 0, 0.001) > 0.99
        True
        >>> strand_artifact_probability(10, 10, 10, 10, 0.001) < 0.01
        True
    """
    alt = alt_forward + alt_reverse
    if alt <= 0:
        return 0.0
    forward_fraction = (ref_forward + 1) / (ref_forward + ref_reverse + 2)
    no_artifact = (1 - prior) * binom.pmf(alt_forward, alt, forward_fraction)
    artifact = prior / 2 * (
        binom.pmf(alt_forward, alt, 1 - STRAND_ARTIFACT_FRACTION) + binom.pmf(alt_forward, alt, STRAND_ARTIFACT_FRACTION)
    )
    if artifact + no_artifact <= 0:
        return 0.0
    return float(artifact / (artifact + no_artifact))


def filter_strand_bias(ctx: FilterContext, call: AlleleCall) -> bool:
    counts = [0, 0, 0, 0]
    for sample in ctx.tumor_samples:
        strand = call.samples.get(sample, {}).get(FORMAT.SB)
        if isinstance(strand, list) and len(strand) == 4:
            counts = [total + int(value or 0) for total, value in zip(counts, strand)]
    probability = strand_artifact_probability(*counts, prior=ctx.threshold('strand_bias_prior'))
    return probability > ctx.threshold('strand_bias_threshold')


def filter_weak_evidence(ctx: FilterContext, call: AlleleCall) -> bool:
    value = _max_alt_annotation(call, INFO.TLOD, per_allele=False)
    return value is None or value < ctx.threshold('tumor_lod')


def filter_panel_of_normals(ctx: FilterContext, call: AlleleCall) -> bool:
    if call.info.get(INFO.PON):
        return True
    if ctx.panel_of_normals:
        for alt in call.called_alts:
            if normalize_allele(call.contig, call.pos, call.ref, alt) in ctx.panel_of_normals:
                return True
    return False


def filter_normal_artifact(ctx: FilterContext, call: AlleleCall) -> bool:
    depths = _allele_depths(call, ctx.normal_samples)
    total = sum(depths)
    if total <= 0:
        return False
    for index in _alt_indices(call):
        if (
            depths[index] >= MIN_NORMAL_ARTIFACT_READS
            and depths[index] / total >= ctx.threshold('normal_artifact_fraction')
        ):
            return True
    return False


class FilterSpec(NamedTuple):
    function: Callable[[FilterContext, AlleleCall], bool]
    requires: Callable[[FilterContext], Optional[str]]


def _always(ctx: FilterContext) -> Optional[str]:
    return None


def _needs_contamination(ctx: FilterContext) -> Optional[str]:
    return None if ctx.contamination is not None else 'a contamination table'


def _needs_orientation(ctx: FilterContext) -> Optional[str]:
    if ctx.orientation_model is None:
        return 'an orientation model'
    if ctx.sequences is None:
        return 'a reference'
    return None


def _needs_mitochondria(ctx: FilterContext) -> Optional[str]:
    return None if ctx.mitochondria_mode else 'mitochondria mode'


def _needs_numt(ctx: FilterContext) -> Optional[str]:
    if not ctx.mitochondria_mode:
        return 'mitochondria mode'
    if ctx.threshold('autosomal_coverage') <= 0:
        return 'the autosomal coverage (filter.autosomal_coverage)'
    return None


def _needs_normal(ctx: FilterContext) -> Optional[str]:
    return None if ctx.normal_samples else 'a normal sample'


FILTER_FUNCTIONS: 'OrderedDict[str, FilterSpec]' = OrderedDict(
    [
        (FILTER.CONTAMINATION, FilterSpec(filter_contamination, _needs_contamination)),
        (FILTER.ORIENTATION, FilterSpec(filter_orientation, _needs_orientation)),
        (FILTER.CHIMERIC_ORIGINAL_ALIGNMENT, FilterSpec(filter_chimeric_original_alignment, _needs_mitochondria)),
        (FILTER.LOW_ALLELE_FRAC, FilterSpec(filter_low_allele_frac, _always)),
        (FILTER.BASE_QUAL, FilterSpec(filter_base_qual, _always)),
        (FILTER.MAP_QUAL, FilterSpec(filter_map_qual, _always)),
        (FILTER.POSITION, FilterSpec(filter_position, _always)),
        (FILTER.GERMLINE, FilterSpec(filter_germline, _always)),
        (FILTER.POSSIBLE_NUMT, FilterSpec(filter_possible_numt, _needs_numt)),
        (FILTER.CLUSTERED_EVENTS, FilterSpec(filter_clustered_events, _always)),
        (FILTER.STRAND_BIAS, FilterSpec(filter_strand_bias, _always)),
        (FILTER.WEAK_EVIDENCE, FilterSpec(filter_weak_evidence, _always)),
        (FILTER.PANEL_OF_NORMALS, FilterSpec(filter_panel_of_normals, _always)),
        (FILTER.NORMAL_ARTIFACT, FilterSpec(filter_normal_artifact, _needs_normal)),
    ]
)


class FilterResult(NamedTuple):
    key: Tuple
    tags: Set[str]

    @property
    def passes(self) -> bool:
        return not self.tags


class FilterEngine:
    """
    applies the active filters to calls

    Args:
        context: the shared evaluation context
        requested: the filters to apply. Every requested filter must have its resources available.
            When not given, every filter with its resources available is applied

    Raises:
        FilterConfigurationError: a requested filter is missing a resource
    """

    def __init__(self, context: FilterContext, requested: Optional[Sequence[str]] = None):
        self.context = context
        self.active: List[str] = []
        requested = list(requested) if requested else []
        for name in requested:
            if name not in FILTER_FUNCTIONS:
                raise FilterConfigurationError(f'unknown filter: {name}')
        for name, spec in FILTER_FUNCTIONS.items():
            missing = spec.requires(context)
            if requested:
                if name not in requested:
                    continue
                if missing:
                    raise FilterConfigurationError(f'the {name} filter was requested but requires {missing}')
            elif missing:
                logger.info(f'not applying the {name} filter: requires {missing}')
                continue
            self.active.append(name)
        logger.info(f'applying filters: {", ".join(self.active)}')

    def evaluate(self, call: AlleleCall) -> FilterResult:
        tags = set()
        if not call.is_reference_block:
            for name in self.active:
                if FILTER_FUNCTIONS[name].function(self.context, call):
                    tags.add(name)
        return FilterResult(call.key(), tags)

    def apply(self, call: AlleleCall) -> AlleleCall:
        """
        set the filter column of a call from its filter result. Reference blocks are never filtered
        """
        result = self.evaluate(call)
        if call.is_reference_block:
            call.filters = set()
        else:
            call.filters = result.tags if result.tags else {FILTER.PASS}
        return call
