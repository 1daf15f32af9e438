"""
learns the prior probability of read orientation artifacts (ex. oxoG) for each reference context and
alternate base from the pair orientation counts collected while calling
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.stats import binom

from ..constants import BASES, MutsiftNamespace, reverse_complement
from ..error import InputFileError
from ..util import logger, output_tabbed_file

REF_ALT_BASE = '.'
ARTIFACT_ORIENTATION_FRACTION = 0.99
"""fraction of the alt reads of an artifact expected in the artifact's orientation"""
ERROR_RATE = 1e-3

MODEL_COLUMNS = ['sample', 'context', 'alt_base', 'f1r2_prior', 'f2r1_prior', 'num_examples', 'num_alt_examples']
COUNT_COLUMNS = ['sample', 'context', 'alt_base', 'depth', 'alt_depth', 'alt_f1r2', 'count']


class STATE(MutsiftNamespace):
    """
    the latent state of a site. The values are the column indices of the state likelihoods
    """

    HOM_REF: int = 0
    GERMLINE_HET: int = 1
    HOM_VAR: int = 2
    SOMATIC: int = 3
    F1R2_ARTIFACT: int = 4
    F2R1_ARTIFACT: int = 5


NUM_STATES = 6


def canonical_context(context: str, alt_base: str) -> Tuple[str, str, bool]:
    """
    contexts are pooled with their reverse complement so that the middle base is always A or C.
    An F1R2 artifact on one strand is an F2R1 artifact on the other

    Returns:
        the canonical context, the canonical alt base and whether the orientation is flipped

    Example:
        >>> canonical_context('AGT', 'T')
        ('ACT', 'A', True)
        >>> canonical_context('ACT', '.')
        ('ACT', '.', False)
    """
    if context[len(context) // 2] in 'AC':
        return context, alt_base, False
    alt = alt_base if alt_base == REF_ALT_BASE else reverse_complement(alt_base)
    return reverse_complement(context), alt, True


@dataclass
class ArtifactPrior:
    sample: str
    context: str
    alt_base: str
    f1r2_prior: float
    f2r1_prior: float
    num_examples: int = 0
    num_alt_examples: int = 0


class OrientationBiasModel:
    """
    the learned artifact priors keyed by (sample, canonical context, canonical alt base)
    """

    def __init__(self, priors: Iterable[ArtifactPrior] = ()):
        self.priors: Dict[Tuple[str, str, str], ArtifactPrior] = {
            (p.sample, p.context, p.alt_base): p for p in priors
        }

    def __len__(self):
        return len(self.priors)

    @property
    def samples(self) -> List[str]:
        return sorted(set([sample for sample, _, _ in self.priors]))

    def prior(self, sample: str, context: str, alt_base: str) -> Tuple[float, float]:
        """
        the (F1R2, F2R1) artifact priors for a context and alt base as seen on the given strand. Unknown
        contexts have no prior probability of being an artifact
        """
        context, alt_base, flipped = canonical_context(context, alt_base)
        prior = self.priors.get((sample, context, alt_base))
        if prior is None:
            return 0.0, 0.0
        if flipped:
            return prior.f2r1_prior, prior.f1r2_prior
        return prior.f1r2_prior, prior.f2r1_prior

    def artifact_probability(self, sample: str, context: str, alt_base: str, alt_depth: int, alt_f1r2: int) -> float:
        """
        posterior probability that the alt reads of a call are an orientation artifact given how
        they are split between the two pair orientations

        Example:
            >>> model = OrientationBiasModel([ArtifactPrior('s', 'ACT', 'A', 0.2, 0.0)])
            >>> model.artifact_probability('s', 'ACT', 'A', 10, 10) > 0.99
            True
            >>> model.artifact_probability('s', 'ACT', 'A', 10, 5) < 0.01
            True
        """
        f1r2_prior, f2r1_prior = self.prior(sample, context, alt_base)
        if alt_depth <= 0 or f1r2_prior + f2r1_prior <= 0:
            return 0.0
        weights = np.array(
            [
                f1r2_prior * binom.pmf(alt_f1r2, alt_depth, ARTIFACT_ORIENTATION_FRACTION),
                f2r1_prior * binom.pmf(alt_f1r2, alt_depth, 1 - ARTIFACT_ORIENTATION_FRACTION),
                max(0.0, 1 - f1r2_prior - f2r1_prior) * binom.pmf(alt_f1r2, alt_depth, 0.5),
            ]
        )
        if weights.sum() <= 0:
            return 0.0
        return float(weights[:2].sum() / weights.sum())

    def write(self, filename: str):
        rows = [p.__dict__ for _, p in sorted(self.priors.items())]
        output_tabbed_file(rows, filename, header=MODEL_COLUMNS)

    @classmethod
    def read(cls, filename: str) -> 'OrientationBiasModel':
        logger.info(f'loading: {filename}')
        try:
            df = pd.read_csv(filename, sep='\t', dtype={'sample': str, 'context': str, 'alt_base': str})
        except (OSError, pd.errors.EmptyDataError) as err:
            raise InputFileError(f'unable to read the orientation model: {filename}') from err
        for col in MODEL_COLUMNS:
            if col not in df.columns:
                raise InputFileError(f'Missing required column: {col} ({filename})')
        priors = [
            ArtifactPrior(
                row.sample,
                row.context,
                row.alt_base,
                float(row.f1r2_prior),
                float(row.f2r1_prior),
                int(row.num_examples),
                int(row.num_alt_examples),
            )
            for row in df.itertuples()
        ]
        return cls(priors)


def read_f1r2_counts(*filenames: str) -> pd.DataFrame:
    """
    read and combine one or more orientation count tables
    """
    frames = []
    for filename in filenames:
        logger.info(f'loading: {filename}')
        try:
            df = pd.read_csv(
                filename,
                sep='\t',
                dtype={'sample': str, 'context': str, 'alt_base': str},
                keep_default_na=False,
            )
        except (OSError, pd.errors.EmptyDataError) as err:
            raise InputFileError(f'unable to read the orientation counts: {filename}') from err
        for col in COUNT_COLUMNS:
            if col not in df.columns:
                raise InputFileError(f'Missing required column: {col} ({filename})')
        frames.append(df[COUNT_COLUMNS])
    if not frames:
        return pd.DataFrame(columns=COUNT_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def state_log_likelihoods(depth: np.ndarray, alt: np.ndarray, alt_f1r2: np.ndarray, artifact_af: float) -> np.ndarray:
    """
    N x 6 natural log likelihoods of the site counts under each latent state
    """
    unbiased = binom.logpmf(alt_f1r2, alt, 0.5)
    result = np.empty((len(depth), NUM_STATES))
    result[:, STATE.HOM_REF] = binom.logpmf(alt, depth, ERROR_RATE) + unbiased
    result[:, STATE.GERMLINE_HET] = binom.logpmf(alt, depth, 0.5) + unbiased
    result[:, STATE.HOM_VAR] = binom.logpmf(alt, depth, 1 - ERROR_RATE) + unbiased
    result[:, STATE.SOMATIC] = -np.log(depth + 1) + unbiased
    artifact = binom.logpmf(alt, depth, artifact_af)
    result[:, STATE.F1R2_ARTIFACT] = artifact + binom.logpmf(alt_f1r2, alt, ARTIFACT_ORIENTATION_FRACTION)
    result[:, STATE.F2R1_ARTIFACT] = artifact + binom.logpmf(alt_f1r2, alt, 1 - ARTIFACT_ORIENTATION_FRACTION)
    return result


def fit_context(
    depth: np.ndarray,
    alt: np.ndarray,
    alt_f1r2: np.ndarray,
    counts: np.ndarray,
    convergence_threshold: float = 1e-4,
    max_iterations: int = 20,
) -> Tuple[np.ndarray, float]:
    """
    expectation maximization of the latent state priors (and artifact allele fraction) for a single context

    Returns:
        the state priors and the artifact allele fraction
    """
    priors = np.array([0.9, 0.02, 0.02, 0.02, 0.02, 0.02])
    artifact_af = 0.2
    weights = counts.astype(float)
    for iteration in range(max_iterations):
        log_lik = state_log_likelihoods(depth, alt, alt_f1r2, artifact_af) + np.log(np.maximum(priors, 1e-300))
        log_lik -= log_lik.max(axis=1, keepdims=True)
        resp = np.exp(log_lik)
        resp /= resp.sum(axis=1, keepdims=True)
        weighted = resp * weights[:, None]
        updated = weighted.sum(axis=0) / weights.sum()
        artifact_weight = weighted[:, STATE.F1R2_ARTIFACT] + weighted[:, STATE.F2R1_ARTIFACT]
        if (artifact_weight * depth).sum() > 0:
            artifact_af = float(np.clip((artifact_weight * alt).sum() / (artifact_weight * depth).sum(), 1e-3, 1 - 1e-3))
        change = np.abs(updated - priors).max()
        priors = updated
        if change < convergence_threshold:
            logger.debug(f'orientation model converged after {iteration + 1} iterations')
            break
    return priors, artifact_af


def learn_orientation_model(
    counts: pd.DataFrame,
    min_depth: int = 10,
    max_depth: int = 200,
    min_alt_sites: int = 10,
    convergence_threshold: float = 1e-4,
    max_iterations: int = 20,
) -> OrientationBiasModel:
    """
    Args:
        counts: the orientation count rows (see COUNT_COLUMNS)
        min_depth: sites with lower depth are ignored
        max_depth: deeper sites are scaled down to this depth
        min_alt_sites: contexts with fewer alt sites than this get no artifact prior
    """
    grouped: Dict[Tuple[str, str], Dict[str, List[Tuple[int, int, int, int]]]] = {}
    for row in counts.to_dict('records'):
        depth, alt, alt_f1r2, count = int(row['depth']), int(row['alt_depth']), int(row['alt_f1r2']), int(row['count'])
        if depth < min_depth or count < 1:
            continue
        if depth > max_depth:
            alt = int(round(alt * max_depth / depth))
            alt_f1r2 = min(alt, int(round(alt_f1r2 * max_depth / depth)))
            depth = max_depth
        context, alt_base, flipped = canonical_context(row['context'], row['alt_base'])
        if any([base not in BASES for base in context]):
            continue
        if flipped:
            alt_f1r2 = alt - alt_f1r2
        grouped.setdefault((row['sample'], context), {}).setdefault(alt_base, []).append((depth, alt, alt_f1r2, count))

    priors = []
    for (sample, context), by_alt in sorted(grouped.items()):
        ref_sites = by_alt.get(REF_ALT_BASE, [])
        for alt_base in BASES:
            if alt_base == context[1]:
                continue
            alt_sites = by_alt.get(alt_base, [])
            num_alt = sum([site[3] for site in alt_sites])
            num_examples = num_alt + sum([site[3] for site in ref_sites])
            if num_alt < min_alt_sites:
                if num_alt:
                    logger.warning(
                        f'too few alt sites ({num_alt}) to learn the orientation prior of {sample} {context}>{alt_base}; using no prior'
                    )
                priors.append(ArtifactPrior(sample, context, alt_base, 0.0, 0.0, num_examples, num_alt))
                continue
            data = np.array(ref_sites + alt_sites, dtype=int)
            state_priors, artifact_af = fit_context(
                data[:, 0], data[:, 1], data[:, 2], data[:, 3], convergence_threshold, max_iterations
            )
            logger.debug(f'{sample} {context}>{alt_base} artifact allele fraction {artifact_af:.3f}')
            priors.append(
                ArtifactPrior(
                    sample,
                    context,
                    alt_base,
                    float(state_priors[STATE.F1R2_ARTIFACT]),
                    float(state_priors[STATE.F2R1_ARTIFACT]),
                    num_examples,
                    num_alt,
                )
            )
    return OrientationBiasModel(priors)


def context_of(reference: str, pos: int, reference_start: int = 1) -> Optional[str]:
    """
    the reference trinucleotide centered on a position (None at the contig ends)

    Example:
        >>> context_of('ACGTA', 3)
        'CGT'
    """
    index = pos - reference_start
    if index < 1 or index + 1 >= len(reference):
        return None
    return reference[index - 1 : index + 2]
