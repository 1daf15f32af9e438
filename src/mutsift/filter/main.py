import os
import time
from collections import Counter
from typing import Dict, Iterable, List, Optional

from ..constants import FILTER, SAMPLE_ROLE
from ..error import NotSpecifiedError
from ..reference import Reference, validate_sequence_dictionary
from ..util import generate_complete_stamp, logger, mkdirp
from ..variant import AlleleCall
from ..vcf import CallSet, VcfWriter, read_panel_of_normals
from ..orientation.model import OrientationBiasModel
from .filters import FilterContext, FilterEngine
from .tables import SegmentationTable, read_contamination_table

FILTERED_FILENAME = 'filtered.vcf'


def count_failures(calls: Iterable[AlleleCall], active: Iterable[str]) -> Dict[str, int]:
    """
    the number of variant calls failing each active filter
    """
    counts = Counter()
    for call in calls:
        if not call.is_reference_block:
            counts.update(call.filters - {FILTER.PASS})
    return {name: counts[name] for name in active}


def main(
    inputs: List[str],
    output: str,
    config: Dict,
    reference: Optional[str] = None,
    contamination_tables: Optional[List[str]] = None,
    segmentation_tables: Optional[List[str]] = None,
    panel_of_normals: Optional[str] = None,
    orientation_model: Optional[str] = None,
    start_time=int(time.time()),
) -> str:
    """
    Args:
        inputs: the call set to filter
        output: path to the output directory
        config: the validated run config
        reference: path to the reference fasta the calls were made against
        contamination_tables: per sample contamination estimates
        segmentation_tables: tumor segment minor allele fractions
        panel_of_normals: path to a panel of normals vcf
        orientation_model: path to an orientation model written by learn_orientation

    Returns:
        the path to the filtered call set
    """
    mkdirp(output)
    call_set = CallSet.read(inputs[0])
    for filename in inputs[1:]:
        logger.warning(f'only a single call set is filtered per run; ignoring {filename}')
    mitochondria_mode = config['filter.mitochondria_mode']

    genome = None
    if reference:
        genome = Reference.load(reference)
        if config['filter.disable_sequence_dictionary_validation']:
            logger.warning('sequence dictionary validation is disabled')
        else:
            validate_sequence_dictionary(
                call_set.sequence_dictionary,
                genome.sequence_dictionary,
                used_contigs=set([call.contig for call in call_set.calls]),
                relaxed=mitochondria_mode,
            )

    tumor_samples = call_set.samples_by_role(SAMPLE_ROLE.TUMOR)
    normal_samples = call_set.samples_by_role(SAMPLE_ROLE.NORMAL)
    if not tumor_samples:
        tumor_samples = [s for s in call_set.samples if s not in normal_samples]
        if not tumor_samples:
            raise NotSpecifiedError(f'the call set has no tumor samples to filter: {inputs[0]}')
        logger.warning(f'the call set does not declare its tumor samples; using {tumor_samples}')

    context = FilterContext(
        config=config,
        tumor_samples=tumor_samples,
        normal_samples=normal_samples,
        contamination=read_contamination_table(*contamination_tables) if contamination_tables else None,
        segments=SegmentationTable.read(
            *(segmentation_tables or []), default_sample=tumor_samples[0]
        ),
        panel_of_normals=read_panel_of_normals(panel_of_normals) if panel_of_normals else None,
        orientation_model=OrientationBiasModel.read(orientation_model) if orientation_model else None,
        sequences=genome.sequences if genome else None,
        mitochondria_mode=mitochondria_mode,
    )
    engine = FilterEngine(context, config['filter.requested'])

    filtered_file = os.path.join(output, FILTERED_FILENAME)
    passed = 0
    reference_confidence = any([call.is_reference_block for call in call_set.calls])
    sequence_dictionary = call_set.sequence_dictionary or (genome.sequence_dictionary if genome else [])
    if not sequence_dictionary:
        sequence_dictionary = [(contig, None) for contig in dict.fromkeys([call.contig for call in call_set.calls])]
    extra_header = [
        line
        for line in call_set.header_lines
        if line.startswith(f'##{SAMPLE_ROLE.TUMOR}_sample=') or line.startswith(f'##{SAMPLE_ROLE.NORMAL}_sample=')
    ]
    with VcfWriter(
        filtered_file,
        call_set.samples,
        sequence_dictionary,
        reference_confidence=reference_confidence,
        filtered=True,
        extra_header=extra_header,
    ) as writer:
        for call in call_set.calls:
            engine.apply(call)
            if not call.is_reference_block and call.passes:
                passed += 1
            writer.write(call)
    for name, count in count_failures(call_set.calls, engine.active).items():
        logger.info(f'{name}: {count} calls failed')
    logger.info(f'{passed} calls passed all filters')
    generate_complete_stamp(output, start_time)
    return filtered_file
