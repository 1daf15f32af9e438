import heapq
import os
import time
from multiprocessing import Pool
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from ..bam.cache import ReadSource, fetch_all
from ..constants import REFERENCE_CONFIDENCE_MODE, SAMPLE_ROLE
from ..error import InputFileError
from ..interval import GenomicInterval, Interval, group_by_contig, load_intervals
from ..reference import Reference
from ..util import generate_complete_stamp, logger, mkdirp, output_tabbed_file
from ..variant import AlleleCall, ForcedAllele
from ..vcf import VcfWriter, read_force_call_alleles, read_germline_resource, read_panel_of_normals
from .active_region import ActiveRegion, ActiveRegionDetector
from .assemble import HaplotypeAssembler
from .likelihood import LikelihoodEngine
from .refconf import ReferenceConfidenceModel
from .somatic import SomaticGenotyper, collect_f1r2_counts

CALLS_FILENAME = 'calls.vcf'
F1R2_FILENAME = 'f1r2.tsv'
F1R2_COLUMNS = ['sample', 'context', 'alt_base', 'depth', 'alt_depth', 'alt_f1r2', 'count']
CHUNK_SIZE = 1000000
"""intervals are scanned for active regions in chunks of at most this many bases"""

_WORKER: Dict = {}


class RegionCaller:
    """
    everything needed to turn one active region into output records. Held once per worker process
    """

    def __init__(
        self,
        config: Dict,
        tumor_samples: List[str],
        normal_samples: List[str],
        sequences: Dict[str, str],
        germline_resource=None,
        panel_of_normals=None,
        collect_f1r2: bool = False,
    ):
        self.sequences = sequences
        self.min_base_quality = config['call.min_base_quality']
        self.reference_confidence = config['call.reference_confidence'] == REFERENCE_CONFIDENCE_MODE.GVCF
        self.collect_f1r2 = collect_f1r2
        self.samples = tumor_samples + normal_samples
        self.assembler = HaplotypeAssembler(
            kmer_sizes=config['call.kmer_sizes'],
            min_edge_weight=config['call.min_edge_weight'],
            max_haplotypes=config['call.max_haplotypes'],
            max_mnp_distance=config['call.max_mnp_distance'],
            allow_kmer_increase=config['call.allow_kmer_increase'],
            max_kmer_size=config['call.max_kmer_size'],
        )
        self.engine = LikelihoodEngine(
            gap_open_penalty=config['call.gap_open_penalty'],
            gap_continuation_penalty=config['call.gap_continuation_penalty'],
            max_reads_per_alignment_start=config['call.max_reads_per_alignment_start'],
            random_seed=config['call.random_seed'],
        )
        self.genotyper = SomaticGenotyper(
            tumor_samples,
            normal_samples,
            emission_lod=config['call.emission_lod'],
            informative_read_threshold=config['call.informative_read_threshold'],
            likelihood_cap=config['call.likelihood_cap'],
            default_af=config['call.default_af'],
            germline_resource=germline_resource,
            panel_of_normals=panel_of_normals,
        )
        self.refconf = ReferenceConfidenceModel(
            tumor_samples,
            normal_samples,
            lod_bands=config['call.lod_bands'],
            min_allele_fraction=config['call.min_allele_fraction'],
            min_base_quality=self.min_base_quality,
        )

    def variant_calls(self, region: ActiveRegion) -> List[AlleleCall]:
        clipped = []
        for read in region.reads:
            read = read.clip_to(region.padded.start, region.padded.end, self.min_base_quality)
            if read is not None:
                clipped.append(read)
        haplotypes = self.assembler.assemble(
            region.reference, region.padded, clipped, region.forced_alleles, str(region)
        )
        matrices = self.engine.compute(
            clipped, haplotypes, self.samples, (region.contig, region.interval.start, region.interval.end)
        )
        return self.genotyper.genotype(region, haplotypes, matrices)

    def __call__(self, region: ActiveRegion) -> Tuple[int, List[AlleleCall], Dict]:
        calls = self.variant_calls(region) if region.is_active else []
        contig_sequence = self.sequences[region.contig]
        if self.reference_confidence:
            records = self.refconf.region_records(
                region.contig, region.interval, region.reads, calls, contig_sequence, 1
            )
        else:
            records = calls
        f1r2 = {}
        if self.collect_f1r2:
            f1r2 = collect_f1r2_counts(region, contig_sequence, 1, self.min_base_quality)
        return region.index, records, f1r2


def _init_worker(caller: RegionCaller):
    _WORKER['caller'] = caller


def _process_region(region: ActiveRegion):
    return _WORKER['caller'](region)


def call_intervals(
    reference: Reference, intervals: Optional[List[GenomicInterval]] = None
) -> List[Tuple[str, Interval]]:
    """
    the intervals to call, grouped and merged by contig and in reference order. Defaults to every contig
    """
    if not intervals:
        return [(contig, Interval(1, length)) for contig, length in reference.sequence_dictionary]
    grouped = group_by_contig(intervals)
    result = []
    for contig, _ in reference.sequence_dictionary:
        for itvl in grouped.pop(contig, []):
            result.append((contig, itvl))
    for contig in grouped:
        logger.warning(f'ignoring intervals on {contig} which is not in the reference')
    return result


def generate_regions(
    detector: ActiveRegionDetector,
    sources: List[ReadSource],
    reference: Reference,
    intervals: List[Tuple[str, Interval]],
    forced_alleles: Iterable[ForcedAllele] = (),
) -> Iterator[ActiveRegion]:
    """
    lazily produce the regions of every interval in output order
    """
    forced_alleles = list(forced_alleles)
    index = 0
    for contig, interval in intervals:
        contig_length = reference.contig_length(contig)
        sequence = reference.sequences[contig]
        contig_forced = [a for a in forced_alleles if a.contig == contig]
        for chunk_start in range(interval.start, interval.end + 1, CHUNK_SIZE):
            chunk = Interval(chunk_start, min(interval.end, chunk_start + CHUNK_SIZE - 1))
            reads = fetch_all(sources, contig, chunk.start - detector.padding, chunk.end + detector.padding)
            logger.info(f'scanning {contig}:{chunk.start}-{chunk.end} ({len(reads)} reads)')
            for region in detector.detect(contig, chunk, reads, sequence, contig_length, contig_forced):
                region.index = index
                index += 1
                yield region


def reorder(results: Iterable[Tuple[int, List[AlleleCall], Dict]]) -> Iterator[Tuple[int, List[AlleleCall], Dict]]:
    """
    buffer results which arrive out of order and release them by region index

    Example:
        >>> [i for i, _, _ in reorder([(1, [], {}), (0, [], {}), (2, [], {})])]
        [0, 1, 2]
    """
    heap: List = []
    next_index = 0
    for result in results:
        heapq.heappush(heap, (result[0], id(result), result))
        while heap and heap[0][0] == next_index:
            yield heapq.heappop(heap)[2]
            next_index += 1
    while heap:
        yield heapq.heappop(heap)[2]


def main(
    tumor_bams: List[str],
    reference: str,
    output: str,
    config: Dict,
    normal_bams: Optional[List[str]] = None,
    intervals: Optional[str] = None,
    germline_resource: Optional[str] = None,
    panel_of_normals: Optional[str] = None,
    force_call_alleles: Optional[str] = None,
    f1r2_output: bool = False,
    start_time=int(time.time()),
) -> str:
    """
    Args:
        tumor_bams: paths to the tumor alignment files
        reference: path to the reference fasta
        output: path to the output directory
        config: the validated run config
        normal_bams: paths to the matched normal alignment files
        intervals: path to a file of intervals to restrict calling to
        germline_resource: path to a population allele frequency vcf
        panel_of_normals: path to a panel of normals vcf
        force_call_alleles: path to a vcf of alleles which must be genotyped
        f1r2_output: also write the pair orientation counts used to learn the orientation bias model

    Returns:
        the path to the output call set
    """
    mkdirp(output)
    genome = Reference.load(reference)
    min_mq = config['call.min_mapping_quality']
    sources = [ReadSource(bam, SAMPLE_ROLE.TUMOR, min_mapping_quality=min_mq) for bam in tumor_bams]
    sources.extend(
        [ReadSource(bam, SAMPLE_ROLE.NORMAL, min_mapping_quality=min_mq) for bam in normal_bams or []]
    )
    tumor_samples = []
    normal_samples = []
    for source in sources:
        samples = tumor_samples if source.role == SAMPLE_ROLE.TUMOR else normal_samples
        if source.sample in tumor_samples + normal_samples:
            raise InputFileError(f'sample {source.sample} is given more than once ({source.filename})')
        samples.append(source.sample)
    logger.info(f'tumor samples: {tumor_samples}; normal samples: {normal_samples}')

    germline = read_germline_resource(germline_resource) if germline_resource else None
    pon = read_panel_of_normals(panel_of_normals) if panel_of_normals else None
    forced = read_force_call_alleles(force_call_alleles) if force_call_alleles else []
    regions_to_call = call_intervals(genome, load_intervals(intervals) if intervals else None)

    reference_confidence = config['call.reference_confidence'] == REFERENCE_CONFIDENCE_MODE.GVCF
    detector = ActiveRegionDetector(
        initial_lod=config['call.initial_lod'],
        min_base_quality=config['call.min_base_quality'],
        extension=config['call.active_region_extension'],
        padding=config['call.region_padding'],
        max_region_size=config['call.max_region_size'],
        emit_inactive=reference_confidence or f1r2_output,
    )
    caller = RegionCaller(
        config, tumor_samples, normal_samples, genome.sequences, germline, pon, collect_f1r2=f1r2_output
    )
    regions = generate_regions(detector, sources, genome, regions_to_call, forced)

    calls_file = os.path.join(output, CALLS_FILENAME)
    extra_header = [f'##{SAMPLE_ROLE.TUMOR}_sample={",".join(tumor_samples)}']
    if normal_samples:
        extra_header.append(f'##{SAMPLE_ROLE.NORMAL}_sample={",".join(normal_samples)}')
    f1r2_counts: Dict = {}
    regions_processed = 0
    threads = config['call.threads']
    pool = None
    if threads > 1:
        pool = Pool(threads, initializer=_init_worker, initargs=(caller,))
        results = pool.imap_unordered(_process_region, regions)
    else:
        results = map(caller, regions)
    try:
        with VcfWriter(
            calls_file,
            tumor_samples + normal_samples,
            genome.sequence_dictionary,
            reference_confidence=reference_confidence,
            extra_header=extra_header,
        ) as writer:
            for _, records, f1r2 in reorder(results):
                regions_processed += 1
                for record in records:
                    writer.write(record)
                for key, count in f1r2.items():
                    f1r2_counts[key] = f1r2_counts.get(key, 0) + count
                if regions_processed % 1000 == 0:
                    logger.info(f'processed {regions_processed} regions')
    finally:
        if pool is not None:
            pool.close()
            pool.join()
    logger.info(f'processed {regions_processed} regions and wrote {writer.records_written} records')

    if f1r2_output:
        rows = [dict(zip(F1R2_COLUMNS, key + (count,))) for key, count in sorted(f1r2_counts.items())]
        output_tabbed_file(rows, os.path.join(output, F1R2_FILENAME), header=F1R2_COLUMNS)
    generate_complete_stamp(output, start_time)
    return calls_file
