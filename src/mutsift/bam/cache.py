import atexit
import os
import re
from dataclasses import replace
from typing import Iterator, List, Optional

import pysam

from ..constants import SAMPLE_ROLE
from ..error import InputFileError
from ..util import logger
from .read import AlignedRead

MITOCHONDRIAL_CONTIGS = ['chrM', 'MT', 'M', 'chrMT']


class ReadSource:
    """
    wraps an alignment file and tags every read it hands out with the sample it belongs to
    """

    def __init__(
        self,
        bamfile: str,
        role: str = SAMPLE_ROLE.TUMOR,
        sample: Optional[str] = None,
        min_mapping_quality: int = 0,
    ):
        """
        Args:
            bamfile: path to the input (indexed) bam file
            role: the role of the sample (tumor or normal)
            sample: sample name, defaults to the SM of the first read group
            min_mapping_quality: reads below this mapping quality are not returned
        """
        self.role = SAMPLE_ROLE.enforce(role)
        self.filename = bamfile
        self.min_mapping_quality = min_mapping_quality
        try:
            self.fh = pysam.AlignmentFile(bamfile, 'rb')
        except (OSError, ValueError) as err:
            raise InputFileError(f'unable to open alignment file: {bamfile} ({err})') from err
        self.sample = sample or self._sample_from_header()
        atexit.register(self.close)  # makes the file 'auto close' on normal python exit

    def _sample_from_header(self) -> str:
        header = self.fh.header.to_dict()
        for read_group in header.get('RG', []):
            if read_group.get('SM'):
                return read_group['SM']
        name = os.path.basename(self.filename)
        return re.sub(r'\.(bam|cram|sam)$', '', name)

    def reference_id(self, chrom: str) -> int:
        """
        Args:
            chrom: the chromosome/reference name
        Returns:
            the reference id corresponding to input chromosome name
        """
        tid = self.fh.get_tid(chrom)
        if tid == -1:
            tid = self.fh.get_tid(re.sub('^chr', '', chrom))
        if tid == -1:
            tid = self.fh.get_tid('chr' + chrom)
        if tid == -1 and chrom in MITOCHONDRIAL_CONTIGS:
            for alias in MITOCHONDRIAL_CONTIGS:
                tid = self.fh.get_tid(alias)
                if tid != -1:
                    break
        if tid == -1:
            raise KeyError('invalid reference name not present in bam file', chrom)
        return tid

    def valid_chr(self, chrom: str) -> bool:
        try:
            self.reference_id(chrom)
            return True
        except KeyError:
            return False

    def usable(self, read: pysam.AlignedSegment) -> bool:
        """
        checks the basic read filters
        """
        if (
            read.is_unmapped
            or read.is_secondary
            or read.is_supplementary
            or read.is_duplicate
            or read.is_qcfail
        ):
            return False
        if read.mapping_quality < self.min_mapping_quality:
            return False
        if not read.cigartuples or read.query_sequence is None:
            return False
        if read.reference_end is None or read.reference_end <= read.reference_start:
            logger.debug(f'ignoring read which consumes no reference bases: {read.query_name}')
            return False
        return True

    def fetch(self, contig: str, start: int, end: int) -> Iterator[AlignedRead]:
        """
        yields the usable reads overlapping a 1-based inclusive region
        """
        if not self.valid_chr(contig):
            logger.warning(f'{contig} is not present in {self.filename}')
            return
        tid = self.reference_id(contig)
        bam_contig = self.fh.get_reference_name(tid)
        for read in self.fh.fetch(bam_contig, max(0, start - 1), end):
            if not self.usable(read):
                continue
            aligned = AlignedRead.from_pysam(read, self.sample)
            if aligned.contig != contig:
                aligned = replace(aligned, contig=contig)
            yield aligned

    def close(self):
        try:
            self.fh.close()
        except AttributeError:
            pass


def fetch_all(sources: List[ReadSource], contig: str, start: int, end: int) -> List[AlignedRead]:
    """
    collect the reads from all sources for a region, sorted by position for deterministic downstream processing
    """
    reads = []
    for source in sources:
        reads.extend(source.fetch(contig, start, end))
    reads.sort(key=lambda r: (r.start, r.sample, r.name, r.is_read1, r.is_reverse, r.cigar))
    return reads
