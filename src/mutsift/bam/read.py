from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

import pysam

from ..constants import CIGAR, NULL_BASE, READ_ORIENTATION
from . import cigar as _cigar


@dataclass(frozen=True)
class AlignedRead:
    """
    immutable, picklable view of an aligned read. Positions are 1-based and inclusive

    Attributes:
        name: the query name
        sample: the sample the read was sequenced from
        contig: the reference the read is aligned to
        start: the first reference position aligned to a read base
        cigar: the cigar tuples of the alignment
        sequence: the read bases (including soft clipped bases)
        qualities: the phred base qualities
        is_reverse: the read is aligned to the reverse strand
        is_read1: the read is the first read of the pair (or unpaired)
        mapping_quality: the mapping quality
        original_contig: the contig the read was aligned to before realignment (OA tag) if given
        clip_offset: index of the first base of this read in the read it was clipped from
        full_length: length of the read before any clipping (None if never clipped)
    """

    name: str
    sample: str
    contig: str
    start: int
    cigar: Tuple[Tuple[int, int], ...]
    sequence: str
    qualities: Tuple[int, ...]
    is_reverse: bool = False
    is_read1: bool = True
    mapping_quality: int = 60
    original_contig: Optional[str] = None
    clip_offset: int = 0
    full_length: Optional[int] = None

    @property
    def end(self) -> int:
        return self.start + _cigar.reference_length(self.cigar) - 1

    @property
    def orientation(self) -> str:
        """
        Example:
            >>> AlignedRead('r', 's', 'chr1', 1, ((0, 4),), 'ACGT', (30,) * 4, is_reverse=True).orientation
            'F2R1'
        """
        if self.is_read1 != self.is_reverse:
            return READ_ORIENTATION.F1R2
        return READ_ORIENTATION.F2R1

    @property
    def strand(self) -> str:
        return '-' if self.is_reverse else '+'

    def __len__(self):
        return len(self.sequence)

    def aligned_pairs(self) -> List[Tuple[Optional[int], Optional[int]]]:
        """
        pairs of (query index, reference position). Insertions and soft clipped bases are paired with None
        for the reference position and deletions are paired with None for the query index (as pysam does)

        Example:
            >>> AlignedRead('r', 's', 'chr1', 10, ((0, 2), (2, 1), (0, 1)), 'ACG', (30,) * 3).aligned_pairs()
            [(0, 10), (1, 11), (None, 12), (2, 13)]
        """
        pairs = []
        qpos = 0
        rpos = self.start
        for state, freq in self.cigar:
            if state in _cigar.ALIGNED_STATES:
                for i in range(freq):
                    pairs.append((qpos + i, rpos + i))
                qpos += freq
                rpos += freq
            elif state in {CIGAR.I, CIGAR.S}:
                for i in range(freq):
                    pairs.append((qpos + i, None))
                qpos += freq
            elif state in {CIGAR.D, CIGAR.N}:
                for i in range(freq):
                    pairs.append((None, rpos + i))
                rpos += freq
        return pairs

    def query_position(self, ref_pos: int) -> Optional[int]:
        """
        the index of the read base aligned to a given reference position (None if deleted or not covered)
        """
        qpos = 0
        rpos = self.start
        for state, freq in self.cigar:
            if state in _cigar.ALIGNED_STATES:
                if rpos <= ref_pos < rpos + freq:
                    return qpos + ref_pos - rpos
                qpos += freq
                rpos += freq
            elif state in {CIGAR.I, CIGAR.S}:
                qpos += freq
            elif state in {CIGAR.D, CIGAR.N}:
                if rpos <= ref_pos < rpos + freq:
                    return None
                rpos += freq
        return None

    def distance_from_end(self, ref_pos: int) -> Optional[int]:
        """
        distance of the base aligned to a reference position from the nearest end of the full (unclipped) read

        Example:
            >>> AlignedRead('r', 's', 'chr1', 10, ((0, 6),), 'ACGTAC', (30,) * 6).distance_from_end(14)
            1
        """
        qpos = self.query_position(ref_pos)
        if qpos is None:
            return None
        index = self.clip_offset + qpos
        length = self.full_length or len(self.sequence)
        return min(index, length - 1 - index)

    def clip_to(self, start: int, end: int, min_base_quality: int = 0) -> Optional['AlignedRead']:
        """
        restrict the read to the bases aligned within a reference window. Soft clipped bases are removed
        and bases with a quality below the minimum are replaced by N

        Returns:
            the clipped read or None if no aligned bases fall within the window
        """
        states = []
        bases = []
        quals = []
        first_ref = None
        first_query = 0
        qpos = 0
        rpos = self.start
        for state, freq in self.cigar:
            if state in _cigar.ALIGNED_STATES:
                for i in range(freq):
                    if start <= rpos + i <= end:
                        if first_ref is None:
                            first_ref = rpos + i
                            first_query = qpos + i
                        states.append(CIGAR.M)
                        bases.append(self.sequence[qpos + i])
                        quals.append(self.qualities[qpos + i])
                qpos += freq
                rpos += freq
            elif state == CIGAR.I:
                if first_ref is not None and rpos <= end:
                    states.extend([CIGAR.I] * freq)
                    bases.extend(self.sequence[qpos:qpos + freq])
                    quals.extend(self.qualities[qpos:qpos + freq])
                qpos += freq
            elif state == CIGAR.S:
                qpos += freq
            elif state in {CIGAR.D, CIGAR.N}:
                for i in range(freq):
                    if first_ref is not None and rpos + i <= end:
                        states.append(state)
                rpos += freq
        # events cannot start or end the clipped alignment
        while states and states[-1] != CIGAR.M:
            state = states.pop()
            if state == CIGAR.I:
                bases.pop()
                quals.pop()
        if first_ref is None or not states:
            return None
        bases = [
            base if qual >= min_base_quality else NULL_BASE for base, qual in zip(bases, quals)
        ]
        return replace(
            self,
            start=first_ref,
            cigar=tuple(_cigar.join([(s, 1) for s in states])),
            sequence=''.join(bases),
            qualities=tuple(quals),
            clip_offset=self.clip_offset + first_query,
            full_length=self.full_length or len(self.sequence),
        )

    @classmethod
    def from_pysam(cls, read: pysam.AlignedSegment, sample: str) -> 'AlignedRead':
        original_contig = None
        if read.has_tag('OA'):
            original_contig = str(read.get_tag('OA')).split(',')[0]
        qualities = read.query_qualities
        if qualities is None:
            qualities = [30] * read.query_length
        return cls(
            name=read.query_name,
            sample=sample,
            contig=read.reference_name,
            start=read.reference_start + 1,
            cigar=tuple((int(s), int(f)) for s, f in read.cigartuples),
            sequence=read.query_sequence.upper(),
            qualities=tuple(int(q) for q in qualities),
            is_reverse=read.is_reverse,
            is_read1=not (read.is_paired and read.is_read2),
            mapping_quality=read.mapping_quality,
            original_contig=original_contig,
        )
