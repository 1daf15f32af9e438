from typing import Dict, Iterable, Optional

from Bio import SeqIO

from .error import InputFileError, SequenceDictionaryError
from .types import SequenceDictionary
from .util import logger, open_text


class Reference:
    """
    in-memory reference sequences keyed by contig name, in file order
    """

    def __init__(self, sequences: Dict[str, str]):
        self.sequences = {name: str(seq).upper() for name, seq in sequences.items()}

    def __contains__(self, contig):
        return contig in self.sequences

    def contig_length(self, contig: str) -> int:
        return len(self.sequences[contig])

    @property
    def sequence_dictionary(self) -> SequenceDictionary:
        return [(name, len(seq)) for name, seq in self.sequences.items()]

    def fetch(self, contig: str, start: int, end: int) -> str:
        """
        the reference bases of a 1-based inclusive range, clamped to the contig

        Example:
            >>> Reference({'chr1': 'ACGTACGT'}).fetch('chr1', 2, 4)
            'CGT'
        """
        seq = self.sequences[contig]
        return seq[max(start, 1) - 1 : min(end, len(seq))]

    @classmethod
    def load(cls, *filepaths: str) -> 'Reference':
        """
        Args:
            filepaths: the paths to the files containing the input fasta genomes
        """
        sequences: Dict[str, str] = {}
        for filename in filepaths:
            logger.info(f'loading: {filename}')
            try:
                with open_text(filename) as fh:
                    for record in SeqIO.parse(fh, 'fasta'):
                        if record.id in sequences:
                            raise InputFileError(f'Duplicate chromosome name {record.id} in {filename}')
                        sequences[record.id] = str(record.seq)
            except OSError as err:
                raise InputFileError(f'unable to read the reference: {filename}') from err
        if not sequences:
            raise InputFileError(f'no sequences were loaded from the reference: {filepaths}')
        return cls(sequences)


def validate_sequence_dictionary(
    call_set_dictionary: SequenceDictionary,
    reference_dictionary: SequenceDictionary,
    used_contigs: Optional[Iterable[str]] = None,
    relaxed: bool = False,
):
    """
    cross-check the contigs declared by a call set against the reference

    Args:
        call_set_dictionary: (name, length) for each contig declared in the call set header
        reference_dictionary: (name, length) for each reference contig
        used_contigs: the contigs actually used by records in the call set
        relaxed: only check that the contigs used by records exist in the reference

    Raises:
        SequenceDictionaryError: the dictionaries are incompatible
    """
    reference_lengths = dict(reference_dictionary)
    used_contigs = set(used_contigs or [])

    missing = sorted([contig for contig in used_contigs if contig not in reference_lengths])
    if missing:
        raise SequenceDictionaryError(
            f'call set uses contigs that are missing from the reference: {", ".join(missing)}'
        )
    if relaxed:
        return

    for contig, length in call_set_dictionary:
        if contig not in reference_lengths:
            raise SequenceDictionaryError(f'call set contig {contig} is missing from the reference')
        if length is not None and length != reference_lengths[contig]:
            raise SequenceDictionaryError(
                f'call set contig {contig} has length {length} but the reference has length {reference_lengths[contig]}'
            )
    shared = [contig for contig, _ in reference_dictionary if contig in dict(call_set_dictionary)]
    declared = [contig for contig, _ in call_set_dictionary]
    if shared != declared:
        raise SequenceDictionaryError('call set contigs are not in the same order as the reference contigs')
