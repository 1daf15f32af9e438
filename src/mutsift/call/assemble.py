"""
local de Bruijn assembly of the reads in an active region into candidate haplotypes
"""
import math
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import networkx as nx

from ..bam.read import AlignedRead
from ..constants import CIGAR, NULL_BASE
from ..error import AssemblyFailure
from ..interval import Interval
from ..util import logger
from ..variant import ForcedAllele
from .align import VariantEvent, align_haplotype, extract_events, merge_mnps


@dataclass(frozen=True)
class Haplotype:
    """
    Attributes:
        sequence: the haplotype bases
        interval: the reference interval the haplotype replaces
        is_reference: the haplotype is the reference sequence of the interval
        is_forced: the haplotype was built directly from a force-called allele
        score: log10 path score from the assembly graph (0 for injected haplotypes)
        cigar: alignment of the haplotype to the reference interval
        events: the differences from the reference
    """

    sequence: str
    interval: Interval
    is_reference: bool = False
    is_forced: bool = False
    score: float = 0
    cigar: Tuple[Tuple[int, int], ...] = ()
    events: Tuple[VariantEvent, ...] = field(default_factory=tuple)

    def __len__(self):
        return len(self.sequence)


class DeBruijnGraph(nx.DiGraph):
    """
    wrapper for a basic digraph. Nodes are integer ids into a table of (k-1)-mers so that the graph
    itself only ever holds plain integers. Edges carry the number of reads supporting them (freq)
    and whether they are part of the reference path
    """

    def __init__(self, kmer_size: int = 0, **attr):
        nx.DiGraph.__init__(self, **attr)
        self.kmer_size = kmer_size
        self.node_sequences: List[str] = []
        self.node_index: Dict[str, int] = {}

    def node_id(self, sequence: str) -> int:
        if sequence not in self.node_index:
            self.node_index[sequence] = len(self.node_sequences)
            self.node_sequences.append(sequence)
            self.add_node(self.node_index[sequence])
        return self.node_index[sequence]

    def get_edge_freq(self, n1: int, n2: int) -> int:
        """
        returns the freq from the data attribute for a specified edge
        """
        if not self.has_edge(n1, n2):
            raise KeyError('missing edge', n1, n2)
        return self.get_edge_data(n1, n2)['freq']

    def add_edge(self, n1: int, n2: int, freq: int = 1, is_ref: bool = False):
        """
        add a given edge to the graph, if it exists add the frequency to the existing frequency count
        """
        if self.has_edge(n1, n2):
            data = self.get_edge_data(n1, n2)
            freq += data['freq']
            is_ref = is_ref or data['is_ref']
        nx.DiGraph.add_edge(self, n1, n2, freq=freq, is_ref=is_ref)

    def add_sequence(self, sequence: str, is_ref: bool = False) -> List[int]:
        """
        thread a sequence through the graph. Reference sequences mark their edges but do not add
        read support. Kmers containing unknown bases are skipped

        Returns:
            the node ids of the path
        """
        path = []
        for kmer in kmers(sequence, self.kmer_size):
            if NULL_BASE in kmer:
                continue
            src = self.node_id(kmer[:-1])
            tgt = self.node_id(kmer[1:])
            self.add_edge(src, tgt, freq=0 if is_ref else 1, is_ref=is_ref)
            if not path or path[-1] != src:
                path.append(src)
            path.append(tgt)
        return path

    def get_sinks(self, subgraph=None):
        """
        returns all nodes with an outgoing degree of zero
        """
        if subgraph is None:
            subgraph = self.nodes()
        return {node for node in subgraph if self.out_degree(node) == 0}

    def get_sources(self, subgraph=None):
        """
        returns all nodes with an incoming degree of zero
        """
        if subgraph is None:
            subgraph = self.nodes()
        return {node for node in subgraph if self.in_degree(node) == 0}

    def trim_edges_by_freq(self, min_weight: int):
        """
        remove any non-reference edge supported by fewer than min_weight reads and any resulting singlets
        """
        for src, tgt, data in list(self.edges(data=True)):
            if not data['is_ref'] and data['freq'] < min_weight:
                self.remove_edge(src, tgt)
        for node in list(self.nodes()):
            if self.degree(node) == 0:
                self.remove_node(node)

    def restrict_to_paths(self, source: int, sink: int) -> 'DeBruijnGraph':
        """
        the subgraph of nodes lying on some path from source to sink
        """
        if source not in self or sink not in self:
            raise AssemblyFailure('reference source or sink was pruned from the graph')
        reachable = nx.descendants(self, source) | {source}
        coreachable = nx.ancestors(self, sink) | {sink}
        keep = reachable & coreachable
        if sink not in keep:
            raise AssemblyFailure('reference sink is not reachable from the reference source')
        return self.subgraph(keep)

    def path_sequence(self, path: Sequence[int]) -> str:
        return self.node_sequences[path[0]] + ''.join([self.node_sequences[n][-1] for n in path[1:]])


def kmers(s: str, size: int) -> List[str]:
    """
    for a sequence, compute and return a list of all kmers of a specified size

    Example:
        >>> kmers('abcdef', 2)
        ['ab', 'bc', 'cd', 'de', 'ef']
    """
    return [s[i : i + size] for i in range(0, len(s) - size + 1)]


def best_paths(graph: DeBruijnGraph, source: int, sink: int, max_paths: int) -> List[Tuple[float, Tuple[int, ...]]]:
    """
    the highest scoring paths from source to sink of an acyclic graph. Each edge scores the log10 of the
    fraction of the outgoing support of its source node (with a pseudocount for reference edges)

    Returns:
        (score, path) tuples, best first
    """
    def edge_weight(data):
        return data['freq'] + (0.5 if data['is_ref'] else 0)

    best: Dict[int, List[Tuple[float, Tuple[int, ...]]]] = {source: [(0.0, (source,))]}
    for node in nx.topological_sort(graph):
        if node not in best:
            continue
        out_edges = list(graph.out_edges(node, data=True))
        total = sum([edge_weight(data) for _, _, data in out_edges])
        for _, tgt, data in out_edges:
            weight = edge_weight(data)
            if weight <= 0 or total <= 0:
                continue
            step = math.log10(weight / total)
            candidates = best.setdefault(tgt, [])
            candidates.extend([(score + step, path + (tgt,)) for score, path in best[node]])
            candidates.sort(key=lambda x: (-x[0], x[1]))
            del candidates[max_paths:]
        if node != sink:
            del best[node]
    return best.get(sink, [])


class HaplotypeAssembler:
    """
    builds candidate haplotypes for an active region
    """

    def __init__(
        self,
        kmer_sizes: Sequence[int] = (10, 25),
        min_edge_weight: int = 2,
        max_haplotypes: int = 128,
        max_mnp_distance: int = 1,
        allow_kmer_increase: bool = True,
        max_kmer_size: int = 65,
        kmer_increase_step: int = 10,
    ):
        self.kmer_sizes = sorted(set(kmer_sizes))
        self.min_edge_weight = min_edge_weight
        self.max_haplotypes = max_haplotypes
        self.max_mnp_distance = max_mnp_distance
        self.allow_kmer_increase = allow_kmer_increase
        self.max_kmer_size = max_kmer_size
        self.kmer_increase_step = kmer_increase_step

    def build_graph(self, reference: str, reads: Iterable[AlignedRead], kmer_size: int) -> Tuple[DeBruijnGraph, int, int]:
        """
        Raises:
            AssemblyFailure: the reference contains repeated (k-1)-mers or is too short for the kmer size
        """
        if kmer_size < 2 or len(reference) < kmer_size + 1:
            raise AssemblyFailure(f'kmer size {kmer_size} cannot be used for a reference of length {len(reference)}')
        ref_nodes = [reference[i : i + kmer_size - 1] for i in range(len(reference) - kmer_size + 2)]
        if len(set(ref_nodes)) != len(ref_nodes):
            raise AssemblyFailure(f'reference has repeated kmers for kmer size {kmer_size}')
        graph = DeBruijnGraph(kmer_size)
        path = graph.add_sequence(reference, is_ref=True)
        for read in reads:
            if len(read.sequence) >= kmer_size:
                graph.add_sequence(read.sequence)
        return graph, path[0], path[-1]

    def assemble_kmer_size(self, reference: str, reads: Sequence[AlignedRead], kmer_size: int) -> List[Tuple[float, str]]:
        """
        Returns:
            (score, sequence) for the best source to sink paths of the graph

        Raises:
            AssemblyFailure: the graph cannot be used
        """
        graph, source, sink = self.build_graph(reference, reads, kmer_size)
        graph.trim_edges_by_freq(self.min_edge_weight)
        subgraph = graph.restrict_to_paths(source, sink)
        if not nx.is_directed_acyclic_graph(subgraph):
            raise AssemblyFailure(f'assembly graph is cyclic for kmer size {kmer_size}')
        return [
            (score, graph.path_sequence(path))
            for score, path in best_paths(subgraph, source, sink, self.max_haplotypes)
        ]

    def assemble_sequences(self, reference: str, reads: Sequence[AlignedRead]) -> Optional[Dict[str, float]]:
        """
        assemble with every configured kmer size, increasing the kmer size if none of them work

        Returns:
            the best score of each assembled sequence or None if no kmer size produced a usable graph
        """
        sequences: Dict[str, float] = {}
        succeeded = False
        for kmer_size in self.kmer_sizes:
            try:
                for score, seq in self.assemble_kmer_size(reference, reads, kmer_size):
                    sequences[seq] = max(sequences.get(seq, score), score)
                succeeded = True
            except AssemblyFailure as err:
                logger.debug(str(err))
        kmer_size = max(self.kmer_sizes) + self.kmer_increase_step
        while not succeeded and self.allow_kmer_increase and kmer_size <= self.max_kmer_size:
            try:
                for score, seq in self.assemble_kmer_size(reference, reads, kmer_size):
                    sequences[seq] = max(sequences.get(seq, score), score)
                succeeded = True
            except AssemblyFailure as err:
                logger.debug(str(err))
            kmer_size += self.kmer_increase_step
        return sequences if succeeded else None

    def forced_haplotype(self, allele: ForcedAllele, reference: str, interval: Interval) -> Optional[Haplotype]:
        """
        the reference haplotype with a force-called allele substituted in. The event is the allele itself
        rather than the result of re-aligning the haplotype so that it keeps its given representation
        """
        offset = allele.pos - interval.start
        if offset < 0 or offset + len(allele.ref) > len(reference):
            logger.warning(f'force-called allele {allele} does not fit in the region {interval}')
            return None
        if reference[offset : offset + len(allele.ref)] != allele.ref:
            logger.warning(f'force-called allele {allele} does not match the reference')
            return None
        sequence = reference[:offset] + allele.alt + reference[offset + len(allele.ref) :]
        cigar = align_haplotype(sequence, reference)
        return Haplotype(
            sequence=sequence,
            interval=interval,
            is_forced=True,
            cigar=tuple(cigar),
            events=(VariantEvent(allele.pos, allele.ref, allele.alt),),
        )

    def assemble(
        self,
        reference: str,
        interval: Interval,
        reads: Sequence[AlignedRead],
        forced_alleles: Sequence[ForcedAllele] = (),
        region_name: str = '',
    ) -> List[Haplotype]:
        """
        Args:
            reference: the reference bases of the interval
            interval: the (padded) reference interval being assembled
            reads: reads clipped to the interval
            forced_alleles: alleles injected as haplotypes whether or not they are assembled
            region_name: used for logging

        Returns:
            the candidate haplotypes. The reference haplotype is always first
        """
        haplotypes = [
            Haplotype(
                sequence=reference,
                interval=interval,
                is_reference=True,
                cigar=((CIGAR.EQ, len(reference)),) if reference else (),
                events=(),
            )
        ]
        assembled: Dict[str, float] = {}
        if reads:
            result = self.assemble_sequences(reference, reads)
            if result is None:
                logger.warning(f'assembly degraded for {region_name or interval}: using reference and forced haplotypes only')
            else:
                assembled = result

        for sequence, score in sorted(assembled.items(), key=lambda x: (-x[1], x[0])):
            if sequence == reference:
                continue
            cigar = align_haplotype(sequence, reference)
            events = merge_mnps(extract_events(cigar, sequence, reference, interval.start), reference, interval.start, self.max_mnp_distance)
            if not events:
                continue
            haplotypes.append(
                Haplotype(sequence=sequence, interval=interval, score=score, cigar=tuple(cigar), events=tuple(events))
            )
            if len(haplotypes) >= self.max_haplotypes:
                break

        for allele in forced_alleles:
            haplotype = self.forced_haplotype(allele, reference, interval)
            if haplotype is None or haplotype.sequence == reference:
                continue
            duplicates = [i for i, h in enumerate(haplotypes) if h.sequence == haplotype.sequence]
            if duplicates:
                haplotypes[duplicates[0]] = replace(haplotype, score=haplotypes[duplicates[0]].score)
            else:
                haplotypes.append(haplotype)
        logger.debug(f'{len(haplotypes)} haplotypes for {region_name or interval}')
        return haplotypes
