import math

import pytest

from mutsift.call.align import VariantEvent
from mutsift.call.assemble import DeBruijnGraph, HaplotypeAssembler, best_paths, kmers
from mutsift.error import AssemblyFailure
from mutsift.interval import Interval
from mutsift.variant import ForcedAllele

from ..mock import CONTIG, alt_base, make_read, random_sequence, simulate_reads, substitute

REFERENCE = random_sequence(200, seed=7)
VARIANT_POS = 100
INTERVAL = Interval(1, len(REFERENCE))


class TestDeBruijnGraph:
    def test_add_edge_accumulates(self):
        graph = DeBruijnGraph(3)
        a, b = graph.node_id('AC'), graph.node_id('CG')
        graph.add_edge(a, b)
        graph.add_edge(a, b, freq=2)
        assert graph.get_edge_freq(a, b) == 3
        with pytest.raises(KeyError):
            graph.get_edge_freq(b, a)

    def test_add_sequence(self):
        graph = DeBruijnGraph(3)
        path = graph.add_sequence('ACGTA')
        assert graph.path_sequence(path) == 'ACGTA'
        assert graph.get_sources() == {path[0]}
        assert graph.get_sinks() == {path[-1]}

    def test_unknown_bases_skipped(self):
        graph = DeBruijnGraph(3)
        graph.add_sequence('ACNTA')
        assert graph.number_of_edges() == 0

    def test_trim_keeps_reference_edges(self):
        graph = DeBruijnGraph(3)
        graph.add_sequence('ACGTA', is_ref=True)
        graph.add_sequence('ACGGA')
        graph.trim_edges_by_freq(2)
        assert graph.number_of_edges() == 3
        assert all([data['is_ref'] for _, _, data in graph.edges(data=True)])

    def test_restrict_to_paths(self):
        graph = DeBruijnGraph(3)
        path = graph.add_sequence('ACGTA', is_ref=True)
        graph.add_sequence('CGTTT')
        subgraph = graph.restrict_to_paths(path[0], path[-1])
        assert set(subgraph.nodes()) == set(path)
        assert isinstance(subgraph, DeBruijnGraph)
        assert best_paths(subgraph, path[0], path[-1], 1)[0][1] == tuple(path)

    def test_restrict_missing_sink(self):
        graph = DeBruijnGraph(3)
        path = graph.add_sequence('ACGTA', is_ref=True)
        with pytest.raises(AssemblyFailure):
            graph.restrict_to_paths(path[0], 100)


class TestBestPaths:
    def test_ordered_by_support(self):
        graph = DeBruijnGraph(2)
        source, high, low, sink = [graph.node_id(base) for base in 'ACGT']
        graph.add_edge(source, high, freq=3)
        graph.add_edge(source, low, freq=1)
        graph.add_edge(high, sink, freq=3)
        graph.add_edge(low, sink, freq=1)
        paths = best_paths(graph, source, sink, 10)
        assert [path for _, path in paths] == [(source, high, sink), (source, low, sink)]
        assert paths[0][0] == pytest.approx(math.log10(0.75))
        assert paths[1][0] == pytest.approx(math.log10(0.25))

    def test_max_paths(self):
        graph = DeBruijnGraph(2)
        source, high, low, sink = [graph.node_id(base) for base in 'ACGT']
        for node in [high, low]:
            graph.add_edge(source, node)
            graph.add_edge(node, sink)
        assert len(best_paths(graph, source, sink, 1)) == 1


def test_kmers():
    assert kmers('ACGTA', 3) == ['ACG', 'CGT', 'GTA']
    assert kmers('AC', 3) == []


class TestHaplotypeAssembler:
    @pytest.mark.parametrize('kmer_size', [15, 25])
    def test_snv_haplotype(self, kmer_size):
        alt = alt_base(REFERENCE[VARIANT_POS - 1])
        reads = [
            r.clip_to(1, len(REFERENCE)) for r in simulate_reads(REFERENCE, substitute(REFERENCE, {VARIANT_POS: alt}))
        ]
        haplotypes = HaplotypeAssembler(kmer_sizes=[kmer_size]).assemble(REFERENCE, INTERVAL, reads)
        assert haplotypes[0].is_reference
        assert haplotypes[0].sequence == REFERENCE
        assert len(haplotypes) == 2
        assert haplotypes[1].events == (VariantEvent(VARIANT_POS, REFERENCE[VARIANT_POS - 1], alt),)
        assert haplotypes[1].score < 0

    def test_unsupported_branch_pruned(self):
        alt = alt_base(REFERENCE[VARIANT_POS - 1])
        reads = simulate_reads(REFERENCE)
        reads.append(make_read(VARIANT_POS - 30, substitute(REFERENCE, {VARIANT_POS: alt})[VARIANT_POS - 31 : VARIANT_POS + 29]))
        haplotypes = HaplotypeAssembler(kmer_sizes=[25], min_edge_weight=2).assemble(REFERENCE, INTERVAL, reads)
        assert len(haplotypes) == 1

    def test_repeated_reference_degrades(self):
        reference = 'ACGT' * 50
        reads = simulate_reads(reference)
        assembler = HaplotypeAssembler(kmer_sizes=[10], allow_kmer_increase=False)
        assert assembler.assemble_sequences(reference, reads) is None
        haplotypes = assembler.assemble(reference, Interval(1, 200), reads)
        assert [h.is_reference for h in haplotypes] == [True]

    def test_kmer_too_large(self):
        with pytest.raises(AssemblyFailure):
            HaplotypeAssembler().build_graph('ACGT', [], 10)

    def test_forced_haplotype(self):
        allele = ForcedAllele(CONTIG, 50, REFERENCE[49:52], REFERENCE[49])
        haplotypes = HaplotypeAssembler(kmer_sizes=[25]).assemble(
            REFERENCE, INTERVAL, simulate_reads(REFERENCE), forced_alleles=[allele]
        )
        assert len(haplotypes) == 2
        forced = haplotypes[1]
        assert forced.is_forced
        assert forced.sequence == REFERENCE[:50] + REFERENCE[52:]
        assert forced.events == (VariantEvent(50, REFERENCE[49:52], REFERENCE[49]),)

    def test_forced_allele_reference_mismatch(self):
        ref_base = REFERENCE[49]
        allele = ForcedAllele(CONTIG, 50, alt_base(ref_base), ref_base)
        assert HaplotypeAssembler().forced_haplotype(allele, REFERENCE, INTERVAL) is None

    def test_forced_allele_outside_interval(self):
        allele = ForcedAllele(CONTIG, 500, 'A', 'C')
        assert HaplotypeAssembler().forced_haplotype(allele, REFERENCE, INTERVAL) is None

    def test_no_reads(self):
        haplotypes = HaplotypeAssembler().assemble(REFERENCE, INTERVAL, [])
        assert len(haplotypes) == 1

    @pytest.mark.parametrize(
        'max_mnp_distance,expected_lengths',
        [
            [0, [1, 1, 1, 1]],
            [1, [1, 1, 1, 1]],
            [2, [3, 1, 1]],
            [3, [6, 1]],
            [4, [10]],
        ],
    )
    def test_mnp_from_reads(self, max_mnp_distance, expected_lengths):
        positions = [VARIANT_POS, VARIANT_POS + 2, VARIANT_POS + 5, VARIANT_POS + 9]
        haplotype = substitute(REFERENCE, {pos: alt_base(REFERENCE[pos - 1]) for pos in positions})
        reads = [r.clip_to(1, len(REFERENCE)) for r in simulate_reads(REFERENCE, haplotype)]
        haplotypes = HaplotypeAssembler(kmer_sizes=[25], max_mnp_distance=max_mnp_distance).assemble(
            REFERENCE, INTERVAL, reads
        )
        assert len(haplotypes) == 2
        assert haplotypes[1].sequence == haplotype
        events = haplotypes[1].events
        assert [len(e.ref) for e in events] == expected_lengths
        assert events[0].pos == VARIANT_POS
        for event in events:
            assert event.ref == REFERENCE[event.pos - 1 : event.end]
            assert event.alt == haplotype[event.pos - 1 : event.end]
