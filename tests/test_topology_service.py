import itertools
import tempfile
import unittest
from collections import deque
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

from chainscope.adapters.labels.static_label_adapter import StaticLabelAdapter
from chainscope.config import settings
from chainscope.core.models import AddressLabel, DateRange, GraphNode, Topology, TopologyFilter, Transfer
from chainscope.graph.builder import build_graph, filter_transfers
from chainscope.graph.clusters import UnionFind, find_clusters, sinebow
from chainscope.graph.hops import label_hops
from chainscope.graph.scale import SqrtScale, radius_scale_for
from chainscope.io.output_writer import write_summary_md
from chainscope.services.topology_service import TopologyService, node_stats

_ids = itertools.count(1)
TS = 1_700_000_000


def _tx(frm, to, value=1, tx_type="native", token=None, ts=TS) -> Transfer:
    n = next(_ids)
    return Transfer(
        id=f"id{n}",
        hash=f"0xhash{n}",
        from_address=frm,
        to_address=to,
        value=Decimal(str(value)),
        timestamp=ts,
        type=tx_type,
        token=token,
    )


def _by_id(topology):
    return {n.id: n for n in topology.nodes}


class TopologyScenarioTests(unittest.TestCase):
    def setUp(self) -> None:
        self.transfers = [_tx("a", "b", 10), _tx("b", "c", 5), _tx("c", "a", 3)]
        self.svc = TopologyService()

    def test_triangle_hops_and_single_small_cluster(self) -> None:
        topo = self.svc.build(self.transfers, {"a"})
        nodes = _by_id(topo)

        self.assertEqual({k: n.hop for k, n in nodes.items()}, {"a": 0, "b": 1, "c": 1})
        for n in nodes.values():
            self.assertEqual(n.group_size, 3)
            self.assertEqual(n.group_id, 0)
            self.assertEqual(n.group_color, settings.DEFAULT_GROUP_COLORS["light"])
        self.assertEqual(len(topo.links), 3)
        self.assertEqual(nodes["a"].balance, Decimal("13"))
        self.assertEqual(nodes["b"].balance, Decimal("15"))

    def test_no_base_addresses_leaves_hops_undefined(self) -> None:
        topo = self.svc.build(self.transfers, set())
        self.assertTrue(all(n.hop is None for n in topo.nodes))

        related = self.svc.build(self.transfers, set(), TopologyFilter(related_only=True))
        self.assertEqual(related.nodes, [])
        self.assertEqual(related.links, [])

    def test_dark_mode_default_color(self) -> None:
        topo = self.svc.build(self.transfers, {"a"}, TopologyFilter(display_mode="dark"))
        self.assertTrue(all(n.group_color == "#94a3b8" for n in topo.nodes))


class GraphBuilderTests(unittest.TestCase):
    def test_case_insensitive_identity_keeps_first_seen_spelling(self) -> None:
        g = build_graph([_tx("0xAbC", "0xdef", 2), _tx("0xabc", "0x123", 3)])

        self.assertEqual(g.universe, ["0xabc", "0xdef", "0x123"])
        self.assertEqual(g.display_id("0xabc"), "0xAbC")
        self.assertEqual(g.balances["0xabc"], Decimal("5"))
        self.assertEqual({l.source for l in g.links}, {"0xAbC"})

    def test_links_aggregate_and_detect_bidirectional(self) -> None:
        g = build_graph([_tx("a", "b", 1), _tx("a", "b", 2), _tx("b", "a", 4), _tx("b", "c", 1)])
        links = {(l.source, l.target): l for l in g.links}

        self.assertEqual(links[("a", "b")].value, Decimal("3"))
        self.assertEqual(links[("a", "b")].count, 2)
        self.assertTrue(links[("a", "b")].is_bidirectional)
        self.assertTrue(links[("b", "a")].is_bidirectional)
        self.assertFalse(links[("b", "c")].is_bidirectional)
        self.assertEqual(g.adjacency["b"], {"a", "c"})

    def test_malformed_transfers_are_skipped(self) -> None:
        g = build_graph([_tx("a", None, 5), _tx("", "b", 5), _tx("a", "c", 1)])
        self.assertEqual(g.universe, ["a", "c"])
        self.assertEqual(len(g.links), 1)

    def test_empty_input(self) -> None:
        g = build_graph([])
        self.assertEqual((g.balances, g.adjacency, g.links, g.universe), ({}, {}, [], []))

    def test_type_date_and_dust_filters(self) -> None:
        day = int(datetime(2024, 3, 1, tzinfo=timezone.utc).timestamp())
        transfers = [
            _tx("a", "b", 5, ts=day - 1),                 # day before
            _tx("a", "c", 5, ts=day + 86399),             # last second of the end day
            _tx("a", "d", 0.5, ts=day + 10),              # dust
            _tx("a", "e", 5, ts=day + 86400),             # next day
            _tx("a", "f", 5, tx_type="erc20", token="USDT", ts=day + 10),
        ]
        flt = TopologyFilter(
            tx_type="native",
            date_range=DateRange(date(2024, 3, 1), date(2024, 3, 1)),
            min_value=1,
        )
        kept = filter_transfers(transfers, flt)
        self.assertEqual([t.to_address for t in kept], ["c"])

    def test_token_selection_rules(self) -> None:
        transfers = [
            _tx("a", "b", 1, tx_type="erc20", token="USDT"),
            _tx("a", "c", 1, tx_type="erc20", token="USDC"),
            _tx("a", "d", 1, tx_type="erc20", token=None),
        ]

        def kept(**kw):
            flt = TopologyFilter(tx_type="erc20", **kw)
            return sorted(t.to_address for t in filter_transfers(transfers, flt))

        self.assertEqual(kept(), ["b", "c"])
        self.assertEqual(kept(tokens=frozenset({"USDT"})), ["b"])
        self.assertEqual(kept(tokens=frozenset()), [])
        self.assertEqual(kept(tokens=frozenset(), empty_token_selection_matches_all=True), ["b", "c"])

    def test_no_available_tokens_means_no_token_restriction(self) -> None:
        transfers = [_tx("a", "b"), _tx("b", "c")]
        flt = TopologyFilter(tx_type="native", tokens=frozenset({"USDT"}))
        self.assertEqual(len(filter_transfers(transfers, flt)), 2)


class HopLabelerTests(unittest.TestCase):
    def _bfs_distance(self, adjacency, bases, target):
        q = deque((b, 0) for b in bases)
        seen = set(bases)
        while q:
            node, d = q.popleft()
            if node == target:
                return d
            for n in adjacency.get(node, ()):
                if n not in seen:
                    seen.add(n)
                    q.append((n, d + 1))
        return None

    def test_multi_source_takes_nearest_base(self) -> None:
        g = build_graph([_tx("a", "b"), _tx("b", "c"), _tx("c", "d"), _tx("x", "y")])
        hops = label_hops(g.adjacency, g.universe, {"A", "d"})

        self.assertEqual(hops, {"a": 0, "b": 1, "c": 1, "d": 0})
        self.assertNotIn("x", hops)

    def test_direction_is_ignored_for_hops(self) -> None:
        g = build_graph([_tx("b", "a"), _tx("c", "b")])
        self.assertEqual(label_hops(g.adjacency, g.universe, {"a"}), {"a": 0, "b": 1, "c": 2})

    def test_base_not_in_graph(self) -> None:
        g = build_graph([_tx("a", "b")])
        self.assertEqual(label_hops(g.adjacency, g.universe, {"zzz"}), {})

    def test_hops_are_shortest_paths_and_valid_layering(self) -> None:
        edges = [("a", "b"), ("b", "c"), ("c", "d"), ("d", "e"), ("a", "f"), ("f", "e"),
                 ("e", "g"), ("g", "h"), ("c", "h"), ("i", "j")]
        g = build_graph([_tx(s, t) for s, t in edges])
        bases = {"a", "h"}
        hops = label_hops(g.adjacency, g.universe, bases)

        for node in g.universe:
            self.assertEqual(hops.get(node), self._bfs_distance(g.adjacency, bases, node), node)
            k = hops.get(node)
            if k:
                self.assertTrue(any(hops.get(n) == k - 1 for n in g.adjacency[node]))


class ClusterFinderTests(unittest.TestCase):
    def test_union_find_path_compression(self) -> None:
        uf = UnionFind()
        for a, b in [("a", "b"), ("c", "d"), ("b", "d"), ("e", "e")]:
            uf.union(a, b)
        root = uf.find("a")
        self.assertEqual({uf.find(x) for x in "abcd"}, {root})
        self.assertEqual(uf.find("e"), "e")
        self.assertIn("c", uf)

    def test_large_components_get_sequence_colors(self) -> None:
        transfers = [_tx("a", "b"), _tx("b", "c"), _tx("c", "d"),
                     _tx("e", "f"), _tx("f", "g"), _tx("g", "h"), _tx("h", "i"),
                     _tx("x", "y")]
        topo = TopologyService().build(transfers, {"a"})
        nodes = _by_id(topo)

        phi = settings.GOLDEN_RATIO_CONJUGATE
        self.assertEqual(nodes["a"].group_color, sinebow(phi))
        self.assertEqual(nodes["d"].group_color, sinebow(phi))
        self.assertEqual(nodes["e"].group_color, sinebow((2 * phi) % 1))
        self.assertEqual((nodes["a"].group_id, nodes["a"].group_size), (1, 4))
        self.assertEqual((nodes["i"].group_id, nodes["i"].group_size), (1, 5))
        self.assertEqual((nodes["x"].group_id, nodes["x"].group_size), (0, 2))

    def test_colors_are_deterministic(self) -> None:
        transfers = [_tx(f"n{i}", f"n{i + 1}") for i in range(12)] + [_tx("m0", f"m{i}") for i in range(1, 6)]
        g = build_graph(transfers)
        first = find_clusters(g.links, g.universe)
        second = find_clusters(g.links, g.universe)
        self.assertEqual(first.colors, second.colors)
        self.assertEqual(len(first.colored_components()), 2)

    def test_self_transfer_is_singleton(self) -> None:
        g = build_graph([_tx("solo", "solo"), _tx("a", "b")])
        clusters = find_clusters(g.links, g.universe)
        self.assertEqual(clusters.sizes[clusters.roots["solo"]], 1)
        self.assertEqual(clusters.roots["a"], clusters.roots["b"])
        self.assertEqual(clusters.component_count(), 2)

    def test_sinebow_format(self) -> None:
        self.assertEqual(sinebow(0.0), "rgb(255, 64, 64)")
        self.assertRegex(sinebow(0.3), r"^rgb\(\d{1,3}, \d{1,3}, \d{1,3}\)$")


class RelatedOnlyFilterTests(unittest.TestCase):
    def test_drops_dead_end_first_degree_contacts(self) -> None:
        transfers = [_tx("a", "b"), _tx("b", "c"), _tx("a", "e"), _tx("x", "y")]
        topo = TopologyService().build(transfers, {"a"}, TopologyFilter(related_only=True))

        self.assertEqual(sorted(n.id for n in topo.nodes), ["a", "b", "c"])
        self.assertEqual(sorted((l.source, l.target) for l in topo.links), [("a", "b"), ("b", "c")])

    def test_hop_one_nodes_bridging_to_each_other_survive(self) -> None:
        transfers = [_tx("a", "b"), _tx("a", "c"), _tx("b", "c")]
        topo = TopologyService().build(transfers, {"a"}, TopologyFilter(related_only=True))
        self.assertEqual(sorted(n.id for n in topo.nodes), ["a", "b", "c"])


class NodeTypeTests(unittest.TestCase):
    def test_label_then_heuristics(self) -> None:
        labels = StaticLabelAdapter([
            AddressLabel("0xAAA", "Hot wallet", "exchange"),
            AddressLabel("0xbbb", "friend", "general"),
        ])
        svc = TopologyService(labels=labels)
        transfers = [_tx("0xaaa", "0xbbb"), _tx("binance-hot-1", "eth-bridge"), _tx("Gnosis-Safe", "plain")]
        nodes = _by_id(svc.build(transfers, ()))

        self.assertEqual((nodes["0xaaa"].type, nodes["0xaaa"].label), ("exchange", "Hot wallet"))
        self.assertEqual((nodes["0xbbb"].type, nodes["0xbbb"].label), ("wallet", "friend"))
        self.assertEqual(nodes["binance-hot-1"].type, "exchange")
        self.assertEqual(nodes["eth-bridge"].type, "contract")
        self.assertEqual(nodes["Gnosis-Safe"].type, "contract")
        self.assertEqual(nodes["plain"].type, "wallet")


class RadiusScaleTests(unittest.TestCase):
    def test_sqrt_interpolation_and_clamp(self) -> None:
        scale = SqrtScale((0, 100), (20, 80))
        self.assertAlmostEqual(scale(0), 20)
        self.assertAlmostEqual(scale(25), 50)
        self.assertAlmostEqual(scale(100), 80)
        self.assertAlmostEqual(scale(10_000), 80)
        self.assertAlmostEqual(scale(-5), 20)

    def test_monotonic(self) -> None:
        scale = radius_scale_for([Decimal("0.5"), Decimal("3"), Decimal("900")])
        values = [0, 0.1, 0.5, 1, 2, 3, 10, 100, 900, 5000]
        radii = [scale(v) for v in values]
        self.assertEqual(radii, sorted(radii))
        self.assertTrue(all(20 <= r <= 80 for r in radii))

    def test_fallback_domains(self) -> None:
        self.assertEqual(radius_scale_for([]).domain, (0.001, 1.0))
        self.assertEqual(radius_scale_for([0, 0]).domain, (0.001, 1.0))
        self.assertEqual(radius_scale_for([0, 50]).domain, (0.001, 50.0))

    def test_degenerate_domain_is_mid_range(self) -> None:
        scale = radius_scale_for([7, 7])
        self.assertAlmostEqual(scale(7), 50)
        self.assertAlmostEqual(scale(1), 50)

    def test_topology_exposes_radius(self) -> None:
        topo = TopologyService().build([_tx("a", "b", 4), _tx("b", "c", 12)], {"a"})
        nodes = _by_id(topo)
        self.assertAlmostEqual(topo.radius(nodes["a"].balance), 20)
        self.assertAlmostEqual(topo.radius(nodes["b"].balance), 80)


class NodeStatsTests(unittest.TestCase):
    def test_totals_and_history_for_active_type(self) -> None:
        old = _tx("A", "b", 4, ts=TS)
        new = _tx("c", "a", 1.5, ts=TS + 60)
        loop = _tx("a", "A", 2, ts=TS + 30)
        token = _tx("a", "b", 99, tx_type="erc20", token="USDT", ts=TS + 90)
        other = _tx("b", "c", 7)

        stats = node_stats([old, new, loop, token, other], "a", "native")

        self.assertEqual(stats.sent, Decimal("6"))
        self.assertEqual(stats.received, Decimal("3.5"))
        self.assertEqual(stats.count, 3)
        self.assertEqual(stats.history, [new, loop, old])

    def test_erc20_view(self) -> None:
        token = _tx("a", "b", 99, tx_type="erc20", token="USDT")
        stats = node_stats([_tx("a", "b", 1), token], "B", "erc20")
        self.assertEqual((stats.sent, stats.received, stats.history), (Decimal("0"), Decimal("99"), [token]))

    def test_unknown_address(self) -> None:
        stats = node_stats([_tx("a", "b")], "zz", "native")
        self.assertEqual((stats.count, stats.sent, stats.received), (0, Decimal("0"), Decimal("0")))


class ClusterSummaryTests(unittest.TestCase):
    def test_nodes_carry_component_key(self) -> None:
        transfers = [_tx("A", "b"), _tx("b", "c"), _tx("c", "d"), _tx("x", "y")]
        nodes = _by_id(TopologyService().build(transfers, {"a"}))

        keys = {nodes[k].group_key for k in ("A", "b", "c", "d")}
        self.assertEqual(len(keys), 1)
        self.assertNotEqual(nodes["x"].group_key, nodes["A"].group_key)
        self.assertEqual(nodes["x"].group_key, nodes["y"].group_key)

    def test_summary_keeps_same_colored_components_apart(self) -> None:
        color = "rgb(1, 2, 3)"
        nodes = [
            GraphNode(id=f"{root}{i}", balance=Decimal("1"), group_id=1, group_key=root,
                      group_size=4, group_color=color)
            for root in ("p", "q")
            for i in range(4)
        ]
        topo = Topology(nodes=nodes, links=[], radius_scale=radius_scale_for([1]))

        with tempfile.TemporaryDirectory() as tmp:
            text = Path(write_summary_md(topo, tmp)).read_text(encoding="utf-8")

        self.assertEqual(text.count("**4 addresses**"), 2)


if __name__ == "__main__":
    unittest.main()
