"""
Netting - Debt Graphs.

Node/edge views of the obligations before netting and the
net payments after it, for display.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from ..types import NetPayment, Obligation


@dataclass
class GraphEdge:
    source: str
    target: str
    label: str


@dataclass
class DebtGraph:
    """Parties in first-seen order plus labelled edges."""

    nodes: List[str] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [{"id": node} for node in self.nodes],
            "edges": [
                {"source": e.source, "target": e.target, "label": e.label}
                for e in self.edges
            ],
        }


def _add_node(graph: DebtGraph, seen: set, party: str) -> None:
    if party not in seen:
        seen.add(party)
        graph.nodes.append(party)


def build_obligation_graph(obligations: Iterable[Obligation]) -> DebtGraph:
    """One edge per obligation, labelled '<amount> <UNIT>'."""
    graph = DebtGraph()
    seen: set = set()
    for o in obligations:
        _add_node(graph, seen, o.from_party)
        _add_node(graph, seen, o.to_party)
        graph.edges.append(GraphEdge(
            source=o.from_party,
            target=o.to_party,
            label=f"{o.amount.normalize():f} {o.unit.upper()}",
        ))
    return graph


def build_payment_graph(nodes: List[str], payments: Iterable[NetPayment]) -> DebtGraph:
    """Same nodes, one edge per net payment labelled '$<value>'."""
    graph = DebtGraph(nodes=list(nodes))
    for p in payments:
        graph.edges.append(GraphEdge(
            source=p.from_party,
            target=p.to_party,
            label=f"${p.value_usd.quantize(Decimal('0.01'))}",
        ))
    return graph
