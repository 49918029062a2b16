from __future__ import annotations

"""Graph of discovered site states, built while exploring a website.

Nodes are pages (or SPA states) keyed by a normalized id. Parent, child,
sibling and edge relationships are id lookups through a single
``networkx.DiGraph`` used as the node table; nodes never hold references to
other node objects. The DiGraph also provides the forward (successor) and
reverse (predecessor) edge adjacency.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Union
from urllib.parse import urlparse

import networkx as nx

from .errors import GraphError
from .links import Link

Visitor = Callable[["NavigationNode", int, List[str]], Optional[bool]]


@dataclass
class NavigationNode:
    """A discovered page or application state."""

    id: str
    url: str = ""
    state_hash: Optional[str] = None
    title: str = ""
    parent: Optional[str] = None
    depth: int = 0
    children: Set[str] = field(default_factory=set)
    siblings: Set[str] = field(default_factory=set)
    visit_count: int = 0
    explored_links: List[Link] = field(default_factory=list)
    unexplored_links: List[Link] = field(default_factory=list)
    is_leaf: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    first_visited_at: Optional[float] = None
    last_visited_at: Optional[float] = None

    # --- link bookkeeping -------------------------------------------------
    def mark_link_explored(self, link: Link) -> None:
        for index, candidate in enumerate(self.unexplored_links):
            same_selector = bool(link.selector) and candidate.selector == link.selector
            same_text = bool(link.text) and candidate.text == link.text
            if candidate is link or same_selector or same_text:
                self.explored_links.append(self.unexplored_links.pop(index))
                return

    def add_sibling(self, sibling_id: str) -> None:
        if sibling_id != self.id:
            self.siblings.add(sibling_id)

    def record_visit(self) -> None:
        self.visit_count += 1
        now = time.time()
        if self.first_visited_at is None:
            self.first_visited_at = now
        self.last_visited_at = now

    def has_unexplored_links(self) -> bool:
        return len(self.unexplored_links) > 0

    @property
    def unexplored_count(self) -> int:
        return len(self.unexplored_links)

    # --- persistence ------------------------------------------------------
    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "stateHash": self.state_hash,
            "title": self.title,
            "parent": self.parent,
            "children": sorted(self.children),
            "siblings": sorted(self.siblings),
            "depth": self.depth,
            "visitCount": self.visit_count,
            "exploredLinks": [link.to_dict() for link in self.explored_links],
            "unexploredLinks": [link.to_dict() for link in self.unexplored_links],
            "isLeaf": self.is_leaf,
            "metadata": self.metadata,
            "firstVisitedAt": self.first_visited_at,
            "lastVisitedAt": self.last_visited_at,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "NavigationNode":
        return cls(
            id=data["id"],
            url=data.get("url", ""),
            state_hash=data.get("stateHash"),
            title=data.get("title", ""),
            parent=data.get("parent"),
            depth=data.get("depth", 0),
            children=set(data.get("children", [])),
            siblings=set(data.get("siblings", [])),
            visit_count=data.get("visitCount", 0),
            explored_links=[Link.from_dict(d) for d in data.get("exploredLinks", [])],
            unexplored_links=[Link.from_dict(d) for d in data.get("unexploredLinks", [])],
            is_leaf=data.get("isLeaf", False),
            metadata=dict(data.get("metadata") or {}),
            first_visited_at=data.get("firstVisitedAt"),
            last_visited_at=data.get("lastVisitedAt"),
        )


@dataclass
class NavigationEdge:
    """Directed transition between two nodes; de-duplicated per (from, to) pair."""

    from_id: str
    to_id: str
    via: Optional[Link] = None
    type: str = "click"  # click | form | redirect | spa | back
    created_at: float = field(default_factory=time.time)
    traverse_count: int = 0

    def record_traversal(self) -> None:
        self.traverse_count += 1

    def to_json(self) -> Dict[str, Any]:
        return {
            "fromId": self.from_id,
            "toId": self.to_id,
            "via": self.via.to_dict() if self.via else None,
            "type": self.type,
            "createdAt": self.created_at,
            "traverseCount": self.traverse_count,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "NavigationEdge":
        via = data.get("via")
        return cls(
            from_id=data["fromId"],
            to_id=data["toId"],
            via=Link.from_dict(via) if via else None,
            type=data.get("type", "click"),
            created_at=data.get("createdAt", time.time()),
            traverse_count=data.get("traverseCount", 0),
        )


# Keyword weights used by ``find_best_next_node``.
NODE_BOOSTS = (("feature", 20), ("product", 15), ("pricing", 10))
NODE_PENALTIES = (("login", -50), ("signup", -50))


class NavigationGraph:
    """Directed graph of site states, indexed by node id."""

    def __init__(self) -> None:
        self._g: nx.DiGraph = nx.DiGraph()
        self.root_id: Optional[str] = None
        now = time.time()
        self.metadata: Dict[str, Any] = {
            "createdAt": now,
            "lastModifiedAt": now,
            "baseUrl": None,
            "baseDomain": None,
        }

    def _touch(self) -> None:
        self.metadata["lastModifiedAt"] = time.time()

    # ------------------------------------------------------------------
    # graph building ----------------------------------------------------

    def add_node(self, node: NavigationNode) -> NavigationNode:
        """Insert ``node``; an existing id is not replaced but gets a visit recorded."""
        if not isinstance(node, NavigationNode):
            raise GraphError("add_node expects a NavigationNode")
        existing = self.get_node(node.id)
        if existing is not None:
            existing.record_visit()
            return existing

        self._g.add_node(node.id, obj=node)
        node.record_visit()

        parent = self.get_node(node.parent) if node.parent else None
        if parent is not None:
            parent.children.add(node.id)
            for sibling_id in parent.children:
                sibling = self.get_node(sibling_id)
                if sibling is None or sibling_id == node.id:
                    continue
                sibling.add_sibling(node.id)
                node.add_sibling(sibling_id)

        self._touch()
        return node

    def add_edge(self, from_id: str, to_id: str, via: Optional[Link] = None, type: str = "click") -> NavigationEdge:
        if from_id not in self._g:
            raise GraphError(f"Source node {from_id} not found")
        if to_id not in self._g:
            raise GraphError(f"Target node {to_id} not found")

        if self._g.has_edge(from_id, to_id):
            edge: NavigationEdge = self._g.edges[from_id, to_id]["obj"]
            edge.record_traversal()
            return edge

        edge = NavigationEdge(from_id=from_id, to_id=to_id, via=via, type=type)
        self._g.add_edge(from_id, to_id, obj=edge)
        self._touch()
        return edge

    def set_root(self, node_id: str) -> None:
        node = self.get_node(node_id)
        if node is None:
            raise GraphError(f"Node {node_id} not found")
        self.root_id = node_id
        node.depth = 0
        if not self.metadata.get("baseUrl") and node.url:
            self.metadata["baseUrl"] = node.url
            self.metadata["baseDomain"] = urlparse(node.url).hostname

    def remove_node(self, node_id: str) -> None:
        node = self.get_node(node_id)
        if node is None:
            return
        parent = self.get_node(node.parent) if node.parent else None
        if parent is not None:
            parent.children.discard(node_id)
        for sibling_id in node.siblings:
            sibling = self.get_node(sibling_id)
            if sibling is not None:
                sibling.siblings.discard(node_id)
        # drops every incident edge in both adjacency directions
        self._g.remove_node(node_id)
        if self.root_id == node_id:
            self.root_id = None
        self._touch()

    # ------------------------------------------------------------------
    # queries -----------------------------------------------------------

    def get_node(self, node_id: Optional[str]) -> Optional[NavigationNode]:
        if node_id is not None and node_id in self._g:
            return self._g.nodes[node_id]["obj"]
        return None

    def has_node(self, node_id: str) -> bool:
        return node_id in self._g

    @property
    def nodes(self) -> List[NavigationNode]:
        return [data["obj"] for _, data in self._g.nodes(data=True)]

    def get_root(self) -> Optional[NavigationNode]:
        return self.get_node(self.root_id)

    def get_parent(self, node_id: str) -> Optional[NavigationNode]:
        node = self.get_node(node_id)
        if node is None or not node.parent:
            return None
        return self.get_node(node.parent)

    def get_children(self, node_id: str) -> List[NavigationNode]:
        node = self.get_node(node_id)
        if node is None:
            return []
        return [child for child in (self.get_node(cid) for cid in sorted(node.children)) if child]

    def get_siblings(self, node_id: str) -> List[NavigationNode]:
        node = self.get_node(node_id)
        if node is None:
            return []
        return [sib for sib in (self.get_node(sid) for sid in sorted(node.siblings)) if sib]

    def get_edges_from(self, node_id: str) -> List[NavigationEdge]:
        if node_id not in self._g:
            return []
        return [data["obj"] for _, _, data in self._g.out_edges(node_id, data=True)]

    def get_edges_to(self, node_id: str) -> List[NavigationEdge]:
        if node_id not in self._g:
            return []
        return [data["obj"] for _, _, data in self._g.in_edges(node_id, data=True)]

    @property
    def edges(self) -> List[NavigationEdge]:
        return [data["obj"] for _, _, data in self._g.edges(data=True)]

    def get_depth(self, node_id: str) -> int:
        node = self.get_node(node_id)
        return node.depth if node else -1

    def get_path(self, from_id: str, to_id: str) -> List[str]:
        """Shortest id path over forward edges plus the implicit "go back" parent edge."""
        if from_id not in self._g or to_id not in self._g:
            return []
        if from_id == to_id:
            return [from_id]

        visited: Set[str] = set()
        queue = deque([[from_id]])
        while queue:
            path = queue.popleft()
            current = path[-1]
            if current in visited:
                continue
            visited.add(current)

            for next_id in self._g.successors(current):
                if next_id == to_id:
                    return path + [to_id]
                if next_id not in visited:
                    queue.append(path + [next_id])

            node = self.get_node(current)
            if node is not None and node.parent and node.parent not in visited:
                if node.parent == to_id:
                    return path + [to_id]
                queue.append(path + [node.parent])
        return []

    def get_ancestors(self, node_id: str) -> List[NavigationNode]:
        ancestors: List[NavigationNode] = []
        seen: Set[str] = {node_id}
        current = self.get_node(node_id)
        while current is not None and current.parent and current.parent not in seen:
            parent = self.get_node(current.parent)
            if parent is None:
                break
            ancestors.append(parent)
            seen.add(parent.id)
            current = parent
        return ancestors

    def get_descendants(self, node_id: str) -> List[NavigationNode]:
        descendants: List[NavigationNode] = []
        seen: Set[str] = {node_id}
        stack = list(self.get_children(node_id))
        while stack:
            node = stack.pop()
            if node.id in seen:
                continue
            seen.add(node.id)
            descendants.append(node)
            stack.extend(self.get_children(node.id))
        return descendants

    def get_nodes_at_depth(self, depth: int) -> List[NavigationNode]:
        return [node for node in self.nodes if node.depth == depth]

    def get_max_depth(self) -> int:
        return max((node.depth for node in self.nodes), default=0)

    def is_reachable(self, from_id: str, to_id: str) -> bool:
        return len(self.get_path(from_id, to_id)) > 0

    def would_create_cycle(self, from_id: str, to_id: str) -> bool:
        # an edge from -> to closes a cycle when ``to`` already reaches ``from``
        return self.is_reachable(to_id, from_id)

    # ------------------------------------------------------------------
    # exploration state -------------------------------------------------

    def get_unexplored_nodes(self) -> List[NavigationNode]:
        return [node for node in self.nodes if node.has_unexplored_links() and not node.is_leaf]

    def get_unexplored_links(self, node_id: str) -> List[Link]:
        node = self.get_node(node_id)
        return node.unexplored_links if node else []

    def mark_link_explored(self, node_id: str, link: Union[str, Link]) -> None:
        node = self.get_node(node_id)
        if node is None:
            return
        if isinstance(link, str):
            match = next(
                (l for l in node.unexplored_links if l.selector == link or l.text == link or l.href == link),
                None,
            )
            if match is not None:
                node.mark_link_explored(match)
        else:
            node.mark_link_explored(link)

    def mark_as_leaf(self, node_id: str) -> None:
        node = self.get_node(node_id)
        if node is not None:
            node.is_leaf = True
            node.unexplored_links = []

    def get_visited_nodes(self) -> List[NavigationNode]:
        return [node for node in self.nodes if node.visit_count > 0]

    def get_visited_titles(self) -> List[str]:
        return [node.title for node in self.get_visited_nodes() if node.title]

    def get_visited_urls(self) -> List[str]:
        return [node.url for node in self.get_visited_nodes()]

    @property
    def size(self) -> int:
        return self._g.number_of_nodes()

    def __len__(self) -> int:
        return self.size

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._g

    @property
    def edge_count(self) -> int:
        return self._g.number_of_edges()

    # ------------------------------------------------------------------
    # traversal ---------------------------------------------------------

    def bfs(self, start_id: str, visitor: Visitor) -> None:
        """Breadth-first walk over children; stops when ``visitor`` returns False."""
        if start_id not in self._g:
            return
        visited: Set[str] = set()
        queue = deque([(start_id, 0, [start_id])])
        while queue:
            node_id, depth, path = queue.popleft()
            if node_id in visited:
                continue
            visited.add(node_id)
            node = self.get_node(node_id)
            if node is None:
                continue
            if visitor(node, depth, path) is False:
                return
            for child_id in sorted(node.children):
                if child_id not in visited:
                    queue.append((child_id, depth + 1, path + [child_id]))

    def dfs(self, start_id: str, visitor: Visitor) -> None:
        """Depth-first walk over children; stops when ``visitor`` returns False."""
        if start_id not in self._g:
            return
        visited: Set[str] = set()
        stack = [(start_id, 0, [start_id])]
        while stack:
            node_id, depth, path = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            node = self.get_node(node_id)
            if node is None:
                continue
            if visitor(node, depth, path) is False:
                return
            # reversed so the smallest child id is visited first
            for child_id in sorted(node.children, reverse=True):
                if child_id not in visited:
                    stack.append((child_id, depth + 1, path + [child_id]))

    def find_best_next_node(self) -> Optional[NavigationNode]:
        """Pick the most promising node that still has unexplored links."""
        best: Optional[NavigationNode] = None
        best_score = float("-inf")
        for node in self.get_unexplored_nodes():
            score = self._score_node(node)
            if score > best_score:
                best, best_score = node, score
        return best

    @staticmethod
    def _score_node(node: NavigationNode) -> float:
        score = -10 * node.depth + 2 * node.unexplored_count - 5 * node.visit_count
        if node.metadata.get("isNavigation"):
            score += 15
        title = (node.title or "").lower()
        url = (node.url or "").lower()
        for keyword, weight in NODE_BOOSTS + NODE_PENALTIES:
            if keyword in title or keyword in url:
                score += weight
        return score

    # ------------------------------------------------------------------
    # persistence -------------------------------------------------------

    def to_json(self) -> Dict[str, Any]:
        return {
            "rootId": self.root_id,
            "nodes": {node.id: node.to_json() for node in self.nodes},
            "edges": [edge.to_json() for edge in self.edges],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "NavigationGraph":
        graph = cls()
        if data.get("metadata"):
            graph.metadata = dict(data["metadata"])
        # nodes are restored verbatim; add_node would re-wire siblings and bump visits
        for node_id, node_data in (data.get("nodes") or {}).items():
            node = NavigationNode.from_json({**node_data, "id": node_data.get("id", node_id)})
            graph._g.add_node(node.id, obj=node)
        for edge_data in data.get("edges") or []:
            edge = NavigationEdge.from_json(edge_data)
            if edge.from_id not in graph._g or edge.to_id not in graph._g:
                raise GraphError(f"Edge {edge.from_id} -> {edge.to_id} references an unknown node")
            graph._g.add_edge(edge.from_id, edge.to_id, obj=edge)
        graph.root_id = data.get("rootId")
        return graph

    def to_networkx(self) -> nx.DiGraph:
        """Copy of the graph with plain attributes only (GraphML friendly)."""
        g = nx.DiGraph()
        for node in self.nodes:
            g.add_node(node.id, url=node.url, title=node.title, depth=node.depth,
                       visit_count=node.visit_count, is_leaf=node.is_leaf)
        for edge in self.edges:
            g.add_edge(edge.from_id, edge.to_id, type=edge.type,
                       traverse_count=edge.traverse_count, via=edge.via.label if edge.via else "")
        return g

    def to_mermaid(self, show_urls: bool = False, show_depth: bool = False) -> str:
        lines = ["graph TD"]
        mermaid_ids = {node.id: f"N{index}" for index, node in enumerate(self.nodes)}

        for node in self.nodes:
            label = (node.title or node.url or node.id).replace('"', "'").replace("[", "").replace("]", "")
            if len(label) > 40:
                label = label[:37] + "..."
            if show_depth:
                label = f"[{node.depth}] {label}"
            if show_urls and node.url:
                label = f"{label}<br/>{urlparse(node.url).path or '/'}"

            style = ""
            if node.id == self.root_id:
                style = ":::root"
            elif node.is_leaf:
                style = ":::leaf"
            elif node.has_unexplored_links():
                style = ":::unexplored"
            lines.append(f'  {mermaid_ids[node.id]}["{label}"]{style}')

        for edge in self.edges:
            label = f'|"{edge.via.text[:20]}"|' if edge.via and edge.via.text else ""
            lines.append(f"  {mermaid_ids[edge.from_id]} -->{label} {mermaid_ids[edge.to_id]}")

        lines.append("")
        lines.append("  classDef root fill:#f9f,stroke:#333,stroke-width:2px")
        lines.append("  classDef leaf fill:#bbf,stroke:#333")
        lines.append("  classDef unexplored fill:#fbb,stroke:#333")
        return "\n".join(lines)

    def summary(self) -> Dict[str, Any]:
        nodes = self.nodes
        root = self.get_root()
        return {
            "totalNodes": self.size,
            "totalEdges": self.edge_count,
            "maxDepth": self.get_max_depth(),
            "visitedNodes": sum(1 for n in nodes if n.visit_count > 0),
            "leafNodes": sum(1 for n in nodes if n.is_leaf),
            "nodesWithUnexploredLinks": len(self.get_unexplored_nodes()),
            "totalUnexploredLinks": sum(n.unexplored_count for n in nodes),
            "rootUrl": root.url if root else None,
        }


def create_node_id(url: str, state_hash: Optional[str] = None) -> str:
    """Normalize ``url`` (and an optional SPA state hash) into a node id."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url
    normalized = f"{parsed.scheme}://{parsed.netloc}{parsed.path.rstrip('/')}"
    if parsed.query:
        normalized += f"?{parsed.query}"
    if state_hash:
        normalized += f"#state:{state_hash}"
    return normalized
