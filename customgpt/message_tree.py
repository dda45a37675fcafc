"""
Rebuild display order from a chat's flat, parent-linked message list.

Messages point at their parent by id. The synthetic system message ("root")
is never shown, but its children are. Parents that no longer exist make a
message a root of its own. Traversal tracks visited ids, so a malformed
parent cycle ends instead of looping.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from customgpt.storage.models import Message


@dataclass
class Node:
    message: Message
    children: list[str] = field(default_factory=list)


def build_tree(messages: list[Message]) -> tuple[dict[str, Node], list[str]]:
    """
    Adjacency map id -> Node (children in stored order), plus root ids.
    Duplicate ids keep the first occurrence.
    """
    nodes: dict[str, Node] = {}
    order: list[str] = []
    for msg in messages:
        if msg.message_id in nodes:
            continue
        nodes[msg.message_id] = Node(msg)
        order.append(msg.message_id)

    roots: list[str] = []
    for msg_id in order:
        node = nodes[msg_id]
        parent = node.message.parent_id
        if parent and parent != msg_id and parent in nodes:
            nodes[parent].children.append(msg_id)
        else:
            roots.append(msg_id)
    return nodes, roots


def display_order(messages: list[Message]) -> list[Message]:
    """Depth-first, parent-first order for display, system root excluded."""
    nodes, roots = build_tree(messages)
    ordered: list[Message] = []
    visited: set[str] = set()

    def visit(start: str):
        stack = [start]
        while stack:
            msg_id = stack.pop()
            if msg_id in visited:
                continue
            visited.add(msg_id)
            node = nodes[msg_id]
            if not node.message.is_root:
                ordered.append(node.message)
            stack.extend(reversed(node.children))

    for root_id in roots:
        visit(root_id)

    # Pure cycles have no root; reach them in stored order
    for msg_id in nodes:
        if msg_id not in visited:
            visit(msg_id)
    return ordered

