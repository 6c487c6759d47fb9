"""Path expressions addressing nodes in flow and result trees.

Syntax: `$` followed by `.field` segments, where a field may carry one
bracketed index, e.g. `$.input[2].item[0].input[1]`. `$` alone is the root.

Accessors:
    input[i]   i-th child of a sequence/parallel, i-th case of a branch,
               i-th declared input of an agent step
    input      body of a loop
    default    default node of a branch
    item[i]    i-th executed instance of a loop (result trees only)

Inside a loop body, `<loop>.input` addresses the instance being executed
(see `localize_path`).

Resolution is a read-only, left-to-right walk; failures name the segment.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from .errors import MalformedPathError, PathNotFoundError
from .models import (
    AgentStep,
    BranchStep,
    InputBinding,
    LoopStep,
    ParallelStep,
    RaceStep,
    SequenceStep,
    WorkflowNode,
)

if TYPE_CHECKING:
    from .results import NodeRecord, NodeResult

ROOT = "$"
CHILDREN_FIELD = "input"
ITEMS_FIELD = "item"
DEFAULT_FIELD = "default"

_SEGMENT_RE = re.compile(r"^(?P<field>[A-Za-z_]\w*)(?:\[(?P<index>\d+)\])?$")


@dataclass(frozen=True, slots=True)
class PathSegment:
    field: str
    index: int | None = None

    def __str__(self) -> str:
        if self.index is None:
            return self.field
        return f"{self.field}[{self.index}]"


def parse_path(expression: str) -> tuple[PathSegment, ...]:
    """Split an expression into segments, rejecting malformed input early."""

    if not isinstance(expression, str) or not expression:
        raise MalformedPathError(str(expression), "path is empty")
    if not expression.startswith(ROOT):
        raise MalformedPathError(expression, f"path must start with {ROOT!r}")
    if expression == ROOT:
        return ()
    if not expression.startswith(ROOT + "."):
        raise MalformedPathError(expression, f"expected '.' after {ROOT!r}")

    segments: list[PathSegment] = []
    for position, raw in enumerate(expression[2:].split(".")):
        match = _SEGMENT_RE.match(raw)
        if match is None:
            raise MalformedPathError(
                expression, f"segment {position} ({raw!r}) is not a field or field[index]"
            )
        index = match.group("index")
        segments.append(
            PathSegment(field=match.group("field"), index=int(index) if index else None)
        )
    return tuple(segments)


def format_path(segments: tuple[PathSegment, ...] | list[PathSegment]) -> str:
    if not segments:
        return ROOT
    return ROOT + "." + ".".join(str(s) for s in segments)


def child_path(parent: str, field: str, index: int | None = None) -> str:
    segment = PathSegment(field=field, index=index)
    return f"{parent}.{segment}"


def _walk(root: Any, expression: str, descend: Callable[[Any, PathSegment], Any]) -> Any:
    current = root
    for position, segment in enumerate(parse_path(expression)):
        try:
            current = descend(current, segment)
        except _Miss as miss:
            raise PathNotFoundError(expression, str(segment), position, miss.reason) from None
    return current


class _Miss(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _pick(items: list[Any], segment: PathSegment, what: str) -> Any:
    if segment.index is None:
        raise _Miss(f"requires an index into {what}")
    if segment.index >= len(items):
        raise _Miss(f"is out of range ({what} has {len(items)} entries)")
    return items[segment.index]


def _descend_definition(current: Any, segment: PathSegment) -> Any:
    if isinstance(current, AgentStep):
        if segment.field == CHILDREN_FIELD:
            return _pick(list(current.inputs.values()), segment, "declared inputs")
    elif isinstance(current, (SequenceStep, ParallelStep, RaceStep)):
        if segment.field == CHILDREN_FIELD:
            return _pick(current.children, segment, "children")
    elif isinstance(current, BranchStep):
        if segment.field == CHILDREN_FIELD:
            return _pick(current.children, segment, "branch cases").node
        if segment.field == DEFAULT_FIELD and segment.index is None:
            if current.default is None:
                raise _Miss("does not exist (branch has no default)")
            return current.default
    elif isinstance(current, LoopStep):
        if segment.field == CHILDREN_FIELD and segment.index is None:
            return current.body
        if segment.field == ITEMS_FIELD:
            raise _Miss("refers to loop instances, which only exist in results")
    else:
        raise _Miss("cannot be traversed (target is an input binding)")
    raise _Miss(f"is not an attribute of a {current.kind} node")


def resolve_path(tree: WorkflowNode, expression: str) -> WorkflowNode | InputBinding:
    """Return the node (or declared input) of `tree` addressed by `expression`.

    Raises:
        MalformedPathError: the expression is syntactically invalid.
        PathNotFoundError: a segment does not resolve; carries the segment.
    """

    return _walk(tree, expression, _descend_definition)


def _descend_result(current: Any, segment: PathSegment) -> Any:
    from .results import NodeRecord, NodeResult

    if not isinstance(current, (NodeResult, NodeRecord)):
        raise _Miss("cannot be traversed (target is a bound input value)")
    if current.kind == "step":
        if segment.field == CHILDREN_FIELD:
            return _pick(list(current.inputs.values()), segment, "bound inputs")
    elif current.kind == "loop":
        if segment.field == ITEMS_FIELD:
            return _pick(current.items, segment, "loop instances")
    elif segment.field == CHILDREN_FIELD:
        return _pick(current.children, segment, "children")
    elif segment.field == DEFAULT_FIELD and segment.index is None and current.kind == "branch":
        if current.default is None:
            raise _Miss("does not exist (branch has no default)")
        return current.default
    raise _Miss(f"is not an attribute of a {current.kind} result")


def resolve_result_path(tree: NodeResult | NodeRecord, expression: str) -> Any:
    """Resolve `expression` against a (possibly in-flight) result tree.

    Returns a result node, or a bound input value when the path ends on a
    step's `input[i]`.
    """

    return _walk(tree, expression, _descend_result)


def localize_path(expression: str, instances: Mapping[str, int]) -> str:
    """Rewrite `expression` for the loop instances currently executing.

    `instances` maps the path of every enclosing loop to the index of the
    instance being executed. A loop's body (`<loop>.input`) is rewritten to
    that instance (`<loop>.item[i]`), so steps in a body address their own
    siblings with definition-style paths. Naming a different instance of an
    enclosing loop is rejected, since sibling instances are independent.

    Raises:
        MalformedPathError: the expression is syntactically invalid.
        PathNotFoundError: the expression names another instance of an
            enclosing loop.
    """

    segments = list(parse_path(expression))
    if not instances:
        return expression
    for position, segment in enumerate(segments):
        current = instances.get(format_path(segments[:position]))
        if current is None:
            continue
        if segment.field == CHILDREN_FIELD and segment.index is None:
            segments[position] = PathSegment(field=ITEMS_FIELD, index=current)
        elif segment.field == ITEMS_FIELD and segment.index is not None:
            if segment.index != current:
                raise PathNotFoundError(
                    expression,
                    str(segment),
                    position,
                    f"refers to another instance of a running loop (this is instance {current})",
                )
    return format_path(segments)
