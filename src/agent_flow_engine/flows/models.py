"""Pydantic models for flow definitions.

A flow is a tree of `WorkflowNode`s. `WorkflowNode` is a closed, tagged union
discriminated by `kind`; each variant carries exactly the fields it needs.
Definition models are frozen: passes over the tree return new trees.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Input bindings
# ---------------------------------------------------------------------------


class LiteralInput(_Frozen):
    kind: Literal["literal"] = "literal"
    value: Any = None


class PathInput(_Frozen):
    """Reference to the output of an already executed node."""

    kind: Literal["path"] = "path"
    path: str


class VariableInput(_Frozen):
    """Reference to a loop-scoped variable or a bound run variable."""

    kind: Literal["var"] = "var"
    name: str


class TemplateInput(_Frozen):
    """A string whose `@name` placeholders are replaced by variable values."""

    kind: Literal["template"] = "template"
    template: str


InputBinding = Annotated[
    Union[LiteralInput, PathInput, VariableInput, TemplateInput],
    Field(discriminator="kind"),
]


def literal(value: Any) -> LiteralInput:
    return LiteralInput(value=value)


def path_ref(expression: str) -> PathInput:
    return PathInput(path=expression)


def var(name: str) -> VariableInput:
    return VariableInput(name=name)


def template(text: str) -> TemplateInput:
    return TemplateInput(template=text)


# ---------------------------------------------------------------------------
# Workflow nodes
# ---------------------------------------------------------------------------


class NodeKind(str, Enum):
    STEP = "step"
    SEQUENCE = "sequence"
    BRANCH = "branch"
    LOOP = "loop"
    PARALLEL = "parallel"
    RACE = "race"


class _NodeBase(_Frozen):
    # Editors may attach their own metadata; it is carried through untouched.
    model_config = ConfigDict(frozen=True, extra="allow")

    id: str | None = Field(default=None, description="Stable identifier, assigned once")
    name: str | None = Field(
        default=None, description="Human override for this node's breadcrumb segment"
    )
    label: str | None = Field(default=None, description="Derived breadcrumb label")
    inputs: dict[str, InputBinding] = Field(
        default_factory=dict, description="Declared inputs, in declaration order"
    )


class AgentStep(_NodeBase):
    """Invokes one agent through the agent executor."""

    kind: Literal["step"] = "step"
    agent: str = Field(min_length=1)
    timeout_seconds: float | None = Field(default=None, gt=0)


class SequenceStep(_NodeBase):
    kind: Literal["sequence"] = "sequence"
    children: list[WorkflowNode] = Field(default_factory=list)


class ParallelStep(_NodeBase):
    """Independent children executed concurrently, results kept in declared order."""

    kind: Literal["parallel"] = "parallel"
    children: list[WorkflowNode] = Field(default_factory=list)
    max_concurrency: int | None = Field(default=None, ge=1)


class RaceStep(_NodeBase):
    """Children started concurrently; the first one to succeed provides the output.

    Candidates still running at that point are cancelled and candidates that
    never started are skipped.
    """

    kind: Literal["race"] = "race"
    children: list[WorkflowNode] = Field(default_factory=list)
    max_concurrency: int | None = Field(default=None, ge=1)


class BranchCase(_Frozen):
    when: Any
    node: WorkflowNode


class BranchStep(_NodeBase):
    """Selects exactly one candidate based on the evaluated `condition`."""

    kind: Literal["branch"] = "branch"
    condition: InputBinding
    children: list[BranchCase] = Field(default_factory=list)
    default: WorkflowNode | None = None


class LoopStep(_NodeBase):
    """Runs one fresh instance of `body` per element of `source`."""

    kind: Literal["loop"] = "loop"
    source: InputBinding
    body: WorkflowNode
    item_name: str = "item"
    index_name: str | None = "index"
    max_concurrency: int | None = Field(default=None, ge=1)


WorkflowNode = Annotated[
    Union[AgentStep, SequenceStep, ParallelStep, RaceStep, BranchStep, LoopStep],
    Field(discriminator="kind"),
]

ContainerNode = Union[SequenceStep, ParallelStep, RaceStep, BranchStep, LoopStep]

for _model in (SequenceStep, ParallelStep, RaceStep, BranchCase, BranchStep, LoopStep):
    _model.model_rebuild()


def child_nodes(node: WorkflowNode) -> list[WorkflowNode]:
    """Direct children of `node` in declaration order (branch default last)."""

    if isinstance(node, (SequenceStep, ParallelStep, RaceStep)):
        return list(node.children)
    if isinstance(node, BranchStep):
        nodes = [case.node for case in node.children]
        if node.default is not None:
            nodes.append(node.default)
        return nodes
    if isinstance(node, LoopStep):
        return [node.body]
    return []


def replace_children(node: WorkflowNode, new_children: list[WorkflowNode]) -> WorkflowNode:
    """Return a copy of `node` whose children are `new_children`.

    `new_children` must be in the order produced by `child_nodes`.
    """

    if isinstance(node, (SequenceStep, ParallelStep, RaceStep)):
        return node.model_copy(update={"children": new_children})
    if isinstance(node, BranchStep):
        cases = [
            case.model_copy(update={"node": child})
            for case, child in zip(node.children, new_children)
        ]
        default = new_children[len(cases)] if node.default is not None else None
        return node.model_copy(update={"children": cases, "default": default})
    if isinstance(node, LoopStep):
        return node.model_copy(update={"body": new_children[0]})
    return node


# ---------------------------------------------------------------------------
# Flow-level declarations
# ---------------------------------------------------------------------------


class VariableType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"
    URL = "url"
    JSON = "json"


class FlowInputVariable(_Frozen):
    """A named, typed value supplied once per run."""

    name: str = Field(pattern=r"^\w+$")
    type: VariableType = VariableType.STRING
    required: bool = False
    default: Any = None
    options: list[str] = Field(default_factory=list, description="Allowed values for enums")
    description: str = ""

    @model_validator(mode="after")
    def _enum_needs_options(self) -> FlowInputVariable:
        if self.type is VariableType.ENUM and not self.options:
            raise ValueError(f"Enum variable {self.name!r} must declare options")
        return self


class AgentDefinition(_Frozen):
    """How a named agent is realised by an LLM-backed executor."""

    name: str
    model: str = ""
    system: str = ""
    tools: list[dict[str, Any]] = Field(default_factory=list)


class FlowDefinition(_Frozen):
    """A complete, submittable flow document."""

    code: str
    name: str = ""
    flow: WorkflowNode
    inputs: list[FlowInputVariable] = Field(default_factory=list)
    agents: list[AgentDefinition] = Field(default_factory=list)

    def agent(self, name: str) -> AgentDefinition | None:
        for definition in self.agents:
            if definition.name == name:
                return definition
        return None
