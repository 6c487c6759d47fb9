"""Binding of run variables and step inputs.

Both halves are pure: `bind_variables` validates what the caller supplied
against the flow's declarations once per run, and `bind_inputs` resolves one
node's declared inputs against the results produced so far.
"""

from __future__ import annotations

import copy
import json
import re
from collections.abc import Iterator, Mapping, Sequence
from types import MappingProxyType
from typing import Any, Literal, Optional, Union

from pydantic import (
    AnyUrl,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    create_model,
)

from .errors import BindingError, MalformedPathError, PathNotFoundError
from .models import (
    FlowInputVariable,
    InputBinding,
    LiteralInput,
    PathInput,
    TemplateInput,
    VariableInput,
    VariableType,
    WorkflowNode,
)
from .paths import localize_path, resolve_result_path
from .results import NodeRecord, NodeResult
from .status import NodeStatus

VARIABLE_PLACEHOLDER = re.compile(r"@(\w+)")


def _annotation_for(variable: FlowInputVariable) -> Any:
    if variable.type is VariableType.STRING:
        return StrictStr
    if variable.type is VariableType.NUMBER:
        return Union[StrictInt, StrictFloat]
    if variable.type is VariableType.BOOLEAN:
        return StrictBool
    if variable.type is VariableType.ENUM:
        return Literal[tuple(variable.options)]
    if variable.type is VariableType.URL:
        return AnyUrl
    return Any


class BoundVariables(Mapping[str, Any]):
    """Read-only variable values for one run.

    Variables that failed validation are remembered with their problem so the
    failure surfaces on the node that actually references them.
    """

    def __init__(
        self,
        values: Mapping[str, Any] | None = None,
        problems: Mapping[str, str] | None = None,
    ) -> None:
        self._values = MappingProxyType(dict(values or {}))
        self._problems = MappingProxyType(dict(problems or {}))

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"BoundVariables({dict(self._values)!r}, problems={dict(self._problems)!r})"

    @property
    def problems(self) -> Mapping[str, str]:
        return self._problems

    def knows(self, name: str) -> bool:
        return name in self._values or name in self._problems

    def lookup(self, name: str, *, input_name: str | None = None) -> Any:
        if name in self._problems:
            raise BindingError(self._problems[name], input_name=input_name, variable=name)
        if name not in self._values:
            raise BindingError(
                f"Unknown variable {name!r}", input_name=input_name, variable=name
            )
        return self._values[name]


def bind_variables(
    declared: Sequence[FlowInputVariable],
    supplied: Mapping[str, Any] | None = None,
) -> BoundVariables:
    """Apply defaults and validate supplied values against their declared types.

    Validation uses a pydantic model created for the declarations, in strict
    mode for scalar types. Supplied values with no declaration pass through
    unchecked.
    """

    supplied = dict(supplied or {})
    fields: dict[str, Any] = {}
    data: dict[str, Any] = {}
    by_alias: dict[str, FlowInputVariable] = {}

    for position, variable in enumerate(declared):
        annotation = _annotation_for(variable)
        if variable.required:
            fields[f"v{position}"] = (annotation, Field(alias=variable.name))
        else:
            fields[f"v{position}"] = (
                Optional[annotation],
                Field(default=None, alias=variable.name),
            )
        by_alias[variable.name] = variable
        by_alias[f"v{position}"] = variable

        if variable.name in supplied:
            data[variable.name] = supplied[variable.name]
        elif variable.default is not None:
            data[variable.name] = variable.default

    problems: dict[str, str] = {}
    if fields:
        schema = create_model("FlowVariables", **fields)
        try:
            schema.model_validate(data)
        except ValidationError as exc:
            for error in exc.errors():
                loc = error.get("loc") or ("",)
                variable = by_alias.get(str(loc[0]))
                if variable is None or variable.name in problems:
                    continue
                if error.get("type") == "missing":
                    problems[variable.name] = (
                        f"Required variable {variable.name!r} has no value and no default"
                    )
                else:
                    problems[variable.name] = (
                        f"Variable {variable.name!r} must be of type {variable.type.value}: "
                        f"{error.get('msg', 'invalid value')}"
                    )

    values: dict[str, Any] = {
        name: value for name, value in supplied.items() if name not in by_alias
    }
    for variable in declared:
        if variable.name not in problems:
            values[variable.name] = data.get(variable.name)
    return BoundVariables(values, problems)


def _lookup(
    name: str,
    variables: BoundVariables,
    scope: Mapping[str, Any] | None,
    input_name: str | None,
) -> Any:
    if scope is not None and name in scope:
        return scope[name]
    return variables.lookup(name, input_name=input_name)


def _format_for_template(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def _render_template(
    text: str,
    variables: BoundVariables,
    scope: Mapping[str, Any] | None,
    input_name: str | None,
) -> str:
    def substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if (scope is None or name not in scope) and not variables.knows(name):
            # Not a variable reference (e.g. an e-mail address); keep it verbatim.
            return match.group(0)
        return _format_for_template(_lookup(name, variables, scope, input_name))

    return VARIABLE_PLACEHOLDER.sub(substitute, text)


def _resolve_output(
    expression: str,
    results: NodeRecord | NodeResult | None,
    input_name: str | None,
    instances: Mapping[str, int] | None = None,
) -> Any:
    if results is None:
        raise BindingError(
            f"Path {expression!r} cannot be resolved: nothing has executed yet",
            input_name=input_name,
            path=expression,
        )
    try:
        target = resolve_result_path(results, localize_path(expression, instances or {}))
    except (MalformedPathError, PathNotFoundError) as exc:
        raise BindingError(str(exc), input_name=input_name, path=expression) from exc

    if not isinstance(target, (NodeRecord, NodeResult)):
        return copy.deepcopy(target)
    if target.status in (NodeStatus.PENDING, NodeStatus.RUNNING):
        raise BindingError(
            f"Path {expression!r} refers to a node that has not executed yet "
            f"(status {target.status.value})",
            input_name=input_name,
            path=expression,
        )
    if target.status is not NodeStatus.SUCCEEDED:
        raise BindingError(
            f"Path {expression!r} refers to a node that did not succeed "
            f"(status {target.status.value})",
            input_name=input_name,
            path=expression,
        )
    # Recorded outputs are never handed out by reference.
    return copy.deepcopy(target.output)


def evaluate_binding(
    binding: InputBinding,
    results: NodeRecord | NodeResult | None,
    variables: BoundVariables,
    scope: Mapping[str, Any] | None = None,
    *,
    input_name: str | None = None,
    instances: Mapping[str, int] | None = None,
) -> Any:
    """Produce the value of a single binding.

    `instances` maps enclosing loop paths to the instance being executed; path
    bindings are resolved relative to those instances.
    """

    if isinstance(binding, LiteralInput):
        return copy.deepcopy(binding.value)
    if isinstance(binding, PathInput):
        return _resolve_output(binding.path, results, input_name, instances)
    if isinstance(binding, VariableInput):
        return copy.deepcopy(_lookup(binding.name, variables, scope, input_name))
    if isinstance(binding, TemplateInput):
        return _render_template(binding.template, variables, scope, input_name)
    raise TypeError(f"Unsupported input binding: {binding!r}")


def bind_inputs(
    node: WorkflowNode,
    results: NodeRecord | NodeResult | None,
    variables: BoundVariables,
    scope: Mapping[str, Any] | None = None,
    *,
    instances: Mapping[str, int] | None = None,
) -> dict[str, Any]:
    """Resolve all of `node`'s declared inputs, in declaration order.

    Raises:
        BindingError: the first input that cannot be bound.
    """

    return {
        name: evaluate_binding(
            binding, results, variables, scope, input_name=name, instances=instances
        )
        for name, binding in node.inputs.items()
    }
