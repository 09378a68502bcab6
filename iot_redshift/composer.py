"""
Stack Composer
Declarative resource graph with deferred references, automatic dependency
inference, topological ordering and CloudFormation template rendering.

Resources are declared once per build. Values produced by other resources
(ARNs, hostnames, IDs) are carried as DeferredReference handles and only
turned into Ref / Fn::GetAtt expressions when the graph is rendered.
"""

import heapq
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from iot_redshift.errors import (
    CyclicDependencyError,
    DuplicateResourceError,
    InvalidParameterError,
    StackCompositionError,
    UnresolvedDependencyError,
    ConfigurationError,
)


logger = logging.getLogger(__name__)

TEMPLATE_FORMAT_VERSION = "2010-09-09"
PARAMETER_TYPES = ("String", "Number")


@dataclass(frozen=True)
class DeferredReference:
    """
    Placeholder for a value that only exists once the producing resource is
    materialized. attribute=None stands for the resource's Ref value.
    """
    logical_id: str
    attribute: Optional[str] = None

    def render(self) -> Dict[str, Any]:
        if self.attribute is None:
            return {"Ref": self.logical_id}
        return {"Fn::GetAtt": [self.logical_id, self.attribute]}


@dataclass(frozen=True)
class PseudoParameter:
    """CloudFormation pseudo parameter, always available without declaration"""
    name: str

    def render(self) -> Dict[str, Any]:
        return {"Ref": self.name}


class Aws:
    """Pseudo parameters usable inside property bags"""
    ACCOUNT_ID = PseudoParameter("AWS::AccountId")
    PARTITION = PseudoParameter("AWS::Partition")


@dataclass(frozen=True)
class Parameter:
    """
    Stack parameter supplied by the deployer

    Referenced symbolically (Ref) inside resources; the value is only
    checked against its type and range when the template is rendered.
    """
    name: str
    type: str = "String"
    default: Any = None
    description: str = ""
    no_echo: bool = False
    allowed_values: Tuple[Any, ...] = ()
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    allowed_pattern: Optional[str] = None

    def __post_init__(self):
        if self.type not in PARAMETER_TYPES:
            raise ConfigurationError(
                f"Parameter '{self.name}' has unsupported type '{self.type}'"
            )

    def render(self) -> Dict[str, Any]:
        return {"Ref": self.name}

    def validate(self, value: Any) -> Any:
        """
        Check a value against the declared type and constraints

        Returns:
            The value unchanged

        Raises:
            InvalidParameterError: value is not acceptable
        """
        if self.type == "Number":
            if isinstance(value, bool):
                raise InvalidParameterError(
                    f"Parameter '{self.name}' expects a Number, got {value!r}"
                )
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise InvalidParameterError(
                    f"Parameter '{self.name}' expects a Number, got {value!r}"
                ) from None
            if self.min_value is not None and number < self.min_value:
                raise InvalidParameterError(
                    f"Parameter '{self.name}' must be >= {self.min_value}, got {value!r}"
                )
            if self.max_value is not None and number > self.max_value:
                raise InvalidParameterError(
                    f"Parameter '{self.name}' must be <= {self.max_value}, got {value!r}"
                )
        else:
            if not isinstance(value, str):
                raise InvalidParameterError(
                    f"Parameter '{self.name}' expects a String, got {value!r}"
                )
            if self.allowed_pattern and not re.fullmatch(self.allowed_pattern, value):
                raise InvalidParameterError(
                    f"Parameter '{self.name}' does not match pattern {self.allowed_pattern}"
                )

        if self.allowed_values and str(value) not in {str(v) for v in self.allowed_values}:
            raise InvalidParameterError(
                f"Parameter '{self.name}' must be one of {list(self.allowed_values)}, got {value!r}"
            )
        return value

    def declaration(self, default: Any = None) -> Dict[str, Any]:
        """Parameters-section entry for this parameter"""
        entry: Dict[str, Any] = {"Type": self.type}
        if default is not None:
            entry["Default"] = default
        if self.description:
            entry["Description"] = self.description
        if self.no_echo:
            entry["NoEcho"] = "true"
        if self.allowed_values:
            entry["AllowedValues"] = list(self.allowed_values)
        if self.min_value is not None:
            entry["MinValue"] = self.min_value
        if self.max_value is not None:
            entry["MaxValue"] = self.max_value
        if self.allowed_pattern:
            entry["AllowedPattern"] = self.allowed_pattern
        return entry


@dataclass(frozen=True)
class Join:
    """Deferred string interpolation (Fn::Join)"""
    parts: Tuple[Any, ...]
    delimiter: str = ""

    @classmethod
    def of(cls, *parts: Any, delimiter: str = "") -> "Join":
        return cls(tuple(parts), delimiter)

    def _flatten(self) -> Iterator[Any]:
        for part in self.parts:
            if isinstance(part, Join) and part.delimiter == self.delimiter == "":
                yield from part._flatten()
            else:
                yield part

    def render(self) -> Any:
        rendered = []
        for part in self._flatten():
            value = render_value(part)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                value = str(value)
            # Adjacent literals collapse when there is no delimiter
            if (not self.delimiter and rendered and isinstance(value, str)
                    and isinstance(rendered[-1], str)):
                rendered[-1] += value
            else:
                rendered.append(value)

        if all(isinstance(value, str) for value in rendered):
            return self.delimiter.join(rendered)
        return {"Fn::Join": [self.delimiter, rendered]}


@dataclass(frozen=True)
class Intrinsic:
    """Any other intrinsic function call, e.g. Fn::Select"""
    function: str
    argument: Any

    def render(self) -> Dict[str, Any]:
        return {self.function: render_value(self.argument)}


def get_azs(region: str = "") -> Intrinsic:
    return Intrinsic("Fn::GetAZs", region)


def select(index: int, values: Any) -> Intrinsic:
    return Intrinsic("Fn::Select", [index, values])


_SYMBOLIC = (DeferredReference, PseudoParameter, Parameter, Join, Intrinsic)


def render_value(value: Any) -> Any:
    """Turn a property bag into plain template JSON; None entries are dropped"""
    if isinstance(value, _SYMBOLIC):
        return value.render()
    if isinstance(value, Mapping):
        return {
            key: render_value(item)
            for key, item in value.items()
            if item is not None
        }
    if isinstance(value, (list, tuple)):
        return [render_value(item) for item in value]
    return value


def iter_references(value: Any) -> Iterator[Any]:
    """Yield every DeferredReference and Parameter embedded in a value"""
    if isinstance(value, (DeferredReference, Parameter)):
        yield value
    elif isinstance(value, Join):
        for part in value.parts:
            yield from iter_references(part)
    elif isinstance(value, Intrinsic):
        yield from iter_references(value.argument)
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


class ResourceDescriptor:
    """
    Declarative description of one cloud resource

    The dependency set is not stored: it is derived from the deferred
    references embedded in the property bag plus any explicit depends_on.
    """

    # Resources whose properties may point at resources declared later
    allows_forward_references = False

    def __init__(self, logical_id: str, kind: str,
                 properties: Optional[Dict[str, Any]] = None,
                 depends_on: Iterable[Any] = (),
                 deletion_policy: Optional[str] = None,
                 update_replace_policy: Optional[str] = None):
        if not re.fullmatch(r"[A-Za-z0-9]+", logical_id or ""):
            raise StackCompositionError(
                f"Logical ID '{logical_id}' must be non-empty and alphanumeric"
            )
        self.logical_id = logical_id
        self.kind = kind
        self._properties = dict(properties or {})
        self.depends_on = tuple(
            item.logical_id if isinstance(item, ResourceDescriptor) else item
            for item in depends_on
        )
        self.deletion_policy = deletion_policy
        self.update_replace_policy = update_replace_policy

    @property
    def properties(self) -> Mapping[str, Any]:
        """Read-only view; a descriptor's properties are fixed once declared"""
        return MappingProxyType(self._properties)

    @property
    def ref(self) -> DeferredReference:
        return DeferredReference(self.logical_id)

    def get_att(self, attribute: str) -> DeferredReference:
        return DeferredReference(self.logical_id, attribute)

    def references(self) -> List[DeferredReference]:
        return [
            item for item in iter_references(self.properties)
            if isinstance(item, DeferredReference)
        ]

    def parameters(self) -> List[Parameter]:
        return [
            item for item in iter_references(self.properties)
            if isinstance(item, Parameter)
        ]

    def dependency_ids(self) -> FrozenSet[str]:
        return frozenset(ref.logical_id for ref in self.references()) | frozenset(self.depends_on)

    def companions(self) -> Tuple["ResourceDescriptor", ...]:
        """Resources declared together with this one"""
        return ()

    def is_renderable(self) -> bool:
        return True

    def render(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"Type": self.kind}
        properties = render_value(self.properties)
        if properties:
            entry["Properties"] = properties
        if self.depends_on:
            entry["DependsOn"] = list(self.depends_on)
        if self.deletion_policy:
            entry["DeletionPolicy"] = self.deletion_policy
        if self.update_replace_policy:
            entry["UpdateReplacePolicy"] = self.update_replace_policy
        return entry

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.logical_id!r}, {self.kind!r})"


@dataclass(frozen=True)
class Output:
    """Named, user-facing stack output"""
    name: str
    value: Any
    description: Optional[str] = None
    export_name: Optional[str] = None

    @property
    def key(self) -> str:
        return re.sub(r"[^A-Za-z0-9]", "", self.name)


class OutputResolver:
    """Renders outputs in declaration order"""

    def resolve(self, outputs: Iterable[Output]) -> Dict[str, Dict[str, Any]]:
        rendered: Dict[str, Dict[str, Any]] = {}
        for output in outputs:
            key = output.key
            if not key:
                raise StackCompositionError(
                    f"Output name '{output.name}' has no alphanumeric characters"
                )
            if key in rendered:
                raise StackCompositionError(
                    f"Output '{output.name}' collides with another output named '{key}'"
                )
            entry: Dict[str, Any] = {"Value": render_value(output.value)}
            if output.description:
                entry["Description"] = output.description
            if output.export_name:
                entry["Export"] = {"Name": output.export_name}
            rendered[key] = entry
        return rendered


class StackGraph:
    """
    Resource graph for one stack-build invocation

    Declaration is eager about references: a resource may only embed
    references to resources and parameters already in the graph, unless it
    explicitly allows forward references (IAM policies). Every reference is
    checked again, and the resources ordered topologically, on render.
    """

    def __init__(self, stack_name: str, description: Optional[str] = None,
                 region: Optional[str] = None):
        self.stack_name = stack_name
        self.description = description
        self.region = region
        self._parameters: Dict[str, Parameter] = {}
        self._resources: Dict[str, ResourceDescriptor] = {}
        self._outputs: List[Output] = []

    @property
    def parameters(self) -> List[Parameter]:
        return list(self._parameters.values())

    @property
    def resources(self) -> List[ResourceDescriptor]:
        return list(self._resources.values())

    @property
    def outputs(self) -> List[Output]:
        return list(self._outputs)

    def __contains__(self, logical_id: str) -> bool:
        return logical_id in self._resources

    def get(self, logical_id: str) -> ResourceDescriptor:
        try:
            return self._resources[logical_id]
        except KeyError:
            raise UnresolvedDependencyError(
                f"Resource '{logical_id}' is not declared in stack {self.stack_name}"
            ) from None

    def add_parameter(self, parameter: Parameter) -> Parameter:
        if parameter.name in self._parameters or parameter.name in self._resources:
            raise DuplicateResourceError(
                f"'{parameter.name}' is already declared in stack {self.stack_name}"
            )
        self._parameters[parameter.name] = parameter
        return parameter

    def add(self, descriptor: ResourceDescriptor) -> ResourceDescriptor:
        """Declare a resource (and its companions) in the graph"""
        logical_id = descriptor.logical_id
        if logical_id in self._resources or logical_id in self._parameters:
            raise DuplicateResourceError(
                f"'{logical_id}' is already declared in stack {self.stack_name}"
            )
        if not descriptor.allows_forward_references:
            self._check_declared(descriptor.references(), descriptor.parameters(),
                                 f"resource {logical_id}")
            self._check_declared(
                [DeferredReference(item) for item in descriptor.depends_on], [],
                f"resource {logical_id}",
            )

        self._resources[logical_id] = descriptor
        logger.debug("Declared %s (%s) in %s", logical_id, descriptor.kind, self.stack_name)

        for companion in descriptor.companions():
            self.add(companion)
        return descriptor

    def add_output(self, output: Output) -> Output:
        references = list(iter_references(output.value))
        self._check_declared(
            [item for item in references if isinstance(item, DeferredReference)],
            [item for item in references if isinstance(item, Parameter)],
            f"output {output.name}",
        )
        self._outputs.append(output)
        return output

    def require(self, *descriptors: ResourceDescriptor) -> None:
        """Fail unless every given resource is already declared in this graph"""
        for descriptor in descriptors:
            if self._resources.get(descriptor.logical_id) is not descriptor:
                raise UnresolvedDependencyError(
                    f"{descriptor.kind} '{descriptor.logical_id}' must be declared "
                    f"in stack {self.stack_name} before it is used"
                )

    def dependencies(self, logical_id: str) -> FrozenSet[str]:
        return self.get(logical_id).dependency_ids()

    def validate(self) -> None:
        """Check that every reference in the graph points at a declared value"""
        for descriptor in self._resources.values():
            self._check_declared(
                descriptor.references()
                + [DeferredReference(item) for item in descriptor.depends_on],
                descriptor.parameters(),
                f"resource {descriptor.logical_id}",
            )
        for output in self._outputs:
            references = list(iter_references(output.value))
            self._check_declared(
                [item for item in references if isinstance(item, DeferredReference)],
                [item for item in references if isinstance(item, Parameter)],
                f"output {output.name}",
            )

    def topological_order(self) -> List[ResourceDescriptor]:
        """
        Resources ordered so producers come before consumers

        Ties are broken by declaration order, so the result is deterministic.
        """
        self.validate()
        position = {logical_id: index for index, logical_id in enumerate(self._resources)}
        pending = {}
        dependents: Dict[str, List[str]] = {logical_id: [] for logical_id in self._resources}
        for logical_id, descriptor in self._resources.items():
            dependencies = descriptor.dependency_ids() - {logical_id}
            if logical_id in descriptor.dependency_ids():
                raise CyclicDependencyError(f"Resource '{logical_id}' references itself")
            pending[logical_id] = len(dependencies)
            for dependency in dependencies:
                dependents[dependency].append(logical_id)

        ready = [(position[lid], lid) for lid, count in pending.items() if count == 0]
        heapq.heapify(ready)
        order = []
        while ready:
            _, logical_id = heapq.heappop(ready)
            order.append(self._resources[logical_id])
            for dependent in dependents[logical_id]:
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    heapq.heappush(ready, (position[dependent], dependent))

        if len(order) != len(self._resources):
            stuck = [lid for lid, count in pending.items() if count > 0]
            raise CyclicDependencyError(
                f"Circular references between resources: {', '.join(stuck)}"
            )
        return order

    def render(self, parameter_values: Optional[Dict[str, Any]] = None,
               resolver: Optional[OutputResolver] = None) -> Dict[str, Any]:
        """
        Render the complete CloudFormation template

        Args:
            parameter_values: Deployer-supplied values, validated and written
                as parameter defaults
            resolver: Output resolver, run after all resources are rendered

        Returns:
            Template document
        """
        values = dict(parameter_values or {})
        unknown = sorted(set(values) - set(self._parameters))
        if unknown:
            raise InvalidParameterError(
                f"Unknown parameter(s) for stack {self.stack_name}: {', '.join(unknown)}"
            )

        parameters = {}
        for parameter in self._parameters.values():
            default = values.get(parameter.name, parameter.default)
            if default is not None:
                parameter.validate(default)
            parameters[parameter.name] = parameter.declaration(default)

        resources = {
            descriptor.logical_id: descriptor.render()
            for descriptor in self.topological_order()
            if descriptor.is_renderable()
        }
        outputs = (resolver or OutputResolver()).resolve(self._outputs)

        template: Dict[str, Any] = {"AWSTemplateFormatVersion": TEMPLATE_FORMAT_VERSION}
        if self.description:
            template["Description"] = self.description
        if parameters:
            template["Parameters"] = parameters
        template["Resources"] = resources
        if outputs:
            template["Outputs"] = outputs

        logger.info(
            "Rendered stack %s: %d parameters, %d resources, %d outputs",
            self.stack_name, len(parameters), len(resources), len(outputs),
        )
        return template

    def to_json(self, parameter_values: Optional[Dict[str, Any]] = None,
                indent: int = 2) -> str:
        return json.dumps(self.render(parameter_values), indent=indent)

    def _check_declared(self, references: List[DeferredReference],
                        parameters: List[Parameter], consumer: str) -> None:
        for reference in references:
            if reference.logical_id not in self._resources:
                raise UnresolvedDependencyError(
                    f"{consumer} references '{reference.logical_id}' which is not "
                    f"declared in stack {self.stack_name}"
                )
        for parameter in parameters:
            if self._parameters.get(parameter.name) != parameter:
                raise UnresolvedDependencyError(
                    f"{consumer} uses parameter '{parameter.name}' which is not "
                    f"declared in stack {self.stack_name}"
                )
