"""
CDK bridge
Materializes a rendered StackGraph as a CDK Stack so `cdk synth` and
`cdk deploy` handle the deploy step
"""

import logging
from typing import Any, Dict, Optional

from aws_cdk import (
    CfnDeletionPolicy,
    CfnOutput,
    CfnParameter,
    CfnResource,
    Fn,
    Stack,
    Token,
)
from constructs import Construct

from iot_redshift.composer import StackGraph
from iot_redshift.errors import StackCompositionError


logger = logging.getLogger(__name__)

_DELETION_POLICIES = {
    "Delete": CfnDeletionPolicy.DELETE,
    "Retain": CfnDeletionPolicy.RETAIN,
    "Snapshot": CfnDeletionPolicy.SNAPSHOT,
}


def to_token(value: Any) -> str:
    """Express rendered template JSON as a CDK string token"""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, dict) and len(value) == 1:
        function, argument = next(iter(value.items()))
        if function == "Ref":
            return Fn.ref(argument)
        if function == "Fn::GetAtt":
            return Token.as_string(Fn.get_att(argument[0], argument[1]))
        if function == "Fn::Join":
            return Fn.join(argument[0], [to_token(part) for part in argument[1]])
        if function == "Fn::Select":
            return Fn.select(argument[0], Token.as_list(argument[1]))
    raise StackCompositionError(f"Cannot express {value!r} as a CDK token")


def _parameter_options(declaration: Dict[str, Any]) -> Dict[str, Any]:
    options = {
        "type": declaration["Type"],
        "default": declaration.get("Default"),
        "description": declaration.get("Description"),
        "no_echo": declaration.get("NoEcho") == "true" or None,
        "allowed_values": [str(v) for v in declaration.get("AllowedValues", [])] or None,
        "min_value": declaration.get("MinValue"),
        "max_value": declaration.get("MaxValue"),
        "allowed_pattern": declaration.get("AllowedPattern"),
    }
    return {key: value for key, value in options.items() if value is not None}


class ComposedStack(Stack):
    """
    CDK stack built from a StackGraph

    Every graph element keeps its logical ID, so references rendered by the
    graph resolve unchanged inside the synthesized template.
    """

    def __init__(self, scope: Construct, construct_id: str, graph: StackGraph,
                 parameter_values: Optional[Dict[str, Any]] = None, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.graph = graph
        template = graph.render(parameter_values)
        if template.get("Description"):
            self.template_options.description = template["Description"]

        self.parameters: Dict[str, CfnParameter] = {}
        for name, declaration in template.get("Parameters", {}).items():
            self.parameters[name] = CfnParameter(self, name, **_parameter_options(declaration))

        self.cfn_resources: Dict[str, CfnResource] = {}
        for logical_id, entry in template["Resources"].items():
            resource = CfnResource(
                self, logical_id,
                type=entry["Type"],
                properties=entry.get("Properties"),
            )
            resource.override_logical_id(logical_id)
            for dependency in entry.get("DependsOn", []):
                resource.add_dependency(self.cfn_resources[dependency])
            if "DeletionPolicy" in entry:
                resource.cfn_options.deletion_policy = _DELETION_POLICIES[entry["DeletionPolicy"]]
            if "UpdateReplacePolicy" in entry:
                resource.cfn_options.update_replace_policy = _DELETION_POLICIES[entry["UpdateReplacePolicy"]]
            self.cfn_resources[logical_id] = resource

        for key, entry in template.get("Outputs", {}).items():
            CfnOutput(
                self, key,
                value=to_token(entry["Value"]),
                description=entry.get("Description"),
                export_name=entry.get("Export", {}).get("Name"),
            )

        logger.info("Synthesizing %s with %d resources", construct_id, len(self.cfn_resources))
