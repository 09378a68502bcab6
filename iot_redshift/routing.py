"""
Routing Rule Builder
IoT thing, the shadow topic it reports on, and the topic rule forwarding
shadow updates into the delivery stream
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from iot_redshift.access import Role
from iot_redshift.composer import ResourceDescriptor, StackGraph
from iot_redshift.delivery import DeliveryStream
from iot_redshift.errors import MissingPermissionError


logger = logging.getLogger(__name__)

IOT_SQL_VERSION = "2016-03-23"
PUT_RECORD = "firehose:PutRecord"


def shadow_update_topic(thing_name: str) -> str:
    return f"$aws/things/{thing_name}/shadow/update/accepted"


@dataclass(frozen=True)
class RoutingQuery:
    """
    SELECT projection over an MQTT topic

    The SQL is passed to IoT Core untouched; syntax errors surface when the
    rule is deployed.
    """
    projections: Tuple[str, ...]
    topic: str
    condition: Optional[str] = None

    @property
    def sql(self) -> str:
        statement = f"SELECT {', '.join(self.projections)} FROM '{self.topic}'"
        if self.condition:
            statement += f" WHERE {self.condition}"
        return statement


def temperature_query(thing_name: str) -> RoutingQuery:
    """Thing name, reported temperature and a UTC timestamp per shadow update"""
    return RoutingQuery(
        projections=(
            "topic(3) as thing_name",
            "state.reported.temperature as temperature",
            "parse_time(\"YYYY-MM-dd hh:mm:ss\", timestamp(), \"UTC\") as updated_at",
        ),
        topic=shadow_update_topic(thing_name),
    )


def build_thing(graph: StackGraph, logical_id: str, thing_name: str) -> ResourceDescriptor:
    return graph.add(ResourceDescriptor(logical_id, "AWS::IoT::Thing", {
        "ThingName": thing_name,
    }))


def build_rule(graph: StackGraph, logical_id: str, query: RoutingQuery,
               sink: DeliveryStream, sink_role: Role,
               rule_name: Optional[str] = None,
               enabled: bool = True) -> ResourceDescriptor:
    """
    Declare a topic rule that forwards matching messages to the delivery stream

    Raises:
        MissingPermissionError: sink_role may not put records into the sink
    """
    graph.require(sink.stream, sink_role)
    if not sink_role.allows(PUT_RECORD, sink.arn):
        raise MissingPermissionError(
            f"Role {sink_role.logical_id} is not allowed {PUT_RECORD} on "
            f"{sink.stream.logical_id}; rule {logical_id} could not deliver"
        )

    # The PutRecord grant lives in the role's default policy, not the role itself
    rule = graph.add(ResourceDescriptor(logical_id, "AWS::IoT::TopicRule", {
        "RuleName": rule_name,
        "TopicRulePayload": {
            "AwsIotSqlVersion": IOT_SQL_VERSION,
            "Sql": query.sql,
            "Actions": [{
                "Firehose": {
                    "DeliveryStreamName": sink.name,
                    "RoleArn": sink_role.arn,
                    "Separator": "\n",
                },
            }],
            "RuleDisabled": not enabled,
        },
    }, depends_on=[sink_role.default_policy]))
    logger.info("Declared topic rule %s on %s", rule_name or logical_id, query.topic)
    return rule
