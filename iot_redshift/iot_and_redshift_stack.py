"""
IoT and Redshift Stack: IoT Core → Firehose → S3 → Redshift
Shadow updates of the temperature sensor are routed through a Firehose
delivery stream into a single-AZ Redshift cluster
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from constructs import Construct

from iot_redshift.access import PolicyStatement, build_role, firehose_delivery_statements
from iot_redshift.composed_stack import ComposedStack
from iot_redshift.composer import DeferredReference, Join, Output, Parameter, StackGraph
from iot_redshift.config import AppConfig, WarehouseConfig
from iot_redshift.delivery import build_delivery_stream
from iot_redshift.network import NetworkSpec, SubnetRole, SubnetSpec, build_network
from iot_redshift.regions import RegionCidrTable, load_region_table
from iot_redshift.routing import build_rule, build_thing, temperature_query
from iot_redshift.storage import (
    IngressPort,
    build_bucket,
    build_log_destination,
    build_redshift_cluster,
    build_security_group,
)


DELIVERY_STREAM_ID = "RedshiftDeliveryStream"
LOG_GROUP_ID = "RedshiftDeliveryLogGroup"
S3_LOG_STREAM = "S3Delivery"
REDSHIFT_LOG_STREAM = "RedshiftDelivery"

# 8-64 printable characters with upper case, lower case and a digit
REDSHIFT_PASSWORD_PATTERN = r"(?=.*[A-Z])(?=.*[a-z])(?=.*[0-9])[^\s'\"\\/@]{8,64}"


@dataclass
class WarehouseParameters:
    database: Parameter
    port: Parameter
    username: Parameter
    password: Parameter
    table: Parameter


def declare_warehouse_parameters(graph: StackGraph, warehouse: WarehouseConfig) -> WarehouseParameters:
    return WarehouseParameters(
        database=graph.add_parameter(Parameter(
            "Database",
            default=warehouse.database_name,
            description="Redshift database name",
            allowed_pattern=r"[a-z][a-z0-9_]*",
        )),
        port=graph.add_parameter(Parameter(
            "Port",
            type="Number",
            default=warehouse.port,
            description="Redshift database port",
            min_value=1150,
            max_value=65535,
        )),
        username=graph.add_parameter(Parameter(
            "Username",
            default=warehouse.username,
            description="Redshift database username",
            allowed_pattern=r"[a-zA-Z][a-zA-Z0-9_]*",
        )),
        password=graph.add_parameter(Parameter(
            "Password",
            default=warehouse.password,
            description="Redshift database password",
            no_echo=True,
            allowed_pattern=REDSHIFT_PASSWORD_PATTERN,
        )),
        table=graph.add_parameter(Parameter(
            "TableName",
            default=warehouse.table_name,
            description="Redshift table name",
        )),
    )


def build_iot_and_redshift_graph(config: AppConfig,
                                 region_table: Optional[RegionCidrTable] = None,
                                 stack_name: str = "IotAndRedshiftStack") -> StackGraph:
    """
    Compose the IoT → Redshift pipeline

    Args:
        config: Build configuration; config.aws.region selects the Firehose
            CIDR block routed out of the private subnets
        region_table: Firehose CIDR table, loaded from config when omitted

    Returns:
        Complete stack graph, ready to render
    """
    region = config.aws.region
    if region_table is None:
        region_table = load_region_table(config.aws.firehose_cidr_table_path)

    graph = StackGraph(
        stack_name,
        description="IoT Core shadow updates delivered to Redshift through Kinesis Data Firehose",
        region=region,
    )

    # 1️⃣ Stack parameters
    params = declare_warehouse_parameters(graph, config.warehouse)

    # 2️⃣ S3 landing zone for Firehose
    bucket = build_bucket(graph, "IoTData")

    # 3️⃣ Roles. Both point forward at the log group and delivery stream
    firehose_role = build_role(
        graph, "FirehoseDeliverToRedshiftRole", "firehose",
        firehose_delivery_statements(
            bucket, region,
            placeholder=config.delivery.policy_placeholder,
            log_resources=(DeferredReference(LOG_GROUP_ID, "Arn"),),
        ),
    )
    iot_rule_role = build_role(
        graph, "IoTRuleToFirehoseRole", "iot",
        [PolicyStatement(
            actions=("firehose:PutRecord", "firehose:PutRecordBatch"),
            resources=(DeferredReference(DELIVERY_STREAM_ID, "Arn"),),
        )],
    )

    # 4️⃣ Single-AZ VPC; private subnets reach Firehose through the IGW
    mask = config.network.subnet_cidr_mask
    network = build_network(
        graph, "RedshiftVpc",
        NetworkSpec(
            cidr=config.network.vpc_cidr,
            max_azs=config.network.max_azs,
            subnets=(
                SubnetSpec("RedshiftPublicSubnet", SubnetRole.PUBLIC, mask),
                SubnetSpec("RedshiftPrivateSubnet", SubnetRole.PRIVATE, mask),
            ),
        ),
        region=region,
        egress_table=region_table,
    )

    # 5️⃣ Redshift cluster
    security_group = build_security_group(
        graph, "RedshiftSecurityGroup", network,
        ports=[IngressPort("Redshift", params.port)],
        description="Redshift access for Firehose and BI clients",
    )
    cluster = build_redshift_cluster(
        graph, "RedshiftCluster", network, [security_group],
        database_name=params.database,
        port=params.port,
        master_username=params.username,
        master_password=params.password,
        cluster_identifier=config.warehouse.cluster_identifier,
        node_type=config.warehouse.node_type,
        number_of_nodes=config.warehouse.number_of_nodes,
    )

    # 6️⃣ Delivery logs, then the delivery stream itself
    logs = build_log_destination(
        graph, LOG_GROUP_ID, config.delivery.log_group_name,
        {"S3LogStream": S3_LOG_STREAM, "RedshiftLogStream": REDSHIFT_LOG_STREAM},
    )
    stream = build_delivery_stream(
        graph, DELIVERY_STREAM_ID, config.delivery.stream_name,
        cluster=cluster,
        bucket=bucket,
        role=firehose_role,
        logs=logs,
        s3_log_stream=S3_LOG_STREAM,
        redshift_log_stream=REDSHIFT_LOG_STREAM,
        settings=config.delivery,
        database=params.database,
        port=params.port,
        username=params.username,
        password=params.password,
        table=params.table,
    )

    # 7️⃣ IoT thing and topic rule: shadow updates → Firehose
    thing = build_thing(graph, "TemperatureSensor", config.iot.thing_name)
    query = temperature_query(config.iot.thing_name)
    build_rule(graph, "TemperatureDataToFirehose", query, stream, iot_rule_role,
               rule_name=config.iot.rule_name)

    # 📤 Stack Outputs
    for output in (
        Output("Redshift Host", cluster.hostname,
               description="Redshift cluster endpoint hostname"),
        Output("Redshift Port", params.port),
        Output("Redshift Database Name", params.database),
        Output("Redshift Endpoint", Join.of(cluster.socket_address, "/", params.database)),
        Output("Redshift JDBC URL",
               Join.of("jdbc:redshift://", cluster.socket_address, "/", params.database)),
        Output("Redshift ODBC URL", Join.of(
            "Driver={Amazon Redshift (x64)}; Server=", cluster.hostname,
            "; Database=", params.database,
            "; UID=", params.username,
            "; PWD=YOUR PASSWORD; Port=", params.port,
        )),
        Output("IoT Thing name", thing.ref),
        Output("IoT Rule", query.sql, description="Topic rule SQL"),
    ):
        graph.add_output(output)

    return graph


class IotAndRedshiftStack(ComposedStack):
    """
    IoT → Redshift Infrastructure Stack
    Synthesizes the composed graph for the configured region
    """

    def __init__(self, scope: Construct, construct_id: str, config: AppConfig,
                 region_table: Optional[RegionCidrTable] = None,
                 parameter_values: Optional[Dict[str, Any]] = None, **kwargs) -> None:
        graph = build_iot_and_redshift_graph(config, region_table, stack_name=construct_id)
        super().__init__(scope, construct_id, graph, parameter_values, **kwargs)
