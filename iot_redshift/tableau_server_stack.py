"""
Tableau Server Stack
Single Tableau Server instance deployed from the vendor's Quick Start
workload template into a public-only VPC
"""

from typing import Any, Dict, Optional

from constructs import Construct

from iot_redshift.access import PolicyStatement, build_role, managed_policy_arn
from iot_redshift.composed_stack import ComposedStack
from iot_redshift.composer import Aws, Join, Output, Parameter, ResourceDescriptor, StackGraph
from iot_redshift.config import AppConfig
from iot_redshift.network import NetworkSpec, SubnetRole, SubnetSpec, build_network


MANAGED_POLICIES = (
    "AmazonSSMManagedInstanceCore",
    "AmazonSSMDirectoryServiceAccess",
    "CloudWatchAgentServerPolicy",
)

WORKLOAD_OUTPUTS = (
    ("InstanceID", "EC2 InstanceID of the instance running Tableau Server"),
    ("PublicIPAddress", "Public IP Address of instance running Tableau Server"),
    ("TableauServicesManagerURL", "URL for the TSM Web UI"),
    ("TableauServerURL", "URL for the Tableau Server"),
)


def build_tableau_server_graph(config: AppConfig,
                               stack_name: str = "TableauServerStack") -> StackGraph:
    """Compose the Tableau Server deployment around the Quick Start template"""
    tableau = config.tableau
    graph = StackGraph(
        stack_name,
        description="Tableau Server single-node deployment from the AWS Quick Start",
        region=config.aws.region,
    )

    username = graph.add_parameter(Parameter("Username", description="Tableau Server username"))
    password = graph.add_parameter(Parameter(
        "Password", description="Tableau Server user password", no_echo=True,
    ))
    license_key = graph.add_parameter(Parameter(
        "LicenseKey", description="Tableau Server license key", no_echo=True,
    ))

    # Private key material is stored by EC2 in SSM under /ec2/keypair/<key-pair-id>
    key_pair = graph.add(ResourceDescriptor("TableauServerKeyPair", "AWS::EC2::KeyPair", {
        "KeyName": tableau.key_pair_name,
        "KeyType": "rsa",
    }))

    role = build_role(
        graph, "TableauRole", "ec2",
        [PolicyStatement(
            actions=("s3:GetObject",),
            resources=(Join.of(
                "arn:", Aws.PARTITION, ":s3:::",
                f"{tableau.quickstart_bucket}/{tableau.quickstart_key_prefix}*",
            ),),
        )],
        managed_policies=[managed_policy_arn(name) for name in MANAGED_POLICIES],
    )
    instance_profile = graph.add(ResourceDescriptor(
        "TableauServerInstanceProfile", "AWS::IAM::InstanceProfile", {
            "InstanceProfileName": tableau.instance_profile_name,
            "Path": "/",
            "Roles": [role.ref],
        },
    ))

    network = build_network(
        graph, "TableauServerVpc",
        NetworkSpec(
            cidr=tableau.vpc_cidr,
            max_azs=1,
            subnets=(SubnetSpec("TableauPublicSubnet", SubnetRole.PUBLIC, 26),),
            nat_gateways=0,
        ),
    )

    workload = graph.add(ResourceDescriptor("WorkloadStack", "AWS::CloudFormation::Stack", {
        "TemplateURL": tableau.template_url,
        "Parameters": {
            "VPCId": network.vpc_id,
            "PublicSubnetId": network.public_subnets[0].subnet_id,
            "AcceptEULA": tableau.accept_eula,
            "InstanceType": tableau.instance_type,
            "KeyPairName": key_pair.ref,
            "Username": username,
            "Password": password,
            "TableauServerAdminUser": username,
            "TableauServerAdminPassword": password,
            "TableauServerLicenseKey": license_key,
            "TableauServerInstanceProfile": instance_profile.ref,
            "SourceCIDR": tableau.source_cidr,
            **tableau.registration,
        },
    }))

    for name, description in WORKLOAD_OUTPUTS:
        graph.add_output(Output(name, workload.get_att(f"Outputs.{name}"), description=description))

    return graph


class TableauServerStack(ComposedStack):
    """Tableau Server Quick Start wrapper stack"""

    def __init__(self, scope: Construct, construct_id: str, config: AppConfig,
                 parameter_values: Optional[Dict[str, Any]] = None, **kwargs) -> None:
        graph = build_tableau_server_graph(config, stack_name=construct_id)
        super().__init__(scope, construct_id, graph, parameter_values, **kwargs)
