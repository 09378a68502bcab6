"""
Storage & Compute Builders
S3 landing bucket, Redshift cluster with its security group and subnet
group, and CloudWatch log destinations
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from iot_redshift.composer import Join, ResourceDescriptor, StackGraph
from iot_redshift.errors import ConfigurationError
from iot_redshift.network import Network, SubnetRole


logger = logging.getLogger(__name__)

DELETE = "Delete"
RETAIN = "Retain"


@dataclass(frozen=True)
class IngressPort:
    name: str
    number: Any


@dataclass
class LogDestination:
    group: ResourceDescriptor
    streams: Dict[str, ResourceDescriptor] = field(default_factory=dict)

    @property
    def group_name(self):
        return self.group.ref

    def stream(self, name: str) -> ResourceDescriptor:
        try:
            return self.streams[name]
        except KeyError:
            raise ConfigurationError(
                f"Log group {self.group.logical_id} has no stream '{name}'"
            ) from None


@dataclass
class RedshiftCluster:
    cluster: ResourceDescriptor
    subnet_group: ResourceDescriptor

    @property
    def hostname(self):
        return self.cluster.get_att("Endpoint.Address")

    @property
    def port(self):
        return self.cluster.get_att("Endpoint.Port")

    @property
    def socket_address(self) -> Join:
        return Join.of(self.hostname, ":", self.port)


def build_bucket(graph: StackGraph, logical_id: str,
                 removal_policy: str = RETAIN) -> ResourceDescriptor:
    """Encrypted, non-public bucket"""
    return graph.add(ResourceDescriptor(logical_id, "AWS::S3::Bucket", {
        "BucketEncryption": {
            "ServerSideEncryptionConfiguration": [{
                "ServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"},
            }],
        },
        "PublicAccessBlockConfiguration": {
            "BlockPublicAcls": True,
            "BlockPublicPolicy": True,
            "IgnorePublicAcls": True,
            "RestrictPublicBuckets": True,
        },
    }, deletion_policy=removal_policy, update_replace_policy=removal_policy))


def build_security_group(graph: StackGraph, logical_id: str, network: Network,
                         ports: Iterable[IngressPort] = (),
                         description: Optional[str] = None) -> ResourceDescriptor:
    """Security group open to IPv4 and IPv6 on each port, all outbound allowed"""
    ingress = []
    for port in ports:
        for peer in ({"CidrIp": "0.0.0.0/0"}, {"CidrIpv6": "::/0"}):
            ingress.append({
                **peer,
                "Description": port.name,
                "FromPort": port.number,
                "ToPort": port.number,
                "IpProtocol": "tcp",
            })

    return graph.add(ResourceDescriptor(logical_id, "AWS::EC2::SecurityGroup", {
        "GroupDescription": description or f"{graph.stack_name}/{logical_id}",
        "VpcId": network.vpc_id,
        "SecurityGroupEgress": [{
            "CidrIp": "0.0.0.0/0",
            "Description": "Allow all outbound traffic by default",
            "IpProtocol": "-1",
        }],
        "SecurityGroupIngress": ingress or None,
    }))


def build_redshift_cluster(graph: StackGraph, logical_id: str, network: Network,
                           security_groups: List[ResourceDescriptor],
                           database_name: Any, port: Any,
                           master_username: Any, master_password: Any,
                           cluster_identifier: Optional[str] = None,
                           node_type: str = "dc2.large",
                           number_of_nodes: int = 1,
                           publicly_accessible: bool = True,
                           subnet_role: SubnetRole = SubnetRole.PRIVATE,
                           removal_policy: str = DELETE) -> RedshiftCluster:
    """
    Redshift cluster placed in the network's private subnets

    Single-node when number_of_nodes is 1, multi-node otherwise.
    """
    if number_of_nodes < 1:
        raise ConfigurationError("A Redshift cluster needs at least one node")

    subnet_ids = network.subnet_ids(subnet_role)
    if not subnet_ids:
        raise ConfigurationError(
            f"Network {network.vpc.logical_id} has no {subnet_role.value.lower()} "
            f"subnets for cluster {logical_id}"
        )

    subnet_group = graph.add(ResourceDescriptor(
        f"{logical_id}Subnets", "AWS::Redshift::ClusterSubnetGroup", {
            "Description": f"Subnets for {logical_id} Redshift cluster",
            "SubnetIds": subnet_ids,
        },
        deletion_policy=removal_policy, update_replace_policy=removal_policy,
    ))

    multi_node = number_of_nodes > 1
    cluster = graph.add(ResourceDescriptor(logical_id, "AWS::Redshift::Cluster", {
        "ClusterIdentifier": cluster_identifier,
        "ClusterType": "multi-node" if multi_node else "single-node",
        "NumberOfNodes": number_of_nodes if multi_node else None,
        "NodeType": node_type,
        "DBName": database_name,
        "Port": port,
        "MasterUsername": master_username,
        "MasterUserPassword": master_password,
        "PubliclyAccessible": publicly_accessible,
        "ClusterSubnetGroupName": subnet_group.ref,
        "VpcSecurityGroupIds": [group.get_att("GroupId") for group in security_groups],
        "Encrypted": True,
    }, deletion_policy=removal_policy, update_replace_policy=removal_policy))

    logger.info("Declared Redshift cluster %s (%s x%d)", logical_id, node_type, number_of_nodes)
    return RedshiftCluster(cluster=cluster, subnet_group=subnet_group)


def build_log_destination(graph: StackGraph, logical_id: str, group_name: str,
                          streams: Dict[str, str],
                          retention_days: Optional[int] = None,
                          removal_policy: str = DELETE) -> LogDestination:
    """
    Log group with named streams

    Args:
        streams: Stream logical ID suffix -> stream name
    """
    group = graph.add(ResourceDescriptor(logical_id, "AWS::Logs::LogGroup", {
        "LogGroupName": group_name,
        "RetentionInDays": retention_days,
    }, deletion_policy=removal_policy, update_replace_policy=removal_policy))

    destination = LogDestination(group=group)
    for suffix, stream_name in streams.items():
        destination.streams[stream_name] = graph.add(ResourceDescriptor(
            f"{logical_id}{suffix}", "AWS::Logs::LogStream", {
                "LogGroupName": group.ref,
                "LogStreamName": stream_name,
            },
            deletion_policy=removal_policy, update_replace_policy=removal_policy,
        ))
    return destination
