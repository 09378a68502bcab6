"""
Network Builder
VPC with public/private subnet layout, internet and NAT gateways, and the
route override that sends Firehose traffic from private subnets through the
internet gateway
"""

import enum
import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from iot_redshift.composer import ResourceDescriptor, StackGraph, get_azs, select
from iot_redshift.errors import ConfigurationError
from iot_redshift.regions import RegionCidrTable


logger = logging.getLogger(__name__)

ANY_IPV4 = "0.0.0.0/0"
MAX_SUBNET_MASK = 28


class SubnetRole(str, enum.Enum):
    PUBLIC = "Public"
    PRIVATE = "Private"


@dataclass(frozen=True)
class SubnetSpec:
    name: str
    role: SubnetRole
    cidr_mask: int = 26


@dataclass(frozen=True)
class NetworkSpec:
    """
    VPC layout

    nat_gateways=None means one NAT gateway per AZ when private subnets
    exist, none otherwise.
    """
    cidr: str = "192.168.0.0/16"
    max_azs: int = 1
    subnets: Tuple[SubnetSpec, ...] = ()
    nat_gateways: Optional[int] = None

    @property
    def has_private_subnets(self) -> bool:
        return any(subnet.role is SubnetRole.PRIVATE for subnet in self.subnets)

    @property
    def has_public_subnets(self) -> bool:
        return any(subnet.role is SubnetRole.PUBLIC for subnet in self.subnets)

    def nat_gateway_count(self) -> int:
        if self.nat_gateways is not None:
            return min(self.nat_gateways, self.max_azs)
        return self.max_azs if self.has_private_subnets else 0


@dataclass
class SubnetHandle:
    subnet: ResourceDescriptor
    route_table: ResourceDescriptor

    @property
    def subnet_id(self):
        return self.subnet.ref

    @property
    def route_table_id(self):
        return self.route_table.ref


@dataclass
class Network:
    vpc: ResourceDescriptor
    internet_gateway: ResourceDescriptor
    gateway_attachment: ResourceDescriptor
    subnets_by_role: Dict[SubnetRole, List[SubnetHandle]]
    nat_gateways: List[ResourceDescriptor] = field(default_factory=list)
    injected_routes: List[ResourceDescriptor] = field(default_factory=list)

    @property
    def vpc_id(self):
        return self.vpc.ref

    @property
    def public_subnets(self) -> List[SubnetHandle]:
        return self.subnets_by_role.get(SubnetRole.PUBLIC, [])

    @property
    def private_subnets(self) -> List[SubnetHandle]:
        return self.subnets_by_role.get(SubnetRole.PRIVATE, [])

    def subnet_ids(self, role: SubnetRole) -> list:
        return [handle.subnet_id for handle in self.subnets_by_role.get(role, [])]


class _CidrAllocator:
    """Hands out consecutive, aligned IPv4 blocks from the VPC range"""

    def __init__(self, cidr: str):
        try:
            self._network = ipaddress.ip_network(cidr)
        except ValueError as e:
            raise ConfigurationError(f"Invalid VPC CIDR {cidr!r}: {e}") from e
        if not isinstance(self._network, ipaddress.IPv4Network):
            raise ConfigurationError(f"VPC CIDR {cidr} must be IPv4")
        self._cursor = int(self._network.network_address)

    def allocate(self, mask: int) -> str:
        if not self._network.prefixlen <= mask <= MAX_SUBNET_MASK:
            raise ConfigurationError(
                f"Subnet mask /{mask} must be between /{self._network.prefixlen} "
                f"and /{MAX_SUBNET_MASK}"
            )
        size = 2 ** (32 - mask)
        start = -(-self._cursor // size) * size
        subnet = ipaddress.ip_network((start, mask))
        if not subnet.subnet_of(self._network):
            raise ConfigurationError(f"VPC CIDR {self._network} has no room for another /{mask}")
        self._cursor = start + size
        return str(subnet)


def _tags(**tags) -> list:
    return [{"Key": key, "Value": value} for key, value in tags.items()]


def build_network(graph: StackGraph, logical_id: str, spec: NetworkSpec,
                  region: Optional[str] = None,
                  egress_table: Optional[RegionCidrTable] = None) -> Network:
    """
    Declare the VPC and its subnets

    Args:
        graph: Stack graph to declare into
        logical_id: VPC logical ID, also the prefix of every network resource
        spec: Layout of the network
        region: Deployment region, keys the egress table
        egress_table: When given, every private subnet gets a route to the
            region's CIDR block through the internet gateway

    Returns:
        Declared network
    """
    if spec.max_azs < 1:
        raise ConfigurationError("A network needs at least one availability zone")

    nat_count = spec.nat_gateway_count()
    if nat_count and not spec.has_public_subnets:
        raise ConfigurationError("NAT gateways require at least one public subnet")

    allocator = _CidrAllocator(spec.cidr)
    name_tag = f"{graph.stack_name}/{logical_id}"

    vpc = graph.add(ResourceDescriptor(logical_id, "AWS::EC2::VPC", {
        "CidrBlock": spec.cidr,
        "EnableDnsHostnames": True,
        "EnableDnsSupport": True,
        "InstanceTenancy": "default",
        "Tags": _tags(Name=name_tag),
    }))
    igw = graph.add(ResourceDescriptor(f"{logical_id}IGW", "AWS::EC2::InternetGateway", {
        "Tags": _tags(Name=name_tag),
    }))
    attachment = graph.add(ResourceDescriptor(f"{logical_id}VPCGW", "AWS::EC2::VPCGatewayAttachment", {
        "VpcId": vpc.ref,
        "InternetGatewayId": igw.ref,
    }))

    network = Network(
        vpc=vpc,
        internet_gateway=igw,
        gateway_attachment=attachment,
        subnets_by_role={role: [] for role in SubnetRole},
    )

    # Public subnets first so private default routes can target their NATs
    ordered = sorted(spec.subnets, key=lambda subnet: subnet.role is not SubnetRole.PUBLIC)
    for subnet_spec in ordered:
        for az in range(spec.max_azs):
            handle = _declare_subnet(graph, logical_id, vpc, subnet_spec, az,
                                     allocator.allocate(subnet_spec.cidr_mask))
            network.subnets_by_role[subnet_spec.role].append(handle)

            if subnet_spec.role is SubnetRole.PUBLIC:
                prefix = handle.subnet.logical_id
                default_route = graph.add(ResourceDescriptor(
                    f"{prefix}DefaultRoute", "AWS::EC2::Route", {
                        "RouteTableId": handle.route_table_id,
                        "DestinationCidrBlock": ANY_IPV4,
                        "GatewayId": igw.ref,
                    },
                    depends_on=[attachment],
                ))
                if len(network.nat_gateways) < nat_count and az == len(network.nat_gateways):
                    eip = graph.add(ResourceDescriptor(f"{prefix}EIP", "AWS::EC2::EIP", {
                        "Domain": "vpc",
                        "Tags": _tags(Name=f"{name_tag}/{subnet_spec.name}{az + 1}"),
                    }))
                    nat = graph.add(ResourceDescriptor(f"{prefix}NATGateway", "AWS::EC2::NatGateway", {
                        "SubnetId": handle.subnet_id,
                        "AllocationId": eip.get_att("AllocationId"),
                        "Tags": _tags(Name=f"{name_tag}/{subnet_spec.name}{az + 1}"),
                    }, depends_on=[default_route]))
                    network.nat_gateways.append(nat)

            elif network.nat_gateways:
                nat = network.nat_gateways[az % len(network.nat_gateways)]
                graph.add(ResourceDescriptor(
                    f"{handle.subnet.logical_id}DefaultRoute", "AWS::EC2::Route", {
                        "RouteTableId": handle.route_table_id,
                        "DestinationCidrBlock": ANY_IPV4,
                        "NatGatewayId": nat.ref,
                    },
                ))

    if egress_table is not None:
        network.injected_routes.extend(
            route_private_subnets_through_gateway(graph, network, region, egress_table)
        )

    logger.info(
        "Declared network %s: %d public, %d private subnets, %d NAT gateways",
        logical_id, len(network.public_subnets), len(network.private_subnets),
        len(network.nat_gateways),
    )
    return network


def route_private_subnets_through_gateway(graph: StackGraph, network: Network,
                                          region: Optional[str],
                                          egress_table: RegionCidrTable) -> List[ResourceDescriptor]:
    """
    Send the region's Firehose CIDR block from every private subnet to the
    internet gateway. Without private subnets nothing is looked up or declared.
    """
    if not network.private_subnets:
        return []
    if not region:
        raise ConfigurationError("A concrete deployment region is required to route Firehose traffic")

    destination = egress_table.lookup(region)
    routes = []
    for index, handle in enumerate(network.private_subnets):
        routes.append(graph.add(ResourceDescriptor(
            f"{network.vpc.logical_id}PrivateSubnetFirehoseRoute{index}", "AWS::EC2::Route", {
                "RouteTableId": handle.route_table_id,
                "DestinationCidrBlock": destination,
                "GatewayId": network.internet_gateway.ref,
            },
            depends_on=[network.gateway_attachment],
        )))
    logger.info("Routed %s (%s) through %s for %d private subnets",
                destination, region, network.internet_gateway.logical_id, len(routes))
    return routes


def _declare_subnet(graph: StackGraph, vpc_id: str, vpc: ResourceDescriptor,
                    subnet_spec: SubnetSpec, az: int, cidr: str) -> SubnetHandle:
    prefix = f"{vpc_id}{subnet_spec.name}{az + 1}"
    subnet = graph.add(ResourceDescriptor(f"{prefix}Subnet", "AWS::EC2::Subnet", {
        "VpcId": vpc.ref,
        "CidrBlock": cidr,
        "AvailabilityZone": select(az, get_azs()),
        "MapPublicIpOnLaunch": subnet_spec.role is SubnetRole.PUBLIC,
        "Tags": _tags(
            Name=f"{graph.stack_name}/{vpc_id}/{subnet_spec.name}{az + 1}",
            SubnetName=subnet_spec.name,
            SubnetType=subnet_spec.role.value,
        ),
    }))
    route_table = graph.add(ResourceDescriptor(f"{prefix}RouteTable", "AWS::EC2::RouteTable", {
        "VpcId": vpc.ref,
    }))
    graph.add(ResourceDescriptor(
        f"{prefix}RouteTableAssociation", "AWS::EC2::SubnetRouteTableAssociation", {
            "RouteTableId": route_table.ref,
            "SubnetId": subnet.ref,
        },
    ))
    return SubnetHandle(subnet=subnet, route_table=route_table)
