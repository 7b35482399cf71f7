import logging

from aws_cdk import (
    Fn,
    aws_ec2 as ec2,
)
from constructs import Construct

from infrastructure.lib import bindings
from infrastructure.lib.bindings import BindingStack
from infrastructure.lib.config import AppConfig

logger = logging.getLogger(__name__)


class NetworkStack(BindingStack):
    """
    VPC with a public and a private subnet in each of two availability zones.

    Public subnets route through an internet gateway. Private subnets share
    one NAT gateway placed in the first public subnet.
    """

    def __init__(self, scope: Construct, construct_id: str,
                 config: AppConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, config=config, **kwargs)

        name = config.get("vpc.name")
        cidr_block = config.get("vpc.cidrBlock")
        azs = [Fn.select(0, Fn.get_azs()), Fn.select(1, Fn.get_azs())]

        self.vpc = ec2.CfnVPC(
            self, "Vpc",
            cidr_block=cidr_block,
            enable_dns_hostnames=True,
            enable_dns_support=True,
        )
        self.tag(self.vpc, f"{name}-vpc")

        # Subnets
        self.public_subnets = [
            self._subnet(f"PublicSubnet{i}", config.get(f"vpc.publicSubnet{i}Cidr"),
                         azs[i - 1], f"{name}-public-subnet-{i}", public=True)
            for i in (1, 2)
        ]
        self.private_subnets = [
            self._subnet(f"PrivateSubnet{i}", config.get(f"vpc.privateSubnet{i}Cidr"),
                         azs[i - 1], f"{name}-private-subnet-{i}", public=False)
            for i in (1, 2)
        ]

        # Internet gateway and public routing
        igw = ec2.CfnInternetGateway(self, "InternetGateway")
        self.tag(igw, f"{name}-igw")

        igw_attachment = ec2.CfnVPCGatewayAttachment(
            self, "InternetGatewayAttachment",
            vpc_id=self.vpc.ref,
            internet_gateway_id=igw.ref,
        )

        public_route_table = ec2.CfnRouteTable(self, "PublicRouteTable", vpc_id=self.vpc.ref)
        self.tag(public_route_table, f"{name}-public-rt")

        public_route = ec2.CfnRoute(
            self, "PublicRoute",
            route_table_id=public_route_table.ref,
            destination_cidr_block="0.0.0.0/0",
            gateway_id=igw.ref,
        )
        public_route.add_dependency(igw_attachment)

        for i, subnet in enumerate(self.public_subnets, start=1):
            ec2.CfnSubnetRouteTableAssociation(
                self, f"PublicSubnet{i}RouteTableAssociation",
                subnet_id=subnet.ref,
                route_table_id=public_route_table.ref,
            )

        # NAT gateway and private routing
        nat_eip = ec2.CfnEIP(self, "NatEip", domain="vpc")
        nat_eip.add_dependency(igw_attachment)
        self.tag(nat_eip, f"{name}-nat-eip-1")

        nat_gateway = ec2.CfnNatGateway(
            self, "NatGateway",
            subnet_id=self.public_subnets[0].ref,
            allocation_id=nat_eip.attr_allocation_id,
        )
        self.tag(nat_gateway, f"{name}-nat-gw-1")

        private_route_table = ec2.CfnRouteTable(self, "PrivateRouteTable", vpc_id=self.vpc.ref)
        self.tag(private_route_table, f"{name}-private-rt")

        ec2.CfnRoute(
            self, "PrivateRoute",
            route_table_id=private_route_table.ref,
            destination_cidr_block="0.0.0.0/0",
            nat_gateway_id=nat_gateway.ref,
        )

        for i, subnet in enumerate(self.private_subnets, start=1):
            ec2.CfnSubnetRouteTableAssociation(
                self, f"PrivateSubnet{i}RouteTableAssociation",
                subnet_id=subnet.ref,
                route_table_id=private_route_table.ref,
            )

        logger.debug("Declared VPC %s (%s) with 4 subnets", name, cidr_block)

        # Outputs
        self.export_binding(bindings.VPC_ID, self.vpc.ref, "VPC ID")
        self.export_binding(bindings.VPC_CIDR_BLOCK, self.vpc.attr_cidr_block, "VPC CIDR block")
        self.export_binding(bindings.PUBLIC_SUBNET_1_ID, self.public_subnets[0].ref, "Public subnet 1 ID")
        self.export_binding(bindings.PUBLIC_SUBNET_2_ID, self.public_subnets[1].ref, "Public subnet 2 ID")
        self.export_binding(bindings.PRIVATE_SUBNET_1_ID, self.private_subnets[0].ref, "Private subnet 1 ID")
        self.export_binding(bindings.PRIVATE_SUBNET_2_ID, self.private_subnets[1].ref, "Private subnet 2 ID")

    def _subnet(self, construct_id: str, cidr_block: str, az: str,
                name: str, public: bool) -> ec2.CfnSubnet:
        subnet = ec2.CfnSubnet(
            self, construct_id,
            vpc_id=self.vpc.ref,
            cidr_block=cidr_block,
            availability_zone=az,
            map_public_ip_on_launch=public,
        )
        self.tag(subnet, name)
        return subnet
