#!/usr/bin/env python3
# Copyright (C) 2025 CardinalHQ, Inc
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, version 3.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

"""
Flagr VPC resources

Lays out one VPC across ``network.az_count`` availability zones:
- One public subnet per AZ, routed to an Internet Gateway
- One private subnet per AZ with egress through that AZ's NAT Gateway
"""

from troposphere import Ref, Sub, GetAtt, Select, GetAZs, Cidr
from troposphere.ec2 import (
    VPC, Subnet, RouteTable, Route, SubnetRouteTableAssociation,
    InternetGateway, VPCGatewayAttachment, NatGateway, EIP
)


def standard_tags(resource_name, resource_type):
    """Generate standard tags for all resources."""
    return [
        {"Key": "Name", "Value": Sub(f"${{AWS::StackName}}-{resource_name}")},
        {"Key": "Component", "Value": "Network"},
        {"Key": "ResourceType", "Value": resource_type},
        {"Key": "ManagedBy", "Value": "Flagr"},
    ]


def add_network(t, network_config):
    """Add the VPC, subnets, gateways and routes to ``t``.

    Returns a dict with the ``vpc`` resource and the ``public_subnets`` and
    ``private_subnets`` lists, ordered by AZ index.
    """
    az_count = int(network_config.get('az_count', 2))
    cidr_block = network_config.get('cidr', "10.0.0.0/16")

    # Two /24 blocks per AZ: public subnets first, then private ones
    subnet_cidrs = Cidr(cidr_block, str(az_count * 2), "8")

    vpc = t.add_resource(VPC(
        "FlagrVpc",
        CidrBlock=cidr_block,
        EnableDnsHostnames=True,
        EnableDnsSupport=True,
        Tags=standard_tags("vpc", "VPC")
    ))

    igw = t.add_resource(InternetGateway(
        "FlagrInternetGateway",
        Tags=standard_tags("igw", "InternetGateway")
    ))

    t.add_resource(VPCGatewayAttachment(
        "FlagrVpcGatewayAttachment",
        VpcId=Ref(vpc),
        InternetGatewayId=Ref(igw)
    ))

    public_route_table = t.add_resource(RouteTable(
        "PublicRouteTable",
        VpcId=Ref(vpc),
        Tags=standard_tags("public-rt", "RouteTable")
    ))

    t.add_resource(Route(
        "PublicDefaultRoute",
        RouteTableId=Ref(public_route_table),
        DestinationCidrBlock="0.0.0.0/0",
        GatewayId=Ref(igw),
        DependsOn="FlagrVpcGatewayAttachment"
    ))

    public_subnets = []
    private_subnets = []

    for index in range(az_count):
        az_number = index + 1
        availability_zone = Select(str(index), GetAZs())

        public_subnet = t.add_resource(Subnet(
            f"PublicSubnet{az_number}",
            VpcId=Ref(vpc),
            AvailabilityZone=availability_zone,
            CidrBlock=Select(str(index), subnet_cidrs),
            MapPublicIpOnLaunch=True,
            Tags=standard_tags(f"public-{az_number}", "Subnet") + [
                {"Key": "Type", "Value": "Public"},
            ]
        ))
        public_subnets.append(public_subnet)

        t.add_resource(SubnetRouteTableAssociation(
            f"PublicSubnet{az_number}RouteTableAssociation",
            SubnetId=Ref(public_subnet),
            RouteTableId=Ref(public_route_table)
        ))

        # NAT per AZ so private egress survives the loss of one zone
        nat_eip = t.add_resource(EIP(
            f"NatEIP{az_number}",
            Domain="vpc",
            DependsOn="FlagrVpcGatewayAttachment"
        ))

        nat_gateway = t.add_resource(NatGateway(
            f"NatGateway{az_number}",
            AllocationId=GetAtt(nat_eip, "AllocationId"),
            SubnetId=Ref(public_subnet),
            Tags=standard_tags(f"nat-gw-{az_number}", "NatGateway")
        ))

        private_subnet = t.add_resource(Subnet(
            f"PrivateSubnet{az_number}",
            VpcId=Ref(vpc),
            AvailabilityZone=availability_zone,
            CidrBlock=Select(str(az_count + index), subnet_cidrs),
            MapPublicIpOnLaunch=False,
            Tags=standard_tags(f"private-{az_number}", "Subnet") + [
                {"Key": "Type", "Value": "Private"},
            ]
        ))
        private_subnets.append(private_subnet)

        private_route_table = t.add_resource(RouteTable(
            f"PrivateRouteTable{az_number}",
            VpcId=Ref(vpc),
            Tags=standard_tags(f"private-rt-{az_number}", "RouteTable")
        ))

        t.add_resource(Route(
            f"PrivateDefaultRoute{az_number}",
            RouteTableId=Ref(private_route_table),
            DestinationCidrBlock="0.0.0.0/0",
            NatGatewayId=Ref(nat_gateway)
        ))

        t.add_resource(SubnetRouteTableAssociation(
            f"PrivateSubnet{az_number}RouteTableAssociation",
            SubnetId=Ref(private_subnet),
            RouteTableId=Ref(private_route_table)
        ))

    return {
        "vpc": vpc,
        "public_subnets": public_subnets,
        "private_subnets": private_subnets,
    }
