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

"""Security groups for the Flagr workloads."""

from troposphere import Ref, Sub
from troposphere.ec2 import SecurityGroup, SecurityGroupIngress, SecurityGroupRule

ALL_OUTBOUND = [{
    "IpProtocol": "-1",
    "CidrIp": "0.0.0.0/0",
    "Description": "Allow all outbound",
}]


def add_security_groups(t, vpc, container_port=80):
    """Add the generic EC2 group and the Flagr service group.

    Returns ``(ec2_sg, flagr_sg)``.
    """
    ec2_sg = t.add_resource(SecurityGroup(
        "EC2SecurityGroup",
        GroupDescription="Security group for the EC2 instances",
        VpcId=Ref(vpc),
        SecurityGroupEgress=ALL_OUTBOUND,
        Tags=[
            {"Key": "Name", "Value": Sub("${AWS::StackName}-ec2-sg")},
            {"Key": "ManagedBy", "Value": "Flagr"},
        ]
    ))

    flagr_sg = t.add_resource(SecurityGroup(
        "FlagrSecurityGroup",
        GroupDescription="Security group for the Flagr server",
        VpcId=Ref(vpc),
        SecurityGroupIngress=[
            SecurityGroupRule(
                IpProtocol="tcp",
                FromPort=container_port,
                ToPort=container_port,
                CidrIp="0.0.0.0/0",
                Description="Allow incoming traffic to the Flagr server container"
            )
        ],
        SecurityGroupEgress=ALL_OUTBOUND,
        Tags=[
            {"Key": "Name", "Value": Sub("${AWS::StackName}-flagr-sg")},
            {"Key": "ManagedBy", "Value": "Flagr"},
        ]
    ))

    # SSH into the EC2 group is only reachable from Flagr tasks
    t.add_resource(SecurityGroupIngress(
        "EC2SecurityGroupSSHFromFlagr",
        GroupId=Ref(ec2_sg),
        IpProtocol="tcp",
        FromPort=22,
        ToPort=22,
        SourceSecurityGroupId=Ref(flagr_sg),
        Description="Allow SSH access from Flagr",
    ))

    return ec2_sg, flagr_sg
