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

"""RDS PostgreSQL resources for the Flagr server."""

import json

from troposphere import Ref, Sub, GetAtt, Tags
from troposphere.ec2 import SecurityGroup, SecurityGroupIngress
from troposphere.rds import DBInstance, DBSubnetGroup
from troposphere.secretsmanager import Secret, GenerateSecretString

POSTGRES_PORT = 5432


def add_database(t, database_config, vpc, private_subnets, client_sg):
    """Add the database, its credentials secret and network placement.

    Only ``client_sg`` may reach the PostgreSQL port. Returns a dict with
    ``instance``, ``secret``, ``security_group``, ``endpoint`` and ``port``.
    """
    db_sg = t.add_resource(SecurityGroup(
        "FlagrDatabaseSecurityGroup",
        GroupDescription="Security group for the Flagr RDS PostgreSQL database",
        VpcId=Ref(vpc),
        SecurityGroupEgress=[{
            "IpProtocol": "-1",
            "CidrIp": "0.0.0.0/0",
            "Description": "Allow all outbound",
        }],
        Tags=[
            {"Key": "Name", "Value": Sub("${AWS::StackName}-db-sg")},
            {"Key": "Component", "Value": "Database"},
            {"Key": "ManagedBy", "Value": "Flagr"},
        ]
    ))

    t.add_resource(SecurityGroupIngress(
        "FlagrDatabaseFromFlagr",
        GroupId=Ref(db_sg),
        IpProtocol="tcp",
        FromPort=POSTGRES_PORT,
        ToPort=POSTGRES_PORT,
        SourceSecurityGroupId=Ref(client_sg),
        Description="PostgreSQL access from the Flagr security group",
    ))

    db_secret = t.add_resource(Secret(
        "FlagrDbSecret",
        Name=Sub("${AWS::StackName}-flagr-db"),
        Description="Flagr database master credentials",
        GenerateSecretString=GenerateSecretString(
            SecretStringTemplate=json.dumps({"username": database_config['username']}),
            GenerateStringKey="password",
            ExcludeCharacters=' "/@\\\'',
            PasswordLength=32
        )
    ))

    db_subnets = t.add_resource(DBSubnetGroup(
        "FlagrDbSubnetGroup",
        DBSubnetGroupDescription="Private subnets for the Flagr database",
        SubnetIds=[Ref(subnet) for subnet in private_subnets],
    ))

    db_instance = t.add_resource(DBInstance(
        "FlagrDatabase",
        Engine="postgres",
        EngineVersion=str(database_config.get('engine_version', "13.3")),
        DBInstanceClass=database_config.get('instance_class', "db.t3.small"),
        DBName=database_config['name'],
        PubliclyAccessible=False,
        MultiAZ=bool(database_config.get('multi_az', True)),
        AllocatedStorage=str(database_config.get('allocated_storage', 20)),
        StorageType=database_config.get('storage_type', "gp2"),
        BackupRetentionPeriod=int(database_config.get('backup_retention_days', 7)),
        AutoMinorVersionUpgrade=bool(database_config.get('auto_minor_version_upgrade', True)),
        DeletionProtection=bool(database_config.get('deletion_protection', False)),
        CopyTagsToSnapshot=True,
        VPCSecurityGroups=[Ref(db_sg)],
        DBSubnetGroupName=Ref(db_subnets),
        MasterUsername=Sub("{{resolve:secretsmanager:${S}:SecretString:username}}", S=Ref(db_secret)),
        MasterUserPassword=Sub("{{resolve:secretsmanager:${S}:SecretString:password}}", S=Ref(db_secret)),
        DeletionPolicy="Delete",
        UpdateReplacePolicy="Delete",
        Tags=Tags(
            Name=Sub("${AWS::StackName}-db"),
            Component="Database",
            ManagedBy="Flagr"
        )
    ))

    return {
        "instance": db_instance,
        "secret": db_secret,
        "security_group": db_sg,
        "endpoint": GetAtt(db_instance, "Endpoint.Address"),
        "port": GetAtt(db_instance, "Endpoint.Port"),
    }
