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

"""ECS cluster, Flagr task definition and the two Fargate services."""

from troposphere import Ref, Sub, GetAtt, Tags
from troposphere.ec2 import SecurityGroup, SecurityGroupRule
from troposphere.ecs import (
    Cluster, Service, TaskDefinition, ContainerDefinition, Environment,
    LogConfiguration, Secret as EcsSecret, Volume, MountPoint, PortMapping,
    NetworkConfiguration, AwsvpcConfiguration, LoadBalancer as EcsLoadBalancer
)
from troposphere.iam import Role, Policy
from troposphere.elasticloadbalancingv2 import LoadBalancer, TargetGroup, TargetGroupAttribute, Listener, Matcher
from troposphere.elasticloadbalancingv2 import Action as AlbAction
from troposphere.logs import LogGroup

CONTAINER_NAME = "FlagrContainer"


def add_cluster(t, cluster_config):
    return t.add_resource(Cluster(
        "FlagrECSCluster",
        ClusterName=cluster_config.get('name', "flagr-ecs-cluster"),
    ))


def database_environment(database_config, database):
    """Container environment for database connectivity.

    Both the ``DATABASE_*`` and the short ``DB_*`` spellings are provided.
    Passwords are delivered as container secrets, never as environment values.
    """
    username = database_config['username']
    return {
        "DATABASE_HOST": database["endpoint"],
        "DATABASE_PORT": database["port"],
        "DATABASE_NAME": database_config['name'],
        "DATABASE_USERNAME": username,
        "DB_HOST": database["endpoint"],
        "DB_PORT": database["port"],
        "DB_USERNAME": username,
    }


def add_task_definition(t, config, image, database, log_retention_days=14):
    """Add the shared Fargate task definition with the single Flagr container.

    ``image`` is the container image value (usually a parameter ``Ref``).
    Returns the task definition resource.
    """
    task_config = config.get('task', {})
    container_config = config.get('container', {})
    database_config = config.get('database', {})

    container_port = int(container_config.get('port', 80))
    volume_name = container_config.get('data_volume', "flagr-data")

    log_group = t.add_resource(LogGroup(
        "FlagrLogGroup",
        LogGroupName=Sub("/ecs/${AWS::StackName}/flagr"),
        RetentionInDays=int(log_retention_days)
    ))

    db_secret_arn = Ref(database["secret"])

    execution_role = t.add_resource(Role(
        "FlagrExecRole",
        AssumeRolePolicyDocument={
            "Version": "2012-10-17",
            "Statement": [{
                "Effect": "Allow",
                "Principal": {"Service": "ecs-tasks.amazonaws.com"},
                "Action": "sts:AssumeRole"
            }]
        },
        ManagedPolicyArns=[
            "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
        ],
        Policies=[
            Policy(
                PolicyName="DatabaseSecretAccess",
                PolicyDocument={
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Action": [
                                "secretsmanager:GetSecretValue"
                            ],
                            "Resource": [
                                db_secret_arn,
                                Sub("${DbSecretArn}*", DbSecretArn=db_secret_arn)
                            ]
                        }
                    ]
                }
            )
        ]
    ))

    environment = database_environment(database_config, database)
    password_from = Sub("${SecretArn}:password::", SecretArn=db_secret_arn)

    flagr_container = ContainerDefinition(
        Name=CONTAINER_NAME,
        Image=image,
        Essential=True,
        Environment=[Environment(Name=key, Value=value) for key, value in environment.items()],
        Secrets=[
            EcsSecret(Name="DATABASE_PASSWORD", ValueFrom=password_from),
            EcsSecret(Name="DB_PASSWORD", ValueFrom=password_from),
        ],
        PortMappings=[PortMapping(ContainerPort=container_port, Protocol="tcp")],
        MountPoints=[
            MountPoint(
                ContainerPath=container_config.get('data_path', "/var/lib/flagr"),
                SourceVolume=volume_name,
                ReadOnly=False
            )
        ],
        LogConfiguration=LogConfiguration(
            LogDriver="awslogs",
            Options={
                "awslogs-group": Ref(log_group),
                "awslogs-region": Ref("AWS::Region"),
                "awslogs-stream-prefix": "flagr"
            }
        )
    )

    return t.add_resource(TaskDefinition(
        "FlagrTaskDef",
        Family=Sub("${AWS::StackName}-flagr"),
        Cpu=str(task_config.get('cpu', 512)),
        Memory=str(task_config.get('memory_mib', 1024)),
        NetworkMode="awsvpc",
        RequiresCompatibilities=["FARGATE"],
        ExecutionRoleArn=GetAtt(execution_role, "Arn"),
        ContainerDefinitions=[flagr_container],
        # Fargate bind mount backed by task ephemeral storage
        Volumes=[Volume(Name=volume_name)]
    ))


def _network_configuration(subnets, security_group):
    return NetworkConfiguration(
        AwsvpcConfiguration=AwsvpcConfiguration(
            Subnets=[Ref(subnet) for subnet in subnets],
            SecurityGroups=[Ref(security_group)],
            AssignPublicIp="DISABLED"
        )
    )


def add_bare_service(t, cluster, task_def, subnets, service_sg, desired_count):
    """Add the unmanaged Fargate service that runs the shared task definition."""
    return t.add_resource(Service(
        "FlagrECSService",
        Cluster=Ref(cluster),
        TaskDefinition=Ref(task_def),
        LaunchType="FARGATE",
        DesiredCount=desired_count,
        NetworkConfiguration=_network_configuration(subnets, service_sg),
        Tags=Tags(
            Name=Sub("${AWS::StackName}-flagr-bare"),
            ManagedBy="Flagr",
            Component="Service"
        )
    ))


def add_public_service(t, config, cluster, task_def, vpc, public_subnets, private_subnets,
                       service_sg, desired_count):
    """Add an internet-facing ALB and the load-balanced Flagr Fargate service.

    Returns a dict with ``load_balancer``, ``target_group``, ``listener``
    and ``service``.
    """
    container_port = int(config.get('container', {}).get('port', 80))
    service_name = config.get('service', {}).get('name', "flagrserver")

    alb_sg = t.add_resource(SecurityGroup(
        "FlagrAlbSecurityGroup",
        GroupDescription="Security group for the public Flagr load balancer",
        VpcId=Ref(vpc),
        SecurityGroupIngress=[
            SecurityGroupRule(
                IpProtocol="tcp",
                FromPort=80,
                ToPort=80,
                CidrIp="0.0.0.0/0",
                Description="HTTP from anywhere"
            )
        ],
        SecurityGroupEgress=[{
            "IpProtocol": "-1",
            "CidrIp": "0.0.0.0/0",
            "Description": "Allow all outbound",
        }]
    ))

    alb = t.add_resource(LoadBalancer(
        "FlagrAlb",
        Scheme="internet-facing",
        SecurityGroups=[Ref(alb_sg)],
        Subnets=[Ref(subnet) for subnet in public_subnets],
        Type="application",
    ))

    target_group = t.add_resource(TargetGroup(
        "FlagrTg",
        Port=container_port,
        Protocol="HTTP",
        VpcId=Ref(vpc),
        TargetType="ip",
        HealthCheckPath="/",
        HealthCheckProtocol="HTTP",
        Matcher=Matcher(HttpCode="200"),
        TargetGroupAttributes=[
            TargetGroupAttribute(Key="deregistration_delay.timeout_seconds", Value="30")
        ]
    ))

    listener = t.add_resource(Listener(
        "FlagrListener",
        LoadBalancerArn=Ref(alb),
        Port=80,
        Protocol="HTTP",
        DefaultActions=[AlbAction(Type="forward", TargetGroupArn=Ref(target_group))]
    ))

    service = t.add_resource(Service(
        "FlagrService",
        ServiceName=service_name,
        Cluster=Ref(cluster),
        TaskDefinition=Ref(task_def),
        LaunchType="FARGATE",
        DesiredCount=desired_count,
        NetworkConfiguration=_network_configuration(private_subnets, service_sg),
        LoadBalancers=[EcsLoadBalancer(
            ContainerName=CONTAINER_NAME,
            ContainerPort=container_port,
            TargetGroupArn=Ref(target_group)
        )],
        HealthCheckGracePeriodSeconds=60,
        DependsOn=["FlagrListener"],
        Tags=Tags(
            Name=Sub("${AWS::StackName}-flagr"),
            ManagedBy="Flagr",
            Component="Service"
        )
    ))

    return {
        "load_balancer": alb,
        "target_group": target_group,
        "listener": listener,
        "service": service,
    }
