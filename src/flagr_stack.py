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

"""Flagr CloudFormation template.

Single-stack deployment of the Flagr server: VPC, security groups, ECS
Fargate cluster and task definition, RDS PostgreSQL, and the Fargate
services (one bare, one behind a public Application Load Balancer).
"""

import logging

import click
from troposphere import Template, Parameter, Ref, Sub, GetAtt, Join, Export, Output

from flagr_config import (
    ConfigError, load_stack_config, merge_config, validate_config,
    DEFAULT_CONFIG_FILE, MAX_DESIRED_COUNT
)
from flagr_network import add_network
from flagr_security import add_security_groups
from flagr_database import add_database
from flagr_compute import add_cluster, add_task_definition, add_bare_service, add_public_service

logger = logging.getLogger(__name__)

TEMPLATE_DESCRIPTION = "Flagr: VPC, ECS Fargate services behind an ALB, and RDS PostgreSQL"


def create_flagr_template(config=None):
    """Create CloudFormation template for the Flagr stack

    ``config`` overrides are deep-merged over the defaults file and
    validated before any resource is built.
    """
    config = validate_config(merge_config(config))

    container_config = config.get('container', {})
    service_config = config.get('service', {})

    t = Template()
    t.set_description(TEMPLATE_DESCRIPTION)

    # -----------------------
    # Parameters
    # -----------------------
    ContainerImage = t.add_parameter(Parameter(
        "ContainerImage", Type="String",
        Default=container_config.get('image', "myflagrserver:latest"),
        Description="Container image (name:tag) for the Flagr server"
    ))

    DesiredCount = t.add_parameter(Parameter(
        "DesiredCount", Type="Number",
        Default=str(service_config.get('desired_count', 1)),
        MinValue=0,
        MaxValue=MAX_DESIRED_COUNT,
        Description="Number of Flagr tasks each service keeps running"
    ))

    t.set_metadata({
        "AWS::CloudFormation::Interface": {
            "ParameterGroups": [
                {
                    "Label": {"default": "Flagr Service"},
                    "Parameters": ["ContainerImage", "DesiredCount"]
                }
            ],
            "ParameterLabels": {
                "ContainerImage": {"default": "Container Image"},
                "DesiredCount": {"default": "Desired Task Count"}
            }
        }
    })

    # -----------------------
    # Network and security groups
    # -----------------------
    network = add_network(t, config.get('network', {}))
    vpc = network["vpc"]

    container_port = int(container_config.get('port', 80))
    _, flagr_sg = add_security_groups(t, vpc, container_port)

    # -----------------------
    # Cluster, database, task definition
    # -----------------------
    cluster = add_cluster(t, config.get('cluster', {}))

    database = add_database(
        t, config['database'], vpc, network["private_subnets"], flagr_sg
    )

    task_def = add_task_definition(
        t, config, Ref(ContainerImage), database,
        log_retention_days=config.get('log_retention_days') or 14
    )

    # -----------------------
    # Services
    # -----------------------
    if service_config.get('bare_service', True):
        logger.warning(
            "Emitting bare service FlagrECSService; it shares task definition "
            "FlagrTaskDef with the load-balanced service FlagrService"
        )
        add_bare_service(
            t, cluster, task_def, network["private_subnets"], flagr_sg, Ref(DesiredCount)
        )

    public = add_public_service(
        t, config, cluster, task_def, vpc,
        network["public_subnets"], network["private_subnets"],
        flagr_sg, Ref(DesiredCount)
    )

    # -----------------------
    # Outputs
    # -----------------------
    t.add_output(Output(
        "VpcId",
        Description="VPC ID",
        Value=Ref(vpc),
        Export=Export(Sub("${AWS::StackName}-VpcId"))
    ))

    t.add_output(Output(
        "PrivateSubnets",
        Description="Private subnet IDs (comma-separated)",
        Value=Join(",", [Ref(subnet) for subnet in network["private_subnets"]]),
        Export=Export(Sub("${AWS::StackName}-PrivateSubnets"))
    ))

    t.add_output(Output(
        "ClusterName",
        Value=Ref(cluster),
        Export=Export(Sub("${AWS::StackName}-ClusterName"))
    ))

    t.add_output(Output(
        "FlagrSecurityGroupId",
        Value=Ref(flagr_sg),
        Export=Export(Sub("${AWS::StackName}-FlagrSecurityGroupId"))
    ))

    t.add_output(Output(
        "DbEndpoint",
        Description="Database endpoint",
        Value=database["endpoint"],
        Export=Export(Sub("${AWS::StackName}-DbEndpoint"))
    ))

    t.add_output(Output(
        "DbPort",
        Description="Database port",
        Value=database["port"],
        Export=Export(Sub("${AWS::StackName}-DbPort"))
    ))

    t.add_output(Output(
        "DbSecretArn",
        Description="Database secret ARN. Use AWS CLI to retrieve: aws secretsmanager get-secret-value --secret-id <ARN>",
        Value=Ref(database["secret"]),
        Export=Export(Sub("${AWS::StackName}-DbSecretArn"))
    ))

    t.add_output(Output(
        "FlagrAlbDNS",
        Value=GetAtt(public["load_balancer"], "DNSName"),
        Export=Export(Sub("${AWS::StackName}-AlbDNS"))
    ))

    t.add_output(Output(
        "FlagrServiceArn",
        Value=Ref(public["service"]),
        Export=Export(Sub("${AWS::StackName}-ServiceArn"))
    ))

    t.add_output(Output(
        "FlagrUrl",
        Description="URL to access the Flagr server",
        Value=Sub("http://${AlbDns}", AlbDns=GetAtt(public["load_balancer"], "DNSName"))
    ))

    logger.info("Built Flagr template with %d resources", len(t.resources))
    return t


@click.command()
@click.option(
    "--format", "output_format",
    type=click.Choice(["yaml", "json"]), default="yaml", show_default=True,
    help="Template output format."
)
@click.option(
    "--config", "config_file",
    default=DEFAULT_CONFIG_FILE, show_default=True,
    help="Stack configuration YAML file (relative to the repository root, or absolute)."
)
def main(output_format, config_file):
    """Print the Flagr CloudFormation template to stdout."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        template = create_flagr_template(load_stack_config(config_file))
    except ConfigError as e:
        raise click.BadParameter(str(e), param_hint="'--config'") from e
    if output_format == "json":
        click.echo(template.to_json())
    else:
        click.echo(template.to_yaml())


if __name__ == "__main__":
    main()
