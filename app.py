#!/usr/bin/env python3
"""
IoT Analytics CDK App
Deploys the IoT → Redshift ingestion pipeline and the Tableau Server stack
"""

import logging

import aws_cdk as cdk
from iot_redshift.config import load_config
from iot_redshift.iot_and_redshift_stack import IotAndRedshiftStack
from iot_redshift.tableau_server_stack import TableauServerStack


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

app = cdk.App()
config = load_config(app.node.try_get_context("env_file"))

# The region context key overrides AWS_REGION
config.aws.region = app.node.try_get_context("region") or config.aws.region

# Environment configuration
env = cdk.Environment(
    account=app.node.try_get_context("account") or config.aws.account_id,
    region=config.aws.region
)

# 1️⃣ IoT Core → Firehose → S3 → Redshift
iot_and_redshift_stack = IotAndRedshiftStack(
    app, "IotAndRedshiftStack",
    config=config,
    env=env
)

# 2️⃣ Tableau Server reading from Redshift
tableau_server_stack = TableauServerStack(
    app, "TableauServerStack",
    config=config,
    env=env
)

# Tags for all resources
cdk.Tags.of(app).add("Project", "IoT-Analytics")
cdk.Tags.of(app).add("ManagedBy", "AWS-CDK")

app.synth()
