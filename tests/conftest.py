"""
Pytest configuration and shared fixtures for the IoT analytics stacks
"""

import os

import pytest
import aws_cdk as cdk

from iot_redshift.composer import StackGraph
from iot_redshift.config import AppConfig
from iot_redshift.regions import RegionCidrTable, load_region_table


@pytest.fixture
def aws_credentials():
    """Mocked AWS Credentials for moto."""
    os.environ['AWS_ACCESS_KEY_ID'] = 'testing'
    os.environ['AWS_SECRET_ACCESS_KEY'] = 'testing'
    os.environ['AWS_SECURITY_TOKEN'] = 'testing'
    os.environ['AWS_SESSION_TOKEN'] = 'testing'
    os.environ['AWS_DEFAULT_REGION'] = 'us-east-1'


@pytest.fixture
def cdk_app():
    """Create CDK app for testing."""
    return cdk.App()


@pytest.fixture
def app_config():
    """Default build configuration targeting us-east-1."""
    return AppConfig()


@pytest.fixture
def region_table():
    """Packaged Firehose CIDR table."""
    return load_region_table()


@pytest.fixture
def small_region_table():
    """Single-region table for injection tests."""
    return RegionCidrTable({"us-east-1": "52.70.63.192/27"})


@pytest.fixture
def graph():
    """Empty stack graph bound to us-east-1."""
    return StackGraph("TestStack", region="us-east-1")
