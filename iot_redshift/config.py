#!/usr/bin/env python3
"""
Build Configuration Management
Environment-based configuration for the IoT → Redshift and Tableau stacks
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from environs import Env

from iot_redshift.errors import ConfigurationError


env = Env()

DEFAULT_POLICY_PLACEHOLDER = "%FIREHOSE_POLICY_TEMPLATE_PLACEHOLDER%"


@dataclass
class AWSConfig:
    """Deployment target"""
    region: str = "us-east-1"
    account_id: Optional[str] = None
    profile: Optional[str] = None
    firehose_cidr_table_path: Optional[str] = None

    @classmethod
    def from_environment(cls) -> "AWSConfig":
        return cls(
            region=env.str("AWS_REGION", "us-east-1"),
            account_id=env.str("AWS_ACCOUNT_ID", None),
            profile=env.str("AWS_PROFILE", None),
            firehose_cidr_table_path=env.str("FIREHOSE_CIDR_TABLE_PATH", None),
        )

    def validate(self) -> List[str]:
        errors = []
        if not self.region:
            errors.append("AWS region is required")
        if self.firehose_cidr_table_path and not os.path.exists(self.firehose_cidr_table_path):
            errors.append(f"Firehose CIDR table {self.firehose_cidr_table_path} does not exist")
        return errors


@dataclass
class NetworkConfig:
    """Redshift VPC layout"""
    vpc_cidr: str = "192.168.0.0/16"
    max_azs: int = 1
    subnet_cidr_mask: int = 26

    @classmethod
    def from_environment(cls) -> "NetworkConfig":
        return cls(
            vpc_cidr=env.str("VPC_CIDR", "192.168.0.0/16"),
            max_azs=env.int("VPC_MAX_AZS", 1),
            subnet_cidr_mask=env.int("SUBNET_CIDR_MASK", 26),
        )

    def validate(self) -> List[str]:
        errors = []
        if self.max_azs < 1:
            errors.append("VPC needs at least one availability zone")
        if not 16 <= self.subnet_cidr_mask <= 28:
            errors.append("Subnet CIDR mask must be between /16 and /28")
        return errors


@dataclass
class WarehouseConfig:
    """Redshift cluster and parameter defaults"""
    database_name: str = "iot"
    port: int = 5439
    username: str = "awsuser"
    password: Optional[str] = None
    table_name: str = "temperature"
    cluster_identifier: str = "tableau-cluster"
    node_type: str = "dc2.large"
    number_of_nodes: int = 1

    @classmethod
    def from_environment(cls) -> "WarehouseConfig":
        return cls(
            database_name=env.str("REDSHIFT_DATABASE_NAME", "iot"),
            port=env.int("REDSHIFT_PORT", 5439),
            username=env.str("REDSHIFT_USERNAME", "awsuser"),
            password=env.str("REDSHIFT_PASSWORD", None),
            table_name=env.str("REDSHIFT_TABLE_NAME", "temperature"),
            cluster_identifier=env.str("REDSHIFT_CLUSTER_IDENTIFIER", "tableau-cluster"),
            node_type=env.str("REDSHIFT_NODE_TYPE", "dc2.large"),
            number_of_nodes=env.int("REDSHIFT_NUMBER_OF_NODES", 1),
        )

    def validate(self) -> List[str]:
        errors = []
        if not 1150 <= self.port <= 65535:
            errors.append("Redshift port must be between 1150 and 65535")
        if self.number_of_nodes < 1:
            errors.append("Redshift cluster needs at least one node")
        if not self.database_name:
            errors.append("Redshift database name is required")
        return errors


@dataclass
class DeliveryConfig:
    """
    Firehose buffering and retry settings

    The 1 MB / 60 s buffer favours latency over batching efficiency; the
    300 s retry window bounds how long Redshift loads are retried.
    """
    buffer_size_mb: int = 1
    buffer_interval_seconds: int = 60
    retry_duration_seconds: int = 300
    s3_prefix: str = "iot-"
    copy_options: str = "json 'auto'"
    stream_name: str = "RedshiftDeliveryStream"
    log_group_name: str = "/aws/kinesisfirehose/RedshiftDeliveryStreamLogGroup"
    policy_placeholder: str = DEFAULT_POLICY_PLACEHOLDER

    @classmethod
    def from_environment(cls) -> "DeliveryConfig":
        return cls(
            buffer_size_mb=env.int("FIREHOSE_BUFFER_SIZE_MB", 1),
            buffer_interval_seconds=env.int("FIREHOSE_BUFFER_INTERVAL_SECONDS", 60),
            retry_duration_seconds=env.int("FIREHOSE_RETRY_DURATION_SECONDS", 300),
            s3_prefix=env.str("FIREHOSE_S3_PREFIX", "iot-"),
            copy_options=env.str("FIREHOSE_COPY_OPTIONS", "json 'auto'"),
            stream_name=env.str("FIREHOSE_STREAM_NAME", "RedshiftDeliveryStream"),
            log_group_name=env.str(
                "FIREHOSE_LOG_GROUP_NAME",
                "/aws/kinesisfirehose/RedshiftDeliveryStreamLogGroup",
            ),
            policy_placeholder=env.str("FIREHOSE_POLICY_PLACEHOLDER", DEFAULT_POLICY_PLACEHOLDER),
        )

    def validate(self) -> List[str]:
        errors = []
        if not 1 <= self.buffer_size_mb <= 128:
            errors.append("Firehose buffer size must be between 1 and 128 MB")
        if not 0 <= self.buffer_interval_seconds <= 900:
            errors.append("Firehose buffer interval must be between 0 and 900 seconds")
        if not 0 <= self.retry_duration_seconds <= 7200:
            errors.append("Firehose retry duration must be between 0 and 7200 seconds")
        if not self.policy_placeholder:
            errors.append("Firehose policy placeholder must not be empty")
        return errors


@dataclass
class IotConfig:
    """IoT thing and topic rule"""
    thing_name: str = "temperature-sensor"
    rule_name: str = "TemperatureDataToFirehose"

    @classmethod
    def from_environment(cls) -> "IotConfig":
        return cls(
            thing_name=env.str("IOT_THING_NAME", "temperature-sensor"),
            rule_name=env.str("IOT_RULE_NAME", "TemperatureDataToFirehose"),
        )

    def validate(self) -> List[str]:
        errors = []
        if not self.thing_name:
            errors.append("IoT thing name is required")
        # Topic rule names only allow letters, digits and underscores
        if not self.rule_name.replace("_", "").isalnum():
            errors.append("IoT rule name may only contain letters, digits and underscores")
        return errors


@dataclass
class TableauConfig:
    """Tableau Server Quick Start settings"""
    quickstart_bucket: str = "aws-quickstart"
    quickstart_bucket_region: str = "us-east-1"
    quickstart_key_prefix: str = "quickstart-tableau-server/"
    workload_template: str = "tableau-single-server-centos.template"
    instance_type: str = "m4.2xlarge"
    source_cidr: str = "0.0.0.0/0"
    accept_eula: str = "yes"
    key_pair_name: str = "tableau-server-key-pair"
    instance_profile_name: str = "tableau-server"
    vpc_cidr: str = "192.168.0.0/16"
    registration: Dict[str, str] = field(default_factory=lambda: {
        "RegCountry": "United States",
        "RegCity": "Seattle",
        "RegState": "WA",
        "RegZip": "98101",
        "RegIndustry": "Software",
        "RegCompany": "Example Corp",
        "RegDepartment": "IoT",
        "RegTitle": "Engineer",
        "RegFirstName": "Data",
        "RegLastName": "Engineer",
        "RegEmail": "iot-analytics@example.com",
        "RegPhone": "+12065550100",
    })

    @property
    def template_url(self) -> str:
        return (
            f"https://{self.quickstart_bucket}.s3.{self.quickstart_bucket_region}.amazonaws.com/"
            f"{self.quickstart_key_prefix}templates/{self.workload_template}"
        )

    @classmethod
    def from_environment(cls) -> "TableauConfig":
        defaults = cls()
        return cls(
            quickstart_bucket=env.str("TABLEAU_QS_BUCKET", defaults.quickstart_bucket),
            quickstart_bucket_region=env.str("TABLEAU_QS_BUCKET_REGION", defaults.quickstart_bucket_region),
            quickstart_key_prefix=env.str("TABLEAU_QS_KEY_PREFIX", defaults.quickstart_key_prefix),
            workload_template=env.str("TABLEAU_WORKLOAD_TEMPLATE", defaults.workload_template),
            instance_type=env.str("TABLEAU_INSTANCE_TYPE", defaults.instance_type),
            source_cidr=env.str("TABLEAU_SOURCE_CIDR", defaults.source_cidr),
            accept_eula=env.str("TABLEAU_ACCEPT_EULA", defaults.accept_eula),
            key_pair_name=env.str("TABLEAU_KEY_PAIR_NAME", defaults.key_pair_name),
            instance_profile_name=env.str("TABLEAU_INSTANCE_PROFILE_NAME", defaults.instance_profile_name),
            vpc_cidr=env.str("TABLEAU_VPC_CIDR", defaults.vpc_cidr),
            registration={
                key: env.str(f"TABLEAU_{key.upper()}", value)
                for key, value in defaults.registration.items()
            },
        )

    def validate(self) -> List[str]:
        errors = []
        if self.accept_eula != "yes":
            errors.append("Tableau Server EULA must be accepted (TABLEAU_ACCEPT_EULA=yes)")
        if not self.registration.get("RegEmail"):
            errors.append("Tableau Server registration email is required")
        return errors


@dataclass
class DeviceConfig:
    """Temperature sensor simulator"""
    thing_name: str = "temperature-sensor"
    interval_seconds: float = 3.0
    min_temperature: float = 24.0
    max_temperature: float = 25.0

    @classmethod
    def from_environment(cls) -> "DeviceConfig":
        return cls(
            thing_name=env.str("IOT_THING_NAME", "temperature-sensor"),
            interval_seconds=env.float("DEVICE_INTERVAL_SECONDS", 3.0),
            min_temperature=env.float("DEVICE_MIN_TEMPERATURE", 24.0),
            max_temperature=env.float("DEVICE_MAX_TEMPERATURE", 25.0),
        )

    def validate(self) -> List[str]:
        errors = []
        if self.interval_seconds <= 0:
            errors.append("Device reporting interval must be positive")
        if self.min_temperature > self.max_temperature:
            errors.append("Device minimum temperature exceeds maximum temperature")
        return errors


@dataclass
class AppConfig:
    """Complete build configuration"""
    aws: AWSConfig = field(default_factory=AWSConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    warehouse: WarehouseConfig = field(default_factory=WarehouseConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    iot: IotConfig = field(default_factory=IotConfig)
    tableau: TableauConfig = field(default_factory=TableauConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)

    def validate(self) -> List[str]:
        """
        Validate every section

        Returns:
            List of validation errors
        """
        errors = []
        for section in (self.aws, self.network, self.warehouse, self.delivery,
                        self.iot, self.tableau, self.device):
            errors.extend(section.validate())
        return errors

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None) -> "AppConfig":
        """
        Load configuration from environment variables

        Args:
            env_file: Optional path to .env file

        Returns:
            Configuration instance
        """
        if env_file and os.path.exists(env_file):
            env.read_env(env_file)

        return cls(
            aws=AWSConfig.from_environment(),
            network=NetworkConfig.from_environment(),
            warehouse=WarehouseConfig.from_environment(),
            delivery=DeliveryConfig.from_environment(),
            iot=IotConfig.from_environment(),
            tableau=TableauConfig.from_environment(),
            device=DeviceConfig.from_environment(),
        )


def load_config(env_file: Optional[str] = None) -> AppConfig:
    """
    Load and validate the build configuration

    Args:
        env_file: Optional environment file path

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: one or more settings are invalid
    """
    config = AppConfig.from_environment(env_file)
    errors = config.validate()
    if errors:
        raise ConfigurationError("Invalid configuration: " + "; ".join(errors))
    return config
