"""
Delivery Pipeline Builder
Kinesis Data Firehose stream that lands records in S3 and loads them into
Redshift with a COPY command.

Delivery guarantee: records are always written to the S3 landing prefix
first (at-least-once). The Redshift COPY is retried for
retry_duration_seconds; once that window is exhausted the batch is only
available in S3 and the failure is written to the Redshift log stream.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from iot_redshift.access import Role
from iot_redshift.composer import Join, ResourceDescriptor, StackGraph
from iot_redshift.config import DeliveryConfig
from iot_redshift.errors import ConfigurationError
from iot_redshift.storage import LogDestination, RedshiftCluster


logger = logging.getLogger(__name__)


@dataclass
class DeliveryStream:
    stream: ResourceDescriptor
    settings: DeliveryConfig

    @property
    def name(self):
        return self.stream.ref

    @property
    def arn(self):
        return self.stream.get_att("Arn")


def redshift_jdbc_url(cluster: RedshiftCluster, port: Any, database: Any) -> Join:
    return Join.of("jdbc:redshift://", cluster.hostname, ":", port, "/", database)


def build_delivery_stream(graph: StackGraph, logical_id: str, stream_name: str,
                          cluster: RedshiftCluster, bucket: ResourceDescriptor,
                          role: Role, logs: LogDestination,
                          s3_log_stream: str, redshift_log_stream: str,
                          settings: DeliveryConfig,
                          database: Any, port: Any, username: Any, password: Any,
                          table: Any, s3_role: Optional[Role] = None) -> DeliveryStream:
    """
    Declare the S3 → Redshift delivery stream

    The bucket, roles, cluster and both log streams must already be declared
    in the graph; the log destinations are part of the pipeline, not optional.

    Args:
        stream_name: Physical delivery stream name
        s3_log_stream: Stream receiving S3 delivery errors
        redshift_log_stream: Stream receiving Redshift COPY errors
        settings: Buffering, retry and COPY configuration, used verbatim
        s3_role: Role for the S3 staging step, defaults to role

    Returns:
        Declared delivery stream
    """
    s3_role = s3_role or role
    s3_stream = logs.stream(s3_log_stream)
    redshift_stream = logs.stream(redshift_log_stream)
    graph.require(cluster.cluster, bucket, role, s3_role, logs.group, s3_stream, redshift_stream)

    errors = settings.validate()
    if errors:
        raise ConfigurationError(f"Invalid delivery settings: {'; '.join(errors)}")

    depends_on = [r.default_policy for r in {role.logical_id: role, s3_role.logical_id: s3_role}.values()
                  if r.statements]

    stream = graph.add(ResourceDescriptor(logical_id, "AWS::KinesisFirehose::DeliveryStream", {
        "DeliveryStreamName": stream_name,
        "DeliveryStreamType": "DirectPut",
        "RedshiftDestinationConfiguration": {
            "ClusterJDBCURL": redshift_jdbc_url(cluster, port, database),
            "Username": username,
            "Password": password,
            "RoleARN": role.arn,
            "S3Configuration": {
                "BucketARN": bucket.get_att("Arn"),
                "Prefix": settings.s3_prefix,
                "RoleARN": s3_role.arn,
                "CompressionFormat": "UNCOMPRESSED",
                "BufferingHints": {
                    "SizeInMBs": settings.buffer_size_mb,
                    "IntervalInSeconds": settings.buffer_interval_seconds,
                },
                "CloudWatchLoggingOptions": {
                    "Enabled": True,
                    "LogGroupName": logs.group_name,
                    "LogStreamName": s3_stream.ref,
                },
            },
            "CloudWatchLoggingOptions": {
                "Enabled": True,
                "LogGroupName": logs.group_name,
                "LogStreamName": redshift_stream.ref,
            },
            "CopyCommand": {
                "CopyOptions": settings.copy_options,
                "DataTableName": table,
            },
            "RetryOptions": {
                "DurationInSeconds": settings.retry_duration_seconds,
            },
        },
    }, depends_on=depends_on))

    logger.info(
        "Declared delivery stream %s: buffer %d MB / %d s, retry %d s",
        stream_name, settings.buffer_size_mb, settings.buffer_interval_seconds,
        settings.retry_duration_seconds,
    )
    return DeliveryStream(stream=stream, settings=settings)
