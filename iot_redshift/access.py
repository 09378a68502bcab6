"""
Access Policy Builder
IAM roles assembled from least-privilege policy statements. Statements may
reference resources declared later in the same build; they are only checked
when the template is rendered.
"""

import logging
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Dict, Iterable, List, Optional, Tuple

from iot_redshift.composer import (
    Aws,
    DeferredReference,
    Join,
    ResourceDescriptor,
    StackGraph,
)
from iot_redshift.config import DEFAULT_POLICY_PLACEHOLDER
from iot_redshift.errors import StackCompositionError


logger = logging.getLogger(__name__)

POLICY_VERSION = "2012-10-17"


class Effect:
    ALLOW = "Allow"
    DENY = "Deny"


def service_principal(service: str) -> str:
    """firehose -> firehose.amazonaws.com"""
    return service if "." in service else f"{service}.amazonaws.com"


def arn(service: str, resource: str, region: Any = "", account: Any = "") -> Join:
    return Join.of("arn:", Aws.PARTITION, f":{service}:", region, ":", account, ":", resource)


def managed_policy_arn(name: str) -> Join:
    return Join.of("arn:", Aws.PARTITION, ":iam::aws:policy/", name)


@dataclass(frozen=True)
class PolicyStatement:
    actions: Tuple[str, ...]
    resources: Tuple[Any, ...]
    effect: str = Effect.ALLOW
    conditions: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.effect not in (Effect.ALLOW, Effect.DENY):
            raise StackCompositionError(f"Unknown policy effect '{self.effect}'")
        if not self.actions:
            raise StackCompositionError("A policy statement needs at least one action")
        if not self.resources:
            raise StackCompositionError("A policy statement needs at least one resource")
        # Accept lists from callers, keep tuples internally
        object.__setattr__(self, "actions", tuple(self.actions))
        object.__setattr__(self, "resources", tuple(self.resources))

    def to_json(self) -> Dict[str, Any]:
        statement: Dict[str, Any] = {
            "Effect": self.effect,
            "Action": self.actions[0] if len(self.actions) == 1 else list(self.actions),
            "Resource": self.resources[0] if len(self.resources) == 1 else list(self.resources),
        }
        if self.conditions:
            statement["Condition"] = self.conditions
        return statement

    def matches(self, action: str, resource: Any) -> bool:
        if not any(fnmatchcase(action, pattern) for pattern in self.actions):
            return False
        for pattern in self.resources:
            if pattern == "*" or pattern == resource:
                return True
            if isinstance(pattern, str) and isinstance(resource, str) and fnmatchcase(resource, pattern):
                return True
        return False


class RolePolicy(ResourceDescriptor):
    """Inline policy holding a role's statements, rendered in append order"""

    allows_forward_references = True

    def __init__(self, role: "Role"):
        super().__init__(f"{role.logical_id}DefaultPolicy", "AWS::IAM::Policy")
        self.role = role

    @property
    def properties(self) -> Dict[str, Any]:
        return {
            "PolicyName": self.logical_id,
            "PolicyDocument": {
                "Version": POLICY_VERSION,
                "Statement": [statement.to_json() for statement in self.role.statements],
            },
            "Roles": [self.role.ref],
        }

    def is_renderable(self) -> bool:
        return bool(self.role.statements)


class Role(ResourceDescriptor):
    """
    IAM role assumed by one service principal

    Statements go to a companion AWS::IAM::Policy so resources that consume
    the role ARN never depend on the resources its statements point at.
    """

    def __init__(self, logical_id: str, principal: str,
                 statements: Iterable[PolicyStatement] = (),
                 managed_policies: Iterable[Any] = (),
                 role_name: Optional[str] = None,
                 path: Optional[str] = None):
        super().__init__(logical_id, "AWS::IAM::Role")
        self.principal = service_principal(principal)
        self.managed_policies: List[Any] = list(managed_policies)
        self.role_name = role_name
        self.path = path
        self.statements: List[PolicyStatement] = []
        self.default_policy = RolePolicy(self)
        for statement in statements:
            self.add_to_policy(statement)

    @property
    def properties(self) -> Dict[str, Any]:
        return {
            "AssumeRolePolicyDocument": {
                "Version": POLICY_VERSION,
                "Statement": [{
                    "Action": "sts:AssumeRole",
                    "Effect": Effect.ALLOW,
                    "Principal": {"Service": self.principal},
                }],
            },
            "ManagedPolicyArns": self.managed_policies or None,
            "RoleName": self.role_name,
            "Path": self.path,
        }

    @property
    def arn(self) -> DeferredReference:
        return self.get_att("Arn")

    def add_to_policy(self, statement: PolicyStatement) -> PolicyStatement:
        self.statements.append(statement)
        return statement

    def add_managed_policy(self, policy_arn: Any) -> None:
        self.managed_policies.append(policy_arn)

    def allows(self, action: str, resource: Any) -> bool:
        """True when an Allow statement covers the pair and no Deny does"""
        relevant = [s for s in self.statements if s.matches(action, resource)]
        if any(s.effect == Effect.DENY for s in relevant):
            return False
        return any(s.effect == Effect.ALLOW for s in relevant)

    def companions(self):
        return (self.default_policy,)


def build_role(graph: StackGraph, logical_id: str, principal: str,
               statements: Iterable[PolicyStatement] = (),
               managed_policies: Iterable[Any] = (),
               role_name: Optional[str] = None,
               path: Optional[str] = None) -> Role:
    """Declare a role and its default policy; statements are appended as given"""
    role = graph.add(Role(logical_id, principal, statements, managed_policies,
                          role_name=role_name, path=path))
    logger.debug("Role %s for %s with %d statements",
                 logical_id, role.principal, len(role.statements))
    return role


def firehose_delivery_statements(bucket: ResourceDescriptor, region: Any,
                                 placeholder: str = DEFAULT_POLICY_PLACEHOLDER,
                                 log_resources: Iterable[Any] = ("*",)) -> List[PolicyStatement]:
    """
    Statements Kinesis Data Firehose needs to stage records in S3 and load
    them into Redshift

    Args:
        bucket: Landing bucket
        region: Deployment region
        placeholder: Token standing in for Glue, Lambda, KMS and Kinesis
            resources the stream does not use yet
        log_resources: Log groups the stream may write to

    Returns:
        Statements in the order they should be appended
    """
    account = Aws.ACCOUNT_ID
    kinesis_stream = arn("kinesis", f"stream/{placeholder}", region, account)
    kms_key = arn("kms", f"key/{placeholder}", region, account)
    return [
        PolicyStatement(
            actions=("glue:GetTable", "glue:GetTableVersion", "glue:GetTableVersions"),
            resources=(
                arn("glue", "catalog", region, account),
                arn("glue", f"database/{placeholder}", region, account),
                arn("glue", f"table/{placeholder}/{placeholder}", region, account),
            ),
        ),
        PolicyStatement(
            actions=(
                "s3:AbortMultipartUpload",
                "s3:GetBucketLocation",
                "s3:GetObject",
                "s3:ListBucket",
                "s3:ListBucketMultipartUploads",
                "s3:PutObject",
            ),
            resources=(bucket.get_att("Arn"), Join.of(bucket.get_att("Arn"), "/*")),
        ),
        PolicyStatement(
            actions=("lambda:InvokeFunction", "lambda:GetFunctionConfiguration"),
            resources=(arn("lambda", f"function:{placeholder}", region, account),),
        ),
        PolicyStatement(
            actions=("kms:GenerateDataKey", "kms:Decrypt"),
            resources=(kms_key,),
        ),
        PolicyStatement(
            actions=("logs:PutLogEvents",),
            resources=tuple(log_resources),
        ),
        PolicyStatement(
            actions=(
                "kinesis:DescribeStream",
                "kinesis:GetShardIterator",
                "kinesis:GetRecords",
                "kinesis:ListShards",
            ),
            resources=(kinesis_stream,),
        ),
        PolicyStatement(
            actions=("kms:Decrypt",),
            resources=(kms_key,),
            conditions={
                "StringEquals": {
                    "kms:ViaService": Join.of("kinesis.", region, ".amazonaws.com"),
                },
                "StringLike": {
                    "kms:EncryptionContext:aws:kinesis:arn": kinesis_stream,
                },
            },
        ),
    ]
