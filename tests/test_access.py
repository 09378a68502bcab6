"""
Tests for IAM roles and policy statements
"""

import pytest

from iot_redshift.access import (
    Effect,
    PolicyStatement,
    Role,
    build_role,
    firehose_delivery_statements,
    managed_policy_arn,
)
from iot_redshift.composer import DeferredReference, ResourceDescriptor
from iot_redshift.errors import StackCompositionError, UnresolvedDependencyError
from iot_redshift.storage import build_bucket


def _statements(graph, role_id):
    policy = graph.render()["Resources"][f"{role_id}DefaultPolicy"]
    return policy["Properties"]["PolicyDocument"]["Statement"]


class TestPolicyStatement:
    """Test statement construction and matching"""

    def test_requires_actions_and_resources(self):
        with pytest.raises(StackCompositionError):
            PolicyStatement(actions=(), resources=("*",))
        with pytest.raises(StackCompositionError):
            PolicyStatement(actions=("s3:GetObject",), resources=())

    def test_unknown_effect(self):
        with pytest.raises(StackCompositionError, match="effect"):
            PolicyStatement(actions=("s3:GetObject",), resources=("*",), effect="Maybe")

    def test_single_action_renders_as_string(self):
        statement = PolicyStatement(actions=["logs:PutLogEvents"], resources=["*"])
        assert statement.to_json() == {
            "Effect": "Allow",
            "Action": "logs:PutLogEvents",
            "Resource": "*",
        }

    def test_wildcard_matching(self):
        statement = PolicyStatement(actions=("firehose:Put*",),
                                    resources=("arn:aws:firehose:*:*:deliverystream/*",))
        assert statement.matches("firehose:PutRecord", "arn:aws:firehose:us-east-1:1:deliverystream/s")
        assert not statement.matches("firehose:DeleteDeliveryStream", "*")


class TestRole:
    """Test roles and their default policy"""

    def test_statement_count_matches_appends(self, graph):
        """Test every appended statement is rendered, duplicates included"""
        role = build_role(graph, "WorkerRole", "firehose")
        statement = PolicyStatement(actions=("s3:GetObject",), resources=("*",))
        role.add_to_policy(statement)
        role.add_to_policy(PolicyStatement(actions=("s3:PutObject",), resources=("*",)))
        role.add_to_policy(statement)

        rendered = _statements(graph, "WorkerRole")
        assert len(rendered) == 3
        assert [s["Action"] for s in rendered] == ["s3:GetObject", "s3:PutObject", "s3:GetObject"]

    @pytest.mark.parametrize("storage_first", [True, False])
    def test_statement_count_independent_of_order(self, graph, storage_first):
        """Test declaring storage before or after the role keeps every statement"""
        if storage_first:
            bucket = build_bucket(graph, "Landing")
            role = build_role(graph, "DeliveryRole", "firehose")
        else:
            role = build_role(graph, "DeliveryRole", "firehose")
            bucket = build_bucket(graph, "Landing")
        for statement in firehose_delivery_statements(bucket, "us-east-1"):
            role.add_to_policy(statement)

        assert len(_statements(graph, "DeliveryRole")) == 7

    def test_statements_after_consumers(self, graph):
        """Test statements appended after the role was consumed still render"""
        role = build_role(graph, "WorkerRole", "firehose")
        bucket = build_bucket(graph, "Landing")
        graph.add(ResourceDescriptor("Consumer", "Custom::Consumer", {"RoleArn": role.arn}))
        role.add_to_policy(PolicyStatement(actions=("s3:*",), resources=(bucket.get_att("Arn"),)))

        assert _statements(graph, "WorkerRole") == [{
            "Effect": "Allow",
            "Action": "s3:*",
            "Resource": {"Fn::GetAtt": ["Landing", "Arn"]},
        }]
        assert "Landing" not in graph.dependencies("Consumer")
        assert graph.dependencies("WorkerRoleDefaultPolicy") == frozenset({"WorkerRole", "Landing"})

    def test_forward_reference(self, graph):
        """Test statements may point at resources declared later"""
        build_role(graph, "WorkerRole", "iot", [PolicyStatement(
            actions=("firehose:PutRecord",), resources=(DeferredReference("Stream", "Arn"),),
        )])
        graph.add(ResourceDescriptor("Stream", "AWS::KinesisFirehose::DeliveryStream"))

        order = [r.logical_id for r in graph.topological_order()]
        assert order.index("Stream") < order.index("WorkerRoleDefaultPolicy")

    def test_unresolved_forward_reference(self, graph):
        """Test a forward reference that is never declared fails at render"""
        build_role(graph, "WorkerRole", "iot", [PolicyStatement(
            actions=("firehose:PutRecord",), resources=(DeferredReference("Stream", "Arn"),),
        )])
        with pytest.raises(UnresolvedDependencyError, match="Stream"):
            graph.render()

    def test_empty_policy_not_rendered(self, graph):
        build_role(graph, "TableauRole", "ec2", managed_policies=[managed_policy_arn("ReadOnlyAccess")])
        resources = graph.render()["Resources"]

        assert "TableauRoleDefaultPolicy" not in resources
        assert resources["TableauRole"]["Properties"]["ManagedPolicyArns"] == [{
            "Fn::Join": ["", ["arn:", {"Ref": "AWS::Partition"}, ":iam::aws:policy/ReadOnlyAccess"]]
        }]
        assert resources["TableauRole"]["Properties"]["AssumeRolePolicyDocument"]["Statement"][0][
            "Principal"] == {"Service": "ec2.amazonaws.com"}

    def test_allows(self):
        role = Role("Checker", "iot")
        role.add_to_policy(PolicyStatement(actions=("firehose:PutRecord",), resources=("*",)))
        assert role.allows("firehose:PutRecord", DeferredReference("Stream", "Arn"))
        assert not role.allows("firehose:PutRecordBatch", "*")

        role.add_to_policy(PolicyStatement(actions=("firehose:*",), resources=("*",),
                                           effect=Effect.DENY))
        assert not role.allows("firehose:PutRecord", DeferredReference("Stream", "Arn"))


class TestFirehoseDeliveryStatements:
    """Test the Firehose delivery role policy"""

    def test_statement_set(self, graph):
        bucket = build_bucket(graph, "Landing")
        statements = firehose_delivery_statements(bucket, "us-east-1")

        assert len(statements) == 7
        assert statements[1].resources[0] == bucket.get_att("Arn")
        assert statements[4].actions == ("logs:PutLogEvents",)
        assert statements[6].conditions["StringEquals"]["kms:ViaService"].render() == \
            "kinesis.us-east-1.amazonaws.com"

    def test_placeholder_is_configurable(self, graph):
        bucket = build_bucket(graph, "Landing")
        default = firehose_delivery_statements(bucket, "us-east-1")
        custom = firehose_delivery_statements(bucket, "us-east-1", placeholder="unused")

        default_lambda = default[2].resources[0].render()
        custom_lambda = custom[2].resources[0].render()
        assert default_lambda["Fn::Join"][1][-1].endswith(
            ":function:%FIREHOSE_POLICY_TEMPLATE_PLACEHOLDER%"
        )
        assert custom_lambda["Fn::Join"][1][-1].endswith(":function:unused")
