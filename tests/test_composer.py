"""
Unit tests for the stack composer
Deferred references, dependency inference, ordering and rendering
"""

import json

import pytest

from iot_redshift.composer import (
    Aws,
    DeferredReference,
    Join,
    Output,
    OutputResolver,
    Parameter,
    ResourceDescriptor,
    StackGraph,
    get_azs,
    select,
)
from iot_redshift.errors import (
    ConfigurationError,
    CyclicDependencyError,
    DuplicateResourceError,
    InvalidParameterError,
    StackCompositionError,
    UnresolvedDependencyError,
)


class TestDeferredValues:
    """Test rendering of symbolic values"""

    def test_ref_and_get_att(self):
        assert DeferredReference("Bucket").render() == {"Ref": "Bucket"}
        assert DeferredReference("Bucket", "Arn").render() == {"Fn::GetAtt": ["Bucket", "Arn"]}

    def test_join_collapses_literals(self):
        assert Join.of("jdbc:", "redshift://", "host").render() == "jdbc:redshift://host"

    def test_join_keeps_references(self):
        joined = Join.of("arn:", Aws.PARTITION, ":s3:::", DeferredReference("Bucket"), "/*")
        assert joined.render() == {
            "Fn::Join": ["", ["arn:", {"Ref": "AWS::Partition"}, ":s3:::", {"Ref": "Bucket"}, "/*"]]
        }

    def test_nested_joins_are_flattened(self):
        inner = Join.of(DeferredReference("Cluster", "Endpoint.Address"), ":", 5439)
        outer = Join.of("jdbc:redshift://", inner, "/iot")
        assert outer.render() == {
            "Fn::Join": ["", [
                "jdbc:redshift://",
                {"Fn::GetAtt": ["Cluster", "Endpoint.Address"]},
                ":5439/iot",
            ]]
        }

    def test_select_availability_zone(self):
        assert select(0, get_azs()).render() == {"Fn::Select": [0, {"Fn::GetAZs": ""}]}

    def test_none_properties_are_dropped(self, graph):
        resource = graph.add(ResourceDescriptor("Bucket", "AWS::S3::Bucket", {
            "BucketName": None,
            "Tags": [],
        }))
        assert resource.render() == {"Type": "AWS::S3::Bucket", "Properties": {"Tags": []}}


class TestParameter:
    """Test parameter declaration and validation"""

    def test_unsupported_type_rejected(self):
        with pytest.raises(ConfigurationError):
            Parameter("Port", type="Integer")

    def test_number_validation(self):
        port = Parameter("Port", type="Number", min_value=1150, max_value=65535)
        assert port.validate(5439) == 5439
        assert port.validate("5439") == "5439"
        with pytest.raises(InvalidParameterError, match="expects a Number"):
            port.validate("five")
        with pytest.raises(InvalidParameterError, match=">= 1150"):
            port.validate(80)
        with pytest.raises(InvalidParameterError):
            port.validate(True)

    def test_string_validation(self):
        name = Parameter("Database", allowed_pattern=r"[a-z][a-z0-9_]*")
        assert name.validate("iot") == "iot"
        with pytest.raises(InvalidParameterError, match="does not match"):
            name.validate("IoT-Data")
        with pytest.raises(InvalidParameterError, match="expects a String"):
            name.validate(42)

    def test_allowed_values(self):
        eula = Parameter("AcceptEULA", allowed_values=("yes",))
        with pytest.raises(InvalidParameterError, match="must be one of"):
            eula.validate("no")

    def test_declaration(self):
        password = Parameter("Password", description="Redshift database password", no_echo=True)
        assert password.declaration() == {
            "Type": "String",
            "Description": "Redshift database password",
            "NoEcho": "true",
        }


class TestStackGraph:
    """Test declaration, dependency inference and ordering"""

    def test_duplicate_logical_id(self, graph):
        graph.add(ResourceDescriptor("Bucket", "AWS::S3::Bucket"))
        with pytest.raises(DuplicateResourceError):
            graph.add(ResourceDescriptor("Bucket", "AWS::S3::Bucket"))

    def test_logical_id_must_be_alphanumeric(self):
        with pytest.raises(StackCompositionError):
            ResourceDescriptor("my-bucket", "AWS::S3::Bucket")

    def test_reference_to_undeclared_resource(self, graph):
        with pytest.raises(UnresolvedDependencyError, match="Cluster"):
            graph.add(ResourceDescriptor("Stream", "AWS::KinesisFirehose::DeliveryStream", {
                "Host": DeferredReference("Cluster", "Endpoint.Address"),
            }))

    def test_undeclared_parameter(self, graph):
        with pytest.raises(UnresolvedDependencyError, match="Port"):
            graph.add(ResourceDescriptor("Cluster", "AWS::Redshift::Cluster", {
                "Port": Parameter("Port", type="Number"),
            }))

    def test_dependencies_are_inferred(self, graph):
        bucket = graph.add(ResourceDescriptor("Bucket", "AWS::S3::Bucket"))
        log_group = graph.add(ResourceDescriptor("Logs", "AWS::Logs::LogGroup"))
        graph.add(ResourceDescriptor("Stream", "AWS::KinesisFirehose::DeliveryStream", {
            "Destination": {"BucketARN": bucket.get_att("Arn")},
            "Logging": [Join.of("group:", log_group.ref)],
        }))
        assert graph.dependencies("Stream") == frozenset({"Bucket", "Logs"})
        assert graph.dependencies("Bucket") == frozenset()

    def test_properties_are_read_only(self, graph):
        """Test declared properties cannot grow undeclared dependencies"""
        bucket = graph.add(ResourceDescriptor("Bucket", "AWS::S3::Bucket"))
        source = {"BucketARN": bucket.get_att("Arn")}
        stream = graph.add(ResourceDescriptor("Stream", "AWS::KinesisFirehose::DeliveryStream", source))

        with pytest.raises(TypeError):
            stream.properties["Logging"] = DeferredReference("Missing")
        source["Logging"] = DeferredReference("Missing")

        assert graph.dependencies("Stream") == frozenset({"Bucket"})
        assert graph.render()["Resources"]["Stream"]["Properties"] == {
            "BucketARN": {"Fn::GetAtt": ["Bucket", "Arn"]},
        }

    def test_explicit_depends_on(self, graph):
        attachment = graph.add(ResourceDescriptor("Attachment", "AWS::EC2::VPCGatewayAttachment"))
        route = graph.add(ResourceDescriptor("Route", "AWS::EC2::Route", depends_on=[attachment]))
        assert route.render()["DependsOn"] == ["Attachment"]
        assert graph.dependencies("Route") == frozenset({"Attachment"})

    def test_topological_order_moves_forward_references_last(self, graph):
        policy = ForwardPolicy("Policy", "AWS::IAM::Policy", {
            "Resource": DeferredReference("Stream", "Arn"),
        })
        graph.add(policy)
        graph.add(ResourceDescriptor("Bucket", "AWS::S3::Bucket"))
        graph.add(ResourceDescriptor("Stream", "AWS::KinesisFirehose::DeliveryStream"))

        order = [descriptor.logical_id for descriptor in graph.topological_order()]
        assert order == ["Bucket", "Stream", "Policy"]

    def test_forward_reference_never_declared(self, graph):
        graph.add(ForwardPolicy("Policy", "AWS::IAM::Policy", {
            "Resource": DeferredReference("Missing", "Arn"),
        }))
        with pytest.raises(UnresolvedDependencyError, match="Missing"):
            graph.render()

    def test_cycle_detected(self, graph):
        graph.add(ForwardPolicy("A", "Custom::A", {"Peer": DeferredReference("B")}))
        graph.add(ForwardPolicy("B", "Custom::B", {"Peer": DeferredReference("A")}))
        with pytest.raises(CyclicDependencyError):
            graph.topological_order()

    def test_require(self, graph):
        declared = graph.add(ResourceDescriptor("Logs", "AWS::Logs::LogGroup"))
        graph.require(declared)
        with pytest.raises(UnresolvedDependencyError):
            graph.require(ResourceDescriptor("Other", "AWS::Logs::LogGroup"))


class ForwardPolicy(ResourceDescriptor):
    allows_forward_references = True


class TestRendering:
    """Test template rendering"""

    def _graph(self):
        graph = StackGraph("RenderStack", description="Render test")
        port = graph.add_parameter(Parameter("Port", type="Number", default=5439,
                                             min_value=1150, max_value=65535))
        cluster = graph.add(ResourceDescriptor("Cluster", "AWS::Redshift::Cluster", {
            "Port": port,
        }, deletion_policy="Delete"))
        graph.add_output(Output("Redshift Host", cluster.get_att("Endpoint.Address")))
        graph.add_output(Output("Redshift Port", port, description="Port"))
        return graph

    def test_template_sections(self):
        template = self._graph().render()
        assert template["AWSTemplateFormatVersion"] == "2010-09-09"
        assert template["Description"] == "Render test"
        assert template["Parameters"]["Port"]["Default"] == 5439
        assert template["Resources"]["Cluster"] == {
            "Type": "AWS::Redshift::Cluster",
            "Properties": {"Port": {"Ref": "Port"}},
            "DeletionPolicy": "Delete",
        }
        assert template["Outputs"] == {
            "RedshiftHost": {"Value": {"Fn::GetAtt": ["Cluster", "Endpoint.Address"]}},
            "RedshiftPort": {"Value": {"Ref": "Port"}, "Description": "Port"},
        }

    def test_parameter_override_is_validated(self):
        graph = self._graph()
        assert graph.render({"Port": 5440})["Parameters"]["Port"]["Default"] == 5440
        with pytest.raises(InvalidParameterError):
            graph.render({"Port": "not-a-port"})
        with pytest.raises(InvalidParameterError, match="Unknown parameter"):
            graph.render({"Region": "us-east-1"})

    def test_output_must_reference_declared_resource(self, graph):
        with pytest.raises(UnresolvedDependencyError):
            graph.add_output(Output("Host", DeferredReference("Cluster", "Endpoint.Address")))

    def test_to_json(self):
        assert json.loads(self._graph().to_json()) == self._graph().render()


class TestOutputResolver:
    """Test output ordering"""

    def test_declaration_order_preserved(self):
        names = ["Zeta", "Alpha", "Mu", "Beta", "Omega"]
        rendered = OutputResolver().resolve([Output(name, name.lower()) for name in names])
        assert list(rendered) == names
        assert len(rendered) == len(names)

    def test_keys_are_sanitized(self):
        rendered = OutputResolver().resolve([Output("Redshift JDBC URL", "jdbc:redshift://h")])
        assert list(rendered) == ["RedshiftJDBCURL"]

    def test_colliding_keys(self):
        with pytest.raises(StackCompositionError, match="collides"):
            OutputResolver().resolve([Output("IoT Rule", "a"), Output("IoTRule", "b")])

    def test_export_name(self):
        rendered = OutputResolver().resolve([Output("Host", "h", export_name="RedshiftHost")])
        assert rendered["Host"]["Export"] == {"Name": "RedshiftHost"}
