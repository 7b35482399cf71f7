import pytest
from aws_cdk import CfnResource
from aws_cdk.assertions import Match, Template

from infrastructure.lib.config import AppConfig
from infrastructure.lib.exceptions import ConfigurationError
from infrastructure.lib.pipeline_stack import PipelineStack


@pytest.fixture
def template(app, config, cdk_env):
    stack = PipelineStack(app, "test-pipeline", config=config, env=cdk_env)
    return Template.from_stack(stack)


def _stage(name, action):
    return Match.object_like({"Name": name, "Actions": [Match.object_like(action)]})


class TestPipelineStack:
    """Test suite for the PipelineStack."""

    def test_pipeline_stages(self, template, environ):
        """Test the source, build and deploy stages in order."""
        template.resource_count_is("AWS::CodePipeline::Pipeline", 1)
        template.has_resource_properties(
            "AWS::CodePipeline::Pipeline",
            {
                "Name": "demo-nginx-pipeline",
                "Stages": [
                    _stage(
                        "Source",
                        {
                            "ActionTypeId": Match.object_like(
                                {"Category": "Source", "Provider": "CodeStarSourceConnection"}
                            ),
                            "Configuration": Match.object_like(
                                {
                                    "ConnectionArn": environ["CODECONNECTION_ARN"],
                                    "FullRepositoryId": "example-org/nginx-ecs-cdk",
                                    "BranchName": "main",
                                }
                            ),
                        },
                    ),
                    _stage(
                        "Build",
                        {"ActionTypeId": Match.object_like({"Category": "Build", "Provider": "CodeBuild"})},
                    ),
                    _stage(
                        "Deploy",
                        {
                            "ActionTypeId": Match.object_like({"Category": "Deploy", "Provider": "ECS"}),
                            "Configuration": {
                                "ClusterName": {"Fn::ImportValue": "EcsClusterName"},
                                "ServiceName": {"Fn::ImportValue": "EcsServiceName"},
                                "FileName": "imagedefinitions.json",
                            },
                        },
                    ),
                ],
            },
        )

    def test_build_project(self, template):
        """Test the privileged CodeBuild project and the variables the buildspec reads."""
        template.has_resource_properties(
            "AWS::CodeBuild::Project",
            {
                "Name": "demo-nginx-build",
                "Source": {"Type": "CODEPIPELINE", "BuildSpec": ".build/buildspec.yml"},
                "Environment": Match.object_like(
                    {
                        "PrivilegedMode": True,
                        "EnvironmentVariables": Match.array_with(
                            [
                                Match.object_like(
                                    {
                                        "Name": "ECR_REPO_URI",
                                        "Value": {"Fn::ImportValue": "EcrRepositoryUri"},
                                    }
                                )
                            ]
                        ),
                    }
                ),
                "LogsConfig": {
                    "CloudWatchLogs": Match.object_like({"Status": "ENABLED"}),
                },
            },
        )
        template.has_resource_properties(
            "AWS::CodeBuild::Project",
            {
                "Environment": Match.object_like(
                    {
                        "EnvironmentVariables": Match.array_with(
                            [Match.object_like({"Name": "AWS_DEFAULT_REGION", "Value": "eu-central-1"})]
                        ),
                    }
                ),
            },
        )
        template.has_resource_properties(
            "AWS::Logs::LogGroup", {"LogGroupName": "/aws/codebuild/demo-nginx-build"}
        )

    def test_service_roles(self, template):
        template.has_resource_properties(
            "AWS::IAM::Role",
            {
                "AssumeRolePolicyDocument": Match.object_like(
                    {
                        "Statement": [
                            Match.object_like({"Principal": {"Service": "codebuild.amazonaws.com"}})
                        ]
                    }
                ),
            },
        )
        template.has_resource_properties(
            "AWS::IAM::Policy",
            {
                "PolicyDocument": Match.object_like(
                    {
                        "Statement": Match.array_with(
                            [
                                Match.object_like(
                                    {
                                        "Action": [
                                            "codestar-connections:UseConnection",
                                            "codeconnections:UseConnection",
                                        ],
                                        "Resource": Match.any_value(),
                                    }
                                )
                            ]
                        )
                    }
                ),
            },
        )

    def test_artifact_bucket(self, template):
        template.has_resource_properties(
            "AWS::S3::Bucket",
            {
                "BucketName": "demo-nginx-pipeline-artifacts",
                "VersioningConfiguration": {"Status": "Enabled"},
                "LifecycleConfiguration": {
                    "Rules": [
                        {
                            "Id": "ExpireSupersededArtifacts",
                            "Status": "Enabled",
                            "NoncurrentVersionExpiration": {"NoncurrentDays": 30},
                            "AbortIncompleteMultipartUpload": {"DaysAfterInitiation": 1},
                        }
                    ]
                },
            },
        )
        template.has_resource_properties(
            "AWS::S3::BucketPolicy",
            {
                "PolicyDocument": Match.object_like(
                    {
                        "Statement": Match.array_with(
                            [
                                Match.object_like(
                                    {
                                        "Effect": "Deny",
                                        "Condition": {"Bool": {"aws:SecureTransport": "false"}},
                                    }
                                )
                            ]
                        )
                    }
                ),
            },
        )

    def test_builds_without_compute_stack_objects(self, app, config, cdk_env):
        """Test that the deploy target is rebuilt from exports alone."""
        # When
        stack = PipelineStack(app, "test-pipeline", config=config, env=cdk_env)
        template = Template.from_stack(stack)

        # Then
        assert set(stack.imported_names) == {
            "EcrRepositoryUri",
            "EcsClusterName",
            "EcsServiceName",
            "VPCId",
        }
        assert stack.exported_names == []
        template.resource_count_is("AWS::ECS::Cluster", 0)
        template.resource_count_is("AWS::ECS::Service", 0)
        template.resource_count_is("AWS::EC2::VPC", 0)

    def test_configuration_fallback_when_environment_unset(self, app, settings, cdk_env):
        """Test that the deploy section supplies values the environment does not."""
        # Given
        settings["deploy"]["connectionArn"] = "arn:aws:codeconnections:eu-central-1:123456789012:connection/from-config"
        settings["deploy"]["repository"] = "config-org/config-repo"
        config = AppConfig(settings, {})

        # When
        stack = PipelineStack(app, "test-pipeline", config=config, env=cdk_env)
        template = Template.from_stack(stack)

        # Then
        template.has_resource_properties(
            "AWS::CodePipeline::Pipeline",
            {
                "Stages": Match.array_with(
                    [
                        _stage(
                            "Source",
                            {
                                "Configuration": Match.object_like(
                                    {"FullRepositoryId": "config-org/config-repo"}
                                )
                            },
                        )
                    ]
                )
            },
        )

    @pytest.mark.parametrize("missing", ["CODECONNECTION_ARN", "REPOSITORY"])
    def test_missing_source_settings_fail_fast(self, app, settings, environ, cdk_env, missing):
        # Given
        del environ[missing]
        config = AppConfig(settings, environ)

        # When / Then
        with pytest.raises(ConfigurationError) as exc_info:
            PipelineStack(app, "test-pipeline", config=config, env=cdk_env)

        assert exc_info.value.config_key == missing
        assert not [c for c in app.node.find_all() if isinstance(c, CfnResource)]

    def test_missing_region_fails_fast(self, app, settings, environ, cdk_env):
        # Given
        del environ["AWS_REGION"]
        settings["deploy"]["region"] = ""
        config = AppConfig(settings, environ)

        # When / Then
        with pytest.raises(ConfigurationError) as exc_info:
            PipelineStack(app, "test-pipeline", config=config, env=cdk_env)

        assert exc_info.value.config_key == "AWS_REGION"

    @pytest.mark.parametrize("repository", ["no-slash", "/repo", "owner/", "a/b/c"])
    def test_malformed_repository_rejected(self, app, settings, environ, cdk_env, repository):
        # Given
        environ["REPOSITORY"] = repository
        config = AppConfig(settings, environ)

        # When / Then
        with pytest.raises(ConfigurationError):
            PipelineStack(app, "test-pipeline", config=config, env=cdk_env)
