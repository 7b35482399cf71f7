import logging
from typing import Tuple

from aws_cdk import (
    CfnOutput,
    Duration,
    Fn,
    RemovalPolicy,
    aws_codebuild as codebuild,
    aws_codepipeline as codepipeline,
    aws_codepipeline_actions as pipeline_actions,
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_iam as iam,
    aws_logs as logs,
    aws_s3 as s3,
)
from constructs import Construct

from infrastructure.lib import bindings
from infrastructure.lib.bindings import BindingStack
from infrastructure.lib.config import AppConfig
from infrastructure.lib.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

BUILDSPEC_PATH = ".build/buildspec.yml"
IMAGE_DEFINITIONS_FILE = "imagedefinitions.json"


class PipelineStack(BindingStack):
    """
    Source, build and deploy pipeline for the nginx image.

    The CodeStar connection ARN, repository (``owner/name``) and region are
    read from ``CODECONNECTION_ARN``, ``REPOSITORY`` and ``AWS_REGION``,
    falling back to the ``deploy`` configuration section.
    """

    def __init__(self, scope: Construct, construct_id: str,
                 config: AppConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, config=config, **kwargs)

        connection_arn = config.env_or("CODECONNECTION_ARN", "deploy.connectionArn")
        repository = config.env_or("REPOSITORY", "deploy.repository")
        region = config.env_or("AWS_REGION", "deploy.region")
        owner, repo = _split_repository(repository)

        project_name = config.get("deploy.buildProjectName")
        branch = config.get("deploy.branch")

        ecr_uri = self.import_binding(bindings.ECR_REPOSITORY_URI)
        cluster_name = self.import_binding(bindings.ECS_CLUSTER_NAME)
        service_name = self.import_binding(bindings.ECS_SERVICE_NAME)

        # IAM roles
        codebuild_role = iam.Role(
            self, "CodeBuildServiceRole",
            assumed_by=iam.ServicePrincipal("codebuild.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonS3FullAccess"),
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonEC2ContainerRegistryPowerUser"),
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonECS_FullAccess"),
            ],
        )

        pipeline_role = iam.Role(
            self, "CodePipelineServiceRole",
            assumed_by=iam.ServicePrincipal("codepipeline.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("AWSCodePipeline_FullAccess"),
                iam.ManagedPolicy.from_aws_managed_policy_name("AWSCodeBuildDeveloperAccess"),
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonS3FullAccess"),
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonECS_FullAccess"),
            ],
        )
        pipeline_role.add_to_policy(
            iam.PolicyStatement(
                actions=["codestar-connections:UseConnection", "codeconnections:UseConnection"],
                resources=[connection_arn],
            )
        )

        # Create artifact bucket
        artifact_bucket = s3.Bucket(
            self, "ArtifactBucket",
            bucket_name=config.get("deploy.artifactBucketName"),
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            versioned=True,
            # Old artifact versions only
            lifecycle_rules=[
                s3.LifecycleRule(
                    id="ExpireSupersededArtifacts",
                    noncurrent_version_expiration=Duration.days(30),
                    abort_incomplete_multipart_upload_after=Duration.days(1),
                )
            ],
        )

        # Build project: builds the image, pushes it and writes imagedefinitions.json
        build_log_group = logs.LogGroup(
            self, "BuildLogGroup",
            log_group_name=f"/aws/codebuild/{project_name}",
            retention=logs.RetentionDays.ONE_MONTH,
            removal_policy=RemovalPolicy.DESTROY,
        )

        build_project = codebuild.PipelineProject(
            self, "BuildProject",
            project_name=project_name,
            role=codebuild_role,
            build_spec=codebuild.BuildSpec.from_source_filename(BUILDSPEC_PATH),
            environment=codebuild.BuildEnvironment(
                build_image=codebuild.LinuxArmBuildImage.AMAZON_LINUX_2_STANDARD_3_0,
                compute_type=codebuild.ComputeType.SMALL,
                privileged=True,
            ),
            environment_variables={
                "ECR_REPO_URI": codebuild.BuildEnvironmentVariable(value=ecr_uri),
                "IMAGE_TAG": codebuild.BuildEnvironmentVariable(value=config.get("deploy.imageTag")),
                "AWS_DEFAULT_REGION": codebuild.BuildEnvironmentVariable(value=region),
                "AWS_ACCOUNT_ID": codebuild.BuildEnvironmentVariable(value=self.account),
                "CONTAINER_NAME": codebuild.BuildEnvironmentVariable(value=config.get("ecs.containerName")),
            },
            logging=codebuild.LoggingOptions(
                cloud_watch=codebuild.CloudWatchLoggingOptions(log_group=build_log_group)
            ),
        )

        # Create Pipeline
        pipeline = codepipeline.Pipeline(
            self, "Pipeline",
            pipeline_name=config.get("deploy.pipelineName"),
            role=pipeline_role,
            artifact_bucket=artifact_bucket,
            restart_execution_on_update=True,
        )

        # Source stage
        source_output = codepipeline.Artifact("SourceOutput")
        pipeline.add_stage(
            stage_name="Source",
            actions=[
                pipeline_actions.CodeStarConnectionsSourceAction(
                    action_name="SourceAction",
                    connection_arn=connection_arn,
                    owner=owner,
                    repo=repo,
                    branch=branch,
                    output=source_output,
                    run_order=1,
                )
            ],
        )

        # Build stage
        build_output = codepipeline.Artifact("BuildOutput")
        pipeline.add_stage(
            stage_name="Build",
            actions=[
                pipeline_actions.CodeBuildAction(
                    action_name="BuildAction",
                    project=build_project,
                    input=source_output,
                    outputs=[build_output],
                    run_order=1,
                )
            ],
        )

        # Deploy stage
        # Imported clusters need a VPC; only its id is referenced
        vpc = ec2.Vpc.from_vpc_attributes(
            self, "Vpc",
            vpc_id=self.import_binding(bindings.VPC_ID),
            availability_zones=[Fn.select(0, Fn.get_azs()), Fn.select(1, Fn.get_azs())],
        )
        cluster = ecs.Cluster.from_cluster_attributes(
            self, "Cluster",
            cluster_name=cluster_name,
            vpc=vpc,
        )
        service = ecs.FargateService.from_fargate_service_attributes(
            self, "Service",
            cluster=cluster,
            service_name=service_name,
        )
        pipeline.add_stage(
            stage_name="Deploy",
            actions=[
                pipeline_actions.EcsDeployAction(
                    action_name="DeployAction",
                    service=service,
                    image_file=build_output.at_path(IMAGE_DEFINITIONS_FILE),
                    run_order=1,
                )
            ],
        )

        logger.debug("Declared pipeline for %s/%s@%s in %s", owner, repo, branch, region)

        # Outputs
        CfnOutput(
            self, "PipelineName",
            value=pipeline.pipeline_name,
            description="CodePipeline name",
        )

        CfnOutput(
            self, "ArtifactBucketName",
            value=artifact_bucket.bucket_name,
            description="Pipeline Artifact Bucket",
        )


def _split_repository(repository: str) -> Tuple[str, str]:
    owner, _, repo = repository.partition("/")
    if not owner or not repo or "/" in repo:
        raise ConfigurationError(
            f"Repository must look like 'owner/name', got {repository!r}",
            config_key="REPOSITORY",
        )
    return owner, repo
