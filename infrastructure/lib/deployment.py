"""Builds every stack in deployment order and wires their dependencies."""

import logging
import os
from typing import List, Mapping, Optional

import aws_cdk as cdk
from constructs import Construct

from infrastructure.lib.bindings import BindingStack, verify_bindings
from infrastructure.lib.compute_stack import ComputeStack
from infrastructure.lib.config import AppConfig
from infrastructure.lib.identity_stack import IdentityStack
from infrastructure.lib.network_stack import NetworkStack
from infrastructure.lib.pipeline_stack import PipelineStack
from infrastructure.lib.registry_stack import RegistryStack

logger = logging.getLogger(__name__)

NETWORK_STACK = "DemoVPC"
IDENTITY_STACK = "DemoCognito"
REGISTRY_STACK = "DemoECR"
COMPUTE_STACK = "DemoECS"
PIPELINE_STACK = "DemoDeploy"


def build_stacks(scope: Construct, config: AppConfig,
                 env: Optional[cdk.Environment] = None) -> List[BindingStack]:
    """
    Create the five stacks and check their export/import names.

    Args:
        scope: The CDK app
        config: Application configuration
        env: Account and region for every stack

    Returns:
        The stacks in deployment order

    Raises:
        ConfigurationError: If a required setting or environment variable is missing
        BindingError: If an import has no single earlier producer
    """
    network = NetworkStack(
        scope, NETWORK_STACK,
        config=config,
        env=env,
        description="VPC, subnets and routing for the nginx service",
    )

    identity = IdentityStack(
        scope, IDENTITY_STACK,
        config=config,
        env=env,
        description="Cognito user pool for the load balancer login",
    )

    registry = RegistryStack(
        scope, REGISTRY_STACK,
        config=config,
        env=env,
        description="ECR repository for the nginx image",
    )

    compute = ComputeStack(
        scope, COMPUTE_STACK,
        config=config,
        env=env,
        description="ECS Fargate service behind an authenticated ALB",
    )

    pipeline = PipelineStack(
        scope, PIPELINE_STACK,
        config=config,
        env=env,
        description="CI/CD pipeline building and deploying the nginx image",
    )

    # Add dependencies
    identity.add_dependency(network)
    registry.add_dependency(network)
    compute.add_dependency(identity)
    compute.add_dependency(registry)
    pipeline.add_dependency(compute)

    stacks = [network, identity, registry, compute, pipeline]
    verify_bindings(stacks)

    for stack in stacks:
        cdk.Tags.of(stack).add("Project", config.get("global.project"))

    logger.info("Built stacks: %s", ", ".join(stack.node.id for stack in stacks))
    return stacks


def build_app(app: cdk.App, environ: Optional[Mapping[str, str]] = None) -> List[BindingStack]:
    """
    Load configuration for ``app`` and build its stacks.

    The configuration path comes from the ``config`` context key, defaulting
    to ``config.json``. Account and region come from ``CDK_DEFAULT_ACCOUNT``
    and ``CDK_DEFAULT_REGION``; the region falls back to ``deploy.region``.
    """
    environ = os.environ if environ is None else environ

    config = AppConfig.load(app.node.try_get_context("config") or "config.json", environ=environ)

    env = cdk.Environment(
        account=environ.get("CDK_DEFAULT_ACCOUNT"),
        region=environ.get("CDK_DEFAULT_REGION") or config.get("deploy.region"),
    )

    return build_stacks(app, config, env=env)
