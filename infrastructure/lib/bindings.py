"""
Cross-stack export names and the base stack that publishes and consumes them.

Stacks never hold references to each other's constructs. Every value crosses
a stack boundary as a CloudFormation export, and ``verify_bindings`` checks
that the names line up before the app is synthesized.
"""

import logging
from typing import Dict, List, Optional, Sequence

from aws_cdk import CfnOutput, Fn, Stack, Tags
from constructs import Construct

from infrastructure.lib.config import AppConfig
from infrastructure.lib.exceptions import BindingError

logger = logging.getLogger(__name__)

# Network
VPC_ID = "VPCId"
VPC_CIDR_BLOCK = "VPCCidrBlock"
PUBLIC_SUBNET_1_ID = "PublicSubnet1Id"
PUBLIC_SUBNET_2_ID = "PublicSubnet2Id"
PRIVATE_SUBNET_1_ID = "PrivateSubnet1Id"
PRIVATE_SUBNET_2_ID = "PrivateSubnet2Id"

# Identity
USER_POOL_ID = "UserPoolId"
USER_POOL_ARN = "UserPoolArn"
USER_POOL_CLIENT_ID = "UserPoolClientId"
USER_POOL_DOMAIN = "UserPoolDomain"

# Registry
ECR_REPOSITORY_URI = "EcrRepositoryUri"
ECR_REPOSITORY_NAME = "EcrRepositoryName"

# Compute
ECS_CLUSTER_NAME = "EcsClusterName"
ECS_SERVICE_NAME = "EcsServiceName"
FARGATE_TASK_DEFINITION_ARN = "FargateTaskDefinitionArn"
TARGET_GROUP_ARN = "TargetGroupArn"
ECS_SECURITY_GROUP_ID = "EcsSecurityGroupId"


class BindingStack(Stack):
    """
    Stack that records the export names it publishes and imports.

    Args:
        scope: CDK scope
        construct_id: Unique identifier for this stack
        config: Application configuration shared by all stacks
        **kwargs: Additional keyword arguments for Stack
    """

    def __init__(self, scope: Construct, construct_id: str,
                 config: AppConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config
        self.exported_names: List[str] = []
        self.imported_names: List[str] = []

    def export_binding(self, export_name: str, value: str,
                       description: Optional[str] = None) -> CfnOutput:
        if export_name in self.exported_names:
            raise BindingError(
                f"{self.node.id} exports {export_name} more than once",
                export_name=export_name,
            )
        self.exported_names.append(export_name)
        return CfnOutput(
            self, export_name,
            value=value,
            description=description,
            export_name=export_name,
        )

    def import_binding(self, export_name: str) -> str:
        if export_name not in self.imported_names:
            self.imported_names.append(export_name)
        return Fn.import_value(export_name)

    def tag(self, scope: Construct, name: str) -> None:
        """Apply the ``Name`` and ``env`` tags every resource carries."""
        Tags.of(scope).add("Name", name)
        Tags.of(scope).add("env", self.config.env_name)


def verify_bindings(stacks: Sequence[BindingStack]) -> Dict[str, str]:
    """
    Check that every import resolves to exactly one earlier export.

    Args:
        stacks: Stacks in deployment order

    Returns:
        Mapping of export name to the id of the stack producing it

    Raises:
        BindingError: If an export is produced twice, or an import has no
            producer or is produced by a later stack
    """
    producers: Dict[str, str] = {}
    position: Dict[str, int] = {}
    for index, stack in enumerate(stacks):
        for name in stack.exported_names:
            if name in producers:
                raise BindingError(
                    f"{name} is exported by both {producers[name]} and {stack.node.id}",
                    export_name=name,
                )
            producers[name] = stack.node.id
            position[name] = index

    for index, stack in enumerate(stacks):
        for name in stack.imported_names:
            if name not in producers:
                raise BindingError(
                    f"{stack.node.id} imports {name}, which no stack exports",
                    export_name=name,
                )
            if position[name] >= index:
                raise BindingError(
                    f"{stack.node.id} imports {name} from {producers[name]}, "
                    f"which is not deployed before it",
                    export_name=name,
                )
        logger.debug("%s imports %s", stack.node.id, ", ".join(stack.imported_names) or "nothing")

    return producers
