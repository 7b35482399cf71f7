import logging

from aws_cdk import (
    RemovalPolicy,
    aws_ecr as ecr,
)
from constructs import Construct

from infrastructure.lib import bindings
from infrastructure.lib.bindings import BindingStack
from infrastructure.lib.config import AppConfig

logger = logging.getLogger(__name__)


class RegistryStack(BindingStack):
    def __init__(self, scope: Construct, construct_id: str,
                 config: AppConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, config=config, **kwargs)

        repository_name = config.get("nginx.ecrRepositoryName")

        # Image repository for the nginx container
        self.repository = ecr.Repository(
            self, "Repository",
            repository_name=repository_name,
            removal_policy=RemovalPolicy.DESTROY,
            image_scan_on_push=True,
            image_tag_mutability=ecr.TagMutability.MUTABLE,
        )
        self.tag(self.repository, repository_name)
        logger.debug("Declared ECR repository %s", repository_name)

        # Outputs
        self.export_binding(
            bindings.ECR_REPOSITORY_URI,
            self.repository.repository_uri,
            "The URI of the ECR repository",
        )
        self.export_binding(
            bindings.ECR_REPOSITORY_NAME,
            self.repository.repository_name,
            "The name of the ECR repository",
        )
