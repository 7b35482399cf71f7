import logging

from aws_cdk import (
    RemovalPolicy,
    aws_cognito as cognito,
)
from constructs import Construct

from infrastructure.lib import bindings
from infrastructure.lib.bindings import BindingStack
from infrastructure.lib.config import AppConfig

logger = logging.getLogger(__name__)


class IdentityStack(BindingStack):
    """
    Cognito user pool backing the load balancer's login.

    Callback and logout URLs come from ``COGNITO_URL1`` and ``COGNITO_URL2``;
    construction fails before any resource is declared if either is unset.
    """

    def __init__(self, scope: Construct, construct_id: str,
                 config: AppConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, config=config, **kwargs)

        callback_urls = [config.require_env("COGNITO_URL1"), config.require_env("COGNITO_URL2")]
        pool_name = config.get("cognito.userPoolName")

        self.user_pool = cognito.UserPool(
            self, "UserPool",
            user_pool_name=pool_name,
            sign_in_aliases=cognito.SignInAliases(email=True),
            auto_verify=cognito.AutoVerifiedAttrs(email=True),
            standard_attributes=cognito.StandardAttributes(
                email=cognito.StandardAttribute(required=True, mutable=True)
            ),
            mfa=cognito.Mfa.OFF,
            password_policy=cognito.PasswordPolicy(
                min_length=8,
                require_lowercase=True,
                require_uppercase=True,
                require_digits=True,
                require_symbols=True,
            ),
            removal_policy=RemovalPolicy.DESTROY,
        )
        self.tag(self.user_pool, pool_name)

        self.user_pool_client = self.user_pool.add_client(
            "UserPoolClient",
            user_pool_client_name=config.get("cognito.userPoolClientName"),
            generate_secret=True,
            o_auth=cognito.OAuthSettings(
                flows=cognito.OAuthFlows(authorization_code_grant=True),
                scopes=[cognito.OAuthScope.OPENID, cognito.OAuthScope.EMAIL],
                callback_urls=callback_urls,
                logout_urls=callback_urls,
            ),
            supported_identity_providers=[cognito.UserPoolClientIdentityProvider.COGNITO],
        )

        self.user_pool_domain = self.user_pool.add_domain(
            "UserPoolDomain",
            cognito_domain=cognito.CognitoDomainOptions(
                domain_prefix=config.get("cognito.domainPrefix")
            ),
        )

        logger.debug("Declared user pool %s with callbacks %s", pool_name, callback_urls)

        # Outputs
        self.export_binding(bindings.USER_POOL_ID, self.user_pool.user_pool_id, "Cognito user pool ID")
        self.export_binding(bindings.USER_POOL_ARN, self.user_pool.user_pool_arn, "Cognito user pool ARN")
        self.export_binding(
            bindings.USER_POOL_CLIENT_ID,
            self.user_pool_client.user_pool_client_id,
            "Cognito app client ID",
        )
        self.export_binding(
            bindings.USER_POOL_DOMAIN,
            self.user_pool_domain.domain_name,
            "Cognito hosted login domain prefix",
        )
