import logging

from aws_cdk import (
    CfnOutput,
    Duration,
    Fn,
    aws_certificatemanager as acm,
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_route53 as route53,
    aws_route53_targets as targets,
)
from constructs import Construct

from infrastructure.lib import bindings
from infrastructure.lib.bindings import BindingStack
from infrastructure.lib.config import AppConfig

logger = logging.getLogger(__name__)

SSL_POLICY = "ELBSecurityPolicy-2016-08"
SESSION_COOKIE_NAME = "AWSELBAuthSessionCookie"


class ComputeStack(BindingStack):
    """
    Fargate service for the nginx container behind a Cognito-gated ALB.

    Consumes the network, identity and registry exports. ``HOSTED_ZONE_ID``,
    ``DOMAIN_NAME`` and ``RECORD_NAME`` must be set in the environment; they
    are checked before any construct is created.
    """

    def __init__(self, scope: Construct, construct_id: str,
                 config: AppConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, config=config, **kwargs)

        hosted_zone_id = config.require_env("HOSTED_ZONE_ID")
        domain_name = config.require_env("DOMAIN_NAME")
        record_name = config.require_env("RECORD_NAME")

        family = config.get("ecs.taskDefinitionFamily")
        container_name = config.get("ecs.containerName")
        container_port = int(config.get("ecs.containerPort"))
        service_name = config.get("ecs.serviceName")
        cluster_name = config.get("ecs.clusterName")
        load_balancer_name = config.get("ecs.loadBalancerName")

        # Network from the VPC stack
        vpc = ec2.Vpc.from_vpc_attributes(
            self, "Vpc",
            vpc_id=self.import_binding(bindings.VPC_ID),
            vpc_cidr_block=self.import_binding(bindings.VPC_CIDR_BLOCK),
            availability_zones=[Fn.select(0, Fn.get_azs()), Fn.select(1, Fn.get_azs())],
            public_subnet_ids=[
                self.import_binding(bindings.PUBLIC_SUBNET_1_ID),
                self.import_binding(bindings.PUBLIC_SUBNET_2_ID),
            ],
            private_subnet_ids=[
                self.import_binding(bindings.PRIVATE_SUBNET_1_ID),
                self.import_binding(bindings.PRIVATE_SUBNET_2_ID),
            ],
        )

        # Task definition
        repository_uri = self.import_binding(bindings.ECR_REPOSITORY_URI)
        self.task_definition = ecs.FargateTaskDefinition(
            self, "TaskDefinition",
            family=family,
            cpu=int(config.get("ecs.taskCpu")),
            memory_limit_mib=int(config.get("ecs.taskMemory")),
            runtime_platform=ecs.RuntimePlatform(
                cpu_architecture=ecs.CpuArchitecture.ARM64,
                operating_system_family=ecs.OperatingSystemFamily.LINUX,
            ),
        )

        self.task_definition.add_container(
            container_name,
            container_name=container_name,
            image=ecs.ContainerImage.from_registry(f"{repository_uri}:{config.get('ecs.imageTag')}"),
            logging=ecs.LogDrivers.aws_logs(stream_prefix=family),
            port_mappings=[
                ecs.PortMapping(container_port=container_port, protocol=ecs.Protocol.TCP)
            ],
        )

        self.task_definition.add_to_execution_role_policy(
            iam.PolicyStatement(
                actions=[
                    "ecr:GetAuthorizationToken",
                    "ecr:BatchCheckLayerAvailability",
                    "ecr:GetDownloadUrlForLayer",
                    "ecr:BatchGetImage",
                    "logs:CreateLogStream",
                    "logs:PutLogEvents",
                ],
                resources=["*"],
            )
        )

        # Cluster
        self.cluster = ecs.Cluster(self, "Cluster", vpc=vpc, cluster_name=cluster_name)

        # Security groups
        self.ecs_security_group = ec2.SecurityGroup(
            self, "EcsSecurityGroup",
            vpc=vpc,
            allow_all_outbound=True,
            security_group_name=config.get("ecs.ecsSecurityGroupName"),
            description="Security group for ECS tasks",
        )
        self.ecs_security_group.add_ingress_rule(
            ec2.Peer.ipv4(vpc.vpc_cidr_block),
            ec2.Port.tcp(container_port),
            "Allow traffic from inside the VPC",
        )

        alb_security_group = ec2.SecurityGroup(
            self, "AlbSecurityGroup",
            vpc=vpc,
            allow_all_outbound=True,
            security_group_name=config.get("ecs.albSecurityGroupName"),
            description="Security group for the load balancer",
        )
        alb_security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(), ec2.Port.tcp(80), "Allow HTTP traffic from anywhere"
        )
        alb_security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(), ec2.Port.tcp(443), "Allow HTTPS traffic from anywhere"
        )

        # Service
        self.service = ecs.FargateService(
            self, "Service",
            cluster=self.cluster,
            task_definition=self.task_definition,
            desired_count=int(config.get("ecs.desiredCount", 1)),
            assign_public_ip=False,
            service_name=service_name,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            security_groups=[self.ecs_security_group],
        )

        # Load balancer
        self.load_balancer = elbv2.ApplicationLoadBalancer(
            self, "LoadBalancer",
            vpc=vpc,
            internet_facing=True,
            load_balancer_name=load_balancer_name,
            security_group=alb_security_group,
        )

        self.target_group = elbv2.ApplicationTargetGroup(
            self, "TargetGroup",
            vpc=vpc,
            port=container_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            target_type=elbv2.TargetType.IP,
            targets=[
                self.service.load_balancer_target(
                    container_name=container_name,
                    container_port=container_port,
                )
            ],
            health_check=elbv2.HealthCheck(
                path=config.get("ecs.healthCheckPath", "/"),
                interval=Duration.seconds(30),
            ),
            target_group_name=config.get("ecs.targetGroupName"),
        )

        # Certificate
        hosted_zone = route53.HostedZone.from_hosted_zone_attributes(
            self, "HostedZone",
            hosted_zone_id=hosted_zone_id,
            zone_name=domain_name,
        )

        certificate = acm.Certificate(
            self, "Certificate",
            domain_name=domain_name,
            subject_alternative_names=[f"*.{domain_name}"],
            validation=acm.CertificateValidation.from_dns(hosted_zone),
        )

        # HTTPS listener: Cognito login, then forward to the service
        https_listener = elbv2.CfnListener(
            self, "HttpsListener",
            load_balancer_arn=self.load_balancer.load_balancer_arn,
            port=443,
            protocol="HTTPS",
            ssl_policy=SSL_POLICY,
            certificates=[
                elbv2.CfnListener.CertificateProperty(certificate_arn=certificate.certificate_arn)
            ],
            default_actions=[
                elbv2.CfnListener.ActionProperty(
                    type="authenticate-cognito",
                    authenticate_cognito_config=elbv2.CfnListener.AuthenticateCognitoConfigProperty(
                        user_pool_arn=self.import_binding(bindings.USER_POOL_ARN),
                        user_pool_client_id=self.import_binding(bindings.USER_POOL_CLIENT_ID),
                        user_pool_domain=self.import_binding(bindings.USER_POOL_DOMAIN),
                        session_cookie_name=SESSION_COOKIE_NAME,
                        scope="openid",
                    ),
                    order=1,
                ),
                elbv2.CfnListener.ActionProperty(
                    type="forward",
                    target_group_arn=self.target_group.target_group_arn,
                    order=2,
                ),
            ],
        )

        # The target group must belong to a load balancer before the service registers with it
        self.service.node.add_dependency(https_listener)

        # HTTP listener redirects everything to HTTPS
        self.load_balancer.add_listener(
            "HttpListener",
            port=80,
            open=False,
            protocol=elbv2.ApplicationProtocol.HTTP,
            default_action=elbv2.ListenerAction.redirect(
                protocol="HTTPS",
                port="443",
                permanent=True,
            ),
        )

        # DNS
        route53.ARecord(
            self, "AliasRecord",
            zone=hosted_zone,
            record_name=record_name,
            target=route53.RecordTarget.from_alias(targets.LoadBalancerTarget(self.load_balancer)),
        )

        self.tag(self.cluster, cluster_name)
        self.tag(self.load_balancer, load_balancer_name)
        self.tag(self.service, service_name)
        self.tag(self.task_definition, family)

        logger.debug("Declared service %s on cluster %s for %s", service_name, cluster_name, record_name)

        # Outputs
        self.export_binding(bindings.ECS_CLUSTER_NAME, self.cluster.cluster_name, "The name of the ECS cluster")
        self.export_binding(bindings.ECS_SERVICE_NAME, self.service.service_name, "The name of the ECS service")
        self.export_binding(
            bindings.FARGATE_TASK_DEFINITION_ARN,
            self.task_definition.task_definition_arn,
            "The ARN of the Fargate task definition",
        )
        self.export_binding(bindings.TARGET_GROUP_ARN, self.target_group.target_group_arn, "ALB target group ARN")
        self.export_binding(
            bindings.ECS_SECURITY_GROUP_ID,
            self.ecs_security_group.security_group_id,
            "Security group of the ECS tasks",
        )

        CfnOutput(
            self, "LoadBalancerDnsName",
            value=self.load_balancer.load_balancer_dns_name,
            description="Public DNS name of the load balancer",
        )
