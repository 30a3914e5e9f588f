from __future__ import annotations

import logging
from typing import Any, Callable, Union, cast

from troposphere import (
    AWS_REGION,
    AWS_STACK_NAME,
    Cidr,
    GetAtt,
    GetAZs,
    Join,
    Output,
    Parameter,
    Ref,
    Select,
    Sub,
    Tags,
    Template,
)
from troposphere import apigatewayv2, ec2, ecs, firehose, iam, logs, s3, servicediscovery

from apigw_fargate.services.topology import Topology, ensure_valid
from apigw_fargate.services.topology.specs import (
    ClusterSpec,
    ContainerGroupSpec,
    ContainerSpec,
    DeliveryPipelineSpec,
    EnvValue,
    GatewaySpec,
    GrantScope,
    IngressRuleSpec,
    LogStreamSpec,
    NetworkSpec,
    ObjectStoreSpec,
    PermissionGrant,
    ResourceRef,
    ResourceSpec,
    RoleSpec,
    SecurityGroupSpec,
    TaskDefinitionSpec,
)

logger = logging.getLogger(__name__)

ANYWHERE = "0.0.0.0/0"


def desired_count_parameter(service_logical_id: str) -> str:
    return f"{service_logical_id}DesiredCount"


class TemplateRenderer:
    """Render a validated topology into a CloudFormation template.

    Nodes are emitted in dependency order; each descriptor kind has one
    `_render_*` method that adds its resource(s) to the template.
    """

    def __init__(self, topology: Topology, *, description: str = "") -> None:
        self._topology = ensure_valid(topology)
        self._description = description or "HTTP API -> Fargate service with FireLens log delivery to S3"
        self._template = Template()
        self._private_subnets: dict[str, list[str]] = {}
        self._private_routes: dict[str, list[str]] = {}
        self._handlers: dict[str, Callable[[Any], None]] = {
            "network": self._render_network,
            "security-group": self._render_security_group,
            "ingress-rule": self._render_ingress_rule,
            "cluster": self._render_cluster,
            "object-store": self._render_object_store,
            "log-stream": self._render_log_stream,
            "role": self._render_role,
            "grant": self._render_grant,
            "delivery-pipeline": self._render_delivery_pipeline,
            "task-definition": self._render_task_definition,
            "container-group": self._render_container_group,
            "gateway": self._render_gateway,
        }

    def render(self) -> Template:
        self._template.set_description(self._description)
        for spec in self._topology.graph.topological_order():
            self._render(spec)
        for output in self._topology.outputs:
            self._template.add_output(
                Output(output.name, Value=self._value(output.ref), Description=output.description)
            )
        logger.info(
            "Rendered template: %d resources, %d outputs",
            len(self._template.resources),
            len(self._template.outputs),
        )
        return self._template

    def render_json(self) -> str:
        return self.render().to_json()

    # -----------------
    # Helpers
    # -----------------

    def _render(self, spec: ResourceSpec) -> None:
        handler = self._handlers.get(spec.kind)
        if handler is None:
            raise ValueError(f"No renderer for resource kind {spec.kind!r} ({spec.logical_id})")
        handler(spec)

    @staticmethod
    def _value(value: EnvValue) -> Union[str, Any]:
        if not isinstance(value, ResourceRef):
            return value
        base = Ref(value.logical_id) if value.attribute is None else GetAtt(value.logical_id, value.attribute)
        return Join("", [base, value.suffix]) if value.suffix else base

    @staticmethod
    def _removal(policy: Any) -> dict[str, str]:
        return {"DeletionPolicy": policy.value, "UpdateReplacePolicy": policy.value}

    # -----------------
    # Renderers
    # -----------------

    def _render_network(self, spec: NetworkSpec) -> None:
        t = self._template
        vpc_id = spec.logical_id
        t.add_resource(
            ec2.VPC(
                vpc_id,
                CidrBlock=spec.cidr,
                EnableDnsHostnames=True,
                EnableDnsSupport=True,
                Tags=Tags(Name=Sub("${AWS::StackName}/" + vpc_id)),
            )
        )
        igw = t.add_resource(ec2.InternetGateway(f"{vpc_id}IGW"))
        attachment = t.add_resource(
            ec2.VPCGatewayAttachment(f"{vpc_id}VPCGW", VpcId=Ref(vpc_id), InternetGatewayId=Ref(igw))
        )

        subnet_blocks = Cidr(GetAtt(vpc_id, "CidrBlock"), str(2 * spec.max_azs), "12")
        nat_gateways: list[str] = []
        private_subnets: list[str] = []
        private_routes: list[str] = []

        for index in range(spec.max_azs):
            az = Select(index, GetAZs(""))
            public = t.add_resource(
                ec2.Subnet(
                    f"{vpc_id}PublicSubnet{index + 1}",
                    VpcId=Ref(vpc_id),
                    CidrBlock=Select(index, subnet_blocks),
                    AvailabilityZone=az,
                    MapPublicIpOnLaunch=True,
                )
            )
            public_rt = t.add_resource(ec2.RouteTable(f"{public.title}RouteTable", VpcId=Ref(vpc_id)))
            t.add_resource(
                ec2.SubnetRouteTableAssociation(
                    f"{public.title}RouteTableAssociation",
                    SubnetId=Ref(public),
                    RouteTableId=Ref(public_rt),
                )
            )
            t.add_resource(
                ec2.Route(
                    f"{public.title}DefaultRoute",
                    RouteTableId=Ref(public_rt),
                    DestinationCidrBlock=ANYWHERE,
                    GatewayId=Ref(igw),
                    DependsOn=[attachment.title],
                )
            )
            if index < spec.nat_gateways:
                eip = t.add_resource(ec2.EIP(f"{public.title}EIP", Domain="vpc"))
                nat = t.add_resource(
                    ec2.NatGateway(
                        f"{public.title}NATGateway",
                        AllocationId=GetAtt(eip, "AllocationId"),
                        SubnetId=Ref(public),
                    )
                )
                nat_gateways.append(nat.title)

        for index in range(spec.max_azs):
            private = t.add_resource(
                ec2.Subnet(
                    f"{vpc_id}PrivateSubnet{index + 1}",
                    VpcId=Ref(vpc_id),
                    CidrBlock=Select(spec.max_azs + index, subnet_blocks),
                    AvailabilityZone=Select(index, GetAZs("")),
                    MapPublicIpOnLaunch=False,
                )
            )
            private_rt = t.add_resource(ec2.RouteTable(f"{private.title}RouteTable", VpcId=Ref(vpc_id)))
            t.add_resource(
                ec2.SubnetRouteTableAssociation(
                    f"{private.title}RouteTableAssociation",
                    SubnetId=Ref(private),
                    RouteTableId=Ref(private_rt),
                )
            )
            route = t.add_resource(
                ec2.Route(
                    f"{private.title}DefaultRoute",
                    RouteTableId=Ref(private_rt),
                    DestinationCidrBlock=ANYWHERE,
                    NatGatewayId=Ref(nat_gateways[min(index, len(nat_gateways) - 1)]),
                )
            )
            private_subnets.append(private.title)
            private_routes.append(route.title)

        self._private_subnets[vpc_id] = private_subnets
        self._private_routes[vpc_id] = private_routes

    def _render_security_group(self, spec: SecurityGroupSpec) -> None:
        egress = []
        if spec.allow_all_outbound:
            egress.append(
                ec2.SecurityGroupRule(IpProtocol="-1", CidrIp=ANYWHERE, Description="Allow all outbound traffic")
            )
        else:
            # CloudFormation opens egress when the list is empty; pin it shut.
            egress.append(
                ec2.SecurityGroupRule(
                    IpProtocol="icmp",
                    CidrIp="255.255.255.255/32",
                    FromPort=252,
                    ToPort=86,
                    Description="Disallow all traffic",
                )
            )
        self._template.add_resource(
            ec2.SecurityGroup(
                spec.logical_id,
                GroupDescription=spec.description,
                VpcId=Ref(spec.network),
                SecurityGroupEgress=egress,
            )
        )

    def _render_ingress_rule(self, spec: IngressRuleSpec) -> None:
        self._template.add_resource(
            ec2.SecurityGroupIngress(
                spec.logical_id,
                GroupId=GetAtt(spec.target_group, "GroupId"),
                SourceSecurityGroupId=GetAtt(spec.source_group, "GroupId"),
                IpProtocol=spec.protocol,
                FromPort=spec.port,
                ToPort=spec.port,
                Description=spec.description or f"from {spec.source_group}:{spec.port}",
            )
        )

    def _render_cluster(self, spec: ClusterSpec) -> None:
        self._template.add_resource(ecs.Cluster(spec.logical_id))
        self._template.add_resource(
            servicediscovery.PrivateDnsNamespace(spec.namespace_id, Name=spec.namespace, Vpc=Ref(spec.network))
        )

    def _render_object_store(self, spec: ObjectStoreSpec) -> None:
        self._template.add_resource(
            s3.Bucket(
                spec.logical_id,
                PublicAccessBlockConfiguration=s3.PublicAccessBlockConfiguration(
                    BlockPublicAcls=True,
                    BlockPublicPolicy=True,
                    IgnorePublicAcls=True,
                    RestrictPublicBuckets=True,
                ),
                Tags=Tags(
                    **{
                        "topology:purpose": spec.purpose,
                        "topology:auto-delete-objects": str(spec.auto_delete_objects).lower(),
                    }
                ),
                **self._removal(spec.removal_policy),
            )
        )

    def _render_log_stream(self, spec: LogStreamSpec) -> None:
        kwargs: dict[str, Any] = self._removal(spec.removal_policy)
        if spec.retention_days:
            kwargs["RetentionInDays"] = spec.retention_days
        self._template.add_resource(logs.LogGroup(spec.logical_id, **kwargs))

    def _render_role(self, spec: RoleSpec) -> None:
        self._template.add_resource(
            iam.Role(
                spec.logical_id,
                AssumeRolePolicyDocument={
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Principal": {"Service": spec.service_principal},
                            "Action": "sts:AssumeRole",
                        }
                    ],
                },
            )
        )

    def _render_grant(self, spec: PermissionGrant) -> None:
        if spec.scope is GrantScope.ANY:
            resources: Any = "*"
        else:
            arn = GetAtt(spec.resource, "Arn")
            resources = [arn]
            if spec.scope is GrantScope.RESOURCE_AND_OBJECTS:
                resources.append(Join("", [arn, "/*"]))

        self._template.add_resource(
            iam.PolicyType(
                spec.logical_id,
                PolicyName=f"{spec.logical_id}Policy",
                Roles=[Ref(spec.role)],
                PolicyDocument={
                    "Version": "2012-10-17",
                    "Statement": [{"Effect": "Allow", "Action": list(spec.actions), "Resource": resources}],
                },
            )
        )

    def _render_delivery_pipeline(self, spec: DeliveryPipelineSpec) -> None:
        self._template.add_resource(
            firehose.DeliveryStream(
                spec.logical_id,
                DeliveryStreamType="DirectPut",
                ExtendedS3DestinationConfiguration=firehose.ExtendedS3DestinationConfiguration(
                    BucketARN=GetAtt(spec.destination, "Arn"),
                    RoleARN=GetAtt(spec.role, "Arn"),
                    Prefix=spec.data_output_prefix,
                    ErrorOutputPrefix=spec.error_output_prefix,
                    CompressionFormat=spec.compression,
                    BufferingHints=firehose.BufferingHints(
                        IntervalInSeconds=spec.buffer_interval_seconds,
                        SizeInMBs=spec.buffer_size_mib,
                    ),
                ),
                DependsOn=list(spec.after),
            )
        )

    def _container_definition(self, container: ContainerSpec) -> ecs.ContainerDefinition:
        options = {name: self._value(value) for name, value in container.log_driver.options.items()}
        if container.log_driver.driver == "awslogs":
            options.setdefault("awslogs-region", Ref(AWS_REGION))

        log_configuration = ecs.LogConfiguration(LogDriver=container.log_driver.driver)
        if options:
            log_configuration.Options = options

        kwargs: dict[str, Any] = {
            "Name": container.name,
            "Image": container.image,
            "Essential": container.essential,
            "LogConfiguration": log_configuration,
        }
        if container.port_mappings:
            kwargs["PortMappings"] = [
                ecs.PortMapping(ContainerPort=port, Protocol="tcp") for port in container.port_mappings
            ]
        if container.environment:
            kwargs["Environment"] = [
                ecs.Environment(Name=name, Value=self._value(value)) for name, value in container.environment.items()
            ]
        if container.firelens_type:
            kwargs["FirelensConfiguration"] = ecs.FirelensConfiguration(Type=container.firelens_type)
        if container.starts_after:
            kwargs["DependsOn"] = [ecs.ContainerDependency(ContainerName=container.starts_after, Condition="START")]
        return ecs.ContainerDefinition(**kwargs)

    def _render_task_definition(self, spec: TaskDefinitionSpec) -> None:
        self._template.add_resource(
            ecs.TaskDefinition(
                spec.logical_id,
                Cpu=str(spec.cpu),
                Memory=str(spec.memory_mib),
                NetworkMode="awsvpc",
                RequiresCompatibilities=["FARGATE"],
                TaskRoleArn=GetAtt(spec.task_role, "Arn"),
                ExecutionRoleArn=GetAtt(spec.execution_role, "Arn"),
                ContainerDefinitions=[self._container_definition(c) for c in spec.containers],
            )
        )

    def _render_container_group(self, spec: ContainerGroupSpec) -> None:
        t = self._template
        cluster = cast(ClusterSpec, self._topology.graph.get(spec.cluster))
        network = cluster.network

        parameter = t.add_parameter(
            Parameter(
                desired_count_parameter(spec.logical_id),
                Type="Number",
                Default=spec.desired_count,
                MinValue=0,
                Description=f"Running replicas of {spec.service_name}.{cluster.namespace}",
            )
        )
        discovery = t.add_resource(
            servicediscovery.Service(
                spec.discovery_service_id,
                Name=spec.service_name,
                NamespaceId=GetAtt(cluster.namespace_id, "Id"),
                DnsConfig=servicediscovery.DnsConfig(
                    DnsRecords=[servicediscovery.DnsRecord(TTL=60, Type=spec.record_type)],
                    RoutingPolicy="MULTIVALUE",
                ),
                HealthCheckCustomConfig=servicediscovery.HealthCheckCustomConfig(FailureThreshold=1),
            )
        )
        t.add_resource(
            ecs.Service(
                spec.logical_id,
                Cluster=Ref(spec.cluster),
                TaskDefinition=Ref(spec.task_definition),
                DesiredCount=Ref(parameter),
                LaunchType="FARGATE",
                EnableExecuteCommand=spec.enable_execute_command,
                NetworkConfiguration=ecs.NetworkConfiguration(
                    AwsvpcConfiguration=ecs.AwsvpcConfiguration(
                        AssignPublicIp="DISABLED",
                        Subnets=[Ref(subnet) for subnet in self._private_subnets[network]],
                        SecurityGroups=[GetAtt(spec.security_group, "GroupId")],
                    )
                ),
                ServiceRegistries=[
                    ecs.ServiceRegistry(
                        RegistryArn=GetAtt(discovery, "Arn"),
                        ContainerName=spec.container_name,
                        ContainerPort=spec.container_port,
                    )
                ],
                DependsOn=list(spec.after) + self._private_routes[network],
            )
        )

    def _render_gateway(self, spec: GatewaySpec) -> None:
        t = self._template
        service = cast(ContainerGroupSpec, self._topology.graph.get(spec.target))

        api = t.add_resource(
            apigatewayv2.Api(spec.logical_id, Name=Sub("${AWS::StackName}-" + spec.logical_id), ProtocolType="HTTP")
        )
        link = t.add_resource(
            apigatewayv2.VpcLink(
                f"{spec.logical_id}VpcLink",
                Name=Join("-", [Ref(AWS_STACK_NAME), "vpclink"]),
                SubnetIds=[Ref(subnet) for subnet in self._private_subnets[spec.network]],
                SecurityGroupIds=[GetAtt(spec.link_security_group, "GroupId")],
            )
        )
        integration = t.add_resource(
            apigatewayv2.Integration(
                f"{spec.logical_id}DefaultIntegration",
                ApiId=Ref(api),
                IntegrationType="HTTP_PROXY",
                IntegrationMethod=spec.method,
                IntegrationUri=GetAtt(service.discovery_service_id, "Arn"),
                ConnectionType="VPC_LINK",
                ConnectionId=Ref(link),
                PayloadFormatVersion="1.0",
            )
        )
        t.add_resource(
            apigatewayv2.Route(
                f"{spec.logical_id}DefaultRoute",
                ApiId=Ref(api),
                RouteKey="$default",
                Target=Join("/", ["integrations", Ref(integration)]),
            )
        )
        t.add_resource(
            apigatewayv2.Stage(
                f"{spec.logical_id}DefaultStage",
                ApiId=Ref(api),
                StageName="$default",
                AutoDeploy=True,
            )
        )
