"""AWS backend: EC2 networking and instances, ELBv2 load balancers.

Every botocore failure is translated into the kubeward exception
taxonomy at this boundary. Remote commands run over SSH against the
node's public address.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, Final

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from injector import Injector, inject
from loguru import logger

from kubeward.api.backend import (
    InterfaceInfo,
    NetworkInfo,
    RouteTableInfo,
    SecurityGroupInfo,
    SecurityRule,
    TagFilters,
    Tags,
)
from kubeward.api.model import NodeCredential, NodeInfo, NodeRequest, NodeRole
from kubeward.constants import ClusterTag, NodeState, ResourceClass
from kubeward.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DependencyViolationError,
    KubewardError,
    QuotaExceededError,
    ResourceCreationError,
    ResourceNotFoundError,
    TransientNetworkError,
    ValidationError,
)
from kubeward.transport.ssh import SSHTransport

from .clients import AWSModule, EC2ClientFactory, ELBClientFactory
from .config import AWS

# =============================================================================
# Error translation
# =============================================================================

_TRANSIENT_CODES: Final = frozenset({
    "RequestLimitExceeded",
    "Throttling",
    "ThrottlingException",
    "ServiceUnavailable",
    "Unavailable",
    "InternalError",
    "RequestTimeout",
})

_AUTH_CODES: Final = frozenset({
    "AuthFailure",
    "UnauthorizedOperation",
    "InvalidClientTokenId",
    "ExpiredToken",
    "SignatureDoesNotMatch",
})

_VALIDATION_CODES: Final = frozenset({
    "InvalidParameter",
    "InvalidParameterValue",
    "InvalidParameterCombination",
    "MissingParameter",
    "ValidationError",
})

_NOT_FOUND_CODES: Final = frozenset({
    "InvalidGroup.NotFound",
    "InvalidVpcID.NotFound",
    "InvalidSubnetID.NotFound",
    "InvalidInternetGatewayID.NotFound",
    "InvalidRouteTableID.NotFound",
    "InvalidInstanceID.NotFound",
    "InvalidAllocationID.NotFound",
    "InvalidNetworkInterfaceID.NotFound",
    "InvalidVolume.NotFound",
    "NatGatewayNotFound",
    "LoadBalancerNotFound",
})


def error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def translate_client_error(
    e: ClientError,
    resource_class: str = "",
    resource_id: str = "",
) -> KubewardError:
    """Map a botocore ClientError onto the kubeward taxonomy."""
    code = error_code(e)
    message = e.response.get("Error", {}).get("Message", str(e))

    if code in _NOT_FOUND_CODES or code.endswith(".NotFound"):
        return ResourceNotFoundError(resource_class or "resource", resource_id or "?")
    if code == "DependencyViolation":
        return DependencyViolationError(resource_id or "?", message)
    if code in _TRANSIENT_CODES:
        return TransientNetworkError(f"{code}: {message}")
    if code in _AUTH_CODES:
        return AuthenticationError(f"{code}: {message}")
    if code.endswith("LimitExceeded") or code == "InsufficientInstanceCapacity":
        return QuotaExceededError(f"{code}: {message}")
    if code in _VALIDATION_CODES:
        return ValidationError(f"{code}: {message}")
    return KubewardError(f"{code or 'UnknownError'}: {message}")


@contextmanager
def aws_errors(
    resource_class: str = "",
    resource_id: str = "",
    *,
    creating: str | None = None,
) -> Iterator[None]:
    """Translate botocore errors raised inside the block.

    With ``creating`` set, failures that are not quota, credential or
    transient errors surface as ResourceCreationError.
    """
    try:
        yield
    except ClientError as e:
        err = translate_client_error(e, resource_class, resource_id)
        if creating is not None and not isinstance(
            err, (QuotaExceededError, AuthenticationError, TransientNetworkError)
        ):
            raise ResourceCreationError(resource_class, creating, str(err)) from e
        raise err from e
    except NoCredentialsError as e:
        raise AuthenticationError(str(e)) from e
    except BotoCoreError as e:
        raise TransientNetworkError(str(e)) from e


# =============================================================================
# Conversions
# =============================================================================


def tag_list(tags: Tags) -> list[dict[str, str]]:
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def tag_spec(resource_type: str, tags: Tags) -> list[dict[str, Any]]:
    return [{"ResourceType": resource_type, "Tags": tag_list(tags)}]


def tag_dict(raw: Sequence[Mapping[str, str]] | None) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in raw or ()}


def tag_filters(filters: TagFilters) -> list[dict[str, Any]]:
    return [{"Name": f"tag:{k}", "Values": list(v)} for k, v in filters.items()]


def ip_permission(rule: SecurityRule) -> dict[str, Any]:
    perm: dict[str, Any] = {"IpProtocol": rule.protocol}
    if rule.protocol != "-1":
        perm["FromPort"] = rule.from_port
        perm["ToPort"] = rule.to_port
    if rule.source.startswith("sg-"):
        perm["UserIdGroupPairs"] = [{"GroupId": rule.source, "Description": rule.description}]
    else:
        perm["IpRanges"] = [{"CidrIp": rule.source, "Description": rule.description}]
    return perm


# (describe method, response list key, id key, filter parameter name)
_DESCRIBE: Final[Mapping[ResourceClass, tuple[str, str, str, str]]] = {
    ResourceClass.NETWORK: ("describe_vpcs", "Vpcs", "VpcId", "Filters"),
    ResourceClass.SUBNET: ("describe_subnets", "Subnets", "SubnetId", "Filters"),
    ResourceClass.GATEWAY: (
        "describe_internet_gateways", "InternetGateways", "InternetGatewayId", "Filters",
    ),
    ResourceClass.NAT_GATEWAY: ("describe_nat_gateways", "NatGateways", "NatGatewayId", "Filter"),
    ResourceClass.ROUTE_TABLE: ("describe_route_tables", "RouteTables", "RouteTableId", "Filters"),
    ResourceClass.SECURITY_GROUP: (
        "describe_security_groups", "SecurityGroups", "GroupId", "Filters",
    ),
    ResourceClass.ADDRESS: ("describe_addresses", "Addresses", "AllocationId", "Filters"),
    ResourceClass.INTERFACE: (
        "describe_network_interfaces", "NetworkInterfaces", "NetworkInterfaceId", "Filters",
    ),
    ResourceClass.VOLUME: ("describe_volumes", "Volumes", "VolumeId", "Filters"),
}

_LIVE_INSTANCE_STATES: Final = ["pending", "running", "stopping", "stopped"]


# =============================================================================
# Backend
# =============================================================================


class AWSBackend:
    """Backend over one AWS region.

    Build it through ``AWS(...).create_backend()`` or ``AWSBackend.create``;
    the client factories come from ``AWSModule``.
    """

    @inject
    def __init__(self, config: AWS, ec2: EC2ClientFactory, elb: ELBClientFactory) -> None:
        self.config = config
        self.ec2 = ec2
        self.elb = elb

    @classmethod
    def create(cls, config: AWS) -> AWSBackend:
        injector = Injector([AWSModule(), lambda binder: binder.bind(AWS, to=config)])
        return injector.get(cls)

    @property
    def name(self) -> str:
        return "aws"

    @property
    def region(self) -> str:
        return self.config.region

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def authenticate(self) -> None:
        with aws_errors():
            async with self.ec2() as ec2:
                await ec2.describe_availability_zones(
                    Filters=[{"Name": "region-name", "Values": [self.config.region]}],
                )

    async def validate_permissions(self) -> None:
        """Dry-run the calls provisioning depends on."""
        checks: list[tuple[str, dict[str, Any]]] = [
            ("describe_vpcs", {}),
            ("create_vpc", {"CidrBlock": self.config.vpc_cidr}),
            ("describe_instances", {}),
            ("describe_security_groups", {}),
        ]
        denied: list[str] = []
        async with self.ec2() as ec2:
            for action, kwargs in checks:
                try:
                    await getattr(ec2, action)(DryRun=True, **kwargs)
                except ClientError as e:
                    code = error_code(e)
                    if code == "DryRunOperation":
                        continue
                    if code == "UnauthorizedOperation":
                        denied.append(action)
                        continue
                    raise translate_client_error(e) from e
                except NoCredentialsError as e:
                    raise AuthenticationError(str(e)) from e
        if denied:
            raise AuthenticationError(f"Missing EC2 permissions: {', '.join(denied)}")

    # -------------------------------------------------------------------------
    # Network
    # -------------------------------------------------------------------------

    async def create_network(self, name: str, tags: Tags) -> str:
        with aws_errors(ResourceClass.NETWORK, creating=name):
            async with self.ec2() as ec2:
                resp = await ec2.create_vpc(
                    CidrBlock=self.config.vpc_cidr,
                    TagSpecifications=tag_spec("vpc", tags),
                )
                vpc_id = resp["Vpc"]["VpcId"]
                await ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsHostnames={"Value": True})
        logger.bind(backend=self.name).debug(f"Created VPC {vpc_id}")
        return vpc_id

    async def describe_network(self, network_id: str) -> NetworkInfo | None:
        try:
            with aws_errors(ResourceClass.NETWORK, network_id):
                async with self.ec2() as ec2:
                    resp = await ec2.describe_vpcs(VpcIds=[network_id])
        except ResourceNotFoundError:
            return None
        if not resp["Vpcs"]:
            return None
        vpc = resp["Vpcs"][0]
        return NetworkInfo(
            id=network_id,
            cidr=vpc.get("CidrBlock", ""),
            available=vpc.get("State") == "available",
        )

    async def delete_network(self, network_id: str) -> None:
        with aws_errors(ResourceClass.NETWORK, network_id):
            async with self.ec2() as ec2:
                await ec2.delete_vpc(VpcId=network_id)

    async def create_subnet(self, network_id: str, name: str, tags: Tags) -> str:
        with aws_errors(ResourceClass.SUBNET, creating=name):
            async with self.ec2() as ec2:
                resp = await ec2.create_subnet(
                    VpcId=network_id,
                    CidrBlock=self.config.subnet_cidr,
                    AvailabilityZone=self.config.zone,
                    TagSpecifications=tag_spec("subnet", tags),
                )
                subnet_id = resp["Subnet"]["SubnetId"]
                await ec2.modify_subnet_attribute(
                    SubnetId=subnet_id, MapPublicIpOnLaunch={"Value": True},
                )
        return subnet_id

    async def delete_subnet(self, subnet_id: str) -> None:
        with aws_errors(ResourceClass.SUBNET, subnet_id):
            async with self.ec2() as ec2:
                await ec2.delete_subnet(SubnetId=subnet_id)

    async def create_gateway(self, network_id: str, name: str, tags: Tags) -> str:
        """Create an internet gateway, attach it and route 0.0.0.0/0 through it.

        A gateway that fails to attach is deleted before the error is raised.
        """
        with aws_errors(ResourceClass.GATEWAY, creating=name):
            async with self.ec2() as ec2:
                resp = await ec2.create_internet_gateway(
                    TagSpecifications=tag_spec("internet-gateway", tags),
                )
                gw_id = resp["InternetGateway"]["InternetGatewayId"]
                try:
                    await ec2.attach_internet_gateway(InternetGatewayId=gw_id, VpcId=network_id)
                except ClientError:
                    await ec2.delete_internet_gateway(InternetGatewayId=gw_id)
                    raise

                tables = await ec2.describe_route_tables(
                    Filters=[
                        {"Name": "vpc-id", "Values": [network_id]},
                        {"Name": "association.main", "Values": ["true"]},
                    ],
                )
                for table in tables["RouteTables"]:
                    await ec2.create_route(
                        RouteTableId=table["RouteTableId"],
                        DestinationCidrBlock="0.0.0.0/0",
                        GatewayId=gw_id,
                    )
        return gw_id

    async def detach_gateway(self, gateway_id: str) -> None:
        with aws_errors(ResourceClass.GATEWAY, gateway_id):
            async with self.ec2() as ec2:
                resp = await ec2.describe_internet_gateways(InternetGatewayIds=[gateway_id])
                for gw in resp["InternetGateways"]:
                    for attachment in gw.get("Attachments", []):
                        await ec2.detach_internet_gateway(
                            InternetGatewayId=gateway_id, VpcId=attachment["VpcId"],
                        )

    async def delete_gateway(self, gateway_id: str) -> None:
        with aws_errors(ResourceClass.GATEWAY, gateway_id):
            async with self.ec2() as ec2:
                await ec2.delete_internet_gateway(InternetGatewayId=gateway_id)

    async def delete_nat_gateway(self, nat_gateway_id: str) -> None:
        with aws_errors(ResourceClass.NAT_GATEWAY, nat_gateway_id):
            async with self.ec2() as ec2:
                await ec2.delete_nat_gateway(NatGatewayId=nat_gateway_id)

    async def describe_route_table(self, route_table_id: str) -> RouteTableInfo | None:
        try:
            with aws_errors(ResourceClass.ROUTE_TABLE, route_table_id):
                async with self.ec2() as ec2:
                    resp = await ec2.describe_route_tables(RouteTableIds=[route_table_id])
        except ResourceNotFoundError:
            return None
        if not resp["RouteTables"]:
            return None
        associations = resp["RouteTables"][0].get("Associations", [])
        return RouteTableInfo(
            id=route_table_id,
            is_main=any(a.get("Main") for a in associations),
        )

    async def delete_route_table(self, route_table_id: str) -> None:
        with aws_errors(ResourceClass.ROUTE_TABLE, route_table_id):
            async with self.ec2() as ec2:
                await ec2.delete_route_table(RouteTableId=route_table_id)

    # -------------------------------------------------------------------------
    # Security
    # -------------------------------------------------------------------------

    async def create_security_group(self, network_id: str, name: str, tags: Tags) -> str:
        with aws_errors(ResourceClass.SECURITY_GROUP, creating=name):
            async with self.ec2() as ec2:
                resp = await ec2.create_security_group(
                    GroupName=name,
                    Description=f"kubeward cluster security group {name}",
                    VpcId=network_id,
                    TagSpecifications=tag_spec("security-group", tags),
                )
        return resp["GroupId"]

    async def describe_security_group(self, group_id: str) -> SecurityGroupInfo | None:
        try:
            with aws_errors(ResourceClass.SECURITY_GROUP, group_id):
                async with self.ec2() as ec2:
                    resp = await ec2.describe_security_groups(GroupIds=[group_id])
        except ResourceNotFoundError:
            return None
        if not resp["SecurityGroups"]:
            return None
        group = resp["SecurityGroups"][0]
        name = group.get("GroupName", "")
        return SecurityGroupInfo(id=group_id, name=name, is_default=name == "default")

    async def authorize_ingress(self, group_id: str, rules: Sequence[SecurityRule]) -> None:
        if not rules:
            return
        with aws_errors(ResourceClass.SECURITY_GROUP, group_id):
            async with self.ec2() as ec2:
                await ec2.authorize_security_group_ingress(
                    GroupId=group_id,
                    IpPermissions=[ip_permission(r) for r in rules],
                )

    async def revoke_rules(self, group_id: str) -> None:
        with aws_errors(ResourceClass.SECURITY_GROUP, group_id):
            async with self.ec2() as ec2:
                resp = await ec2.describe_security_groups(GroupIds=[group_id])
                if not resp["SecurityGroups"]:
                    return
                group = resp["SecurityGroups"][0]
                if ingress := group.get("IpPermissions"):
                    await ec2.revoke_security_group_ingress(GroupId=group_id, IpPermissions=ingress)
                if egress := group.get("IpPermissionsEgress"):
                    await ec2.revoke_security_group_egress(GroupId=group_id, IpPermissions=egress)

    async def delete_security_group(self, group_id: str) -> None:
        with aws_errors(ResourceClass.SECURITY_GROUP, group_id):
            async with self.ec2() as ec2:
                await ec2.delete_security_group(GroupId=group_id)

    # -------------------------------------------------------------------------
    # Compute
    # -------------------------------------------------------------------------

    def _credential(self) -> NodeCredential:
        return NodeCredential(username=self.config.username, key_path=self.config.key_path)

    def _node_info(self, instance: Mapping[str, Any]) -> NodeInfo:
        tags = tag_dict(instance.get("Tags"))
        role = tags.get(ClusterTag.ROLE, NodeRole.WORKER)
        return NodeInfo(
            id=instance["InstanceId"],
            role=NodeRole(role),
            machine_class=instance.get("InstanceType", ""),
            node_group=tags.get(ClusterTag.NODE_GROUP, ""),
            private_ip=instance.get("PrivateIpAddress"),
            public_ip=instance.get("PublicIpAddress"),
            credential=self._credential(),
        )

    async def create_node(self, request: NodeRequest) -> NodeInfo:
        if not self.config.ami:
            raise ConfigurationError("AWS backend needs an 'ami' to create nodes")

        params: dict[str, Any] = {
            "ImageId": self.config.ami,
            "InstanceType": request.machine_class,
            "MinCount": 1,
            "MaxCount": 1,
            "UserData": request.user_data,
            "NetworkInterfaces": [{
                "DeviceIndex": 0,
                "SubnetId": request.subnet_id,
                "Groups": list(request.security_group_ids),
                "AssociatePublicIpAddress": True,
            }],
            "BlockDeviceMappings": [{
                "DeviceName": "/dev/sda1",
                "Ebs": {"VolumeSize": self.config.root_volume_gb, "VolumeType": "gp3"},
            }],
            "TagSpecifications": [
                *tag_spec("instance", request.tags),
                *tag_spec("volume", request.tags),
            ],
        }
        if self.config.key_name:
            params["KeyName"] = self.config.key_name

        with aws_errors(ResourceClass.NODE, creating=request.name):
            async with self.ec2() as ec2:
                resp = await ec2.run_instances(**params)
        return self._node_info(resp["Instances"][0])

    async def _describe_instance(self, node_id: str) -> Mapping[str, Any] | None:
        with aws_errors(ResourceClass.NODE, node_id):
            async with self.ec2() as ec2:
                resp = await ec2.describe_instances(InstanceIds=[node_id])
        for reservation in resp["Reservations"]:
            for instance in reservation["Instances"]:
                return instance
        return None

    async def describe_node(self, node_id: str) -> NodeInfo | None:
        try:
            instance = await self._describe_instance(node_id)
        except ResourceNotFoundError:
            # EC2 is eventually consistent right after run_instances
            return None
        return self._node_info(instance) if instance is not None else None

    async def describe_node_state(self, node_id: str) -> NodeState:
        instance = await self._describe_instance(node_id)
        if instance is None:
            raise ResourceNotFoundError(ResourceClass.NODE, node_id)
        try:
            return NodeState(instance["State"]["Name"])
        except ValueError:
            return NodeState.UNKNOWN

    async def terminate_node(self, node_id: str) -> None:
        with aws_errors(ResourceClass.NODE, node_id):
            async with self.ec2() as ec2:
                await ec2.terminate_instances(InstanceIds=[node_id])

    async def list_nodes(self, cluster_name: str) -> list[NodeInfo]:
        with aws_errors(ResourceClass.NODE):
            async with self.ec2() as ec2:
                paginator = ec2.get_paginator("describe_instances")
                instances = [
                    instance
                    async for page in paginator.paginate(Filters=[
                        *tag_filters({ClusterTag.CLUSTER_NAME: [cluster_name]}),
                        {"Name": "instance-state-name", "Values": _LIVE_INSTANCE_STATES},
                    ])
                    for reservation in page["Reservations"]
                    for instance in reservation["Instances"]
                ]
        instances.sort(key=lambda i: (i.get("LaunchTime", ""), tag_dict(i.get("Tags")).get("Name", "")))
        return [self._node_info(i) for i in instances]

    # -------------------------------------------------------------------------
    # Addressing
    # -------------------------------------------------------------------------

    async def allocate_address(self, tags: Tags) -> str:
        with aws_errors(ResourceClass.ADDRESS, creating=tags.get("Name", "address")):
            async with self.ec2() as ec2:
                resp = await ec2.allocate_address(
                    Domain="vpc", TagSpecifications=tag_spec("elastic-ip", tags),
                )
        return resp["AllocationId"]

    async def release_address(self, address_id: str) -> None:
        with aws_errors(ResourceClass.ADDRESS, address_id):
            async with self.ec2() as ec2:
                await ec2.release_address(AllocationId=address_id)

    async def describe_interface(self, interface_id: str) -> InterfaceInfo | None:
        try:
            with aws_errors(ResourceClass.INTERFACE, interface_id):
                async with self.ec2() as ec2:
                    resp = await ec2.describe_network_interfaces(
                        NetworkInterfaceIds=[interface_id],
                    )
        except ResourceNotFoundError:
            return None
        if not resp["NetworkInterfaces"]:
            return None
        attachment = resp["NetworkInterfaces"][0].get("Attachment") or {}
        return InterfaceInfo(id=interface_id, attached_node_id=attachment.get("InstanceId"))

    async def delete_interface(self, interface_id: str) -> None:
        with aws_errors(ResourceClass.INTERFACE, interface_id):
            async with self.ec2() as ec2:
                await ec2.delete_network_interface(NetworkInterfaceId=interface_id)

    # -------------------------------------------------------------------------
    # Remote execution
    # -------------------------------------------------------------------------

    async def run_command(self, node: NodeInfo, command: str, timeout: float) -> str:
        host = node.address
        if host is None:
            raise TransientNetworkError(f"Node {node.id} has no address yet")
        cred = node.credential or self._credential()
        async with SSHTransport(
            host=host,
            user=cred.username,
            key_path=cred.key_path,
            port=cred.port,
            connect_timeout=self.config.request_timeout,
        ) as ssh:
            return await ssh.run(command, timeout=timeout)

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    async def find_resources(
        self, resource_class: ResourceClass, filters: TagFilters,
    ) -> list[str]:
        if resource_class is ResourceClass.LOAD_BALANCER:
            return await self._find_load_balancers(filters)

        with aws_errors(resource_class):
            async with self.ec2() as ec2:
                if resource_class is ResourceClass.NODE:
                    resp = await ec2.describe_instances(Filters=[
                        *tag_filters(filters),
                        {"Name": "instance-state-name", "Values": _LIVE_INSTANCE_STATES},
                    ])
                    return [
                        i["InstanceId"]
                        for r in resp["Reservations"]
                        for i in r["Instances"]
                    ]

                method, key, id_key, filter_param = _DESCRIBE[resource_class]
                resp = await getattr(ec2, method)(**{filter_param: tag_filters(filters)})
                items = resp[key]
                if resource_class is ResourceClass.NAT_GATEWAY:
                    items = [n for n in items if n.get("State") not in ("deleted", "deleting")]
                return [item[id_key] for item in items]

    async def _find_load_balancers(self, filters: TagFilters) -> list[str]:
        with aws_errors(ResourceClass.LOAD_BALANCER):
            async with self.elb() as elb:
                resp = await elb.describe_load_balancers()
                arns = [lb["LoadBalancerArn"] for lb in resp["LoadBalancers"]]
                matches: list[str] = []
                # describe_tags accepts at most 20 ARNs per call
                for start in range(0, len(arns), 20):
                    tagged = await elb.describe_tags(ResourceArns=arns[start:start + 20])
                    for desc in tagged["TagDescriptions"]:
                        tags = tag_dict(desc.get("Tags"))
                        if all(tags.get(k) in v for k, v in filters.items()):
                            matches.append(desc["ResourceArn"])
        return matches

    # -------------------------------------------------------------------------
    # Capacity
    # -------------------------------------------------------------------------

    async def create_load_balancer(
        self, name: str, subnet_ids: Sequence[str], tags: Tags,
    ) -> str:
        with aws_errors(ResourceClass.LOAD_BALANCER, creating=name):
            async with self.elb() as elb:
                resp = await elb.create_load_balancer(
                    Name=name,
                    Subnets=list(subnet_ids),
                    Type="network",
                    Scheme="internet-facing",
                    Tags=tag_list(tags),
                )
        return resp["LoadBalancers"][0]["LoadBalancerArn"]

    async def delete_load_balancer(self, load_balancer_id: str) -> None:
        with aws_errors(ResourceClass.LOAD_BALANCER, load_balancer_id):
            async with self.elb() as elb:
                await elb.delete_load_balancer(LoadBalancerArn=load_balancer_id)

    async def create_volume(self, name: str, size_gb: int, tags: Tags) -> str:
        with aws_errors(ResourceClass.VOLUME, creating=name):
            async with self.ec2() as ec2:
                resp = await ec2.create_volume(
                    AvailabilityZone=self.config.zone,
                    Size=size_gb,
                    VolumeType="gp3",
                    TagSpecifications=tag_spec("volume", tags),
                )
        return resp["VolumeId"]

    async def delete_volume(self, volume_id: str) -> None:
        with aws_errors(ResourceClass.VOLUME, volume_id):
            async with self.ec2() as ec2:
                await ec2.delete_volume(VolumeId=volume_id)

    async def snapshot_volume(self, volume_id: str, description: str, tags: Tags) -> str:
        with aws_errors(ResourceClass.VOLUME, volume_id):
            async with self.ec2() as ec2:
                resp = await ec2.create_snapshot(
                    VolumeId=volume_id,
                    Description=description,
                    TagSpecifications=tag_spec("snapshot", tags),
                )
        return resp["SnapshotId"]
