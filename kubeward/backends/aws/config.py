"""AWS backend configuration.

Immutable configuration dataclass for the AWS backend.
"""

from __future__ import annotations

import typing
from dataclasses import dataclass

if typing.TYPE_CHECKING:
    from kubeward.backends.aws.backend import AWSBackend


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS backend configuration.

    Example:
        >>> from kubeward.backends.aws import AWS
        >>> backend = AWS(region="us-west-2", ami="ami-0abc", key_name="ops").create_backend()

    Args:
        region: AWS region for every resource. Default: us-east-1
        ami: Ubuntu AMI nodes boot from. Required to create nodes.
        key_name: EC2 key pair injected into nodes.
        key_path: Local private key matching ``key_name``, used for SSH.
        username: SSH login user of the AMI.
        vpc_cidr: CIDR block of the cluster VPC.
        subnet_cidr: CIDR block of the cluster subnet.
        availability_zone: Zone for the subnet and volumes. Defaults to
            the region's ``a`` zone.
        root_volume_gb: Root volume size of every node.
        request_timeout: Connect timeout in seconds for SSH sessions.
    """

    region: str = "us-east-1"
    ami: str | None = None
    key_name: str | None = None
    key_path: str = "~/.ssh/id_rsa"
    username: str = "ubuntu"
    vpc_cidr: str = "10.0.0.0/16"
    subnet_cidr: str = "10.0.1.0/24"
    availability_zone: str | None = None
    root_volume_gb: int = 50
    request_timeout: int = 30

    @property
    def type(self) -> str: return "aws"

    @property
    def zone(self) -> str:
        return self.availability_zone or f"{self.region}a"

    def create_backend(self) -> AWSBackend:
        from kubeward.backends.aws.backend import AWSBackend
        return AWSBackend.create(self)
