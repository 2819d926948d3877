"""AWS client factories with dependency injection.

Provides typed client factories that can be injected into the backend.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import aioboto3
from injector import Module, provider, singleton

from .config import AWS

# =============================================================================
# Wrapper Classes for DI (each needs a unique type)
# =============================================================================


class EC2ClientFactory:
    """Wrapper for EC2 client factory."""

    def __init__(self, factory: Callable[[], AbstractAsyncContextManager[Any]]) -> None:
        self._factory = factory

    def __call__(self) -> AbstractAsyncContextManager[Any]:
        return self._factory()


class ELBClientFactory:
    """Wrapper for Elastic Load Balancing v2 client factory."""

    def __init__(self, factory: Callable[[], AbstractAsyncContextManager[Any]]) -> None:
        self._factory = factory

    def __call__(self) -> AbstractAsyncContextManager[Any]:
        return self._factory()


# =============================================================================
# AWS Module
# =============================================================================


def _client_factory(
    session: aioboto3.Session, service: str, region: str,
) -> Callable[[], AbstractAsyncContextManager[Any]]:
    @asynccontextmanager
    async def factory() -> AsyncIterator[Any]:
        async with session.client(service, region_name=region) as client:
            yield client
    return factory


class AWSModule(Module):
    """DI module that provides AWS client factories.

    Usage:
        >>> from injector import Injector
        >>> injector = Injector([AWSModule(), lambda b: b.bind(AWS, to=AWS(region="us-east-1"))])
        >>> ec2 = injector.get(EC2ClientFactory)
        >>> async with ec2() as client:
        ...     await client.describe_vpcs()
    """

    @singleton
    @provider
    def provide_session(self) -> aioboto3.Session:
        return aioboto3.Session()

    @singleton
    @provider
    def provide_ec2(self, session: aioboto3.Session, config: AWS) -> EC2ClientFactory:
        return EC2ClientFactory(_client_factory(session, "ec2", config.region))

    @singleton
    @provider
    def provide_elb(self, session: aioboto3.Session, config: AWS) -> ELBClientFactory:
        return ELBClientFactory(_client_factory(session, "elbv2", config.region))


__all__ = [
    "AWSModule",
    "EC2ClientFactory",
    "ELBClientFactory",
]
