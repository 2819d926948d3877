"""AWS EC2 backend for kubeward.

Example:
    from kubeward.backends.aws import AWS

    backend = AWS(region="us-east-1", ami="ami-0abc", key_name="ops").create_backend()
"""

from kubeward.backends.aws.config import AWS

__all__ = ["AWS"]
