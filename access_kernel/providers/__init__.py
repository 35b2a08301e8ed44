"""Reference implementations of the identity, notification and scheduler contracts."""

from access_kernel.providers.memory import (
    InMemoryIdentityProvider,
    InMemoryNotificationProvider,
    InMemorySchedulerProvider,
)
from access_kernel.providers.sql_scheduler import SqlSchedulerProvider

__all__ = [
    "InMemoryIdentityProvider",
    "InMemoryNotificationProvider",
    "InMemorySchedulerProvider",
    "SqlSchedulerProvider",
]
