# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""In-memory collaborator implementations"""

from outreach.stores.memory import (
    InMemoryBusinessRepository,
    InMemoryExecutionLogStore,
    InMemoryQuotaStore,
    InMemoryTemplateRepository,
    InMemoryTriggerStore,
    InMemoryUserRepository,
    InMemoryWorkflowRepository,
)

__all__ = [
    "InMemoryBusinessRepository",
    "InMemoryExecutionLogStore",
    "InMemoryQuotaStore",
    "InMemoryTemplateRepository",
    "InMemoryTriggerStore",
    "InMemoryUserRepository",
    "InMemoryWorkflowRepository",
]
