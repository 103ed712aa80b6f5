# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Node executors, one per node type"""

from outreach.workflow.nodes.base import (
    NODE_EXECUTORS,
    NodeExecutor,
    call_collaborator,
    check_registry,
    get_executor,
)
from outreach.workflow.nodes import logic_nodes, action_nodes  # noqa: F401  (registers executors)

check_registry()

__all__ = ["NODE_EXECUTORS", "NodeExecutor", "call_collaborator", "get_executor"]
