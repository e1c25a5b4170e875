"""VM lifecycle facade."""

import logging
from typing import Optional

from stratus.engine.create import CreationOrchestrator
from stratus.engine.reader import StateReader
from stratus.engine.tasks import TaskWaiter
from stratus.engine.update import UpdateReconciler
from stratus.errors import VMNotFound
from stratus.models.config import EngineConfig
from stratus.models.platform import POWERED_OFF
from stratus.models.state import ObservedState
from stratus.models.vm import VMSpec
from stratus.platform.base import PlatformClient


logger = logging.getLogger(__name__)


class VMEngine:
    """Creates, reads, updates and deletes VMs against one platform.

    Operations on the same container must be serialized by the caller.
    """

    def __init__(self, platform: PlatformClient, config: Optional[EngineConfig] = None):
        """Initialize VM engine."""
        self.platform = platform
        self.config = config or EngineConfig()
        self.waiter = TaskWaiter(
            platform,
            poll_interval=self.config.task_poll_interval,
            timeout=self.config.task_timeout,
        )
        self.reader = StateReader(platform)
        self.creator = CreationOrchestrator(platform, self.waiter)
        self.updater = UpdateReconciler(platform, self.waiter, hot_nic_change=self.config.hot_nic_change)

    async def create(self, spec: VMSpec) -> ObservedState:
        logger.info(f"Creating VM {spec.name} in {spec.container}")
        try:
            return await self.creator.create(spec)
        except Exception as e:
            logger.error(f"Failed to create VM {spec.name}: {e}", exc_info=True)
            raise

    async def read(self, container: str, vm_id: str) -> Optional[ObservedState]:
        """Read a VM, returning None when it no longer exists."""
        try:
            return await self.reader.read(container, vm_id)
        except VMNotFound:
            logger.info(f"VM {vm_id} not found in {container}, treating as deleted")
            return None

    async def update(self, previous: ObservedState, spec: VMSpec) -> ObservedState:
        try:
            return await self.updater.update(previous, spec)
        except Exception as e:
            logger.error(f"Failed to update VM {spec.name}: {e}", exc_info=True)
            raise

    async def delete(self, container: str, vm_id: str):
        """Detach independent disks, power off and remove the VM.

        A VM that is already gone counts as deleted.
        """
        state = await self.read(container, vm_id)
        if state is None:
            return

        logger.info(f"Deleting VM {state.name} ({vm_id})")
        try:
            for disk in state.independent_disks:
                reference = await self.platform.get_independent_disk(disk.disk_id)
                await self.waiter.run(
                    f"detach independent disk {disk.disk_id} from {state.name}",
                    self.platform.detach_disk(vm_id, reference),
                )
            if state.status_code != POWERED_OFF:
                await self.waiter.run(f"undeploy {state.name}", self.platform.undeploy(vm_id))
            await self.waiter.run(f"remove {state.name}", self.platform.remove_vm(vm_id))
        except VMNotFound:
            logger.info(f"VM {vm_id} disappeared during delete")
            return
        except Exception as e:
            logger.error(f"Failed to delete VM {state.name}: {e}", exc_info=True)
            raise
        logger.info(f"VM {state.name} deleted")
