"""Template and boot media resolution."""

import logging
from dataclasses import dataclass
from typing import Optional

from stratus.errors import ConfigurationError, MediaNotSynchronized, NotFoundError
from stratus.models.platform import MediaRecord, Reference, TemplateRecord
from stratus.models.vm import OriginSpec
from stratus.platform.base import PlatformClient


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedOrigin:
    """Concrete source for a new VM: a template VM or synchronized media."""
    template_vm: Optional[TemplateRecord] = None
    media: Optional[MediaRecord] = None

    @property
    def is_template(self) -> bool:
        return self.template_vm is not None

    def source_reference(self) -> Optional[Reference]:
        if self.template_vm is None:
            return None
        return Reference(id=self.template_vm.id, href=self.template_vm.href, name=self.template_vm.name)

    def media_reference(self) -> Optional[Reference]:
        if self.media is None:
            return None
        return Reference(id=self.media.id, href=self.media.href, name=self.media.name)


def check_origin(origin: OriginSpec):
    """Reject declarations with both or neither origin kind."""
    has_template = origin.template_id is not None
    has_media = origin.boot_media_id is not None
    if has_template and has_media:
        raise ConfigurationError("origin must name either a template or boot media, not both")
    if not has_template and not has_media:
        raise ConfigurationError("origin must name a template or boot media")
    if origin.vm_name_in_template is not None and not has_template:
        raise ConfigurationError("vm_name_in_template requires template_id")


class OriginResolver:
    """Resolves an origin declaration against the platform."""

    def __init__(self, platform: PlatformClient):
        self.platform = platform

    async def resolve(self, origin: OriginSpec) -> ResolvedOrigin:
        check_origin(origin)
        if origin.template_id is not None:
            vm = await self._resolve_template(origin.template_id, origin.vm_name_in_template)
            return ResolvedOrigin(template_vm=vm)
        media = await self._resolve_media(origin.boot_media_id)
        return ResolvedOrigin(media=media)

    async def _resolve_template(self, template_id: str, vm_name: Optional[str]) -> TemplateRecord:
        if vm_name:
            vm = await self.platform.find_template_vm(template_id, vm_name)
            logger.debug(f"Resolved template {template_id} VM {vm_name!r} to {vm.id}")
            return vm

        template = await self.platform.get_template(template_id)
        if not template.children:
            raise NotFoundError(
                "template VM", template_id,
                f"template {template_id!r} does not contain any VMs",
            )
        vm = template.children[0]
        logger.debug(f"Resolved template {template_id} to its first VM {vm.name!r}")
        return vm

    async def _resolve_media(self, media_id: str) -> MediaRecord:
        media = await self.platform.get_media(media_id)
        if not media.is_synchronized:
            raise MediaNotSynchronized(media_id)
        logger.debug(f"Resolved boot media {media_id} ({media.name})")
        return media
