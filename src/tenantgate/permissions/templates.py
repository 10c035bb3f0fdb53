from __future__ import annotations

from typing import Awaitable, Callable, Optional

from tenantgate.configs.logging_config import get_logger
from tenantgate.domain.entities.permission import RoleTemplate
from tenantgate.errors import InvalidRoleTemplate

log = get_logger(__name__)

TemplateFetch = Callable[[str], Awaitable[Optional[RoleTemplate]]]


async def walk_template_chain(
    fetch: TemplateFetch,
    template_id: str,
    *,
    max_depth: int = 32,
) -> list[RoleTemplate]:
    """
    Return the template and its ancestors, closest first.

    Raises InvalidRoleTemplate on a missing template, a cycle, or a chain
    longer than `max_depth`. The chain is never truncated.
    """
    chain: list[RoleTemplate] = []
    seen: set[str] = set()
    current_id: str | None = template_id

    while current_id is not None:
        if current_id in seen:
            path = " -> ".join([t.name for t in chain] + [current_id])
            log.error("role_template.cycle template_id=%s path=%s", template_id, path)
            raise InvalidRoleTemplate(f"role template cycle: {path}", template_id=current_id)
        if len(chain) >= max_depth:
            log.error("role_template.too_deep template_id=%s max_depth=%s", template_id, max_depth)
            raise InvalidRoleTemplate("role template chain too deep", template_id=template_id)
        seen.add(current_id)

        template = await fetch(current_id)
        if template is None:
            referrer = chain[-1].name if chain else None
            log.error("role_template.missing template_id=%s referenced_by=%s", current_id, referrer)
            raise InvalidRoleTemplate(f"role template not found: {current_id}", template_id=current_id)

        chain.append(template)
        current_id = template.parent_id

    return chain
