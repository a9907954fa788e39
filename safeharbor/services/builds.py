from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from safeharbor.core.errors import CollaboratorError, ValidationError
from safeharbor.domain.entities import Dockerfile, DockerImage, ScanConfig, ScanEvent, User
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.providers.build.base import BuildTool
from safeharbor.providers.scan.base import ScanProvider
from safeharbor.services import events
from safeharbor.services.auth.passwords import compute_file_signature
from safeharbor.services.resources import create_docker_image, validate_name


logger = logging.getLogger(__name__)


def image_reference(store: ObjectStore, repo_id: str, image_name: str) -> str:
    # Docker-style "<realm>/<repo>:<image>" so each realm has its own namespace.
    repo = store.get_repo(repo_id)
    realm = store.get_realm(repo.parent_id)
    return f"{realm.name}/{repo.name}:{image_name}"


async def build_dockerfile(
    store: ObjectStore,
    build_tool: BuildTool,
    user: User,
    dockerfile: Dockerfile,
    image_name: str,
) -> DockerImage:
    validate_name(image_name)
    repo = store.get_repo(dockerfile.parent_id)
    tag = image_reference(store, repo.id, image_name)
    try:
        output = await build_tool.build(dockerfile.external_file_path, tag)
        image_path = await build_tool.save(tag)
        signature = await asyncio.to_thread(compute_file_signature, image_path)
    except CollaboratorError:
        logger.warning("dockerfile_build_failed dockerfile_id=%s tag=%s", dockerfile.id, tag)
        raise
    except OSError as exc:
        logger.warning("image_signature_failed dockerfile_id=%s tag=%s", dockerfile.id, tag)
        raise CollaboratorError(f"Could not read the saved image for {tag}: {exc}") from exc
    image = await create_docker_image(
        store,
        repo,
        image_name,
        f"Built from {dockerfile.name}",
        content_signature=signature,
        build_output=output,
    )
    await events.create_dockerfile_exec_event(store, dockerfile, image, user, build_output=output)
    logger.info("dockerfile_built dockerfile_id=%s image_id=%s", dockerfile.id, image.id)
    return image


async def scan_image(
    store: ObjectStore,
    providers: Mapping[str, ScanProvider],
    user: User,
    image: DockerImage,
    scan_config: ScanConfig,
) -> ScanEvent:
    provider = providers.get(scan_config.provider_name)
    if provider is None:
        raise ValidationError(f"No scan provider named {scan_config.provider_name}")
    params = {
        param.name: param.value
        for param in (store.get_parameter_value(param_id) for param_id in scan_config.parameter_value_ids)
    }
    ref = image_reference(store, image.parent_id, image.name)
    try:
        vulnerabilities = await provider.scan(ref, params)
    except CollaboratorError:
        logger.warning("image_scan_failed image_id=%s provider=%s", image.id, provider.name)
        raise
    count = len(vulnerabilities)
    return await events.create_scan_event(
        store,
        scan_config,
        image,
        user,
        score=str(count),
        vulnerability_count=count,
    )
