from __future__ import annotations

import logging

from safeharbor.core.errors import ValidationError
from safeharbor.domain.entities import (
    Dockerfile,
    DockerfileExecEvent,
    DockerImage,
    Event,
    ParameterValue,
    ScanConfig,
    ScanEvent,
    User,
)
from safeharbor.persistence.object_store import ObjectStore


logger = logging.getLogger(__name__)


def _copy_parameter_values(store: ObjectStore, config: ScanConfig, event_id: str) -> list[str]:
    # Snapshot the config's parameters so later edits do not rewrite history.
    copied: list[str] = []
    for param_id in config.parameter_value_ids:
        source = store.get_parameter_value(param_id)
        param = ParameterValue(id=store.create_id(), name=source.name, value=source.value, config_id=event_id)
        store.add(param)
        copied.append(param.id)
    return copied


def _unlink_from_user(store: ObjectStore, event: Event) -> None:
    if not event.user_id or not store.contains(event.user_id):
        return
    user = store.get_user(event.user_id)
    if event.id in user.event_ids:
        user.event_ids.remove(event.id)
        store.update(user)


def discard_scan_event(store: ObjectStore, event: ScanEvent) -> None:
    # Caller holds the image, config and user locks.
    for param_id in event.actual_parameter_value_ids:
        store.delete(param_id)
    if store.contains(event.docker_image_id):
        image = store.get_docker_image(event.docker_image_id)
        if event.id in image.scan_event_ids:
            image.scan_event_ids.remove(event.id)
            store.update(image)
    if store.contains(event.scan_config_id):
        config = store.get_scan_config(event.scan_config_id)
        if event.id in config.scan_event_ids:
            config.scan_event_ids.remove(event.id)
            store.update(config)
    _unlink_from_user(store, event)
    store.delete(event.id)


def discard_exec_event(store: ObjectStore, event: DockerfileExecEvent) -> None:
    if event.dockerfile_id and store.contains(event.dockerfile_id):
        dockerfile = store.get_dockerfile(event.dockerfile_id)
        if event.id in dockerfile.exec_event_ids:
            dockerfile.exec_event_ids.remove(event.id)
            store.update(dockerfile)
    _unlink_from_user(store, event)
    store.delete(event.id)


async def create_scan_event(
    store: ObjectStore,
    config: ScanConfig,
    image: DockerImage,
    user: User,
    *,
    score: str,
    vulnerability_count: int = 0,
) -> ScanEvent:
    if config.parent_id != image.parent_id:
        raise ValidationError(f"Scan config {config.id} and image {image.id} belong to different repos")
    siblings = sorted({config.id, image.id}, key=lambda value: (len(value), value))
    async with store.locked(*siblings, user.id):
        event_id = store.create_id()
        event = ScanEvent(
            id=event_id,
            user_id=user.id,
            scan_config_id=config.id,
            docker_image_id=image.id,
            provider_name=config.provider_name,
            actual_parameter_value_ids=_copy_parameter_values(store, config, event_id),
            score=score,
            vulnerability_count=vulnerability_count,
        )
        store.add(event)
        image.scan_event_ids.append(event.id)
        config.scan_event_ids.append(event.id)
        user.event_ids.append(event.id)
        store.update(image)
        store.update(config)
        store.update(user)
    logger.info(
        "scan_event_created event_id=%s image_id=%s scan_config_id=%s score=%s",
        event.id,
        image.id,
        config.id,
        score,
    )
    return event


async def create_dockerfile_exec_event(
    store: ObjectStore,
    dockerfile: Dockerfile,
    image: DockerImage,
    user: User,
    *,
    build_output: str = "",
) -> DockerfileExecEvent:
    siblings = sorted({dockerfile.id, image.id}, key=lambda value: (len(value), value))
    async with store.locked(*siblings, user.id):
        event = DockerfileExecEvent(
            id=store.create_id(),
            user_id=user.id,
            dockerfile_id=dockerfile.id,
            docker_image_id=image.id,
            build_output=build_output,
        )
        store.add(event)
        dockerfile.exec_event_ids.append(event.id)
        user.event_ids.append(event.id)
        store.update(dockerfile)
        store.update(user)
    logger.info("dockerfile_exec_event_created event_id=%s dockerfile_id=%s", event.id, dockerfile.id)
    return event


async def delete_event(store: ObjectStore, event: Event) -> None:
    if isinstance(event, ScanEvent):
        resource_ids = [item for item in (event.docker_image_id, event.scan_config_id) if store.contains(item)]
        async with store.locked(*sorted(resource_ids, key=lambda value: (len(value), value)), event.user_id):
            discard_scan_event(store, event)
    elif isinstance(event, DockerfileExecEvent):
        async with store.locked(event.dockerfile_id, event.user_id):
            discard_exec_event(store, event)
    else:
        raise ValidationError(f"Object {event.id} is not an event")
    logger.info("event_deleted event_id=%s kind=%s", event.id, event.kind.value)
