"""Namespace component operations."""

import logging

from cluster import AlreadyExistsError, NotFoundError
from manifest import Component, ValueType
from installer.context import RunContext

logger = logging.getLogger(__name__)


def namespace_upsert(ctx: RunContext, cluster, component: Component) -> None:
    """Create the component's namespace, or merge metadata into an existing one.

    On merge, the component's labels and annotations win over existing keys
    of the same name; unrelated existing keys are kept.
    """
    name = component.namespace
    labels = component.values_of(ValueType.LABEL)
    annotations = component.values_of(ValueType.ANNOTATION)

    try:
        cluster.create_namespace(ctx, name, labels, annotations)
        logger.info(f"[{component.id}] Created namespace {name}")
        return
    except AlreadyExistsError:
        logger.debug(f"[{component.id}] Namespace {name} exists, merging metadata")

    existing = cluster.get_namespace(ctx, name)
    merged_labels = {**existing.labels, **labels}
    merged_annotations = {**existing.annotations, **annotations}
    cluster.update_namespace(ctx, name, merged_labels, merged_annotations)
    logger.info(f"[{component.id}] Updated namespace {name}")


def namespace_delete(ctx: RunContext, cluster, component: Component) -> None:
    """Delete the component's namespace; a missing namespace is success.

    A namespace still terminating from an earlier delete answers 409, which
    surfaces as AlreadyExistsError and fails the uninstall. Only NotFound
    is tolerated.
    """
    name = component.namespace
    try:
        cluster.delete_namespace(ctx, name)
    except NotFoundError:
        logger.info(f"[{component.id}] Namespace {name} already absent")
        return
    logger.info(f"[{component.id}] Deleted namespace {name}")
