"""
Plan builder — diff desired state against observed state.

The plan is minimal (converged resources yield no step), ordered by a
fixed rank per resource kind with declaration order as tie-break, and
each step carries the transitive set of planned resources it depends
on so the executor can halt only the dependent chain on failure.

Pure: no I/O apart from logging.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from hostconverge.adapters.shell.filesystem import content_digest
from hostconverge.core.models.resource import (
    Observation,
    ObservedState,
    ResourceDescriptor,
    ResourceKind,
    TargetState,
)
from hostconverge.core.models.step import Step, StepAction

logger = logging.getLogger(__name__)

K = ResourceKind

INSTALL_ORDER: dict[ResourceKind, int] = {
    K.PACKAGES: 0,
    K.REPOSITORY: 1,
    K.CONFIG_FILE: 2,
    K.KERNEL_PARAM: 3,
    K.WG_INTERFACE: 4,
    K.APP_SETUP: 5,
    K.SERVICE_UNIT: 6,
    K.SERVICE_RUN: 7,
    K.SERVICE_ENABLE: 8,
    K.FIREWALL: 9,
}

# Packages, the interface file, kernel params and firewall rules stay:
# they may be shared with co-located software.
TEARDOWN_ORDER: dict[ResourceKind, int] = {
    K.SERVICE_RUN: 0,
    K.SERVICE_ENABLE: 1,
    K.SERVICE_UNIT: 2,
    K.REPOSITORY: 3,
}


def desired_scope(target: TargetState) -> dict[ResourceKind, bool]:
    """Kinds a target manages, mapped to whether they should be present."""
    if target == TargetState.INSTALLED:
        return {kind: True for kind in INSTALL_ORDER}
    if target == TargetState.RUNNING:
        return {K.SERVICE_RUN: True}
    if target == TargetState.STOPPED:
        return {K.SERVICE_RUN: False}
    return {kind: False for kind in TEARDOWN_ORDER}


def is_converged(
    descriptor: ResourceDescriptor,
    observation: Observation,
    want_present: bool = True,
) -> bool:
    """Whether ``observation`` already satisfies the descriptor.

    Unknown observations never count as converged.
    """
    if observation.is_unknown:
        return False
    if not want_present:
        return observation.is_absent
    if not observation.is_present:
        return False

    if descriptor.kind == K.REPOSITORY:
        wanted = str(descriptor.params.get("url", "")).rstrip("/")
        return str(observation.values.get("url", "")).rstrip("/") == wanted

    if descriptor.settings:
        return all(
            observation.values.get(key) == value
            for key, value in descriptor.settings.items()
        )

    if descriptor.content is not None:
        if observation.digest != content_digest(descriptor.content):
            return False
        if descriptor.mode is not None and observation.mode is not None:
            return observation.mode == descriptor.mode

    return True


def _action_for(
    descriptor: ResourceDescriptor,
    observation: Observation,
    want_present: bool,
) -> StepAction:
    if descriptor.kind == K.SERVICE_RUN:
        return StepAction.START if want_present else StepAction.STOP
    if not want_present:
        return StepAction.DELETE
    if observation.is_absent:
        return StepAction.CREATE
    return StepAction.UPDATE


def _is_within(target: str, root: Path) -> bool:
    path = Path(target)
    return path.is_absolute() and path.is_relative_to(root)


def _closure(start: str, edges: dict[str, set[str]]) -> set[str]:
    seen: set[str] = set()
    stack = list(edges.get(start, ()))
    while stack:
        key = stack.pop()
        if key in seen:
            continue
        seen.add(key)
        stack.extend(edges.get(key, ()))
    return seen


def _edges(descriptors: Sequence[ResourceDescriptor], reverse: bool) -> dict[str, set[str]]:
    edges: dict[str, set[str]] = {d.key: set() for d in descriptors}
    for d in descriptors:
        for dep in d.depends_on:
            if reverse:
                edges.setdefault(dep, set()).add(d.key)
            else:
                edges[d.key].add(dep)
    return edges


def build_plan(
    target: TargetState,
    observed: ObservedState,
    descriptors: Iterable[ResourceDescriptor],
) -> list[Step]:
    """Ordered, minimal list of steps driving ``observed`` to ``target``."""
    descriptors = list(descriptors)
    scope = desired_scope(target)
    teardown = target == TargetState.ABSENT
    order = TEARDOWN_ORDER if teardown else INSTALL_ORDER

    planned: list[tuple[int, int, ResourceDescriptor, StepAction]] = []
    service: tuple[int, ResourceDescriptor] | None = None

    for index, descriptor in enumerate(descriptors):
        if descriptor.kind not in scope:
            continue
        want = scope[descriptor.kind]

        if descriptor.kind == K.FIREWALL and not descriptor.params.get("enabled", False):
            logger.info(
                "Firewall management disabled; not opening %s", descriptor.target
            )
            continue

        observation = observed.get(descriptor.key)
        if is_converged(descriptor, observation, want):
            if descriptor.kind == K.SERVICE_RUN and want:
                service = (index, descriptor)
            continue

        action = _action_for(descriptor, observation, want)
        resource = descriptor if want else descriptor.model_copy(update={"present": False})
        planned.append((order[descriptor.kind], index, resource, action))

    # A fresh clone replaces the whole checkout, so anything converged
    # that lives inside it has to be applied again.
    if not teardown:
        planned_keys = {r.key for _, _, r, _ in planned}
        for _, _, repo, action in list(planned):
            if repo.kind != K.REPOSITORY or action not in (StepAction.CREATE, StepAction.UPDATE):
                continue
            root = Path(repo.target)
            for index, descriptor in enumerate(descriptors):
                if descriptor.key in planned_keys or descriptor.kind not in scope:
                    continue
                if descriptor.kind == K.REPOSITORY or not _is_within(descriptor.target, root):
                    continue
                planned.append((order[descriptor.kind], index, descriptor, StepAction.UPDATE))
                planned_keys.add(descriptor.key)

    edges = _edges(descriptors, reverse=teardown)

    # A running service restarts when anything it depends on changes.
    if service is not None and target == TargetState.INSTALLED:
        index, descriptor = service
        changed = {r.key for _, _, r, a in planned if a in (StepAction.CREATE, StepAction.UPDATE)}
        if changed & _closure(descriptor.key, edges):
            planned.append((order[descriptor.kind], index, descriptor, StepAction.RESTART))

    planned.sort(key=lambda item: (item[0], item[1]))

    # Only earlier steps can block a later one.
    steps: list[Step] = []
    earlier: set[str] = set()
    for _, _, resource, action in planned:
        needed = earlier & _closure(resource.key, edges)
        steps.append(
            Step(
                action=action,
                resource=resource,
                depends_on=tuple(d.key for d in descriptors if d.key in needed),
            )
        )
        earlier.add(resource.key)

    if steps:
        logger.debug("Plan for %s: %s", target.value, ", ".join(s.id for s in steps))
    else:
        logger.debug("Plan for %s is empty: host already converged", target.value)
    return steps


def divergent_keys(
    target: TargetState,
    observed: ObservedState,
    descriptors: Iterable[ResourceDescriptor],
) -> list[str]:
    """Keys whose observation does not satisfy ``target`` (no planning)."""
    scope = desired_scope(target)
    result: list[str] = []
    for descriptor in descriptors:
        if descriptor.kind not in scope:
            continue
        if descriptor.kind == K.FIREWALL and not descriptor.params.get("enabled", False):
            continue
        if not is_converged(descriptor, observed.get(descriptor.key), scope[descriptor.kind]):
            result.append(descriptor.key)
    return result
