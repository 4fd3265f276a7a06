"""Context resolution for parameters the caller left out.

The anchor (project root) is supplied once by the outermost caller and
passed down explicitly. Default contexts are always derived from it, never
from the location of the module that declares the operation, so moving a
module deeper in the tree does not change what its operations see.
"""
from __future__ import annotations

import logging

from .context import Context, File, join_subpath, normalize_subpath
from .errors import PathResolutionError
from .types import DefaultPolicy, ParameterKind, ParameterSpec

logger = logging.getLogger(__name__)


def policy_subpath(anchor: Context, policy: DefaultPolicy) -> str:
    """Compute the anchor-relative sub-path a policy points at.

    Raises:
        PathResolutionError: If the base name is unknown or the path escapes the anchor
    """
    try:
        base = anchor.named(policy.base) if policy.base else "."
    except KeyError:
        raise PathResolutionError(
            anchor.root,
            policy.describe(),
            f"anchor has no derived path named {policy.base!r}",
        ) from None
    try:
        return join_subpath(base, policy.subpath)
    except ValueError:
        raise PathResolutionError(anchor.root, policy.describe(), "path escapes the anchor") from None


def resolve(
    explicit: Context | File | None,
    anchor: Context,
    policy: DefaultPolicy,
    *,
    kind: ParameterKind = ParameterKind.DIRECTORY,
) -> Context | File:
    """Return ``explicit`` unchanged, or evaluate ``policy`` against ``anchor``.

    Raises:
        PathResolutionError: If the resolved path does not exist under the
            anchor or is not of the expected kind
    """
    if explicit is not None:
        return explicit
    if not anchor.root.is_dir():
        raise PathResolutionError(anchor.root, policy.describe(), "anchor is not a directory")

    subpath = policy_subpath(anchor, policy)
    target = anchor.root / normalize_subpath(subpath)
    logger.debug(f"Resolving {policy.describe()!r} -> {target}")

    if kind is ParameterKind.FILE:
        if not target.is_file():
            reason = "is not a file" if target.exists() else "does not exist"
            raise PathResolutionError(anchor.root, subpath, reason)
        return anchor.file(subpath)

    if not target.is_dir():
        reason = "is not a directory" if target.exists() else "does not exist"
        raise PathResolutionError(anchor.root, subpath, reason)
    context = anchor.directory(subpath)
    if policy.ignore:
        context = context.with_ignore(policy.ignore)
    return context


def resolve_parameter(
    spec: ParameterSpec,
    explicit: Context | File | None,
    anchor: Context,
) -> Context | File:
    """Resolve a context-kind parameter from its declared default policy."""
    if spec.default_policy is None:
        raise ValueError(f"Parameter {spec.name!r} has no default policy")
    return resolve(explicit, anchor, spec.default_policy, kind=spec.kind)
