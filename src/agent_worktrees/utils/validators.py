"""Validation utilities for agent identifiers, branch names, and refs."""

import re


def validate_branch_name(branch_name: str) -> str:
    """
    Validate and sanitize git branch name.

    Args:
        branch_name: Branch name to validate

    Returns:
        Validated branch name

    Raises:
        ValueError: If branch name is invalid
    """
    if not branch_name:
        raise ValueError("Branch name cannot be empty")

    # Strict whitelist
    if not re.match(r'^[a-zA-Z0-9/_-]+$', branch_name):
        raise ValueError(f"Invalid branch name: {branch_name}")

    if branch_name.startswith('/') or branch_name.endswith('/'):
        raise ValueError("Branch name cannot start or end with /")

    if branch_name.startswith('-'):
        raise ValueError("Branch name cannot start with -")

    if '//' in branch_name:
        raise ValueError("Branch name contains invalid sequence")

    if len(branch_name) > 255:
        raise ValueError("Branch name too long")

    return branch_name


def validate_identifier(value: str, name: str = "agent_id") -> str:
    """
    Validate an agent identifier to prevent path traversal.

    Args:
        value: Identifier value to validate
        name: Name of the identifier (for error messages)

    Returns:
        Validated identifier

    Raises:
        ValueError: If identifier is invalid
    """
    if not value:
        raise ValueError(f"{name} cannot be empty")

    # Only allow alphanumeric, dash, underscore
    if not re.match(r'^[a-zA-Z0-9_-]+$', value):
        raise ValueError(f"Invalid {name}: {value}")

    # Leading dash would be parsed as a git option
    if value.startswith('-'):
        raise ValueError(f"{name} cannot start with -: {value}")

    if len(value) > 128:
        raise ValueError(f"{name} too long")

    return value


def is_valid_identifier(value: str) -> bool:
    """Non-raising variant of validate_identifier."""
    try:
        validate_identifier(value)
    except ValueError:
        return False
    return True


def validate_ref(ref: str) -> str:
    """
    Validate a base ref (branch, tag, sha, or rev expression like HEAD~1).

    Only guards against option injection and obviously malformed input;
    whether the ref resolves is the gateway's call.

    Raises:
        ValueError: If ref is invalid
    """
    if not ref:
        raise ValueError("Ref cannot be empty")

    if ref.startswith('-'):
        raise ValueError(f"Ref cannot start with -: {ref}")

    if re.search(r'\s', ref) or '..' in ref or '@{' in ref:
        raise ValueError(f"Invalid ref: {ref}")

    if len(ref) > 255:
        raise ValueError("Ref too long")

    return ref
