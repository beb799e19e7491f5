"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from stackfold.classification.classifier import StackMembership
from stackfold.models import Category, MappingResult, Service
from stackfold.registry.registry import MergerRegistry, build_default_registry


def _make_result(
    resource_type: str,
    name: str,
    *,
    category: Category = Category.UNKNOWN,
    image: str = "placeholder:latest",
    env: dict[str, str] | None = None,
    **kwargs: object,
) -> MappingResult:
    return MappingResult(
        source_resource_type=resource_type,
        source_resource_name=name,
        source_category=category,
        docker_service=Service(name=name or "svc", image=image, environment=dict(env or {})),
        **kwargs,
    )


@pytest.fixture
def make_result() -> Callable[..., MappingResult]:
    """Factory for mapping results with a primary service named after the resource."""
    return _make_result


@pytest.fixture
def registry() -> MergerRegistry:
    return build_default_registry()


@pytest.fixture
def membership() -> StackMembership:
    return StackMembership()
