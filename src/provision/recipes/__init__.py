"""Step graphs for each supported platform.

A recipe turns host facts, credentials and configuration into a validated
StepRegistry:
- linux: Debian/Ubuntu, RHEL family and Fedora
- windows: All-in-one MSI
"""

from pathlib import Path

from ..config import ProvisionConfig
from ..core.registry import StepRegistry
from ..models import EnvironmentFacts, PlatformFamily
from ..services.credentials import Credentials
from ..services.platform import profile_for
from .linux import build_linux_steps, linux_endpoints
from .windows import build_windows_steps, windows_endpoints

TARGETS = ("auto", "debian", "rhel", "fedora", "windows")


def recipe_name(family: PlatformFamily) -> str:
    return "windows" if family == PlatformFamily.WINDOWS else "linux"


def facts_for_target(target: str) -> EnvironmentFacts:
    """Synthetic facts for planning a target other than the current host."""
    family = PlatformFamily(target)
    return EnvironmentFacts(
        os_id=target,
        os_name=target,
        family=family,
        package_manager=profile_for(family).package_manager or None,
    )


def build_recipe(
    facts: EnvironmentFacts,
    creds: Credentials,
    config: ProvisionConfig,
    state_dir: Path,
) -> StepRegistry:
    """Build and validate the step graph for the host described by ``facts``.

    Raises:
        DefinitionError: If the graph is malformed
    """
    registry = StepRegistry()
    if facts.family == PlatformFamily.WINDOWS:
        steps = build_windows_steps(facts, creds, config, state_dir)
    else:
        profile = profile_for(facts.family, facts.package_manager)
        steps = build_linux_steps(facts, profile, creds, config, state_dir)
    for step in steps:
        registry.register(step)
    registry.topological_order()
    return registry


def endpoints(facts: EnvironmentFacts, config: ProvisionConfig) -> dict[str, str]:
    """Service URLs for the installed product."""
    if facts.family == PlatformFamily.WINDOWS:
        return windows_endpoints(facts, config)
    return linux_endpoints(facts, config)


__all__ = [
    "TARGETS",
    "build_recipe",
    "endpoints",
    "facts_for_target",
    "recipe_name",
]
