from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any


class VariantClassifier:
    """Maps a job to its variant tags. Implementations must be pure and deterministic."""

    def identify_variants(self, job_name: str, release: str, cluster_data: Mapping[str, Any] | None = None) -> list[str]:
        raise NotImplementedError

    def is_job_never_stable(self, job_name: str) -> bool:
        raise NotImplementedError

    def all_variants(self) -> set[str]:
        raise NotImplementedError

    def all_platforms(self) -> set[str]:
        raise NotImplementedError


class NoOpVariantClassifier(VariantClassifier):
    def identify_variants(self, job_name: str, release: str, cluster_data: Mapping[str, Any] | None = None) -> list[str]:
        return []

    def is_job_never_stable(self, job_name: str) -> bool:
        return False

    def all_variants(self) -> set[str]:
        return set()

    def all_platforms(self) -> set[str]:
        return set()


NEVER_STABLE = "never-stable"

# (variant, pattern); first match per dimension wins, in table order.
PLATFORM_PATTERNS: tuple[tuple[str, str], ...] = (
    ("alibaba", r"-alibaba"),
    ("aws", r"-aws"),
    ("azure", r"-azure"),
    ("gcp", r"-gcp"),
    ("ibmcloud", r"-ibmcloud"),
    ("libvirt", r"-libvirt"),
    ("metal-assisted", r"-metal-assisted"),
    ("metal-ipi", r"-metal-ipi|-baremetal"),
    ("metal-upi", r"-metal"),
    ("openstack", r"-openstack"),
    ("ovirt", r"-ovirt"),
    ("vsphere-ipi", r"-vsphere(?!-upi)"),
    ("vsphere-upi", r"-vsphere-upi"),
)

ARCH_PATTERNS: tuple[tuple[str, str], ...] = (
    ("arm64", r"-arm64|-aarch64"),
    ("ppc64le", r"-ppc64le"),
    ("s390x", r"-s390x"),
    ("heterogeneous", r"-heterogeneous|-multiarch"),
)

NETWORK_PATTERNS: tuple[tuple[str, str], ...] = (
    ("ovn", r"-ovn"),
    ("sdn", r"-sdn"),
)

TOPOLOGY_PATTERNS: tuple[tuple[str, str], ...] = (
    ("single-node", r"-single-node|-sno"),
    ("compact", r"-compact"),
)

# Independent flags; any number may apply.
FLAG_PATTERNS: tuple[tuple[str, str], ...] = (
    ("upgrade", r"-upgrade"),
    ("upgrade-minor", r"-upgrade-from-stable|-upgrade-minor"),
    ("serial", r"-serial"),
    ("techpreview", r"-techpreview"),
    ("fips", r"-fips"),
    ("proxy", r"-proxy"),
    ("realtime", r"-rt\b|-realtime"),
    ("microshift", r"microshift"),
    ("hypershift", r"hypershift"),
    ("osd", r"-osd"),
    ("promote", r"^promote-"),
    ("assisted", r"-assisted"),
)

CLUSTER_DATA_DIMENSIONS = {
    "platform": "platform",
    "architecture": "arch",
    "network": "network",
    "topology": "topology",
}


def _compile(table: Iterable[tuple[str, str]]) -> tuple[tuple[str, re.Pattern[str]], ...]:
    return tuple((variant, re.compile(pattern)) for variant, pattern in table)


class JobNameVariantClassifier(VariantClassifier):
    """Derives variants from naming conventions in CI job names.

    Structured ``cluster_data`` (platform, architecture, network, topology)
    reported by the run overrides the name-derived value of the same
    dimension. Output is sorted so repeated calls always agree.
    """

    def __init__(self, never_stable_jobs: Iterable[str] = ()) -> None:
        self._never_stable = frozenset(never_stable_jobs)
        self._dimensions: dict[str, tuple[tuple[str, re.Pattern[str]], ...]] = {
            "platform": _compile(PLATFORM_PATTERNS),
            "arch": _compile(ARCH_PATTERNS),
            "network": _compile(NETWORK_PATTERNS),
            "topology": _compile(TOPOLOGY_PATTERNS),
        }
        self._flags = _compile(FLAG_PATTERNS)

    def identify_variants(self, job_name: str, release: str, cluster_data: Mapping[str, Any] | None = None) -> list[str]:
        name = job_name.lower()
        chosen: dict[str, str] = {}
        for dimension, table in self._dimensions.items():
            for variant, pattern in table:
                if pattern.search(name):
                    chosen[dimension] = variant
                    break

        for key, dimension in CLUSTER_DATA_DIMENSIONS.items():
            value = (cluster_data or {}).get(key)
            if isinstance(value, str) and value.strip():
                chosen[dimension] = value.strip().lower()

        chosen.setdefault("arch", "amd64")
        chosen.setdefault("topology", "ha")

        variants = set(chosen.values())
        variants.update(variant for variant, pattern in self._flags if pattern.search(name))
        if self.is_job_never_stable(job_name):
            variants.add(NEVER_STABLE)
        return sorted(variants)

    def is_job_never_stable(self, job_name: str) -> bool:
        return job_name in self._never_stable

    def all_variants(self) -> set[str]:
        variants = {variant for table in self._dimensions.values() for variant, _ in table}
        variants.update(variant for variant, _ in self._flags)
        variants.update({"amd64", "ha", NEVER_STABLE})
        return variants

    def all_platforms(self) -> set[str]:
        return {variant for variant, _ in self._dimensions["platform"]}
