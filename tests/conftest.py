"""
Shared fixtures: one market row and a provider factory.

Market (Cardiology):
    TCC   300k / 400k / 500k / 600k
    wRVU  4500 / 6000 / 7500 / 9000
    CF    $45  / $50  / $55  / $60
"""

import pytest

from cf_optimizer.records import Anchors, BenchmarkRow, ProviderFlags, ProviderRecord
from cf_optimizer.settings import Settings

TCC = Anchors(300_000, 400_000, 500_000, 600_000)
WRVU = Anchors(4500, 6000, 7500, 9000)
CF = Anchors(45.0, 50.0, 55.0, 60.0)


def make_provider(pid: str, base: float = 300_000, wrvus: float = 7500, cf: float = 40.0,
                  specialty: str = "Cardiology", cfte: float = 1.0, tfte: float = 1.0,
                  loa: bool = False, tenure=None, **kwargs) -> ProviderRecord:
    return ProviderRecord(
        provider_id=pid,
        specialty=specialty,
        provider_name=f"Dr {pid}",
        total_fte=tfte,
        clinical_fte=cfte,
        base_salary=base,
        work_rvus=wrvus,
        current_cf=cf,
        flags=ProviderFlags(leave_of_absence=loa, tenure_months=tenure),
        **kwargs,
    )


@pytest.fixture
def cardiology():
    return BenchmarkRow(specialty="Cardiology", tcc=TCC, wrvu=WRVU, cf=CF)


@pytest.fixture
def dermatology():
    return BenchmarkRow(
        specialty="Dermatology",
        tcc=Anchors(350_000, 450_000, 550_000, 650_000),
        wrvu=Anchors(5000, 6500, 8000, 9500),
        cf=Anchors(48.0, 52.0, 57.0, 62.0),
    )


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def underpaid_group():
    """Five providers paid well below their productivity percentile, all at $40."""
    return [make_provider(f"U{i}", wrvus=w) for i, w in
            enumerate([7000, 7500, 8000, 8500, 9000], start=1)]
