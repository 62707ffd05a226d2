"""
CF Optimizer: conversion-factor alignment engine.

Per specialty, recommends the productivity pay rate (conversion factor) that
best aligns each provider's pay percentile with their productivity percentile
against market survey benchmarks, within governance guardrails.
"""

from .interpolation import PercentileResult, percentile_for, value_at_percentile
from .normalization import ExclusionReason, ProviderContext, normalize_provider
from .optimizer import Action, Flag, ManualOverride, PolicyCheck, SpecialtyResult, solve_specialty
from .orchestrator import (ENGINE_VERSION, OptimizerRun, ProgressEvent, RunResult,
                           run_optimizer, run_rate_sweep)
from .compare import RunComparison, compare_runs
from .outliers import detect_outliers, outlier_indices
from .governance import Status, evaluate_status
from .productivity_target import TargetSettings, compute_targets
from .records import (Anchors, BenchmarkRow, ProviderFlags, ProviderRecord,
                      benchmarks_from_frame, provider_from_mapping, providers_from_frame)
from .settings import (BenchmarkBasis, ComponentToggle, ConfigurationError, ErrorMetric,
                       ExclusionRules, GovernanceConfig, LayerType, Objective, ObjectiveKind,
                       OutlierMethod, OutlierParams, PayComponents, PayLayer, QualitySource,
                       RateBounds, Settings)

__version__ = ENGINE_VERSION
