"""
Built-in loop definitions and adaptation catalog for a swarm of agents.

Five loops watch performance, learning, coordination, memory and innovation.
Their adaptations are knob adjustments over a shared KnobBoard of tunable
settings; callers read the board to apply the tuned values.
"""

from typing import Optional

from .catalog import AdaptationCatalog, Knob, KnobAdjustment, KnobBoard
from .loop import LoopConfig
from .models import Direction, ThresholdSpec

HIGHER = Direction.HIGHER_IS_BETTER
LOWER = Direction.LOWER_IS_BETTER


def default_loop_configs() -> dict[str, LoopConfig]:
    """Fresh copies of the built-in loop definitions."""
    return {
        "performance": LoopConfig(
            interval_ms=5000,
            thresholds=[
                ThresholdSpec("response_time", 2000, LOWER),
                ThresholdSpec("throughput", 10, HIGHER),
                ThresholdSpec("error_rate", 0.05, LOWER),
            ],
            priority="high",
            description="Response time, throughput and error rate",
        ),
        "learning": LoopConfig(
            interval_ms=10000,
            thresholds=[
                ThresholdSpec("learning_velocity", 0.7, HIGHER),
                ThresholdSpec("pattern_recognition", 0.8, HIGHER),
                ThresholdSpec("adaptation_success", 0.6, HIGHER),
            ],
            priority="medium",
        ),
        "coordination": LoopConfig(
            interval_ms=15000,
            thresholds=[
                ThresholdSpec("task_distribution", 0.8, HIGHER),
                ThresholdSpec("agent_efficiency", 0.75, HIGHER),
                ThresholdSpec("communication_latency", 500, LOWER),
            ],
            priority="high",
        ),
        "memory": LoopConfig(
            interval_ms=20000,
            thresholds=[
                ThresholdSpec("memory_utilization", 0.8, HIGHER),
                ThresholdSpec("retrieval_accuracy", 0.9, HIGHER),
                ThresholdSpec("storage_efficiency", 0.7, HIGHER),
            ],
            priority="medium",
        ),
        "innovation": LoopConfig(
            interval_ms=30000,
            thresholds=[
                ThresholdSpec("idea_quality", 0.7, HIGHER),
                ThresholdSpec("implementation_success", 0.8, HIGHER),
                ThresholdSpec("user_satisfaction", 0.85, HIGHER),
            ],
            priority="medium",
        ),
    }


# name, initial value, minimum, maximum
DEFAULT_KNOBS = [
    ("parallelism", 4, 1, 64),
    ("request_timeout_ms", 2000, 250, 30000),
    ("worker_pool_size", 8, 1, 128),
    ("retry_budget", 3, 0, 10),
    ("circuit_breaker_threshold", 0.5, 0.05, 1.0),
    ("batch_size", 32, 1, 1024),
    ("learning_rate", 0.01, 0.0001, 0.5),
    ("exploration_rate", 0.2, 0.01, 0.9),
    ("pattern_window", 50, 5, 1000),
    ("sample_size", 100, 10, 10000),
    ("model_refresh_rate", 1.0, 0.1, 10.0),
    ("rebalance_frequency", 1.0, 0.1, 10.0),
    ("queue_depth_limit", 100, 5, 10000),
    ("message_batch_size", 20, 1, 500),
    ("heartbeat_interval_ms", 1000, 100, 30000),
    ("sync_interval_ms", 5000, 500, 60000),
    ("cache_size_mb", 256, 16, 8192),
    ("gc_interval_ms", 60000, 1000, 600000),
    ("retrieval_top_k", 5, 1, 100),
    ("index_refresh_ms", 30000, 1000, 600000),
    ("compaction_interval_ms", 300000, 10000, 3600000),
    ("idea_candidates", 5, 1, 50),
    ("brainstorm_rounds", 2, 1, 10),
    ("review_passes", 1, 1, 5),
    ("test_coverage_target", 0.8, 0.5, 1.0),
    ("experiment_budget", 10, 1, 100),
]

# domain, metric (None = general), action, knob, factor, base impact
DEFAULT_STRATEGIES = [
    ("performance", "response_time", "optimize_response_time", "request_timeout_ms", 0.9, 0.2),
    ("performance", "response_time", "increase_parallel_processing", "parallelism", 1.1, 0.15),
    ("performance", "throughput", "increase_parallel_processing", "parallelism", 1.1, 0.15),
    ("performance", "throughput", "optimize_resource_allocation", "worker_pool_size", 1.1, 0.05),
    ("performance", "error_rate", "reduce_error_rate", "retry_budget", 1.2, 0.25),
    ("performance", "error_rate", "improve_error_handling", "circuit_breaker_threshold", 0.9, 0.05),
    ("performance", None, "general_performance_tuning", "batch_size", 1.05, 0.1),
    ("learning", "learning_velocity", "accelerate_learning", "learning_rate", 1.15, 0.15),
    ("learning", "learning_velocity", "optimize_algorithms", "exploration_rate", 0.9, 0.05),
    ("learning", "pattern_recognition", "enhance_pattern_recognition", "pattern_window", 1.1, 0.1),
    ("learning", "pattern_recognition", "improve_data_quality", "sample_size", 1.1, 0.05),
    ("learning", None, "enhance_learning_algorithms", "model_refresh_rate", 1.05, 0.1),
    ("coordination", "task_distribution", "improve_task_distribution", "rebalance_frequency", 1.1, 0.1),
    ("coordination", "task_distribution", "enhance_load_balancing", "queue_depth_limit", 0.9, 0.05),
    ("coordination", "communication_latency", "enhance_communication", "message_batch_size", 0.9, 0.05),
    ("coordination", "communication_latency", "optimize_protocols", "heartbeat_interval_ms", 1.1, 0.05),
    ("coordination", None, "improve_coordination_protocols", "sync_interval_ms", 0.95, 0.1),
    ("memory", "memory_utilization", "optimize_memory_usage", "cache_size_mb", 1.1, 0.1),
    ("memory", "memory_utilization", "improve_garbage_collection", "gc_interval_ms", 0.9, 0.05),
    ("memory", "retrieval_accuracy", "improve_retrieval", "retrieval_top_k", 1.2, 0.15),
    ("memory", "retrieval_accuracy", "enhance_indexing", "index_refresh_ms", 0.9, 0.05),
    ("memory", None, "optimize_memory_management", "compaction_interval_ms", 0.9, 0.1),
    ("innovation", "idea_quality", "enhance_creativity", "idea_candidates", 1.1, 0.05),
    ("innovation", "idea_quality", "improve_brainstorming", "brainstorm_rounds", 1.1, 0.05),
    ("innovation", "implementation_success", "improve_implementation", "review_passes", 1.1, 0.05),
    ("innovation", "implementation_success", "enhance_testing", "test_coverage_target", 1.05, 0.05),
    ("innovation", None, "enhance_innovation_processes", "experiment_budget", 1.1, 0.1),
]


def default_knob_board() -> KnobBoard:
    return KnobBoard(
        Knob(name=name, value=float(value), minimum=float(low), maximum=float(high))
        for name, value, low, high in DEFAULT_KNOBS
    )


def build_default_catalog(board: Optional[KnobBoard] = None) -> tuple[AdaptationCatalog, KnobBoard]:
    """
    Build and freeze the default catalog.

    Strategies listed under several metrics of a domain share one action
    instance, so a cycle applies them once.
    """
    board = board or default_knob_board()
    catalog = AdaptationCatalog()
    actions: dict[tuple[str, str], KnobAdjustment] = {}

    for domain, metric, name, knob, factor, impact in DEFAULT_STRATEGIES:
        key = (domain, name)
        action = actions.get(key)
        if action is None:
            action = KnobAdjustment(
                name=name,
                board=board,
                knob=knob,
                factor=factor,
                target_metric=metric or "general",
                estimated_impact=impact,
                description=f"scale {knob} by {factor:g}",
            )
            actions[key] = action

        if metric is None:
            catalog.register_general(domain, action)
        else:
            catalog.register(domain, metric, action)

    return catalog.freeze(), board
