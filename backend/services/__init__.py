from importlib import import_module

__all__ = [
    "compute_score",
    "tier_for_score",
    "InvalidInput",
    "RankTracker",
    "DeltaBroadcaster",
    "UpdateCoordinator",
    "SqlStatsStore",
    "PersistenceFailure",
    "LeaderboardRefresher",
]

# Resolved on first access so that importing the pure scoring code does not
# create the database engine.
_LAZY_EXPORTS = {
    "compute_score": ("services.dna_score", "compute_score"),
    "tier_for_score": ("services.dna_score", "tier_for_score"),
    "InvalidInput": ("services.dna_score", "InvalidInput"),
    "RankTracker": ("services.rank_tracker", "RankTracker"),
    "DeltaBroadcaster": ("services.delta_broadcaster", "DeltaBroadcaster"),
    "UpdateCoordinator": ("services.update_coordinator", "UpdateCoordinator"),
    "SqlStatsStore": ("services.stats_store", "SqlStatsStore"),
    "PersistenceFailure": ("services.stats_store", "PersistenceFailure"),
    "LeaderboardRefresher": ("services.leaderboard_refresher", "LeaderboardRefresher"),
}


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module 'services' has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
