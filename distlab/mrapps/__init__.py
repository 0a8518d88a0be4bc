"""MapReduce applications, each providing map_func and reduce_func."""

__all__ = [
    "crash",
    "early_exit",
    "indexer",
    "jobcount",
    "mtiming",
    "nocrash",
    "rtiming",
    "wc",
]