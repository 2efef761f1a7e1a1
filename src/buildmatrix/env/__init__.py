from buildmatrix.env.env import (
    BRANCH_VARIABLES,
    Environment,
    LoggingEnvironment,
    detect_branch,
    detect_branch_source,
    get_env,
    get_logging_env,
    load_env_file,
    reset_env_caches,
)

from buildmatrix.env.paths import home_dir, logs_dir

__all__ = [
    "BRANCH_VARIABLES",
    "Environment",
    "LoggingEnvironment",
    "detect_branch",
    "detect_branch_source",
    "get_env",
    "get_logging_env",
    "load_env_file",
    "reset_env_caches",
    "home_dir",
    "logs_dir",
]
