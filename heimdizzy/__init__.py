"""
heimdizzy is a configuration driven deployment tool.

A `heimdizzy.yml` file describes a service and one deployment target per
environment. The `heimdizzy deploy <environment>` command builds the artifact,
uploads it, runs the configured hooks and hands off to the deployment strategy
for the target type (GitOps or direct container, managed runtime, static web
site, npm or image registry publish, or a pod restart).
"""

__all__ = [
    "config",
    "loader",
    "orchestrator",
    "strategy",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
