"""Directory resource reconciliation provider.

To drive a resource type:
    from directory_provider.resources import build_reconciler, parse_spec

To use the Graph client directly:
    from directory_provider.core.graph import GraphClient, UsersClient

Command line:
    directory-provider --help
"""

__version__ = "0.1.0"
