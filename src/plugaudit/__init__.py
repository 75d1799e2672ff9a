"""Plugaudit - dependency vulnerability auditing for installed community plugins.

Plugaudit resolves each installed plugin to its source repository, fetches the
plugin's ``package.json`` and lockfile, runs ``npm audit`` against them and
aggregates the results into a severity-classified report.

Key modules:

- :mod:`plugaudit.audit.fetch_cache` - Conditional re-download decisions backed by cache metadata
- :mod:`plugaudit.audit.github` - Repository host lookups (default branch, last push)
- :mod:`plugaudit.audit.acquirer` - Manifest and lockfile acquisition per plugin
- :mod:`plugaudit.audit.runner` - External audit tool invocation and severity classification
- :mod:`plugaudit.audit.aggregator` - Summary counts, audit log and report views
- :mod:`plugaudit.audit.orchestrator` - The end-to-end audit run
"""

__version__ = "0.1.0"
