"""REST API module.

Provides:
    - ApiClient: Cumulative history pages and the liveness probe.
    - WhirlAPIError and subclasses: Classified request failures.
"""
