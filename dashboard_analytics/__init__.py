"""
Dashboard Analytics Package.

Statistical analysis core for tabular business datasets. Each analyzer is a pure
function over an immutable dataset (rows + column metadata) and returns a
self-describing result with an ``available`` flag.

Subpackages:
    - core: Configuration and logging setup
    - models: Pydantic result schemas and enums
    - services: Analyzers (RFM, cohort, churn, market basket, correlation,
      time series, ML) and the concurrent analysis pipeline
"""

__version__ = "1.0.0"
