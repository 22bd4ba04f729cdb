"""Visualization utilities.

This package contains:

- shared plotting helpers (theme, palette, PNG saving, grid composition)
- the report figures (overview, correlation, model fit, residual diagnostics)

All plots are saved to disk so they work in headless CI/CD environments.
"""
